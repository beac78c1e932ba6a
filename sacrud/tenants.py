"""
Tenant registry

Tenant records own a database schema named after the tenant: creating a tenant creates the
schema and synchronizes the tables of every model into it, renaming the tenant renames the
schema and deleting the tenant drops it.
"""
from __future__ import annotations

import sacrud
from .config import get_config
from .repository import CallOptions, CrudRepository
from .util import strip_accents

TEMP_SCHEMA = "temp"


def tenant_name(name: str) -> str:
    """
    Schema key of a tenant: lower case, without accents, the first letter of every word
    followed by the last word

        >>> tenant_name("Acme Corp")
        'acorp'
        >>> tenant_name("Société Générale de Banque")
        'sgdbanque'
    """
    words = strip_accents(name.lower()).split(" ")
    return "".join(word[:1] for word in words[:-1]) + words[-1]


class TenantRepository(CrudRepository):
    # derive the tenant id from the name instead of accepting the one in the dto
    ignore_id = True
    # create the tables of every model in the new schema
    sync_models = True

    def _schema_access(self):
        return self.serializer.access(None, self.registry)

    def create_tenant_schema(self, schema: str) -> None:
        with self._schema_access():
            self.storage.create_schema(schema)
            if not self.sync_models:
                return
            self.registry.reset_tenant()
            if schema == get_config("ADMIN_SCHEMA"):
                # the admin tables are pinned to their schema, the others only need a throw-away target
                self.storage.create_schema(TEMP_SCHEMA)
                self.storage.sync(TEMP_SCHEMA)
                self.storage.drop_schema(TEMP_SCHEMA)
            else:
                self.storage.sync(schema)

    def _before_create(self, dto: dict, options: CallOptions) -> dict:
        dto = dict(dto)
        if self.ignore_id and dto.get("name"):
            dto[self.primary_key] = tenant_name(dto["name"])
        schema = dto.get(self.primary_key)
        if schema:
            self.create_tenant_schema(schema)
        return dto

    def _before_update(self, previous: dict, dto: dict, options: CallOptions) -> dict:
        dto = dict(dto)
        schema = previous[self.primary_key]
        if self.ignore_id:
            dto[self.primary_key] = schema
        name = dto.get("name")
        if name is None or name == previous.get("name"):
            return dto
        new_schema = tenant_name(name) if self.ignore_id else dto.get(self.primary_key, schema)
        if new_schema != schema:
            with self._schema_access():
                self.storage.rename_schema(schema, new_schema)
            dto[self.primary_key] = new_schema
            sacrud.log.info(f"Tenant {schema} is now {new_schema}")
        return dto

    def _before_destroy(self, previous: dict, options: CallOptions) -> None:
        with self._schema_access():
            self.storage.drop_schema(previous[self.primary_key])
