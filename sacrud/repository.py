"""
CrudRepository: list/read/create/update/delete/bulk operations for one entity type

Every operation translates the filter map into a QuerySpec, brackets its storage calls with
the tenant access serializer and returns plain dicts. When a predicate filters a to-many
association, the collections of the matched entities are incomplete: they are fetched again
by primary key with the predicate free include tree.
"""
from __future__ import annotations

from dataclasses import dataclass
from functools import wraps
from typing import List, Optional, Tuple

import sacrud
from . import signals
from .associations import AssociationMutator
from .base import normalize
from .errors import NotFoundError, StorageError, ValidationError
from .filters import BULK_CREATE, BULK_UPDATE, COUNT, CREATE, DELETE, LIST, READ, UPDATE, QuerySpec, QueryTranslator
from .include import AssociationGraphResolver
from .query import identity, primary_key_in
from .registry import EntityType, ModelRegistry, registry as default_registry
from .serializer import TenantAccessSerializer, serializer as default_serializer
from .storage import Storage
from .util import is_link_value, is_nested_value

NO_MATCH = "No entity matches query criteria"


@dataclass
class CallOptions:
    transaction_id: Optional[str] = None
    tenant: Optional[str] = None
    scope: Optional[str] = None


def emits(action):
    """
    Send the action signal with the result, or the error signal with the exception
    """

    def decorator(func):
        @wraps(func)
        def wrapper(self, *args, **kwargs):
            context = {key: kwargs[key] for key in ("transaction_id", "tenant") if key in kwargs}
            try:
                result = func(self, *args, **kwargs)
            except Exception as exc:
                signals.emit_error(action, self.entity_type.name, exc, **context)
                raise
            signals.emit(action, self.entity_type.name, result, **context)
            return result

        return wrapper

    return decorator


class CrudRepository:
    """
    :param model: mapped model class
    :param include: include specification for every action, "all" by default
    :param include_on_<action>: include specification for one action
    """

    def __init__(
        self,
        model,
        include="all",
        include_on_list=None,
        include_on_read=None,
        include_on_create=None,
        include_on_update=None,
        include_on_delete=None,
        include_on_count=None,
        registry: ModelRegistry = None,
        storage: Storage = None,
        serializer: TenantAccessSerializer = None,
    ) -> None:
        self.model = model
        self.registry = registry or default_registry
        self.registry.register(model)
        self.serializer = serializer or default_serializer
        self.storage = storage or Storage(self.registry)
        self.resolver = AssociationGraphResolver(self.registry)
        self.mutator = AssociationMutator(self.storage, self.serializer, self.registry)
        self.include_config = {
            None: include,
            LIST: include_on_list,
            READ: include_on_read,
            CREATE: include_on_create,
            UPDATE: include_on_update,
            DELETE: include_on_delete,
            COUNT: include_on_count,
        }
        self._translator = None
        if self.registry.configured:
            self.configure()
        else:
            signals.models_loaded.connect(self.configure, sender=self.registry)

    def configure(self, sender=None, **kwargs) -> "CrudRepository":
        """
        Resolve the include configuration, raises ConfigurationError when it does not match the models
        """
        includes = {
            action: self.resolver.resolve(spec, self.entity_type)
            for action, spec in self.include_config.items()
            if spec is not None
        }
        self._translator = QueryTranslator(self.entity_type, includes, self.resolver, self.registry)
        return self

    @property
    def translator(self) -> QueryTranslator:
        if self._translator is None:
            self.configure()
        return self._translator

    @property
    def entity_type(self) -> EntityType:
        return self.registry.entity_type(self.model)

    @property
    def primary_key(self) -> str:
        return self.entity_type.primary_key

    def get_attributes(self) -> List[str]:
        return list(self.entity_type.attributes)

    def get_association_attributes(self) -> List[str]:
        return list(self.entity_type.associations)

    def has_tenant_id_field(self) -> bool:
        return "tenant_id" in self.entity_type.attributes

    def get_tenant(self) -> Optional[str]:
        """
        :return: the schema the entity type currently targets
        """
        entity_type = self.entity_type
        return entity_type.active_schema or entity_type.pinned_schema

    def change_tenant(self, tenant: Optional[str]) -> None:
        self.registry.change_tenant(tenant)

    def start_transaction(self) -> str:
        return self.storage.transactions.start()

    def commit_transaction(self, transaction_id: str) -> None:
        self.storage.transactions.commit(transaction_id)

    def rollback_transaction(self, transaction_id: str) -> None:
        self.storage.transactions.rollback(transaction_id)

    # storage calls, bracketed by the serializer

    def _access(self, options: CallOptions):
        return self.serializer.access(options.tenant, self.registry)

    def _fetch_all(self, spec: QuerySpec, options: CallOptions) -> list:
        with self._access(options):
            return self.storage.find_all(self.entity_type, spec, options.transaction_id, options.scope)

    def _fetch_one(self, spec: QuerySpec, options: CallOptions):
        with self._access(options):
            return self.storage.find_one(self.entity_type, spec, options.transaction_id, options.scope)

    def _fetch_by_key(self, key, action: str, options: CallOptions):
        spec = QuerySpec(where={self.primary_key: key}, include=self.translator.include_for(action))
        return self._fetch_one(spec, options)

    def _refetch(self, entities: list, spec: QuerySpec, action: str, options: CallOptions, query_options=None):
        """
        Fetch the entities again by primary key with the predicate free include tree
        :return: entities, include tree they were loaded with
        """
        include = self.translator.include_for(action, query_options)
        refetch = primary_key_in(self.entity_type, [identity(self.entity_type, entity) for entity in entities])
        refetch.include = include
        refetch.order = spec.order
        return self._fetch_all(refetch, options), include

    def _find_one(self, entity_query, action, options, query_options=None):
        spec, filtered = self.translator.translate(entity_query, query_options, action)
        entity = self._fetch_one(spec, options)
        if entity is None:
            raise NotFoundError(NO_MATCH)
        include = spec.include
        if filtered:
            entities, include = self._refetch([entity], spec, action, options, query_options)
            if not entities:
                raise NotFoundError(NO_MATCH)
            entity = entities[0]
        return entity, include

    def _find_all(self, entity_query, action, options, query_options=None):
        spec, filtered = self.translator.translate(entity_query, query_options, action)
        entities = self._fetch_all(spec, options)
        include = spec.include
        if filtered and entities:
            entities, include = self._refetch(entities, spec, action, options, query_options)
        return entities, include

    # dto handling

    def _strip_auto_identity(self, dto: dict, ignore_auto_id: bool) -> dict:
        dto = dict(dto)
        if ignore_auto_id:
            for attr in self.entity_type.auto_identity:
                dto.pop(attr, None)
        return dto

    def _split(self, dto: dict, create_nested_entities: bool = False):
        """
        :return: column values, nested association objects, association links
        """
        entity_type = self.entity_type
        values = {key: value for key, value in dto.items() if key in entity_type.attributes}
        nested = {}
        if create_nested_entities:
            nested = {key: value for key, value in dto.items() if key in entity_type.associations and is_nested_value(value)}
        links = {key: value for key, value in dto.items() if key in entity_type.associations and is_link_value(value)}
        return values, nested, links

    def _check(self, values: dict, partial: bool = False) -> None:
        errors = self.storage.validate(self.entity_type, values, partial)
        if errors:
            raise ValidationError(errors=errors)

    def _link(self, key, links: dict, action: str, options: CallOptions):
        return self.mutator.apply(
            self.entity_type,
            key,
            links,
            reload=lambda: self._fetch_by_key(key, action, options),
            tenant=options.tenant,
            transaction_id=options.transaction_id,
        )

    # hooks for entity types with side effects, cfr. tenants.py

    def _before_create(self, dto: dict, options: CallOptions) -> dict:
        return dto

    def _before_update(self, previous: dict, dto: dict, options: CallOptions) -> dict:
        return dto

    def _before_destroy(self, previous: dict, options: CallOptions) -> None:
        pass

    # public operations

    @emits(LIST)
    def list(self, entity_query=None, query_options=None, transaction_id=None, tenant=None, scope=None) -> List[dict]:
        """
        :param entity_query: filter map
        :param query_options: "order", "limit", "offset" and "include"
        :return: list of entity dicts
        """
        options = CallOptions(transaction_id, tenant, scope)
        entities, include = self._find_all(entity_query, LIST, options, query_options)
        return [normalize(entity, include, scope) for entity in entities]

    @emits(READ)
    def read(self, entity_query, query_options=None, transaction_id=None, tenant=None, scope=None) -> dict:
        options = CallOptions(transaction_id, tenant, scope)
        entity, include = self._find_one(entity_query, READ, options, query_options)
        return normalize(entity, include, scope)

    @emits(CREATE)
    def create(
        self,
        dto: dict,
        transaction_id=None,
        tenant=None,
        scope=None,
        ignore_auto_id=True,
        create_nested_entities=False,
        apply_associations=True,
    ) -> dict:
        """
        :param ignore_auto_id: drop auto generated key values from the dto
        :param create_nested_entities: create the related entities given as nested objects
        :param apply_associations: link the entities referenced by id in association values
        """
        options = CallOptions(transaction_id, tenant, scope)
        dto = self._before_create(self._strip_auto_identity(dto, ignore_auto_id), options)
        values, nested, links = self._split(dto, create_nested_entities)
        self._check(values)
        with self._access(options):
            key = self.storage.create(self.entity_type, values, nested, transaction_id)
        if not ignore_auto_id and self.entity_type.auto_identity & set(values):
            with self._access(options):
                self.storage.set_serial_sequence(self.entity_type, transaction_id)

        entity = self._fetch_by_key(key, CREATE, options)
        if entity is None:
            raise StorageError(f"Entity '{self.entity_type.name}' could not be created")
        if apply_associations and links:
            entity = self._link(key, links, CREATE, options)
        return normalize(entity, self.translator.include_for(CREATE), scope)

    @emits(UPDATE)
    def update(
        self,
        entity_query: dict,
        dto: dict,
        transaction_id=None,
        tenant=None,
        scope=None,
        ignore_auto_id=True,
        apply_associations=True,
    ) -> Tuple[dict, dict]:
        """
        Update the first entity matching `entity_query`
        :return: updated entity, entity before the update
        """
        options = CallOptions(transaction_id, tenant, scope)
        entity_query = dict(entity_query or {})
        dto = self._strip_auto_identity(dto, ignore_auto_id)
        previous, include = self._find_one(entity_query, UPDATE, options)
        previous_data = normalize(previous, include, scope)
        key = identity(self.entity_type, previous)

        dto = self._before_update(previous_data, dto, options)
        values, _, links = self._split(dto)
        self._check(values, partial=True)
        with self._access(options):
            self.storage.update(self.entity_type, [key], values, transaction_id)

        # the dto may change the values the entity was found by
        merged_query = {**entity_query, **{k: v for k, v in dto.items() if k in entity_query}}
        entity, include = self._find_one(merged_query, UPDATE, options)
        if apply_associations and links:
            entity = self._link(identity(self.entity_type, entity), links, UPDATE, options)
            include = self.translator.include_for(UPDATE)
        return normalize(entity, include, scope), previous_data

    @emits(DELETE)
    def delete(self, entity_query: dict, transaction_id=None, tenant=None, scope=None) -> dict:
        """
        Delete the first entity matching `entity_query`
        :return: the entity before it was deleted
        """
        options = CallOptions(transaction_id, tenant, scope)
        entity, include = self._find_one(entity_query, DELETE, options)
        previous_data = normalize(entity, include, scope)
        self._before_destroy(previous_data, options)
        with self._access(options):
            self.storage.destroy(self.entity_type, [identity(self.entity_type, entity)], transaction_id)
        return previous_data

    @emits(BULK_CREATE)
    def bulk_create(
        self,
        dtos: List[dict],
        transaction_id=None,
        tenant=None,
        scope=None,
        ignore_auto_id=True,
        apply_associations=True,
    ) -> List[dict]:
        """
        Insert the dtos, rows that violate a unique constraint are skipped
        """
        options = CallOptions(transaction_id, tenant, scope)
        dtos = [self._before_create(self._strip_auto_identity(dto, ignore_auto_id), options) for dto in dtos]
        rows = [self._split(dto)[0] for dto in dtos]
        errors = [error for row in rows for error in self.storage.validate(self.entity_type, row)]
        if errors:
            raise ValidationError(errors=errors)
        with self._access(options):
            keys = self.storage.bulk_create(self.entity_type, rows, transaction_id)
        if not ignore_auto_id and any(self.entity_type.auto_identity & set(row) for row in rows):
            with self._access(options):
                self.storage.set_serial_sequence(self.entity_type, transaction_id)

        found = [key for key in keys if key is not None]
        if not found:
            return []
        include = self.translator.include_for(BULK_CREATE)
        spec = primary_key_in(self.entity_type, found)
        spec.include = include
        results = {}
        for entity in self._fetch_all(spec, options):
            results[identity(self.entity_type, entity)] = normalize(entity, include, scope)
        if apply_associations:
            for key, dto in zip(keys, dtos):
                links = self._split(dto)[2]
                if key in results and links:
                    results[key] = normalize(self._link(key, links, BULK_CREATE, options), include, scope)
        return list(results.values())

    @emits(BULK_UPDATE)
    def bulk_update(
        self,
        entity_query: dict,
        dto: dict,
        transaction_id=None,
        tenant=None,
        scope=None,
        ignore_auto_id=True,
        apply_associations=True,
    ) -> Tuple[List[dict], List[dict]]:
        """
        Update every entity matching `entity_query`
        :return: updated entities, entities before the update
        """
        options = CallOptions(transaction_id, tenant, scope)
        entity_query = dict(entity_query or {})
        dto = self._strip_auto_identity(dto, ignore_auto_id)
        previous, include = self._find_all(entity_query, BULK_UPDATE, options)
        if not previous:
            raise NotFoundError(NO_MATCH)
        previous_data = [normalize(entity, include, scope) for entity in previous]
        keys = [identity(self.entity_type, entity) for entity in previous]

        values, _, links = self._split(dto)
        self._check(values, partial=True)
        with self._access(options):
            self.storage.update(self.entity_type, keys, values, transaction_id)

        merged_query = {**entity_query, **{k: v for k, v in dto.items() if k in entity_query}}
        entities, include = self._find_all(merged_query, BULK_UPDATE, options)
        if not entities:
            raise NotFoundError(NO_MATCH)
        if not (apply_associations and links):
            return [normalize(entity, include, scope) for entity in entities], previous_data

        include = self.translator.include_for(BULK_UPDATE)
        keys = [identity(self.entity_type, entity) for entity in entities]
        updated = [normalize(self._link(key, links, BULK_UPDATE, options), include, scope) for key in keys]
        return updated, previous_data

    def count(self, entity_query=None, transaction_id=None, tenant=None, scope=None) -> int:
        """
        Filters on associations are counted on the fetched entities, a row count would count
        the joined rows of to-many associations
        """
        options = CallOptions(transaction_id, tenant, scope)
        spec, _ = self.translator.translate(entity_query, {"include": []}, COUNT)
        if not spec.include:
            with self._access(options):
                return self.storage.count(self.entity_type, spec, transaction_id, scope)
        return len(self._fetch_all(spec, options))

    def validate(self, dto: dict, partial: bool = False) -> List[dict]:
        """
        :param partial: only validate the attributes present in the dto
        :return: list of {"field", "message", "args"} errors, empty when the dto is valid
        """
        values = {key: value for key, value in dto.items() if key in self.entity_type.attributes}
        errors = self.storage.validate(self.entity_type, values, partial)
        if errors:
            sacrud.log.debug(f"Invalid {self.entity_type.name}: {errors}")
        return errors

    def __repr__(self):
        return f"<{self.__class__.__name__} {self.model.__name__}>"
