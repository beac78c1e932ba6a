"""
Entity type registry

Entity types are described from the SQLAlchemy mappers of the registered models and
stored in an index-addressed list. The "active schema" of every entity type is the
only mutable, process-wide state of the engine: it is turned into a
`schema_translate_map` for the storage calls (cfr. serializer.py).
"""
from __future__ import annotations

import threading
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Iterator, List, Optional, Tuple, Union

import sqlalchemy
from sqlalchemy.orm import configure_mappers
from sqlalchemy.orm.interfaces import MANYTOMANY, MANYTOONE, ONETOMANY

import sacrud
from . import signals
from .config import get_config
from .errors import ConfigurationError


class AssociationKind(str, Enum):
    ONE_TO_ONE = "one-to-one"
    ONE_TO_MANY = "one-to-many"
    MANY_TO_ONE = "many-to-one"
    MANY_TO_MANY = "many-to-many"

    @property
    def to_many(self) -> bool:
        return self in (AssociationKind.ONE_TO_MANY, AssociationKind.MANY_TO_MANY)


@dataclass(frozen=True)
class AssociationEdge:
    name: str
    kind: AssociationKind
    target: str
    join_entity: Optional[str] = None
    alias: Optional[str] = None

    def __post_init__(self):
        if self.alias is None:
            object.__setattr__(self, "alias", self.name)


@dataclass(eq=False)
class EntityType:
    """
    Description of a table: a mapped model, or the implicit join entity of a many-to-many relationship
    (`model` is None for the latter)
    """

    name: str
    index: int
    table: sqlalchemy.Table
    model: Optional[type] = None
    attributes: Tuple[str, ...] = ()
    primary_keys: Tuple[str, ...] = ()
    auto_identity: frozenset = frozenset()
    associations: Dict[str, AssociationEdge] = field(default_factory=dict)
    scopes: Dict[str, dict] = field(default_factory=dict)
    pinned_schema: Optional[str] = None
    active_schema: Optional[str] = None

    @property
    def primary_key(self) -> str:
        return self.primary_keys[0]

    def column(self, attr: str) -> sqlalchemy.Column:
        if self.model is None:
            return self.table.c[attr]
        return sqlalchemy.inspect(self.model).column_attrs[attr].columns[0]

    def scope(self, name: Optional[str] = None) -> dict:
        return self.scopes.get(name or get_config("DEFAULT_SCOPE"), {})

    def __repr__(self):
        return f"<EntityType {self.name}>"


def is_auto_identity(column: sqlalchemy.Column, pk_count: int) -> bool:
    if column.identity is not None or column.autoincrement is True:
        return True
    return (
        column.autoincrement == "auto"
        and pk_count == 1
        and isinstance(column.type, sqlalchemy.Integer)
        and not column.foreign_keys
    )


class ModelRegistry:
    def __init__(self) -> None:
        self._models: List[type] = []
        self._types: List[EntityType] = []
        self._index: Dict[Union[str, type], int] = {}
        self._lock = threading.RLock()
        self.configured = False

    def register(self, model: type) -> type:
        with self._lock:
            if model not in self._models:
                self._models.append(model)
                self.configured = False
        return model

    def configure(self) -> "ModelRegistry":
        """
        Configure the mappers, describe every registered model and notify the repositories
        waiting for the association graph
        """
        configure_mappers()
        with self._lock:
            for model in list(self._models):
                if sqlalchemy.inspect(model, raiseerr=False) is not None:
                    self.entity_type(model)
            self.configured = True
        signals.models_loaded.send(self)
        return self

    def entity_type(self, key: Union[EntityType, type, str, int]) -> EntityType:
        """
        :param key: model class, entity type name or index
        :return: the EntityType descriptor, described on first access
        """
        if isinstance(key, EntityType):
            return key
        with self._lock:
            if isinstance(key, int):
                return self._types[key]
            if key in self._index:
                return self._types[self._index[key]]
            if isinstance(key, type):
                self.register(key)
                return self._describe(key)
            for model in self._models:
                if model.__name__ == key:
                    return self._describe(model)
        raise ConfigurationError(f"Entity type {key} is not registered")

    def __iter__(self) -> Iterator[EntityType]:
        with self._lock:
            for model in list(self._models):
                if sqlalchemy.inspect(model, raiseerr=False) is not None:
                    self.entity_type(model)
            return iter(list(self._types))

    def _add(self, entity_type: EntityType, *keys) -> EntityType:
        self._types.append(entity_type)
        for key in keys:
            self._index[key] = entity_type.index
        return entity_type

    def _describe(self, model: type) -> EntityType:
        configure_mappers()
        mapper = sqlalchemy.inspect(model, raiseerr=False)
        if mapper is None:
            raise ConfigurationError(f"{model} is not a mapped class")
        pk_columns = list(mapper.primary_key)
        primary_keys = tuple(mapper.get_property_by_column(column).key for column in pk_columns)
        auto_identity = frozenset(
            key for key, column in zip(primary_keys, pk_columns) if is_auto_identity(column, len(pk_columns))
        )
        entity_type = EntityType(
            name=model.__name__,
            index=len(self._types),
            table=mapper.local_table,
            model=model,
            attributes=tuple(prop.key for prop in mapper.column_attrs),
            primary_keys=primary_keys,
            auto_identity=auto_identity,
            scopes=dict(getattr(model, "_s_scopes", {}) or {}),
            pinned_schema=mapper.local_table.schema,
        )
        self._add(entity_type, model, entity_type.name)
        for relationship in mapper.relationships:
            entity_type.associations[relationship.key] = self._edge(relationship)
        return entity_type

    def _edge(self, relationship) -> AssociationEdge:
        target = relationship.mapper.class_
        self.register(target)
        join_entity = None
        if relationship.direction == MANYTOONE:
            kind = AssociationKind.MANY_TO_ONE
        elif relationship.direction == ONETOMANY:
            kind = AssociationKind.ONE_TO_MANY if relationship.uselist else AssociationKind.ONE_TO_ONE
        elif relationship.direction == MANYTOMANY:
            kind = AssociationKind.MANY_TO_MANY
            join_entity = self._join_entity(relationship).name
        else:  # pragma: no cover
            raise ConfigurationError(f"Unsupported relationship {relationship}")
        return AssociationEdge(name=relationship.key, kind=kind, target=target.__name__, join_entity=join_entity)

    def _join_entity(self, relationship) -> EntityType:
        """
        The join entity is the model mapped to the secondary table, an implicit entity type is created
        for plain association tables
        """
        secondary = relationship.secondary
        for mapper in relationship.parent.registry.mappers:
            if mapper.local_table is secondary:
                return self.entity_type(mapper.class_)
        if secondary in self._index:
            return self._types[self._index[secondary]]
        columns = list(secondary.columns)
        entity_type = EntityType(
            name=secondary.name,
            index=len(self._types),
            table=secondary,
            attributes=tuple(column.key for column in columns),
            primary_keys=tuple(column.key for column in secondary.primary_key),
            pinned_schema=secondary.schema,
        )
        sacrud.log.debug(f"Created implicit join entity {entity_type.name}")
        return self._add(entity_type, secondary, entity_type.name)

    def change_tenant(self, tenant: Optional[str]) -> None:
        """
        Point every entity type that is not pinned to the admin schema to the `tenant` schema,
        the admin tenant never overwrites the active schemas
        """
        admin = get_config("ADMIN_SCHEMA")
        if tenant == admin:
            return
        for entity_type in self:
            if entity_type.pinned_schema != admin:
                entity_type.active_schema = tenant

    def reset_tenant(self) -> None:
        for entity_type in self:
            entity_type.active_schema = None

    def schema_translate_map(self) -> Dict[Optional[str], str]:
        return {
            entity_type.pinned_schema: entity_type.active_schema
            for entity_type in self
            if entity_type.active_schema is not None and entity_type.active_schema != entity_type.pinned_schema
        }


registry = ModelRegistry()
