"""
Storage primitives

Thin layer over the SQLAlchemy session used by the repositories. Every call runs against the
schemas selected in the registry (schema_translate_map) and wraps SQLAlchemy errors in engine errors.
"""
from __future__ import annotations

import dataclasses
from contextlib import contextmanager
from typing import List, Optional

import sqlalchemy
from sqlalchemy import delete, func, insert, select, text, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.schema import CreateSchema, DropSchema

import sacrud
from . import validators
from .attr_parse import parse_attr
from .config import is_multitenant
from .errors import EngineError, NotFoundError, StorageError, ValidationError
from .filters import QuerySpec
from .query import build_count_statement, build_statement, column_values, identity
from .registry import AssociationEdge, EntityType, ModelRegistry, registry as default_registry
from .tx import TransactionRegistry, transactions as default_transactions
from .util import is_nested_value

RETURNING_DIALECTS = ("postgresql", "sqlite")


def translate_error(exc: SQLAlchemyError) -> EngineError:
    if isinstance(exc, IntegrityError):
        message = str(exc.orig)
        return ValidationError(message, errors=[{"field": None, "message": message, "args": ""}])
    return StorageError(str(exc))


def _value_of(instance, column):
    mapper = sqlalchemy.inspect(instance).mapper
    return getattr(instance, mapper.get_property_by_column(column).key)


class Storage:
    def __init__(self, registry: ModelRegistry = None, transactions: TransactionRegistry = None) -> None:
        self.registry = registry or default_registry
        self.transactions = transactions or default_transactions

    def session(self, transaction_id: Optional[str] = None):
        session = self.transactions.get(transaction_id)
        if session is None:
            session = sacrud.DB.session
        if is_multitenant():
            session.connection().execution_options(schema_translate_map=self.registry.schema_translate_map())
        return session

    @contextmanager
    def _reading(self, transaction_id=None):
        session = self.session(transaction_id)
        try:
            yield session
        except SQLAlchemyError as exc:
            if transaction_id is None:
                session.rollback()
            raise translate_error(exc) from exc

    @contextmanager
    def _writing(self, transaction_id=None):
        """
        Commit when no caller transaction is used, flush otherwise
        """
        session = self.session(transaction_id)
        own_transaction = self.transactions.get(transaction_id) is None
        try:
            yield session
            if own_transaction:
                session.commit()
            else:
                session.flush()
        except SQLAlchemyError as exc:
            if own_transaction:
                session.rollback()
            raise translate_error(exc) from exc
        except EngineError:
            if own_transaction:
                session.rollback()
            raise

    @contextmanager
    def _ddl(self, schema_translate_map=None):
        try:
            with sacrud.DB.engine.begin() as connection:
                if schema_translate_map:
                    connection = connection.execution_options(schema_translate_map=schema_translate_map)
                yield connection
        except SQLAlchemyError as exc:
            raise StorageError(str(exc)) from exc

    def find_all(self, entity_type: EntityType, spec: QuerySpec, transaction_id=None, scope=None) -> list:
        stmt = build_statement(entity_type, spec, scope, self.registry)
        with self._reading(transaction_id) as session:
            return list(session.execute(stmt).unique().scalars().all())

    def find_one(self, entity_type: EntityType, spec: QuerySpec, transaction_id=None, scope=None):
        # joined collections stay complete: build_statement limits the root keys, not the joined rows
        entities = self.find_all(entity_type, dataclasses.replace(spec, limit=1), transaction_id, scope)
        return entities[0] if entities else None

    def count(self, entity_type: EntityType, spec: QuerySpec, transaction_id=None, scope=None) -> int:
        stmt = build_count_statement(entity_type, spec, scope)
        with self._reading(transaction_id) as session:
            return session.execute(stmt).scalar_one()

    def build(self, entity_type: EntityType, values: dict, nested: dict = None):
        """
        Instantiate the model, `nested` association values are built as new related entities
        """
        instance = entity_type.model(**column_values(entity_type, {k: v for k, v in values.items() if k in entity_type.attributes}))
        for name, value in (nested or {}).items():
            edge = entity_type.associations[name]
            target = self.registry.entity_type(edge.target)
            items = value if isinstance(value, (list, tuple)) else [value]
            related = [self.build(target, item, self._nested(target, item)) for item in items]
            setattr(instance, name, related if edge.kind.to_many else related[0])
        return instance

    @staticmethod
    def _nested(entity_type: EntityType, dto: dict) -> dict:
        return {k: v for k, v in dto.items() if k in entity_type.associations and is_nested_value(v)}

    def create(self, entity_type: EntityType, values: dict, nested: dict = None, transaction_id=None):
        """
        :return: primary key value of the new row
        """
        instance = self.build(entity_type, values, nested)
        with self._writing(transaction_id) as session:
            session.add(instance)
            session.flush()
            key = identity(entity_type, instance)
        return key

    def update(self, entity_type: EntityType, keys: list, values: dict, transaction_id=None) -> int:
        if not values:
            return 0
        model = entity_type.model
        stmt = (
            update(model)
            .where(getattr(model, entity_type.primary_key).in_(keys))
            .values(**column_values(entity_type, values))
            .execution_options(synchronize_session=False)
        )
        with self._writing(transaction_id) as session:
            return session.execute(stmt).rowcount

    def destroy(self, entity_type: EntityType, keys: list, transaction_id=None) -> int:
        """
        Delete through the session so relationship cascades and association rows are handled
        """
        model = entity_type.model
        stmt = select(model).where(getattr(model, entity_type.primary_key).in_(keys))
        with self._writing(transaction_id) as session:
            instances = session.execute(stmt).scalars().all()
            for instance in instances:
                session.delete(instance)
        return len(instances)

    def bulk_create(self, entity_type: EntityType, rows: List[dict], transaction_id=None, ignore_duplicates=True) -> list:
        """
        Insert the rows one statement each, rows violating a unique constraint are skipped

        :return: the primary key of every row, in row order: the inserted key, the key given
                 in the row for a skipped duplicate, None when neither is known
        """
        table = entity_type.table
        pk_attr = entity_type.primary_key
        pk_column = entity_type.column(pk_attr)
        keys = []
        with self._writing(transaction_id) as session:
            dialect = session.get_bind().dialect.name
            for row in rows:
                values = {entity_type.column(attr).key: value for attr, value in column_values(entity_type, row).items()}
                stmt = self._insert(table, dialect, ignore_duplicates)
                if values:
                    stmt = stmt.values(**values)
                if dialect in RETURNING_DIALECTS:
                    inserted = session.execute(stmt.returning(pk_column)).first()
                    key = inserted[0] if inserted else None
                else:
                    result = session.execute(stmt)
                    key = result.inserted_primary_key[0] if result.rowcount else None
                if key is None:
                    key = values.get(pk_column.key)
                    sacrud.log.info(f"Skipped duplicate {entity_type.name} {key}")
                keys.append(key)
        return keys

    @staticmethod
    def _insert(table, dialect: str, ignore_duplicates: bool):
        if ignore_duplicates and dialect == "postgresql":
            return postgresql.insert(table).on_conflict_do_nothing()
        if ignore_duplicates and dialect == "sqlite":
            return sqlite.insert(table).on_conflict_do_nothing()
        if ignore_duplicates and dialect in ("mysql", "mariadb"):
            return insert(table).prefix_with("IGNORE")
        return insert(table)

    def set_serial_sequence(self, entity_type: EntityType, transaction_id=None) -> None:
        """
        Move the identity sequence past the highest key after rows were inserted with explicit keys
        """
        with self._writing(transaction_id) as session:
            if session.get_bind().dialect.name != "postgresql":
                return
            column = entity_type.column(entity_type.primary_key)
            schema = self.registry.schema_translate_map().get(entity_type.table.schema, entity_type.table.schema)
            table_name = f'"{schema}"."{entity_type.table.name}"' if schema else f'"{entity_type.table.name}"'
            sequence = func.pg_get_serial_sequence(table_name, column.name)
            session.execute(select(func.setval(sequence, func.coalesce(func.max(column), 1))))

    def link(
        self,
        entity_type: EntityType,
        key,
        edge: AssociationEdge,
        target_ids: list,
        through: dict = None,
        replace: bool = True,
        transaction_id=None,
    ) -> None:
        """
        Replace (or extend) the entities linked through `edge`

        :param through: attributes of the join rows, many-to-many associations only
        """
        target_type = self.registry.entity_type(edge.target)
        with self._writing(transaction_id) as session:
            entity = session.get(entity_type.model, key)
            if entity is None:
                raise NotFoundError(f"Entity '{entity_type.name}' {key} does not exist")
            targets = [self._get(session, target_type, target_id) for target_id in target_ids if target_id is not None]
            relationship = sqlalchemy.inspect(entity_type.model).relationships[edge.name]
            if relationship.secondary is not None:
                self._link_secondary(session, entity, edge, relationship, targets, through, replace)
                return
            if through:
                sacrud.log.warning(f"Ignoring join attributes for {entity_type.name}.{edge.name}: no join table")
            if edge.kind.to_many:
                if replace:
                    setattr(entity, edge.name, targets)
                else:
                    collection = getattr(entity, edge.name)
                    collection.extend(target for target in targets if target not in collection)
            elif len(targets) > 1:
                raise ValidationError(f"{entity_type.name}.{edge.name} holds a single {target_type.name}")
            else:
                setattr(entity, edge.name, targets[0] if targets else None)

    def _get(self, session, entity_type: EntityType, key):
        key = parse_attr(entity_type.column(entity_type.primary_key), key)
        instance = session.get(entity_type.model, key)
        if instance is None:
            raise NotFoundError(f"Entity '{entity_type.name}' {key} does not exist")
        return instance

    def _link_secondary(self, session, entity, edge, relationship, targets, through, replace) -> None:
        secondary = relationship.secondary
        local = {column.key: _value_of(entity, parent_column) for parent_column, column in relationship.synchronize_pairs}
        local_clause = [secondary.c[name] == value for name, value in local.items()]
        extra = self._through_values(edge, through)
        if replace:
            session.execute(delete(secondary).where(*local_clause))
        for target in targets:
            remote = {
                column.key: _value_of(target, target_column)
                for target_column, column in relationship.secondary_synchronize_pairs
            }
            if not replace:
                session.execute(
                    delete(secondary).where(*local_clause, *(secondary.c[name] == value for name, value in remote.items()))
                )
            session.execute(insert(secondary).values(**local, **remote, **extra))
        session.expire(entity, [edge.name])

    def _through_values(self, edge: AssociationEdge, through: Optional[dict]) -> dict:
        if not through:
            return {}
        join_type = self.registry.entity_type(edge.join_entity)
        values = {}
        for attr, value in through.items():
            if attr not in join_type.attributes:
                sacrud.log.debug(f"Ignoring unknown join attribute {join_type.name}.{attr}")
                continue
            column = join_type.column(attr)
            values[column.key] = parse_attr(column, value)
        return values

    def validate(self, entity_type: EntityType, dto: dict, partial: bool = False) -> list:
        return validators.validate(entity_type, dto, partial)

    def create_schema(self, schema: str) -> None:
        with self._ddl() as connection:
            connection.execute(CreateSchema(schema, if_not_exists=True))
        sacrud.log.info(f"Schema {schema} created")

    def drop_schema(self, schema: str) -> None:
        with self._ddl() as connection:
            connection.execute(DropSchema(schema, cascade=True, if_exists=True))
        sacrud.log.info(f"Schema {schema} dropped")

    def rename_schema(self, schema: str, new_schema: str) -> None:
        with self._ddl() as connection:
            preparer = connection.dialect.identifier_preparer
            connection.execute(text(f"ALTER SCHEMA {preparer.quote_schema(schema)} RENAME TO {preparer.quote_schema(new_schema)}"))
        sacrud.log.info(f"Schema {schema} renamed to {new_schema}")

    def sync(self, schema: str) -> None:
        """
        Create the tables of every model in `schema`, tables pinned to a schema stay in theirs
        """
        with self._ddl({None: schema}) as connection:
            sacrud.DB.metadata.create_all(bind=connection)
        sacrud.log.info(f"Models synchronized into schema {schema}")
