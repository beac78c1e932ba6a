"""
QuerySpec => SQLAlchemy statements

Required include nodes are inner joined on an alias of the target, filtered, and loaded
from that join with contains_eager. The other nodes are loaded with selectinload when
fetched separately, joinedload otherwise.
"""
from __future__ import annotations

from typing import List

from sqlalchemy import and_, func, not_, or_, select, true
from sqlalchemy.orm import aliased, contains_eager, joinedload, selectinload

import sacrud
from .attr_parse import parse_attr
from .errors import ConfigurationError, ValidationError
from .filters import DESC, QuerySpec
from .include import IncludeNode, merge_predicates
from .registry import EntityType, ModelRegistry, registry as default_registry

PATTERN_OPERATORS = ("like", "notLike", "startsWith", "endsWith", "substring", "iLike", "notILike", "regexp", "notRegexp", "iRegexp", "notIRegexp")


def _equals(column, value):
    return column.is_(None) if value is None else column == value


def _not_equals(column, value):
    return column.is_not(None) if value is None else column != value


def _between(column, value):
    if len(value) != 2:
        raise ValidationError(f"between expects 2 values, got {value}")
    return column.between(*value)


OPERATOR_EXPRESSIONS = {
    "eq": _equals,
    "ne": _not_equals,
    "is": lambda column, value: column.is_(value),
    "not": lambda column, value: column.is_not(value),
    "or": lambda column, value: or_(*(_equals(column, item) for item in value)),
    "gt": lambda column, value: column > value,
    "gte": lambda column, value: column >= value,
    "lt": lambda column, value: column < value,
    "lte": lambda column, value: column <= value,
    "between": _between,
    "notBetween": lambda column, value: not_(_between(column, value)),
    "in": lambda column, value: column.in_(value),
    "notIn": lambda column, value: column.not_in(value),
    "like": lambda column, value: column.like(value),
    "notLike": lambda column, value: column.not_like(value),
    "startsWith": lambda column, value: column.startswith(value, autoescape=True),
    "endsWith": lambda column, value: column.endswith(value, autoescape=True),
    "substring": lambda column, value: column.contains(value, autoescape=True),
    "iLike": lambda column, value: column.ilike(value),
    "notILike": lambda column, value: column.not_ilike(value),
    "regexp": lambda column, value: column.regexp_match(value),
    "notRegexp": lambda column, value: not_(column.regexp_match(value)),
    "iRegexp": lambda column, value: column.regexp_match(value, flags="i"),
    "notIRegexp": lambda column, value: not_(column.regexp_match(value, flags="i")),
}


def coerce_value(column, operator: str, value):
    if operator in PATTERN_OPERATORS:
        return value
    if isinstance(value, (list, tuple)):
        return [coerce_value(column, operator, item) for item in value]
    try:
        return parse_attr(column, value)
    except (ValueError, TypeError) as exc:
        raise ValidationError(f"Invalid value {value!r} for {column.key}: {exc}") from exc


def build_condition(expression, column, condition):
    """
    :param expression: mapped attribute (of the model or an alias)
    :param column: the Column behind it, used for value coercion
    :param condition: literal or operator object
    """
    if not isinstance(condition, dict):
        return _equals(expression, coerce_value(column, "eq", condition))
    clauses = []
    for operator, value in condition.items():
        if operator == "and":
            clauses.extend(build_condition(expression, column, item) for item in value)
        elif operator in OPERATOR_EXPRESSIONS:
            clauses.append(OPERATOR_EXPRESSIONS[operator](expression, coerce_value(column, operator, value)))
        else:
            sacrud.log.debug(f"Ignoring unknown operator '{operator}' on {column.key}")
    if not clauses:
        return true()
    return clauses[0] if len(clauses) == 1 else and_(*clauses)


def build_conditions(entity, entity_type: EntityType, where) -> list:
    clauses = []
    for attr, condition in (where or {}).items():
        if attr not in entity_type.attributes:
            raise ConfigurationError(f"{entity_type.name} has no attribute {attr}")
        clauses.append(build_condition(getattr(entity, attr), entity_type.column(attr), condition))
    return clauses


def _loader(parent_loader, strategy, attribute):
    if parent_loader is None:
        return strategy(attribute)
    return getattr(parent_loader, strategy.__name__)(attribute)


def apply_includes(stmt, parent, nodes: List[IncludeNode], registry: ModelRegistry, parent_loader=None):
    """
    :return: statement with the joins of the required nodes, list of loader options
    """
    options = []
    for node in nodes:
        target_type = registry.entity_type(node.edge.target)
        attribute = getattr(parent, node.edge.name)
        if node.required:
            target = aliased(target_type.model)
            stmt = stmt.join(attribute.of_type(target))
            stmt = stmt.where(*build_conditions(target, target_type, node.where))
            loader = _loader(parent_loader, contains_eager, attribute.of_type(target))
        else:
            target = target_type.model
            strategy = selectinload if node.fetch_separately else joinedload
            loader = _loader(parent_loader, strategy, attribute)
        stmt, child_options = apply_includes(stmt, target, node.children, registry, loader)
        options.extend(child_options or [loader])
    return stmt, options


def has_joins(nodes: List[IncludeNode]) -> bool:
    return any(node.required or has_joins(node.children) for node in nodes)


def order_by(stmt, entity, order):
    for attr, direction in order:
        column = getattr(entity, attr)
        stmt = stmt.order_by(column.desc() if direction == DESC else column.asc())
    return stmt


def paginate(stmt, spec: QuerySpec):
    if spec.limit is not None:
        stmt = stmt.limit(spec.limit)
    if spec.offset is not None:
        stmt = stmt.offset(spec.offset)
    return stmt


def root_keys(entity_type: EntityType, spec: QuerySpec, where: dict, registry: ModelRegistry):
    """
    Page of root primary keys: the inner joins of the required nodes repeat the root rows,
    so LIMIT and OFFSET are applied to the grouped keys instead of the joined rows
    """
    root = aliased(entity_type.model)
    key = getattr(root, entity_type.primary_key)
    stmt = select(key).where(*build_conditions(root, entity_type, where))
    stmt, _ = apply_includes(stmt, root, spec.include, registry)
    stmt = order_by(stmt.group_by(key), root, spec.order)
    return paginate(stmt, spec)


def build_statement(entity_type: EntityType, spec: QuerySpec, scope: str = None, registry: ModelRegistry = None):
    registry = registry or default_registry
    model = entity_type.model
    where = merge_predicates(spec.where, entity_type.scope(scope).get("where"))
    stmt = select(model).where(*build_conditions(model, entity_type, where))
    stmt, options = apply_includes(stmt, model, spec.include, registry)
    if options:
        stmt = stmt.options(*options)
    stmt = order_by(stmt, model, spec.order)
    if has_joins(spec.include) and (spec.limit is not None or spec.offset is not None):
        keys = root_keys(entity_type, spec, where, registry)
        stmt = stmt.where(getattr(model, entity_type.primary_key).in_(keys))
    else:
        stmt = paginate(stmt, spec)
    return stmt.execution_options(populate_existing=True)


def build_count_statement(entity_type: EntityType, spec: QuerySpec, scope: str = None):
    model = entity_type.model
    where = merge_predicates(spec.where, entity_type.scope(scope).get("where"))
    return select(func.count()).select_from(model).where(*build_conditions(model, entity_type, where))


def primary_key_in(entity_type: EntityType, keys) -> QuerySpec:
    return QuerySpec(where={entity_type.primary_key: {"in": list(keys)}})


def identity(entity_type: EntityType, instance):
    return getattr(instance, entity_type.primary_key)


def column_values(entity_type: EntityType, values: dict) -> dict:
    """
    Parse DTO values into column python types, keyed by attribute name
    """
    result = {}
    for attr, value in values.items():
        column = entity_type.column(attr)
        try:
            result[attr] = parse_attr(column, value)
        except (ValueError, TypeError) as exc:
            raise ValidationError(f"Invalid value {value!r} for {entity_type.name}.{attr}: {exc}") from exc
    return result
