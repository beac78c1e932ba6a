"""
Translation of generic filter maps into query specifications

    {"name$like": "Jo%", "age$between": "18,30", "books.title": "Dune"}

Keys are `field` or `field<separator>operator`, dotted keys filter on associations.
Values are strings or JSON values, "true", "false" and "null" are coerced.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

import sacrud
from .config import get_config
from .include import AssociationGraphResolver, IncludeNode, merge_predicates
from .registry import EntityType, ModelRegistry, registry as default_registry

LIST = "list"
READ = "read"
CREATE = "create"
UPDATE = "update"
DELETE = "delete"
COUNT = "count"
BULK_CREATE = "bulk create"
BULK_UPDATE = "bulk update"

# bulk actions load the same associations as their single counterparts
INCLUDE_ACTIONS = {BULK_CREATE: CREATE, BULK_UPDATE: UPDATE}

ASC = "ASC"
DESC = "DESC"

OPERATORS = (
    "eq",
    "ne",
    "is",
    "not",
    "or",
    "gt",
    "gte",
    "lt",
    "lte",
    "between",
    "notBetween",
    "in",
    "notIn",
    "like",
    "notLike",
    "startsWith",
    "endsWith",
    "substring",
    "iLike",
    "notILike",
    "regexp",
    "notRegexp",
    "iRegexp",
    "notIRegexp",
)
SET_OPERATORS = ("or", "between", "notBetween", "in", "notIn")
JSON_VALUES = {"true": True, "false": False, "null": None}


@dataclass
class QuerySpec:
    where: Dict[str, Any] = field(default_factory=dict)
    include: List[IncludeNode] = field(default_factory=list)
    order: List[Tuple[str, str]] = field(default_factory=list)
    limit: Optional[int] = None
    offset: Optional[int] = None


def coerce(value):
    if isinstance(value, str) and value in JSON_VALUES:
        return JSON_VALUES[value]
    return value


def parse_int(value) -> Optional[int]:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, str) and value.strip().isdigit():
        return int(value)
    if value is not None:
        sacrud.log.debug(f"Ignoring non-numeric pagination value {value!r}")
    return None


class QueryTranslator:
    """
    Translates filter maps for one entity type, `includes` holds the resolved include tree per action
    (the None key is the default for actions without their own tree)
    """

    def __init__(
        self,
        entity_type,
        includes: Dict[Optional[str], List[IncludeNode]] = None,
        resolver: AssociationGraphResolver = None,
        registry: ModelRegistry = None,
    ) -> None:
        self.registry = registry or default_registry
        self.entity_type = self.registry.entity_type(entity_type)
        self.resolver = resolver or AssociationGraphResolver(self.registry)
        self.includes = includes or {}

    def include_for(self, action: str, query_options: Optional[dict] = None) -> List[IncludeNode]:
        """
        :return: a fresh, predicate free, include tree for the action
        """
        if query_options and "include" in query_options:
            return self.resolver.resolve(query_options["include"], self.entity_type)
        action = INCLUDE_ACTIONS.get(action, action)
        nodes = self.includes.get(action, self.includes.get(None, []))
        return [node.copy() for node in nodes]

    def parse_attribute(self, key: str, value) -> Optional[Tuple[str, Any]]:
        """
        :return: (attribute, literal or operator object) or None when the operator is unknown
        """
        attr, _, operator = key.partition(get_config("OPERATOR_SEPARATOR"))
        if not operator:
            return attr, coerce(value)
        if operator not in OPERATORS:
            sacrud.log.debug(f"Ignoring unknown operator '{operator}' in filter '{key}'")
            return None
        if operator in SET_OPERATORS:
            if isinstance(value, str):
                value = value.split(",")
            if isinstance(value, (list, tuple)):
                return attr, {operator: [coerce(item) for item in value]}
        return attr, {operator: coerce(value)}

    def translate(self, entity_query: dict = None, query_options: dict = None, action: str = LIST) -> Tuple[QuerySpec, bool]:
        """
        :param entity_query: filter map
        :param query_options: "include", and for list actions "order", "limit" and "offset"
        :param action: engine action the query is built for
        :return: QuerySpec, whether a to-many include carries a predicate
        """
        query_options = query_options or {}
        spec = QuerySpec(include=self.include_for(action, query_options))
        filtered = False
        for key, value in (entity_query or {}).items():
            parsed = self.parse_attribute(key, value)
            if parsed is None:
                continue
            attr, condition = parsed
            if "." in attr:
                filtered = self.filter_include(attr, condition, self.entity_type, spec.include) or filtered
            elif attr in self.entity_type.attributes:
                spec.where = merge_predicates(spec.where, {attr: condition})
            else:
                sacrud.log.debug(f"Ignoring filter on unknown attribute {self.entity_type.name}.{attr}")

        if action == LIST:
            spec.order = self.parse_order(query_options.get("order"))
            spec.limit = parse_int(query_options.get("limit", get_config("LIST_LIMIT")))
            spec.offset = parse_int(query_options.get("offset"))
        return spec, filtered

    def parse_order(self, order) -> List[Tuple[str, str]]:
        """
        "name,-created" => [("name", "ASC"), ("created", "DESC")]
        """
        if not order:
            return []
        columns = order.split(",") if isinstance(order, str) else order
        result = []
        for column in columns:
            column = column.strip()
            direction = ASC
            if column.startswith("-"):
                column, direction = column[1:], DESC
            if column not in self.entity_type.attributes:
                sacrud.log.debug(f"Invalid sort column {column}")
                continue
            result.append((column, direction))
        return result

    def is_valid_path(self, path: str, entity_type: EntityType) -> bool:
        *associations, attr = path.split(".")
        for name in associations:
            edge = entity_type.associations.get(name)
            if edge is None:
                return False
            entity_type = self.registry.entity_type(edge.target)
        return attr in entity_type.attributes

    def filter_include(self, path: str, condition, entity_type: EntityType, include: List[IncludeNode]) -> bool:
        """
        Attach the predicate of the dotted `path` to the include tree, creating the nodes
        that are not included yet

        :return: whether the predicate filters a to-many association
        """
        if not self.is_valid_path(path, entity_type):
            sacrud.log.debug(f"Ignoring filter on unknown field {entity_type.name}.{path}")
            return False
        name, _, rest = path.partition(".")
        edge = entity_type.associations[name]
        node = next((node for node in include if node.edge.alias == edge.alias), None)
        if node is None:
            node = self.resolver.node(edge)
            include.append(node)
        if "." not in rest:
            node.attach({rest: condition})
            return edge.kind.to_many
        filtered = self.filter_include(rest, condition, self.registry.entity_type(edge.target), node.children)
        if any(child.required for child in node.children):
            node.require()
        return filtered or edge.kind.to_many
