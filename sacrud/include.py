"""
Include trees

An include specification names the associations that are loaded together with an entity.
Raw specifications are parsed into one of the variants below and resolved against the
association graph of the registry:

    "all"                                   Wildcard: every association of the entity type
    "books"                                 Named
    "books.publisher"                       DottedPath, "all" is accepted after the first segment
    {"association": "books", "include": [..], "where": {..}}
    {"model": "Book"} / {"as": "books"}     Aliased

Resolution errors are configuration errors: the include specification does not match the models.
"""
from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Any, List, Optional, Tuple

from .config import get_config
from .errors import ConfigurationError
from .registry import AssociationEdge, AssociationKind, EntityType, ModelRegistry, registry as default_registry

STRUCTURED_KEYS = {"association", "model", "as", "alias", "include", "where", "required"}


@dataclass(frozen=True)
class Wildcard:
    pass


@dataclass(frozen=True)
class Named:
    name: str


@dataclass(frozen=True)
class DottedPath:
    segments: Tuple[str, ...]


@dataclass(frozen=True)
class Aliased:
    association: Optional[str] = None
    model: Optional[str] = None
    alias: Optional[str] = None
    include: Any = None
    where: Optional[dict] = None
    required: bool = False


@dataclass
class IncludeNode:
    """
    Resolved include: `required` nodes are inner joined (and filtered by `where`),
    `fetch_separately` nodes are loaded in their own query
    """

    edge: AssociationEdge
    required: bool = False
    fetch_separately: bool = False
    where: Optional[dict] = None
    children: List["IncludeNode"] = field(default_factory=list)

    @property
    def name(self) -> str:
        return self.edge.name

    def copy(self) -> "IncludeNode":
        return replace(
            self,
            where=dict(self.where) if self.where is not None else None,
            children=[child.copy() for child in self.children],
        )

    def attach(self, predicate: dict) -> None:
        self.where = merge_predicates(self.where, predicate)
        self.require()

    def require(self) -> None:
        self.required = True
        self.fetch_separately = False


def is_operator_object(condition) -> bool:
    return isinstance(condition, dict)


def combine_conditions(current, new):
    """
    Two operator objects on the same attribute are merged into one, anything else is AND-ed
    """
    if is_operator_object(current) and is_operator_object(new) and not set(current) & set(new):
        return {**current, **new}
    if is_operator_object(current) and list(current) == ["and"]:
        return {"and": list(current["and"]) + [new]}
    return {"and": [current, new]}


def merge_predicates(left: Optional[dict], right: Optional[dict]) -> dict:
    merged = dict(left or {})
    for attr, condition in (right or {}).items():
        merged[attr] = combine_conditions(merged[attr], condition) if attr in merged else condition
    return merged


def parse_include(spec) -> list:
    """
    :param spec: raw include specification (token, name, dotted path, dict or a list of these)
    :return: list of include variants
    """
    if spec is None:
        return []
    items = spec if isinstance(spec, (list, tuple)) else [spec]
    wildcard = get_config("INCLUDE_ALL")
    parsed = []
    for item in items:
        if isinstance(item, (Wildcard, Named, DottedPath, Aliased)):
            parsed.append(item)
        elif isinstance(item, str):
            if item == wildcard:
                parsed.append(Wildcard())
            elif "." in item:
                parsed.append(DottedPath(tuple(item.split("."))))
            else:
                parsed.append(Named(item))
        elif isinstance(item, dict) and item.get(wildcard) is True:
            parsed.append(Wildcard())
        elif isinstance(item, dict):
            unknown = set(item) - STRUCTURED_KEYS
            if unknown:
                raise ConfigurationError(f"Unsupported include keys {sorted(unknown)} in {item}")
            model = item.get("model")
            aliased = Aliased(
                association=item.get("association"),
                model=getattr(model, "__name__", model),
                alias=item.get("as", item.get("alias")),
                include=item.get("include"),
                where=item.get("where"),
                required=bool(item.get("required", False)),
            )
            if not (aliased.association or aliased.model or aliased.alias):
                raise ConfigurationError(f"Include {item} names no association, model or alias")
            parsed.append(aliased)
        else:
            raise ConfigurationError(f"Unsupported include specification {item!r}")
    return parsed


def covers(item, node: IncludeNode, edge: AssociationEdge) -> bool:
    """
    Whether an explicitly listed include makes the wildcard skip `edge`
    """
    if node.edge.alias == edge.alias or node.edge.name == edge.name:
        return True
    return isinstance(item, Aliased) and item.model is not None and item.model == edge.target


def aggregate(nodes: List[IncludeNode]) -> List[IncludeNode]:
    """
    Merge sibling nodes for the same association
    """
    groups: dict = {}
    for node in nodes:
        groups.setdefault(node.edge.alias, []).append(node)
    return [merge_nodes(group) for group in groups.values()]


def merge_nodes(group: List[IncludeNode]) -> IncludeNode:
    first = group[0]
    merged = IncludeNode(first.edge, first.required, first.fetch_separately, first.where)
    children = list(first.children)
    for other in group[1:]:
        if other.where:
            merged.attach(other.where)
        elif other.required:
            merged.require()
        children.extend(other.children)
    merged.children = aggregate(children)
    return merged


class AssociationGraphResolver:
    def __init__(self, registry: ModelRegistry = None) -> None:
        self.registry = registry or default_registry

    def resolve(self, include_spec, entity_type) -> List[IncludeNode]:
        """
        :param include_spec: raw include specification
        :param entity_type: EntityType, model or entity type name
        :return: aggregated list of IncludeNode
        """
        entity_type = self.registry.entity_type(entity_type)
        resolved = []
        wildcard = False
        for item in parse_include(include_spec):
            if isinstance(item, Wildcard):
                wildcard = True
                continue
            resolved.append((item, self._resolve_item(item, entity_type)))

        nodes = [node for _, node in resolved]
        if wildcard:
            expanded = [
                self.node(edge)
                for edge in entity_type.associations.values()
                if not any(covers(item, node, edge) for item, node in resolved)
            ]
            nodes = expanded + nodes
        return aggregate(nodes)

    @staticmethod
    def node(edge: AssociationEdge) -> IncludeNode:
        return IncludeNode(edge, fetch_separately=edge.kind is AssociationKind.ONE_TO_MANY)

    def _resolve_item(self, item, entity_type: EntityType) -> IncludeNode:
        if isinstance(item, Named):
            return self.node(self._edge(item.name, entity_type))
        if isinstance(item, DottedPath):
            return self._resolve_path(item.segments, entity_type, ".".join(item.segments))
        edge = self._find_edge(item, entity_type)
        node = self.node(edge)
        if item.include:
            node.children = self.resolve(item.include, edge.target)
        if item.where:
            node.attach(item.where)
        elif item.required or any(child.required for child in node.children):
            node.require()
        return node

    def _edge(self, name: str, entity_type: EntityType) -> AssociationEdge:
        edge = entity_type.associations.get(name)
        if edge is None:
            raise ConfigurationError(f"Association {name} does not exist in model {entity_type.name}")
        return edge

    def _find_edge(self, item: Aliased, entity_type: EntityType) -> AssociationEdge:
        edges = list(entity_type.associations.values())
        for matches in (
            lambda edge: item.association is not None and edge.name == item.association,
            lambda edge: item.alias is not None and edge.alias == item.alias,
            lambda edge: item.model is not None and edge.target == item.model,
        ):
            for edge in edges:
                if matches(edge):
                    return edge
        reference = item.association or item.alias or item.model
        raise ConfigurationError(f"Association {reference} does not exist in model {entity_type.name}")

    def _resolve_path(self, segments, entity_type: EntityType, path: str) -> IncludeNode:
        head, rest = segments[0], segments[1:]
        edge = self._edge(head, entity_type)
        node = self.node(edge)
        if not rest:
            return node
        target = self.registry.entity_type(edge.target)
        if rest[0] == get_config("INCLUDE_ALL"):
            if len(rest) > 1:
                raise ConfigurationError(f"The wildcard must be the last segment of include path {path}")
            node.children = [self.node(child) for child in target.associations.values()]
        else:
            node.children = [self._resolve_path(rest, target, path)]
        return node
