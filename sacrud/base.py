"""
SACRUDBase: mixin for the Flask-SQLAlchemy models served by the engine

    class User(SACRUDBase, db.Model):
        __tablename__ = "users"
        _s_scopes = {"default": {"exclude": ["password"]}, "with_password": {}}

        username = db.Column(db.String, primary_key=True)
        password = db.Column(db.String)
        books = db.relationship("Book", back_populates="author")
"""
from __future__ import annotations

from typing import Dict, List, Optional

from .include import IncludeNode
from .registry import EntityType, registry
from .util import classproperty


class SACRUDBase:
    # attribute visibility presets, the "default" scope is used when no scope is requested
    _s_scopes: Dict[str, dict] = {}

    def __init_subclass__(cls, **kwargs) -> None:
        super().__init_subclass__(**kwargs)
        if not cls.__dict__.get("__abstract__", False):
            registry.register(cls)

    @classproperty
    def _s_entity_type(cls) -> EntityType:
        return registry.entity_type(cls)

    @classproperty
    def _s_attributes(cls) -> List[str]:
        return list(cls._s_entity_type.attributes)

    @classproperty
    def _s_associations(cls) -> List[str]:
        return list(cls._s_entity_type.associations)

    def to_dict(self, include: Optional[List[IncludeNode]] = None, scope: Optional[str] = None) -> dict:
        return normalize(self, include, scope)


def normalize(instance, include: Optional[List[IncludeNode]] = None, scope: Optional[str] = None) -> dict:
    """
    Plain dict of the instance attributes visible in `scope`, with the associations of the include tree.
    Related entities use their default scope
    """
    entity_type = registry.entity_type(type(instance))
    excluded = set(entity_type.scope(scope).get("exclude", ()))
    result = {attr: getattr(instance, attr) for attr in entity_type.attributes if attr not in excluded}
    for node in include or []:
        related = getattr(instance, node.edge.name)
        if node.edge.kind.to_many:
            result[node.edge.alias] = [normalize(item, node.children) for item in related]
        else:
            result[node.edge.alias] = normalize(related, node.children) if related is not None else None
    return result
