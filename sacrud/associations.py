"""
Association mutation

After the primary row is written, association values of the DTO link existing entities:

    {"projects": [1, 2]}                                  replace the linked set
    {"projects": 3}                                       replace the linked set with one entity
    {"projects": [[1, {"role": "x"}], [2, {"role": "y"}]]}  the first pair replaces the set,
                                                          the next pairs are added, with join attributes
"""
from __future__ import annotations

from typing import Callable

from .registry import EntityType, ModelRegistry, registry as default_registry
from .serializer import TenantAccessSerializer, serializer as default_serializer
from .storage import Storage
from .util import is_link_value


def is_pair_list(value) -> bool:
    return (
        isinstance(value, (list, tuple))
        and len(value) > 0
        and all(isinstance(item, (list, tuple)) and len(item) == 2 and isinstance(item[1], (dict, type(None))) for item in value)
    )


class AssociationMutator:
    def __init__(self, storage: Storage, serializer: TenantAccessSerializer = None, registry: ModelRegistry = None) -> None:
        self.storage = storage
        self.serializer = serializer or default_serializer
        self.registry = registry or default_registry

    def apply(self, entity_type: EntityType, key, dto: dict, reload: Callable, tenant=None, transaction_id=None):
        """
        :param key: primary key of the persisted entity
        :param dto: the values written, non association keys are ignored
        :param reload: callable returning the entity as loaded after the mutation
        :return: reloaded entity
        """
        for name, value in dto.items():
            edge = entity_type.associations.get(name)
            if edge is None or not is_link_value(value):
                continue
            if is_pair_list(value):
                for position, (target_id, through) in enumerate(value):
                    with self.serializer.access(tenant, self.registry):
                        self.storage.link(entity_type, key, edge, [target_id], through, position == 0, transaction_id)
            else:
                target_ids = list(value) if isinstance(value, (list, tuple)) else [value]
                with self.serializer.access(tenant, self.registry):
                    self.storage.link(entity_type, key, edge, target_ids, None, True, transaction_id)
        return reload()
