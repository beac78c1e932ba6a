# flake8: noqa: F401
#
# The module instances (model registry, tenant access serializer) live in their modules:
# sacrud.registry.registry and sacrud.serializer.serializer
#
from .sacrud_init import DB, log, SACRUD
from .errors import EngineError, NotFoundError, ValidationError, ConfigurationError, StorageError
from .registry import ModelRegistry, EntityType, AssociationEdge, AssociationKind
from .include import AssociationGraphResolver, IncludeNode
from .filters import QueryTranslator, QuerySpec
from .serializer import TenantAccessSerializer
from .tx import TransactionRegistry, transactions
from .storage import Storage
from .associations import AssociationMutator
from .base import SACRUDBase, normalize
from .repository import CrudRepository
from .tenants import TenantRepository, tenant_name
from . import signals
from .__about__ import __version__, __description__

__all__ = (
    "__version__",
    "__description__",
    #
    "SACRUD",
    "DB",
    "log",
    # models:
    "SACRUDBase",
    "ModelRegistry",
    "EntityType",
    "AssociationEdge",
    "AssociationKind",
    "normalize",
    # engine:
    "AssociationGraphResolver",
    "IncludeNode",
    "QueryTranslator",
    "QuerySpec",
    "TenantAccessSerializer",
    "TransactionRegistry",
    "transactions",
    "Storage",
    "AssociationMutator",
    "CrudRepository",
    "TenantRepository",
    "tenant_name",
    "signals",
    # Errors:
    "EngineError",
    "NotFoundError",
    "ValidationError",
    "ConfigurationError",
    "StorageError",
)
