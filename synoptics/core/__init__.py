"""
Core layer for the synoptics package.

Modules:
- errors: typed failures with stable codes
- hooks: lifecycle hook protocol shared by the stores
- hierarchy_store / network_store: site -> building -> floor -> zone tree
  and the gas network placed on it
- layout_store: diagram surfaces and node positions
- cascade: dependency reports and transactional cascade deletes
- cache: (entity type, parent id) query cache
- analysis: networkx-backed traversal and statistics
"""

from .errors import (
    SynopticsError,
    NotFound,
    GasTypeMismatch,
    SelfConnection,
    DuplicateConnection,
    InvalidPlacement,
    InvalidElementType,
    CascadeInProgress,
    DependentsExist,
    StaleConfirmation,
    OptimisticLockError,
)
from .hooks import EntityType, HookRegistry, LifecycleHook
from .hierarchy_store import HierarchyStore, StoreSnapshot
from .network_store import NetworkStore
from .layout_store import LayoutStore
from .cache import QueryCache
from .cascade import ANCHOR_TYPES, CascadeResolver, DependencyReport
from .analysis import NetworkAnalyzer

__all__ = [
    # Errors
    "SynopticsError",
    "NotFound",
    "GasTypeMismatch",
    "SelfConnection",
    "DuplicateConnection",
    "InvalidPlacement",
    "InvalidElementType",
    "CascadeInProgress",
    "DependentsExist",
    "StaleConfirmation",
    "OptimisticLockError",
    # Hooks
    "EntityType",
    "HookRegistry",
    "LifecycleHook",
    # Stores
    "HierarchyStore",
    "StoreSnapshot",
    "NetworkStore",
    "LayoutStore",
    "QueryCache",
    # Cascade
    "ANCHOR_TYPES",
    "CascadeResolver",
    "DependencyReport",
    # Analysis
    "NetworkAnalyzer",
]
