"""Lifecycle hooks dispatched by the synoptics stores.

Hooks observe committed mutations; they are used for cache invalidation,
orphan cleanup of layout positions and audit logging. A failing hook is
logged and never aborts the mutation that triggered it.

Example:
    class AuditHook(LifecycleHook):
        def on_deleted(self, entity_type, entity_id, record):
            logger.info(f"{entity_type.value} {entity_id} deleted")

    store.add_hook(AuditHook())
"""

import logging
from enum import Enum
from typing import Any, List

logger = logging.getLogger(__name__)


class EntityType(str, Enum):
    """Entity kinds handled by the stores, the cache and the cascade."""
    SITE = "site"
    BUILDING = "building"
    FLOOR = "floor"
    ZONE = "zone"
    ELEMENT = "element"
    NODE = "node"
    CONNECTION = "connection"
    MEDIA = "media"
    LAYOUT = "layout"
    NODE_POSITION = "node_position"
    ANNOTATION = "annotation"


class LifecycleHook:
    """Base class for entity lifecycle event handlers.

    Subclass and override the methods of interest. ``record`` arguments are
    the stored pydantic records; hooks must treat them as read-only.
    """

    def on_created(self, entity_type: EntityType, entity_id: str, record: Any) -> None:
        """Called after an entity is created."""
        pass

    def on_updated(self, entity_type: EntityType, entity_id: str, old_record: Any,
                   new_record: Any) -> None:
        """Called after an entity is updated."""
        pass

    def on_deleted(self, entity_type: EntityType, entity_id: str, record: Any) -> None:
        """Called after an entity is deleted."""
        pass

    def on_restored(self, store: Any) -> None:
        """Called after a store's state was replaced by a snapshot (rollback)."""
        pass


class HookRegistry:
    """Mixin holding registered hooks and dispatching events to them."""

    def __init__(self):
        self._hooks: List[LifecycleHook] = []

    def add_hook(self, hook: LifecycleHook) -> None:
        """Register a lifecycle hook."""
        if hook not in self._hooks:
            self._hooks.append(hook)

    def remove_hook(self, hook: LifecycleHook) -> None:
        """Unregister a lifecycle hook."""
        if hook in self._hooks:
            self._hooks.remove(hook)

    def _dispatch(self, event: str, *args: Any) -> None:
        for hook in list(self._hooks):
            try:
                getattr(hook, event)(*args)
            except Exception as e:
                logger.warning(f"Hook {event} failed: {e}")


__all__ = [
    "EntityType",
    "LifecycleHook",
    "HookRegistry",
]
