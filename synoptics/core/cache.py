"""Query cache keyed by (entity type, parent id) with explicit invalidation.

The cache is a lifecycle hook: register it on the network store and the
layout store and every mutation drops exactly the keys whose query results
it can change.

Invalidation triggers:

    site            (site, organization_id)
    building        (building, site_id)
    floor           (floor, building_id)
    zone            (zone, floor_id)
    element         (element, site_id)
    node            (node, site_id) and (node, building/floor/zone id),
                    old and new values on update
    connection      (connection, site_id), (connection, from/to node id)
    media           (media, element_id)
    layout          (layout, site_id), (layout, floor_id), its positions
                    and its annotations
    node position   (node_position, layout_id)
    annotation      (annotation, layout_id)

A rollback (snapshot restore) clears everything.

Example:
    cache = QueryCache()
    network.add_hook(cache)
    layouts.add_hook(cache)

    floors = cache.get_or_load(EntityType.FLOOR, building.id,
                               lambda: network.list_floors(building.id))
"""

import logging
import threading
from typing import Any, Callable, Dict, Iterable, Optional, Set, Tuple

from synoptics.core.hooks import EntityType, LifecycleHook

logger = logging.getLogger(__name__)

CacheKey = Tuple[EntityType, str]

# entity type -> record fields naming the parents whose listings it appears in
PARENT_FIELDS: Dict[EntityType, Tuple[str, ...]] = {
    EntityType.SITE: ("organization_id",),
    EntityType.BUILDING: ("site_id",),
    EntityType.FLOOR: ("building_id",),
    EntityType.ZONE: ("floor_id",),
    EntityType.ELEMENT: ("site_id",),
    EntityType.NODE: ("site_id", "building_id", "floor_id", "zone_id"),
    EntityType.CONNECTION: ("site_id", "from_node_id", "to_node_id"),
    EntityType.MEDIA: ("element_id",),
    EntityType.LAYOUT: ("site_id", "floor_id"),
    EntityType.ANNOTATION: ("layout_id",),
}


class QueryCache(LifecycleHook):
    """Memoizes listing queries per (entity type, parent id).

    Every key has a generation that each invalidation bumps. ``get_or_load``
    runs its loader outside the lock and only stores the result if the
    generation it started from is still current, so a write that commits
    while a listing is being loaded never leaves that listing cached.
    """

    def __init__(self):
        self._entries: Dict[CacheKey, Any] = {}
        self._generations: Dict[CacheKey, int] = {}
        self._epoch = 0
        self._lock = threading.Lock()
        self.hits = 0
        self.misses = 0

    # =========================================================================
    # Lookup
    # =========================================================================

    def get(self, entity_type: EntityType, parent_id: str) -> Optional[Any]:
        with self._lock:
            return self._entries.get((entity_type, parent_id))

    def put(self, entity_type: EntityType, parent_id: str, value: Any) -> None:
        with self._lock:
            self._entries[(entity_type, parent_id)] = value

    def _version(self, key: CacheKey) -> Tuple[int, int]:
        return self._epoch, self._generations.get(key, 0)

    def get_or_load(self, entity_type: EntityType, parent_id: str,
                    loader: Callable[[], Any]) -> Any:
        """Return the cached result or run ``loader`` and cache what it returns.

        The loaded value is returned either way; it is not cached when the
        key was invalidated while the loader ran.
        """
        key = (entity_type, parent_id)
        with self._lock:
            if key in self._entries:
                self.hits += 1
                return self._entries[key]
            self.misses += 1
            version = self._version(key)

        value = loader()
        with self._lock:
            if self._version(key) == version:
                self._entries[key] = value
            else:
                logger.debug(f"Discarded stale load of ({entity_type.value}, {parent_id})")
        return value

    def __contains__(self, key: CacheKey) -> bool:
        with self._lock:
            return key in self._entries

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    # =========================================================================
    # Invalidation
    # =========================================================================

    def invalidate(self, entity_type: EntityType, parent_ids: Iterable[Optional[str]]) -> None:
        with self._lock:
            for parent_id in parent_ids:
                if not parent_id:
                    continue
                key = (entity_type, parent_id)
                self._generations[key] = self._generations.get(key, 0) + 1
                if self._entries.pop(key, None) is not None:
                    logger.debug(f"Invalidated cache ({entity_type.value}, {parent_id})")

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
            self._generations.clear()
            self._epoch += 1

    def _parents(self, entity_type: EntityType, record: Any) -> Set[Optional[str]]:
        return {getattr(record, name, None) for name in PARENT_FIELDS.get(entity_type, ())}

    def _invalidate_record(self, entity_type: EntityType, entity_id: str, *records: Any) -> None:
        if entity_type == EntityType.NODE_POSITION:
            self.invalidate(EntityType.NODE_POSITION, [entity_id])
            return
        parents: Set[Optional[str]] = set()
        for record in records:
            parents |= self._parents(entity_type, record)
        self.invalidate(entity_type, parents)

    def on_created(self, entity_type: EntityType, entity_id: str, record: Any) -> None:
        self._invalidate_record(entity_type, entity_id, record)

    def on_updated(self, entity_type: EntityType, entity_id: str, old_record: Any,
                   new_record: Any) -> None:
        self._invalidate_record(entity_type, entity_id, old_record, new_record)

    def on_deleted(self, entity_type: EntityType, entity_id: str, record: Any) -> None:
        self._invalidate_record(entity_type, entity_id, record)
        if entity_type == EntityType.LAYOUT:
            self.invalidate(EntityType.NODE_POSITION, [entity_id])
            self.invalidate(EntityType.ANNOTATION, [entity_id])

    def on_restored(self, store: Any) -> None:
        self.clear()


__all__ = [
    "CacheKey",
    "PARENT_FIELDS",
    "QueryCache",
]
