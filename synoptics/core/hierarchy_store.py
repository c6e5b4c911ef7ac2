"""
Hierarchy Store - thread-safe storage of the site -> building -> floor -> zone tree.

This module provides:
- CRUD per hierarchy level with parent validation (NotFound on missing parent)
- RESTRICT deletes (DependentsExist while children or anchored rows remain)
- Lifecycle hooks for caching, orphan cleanup and auditing
- Snapshot/restore of the full table state for transactions
- Cascade guard used by the Cascade Resolver (CascadeInProgress)

Usage:
    from synoptics.core.hierarchy_store import HierarchyStore

    store = HierarchyStore()
    site = store.create_site("org-1", "General Hospital")
    building = store.create_building(site.id, "Main")
    floor = store.create_floor(building.id, floor_number=2)

    tree = store.get_site_hierarchy(site.id)
"""

import logging
import threading
import uuid
from copy import deepcopy
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

from pydantic import BaseModel

from synoptics.core.errors import CascadeInProgress, DependentsExist, NotFound
from synoptics.core.hooks import EntityType, HookRegistry
from synoptics.models.hierarchy import (
    Building,
    BuildingTree,
    Floor,
    FloorTree,
    GeoCoordinate,
    Site,
    SiteTree,
    Zone,
)

logger = logging.getLogger(__name__)

# Callable returning {dependent name: count} for (entity_type, entity_id)
DependentsCounter = Callable[[EntityType, str], Dict[str, int]]


@dataclass
class StoreSnapshot:
    """Deep copy of every table of a store, used for rollback.

    Attributes:
        timestamp: When the snapshot was created
        state: Table name -> {id: record}
        label: Optional human-readable label
    """
    timestamp: datetime
    state: Dict[EntityType, Dict[str, Any]]
    label: Optional[str] = None


class HierarchyStore(HookRegistry):
    """Thread-safe in-memory store for sites, buildings, floors and zones.

    Records are returned as deep copies; mutate them through the ``update_*``
    methods. All tables share one re-entrant lock so that a transaction can
    hold it across several operations.
    """

    TABLES: Tuple[EntityType, ...] = (
        EntityType.SITE,
        EntityType.BUILDING,
        EntityType.FLOOR,
        EntityType.ZONE,
    )

    UPDATABLE_FIELDS: Dict[EntityType, Tuple[str, ...]] = {
        EntityType.SITE: ("name", "address", "location"),
        EntityType.BUILDING: ("name", "location"),
        EntityType.FLOOR: ("floor_number", "name"),
        EntityType.ZONE: ("name",),
    }

    def __init__(self, lock: Optional[threading.RLock] = None):
        super().__init__()
        self._lock = lock or threading.RLock()
        self._tables: Dict[EntityType, Dict[str, BaseModel]] = {t: {} for t in self.TABLES}
        self._cascade_closure: Dict[str, EntityType] = {}
        self._dependent_counters: List[DependentsCounter] = []

    @property
    def lock(self) -> threading.RLock:
        """Store lock; hold it to run several operations atomically."""
        return self._lock

    # ========================================================================
    # Generic table helpers
    # ========================================================================

    @staticmethod
    def _new_id() -> str:
        return str(uuid.uuid4())

    def _fetch(self, entity_type: EntityType, entity_id: Optional[str]) -> Any:
        """Live record or NotFound (caller holds the lock)."""
        record = self._tables[entity_type].get(entity_id) if entity_id else None
        if record is None:
            raise NotFound(entity_type.value, str(entity_id))
        return record

    def _insert(self, entity_type: EntityType, record: Any) -> Any:
        self._tables[entity_type][record.id] = record
        logger.debug(f"Created {entity_type.value}: {record.id}")
        self._dispatch("on_created", entity_type, record.id, record)
        return record.model_copy(deep=True)

    def _replace(self, entity_type: EntityType, record: Any) -> Any:
        old = self._tables[entity_type][record.id]
        self._tables[entity_type][record.id] = record
        logger.debug(f"Updated {entity_type.value}: {record.id}")
        self._dispatch("on_updated", entity_type, record.id, old, record)
        return record.model_copy(deep=True)

    def _remove(self, entity_type: EntityType, entity_id: str) -> Any:
        record = self._tables[entity_type].pop(entity_id)
        logger.debug(f"Deleted {entity_type.value}: {entity_id}")
        self._dispatch("on_deleted", entity_type, entity_id, record)
        return record

    def _apply_changes(self, entity_type: EntityType, record: Any, changes: Dict[str, Any]) -> Any:
        """Validate a partial update into a new record.

        Raises:
            ValueError: On fields that cannot be updated
        """
        allowed = self.UPDATABLE_FIELDS[entity_type]
        unknown = sorted(set(changes) - set(allowed))
        if unknown:
            raise ValueError(
                f"Cannot update {', '.join(unknown)} on {entity_type.value}; "
                f"updatable fields: {', '.join(allowed)}"
            )
        data = record.model_dump()
        data.update(changes)
        return type(record).model_validate(data)

    def _list(self, entity_type: EntityType, **filters: Any) -> List[Any]:
        with self._lock:
            return [
                record.model_copy(deep=True)
                for record in self._tables[entity_type].values()
                if all(getattr(record, name) == value
                       for name, value in filters.items() if value is not None)
            ]

    def get_record(self, entity_type: EntityType, entity_id: str) -> Any:
        """Get a deep copy of any stored record by type.

        Raises:
            NotFound: If the record does not exist
        """
        with self._lock:
            return self._fetch(entity_type, entity_id).model_copy(deep=True)

    def exists(self, entity_type: EntityType, entity_id: str) -> bool:
        with self._lock:
            return entity_id in self._tables[entity_type]

    # ========================================================================
    # Cascade guard
    # ========================================================================

    def _guard(self, *entity_ids: Optional[str]) -> None:
        for entity_id in entity_ids:
            if entity_id and entity_id in self._cascade_closure:
                raise CascadeInProgress(self._cascade_closure[entity_id].value, entity_id)

    def enter_cascade(self, closure: Dict[str, EntityType]) -> None:
        """Mark ids as being cascade-deleted.

        Raises:
            CascadeInProgress: If any id already belongs to an open cascade
        """
        with self._lock:
            self._guard(*closure)
            self._cascade_closure.update(closure)

    def exit_cascade(self, closure: Iterable[str]) -> None:
        with self._lock:
            for entity_id in closure:
                self._cascade_closure.pop(entity_id, None)

    def in_cascade(self, entity_id: str) -> bool:
        with self._lock:
            return entity_id in self._cascade_closure

    def purge(self, entity_type: EntityType, entity_id: str) -> Any:
        """Remove a row without restrict checks (cascade resolver only).

        Raises:
            NotFound: If the record does not exist
        """
        with self._lock:
            self._fetch(entity_type, entity_id)
            return self._remove(entity_type, entity_id)

    # ========================================================================
    # Restrict-delete support
    # ========================================================================

    def register_dependents(self, counter: DependentsCounter) -> None:
        """Register an extra source of dependents (e.g. layouts of a floor)."""
        if counter not in self._dependent_counters:
            self._dependent_counters.append(counter)

    def _own_dependents(self, entity_type: EntityType, entity_id: str) -> Dict[str, int]:
        children = {
            EntityType.SITE: (EntityType.BUILDING, "site_id"),
            EntityType.BUILDING: (EntityType.FLOOR, "building_id"),
            EntityType.FLOOR: (EntityType.ZONE, "floor_id"),
        }
        counts: Dict[str, int] = {}
        if entity_type in children:
            child_type, parent_field = children[entity_type]
            n = sum(1 for r in self._tables[child_type].values()
                    if getattr(r, parent_field) == entity_id)
            if n:
                counts[f"{child_type.value}s"] = n
        return counts

    def dependents(self, entity_type: EntityType, entity_id: str) -> Dict[str, int]:
        """Count rows that block a restrict delete of the given entity."""
        with self._lock:
            counts = self._own_dependents(entity_type, entity_id)
            for counter in self._dependent_counters:
                for name, n in counter(entity_type, entity_id).items():
                    if n:
                        counts[name] = counts.get(name, 0) + n
            return counts

    def _restrict_delete(self, entity_type: EntityType, entity_id: str) -> bool:
        with self._lock:
            self._guard(entity_id)
            self._fetch(entity_type, entity_id)
            counts = self.dependents(entity_type, entity_id)
            if counts:
                raise DependentsExist(entity_type.value, entity_id, counts)
            self._remove(entity_type, entity_id)
            return True

    # ========================================================================
    # Sites
    # ========================================================================

    def create_site(self, organization_id: str, name: str, address: Optional[str] = None,
                    location: Optional[GeoCoordinate] = None) -> Site:
        site = Site(
            id=self._new_id(),
            organization_id=organization_id,
            name=name,
            address=address,
            location=location,
        )
        with self._lock:
            return self._insert(EntityType.SITE, site)

    def get_site(self, site_id: str) -> Site:
        return self.get_record(EntityType.SITE, site_id)

    def list_sites(self, organization_id: Optional[str] = None) -> List[Site]:
        return self._list(EntityType.SITE, organization_id=organization_id)

    def update_site(self, site_id: str, **changes: Any) -> Site:
        with self._lock:
            self._guard(site_id)
            current = self._fetch(EntityType.SITE, site_id)
            return self._replace(EntityType.SITE, self._apply_changes(EntityType.SITE, current, changes))

    def delete_site(self, site_id: str) -> bool:
        """Delete an empty site.

        Raises:
            DependentsExist: If the site still owns any row
        """
        return self._restrict_delete(EntityType.SITE, site_id)

    # ========================================================================
    # Buildings
    # ========================================================================

    def create_building(self, site_id: str, name: str,
                        location: Optional[GeoCoordinate] = None) -> Building:
        with self._lock:
            self._guard(site_id)
            self._fetch(EntityType.SITE, site_id)
            building = Building(id=self._new_id(), site_id=site_id, name=name, location=location)
            return self._insert(EntityType.BUILDING, building)

    def get_building(self, building_id: str) -> Building:
        return self.get_record(EntityType.BUILDING, building_id)

    def list_buildings(self, site_id: Optional[str] = None) -> List[Building]:
        return self._list(EntityType.BUILDING, site_id=site_id)

    def update_building(self, building_id: str, **changes: Any) -> Building:
        with self._lock:
            self._guard(building_id)
            current = self._fetch(EntityType.BUILDING, building_id)
            updated = self._apply_changes(EntityType.BUILDING, current, changes)
            return self._replace(EntityType.BUILDING, updated)

    def delete_building(self, building_id: str) -> bool:
        return self._restrict_delete(EntityType.BUILDING, building_id)

    # ========================================================================
    # Floors
    # ========================================================================

    def create_floor(self, building_id: str, floor_number: int, name: Optional[str] = None) -> Floor:
        with self._lock:
            self._guard(building_id)
            self._fetch(EntityType.BUILDING, building_id)
            floor = Floor(id=self._new_id(), building_id=building_id,
                          floor_number=floor_number, name=name)
            return self._insert(EntityType.FLOOR, floor)

    def get_floor(self, floor_id: str) -> Floor:
        return self.get_record(EntityType.FLOOR, floor_id)

    def list_floors(self, building_id: Optional[str] = None) -> List[Floor]:
        """Floors ordered by floor number (ties keep creation order)."""
        floors = self._list(EntityType.FLOOR, building_id=building_id)
        return sorted(floors, key=lambda f: f.floor_number)

    def update_floor(self, floor_id: str, **changes: Any) -> Floor:
        with self._lock:
            self._guard(floor_id)
            current = self._fetch(EntityType.FLOOR, floor_id)
            return self._replace(EntityType.FLOOR, self._apply_changes(EntityType.FLOOR, current, changes))

    def delete_floor(self, floor_id: str) -> bool:
        """Delete a floor with no zones, anchored nodes or floor layouts.

        Raises:
            DependentsExist: If anything still depends on the floor
        """
        return self._restrict_delete(EntityType.FLOOR, floor_id)

    # ========================================================================
    # Zones
    # ========================================================================

    def create_zone(self, floor_id: str, name: str) -> Zone:
        with self._lock:
            self._guard(floor_id)
            self._fetch(EntityType.FLOOR, floor_id)
            zone = Zone(id=self._new_id(), floor_id=floor_id, name=name)
            return self._insert(EntityType.ZONE, zone)

    def get_zone(self, zone_id: str) -> Zone:
        return self.get_record(EntityType.ZONE, zone_id)

    def list_zones(self, floor_id: Optional[str] = None) -> List[Zone]:
        return sorted(self._list(EntityType.ZONE, floor_id=floor_id), key=lambda z: z.name)

    def update_zone(self, zone_id: str, **changes: Any) -> Zone:
        with self._lock:
            self._guard(zone_id)
            current = self._fetch(EntityType.ZONE, zone_id)
            return self._replace(EntityType.ZONE, self._apply_changes(EntityType.ZONE, current, changes))

    def delete_zone(self, zone_id: str) -> bool:
        return self._restrict_delete(EntityType.ZONE, zone_id)

    # ========================================================================
    # Tree queries
    # ========================================================================

    def site_id_of(self, entity_type: EntityType, entity_id: str) -> str:
        """Resolve the owning site of a hierarchy entity.

        Raises:
            NotFound: If the entity or one of its ancestors is missing
        """
        with self._lock:
            if entity_type == EntityType.ZONE:
                entity_type, entity_id = EntityType.FLOOR, self._fetch(EntityType.ZONE, entity_id).floor_id
            if entity_type == EntityType.FLOOR:
                entity_type, entity_id = EntityType.BUILDING, self._fetch(EntityType.FLOOR, entity_id).building_id
            if entity_type == EntityType.BUILDING:
                return self._fetch(EntityType.BUILDING, entity_id).site_id
            if entity_type == EntityType.SITE:
                return self._fetch(EntityType.SITE, entity_id).id
            return self._fetch(entity_type, entity_id).site_id

    def get_site_hierarchy(self, site_id: str) -> SiteTree:
        """Nested tree: buildings -> floors (by number) -> zones (by name).

        Raises:
            NotFound: If the site does not exist
        """
        with self._lock:
            site = self.get_site(site_id)
            buildings = []
            for building in self.list_buildings(site_id):
                floors = [
                    FloorTree(floor=floor, zones=self.list_zones(floor.id))
                    for floor in self.list_floors(building.id)
                ]
                buildings.append(BuildingTree(building=building, floors=floors))
            return SiteTree(site=site, buildings=buildings)

    # ========================================================================
    # Snapshots
    # ========================================================================

    def create_snapshot(self, label: Optional[str] = None) -> StoreSnapshot:
        """Deep copy of all tables."""
        with self._lock:
            snapshot = StoreSnapshot(
                timestamp=datetime.now(),
                state=deepcopy(self._tables),
                label=label,
            )
            logger.debug(f"Created snapshot of {type(self).__name__}: {label or 'unlabeled'}")
            return snapshot

    def restore_snapshot(self, snapshot: StoreSnapshot) -> None:
        """Replace all tables with the snapshot state."""
        with self._lock:
            self._tables = deepcopy(snapshot.state)
            logger.debug(
                f"Restored {type(self).__name__} to snapshot: {snapshot.label or snapshot.timestamp}"
            )
            self._dispatch("on_restored", self)

    def counts(self) -> Dict[str, int]:
        with self._lock:
            return {t.value: len(rows) for t, rows in self._tables.items()}


__all__ = [
    "StoreSnapshot",
    "HierarchyStore",
    "DependentsCounter",
]
