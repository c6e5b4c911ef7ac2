"""
Cascade Resolver - dependency closure and atomic ordered deletion.

Deleting a site, building, floor or zone removes everything it owns
transitively. The resolver first reports the closure (counts per entity
type plus a human-readable summary) for the user to confirm, then deletes
deepest-first inside one transaction:

    connections -> node positions -> annotations -> layouts -> media -> nodes
    -> elements -> zones -> floors -> buildings -> anchor

Either every delete applies or the stores are restored from their
snapshots. The store lock is held for the whole transaction, so a
concurrent writer either lands before the cascade (and is swept up) or
after it (and finds its parent gone).

Usage:
    resolver = CascadeResolver(network_store, layout_store)

    report = resolver.compute_dependencies(EntityType.BUILDING, building.id)
    print(report.summary())
    resolver.cascade_delete(EntityType.BUILDING, building.id, expected_etag=report.etag)
"""

import hashlib
import json
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Set, Tuple, Union

from synoptics.core.errors import StaleConfirmation
from synoptics.core.hooks import EntityType
from synoptics.core.layout_store import LayoutStore
from synoptics.core.network_store import NetworkStore
from synoptics.managers.transaction_manager import (
    OperationExecutionError,
    TransactionManager,
)

logger = logging.getLogger(__name__)

ANCHOR_TYPES = (EntityType.SITE, EntityType.BUILDING, EntityType.FLOOR, EntityType.ZONE)


@dataclass
class DependencyReport:
    """Everything a cascade delete of the anchor would remove.

    Collections list the anchor's descendants and dependents; the anchor
    itself is not part of them. Identifier lists are sorted.
    """
    anchor_type: EntityType
    anchor_id: str
    anchor_name: str
    site_id: str
    buildings: List[str] = field(default_factory=list)
    floors: List[str] = field(default_factory=list)
    zones: List[str] = field(default_factory=list)
    layouts: List[str] = field(default_factory=list)
    annotations: List[str] = field(default_factory=list)
    nodes: List[str] = field(default_factory=list)
    elements: List[str] = field(default_factory=list)
    connections: List[str] = field(default_factory=list)
    media: List[str] = field(default_factory=list)
    node_positions: List[Tuple[str, str]] = field(default_factory=list)

    COLLECTIONS = (
        "buildings", "floors", "zones", "layouts", "annotations", "nodes",
        "elements", "connections", "media", "node_positions",
    )

    @property
    def counts(self) -> Dict[str, int]:
        return {name: len(getattr(self, name)) for name in self.COLLECTIONS}

    @property
    def total(self) -> int:
        return sum(self.counts.values())

    @property
    def etag(self) -> str:
        """SHA-256 over the anchor and every collected identifier."""
        canonical = {"anchor": [self.anchor_type.value, self.anchor_id]}
        for name in self.COLLECTIONS:
            canonical[name] = sorted(
                "/".join(item) if isinstance(item, tuple) else item
                for item in getattr(self, name)
            )
        canonical_json = json.dumps(canonical, sort_keys=True, separators=(",", ":"))
        return hashlib.sha256(canonical_json.encode()).hexdigest()

    def closure(self) -> Dict[str, EntityType]:
        """IDs guarded while the cascade runs (positions are keyed by layout/node)."""
        ids = {self.anchor_id: self.anchor_type}
        for name, entity_type in (
            ("buildings", EntityType.BUILDING),
            ("floors", EntityType.FLOOR),
            ("zones", EntityType.ZONE),
            ("layouts", EntityType.LAYOUT),
            ("annotations", EntityType.ANNOTATION),
            ("nodes", EntityType.NODE),
            ("elements", EntityType.ELEMENT),
            ("connections", EntityType.CONNECTION),
            ("media", EntityType.MEDIA),
        ):
            ids.update({entity_id: entity_type for entity_id in getattr(self, name)})
        return ids

    def summary(self) -> str:
        """Confirmation text listing what will be destroyed."""
        label = self.anchor_type.value.replace("_", " ")
        parts = [
            f"{n} {name.replace('_', ' ') if n != 1 else _SINGULAR[name]}"
            for name, n in self.counts.items() if n
        ]
        if not parts:
            return f"Deleting {label} '{self.anchor_name}' removes nothing else."
        return f"Deleting {label} '{self.anchor_name}' will also permanently delete: {', '.join(parts)}."

    def to_dict(self) -> Dict[str, Any]:
        data = {name: list(getattr(self, name)) for name in self.COLLECTIONS}
        data["node_positions"] = [
            {"layout_id": layout_id, "node_id": node_id} for layout_id, node_id in self.node_positions
        ]
        data.update({
            "anchor_type": self.anchor_type.value,
            "anchor_id": self.anchor_id,
            "anchor_name": self.anchor_name,
            "site_id": self.site_id,
            "counts": self.counts,
            "total": self.total,
            "etag": self.etag,
            "summary": self.summary(),
        })
        return data


_SINGULAR = {
    "buildings": "building",
    "floors": "floor",
    "zones": "zone",
    "layouts": "layout",
    "annotations": "annotation",
    "nodes": "node",
    "elements": "element",
    "connections": "connection",
    "media": "media file",
    "node_positions": "node position",
}


class CascadeResolver:
    """Computes dependency closures and performs atomic cascade deletes."""

    def __init__(self, network: NetworkStore, layouts: LayoutStore,
                 transaction_manager: Optional[TransactionManager] = None):
        self._network = network
        self._layouts = layouts
        self._tx = transaction_manager or TransactionManager(
            {"network": network, "layouts": layouts}
        )

    @property
    def transaction_manager(self) -> TransactionManager:
        return self._tx

    # ========================================================================
    # Dependency closure
    # ========================================================================

    def compute_dependencies(self, anchor_type: Union[EntityType, str], anchor_id: str) -> DependencyReport:
        """Collect every row owned by the anchor, without mutating anything.

        Raises:
            ValueError: If the anchor type is not a hierarchy level
            NotFound: If the anchor does not exist
        """
        anchor_type = EntityType(anchor_type)
        if anchor_type not in ANCHOR_TYPES:
            raise ValueError(
                f"Cascade anchors must be one of {', '.join(t.value for t in ANCHOR_TYPES)}, "
                f"got {anchor_type.value}"
            )

        net = self._network
        with net.lock:
            anchor = net.get_record(anchor_type, anchor_id)
            site_id = net.site_id_of(anchor_type, anchor_id)
            anchor_name = getattr(anchor, "display_name", None) or anchor.name

            # Containment closure, anchor included
            building_ids: Set[str] = set()
            floor_ids: Set[str] = set()
            zone_ids: Set[str] = set()
            if anchor_type == EntityType.SITE:
                building_ids = {b.id for b in net.list_buildings(site_id)}
            elif anchor_type == EntityType.BUILDING:
                building_ids = {anchor_id}
            elif anchor_type == EntityType.FLOOR:
                floor_ids = {anchor_id}
            else:
                zone_ids = {anchor_id}
            for building_id in building_ids:
                floor_ids |= {f.id for f in net.list_floors(building_id)}
            for floor_id in floor_ids:
                zone_ids |= {z.id for z in net.list_zones(floor_id)}

            # Anchored nodes are matched across every site: with placement
            # enforcement off a node may point at another site's hierarchy
            all_nodes = net.list_nodes()
            nodes = [
                n for n in all_nodes
                if (anchor_type == EntityType.SITE and n.site_id == site_id)
                or n.building_id in building_ids or n.floor_id in floor_ids or n.zone_id in zone_ids
            ]
            node_ids = {n.id for n in nodes}

            kept_elements = {n.element_id for n in all_nodes if n.id not in node_ids}
            element_ids = {n.element_id for n in nodes} - kept_elements
            if anchor_type == EntityType.SITE:
                element_ids |= {e.id for e in net.list_elements(site_id)}
            media_ids = {m.id for m in net.list_media() if m.element_id in element_ids}
            connection_ids = {
                c.id for c in net.list_connections()
                if c.from_node_id in node_ids or c.to_node_id in node_ids
            }

            all_layouts = self._layouts.list_layouts()
            layout_ids = {
                layout.id for layout in all_layouts
                if (anchor_type == EntityType.SITE and layout.site_id == site_id)
                or layout.floor_id in floor_ids
            }
            annotation_ids = {
                annotation.id for layout_id in layout_ids
                for annotation in self._layouts.list_annotations(layout_id)
            }

            positions: Set[Tuple[str, str]] = set()
            for layout in all_layouts:
                for node_id in layout.positions:
                    if layout.id in layout_ids or node_id in node_ids:
                        positions.add((layout.id, node_id))

            building_ids.discard(anchor_id)
            floor_ids.discard(anchor_id)
            zone_ids.discard(anchor_id)

            report = DependencyReport(
                anchor_type=anchor_type,
                anchor_id=anchor_id,
                anchor_name=anchor_name,
                site_id=site_id,
                buildings=sorted(building_ids),
                floors=sorted(floor_ids),
                zones=sorted(zone_ids),
                layouts=sorted(layout_ids),
                annotations=sorted(annotation_ids),
                nodes=sorted(node_ids),
                elements=sorted(element_ids),
                connections=sorted(connection_ids),
                media=sorted(media_ids),
                node_positions=sorted(positions),
            )
            logger.debug(f"Dependencies of {anchor_type.value} {anchor_id}: {report.counts}")
            return report

    # ========================================================================
    # Cascade delete
    # ========================================================================

    def _plan(self, report: DependencyReport) -> List[Tuple[str, Dict[str, Any], Callable[[Dict[str, Any]], Any]]]:
        net, layouts = self._network, self._layouts

        def purge(entity_type: EntityType) -> Callable[[Dict[str, Any]], Any]:
            return lambda params: net.purge(entity_type, params["entity_id"])

        plan = []
        plan += [("delete_connection", {"entity_id": cid}, purge(EntityType.CONNECTION))
                 for cid in report.connections]
        plan += [
            ("delete_node_position", {"entity_id": f"{lid}/{nid}", "layout_id": lid, "node_id": nid},
             lambda params: layouts.purge_position(params["layout_id"], params["node_id"]))
            for lid, nid in report.node_positions
        ]
        plan += [("delete_annotation", {"entity_id": aid},
                  lambda params: layouts.purge_annotation(params["entity_id"]))
                 for aid in report.annotations]
        plan += [("delete_layout", {"entity_id": lid}, lambda params: layouts.purge(params["entity_id"]))
                 for lid in report.layouts]
        plan += [("delete_media", {"entity_id": mid}, purge(EntityType.MEDIA)) for mid in report.media]
        plan += [("delete_node", {"entity_id": nid}, purge(EntityType.NODE)) for nid in report.nodes]
        plan += [("delete_element", {"entity_id": eid}, purge(EntityType.ELEMENT)) for eid in report.elements]
        plan += [("delete_zone", {"entity_id": zid}, purge(EntityType.ZONE)) for zid in report.zones]
        plan += [("delete_floor", {"entity_id": fid}, purge(EntityType.FLOOR)) for fid in report.floors]
        plan += [("delete_building", {"entity_id": bid}, purge(EntityType.BUILDING))
                 for bid in report.buildings]
        plan.append((f"delete_{report.anchor_type.value}", {"entity_id": report.anchor_id},
                     purge(report.anchor_type)))
        return plan

    def cascade_delete(
        self,
        anchor_type: Union[EntityType, str],
        anchor_id: str,
        expected_etag: Optional[str] = None,
    ) -> DependencyReport:
        """Delete the anchor and everything it owns, atomically.

        Args:
            anchor_type: site, building, floor or zone
            anchor_id: Anchor identifier
            expected_etag: Etag of the report the user confirmed

        Returns:
            The report of what was deleted

        Raises:
            NotFound: If the anchor does not exist
            StaleConfirmation: If the closure changed since the confirmed report
            CascadeInProgress: If the closure overlaps a cascade already running
            OperationExecutionError: If a delete failed (all changes rolled back)
        """
        with self._network.lock:
            report = self.compute_dependencies(anchor_type, anchor_id)
            if expected_etag is not None and report.etag != expected_etag:
                raise StaleConfirmation(expected_etag, report.etag)

            closure = report.closure()
            self._network.enter_cascade(closure)
            try:
                tx_id = self._tx.begin(metadata={
                    "anchor_type": report.anchor_type.value,
                    "anchor_id": anchor_id,
                })
                logger.info(
                    f"Cascade delete of {report.anchor_type.value} {anchor_id} started "
                    f"({report.total} dependent rows)"
                )
                try:
                    for operation, params, executor in self._plan(report):
                        self._tx.apply(tx_id, operation, params, executor)
                except OperationExecutionError as e:
                    self._tx.rollback(tx_id)
                    logger.error(f"Cascade delete of {report.anchor_type.value} {anchor_id} rolled back: {e}")
                    raise
                result = self._tx.commit(tx_id)
            finally:
                self._network.exit_cascade(closure)

        logger.info(
            f"Cascade delete of {report.anchor_type.value} {anchor_id} committed "
            f"({result.operations_applied} operations)"
        )
        return report


__all__ = [
    "ANCHOR_TYPES",
    "DependencyReport",
    "CascadeResolver",
]
