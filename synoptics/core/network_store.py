"""
Network Store - equipment elements, placed nodes, connections and media.

Extends the Hierarchy Store (same lock, same snapshots) so placement
references and cascades are validated against one consistent state.

Validation before commit:
- Node placement: referenced building/floor/zone must exist and describe
  one location inside the node's site; ancestors are never backfilled
- Connections: no self loops, gas type equal on both endpoints, no
  duplicate directed edge (reverse edges by policy)
- Equipment creation is all-or-nothing: a rejected node keeps no element

Usage:
    from synoptics.core.network_store import NetworkStore

    store = NetworkStore()
    view = store.create_equipment(site.id, NodeType.VALVE, "oxygen", name="V-1",
                                  building_id=building.id, floor_id=floor.id)
    store.create_connection(source.id, view.id, "oxygen")
"""

import logging
import threading
from typing import Any, Dict, List, Optional, Tuple, Union

from synoptics.config.settings import is_enabled
from synoptics.core.errors import (
    DependentsExist,
    DuplicateConnection,
    GasTypeMismatch,
    InvalidElementType,
    InvalidPlacement,
    SelfConnection,
)
from synoptics.core.hierarchy_store import HierarchyStore
from synoptics.core.hooks import EntityType
from synoptics.models.enums import NodeType, ValveState, normalize_gas_type
from synoptics.models.hierarchy import GeoCoordinate
from synoptics.models.network import (
    Connection,
    Element,
    Media,
    Node,
    NodePatch,
    NodeView,
    ValveElement,
    build_element,
    element_from_dict,
)

logger = logging.getLogger(__name__)


class NetworkStore(HierarchyStore):
    """Thread-safe store for the hierarchy plus the gas network on top of it.

    Policy switches default to the feature flags of
    ``synoptics.config.settings`` and can be pinned per instance.
    """

    TABLES = HierarchyStore.TABLES + (
        EntityType.ELEMENT,
        EntityType.NODE,
        EntityType.CONNECTION,
        EntityType.MEDIA,
    )

    ELEMENT_FIXED_FIELDS = ("id", "site_id", "node_type", "created_at")

    def __init__(
        self,
        lock: Optional[threading.RLock] = None,
        enforce_placement: Optional[bool] = None,
        reject_reverse_connections: Optional[bool] = None,
    ):
        super().__init__(lock=lock)
        self._enforce_placement = enforce_placement
        self._reject_reverse = reject_reverse_connections

    @property
    def enforce_placement(self) -> bool:
        if self._enforce_placement is not None:
            return self._enforce_placement
        return is_enabled('enforce_placement')

    @property
    def reject_reverse_connections(self) -> bool:
        if self._reject_reverse is not None:
            return self._reject_reverse
        return is_enabled('reject_reverse_connections')

    # ========================================================================
    # Restrict-delete support
    # ========================================================================

    def _own_dependents(self, entity_type: EntityType, entity_id: str) -> Dict[str, int]:
        counts = super()._own_dependents(entity_type, entity_id)
        nodes = self._tables[EntityType.NODE].values()

        if entity_type == EntityType.SITE:
            for table in (EntityType.ELEMENT, EntityType.NODE, EntityType.CONNECTION, EntityType.MEDIA):
                n = sum(1 for r in self._tables[table].values() if r.site_id == entity_id)
                if n:
                    counts[f"{table.value}s" if table != EntityType.MEDIA else "media"] = n
            return counts

        anchor_field = {
            EntityType.BUILDING: "building_id",
            EntityType.FLOOR: "floor_id",
            EntityType.ZONE: "zone_id",
            EntityType.ELEMENT: "element_id",
        }.get(entity_type)
        if anchor_field:
            n = sum(1 for node in nodes if getattr(node, anchor_field) == entity_id)
            if n:
                counts["nodes"] = n
        return counts

    # ========================================================================
    # Placement validation
    # ========================================================================

    def _validate_placement(
        self,
        site_id: str,
        building_id: Optional[str],
        floor_id: Optional[str],
        zone_id: Optional[str],
    ) -> None:
        """Check a building/floor/zone triple against the node's site.

        Existence is always checked; consistency only when placement
        enforcement is on.

        Raises:
            NotFound: If a referenced building/floor/zone does not exist
            InvalidPlacement: If the references disagree with each other or the site
        """
        building = self._fetch(EntityType.BUILDING, building_id) if building_id else None
        floor = self._fetch(EntityType.FLOOR, floor_id) if floor_id else None
        zone = self._fetch(EntityType.ZONE, zone_id) if zone_id else None

        if not self.enforce_placement:
            return

        if floor is not None and building_id and floor.building_id != building_id:
            raise InvalidPlacement(
                f"Floor {floor_id} belongs to building {floor.building_id}, not {building_id}",
                floor_id=floor_id,
                building_id=building_id,
            )
        if zone is not None and floor_id and zone.floor_id != floor_id:
            raise InvalidPlacement(
                f"Zone {zone_id} belongs to floor {zone.floor_id}, not {floor_id}",
                zone_id=zone_id,
                floor_id=floor_id,
            )

        for entity_type, ref in ((EntityType.BUILDING, building), (EntityType.FLOOR, floor),
                                 (EntityType.ZONE, zone)):
            if ref is None:
                continue
            ref_site = self.site_id_of(entity_type, ref.id)
            if ref_site != site_id:
                raise InvalidPlacement(
                    f"{entity_type.value.capitalize()} {ref.id} belongs to site {ref_site}, "
                    f"not {site_id}",
                    site_id=site_id,
                    **{f"{entity_type.value}_id": ref.id},
                )

    # ========================================================================
    # Elements
    # ========================================================================

    def create_element(
        self,
        site_id: str,
        node_type: Union[NodeType, str],
        gas_type: str,
        name: Optional[str] = None,
        valve_type: Optional[str] = None,
        state: Optional[ValveState] = None,
        fitting_type: Optional[str] = None,
    ) -> Element:
        """Create a standalone element (valves start closed).

        Raises:
            NotFound: If the site does not exist
            ValueError: On attributes that do not belong to the variant
        """
        with self._lock:
            self._guard(site_id)
            self._fetch(EntityType.SITE, site_id)
            element = build_element(
                NodeType(node_type),
                id=self._new_id(),
                site_id=site_id,
                gas_type=gas_type,
                name=name,
                valve_type=valve_type,
                state=state,
                fitting_type=fitting_type,
            )
            return self._insert(EntityType.ELEMENT, element)

    def get_element(self, element_id: str) -> Element:
        return self.get_record(EntityType.ELEMENT, element_id)

    def list_elements(
        self,
        site_id: Optional[str] = None,
        node_type: Optional[Union[NodeType, str]] = None,
        gas_type: Optional[str] = None,
    ) -> List[Element]:
        return self._list(
            EntityType.ELEMENT,
            site_id=site_id,
            node_type=NodeType(node_type).value if node_type else None,
            gas_type=normalize_gas_type(gas_type) if gas_type else None,
        )

    def update_element(self, element_id: str, **changes: Any) -> Element:
        """Update element attributes.

        The variant (``node_type``) and ownership cannot change. Changing the
        gas type is refused while any node of the element has connections.

        Raises:
            NotFound: If the element does not exist
            ValueError: On fields the variant does not have
            GasTypeMismatch: If the gas change would break connected pipes
        """
        with self._lock:
            self._guard(element_id)
            current = self._fetch(EntityType.ELEMENT, element_id)

            allowed = [f for f in type(current).model_fields if f not in self.ELEMENT_FIXED_FIELDS]
            unknown = sorted(set(changes) - set(allowed))
            if unknown:
                raise ValueError(
                    f"Cannot update {', '.join(unknown)} on {current.node_type} elements; "
                    f"updatable fields: {', '.join(allowed)}"
                )

            data = current.model_dump()
            data.update(changes)
            updated = element_from_dict(data)

            if updated.gas_type != current.gas_type:
                node_ids = {n.id for n in self._tables[EntityType.NODE].values()
                            if n.element_id == element_id}
                connected = [c for c in self._tables[EntityType.CONNECTION].values()
                             if c.from_node_id in node_ids or c.to_node_id in node_ids]
                if connected:
                    raise GasTypeMismatch(
                        expected=current.gas_type,
                        actual=updated.gas_type,
                        message=(
                            f"Cannot change gas type of element {element_id} to {updated.gas_type}: "
                            f"{len(connected)} {current.gas_type} connection(s) are attached"
                        ),
                    )

            return self._replace(EntityType.ELEMENT, updated)

    def set_valve_state(self, element_id: str, state: Union[ValveState, str]) -> ValveElement:
        """Open or close a valve.

        Raises:
            InvalidElementType: If the element is not a valve
        """
        with self._lock:
            current = self._fetch(EntityType.ELEMENT, element_id)
            if not isinstance(current, ValveElement):
                raise InvalidElementType(element_id, current.node_type, NodeType.VALVE.value)
            return self.update_element(element_id, state=ValveState(state))

    def delete_element(self, element_id: str) -> bool:
        """Delete an element no node references, together with its media.

        Raises:
            DependentsExist: If a node still references the element
        """
        with self._lock:
            self._guard(element_id)
            self._fetch(EntityType.ELEMENT, element_id)
            counts = self.dependents(EntityType.ELEMENT, element_id)
            if counts:
                raise DependentsExist(EntityType.ELEMENT.value, element_id, counts)
            self._remove_element_with_media(element_id)
            return True

    def _remove_element_with_media(self, element_id: str) -> None:
        for media in [m for m in self._tables[EntityType.MEDIA].values() if m.element_id == element_id]:
            self._remove(EntityType.MEDIA, media.id)
        self._remove(EntityType.ELEMENT, element_id)

    # ========================================================================
    # Nodes
    # ========================================================================

    def create_node(
        self,
        site_id: str,
        element_id: str,
        building_id: Optional[str] = None,
        floor_id: Optional[str] = None,
        zone_id: Optional[str] = None,
        z_position: float = 0.0,
        outlet_count: int = 0,
        location: Optional[GeoCoordinate] = None,
    ) -> Node:
        """Place an existing element.

        Raises:
            NotFound: If the site, element or a placement reference is missing
            InvalidPlacement: If the element or placement belongs elsewhere
        """
        with self._lock:
            self._guard(site_id, element_id, building_id, floor_id, zone_id)
            self._fetch(EntityType.SITE, site_id)
            element = self._fetch(EntityType.ELEMENT, element_id)
            if element.site_id != site_id:
                raise InvalidPlacement(
                    f"Element {element_id} belongs to site {element.site_id}, not {site_id}",
                    element_id=element_id,
                    site_id=site_id,
                )
            self._validate_placement(site_id, building_id, floor_id, zone_id)

            if any(n.element_id == element_id for n in self._tables[EntityType.NODE].values()):
                logger.warning(f"Element {element_id} is now referenced by more than one node")

            node = Node(
                id=self._new_id(),
                site_id=site_id,
                node_type=NodeType(element.node_type),
                element_id=element_id,
                building_id=building_id,
                floor_id=floor_id,
                zone_id=zone_id,
                z_position=z_position,
                outlet_count=outlet_count,
                location=location,
            )
            return self._insert(EntityType.NODE, node)

    def create_equipment(
        self,
        site_id: str,
        node_type: Union[NodeType, str],
        gas_type: str,
        name: Optional[str] = None,
        valve_type: Optional[str] = None,
        state: Optional[ValveState] = None,
        fitting_type: Optional[str] = None,
        building_id: Optional[str] = None,
        floor_id: Optional[str] = None,
        zone_id: Optional[str] = None,
        z_position: float = 0.0,
        outlet_count: int = 0,
        location: Optional[GeoCoordinate] = None,
    ) -> NodeView:
        """Create an element and its node in one step.

        Everything is validated before anything is written, so a rejected
        placement leaves no element behind.
        """
        with self._lock:
            self._guard(site_id, building_id, floor_id, zone_id)
            self._fetch(EntityType.SITE, site_id)
            self._validate_placement(site_id, building_id, floor_id, zone_id)
            element = build_element(
                NodeType(node_type),
                id=self._new_id(),
                site_id=site_id,
                gas_type=gas_type,
                name=name,
                valve_type=valve_type,
                state=state,
                fitting_type=fitting_type,
            )
            node = Node(
                id=self._new_id(),
                site_id=site_id,
                node_type=NodeType(element.node_type),
                element_id=element.id,
                building_id=building_id,
                floor_id=floor_id,
                zone_id=zone_id,
                z_position=z_position,
                outlet_count=outlet_count,
                location=location,
            )
            element = self._insert(EntityType.ELEMENT, element)
            node = self._insert(EntityType.NODE, node)
            return NodeView(node=node, element=element)

    def get_node(self, node_id: str) -> Node:
        return self.get_record(EntityType.NODE, node_id)

    def get_node_view(self, node_id: str) -> NodeView:
        with self._lock:
            node = self._fetch(EntityType.NODE, node_id)
            element = self._fetch(EntityType.ELEMENT, node.element_id)
            return NodeView(node=node.model_copy(deep=True), element=element.model_copy(deep=True))

    def list_nodes(
        self,
        site_id: Optional[str] = None,
        building_id: Optional[str] = None,
        floor_id: Optional[str] = None,
        zone_id: Optional[str] = None,
        node_type: Optional[Union[NodeType, str]] = None,
    ) -> List[Node]:
        return self._list(
            EntityType.NODE,
            site_id=site_id,
            building_id=building_id,
            floor_id=floor_id,
            zone_id=zone_id,
            node_type=NodeType(node_type) if node_type else None,
        )

    def list_node_views(self, site_id: Optional[str] = None, **filters: Any) -> List[NodeView]:
        """Nodes joined with their elements, same filters as ``list_nodes``."""
        with self._lock:
            return [
                NodeView(
                    node=node,
                    element=self._fetch(EntityType.ELEMENT, node.element_id).model_copy(deep=True),
                )
                for node in self.list_nodes(site_id=site_id, **filters)
            ]

    def update_node(self, node_id: str, patch: Union[NodePatch, Dict[str, Any]]) -> Node:
        """Apply a partial update.

        Placement fields present in the patch are set or, when ``None``,
        cleared; absent fields are untouched. The resulting triple is
        validated as a whole and never auto-corrected.

        Raises:
            NotFound: If the node or a new placement reference is missing
            InvalidPlacement: If the resulting placement is inconsistent
        """
        if not isinstance(patch, NodePatch):
            patch = NodePatch(**patch)
        changes = patch.changes()

        with self._lock:
            self._guard(node_id, *(changes.get(f) for f in ("building_id", "floor_id", "zone_id")))
            current = self._fetch(EntityType.NODE, node_id)
            data = current.model_dump()
            data.update(changes)
            updated = Node.model_validate(data)
            if patch.touches_placement():
                self._validate_placement(updated.site_id, updated.building_id,
                                         updated.floor_id, updated.zone_id)
            return self._replace(EntityType.NODE, updated)

    def delete_node(self, node_id: str) -> bool:
        """Delete a node with its connections, its element and the element's media.

        An element still referenced by another node is kept.
        """
        with self._lock:
            self._guard(node_id)
            node = self._fetch(EntityType.NODE, node_id)
            for connection in self._connections_of(node_id):
                self._remove(EntityType.CONNECTION, connection.id)
            self._remove(EntityType.NODE, node_id)

            shared = any(n.element_id == node.element_id for n in self._tables[EntityType.NODE].values())
            if not shared and node.element_id in self._tables[EntityType.ELEMENT]:
                self._remove_element_with_media(node.element_id)
            return True

    # ========================================================================
    # Connections
    # ========================================================================

    def _connections_of(self, node_id: str) -> List[Connection]:
        return [c for c in self._tables[EntityType.CONNECTION].values() if c.touches(node_id)]

    def _endpoint_gas(self, node: Node) -> str:
        return self._fetch(EntityType.ELEMENT, node.element_id).gas_type

    def _check_gas(self, gas_type: str, *nodes: Node) -> None:
        for node in nodes:
            node_gas = self._endpoint_gas(node)
            if node_gas != gas_type:
                raise GasTypeMismatch(expected=gas_type, actual=node_gas, node_id=node.id)

    def _find_duplicate(self, from_node_id: str, to_node_id: str,
                        ignore_id: Optional[str] = None) -> Optional[Tuple[Connection, bool]]:
        for connection in self._tables[EntityType.CONNECTION].values():
            if connection.id == ignore_id:
                continue
            if connection.key == (from_node_id, to_node_id):
                return connection, False
            if self.reject_reverse_connections and connection.key == (to_node_id, from_node_id):
                return connection, True
        return None

    def create_connection(
        self,
        from_node_id: str,
        to_node_id: str,
        gas_type: str,
        diameter_mm: Optional[float] = None,
    ) -> Connection:
        """Connect two nodes with a pipe of one gas.

        Raises:
            SelfConnection: If both ends are the same node
            NotFound: If an endpoint does not exist
            InvalidPlacement: If the endpoints belong to different sites
            GasTypeMismatch: If an endpoint's element carries another gas
            DuplicateConnection: If the directed edge (or by policy its reverse) exists
        """
        if from_node_id == to_node_id:
            raise SelfConnection(from_node_id)
        gas_type = normalize_gas_type(gas_type)

        with self._lock:
            self._guard(from_node_id, to_node_id)
            source = self._fetch(EntityType.NODE, from_node_id)
            target = self._fetch(EntityType.NODE, to_node_id)
            if source.site_id != target.site_id:
                raise InvalidPlacement(
                    f"Nodes {from_node_id} and {to_node_id} belong to different sites",
                    from_node_id=from_node_id,
                    to_node_id=to_node_id,
                )
            self._check_gas(gas_type, source, target)

            duplicate = self._find_duplicate(from_node_id, to_node_id)
            if duplicate:
                existing, reverse = duplicate
                raise DuplicateConnection(from_node_id, to_node_id, existing.id, reverse=reverse)

            connection = Connection(
                id=self._new_id(),
                site_id=source.site_id,
                from_node_id=from_node_id,
                to_node_id=to_node_id,
                gas_type=gas_type,
                diameter_mm=diameter_mm,
            )
            return self._insert(EntityType.CONNECTION, connection)

    def get_connection(self, connection_id: str) -> Connection:
        return self.get_record(EntityType.CONNECTION, connection_id)

    def list_connections(
        self,
        site_id: Optional[str] = None,
        node_id: Optional[str] = None,
        gas_type: Optional[str] = None,
    ) -> List[Connection]:
        connections = self._list(
            EntityType.CONNECTION,
            site_id=site_id,
            gas_type=normalize_gas_type(gas_type) if gas_type else None,
        )
        if node_id:
            connections = [c for c in connections if c.touches(node_id)]
        return connections

    def update_connection(
        self,
        connection_id: str,
        gas_type: Optional[str] = None,
        diameter_mm: Optional[float] = None,
    ) -> Connection:
        """Change gas type and/or diameter, re-validating both endpoints.

        Raises:
            GasTypeMismatch: If the new gas differs from an endpoint's element
        """
        with self._lock:
            self._guard(connection_id)
            current = self._fetch(EntityType.CONNECTION, connection_id)
            data = current.model_dump()
            if gas_type is not None:
                data["gas_type"] = normalize_gas_type(gas_type)
            if diameter_mm is not None:
                data["diameter_mm"] = diameter_mm
            updated = Connection.model_validate(data)
            self._check_gas(
                updated.gas_type,
                self._fetch(EntityType.NODE, updated.from_node_id),
                self._fetch(EntityType.NODE, updated.to_node_id),
            )
            return self._replace(EntityType.CONNECTION, updated)

    def delete_connection(self, connection_id: str) -> bool:
        with self._lock:
            self._guard(connection_id)
            self._fetch(EntityType.CONNECTION, connection_id)
            self._remove(EntityType.CONNECTION, connection_id)
            return True

    # ========================================================================
    # Media
    # ========================================================================

    def create_media(
        self,
        element_id: str,
        storage_path: str,
        file_name: Optional[str] = None,
        mime_type: Optional[str] = None,
        label: Optional[str] = None,
    ) -> Media:
        """Attach a photo or document reference to an element."""
        with self._lock:
            self._guard(element_id)
            element = self._fetch(EntityType.ELEMENT, element_id)
            media = Media(
                id=self._new_id(),
                site_id=element.site_id,
                element_id=element_id,
                element_type=NodeType(element.node_type),
                storage_path=storage_path,
                file_name=file_name,
                mime_type=mime_type,
                label=label,
            )
            return self._insert(EntityType.MEDIA, media)

    def get_media(self, media_id: str) -> Media:
        return self.get_record(EntityType.MEDIA, media_id)

    def list_media(self, element_id: Optional[str] = None, site_id: Optional[str] = None) -> List[Media]:
        return self._list(EntityType.MEDIA, element_id=element_id, site_id=site_id)

    def delete_media(self, media_id: str) -> bool:
        with self._lock:
            self._guard(media_id)
            self._fetch(EntityType.MEDIA, media_id)
            self._remove(EntityType.MEDIA, media_id)
            return True


__all__ = ["NetworkStore"]
