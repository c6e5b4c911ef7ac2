"""Plain-data operations for the external UI/API layer.

Every operation takes an ``arguments`` dict and returns an envelope:

    {"ok": true, "data": ...}
    {"ok": false, "error": {"message": ..., "code": ..., "details": ...}}

Typed store errors map to their stable ``code``; a cascade whose deletes
failed and were rolled back reports ``cascade_failed``.

Example:
    tools = SynopticsTools()
    site = tools.handle_tool("site_create", {"organization_id": "org", "name": "North"})
    report = tools.handle_tool("dependencies_get", {"anchor_type": "site",
                                                    "anchor_id": site["data"]["id"]})
    tools.handle_tool("cascade_delete", {"anchor_type": "site",
                                         "anchor_id": site["data"]["id"],
                                         "etag": report["data"]["etag"]})
"""

import logging
from typing import Any, Callable, Dict, List, Optional, Tuple

from pydantic import BaseModel, ValidationError

from synoptics.config.settings import is_enabled
from synoptics.core.analysis import NetworkAnalyzer
from synoptics.core.cache import QueryCache
from synoptics.core.cascade import CascadeResolver
from synoptics.core.errors import SynopticsError
from synoptics.core.hooks import EntityType
from synoptics.core.layout_store import LayoutStore
from synoptics.core.network_store import NetworkStore
from synoptics.layout.engines import get_engine
from synoptics.layout.engines.column import ColumnLayoutEngine
from synoptics.layout.routing import compute_route
from synoptics.managers.transaction_manager import OperationExecutionError
from synoptics.models.enums import LayoutType, Side, get_gas_config, get_gas_line_color
from synoptics.models.layout_metadata import ColumnLayoutConfig, NodePosition, RouterConfig
from synoptics.models.network import NodePatch
from synoptics.utils.response import (
    error_from_exception,
    error_response,
    success_response,
    validation_response,
)

logger = logging.getLogger(__name__)

Point = Tuple[float, float]


def _dump(record: Any) -> Any:
    if isinstance(record, BaseModel):
        return record.model_dump(mode="json")
    return record


def _dump_all(records: List[Any]) -> List[Any]:
    return [_dump(r) for r in records]


def _pick(args: dict, *names: str) -> Dict[str, Any]:
    """Subset of ``args`` limited to the keys actually present."""
    return {name: args[name] for name in names if name in args}


def choose_sides(source: Point, target: Point) -> Tuple[Side, Side]:
    """Connector sides for two positioned nodes.

    Mostly-vertical pairs run bottom to top (or top to bottom when the target
    sits above); everything else runs right to left (or left to right).
    """
    dx = target[0] - source[0]
    dy = target[1] - source[1]
    if abs(dy) > abs(dx):
        return (Side.BOTTOM, Side.TOP) if dy >= 0 else (Side.TOP, Side.BOTTOM)
    return (Side.RIGHT, Side.LEFT) if dx >= 0 else (Side.LEFT, Side.RIGHT)


class SynopticsTools:
    """Facade over the stores, the cascade resolver, the engines and the router."""

    def __init__(
        self,
        network: Optional[NetworkStore] = None,
        layouts: Optional[LayoutStore] = None,
        column_config: Optional[ColumnLayoutConfig] = None,
        router_config: Optional[RouterConfig] = None,
    ):
        """Initialize with optional pre-built stores and tunables.

        Args:
            network: Network store (created if not provided)
            layouts: Layout store bound to ``network`` (created if not provided)
            column_config: Column layout tunables (defaults, zone columns per flag)
            router_config: Connector router tunables
        """
        self.network = network if network is not None else NetworkStore()
        self.layouts = layouts if layouts is not None else LayoutStore(self.network)
        if self.layouts.network is not self.network:
            raise ValueError("Layout store must be bound to the given network store")

        self.resolver = CascadeResolver(self.network, self.layouts)
        self.cache = QueryCache()
        self.network.add_hook(self.cache)
        self.layouts.add_hook(self.cache)

        self.column_config = column_config or ColumnLayoutConfig(
            zone_columns=is_enabled("zone_columns")
        )
        self.router_config = router_config or RouterConfig()

    def get_operations(self) -> List[str]:
        return sorted(self._handlers())

    def _handlers(self) -> Dict[str, Callable[[dict], dict]]:
        return {
            # Hierarchy
            "site_create": self._create_site,
            "site_get": self._get_site,
            "site_list": self._list_sites,
            "site_update": self._update_site,
            "site_delete": self._delete_site,
            "site_hierarchy": self._site_hierarchy,
            "building_create": self._create_building,
            "building_get": self._get_building,
            "building_list": self._list_buildings,
            "building_update": self._update_building,
            "building_delete": self._delete_building,
            "floor_create": self._create_floor,
            "floor_get": self._get_floor,
            "floor_list": self._list_floors,
            "floor_update": self._update_floor,
            "floor_delete": self._delete_floor,
            "zone_create": self._create_zone,
            "zone_get": self._get_zone,
            "zone_list": self._list_zones,
            "zone_update": self._update_zone,
            "zone_delete": self._delete_zone,
            # Network
            "equipment_create": self._create_equipment,
            "node_get": self._get_node,
            "node_list": self._list_nodes,
            "node_update": self._update_node,
            "node_delete": self._delete_node,
            "element_update": self._update_element,
            "valve_set_state": self._set_valve_state,
            "connection_create": self._create_connection,
            "connection_list": self._list_connections,
            "connection_update": self._update_connection,
            "connection_delete": self._delete_connection,
            "media_create": self._create_media,
            "media_list": self._list_media,
            "media_delete": self._delete_media,
            # Cascade
            "dependencies_get": self._get_dependencies,
            "cascade_delete": self._cascade_delete,
            # Layouts
            "layout_create": self._create_layout,
            "layout_get": self._get_layout,
            "layout_list": self._list_layouts,
            "layout_update": self._update_layout,
            "layout_delete": self._delete_layout,
            "layout_save_to_file": self._save_to_file,
            "layout_load_from_file": self._load_from_file,
            "layout_import_nodes": self._import_nodes,
            "layout_auto": self._auto_layout,
            "layout_view": self._get_layout_view,
            "position_set": self._set_position,
            "position_delete": self._delete_position,
            "route_connection": self._route_connection,
            # Annotations
            "annotation_create": self._create_annotation,
            "annotation_get": self._get_annotation,
            "annotation_list": self._list_annotations,
            "annotation_update": self._update_annotation,
            "annotation_delete": self._delete_annotation,
            "annotation_bulk_save": self._save_annotations,
            "annotation_bulk_delete": self._delete_annotations,
            # Analysis
            "downstream_nodes": self._downstream_nodes,
            "valve_impact": self._valve_impact,
            "network_stats": self._network_stats,
            "network_validate": self._network_validate,
        }

    def handle_tool(self, name: str, arguments: Optional[dict] = None) -> dict:
        """Route an operation call to its handler.

        Args:
            name: Operation name
            arguments: Operation arguments

        Returns:
            Standardized response
        """
        handler = self._handlers().get(name)
        if not handler:
            return error_response(f"Unknown operation: {name}", code="unknown_operation")

        try:
            return handler(arguments or {})
        except SynopticsError as e:
            return error_from_exception(e)
        except OperationExecutionError as e:
            cause = e.__cause__
            details = cause.to_dict() if isinstance(cause, SynopticsError) else None
            return error_response(
                f"{e}. No changes were applied.", code="cascade_failed", details=details
            )
        except ValidationError as e:
            return error_response(
                f"Invalid arguments for {name}",
                code="invalid_arguments",
                details={"errors": e.errors(include_url=False, include_context=False)},
            )
        except (KeyError, TypeError, ValueError) as e:
            return error_response(f"Invalid arguments for {name}: {e}", code="invalid_arguments")
        except FileNotFoundError as e:
            return error_response(str(e), code="file_not_found")
        except Exception as e:
            logger.error(f"Error in {name}: {e}", exc_info=True)
            return error_response(str(e), code="tool_error")

    # ========================================================================
    # Hierarchy
    # ========================================================================

    def _create_site(self, args: dict) -> dict:
        site = self.network.create_site(
            args["organization_id"], args["name"], **_pick(args, "address", "location")
        )
        return success_response(_dump(site))

    def _get_site(self, args: dict) -> dict:
        return success_response(_dump(self.network.get_site(args["site_id"])))

    def _list_sites(self, args: dict) -> dict:
        organization_id = args.get("organization_id")
        if organization_id:
            sites = self.cache.get_or_load(
                EntityType.SITE, organization_id,
                lambda: self.network.list_sites(organization_id),
            )
        else:
            sites = self.network.list_sites()
        return success_response(_dump_all(sites))

    def _update_site(self, args: dict) -> dict:
        site = self.network.update_site(args["site_id"], **_pick(args, "name", "address", "location"))
        return success_response(_dump(site))

    def _delete_site(self, args: dict) -> dict:
        return success_response({"deleted": self.network.delete_site(args["site_id"])})

    def _site_hierarchy(self, args: dict) -> dict:
        return success_response(_dump(self.network.get_site_hierarchy(args["site_id"])))

    def _create_building(self, args: dict) -> dict:
        building = self.network.create_building(args["site_id"], args["name"], **_pick(args, "location"))
        return success_response(_dump(building))

    def _get_building(self, args: dict) -> dict:
        return success_response(_dump(self.network.get_building(args["building_id"])))

    def _list_buildings(self, args: dict) -> dict:
        site_id = args["site_id"]
        buildings = self.cache.get_or_load(
            EntityType.BUILDING, site_id, lambda: self.network.list_buildings(site_id)
        )
        return success_response(_dump_all(buildings))

    def _update_building(self, args: dict) -> dict:
        building = self.network.update_building(args["building_id"], **_pick(args, "name", "location"))
        return success_response(_dump(building))

    def _delete_building(self, args: dict) -> dict:
        return success_response({"deleted": self.network.delete_building(args["building_id"])})

    def _create_floor(self, args: dict) -> dict:
        floor = self.network.create_floor(args["building_id"], args["floor_number"], args.get("name"))
        return success_response(_dump(floor))

    def _get_floor(self, args: dict) -> dict:
        return success_response(_dump(self.network.get_floor(args["floor_id"])))

    def _list_floors(self, args: dict) -> dict:
        building_id = args["building_id"]
        floors = self.cache.get_or_load(
            EntityType.FLOOR, building_id, lambda: self.network.list_floors(building_id)
        )
        return success_response(_dump_all(floors))

    def _update_floor(self, args: dict) -> dict:
        floor = self.network.update_floor(args["floor_id"], **_pick(args, "floor_number", "name"))
        return success_response(_dump(floor))

    def _delete_floor(self, args: dict) -> dict:
        return success_response({"deleted": self.network.delete_floor(args["floor_id"])})

    def _create_zone(self, args: dict) -> dict:
        return success_response(_dump(self.network.create_zone(args["floor_id"], args["name"])))

    def _get_zone(self, args: dict) -> dict:
        return success_response(_dump(self.network.get_zone(args["zone_id"])))

    def _list_zones(self, args: dict) -> dict:
        floor_id = args["floor_id"]
        zones = self.cache.get_or_load(
            EntityType.ZONE, floor_id, lambda: self.network.list_zones(floor_id)
        )
        return success_response(_dump_all(zones))

    def _update_zone(self, args: dict) -> dict:
        return success_response(_dump(self.network.update_zone(args["zone_id"], **_pick(args, "name"))))

    def _delete_zone(self, args: dict) -> dict:
        return success_response({"deleted": self.network.delete_zone(args["zone_id"])})

    # ========================================================================
    # Network
    # ========================================================================

    def _create_equipment(self, args: dict) -> dict:
        view = self.network.create_equipment(
            args["site_id"],
            args["node_type"],
            args["gas_type"],
            **_pick(
                args, "name", "valve_type", "state", "fitting_type",
                "building_id", "floor_id", "zone_id", "z_position", "outlet_count", "location",
            ),
        )
        return success_response(view.to_record())

    def _get_node(self, args: dict) -> dict:
        return success_response(self.network.get_node_view(args["node_id"]).to_record())

    def _list_nodes(self, args: dict) -> dict:
        views = self.network.list_node_views(
            args.get("site_id"),
            **_pick(args, "building_id", "floor_id", "zone_id", "node_type"),
        )
        return success_response([view.to_record() for view in views])

    def _update_node(self, args: dict) -> dict:
        patch = NodePatch.model_validate(args.get("patch") or {})
        node = self.network.update_node(args["node_id"], patch)
        return success_response(_dump(node))

    def _delete_node(self, args: dict) -> dict:
        return success_response({"deleted": self.network.delete_node(args["node_id"])})

    def _update_element(self, args: dict) -> dict:
        element = self.network.update_element(args["element_id"], **(args.get("changes") or {}))
        return success_response(_dump(element))

    def _set_valve_state(self, args: dict) -> dict:
        return success_response(_dump(self.network.set_valve_state(args["element_id"], args["state"])))

    def _create_connection(self, args: dict) -> dict:
        connection = self.network.create_connection(
            args["from_node_id"], args["to_node_id"], args["gas_type"], args.get("diameter_mm")
        )
        return success_response(_dump(connection))

    def _list_connections(self, args: dict) -> dict:
        site_id = args.get("site_id")
        node_id = args.get("node_id")
        if site_id and not node_id and not args.get("gas_type"):
            connections = self.cache.get_or_load(
                EntityType.CONNECTION, site_id,
                lambda: self.network.list_connections(site_id=site_id),
            )
        else:
            connections = self.network.list_connections(
                site_id=site_id, node_id=node_id, gas_type=args.get("gas_type")
            )
        return success_response(_dump_all(connections))

    def _update_connection(self, args: dict) -> dict:
        connection = self.network.update_connection(
            args["connection_id"], **_pick(args, "gas_type", "diameter_mm")
        )
        return success_response(_dump(connection))

    def _delete_connection(self, args: dict) -> dict:
        return success_response({"deleted": self.network.delete_connection(args["connection_id"])})

    def _create_media(self, args: dict) -> dict:
        media = self.network.create_media(
            args["element_id"], args["storage_path"], **_pick(args, "file_name", "mime_type", "label")
        )
        return success_response(_dump(media))

    def _list_media(self, args: dict) -> dict:
        element_id = args.get("element_id")
        if element_id:
            media = self.cache.get_or_load(
                EntityType.MEDIA, element_id, lambda: self.network.list_media(element_id=element_id)
            )
        else:
            media = self.network.list_media(site_id=args.get("site_id"))
        return success_response(_dump_all(media))

    def _delete_media(self, args: dict) -> dict:
        return success_response({"deleted": self.network.delete_media(args["media_id"])})

    # ========================================================================
    # Cascade
    # ========================================================================

    def _get_dependencies(self, args: dict) -> dict:
        report = self.resolver.compute_dependencies(args["anchor_type"], args["anchor_id"])
        return success_response(report.to_dict())

    def _cascade_delete(self, args: dict) -> dict:
        """Delete an anchor with everything it owns, given the confirmed report etag."""
        etag = args.get("etag")
        if not etag:
            return error_response(
                "Cascade delete requires the etag of the confirmed dependency report. "
                "Call dependencies_get first.",
                code="confirmation_required",
            )
        report = self.resolver.cascade_delete(args["anchor_type"], args["anchor_id"], expected_etag=etag)
        return success_response({"deleted": True, **report.to_dict()})

    # ========================================================================
    # Layouts
    # ========================================================================

    def _layout_summary(self, layout_id: str) -> Dict[str, Any]:
        layout = self.layouts.get_layout(layout_id)
        return {
            "id": layout.id,
            "site_id": layout.site_id,
            "name": layout.name,
            "layout_type": layout.layout_type.value,
            "floor_id": layout.floor_id,
            "version": layout.version,
            "etag": layout.etag,
            "node_count": len(layout.positions),
        }

    def _create_layout(self, args: dict) -> dict:
        layout = self.layouts.create_layout(
            args["site_id"],
            args["name"],
            **_pick(args, "layout_type", "floor_id", "background_url", "metadata"),
        )
        return success_response(layout.to_dict())

    def _get_layout(self, args: dict) -> dict:
        layout = self.layouts.get_layout(args["layout_id"])
        result = layout.to_dict()
        box = layout.bounding_box()
        if box:
            result["bounding_box"] = {
                "min_x": box.min_x,
                "max_x": box.max_x,
                "min_y": box.min_y,
                "max_y": box.max_y,
                "width": box.width,
                "height": box.height,
            }
        return success_response(result)

    def _list_layouts(self, args: dict) -> dict:
        site_id = args.get("site_id")
        if site_id and not args.get("floor_id") and not args.get("layout_type"):
            layouts = self.cache.get_or_load(
                EntityType.LAYOUT, site_id, lambda: self.layouts.list_layouts(site_id=site_id)
            )
        else:
            layouts = self.layouts.list_layouts(**_pick(args, "site_id", "floor_id", "layout_type"))
        return success_response([self._layout_summary(layout.id) for layout in layouts])

    def _update_layout(self, args: dict) -> dict:
        layout = self.layouts.update_layout(
            args["layout_id"],
            expected_etag=args.get("expected_etag"),
            **_pick(args, "name", "background_url", "metadata"),
        )
        return success_response(self._layout_summary(layout.id))

    def _delete_layout(self, args: dict) -> dict:
        return success_response({"deleted": self.layouts.delete_layout(args["layout_id"])})

    def _save_to_file(self, args: dict) -> dict:
        path = self.layouts.save_to_file(args["layout_id"], args["project_path"])
        return success_response({"layout_id": args["layout_id"], "file_path": str(path)})

    def _load_from_file(self, args: dict) -> dict:
        layout = self.layouts.load_from_file(args["project_path"], args["layout_id"])
        return success_response(self._layout_summary(layout.id))

    def _set_position(self, args: dict) -> dict:
        position = self.layouts.set_position(
            args["layout_id"], args["node_id"], args["x"], args["y"], args.get("rotation", 0.0)
        )
        return success_response({"node_id": args["node_id"], **_dump(position)})

    def _delete_position(self, args: dict) -> dict:
        return success_response({"deleted": self.layouts.delete_position(args["layout_id"], args["node_id"])})

    def _import_nodes(self, args: dict) -> dict:
        result = self.layouts.import_nodes(args["layout_id"], args["node_ids"])
        warnings = [f"{e['node_id']}: {e['error']}" for e in result["errors"]]
        return success_response(result, warnings=warnings or None)

    def _auto_layout(self, args: dict) -> dict:
        """Compute positions with a layout engine and write them into the layout.

        Floor layouts only lay out the nodes anchored on their floor. Nodes the
        engine omits keep whatever position they had.
        """
        layout = self.layouts.get_layout(args["layout_id"])
        engine_name = args.get("engine", "column")
        engine_cls = get_engine(engine_name)
        engine = ColumnLayoutEngine(self.column_config) if engine_cls is ColumnLayoutEngine else engine_cls()

        with self.network.lock:
            if layout.layout_type == LayoutType.FLOOR:
                nodes = self.network.list_node_views(layout.site_id, floor_id=layout.floor_id)
            else:
                nodes = self.network.list_node_views(layout.site_id)
            buildings = self.network.list_buildings(layout.site_id)
            floors = [f for b in buildings for f in self.network.list_floors(b.id)]
            zones = [z for f in floors for z in self.network.list_zones(f.id)]

        positions = engine.layout(nodes, buildings, floors, zones)
        written = self.layouts.apply_positions(
            layout.id, positions, overwrite=args.get("overwrite", True)
        )
        omitted = sorted(view.id for view in nodes if view.id not in positions)
        warnings = None
        if omitted:
            warnings = [f"{len(omitted)} node(s) could not be placed and kept their position"]

        return success_response({
            "layout_id": layout.id,
            "engine": engine.name,
            "positioned": written,
            "omitted": omitted,
            "etag": self.layouts.get_etag(layout.id),
        }, warnings=warnings)

    def _get_layout_view(self, args: dict) -> dict:
        """Positions, routed connector paths, gas legend and annotations for rendering."""
        layout = self.layouts.get_layout(args["layout_id"])
        positions: Dict[str, NodePosition] = layout.positions
        connections = self.network.list_connections(site_id=layout.site_id)

        edges = []
        for conn in connections:
            source = positions.get(conn.from_node_id)
            target = positions.get(conn.to_node_id)
            if source is None or target is None:
                continue
            source_point = (source.x, source.y)
            target_point = (target.x, target.y)
            source_side, target_side = choose_sides(source_point, target_point)
            route = compute_route(source_point, source_side, target_point, target_side, self.router_config)
            edges.append({
                "connection_id": conn.id,
                "from_node_id": conn.from_node_id,
                "to_node_id": conn.to_node_id,
                "gas_type": conn.gas_type,
                "color": get_gas_line_color(conn.gas_type),
                "source_side": source_side.value,
                "target_side": target_side.value,
                "path": route.to_path(),
            })

        gases = sorted({edge["gas_type"] for edge in edges})
        return success_response({
            "layout_id": layout.id,
            "etag": layout.etag,
            "nodes": {node_id: _dump(pos) for node_id, pos in sorted(positions.items())},
            "edges": edges,
            "legend": {gas: get_gas_config(gas) for gas in gases},
            "annotations": _dump_all(self.layouts.list_annotations(layout.id)),
        })

    def _route_connection(self, args: dict) -> dict:
        route = compute_route(
            tuple(args["source_point"]),
            Side(args["source_side"]),
            tuple(args["target_point"]),
            Side(args["target_side"]),
            self.router_config,
        )
        return success_response({
            "path": route.to_path(),
            "branch": route.branch,
            "points": [list(p) for p in route.points],
        })

    # ========================================================================
    # Annotations
    # ========================================================================

    def _create_annotation(self, args: dict) -> dict:
        annotation = self.layouts.create_annotation(
            args["layout_id"],
            args["annotation_type"],
            args["title"],
            args["x"],
            args["y"],
            **_pick(args, "subtitle", "size", "color", "style", "interactive", "metadata"),
        )
        return success_response(_dump(annotation))

    def _get_annotation(self, args: dict) -> dict:
        return success_response(_dump(self.layouts.get_annotation(args["annotation_id"])))

    def _list_annotations(self, args: dict) -> dict:
        layout_id = args["layout_id"]
        annotations = self.cache.get_or_load(
            EntityType.ANNOTATION, layout_id, lambda: self.layouts.list_annotations(layout_id)
        )
        return success_response(_dump_all(annotations))

    def _update_annotation(self, args: dict) -> dict:
        annotation = self.layouts.update_annotation(
            args["annotation_id"], **_pick(args, *self.layouts.ANNOTATION_FIELDS)
        )
        return success_response(_dump(annotation))

    def _delete_annotation(self, args: dict) -> dict:
        return success_response({"deleted": self.layouts.delete_annotation(args["annotation_id"])})

    def _save_annotations(self, args: dict) -> dict:
        """Create or update a batch of annotations; nothing is written if one item is invalid."""
        saved = self.layouts.save_annotations(args["layout_id"], args["annotations"])
        return success_response({"count": len(saved), "annotations": _dump_all(saved)})

    def _delete_annotations(self, args: dict) -> dict:
        return success_response({"count": self.layouts.delete_annotations(args["layout_id"])})

    # ========================================================================
    # Analysis
    # ========================================================================

    def _analyzer(self, args: dict) -> NetworkAnalyzer:
        site_id = args.get("site_id")
        if not site_id:
            site_id = self.network.get_node(args["node_id"]).site_id
        return NetworkAnalyzer.from_store(self.network, site_id)

    def _downstream_nodes(self, args: dict) -> dict:
        node_ids = self._analyzer(args).downstream_nodes(args["node_id"])
        return success_response({"node_id": args["node_id"], "downstream": node_ids, "count": len(node_ids)})

    def _valve_impact(self, args: dict) -> dict:
        return success_response(self._analyzer({"node_id": args["node_id"]}).valve_impact(args["node_id"]))

    def _network_stats(self, args: dict) -> dict:
        return success_response(NetworkAnalyzer.from_store(self.network, args["site_id"]).network_stats())

    def _network_validate(self, args: dict) -> dict:
        analyzer = NetworkAnalyzer.from_store(self.network, args["site_id"])
        issues = analyzer.validate()
        severities = {issue["severity"] for issue in issues}
        status = "error" if "error" in severities else "warning" if "warning" in severities else "ok"
        return validation_response(status, issues, metrics=analyzer.network_stats())


__all__ = ["SynopticsTools", "choose_sides"]
