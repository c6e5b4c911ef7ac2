"""Column auto-layout: same-gas equipment aligned in vertical columns.

Each building gets a horizontal band; inside it every gas type present gets
a column in canonical gas order (not alphabetical). Floors are stacked top to
bottom by descending floor number, so higher storeys are drawn higher.
Nodes of one floor and gas are stacked inside the floor band at the gas
column X.

Placement rules:
    - Nodes without building_id are site-level and are not placed here
    - Building-level nodes (no floor_id) go in a band above the first floor
    - Zone nodes are merged into their floor's stack after the floor-level
      nodes; ``zone_columns`` opts into a per-zone X offset instead
    - Floors sharing a floor number share one band
    - Gas types outside the canonical order get no column; their nodes,
      and nodes on floors missing from ``floors``, are left out

Example:
    positions = compute_column_layout(views, buildings, floors, zones)
    layout_store.apply_positions(layout.id, positions)
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, Iterator, List, Optional, Sequence

from synoptics.layout.engines.base import LayoutEngine
from synoptics.models.enums import GAS_COLUMN_ORDER
from synoptics.models.hierarchy import Building, Floor, Zone
from synoptics.models.layout_metadata import ColumnLayoutConfig, NodePosition
from synoptics.models.network import NodeView

logger = logging.getLogger(__name__)


@dataclass
class _FloorGroup:
    floor_level: List[NodeView] = field(default_factory=list)
    zones: Dict[str, List[NodeView]] = field(default_factory=dict)

    def ordered(self) -> Iterator[NodeView]:
        """Floor-level nodes first, then zone nodes zone by zone (first-seen order)."""
        yield from self.floor_level
        for zone_nodes in self.zones.values():
            yield from zone_nodes


@dataclass
class _BuildingGroup:
    building_level: List[NodeView] = field(default_factory=list)
    floors: Dict[str, _FloorGroup] = field(default_factory=dict)

    def iter_nodes(self) -> Iterator[NodeView]:
        yield from self.building_level
        for floor_group in self.floors.values():
            yield from floor_group.ordered()


def _group_nodes(nodes: Sequence[NodeView], buildings: Sequence[Building]) -> Dict[str, _BuildingGroup]:
    groups: Dict[str, _BuildingGroup] = {b.id: _BuildingGroup() for b in buildings}
    for node in nodes:
        if not node.building_id:
            continue
        group = groups.setdefault(node.building_id, _BuildingGroup())
        if not node.floor_id:
            group.building_level.append(node)
            continue
        floor_group = group.floors.setdefault(node.floor_id, _FloorGroup())
        if not node.zone_id:
            floor_group.floor_level.append(node)
        else:
            floor_group.zones.setdefault(node.zone_id, []).append(node)
    return groups


def _stack_by_gas(nodes: Iterator[NodeView]) -> Dict[str, List[NodeView]]:
    stacks: Dict[str, List[NodeView]] = {}
    for node in nodes:
        stacks.setdefault(node.gas_type, []).append(node)
    return stacks


def _gas_columns(group: _BuildingGroup, building_x: float, config: ColumnLayoutConfig) -> Dict[str, float]:
    present = {node.gas_type for node in group.iter_nodes()}
    columns: Dict[str, float] = {}
    for gas_type in GAS_COLUMN_ORDER:
        if gas_type in present:
            columns[gas_type] = (
                building_x + config.column_margin
                + len(columns) * (config.column_width + config.column_spacing)
            )
    return columns


def _zone_ranks(zones: Sequence[Zone]) -> Dict[str, int]:
    """Rank of each zone ID among the zones of its floor."""
    by_floor: Dict[str, List[str]] = {}
    for zone in zones:
        by_floor.setdefault(zone.floor_id, []).append(zone.id)
    return {
        zone_id: rank
        for zone_ids in by_floor.values()
        for rank, zone_id in enumerate(sorted(zone_ids))
    }


def compute_column_layout(
    nodes: Sequence[NodeView],
    buildings: Sequence[Building],
    floors: Sequence[Floor],
    zones: Sequence[Zone],
    config: Optional[ColumnLayoutConfig] = None,
) -> Dict[str, NodePosition]:
    """Compute column positions for every placeable node.

    Pure and deterministic: identical inputs give an identical map.

    Args:
        nodes: Nodes joined with their elements (gas type is read from the element)
        buildings: Buildings to lay out (buildings referenced only by nodes are added)
        floors: Floors of those buildings
        zones: Zones (used only for ``zone_columns``)
        config: Tunables; defaults to ColumnLayoutConfig()

    Returns:
        node_id -> NodePosition; site-level and unplaceable nodes are omitted
    """
    config = config or ColumnLayoutConfig()
    groups = _group_nodes(nodes, buildings)
    zone_rank = _zone_ranks(zones) if config.zone_columns else {}
    result: Dict[str, NodePosition] = {}

    for building_index, building_id in enumerate(sorted(groups)):
        group = groups[building_id]
        building_x = config.start_x + building_index * (config.building_width + config.building_spacing)
        columns = _gas_columns(group, building_x, config)
        if not columns:
            continue

        building_floors = [f for f in floors if f.building_id == building_id]
        floor_numbers = sorted({f.floor_number for f in building_floors}, reverse=True)

        for floor_index, floor_number in enumerate(floor_numbers):
            floor_y = config.start_y + floor_index * (config.floor_height + config.floor_spacing)
            for floor in building_floors:
                if floor.floor_number != floor_number or floor.id not in group.floors:
                    continue
                for gas_type, stack in _stack_by_gas(group.floors[floor.id].ordered()).items():
                    column_x = columns.get(gas_type)
                    if column_x is None:
                        continue
                    for k, node in enumerate(stack):
                        x = column_x
                        if node.zone_id and config.zone_columns:
                            x += zone_rank.get(node.zone_id, 0) * config.zone_offset
                        result[node.id] = NodePosition(
                            x=x,
                            y=floor_y + config.floor_padding + k * config.valve_spacing,
                        )

        band_y = config.start_y - config.building_band_offset
        for gas_type, stack in _stack_by_gas(iter(group.building_level)).items():
            column_x = columns.get(gas_type)
            if column_x is None:
                continue
            for k, node in enumerate(stack):
                result[node.id] = NodePosition(x=column_x, y=band_y + k * config.building_level_spacing)

    omitted = sum(1 for n in nodes if n.building_id) - len(result)
    if omitted:
        logger.debug(f"Column layout left {omitted} building nodes unplaced")
    return result


class ColumnLayoutEngine(LayoutEngine):
    """LayoutEngine wrapper around ``compute_column_layout``."""

    def __init__(self, config: Optional[ColumnLayoutConfig] = None):
        self.config = config or ColumnLayoutConfig()

    @property
    def name(self) -> str:
        return "column"

    def layout(
        self,
        nodes: Sequence[NodeView],
        buildings: Sequence[Building] = (),
        floors: Sequence[Floor] = (),
        zones: Sequence[Zone] = (),
    ) -> Dict[str, NodePosition]:
        return compute_column_layout(nodes, buildings, floors, zones, self.config)
