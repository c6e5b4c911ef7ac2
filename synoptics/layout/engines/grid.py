"""Grid placement for nodes imported into a layout.

Nodes are laid out row-major in a square-ish grid, ``ceil(sqrt(n))`` nodes
per row, in the order given.
"""

import math
from typing import Dict, Sequence, Tuple

from synoptics.layout.engines.base import LayoutEngine
from synoptics.models.hierarchy import Building, Floor, Zone
from synoptics.models.layout_metadata import NodePosition
from synoptics.models.network import NodeView

DEFAULT_GRID_ORIGIN: Tuple[float, float] = (100, 100)
DEFAULT_GRID_SPACING: float = 150


def compute_grid_layout(
    node_ids: Sequence[str],
    origin: Tuple[float, float] = DEFAULT_GRID_ORIGIN,
    spacing: float = DEFAULT_GRID_SPACING,
) -> Dict[str, NodePosition]:
    """Place node IDs on a grid.

    Example:
        >>> positions = compute_grid_layout(["a", "b", "c"])
        >>> positions["c"].to_list()
        [100.0, 250.0, 0.0]
    """
    if not node_ids:
        return {}

    per_row = math.ceil(math.sqrt(len(node_ids)))
    positions = {}
    for index, node_id in enumerate(node_ids):
        row, col = divmod(index, per_row)
        positions[node_id] = NodePosition(
            x=origin[0] + col * spacing,
            y=origin[1] + row * spacing,
        )
    return positions


class GridLayoutEngine(LayoutEngine):
    """Hierarchy-agnostic grid placement."""

    def __init__(self, origin: Tuple[float, float] = DEFAULT_GRID_ORIGIN,
                 spacing: float = DEFAULT_GRID_SPACING):
        self.origin = origin
        self.spacing = spacing

    @property
    def name(self) -> str:
        return "grid"

    def layout(
        self,
        nodes: Sequence[NodeView],
        buildings: Sequence[Building] = (),
        floors: Sequence[Floor] = (),
        zones: Sequence[Zone] = (),
    ) -> Dict[str, NodePosition]:
        return compute_grid_layout([n.id for n in nodes], self.origin, self.spacing)
