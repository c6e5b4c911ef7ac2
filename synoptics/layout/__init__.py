"""Layout module for automatic diagram positioning and connector routing.

This module provides:
- Layout engine abstraction (LayoutEngine)
- Column auto-layout (gas columns per building, floors by number)
- Grid placement for node import
- Orthogonal connector router (fixed side-pair decision table)
"""

from synoptics.layout.engines.base import LayoutEngine
from synoptics.layout.engines.column import ColumnLayoutEngine, compute_column_layout
from synoptics.layout.engines.grid import GridLayoutEngine, compute_grid_layout
from synoptics.layout.routing import OrthogonalRoute, compute_route, route_orthogonal

__all__ = [
    "LayoutEngine",
    "ColumnLayoutEngine",
    "GridLayoutEngine",
    "compute_column_layout",
    "compute_grid_layout",
    "OrthogonalRoute",
    "compute_route",
    "route_orthogonal",
]
