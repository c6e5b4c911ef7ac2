"""Layout engines registry.

Available engines:
- column: gas columns per building, floors stacked by number
- grid: row-major grid (node import)
"""

from synoptics.layout.engines.base import LayoutEngine
from synoptics.layout.engines.column import ColumnLayoutEngine, compute_column_layout
from synoptics.layout.engines.grid import GridLayoutEngine, compute_grid_layout

# Engine registry
ENGINES = {
    "column": ColumnLayoutEngine,
    "grid": GridLayoutEngine,
}


def get_engine(name: str) -> type:
    """Get layout engine class by name.

    Raises:
        ValueError: If engine not found
    """
    if name not in ENGINES:
        raise ValueError(f"Unknown layout engine: {name}. Available: {list(ENGINES.keys())}")
    return ENGINES[name]


__all__ = [
    "LayoutEngine",
    "ColumnLayoutEngine",
    "GridLayoutEngine",
    "compute_column_layout",
    "compute_grid_layout",
    "ENGINES",
    "get_engine",
]
