"""Base layout engine protocol.

Defines the interface that all layout engines must implement.
"""

from abc import ABC, abstractmethod
from typing import Dict, Sequence

from synoptics.models.hierarchy import Building, Floor, Zone
from synoptics.models.layout_metadata import NodePosition
from synoptics.models.network import NodeView


class LayoutEngine(ABC):
    """Abstract base class for layout engines.

    Layout engines turn the current hierarchy + network snapshot into node
    coordinates. They are pure: the same input always yields the same
    positions, and they never raise on well-typed input. Nodes an engine
    cannot place are left out of the result.
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Engine name (e.g., 'column', 'grid')."""
        ...

    @abstractmethod
    def layout(
        self,
        nodes: Sequence[NodeView],
        buildings: Sequence[Building] = (),
        floors: Sequence[Floor] = (),
        zones: Sequence[Zone] = (),
    ) -> Dict[str, NodePosition]:
        """Compute positions for nodes.

        Args:
            nodes: Nodes joined with their elements
            buildings: Buildings of the site
            floors: Floors of those buildings
            zones: Zones of those floors

        Returns:
            node_id -> NodePosition for every node the engine places
        """
        ...
