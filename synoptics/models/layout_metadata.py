"""Layout metadata: diagram surfaces, per-layout node placement and tunables.

A Layout is a named rendering surface scoped to a site or to one floor.
Node coordinates are stored per (layout, node): the same node may sit at
different places on different layouts, and a node never carries a position
of its own.

Architecture:
    - Topology (hierarchy + network stores) is separate from coordinates
    - Etag computed from canonical content (excludes timestamps)
    - Column-layout and router tunables are plain numeric overrides
"""

import hashlib
import json
from typing import Any, Dict, List, Optional, Tuple

from pydantic import BaseModel, Field, field_validator, model_validator

from .enums import AnnotationStyle, AnnotationType, LayoutType
from .hierarchy import utc_now


class NodePosition(BaseModel):
    """Placement of one node on one layout.

    Attributes:
        x: Horizontal coordinate (canvas units, top-left origin)
        y: Vertical coordinate (grows downwards)
        rotation: Rotation in degrees, normalized to [0, 360)
    """

    x: float = Field(..., description="Horizontal coordinate")
    y: float = Field(..., description="Vertical coordinate")
    rotation: float = Field(default=0.0, description="Rotation angle in degrees")

    @field_validator("rotation")
    @classmethod
    def normalize_rotation(cls, v: float) -> float:
        return v % 360.0

    @classmethod
    def from_list(cls, pos: List[float]) -> "NodePosition":
        """Create NodePosition from [x, y] or [x, y, rotation].

        Raises:
            ValueError: If pos doesn't have 2 or 3 elements
        """
        if len(pos) not in (2, 3):
            raise ValueError(f"Position must be [x, y] or [x, y, rotation], got {len(pos)} elements")
        return cls(x=pos[0], y=pos[1], rotation=pos[2] if len(pos) == 3 else 0.0)

    def to_list(self) -> List[float]:
        return [self.x, self.y, self.rotation]


class BoundingBox(BaseModel):
    """Axis-aligned bounds of a set of positions."""

    min_x: float
    max_x: float
    min_y: float
    max_y: float

    @property
    def width(self) -> float:
        return self.max_x - self.min_x

    @property
    def height(self) -> float:
        return self.max_y - self.min_y

    @property
    def center(self) -> Tuple[float, float]:
        return (
            (self.min_x + self.max_x) / 2,
            (self.min_y + self.max_y) / 2
        )

    @classmethod
    def from_positions(cls, positions: Dict[str, NodePosition]) -> "BoundingBox":
        """Compute bounding box from node positions.

        Raises:
            ValueError: If positions is empty
        """
        if not positions:
            raise ValueError("Cannot compute bounding box from empty positions")

        x_coords = [pos.x for pos in positions.values()]
        y_coords = [pos.y for pos in positions.values()]

        return cls(
            min_x=min(x_coords),
            max_x=max(x_coords),
            min_y=min(y_coords),
            max_y=max(y_coords)
        )


class EdgeSection(BaseModel):
    """Routed connector: start point, orthogonal bend points, end point."""

    start_point: Tuple[float, float] = Field(..., description="Start point (x, y)")
    end_point: Tuple[float, float] = Field(..., description="End point (x, y)")
    bend_points: List[Tuple[float, float]] = Field(
        default_factory=list, description="Bend points of the orthogonal path"
    )

    def get_all_points(self) -> List[Tuple[float, float]]:
        """Get all points in order: start -> bends -> end."""
        return [self.start_point] + self.bend_points + [self.end_point]


class Layout(BaseModel):
    """Named diagram surface with its node positions.

    Attributes:
        id: Layout identifier
        site_id: Owning site
        name: Display name
        layout_type: 'site' or 'floor'
        floor_id: Scoping floor (required for, and only for, floor layouts)
        background_url: Optional plan image shown behind the diagram
        metadata: Free-form rendering settings (zoom, viewport, ...)
        positions: node_id -> NodePosition
        version: Incremented on every stored update
        etag: SHA-256 of canonical content for optimistic concurrency
    """

    id: str = Field(..., description="Layout identifier")
    site_id: str = Field(..., description="Owning site")
    name: str = Field(..., min_length=1, description="Display name")
    layout_type: LayoutType = Field(default=LayoutType.SITE, description="Layout scope")
    floor_id: Optional[str] = Field(default=None, description="Scoping floor")
    background_url: Optional[str] = Field(default=None, description="Background image")
    metadata: Dict[str, Any] = Field(default_factory=dict, description="Rendering settings")
    positions: Dict[str, NodePosition] = Field(
        default_factory=dict, description="Node positions keyed by node ID"
    )

    version: int = Field(default=1, description="Layout version number")
    etag: Optional[str] = Field(default=None, description="SHA-256 content hash")
    created_at: str = Field(default_factory=utc_now, description="ISO 8601 creation timestamp")
    updated_at: Optional[str] = Field(default=None, description="ISO 8601 last modification")

    @model_validator(mode="after")
    def check_scope(self) -> "Layout":
        if self.layout_type == LayoutType.FLOOR and not self.floor_id:
            raise ValueError("Floor layouts require floor_id")
        if self.layout_type == LayoutType.SITE and self.floor_id:
            raise ValueError("Site layouts must not reference a floor")
        return self

    def model_post_init(self, __context) -> None:
        if self.updated_at is None:
            object.__setattr__(self, "updated_at", self.created_at)
        if self.etag is None:
            object.__setattr__(self, "etag", self.compute_etag())

    def compute_etag(self) -> str:
        """Compute SHA-256 etag from canonical content (excludes timestamps and version)."""
        canonical = {
            "background_url": self.background_url,
            "floor_id": self.floor_id,
            "layout_type": self.layout_type.value,
            "metadata": self.metadata,
            "name": self.name,
            "positions": {
                k: v.model_dump() for k, v in sorted(self.positions.items())
            },
            "site_id": self.site_id,
        }
        canonical_json = json.dumps(canonical, sort_keys=True, separators=(",", ":"), default=str)
        return hashlib.sha256(canonical_json.encode()).hexdigest()

    def touch(self) -> None:
        """Update timestamp and recompute etag after modification."""
        object.__setattr__(self, "updated_at", utc_now())
        object.__setattr__(self, "etag", self.compute_etag())

    def bounding_box(self) -> Optional[BoundingBox]:
        if not self.positions:
            return None
        return BoundingBox.from_positions(self.positions)

    def to_dict(self, exclude_none: bool = True) -> Dict[str, Any]:
        """Export to dict with deterministic key ordering (positions as lists)."""
        data = self.model_dump(mode="json", exclude_none=exclude_none)
        data["positions"] = {
            node_id: pos.to_list() for node_id, pos in sorted(self.positions.items())
        }
        return dict(sorted(data.items()))


class AnnotationSize(BaseModel):
    width: float = Field(..., gt=0, description="Width in canvas units")
    height: float = Field(..., gt=0, description="Height in canvas units")


class Annotation(BaseModel):
    """Titled region or label drawn on one layout.

    Annotations belong to their layout: they are deleted with it and are
    not part of the layout etag.
    """

    id: str = Field(..., description="Annotation identifier")
    layout_id: str = Field(..., description="Owning layout")
    annotation_type: AnnotationType = Field(..., description="What the annotation labels")
    title: str = Field(..., min_length=1, description="Main caption")
    subtitle: Optional[str] = Field(default=None, description="Secondary caption")
    x: float = Field(..., description="Top-left X")
    y: float = Field(..., description="Top-left Y")
    size: Optional[AnnotationSize] = Field(default=None, description="Region size, None for a plain label")
    color: Optional[str] = Field(default=None, description="CSS color")
    style: Optional[AnnotationStyle] = Field(default=None, description="Rendering style")
    interactive: bool = Field(default=False, description="Whether the region reacts to clicks")
    metadata: Dict[str, Any] = Field(default_factory=dict, description="Free-form rendering data")

    created_at: str = Field(default_factory=utc_now, description="ISO 8601 creation timestamp")
    updated_at: Optional[str] = Field(default=None, description="ISO 8601 last modification")

    def model_post_init(self, __context) -> None:
        if self.updated_at is None:
            object.__setattr__(self, "updated_at", self.created_at)

    def to_dict(self) -> Dict[str, Any]:
        data = self.model_dump(mode="json", exclude_none=True)
        return dict(sorted(data.items()))


# =============================================================================
# Tunables
# =============================================================================


class ColumnLayoutConfig(BaseModel):
    """Tunables of the column auto-layout (canvas units).

    Defaults reproduce the placement users already have in saved diagrams.
    """

    model_config = {"frozen": True}

    start_x: float = 200
    start_y: float = 280
    building_width: float = 420
    building_spacing: float = 50
    floor_height: float = 200
    floor_spacing: float = 20
    column_width: float = 70
    column_spacing: float = 15
    valve_spacing: float = 40

    # Offsets inside a building band / floor band
    column_margin: float = 30
    floor_padding: float = 30
    # Building-level band sits above the first floor
    building_band_offset: float = 100
    building_level_spacing: float = 30

    # Opt-in: shift zone nodes right by zone rank instead of merging them
    zone_columns: bool = False
    zone_offset: float = 20


class RouterConfig(BaseModel):
    """Tunables of the orthogonal connector router."""

    model_config = {"frozen": True}

    elbow_offset: float = Field(default=20, ge=0, description="Stub length before the first elbow")
    min_gap: float = Field(default=10, ge=0, description="Smallest gap allowed between the two elbows")


__all__ = [
    "NodePosition",
    "BoundingBox",
    "EdgeSection",
    "Layout",
    "AnnotationSize",
    "Annotation",
    "ColumnLayoutConfig",
    "RouterConfig",
]
