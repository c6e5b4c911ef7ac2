"""Spatial hierarchy records: site -> building -> floor -> zone.

Each record points at its immediate parent only; the containment tree is
reconstructed by the hierarchy store.
"""

from datetime import datetime, timezone
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator


def utc_now() -> str:
    """ISO 8601 timestamp in UTC."""
    return datetime.now(timezone.utc).isoformat()


class GeoCoordinate(BaseModel):
    """WGS84 coordinate attached to a site, building or node."""

    latitude: float = Field(..., ge=-90.0, le=90.0, description="Latitude in degrees")
    longitude: float = Field(..., ge=-180.0, le=180.0, description="Longitude in degrees")


class Site(BaseModel):
    """Root of the hierarchy, owned by one organization."""

    id: str = Field(..., description="Site identifier")
    organization_id: str = Field(..., description="Owning organization")
    name: str = Field(..., min_length=1, description="Display name")
    address: Optional[str] = Field(default=None, description="Postal address")
    location: Optional[GeoCoordinate] = Field(default=None, description="Site coordinate")
    created_at: str = Field(default_factory=utc_now, description="ISO 8601 creation timestamp")


class Building(BaseModel):
    id: str = Field(..., description="Building identifier")
    site_id: str = Field(..., description="Parent site")
    name: str = Field(..., min_length=1, description="Display name")
    location: Optional[GeoCoordinate] = Field(default=None, description="Building coordinate")
    created_at: str = Field(default_factory=utc_now, description="ISO 8601 creation timestamp")


class Floor(BaseModel):
    """A storey of a building.

    ``floor_number`` is signed (basements are negative) and deliberately not
    unique within a building.
    """

    id: str = Field(..., description="Floor identifier")
    building_id: str = Field(..., description="Parent building")
    floor_number: int = Field(..., description="Signed storey number")
    name: Optional[str] = Field(default=None, description="Display name")
    created_at: str = Field(default_factory=utc_now, description="ISO 8601 creation timestamp")

    @property
    def display_name(self) -> str:
        return self.name or f"Floor {self.floor_number}"


class Zone(BaseModel):
    id: str = Field(..., description="Zone identifier")
    floor_id: str = Field(..., description="Parent floor")
    name: str = Field(..., min_length=1, description="Display name")
    created_at: str = Field(default_factory=utc_now, description="ISO 8601 creation timestamp")

    @field_validator("name")
    @classmethod
    def strip_name(cls, v: str) -> str:
        stripped = v.strip()
        if not stripped:
            raise ValueError("Zone name must not be blank")
        return stripped


# =============================================================================
# Nested read models
# =============================================================================


class FloorTree(BaseModel):
    floor: Floor
    zones: List[Zone] = Field(default_factory=list)


class BuildingTree(BaseModel):
    building: Building
    floors: List[FloorTree] = Field(default_factory=list)


class SiteTree(BaseModel):
    """Site with its buildings, floors (by floor number) and zones (by name)."""

    site: Site
    buildings: List[BuildingTree] = Field(default_factory=list)

    def iter_floors(self):
        for building_tree in self.buildings:
            for floor_tree in building_tree.floors:
                yield floor_tree.floor


__all__ = [
    "utc_now",
    "GeoCoordinate",
    "Site",
    "Building",
    "Floor",
    "Zone",
    "FloorTree",
    "BuildingTree",
    "SiteTree",
]
