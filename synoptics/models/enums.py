"""Enumerations and display configuration for medical-gas networks.

Gas types are an open set: the canonical members below drive column
ordering and colors, but elements may carry any normalized gas string
(site-specific lines such as ``air_med_8b`` or ``vacuum_prod``).
"""

from enum import Enum
from typing import Dict, List, Optional


class GasType(str, Enum):
    """Canonical medical gases."""
    OXYGEN = "oxygen"
    MEDICAL_AIR = "medical_air"
    NITROUS_OXIDE = "nitrous_oxide"
    VACUUM = "vacuum"
    NITROGEN = "nitrogen"
    CARBON_DIOXIDE = "carbon_dioxide"


class NodeType(str, Enum):
    """Equipment variants; also the discriminator of the Element union."""
    SOURCE = "source"
    VALVE = "valve"
    FITTING = "fitting"


class ValveState(str, Enum):
    OPEN = "open"
    CLOSED = "closed"


class LayoutType(str, Enum):
    """Scope of a layout surface."""
    SITE = "site"
    FLOOR = "floor"


class AnnotationType(str, Enum):
    """What a layout annotation labels."""
    BUILDING = "building"
    FLOOR = "floor"
    ZONE = "zone"
    SERVICE = "service"
    LABEL = "label"


class AnnotationStyle(str, Enum):
    MINIMAL = "minimal"
    BOX = "box"
    LAYER = "layer"


class Side(str, Enum):
    """Side of a rendered node a connector leaves or enters from."""
    LEFT = "left"
    RIGHT = "right"
    TOP = "top"
    BOTTOM = "bottom"

    @property
    def is_horizontal(self) -> bool:
        """True for sides whose connector stub runs along the X axis."""
        return self in (Side.LEFT, Side.RIGHT)


# Left-to-right column priority used by the column layout
GAS_COLUMN_ORDER: List[str] = [
    GasType.OXYGEN.value,
    GasType.MEDICAL_AIR.value,
    GasType.NITROUS_OXIDE.value,
    GasType.VACUUM.value,
    GasType.NITROGEN.value,
    GasType.CARBON_DIOXIDE.value,
]

GAS_CONFIG: Dict[str, Dict[str, str]] = {
    "oxygen": {
        "label": "Oxygen",
        "short_label": "O₂",
        "description": "Medical oxygen supply",
    },
    "medical_air": {
        "label": "Medical Air",
        "short_label": "Air",
        "description": "Compressed medical air",
    },
    "vacuum": {
        "label": "Vacuum",
        "short_label": "VAC",
        "description": "Medical suction system",
    },
    "nitrous_oxide": {
        "label": "Nitrous Oxide",
        "short_label": "N₂O",
        "description": "Anesthetic gas",
    },
    "nitrogen": {
        "label": "Nitrogen",
        "short_label": "N₂",
        "description": "Instrument air",
    },
    "carbon_dioxide": {
        "label": "Carbon Dioxide",
        "short_label": "CO₂",
        "description": "Surgical gas",
    },
}

GAS_LINE_COLORS: Dict[str, str] = {
    "oxygen": "#ef4444",
    "medical_air": "#9333ea",
    "vacuum": "#6ee7b7",
    "nitrous_oxide": "#2dd4bf",
    "nitrogen": "#1d4ed8",
    "carbon_dioxide": "#4b2e2b",
    "co2": "#4b2e2b",
    "compressed_air": "#9333ea",
    "air_med_8b": "#1d4ed8",
    "air_sega": "#38bdf8",
    "rejection_sega": "#9ca3af",
    "rejection_prod": "#4b5563",
    "vacuum_prod": "#1e40af",
    "default": "#000000",
}


def normalize_gas_type(gas_type: str) -> str:
    """Normalize a gas type string ("Medical Air" -> "medical_air").

    Raises:
        ValueError: If the normalized value is empty
    """
    normalized = "_".join(str(gas_type).strip().lower().split())
    if not normalized:
        raise ValueError("gas_type must not be empty")
    return normalized


def is_canonical_gas(gas_type: str) -> bool:
    return gas_type in GAS_COLUMN_ORDER


def get_gas_line_color(gas_type: Optional[str]) -> str:
    """Stroke color for a connection of the given gas type."""
    if not gas_type:
        return GAS_LINE_COLORS["default"]
    return GAS_LINE_COLORS.get(normalize_gas_type(gas_type), GAS_LINE_COLORS["default"])


def get_gas_config(gas_type: str) -> Dict[str, str]:
    """Display configuration for a gas, with a generic entry for unknown gases."""
    return GAS_CONFIG.get(gas_type) or {
        "label": gas_type,
        "short_label": gas_type.upper(),
        "description": "Unknown gas type",
    }


__all__ = [
    "GasType",
    "NodeType",
    "ValveState",
    "LayoutType",
    "AnnotationType",
    "AnnotationStyle",
    "Side",
    "GAS_COLUMN_ORDER",
    "GAS_CONFIG",
    "GAS_LINE_COLORS",
    "normalize_gas_type",
    "is_canonical_gas",
    "get_gas_line_color",
    "get_gas_config",
]
