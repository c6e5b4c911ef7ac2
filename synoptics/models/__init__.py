"""Pydantic records for the medical-gas hierarchy, network and layouts.

Topology (hierarchy + network) and diagram coordinates (layouts) are kept in
separate models: a node never carries a position of its own.
"""

from .enums import (
    GasType,
    NodeType,
    ValveState,
    LayoutType,
    AnnotationType,
    AnnotationStyle,
    Side,
    GAS_COLUMN_ORDER,
    normalize_gas_type,
    get_gas_line_color,
    get_gas_config,
)
from .hierarchy import (
    GeoCoordinate,
    Site,
    Building,
    Floor,
    Zone,
    SiteTree,
)
from .network import (
    Element,
    ValveElement,
    SourceElement,
    FittingElement,
    element_from_dict,
    build_element,
    Node,
    NodePatch,
    NodeView,
    Connection,
    Media,
)
from .layout_metadata import (
    Layout,
    NodePosition,
    EdgeSection,
    BoundingBox,
    ColumnLayoutConfig,
    RouterConfig,
    Annotation,
    AnnotationSize,
)

__all__ = [
    # Enumerations
    "GasType",
    "NodeType",
    "ValveState",
    "LayoutType",
    "AnnotationType",
    "AnnotationStyle",
    "Side",
    "GAS_COLUMN_ORDER",
    "normalize_gas_type",
    "get_gas_line_color",
    "get_gas_config",

    # Hierarchy
    "GeoCoordinate",
    "Site",
    "Building",
    "Floor",
    "Zone",
    "SiteTree",

    # Network
    "Element",
    "ValveElement",
    "SourceElement",
    "FittingElement",
    "element_from_dict",
    "build_element",
    "Node",
    "NodePatch",
    "NodeView",
    "Connection",
    "Media",

    # Layouts
    "Layout",
    "NodePosition",
    "EdgeSection",
    "BoundingBox",
    "ColumnLayoutConfig",
    "RouterConfig",
    "Annotation",
    "AnnotationSize",
]
