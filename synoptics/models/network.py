"""Gas network records: typed elements, placed nodes, connections and media.

Elements form a tagged union discriminated by ``node_type``. Code that needs
variant-specific behavior branches on the tag and ends with
``assert_never`` so a new variant is flagged by the type checker at every
switch that forgot it.

Example:
    element = build_element(NodeType.VALVE, id="e1", site_id="s1",
                            name="V-101", gas_type="Oxygen")
    assert element.state == ValveState.CLOSED
    assert element.gas_type == "oxygen"
"""

from typing import Annotated, Any, Dict, Literal, Optional, Tuple, Union, assert_never

from pydantic import BaseModel, Field, TypeAdapter, field_validator

from .enums import NodeType, ValveState, normalize_gas_type
from .hierarchy import GeoCoordinate, utc_now


# =============================================================================
# Elements
# =============================================================================


class ElementBase(BaseModel):
    """Fields shared by every element variant."""

    id: str = Field(..., description="Element identifier")
    site_id: str = Field(..., description="Owning site")
    name: Optional[str] = Field(default=None, description="Tag or display name")
    gas_type: str = Field(..., description="Normalized gas type")
    created_at: str = Field(default_factory=utc_now, description="ISO 8601 creation timestamp")

    @field_validator("gas_type", mode="before")
    @classmethod
    def normalize_gas(cls, v: Any) -> str:
        return normalize_gas_type(v)


class ValveElement(ElementBase):
    node_type: Literal["valve"] = "valve"
    name: str = Field(..., min_length=1, description="Valve tag")
    valve_type: str = Field(default="isolation", description="Valve kind (isolation, zone, ...)")
    state: ValveState = Field(default=ValveState.CLOSED, description="Open/closed state")


class SourceElement(ElementBase):
    node_type: Literal["source"] = "source"
    name: str = Field(..., min_length=1, description="Source name")


class FittingElement(ElementBase):
    node_type: Literal["fitting"] = "fitting"
    fitting_type: str = Field(..., min_length=1, description="Fitting kind (tee, elbow, reducer, ...)")


Element = Annotated[
    Union[ValveElement, SourceElement, FittingElement],
    Field(discriminator="node_type"),
]

_ELEMENT_ADAPTER: TypeAdapter = TypeAdapter(Element)


def element_from_dict(data: Dict[str, Any]) -> Element:
    """Parse an untyped element record into its variant.

    Raises:
        pydantic.ValidationError: If the tag is missing/unknown or fields are invalid
    """
    return _ELEMENT_ADAPTER.validate_python(data)


def default_state_for(node_type: NodeType) -> Optional[ValveState]:
    """Initial state of a freshly created element of the given variant."""
    if node_type is NodeType.VALVE:
        return ValveState.CLOSED
    elif node_type is NodeType.SOURCE:
        return None
    elif node_type is NodeType.FITTING:
        return None
    else:
        assert_never(node_type)


def build_element(
    node_type: NodeType,
    *,
    id: str,
    site_id: str,
    gas_type: str,
    name: Optional[str] = None,
    valve_type: Optional[str] = None,
    state: Optional[ValveState] = None,
    fitting_type: Optional[str] = None,
) -> Element:
    """Construct an element of the requested variant.

    Variant-specific arguments that do not apply to ``node_type`` are
    rejected rather than dropped.

    Raises:
        ValueError: On arguments that do not belong to the variant
    """
    node_type = NodeType(node_type)
    common = {"id": id, "site_id": site_id, "gas_type": gas_type, "name": name}

    if node_type is NodeType.VALVE:
        if fitting_type is not None:
            raise ValueError("fitting_type does not apply to valves")
        return ValveElement(
            **common,
            valve_type=valve_type or "isolation",
            state=state or default_state_for(node_type),
        )
    elif node_type is NodeType.SOURCE:
        if valve_type is not None or state is not None or fitting_type is not None:
            raise ValueError("sources take no valve or fitting attributes")
        return SourceElement(**common)
    elif node_type is NodeType.FITTING:
        if valve_type is not None or state is not None:
            raise ValueError("valve attributes do not apply to fittings")
        return FittingElement(**common, fitting_type=fitting_type or "tee")
    else:
        assert_never(node_type)


# =============================================================================
# Nodes
# =============================================================================


PLACEMENT_FIELDS: Tuple[str, str, str] = ("building_id", "floor_id", "zone_id")


class Node(BaseModel):
    """A placed equipment instance referencing exactly one element.

    Placement is anchored at the finest level given; none of building, floor
    or zone is required. Diagram coordinates live on NodePosition, never here.
    """

    id: str = Field(..., description="Node identifier")
    site_id: str = Field(..., description="Owning site")
    node_type: NodeType = Field(..., description="Variant of the referenced element")
    element_id: str = Field(..., description="Referenced element")
    building_id: Optional[str] = Field(default=None, description="Anchoring building")
    floor_id: Optional[str] = Field(default=None, description="Anchoring floor")
    zone_id: Optional[str] = Field(default=None, description="Anchoring zone")
    z_position: float = Field(default=0.0, description="Mounting height")
    outlet_count: int = Field(default=0, ge=0, description="Number of terminal outlets served")
    location: Optional[GeoCoordinate] = Field(default=None, description="Direct coordinate")
    created_at: str = Field(default_factory=utc_now, description="ISO 8601 creation timestamp")

    @property
    def placement_level(self) -> str:
        if self.zone_id:
            return "zone"
        if self.floor_id:
            return "floor"
        if self.building_id:
            return "building"
        return "site"

    def placement(self) -> Dict[str, Optional[str]]:
        return {name: getattr(self, name) for name in PLACEMENT_FIELDS}


class NodePatch(BaseModel):
    """Partial node update.

    Only fields explicitly present are applied; passing ``None`` for a
    placement field clears it. Ancestors are never backfilled.
    """

    model_config = {"extra": "forbid"}

    building_id: Optional[str] = None
    floor_id: Optional[str] = None
    zone_id: Optional[str] = None
    z_position: Optional[float] = None
    outlet_count: Optional[int] = None
    location: Optional[GeoCoordinate] = None

    def changes(self) -> Dict[str, Any]:
        return {name: getattr(self, name) for name in sorted(self.model_fields_set)}

    def touches_placement(self) -> bool:
        return any(name in self.model_fields_set for name in PLACEMENT_FIELDS)


class NodeView(BaseModel):
    """Read-only join of a node with its element."""

    node: Node
    element: Element

    @property
    def id(self) -> str:
        return self.node.id

    @property
    def node_type(self) -> NodeType:
        return self.node.node_type

    @property
    def gas_type(self) -> str:
        return self.element.gas_type

    @property
    def name(self) -> Optional[str]:
        return self.element.name

    @property
    def building_id(self) -> Optional[str]:
        return self.node.building_id

    @property
    def floor_id(self) -> Optional[str]:
        return self.node.floor_id

    @property
    def zone_id(self) -> Optional[str]:
        return self.node.zone_id

    def to_record(self) -> Dict[str, Any]:
        """Flat record for the UI, keeping node and element ids apart."""
        record = self.element.model_dump(mode="json")
        record.update(self.node.model_dump(mode="json"))
        record["element_id"] = self.element.id
        return record


# =============================================================================
# Connections and media
# =============================================================================


class Connection(BaseModel):
    """Directed pipe between two nodes carrying a single gas."""

    id: str = Field(..., description="Connection identifier")
    site_id: str = Field(..., description="Owning site")
    from_node_id: str = Field(..., description="Upstream node")
    to_node_id: str = Field(..., description="Downstream node")
    gas_type: str = Field(..., description="Normalized gas type")
    diameter_mm: Optional[float] = Field(default=None, gt=0, description="Pipe diameter in mm")
    created_at: str = Field(default_factory=utc_now, description="ISO 8601 creation timestamp")

    @field_validator("gas_type", mode="before")
    @classmethod
    def normalize_gas(cls, v: Any) -> str:
        return normalize_gas_type(v)

    @property
    def key(self) -> Tuple[str, str]:
        return (self.from_node_id, self.to_node_id)

    def touches(self, node_id: str) -> bool:
        return node_id in (self.from_node_id, self.to_node_id)


class Media(BaseModel):
    """Photo or document attached to an element (display only)."""

    id: str = Field(..., description="Media identifier")
    site_id: str = Field(..., description="Owning site")
    element_id: str = Field(..., description="Element the file documents")
    element_type: NodeType = Field(..., description="Variant of that element")
    storage_path: str = Field(..., min_length=1, description="Opaque storage key")
    file_name: Optional[str] = Field(default=None, description="Original file name")
    mime_type: Optional[str] = Field(default=None, description="MIME type")
    label: Optional[str] = Field(default=None, description="Caption")
    created_at: str = Field(default_factory=utc_now, description="ISO 8601 creation timestamp")


__all__ = [
    "ElementBase",
    "ValveElement",
    "SourceElement",
    "FittingElement",
    "Element",
    "element_from_dict",
    "default_state_for",
    "build_element",
    "PLACEMENT_FIELDS",
    "Node",
    "NodePatch",
    "NodeView",
    "Connection",
    "Media",
]
