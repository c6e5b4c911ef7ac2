"""
Tests for the pydantic records: gas normalization, the element tagged union,
node patches, positions and layouts.
"""

import pytest
from pydantic import ValidationError

from synoptics.models.enums import (
    GAS_COLUMN_ORDER,
    GasType,
    NodeType,
    Side,
    ValveState,
    get_gas_config,
    get_gas_line_color,
    normalize_gas_type,
)
from synoptics.models.hierarchy import Floor, Zone
from synoptics.models.layout_metadata import BoundingBox, Layout, NodePosition
from synoptics.models.network import (
    FittingElement,
    NodePatch,
    SourceElement,
    ValveElement,
    build_element,
    default_state_for,
    element_from_dict,
)


class TestGasTypes:
    """Gas type normalization and display configuration."""

    def test_normalize(self):
        assert normalize_gas_type("Medical Air") == "medical_air"
        assert normalize_gas_type("  OXYGEN ") == "oxygen"
        assert normalize_gas_type("vacuum  prod") == "vacuum_prod"

    def test_normalize_empty_rejected(self):
        with pytest.raises(ValueError):
            normalize_gas_type("   ")

    def test_column_order_is_canonical(self):
        assert GAS_COLUMN_ORDER == [g.value for g in GasType]
        assert GAS_COLUMN_ORDER[:2] == ["oxygen", "medical_air"]

    def test_line_colors(self):
        assert get_gas_line_color("oxygen") == "#ef4444"
        assert get_gas_line_color("Medical Air") == "#9333ea"
        assert get_gas_line_color("helium") == "#000000"
        assert get_gas_line_color(None) == "#000000"

    def test_unknown_gas_config_falls_back(self):
        config = get_gas_config("helium")
        assert config["label"] == "helium"

    def test_side_orientation(self):
        assert Side.LEFT.is_horizontal
        assert Side.RIGHT.is_horizontal
        assert not Side.TOP.is_horizontal
        assert not Side.BOTTOM.is_horizontal


class TestElementUnion:
    """The element tagged union discriminated by node_type."""

    def test_valve_defaults_to_closed(self):
        element = build_element(NodeType.VALVE, id="e1", site_id="s1", name="V-1", gas_type="Oxygen")
        assert isinstance(element, ValveElement)
        assert element.state == ValveState.CLOSED
        assert element.gas_type == "oxygen"
        assert element.valve_type == "isolation"

    def test_source_has_no_state(self):
        element = build_element(NodeType.SOURCE, id="e1", site_id="s1", name="Tank", gas_type="oxygen")
        assert isinstance(element, SourceElement)
        assert not hasattr(element, "state")

    def test_fitting_requires_kind(self):
        element = build_element(NodeType.FITTING, id="e1", site_id="s1", gas_type="oxygen",
                                fitting_type="elbow")
        assert isinstance(element, FittingElement)
        assert element.fitting_type == "elbow"

    def test_foreign_attributes_rejected(self):
        with pytest.raises(ValueError):
            build_element(NodeType.SOURCE, id="e1", site_id="s1", name="Tank", gas_type="oxygen",
                          state=ValveState.OPEN)
        with pytest.raises(ValueError):
            build_element(NodeType.VALVE, id="e1", site_id="s1", name="V", gas_type="oxygen",
                          fitting_type="tee")

    def test_default_states(self):
        assert default_state_for(NodeType.VALVE) == ValveState.CLOSED
        assert default_state_for(NodeType.SOURCE) is None
        assert default_state_for(NodeType.FITTING) is None

    def test_from_dict_dispatches_on_tag(self):
        element = element_from_dict({
            "node_type": "valve", "id": "e1", "site_id": "s1",
            "name": "V-1", "gas_type": "vacuum", "state": "open",
        })
        assert isinstance(element, ValveElement)
        assert element.state == ValveState.OPEN

    def test_from_dict_unknown_tag(self):
        with pytest.raises(ValidationError):
            element_from_dict({"node_type": "pump", "id": "e1", "site_id": "s1", "gas_type": "oxygen"})


class TestNodePatch:
    """Partial node updates."""

    def test_only_explicit_fields(self):
        patch = NodePatch(floor_id="f1")
        assert patch.changes() == {"floor_id": "f1"}
        assert patch.touches_placement()

    def test_explicit_none_clears(self):
        patch = NodePatch(zone_id=None)
        assert patch.changes() == {"zone_id": None}
        assert patch.touches_placement()

    def test_non_placement_patch(self):
        patch = NodePatch(outlet_count=4)
        assert not patch.touches_placement()

    def test_unknown_field_rejected(self):
        with pytest.raises(ValidationError):
            NodePatch(site_id="other")


class TestHierarchyRecords:

    def test_floor_display_name(self):
        assert Floor(id="f", building_id="b", floor_number=-1).display_name == "Floor -1"
        assert Floor(id="f", building_id="b", floor_number=2, name="Surgery").display_name == "Surgery"

    def test_zone_name_required(self):
        with pytest.raises(ValidationError):
            Zone(id="z", floor_id="f", name="")


class TestLayoutRecords:
    """Positions, bounding boxes and layout scope."""

    def test_rotation_normalized(self):
        assert NodePosition(x=0, y=0, rotation=450).rotation == 90
        assert NodePosition(x=0, y=0, rotation=-90).rotation == 270

    def test_position_lists(self):
        assert NodePosition.from_list([1, 2]).to_list() == [1.0, 2.0, 0.0]
        with pytest.raises(ValueError):
            NodePosition.from_list([1])

    def test_bounding_box(self):
        box = BoundingBox.from_positions({
            "a": NodePosition(x=0, y=10),
            "b": NodePosition(x=100, y=50),
        })
        assert (box.width, box.height) == (100, 40)
        assert box.center == (50, 30)

    def test_floor_layout_needs_floor(self):
        with pytest.raises(ValidationError):
            Layout(id="l1", site_id="s1", name="Plan", layout_type="floor")
        with pytest.raises(ValidationError):
            Layout(id="l1", site_id="s1", name="Plan", layout_type="site", floor_id="f1")

    def test_etag_tracks_content(self):
        layout = Layout(id="l1", site_id="s1", name="Plan")
        initial = layout.etag
        assert initial == layout.compute_etag()

        layout.positions["n1"] = NodePosition(x=1, y=2)
        layout.touch()
        assert layout.etag != initial

    def test_to_dict_sorted(self):
        layout = Layout(id="l1", site_id="s1", name="Plan",
                        positions={"b": NodePosition(x=1, y=1), "a": NodePosition(x=2, y=2)})
        data = layout.to_dict()
        assert list(data) == sorted(data)
        assert list(data["positions"]) == ["a", "b"]
        assert data["positions"]["a"] == [2.0, 2.0, 0.0]
