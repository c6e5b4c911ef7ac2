"""Tests for feature flags and YAML layout configuration."""

import pytest

from synoptics.config.settings import (
    ConfigLoadError,
    get_all_flags,
    is_enabled,
    load_layout_config,
    set_flag,
)
from synoptics.core.errors import DuplicateConnection
from synoptics.core.network_store import NetworkStore
from synoptics.models.enums import NodeType


class TestFeatureFlags:

    def test_known_flags(self):
        assert set(get_all_flags()) == {"enforce_placement", "reject_reverse_connections", "zone_columns"}

    def test_unknown_flag(self):
        with pytest.raises(KeyError, match="Unknown feature flag"):
            is_enabled("elk_layout")
        with pytest.raises(KeyError):
            set_flag("elk_layout", True)

    def test_set_flag(self, restore_flags):
        set_flag("zone_columns", True)
        assert is_enabled("zone_columns") is True
        assert get_all_flags()["zone_columns"] is True

    def test_get_all_flags_is_copy(self, restore_flags):
        flags = get_all_flags()
        flags["zone_columns"] = not flags["zone_columns"]
        assert get_all_flags()["zone_columns"] != flags["zone_columns"]

    def test_store_follows_flag_when_unpinned(self, restore_flags):
        set_flag("reject_reverse_connections", True)
        store = NetworkStore()
        site = store.create_site("org-1", "Clinic")
        a = store.create_equipment(site.id, NodeType.SOURCE, "oxygen", name="Tank")
        b = store.create_equipment(site.id, NodeType.VALVE, "oxygen", name="V")
        store.create_connection(a.id, b.id, "oxygen")

        with pytest.raises(DuplicateConnection):
            store.create_connection(b.id, a.id, "oxygen")

        set_flag("reject_reverse_connections", False)
        store.create_connection(b.id, a.id, "oxygen")

    def test_pinned_policy_ignores_flag(self, restore_flags):
        set_flag("enforce_placement", False)
        assert NetworkStore(enforce_placement=True).enforce_placement is True


class TestLayoutConfigFile:

    def test_load_sections(self, tmp_path, restore_flags):
        set_flag("zone_columns", False)
        path = tmp_path / "layout.yaml"
        path.write_text(
            "column_layout:\n"
            "  start_x: 100\n"
            "  valve_spacing: 50\n"
            "router:\n"
            "  elbow_offset: 30\n"
        )

        column, router = load_layout_config(path)

        assert column.start_x == 100
        assert column.valve_spacing == 50
        assert column.floor_height == 200
        assert column.zone_columns is False
        assert router.elbow_offset == 30
        assert router.min_gap == 10

    def test_zone_columns_default_from_flag(self, tmp_path, restore_flags):
        set_flag("zone_columns", True)
        path = tmp_path / "layout.yaml"
        path.write_text("router: {}\n")
        column, _ = load_layout_config(path)
        assert column.zone_columns is True

    def test_explicit_zone_columns_wins(self, tmp_path, restore_flags):
        set_flag("zone_columns", True)
        path = tmp_path / "layout.yaml"
        path.write_text("column_layout:\n  zone_columns: false\n")
        column, _ = load_layout_config(path)
        assert column.zone_columns is False

    def test_empty_file_gives_defaults(self, tmp_path):
        path = tmp_path / "layout.yaml"
        path.write_text("")
        column, router = load_layout_config(path)
        assert column.start_y == 280
        assert router.elbow_offset == 20

    @pytest.mark.parametrize("content", [
        "column_layout: [1, 2\n",
        "- just\n- a list\n",
        "router:\n  elbow_offset: -1\n",
        "column_layout:\n  start_x: wide\n",
    ])
    def test_invalid_files(self, tmp_path, content):
        path = tmp_path / "layout.yaml"
        path.write_text(content)
        with pytest.raises(ConfigLoadError):
            load_layout_config(path)

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigLoadError, match="not found"):
            load_layout_config(tmp_path / "missing.yaml")
