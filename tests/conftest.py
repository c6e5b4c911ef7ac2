"""Shared fixtures for the synoptics test suite."""

from types import SimpleNamespace
from typing import Any, List, Optional

import pytest

from synoptics.config import settings
from synoptics.core.cascade import CascadeResolver
from synoptics.core.hooks import EntityType, LifecycleHook
from synoptics.core.layout_store import LayoutStore
from synoptics.core.network_store import NetworkStore
from synoptics.models.enums import NodeType
from synoptics.models.network import Node, NodeView, build_element


# ============================================================================
# Stores
# ============================================================================

@pytest.fixture
def network():
    """Network store with policies pinned to their defaults."""
    return NetworkStore(enforce_placement=True, reject_reverse_connections=False)


@pytest.fixture
def layouts(network):
    return LayoutStore(network)


@pytest.fixture
def resolver(network, layouts):
    return CascadeResolver(network, layouts)


@pytest.fixture
def hospital(network):
    """One site, one building with floors 0 and 1, a zone on floor 1."""
    site = network.create_site("org-1", "General Hospital")
    building = network.create_building(site.id, "Main")
    ground = network.create_floor(building.id, 0, "Ground")
    first = network.create_floor(building.id, 1, "First")
    icu = network.create_zone(first.id, "ICU")
    return SimpleNamespace(site=site, building=building, ground=ground, first=first, icu=icu)


@pytest.fixture
def restore_flags():
    """Restore feature flags changed by a test."""
    saved = dict(settings.FEATURE_FLAGS)
    yield settings
    settings.FEATURE_FLAGS.clear()
    settings.FEATURE_FLAGS.update(saved)


# ============================================================================
# Hooks
# ============================================================================

class TrackingHook(LifecycleHook):
    """Hook that records every lifecycle event."""

    def __init__(self):
        self.created: List[tuple] = []
        self.updated: List[tuple] = []
        self.deleted: List[tuple] = []
        self.restored: List[Any] = []

    def on_created(self, entity_type: EntityType, entity_id: str, record: Any) -> None:
        self.created.append((entity_type, entity_id, record))

    def on_updated(self, entity_type: EntityType, entity_id: str, old_record: Any,
                   new_record: Any) -> None:
        self.updated.append((entity_type, entity_id, old_record, new_record))

    def on_deleted(self, entity_type: EntityType, entity_id: str, record: Any) -> None:
        self.deleted.append((entity_type, entity_id, record))

    def on_restored(self, store: Any) -> None:
        self.restored.append(store)


@pytest.fixture
def tracking_hook():
    return TrackingHook()


# ============================================================================
# Detached node views for the pure layout engine
# ============================================================================

def make_view(
    node_id: str,
    gas_type: str = "oxygen",
    building_id: Optional[str] = "b1",
    floor_id: Optional[str] = None,
    zone_id: Optional[str] = None,
    node_type: NodeType = NodeType.VALVE,
    site_id: str = "s1",
) -> NodeView:
    """Build a NodeView without a store."""
    element = build_element(
        node_type,
        id=f"el-{node_id}",
        site_id=site_id,
        gas_type=gas_type,
        name=node_id.upper(),
        fitting_type="tee" if node_type == NodeType.FITTING else None,
    )
    node = Node(
        id=node_id,
        site_id=site_id,
        node_type=node_type,
        element_id=element.id,
        building_id=building_id,
        floor_id=floor_id,
        zone_id=zone_id,
    )
    return NodeView(node=node, element=element)
