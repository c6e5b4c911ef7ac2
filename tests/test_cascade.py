"""
Tests for the Cascade Resolver.

Tests cover:
1. Dependency reports per anchor level (read-only)
2. Ordered deletion of the full closure
3. Confirmation etags (StaleConfirmation)
4. Atomicity: rollback on failure
5. Cascade guard (CascadeInProgress) and concurrent writers
6. Layout annotations removed with their layout
"""

import threading
from types import SimpleNamespace

import pytest

from synoptics.core.cascade import CascadeResolver
from synoptics.core.errors import CascadeInProgress, DependentsExist, NotFound, StaleConfirmation
from synoptics.core.hooks import EntityType, LifecycleHook
from synoptics.core.layout_store import LayoutStore
from synoptics.core.network_store import NetworkStore
from synoptics.managers.transaction_manager import OperationExecutionError
from synoptics.models.enums import NodeType


@pytest.fixture
def plant(network, layouts, hospital):
    """Hospital with equipment on every level, two layouts and some media."""
    site_id = hospital.site.id
    src = network.create_equipment(site_id, NodeType.SOURCE, "oxygen", name="Tank",
                                   building_id=hospital.building.id)
    v_first = network.create_equipment(site_id, NodeType.VALVE, "oxygen", name="V-1",
                                       building_id=hospital.building.id, floor_id=hospital.first.id)
    v_icu = network.create_equipment(site_id, NodeType.VALVE, "oxygen", name="V-ICU",
                                     building_id=hospital.building.id, floor_id=hospital.first.id,
                                     zone_id=hospital.icu.id)
    v_ground = network.create_equipment(site_id, NodeType.VALVE, "oxygen", name="V-0",
                                        building_id=hospital.building.id, floor_id=hospital.ground.id)
    outdoor = network.create_equipment(site_id, NodeType.SOURCE, "oxygen", name="Bulk tank")

    c1 = network.create_connection(src.id, v_first.id, "oxygen")
    c2 = network.create_connection(v_first.id, v_icu.id, "oxygen")
    c3 = network.create_connection(src.id, v_ground.id, "oxygen")
    media = network.create_media(v_icu.element.id, "photos/icu.jpg")

    site_layout = layouts.create_layout(site_id, "Overview")
    for i, node in enumerate((src, v_first, v_icu, v_ground, outdoor)):
        layouts.set_position(site_layout.id, node.id, 100 * i, 50)
    floor_layout = layouts.create_layout(site_id, "First floor", layout_type="floor",
                                         floor_id=hospital.first.id)
    layouts.set_position(floor_layout.id, v_first.id, 10, 10)
    layouts.set_position(floor_layout.id, v_icu.id, 10, 60)

    return SimpleNamespace(
        src=src, v_first=v_first, v_icu=v_icu, v_ground=v_ground, outdoor=outdoor,
        c1=c1, c2=c2, c3=c3, media=media,
        site_layout=site_layout, floor_layout=floor_layout,
        **vars(hospital),
    )


class TestDependencyReport:
    """compute_dependencies never mutates and lists the whole closure."""

    def test_floor_report(self, resolver, plant):
        report = resolver.compute_dependencies(EntityType.FLOOR, plant.first.id)

        assert report.anchor_name == "First"
        assert report.site_id == plant.site.id
        assert report.buildings == []
        assert report.floors == []
        assert report.zones == [plant.icu.id]
        assert report.nodes == sorted([plant.v_first.id, plant.v_icu.id])
        assert report.connections == sorted([plant.c1.id, plant.c2.id])
        assert report.layouts == [plant.floor_layout.id]
        assert report.media == [plant.media.id]
        assert report.counts["node_positions"] == 4
        assert report.counts["elements"] == 2

    def test_building_report(self, resolver, plant):
        report = resolver.compute_dependencies("building", plant.building.id)

        assert report.floors == sorted([plant.ground.id, plant.first.id])
        assert report.zones == [plant.icu.id]
        assert plant.outdoor.id not in report.nodes
        assert len(report.nodes) == 4
        assert len(report.connections) == 3
        assert report.total == sum(report.counts.values())

    def test_zone_report(self, resolver, plant):
        report = resolver.compute_dependencies(EntityType.ZONE, plant.icu.id)
        assert report.nodes == [plant.v_icu.id]
        assert report.connections == [plant.c2.id]
        assert report.layouts == []
        assert sorted(report.node_positions) == sorted([
            (plant.site_layout.id, plant.v_icu.id),
            (plant.floor_layout.id, plant.v_icu.id),
        ])

    def test_site_report_includes_everything(self, resolver, plant):
        report = resolver.compute_dependencies(EntityType.SITE, plant.site.id)
        assert len(report.buildings) == 1
        assert len(report.nodes) == 5
        assert len(report.elements) == 5
        assert sorted(report.layouts) == sorted([plant.site_layout.id, plant.floor_layout.id])

    def test_shared_element_kept_outside_closure(self, network, resolver, plant):
        network.create_node(plant.site.id, plant.v_first.element.id,
                            building_id=plant.building.id, floor_id=plant.ground.id)
        report = resolver.compute_dependencies(EntityType.FLOOR, plant.first.id)
        assert plant.v_first.element.id not in report.elements
        assert plant.v_icu.element.id in report.elements

    def test_summary_text(self, resolver, plant):
        summary = resolver.compute_dependencies(EntityType.FLOOR, plant.first.id).summary()
        assert summary.startswith("Deleting floor 'First' will also permanently delete:")
        assert "1 zone," in summary
        assert "2 nodes" in summary
        assert "1 media file" in summary

    def test_empty_anchor_summary(self, network, resolver, hospital):
        summary = resolver.compute_dependencies(EntityType.FLOOR, hospital.ground.id).summary()
        assert summary == "Deleting floor 'Ground' removes nothing else."

    def test_report_is_read_only(self, network, resolver, plant):
        before = network.counts()
        resolver.compute_dependencies(EntityType.SITE, plant.site.id)
        assert network.counts() == before

    def test_etag_stable_until_change(self, network, resolver, plant):
        first = resolver.compute_dependencies(EntityType.FLOOR, plant.first.id).etag
        assert resolver.compute_dependencies(EntityType.FLOOR, plant.first.id).etag == first

        network.create_equipment(plant.site.id, NodeType.VALVE, "oxygen", name="V-new",
                                 floor_id=plant.first.id)
        assert resolver.compute_dependencies(EntityType.FLOOR, plant.first.id).etag != first

    def test_non_hierarchy_anchor(self, resolver, plant):
        with pytest.raises(ValueError):
            resolver.compute_dependencies(EntityType.NODE, plant.v_first.id)

    def test_unknown_anchor(self, resolver):
        with pytest.raises(NotFound):
            resolver.compute_dependencies(EntityType.FLOOR, "missing")

    def test_to_dict(self, resolver, plant):
        data = resolver.compute_dependencies(EntityType.ZONE, plant.icu.id).to_dict()
        assert data["anchor_type"] == "zone"
        assert data["counts"]["nodes"] == 1
        assert {"layout_id", "node_id"} == set(data["node_positions"][0])
        assert len(data["etag"]) == 64

    def test_report_lists_annotations_of_deleted_layouts(self, layouts, resolver, plant):
        region = layouts.create_annotation(plant.floor_layout.id, "zone", "ICU", 0, 0)
        layouts.create_annotation(plant.site_layout.id, "building", "Main", 0, 0)

        report = resolver.compute_dependencies(EntityType.FLOOR, plant.first.id)

        assert report.annotations == [region.id]
        assert "1 annotation," in report.summary()


class TestCascadeDelete:
    """Ordered, all-or-nothing deletion."""

    def test_floor_cascade(self, network, layouts, resolver, plant):
        report = resolver.cascade_delete(EntityType.FLOOR, plant.first.id)

        assert report.total > 0
        assert not network.exists(EntityType.FLOOR, plant.first.id)
        assert not network.exists(EntityType.ZONE, plant.icu.id)
        for node in (plant.v_first, plant.v_icu):
            assert not network.exists(EntityType.NODE, node.id)
            assert not network.exists(EntityType.ELEMENT, node.element.id)
        assert not network.exists(EntityType.MEDIA, plant.media.id)
        assert plant.floor_layout.id not in layouts
        assert set(layouts.get_positions(plant.site_layout.id)) == {
            plant.src.id, plant.v_ground.id, plant.outdoor.id
        }

        # Outside the closure
        assert network.exists(EntityType.FLOOR, plant.ground.id)
        assert network.exists(EntityType.CONNECTION, plant.c3.id)
        assert network.exists(EntityType.NODE, plant.src.id)

    def test_site_cascade_empties_stores(self, network, layouts, resolver, plant):
        resolver.cascade_delete(EntityType.SITE, plant.site.id)
        assert all(n == 0 for n in network.counts().values())
        assert len(layouts) == 0

    def test_layout_annotations_deleted_with_floor(self, layouts, resolver, plant):
        region = layouts.create_annotation(plant.floor_layout.id, "zone", "ICU", 0, 0)
        kept = layouts.create_annotation(plant.site_layout.id, "building", "Main", 0, 0)

        resolver.cascade_delete(EntityType.FLOOR, plant.first.id)

        with pytest.raises(NotFound):
            layouts.get_annotation(region.id)
        assert layouts.get_annotation(kept.id).title == "Main"

    def test_node_anchored_in_another_site(self):
        network = NetworkStore(enforce_placement=False, reject_reverse_connections=False)
        layouts = LayoutStore(network)
        resolver = CascadeResolver(network, layouts)
        north = network.create_site("org-1", "North")
        south = network.create_site("org-1", "South")
        south_building = network.create_building(south.id, "South wing")
        stray = network.create_equipment(north.id, NodeType.VALVE, "oxygen", name="V-X",
                                         building_id=south_building.id)
        tank = network.create_equipment(north.id, NodeType.SOURCE, "oxygen", name="Tank")
        pipe = network.create_connection(tank.id, stray.id, "oxygen")

        assert resolver.compute_dependencies(EntityType.SITE, south.id).nodes == [stray.id]
        report = resolver.compute_dependencies(EntityType.BUILDING, south_building.id)
        assert report.nodes == [stray.id]
        assert report.elements == [stray.element.id]
        assert report.connections == [pipe.id]

        resolver.cascade_delete(EntityType.BUILDING, south_building.id, expected_etag=report.etag)

        assert not network.exists(EntityType.NODE, stray.id)
        assert not network.exists(EntityType.ELEMENT, stray.element.id)
        assert not network.exists(EntityType.CONNECTION, pipe.id)
        assert network.exists(EntityType.NODE, tank.id)
        assert all(n.building_id is None for n in network.list_nodes())

    def test_direct_floor_delete_is_restricted(self, network, plant):
        with pytest.raises(DependentsExist) as exc_info:
            network.delete_floor(plant.first.id)
        assert exc_info.value.counts["layouts"] == 1
        assert exc_info.value.counts["nodes"] == 2

    def test_confirmed_etag(self, resolver, plant):
        report = resolver.compute_dependencies(EntityType.ZONE, plant.icu.id)
        deleted = resolver.cascade_delete(EntityType.ZONE, plant.icu.id, expected_etag=report.etag)
        assert deleted.nodes == report.nodes

    def test_stale_confirmation(self, network, resolver, plant):
        report = resolver.compute_dependencies(EntityType.ZONE, plant.icu.id)
        network.create_equipment(plant.site.id, NodeType.VALVE, "oxygen", name="V-late",
                                 zone_id=plant.icu.id)

        with pytest.raises(StaleConfirmation):
            resolver.cascade_delete(EntityType.ZONE, plant.icu.id, expected_etag=report.etag)
        assert network.exists(EntityType.ZONE, plant.icu.id)
        assert network.exists(EntityType.NODE, plant.v_icu.id)

    def test_failure_rolls_back_everything(self, network, layouts, resolver, plant, monkeypatch):
        original_purge = NetworkStore.purge

        def failing_purge(entity_type, entity_id):
            if entity_type == EntityType.ZONE:
                raise RuntimeError("disk on fire")
            return original_purge(network, entity_type, entity_id)

        monkeypatch.setattr(network, "purge", failing_purge)
        before = network.counts()
        positions_before = layouts.get_positions(plant.site_layout.id)

        with pytest.raises(OperationExecutionError) as exc_info:
            resolver.cascade_delete(EntityType.FLOOR, plant.first.id)

        assert isinstance(exc_info.value.__cause__, RuntimeError)
        assert network.counts() == before
        assert network.exists(EntityType.CONNECTION, plant.c2.id)
        assert plant.floor_layout.id in layouts
        assert layouts.get_positions(plant.site_layout.id) == positions_before
        assert not network.in_cascade(plant.first.id)
        assert resolver.transaction_manager.transactions == {}

    def test_transaction_closed_after_commit(self, resolver, plant):
        resolver.cascade_delete(EntityType.ZONE, plant.icu.id)
        assert resolver.transaction_manager.transactions == {}


class TestCascadeGuard:
    """Writes into an open cascade closure are refused."""

    def test_writes_into_closure_refused(self, network, plant):
        network.enter_cascade({plant.first.id: EntityType.FLOOR})
        try:
            with pytest.raises(CascadeInProgress):
                network.create_zone(plant.first.id, "Recovery")
            with pytest.raises(CascadeInProgress):
                network.create_equipment(plant.site.id, NodeType.VALVE, "oxygen", name="V",
                                         floor_id=plant.first.id)
            with pytest.raises(CascadeInProgress):
                network.delete_floor(plant.first.id)
        finally:
            network.exit_cascade([plant.first.id])

        network.create_zone(plant.first.id, "Recovery")

    def test_overlapping_cascade_refused(self, network, resolver, plant):
        network.enter_cascade({plant.icu.id: EntityType.ZONE})
        try:
            with pytest.raises(CascadeInProgress):
                resolver.cascade_delete(EntityType.FLOOR, plant.first.id)
        finally:
            network.exit_cascade([plant.icu.id])
        assert network.exists(EntityType.FLOOR, plant.first.id)

    def test_concurrent_writer_sees_not_found(self, network, resolver, plant):
        """A writer blocked during the cascade runs after it and finds the parent gone."""
        outcome = {}

        def writer():
            try:
                network.create_zone(plant.first.id, "Late zone")
                outcome["result"] = "created"
            except NotFound:
                outcome["result"] = "not_found"
            except CascadeInProgress:
                outcome["result"] = "in_progress"

        threads = []

        class StartWriterHook(LifecycleHook):
            def on_deleted(self, entity_type, entity_id, record):
                if not threads:
                    thread = threading.Thread(target=writer)
                    threads.append(thread)
                    thread.start()

        network.add_hook(StartWriterHook())
        resolver.cascade_delete(EntityType.FLOOR, plant.first.id)
        threads[0].join(timeout=5)

        assert outcome["result"] == "not_found"
