"""Tests for the query cache and its hook-driven invalidation."""

import pytest

from synoptics.core.cache import QueryCache
from synoptics.core.cascade import CascadeResolver
from synoptics.core.hooks import EntityType
from synoptics.managers.transaction_manager import OperationExecutionError
from synoptics.models.enums import NodeType


@pytest.fixture
def cache(network, layouts):
    cache = QueryCache()
    network.add_hook(cache)
    layouts.add_hook(cache)
    return cache


def load_floors(cache, network, building_id):
    return cache.get_or_load(EntityType.FLOOR, building_id, lambda: network.list_floors(building_id))


class TestLookup:

    def test_get_or_load_counts(self, cache, network, hospital):
        first = load_floors(cache, network, hospital.building.id)
        second = load_floors(cache, network, hospital.building.id)

        assert second is first
        assert (cache.hits, cache.misses) == (1, 1)
        assert (EntityType.FLOOR, hospital.building.id) in cache

    def test_put_get_clear(self):
        cache = QueryCache()
        cache.put(EntityType.SITE, "org-1", ["s"])
        assert cache.get(EntityType.SITE, "org-1") == ["s"]
        assert len(cache) == 1
        cache.clear()
        assert cache.get(EntityType.SITE, "org-1") is None

    def test_write_during_load_not_cached(self, cache, network, hospital):
        site_id = hospital.site.id

        def racing_loader():
            names = [b.name for b in network.list_buildings(site_id)]
            network.create_building(site_id, "Annex")
            return names

        stale = cache.get_or_load(EntityType.BUILDING, site_id, racing_loader)
        assert stale == ["Main"]
        assert (EntityType.BUILDING, site_id) not in cache

        fresh = cache.get_or_load(
            EntityType.BUILDING, site_id, lambda: [b.name for b in network.list_buildings(site_id)]
        )
        assert sorted(fresh) == ["Annex", "Main"]
        assert cache.get(EntityType.BUILDING, site_id) == fresh

    def test_clear_during_load_not_cached(self):
        cache = QueryCache()

        def loader():
            cache.clear()
            return ["s"]

        assert cache.get_or_load(EntityType.SITE, "org-1", loader) == ["s"]
        assert len(cache) == 0


class TestInvalidation:

    def test_create_drops_parent_listing(self, cache, network, hospital):
        load_floors(cache, network, hospital.building.id)
        network.create_floor(hospital.building.id, 2, "Second")

        assert (EntityType.FLOOR, hospital.building.id) not in cache
        assert len(load_floors(cache, network, hospital.building.id)) == 3

    def test_unrelated_keys_survive(self, cache, network, hospital):
        other = network.create_building(hospital.site.id, "Annex")
        load_floors(cache, network, hospital.building.id)
        load_floors(cache, network, other.id)

        network.create_floor(other.id, 0)

        assert (EntityType.FLOOR, hospital.building.id) in cache
        assert (EntityType.FLOOR, other.id) not in cache

    def test_node_move_drops_old_and_new_parent(self, cache, network, hospital):
        valve = network.create_equipment(hospital.site.id, NodeType.VALVE, "oxygen", name="V",
                                         floor_id=hospital.ground.id)
        for floor in (hospital.ground, hospital.first):
            cache.put(EntityType.NODE, floor.id, ["stale"])

        network.update_node(valve.id, {"floor_id": hospital.first.id})

        assert (EntityType.NODE, hospital.ground.id) not in cache
        assert (EntityType.NODE, hospital.first.id) not in cache

    def test_connection_invalidates_site_and_endpoints(self, cache, network, hospital):
        site_id = hospital.site.id
        a = network.create_equipment(site_id, NodeType.SOURCE, "oxygen", name="Tank")
        b = network.create_equipment(site_id, NodeType.VALVE, "oxygen", name="V")
        for key in (site_id, a.id, b.id):
            cache.put(EntityType.CONNECTION, key, [])

        network.create_connection(a.id, b.id, "oxygen")

        assert len(cache) == 0

    def test_layout_events(self, cache, network, layouts, hospital):
        layout = layouts.create_layout(hospital.site.id, "Overview")
        tank = network.create_equipment(hospital.site.id, NodeType.SOURCE, "oxygen", name="Tank")
        cache.put(EntityType.LAYOUT, hospital.site.id, [layout])
        cache.put(EntityType.NODE_POSITION, layout.id, {})

        layouts.set_position(layout.id, tank.id, 0, 0)
        assert (EntityType.NODE_POSITION, layout.id) not in cache
        assert (EntityType.LAYOUT, hospital.site.id) in cache

        cache.put(EntityType.NODE_POSITION, layout.id, {})
        layouts.delete_layout(layout.id)
        assert len(cache) == 0

    def test_rollback_clears_everything(self, cache, network, layouts, hospital, monkeypatch):
        load_floors(cache, network, hospital.building.id)
        resolver = CascadeResolver(network, layouts)

        def failing_purge(entity_type, entity_id):
            raise RuntimeError("boom")

        monkeypatch.setattr(network, "purge", failing_purge)
        with pytest.raises(OperationExecutionError):
            resolver.cascade_delete(EntityType.ZONE, hospital.icu.id)

        assert len(cache) == 0
