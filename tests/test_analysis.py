"""Tests for graph analysis over the gas network."""

import pytest

from conftest import make_view
from synoptics.core.analysis import NetworkAnalyzer
from synoptics.core.errors import InvalidElementType, NotFound
from synoptics.models.enums import NodeType
from synoptics.models.network import Connection, Node, NodeView, build_element


def pipe(conn_id, from_id, to_id, gas_type="oxygen", diameter_mm=15.0):
    return Connection(id=conn_id, site_id="s1", from_node_id=from_id, to_node_id=to_id,
                      gas_type=gas_type, diameter_mm=diameter_mm)


def unnamed_fitting(node_id, gas_type):
    element = build_element(NodeType.FITTING, id=f"el-{node_id}", site_id="s1", gas_type=gas_type)
    node = Node(id=node_id, site_id="s1", node_type=NodeType.FITTING, element_id=element.id)
    return NodeView(node=node, element=element)


@pytest.fixture
def analyzer():
    """src -> v1 -> v2 -> fit, plus an isolated valve."""
    nodes = [
        make_view("src", node_type=NodeType.SOURCE),
        make_view("v1", floor_id="f1"),
        make_view("v2", floor_id="f1", zone_id="z1"),
        make_view("fit", building_id=None, node_type=NodeType.FITTING),
        make_view("lone", floor_id="f0"),
    ]
    connections = [pipe("c1", "src", "v1"), pipe("c2", "v1", "v2"), pipe("c3", "v2", "fit")]
    return NetworkAnalyzer(nodes, connections)


class TestTraversal:

    def test_graph_attributes(self, analyzer):
        assert analyzer.graph.nodes["v2"]["zone_id"] == "z1"
        assert analyzer.graph.edges["src", "v1"]["connection_id"] == "c1"

    def test_downstream(self, analyzer):
        assert analyzer.downstream_nodes("v1") == ["v2", "fit"]
        assert analyzer.downstream_nodes("fit") == []

    def test_upstream(self, analyzer):
        assert analyzer.upstream_nodes("fit") == ["v2", "v1", "src"]

    def test_shortest_path(self, analyzer):
        assert analyzer.shortest_path("src", "fit") == ["src", "v1", "v2", "fit"]
        assert analyzer.shortest_path("fit", "src") is None

    def test_unknown_node(self, analyzer):
        with pytest.raises(NotFound):
            analyzer.downstream_nodes("ghost")


class TestValveImpact:

    def test_grouped_by_level(self, analyzer):
        impact = analyzer.valve_impact("v1")

        assert impact["affected_node_ids"] == ["v2", "fit"]
        assert impact["by_building"] == {"b1": ["v2"]}
        assert impact["by_floor"] == {"f1": ["v2"]}
        assert impact["by_zone"] == {"z1": ["v2"]}
        assert impact["unassigned"] == ["fit"]
        assert impact["total_affected"] == 2
        assert impact["affected_valves"] == 1

    def test_leaf_valve(self, analyzer):
        impact = analyzer.valve_impact("lone")
        assert impact["total_affected"] == 0
        assert impact["by_building"] == {}

    def test_not_a_valve(self, analyzer):
        with pytest.raises(InvalidElementType, match="not a valve"):
            analyzer.valve_impact("src")


class TestStatistics:

    def test_network_stats(self, analyzer):
        stats = analyzer.network_stats()

        assert stats["total_nodes"] == 5
        assert stats["total_connections"] == 3
        assert stats["nodes_by_type"] == {"source": 1, "valve": 3, "fitting": 1}
        assert stats["gas_type_distribution"] == {"oxygen": 5}
        assert stats["isolated_nodes"] == ["lone"]
        assert stats["avg_connections_per_node"] == pytest.approx(1.2)
        assert stats["network_density"] == pytest.approx(0.3)
        assert stats["weakly_connected_components"] == 2

    def test_empty_network(self):
        stats = NetworkAnalyzer([], []).network_stats()
        assert stats["total_nodes"] == 0
        assert stats["avg_connections_per_node"] == 0.0
        assert stats["network_density"] == 0.0
        assert stats["weakly_connected_components"] == 0


class TestValidation:

    def test_isolated_and_unfed_valve(self, analyzer):
        issues = analyzer.validate()
        by_code = {issue["code"]: issue for issue in issues}

        assert set(by_code) == {"NET-TOP-001", "NET-TOP-003"}
        assert by_code["NET-TOP-001"]["severity"] == "warning"
        assert by_code["NET-TOP-001"]["location"] == "lone"
        assert by_code["NET-TOP-003"]["severity"] == "info"

    def test_data_and_gas_issues(self):
        nodes = [make_view("a", node_type=NodeType.SOURCE), unnamed_fitting("b", "vacuum")]
        connections = [
            pipe("x", "a", "b", diameter_mm=None),
            pipe("y", "b", "a"),
        ]
        issues = NetworkAnalyzer(nodes, connections).validate()

        gas = [i for i in issues if i["code"] == "NET-GAS-001"]
        assert [i["location"] for i in gas] == ["x", "y"]
        assert gas[0]["severity"] == "error"
        assert gas[0]["details"] == {"node_id": "b", "expected": "vacuum", "actual": "oxygen"}

        duplicate = [i for i in issues if i["code"] == "NET-TOP-002"]
        assert len(duplicate) == 1
        assert duplicate[0]["location"] == "y"
        assert duplicate[0]["details"] == {"existing_id": "x"}

        assert [i["location"] for i in issues if i["code"] == "NET-DAT-001"] == ["x"]
        assert [i["location"] for i in issues if i["code"] == "NET-DAT-002"] == ["b"]
        assert not [i for i in issues if i["code"] == "NET-TOP-003"]

    def test_from_store(self, network, hospital):
        tank = network.create_equipment(hospital.site.id, NodeType.SOURCE, "oxygen", name="Tank")
        valve = network.create_equipment(hospital.site.id, NodeType.VALVE, "oxygen", name="V-1",
                                         floor_id=hospital.first.id)
        network.create_connection(tank.id, valve.id, "oxygen", diameter_mm=22)

        analyzer = NetworkAnalyzer.from_store(network, hospital.site.id)
        assert analyzer.downstream_nodes(tank.id) == [valve.id]
        assert analyzer.validate() == []

    def test_from_store_unknown_site(self, network):
        with pytest.raises(NotFound):
            NetworkAnalyzer.from_store(network, "nope")
