"""Graph analysis over a site's gas network.

The network is loaded into a ``networkx.DiGraph`` whose edges follow the gas
flow (``from_node_id`` -> ``to_node_id``). Node attributes carry the joined
element data so queries never go back to the store.

Example:
    analyzer = NetworkAnalyzer.from_store(network, site_id)
    impact = analyzer.valve_impact(valve_node_id)
    print(impact["total_affected"], impact["affected_valves"])
"""

import logging
from collections import defaultdict
from typing import Any, Dict, Iterable, List, Optional

import networkx as nx

from synoptics.core.errors import InvalidElementType, NotFound
from synoptics.core.network_store import NetworkStore
from synoptics.models.enums import NodeType
from synoptics.models.network import Connection, NodeView
from synoptics.utils.response import create_issue

logger = logging.getLogger(__name__)


class NetworkAnalyzer:
    """Read-only queries over one site's nodes and connections."""

    def __init__(self, nodes: Iterable[NodeView], connections: Iterable[Connection]):
        self.graph = nx.DiGraph()
        self.connections: List[Connection] = list(connections)

        for view in nodes:
            self.graph.add_node(
                view.id,
                node_type=view.node_type.value,
                gas_type=view.gas_type,
                name=view.name,
                building_id=view.building_id,
                floor_id=view.floor_id,
                zone_id=view.zone_id,
            )
        for conn in self.connections:
            # Parallel duplicates collapse onto one edge; self.connections keeps them all
            self.graph.add_edge(
                conn.from_node_id,
                conn.to_node_id,
                connection_id=conn.id,
                gas_type=conn.gas_type,
                diameter_mm=conn.diameter_mm,
            )

        logger.debug(
            f"Network graph built: {self.graph.number_of_nodes()} nodes, "
            f"{self.graph.number_of_edges()} edges"
        )

    @classmethod
    def from_store(cls, store: NetworkStore, site_id: str) -> "NetworkAnalyzer":
        with store.lock:
            store.get_site(site_id)
            return cls(store.list_node_views(site_id), store.list_connections(site_id=site_id))

    def _require(self, node_id: str) -> None:
        if node_id not in self.graph:
            raise NotFound("node", node_id)

    # =========================================================================
    # Traversal
    # =========================================================================

    def downstream_nodes(self, node_id: str) -> List[str]:
        """Every node reachable along the flow direction, excluding the start.

        Returned in breadth-first order.

        Raises:
            NotFound: If the node is not part of the network
        """
        self._require(node_id)
        return [target for _, target in nx.bfs_edges(self.graph, node_id)]

    def upstream_nodes(self, node_id: str) -> List[str]:
        """Every node feeding ``node_id``, excluding it, in breadth-first order."""
        self._require(node_id)
        return [source for _, source in nx.bfs_edges(self.graph, node_id, reverse=True)]

    def shortest_path(self, source_id: str, target_id: str) -> Optional[List[str]]:
        """Shortest flow path between two nodes, or None if unreachable."""
        self._require(source_id)
        self._require(target_id)
        try:
            return nx.shortest_path(self.graph, source_id, target_id)
        except nx.NetworkXNoPath:
            return None

    def valve_impact(self, valve_node_id: str) -> Dict[str, Any]:
        """What loses supply when a valve is closed.

        Affected nodes are grouped under each placement level they carry
        (a floor-anchored node with a building appears in both groupings);
        nodes with no placement at all are listed as unassigned.

        Raises:
            NotFound: If the node is not part of the network
            InvalidElementType: If the node is not a valve
        """
        self._require(valve_node_id)
        if self.graph.nodes[valve_node_id]["node_type"] != NodeType.VALVE.value:
            raise InvalidElementType(
                valve_node_id, self.graph.nodes[valve_node_id]["node_type"], NodeType.VALVE.value
            )

        affected = self.downstream_nodes(valve_node_id)
        by_building: Dict[str, List[str]] = defaultdict(list)
        by_floor: Dict[str, List[str]] = defaultdict(list)
        by_zone: Dict[str, List[str]] = defaultdict(list)
        unassigned: List[str] = []

        for node_id in affected:
            attrs = self.graph.nodes[node_id]
            if not (attrs.get("building_id") or attrs.get("floor_id") or attrs.get("zone_id")):
                unassigned.append(node_id)
                continue
            if attrs.get("building_id"):
                by_building[attrs["building_id"]].append(node_id)
            if attrs.get("floor_id"):
                by_floor[attrs["floor_id"]].append(node_id)
            if attrs.get("zone_id"):
                by_zone[attrs["zone_id"]].append(node_id)

        affected_valves = [
            node_id for node_id in affected
            if self.graph.nodes[node_id].get("node_type") == NodeType.VALVE.value
        ]

        return {
            "valve_node_id": valve_node_id,
            "affected_node_ids": affected,
            "by_building": dict(by_building),
            "by_floor": dict(by_floor),
            "by_zone": dict(by_zone),
            "unassigned": unassigned,
            "total_affected": len(affected),
            "affected_valves": len(affected_valves),
        }

    # =========================================================================
    # Statistics and validation
    # =========================================================================

    def network_stats(self) -> Dict[str, Any]:
        total_nodes = self.graph.number_of_nodes()
        total_connections = len(self.connections)

        nodes_by_type: Dict[str, int] = defaultdict(int)
        gas_distribution: Dict[str, int] = defaultdict(int)
        for _, attrs in self.graph.nodes(data=True):
            nodes_by_type[attrs.get("node_type") or "unknown"] += 1
            gas_distribution[attrs.get("gas_type") or "unknown"] += 1

        # Undirected pair count as the denominator
        possible = total_nodes * (total_nodes - 1) / 2
        return {
            "total_nodes": total_nodes,
            "total_connections": total_connections,
            "nodes_by_type": dict(nodes_by_type),
            "gas_type_distribution": dict(gas_distribution),
            "isolated_nodes": sorted(nx.isolates(self.graph)),
            "avg_connections_per_node": (2 * total_connections / total_nodes) if total_nodes else 0.0,
            "network_density": (total_connections / possible) if possible else 0.0,
            "weakly_connected_components": (
                nx.number_weakly_connected_components(self.graph) if total_nodes else 0
            ),
        }

    def validate(self) -> List[Dict[str, Any]]:
        """Structured issues found in the stored network."""
        issues: List[Dict[str, Any]] = []

        for node_id in sorted(nx.isolates(self.graph)):
            issues.append(create_issue(
                "warning",
                f"Isolated node: {self.graph.nodes[node_id].get('name') or node_id}",
                location=node_id,
                code="NET-TOP-001",
            ))

        seen_pairs: Dict[frozenset, str] = {}
        for conn in self.connections:
            for endpoint in (conn.from_node_id, conn.to_node_id):
                if endpoint not in self.graph:
                    continue
                node_gas = self.graph.nodes[endpoint].get("gas_type")
                if node_gas and node_gas != conn.gas_type:
                    issues.append(create_issue(
                        "error",
                        f"Connection carries {conn.gas_type} but node {endpoint} is {node_gas}",
                        location=conn.id,
                        code="NET-GAS-001",
                        details={"node_id": endpoint, "expected": node_gas, "actual": conn.gas_type},
                    ))

            pair = frozenset(conn.key)
            if pair in seen_pairs:
                issues.append(create_issue(
                    "warning",
                    "Duplicate connection between the same pair of nodes",
                    location=conn.id,
                    code="NET-TOP-002",
                    details={"existing_id": seen_pairs[pair]},
                ))
            else:
                seen_pairs[pair] = conn.id

            if conn.diameter_mm is None:
                issues.append(create_issue(
                    "info",
                    "Connection has no diameter",
                    location=conn.id,
                    code="NET-DAT-001",
                ))

        sources = [
            node_id for node_id, attrs in self.graph.nodes(data=True)
            if attrs.get("node_type") == NodeType.SOURCE.value
        ]
        fed = set(sources)
        for source_id in sources:
            fed |= nx.descendants(self.graph, source_id)

        for node_id, attrs in sorted(self.graph.nodes(data=True)):
            if not attrs.get("name"):
                issues.append(create_issue(
                    "info",
                    f"Node {node_id} has no name",
                    location=node_id,
                    code="NET-DAT-002",
                ))
            if attrs.get("node_type") == NodeType.VALVE.value and node_id not in fed:
                issues.append(create_issue(
                    "info",
                    f"Valve {attrs.get('name') or node_id} is not fed by any source",
                    location=node_id,
                    code="NET-TOP-003",
                ))

        return issues


__all__ = ["NetworkAnalyzer"]
