"""
Cluster Detector
================

Structural grouping of mind-map nodes using graph topology.

FENCE POST:
===========
This detector computes TOPOLOGY (connectivity and proximity), not
MEANING. It never reads relationship types or labels.

ALLOWED:
- Connected components over proximity-filtered connections
- Weighted density of a component
- Structural metrics (density, diameter)

FORBIDDEN:
- Centrality measures - implies ranking
- Semantic community detection (upstream analysis owns meaning)
- Writing anything except through GraphStore.replace_clusters
"""

from __future__ import annotations
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple
import math

import networkx as nx

from ..contracts.base import ClusterId, NodeId, Vector2
from ..contracts.graph import (
    Node, Connection, Cluster, AuditLogEntry, AuditEventType
)


@dataclass
class ClusterConfig:
    """Thresholds for cluster qualification."""
    min_cluster_size: int = 2
    min_density: float = 0.1
    proximity_cutoff: Optional[float] = 500.0  # None disables the filter
    padding: float = 30.0
    label_prefix: str = "Cluster"

    def __post_init__(self):
        if self.min_cluster_size < 2:
            raise ValueError("min_cluster_size must be at least 2")
        if self.min_density < 0:
            raise ValueError("min_density must be non-negative")
        if self.proximity_cutoff is not None and self.proximity_cutoff <= 0:
            raise ValueError("proximity_cutoff must be positive or None")
        if self.padding < 0:
            raise ValueError("padding must be non-negative")


@dataclass(frozen=True)
class GraphMetrics:
    """Immutable structural metrics for the connection graph."""
    node_count: int
    edge_count: int
    density: float
    is_connected: bool
    connected_components_count: int
    diameter: Optional[int] = None  # Only for connected graphs


def weighted_density(graph: nx.Graph, members) -> float:
    """Sum of edge strengths over the number of possible pairs."""
    k = len(members)
    if k < 2:
        return 0.0
    total = sum(
        strength for _, _, strength
        in graph.subgraph(members).edges(data="strength", default=0.0)
    )
    return total / (k * (k - 1) / 2.0)


class ClusterDetector:
    """
    Partitions nodes into clusters of densely interconnected neighbours.

    Wraps NetworkX; the graph is rebuilt from the store on every pass, so
    detection is idempotent for an unchanged store.
    """

    def __init__(self, config: Optional[ClusterConfig] = None):
        self._config = config or ClusterConfig()
        self._graph = nx.Graph()
        self._audit_log: List[AuditLogEntry] = []

    @property
    def config(self) -> ClusterConfig:
        return self._config

    def build_graph(
        self,
        nodes: Tuple[Node, ...],
        connections: Tuple[Connection, ...]
    ) -> nx.Graph:
        """
        Build the undirected proximity graph.

        Replaces internal graph state. Connections longer than
        proximity_cutoff are left out.
        """
        graph = nx.Graph()
        positions: Dict[NodeId, Vector2] = {}
        for node in sorted(nodes, key=lambda n: n.node_id):
            graph.add_node(node.node_id)
            positions[node.node_id] = node.position

        cutoff = self._config.proximity_cutoff
        for connection in sorted(connections, key=lambda c: c.connection_id):
            a, b = connection.source, connection.target
            if a not in positions or b not in positions:
                continue
            if cutoff is not None and positions[a].distance_to(positions[b]) > cutoff:
                continue
            graph.add_edge(a, b, strength=connection.strength)

        self._graph = graph
        return graph

    def find_clusters(
        self,
        nodes: Tuple[Node, ...],
        connections: Tuple[Connection, ...]
    ) -> Tuple[Cluster, ...]:
        """Compute clusters without touching any store (pure)."""
        graph = self.build_graph(nodes, connections)
        by_id = {node.node_id: node for node in nodes}

        qualifying: List[Tuple[NodeId, ...]] = []
        for component in nx.connected_components(graph):
            if len(component) < self._config.min_cluster_size:
                continue
            if weighted_density(graph, component) < self._config.min_density:
                continue
            qualifying.append(tuple(sorted(component)))

        # Order by smallest member id for stable labels
        qualifying.sort(key=lambda members: members[0])

        clusters = []
        for number, members in enumerate(qualifying, start=1):
            clusters.append(self._make_cluster(
                members, [by_id[m] for m in members], number
            ))
        return tuple(clusters)

    def detect(self, store) -> Tuple[Cluster, ...]:
        """
        Detect clusters from the store's current state and write them back.

        Returns the clusters actually stored (stale ones are dropped by
        the store when a member was removed meanwhile).
        """
        nodes, connections, _ = store.snapshot_parts()
        clusters = self.find_clusters(nodes, connections)
        stored = store.replace_clusters(clusters)
        self._log_audit(
            action="clusters_detected",
            metadata=(
                ("node_count", len(nodes)),
                ("cluster_count", len(stored)),
                ("clustered_nodes", sum(c.size for c in stored)),
            )
        )
        return stored

    def _make_cluster(
        self,
        members: Tuple[NodeId, ...],
        member_nodes: List[Node],
        number: int
    ) -> Cluster:
        count = len(member_nodes)
        cx = sum(n.position.x for n in member_nodes) / count
        cy = sum(n.position.y for n in member_nodes) / count
        centroid = Vector2(cx, cy)
        spread = max(n.position.distance_to(centroid) for n in member_nodes)
        return Cluster(
            cluster_id=ClusterId.for_members(members),
            member_ids=members,
            centroid=centroid,
            radius=spread + self._config.padding,
            importance=math.fsum(n.importance for n in member_nodes),
            label=f"{self._config.label_prefix} {number}"
        )

    def compute_metrics(self) -> GraphMetrics:
        """
        Compute purely structural metrics of the last built graph.

        - Density: Allowed (geometry)
        - Connectedness: Allowed (topology)
        - Diameter: Allowed (longest shortest path)
        """
        if not self._graph:
            return GraphMetrics(0, 0, 0.0, False, 0, None)

        is_connected = nx.is_connected(self._graph)

        diameter = None
        if is_connected and len(self._graph) > 1:
            diameter = nx.diameter(self._graph)

        return GraphMetrics(
            node_count=self._graph.number_of_nodes(),
            edge_count=self._graph.number_of_edges(),
            density=nx.density(self._graph),
            is_connected=is_connected,
            connected_components_count=nx.number_connected_components(self._graph),
            diameter=diameter
        )

    def _log_audit(self, action: str, metadata: tuple = ()):
        """Add entry to internal audit log."""
        self._audit_log.append(AuditLogEntry.create(
            layer="clustering",
            event_type=AuditEventType.CLUSTERING,
            action=action,
            entity_type="cluster",
            metadata=metadata
        ))

    def get_audit_log(self) -> List[AuditLogEntry]:
        """Return copy of audit log entries."""
        return list(self._audit_log)

    def drain_audit_log(self) -> List[AuditLogEntry]:
        entries, self._audit_log = self._audit_log, []
        return entries


__all__ = ['ClusterConfig', 'ClusterDetector', 'GraphMetrics', 'weighted_density']
