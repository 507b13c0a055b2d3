"""
Graph Store Layer

RESPONSIBILITY: Own nodes, connections and clusters; enforce graph invariants
ALLOWED INPUTS: Validated mutations from ingestion, kinematics from the
                integrator, cluster assignments from the detector
OUTPUTS: Immutable Node / Connection / Cluster values

WHAT THIS LAYER MUST NOT DO:
============================
- Compute forces or positions (that's the physics layer's job)
- Decide cluster membership (that's the topology layer's job)
- Clamp or normalise upstream scores (that's the ingestion layer's job)
- Hand out references to anything mutable

BOUNDARY ENFORCEMENT:
=====================
- Arena-plus-index: flat dicts keyed by identifier, adjacency is a set of
  ConnectionIds per node. No object holds a pointer to another object.
- Every public method runs under one re-entrant lock, so each call is
  atomic with respect to ticks and other callers.
- Values returned are frozen; changes REPLACE the stored value.

INVARIANTS:
===========
1. At most one connection per unordered node pair
2. strength and confidence of every connection lie in [0, 1]
3. Every node has mass > 0
4. No connection references an absent node (removal cascades)
5. Every cluster member exists and carries that cluster's id
"""

from __future__ import annotations
from dataclasses import dataclass, replace
from typing import Dict, FrozenSet, Iterable, List, Mapping, Optional, Set, Tuple
import hashlib
import math
import threading

# ONLY import from contracts - never from other layers' implementations
from ..contracts.base import (
    NodeId, ConnectionId, ClusterId, Vector2, ZERO, RelationshipType,
    DuplicateNode, UnknownNode, UnknownConnection, InvalidRange, InvalidMass,
    is_real, require_unit_interval
)
from ..contracts.graph import (
    Node, Connection, Cluster, AuditLogEntry, AuditEventType
)


@dataclass(frozen=True)
class PhysicsView:
    """
    Consistent read of the graph for one tick.

    revision identifies the store state the view was taken from; it is
    handed back on commit so that external placements made during the
    tick are not overwritten.
    """
    nodes: Tuple[Node, ...]
    connections: Tuple[Connection, ...]
    revision: int


class GraphStore:
    """
    Single source of truth for the mind-map graph.

    External callers (UI, ingestor) mutate it only through these methods.
    """

    def __init__(self):
        self._lock = threading.RLock()
        self._nodes: Dict[NodeId, Node] = {}
        self._connections: Dict[ConnectionId, Connection] = {}
        self._adjacency: Dict[NodeId, Set[ConnectionId]] = {}
        self._clusters: Dict[ClusterId, Cluster] = {}
        self._revision: int = 0
        self._positioned_at: Dict[NodeId, int] = {}
        self._audit_log: List[AuditLogEntry] = []

    # =========================================================================
    # NODES
    # =========================================================================

    def add_node(self, node: Node) -> Node:
        """
        Insert a node.

        Raises DuplicateNode if the identity exists, InvalidMass for
        non-positive or non-finite importance, InvalidRange for confidence
        or importance outside [0, 1]. Numpy scalar scores are stored as floats.
        """
        node = _validate_node(node)
        with self._lock:
            if node.node_id in self._nodes:
                raise DuplicateNode(
                    "node already exists", node_id=node.node_id.value
                )
            # Clusters are derived state; never accept an authored assignment
            stored = replace(node, cluster_id=None) if node.cluster_id else node
            self._nodes[stored.node_id] = stored
            self._adjacency[stored.node_id] = set()
            self._bump(stored.node_id)
            self._log_audit(
                action="node_added",
                entity_id=stored.node_id.value,
                entity_type="node",
                metadata=(("importance", stored.importance),)
            )
            return stored

    def remove_node(self, node_id: NodeId) -> Tuple[Connection, ...]:
        """
        Remove a node and every connection touching it, atomically.

        No-op if absent. Returns the connections removed with it.
        """
        with self._lock:
            if node_id not in self._nodes:
                return ()
            removed = tuple(
                self._connections.pop(cid)
                for cid in sorted(self._adjacency.pop(node_id))
            )
            for connection in removed:
                self._adjacency[connection.other(node_id)].discard(
                    connection.connection_id
                )
            del self._nodes[node_id]
            self._positioned_at.pop(node_id, None)
            self._invalidate_clusters_containing(node_id)
            self._revision += 1
            self._log_audit(
                action="node_removed",
                entity_id=node_id.value,
                entity_type="node",
                metadata=(("cascaded_connections", len(removed)),)
            )
            return removed

    def get_node(self, node_id: NodeId) -> Node:
        with self._lock:
            try:
                return self._nodes[node_id]
            except KeyError:
                raise UnknownNode("node not found", node_id=node_id.value) from None

    def has_node(self, node_id: NodeId) -> bool:
        with self._lock:
            return node_id in self._nodes

    def nodes(self) -> Tuple[Node, ...]:
        """All nodes, ordered by identity."""
        with self._lock:
            return tuple(self._nodes[k] for k in sorted(self._nodes))

    @property
    def node_count(self) -> int:
        with self._lock:
            return len(self._nodes)

    def set_position(self, node_id: NodeId, position: Vector2) -> Node:
        """
        Place a node externally (e.g. after a user drag).

        Velocity is reset. A tick computed from an older view never
        overwrites this placement.
        """
        position = Vector2(float(position[0]), float(position[1]))
        if not position.is_finite():
            raise ValueError("position must be finite")
        with self._lock:
            node = self.get_node(node_id)
            updated = replace(node, position=position, velocity=ZERO)
            self._nodes[node_id] = updated
            self._bump(node_id)
            return updated

    # =========================================================================
    # CONNECTIONS
    # =========================================================================

    def add_connection(
        self,
        source: NodeId,
        target: NodeId,
        relationship_type: RelationshipType,
        strength: float,
        confidence: float
    ) -> Optional[Connection]:
        """
        Insert a connection between two existing nodes.

        Returns None and changes nothing when an equivalent unordered
        connection already exists - callers must not assume an update.
        """
        if source == target:
            raise ValueError("a connection requires two distinct nodes")
        strength = require_unit_interval("strength", strength)
        confidence = require_unit_interval("confidence", confidence)
        relationship_type = RelationshipType(relationship_type)

        with self._lock:
            for endpoint in (source, target):
                if endpoint not in self._nodes:
                    raise UnknownNode(
                        "connection endpoint not found", node_id=endpoint.value
                    )

            connection_id = ConnectionId.for_pair(source, target)
            if connection_id in self._connections:
                self._log_audit(
                    action="duplicate_connection_ignored",
                    entity_id=connection_id.value,
                    entity_type="connection"
                )
                return None

            connection = Connection(
                connection_id=connection_id,
                source=source,
                target=target,
                relationship_type=relationship_type,
                strength=strength,
                confidence=confidence
            )
            self._connections[connection_id] = connection
            self._adjacency[source].add(connection_id)
            self._adjacency[target].add(connection_id)
            self._revision += 1
            self._log_audit(
                action="connection_added",
                entity_id=connection_id.value,
                entity_type="connection",
                metadata=(
                    ("source", source.value),
                    ("target", target.value),
                    ("relationship_type", relationship_type.value),
                    ("strength", strength),
                )
            )
            return connection

    def update_connection(
        self,
        connection_id: ConnectionId,
        strength: float,
        confidence: float
    ) -> Connection:
        """In-place revision for a re-scored relationship."""
        strength = require_unit_interval("strength", strength)
        confidence = require_unit_interval("confidence", confidence)
        with self._lock:
            current = self.get_connection(connection_id)
            updated = replace(current, strength=strength, confidence=confidence)
            self._connections[connection_id] = updated
            self._revision += 1
            self._log_audit(
                action="connection_updated",
                entity_id=connection_id.value,
                entity_type="connection",
                metadata=(("strength", strength), ("confidence", confidence))
            )
            return updated

    def remove_connection(self, connection_id: ConnectionId) -> Optional[Connection]:
        """Remove a single connection. No-op if absent."""
        with self._lock:
            connection = self._connections.pop(connection_id, None)
            if connection is None:
                return None
            self._adjacency[connection.source].discard(connection_id)
            self._adjacency[connection.target].discard(connection_id)
            self._revision += 1
            self._log_audit(
                action="connection_removed",
                entity_id=connection_id.value,
                entity_type="connection"
            )
            return connection

    def get_connection(self, connection_id: ConnectionId) -> Connection:
        with self._lock:
            try:
                return self._connections[connection_id]
            except KeyError:
                raise UnknownConnection(
                    "connection not found", connection_id=connection_id.value
                ) from None

    def find_connection(self, a: NodeId, b: NodeId) -> Optional[Connection]:
        """Look up the connection for an unordered pair."""
        with self._lock:
            return self._connections.get(ConnectionId.for_pair(a, b))

    def connections(self) -> Tuple[Connection, ...]:
        """All connections, ordered by identity."""
        with self._lock:
            return tuple(self._connections[k] for k in sorted(self._connections))

    @property
    def connection_count(self) -> int:
        with self._lock:
            return len(self._connections)

    def connections_of(self, node_id: NodeId) -> Tuple[Connection, ...]:
        """All connections touching a node. Order is not significant."""
        with self._lock:
            if node_id not in self._nodes:
                raise UnknownNode("node not found", node_id=node_id.value)
            return tuple(
                self._connections[cid] for cid in sorted(self._adjacency[node_id])
            )

    def connected_nodes(self, node_id: NodeId) -> FrozenSet[Node]:
        """Neighbour nodes reachable through one connection."""
        with self._lock:
            return frozenset(
                self._nodes[c.other(node_id)] for c in self.connections_of(node_id)
            )

    # =========================================================================
    # CLUSTERS (Derived state, replaced wholesale)
    # =========================================================================

    def clusters(self) -> Tuple[Cluster, ...]:
        with self._lock:
            return tuple(self._clusters[k] for k in sorted(self._clusters))

    def replace_clusters(self, clusters: Iterable[Cluster]) -> Tuple[Cluster, ...]:
        """
        Atomically replace every cluster and rewrite node cluster ids.

        Clusters referencing a node removed since detection are stale and
        dropped. Returns the clusters actually stored.
        """
        with self._lock:
            accepted: Dict[ClusterId, Cluster] = {}
            stale = 0
            for cluster in clusters:
                if all(m in self._nodes for m in cluster.member_ids):
                    accepted[cluster.cluster_id] = cluster
                else:
                    stale += 1

            assignment: Dict[NodeId, ClusterId] = {}
            for cluster in accepted.values():
                for member in cluster.member_ids:
                    assignment[member] = cluster.cluster_id

            for node_id, node in self._nodes.items():
                cluster_id = assignment.get(node_id)
                if node.cluster_id != cluster_id:
                    self._nodes[node_id] = replace(node, cluster_id=cluster_id)

            self._clusters = accepted
            self._log_audit(
                action="clusters_replaced",
                entity_type="cluster",
                metadata=(("cluster_count", len(accepted)), ("stale", stale))
            )
            return self.clusters()

    def _invalidate_clusters_containing(self, node_id: NodeId):
        for cluster_id, cluster in list(self._clusters.items()):
            if node_id in cluster.member_ids:
                del self._clusters[cluster_id]
                for member in cluster.member_ids:
                    node = self._nodes.get(member)
                    if node is not None and node.cluster_id == cluster_id:
                        self._nodes[member] = replace(node, cluster_id=None)

    # =========================================================================
    # TICK INTERFACE (Integrator only)
    # =========================================================================

    def physics_view(self) -> PhysicsView:
        """Consistent read of nodes and connections for one tick."""
        with self._lock:
            return PhysicsView(
                nodes=self.nodes(),
                connections=self.connections(),
                revision=self._revision
            )

    def commit_kinematics(
        self,
        updates: Mapping[NodeId, Tuple[Vector2, Vector2]],
        base_revision: int
    ) -> int:
        """
        Apply one tick's positions and velocities atomically.

        Nodes removed, or placed externally, after base_revision are
        skipped. Returns the number of nodes updated.
        """
        applied = 0
        with self._lock:
            for node_id, (position, velocity) in updates.items():
                node = self._nodes.get(node_id)
                if node is None:
                    continue
                if self._positioned_at.get(node_id, -1) > base_revision:
                    continue
                self._nodes[node_id] = replace(node, position=position, velocity=velocity)
                applied += 1
        return applied

    def reset_kinematics(self, positions: Mapping[NodeId, Vector2]):
        """Seed positions and zero every velocity (session start)."""
        with self._lock:
            for node_id, node in self._nodes.items():
                position = positions.get(node_id, node.position)
                self._nodes[node_id] = replace(node, position=position, velocity=ZERO)
            self._revision += 1

    # =========================================================================
    # READ-ONLY SUMMARIES
    # =========================================================================

    def snapshot_parts(self) -> Tuple[Tuple[Node, ...], Tuple[Connection, ...], Tuple[Cluster, ...]]:
        """Consistent read of the whole graph."""
        with self._lock:
            return self.nodes(), self.connections(), self.clusters()

    @property
    def revision(self) -> int:
        with self._lock:
            return self._revision

    def topology_fingerprint(self) -> str:
        """
        Deterministic fingerprint of ids, connection endpoints and scores.

        Positions are excluded: the fingerprint changes only when the
        graph needs a fresh layout.
        """
        with self._lock:
            parts = [f"n:{node_id.value}:{self._nodes[node_id].importance!r}"
                     for node_id in sorted(self._nodes)]
            for connection_id in sorted(self._connections):
                c = self._connections[connection_id]
                parts.append(
                    f"c:{connection_id.value}:{c.relationship_type.value}:{c.strength!r}"
                )
        return hashlib.sha256("|".join(parts).encode()).hexdigest()

    def _bump(self, node_id: NodeId):
        self._revision += 1
        self._positioned_at[node_id] = self._revision

    def _log_audit(
        self,
        action: str,
        entity_id: Optional[str] = None,
        entity_type: Optional[str] = None,
        metadata: tuple = ()
    ):
        """Add entry to internal audit log."""
        self._audit_log.append(AuditLogEntry.create(
            layer="store",
            event_type=AuditEventType.MUTATION,
            action=action,
            entity_id=entity_id,
            entity_type=entity_type,
            metadata=metadata
        ))

    def get_audit_log(self) -> List[AuditLogEntry]:
        """Return copy of audit log entries."""
        with self._lock:
            return list(self._audit_log)

    def drain_audit_log(self) -> List[AuditLogEntry]:
        """Return and clear collected entries (hand-off to observability)."""
        with self._lock:
            entries, self._audit_log = self._audit_log, []
            return entries


def _validate_node(node: Node) -> Node:
    """Check a node and return it with plain float scores."""
    importance = node.importance
    if not is_real(importance) or not math.isfinite(importance) or importance <= 0.0:
        raise InvalidMass(
            "importance must be positive and finite so that mass > 0",
            node_id=node.node_id.value, importance=repr(importance)
        )
    if importance > 1.0:
        raise InvalidRange(
            "importance must be between 0.0 and 1.0",
            node_id=node.node_id.value, importance=repr(importance)
        )
    confidence = require_unit_interval("confidence", node.confidence)
    if not (is_real(node.radius) and math.isfinite(node.radius)
            and node.radius > 0):
        raise ValueError("radius must be a positive finite number")
    if not (Vector2(*node.position).is_finite() and Vector2(*node.velocity).is_finite()):
        raise ValueError("position and velocity must be finite")
    return replace(
        node, importance=float(importance), confidence=confidence, radius=float(node.radius)
    )


__all__ = ['GraphStore', 'PhysicsView']
