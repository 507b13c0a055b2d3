"""
Graph Contracts

Immutable value types exchanged between layers: nodes, connections,
clusters, layout snapshots and audit/metric records.

WHY VALUES, NOT ENTITIES:
=========================
The graph store REPLACES a node whenever its kinematics or cluster
membership change. Anything handed out of the store is therefore a
point-in-time copy; holding it across a tick boundary can never race
with the integrator.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional, Tuple
import hashlib
import itertools
import math

from .base import (
    NodeId, ConnectionId, ClusterId, Vector2, ZERO, Timestamp,
    LayoutState, RelationshipType
)


# Physics derivation factors
MASS_PER_IMPORTANCE = 10.0
ATTRACTION_PER_IMPORTANCE = 0.5

DEFAULT_NODE_RADIUS = 30.0


# =============================================================================
# NODE
# =============================================================================

@dataclass(frozen=True)
class Node:
    """
    Visual representation of one content item.

    Purely kinematic/topological: selection, drag and colour state belong
    to the rendering layer, keyed by the same NodeId.
    """
    node_id: NodeId
    importance: float = 1.0
    confidence: float = 1.0
    position: Vector2 = ZERO
    velocity: Vector2 = ZERO
    radius: float = DEFAULT_NODE_RADIUS
    cluster_id: Optional[ClusterId] = None
    label: str = ""

    @staticmethod
    def create(
        content_id: str,
        importance: float = 1.0,
        confidence: float = 1.0,
        position: Tuple[float, float] = (0.0, 0.0),
        radius: float = DEFAULT_NODE_RADIUS,
        label: str = ""
    ) -> Node:
        """Convenience constructor from a raw content reference."""
        return Node(
            node_id=NodeId(content_id),
            importance=importance,
            confidence=confidence,
            position=Vector2(float(position[0]), float(position[1])),
            radius=radius,
            label=label
        )

    @property
    def mass(self) -> float:
        return self.importance * MASS_PER_IMPORTANCE

    @property
    def attraction_strength(self) -> float:
        return self.importance * ATTRACTION_PER_IMPORTANCE


# =============================================================================
# CONNECTION
# =============================================================================

@dataclass(frozen=True)
class Connection:
    """
    Typed, weighted relationship between two nodes.

    Presentation attributes are derived on demand, never stored.
    """
    connection_id: ConnectionId
    source: NodeId
    target: NodeId
    relationship_type: RelationshipType
    strength: float
    confidence: float

    @property
    def endpoints(self) -> Tuple[NodeId, NodeId]:
        return (self.source, self.target)

    def touches(self, node_id: NodeId) -> bool:
        return self.source == node_id or self.target == node_id

    def other(self, node_id: NodeId) -> NodeId:
        """Return the opposite endpoint."""
        return self.target if self.source == node_id else self.source

    @property
    def thickness(self) -> float:
        return self.strength * 5.0 + 1.0

    @property
    def opacity(self) -> float:
        return self.confidence * 0.8 + 0.2

    @property
    def color(self) -> str:
        return self.relationship_type.color


# =============================================================================
# CLUSTER
# =============================================================================

@dataclass(frozen=True)
class Cluster:
    """
    Derived grouping of densely-interconnected nodes.
    Never authored - rebuilt wholesale by the cluster detector.
    """
    cluster_id: ClusterId
    member_ids: Tuple[NodeId, ...]
    centroid: Vector2
    radius: float
    importance: float
    label: str = ""

    @property
    def size(self) -> int:
        return len(self.member_ids)

    @property
    def bounding_box(self) -> Tuple[float, float, float, float]:
        """(x, y, width, height) of the cluster's bounding square."""
        return (
            self.centroid.x - self.radius,
            self.centroid.y - self.radius,
            self.radius * 2,
            self.radius * 2,
        )


# =============================================================================
# SNAPSHOT (Outbound contract for the rendering layer)
# =============================================================================

@dataclass(frozen=True)
class LayoutSnapshot:
    """
    Immutable copy of a fully-applied tick.

    Readers never see a partially-updated graph.
    """
    nodes: Tuple[Node, ...]
    connections: Tuple[Connection, ...]
    clusters: Tuple[Cluster, ...]
    state: LayoutState
    iteration: int
    taken_at: Timestamp
    state_hash: str = ""

    @staticmethod
    def build(
        nodes: Tuple[Node, ...],
        connections: Tuple[Connection, ...],
        clusters: Tuple[Cluster, ...],
        state: LayoutState,
        iteration: int
    ) -> LayoutSnapshot:
        """Build a snapshot in canonical order and stamp its state hash."""
        nodes = tuple(sorted(nodes, key=lambda n: n.node_id))
        connections = tuple(sorted(connections, key=lambda c: c.connection_id))
        clusters = tuple(sorted(clusters, key=lambda c: c.member_ids))
        return LayoutSnapshot(
            nodes=nodes,
            connections=connections,
            clusters=clusters,
            state=state,
            iteration=iteration,
            taken_at=Timestamp.now(),
            state_hash=compute_state_hash(nodes, connections, clusters)
        )

    def node(self, node_id: NodeId) -> Optional[Node]:
        for node in self.nodes:
            if node.node_id == node_id:
                return node
        return None

    def positions(self) -> Dict[NodeId, Vector2]:
        return {n.node_id: n.position for n in self.nodes}

    def to_dict(self) -> Dict[str, Any]:
        """JSON-ready mapping for renderers."""
        return {
            "state": self.state.value,
            "iteration": self.iteration,
            "taken_at": self.taken_at.to_iso(),
            "state_hash": self.state_hash,
            "nodes": [
                {
                    "id": n.node_id.value,
                    "x": n.position.x,
                    "y": n.position.y,
                    "radius": n.radius,
                    "importance": n.importance,
                    "confidence": n.confidence,
                    "cluster_id": n.cluster_id.value if n.cluster_id else None,
                    "label": n.label,
                }
                for n in self.nodes
            ],
            "connections": [
                {
                    "id": c.connection_id.value,
                    "source": c.source.value,
                    "target": c.target.value,
                    "relationship_type": c.relationship_type.value,
                    "strength": c.strength,
                    "confidence": c.confidence,
                    "thickness": c.thickness,
                    "opacity": c.opacity,
                    "color": c.color,
                }
                for c in self.connections
            ],
            "clusters": [
                {
                    "id": c.cluster_id.value,
                    "members": [m.value for m in c.member_ids],
                    "x": c.centroid.x,
                    "y": c.centroid.y,
                    "radius": c.radius,
                    "importance": c.importance,
                    "label": c.label,
                }
                for c in self.clusters
            ],
        }


def compute_state_hash(
    nodes: Tuple[Node, ...],
    connections: Tuple[Connection, ...],
    clusters: Tuple[Cluster, ...]
) -> str:
    """Compute deterministic hash over positions, topology and clusters."""
    parts = []
    for n in nodes:
        parts.append(f"{n.node_id.value}@{n.position.x!r},{n.position.y!r}")
    for c in connections:
        parts.append(f"{c.connection_id.value}:{c.strength!r}")
    for cl in clusters:
        parts.append(f"{cl.cluster_id.value}")
    return hashlib.sha256("|".join(parts).encode()).hexdigest()[:16]


# =============================================================================
# SESSION NOTIFICATIONS
# =============================================================================

@dataclass(frozen=True)
class TickResult:
    """Outcome of one integrator tick."""
    iteration: int
    state: LayoutState
    max_displacement: float
    total_displacement: float
    kinetic_energy: float
    node_count: int

    @property
    def is_finite(self) -> bool:
        return math.isfinite(self.max_displacement)


@dataclass(frozen=True)
class SessionEvent:
    """State/progress notification delivered to session listeners."""
    session_id: str
    state: LayoutState
    iteration: int
    max_iterations: int
    max_displacement: Optional[float] = None

    @property
    def progress(self) -> float:
        if self.state.is_settled:
            return 1.0
        return min(1.0, self.iteration / self.max_iterations) if self.max_iterations else 0.0


# =============================================================================
# AUDIT AND METRIC RECORDS
# =============================================================================

class AuditEventType(Enum):
    """Explicit audit event types."""
    MUTATION = "mutation"
    INGESTION = "ingestion"
    SIMULATION = "simulation"
    CLUSTERING = "clustering"
    STATE_CHANGE = "state_change"
    ERROR = "error"
    SYSTEM = "system"


@dataclass(frozen=True)
class AuditLogEntry:
    """Immutable audit log entry."""
    entry_id: str
    event_type: AuditEventType
    timestamp: Timestamp
    layer: str  # Which layer generated this
    action: str
    entity_id: Optional[str] = None
    entity_type: Optional[str] = None
    metadata: Tuple[Tuple[str, str], ...] = field(default_factory=tuple)

    @staticmethod
    def create(
        layer: str,
        event_type: AuditEventType,
        action: str,
        entity_id: Optional[str] = None,
        entity_type: Optional[str] = None,
        metadata: Tuple[Tuple[str, str], ...] = ()
    ) -> AuditLogEntry:
        """Create an entry with a unique id derived from action and time."""
        now = Timestamp.now()
        seq = next(_AUDIT_SEQUENCE)
        entry_hash = hashlib.sha256(
            f"{layer}_{action}|{now.value.timestamp()}|{seq}".encode()
        ).hexdigest()[:16]
        return AuditLogEntry(
            entry_id=f"audit_{entry_hash}",
            event_type=event_type,
            timestamp=now,
            layer=layer,
            action=action,
            entity_id=entity_id,
            entity_type=entity_type,
            metadata=tuple((k, str(v)) for k, v in metadata)
        )

    def get(self, key: str) -> Optional[str]:
        for k, v in self.metadata:
            if k == key:
                return v
        return None


_AUDIT_SEQUENCE = itertools.count()


@dataclass(frozen=True)
class MetricPoint:
    """Immutable metric data point."""
    metric_name: str
    value: float
    timestamp: Timestamp
    session_id: Optional[str] = None
