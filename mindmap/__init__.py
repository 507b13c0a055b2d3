"""
Mind-Map Layout Engine

This package positions the content nodes of a mind map in 2D space with
a force-directed simulation, manages weighted typed relationships between
nodes, and groups densely-connected nodes into clusters. Each layer
communicates only through explicit contracts, never through shared
mutable state.

LAYER STRUCTURE:
================

1. GRAPH STORE (store/)
   - Responsibility: Own nodes, connections, clusters; enforce invariants
   - Allowed inputs: Validated mutations, committed kinematics
   - Outputs: Immutable Node / Connection / Cluster values
   - MUST NOT: Compute forces, decide clusters, clamp scores

2. RELATIONSHIP INGESTOR (ingestion/)
   - Responsibility: Validate and clamp upstream relationship signals
   - Allowed inputs: RelationshipSignal, content identities
   - Outputs: Result data (errors are values here)
   - MUST NOT: Create placeholder nodes, compute similarity

3. CORE LAYOUT ENGINE (core/)
   - Responsibility: Forces, integration, convergence, cluster detection
   - Allowed inputs: Consistent reads of the store
   - Outputs: Committed kinematics, TickResult, Cluster values
   - MUST NOT: Own graph state, schedule ticks

4. LAYOUT SESSION (session/)
   - Responsibility: Seeding, tick scheduling, cancellation, snapshots
   - Allowed inputs: A store plus configuration
   - Outputs: LayoutSnapshot, SessionEvent
   - MUST NOT: Compute forces, hand out live references

5. OBSERVABILITY & AUDIT LAYER (observability/)
   - Responsibility: Audit logs, metrics, stdlib logging bridge
   - Allowed inputs: Audit entries and metric samples from any layer
   - Outputs: Audit reports, metric aggregates
   - MUST NOT: Modify layout behaviour

CONSTRAINTS ENFORCED:
=====================
- Immutability-first: every value handed out is frozen
- Deterministic: identical store state and seed give identical layouts
- Explicit errors: validation errors are typed and carry an ErrorCode
- Bounded: every run ends CONVERGED, STOPPED_AT_MAX_ITERATIONS or CANCELLED
"""

from .contracts.base import (
    NodeId, ConnectionId, ClusterId, Vector2, Bounds, LayoutState,
    RelationshipType, ErrorCode, Error, Result, LayoutEngineError,
    DuplicateNode, UnknownNode, UnknownConnection, InvalidRange,
    InvalidMass, InvalidStateTransition, DEFAULT_LAYOUT_BOUNDS
)
from .contracts.graph import (
    Node, Connection, Cluster, LayoutSnapshot, TickResult, SessionEvent
)
from .store import GraphStore
from .ingestion import RelationshipIngestor, RelationshipSignal, IngestionReport
from .core import PhysicsConfig, PhysicsIntegrator, ClusterConfig, ClusterDetector
from .session import LayoutSession, SessionConfig
from .engine import EngineConfig, MindMapLayoutEngine

__version__ = "0.1.0"

__all__ = [
    'NodeId', 'ConnectionId', 'ClusterId', 'Vector2', 'Bounds',
    'LayoutState', 'RelationshipType', 'ErrorCode', 'Error', 'Result',
    'LayoutEngineError', 'DuplicateNode', 'UnknownNode', 'UnknownConnection',
    'InvalidRange', 'InvalidMass', 'InvalidStateTransition',
    'DEFAULT_LAYOUT_BOUNDS',
    'Node', 'Connection', 'Cluster', 'LayoutSnapshot', 'TickResult',
    'SessionEvent',
    'GraphStore',
    'RelationshipIngestor', 'RelationshipSignal', 'IngestionReport',
    'PhysicsConfig', 'PhysicsIntegrator', 'ClusterConfig', 'ClusterDetector',
    'LayoutSession', 'SessionConfig',
    'EngineConfig', 'MindMapLayoutEngine',
]
