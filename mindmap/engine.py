"""
Engine Orchestration Module

This module provides the unified interface for one mind map: it owns
the graph store, the relationship ingestor, observability and the
active layout session, while keeping strict boundary separation.

DESIGN PRINCIPLES:
==================
1. Layers communicate ONLY through contracts
2. Connections enter the store ONLY through the ingestor
3. One active session per store (single writer of kinematics)
4. All operations are traceable through observability
"""

from __future__ import annotations
from dataclasses import dataclass
from typing import Iterable, List, Mapping, Optional, Tuple, Union
import os

from .contracts.base import LayoutState, NodeId, Result, Vector2
from .contracts.graph import (
    Connection, Cluster, LayoutSnapshot, DEFAULT_NODE_RADIUS
)
from .store import GraphStore
from .ingestion import (
    RelationshipIngestor, RelationshipSignal, IngestionConfig,
    IngestionReport, IngestionOutcome
)
from .core.physics import PhysicsConfig
from .core.topology import ClusterConfig, ClusterDetector, GraphMetrics
from .session import LayoutSession, SessionConfig
from .session.seeding import hash_point
from .observability import ObservabilityEngine, ObservabilityConfig, SessionMetrics


_GRID_MODES = {"auto": None, "on": True, "off": False}


@dataclass
class EngineConfig:
    """Unified configuration for one layout engine."""
    physics: PhysicsConfig = None
    clustering: ClusterConfig = None
    session: SessionConfig = None
    ingestion: IngestionConfig = None
    observability: ObservabilityConfig = None

    def __post_init__(self):
        self.physics = self.physics or PhysicsConfig()
        self.clustering = self.clustering or ClusterConfig()
        self.session = self.session or SessionConfig()
        self.ingestion = self.ingestion or IngestionConfig()
        self.observability = self.observability or ObservabilityConfig()

    @staticmethod
    def from_env(environ: Optional[Mapping[str, str]] = None) -> EngineConfig:
        """
        Build a config from MINDMAP_* environment variables.

        Unset variables keep their defaults; malformed values raise
        ValueError naming the variable.
        """
        env = os.environ if environ is None else environ
        physics = {}
        session = {}

        def read(name, convert):
            raw = env.get(name)
            if raw is None or raw.strip() == "":
                return None
            try:
                return convert(raw.strip())
            except ValueError:
                raise ValueError(f"{name} has an invalid value: {raw!r}") from None

        max_iterations = read("MINDMAP_MAX_ITERATIONS", int)
        if max_iterations is not None:
            physics["max_iterations"] = max_iterations
            physics["min_iterations"] = min(PhysicsConfig.min_iterations, max_iterations)
        threshold = read("MINDMAP_CONVERGENCE_THRESHOLD", float)
        if threshold is not None:
            physics["convergence_threshold"] = threshold
        grid = read("MINDMAP_SPATIAL_GRID", str.lower)
        if grid is not None:
            if grid not in _GRID_MODES:
                raise ValueError(
                    f"MINDMAP_SPATIAL_GRID must be one of {sorted(_GRID_MODES)}: {grid!r}"
                )
            physics["use_spatial_grid"] = _GRID_MODES[grid]

        tick_interval = read("MINDMAP_TICK_INTERVAL", float)
        if tick_interval is not None:
            session["tick_interval"] = tick_interval
        seed = read("MINDMAP_SEED", int)
        if seed is not None:
            session["seed"] = seed
        cluster_every = read("MINDMAP_CLUSTER_EVERY", int)
        if cluster_every is not None:
            session["cluster_every"] = cluster_every

        return EngineConfig(
            physics=PhysicsConfig(**physics),
            session=SessionConfig(**session)
        )


class MindMapLayoutEngine:
    """
    Layout engine for one mind map.

    LAYER FLOW:
    ===========
    1. Ingestion: content ids and relationship signals -> GraphStore
    2. Session: seeding + physics ticks + cluster detection
    3. Snapshot: immutable LayoutSnapshot out to the renderer
    4. Observability: records all layer activity

    NO LAYER BYPASSES THIS FLOW.
    """

    def __init__(self, config: Optional[EngineConfig] = None):
        self._config = config or EngineConfig()

        # Initialize layers (each is independent)
        self._store = GraphStore()
        self._ingestor = RelationshipIngestor(self._store, self._config.ingestion)
        self._detector = ClusterDetector(self._config.clustering)
        self._observability = ObservabilityEngine(self._config.observability)
        self._session: Optional[LayoutSession] = None
        self._retired: List[LayoutSession] = []
        self._last_session_id: Optional[str] = None

    @property
    def config(self) -> EngineConfig:
        return self._config

    @property
    def store(self) -> GraphStore:
        return self._store

    # =========================================================================
    # CONTENT INTERFACE
    # =========================================================================

    def register_node(
        self,
        content_id: str,
        importance: Optional[float] = None,
        confidence: Optional[float] = None,
        position: Optional[Tuple[float, float]] = None,
        radius: float = DEFAULT_NODE_RADIUS,
        label: str = ""
    ) -> Result:
        """
        Add a node for a content item.

        Without an explicit position the node starts at its deterministic
        seed point, so nodes added mid-session do not all pile up at the
        origin.
        """
        if position is None:
            try:
                position = hash_point(
                    NodeId(content_id),
                    self._config.session.seed,
                    self._config.session.seed_bounds
                )
            except ValueError:
                position = (0.0, 0.0)  # the ingestor rejects the bad id
        result = self._ingestor.register_node(
            content_id,
            importance=importance,
            confidence=confidence,
            position=position,
            radius=radius,
            label=label
        )
        self.collect_audit_logs()
        return result

    def remove_node(self, content_id: str) -> Tuple[Connection, ...]:
        """Remove a content item and, atomically, its connections."""
        removed = self._store.remove_node(NodeId(content_id))
        self.collect_audit_logs()
        return removed

    def set_position(self, content_id: str, position: Tuple[float, float]):
        """External placement, e.g. the user dragged a node."""
        return self._store.set_position(NodeId(content_id), Vector2(*position))

    # =========================================================================
    # RELATIONSHIP INTERFACE
    # =========================================================================

    def ingest_relationship(
        self,
        signal: Union[RelationshipSignal, Tuple],
        revise_existing: Optional[bool] = None
    ) -> Result:
        """Ingest one relationship signal. Failures come back as data."""
        result = self._ingestor.ingest_raw(signal, revise_existing=revise_existing)
        if result.is_failure:
            self._observability.collect_metric("connections_rejected_total", 1.0)
        else:
            self._record_outcome(result.value[0])
        self.collect_audit_logs()
        return result

    def ingest_relationships(
        self,
        signals: Iterable[Union[RelationshipSignal, Tuple]],
        revise_existing: Optional[bool] = None
    ) -> IngestionReport:
        """Ingest a batch; returns the full report."""
        report = self._ingestor.ingest_batch(signals, revise_existing=revise_existing)
        ingested = len(report.added) + len(report.revised)
        if ingested:
            self._observability.collect_metric("connections_ingested_total", float(ingested))
        if report.duplicates:
            self._observability.collect_metric(
                "connections_duplicate_total", float(report.duplicates)
            )
        if report.rejected:
            self._observability.collect_metric(
                "connections_rejected_total", float(len(report.rejected))
            )
        self.collect_audit_logs()
        return report

    def _record_outcome(self, outcome: str):
        if outcome in (IngestionOutcome.ADDED, IngestionOutcome.REVISED):
            self._observability.collect_metric("connections_ingested_total", 1.0)
        elif outcome == IngestionOutcome.DUPLICATE:
            self._observability.collect_metric("connections_duplicate_total", 1.0)

    def remove_relationship(self, source_id: str, target_id: str) -> Optional[Connection]:
        """Drop the connection between two content items, if any."""
        existing = self._store.find_connection(NodeId(source_id), NodeId(target_id))
        if existing is None:
            return None
        removed = self._store.remove_connection(existing.connection_id)
        self.collect_audit_logs()
        return removed

    # =========================================================================
    # LAYOUT INTERFACE
    # =========================================================================

    def create_session(
        self,
        previous: Optional[LayoutSnapshot] = None,
        start: bool = False
    ) -> LayoutSession:
        """
        Seed a new layout session; any active session is cancelled first.
        """
        self.cancel_session()
        session = LayoutSession(
            self._store,
            physics_config=self._config.physics,
            cluster_config=self._config.clustering,
            config=self._config.session,
            previous=previous,
            observability=self._observability
        )
        self._session = session
        self._last_session_id = session.session_id
        self._observability.log_audit(
            action="session_created",
            entity_id=session.session_id,
            details=f"nodes={self._store.node_count}"
        )
        if start:
            session.start()
        return session

    @property
    def active_session(self) -> Optional[LayoutSession]:
        return self._session

    def cancel_session(self) -> bool:
        """Cancel the active session, if any."""
        session = self._session
        if session is None:
            return False
        changed = session.cancel()
        self._session = None
        self._retired.append(session)
        self.collect_audit_logs()
        return changed

    def run_layout(self, previous: Optional[LayoutSnapshot] = None) -> LayoutSnapshot:
        """Synchronous convenience: seed, run to a terminal state, snapshot."""
        session = self.create_session(previous=previous)
        session.run()
        self.collect_audit_logs()
        return session.snapshot()

    def detect_clusters(self) -> Tuple[Cluster, ...]:
        """Run one cluster detection pass on the current positions."""
        clusters = self._detector.detect(self._store)
        self._observability.collect_metric("clusters_detected", float(len(clusters)))
        self.collect_audit_logs()
        return clusters

    def compute_metrics(self) -> GraphMetrics:
        """Structural metrics of the connection graph."""
        nodes, connections, _ = self._store.snapshot_parts()
        self._detector.build_graph(nodes, connections)
        return self._detector.compute_metrics()

    def snapshot(self) -> LayoutSnapshot:
        """Immutable view of the graph; SEEDED when no session exists."""
        if self._session is not None:
            return self._session.snapshot()
        nodes, connections, clusters = self._store.snapshot_parts()
        return LayoutSnapshot.build(nodes, connections, clusters, LayoutState.SEEDED, 0)

    # =========================================================================
    # CHANGE TRACKING
    # =========================================================================

    def fingerprint(self) -> str:
        return self._store.topology_fingerprint()

    def needs_layout(self, last_fingerprint: Optional[str]) -> bool:
        """True when the graph changed since the fingerprint was taken."""
        return last_fingerprint != self._store.topology_fingerprint()

    # =========================================================================
    # OBSERVABILITY INTERFACE
    # =========================================================================

    def collect_audit_logs(self):
        """Move pending audit entries from every layer into observability."""
        self._observability.collect_many(self._store.drain_audit_log())
        self._observability.collect_many(self._ingestor.drain_audit_log())
        self._observability.collect_many(self._detector.drain_audit_log())
        for session in self._retired:
            self._observability.collect_many(session.drain_audit_log())
        self._retired = []
        if self._session is not None:
            self._observability.collect_many(self._session.drain_audit_log())

    def get_observability(self) -> ObservabilityEngine:
        return self._observability

    def session_metrics(self, session_id: Optional[str] = None) -> Optional[SessionMetrics]:
        """
        Tick count, timing and settle point of a session.

        Defaults to the most recently created session; None when no
        session exists or metrics are disabled.
        """
        session_id = session_id or self._last_session_id
        if session_id is None:
            return None
        return self._observability.session_metrics(session_id)

    def get_audit_report(self):
        self.collect_audit_logs()
        return self._observability.generate_audit_report()


__all__ = ['EngineConfig', 'MindMapLayoutEngine']
