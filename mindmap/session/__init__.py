"""
Layout Session Layer

RESPONSIBILITY: Seed positions, drive ticks, run cluster detection,
                expose cancellation, snapshots and progress
ALLOWED INPUTS: A GraphStore, component configs, an optional previous
                LayoutSnapshot to seed from
OUTPUTS: LayoutSnapshot (immutable), SessionEvent notifications

WHAT THIS LAYER MUST NOT DO:
============================
- Compute forces (physics layer's job)
- Decide cluster membership (topology layer's job)
- Validate or insert relationships (ingestion layer's job)
- Hand out live references to graph state

BOUNDARY ENFORCEMENT:
=====================
- One computation stream per session: ticks are serialised by a
  per-session tick lock and never overlap
- cancel() takes the tick lock, so once it returns no further tick
  can execute
- Failures on the worker thread or in listeners are captured and
  re-raised from wait(); nothing is swallowed
"""

from __future__ import annotations
from dataclasses import dataclass
from typing import Callable, List, Optional
import hashlib
import itertools
import threading
import time

from ..contracts.base import Bounds, DEFAULT_LAYOUT_BOUNDS, LayoutState, Timestamp
from ..contracts.graph import (
    LayoutSnapshot, TickResult, SessionEvent, AuditLogEntry, AuditEventType
)
from ..core.physics import PhysicsConfig, PhysicsIntegrator
from ..core.topology import ClusterConfig, ClusterDetector
from .seeding import SEED_MODE_FRESH, SEED_MODES, hash_point, seed_positions


SessionListener = Callable[[SessionEvent], None]


@dataclass
class SessionConfig:
    """Configuration for a layout session."""
    tick_interval: float = 1.0 / 60.0  # seconds between background ticks
    seed: int = 0
    seed_bounds: Bounds = DEFAULT_LAYOUT_BOUNDS
    seed_mode: str = SEED_MODE_FRESH
    jitter_radius: float = 20.0
    cluster_every: int = 0  # 0 = only once the layout settles
    thread_name: str = "mindmap-layout"

    def __post_init__(self):
        if self.tick_interval < 0:
            raise ValueError("tick_interval must be non-negative")
        if self.cluster_every < 0:
            raise ValueError("cluster_every must be non-negative")
        if self.seed_mode not in SEED_MODES:
            raise ValueError(f"seed_mode must be one of {SEED_MODES}")
        if self.jitter_radius < 0:
            raise ValueError("jitter_radius must be non-negative")


_SESSION_SEQUENCE = itertools.count(1)


class LayoutSession:
    """
    One force-directed layout run over a graph store.

    Seeding happens on construction; ticking starts with start() (background
    thread) or step()/run() (caller's thread).
    """

    def __init__(
        self,
        store,
        physics_config: Optional[PhysicsConfig] = None,
        cluster_config: Optional[ClusterConfig] = None,
        config: Optional[SessionConfig] = None,
        previous: Optional[LayoutSnapshot] = None,
        observability=None
    ):
        self._store = store
        self._config = config or SessionConfig()
        self._integrator = PhysicsIntegrator(physics_config)
        self._detector = ClusterDetector(cluster_config)
        self._observability = observability

        seq = next(_SESSION_SEQUENCE)
        self._session_id = "session_" + hashlib.sha256(
            f"{seq}|{self._config.seed}|{Timestamp.now().value.timestamp()}".encode()
        ).hexdigest()[:16]

        self._tick_lock = threading.RLock()
        self._stop = threading.Event()
        self._done = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._listeners: List[SessionListener] = []
        self._failure: Optional[BaseException] = None
        self._audit_log: List[AuditLogEntry] = []

        self._seed(previous)

    # =========================================================================
    # PROPERTIES
    # =========================================================================

    @property
    def session_id(self) -> str:
        return self._session_id

    @property
    def state(self) -> LayoutState:
        return self._integrator.state

    @property
    def iteration(self) -> int:
        return self._integrator.iteration

    @property
    def progress(self) -> float:
        """iteration / max_iterations, 1.0 once settled."""
        if self.state.is_settled:
            return 1.0
        return min(1.0, self.iteration / self._integrator.config.max_iterations)

    def is_settled(self) -> bool:
        return self.state.is_settled

    @property
    def is_running(self) -> bool:
        return self._thread is not None and not self._done.is_set()

    # =========================================================================
    # SEEDING
    # =========================================================================

    def _seed(self, previous: Optional[LayoutSnapshot]):
        nodes = self._store.nodes()
        positions = seed_positions(
            nodes,
            self._store.connections(),
            seed=self._config.seed,
            bounds=self._config.seed_bounds,
            previous=previous,
            jitter_radius=self._config.jitter_radius,
            mode=self._config.seed_mode
        )
        self._store.reset_kinematics(positions)
        self._log_audit(
            action="session_seeded",
            event_type=AuditEventType.STATE_CHANGE,
            metadata=(
                ("node_count", len(nodes)),
                ("seed", self._config.seed),
                ("seed_mode", self._config.seed_mode),
                ("inherited", previous is not None),
            )
        )

    def seed_position(self, node_id):
        """Hash-derived starting point for a node added mid-session."""
        return hash_point(node_id, self._config.seed, self._config.seed_bounds)

    # =========================================================================
    # TICKING
    # =========================================================================

    def step(self) -> TickResult:
        """Run exactly one tick on the caller's thread."""
        with self._tick_lock:
            if self.state.is_terminal:
                return self._integrator.tick(self._store)
            started = time.perf_counter()
            result = self._integrator.tick(self._store)
            duration_ms = (time.perf_counter() - started) * 1000.0
            self._record_tick(result, duration_ms)

            if result.state.is_settled:
                self._on_settled(result)
            elif self._config.cluster_every and result.iteration % self._config.cluster_every == 0:
                self._detect_clusters()

            self._notify(result.state, result.max_displacement)
            return result

    def run(self) -> LayoutState:
        """Tick synchronously until a terminal state; returns it."""
        if self.is_running:
            raise RuntimeError("session is already running in the background")
        while not self.state.is_terminal and not self._stop.is_set():
            self.step()
        self._done.set()
        self._raise_failure()
        return self.state

    def start(self):
        """Begin ticking on a dedicated daemon thread. Idempotent."""
        if self._thread is not None:
            return
        if self.state.is_terminal:
            self._done.set()
            return
        self._thread = threading.Thread(
            target=self._worker,
            name=f"{self._config.thread_name}-{self._session_id[-6:]}",
            daemon=True
        )
        self._thread.start()

    def _worker(self):
        try:
            while not self._stop.is_set():
                result = self.step()
                if result.state.is_terminal:
                    break
                if self._config.tick_interval > 0:
                    self._stop.wait(self._config.tick_interval)
        except Exception as exc:
            self._capture_failure(exc, "worker_failed")
        finally:
            self._done.set()

    def cancel(self) -> bool:
        """
        Stop the session. Safe from any thread and any state.

        Returns once no further tick can execute. Returns False when the
        session had already reached a terminal state.
        """
        self._stop.set()
        with self._tick_lock:
            changed = self._integrator.cancel()
            if changed:
                self._log_audit(
                    action="session_cancelled",
                    event_type=AuditEventType.STATE_CHANGE,
                    metadata=(("iteration", self.iteration),)
                )
                self._notify(LayoutState.CANCELLED, None)
        if self._thread is None:
            self._done.set()
        return changed

    def wait(self, timeout: Optional[float] = None) -> bool:
        """
        Block until the background run finishes.

        Returns False on timeout. Re-raises any captured failure.
        """
        if self._thread is None:
            finished = self.state.is_terminal or self._done.is_set()
        else:
            finished = self._done.wait(timeout)
        self._raise_failure()
        return finished

    # =========================================================================
    # OUTPUTS
    # =========================================================================

    def snapshot(self) -> LayoutSnapshot:
        """Immutable snapshot of the last fully-applied tick."""
        with self._tick_lock:
            nodes, connections, clusters = self._store.snapshot_parts()
            return LayoutSnapshot.build(
                nodes, connections, clusters, self.state, self.iteration
            )

    def add_listener(self, listener: SessionListener):
        """Register a callback receiving a SessionEvent after every tick."""
        with self._tick_lock:
            self._listeners.append(listener)

    def remove_listener(self, listener: SessionListener):
        with self._tick_lock:
            if listener in self._listeners:
                self._listeners.remove(listener)

    # =========================================================================
    # INTERNALS
    # =========================================================================

    def _on_settled(self, result: TickResult):
        self._detect_clusters()
        self._log_audit(
            action="session_settled",
            event_type=AuditEventType.STATE_CHANGE,
            metadata=(
                ("state", result.state.value),
                ("iteration", result.iteration),
            )
        )
        if self._observability is not None:
            self._observability.collect_metric(
                "iterations_to_settle", float(result.iteration), self._session_id
            )

    def _detect_clusters(self):
        clusters = self._detector.detect(self._store)
        if self._observability is not None:
            self._observability.collect_metric(
                "clusters_detected", float(len(clusters)), self._session_id
            )

    def _record_tick(self, result: TickResult, duration_ms: float):
        if self._observability is None:
            return
        session_id = self._session_id
        self._observability.collect_metric("layout_ticks_total", 1.0, session_id)
        self._observability.collect_metric("tick_duration_ms", duration_ms, session_id)
        self._observability.collect_metric("max_displacement", result.max_displacement, session_id)
        self._observability.collect_metric("kinetic_energy", result.kinetic_energy, session_id)

    def _notify(self, state: LayoutState, max_displacement: Optional[float]):
        event = SessionEvent(
            session_id=self._session_id,
            state=state,
            iteration=self.iteration,
            max_iterations=self._integrator.config.max_iterations,
            max_displacement=max_displacement
        )
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception as exc:
                self._capture_failure(exc, "listener_failed")

    def _capture_failure(self, exc: BaseException, action: str):
        if self._failure is None:
            self._failure = exc
        self._log_audit(
            action=action,
            event_type=AuditEventType.ERROR,
            metadata=(("error", type(exc).__name__), ("message", str(exc)))
        )

    def _raise_failure(self):
        if self._failure is not None:
            raise self._failure

    def _log_audit(
        self,
        action: str,
        event_type: AuditEventType = AuditEventType.SIMULATION,
        metadata: tuple = ()
    ):
        """Add entry to internal audit log."""
        self._audit_log.append(AuditLogEntry.create(
            layer="session",
            event_type=event_type,
            action=action,
            entity_id=self._session_id,
            entity_type="session",
            metadata=metadata
        ))

    def get_audit_log(self) -> List[AuditLogEntry]:
        """Own entries plus those of the integrator and cluster detector."""
        return (
            list(self._audit_log)
            + self._integrator.get_audit_log()
            + self._detector.get_audit_log()
        )

    def drain_audit_log(self) -> List[AuditLogEntry]:
        with self._tick_lock:
            entries, self._audit_log = self._audit_log, []
            return (
                entries
                + self._integrator.drain_audit_log()
                + self._detector.drain_audit_log()
            )


__all__ = ['LayoutSession', 'SessionConfig', 'SessionListener']
