"""
Physics Integrator
==================

Force-directed layout integration over the graph store.

One tick:
1. Take a consistent PhysicsView from the store
2. Compute ALL forces from that one view (repulsion + attraction)
3. Integrate velocities and positions (semi-implicit Euler with damping)
4. Commit positions/velocities back atomically
5. Decide convergence / termination

DETERMINISM:
============
Nodes are indexed in NodeId order, pairs are visited in (i, j) order and
forces are accumulated with numpy.add.at, so the same store state always
yields bit-identical results regardless of insertion order or whether the
spatial grid is used.

WHAT THIS MODULE MUST NOT DO:
=============================
- Mutate the store except through commit_kinematics
- Validate masses (the store guarantees mass > 0)
- Raise during integration (max iterations and cancellation are outcomes)
"""

from __future__ import annotations
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple

import numpy as np

from ..contracts.base import Bounds, LayoutState, NodeId, Vector2
from ..contracts.graph import (
    Node, Connection, TickResult, AuditLogEntry, AuditEventType
)
from .lifecycle import LayoutLifecycle
from .spatial import SpatialGrid, all_pairs


# Below this distance two nodes are treated as coincident
COINCIDENT_EPSILON = 1e-9


@dataclass
class PhysicsConfig:
    """Tunables for the force simulation. All constants live here."""
    time_step: float = 1.0 / 60.0
    damping: float = 0.9
    repulsion_strength: float = 1.0e6
    attraction_strength: float = 60.0
    minimum_distance: float = 60.0
    maximum_distance: float = 250.0
    convergence_threshold: float = 0.05
    max_iterations: int = 1000
    min_iterations: int = 10
    max_speed: Optional[float] = 3000.0
    bounds: Optional[Bounds] = None
    use_spatial_grid: Optional[bool] = None  # None = automatic
    spatial_grid_threshold: int = 200

    def __post_init__(self):
        if self.time_step <= 0:
            raise ValueError("time_step must be positive")
        if not 0.0 < self.damping <= 1.0:
            raise ValueError("damping must be in (0, 1]")
        if self.repulsion_strength < 0 or self.attraction_strength < 0:
            raise ValueError("force strengths must be non-negative")
        if not 0.0 < self.minimum_distance < self.maximum_distance:
            raise ValueError("require 0 < minimum_distance < maximum_distance")
        if self.convergence_threshold <= 0:
            raise ValueError("convergence_threshold must be positive")
        if self.max_iterations < 1:
            raise ValueError("max_iterations must be at least 1")
        if not 0 <= self.min_iterations <= self.max_iterations:
            raise ValueError("min_iterations must be in [0, max_iterations]")
        if self.max_speed is not None and self.max_speed <= 0:
            raise ValueError("max_speed must be positive")

    def rest_length(self, strength: float) -> float:
        """Spring rest length: strong relationships sit closer together."""
        return self.maximum_distance - strength * (
            self.maximum_distance - self.minimum_distance
        )

    def grid_enabled(self, node_count: int) -> bool:
        if self.use_spatial_grid is None:
            return node_count > self.spatial_grid_threshold
        return self.use_spatial_grid


# =============================================================================
# FRAME (Array form of one PhysicsView)
# =============================================================================

@dataclass(frozen=True, eq=False)
class PhysicsFrame:
    """
    Dense arrays for one tick. Row k of every array is node_ids[k].

    Arrays are never written after construction.
    """
    node_ids: Tuple[NodeId, ...]
    positions: np.ndarray       # (n, 2)
    velocities: np.ndarray      # (n, 2)
    masses: np.ndarray          # (n,)
    attraction: np.ndarray      # (n,)
    edge_source: np.ndarray     # (m,) node row index
    edge_target: np.ndarray     # (m,) node row index
    edge_strength: np.ndarray   # (m,)

    @staticmethod
    def from_graph(
        nodes: Tuple[Node, ...],
        connections: Tuple[Connection, ...]
    ) -> PhysicsFrame:
        """Build a frame; nodes are re-sorted by id, dangling edges dropped."""
        ordered = sorted(nodes, key=lambda n: n.node_id)
        index = {node.node_id: k for k, node in enumerate(ordered)}
        n = len(ordered)

        positions = np.array([node.position for node in ordered], dtype=float).reshape(n, 2)
        velocities = np.array([node.velocity for node in ordered], dtype=float).reshape(n, 2)
        masses = np.array([node.mass for node in ordered], dtype=float)
        attraction = np.array([node.attraction_strength for node in ordered], dtype=float)

        sources: List[int] = []
        targets: List[int] = []
        strengths: List[float] = []
        for connection in sorted(connections, key=lambda c: c.connection_id):
            s = index.get(connection.source)
            t = index.get(connection.target)
            if s is None or t is None:
                continue
            sources.append(s)
            targets.append(t)
            strengths.append(connection.strength)

        return PhysicsFrame(
            node_ids=tuple(node.node_id for node in ordered),
            positions=positions,
            velocities=velocities,
            masses=masses,
            attraction=attraction,
            edge_source=np.asarray(sources, dtype=np.intp),
            edge_target=np.asarray(targets, dtype=np.intp),
            edge_strength=np.asarray(strengths, dtype=float)
        )

    @property
    def node_count(self) -> int:
        return len(self.node_ids)


@dataclass(frozen=True, eq=False)
class PhysicsStep:
    """Result of integrating one frame."""
    positions: np.ndarray
    velocities: np.ndarray
    displacement: np.ndarray
    kinetic_energy: float

    @property
    def max_displacement(self) -> float:
        return float(self.displacement.max()) if self.displacement.size else 0.0

    @property
    def total_displacement(self) -> float:
        return float(self.displacement.sum())

    def updates(self, frame: PhysicsFrame) -> Dict[NodeId, Tuple[Vector2, Vector2]]:
        """Kinematics keyed by node id, ready for commit_kinematics."""
        return {
            node_id: (
                Vector2(float(self.positions[k, 0]), float(self.positions[k, 1])),
                Vector2(float(self.velocities[k, 0]), float(self.velocities[k, 1])),
            )
            for k, node_id in enumerate(frame.node_ids)
        }


# =============================================================================
# FORCES
# =============================================================================

def candidate_pairs(
    positions: np.ndarray,
    config: PhysicsConfig,
    grid: Optional[SpatialGrid] = None
) -> Tuple[np.ndarray, np.ndarray]:
    """
    Pairs to test for repulsion, in (i, j) order.

    In automatic mode the grid is only used when the nodes spread over
    more than a 2x2 block of cells; otherwise it would return every pair.
    """
    n = len(positions)
    if not config.grid_enabled(n):
        return all_pairs(n)
    grid = (grid or SpatialGrid(config.maximum_distance)).build(positions)
    if config.use_spatial_grid is None and grid.spans_single_block:
        return all_pairs(n)
    return grid.candidate_pairs()


def repulsion_forces(
    positions: np.ndarray,
    config: PhysicsConfig,
    pairs: Optional[Tuple[np.ndarray, np.ndarray]] = None
) -> np.ndarray:
    """
    Inverse-square repulsion between every pair within maximum_distance.

    Distances below minimum_distance are clamped to it. Coincident nodes
    are pushed apart along the x axis: the lower row moves towards -x.
    """
    forces = np.zeros_like(positions, dtype=float)
    i_idx, j_idx = pairs if pairs is not None else all_pairs(len(positions))
    if i_idx.size == 0:
        return forces

    delta = positions[i_idx] - positions[j_idx]
    distance = np.hypot(delta[:, 0], delta[:, 1])

    coincident = distance < COINCIDENT_EPSILON
    safe = np.where(coincident, 1.0, distance)
    unit = delta / safe[:, None]
    unit[coincident] = (-1.0, 0.0)

    clamped = np.maximum(distance, config.minimum_distance)
    magnitude = config.repulsion_strength / (clamped * clamped)
    magnitude[distance > config.maximum_distance] = 0.0

    pair_force = unit * magnitude[:, None]
    np.add.at(forces, i_idx, pair_force)
    np.add.at(forces, j_idx, -pair_force)
    return forces


def attraction_forces(frame: PhysicsFrame, config: PhysicsConfig) -> np.ndarray:
    """
    Spring attraction along connections, active only beyond rest length.
    """
    forces = np.zeros_like(frame.positions, dtype=float)
    if frame.edge_source.size == 0:
        return forces

    s_idx, t_idx = frame.edge_source, frame.edge_target
    strength = frame.edge_strength
    delta = frame.positions[t_idx] - frame.positions[s_idx]
    distance = np.hypot(delta[:, 0], delta[:, 1])

    rest = config.maximum_distance - strength * (
        config.maximum_distance - config.minimum_distance
    )
    pair_attraction = (frame.attraction[s_idx] + frame.attraction[t_idx]) / 2.0
    stretch = np.where(distance > rest, distance - rest, 0.0)
    magnitude = config.attraction_strength * pair_attraction * strength * stretch

    safe = np.where(distance > 0.0, distance, 1.0)
    edge_force = delta / safe[:, None] * magnitude[:, None]
    np.add.at(forces, s_idx, edge_force)
    np.add.at(forces, t_idx, -edge_force)
    return forces


def compute_forces(
    frame: PhysicsFrame,
    config: PhysicsConfig,
    grid: Optional[SpatialGrid] = None
) -> np.ndarray:
    """Net force on every node, all computed from the same frame."""
    pairs = candidate_pairs(frame.positions, config, grid)
    return repulsion_forces(frame.positions, config, pairs) + attraction_forces(frame, config)


def integrate(frame: PhysicsFrame, forces: np.ndarray, config: PhysicsConfig) -> PhysicsStep:
    """
    Semi-implicit Euler step.

    a = F / m;  v = (v + a * dt) * damping;  p = p + v * dt
    """
    n = frame.node_count
    if n == 0:
        empty = np.zeros((0, 2))
        return PhysicsStep(empty, empty, np.zeros(0), 0.0)

    acceleration = forces / frame.masses[:, None]
    velocities = (frame.velocities + acceleration * config.time_step) * config.damping

    if config.max_speed is not None:
        speed = np.hypot(velocities[:, 0], velocities[:, 1])
        too_fast = speed > config.max_speed
        if too_fast.any():
            velocities[too_fast] *= (config.max_speed / speed[too_fast])[:, None]

    positions = frame.positions + velocities * config.time_step
    if config.bounds is not None:
        b = config.bounds
        positions[:, 0] = np.clip(positions[:, 0], b.x, b.max_x)
        positions[:, 1] = np.clip(positions[:, 1], b.y, b.max_y)

    moved = positions - frame.positions
    displacement = np.hypot(moved[:, 0], moved[:, 1])
    speed_sq = (velocities * velocities).sum(axis=1)
    kinetic_energy = float(0.5 * (frame.masses * speed_sq).sum())

    return PhysicsStep(
        positions=positions,
        velocities=velocities,
        displacement=displacement,
        kinetic_energy=kinetic_energy
    )


def simulate_step(
    frame: PhysicsFrame,
    config: PhysicsConfig,
    grid: Optional[SpatialGrid] = None
) -> PhysicsStep:
    """Forces plus integration for one frame (pure function)."""
    return integrate(frame, compute_forces(frame, config, grid), config)


# =============================================================================
# INTEGRATOR
# =============================================================================

class PhysicsIntegrator:
    """
    Ticks a graph store towards equilibrium.

    Owns the lifecycle state and the iteration counter; the store owns
    every position and velocity.
    """

    def __init__(self, config: Optional[PhysicsConfig] = None):
        self._config = config or PhysicsConfig()
        self._lifecycle = LayoutLifecycle()
        self._iteration = 0
        self._grid = SpatialGrid(self._config.maximum_distance)
        self._last_result: Optional[TickResult] = None
        self._audit_log: List[AuditLogEntry] = []

    @property
    def config(self) -> PhysicsConfig:
        return self._config

    @property
    def state(self) -> LayoutState:
        return self._lifecycle.state

    @property
    def iteration(self) -> int:
        return self._iteration

    @property
    def last_result(self) -> Optional[TickResult]:
        return self._last_result

    def tick(self, store) -> TickResult:
        """
        Run one tick against the store.

        A tick on a terminal integrator is a no-op returning the current
        state with zero displacement.
        """
        state = self._lifecycle.state
        if state.is_terminal:
            return TickResult(
                iteration=self._iteration,
                state=state,
                max_displacement=0.0,
                total_displacement=0.0,
                kinetic_energy=0.0,
                node_count=store.node_count
            )
        if state == LayoutState.SEEDED:
            self._change_state(LayoutState.RUNNING)

        view = store.physics_view()
        frame = PhysicsFrame.from_graph(view.nodes, view.connections)
        step = simulate_step(frame, self._config, self._grid)
        store.commit_kinematics(step.updates(frame), view.revision)
        self._iteration += 1

        max_displacement = step.max_displacement
        if self._is_converged(max_displacement, frame.node_count):
            self._change_state(LayoutState.CONVERGED)
        elif self._iteration >= self._config.max_iterations:
            self._change_state(LayoutState.STOPPED_AT_MAX_ITERATIONS)

        result = TickResult(
            iteration=self._iteration,
            state=self._lifecycle.state,
            max_displacement=max_displacement,
            total_displacement=step.total_displacement,
            kinetic_energy=step.kinetic_energy,
            node_count=frame.node_count
        )
        self._last_result = result
        return result

    def cancel(self) -> bool:
        """Move to CANCELLED if still live. Returns whether it changed."""
        if self._lifecycle.try_transition(LayoutState.CANCELLED):
            self._log_audit(
                action="state_changed",
                event_type=AuditEventType.STATE_CHANGE,
                metadata=(("to", LayoutState.CANCELLED.value),
                          ("iteration", self._iteration))
            )
            return True
        return False

    def _is_converged(self, max_displacement: float, node_count: int) -> bool:
        if max_displacement >= self._config.convergence_threshold:
            return False
        return node_count < 2 or self._iteration >= self._config.min_iterations

    def _change_state(self, to_state: LayoutState):
        previous = self._lifecycle.transition(to_state)
        self._log_audit(
            action="state_changed",
            event_type=AuditEventType.STATE_CHANGE,
            metadata=(("from", previous.value), ("to", to_state.value),
                      ("iteration", self._iteration))
        )

    def _log_audit(
        self,
        action: str,
        event_type: AuditEventType = AuditEventType.SIMULATION,
        metadata: tuple = ()
    ):
        """Add entry to internal audit log."""
        self._audit_log.append(AuditLogEntry.create(
            layer="physics",
            event_type=event_type,
            action=action,
            entity_type="layout",
            metadata=metadata
        ))

    def get_audit_log(self) -> List[AuditLogEntry]:
        """Return copy of audit log entries."""
        return list(self._audit_log)

    def drain_audit_log(self) -> List[AuditLogEntry]:
        entries, self._audit_log = self._audit_log, []
        return entries


__all__ = [
    'PhysicsConfig',
    'PhysicsFrame',
    'PhysicsStep',
    'PhysicsIntegrator',
    'candidate_pairs',
    'repulsion_forces',
    'attraction_forces',
    'compute_forces',
    'integrate',
    'simulate_step',
]
