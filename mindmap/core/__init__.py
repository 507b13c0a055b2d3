"""
Core Layout Engine

RESPONSIBILITY: Force integration, convergence, lifecycle, cluster detection
ALLOWED INPUTS: PhysicsView / snapshot parts read from the graph store
OUTPUTS: Kinematics committed to the store, TickResult, Cluster values

WHAT THIS LAYER MUST NOT DO:
============================
- Own graph state (the store does)
- Validate content scores (ingestion does)
- Schedule ticks or talk to listeners (the session does)
- Interpret relationship meaning

BOUNDARY ENFORCEMENT:
=====================
- Reads the store ONLY through physics_view() / snapshot_parts()
- Writes the store ONLY through commit_kinematics() / replace_clusters()
- All lifecycle transitions go through LayoutLifecycle
"""

from .lifecycle import LayoutLifecycle
from .physics import (
    PhysicsConfig, PhysicsFrame, PhysicsStep, PhysicsIntegrator,
    compute_forces, simulate_step
)
from .spatial import SpatialGrid
from .topology import ClusterConfig, ClusterDetector, GraphMetrics

__all__ = [
    'LayoutLifecycle',
    'PhysicsConfig',
    'PhysicsFrame',
    'PhysicsStep',
    'PhysicsIntegrator',
    'compute_forces',
    'simulate_step',
    'SpatialGrid',
    'ClusterConfig',
    'ClusterDetector',
    'GraphMetrics',
]
