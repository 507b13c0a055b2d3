"""
Deterministic Seeding
=====================

Initial positions for a layout run.

Every position is a pure function of (node id, seed, previous snapshot,
connections); insertion order never matters.

Order of preference per node:
1. Position inherited from the previous snapshot
2. Centroid of inherited neighbours plus a small hashed jitter
3. Hash-derived point inside the seed bounds
"""

from __future__ import annotations
from typing import Dict, Optional, Tuple
import hashlib
import math

from ..contracts.base import Bounds, NodeId, Vector2
from ..contracts.graph import Node, Connection, LayoutSnapshot


SEED_MODE_FRESH = "fresh"
SEED_MODE_PRESERVE = "preserve"
SEED_MODES = (SEED_MODE_FRESH, SEED_MODE_PRESERVE)


def hash_unit(node_id: NodeId, seed: int, salt: str) -> float:
    """Stable value in [0, 1) derived from the node id and seed."""
    digest = hashlib.sha256(f"{seed}|{salt}|{node_id.value}".encode('utf-8')).digest()
    return int.from_bytes(digest[:8], "big") / float(1 << 64)


def hash_point(node_id: NodeId, seed: int, bounds: Bounds) -> Vector2:
    """Deterministic point inside bounds."""
    return Vector2(
        bounds.x + hash_unit(node_id, seed, "x") * bounds.width,
        bounds.y + hash_unit(node_id, seed, "y") * bounds.height,
    )


def jitter(node_id: NodeId, seed: int, magnitude: float) -> Vector2:
    """Deterministic offset of the given length in a hashed direction."""
    angle = hash_unit(node_id, seed, "jitter") * 2.0 * math.pi
    return Vector2(math.cos(angle) * magnitude, math.sin(angle) * magnitude)


def seed_positions(
    nodes: Tuple[Node, ...],
    connections: Tuple[Connection, ...],
    seed: int,
    bounds: Bounds,
    previous: Optional[LayoutSnapshot] = None,
    jitter_radius: float = 20.0,
    mode: str = SEED_MODE_FRESH
) -> Dict[NodeId, Vector2]:
    """
    Assign a starting position to every node.

    In "preserve" mode the nodes' current positions are kept unchanged.
    """
    if mode not in SEED_MODES:
        raise ValueError(f"unknown seed mode: {mode}")
    if mode == SEED_MODE_PRESERVE:
        return {node.node_id: node.position for node in nodes}

    inherited: Dict[NodeId, Vector2] = {}
    if previous is not None:
        present = {node.node_id for node in nodes}
        for old in previous.nodes:
            if old.node_id in present and old.position.is_finite():
                inherited[old.node_id] = old.position

    neighbours: Dict[NodeId, list] = {}
    for connection in connections:
        a, b = connection.source, connection.target
        neighbours.setdefault(a, []).append(b)
        neighbours.setdefault(b, []).append(a)

    positions: Dict[NodeId, Vector2] = {}
    for node in sorted(nodes, key=lambda n: n.node_id):
        node_id = node.node_id
        if node_id in inherited:
            positions[node_id] = inherited[node_id]
            continue

        placed = [inherited[n] for n in sorted(neighbours.get(node_id, ())) if n in inherited]
        if placed:
            cx = sum(p.x for p in placed) / len(placed)
            cy = sum(p.y for p in placed) / len(placed)
            offset = jitter(node_id, seed, jitter_radius)
            positions[node_id] = Vector2(cx + offset.x, cy + offset.y)
        else:
            positions[node_id] = hash_point(node_id, seed, bounds)

    return positions
