"""
Integration Test Fixtures

Explicit, versioned graph fixtures for layout scenarios.
All fixtures are explicit - no random generation.
"""

from mindmap import EngineConfig, MindMapLayoutEngine, PhysicsConfig, SessionConfig
from mindmap.ingestion import RelationshipSignal


# =============================================================================
# CONTENT IDENTITIES
# =============================================================================

CONNECTED_IDS = ("shot_a", "shot_b", "shot_c")
ISOLATED_IDS = ("shot_d", "shot_e", "shot_f", "shot_g", "shot_h")


def create_engine(
    max_iterations: int = 1000,
    seed: int = 7,
    seed_mode: str = "fresh",
    **physics
) -> MindMapLayoutEngine:
    """Engine with synchronous-friendly settings."""
    physics.setdefault("min_iterations", min(10, max_iterations))
    return MindMapLayoutEngine(EngineConfig(
        physics=PhysicsConfig(max_iterations=max_iterations, **physics),
        session=SessionConfig(seed=seed, seed_mode=seed_mode, tick_interval=0.0)
    ))


def create_pair_engine(distance: float = 500.0, **kwargs) -> MindMapLayoutEngine:
    """Two full-importance nodes joined by a strength 1.0 connection."""
    engine = create_engine(seed_mode="preserve", **kwargs)
    engine.register_node("left", importance=1.0, position=(-distance / 2, 0.0))
    engine.register_node("right", importance=1.0, position=(distance / 2, 0.0))
    engine.ingest_relationship(
        RelationshipSignal("left", "right", "semantic", 1.0, 1.0)
    )
    return engine


def create_triangle_with_isolates(seed: int = 7) -> MindMapLayoutEngine:
    """Three mutually connected nodes plus five unconnected ones."""
    engine = create_engine(seed=seed)
    for content_id in CONNECTED_IDS + ISOLATED_IDS:
        engine.register_node(content_id, importance=0.8)
    a, b, c = CONNECTED_IDS
    engine.ingest_relationships([
        (a, b, "thematic", 0.9, 0.8),
        (b, c, "entity_based", 0.9, 0.8),
        (a, c, "visual", 0.9, 0.8),
    ])
    return engine
