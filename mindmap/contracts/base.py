"""
Base Contracts and Shared Types

These are the foundational types used across all layers.
Value types here are IMMUTABLE and carry no behaviour beyond validation
and derivation.

BOUNDARY ENFORCEMENT:
=====================
- This module is READ-ONLY from all layers
- Layers may import types but MUST NOT modify this module
- Identity and value types are frozen for immutability guarantee
"""

from __future__ import annotations
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import NamedTuple, Optional, Tuple
from enum import Enum, auto
import hashlib
import math
import numbers


# =============================================================================
# ERROR STATES (Explicit, never silent)
# =============================================================================

class ErrorCode(Enum):
    """
    Explicit error codes for deterministic error handling.
    No silent fallbacks - every error state is enumerated.
    """
    # Graph store errors
    DUPLICATE_NODE = auto()
    UNKNOWN_NODE = auto()
    UNKNOWN_CONNECTION = auto()
    INVALID_RANGE = auto()
    INVALID_MASS = auto()

    # Simulation errors
    INVALID_STATE_TRANSITION = auto()


@dataclass(frozen=True)
class Error:
    """
    Immutable error representation with full context.
    Errors are data, not exceptions - they can be stored and queried.
    """
    code: ErrorCode
    message: str
    timestamp: datetime
    context: Tuple[Tuple[str, str], ...] = field(default_factory=tuple)


@dataclass(frozen=True)
class Result:
    """
    Generic result type for operations that can fail.
    Either contains a value OR an error, never both.
    """
    value: Optional[object] = None
    error: Optional[Error] = None

    @property
    def is_success(self) -> bool:
        return self.error is None

    @property
    def is_failure(self) -> bool:
        return self.error is not None

    @staticmethod
    def success(value: object) -> Result:
        return Result(value=value, error=None)

    @staticmethod
    def failure(error: Error) -> Result:
        return Result(value=None, error=error)


# =============================================================================
# EXCEPTIONS (Raised synchronously at the mutating call)
# =============================================================================

class LayoutEngineError(Exception):
    """
    Base class for local validation errors.

    Raised by the graph store and the lifecycle state machine.
    Boundary layers convert them into Error data with to_error().
    """
    code: ErrorCode = ErrorCode.INVALID_RANGE

    def __init__(self, message: str, **context: str):
        super().__init__(message)
        self.message = message
        self.context = tuple(sorted((k, str(v)) for k, v in context.items()))

    def to_error(self) -> Error:
        return Error(
            code=self.code,
            message=self.message,
            timestamp=datetime.now(timezone.utc),
            context=self.context
        )


class DuplicateNode(LayoutEngineError):
    """A node with the same identity already exists."""
    code = ErrorCode.DUPLICATE_NODE


class UnknownNode(LayoutEngineError):
    """A referenced node identity is not present in the store."""
    code = ErrorCode.UNKNOWN_NODE


class UnknownConnection(LayoutEngineError):
    """A referenced connection identity is not present in the store."""
    code = ErrorCode.UNKNOWN_CONNECTION


class InvalidRange(LayoutEngineError):
    """Strength or confidence outside [0, 1]."""
    code = ErrorCode.INVALID_RANGE


class InvalidMass(LayoutEngineError):
    """Non-positive (or non-finite) importance, hence non-positive mass."""
    code = ErrorCode.INVALID_MASS


class InvalidStateTransition(LayoutEngineError):
    """Lifecycle transition not allowed by the transition table."""
    code = ErrorCode.INVALID_STATE_TRANSITION


def is_real(value) -> bool:
    """Real number, including numpy scalars, but not a bool."""
    return isinstance(value, numbers.Real) and not isinstance(value, bool)


def require_unit_interval(name: str, value: float) -> float:
    """Validate that value lies in [0, 1]; NaN is never in range."""
    if not is_real(value):
        raise InvalidRange(f"{name} must be a number", **{name: repr(value)})
    if math.isnan(value) or not 0.0 <= value <= 1.0:
        raise InvalidRange(
            f"{name} must be between 0.0 and 1.0",
            **{name: repr(value)}
        )
    return float(value)


# =============================================================================
# IDENTITY TYPES (Immutable, hash-verified)
# =============================================================================

@dataclass(frozen=True, order=True)
class NodeId:
    """
    Immutable node identifier.

    Wraps the opaque content reference supplied by the import subsystem.
    Ordering is used for every deterministic tie-break in the engine.
    """
    value: str

    def __post_init__(self):
        if not self.value or not isinstance(self.value, str):
            raise ValueError("NodeId value must be a non-empty string")

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True, order=True)
class ConnectionId:
    """
    Immutable connection identifier.
    Generated from the UNORDERED endpoint pair: (a, b) and (b, a) collide.
    """
    value: str

    @staticmethod
    def for_pair(a: NodeId, b: NodeId) -> ConnectionId:
        """Generate deterministic connection ID from an unordered pair."""
        low, high = sorted((a.value, b.value))
        pair_hash = hashlib.sha256(f"{low}|{high}".encode('utf-8')).hexdigest()
        return ConnectionId(value=f"conn_{pair_hash[:16]}")

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True, order=True)
class ClusterId:
    """
    Immutable cluster identifier.
    Generated from sorted membership so identical clusters get identical ids.
    """
    value: str

    @staticmethod
    def for_members(member_ids: Tuple[NodeId, ...]) -> ClusterId:
        """Generate deterministic cluster ID from member identities."""
        content = ",".join(sorted(m.value for m in member_ids))
        cluster_hash = hashlib.sha256(content.encode('utf-8')).hexdigest()[:16]
        return ClusterId(value=f"cluster_{cluster_hash}")

    def __str__(self) -> str:
        return self.value


# =============================================================================
# GEOMETRY TYPES (Immutable)
# =============================================================================

class Vector2(NamedTuple):
    """Immutable 2D vector used for positions and velocities."""
    x: float = 0.0
    y: float = 0.0

    def distance_to(self, other: Vector2) -> float:
        return math.hypot(self.x - other.x, self.y - other.y)

    @property
    def magnitude(self) -> float:
        return math.hypot(self.x, self.y)

    def is_finite(self) -> bool:
        return math.isfinite(self.x) and math.isfinite(self.y)


ZERO = Vector2(0.0, 0.0)


@dataclass(frozen=True)
class Bounds:
    """Axis-aligned rectangle (origin plus size)."""
    x: float
    y: float
    width: float
    height: float

    def __post_init__(self):
        if self.width <= 0 or self.height <= 0:
            raise ValueError("Bounds width and height must be positive")

    @property
    def max_x(self) -> float:
        return self.x + self.width

    @property
    def max_y(self) -> float:
        return self.y + self.height

    def contains(self, point: Vector2) -> bool:
        return self.x <= point.x <= self.max_x and self.y <= point.y <= self.max_y

    def clamp(self, point: Vector2) -> Vector2:
        return Vector2(
            min(max(point.x, self.x), self.max_x),
            min(max(point.y, self.y), self.max_y)
        )


# Centred coordinate system used by the mind-map view
DEFAULT_LAYOUT_BOUNDS = Bounds(x=-400.0, y=-400.0, width=800.0, height=800.0)


# =============================================================================
# TEMPORAL TYPES (Immutable, explicit semantics)
# =============================================================================

@dataclass(frozen=True)
class Timestamp:
    """
    Immutable timestamp with explicit semantics.
    All timestamps are UTC, never local time.
    """
    value: datetime

    def __post_init__(self):
        # Ensure UTC timezone
        if self.value.tzinfo is None:
            object.__setattr__(self, 'value', self.value.replace(tzinfo=timezone.utc))

    @staticmethod
    def now() -> Timestamp:
        return Timestamp(value=datetime.now(timezone.utc))

    def to_iso(self) -> str:
        return self.value.isoformat()


# =============================================================================
# LIFECYCLE STATES (Explicit, no implicit transitions)
# =============================================================================

class LayoutState(Enum):
    """
    Explicit layout lifecycle states.
    Transitions are deterministic and auditable.
    """
    SEEDED = "seeded"                                  # Positions assigned, zero velocity
    RUNNING = "running"                                # Ticking
    CONVERGED = "converged"                            # Movement fell below threshold
    STOPPED_AT_MAX_ITERATIONS = "stopped_at_max_iterations"  # Best-effort layout
    CANCELLED = "cancelled"                            # Externally halted

    @property
    def is_terminal(self) -> bool:
        return self in (
            LayoutState.CONVERGED,
            LayoutState.STOPPED_AT_MAX_ITERATIONS,
            LayoutState.CANCELLED,
        )

    @property
    def is_settled(self) -> bool:
        return self in (LayoutState.CONVERGED, LayoutState.STOPPED_AT_MAX_ITERATIONS)


class RelationshipType(Enum):
    """
    Explicit relationship types produced by upstream analysis.
    No implicit relationships - all must be explicitly tagged.
    """
    TEMPORAL = "temporal"          # Same time period
    SPATIAL = "spatial"            # Same location
    THEMATIC = "thematic"          # Similar content
    ENTITY_BASED = "entity_based"  # Shared entities
    VISUAL = "visual"              # Visual similarity
    SEMANTIC = "semantic"          # Semantic relationship

    @classmethod
    def _missing_(cls, value):
        # Feeds spell the types "entity-based", "Entity Based", ...
        if isinstance(value, str):
            key = value.strip().lower().replace("-", "_").replace(" ", "_")
            for member in cls:
                if member.value == key:
                    return member
        return None

    @property
    def display_name(self) -> str:
        return _RELATIONSHIP_DISPLAY_NAMES[self]

    @property
    def color(self) -> str:
        return _RELATIONSHIP_COLORS[self]


_RELATIONSHIP_DISPLAY_NAMES = {
    RelationshipType.TEMPORAL: "Time-based",
    RelationshipType.SPATIAL: "Location-based",
    RelationshipType.THEMATIC: "Topic-based",
    RelationshipType.ENTITY_BASED: "Entity-based",
    RelationshipType.VISUAL: "Visually similar",
    RelationshipType.SEMANTIC: "Semantically related",
}

_RELATIONSHIP_COLORS = {
    RelationshipType.TEMPORAL: "green",
    RelationshipType.SPATIAL: "blue",
    RelationshipType.THEMATIC: "purple",
    RelationshipType.ENTITY_BASED: "orange",
    RelationshipType.VISUAL: "pink",
    RelationshipType.SEMANTIC: "indigo",
}
