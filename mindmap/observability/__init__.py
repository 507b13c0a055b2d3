"""
Observability & Audit Layer

RESPONSIBILITY: Audit log collection, layout metrics, log forwarding
ALLOWED INPUTS: AuditLogEntry values from every layer, metric samples
                tagged with the session that produced them
OUTPUTS: Per-layer and unified audit logs, per-session layout summaries,
         audit reports

WHAT THIS LAYER MUST NOT DO:
============================
- Modify layout behaviour
- Filter or interpret events (only record them)
- Block or delay ticks
- Access mutable state in other layers

BOUNDARY ENFORCEMENT:
=====================
- Receives frozen entries and points; never modifies them
- Provides read-only access to logs and metrics
- Mirrors every entry to the stdlib "mindmap" logger hierarchy so host
  applications can route engine events with their own handlers
"""

from __future__ import annotations
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Tuple
from enum import Enum
import logging

# ONLY import from contracts - never from other layers' implementations
from ..contracts.base import Timestamp
from ..contracts.graph import AuditLogEntry, AuditEventType, MetricPoint


LAYERS = ("store", "ingestion", "physics", "clustering", "session", "engine")


# =============================================================================
# LOG COLLECTORS (One per layer)
# =============================================================================

class LogCollector:
    """Append-only collector for one layer's audit entries."""

    def __init__(self, layer_name: str):
        self._layer_name = layer_name
        self._entries: List[AuditLogEntry] = []

    def collect(self, entry: AuditLogEntry):
        self._entries.append(entry)

    def entries(
        self,
        event_type: Optional[AuditEventType] = None,
        action: Optional[str] = None
    ) -> List[AuditLogEntry]:
        """Collected entries, optionally narrowed to one event type or action."""
        return [
            e for e in self._entries
            if (event_type is None or e.event_type == event_type)
            and (action is None or e.action == action)
        ]

    @property
    def layer_name(self) -> str:
        return self._layer_name

    @property
    def entry_count(self) -> int:
        return len(self._entries)


# =============================================================================
# LAYOUT METRICS
# =============================================================================

class MetricType(Enum):
    """How a metric's points combine."""
    COUNTER = "counter"   # points are increments
    GAUGE = "gauge"       # latest point is the value
    TIMING = "timing"     # points are durations in milliseconds


@dataclass(frozen=True)
class MetricDefinition:
    """A metric the engine knows how to record."""
    name: str
    metric_type: MetricType
    description: str
    per_session: bool = False


DEFAULT_METRICS = (
    MetricDefinition("layout_ticks_total", MetricType.COUNTER,
                     "Integrator ticks executed", per_session=True),
    MetricDefinition("tick_duration_ms", MetricType.TIMING,
                     "Wall time of one tick", per_session=True),
    MetricDefinition("max_displacement", MetricType.GAUGE,
                     "Largest node displacement in the last tick", per_session=True),
    MetricDefinition("kinetic_energy", MetricType.GAUGE,
                     "Total kinetic energy after the last tick", per_session=True),
    MetricDefinition("iterations_to_settle", MetricType.GAUGE,
                     "Ticks taken until the session settled", per_session=True),
    MetricDefinition("clusters_detected", MetricType.GAUGE,
                     "Clusters found by the last detection pass"),
    MetricDefinition("connections_ingested_total", MetricType.COUNTER,
                     "Connections added or revised through ingestion"),
    MetricDefinition("connections_duplicate_total", MetricType.COUNTER,
                     "Signals ignored because the pair already existed"),
    MetricDefinition("connections_rejected_total", MetricType.COUNTER,
                     "Signals rejected by validation"),
)


@dataclass(frozen=True)
class MetricSummary:
    """count / total / min / max / mean over a set of points."""
    count: int
    total: float
    minimum: float
    maximum: float
    mean: float

    @staticmethod
    def of(values: Iterable[float]) -> Optional[MetricSummary]:
        values = list(values)
        if not values:
            return None
        total = sum(values)
        return MetricSummary(
            count=len(values),
            total=total,
            minimum=min(values),
            maximum=max(values),
            mean=total / len(values)
        )


@dataclass(frozen=True)
class SessionMetrics:
    """How one layout session behaved, tick by tick."""
    session_id: str
    ticks: int
    tick_duration_ms: Optional[MetricSummary]
    final_max_displacement: Optional[float]
    final_kinetic_energy: Optional[float]
    iterations_to_settle: Optional[int]
    clusters_detected: Optional[int]

    @property
    def settled(self) -> bool:
        return self.iterations_to_settle is not None


class MetricsCollector:
    """
    Records layout metrics and summarises them per session.

    Only metrics from DEFAULT_METRICS (or registered later) are accepted,
    so a misspelt name fails loudly instead of opening a new series.
    """

    def __init__(self, definitions: Iterable[MetricDefinition] = DEFAULT_METRICS):
        self._definitions: Dict[str, MetricDefinition] = {}
        self._points: Dict[str, List[MetricPoint]] = {}
        self._sessions: List[str] = []
        for definition in definitions:
            self.register(definition)

    def register(self, definition: MetricDefinition):
        self._definitions[definition.name] = definition
        self._points.setdefault(definition.name, [])

    def definition(self, name: str) -> Optional[MetricDefinition]:
        return self._definitions.get(name)

    def record(self, name: str, value: float, session_id: Optional[str] = None):
        """Append one point; raises KeyError for an unknown metric."""
        definition = self._definitions.get(name)
        if definition is None:
            raise KeyError(f"unknown metric: {name}")
        if definition.per_session and session_id is None:
            raise ValueError(f"{name} must be recorded with a session_id")
        if session_id is not None and session_id not in self._sessions:
            self._sessions.append(session_id)
        self._points[name].append(MetricPoint(
            metric_name=name,
            value=float(value),
            timestamp=Timestamp.now(),
            session_id=session_id
        ))

    def points(self, name: str, session_id: Optional[str] = None) -> List[MetricPoint]:
        return [
            p for p in self._points.get(name, [])
            if session_id is None or p.session_id == session_id
        ]

    def latest(self, name: str, session_id: Optional[str] = None) -> Optional[MetricPoint]:
        points = self.points(name, session_id)
        return points[-1] if points else None

    def total(self, name: str) -> float:
        """Sum of a counter's increments."""
        return sum(p.value for p in self._points.get(name, []))

    def summary(self, name: str, session_id: Optional[str] = None) -> Optional[MetricSummary]:
        return MetricSummary.of(p.value for p in self.points(name, session_id))

    @property
    def session_ids(self) -> Tuple[str, ...]:
        """Sessions in the order they first reported."""
        return tuple(self._sessions)

    def session_metrics(self, session_id: str) -> SessionMetrics:
        def last(name):
            point = self.latest(name, session_id)
            return point.value if point is not None else None

        settle = last("iterations_to_settle")
        clusters = last("clusters_detected")
        return SessionMetrics(
            session_id=session_id,
            ticks=int(sum(p.value for p in self.points("layout_ticks_total", session_id))),
            tick_duration_ms=self.summary("tick_duration_ms", session_id),
            final_max_displacement=last("max_displacement"),
            final_kinetic_energy=last("kinetic_energy"),
            iterations_to_settle=int(settle) if settle is not None else None,
            clusters_detected=int(clusters) if clusters is not None else None
        )


# =============================================================================
# OBSERVABILITY ENGINE (Orchestrates all observability)
# =============================================================================

@dataclass
class ObservabilityConfig:
    """Configuration for observability engine."""
    enable_metrics: bool = True
    forward_to_logging: bool = True
    logger_name: str = "mindmap"


def _log_level(entry: AuditLogEntry) -> int:
    if entry.event_type == AuditEventType.ERROR:
        return logging.WARNING
    if entry.event_type == AuditEventType.STATE_CHANGE:
        return logging.INFO
    return logging.DEBUG


class ObservabilityEngine:
    """
    Central Observability Engine.

    BOUNDARY ENFORCEMENT:
    - ONLY observes, never modifies
    - Provides read-only access to collected data
    """

    def __init__(self, config: Optional[ObservabilityConfig] = None):
        self._config = config or ObservabilityConfig()
        self._collectors: Dict[str, LogCollector] = {
            name: LogCollector(name) for name in LAYERS
        }
        self._metrics = MetricsCollector() if self._config.enable_metrics else None

    def collect_audit(self, entry: AuditLogEntry):
        """Collect an audit log entry from any layer."""
        collector = self._collectors.get(entry.layer)
        if collector is None:
            collector = self._collectors[entry.layer] = LogCollector(entry.layer)
        collector.collect(entry)
        if self._config.forward_to_logging:
            self._forward(entry)

    def collect_many(self, entries: Iterable[AuditLogEntry]):
        for entry in entries:
            self.collect_audit(entry)

    def log_audit(
        self,
        action: str,
        entity_id: Optional[str] = None,
        details: str = "",
        layer: str = "engine"
    ):
        """Record an engine-level event directly."""
        self.collect_audit(AuditLogEntry.create(
            layer=layer,
            event_type=AuditEventType.SYSTEM,
            action=action,
            entity_id=entity_id,
            metadata=(("details", details),) if details else ()
        ))

    def collect_metric(self, name: str, value: float, session_id: Optional[str] = None):
        if self._metrics is not None:
            self._metrics.record(name, value, session_id)

    def get_unified_log(self, layers: Optional[List[str]] = None) -> List[AuditLogEntry]:
        """Entries from all (or the given) layers in timestamp order."""
        names = layers or list(self._collectors)
        merged = [
            entry
            for name in names if name in self._collectors
            for entry in self._collectors[name].entries()
        ]
        merged.sort(key=lambda e: e.timestamp.value)
        return merged

    def get_layer_log(
        self,
        layer_name: str,
        event_type: Optional[AuditEventType] = None
    ) -> List[AuditLogEntry]:
        collector = self._collectors.get(layer_name)
        if collector is None:
            return []
        return collector.entries(event_type=event_type)

    def get_metrics(self) -> Optional[MetricsCollector]:
        return self._metrics

    def session_metrics(self, session_id: str) -> Optional[SessionMetrics]:
        if self._metrics is None:
            return None
        return self._metrics.session_metrics(session_id)

    def generate_audit_report(self) -> Dict:
        """
        Counts per layer and event type, every error entry, and a
        summary line per session that reported metrics.
        """
        entries = self.get_unified_log()
        by_layer: Dict[str, int] = {}
        by_type: Dict[str, int] = {}
        for entry in entries:
            by_layer[entry.layer] = by_layer.get(entry.layer, 0) + 1
            by_type[entry.event_type.value] = by_type.get(entry.event_type.value, 0) + 1

        sessions = []
        if self._metrics is not None:
            for session_id in self._metrics.session_ids:
                summary = self._metrics.session_metrics(session_id)
                sessions.append({
                    'session_id': session_id,
                    'ticks': summary.ticks,
                    'iterations_to_settle': summary.iterations_to_settle,
                    'clusters_detected': summary.clusters_detected,
                })

        return {
            'total_entries': len(entries),
            'by_layer': by_layer,
            'by_event_type': by_type,
            'errors': [
                (e.layer, e.action, e.entity_id)
                for e in entries if e.event_type == AuditEventType.ERROR
            ],
            'sessions': sessions,
            'generated_at': Timestamp.now().to_iso()
        }

    def _forward(self, entry: AuditLogEntry):
        layer_logger = logging.getLogger(f"{self._config.logger_name}.{entry.layer}")
        level = _log_level(entry)
        if not layer_logger.isEnabledFor(level):
            return
        details = " ".join(f"{k}={v}" for k, v in entry.metadata)
        layer_logger.log(level, "%s %s %s", entry.action, entry.entity_id or "-", details)


__all__ = [
    'LogCollector',
    'MetricType',
    'MetricDefinition',
    'MetricSummary',
    'SessionMetrics',
    'MetricsCollector',
    'ObservabilityConfig',
    'ObservabilityEngine',
    'DEFAULT_METRICS',
    'LAYERS',
]
