"""
Ingestion Layer

RESPONSIBILITY: Validation/normalisation boundary between upstream signal
                producers and the graph store
ALLOWED INPUTS: RelationshipSignal tuples from similarity / entity analysis,
                content identities with importance and confidence
OUTPUTS: Result values (never raises store errors past this boundary)

WHAT THIS LAYER MUST NOT DO:
============================
- Compute similarity (upstream analysis does that)
- Create placeholder nodes for unknown endpoints
- Trust upstream ranges (everything is clamped here)
- Swallow failures (every rejection is returned AND audited)

BOUNDARY ENFORCEMENT:
=====================
This is the ONLY path by which connections enter the store, which keeps
the dedup and range invariants centrally enforced.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Tuple, Union
import math

# ONLY import from contracts - the store is injected
from ..contracts.base import (
    NodeId, RelationshipType, Error, ErrorCode, Result, Timestamp,
    LayoutEngineError, UnknownNode, is_real
)
from ..contracts.graph import (
    Node, Connection, AuditLogEntry, AuditEventType, DEFAULT_NODE_RADIUS
)


# =============================================================================
# INBOUND SIGNALS
# =============================================================================

@dataclass(frozen=True)
class RelationshipSignal:
    """
    One relationship produced by upstream analysis.

    Scores are taken as-is here; clamping happens in the ingestor.
    """
    source_id: str
    target_id: str
    relationship_type: Union[RelationshipType, str]
    strength: float
    confidence: float = 1.0

    @staticmethod
    def from_tuple(raw: Tuple) -> RelationshipSignal:
        """Build from the (source, target, type, strength, confidence) feed shape."""
        return RelationshipSignal(*raw)


class IngestionOutcome:
    """String constants describing what happened to a signal."""
    ADDED = "added"
    REVISED = "revised"
    DUPLICATE = "duplicate"
    REJECTED = "rejected"


@dataclass(frozen=True)
class IngestionReport:
    """Immutable summary of a batch ingestion."""
    added: Tuple[Connection, ...] = field(default_factory=tuple)
    revised: Tuple[Connection, ...] = field(default_factory=tuple)
    duplicates: int = 0
    rejected: Tuple[Error, ...] = field(default_factory=tuple)

    @property
    def total(self) -> int:
        return len(self.added) + len(self.revised) + self.duplicates + len(self.rejected)


@dataclass
class IngestionConfig:
    """Configuration for the relationship ingestor."""
    revise_existing: bool = False
    default_importance: float = 1.0
    default_confidence: float = 1.0


def clamp_unit(value: float) -> float:
    """
    Clamp into [0, 1].

    NaN and non-numbers cannot be clamped meaningfully; they pass through
    unchanged so that the store rejects them as InvalidRange.
    """
    if not is_real(value) or math.isnan(value):
        return value
    return min(1.0, max(0.0, float(value)))


# =============================================================================
# RELATIONSHIP INGESTOR
# =============================================================================

class RelationshipIngestor:
    """
    Validates and inserts upstream relationship signals.

    The store is injected; the ingestor owns no graph state of its own.
    """

    def __init__(self, store, config: Optional[IngestionConfig] = None):
        self._store = store
        self._config = config or IngestionConfig()
        self._audit_log: List[AuditLogEntry] = []
        self._counters: Dict[str, int] = {
            IngestionOutcome.ADDED: 0,
            IngestionOutcome.REVISED: 0,
            IngestionOutcome.DUPLICATE: 0,
            IngestionOutcome.REJECTED: 0,
        }

    # -------------------------------------------------------------------------
    # Content identities
    # -------------------------------------------------------------------------

    def register_node(
        self,
        content_id: str,
        importance: Optional[float] = None,
        confidence: Optional[float] = None,
        position: Tuple[float, float] = (0.0, 0.0),
        radius: float = DEFAULT_NODE_RADIUS,
        label: str = ""
    ) -> Result:
        """
        Insert a node for a content identity.

        Importance is only clamped from above: a non-positive importance
        means a malformed upstream score and is rejected as InvalidMass.
        """
        importance = self._config.default_importance if importance is None else importance
        confidence = self._config.default_confidence if confidence is None else confidence
        if is_real(importance) and importance > 1.0:
            importance = 1.0
        try:
            node = Node.create(
                content_id,
                importance=importance,
                confidence=clamp_unit(confidence),
                position=position,
                radius=radius,
                label=label
            )
            stored = self._store.add_node(node)
        except LayoutEngineError as exc:
            return self._reject(exc.to_error(), entity_id=content_id)
        except ValueError as exc:
            return self._reject(
                _error(ErrorCode.INVALID_RANGE, str(exc)), entity_id=content_id
            )
        self._log_audit(
            action="node_registered",
            entity_id=content_id,
            entity_type="node"
        )
        return Result.success(stored)

    # -------------------------------------------------------------------------
    # Relationships
    # -------------------------------------------------------------------------

    def ingest(
        self,
        signal: RelationshipSignal,
        revise_existing: Optional[bool] = None
    ) -> Result:
        """
        Ingest one relationship signal.

        Success value is a (outcome, Connection or None) tuple.
        """
        revise = self._config.revise_existing if revise_existing is None else revise_existing
        try:
            source = NodeId(signal.source_id)
            target = NodeId(signal.target_id)
            relationship_type = RelationshipType(signal.relationship_type)
        except ValueError as exc:
            return self._reject(_error(ErrorCode.INVALID_RANGE, str(exc)))

        strength = clamp_unit(signal.strength)
        confidence = clamp_unit(signal.confidence)

        try:
            for endpoint in (source, target):
                if not self._store.has_node(endpoint):
                    raise UnknownNode(
                        "relationship references unknown node",
                        node_id=endpoint.value
                    )
            connection = self._store.add_connection(
                source, target, relationship_type, strength, confidence
            )
            if connection is not None:
                return self._accept(IngestionOutcome.ADDED, connection)

            existing = self._store.find_connection(source, target)
            if revise and existing is not None:
                updated = self._store.update_connection(
                    existing.connection_id, strength, confidence
                )
                return self._accept(IngestionOutcome.REVISED, updated)
            return self._accept(IngestionOutcome.DUPLICATE, None)
        except LayoutEngineError as exc:
            return self._reject(
                exc.to_error(),
                entity_id=f"{source.value}->{target.value}"
            )
        except ValueError as exc:
            return self._reject(
                _error(ErrorCode.INVALID_RANGE, str(exc)),
                entity_id=f"{source.value}->{target.value}"
            )

    def ingest_raw(
        self,
        raw: Union[RelationshipSignal, Tuple],
        revise_existing: Optional[bool] = None
    ) -> Result:
        """Ingest a signal or a feed tuple; a malformed tuple is rejected."""
        if not isinstance(raw, RelationshipSignal):
            try:
                raw = RelationshipSignal.from_tuple(raw)
            except (TypeError, ValueError) as exc:
                return self._reject(_error(
                    ErrorCode.INVALID_RANGE, f"malformed relationship signal: {exc}"
                ))
        return self.ingest(raw, revise_existing=revise_existing)

    def ingest_batch(
        self,
        signals: Iterable[Union[RelationshipSignal, Tuple]],
        revise_existing: Optional[bool] = None
    ) -> IngestionReport:
        """Ingest a batch of signals; the report lists every outcome."""
        added: List[Connection] = []
        revised: List[Connection] = []
        rejected: List[Error] = []
        duplicates = 0

        for raw in signals:
            result = self.ingest_raw(raw, revise_existing=revise_existing)
            if result.is_failure:
                rejected.append(result.error)
                continue
            outcome, connection = result.value
            if outcome == IngestionOutcome.ADDED:
                added.append(connection)
            elif outcome == IngestionOutcome.REVISED:
                revised.append(connection)
            else:
                duplicates += 1

        report = IngestionReport(
            added=tuple(added),
            revised=tuple(revised),
            duplicates=duplicates,
            rejected=tuple(rejected)
        )
        self._log_audit(
            action="batch_ingestion_completed",
            entity_type="batch",
            metadata=(
                ("added", len(report.added)),
                ("revised", len(report.revised)),
                ("duplicates", report.duplicates),
                ("rejected", len(report.rejected)),
            )
        )
        return report

    def counters(self) -> Dict[str, int]:
        """Copy of per-outcome counters."""
        return dict(self._counters)

    def _accept(self, outcome: str, connection: Optional[Connection]) -> Result:
        self._counters[outcome] += 1
        return Result.success((outcome, connection))

    def _reject(self, error: Error, entity_id: Optional[str] = None) -> Result:
        self._counters[IngestionOutcome.REJECTED] += 1
        self._log_audit(
            action="signal_rejected",
            entity_id=entity_id,
            event_type=AuditEventType.ERROR,
            metadata=(("code", error.code.name), ("message", error.message))
        )
        return Result.failure(error)

    def _log_audit(
        self,
        action: str,
        entity_id: Optional[str] = None,
        entity_type: Optional[str] = None,
        event_type: AuditEventType = AuditEventType.INGESTION,
        metadata: tuple = ()
    ):
        """Add entry to internal audit log."""
        self._audit_log.append(AuditLogEntry.create(
            layer="ingestion",
            event_type=event_type,
            action=action,
            entity_id=entity_id,
            entity_type=entity_type,
            metadata=metadata
        ))

    def get_audit_log(self) -> List[AuditLogEntry]:
        """Return copy of audit log entries."""
        return list(self._audit_log)

    def drain_audit_log(self) -> List[AuditLogEntry]:
        entries, self._audit_log = self._audit_log, []
        return entries


def _error(code: ErrorCode, message: str) -> Error:
    return Error(code=code, message=message, timestamp=Timestamp.now().value)


__all__ = [
    'RelationshipSignal',
    'RelationshipIngestor',
    'IngestionReport',
    'IngestionOutcome',
    'IngestionConfig',
    'clamp_unit',
]
