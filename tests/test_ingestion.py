"""
Relationship Ingestor Tests
===========================

The ingestor is the validation boundary: scores are clamped, unknown
endpoints rejected, and store errors come back as Result data.
"""

import math

import numpy as np
import pytest

from mindmap.contracts.base import ErrorCode, NodeId, RelationshipType
from mindmap.store import GraphStore
from mindmap.ingestion import (
    RelationshipIngestor, RelationshipSignal, IngestionConfig,
    IngestionOutcome, clamp_unit
)


@pytest.fixture
def store():
    return GraphStore()


@pytest.fixture
def ingestor(store):
    ingestor = RelationshipIngestor(store)
    for content_id in ("a", "b", "c"):
        assert ingestor.register_node(content_id, importance=0.5).is_success
    return ingestor


class TestClamp:

    @pytest.mark.parametrize("raw,expected", [
        (-2.0, 0.0), (0.0, 0.0), (0.4, 0.4), (1.0, 1.0), (7, 1.0),
    ])
    def test_clamps_into_unit_interval(self, raw, expected):
        assert clamp_unit(raw) == expected

    def test_nan_passes_through(self):
        assert math.isnan(clamp_unit(float("nan")))

    def test_numpy_scalars_become_floats(self):
        clamped = clamp_unit(np.float32(0.7))
        assert type(clamped) is float
        assert clamped == pytest.approx(0.7)
        assert clamp_unit(np.float64(3.5)) == 1.0
        assert clamp_unit(np.int64(0)) == 0.0

    def test_bool_is_not_a_score(self):
        assert clamp_unit(True) is True


class TestRegisterNode:

    def test_importance_above_one_is_clamped(self):
        ingestor = RelationshipIngestor(GraphStore())
        result = ingestor.register_node("x", importance=3.0)
        assert result.is_success
        assert result.value.importance == 1.0

    def test_numpy_importance_accepted(self):
        ingestor = RelationshipIngestor(GraphStore())
        result = ingestor.register_node(
            "x", importance=np.float64(0.6), confidence=np.float32(0.5)
        )
        assert result.is_success
        node = result.value
        assert type(node.importance) is float
        assert node.importance == pytest.approx(0.6)
        assert node.confidence == pytest.approx(0.5)

    def test_numpy_importance_above_one_is_clamped(self):
        result = RelationshipIngestor(GraphStore()).register_node("x", importance=np.float32(4.0))
        assert result.value.importance == 1.0

    def test_zero_importance_is_invalid_mass(self):
        ingestor = RelationshipIngestor(GraphStore())
        result = ingestor.register_node("x", importance=0.0)
        assert result.is_failure
        assert result.error.code == ErrorCode.INVALID_MASS

    def test_duplicate_is_failure_data(self, ingestor):
        result = ingestor.register_node("a")
        assert result.is_failure
        assert result.error.code == ErrorCode.DUPLICATE_NODE

    def test_empty_id_rejected(self):
        result = RelationshipIngestor(GraphStore()).register_node("")
        assert result.is_failure
        assert result.error.code == ErrorCode.INVALID_RANGE

    def test_defaults_come_from_config(self):
        ingestor = RelationshipIngestor(
            GraphStore(), IngestionConfig(default_importance=0.25, default_confidence=0.5)
        )
        node = ingestor.register_node("x").value
        assert node.importance == 0.25
        assert node.confidence == 0.5


class TestIngest:

    def test_adds_connection(self, ingestor):
        result = ingestor.ingest(RelationshipSignal("a", "b", "thematic", 0.7, 0.9))
        assert result.is_success
        outcome, connection = result.value
        assert outcome == IngestionOutcome.ADDED
        assert connection.relationship_type == RelationshipType.THEMATIC

    def test_numpy_scores_accepted(self, ingestor):
        result = ingestor.ingest(
            RelationshipSignal("a", "b", "thematic", np.float32(0.7), np.float64(0.9))
        )
        assert result.is_success
        _, connection = result.value
        assert type(connection.strength) is float
        assert connection.strength == pytest.approx(0.7)
        assert connection.confidence == pytest.approx(0.9)

    @pytest.mark.parametrize("spelling", ["entity-based", "Entity Based", " ENTITY_BASED "])
    def test_entity_based_spellings(self, ingestor, spelling):
        result = ingestor.ingest(RelationshipSignal("a", "b", spelling, 0.5))
        _, connection = result.value
        assert connection.relationship_type == RelationshipType.ENTITY_BASED

    def test_scores_are_clamped(self, ingestor):
        result = ingestor.ingest(RelationshipSignal("a", "b", RelationshipType.VISUAL, 1.7, -0.3))
        _, connection = result.value
        assert connection.strength == 1.0
        assert connection.confidence == 0.0

    def test_nan_strength_rejected(self, ingestor, store):
        result = ingestor.ingest(RelationshipSignal("a", "b", "visual", float("nan")))
        assert result.is_failure
        assert result.error.code == ErrorCode.INVALID_RANGE
        assert store.connection_count == 0

    def test_unknown_endpoint_rejected(self, ingestor, store):
        result = ingestor.ingest(RelationshipSignal("a", "ghost", "spatial", 0.5))
        assert result.is_failure
        assert result.error.code == ErrorCode.UNKNOWN_NODE
        assert not store.has_node(NodeId("ghost"))

    def test_unknown_relationship_type_rejected(self, ingestor):
        result = ingestor.ingest(RelationshipSignal("a", "b", "telepathic", 0.5))
        assert result.is_failure
        assert result.error.code == ErrorCode.INVALID_RANGE

    def test_self_loop_rejected(self, ingestor):
        result = ingestor.ingest(RelationshipSignal("a", "a", "spatial", 0.5))
        assert result.is_failure

    def test_duplicate_without_revision(self, ingestor, store):
        ingestor.ingest(RelationshipSignal("a", "b", "temporal", 0.3))
        result = ingestor.ingest(RelationshipSignal("b", "a", "temporal", 0.9))
        assert result.value == (IngestionOutcome.DUPLICATE, None)
        connection = store.find_connection(NodeId("a"), NodeId("b"))
        assert connection.strength == 0.3

    def test_duplicate_with_revision(self, ingestor):
        ingestor.ingest(RelationshipSignal("a", "b", "temporal", 0.3))
        result = ingestor.ingest(
            RelationshipSignal("b", "a", "temporal", 0.9, 0.4), revise_existing=True
        )
        outcome, connection = result.value
        assert outcome == IngestionOutcome.REVISED
        assert connection.strength == 0.9
        assert connection.confidence == 0.4


class TestBatch:

    def test_report_lists_every_outcome(self, ingestor):
        report = ingestor.ingest_batch([
            ("a", "b", "thematic", 0.5, 0.5),
            RelationshipSignal("b", "c", "semantic", 0.5),
            ("b", "a", "thematic", 0.9, 0.5),
            ("a", "ghost", "thematic", 0.9, 0.5),
        ])
        assert len(report.added) == 2
        assert report.duplicates == 1
        assert len(report.rejected) == 1
        assert report.rejected[0].code == ErrorCode.UNKNOWN_NODE
        assert report.total == 4

    def test_counters(self, ingestor):
        ingestor.ingest_batch([
            ("a", "b", "thematic", 0.5, 0.5),
            ("a", "b", "thematic", 0.5, 0.5),
            ("a", "ghost", "thematic", 0.5, 0.5),
        ])
        counters = ingestor.counters()
        assert counters[IngestionOutcome.ADDED] == 1
        assert counters[IngestionOutcome.DUPLICATE] == 1
        assert counters[IngestionOutcome.REJECTED] == 1

    def test_malformed_tuples_are_rejected(self, ingestor, store):
        report = ingestor.ingest_batch([
            ("a", "b", "semantic", 0.5),
            ("b", "c"),
            ("a", "c", "semantic", 0.5, 0.5, "extra"),
            42,
        ])
        assert len(report.added) == 1
        assert len(report.rejected) == 3
        assert all(e.code == ErrorCode.INVALID_RANGE for e in report.rejected)
        assert store.connection_count == 1
        assert ingestor.counters()[IngestionOutcome.REJECTED] == 3

    def test_ingest_raw_accepts_signals_and_tuples(self, ingestor):
        assert ingestor.ingest_raw(("a", "b", "visual", 0.5)).is_success
        assert ingestor.ingest_raw(RelationshipSignal("b", "c", "visual", 0.5)).is_success
        assert ingestor.ingest_raw(("a",)).error.code == ErrorCode.INVALID_RANGE


class TestAudit:

    def test_rejections_are_audited(self, ingestor):
        ingestor.ingest(RelationshipSignal("a", "ghost", "spatial", 0.5))
        rejected = [e for e in ingestor.get_audit_log() if e.action == "signal_rejected"]
        assert len(rejected) == 1
        assert rejected[0].get("code") == "UNKNOWN_NODE"
        assert rejected[0].layer == "ingestion"
