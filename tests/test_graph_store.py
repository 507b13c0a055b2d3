"""
Graph Store Tests
=================

Verifies the store's invariants:
1. At most one connection per unordered pair
2. Node removal cascades to touching connections
3. Range and mass validation at the mutating call
4. Commits never resurrect removed nodes or overwrite external placements
"""

import math

import numpy as np
import pytest

from mindmap.contracts.base import (
    NodeId, ConnectionId, ClusterId, Vector2, RelationshipType, ErrorCode,
    DuplicateNode, UnknownNode, UnknownConnection, InvalidRange, InvalidMass
)
from mindmap.contracts.graph import Node, Cluster
from mindmap.store import GraphStore


def make_store(*ids, importance=1.0):
    store = GraphStore()
    for content_id in ids:
        store.add_node(Node.create(content_id, importance=importance))
    return store


def nid(value: str) -> NodeId:
    return NodeId(value)


class TestNodes:

    def test_add_and_get(self):
        store = make_store("a")
        node = store.get_node(nid("a"))
        assert node.mass == 10.0
        assert node.attraction_strength == 0.5
        assert node.velocity == Vector2(0.0, 0.0)
        assert store.node_count == 1

    def test_duplicate_node_rejected(self):
        store = make_store("a")
        with pytest.raises(DuplicateNode) as info:
            store.add_node(Node.create("a"))
        assert info.value.code == ErrorCode.DUPLICATE_NODE

    @pytest.mark.parametrize("importance", [0.0, -0.5, float("nan"), float("inf")])
    def test_unusable_importance_is_invalid_mass(self, importance):
        store = GraphStore()
        with pytest.raises(InvalidMass):
            store.add_node(Node.create("a", importance=importance))
        assert store.node_count == 0

    def test_importance_above_one_rejected(self):
        with pytest.raises(InvalidRange):
            GraphStore().add_node(Node.create("a", importance=1.5))

    def test_numpy_scalars_stored_as_floats(self):
        store = GraphStore()
        node = store.add_node(Node.create(
            "a", importance=np.float64(0.4), confidence=np.float32(0.5),
            radius=np.float32(12.0)
        ))
        assert type(node.importance) is float
        assert type(node.confidence) is float
        assert type(node.radius) is float
        assert node.importance == pytest.approx(0.4)
        assert node.mass == pytest.approx(4.0)

    def test_numpy_importance_validated(self):
        with pytest.raises(InvalidMass):
            GraphStore().add_node(Node.create("a", importance=np.float32(0.0)))
        with pytest.raises(InvalidRange):
            GraphStore().add_node(Node.create("a", importance=np.float64(1.5)))

    def test_bool_importance_rejected(self):
        with pytest.raises(InvalidMass):
            GraphStore().add_node(Node.create("a", importance=True))

    @pytest.mark.parametrize("confidence", [-0.1, 1.1, float("nan")])
    def test_confidence_out_of_range(self, confidence):
        with pytest.raises(InvalidRange):
            GraphStore().add_node(Node.create("a", confidence=confidence))

    @pytest.mark.parametrize("radius", [0.0, -3.0, float("inf")])
    def test_bad_radius(self, radius):
        with pytest.raises(ValueError):
            GraphStore().add_node(Node.create("a", radius=radius))

    def test_authored_cluster_id_is_stripped(self):
        store = GraphStore()
        node = Node(node_id=nid("a"), cluster_id=ClusterId("cluster_x"))
        stored = store.add_node(node)
        assert stored.cluster_id is None

    def test_get_unknown_node(self):
        with pytest.raises(UnknownNode):
            GraphStore().get_node(nid("ghost"))

    def test_errors_convert_to_data(self):
        store = make_store("a")
        with pytest.raises(DuplicateNode) as excinfo:
            store.add_node(Node.create("a"))
        error = excinfo.value.to_error()
        assert error.code == ErrorCode.DUPLICATE_NODE
        assert error.context == (("node_id", "a"),)

    def test_nodes_sorted_by_id(self):
        store = make_store("c", "a", "b")
        assert [n.node_id.value for n in store.nodes()] == ["a", "b", "c"]

    def test_set_position_zeroes_velocity(self):
        store = make_store("a")
        store.commit_kinematics(
            {nid("a"): (Vector2(1.0, 1.0), Vector2(5.0, 5.0))}, store.revision
        )
        moved = store.set_position(nid("a"), (40.0, -20.0))
        assert moved.position == Vector2(40.0, -20.0)
        assert moved.velocity == Vector2(0.0, 0.0)

    def test_set_position_rejects_non_finite(self):
        store = make_store("a")
        with pytest.raises(ValueError):
            store.set_position(nid("a"), (math.inf, 0.0))


class TestConnections:

    def test_add_connection(self):
        store = make_store("a", "b")
        connection = store.add_connection(
            nid("a"), nid("b"), RelationshipType.THEMATIC, 0.6, 0.5
        )
        assert connection.connection_id == ConnectionId.for_pair(nid("b"), nid("a"))
        assert connection.thickness == pytest.approx(4.0)
        assert connection.opacity == pytest.approx(0.6)
        assert connection.color == "purple"

    def test_reverse_duplicate_returns_none(self):
        store = make_store("a", "b")
        store.add_connection(nid("a"), nid("b"), RelationshipType.THEMATIC, 0.6, 0.5)
        before = store.connections()

        again = store.add_connection(nid("b"), nid("a"), RelationshipType.VISUAL, 0.9, 0.9)

        assert again is None
        assert store.connections() == before
        assert store.connection_count == 1

    def test_relationship_type_accepts_string(self):
        store = make_store("a", "b")
        connection = store.add_connection(nid("a"), nid("b"), "entity_based", 0.5, 0.5)
        assert connection.relationship_type == RelationshipType.ENTITY_BASED

    def test_unknown_endpoint(self):
        store = make_store("a")
        with pytest.raises(UnknownNode):
            store.add_connection(nid("a"), nid("ghost"), RelationshipType.SPATIAL, 0.5, 0.5)
        assert store.connection_count == 0

    @pytest.mark.parametrize("strength,confidence", [
        (1.2, 0.5), (-0.1, 0.5), (0.5, 1.01), (float("nan"), 0.5),
    ])
    def test_out_of_range_scores(self, strength, confidence):
        store = make_store("a", "b")
        with pytest.raises(InvalidRange):
            store.add_connection(nid("a"), nid("b"), RelationshipType.SPATIAL, strength, confidence)

    def test_numpy_scores_accepted(self):
        store = make_store("a", "b")
        connection = store.add_connection(
            nid("a"), nid("b"), RelationshipType.SPATIAL, np.float32(0.25), np.float64(0.5)
        )
        assert type(connection.strength) is float
        assert connection.strength == 0.25
        assert connection.confidence == 0.5

    def test_self_loop_rejected(self):
        store = make_store("a")
        with pytest.raises(ValueError):
            store.add_connection(nid("a"), nid("a"), RelationshipType.SPATIAL, 0.5, 0.5)

    def test_update_connection(self):
        store = make_store("a", "b")
        connection = store.add_connection(nid("a"), nid("b"), RelationshipType.TEMPORAL, 0.2, 0.2)
        updated = store.update_connection(connection.connection_id, 0.9, 0.7)
        assert updated.strength == 0.9
        assert store.get_connection(connection.connection_id).confidence == 0.7

    def test_update_unknown_connection(self):
        with pytest.raises(UnknownConnection):
            GraphStore().update_connection(ConnectionId("conn_missing"), 0.5, 0.5)

    def test_update_validates_range(self):
        store = make_store("a", "b")
        connection = store.add_connection(nid("a"), nid("b"), RelationshipType.TEMPORAL, 0.2, 0.2)
        with pytest.raises(InvalidRange):
            store.update_connection(connection.connection_id, 2.0, 0.5)

    def test_remove_connection(self):
        store = make_store("a", "b")
        connection = store.add_connection(nid("a"), nid("b"), RelationshipType.TEMPORAL, 0.2, 0.2)
        assert store.remove_connection(connection.connection_id) == connection
        assert store.remove_connection(connection.connection_id) is None
        assert store.connections_of(nid("a")) == ()

    def test_connections_of_and_neighbours(self):
        store = make_store("a", "b", "c", "d")
        store.add_connection(nid("a"), nid("b"), RelationshipType.TEMPORAL, 0.5, 0.5)
        store.add_connection(nid("c"), nid("a"), RelationshipType.TEMPORAL, 0.5, 0.5)

        assert len(store.connections_of(nid("a"))) == 2
        neighbours = {n.node_id.value for n in store.connected_nodes(nid("a"))}
        assert neighbours == {"b", "c"}
        assert store.connections_of(nid("d")) == ()

    def test_connections_of_absent_node(self):
        with pytest.raises(UnknownNode):
            GraphStore().connections_of(nid("ghost"))


class TestRemoval:

    def test_remove_cascades(self):
        store = make_store("a", "b", "c")
        store.add_connection(nid("a"), nid("b"), RelationshipType.TEMPORAL, 0.5, 0.5)
        store.add_connection(nid("a"), nid("c"), RelationshipType.TEMPORAL, 0.5, 0.5)
        store.add_connection(nid("b"), nid("c"), RelationshipType.TEMPORAL, 0.5, 0.5)

        removed = store.remove_node(nid("a"))

        assert len(removed) == 2
        assert store.connection_count == 1
        assert all(not c.touches(nid("a")) for c in store.connections())
        assert len(store.connections_of(nid("b"))) == 1

    def test_remove_absent_is_noop(self):
        store = make_store("a")
        revision = store.revision
        assert store.remove_node(nid("ghost")) == ()
        assert store.revision == revision

    def test_remove_invalidates_cluster(self):
        store = make_store("a", "b")
        members = (nid("a"), nid("b"))
        cluster = Cluster(
            cluster_id=ClusterId.for_members(members),
            member_ids=members,
            centroid=Vector2(0.0, 0.0),
            radius=30.0,
            importance=2.0
        )
        store.replace_clusters([cluster])
        assert store.get_node(nid("b")).cluster_id == cluster.cluster_id

        store.remove_node(nid("a"))

        assert store.clusters() == ()
        assert store.get_node(nid("b")).cluster_id is None


class TestTickInterface:

    def test_commit_skips_removed_nodes(self):
        store = make_store("a", "b")
        view = store.physics_view()
        store.remove_node(nid("a"))

        applied = store.commit_kinematics({
            nid("a"): (Vector2(9.0, 9.0), Vector2(0.0, 0.0)),
            nid("b"): (Vector2(3.0, 4.0), Vector2(1.0, 0.0)),
        }, view.revision)

        assert applied == 1
        assert not store.has_node(nid("a"))
        assert store.get_node(nid("b")).position == Vector2(3.0, 4.0)

    def test_commit_keeps_external_placement(self):
        store = make_store("a")
        view = store.physics_view()
        store.set_position(nid("a"), (100.0, 100.0))

        applied = store.commit_kinematics(
            {nid("a"): (Vector2(1.0, 1.0), Vector2(1.0, 1.0))}, view.revision
        )

        assert applied == 0
        assert store.get_node(nid("a")).position == Vector2(100.0, 100.0)

    def test_replace_clusters_drops_stale(self):
        store = make_store("a", "b")
        stale_members = (nid("a"), nid("ghost"))
        stale = Cluster(
            cluster_id=ClusterId.for_members(stale_members),
            member_ids=stale_members,
            centroid=Vector2(0.0, 0.0),
            radius=30.0,
            importance=1.0
        )
        assert store.replace_clusters([stale]) == ()
        assert store.get_node(nid("a")).cluster_id is None

    def test_reset_kinematics(self):
        store = make_store("a", "b")
        store.commit_kinematics(
            {nid("a"): (Vector2(1.0, 1.0), Vector2(7.0, 7.0))}, store.revision
        )
        store.reset_kinematics({nid("b"): Vector2(5.0, 5.0)})
        assert store.get_node(nid("a")).velocity == Vector2(0.0, 0.0)
        assert store.get_node(nid("a")).position == Vector2(1.0, 1.0)
        assert store.get_node(nid("b")).position == Vector2(5.0, 5.0)


class TestFingerprint:

    def test_fingerprint_ignores_positions(self):
        store = make_store("a", "b")
        before = store.topology_fingerprint()
        store.set_position(nid("a"), (50.0, 50.0))
        assert store.topology_fingerprint() == before

    def test_fingerprint_tracks_topology(self):
        store = make_store("a", "b")
        before = store.topology_fingerprint()
        store.add_connection(nid("a"), nid("b"), RelationshipType.TEMPORAL, 0.5, 0.5)
        assert store.topology_fingerprint() != before

    def test_fingerprint_independent_of_insertion_order(self):
        assert make_store("a", "b", "c").topology_fingerprint() == \
            make_store("c", "a", "b").topology_fingerprint()


class TestAudit:

    def test_mutations_are_audited(self):
        store = make_store("a", "b")
        store.add_connection(nid("a"), nid("b"), RelationshipType.TEMPORAL, 0.5, 0.5)
        store.remove_node(nid("a"))

        actions = [e.action for e in store.get_audit_log()]
        assert actions == ["node_added", "node_added", "connection_added", "node_removed"]
        assert all(e.layer == "store" for e in store.get_audit_log())

    def test_drain_clears(self):
        store = make_store("a")
        assert len(store.drain_audit_log()) == 1
        assert store.get_audit_log() == []


class TestRelationshipTypes:

    @pytest.mark.parametrize("spelling", [
        "entity_based", "entity-based", "Entity Based", "ENTITY-BASED",
    ])
    def test_entity_based_spellings(self, spelling):
        assert RelationshipType(spelling) == RelationshipType.ENTITY_BASED

    def test_unknown_type_still_rejected(self):
        with pytest.raises(ValueError):
            RelationshipType("telepathic")
        with pytest.raises(ValueError):
            RelationshipType(3)

    def test_display_names_and_colors(self):
        assert RelationshipType.ENTITY_BASED.display_name == "Entity-based"
        assert RelationshipType.TEMPORAL.display_name == "Time-based"
        assert RelationshipType.SEMANTIC.color == "indigo"
        assert len({t.display_name for t in RelationshipType}) == len(RelationshipType)
        assert len({t.color for t in RelationshipType}) == len(RelationshipType)


class TestClusterGeometry:

    def test_bounding_box_is_square_around_centroid(self):
        members = (nid("a"), nid("b"))
        cluster = Cluster(
            cluster_id=ClusterId.for_members(members),
            member_ids=members,
            centroid=Vector2(10.0, -20.0),
            radius=40.0,
            importance=1.5
        )
        assert cluster.bounding_box == (-30.0, -60.0, 80.0, 80.0)
