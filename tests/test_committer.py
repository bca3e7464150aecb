"""
Tests for the transactional committer.

Covers fresh re-reads inside the transaction, conflict reporting, the audit entry,
store failure propagation and all-or-nothing application.
"""

import pytest

from factories import FailingWriteStore, make_container, make_entity, seeded_store
from transit_reassign.application.committer import (
    CONTAINER_INACTIVE,
    CONTAINER_NOT_FOUND,
    ENTITY_LOCKED,
    ENTITY_MOVED,
    ENTITY_NOT_FOUND,
    KIND_REASSIGNMENT,
    TransactionalCommitter,
)
from transit_reassign.domain.errors import StoreError
from transit_reassign.domain.models import StagedOperation
from transit_reassign.domain.net_change import compute_net_changes
from transit_reassign.domain.validation import CAPACITY_EXCEEDED
from transit_reassign.infrastructure.snapshot_loader import container_to_doc, entity_to_doc, fetch_snapshot
from transit_reassign.infrastructure.store import AUDIT_LOG, CONTAINERS, ENTITIES, InMemoryTransactionalStore


def _net(store, *targets):
    snapshot = fetch_snapshot(store)
    ops = [StagedOperation(f"op_{eid}", eid, None, to, 0.0) for eid, to in targets]
    return compute_net_changes(ops, snapshot)


def _state(store):
    return store.scan(ENTITIES), store.scan(CONTAINERS), store.scan(AUDIT_LOG)


class TestSuccessfulCommit:
    def test_moves_entity_and_updates_loads(self, fleet_store, clock):
        committer = TransactionalCommitter(fleet_store, clock=clock)
        trail = []
        result = committer.commit(_net(fleet_store, ("e1", "bus_2")), "op_admin", {"role": "admin"}, trail,
                                  reason="rebalance")

        assert result.success is True
        assert result.operation_id.startswith("op_")
        assert {u.container_id: (u.before, u.after) for u in result.updated_containers} == {
            "bus_1": ({"morning": 4}, {"morning": 3}),
            "bus_2": ({}, {"morning": 1}),
        }
        assert fleet_store.read(ENTITIES, "e1")["container_id"] == "bus_2"
        bus_2 = fleet_store.read(CONTAINERS, "bus_2")
        assert bus_2["load"] == {"morning": 1}
        assert bus_2["total"] == 1
        assert bus_2["updated_by"] == "op_admin"
        assert bus_2["updated_at"] == clock.now

    def test_audit_entry_lists_every_move(self, fleet_store, clock):
        committer = TransactionalCommitter(fleet_store, clock=clock)
        trail = []
        result = committer.commit(_net(fleet_store, ("e1", "bus_2"), ("e2", None)), "op_admin", None, trail)

        assert len(trail) == 1
        entry = trail[0]
        assert entry.kind == KIND_REASSIGNMENT
        assert entry.status == "committed"
        assert {(m["entity_id"], m["from"], m["to"]) for m in entry.moves} == {
            ("e1", "bus_1", "bus_2"),
            ("e2", "bus_1", None),
        }
        assert all(m["actor_id"] == "op_admin" and m["timestamp"] == clock.now for m in entry.moves)
        stored = fleet_store.read(AUDIT_LOG, result.operation_id)
        assert stored == entry.to_doc()

    def test_no_changes_is_a_noop(self, fleet_store):
        committer = TransactionalCommitter(fleet_store)
        before = _state(fleet_store)
        result = committer.commit(_net(fleet_store, ("e1", "bus_1")), "op_admin")
        assert result.success is True
        assert result.no_op is True
        assert result.operation_id is None
        assert _state(fleet_store) == before

    def test_level_swap_on_overloaded_container(self):
        store = seeded_store(
            [make_entity("e1", "bus_1", tag="evening"), make_entity("e2", "bus_2")],
            [make_container("bus_1", load={"evening": 1}), make_container("bus_2", load={"morning": 11})],
        )
        result = TransactionalCommitter(store).commit(_net(store, ("e1", "bus_2"), ("e2", "bus_1")), "op")
        assert result.success is True
        assert store.read(CONTAINERS, "bus_2")["load"] == {"morning": 10, "evening": 1}

    def test_route_follows_target(self):
        store = seeded_store([make_entity("e1", "bus_1")],
                             [make_container("bus_1", load={"morning": 1}), make_container("bus_2", route_id="r9")])
        TransactionalCommitter(store).commit(_net(store, ("e1", "bus_2")), "op")
        assert store.read(ENTITIES, "e1")["route_id"] == "r9"


class TestConflicts:
    """Anything invalid on fresh state aborts the whole transaction."""

    def test_capacity_rechecked_on_fresh_state(self, fleet_store):
        net = _net(fleet_store, ("e1", "bus_3"))
        # Otro operador llena bus_3 entre el preview y el commit.
        doc = fleet_store.read(CONTAINERS, "bus_3")
        doc["load"] = {"morning": 5}
        fleet_store.write(CONTAINERS, "bus_3", doc)
        before = _state(fleet_store)

        result = TransactionalCommitter(fleet_store).commit(net, "op_admin")
        assert result.success is False
        assert [c.code for c in result.conflict_details] == [CAPACITY_EXCEEDED]
        assert result.conflict_details[0].container_id == "bus_3"
        assert _state(fleet_store) == before

    def test_entity_moved_meanwhile(self, fleet_store):
        net = _net(fleet_store, ("e1", "bus_2"))
        doc = fleet_store.read(ENTITIES, "e1")
        doc["container_id"] = "bus_3"
        fleet_store.write(ENTITIES, "e1", doc)

        result = TransactionalCommitter(fleet_store).commit(net, "op_admin")
        assert [c.code for c in result.conflict_details] == [ENTITY_MOVED]

    def test_entity_locked_meanwhile(self, fleet_store):
        net = _net(fleet_store, ("e1", "bus_2"))
        doc = fleet_store.read(ENTITIES, "e1")
        doc["locked"] = True
        fleet_store.write(ENTITIES, "e1", doc)

        result = TransactionalCommitter(fleet_store).commit(net, "op_admin")
        assert ENTITY_LOCKED in [c.code for c in result.conflict_details]

    def test_target_deactivated_meanwhile(self, fleet_store):
        net = _net(fleet_store, ("e1", "bus_2"))
        doc = fleet_store.read(CONTAINERS, "bus_2")
        doc["active"] = False
        fleet_store.write(CONTAINERS, "bus_2", doc)

        result = TransactionalCommitter(fleet_store).commit(net, "op_admin")
        assert [c.code for c in result.conflict_details] == [CONTAINER_INACTIVE]

    def test_missing_documents(self):
        store = seeded_store([make_entity("e1", "bus_1")], [make_container("bus_1", load={"morning": 1}),
                                                              make_container("bus_2")])
        net = _net(store, ("e1", "bus_2"))
        empty = InMemoryTransactionalStore()
        result = TransactionalCommitter(empty).commit(net, "op_admin")
        codes = [c.code for c in result.conflict_details]
        assert codes.count(CONTAINER_NOT_FOUND) == 2
        assert ENTITY_NOT_FOUND in codes

    def test_one_bad_move_blocks_all(self, fleet_store):
        net = _net(fleet_store, ("e1", "bus_2"), ("e2", "bus_missing"))
        before = _state(fleet_store)
        result = TransactionalCommitter(fleet_store).commit(net, "op_admin")
        assert result.success is False
        assert _state(fleet_store) == before


class TestStoreFailures:
    @pytest.mark.parametrize("fail_on_write", [1, 2, 3, 4])
    def test_failure_mid_transaction_leaves_state_untouched(self, fleet, fail_on_write):
        entities, containers = fleet
        store = FailingWriteStore(fail_on_write)
        store.seed([entity_to_doc(e) for e in entities], [container_to_doc(c) for c in containers])
        net = _net(store, ("e1", "bus_2"))
        before = _state(store)

        with pytest.raises(StoreError):
            TransactionalCommitter(store).commit(net, "op_admin", audit_trail=[])
        assert _state(store) == before
