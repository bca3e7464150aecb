"""Tests for the operator session: stage -> preview -> commit -> undo over a shared store."""

import pytest

from factories import make_container, make_entity, seeded_store
from transit_reassign.application.use_cases.reassign_entities import (
    ReassignmentSession,
    overloaded_entity_ids,
)
from transit_reassign.application.undo import BLOCKED, EXPIRED, REVERTED
from transit_reassign.domain.constraints import ALL_FULL, SOURCE_CONTAINER_LOCKED, ReassignmentPolicy
from transit_reassign.domain.errors import RevertBlockedError, UnknownEntityError
from transit_reassign.infrastructure.snapshot_loader import fetch_snapshot
from transit_reassign.infrastructure.store import AUDIT_LOG, CONTAINERS, ENTITIES


@pytest.fixture
def session(fleet_store, clock):
    return ReassignmentSession(fleet_store, actor_id="op_admin", clock=clock)


class TestPreview:
    def test_preview_rows_and_validation(self, session):
        session.stage("e1", "bus_2")
        preview = session.preview()
        assert preview.net.has_changes is True
        assert preview.validation.is_valid is True
        assert preview.rows[-1] == "e1: Bus-1 (AS-01-PC-9094) → Bus-2 (bus_2)"

    def test_preview_has_no_side_effects(self, session, fleet_store):
        session.stage("e1", "bus_2")
        before = fleet_store.scan(CONTAINERS)
        session.preview()
        session.preview()
        assert fleet_store.scan(CONTAINERS) == before
        assert len(session.staged()) == 1


class TestCommit:
    def test_commit_clears_staging_and_reloads(self, session, fleet_store):
        session.stage("e1", "bus_2")
        outcome = session.commit(reason="balance", actor_metadata={"ip": "10.0.0.1"})

        assert outcome.success is True
        assert outcome.undo_token is not None
        assert session.staged() == []
        assert session.snapshot.entity("e1").container_id == "bus_2"
        assert len(session.audit_trail) == 1
        audit = fleet_store.read(AUDIT_LOG, outcome.commit.operation_id)
        assert audit["reason"] == "balance"
        assert audit["actor_metadata"] == {"ip": "10.0.0.1"}

    def test_noop_commit_has_no_token(self, session, fleet_store):
        session.stage("e1", "bus_1")
        outcome = session.commit()
        assert outcome.commit.no_op is True
        assert outcome.undo_token is None
        assert session.staged() == []
        assert fleet_store.scan(AUDIT_LOG) == []

    def test_refused_on_validation_errors(self, session):
        session.stage("e1", "bus_99")
        outcome = session.commit()
        assert outcome.commit is None
        assert outcome.success is False
        assert len(session.staged()) == 1

    def test_conflict_keeps_staging(self, session, fleet_store):
        session.stage("e1", "bus_3")
        doc = fleet_store.read(CONTAINERS, "bus_3")
        doc["load"] = {"morning": 5}
        fleet_store.write(CONTAINERS, "bus_3", doc)

        outcome = session.commit()
        assert outcome.success is False
        assert outcome.commit.conflict_details
        assert len(session.staged()) == 1
        assert session.snapshot.container("bus_3").load == {"morning": 5}


class TestAutoAllocate:
    def test_explicit_entities_are_staged(self, session):
        result = session.auto_allocate(["e1", "e2"])
        assert result.assignments == {"e1": "bus_2", "e2": "bus_2"}
        assert {op.entity_id: op.source for op in session.staged()} == {"e1": "allocator", "e2": "allocator"}

    def test_without_staging(self, session):
        session.auto_allocate(["e1"], stage=False)
        assert session.staged() == []

    def test_unknown_entity(self, session):
        with pytest.raises(UnknownEntityError):
            session.auto_allocate(["ghost"])

    def test_defaults_to_overloaded_containers(self, clock):
        containers = [
            make_container("bus_1", capacity=2, load={"morning": 3}),
            make_container("bus_2", capacity=1),
        ]
        entities = [make_entity(f"e{i}", "bus_1") for i in range(3)]
        store = seeded_store(entities, containers)
        session = ReassignmentSession(store, clock=clock)

        assert overloaded_entity_ids(session.snapshot) == ["e0", "e1", "e2"]
        result = session.auto_allocate()
        assert result.assignments == {"e0": "bus_2", "e1": None, "e2": None}
        assert [u.reason_code for u in result.unassigned] == [ALL_FULL, ALL_FULL]
        assert session.commit().success is True
        assert store.read(CONTAINERS, "bus_1")["load"] == {"morning": 2}

    def test_locked_source_is_left_in_place(self, clock):
        store = seeded_store(
            [make_entity("e1", "bus_1")],
            [make_container("bus_1", load={"morning": 1}, locked=True), make_container("bus_2")],
        )
        session = ReassignmentSession(store, clock=clock)
        result = session.auto_allocate(["e1"])
        assert result.assignments == {"e1": None}
        assert [u.reason_code for u in result.unassigned] == [SOURCE_CONTAINER_LOCKED]
        assert session.staged() == []
        assert session.preview().validation.errors == []


class TestRevert:
    def test_undo_roundtrip(self, session, fleet_store):
        session.stage("e1", "bus_2")
        outcome = session.commit()
        result = session.revert(outcome.undo_token.token_id)
        assert result.status == REVERTED
        assert session.snapshot.entity("e1").container_id == "bus_1"
        assert fetch_snapshot(fleet_store).container("bus_2").load == {"morning": 0}
        assert [e.kind for e in session.audit_trail] == ["entity_reassignment", "rollback"]

    def test_undo_window_from_policy(self, fleet_store, clock):
        session = ReassignmentSession(fleet_store, clock=clock, policy=ReassignmentPolicy(undo_window_s=30))
        session.stage("e1", "bus_2")
        token = session.commit().undo_token
        assert token.expires_at == clock.now + 30
        clock.advance(31)
        assert session.revert(token.token_id).status == EXPIRED

    def test_revert_or_raise_on_blocked(self, session, fleet_store):
        session.stage("m1", "bus_2")
        token = session.commit().undo_token
        doc = fleet_store.read(CONTAINERS, "bus_3")
        doc["load"] = {"morning": 5}
        fleet_store.write(CONTAINERS, "bus_3", doc)

        assert session.revert(token.token_id).status == BLOCKED
        with pytest.raises(RevertBlockedError) as exc:
            session.revert_or_raise(token.token_id)
        assert exc.value.token_id == token.token_id
        assert "free space" in str(exc.value)
        assert fleet_store.read(ENTITIES, "m1")["container_id"] == "bus_2"
