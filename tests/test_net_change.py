"""
Tests for the net-change calculator.

Always compares against the snapshot, never against earlier staged operations.
"""

import pytest

from factories import make_container, make_entity, make_snapshot
from transit_reassign.application.staging import StagingArea
from transit_reassign.domain.models import Move, StagedOperation
from transit_reassign.domain.net_change import (
    NO_OP_REASON,
    compute_net_changes,
    container_label,
    describe_changes,
    net_changes_from_moves,
)


def _op(entity_id, from_cid, to_cid, op_id=None):
    return StagedOperation(
        operation_id=op_id or f"staged_{entity_id}_{to_cid}",
        entity_id=entity_id,
        from_container_id=from_cid,
        to_container_id=to_cid,
        staged_at=0.0,
    )


class TestNoOps:
    def test_stage_to_current_container(self, fleet_snapshot):
        """Staging E to its current container yields no changes and one no-op."""
        result = compute_net_changes([_op("e1", "bus_1", "bus_1")], fleet_snapshot)
        assert result.has_changes is False
        assert result.removed_no_op_count == 1
        assert result.no_ops[0].entity_id == "e1"
        assert result.no_ops[0].reason == NO_OP_REASON

    def test_stage_away_then_back(self, fleet_snapshot, clock):
        staging = StagingArea(fleet_snapshot, clock=clock)
        staging.stage("e1", "bus_2")
        staging.stage("e1", "bus_1")
        result = compute_net_changes(staging.list(), fleet_snapshot)
        assert result.has_changes is False
        assert result.moves == []
        assert result.removed_no_op_count == 1

    def test_reserved_entity_to_reserved_pool(self):
        snapshot = make_snapshot([make_entity("d1", None, reserved=True)], [make_container("bus_1")])
        result = compute_net_changes([_op("d1", None, None)], snapshot)
        assert result.has_changes is False
        assert result.removed_no_op_count == 1


class TestMoves:
    def test_single_move(self, fleet_snapshot):
        result = compute_net_changes([_op("e1", "bus_1", "bus_2")], fleet_snapshot)
        assert result.has_changes is True
        assert result.moves == [Move("e1", "bus_1", "bus_2", "morning")]
        assert result.net_changes["bus_2"].added == ["e1"]
        assert result.net_changes["bus_2"].tag_delta == {"morning": 1}
        assert result.net_changes["bus_1"].removed == ["e1"]
        assert result.net_changes["bus_1"].tag_delta == {"morning": -1}

    def test_compares_against_snapshot_not_earlier_op(self, fleet_snapshot):
        # from_container_id del op es irrelevante: manda el snapshot.
        result = compute_net_changes([_op("e1", "bus_2", "bus_3")], fleet_snapshot)
        assert result.moves == [Move("e1", "bus_1", "bus_3", "morning")]

    def test_collapses_to_last_operation(self, fleet_snapshot):
        ops = [_op("e1", "bus_1", "bus_2"), _op("e1", "bus_1", "bus_3")]
        result = compute_net_changes(ops, fleet_snapshot)
        assert result.collapsed_count == 1
        assert [m.to_container_id for m in result.moves] == ["bus_3"]
        assert "bus_2" not in result.net_changes

    def test_swap_between_containers(self, fleet_snapshot):
        ops = [_op("e1", "bus_1", "bus_3"), _op("m1", "bus_3", "bus_1")]
        result = compute_net_changes(ops, fleet_snapshot)
        assert result.net_changes["bus_1"].added == ["m1"]
        assert result.net_changes["bus_1"].removed == ["e1"]
        assert result.net_changes["bus_1"].tag_delta == {"morning": 0}
        assert list(result.net_changes) == ["bus_1", "bus_3"]

    def test_move_to_reserved_pool(self, fleet_snapshot):
        result = compute_net_changes([_op("e1", "bus_1", None)], fleet_snapshot)
        assert list(result.net_changes) == ["bus_1"]
        assert result.moves[0].to_container_id is None

    def test_unknown_entity_reported(self, fleet_snapshot):
        result = compute_net_changes([_op("ghost", "bus_1", "bus_2")], fleet_snapshot)
        assert result.unknown_entity_ids == ["ghost"]
        assert result.has_changes is False

    def test_missing_tag_uses_default(self):
        snapshot = make_snapshot([make_entity("e1", "bus_1", tag="")], [make_container("bus_1"), make_container("bus_2")])
        result = compute_net_changes([_op("e1", "bus_1", "bus_2")], snapshot)
        assert result.net_changes["bus_2"].tag_delta == {"morning": 1}


class TestFromMoves:
    def test_reverse_moves(self):
        result = net_changes_from_moves([Move("e1", "bus_2", "bus_1", "evening")])
        assert result.net_changes["bus_1"].tag_delta == {"evening": 1}
        assert result.net_changes["bus_2"].tag_delta == {"evening": -1}
        assert result.has_changes is True


class TestLabels:
    def test_bus_label(self, fleet_snapshot):
        assert container_label("bus_1", fleet_snapshot) == "Bus-1 (AS-01-PC-9094)"
        assert container_label("bus_2", fleet_snapshot) == "Bus-2 (bus_2)"

    def test_reserved_pool_and_unknown(self, fleet_snapshot):
        assert container_label(None, fleet_snapshot) == "Reserved Pool"
        assert container_label("van_7", fleet_snapshot) == "van_7"

    def test_describe_changes(self, fleet_snapshot):
        result = compute_net_changes([_op("e1", "bus_1", "bus_2")], fleet_snapshot)
        rows = describe_changes(result, fleet_snapshot)
        assert rows == [
            "Bus-1 (AS-01-PC-9094): +0 / -1",
            "Bus-2 (bus_2): +1 / -0",
            "e1: Bus-1 (AS-01-PC-9094) → Bus-2 (bus_2)",
        ]

    @pytest.mark.parametrize("label, expected", [("North Loop", "North Loop (van_3)"), (None, "van_3")])
    def test_non_bus_ids(self, label, expected):
        snapshot = make_snapshot([], [make_container("van_3", label=label)])
        assert container_label("van_3", snapshot) == expected
