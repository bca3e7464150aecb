"""
Net-change calculator. Pure domain. No I/O.

Reduces staged operations against a snapshot of current assignments into the
minimal set of real container membership changes.
"""

import re
from typing import Dict, List, Optional, Sequence

from transit_reassign.domain.compatibility import normalize_tag
from transit_reassign.domain.constraints import ReassignmentPolicy
from transit_reassign.domain.models import (
    RESERVED_POOL_LABEL,
    Move,
    NetChange,
    NetChangeResult,
    NoOpRecord,
    Snapshot,
    StagedOperation,
)

NO_OP_REASON = "no net change (returned to original assignment)"

_DEFAULT_POLICY = ReassignmentPolicy()


def compute_net_changes(
    staged_ops: Sequence[StagedOperation],
    snapshot: Snapshot,
    policy: ReassignmentPolicy = _DEFAULT_POLICY,
) -> NetChangeResult:
    """
    1. Collapse several ops on one entity to the last one.
    2. Compare each target with the entity's current container in the snapshot
       (never with an earlier staged op).
    3. Same container -> no-op, counted and recorded.
    4. Otherwise one Move: add on target, remove on source. Grouped per container.
    """
    latest: Dict[str, StagedOperation] = {}
    collapsed = 0
    for op in staged_ops:
        if op.entity_id in latest:
            collapsed += 1
            del latest[op.entity_id]
        latest[op.entity_id] = op

    moves: List[Move] = []
    no_ops: List[NoOpRecord] = []
    unknown: List[str] = []
    changes: Dict[str, NetChange] = {}

    def _change(container_id: str) -> NetChange:
        if container_id not in changes:
            changes[container_id] = NetChange(container_id=container_id)
        return changes[container_id]

    for entity_id, op in latest.items():
        entity = snapshot.entity(entity_id)
        if entity is None:
            unknown.append(entity_id)
            continue
        current = entity.container_id
        if op.to_container_id == current:
            no_ops.append(NoOpRecord(entity_id=entity_id, operation_id=op.operation_id, reason=NO_OP_REASON))
            continue

        tag = normalize_tag(entity.tag, policy.default_tag)
        moves.append(Move(entity_id=entity_id, from_container_id=current, to_container_id=op.to_container_id, tag=tag))
        if op.to_container_id is not None:
            target = _change(op.to_container_id)
            target.added.append(entity_id)
            target.tag_delta[tag] = target.tag_delta.get(tag, 0) + 1
        if current is not None:
            source = _change(current)
            source.removed.append(entity_id)
            source.tag_delta[tag] = source.tag_delta.get(tag, 0) - 1

    return NetChangeResult(
        net_changes={cid: changes[cid] for cid in sorted(changes)},
        moves=moves,
        no_ops=no_ops,
        removed_no_op_count=len(no_ops),
        collapsed_count=collapsed,
        unknown_entity_ids=unknown,
    )


def net_changes_from_moves(moves: Sequence[Move]) -> NetChangeResult:
    """Build a result straight from moves (used for reverse deltas on undo)."""
    changes: Dict[str, NetChange] = {}
    for m in moves:
        if m.to_container_id is not None:
            nc = changes.setdefault(m.to_container_id, NetChange(container_id=m.to_container_id))
            nc.added.append(m.entity_id)
            nc.tag_delta[m.tag] = nc.tag_delta.get(m.tag, 0) + 1
        if m.from_container_id is not None:
            nc = changes.setdefault(m.from_container_id, NetChange(container_id=m.from_container_id))
            nc.removed.append(m.entity_id)
            nc.tag_delta[m.tag] = nc.tag_delta.get(m.tag, 0) - 1
    return NetChangeResult(
        net_changes={cid: changes[cid] for cid in sorted(changes)},
        moves=list(moves),
        no_ops=[],
        removed_no_op_count=0,
    )


def container_label(container_id: Optional[str], snapshot: Snapshot) -> str:
    """'bus_3' + label 'AS-01-PC-9094' -> 'Bus-3 (AS-01-PC-9094)'. None -> reserved pool."""
    if container_id is None:
        return RESERVED_POOL_LABEL
    container = snapshot.container(container_id)
    if container is None:
        return container_id
    match = re.match(r"^bus_(\d+)$", container_id, re.IGNORECASE)
    label = container.label or container_id
    if match:
        return f"Bus-{int(match.group(1))} ({label})"
    if container.label:
        return f"{container.label} ({container_id})"
    return container_id


def describe_changes(result: NetChangeResult, snapshot: Snapshot) -> List[str]:
    """Confirmation rows for the operator: one per container, then one per move."""
    rows: List[str] = []
    for cid, change in result.net_changes.items():
        rows.append(f"{container_label(cid, snapshot)}: +{len(change.added)} / -{len(change.removed)}")
    for m in result.moves:
        entity = snapshot.entity(m.entity_id)
        name = (entity.label if entity and entity.label else m.entity_id)
        rows.append(
            f"{name}: {container_label(m.from_container_id, snapshot)} → "
            f"{container_label(m.to_container_id, snapshot)}"
        )
    return rows
