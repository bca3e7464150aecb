"""
Pre-commit validator. Pure checks against the live snapshot.

Errors block the commit; warnings are shown to the operator and the commit may proceed.
The capacity check here is authoritative for preview; the committer repeats it on
freshly read state inside the transaction.
"""

from collections import Counter
from typing import Dict, List, Optional

from transit_reassign.domain.compatibility import covers, tag_compatible
from transit_reassign.domain.constraints import ReassignmentPolicy
from transit_reassign.domain.load import apply_tag_delta, counted_load, load_pct
from transit_reassign.domain.models import (
    Container,
    NetChangeResult,
    Snapshot,
    ValidationIssue,
    ValidationResult,
)

# Error codes
UNKNOWN_ENTITY = "UNKNOWN_ENTITY"
UNKNOWN_CONTAINER = "UNKNOWN_CONTAINER"
CONTAINER_INACTIVE = "CONTAINER_INACTIVE"
CONTAINER_LOCKED = "CONTAINER_LOCKED"
ENTITY_LOCKED = "ENTITY_LOCKED"
TAG_INCOMPATIBLE = "TAG_INCOMPATIBLE"
CAPACITY_EXCEEDED = "CAPACITY_EXCEEDED"
DUPLICATE_TARGET = "DUPLICATE_TARGET"
# Warning codes
CONTAINER_FULL = "CONTAINER_FULL"
NEAR_CAPACITY = "NEAR_CAPACITY"
COVERAGE_MISMATCH = "COVERAGE_MISMATCH"

ERROR = "error"
WARNING = "warning"

_DEFAULT_POLICY = ReassignmentPolicy()


def check_capacity(
    container: Container,
    tag_delta: Dict[str, int],
    policy: ReassignmentPolicy = _DEFAULT_POLICY,
) -> List[ValidationIssue]:
    """
    Capacity issues for one container, only for tags that grow.

    An already overloaded container is only an error when the change raises its
    counted load; a swap that keeps it level is reported as full.
    """
    issues: List[ValidationIssue] = []
    cid = container.container_id
    after = apply_tag_delta(container.load, tag_delta)
    limit = policy.capacity_limit(container.capacity)
    for tag, delta in sorted(tag_delta.items()):
        if delta <= 0:
            continue
        count = counted_load(after, tag, policy.capacity_scope)
        pct = load_pct(count, container.capacity)
        if count > limit and count > counted_load(container.load, tag, policy.capacity_scope):
            issues.append(ValidationIssue(
                CAPACITY_EXCEEDED, ERROR,
                f"Container {cid} would exceed capacity for {tag} ({count}/{container.capacity})",
                container_id=cid,
            ))
        elif count > limit:
            issues.append(ValidationIssue(
                CONTAINER_FULL, WARNING,
                f"Container {cid} stays over capacity for {tag} ({count}/{container.capacity})",
                container_id=cid,
            ))
        elif count >= container.capacity:
            issues.append(ValidationIssue(
                CONTAINER_FULL, WARNING,
                f"Container {cid} will have no seats left for {tag} ({count}/{container.capacity})",
                container_id=cid,
            ))
        elif pct > policy.warning_threshold_pct:
            issues.append(ValidationIssue(
                NEAR_CAPACITY, WARNING,
                f"Container {cid} will be at {pct:.0f}% for {tag} ({count}/{container.capacity})",
                container_id=cid,
            ))
    return issues


def validate(
    net_result: NetChangeResult,
    snapshot: Snapshot,
    policy: ReassignmentPolicy = _DEFAULT_POLICY,
) -> ValidationResult:
    issues: List[ValidationIssue] = []

    def _add(code: str, severity: str, message: str,
             container_id: Optional[str] = None, entity_id: Optional[str] = None) -> None:
        issues.append(ValidationIssue(code, severity, message, container_id, entity_id))

    for entity_id in net_result.unknown_entity_ids:
        _add(UNKNOWN_ENTITY, ERROR, f"Entity {entity_id} no longer exists", entity_id=entity_id)

    # (d) duplicate/conflicting targets for one entity
    move_counts = Counter(m.entity_id for m in net_result.moves)
    added_counts = Counter(eid for nc in net_result.net_changes.values() for eid in nc.added)
    for entity_id in sorted(set(move_counts) | set(added_counts)):
        if move_counts[entity_id] > 1 or added_counts[entity_id] > 1:
            _add(DUPLICATE_TARGET, ERROR,
                 f"Entity {entity_id} has more than one target container", entity_id=entity_id)

    # (a)(b) per-move state checks
    for m in net_result.moves:
        entity = snapshot.entity(m.entity_id)
        if entity is None:
            _add(UNKNOWN_ENTITY, ERROR, f"Entity {m.entity_id} no longer exists", entity_id=m.entity_id)
            continue
        if entity.locked:
            _add(ENTITY_LOCKED, ERROR, f"Entity {m.entity_id} is locked and cannot be moved",
                 entity_id=m.entity_id)

        source = snapshot.container(m.from_container_id)
        if source is not None and source.locked:
            _add(CONTAINER_LOCKED, ERROR,
                 f"Container {source.container_id} has an active trip; {m.entity_id} cannot leave it",
                 container_id=source.container_id, entity_id=m.entity_id)

        if m.to_container_id is None:
            continue
        target = snapshot.container(m.to_container_id)
        if target is None:
            _add(UNKNOWN_CONTAINER, ERROR, f"Container {m.to_container_id} not found",
                 container_id=m.to_container_id, entity_id=m.entity_id)
            continue
        if not target.active:
            _add(CONTAINER_INACTIVE, ERROR, f"Container {target.container_id} is not active",
                 container_id=target.container_id, entity_id=m.entity_id)
        if target.locked:
            _add(CONTAINER_LOCKED, ERROR,
                 f"Container {target.container_id} has an active trip; cannot receive {m.entity_id}",
                 container_id=target.container_id, entity_id=m.entity_id)
        if not tag_compatible(m.tag, target.tag, policy):
            _add(TAG_INCOMPATIBLE, ERROR,
                 f"Container {target.container_id} ({target.tag}) cannot accept {m.tag} entity {m.entity_id}",
                 container_id=target.container_id, entity_id=m.entity_id)
        if not entity.reserved and not covers(target, entity.coverage_key):
            _add(COVERAGE_MISMATCH, WARNING,
                 f"Container {target.container_id} does not serve stop {entity.coverage_key!r} of {m.entity_id}",
                 container_id=target.container_id, entity_id=m.entity_id)

    # (c) authoritative capacity check, only where a tag grows
    for cid, change in net_result.net_changes.items():
        container = snapshot.container(cid)
        if container is None:
            if change.added:
                continue  # ya reportado como UNKNOWN_CONTAINER
            _add(UNKNOWN_CONTAINER, ERROR, f"Container {cid} not found", container_id=cid)
            continue
        issues.extend(check_capacity(container, change.tag_delta, policy))

    return ValidationResult(
        errors=[i.message for i in issues if i.severity == ERROR],
        warnings=[i.message for i in issues if i.severity == WARNING],
        issues=issues,
    )
