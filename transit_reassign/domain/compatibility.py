"""
Compatibility resolver. Pure predicates. No I/O.

Decides whether an entity may be placed in a container: current-container rule,
container state, entity lock, asymmetric tag (shift) compatibility and coverage (stop).
"""

import re
from typing import Iterable, Optional

from transit_reassign.domain.constraints import ReassignmentPolicy
from transit_reassign.domain.models import Container, Entity

# Ineligibility codes, in rule order.
SAME_CONTAINER = "SAME_CONTAINER"
CONTAINER_INACTIVE = "CONTAINER_INACTIVE"
CONTAINER_LOCKED = "CONTAINER_LOCKED"
ENTITY_LOCKED = "ENTITY_LOCKED"
TAG_INCOMPATIBLE = "TAG_INCOMPATIBLE"
COVERAGE_MISMATCH = "COVERAGE_MISMATCH"

_NON_ALNUM = re.compile(r"[^a-z0-9]")

_DEFAULT_POLICY = ReassignmentPolicy()


def normalize_tag(tag: Optional[str], default: str = "morning") -> str:
    """'Morning ' -> 'morning'. Empty or None -> default."""
    value = (tag or "").strip().lower()
    return value or default


def normalize_coverage_key(value: Optional[str]) -> str:
    """
    Normaliza ids/nombres de parada para comparar:
    "ADTU_Campus", "adtu campus" y "adtu-campus" -> "adtucampus".
    """
    if not value:
        return ""
    return _NON_ALNUM.sub("", value.strip().lower())


def normalized_coverage(container: Container) -> frozenset[str]:
    return frozenset(k for k in (normalize_coverage_key(c) for c in container.coverage) if k)


def tag_compatible(
    entity_tag: Optional[str],
    container_tag: Optional[str],
    policy: ReassignmentPolicy = _DEFAULT_POLICY,
) -> bool:
    """
    Asymmetric: the entity's tag must be satisfied by the container's tag.
    Unknown entity tags accept an equal container tag or the wildcard.
    """
    e_tag = normalize_tag(entity_tag, policy.default_tag)
    c_tag = normalize_tag(container_tag, policy.wildcard_tag)
    accepted = policy.tag_compatibility.get(e_tag)
    if accepted is None:
        return c_tag == e_tag or c_tag == policy.wildcard_tag
    return c_tag in accepted


def covers(container: Container, coverage_key: Optional[str]) -> bool:
    key = normalize_coverage_key(coverage_key)
    if not key:
        return False
    return key in normalized_coverage(container)


def _coverage_ok(entity: Entity, container: Container) -> bool:
    return entity.reserved or covers(container, entity.coverage_key)


def ineligibility_reason(
    entity: Entity,
    container: Container,
    *,
    allow_current: bool = False,
    policy: ReassignmentPolicy = _DEFAULT_POLICY,
) -> Optional[str]:
    """First failed rule code, or None when the pairing is eligible."""
    if not allow_current and container.container_id == entity.container_id:
        return SAME_CONTAINER
    if not container.active:
        return CONTAINER_INACTIVE
    if container.locked:
        return CONTAINER_LOCKED
    if entity.locked:
        return ENTITY_LOCKED
    if not tag_compatible(entity.tag, container.tag, policy):
        return TAG_INCOMPATIBLE
    if not _coverage_ok(entity, container):
        return COVERAGE_MISMATCH
    return None


def is_eligible(
    entity: Entity,
    container: Container,
    *,
    allow_current: bool = False,
    policy: ReassignmentPolicy = _DEFAULT_POLICY,
) -> bool:
    return ineligibility_reason(entity, container, allow_current=allow_current, policy=policy) is None


def eligible_containers(
    entity: Entity,
    containers: Iterable[Container],
    policy: ReassignmentPolicy = _DEFAULT_POLICY,
) -> list[Container]:
    """Eligible candidates for the allocator (current container never included)."""
    return [c for c in containers if is_eligible(entity, c, policy=policy)]
