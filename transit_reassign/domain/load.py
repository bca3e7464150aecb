"""
Container load helpers. Pure functions only.

Load is kept per tag (shift): {"morning": 32, "evening": 10}. Capacity is compared
either against the sum of all tags ("total") or the moving tag alone ("per_tag").
"""

import math
from typing import Dict, Iterable, List, Mapping, Optional, Sequence

from transit_reassign.domain.compatibility import normalize_tag
from transit_reassign.domain.constraints import CAPACITY_SCOPE_TOTAL
from transit_reassign.domain.models import Container, Entity, LoadReport, Snapshot


def tag_load(load: Mapping[str, int], tag: str) -> int:
    return int(load.get(tag, 0) or 0)


def counted_load(load: Mapping[str, int], tag: str, scope: str = CAPACITY_SCOPE_TOTAL) -> int:
    """Load that counts against capacity when placing an entity of `tag`."""
    if scope == CAPACITY_SCOPE_TOTAL:
        return sum(int(v or 0) for v in load.values())
    return tag_load(load, tag)


def load_pct(count: float, capacity: int) -> float:
    if capacity <= 0:
        return math.inf if count > 0 else 0.0
    return count / capacity * 100.0


def available_seats(count: int, capacity: int) -> int:
    return max(0, capacity - count)


def apply_tag_delta(load: Mapping[str, int], delta: Mapping[str, int]) -> Dict[str, int]:
    """New load dict with delta applied. Counts never go below zero."""
    out = {tag: int(v or 0) for tag, v in load.items()}
    for tag, d in delta.items():
        out[tag] = max(0, out.get(tag, 0) + d)
    return out


def invert_delta(delta: Mapping[str, int]) -> Dict[str, int]:
    return {tag: -d for tag, d in delta.items()}


def detect_overloaded_tags(container: Container, threshold_pct: float = 100.0) -> List[str]:
    """
    Tags whose own count exceeds threshold_pct of capacity.
    Un bus "both" está sobrecargado si CUALQUIERA de sus turnos lo está.
    """
    limit = container.capacity * threshold_pct / 100.0
    return sorted(tag for tag, count in container.load.items() if (count or 0) > limit)


def total_load(containers: Iterable[Container]) -> Dict[str, int]:
    """Total per-tag load over a set of containers."""
    totals: Dict[str, int] = {}
    for c in containers:
        for tag, count in c.load.items():
            totals[tag] = totals.get(tag, 0) + int(count or 0)
    return totals


# --- Reconciliación: contadores guardados vs. asignaciones reales ---

def count_assigned_loads(entities: Iterable[Entity], default_tag: str = "morning") -> Dict[str, Dict[str, int]]:
    """container_id -> tag -> number of entities that reference the container."""
    counts: Dict[str, Dict[str, int]] = {}
    for e in entities:
        if e.container_id is None:
            continue
        d = counts.setdefault(e.container_id, {})
        tag = normalize_tag(e.tag, default_tag)
        d[tag] = d.get(tag, 0) + 1
    return counts


def reconcile_container(
    container: Container,
    assigned: Mapping[str, int],
    stored_total: Optional[int] = None,
) -> LoadReport:
    """
    Report for one container. `after` keeps every stored tag (at zero if nobody
    holds it) plus the tags found in the assignments.
    """
    after = {tag: 0 for tag in container.load}
    after.update({tag: int(n) for tag, n in assigned.items()})
    counted = sum(after.values())
    return LoadReport(
        container_id=container.container_id,
        label=container.label,
        before=dict(container.load),
        after=after,
        entities_counted=counted,
        total_mismatch=stored_total is not None and int(stored_total) != counted,
    )


def reconcile_loads(
    snapshot: Snapshot,
    container_ids: Optional[Sequence[str]] = None,
    default_tag: str = "morning",
) -> List[LoadReport]:
    """
    Recount per-tag loads from entity assignments. Reports only; nothing is written.
    Ids not present in the snapshot are skipped. Reports come sorted by container_id.
    """
    counts = count_assigned_loads(snapshot.entities.values(), default_tag)
    ids = sorted(snapshot.containers) if container_ids is None else sorted(set(container_ids) & set(snapshot.containers))
    return [reconcile_container(snapshot.containers[cid], counts.get(cid, {})) for cid in ids]
