"""
Load-balanced allocator. Greedy, deterministic. No solver.

Cada entidad va al contenedor elegible con menor carga relativa
(carga contada + altas simuladas) / capacidad, si le queda hueco.
La carga simulada vive en una copia de trabajo (numpy) que nunca toca el snapshot.
"""

import logging
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np

from transit_reassign.domain.compatibility import covers, is_eligible, normalize_tag, tag_compatible
from transit_reassign.domain.constraints import (
    ALL_FULL,
    CAPACITY_SCOPE_TOTAL,
    ENTITY_LOCKED,
    NO_ALTERNATE_CONTAINER,
    NO_TAG_COMPATIBLE_CONTAINER,
    SOURCE_CONTAINER_LOCKED,
    ReassignmentPolicy,
)
from transit_reassign.domain.models import AllocationResult, Container, Entity, UnassignedEntity

logger = logging.getLogger(__name__)


def _batch_by_tag(entities: Sequence[Entity], policy: ReassignmentPolicy) -> List[Tuple[str, List[Entity]]]:
    """Batches in order of first appearance of each tag; input order kept inside a batch."""
    batches: Dict[str, List[Entity]] = {}
    for e in entities:
        batches.setdefault(normalize_tag(e.tag, policy.default_tag), []).append(e)
    return list(batches.items())


def _diagnose(entity: Entity, containers: Sequence[Container], policy: ReassignmentPolicy) -> UnassignedEntity:
    """Relaxed checks over the other usable containers to explain an empty eligible set."""
    others = [
        c for c in containers
        if c.container_id != entity.container_id and c.active and not c.locked
    ]
    serves_stop = [c for c in others if entity.reserved or covers(c, entity.coverage_key)]
    tag = normalize_tag(entity.tag, policy.default_tag)
    if not serves_stop:
        return UnassignedEntity(
            entity_id=entity.entity_id,
            reason_code=NO_ALTERNATE_CONTAINER,
            message=f"Only the current container serves stop {entity.coverage_key!r}",
        )
    if not any(tag_compatible(tag, c.tag, policy) for c in serves_stop):
        return UnassignedEntity(
            entity_id=entity.entity_id,
            reason_code=NO_TAG_COMPATIBLE_CONTAINER,
            message=f"No container serving stop {entity.coverage_key!r} supports the {tag} shift",
        )
    return UnassignedEntity(
        entity_id=entity.entity_id,
        reason_code=NO_ALTERNATE_CONTAINER,
        message=f"No alternative container serves stop {entity.coverage_key!r} for the {tag} shift",
    )


def allocate(
    entities: Sequence[Entity],
    containers: Sequence[Container],
    policy: Optional[ReassignmentPolicy] = None,
) -> AllocationResult:
    """
    1. Batch entities by tag (first-appearance order).
    2. Per entity: eligible containers via the resolver (current container excluded).
       Locked entities and entities whose current container is locked stay put.
    3. Rank by ascending relative load; tie-break: lowest container_id.
    4. Take the first candidate with headroom and bump its simulated load.
    5. Entities with no candidate are reported with a reason code. Nothing raises.

    The result depends on input order: earlier entities see emptier containers.
    """
    policy = policy or ReassignmentPolicy()
    ordered = sorted(containers, key=lambda c: c.container_id)
    by_id = {c.container_id: c for c in ordered}
    tag_names = sorted(
        {normalize_tag(t, policy.default_tag) for c in ordered for t in c.load}
        | {normalize_tag(e.tag, policy.default_tag) for e in entities}
    )
    tag_index = {t: i for i, t in enumerate(tag_names)}

    loads = np.zeros((len(ordered), len(tag_names)), dtype=np.int64)
    for i, c in enumerate(ordered):
        for t, count in c.load.items():
            loads[i, tag_index[normalize_tag(t, policy.default_tag)]] += int(count or 0)
    limits = np.array([policy.capacity_limit(c.capacity) for c in ordered], dtype=float)
    capacities = np.array([c.capacity for c in ordered], dtype=float)

    assignments: Dict[str, Optional[str]] = {}
    unassigned: List[UnassignedEntity] = []

    for tag, batch in _batch_by_tag(entities, policy):
        t = tag_index[tag]
        for entity in batch:
            if entity.locked:
                assignments[entity.entity_id] = None
                unassigned.append(
                    UnassignedEntity(entity.entity_id, ENTITY_LOCKED, "Entity is locked mid-operation")
                )
                continue
            current = by_id.get(entity.container_id) if entity.container_id else None
            if current is not None and current.locked:
                # Bus con viaje activo: nadie sale de él hasta que termine.
                assignments[entity.entity_id] = None
                unassigned.append(
                    UnassignedEntity(
                        entity.entity_id,
                        SOURCE_CONTAINER_LOCKED,
                        f"Container {current.container_id} has an active trip",
                    )
                )
                continue

            eligible = np.array(
                [i for i, c in enumerate(ordered) if is_eligible(entity, c, policy=policy)],
                dtype=np.int64,
            )
            if eligible.size == 0:
                assignments[entity.entity_id] = None
                unassigned.append(_diagnose(entity, ordered, policy))
                continue

            if policy.capacity_scope == CAPACITY_SCOPE_TOTAL:
                counted = loads[eligible].sum(axis=1).astype(float)
            else:
                counted = loads[eligible, t].astype(float)
            cap = capacities[eligible]
            rel = np.full(eligible.shape, np.inf)
            np.divide(counted, cap, out=rel, where=cap > 0)
            # lexsort: última clave = primaria. Índice en `ordered` == orden por container_id.
            order = np.lexsort((eligible, rel))
            headroom = counted + 1 <= limits[eligible]

            chosen: Optional[int] = None
            for k in order:
                if headroom[k]:
                    chosen = int(eligible[k])
                    break

            if chosen is None:
                assignments[entity.entity_id] = None
                unassigned.append(
                    UnassignedEntity(
                        entity.entity_id,
                        ALL_FULL,
                        f"All {eligible.size} eligible container(s) are at capacity",
                    )
                )
                continue

            loads[chosen, t] += 1
            assignments[entity.entity_id] = ordered[chosen].container_id
            logger.debug(
                "allocate %s (%s) -> %s rel_load=%.3f",
                entity.entity_id, tag, ordered[chosen].container_id,
                float(rel[np.where(eligible == chosen)[0][0]]),
            )

    simulated = {
        c.container_id: {t: int(loads[i, j]) for j, t in enumerate(tag_names) if loads[i, j] or t in c.load}
        for i, c in enumerate(ordered)
    }
    result = AllocationResult(assignments=assignments, unassigned=unassigned, simulated_load=simulated)
    logger.info(
        "Allocation: %d entities, %d assigned, %d unassigned",
        len(assignments), result.assigned_count, len(unassigned),
    )
    return result
