"""
Staging area. Explicit per-operator session object, independent of any UI.

At most one staged operation per entity (last write wins). The only check at
staging time is the entity lock; everything else waits for preview.
"""

import logging
import time
import uuid
from collections import OrderedDict
from typing import Callable, Dict, List, Mapping, Optional

from transit_reassign.domain.errors import EntityLockedError, UnknownEntityError
from transit_reassign.domain.models import Snapshot, StagedOperation

logger = logging.getLogger(__name__)


def generate_operation_id() -> str:
    return f"staged_{uuid.uuid4().hex[:12]}"


class StagingArea:
    def __init__(self, snapshot: Snapshot, clock: Callable[[], float] = time.time):
        self._snapshot = snapshot
        self._clock = clock
        self._ops: "OrderedDict[str, StagedOperation]" = OrderedDict()  # entity_id -> op

    @property
    def snapshot(self) -> Snapshot:
        return self._snapshot

    def refresh(self, snapshot: Snapshot) -> None:
        """Swap in a newer snapshot. Staged operations are kept as they are."""
        self._snapshot = snapshot

    def stage(self, entity_id: str, to_container_id: Optional[str], source: str = "manual") -> StagedOperation:
        entity = self._snapshot.entity(entity_id)
        if entity is None:
            raise UnknownEntityError(entity_id)
        if entity.locked:
            raise EntityLockedError(entity_id)

        op = StagedOperation(
            operation_id=generate_operation_id(),
            entity_id=entity_id,
            from_container_id=entity.container_id,
            to_container_id=to_container_id,
            staged_at=self._clock(),
            source=source,
        )
        replaced = self._ops.pop(entity_id, None)
        self._ops[entity_id] = op
        if replaced is not None:
            logger.debug("stage %s: replaced %s (%s -> %s)", entity_id, replaced.operation_id,
                         replaced.to_container_id, to_container_id)
        return op

    def stage_many(self, assignments: Mapping[str, Optional[str]], source: str = "allocator") -> List[StagedOperation]:
        """Stage allocator output. Entities left unassigned (None) are skipped."""
        staged: List[StagedOperation] = []
        for entity_id, container_id in assignments.items():
            if container_id is None:
                continue
            staged.append(self.stage(entity_id, container_id, source=source))
        return staged

    def unstage(self, operation_id: str) -> Optional[StagedOperation]:
        for entity_id, op in self._ops.items():
            if op.operation_id == operation_id:
                del self._ops[entity_id]
                return op
        return None

    def clear(self) -> int:
        n = len(self._ops)
        self._ops.clear()
        return n

    def list(self) -> List[StagedOperation]:
        return list(self._ops.values())

    def get(self, entity_id: str) -> Optional[StagedOperation]:
        return self._ops.get(entity_id)

    def by_source(self) -> Dict[str, int]:
        counts: Dict[str, int] = {}
        for op in self._ops.values():
            counts[op.source] = counts.get(op.source, 0) + 1
        return counts

    def __len__(self) -> int:
        return len(self._ops)
