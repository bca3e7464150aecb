"""
Undo buffer. Time-boxed reversal of a commit.

capture() stores the exact reverse of every applied move; revert() sends that reverse
set back through the committer, with the same fresh capacity check. After the window
the token is dropped and the move is permanent.
"""

import logging
import time
import uuid
from collections import OrderedDict
from typing import Callable, Dict, List, Optional, Sequence, Union

from transit_reassign.application.committer import KIND_ROLLBACK, TransactionalCommitter
from transit_reassign.domain.models import (
    AppliedMove,
    AuditEntry,
    Move,
    RevertResult,
    UndoRecord,
    UndoToken,
)
from transit_reassign.domain.net_change import net_changes_from_moves
from transit_reassign.domain.validation import CAPACITY_EXCEEDED

logger = logging.getLogger(__name__)

REVERTED = "reverted"
EXPIRED = "expired"
BLOCKED = "blocked"
CONFLICT = "conflict"
UNKNOWN = "unknown"

# Ids expirados que se recuerdan, por token del historial.
EXPIRED_MEMORY_FACTOR = 4


def reverse_tag_deltas(records: Sequence[UndoRecord]) -> Dict[str, Dict[str, int]]:
    """Per-container per-tag delta that undoes the records: new loses one, old gains one."""
    deltas: Dict[str, Dict[str, int]] = {}
    for r in records:
        if r.new_container_id is not None:
            d = deltas.setdefault(r.new_container_id, {})
            d[r.tag] = d.get(r.tag, 0) - 1
        if r.old_container_id is not None:
            d = deltas.setdefault(r.old_container_id, {})
            d[r.tag] = d.get(r.tag, 0) + 1
    return {cid: {t: v for t, v in d.items() if v} for cid, d in sorted(deltas.items())}


class UndoBuffer:
    def __init__(
        self,
        committer: TransactionalCommitter,
        window_s: float = 120.0,
        history_limit: int = 10,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._committer = committer
        self._window_s = window_s
        self._history_limit = history_limit
        self._clock = clock
        self._tokens: "OrderedDict[str, UndoToken]" = OrderedDict()
        # Ids dropped from the buffer, oldest first, so revert can tell expired from unknown.
        self._expired: "OrderedDict[str, None]" = OrderedDict()
        self._expired_limit = max(1, history_limit * EXPIRED_MEMORY_FACTOR)

    def capture(self, applied_moves: Sequence[AppliedMove], operation_id: Optional[str] = None) -> UndoToken:
        now = self._clock()
        records = [
            UndoRecord(
                entity_id=a.entity_id,
                old_container_id=a.old_container_id,
                new_container_id=a.new_container_id,
                tag=a.tag,
                timestamp=a.timestamp,
            )
            for a in applied_moves
        ]
        token = UndoToken(
            token_id=f"undo_{uuid.uuid4().hex[:12]}",
            operation_id=operation_id,
            records=records,
            tag_deltas=reverse_tag_deltas(records),
            created_at=now,
            expires_at=now + self._window_s,
        )
        self.prune()
        self._tokens[token.token_id] = token
        while len(self._tokens) > self._history_limit:
            dropped, _ = self._tokens.popitem(last=False)
            self._mark_expired(dropped)
            logger.info("Undo history full: dropped %s", dropped)
        return token

    def _mark_expired(self, token_id: str) -> None:
        self._expired[token_id] = None
        self._expired.move_to_end(token_id)
        while len(self._expired) > self._expired_limit:
            self._expired.popitem(last=False)

    def _resolve(self, token: Union[UndoToken, str]) -> str:
        return token.token_id if isinstance(token, UndoToken) else token

    def revert(
        self,
        token: Union[UndoToken, str],
        actor_id: str = "system",
        audit_trail: Optional[List[AuditEntry]] = None,
    ) -> RevertResult:
        token_id = self._resolve(token)
        current = self._tokens.get(token_id)
        if current is None:
            status = EXPIRED if token_id in self._expired else UNKNOWN
            return RevertResult(status=status, token_id=token_id)
        if current.is_expired(self._clock()):
            self._tokens.pop(token_id, None)
            self._mark_expired(token_id)
            logger.info("Undo %s expired; move is permanent", token_id)
            return RevertResult(status=EXPIRED, token_id=token_id, operation_id=current.operation_id)

        reverse = [
            Move(entity_id=r.entity_id, from_container_id=r.new_container_id,
                 to_container_id=r.old_container_id, tag=r.tag)
            for r in current.records
        ]
        result = self._committer.commit(
            net_changes_from_moves(reverse),
            actor_id,
            {"undo_token": token_id, "reverts": current.operation_id},
            audit_trail,
            reason=f"Undo: {current.operation_id or token_id}",
            kind=KIND_ROLLBACK,
        )
        if not result.success:
            conflicts = result.conflict_details or []
            status = BLOCKED if any(c.code == CAPACITY_EXCEEDED for c in conflicts) else CONFLICT
            # El token se conserva: el operador puede liberar plazas y reintentar.
            logger.warning("Undo %s %s: %s", token_id, status, "; ".join(c.message for c in conflicts))
            return RevertResult(status=status, token_id=token_id, operation_id=result.operation_id,
                                conflict_details=conflicts)

        self._tokens.pop(token_id, None)
        logger.info("Undo %s reverted %d move(s)", token_id, len(current.records))
        return RevertResult(status=REVERTED, token_id=token_id, operation_id=result.operation_id)

    def expire(self, token: Union[UndoToken, str]) -> bool:
        token_id = self._resolve(token)
        self._mark_expired(token_id)
        return self._tokens.pop(token_id, None) is not None

    def prune(self) -> int:
        now = self._clock()
        expired = [tid for tid, t in self._tokens.items() if t.is_expired(now)]
        for tid in expired:
            del self._tokens[tid]
            self._mark_expired(tid)
        return len(expired)

    def get(self, token_id: str) -> Optional[UndoToken]:
        return self._tokens.get(token_id)

    def pending(self) -> List[UndoToken]:
        self.prune()
        return list(self._tokens.values())
