"""
Reassignment session use case. Orchestrates staging, preview, commit and undo. No FastAPI.

Flujo del operador: stage (manual o allocator) -> preview (neto + validación)
-> commit transaccional -> undo dentro de la ventana.
"""

import logging
import time
import uuid
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, List, Optional

from transit_reassign.application.committer import TransactionalCommitter
from transit_reassign.application.config import DEFAULT_ACTOR_ID, DEFAULT_POLICY
from transit_reassign.application.staging import StagingArea
from transit_reassign.application.undo import BLOCKED, UndoBuffer
from transit_reassign.core.allocation_engine.load_balancer import allocate
from transit_reassign.domain.constraints import ReassignmentPolicy
from transit_reassign.domain.errors import RevertBlockedError, UnknownEntityError
from transit_reassign.domain.load import counted_load
from transit_reassign.domain.models import (
    AllocationResult,
    AuditEntry,
    CommitResult,
    Entity,
    NetChangeResult,
    RevertResult,
    Snapshot,
    StagedOperation,
    UndoToken,
    ValidationResult,
)
from transit_reassign.domain.net_change import compute_net_changes, describe_changes
from transit_reassign.domain.validation import validate
from transit_reassign.infrastructure.snapshot_loader import fetch_snapshot
from transit_reassign.infrastructure.store import TransactionalStore

logger = logging.getLogger(__name__)


@dataclass
class Preview:
    net: NetChangeResult
    validation: ValidationResult
    rows: List[str]


@dataclass
class SessionCommitOutcome:
    commit: Optional[CommitResult]  # None -> refused before reaching the store
    undo_token: Optional[UndoToken]
    validation: ValidationResult

    @property
    def success(self) -> bool:
        return self.commit is not None and self.commit.success


def generate_session_id() -> str:
    return f"session_{uuid.uuid4().hex[:12]}"


def overloaded_entity_ids(snapshot: Snapshot, policy: ReassignmentPolicy = DEFAULT_POLICY) -> List[str]:
    """Entities sitting in containers whose counted load is above the overload limit."""
    ids: List[str] = []
    for entity in sorted(snapshot.entities.values(), key=lambda e: e.entity_id):
        container = snapshot.container(entity.container_id)
        if container is None:
            continue
        count = counted_load(container.load, entity.tag, policy.capacity_scope)
        if count > policy.capacity_limit(container.capacity):
            ids.append(entity.entity_id)
    return ids


class ReassignmentSession:
    """
    One operator's in-memory session over a shared store.

    The snapshot is read once on creation and refreshed after each commit or revert;
    staleness in between is caught by the committer's fresh reads.
    """

    def __init__(
        self,
        store: TransactionalStore,
        actor_id: str = DEFAULT_ACTOR_ID,
        policy: Optional[ReassignmentPolicy] = None,
        clock: Callable[[], float] = time.time,
        session_id: Optional[str] = None,
    ):
        self.session_id = session_id or generate_session_id()
        self.actor_id = actor_id
        self.policy = policy or DEFAULT_POLICY
        self._store = store
        self._clock = clock
        self._committer = TransactionalCommitter(store, self.policy, clock=clock)
        self._undo = UndoBuffer(
            self._committer,
            window_s=self.policy.undo_window_s,
            history_limit=self.policy.undo_history_limit,
            clock=clock,
        )
        self.audit_trail: List[AuditEntry] = []
        self._staging = StagingArea(fetch_snapshot(store), clock=clock)

    @property
    def snapshot(self) -> Snapshot:
        return self._staging.snapshot

    @property
    def undo(self) -> UndoBuffer:
        return self._undo

    def reload(self) -> Snapshot:
        snapshot = fetch_snapshot(self._store)
        self._staging.refresh(snapshot)
        return snapshot

    # --- staging ---

    def stage(self, entity_id: str, to_container_id: Optional[str]) -> StagedOperation:
        return self._staging.stage(entity_id, to_container_id)

    def unstage(self, operation_id: str) -> Optional[StagedOperation]:
        return self._staging.unstage(operation_id)

    def clear(self) -> int:
        return self._staging.clear()

    def staged(self) -> List[StagedOperation]:
        return self._staging.list()

    def auto_allocate(self, entity_ids: Optional[Iterable[str]] = None, stage: bool = True) -> AllocationResult:
        """
        Run the allocator over the given entities (default: those in overloaded containers)
        and, when stage=True, stage every placed entity. Unassigned entities are only reported.
        """
        snapshot = self.snapshot
        if entity_ids is None:
            entity_ids = overloaded_entity_ids(snapshot, self.policy)
        entities: List[Entity] = []
        for entity_id in entity_ids:
            entity = snapshot.entity(entity_id)
            if entity is None:
                raise UnknownEntityError(entity_id)
            entities.append(entity)

        result = allocate(entities, list(snapshot.containers.values()), self.policy)
        if stage:
            staged = self._staging.stage_many(result.assignments)
            logger.info("Session %s: staged %d allocator move(s)", self.session_id, len(staged))
        return result

    # --- preview / commit / undo ---

    def preview(self) -> Preview:
        snapshot = self.snapshot
        net = compute_net_changes(self._staging.list(), snapshot, self.policy)
        return Preview(
            net=net,
            validation=validate(net, snapshot, self.policy),
            rows=describe_changes(net, snapshot),
        )

    def commit(
        self,
        reason: str = "",
        actor_metadata: Optional[Dict[str, Any]] = None,
        force: bool = False,
    ) -> SessionCommitOutcome:
        """
        Refuses (commit=None) when the preview has blocking errors, unless force=True.
        Forcing skips only the preview: the committer still re-checks fresh state.
        """
        preview = self.preview()
        if not preview.validation.is_valid and not force:
            logger.info("Session %s: commit refused, %d error(s)", self.session_id,
                        len(preview.validation.errors))
            return SessionCommitOutcome(commit=None, undo_token=None, validation=preview.validation)

        result = self._committer.commit(
            preview.net,
            self.actor_id,
            actor_metadata,
            self.audit_trail,
            reason=reason,
        )
        if not result.success:
            # Los cambios siguen en staging; el snapshot se refresca para revisarlos.
            self.reload()
            return SessionCommitOutcome(commit=result, undo_token=None, validation=preview.validation)

        self._staging.clear()
        token = None
        if not result.no_op:
            token = self._undo.capture(result.applied_moves, result.operation_id)
            self.reload()
        return SessionCommitOutcome(commit=result, undo_token=token, validation=preview.validation)

    def revert(self, token_id: str) -> RevertResult:
        result = self._undo.revert(token_id, self.actor_id, self.audit_trail)
        if result.success:
            self.reload()
        return result

    def revert_or_raise(self, token_id: str) -> RevertResult:
        result = self.revert(token_id)
        if result.status == BLOCKED:
            raise RevertBlockedError(token_id, result.conflict_details)
        return result
