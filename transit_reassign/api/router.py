"""
Reassignment API router. Calls application only. No business logic.
"""

import logging
import threading
from dataclasses import asdict
from typing import Dict

from fastapi import APIRouter, Depends, HTTPException

from transit_reassign.api.schemas import (
    AllocateRequest,
    AllocationSchema,
    CommitRequest,
    CommitResponse,
    ConflictSchema,
    CreateSessionRequest,
    IssueSchema,
    LoadReportSchema,
    LoadUpdateSchema,
    MoveSchema,
    NetChangeSchema,
    PreviewSchema,
    ReconcileRequest,
    ReconcileResponse,
    RevertResponse,
    SessionSchema,
    SnapshotRequest,
    SnapshotSummarySchema,
    StagedOperationSchema,
    StageRequest,
    UnassignedSchema,
)
from transit_reassign.application.reconciler import LoadReconciler
from transit_reassign.application.undo import BLOCKED, CONFLICT, EXPIRED, UNKNOWN
from transit_reassign.application.use_cases.reassign_entities import ReassignmentSession
from transit_reassign.domain.models import StagedOperation
from transit_reassign.infrastructure.snapshot_loader import container_to_doc, entity_to_doc, load_snapshot
from transit_reassign.infrastructure.store import AUDIT_LOG, InMemoryTransactionalStore

logger = logging.getLogger(__name__)
router = APIRouter()


# ==========================================
# ESTADO EN MEMORIA (store + sesiones)
# ------------------------------------------
# Volátil: se pierde al reiniciar el proceso.
# ==========================================


class SessionRegistry:
    def __init__(self) -> None:
        self._sessions: Dict[str, ReassignmentSession] = {}
        self._lock = threading.Lock()

    def add(self, session: ReassignmentSession) -> None:
        with self._lock:
            self._sessions[session.session_id] = session

    def get(self, session_id: str) -> ReassignmentSession:
        with self._lock:
            session = self._sessions.get(session_id)
        if session is None:
            raise HTTPException(status_code=404, detail=f"Session {session_id} not found")
        return session

    def remove(self, session_id: str) -> ReassignmentSession:
        with self._lock:
            session = self._sessions.pop(session_id, None)
        if session is None:
            raise HTTPException(status_code=404, detail=f"Session {session_id} not found")
        return session


_store = InMemoryTransactionalStore()
_registry = SessionRegistry()


def get_store() -> InMemoryTransactionalStore:
    return _store


def get_registry() -> SessionRegistry:
    return _registry


def _staged_schema(op: StagedOperation) -> StagedOperationSchema:
    return StagedOperationSchema(**asdict(op))


@router.put("/snapshot", response_model=SnapshotSummarySchema)
def put_snapshot(
    request: SnapshotRequest,
    store: InMemoryTransactionalStore = Depends(get_store),
) -> SnapshotSummarySchema:
    """
    PUT /snapshot
    Loads entities and containers into the store (canonical field names).
    """
    snapshot = load_snapshot(request.entities, request.containers)
    store.seed(
        [entity_to_doc(e) for e in snapshot.entities.values()],
        [container_to_doc(c) for c in snapshot.containers.values()],
    )
    return SnapshotSummarySchema(entities=len(snapshot.entities), containers=len(snapshot.containers))


@router.get("/audit")
def get_audit(store: InMemoryTransactionalStore = Depends(get_store)) -> list[dict]:
    return store.scan(AUDIT_LOG)


@router.post("/reconcile", response_model=ReconcileResponse)
def post_reconcile(
    request: ReconcileRequest,
    store: InMemoryTransactionalStore = Depends(get_store),
) -> ReconcileResponse:
    """Recount container loads from entity assignments; dry_run only reports."""
    summary = LoadReconciler(store).reconcile(
        request.container_ids, dry_run=request.dry_run, actor_id=request.actor_id,
    )
    return ReconcileResponse(
        total_containers=summary.total_containers,
        reconciled=summary.reconciled_count,
        with_discrepancies=summary.discrepancy_count,
        entities_counted=summary.entities_counted,
        dry_run=summary.dry_run,
        reports=[
            LoadReportSchema(
                container_id=r.container_id,
                label=r.label,
                before=r.before,
                after=r.after,
                entities_counted=r.entities_counted,
                has_discrepancy=r.has_discrepancy,
            )
            for r in summary.reports
        ],
        missing_container_ids=summary.missing_container_ids,
        orphaned_entity_ids=summary.orphaned_entity_ids,
    )


@router.post("/sessions", response_model=SessionSchema)
def post_session(
    request: CreateSessionRequest,
    store: InMemoryTransactionalStore = Depends(get_store),
    registry: SessionRegistry = Depends(get_registry),
) -> SessionSchema:
    session = ReassignmentSession(store, actor_id=request.actor_id)
    registry.add(session)
    return SessionSchema(session_id=session.session_id, actor_id=session.actor_id, staged_count=0)


@router.delete("/sessions/{session_id}")
def delete_session(session_id: str, registry: SessionRegistry = Depends(get_registry)) -> dict:
    """Discard the session and its staged operations. Committed changes stay."""
    session = registry.remove(session_id)
    discarded = session.clear()
    logger.info("Session %s discarded with %d staged operation(s)", session_id, discarded)
    return {"session_id": session_id, "discarded": discarded}


@router.get("/sessions/{session_id}/staged", response_model=list[StagedOperationSchema])
def get_staged(session_id: str, registry: SessionRegistry = Depends(get_registry)) -> list[StagedOperationSchema]:
    session = registry.get(session_id)
    return [_staged_schema(op) for op in session.staged()]


@router.post("/sessions/{session_id}/staged", response_model=StagedOperationSchema)
def post_staged(
    session_id: str,
    request: StageRequest,
    registry: SessionRegistry = Depends(get_registry),
) -> StagedOperationSchema:
    session = registry.get(session_id)
    try:
        op = session.stage(request.entity_id, request.to_container_id)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return _staged_schema(op)


@router.delete("/sessions/{session_id}/staged/{operation_id}", response_model=StagedOperationSchema)
def delete_staged_operation(
    session_id: str,
    operation_id: str,
    registry: SessionRegistry = Depends(get_registry),
) -> StagedOperationSchema:
    session = registry.get(session_id)
    op = session.unstage(operation_id)
    if op is None:
        raise HTTPException(status_code=404, detail=f"Staged operation {operation_id} not found")
    return _staged_schema(op)


@router.delete("/sessions/{session_id}/staged")
def delete_staged(session_id: str, registry: SessionRegistry = Depends(get_registry)) -> dict:
    session = registry.get(session_id)
    return {"cleared": session.clear()}


@router.post("/sessions/{session_id}/allocate", response_model=AllocationSchema)
def post_allocate(
    session_id: str,
    request: AllocateRequest,
    registry: SessionRegistry = Depends(get_registry),
) -> AllocationSchema:
    """
    POST /sessions/{id}/allocate
    Runs the load balancer; placed entities are staged when stage=true.
    """
    session = registry.get(session_id)
    try:
        result = session.auto_allocate(request.entity_ids, stage=request.stage)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return AllocationSchema(
        assignments=result.assignments,
        unassigned=[UnassignedSchema(**asdict(u)) for u in result.unassigned],
        simulated_load=result.simulated_load,
        assigned_count=result.assigned_count,
    )


@router.get("/sessions/{session_id}/preview", response_model=PreviewSchema)
def get_preview(session_id: str, registry: SessionRegistry = Depends(get_registry)) -> PreviewSchema:
    session = registry.get(session_id)
    preview = session.preview()
    return PreviewSchema(
        net_changes=[NetChangeSchema(**asdict(nc)) for nc in preview.net.net_changes.values()],
        moves=[MoveSchema(**asdict(m)) for m in preview.net.moves],
        removed_no_op_count=preview.net.removed_no_op_count,
        collapsed_count=preview.net.collapsed_count,
        is_valid=preview.validation.is_valid,
        errors=preview.validation.errors,
        warnings=preview.validation.warnings,
        issues=[IssueSchema(**asdict(i)) for i in preview.validation.issues],
        rows=preview.rows,
    )


@router.post("/sessions/{session_id}/commit", response_model=CommitResponse)
def post_commit(
    session_id: str,
    request: CommitRequest,
    registry: SessionRegistry = Depends(get_registry),
) -> CommitResponse:
    """
    POST /sessions/{id}/commit
    200 committed (or nothing to do), 422 blocked by validation, 409 conflict with fresh state.
    """
    session = registry.get(session_id)
    outcome = session.commit(request.reason, request.actor_metadata, force=request.force)
    if outcome.commit is None:
        raise HTTPException(
            status_code=422,
            detail={"errors": outcome.validation.errors, "warnings": outcome.validation.warnings},
        )
    result = outcome.commit
    if not result.success:
        raise HTTPException(
            status_code=409,
            detail={
                "operation_id": result.operation_id,
                "conflicts": [asdict(c) for c in result.conflict_details or []],
            },
        )
    token = outcome.undo_token
    return CommitResponse(
        success=True,
        operation_id=result.operation_id,
        no_op=result.no_op,
        updated_containers=[LoadUpdateSchema(**asdict(u)) for u in result.updated_containers],
        warnings=outcome.validation.warnings,
        undo_token_id=token.token_id if token else None,
        undo_expires_at=token.expires_at if token else None,
    )


_REVERT_STATUS_CODES = {BLOCKED: 409, CONFLICT: 409, EXPIRED: 410, UNKNOWN: 404}


@router.post("/sessions/{session_id}/undo/{token_id}", response_model=RevertResponse)
def post_undo(
    session_id: str,
    token_id: str,
    registry: SessionRegistry = Depends(get_registry),
) -> RevertResponse:
    session = registry.get(session_id)
    result = session.revert(token_id)
    body = RevertResponse(
        status=result.status,
        token_id=result.token_id,
        operation_id=result.operation_id,
        conflicts=[ConflictSchema(**asdict(c)) for c in result.conflict_details or []],
    )
    status_code = _REVERT_STATUS_CODES.get(result.status)
    if status_code is not None:
        raise HTTPException(status_code=status_code, detail=body.model_dump())
    return body
