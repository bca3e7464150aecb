"""
Reassignment API request/response schemas. Pydantic only in api layer.
"""

from typing import Any

from pydantic import BaseModel, Field


class SnapshotRequest(BaseModel):
    """Documentos crudos del sistema de origen; se aceptan alias (bus_id, shift, stop_id...)."""
    entities: list[dict[str, Any]]
    containers: list[dict[str, Any]]


class SnapshotSummarySchema(BaseModel):
    entities: int
    containers: int


class CreateSessionRequest(BaseModel):
    actor_id: str = "system"


class SessionSchema(BaseModel):
    session_id: str
    actor_id: str
    staged_count: int


class StageRequest(BaseModel):
    entity_id: str
    to_container_id: str | None = None  # None -> reserved pool


class StagedOperationSchema(BaseModel):
    operation_id: str
    entity_id: str
    from_container_id: str | None
    to_container_id: str | None
    staged_at: float
    source: str


class AllocateRequest(BaseModel):
    entity_ids: list[str] | None = None  # None -> entities in overloaded containers
    stage: bool = True


class UnassignedSchema(BaseModel):
    entity_id: str
    reason_code: str
    message: str


class AllocationSchema(BaseModel):
    assignments: dict[str, str | None]
    unassigned: list[UnassignedSchema]
    simulated_load: dict[str, dict[str, int]]
    assigned_count: int


class NetChangeSchema(BaseModel):
    container_id: str
    added: list[str]
    removed: list[str]
    tag_delta: dict[str, int]


class MoveSchema(BaseModel):
    entity_id: str
    from_container_id: str | None
    to_container_id: str | None
    tag: str


class IssueSchema(BaseModel):
    code: str
    severity: str
    message: str
    container_id: str | None = None
    entity_id: str | None = None


class PreviewSchema(BaseModel):
    net_changes: list[NetChangeSchema]
    moves: list[MoveSchema]
    removed_no_op_count: int
    collapsed_count: int
    is_valid: bool
    errors: list[str]
    warnings: list[str]
    issues: list[IssueSchema]
    rows: list[str]


class CommitRequest(BaseModel):
    reason: str = ""
    actor_metadata: dict[str, Any] = Field(default_factory=dict)
    force: bool = False


class LoadUpdateSchema(BaseModel):
    container_id: str
    before: dict[str, int]
    after: dict[str, int]


class ConflictSchema(BaseModel):
    code: str
    message: str
    container_id: str | None = None
    entity_id: str | None = None


class CommitResponse(BaseModel):
    success: bool
    operation_id: str | None
    no_op: bool
    updated_containers: list[LoadUpdateSchema]
    warnings: list[str]
    undo_token_id: str | None = None
    undo_expires_at: float | None = None


class RevertResponse(BaseModel):
    status: str
    token_id: str
    operation_id: str | None = None
    conflicts: list[ConflictSchema] = Field(default_factory=list)


class ReconcileRequest(BaseModel):
    container_ids: list[str] | None = None  # None = todos
    dry_run: bool = False
    actor_id: str = "system"


class LoadReportSchema(BaseModel):
    container_id: str
    label: str | None
    before: dict[str, int]
    after: dict[str, int]
    entities_counted: int
    has_discrepancy: bool


class ReconcileResponse(BaseModel):
    total_containers: int
    reconciled: int
    with_discrepancies: int
    entities_counted: int
    dry_run: bool
    reports: list[LoadReportSchema]
    missing_container_ids: list[str]
    orphaned_entity_ids: list[str]
