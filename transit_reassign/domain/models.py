"""
Reassignment domain models. Dataclasses only. No FastAPI, no external deps beyond dataclasses/typing.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

RESERVED_POOL_LABEL = "Reserved Pool"


@dataclass(frozen=True)
class Entity:
    entity_id: str
    container_id: Optional[str]
    tag: str
    coverage_key: str
    locked: bool = False
    # Sin restricción de cobertura (p. ej. conductor de reserva).
    reserved: bool = False
    label: Optional[str] = None


@dataclass(frozen=True)
class Container:
    container_id: str
    capacity: int
    load: Dict[str, int]  # tag -> count
    coverage: tuple[str, ...]
    tag: str = "both"
    active: bool = True
    # Viaje activo: bloquea cualquier movimiento hacia o desde el contenedor.
    locked: bool = False
    label: Optional[str] = None
    route_id: Optional[str] = None


@dataclass
class Snapshot:
    entities: Dict[str, Entity]
    containers: Dict[str, Container]

    @classmethod
    def from_lists(cls, entities: List[Entity], containers: List[Container]) -> "Snapshot":
        return cls(
            entities={e.entity_id: e for e in entities},
            containers={c.container_id: c for c in containers},
        )

    def entity(self, entity_id: str) -> Optional[Entity]:
        return self.entities.get(entity_id)

    def container(self, container_id: Optional[str]) -> Optional[Container]:
        if container_id is None:
            return None
        return self.containers.get(container_id)


@dataclass(frozen=True)
class StagedOperation:
    operation_id: str
    entity_id: str
    from_container_id: Optional[str]
    to_container_id: Optional[str]  # None -> reserved pool
    staged_at: float
    source: str = "manual"  # "manual" | "allocator"


@dataclass(frozen=True)
class Move:
    entity_id: str
    from_container_id: Optional[str]
    to_container_id: Optional[str]
    tag: str


@dataclass
class NetChange:
    container_id: str
    added: List[str] = field(default_factory=list)
    removed: List[str] = field(default_factory=list)
    tag_delta: Dict[str, int] = field(default_factory=dict)


@dataclass(frozen=True)
class NoOpRecord:
    entity_id: str
    operation_id: str
    reason: str


@dataclass
class NetChangeResult:
    net_changes: Dict[str, NetChange]
    moves: List[Move]
    no_ops: List[NoOpRecord]
    removed_no_op_count: int
    collapsed_count: int = 0
    unknown_entity_ids: List[str] = field(default_factory=list)

    @property
    def has_changes(self) -> bool:
        return bool(self.net_changes)


@dataclass(frozen=True)
class ValidationIssue:
    code: str
    severity: str  # "error" | "warning"
    message: str
    container_id: Optional[str] = None
    entity_id: Optional[str] = None


@dataclass
class ValidationResult:
    errors: List[str]
    warnings: List[str]
    issues: List[ValidationIssue]

    @property
    def is_valid(self) -> bool:
        return not self.errors

    def codes(self, severity: Optional[str] = None) -> List[str]:
        return [i.code for i in self.issues if severity is None or i.severity == severity]


@dataclass(frozen=True)
class UnassignedEntity:
    entity_id: str
    reason_code: str
    message: str


@dataclass
class AllocationResult:
    assignments: Dict[str, Optional[str]]  # entity_id -> container_id | None
    unassigned: List[UnassignedEntity]
    simulated_load: Dict[str, Dict[str, int]]  # container_id -> tag -> count

    @property
    def assigned_count(self) -> int:
        return sum(1 for cid in self.assignments.values() if cid is not None)


@dataclass(frozen=True)
class AppliedMove:
    entity_id: str
    old_container_id: Optional[str]
    new_container_id: Optional[str]
    tag: str
    timestamp: float


@dataclass(frozen=True)
class ContainerLoadUpdate:
    container_id: str
    before: Dict[str, int]
    after: Dict[str, int]


@dataclass(frozen=True)
class ConflictDetail:
    code: str
    message: str
    container_id: Optional[str] = None
    entity_id: Optional[str] = None


@dataclass
class CommitResult:
    success: bool
    operation_id: Optional[str]
    updated_containers: List[ContainerLoadUpdate] = field(default_factory=list)
    applied_moves: List[AppliedMove] = field(default_factory=list)
    conflict_details: Optional[List[ConflictDetail]] = None
    no_op: bool = False


@dataclass
class AuditEntry:
    operation_id: str
    kind: str  # "entity_reassignment" | "rollback"
    status: str  # "committed" | "rolled_back"
    actor_id: str
    actor_metadata: Dict[str, Any]
    reason: str
    moves: List[Dict[str, Any]]
    timestamp: float
    summary: str

    def to_doc(self) -> Dict[str, Any]:
        return {
            "operation_id": self.operation_id,
            "kind": self.kind,
            "status": self.status,
            "actor_id": self.actor_id,
            "actor_metadata": dict(self.actor_metadata),
            "reason": self.reason,
            "moves": [dict(m) for m in self.moves],
            "timestamp": self.timestamp,
            "summary": self.summary,
        }


@dataclass(frozen=True)
class UndoRecord:
    entity_id: str
    old_container_id: Optional[str]
    new_container_id: Optional[str]
    tag: str
    timestamp: float


@dataclass
class UndoToken:
    token_id: str
    operation_id: Optional[str]
    records: List[UndoRecord]
    tag_deltas: Dict[str, Dict[str, int]]  # container_id -> tag -> reverse delta
    created_at: float
    expires_at: float

    def is_expired(self, now: float) -> bool:
        return now >= self.expires_at


@dataclass
class RevertResult:
    status: str  # "reverted" | "expired" | "blocked" | "conflict" | "unknown"
    token_id: str
    operation_id: Optional[str] = None
    conflict_details: Optional[List[ConflictDetail]] = None

    @property
    def success(self) -> bool:
        return self.status == "reverted"


@dataclass(frozen=True)
class LoadReport:
    """Stored per-tag counters of one container against the count from entity assignments."""
    container_id: str
    label: Optional[str]
    before: Dict[str, int]
    after: Dict[str, int]
    entities_counted: int
    total_mismatch: bool = False  # campo "total" del documento desfasado

    @property
    def has_discrepancy(self) -> bool:
        nonzero_before = {t: n for t, n in self.before.items() if n}
        nonzero_after = {t: n for t, n in self.after.items() if n}
        return self.total_mismatch or nonzero_before != nonzero_after


@dataclass
class ReconciliationSummary:
    total_containers: int
    reports: List[LoadReport] = field(default_factory=list)
    missing_container_ids: List[str] = field(default_factory=list)
    # Entidades que apuntan a un contenedor inexistente.
    orphaned_entity_ids: List[str] = field(default_factory=list)
    dry_run: bool = False
    timestamp: Optional[float] = None

    @property
    def reconciled_count(self) -> int:
        return len(self.reports)

    @property
    def discrepancy_count(self) -> int:
        return sum(1 for r in self.reports if r.has_discrepancy)

    @property
    def entities_counted(self) -> int:
        return sum(r.entities_counted for r in self.reports)
