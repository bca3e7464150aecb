"""
Transactional committer. The only component that does I/O.

Applies a net-change set as one all-or-nothing transaction: re-reads containers and
entities inside the transaction, repeats the capacity check on that fresh state, and
either aborts with conflict details or writes loads, entity references and one audit entry.
"""

import logging
import time
import uuid
from typing import Any, Callable, Dict, List, Optional, Tuple

from transit_reassign.domain.compatibility import normalize_tag, tag_compatible
from transit_reassign.domain.constraints import ReassignmentPolicy
from transit_reassign.domain.errors import CommitConflictError
from transit_reassign.domain.load import apply_tag_delta
from transit_reassign.domain.models import (
    AppliedMove,
    AuditEntry,
    CommitResult,
    ConflictDetail,
    Container,
    ContainerLoadUpdate,
    NetChangeResult,
)
from transit_reassign.domain.validation import CAPACITY_EXCEEDED, ERROR, check_capacity
from transit_reassign.infrastructure.snapshot_loader import container_from_doc, entity_from_doc
from transit_reassign.infrastructure.store import AUDIT_LOG, CONTAINERS, ENTITIES, Transaction, TransactionalStore

logger = logging.getLogger(__name__)

KIND_REASSIGNMENT = "entity_reassignment"
KIND_ROLLBACK = "rollback"

# Conflict codes
ENTITY_NOT_FOUND = "ENTITY_NOT_FOUND"
ENTITY_MOVED = "ENTITY_MOVED"
ENTITY_LOCKED = "ENTITY_LOCKED"
CONTAINER_NOT_FOUND = "CONTAINER_NOT_FOUND"
CONTAINER_INACTIVE = "CONTAINER_INACTIVE"
CONTAINER_LOCKED = "CONTAINER_LOCKED"
TAG_INCOMPATIBLE = "TAG_INCOMPATIBLE"
DUPLICATE_TARGET = "DUPLICATE_TARGET"


def generate_commit_id() -> str:
    return f"op_{uuid.uuid4().hex[:12]}"


class TransactionalCommitter:
    def __init__(
        self,
        store: TransactionalStore,
        policy: Optional[ReassignmentPolicy] = None,
        clock: Callable[[], float] = time.time,
    ):
        self._store = store
        self._policy = policy or ReassignmentPolicy()
        self._clock = clock

    def commit(
        self,
        net_result: NetChangeResult,
        actor_id: str,
        actor_metadata: Optional[Dict[str, Any]] = None,
        audit_trail: Optional[List[AuditEntry]] = None,
        *,
        reason: str = "",
        kind: str = KIND_REASSIGNMENT,
    ) -> CommitResult:
        """
        Returns success with per-container before/after loads, or success=False with
        conflict_details when the fresh state no longer allows the change. Store
        failures propagate. No retries.
        """
        if not net_result.has_changes:
            logger.info("Commit skipped: no net changes")
            return CommitResult(success=True, operation_id=None, no_op=True)

        operation_id = generate_commit_id()
        metadata = dict(actor_metadata or {})

        def _run(txn: Transaction) -> Tuple[List[ContainerLoadUpdate], List[AppliedMove], AuditEntry]:
            return self._apply(txn, net_result, operation_id, actor_id, metadata, reason, kind)

        try:
            updates, applied, entry = self._store.run_in_transaction(_run)
        except CommitConflictError as exc:
            logger.warning("Commit %s aborted by %d conflict(s): %s", operation_id, len(exc.conflicts), exc)
            return CommitResult(success=False, operation_id=operation_id, conflict_details=exc.conflicts)

        if audit_trail is not None:
            audit_trail.append(entry)
        logger.info(
            "Commit %s (%s) by %s: %d move(s), %d container(s)",
            operation_id, kind, actor_id, len(applied), len(updates),
        )
        return CommitResult(
            success=True,
            operation_id=operation_id,
            updated_containers=updates,
            applied_moves=applied,
        )

    def _apply(
        self,
        txn: Transaction,
        net_result: NetChangeResult,
        operation_id: str,
        actor_id: str,
        actor_metadata: Dict[str, Any],
        reason: str,
        kind: str,
    ) -> Tuple[List[ContainerLoadUpdate], List[AppliedMove], AuditEntry]:
        policy = self._policy
        now = self._clock()
        conflicts: List[ConflictDetail] = []

        # Phase 1: fresh reads inside the transaction
        container_docs: Dict[str, Dict[str, Any]] = {}
        containers: Dict[str, Container] = {}
        for cid in net_result.net_changes:
            doc = txn.read(CONTAINERS, cid)
            if doc is None:
                conflicts.append(ConflictDetail(CONTAINER_NOT_FOUND, f"Container {cid} not found", container_id=cid))
                continue
            container_docs[cid] = doc
            containers[cid] = container_from_doc(doc)

        entity_docs: Dict[str, Dict[str, Any]] = {}
        tags: Dict[str, str] = {}
        deltas: Dict[str, Dict[str, int]] = {cid: {} for cid in net_result.net_changes}
        for m in net_result.moves:
            if m.entity_id in entity_docs:
                conflicts.append(ConflictDetail(
                    DUPLICATE_TARGET, f"Entity {m.entity_id} appears in more than one move", entity_id=m.entity_id,
                ))
                continue
            doc = txn.read(ENTITIES, m.entity_id)
            if doc is None:
                conflicts.append(ConflictDetail(ENTITY_NOT_FOUND, f"Entity {m.entity_id} not found",
                                                entity_id=m.entity_id))
                continue
            entity = entity_from_doc(doc)
            entity_docs[m.entity_id] = doc
            tag = normalize_tag(entity.tag, policy.default_tag)
            tags[m.entity_id] = tag

            if entity.locked:
                conflicts.append(ConflictDetail(ENTITY_LOCKED, f"Entity {m.entity_id} is locked",
                                                entity_id=m.entity_id))
            if entity.container_id != m.from_container_id:
                conflicts.append(ConflictDetail(
                    ENTITY_MOVED,
                    f"Entity {m.entity_id} is now in {entity.container_id}, expected {m.from_container_id}",
                    entity_id=m.entity_id,
                ))

            source = containers.get(m.from_container_id) if m.from_container_id else None
            if source is not None:
                if source.locked:
                    conflicts.append(ConflictDetail(
                        CONTAINER_LOCKED, f"Container {source.container_id} has an active trip",
                        container_id=source.container_id, entity_id=m.entity_id,
                    ))
                deltas[source.container_id][tag] = deltas[source.container_id].get(tag, 0) - 1

            if m.to_container_id is None:
                continue
            target = containers.get(m.to_container_id)
            if target is None:
                continue  # CONTAINER_NOT_FOUND ya registrado
            if not target.active:
                conflicts.append(ConflictDetail(
                    CONTAINER_INACTIVE, f"Container {target.container_id} is not active",
                    container_id=target.container_id, entity_id=m.entity_id,
                ))
            if target.locked:
                conflicts.append(ConflictDetail(
                    CONTAINER_LOCKED, f"Container {target.container_id} has an active trip",
                    container_id=target.container_id, entity_id=m.entity_id,
                ))
            # Un rollback restaura una asignación previa: no se re-evalúa el turno.
            if kind != KIND_ROLLBACK and not tag_compatible(tag, target.tag, policy):
                conflicts.append(ConflictDetail(
                    TAG_INCOMPATIBLE, f"Container {target.container_id} cannot accept {tag} entity {m.entity_id}",
                    container_id=target.container_id, entity_id=m.entity_id,
                ))
            deltas[target.container_id][tag] = deltas[target.container_id].get(tag, 0) + 1

        # Phase 2: capacity on fresh loads
        for cid, container in containers.items():
            for issue in check_capacity(container, deltas[cid], policy):
                if issue.severity == ERROR:
                    conflicts.append(ConflictDetail(CAPACITY_EXCEEDED, issue.message, container_id=cid))

        if conflicts:
            raise CommitConflictError(conflicts)

        # Phase 3: writes
        updates: List[ContainerLoadUpdate] = []
        for cid, container in containers.items():
            new_load = apply_tag_delta(container.load, deltas[cid])
            doc = container_docs[cid]
            doc["load"] = new_load
            doc["total"] = sum(new_load.values())
            doc["updated_at"] = now
            doc["updated_by"] = actor_id
            txn.write(CONTAINERS, cid, doc)
            updates.append(ContainerLoadUpdate(container_id=cid, before=dict(container.load), after=new_load))

        applied: List[AppliedMove] = []
        for m in net_result.moves:
            doc = entity_docs[m.entity_id]
            target = containers.get(m.to_container_id) if m.to_container_id else None
            doc["container_id"] = m.to_container_id
            doc["route_id"] = target.route_id if target else None
            doc["updated_at"] = now
            txn.write(ENTITIES, m.entity_id, doc)
            applied.append(AppliedMove(
                entity_id=m.entity_id,
                old_container_id=m.from_container_id,
                new_container_id=m.to_container_id,
                tag=tags[m.entity_id],
                timestamp=now,
            ))

        entry = AuditEntry(
            operation_id=operation_id,
            kind=kind,
            status="rolled_back" if kind == KIND_ROLLBACK else "committed",
            actor_id=actor_id,
            actor_metadata=actor_metadata,
            reason=reason,
            moves=[
                {
                    "entity_id": a.entity_id,
                    "from": a.old_container_id,
                    "to": a.new_container_id,
                    "tag": a.tag,
                    "actor_id": actor_id,
                    "timestamp": now,
                }
                for a in applied
            ],
            timestamp=now,
            summary=f"{len(applied)} move(s) across {len(updates)} container(s)",
        )
        txn.write(AUDIT_LOG, operation_id, entry.to_doc())
        return updates, applied, entry
