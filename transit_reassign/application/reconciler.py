"""
Load reconciliation. Rebuilds container load counters from entity assignments.

Counters drift when a write bypasses the committer (bulk imports, manual edits).
Reads entities and containers inside one transaction, recounts per tag and, unless
dry_run, rewrites load/total of every container whose counters disagree.
"""

import logging
import time
from typing import Callable, Dict, List, Optional, Sequence

from transit_reassign.domain.constraints import ReassignmentPolicy
from transit_reassign.domain.load import count_assigned_loads, reconcile_container
from transit_reassign.domain.models import Entity, ReconciliationSummary
from transit_reassign.infrastructure.snapshot_loader import container_from_doc, entity_from_doc
from transit_reassign.infrastructure.store import CONTAINERS, ENTITIES, Transaction, TransactionalStore

logger = logging.getLogger(__name__)


class LoadReconciler:
    def __init__(
        self,
        store: TransactionalStore,
        policy: Optional[ReassignmentPolicy] = None,
        clock: Callable[[], float] = time.time,
    ):
        self._store = store
        self._policy = policy or ReassignmentPolicy()
        self._clock = clock

    def reconcile(
        self,
        container_ids: Optional[Sequence[str]] = None,
        *,
        dry_run: bool = False,
        actor_id: str = "system",
    ) -> ReconciliationSummary:
        """
        container_ids=None reconciles every container. Unknown ids are listed in
        missing_container_ids. Store failures propagate and nothing is written.
        """
        # Claves a releer dentro de la transacción.
        entity_keys = [entity_from_doc(d).entity_id for d in self._store.scan(ENTITIES)]
        if container_ids is None:
            container_keys = [container_from_doc(d).container_id for d in self._store.scan(CONTAINERS)]
        else:
            container_keys = sorted(set(container_ids))
        now = self._clock()

        def _run(txn: Transaction) -> ReconciliationSummary:
            return self._apply(txn, entity_keys, container_keys, dry_run, actor_id, now)

        summary = self._store.run_in_transaction(_run)
        for r in summary.reports:
            if r.has_discrepancy:
                logger.warning("Load drift on %s: %s -> %s", r.container_id, r.before, r.after)
        logger.info(
            "Reconciliation%s: %d container(s), %d with drift, %d entities counted",
            " (dry run)" if dry_run else "",
            summary.total_containers, summary.discrepancy_count, summary.entities_counted,
        )
        return summary

    def _apply(
        self,
        txn: Transaction,
        entity_keys: List[str],
        container_keys: List[str],
        dry_run: bool,
        actor_id: str,
        now: float,
    ) -> ReconciliationSummary:
        entities: List[Entity] = []
        for key in entity_keys:
            doc = txn.read(ENTITIES, key)
            if doc is not None:  # borrada entre el scan y la transacción
                entities.append(entity_from_doc(doc))
        counts = count_assigned_loads(entities, self._policy.default_tag)

        summary = ReconciliationSummary(total_containers=len(container_keys), dry_run=dry_run, timestamp=now)
        for cid in container_keys:
            doc = txn.read(CONTAINERS, cid)
            if doc is None:
                summary.missing_container_ids.append(cid)
                continue
            report = reconcile_container(container_from_doc(doc), counts.get(cid, {}), doc.get("total"))
            summary.reports.append(report)
            if dry_run or not report.has_discrepancy:
                continue
            doc["load"] = dict(report.after)
            doc["total"] = report.entities_counted
            doc["updated_at"] = now
            doc["updated_by"] = actor_id
            txn.write(CONTAINERS, cid, doc)

        known: Dict[str, bool] = {}
        for e in entities:
            if e.container_id is None:
                continue
            if e.container_id not in known:
                known[e.container_id] = txn.read(CONTAINERS, e.container_id) is not None
            if not known[e.container_id]:
                summary.orphaned_entity_ids.append(e.entity_id)
        return summary
