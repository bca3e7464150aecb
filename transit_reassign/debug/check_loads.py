"""
Chequeo de contadores de carga sobre un snapshot JSON.

Recuenta la carga por turno de cada contenedor a partir de las entidades asignadas
y la compara con los contadores guardados. Con --write guarda el snapshot corregido.

Nivel:
- OK: ningún contenedor desfasado.
- WARN: hay desfases (corregibles con --write o POST /reconcile).
- FAIL: entidades que apuntan a contenedores inexistentes.

Uso (desde raíz del repo):
  python -m transit_reassign.debug.check_loads --snapshot snap.json
  python -m transit_reassign.debug.check_loads --snapshot snap.json --write fixed.json
"""

import argparse
import json
import sys
from pathlib import Path

from transit_reassign.application.config import DEFAULT_POLICY
from transit_reassign.application.reconciler import LoadReconciler
from transit_reassign.domain.models import ReconciliationSummary
from transit_reassign.infrastructure.logging_utils import configure_logging
from transit_reassign.infrastructure.snapshot_loader import container_to_doc, entity_to_doc, load_snapshot
from transit_reassign.infrastructure.store import CONTAINERS, ENTITIES, InMemoryTransactionalStore


def drift_level(summary: ReconciliationSummary) -> str:
    if summary.orphaned_entity_ids:
        return "FAIL"
    if summary.discrepancy_count:
        return "WARN"
    return "OK"


def main():
    parser = argparse.ArgumentParser(description="Chequear contadores de carga de un snapshot")
    parser.add_argument("--snapshot", type=Path, required=True, help="JSON con entities y containers")
    parser.add_argument("--write", type=Path, default=None, help="Guardar snapshot corregido aquí")
    parser.add_argument("--log-level", default="WARNING")
    args = parser.parse_args()

    configure_logging(args.log_level)

    if not args.snapshot.exists():
        print(f"ERROR: No existe el archivo {args.snapshot}")
        sys.exit(1)
    with open(args.snapshot, encoding="utf-8") as f:
        raw = json.load(f)

    snapshot = load_snapshot(raw.get("entities", []), raw.get("containers", []))
    store = InMemoryTransactionalStore()
    store.seed(
        [entity_to_doc(e) for e in snapshot.entities.values()],
        [container_to_doc(c) for c in snapshot.containers.values()],
    )
    summary = LoadReconciler(store, DEFAULT_POLICY).reconcile(dry_run=args.write is None, actor_id="check_loads")

    print(f"Snapshot: {len(snapshot.entities)} entidades, {summary.total_containers} contenedores ({args.snapshot})")
    print("\n--- Contadores ---")
    for r in summary.reports:
        mark = "DESFASE" if r.has_discrepancy else "ok"
        print(f"  {r.container_id}: {r.before} -> {r.after}  [{mark}]")
    for eid in summary.orphaned_entity_ids:
        print(f"  Entidad huérfana: {eid}")

    level = drift_level(summary)
    print("\n--- Nivel contadores ---")
    print(f"  Desfasados:      {summary.discrepancy_count}/{summary.reconciled_count}")
    print(f"  Resumen:         NIVEL {level}")

    if args.write is not None:
        out = {"entities": store.scan(ENTITIES), "containers": store.scan(CONTAINERS)}
        with open(args.write, "w", encoding="utf-8") as f:
            json.dump(out, f, indent=2, ensure_ascii=False)
        print(f"\nSnapshot corregido: {args.write}")


if __name__ == "__main__":
    main()
