"""
Evaluación del load balancer sobre un snapshot JSON.

Ejecuta allocate() y reporta:
- Métricas: asignados, no asignados por código de motivo, carga proyectada.
- Cumplimiento: contenedores sobrecargados tras la simulación, determinismo.
- Nivel: OK / WARN / FAIL por criterio y resumen.

Criterios de nivel:
- Colocación: OK >= 90% de entidades colocadas, WARN >= 70%, FAIL < 70%.
- Sobrecarga: ningún contenedor por encima del umbral de sobrecarga.
- Determinismo: --repeat ejecuciones deben dar el mismo resultado.

Formato del snapshot:
  {"entities": [...], "containers": [...], "entity_ids": [...]}   # entity_ids opcional

Uso (desde raíz del repo):
  python -m transit_reassign.debug.evaluate_allocator --snapshot snap.json
  python -m transit_reassign.debug.evaluate_allocator --snapshot snap.json --repeat 5
"""

import argparse
import json
import sys
from collections import Counter
from pathlib import Path
from typing import Dict, List, Optional

from transit_reassign.application.config import DEFAULT_POLICY
from transit_reassign.application.use_cases.reassign_entities import overloaded_entity_ids
from transit_reassign.core.allocation_engine.load_balancer import allocate
from transit_reassign.domain.compatibility import normalize_tag
from transit_reassign.domain.constraints import ReassignmentPolicy
from transit_reassign.domain.load import apply_tag_delta, counted_load, load_pct
from transit_reassign.domain.models import AllocationResult, Snapshot
from transit_reassign.infrastructure.logging_utils import configure_logging
from transit_reassign.infrastructure.snapshot_loader import load_snapshot


def placement_level(pct: float) -> str:
    if pct >= 90:
        return "OK"
    if pct >= 70:
        return "WARN"
    return "FAIL"


def projected_loads(snapshot: Snapshot, result: AllocationResult, policy: ReassignmentPolicy) -> Dict[str, Dict[str, int]]:
    """Simulated loads minus the entities that leave their current container."""
    removals: Dict[str, Dict[str, int]] = {}
    for entity_id, target in result.assignments.items():
        entity = snapshot.entity(entity_id)
        if target is None or entity is None or entity.container_id is None:
            continue
        tag = normalize_tag(entity.tag, policy.default_tag)
        d = removals.setdefault(entity.container_id, {})
        d[tag] = d.get(tag, 0) - 1
    return {
        cid: apply_tag_delta(load, removals.get(cid, {}))
        for cid, load in result.simulated_load.items()
    }


def overloaded_containers(
    snapshot: Snapshot,
    loads: Dict[str, Dict[str, int]],
    policy: ReassignmentPolicy,
) -> List[str]:
    out = []
    for cid, load in sorted(loads.items()):
        container = snapshot.container(cid)
        if container is None:
            continue
        limit = policy.capacity_limit(container.capacity)
        if any(counted_load(load, t, policy.capacity_scope) > limit for t in load):
            out.append(cid)
    return out


def check_determinism(snapshot: Snapshot, entity_ids: List[str], policy: ReassignmentPolicy, repeat: int) -> tuple[bool, str]:
    entities = [snapshot.entities[e] for e in entity_ids]
    containers = list(snapshot.containers.values())
    runs = [allocate(entities, containers, policy) for _ in range(max(repeat, 2))]
    first = runs[0]
    for i, r in enumerate(runs[1:], start=2):
        if r.assignments != first.assignments or r.unassigned != first.unassigned:
            return False, f"ejecución {i} difiere de la 1"
    return True, f"{len(runs)} ejecuciones idénticas"


def evaluate(snapshot: Snapshot, entity_ids: Optional[List[str]], policy: ReassignmentPolicy, repeat: int) -> dict:
    if entity_ids is None:
        entity_ids = overloaded_entity_ids(snapshot, policy)
    entity_ids = [e for e in entity_ids if e in snapshot.entities]
    entities = [snapshot.entities[e] for e in entity_ids]
    result = allocate(entities, list(snapshot.containers.values()), policy)
    loads = projected_loads(snapshot, result, policy)
    det_ok, det_msg = check_determinism(snapshot, entity_ids, policy, repeat)
    n = len(entity_ids)
    return {
        "n_entities": n,
        "n_assigned": result.assigned_count,
        "placed_pct": 100.0 * result.assigned_count / n if n else 100.0,
        "reasons": Counter(u.reason_code for u in result.unassigned),
        "loads": loads,
        "overloaded": overloaded_containers(snapshot, loads, policy),
        "determinism_ok": det_ok,
        "determinism_msg": det_msg,
    }


def main():
    parser = argparse.ArgumentParser(description="Evaluar nivel del load balancer")
    parser.add_argument("--snapshot", type=Path, required=True, help="JSON con entities y containers")
    parser.add_argument("--repeat", type=int, default=2, help="Ejecuciones para el chequeo de determinismo")
    parser.add_argument("--scope", choices=["total", "per_tag"], default=DEFAULT_POLICY.capacity_scope)
    parser.add_argument("--log-level", default="WARNING")
    args = parser.parse_args()

    configure_logging(args.log_level)

    if not args.snapshot.exists():
        print(f"ERROR: No existe el archivo {args.snapshot}")
        sys.exit(1)
    with open(args.snapshot, encoding="utf-8") as f:
        raw = json.load(f)

    snapshot = load_snapshot(raw.get("entities", []), raw.get("containers", []))
    policy = ReassignmentPolicy(
        warning_threshold_pct=DEFAULT_POLICY.warning_threshold_pct,
        overload_threshold_pct=DEFAULT_POLICY.overload_threshold_pct,
        capacity_scope=args.scope,
    )
    print(f"Snapshot: {len(snapshot.entities)} entidades, {len(snapshot.containers)} contenedores ({args.snapshot})")

    r = evaluate(snapshot, raw.get("entity_ids"), policy, args.repeat)

    print("\n--- Métricas allocator ---")
    print(f"  A colocar:       {r['n_entities']}")
    print(f"  Asignados:       {r['n_assigned']}")
    print(f"  Colocación:      {r['placed_pct']:.1f}%")
    for code, count in sorted(r["reasons"].items()):
        print(f"  Sin asignar ({code}): {count}")

    print("\n--- Carga proyectada ---")
    for cid, load in sorted(r["loads"].items()):
        container = snapshot.container(cid)
        total = sum(load.values())
        print(f"  {cid}: {load}  ({load_pct(total, container.capacity):.0f}% de {container.capacity})")

    place_level = placement_level(r["placed_pct"])
    overload_ok = not r["overloaded"]
    print("\n--- Nivel allocator ---")
    print(f"  Colocación:      {place_level} ({r['placed_pct']:.1f}%)")
    print(f"  Sobrecarga:      {'OK' if overload_ok else 'FAIL'}"
          + ("" if overload_ok else f" ({', '.join(r['overloaded'])})"))
    print(f"  Determinismo:    {'OK' if r['determinism_ok'] else 'FAIL'} - {r['determinism_msg']}")
    if place_level == "OK" and overload_ok and r["determinism_ok"]:
        print("  Resumen:         NIVEL OK")
    elif place_level == "FAIL" or not r["determinism_ok"]:
        print("  Resumen:         NIVEL FAIL (revisar criterios)")
    else:
        print("  Resumen:         NIVEL WARN (aceptable con revisión)")


if __name__ == "__main__":
    main()
