"""
Snapshot loader. Raw documents -> domain Entity / Container. Transformation only.

Acepta los nombres de campo del sistema de origen (bus_id, shift, stop_id,
load.morningCount...) además de los canónicos.
"""

from typing import Any, Dict, Iterable, List, Optional

from transit_reassign.domain.compatibility import normalize_tag
from transit_reassign.domain.models import Container, Entity, Snapshot
from transit_reassign.infrastructure.store import CONTAINERS, ENTITIES


def _first(raw: Dict[str, Any], *keys: str, default: Any = None) -> Any:
    for k in keys:
        if raw.get(k) is not None:
            return raw[k]
    return default


def _parse_load(raw_load: Any) -> Dict[str, int]:
    """{'morning': 3} or legacy {'morningCount': 3, 'eveningCount': 1, 'totalCount': 4}."""
    if not isinstance(raw_load, dict):
        return {}
    load: Dict[str, int] = {}
    for key, value in raw_load.items():
        k = str(key)
        if k in ("totalCount", "total"):
            continue
        if k.endswith("Count"):
            k = k[: -len("Count")]
        tag = normalize_tag(k)
        load[tag] = load.get(tag, 0) + int(value or 0)
    return load


def _parse_coverage(raw: Dict[str, Any]) -> tuple[str, ...]:
    """Coverage from 'coverage' (strings) or 'stops' (strings or {stopId, name} dicts)."""
    keys: List[str] = []
    for item in _first(raw, "coverage", "stops", default=[]) or []:
        if isinstance(item, dict):
            for field in ("stopId", "stop_id", "id", "name"):
                if item.get(field):
                    keys.append(str(item[field]))
        elif item:
            keys.append(str(item))
    return tuple(keys)


def _optional_str(value: Any) -> Optional[str]:
    if value is None or value == "":
        return None
    return str(value)


def entity_from_doc(raw: Dict[str, Any]) -> Entity:
    return Entity(
        entity_id=str(_first(raw, "entity_id", "id", "uid", default="")),
        container_id=_optional_str(_first(raw, "container_id", "bus_id", "busId")),
        tag=normalize_tag(_first(raw, "tag", "shift")),
        coverage_key=str(_first(raw, "coverage_key", "stop_id", "stopId", default="")),
        locked=bool(raw.get("locked", False)),
        reserved=bool(_first(raw, "reserved", "isReserved", default=False)),
        label=_optional_str(_first(raw, "label", "name", "fullName")),
    )


def container_from_doc(raw: Dict[str, Any]) -> Container:
    active = raw.get("active")
    if active is None:
        active = str(raw.get("status", "active")).lower() == "active"
    locked = raw.get("locked")
    if locked is None:
        locked = bool(raw.get("active_trip_id") or raw.get("activeTripId"))
    return Container(
        container_id=str(_first(raw, "container_id", "bus_id", "id", default="")),
        capacity=max(0, int(raw.get("capacity", 0) or 0)),
        load=_parse_load(raw.get("load")),
        coverage=_parse_coverage(raw),
        tag=normalize_tag(_first(raw, "tag", "shift"), default="both"),
        active=bool(active),
        locked=bool(locked),
        label=_optional_str(_first(raw, "label", "bus_number", "busNumber")),
        route_id=_optional_str(_first(raw, "route_id", "routeId")),
    )


def entity_to_doc(entity: Entity) -> Dict[str, Any]:
    return {
        "entity_id": entity.entity_id,
        "container_id": entity.container_id,
        "tag": entity.tag,
        "coverage_key": entity.coverage_key,
        "locked": entity.locked,
        "reserved": entity.reserved,
        "label": entity.label,
    }


def container_to_doc(container: Container) -> Dict[str, Any]:
    return {
        "container_id": container.container_id,
        "capacity": container.capacity,
        "load": dict(container.load),
        "coverage": list(container.coverage),
        "tag": container.tag,
        "active": container.active,
        "locked": container.locked,
        "label": container.label,
        "route_id": container.route_id,
    }


def load_snapshot(
    raw_entities: Iterable[Dict[str, Any]],
    raw_containers: Iterable[Dict[str, Any]],
) -> Snapshot:
    """Transform raw lists of dicts into a Snapshot."""
    return Snapshot.from_lists(
        [entity_from_doc(r) for r in raw_entities],
        [container_from_doc(r) for r in raw_containers],
    )


def fetch_snapshot(store: Any) -> Snapshot:
    """Bulk fetch from a store exposing scan(collection). Staleness is fine until commit."""
    return load_snapshot(store.scan(ENTITIES), store.scan(CONTAINERS))
