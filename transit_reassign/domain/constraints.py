"""
Reassignment domain constraints. Dataclasses only. No FastAPI, no external deps beyond dataclasses/typing.
"""

from dataclasses import dataclass, field
from typing import Mapping

CAPACITY_SCOPE_TOTAL = "total"
CAPACITY_SCOPE_PER_TAG = "per_tag"

# Allocator reason codes (unassigned entities)
NO_ALTERNATE_CONTAINER = "NO_ALTERNATE_CONTAINER"
NO_TAG_COMPATIBLE_CONTAINER = "NO_TAG_COMPATIBLE_CONTAINER"
ALL_FULL = "ALL_FULL"
ENTITY_LOCKED = "ENTITY_LOCKED"
SOURCE_CONTAINER_LOCKED = "SOURCE_CONTAINER_LOCKED"


def _default_tag_compatibility() -> dict[str, frozenset[str]]:
    # Asimétrico: turno de mañana cabe en buses "morning" o "both"; tarde solo en "both".
    return {
        "morning": frozenset({"morning", "both"}),
        "evening": frozenset({"both"}),
        "both": frozenset({"both"}),
    }


@dataclass(frozen=True)
class ReassignmentPolicy:
    warning_threshold_pct: float = 90.0
    overload_threshold_pct: float = 100.0
    # "total": suma de todos los turnos contra capacity. "per_tag": cada turno por separado.
    capacity_scope: str = CAPACITY_SCOPE_TOTAL
    undo_window_s: float = 120.0
    undo_history_limit: int = 10
    default_tag: str = "morning"
    wildcard_tag: str = "both"
    tag_compatibility: Mapping[str, frozenset[str]] = field(
        default_factory=_default_tag_compatibility
    )

    def __post_init__(self) -> None:
        if self.capacity_scope not in (CAPACITY_SCOPE_TOTAL, CAPACITY_SCOPE_PER_TAG):
            raise ValueError(f"Invalid capacity_scope {self.capacity_scope!r}")
        if self.warning_threshold_pct > self.overload_threshold_pct:
            raise ValueError("warning_threshold_pct must not exceed overload_threshold_pct")
        if self.undo_window_s < 0:
            raise ValueError("undo_window_s must be >= 0")

    def capacity_limit(self, capacity: int) -> float:
        """Highest counted load allowed after a commit."""
        return capacity * self.overload_threshold_pct / 100.0
