"""
Configuración por defecto para reasignación (umbrales de carga, ventana de deshacer).
Un solo lugar para evitar duplicar valores entre API, evaluadores y sesión.
"""

from transit_reassign.domain.constraints import CAPACITY_SCOPE_TOTAL, ReassignmentPolicy

DEFAULT_WARNING_THRESHOLD_PCT = 90.0
DEFAULT_OVERLOAD_THRESHOLD_PCT = 100.0
DEFAULT_CAPACITY_SCOPE = CAPACITY_SCOPE_TOTAL

# Deshacer: 2 minutos, últimos 10 commits
DEFAULT_UNDO_WINDOW_S = 120.0
DEFAULT_UNDO_HISTORY_LIMIT = 10

DEFAULT_TAG = "morning"
WILDCARD_TAG = "both"

DEFAULT_ACTOR_ID = "system"

DEFAULT_POLICY = ReassignmentPolicy(
    warning_threshold_pct=DEFAULT_WARNING_THRESHOLD_PCT,
    overload_threshold_pct=DEFAULT_OVERLOAD_THRESHOLD_PCT,
    capacity_scope=DEFAULT_CAPACITY_SCOPE,
    undo_window_s=DEFAULT_UNDO_WINDOW_S,
    undo_history_limit=DEFAULT_UNDO_HISTORY_LIMIT,
    default_tag=DEFAULT_TAG,
    wildcard_tag=WILDCARD_TAG,
)
