"""Request lifecycle states, transition map and who may trigger each transition.

    PENDING --confirm--> CONFIRMED --complete--> COMPLETED

The map is the only source of allowed moves; everything else is refused.
"""

from __future__ import annotations

from collections.abc import Callable

from src.config import settings
from src.models.enums import Department, RequestStatus
from src.routing.normalize import normalize_department
from src.routing.visibility import has_global_access
from src.schemas.directory import Viewer

CONFIRM = "confirm"
COMPLETE = "complete"

# Transition map: {current_state: {trigger_name: next_state}}
TRANSITIONS: dict[RequestStatus, dict[str, RequestStatus]] = {
    RequestStatus.PENDING: {
        CONFIRM: RequestStatus.CONFIRMED,
    },
    RequestStatus.CONFIRMED: {
        COMPLETE: RequestStatus.COMPLETED,
    },
    RequestStatus.COMPLETED: {},
}


def _is_sales(actor: Viewer) -> bool:
    return normalize_department(actor.department, settings.routing.fallback_department) == Department.SALES.value


# Department guard per trigger
GUARDS: dict[str, Callable[[Viewer], bool]] = {
    CONFIRM: lambda actor: has_global_access(actor.department),
    COMPLETE: _is_sales,
}

# Field that records who/when for each trigger
STAMP_FIELDS: dict[str, tuple[str, str]] = {
    CONFIRM: ("confirmed_at", "confirmed_by"),
    COMPLETE: ("completed_at", "completed_by"),
}

TERMINAL_STATES: frozenset[RequestStatus] = frozenset(s for s, t in TRANSITIONS.items() if not t)
