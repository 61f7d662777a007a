"""Finite state machine for the request lifecycle.

The FSM validates a transition and computes the partial set of fields to
write. It performs no I/O; the request service persists the plan.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from src.models.enums import RequestStatus
from src.routing.normalize import normalize_token
from src.schemas.directory import Viewer
from src.workflow.states import CONFIRM, GUARDS, STAMP_FIELDS, TERMINAL_STATES, TRANSITIONS

logger = logging.getLogger(__name__)


class InvalidTransitionError(ValueError):
    """The trigger is not valid from the request's current status."""


class TransitionNotPermittedError(PermissionError):
    """The actor may not run this trigger, or a required input is missing."""


def coerce_status(value: str | RequestStatus | None) -> RequestStatus:
    """Read a stored status; blank means PENDING."""
    if isinstance(value, RequestStatus):
        return value
    token = normalize_token(value).upper()
    if not token:
        return RequestStatus.PENDING
    try:
        return RequestStatus(token)
    except ValueError as exc:
        msg = f"Unknown request status: {value!r}"
        raise InvalidTransitionError(msg) from exc


@dataclass(frozen=True)
class TransitionPlan:
    """A validated transition and the fields it writes."""

    trigger: str
    from_status: RequestStatus
    to_status: RequestStatus
    changes: dict[str, Any] = field(default_factory=dict)


class RequestStatusMachine:
    """Validates transitions for a single request."""

    def __init__(self, status: str | RequestStatus | None = RequestStatus.PENDING) -> None:
        self.current_state = coerce_status(status)

    def can_transition(self, trigger: str) -> bool:
        """Check if a trigger is valid from the current state."""
        return trigger in TRANSITIONS.get(self.current_state, {})

    def is_permitted(self, trigger: str, actor: Viewer) -> bool:
        """Check state and department guard together."""
        guard = GUARDS.get(trigger)
        return self.can_transition(trigger) and guard is not None and guard(actor)

    def allowed_actions(self, actor: Viewer) -> list[str]:
        """Triggers the actor may run right now."""
        return [t for t in TRANSITIONS.get(self.current_state, {}) if self.is_permitted(t, actor)]

    def plan(
        self,
        trigger: str,
        actor: Viewer,
        note: str | None = None,
        now: datetime | None = None,
    ) -> TransitionPlan:
        """Validate `trigger` for `actor` and compute the partial update.

        Raises:
            InvalidTransitionError: if the trigger is not valid from the current state.
            TransitionNotPermittedError: if the actor's department is not allowed,
                or a confirmation note is missing.
        """
        state_transitions = TRANSITIONS.get(self.current_state, {})
        if trigger not in state_transitions:
            msg = (
                f"Invalid transition: {self.current_state.value} --{trigger}--> ??? "
                f"(valid: {list(state_transitions.keys())})"
            )
            raise InvalidTransitionError(msg)

        if not GUARDS[trigger](actor):
            msg = f"Department {actor.department} may not {trigger} a {self.current_state.value} request"
            raise TransitionNotPermittedError(msg)

        cleaned_note = (note or "").strip()
        if trigger == CONFIRM and not cleaned_note:
            msg = "A confirmation note is required to confirm a request"
            raise TransitionNotPermittedError(msg)

        stamp = now or datetime.now(timezone.utc)
        at_field, by_field = STAMP_FIELDS[trigger]
        to_status = state_transitions[trigger]

        changes: dict[str, Any] = {
            "status": to_status.value,
            at_field: stamp,
            by_field: actor.display_name,
            "updated_at": stamp,
            "last_modified_by": actor.id,
        }
        if trigger == CONFIRM:
            changes["confirmation_notes"] = cleaned_note

        return TransitionPlan(
            trigger=trigger,
            from_status=self.current_state,
            to_status=to_status,
            changes=changes,
        )

    def apply(self, plan: TransitionPlan) -> RequestStatus:
        """Move to the plan's target state once it has been persisted."""
        if plan.from_status != self.current_state:
            msg = f"Plan starts at {plan.from_status.value}, machine is at {self.current_state.value}"
            raise InvalidTransitionError(msg)
        logger.info(
            "Request transition: %s --%s--> %s",
            plan.from_status.value,
            plan.trigger,
            plan.to_status.value,
        )
        self.current_state = plan.to_status
        return self.current_state

    @property
    def is_terminal(self) -> bool:
        """Check if the current state is a terminal state."""
        return self.current_state in TERMINAL_STATES
