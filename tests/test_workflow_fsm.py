"""Tests for the request status state machine.

Covers: forward path, department guards, confirmation note, refused
transitions from every state, and the stamped fields of each plan.
"""

from __future__ import annotations

from datetime import datetime, timezone

import pytest

from src.models.enums import RequestStatus
from src.schemas.directory import Viewer
from src.workflow.fsm import (
    InvalidTransitionError,
    RequestStatusMachine,
    TransitionNotPermittedError,
    coerce_status,
)
from src.workflow.states import COMPLETE, CONFIRM, TERMINAL_STATES, TRANSITIONS

NOW = datetime(2026, 3, 2, 9, 30, tzinfo=timezone.utc)

ENGINEER = Viewer(id="e1", department="ENGINEERING", display_name="Therese Lim")
IT_USER = Viewer(id="i1", department="IT", display_name="Ian Cruz")
SALES = Viewer(id="u1", department="SALES", display_name="Maria Santos")


@pytest.fixture()
def make_fsm():
    """Factory to create a machine at a given status."""
    def _make(status: RequestStatus | str = RequestStatus.PENDING) -> RequestStatusMachine:
        return RequestStatusMachine(status)
    return _make


class TestHappyPath:
    def test_confirm_then_complete(self, make_fsm):
        fsm = make_fsm()

        plan = fsm.plan(CONFIRM, ENGINEER, "Checked onsite", now=NOW)
        assert plan.to_status == RequestStatus.CONFIRMED
        fsm.apply(plan)
        assert fsm.current_state == RequestStatus.CONFIRMED

        plan = fsm.plan(COMPLETE, SALES, now=NOW)
        fsm.apply(plan)
        assert fsm.current_state == RequestStatus.COMPLETED
        assert fsm.is_terminal

    def test_confirm_plan_fields(self, make_fsm):
        plan = make_fsm().plan(CONFIRM, ENGINEER, "  Checked onsite ", now=NOW)
        assert plan.changes == {
            "status": "CONFIRMED",
            "confirmed_at": NOW,
            "confirmed_by": "Therese Lim",
            "confirmation_notes": "Checked onsite",
            "updated_at": NOW,
            "last_modified_by": "e1",
        }

    def test_complete_plan_fields(self, make_fsm):
        plan = make_fsm(RequestStatus.CONFIRMED).plan(COMPLETE, SALES, now=NOW)
        assert plan.changes["status"] == "COMPLETED"
        assert plan.changes["completed_by"] == "Maria Santos"
        assert plan.changes["completed_at"] == NOW
        assert "confirmation_notes" not in plan.changes

    def test_it_may_confirm(self, make_fsm):
        plan = make_fsm().plan(CONFIRM, IT_USER, "ok", now=NOW)
        assert plan.to_status == RequestStatus.CONFIRMED


class TestGuards:
    def test_sales_cannot_confirm(self, make_fsm):
        with pytest.raises(TransitionNotPermittedError):
            make_fsm().plan(CONFIRM, SALES, "looks fine")

    def test_blank_note_refused(self, make_fsm):
        with pytest.raises(TransitionNotPermittedError, match="note"):
            make_fsm().plan(CONFIRM, ENGINEER, "   ")

    def test_missing_note_refused(self, make_fsm):
        with pytest.raises(TransitionNotPermittedError):
            make_fsm().plan(CONFIRM, ENGINEER, None)

    def test_engineering_cannot_complete(self, make_fsm):
        with pytest.raises(TransitionNotPermittedError):
            make_fsm(RequestStatus.CONFIRMED).plan(COMPLETE, ENGINEER)

    @pytest.mark.parametrize("department", ["Sales", " sales "])
    def test_sales_spelling_may_complete(self, make_fsm, department):
        actor = Viewer(id="u1", department=department, display_name="Maria Santos")
        plan = make_fsm(RequestStatus.CONFIRMED).plan(COMPLETE, actor, now=NOW)
        assert plan.to_status == RequestStatus.COMPLETED

    def test_degraded_viewer_cannot_confirm(self, make_fsm):
        with pytest.raises(TransitionNotPermittedError):
            make_fsm().plan(CONFIRM, Viewer.fallback("e1"), "ok")


class TestInvalidTransitions:
    def test_no_skip_to_completed(self, make_fsm):
        with pytest.raises(InvalidTransitionError):
            make_fsm().plan(COMPLETE, SALES)

    def test_no_double_confirm(self, make_fsm):
        with pytest.raises(InvalidTransitionError):
            make_fsm(RequestStatus.CONFIRMED).plan(CONFIRM, ENGINEER, "again")

    @pytest.mark.parametrize("trigger", [CONFIRM, COMPLETE, "reopen"])
    def test_nothing_leaves_completed(self, make_fsm, trigger):
        with pytest.raises(InvalidTransitionError):
            make_fsm(RequestStatus.COMPLETED).plan(trigger, ENGINEER, "x")

    def test_state_checked_before_department(self, make_fsm):
        # Wrong state and wrong department: the state error wins
        with pytest.raises(InvalidTransitionError):
            make_fsm(RequestStatus.COMPLETED).plan(CONFIRM, SALES, "x")

    def test_apply_rejects_foreign_plan(self, make_fsm):
        plan = make_fsm().plan(CONFIRM, ENGINEER, "ok")
        with pytest.raises(InvalidTransitionError):
            make_fsm(RequestStatus.CONFIRMED).apply(plan)


class TestAllowedActions:
    def test_pending(self, make_fsm):
        assert make_fsm().allowed_actions(ENGINEER) == [CONFIRM]
        assert make_fsm().allowed_actions(SALES) == []

    def test_confirmed(self, make_fsm):
        assert make_fsm(RequestStatus.CONFIRMED).allowed_actions(SALES) == [COMPLETE]
        assert make_fsm(RequestStatus.CONFIRMED).allowed_actions(ENGINEER) == []

    def test_completed(self, make_fsm):
        assert make_fsm(RequestStatus.COMPLETED).allowed_actions(SALES) == []


class TestStatusCoercion:
    def test_lowercase_stored_status(self):
        assert coerce_status("confirmed") == RequestStatus.CONFIRMED

    def test_blank_is_pending(self):
        assert coerce_status(None) == RequestStatus.PENDING
        assert coerce_status("") == RequestStatus.PENDING

    def test_unknown_status(self):
        with pytest.raises(InvalidTransitionError):
            coerce_status("archived")

    def test_only_completed_is_terminal(self):
        assert TERMINAL_STATES == frozenset({RequestStatus.COMPLETED})
        assert set(TRANSITIONS) == set(RequestStatus)
