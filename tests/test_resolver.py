"""Tests for PIC resolution.

Covers:
- Built-in precedence: dialux → Therese, costing → Mark / Karl, else Patrick
- Case and whitespace insensitivity of selections
- Empty selection refused
- Mandatory default
- Booking rules compiled ahead of the built-ins, in priority order
- PicAssignment normalization (one name vs many)
"""

from __future__ import annotations

import uuid
from datetime import datetime, timedelta, timezone

import pytest

from src.models.booking_rule import BookingRule
from src.models.enums import RuleType
from src.routing.pic import ManyEngineers, OneEngineer, to_pic_assignment, unique_names
from src.routing.resolver import (
    BUILTIN_RULES,
    EmptySelectionError,
    PicResolver,
    build_resolver,
    resolve_pic,
    rules_from_booking_rules,
)

# ── Helpers ──────────────────────────────────────────────────────────


def _rule(
    condition: str,
    pic: str,
    rule_type: RuleType = RuleType.SPECIALIST,
    priority: int = 100,
    age_minutes: int = 0,
) -> BookingRule:
    return BookingRule(
        id=uuid.uuid4(),
        type=rule_type.value,
        condition=condition,
        assigned_pic=pic,
        priority=priority,
        created_at=datetime(2026, 1, 1, tzinfo=timezone.utc) + timedelta(minutes=age_minutes),
    )


# ── Built-in precedence ──────────────────────────────────────────────


class TestBuiltinPrecedence:
    def test_dialux_goes_to_therese(self):
        assert resolve_pic({"dialux"}) == "Therese"

    def test_dialux_wins_over_costing(self):
        assert resolve_pic({"dialux", "costing"}) == "Therese"

    def test_costing_goes_to_mark_and_karl(self):
        assert resolve_pic({"costing", "site visit"}) == "Mark / Karl"

    def test_anything_else_goes_to_patrick(self):
        assert resolve_pic({"site visit"}) == "Patrick"

    def test_selection_is_case_and_space_insensitive(self):
        assert resolve_pic(["  DIAlux "]) == "Therese"
        assert resolve_pic(["Costing"]) == "Mark / Karl"

    def test_costing_resolves_to_many_engineers(self):
        resolver = build_resolver()
        assignment = resolver.resolve({"costing"})
        assert isinstance(assignment, ManyEngineers)
        assert assignment.names == ["Mark", "Karl"]

    def test_explain_reports_rule(self):
        resolution = build_resolver().explain({"dialux"})
        assert resolution.rule_name == "dialux-specialist"
        assert resolution.is_default is False

    def test_explain_reports_default(self):
        resolution = build_resolver().explain({"other"})
        assert resolution.rule_name == "default"
        assert resolution.is_default is True
        assert resolution.display == "Patrick"

    def test_builtins_are_in_priority_order(self):
        priorities = [r.priority for r in BUILTIN_RULES]
        assert priorities == sorted(priorities)


class TestResolverContract:
    def test_empty_selection_refused(self):
        with pytest.raises(EmptySelectionError):
            resolve_pic(set())

    def test_blank_only_selection_refused(self):
        with pytest.raises(EmptySelectionError):
            resolve_pic(["", "   "])

    def test_empty_selection_is_value_error(self):
        with pytest.raises(ValueError):
            resolve_pic([])

    def test_default_is_mandatory(self):
        with pytest.raises(ValueError, match="default"):
            PicResolver(rules=list(BUILTIN_RULES), default=None)

    def test_custom_default(self):
        resolver = build_resolver(default_pic="Anna")
        assert resolver.resolve_pic({"survey"}) == "Anna"


# ── Booking rules ────────────────────────────────────────────────────


class TestBookingRules:
    def test_specialist_rule_runs_before_builtins(self):
        resolver = build_resolver([_rule("dialux", "Lena")])
        assert resolver.resolve_pic({"dialux"}) == "Lena"

    def test_team_rule_matches_team(self):
        resolver = build_resolver([_rule("Team Chi", "Omar", RuleType.TEAM)])
        assert resolver.resolve_pic({"site visit"}, team="team chi") == "Omar"
        assert resolver.resolve_pic({"site visit"}, team="team rho") == "Patrick"
        assert resolver.resolve_pic({"site visit"}) == "Patrick"

    def test_lower_priority_value_first(self):
        rules = [_rule("dialux", "Second", priority=50), _rule("dialux", "First", priority=5)]
        assert build_resolver(rules).resolve_pic({"dialux"}) == "First"

    def test_ties_broken_by_creation_time(self):
        rules = [_rule("costing", "Newer", age_minutes=10), _rule("costing", "Older", age_minutes=0)]
        compiled = rules_from_booking_rules(rules)
        assert [r.result.display for r in compiled] == ["Older", "Newer"]

    def test_unmatched_rules_fall_through_to_builtins(self):
        resolver = build_resolver([_rule("survey", "Lena")])
        assert resolver.resolve_pic({"costing"}) == "Mark / Karl"


# ── PicAssignment ────────────────────────────────────────────────────


class TestPicAssignment:
    def test_single_string(self):
        assert to_pic_assignment("Therese") == OneEngineer("Therese")

    def test_single_item_list(self):
        assert to_pic_assignment(["Therese"]) == OneEngineer("Therese")

    def test_many(self):
        assignment = to_pic_assignment(["Mark", "Karl"])
        assert assignment == ManyEngineers(("Mark", "Karl"))
        assert assignment.display == "Mark / Karl"

    def test_names_always_a_list(self):
        assert to_pic_assignment("Therese").names == ["Therese"]

    def test_blank_and_duplicate_names_dropped(self):
        assert to_pic_assignment(["Mark", " ", "Mark", "Karl "]).names == ["Mark", "Karl"]

    def test_empty_refused(self):
        with pytest.raises(ValueError):
            to_pic_assignment([])
        with pytest.raises(ValueError):
            to_pic_assignment("   ")

    def test_unique_names_keeps_order(self):
        assert unique_names(["B", None, "A", "B"]) == ["B", "A"]
