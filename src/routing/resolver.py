"""PIC resolver — decides which engineer is responsible for a new request.

Pure Python, no DB access. Rules are evaluated top-to-bottom and the first
match wins; a default result is mandatory, so resolution never comes back
empty.

Built-in evaluation order:
    1. "dialux" selected   → Therese
    2. "costing" selected  → Mark / Karl
    3. default             → Patrick

Admin booking rules can be compiled into resolver rules and placed ahead of
the built-ins (see `build_resolver`).
"""

from __future__ import annotations

from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import TYPE_CHECKING

from src.config import settings
from src.models.enums import RuleType
from src.routing.normalize import normalize_selection, normalize_token
from src.routing.pic import ManyEngineers, OneEngineer, PicAssignment, to_pic_assignment

if TYPE_CHECKING:
    from src.models.booking_rule import BookingRule


class EmptySelectionError(ValueError):
    """Raised when resolution is attempted without any selected service type."""


@dataclass(frozen=True)
class RoutingContext:
    """Normalized request attributes the predicates look at."""

    selected: frozenset[str]
    team: str = ""


Predicate = Callable[[RoutingContext], bool]


@dataclass(frozen=True)
class ResolutionRule:
    """One (predicate, result) pair."""

    name: str
    predicate: Predicate
    result: PicAssignment
    priority: int = 100


@dataclass(frozen=True)
class Resolution:
    """Outcome of a resolution, with the rule that produced it."""

    assignment: PicAssignment
    rule_name: str
    is_default: bool = False

    @property
    def display(self) -> str:
        return self.assignment.display


def keyword_rule(name: str, keyword: str, result: PicAssignment, priority: int = 100) -> ResolutionRule:
    """Match when `keyword` is among the selected service types."""
    token = normalize_token(keyword)
    return ResolutionRule(
        name=name,
        predicate=lambda ctx: token in ctx.selected,
        result=result,
        priority=priority,
    )


def team_rule(name: str, team: str, result: PicAssignment, priority: int = 100) -> ResolutionRule:
    """Match when the request comes from `team`."""
    token = normalize_token(team)
    return ResolutionRule(
        name=name,
        predicate=lambda ctx: bool(ctx.team) and ctx.team == token,
        result=result,
        priority=priority,
    )


BUILTIN_RULES: list[ResolutionRule] = [
    keyword_rule("dialux-specialist", "dialux", OneEngineer("Therese"), priority=10),
    keyword_rule("costing-pair", "costing", ManyEngineers(("Mark", "Karl")), priority=20),
]


@dataclass
class PicResolver:
    """Ordered first-match resolver with a mandatory default."""

    rules: Sequence[ResolutionRule]
    default: PicAssignment | None = None
    _rules: tuple[ResolutionRule, ...] = field(init=False, repr=False)

    def __post_init__(self) -> None:
        if self.default is None:
            msg = "PicResolver requires a default assignment"
            raise ValueError(msg)
        self._rules = tuple(self.rules)

    def explain(self, selected_types: Iterable[str], team: str | None = None) -> Resolution:
        """Resolve and report which rule decided.

        Raises:
            EmptySelectionError: if no service type is selected.
        """
        selected = normalize_selection(selected_types)
        if not selected:
            msg = "At least one service type must be selected before resolving a PIC"
            raise EmptySelectionError(msg)

        ctx = RoutingContext(selected=selected, team=normalize_token(team))
        for rule in self._rules:
            if rule.predicate(ctx):
                return Resolution(assignment=rule.result, rule_name=rule.name)

        assert self.default is not None
        return Resolution(assignment=self.default, rule_name="default", is_default=True)

    def resolve(self, selected_types: Iterable[str], team: str | None = None) -> PicAssignment:
        """Return the responsible engineer(s)."""
        return self.explain(selected_types, team).assignment

    def resolve_pic(self, selected_types: Iterable[str], team: str | None = None) -> str:
        """Return the responsible engineer(s) as a display name."""
        return self.resolve(selected_types, team).display


def rules_from_booking_rules(rows: Iterable[BookingRule]) -> list[ResolutionRule]:
    """Compile stored booking rules, ordered by priority then creation time."""
    epoch = datetime.min.replace(tzinfo=timezone.utc)
    ordered = sorted(rows, key=lambda r: (r.priority, r.created_at or epoch))

    compiled: list[ResolutionRule] = []
    for row in ordered:
        result = to_pic_assignment(row.assigned_pic)
        name = f"booking-rule:{row.id}"
        if row.type == RuleType.SPECIALIST.value:
            compiled.append(keyword_rule(name, row.condition, result, row.priority))
        else:
            compiled.append(team_rule(name, row.condition, result, row.priority))
    return compiled


def build_resolver(
    booking_rules: Iterable[BookingRule] | None = None,
    default_pic: str | None = None,
) -> PicResolver:
    """Assemble a resolver: booking rules (if any) → built-ins → default."""
    rules: list[ResolutionRule] = []
    if booking_rules is not None:
        rules.extend(rules_from_booking_rules(booking_rules))
    rules.extend(BUILTIN_RULES)
    return PicResolver(
        rules=rules,
        default=to_pic_assignment(default_pic or settings.routing.default_pic),
    )


# Module-level resolver with built-in rules only
default_resolver = build_resolver()


def resolve_pic(selected_types: Iterable[str], team: str | None = None) -> str:
    """Resolve with the built-in rules and return the display name."""
    return default_resolver.resolve_pic(selected_types, team)
