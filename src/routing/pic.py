"""Tagged representation of "who is responsible".

Protocols, booking rules and requests historically stored the PIC either as
one name or as a list of names. Everything crossing into the core goes
through `to_pic_assignment`, which yields one of two shapes.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from typing import Union

PIC_SEPARATOR = " / "


@dataclass(frozen=True)
class OneEngineer:
    """A single responsible engineer."""

    name: str

    @property
    def names(self) -> list[str]:
        return [self.name]

    @property
    def display(self) -> str:
        return self.name


@dataclass(frozen=True)
class ManyEngineers:
    """Several engineers sharing responsibility, in display order."""

    members: tuple[str, ...]

    @property
    def names(self) -> list[str]:
        return list(self.members)

    @property
    def display(self) -> str:
        return PIC_SEPARATOR.join(self.members)


PicAssignment = Union[OneEngineer, ManyEngineers]


def unique_names(names: Iterable[object]) -> list[str]:
    """Strip blanks and duplicates, keeping first-seen order."""
    seen: set[str] = set()
    result: list[str] = []
    for raw in names:
        if raw is None:
            continue
        name = " ".join(str(raw).split())
        if name and name not in seen:
            seen.add(name)
            result.append(name)
    return result


def to_pic_assignment(value: str | Iterable[str] | PicAssignment) -> PicAssignment:
    """Normalize a string, list of strings or existing assignment.

    Raises:
        ValueError: if no non-blank name is present.
    """
    if isinstance(value, (OneEngineer, ManyEngineers)):
        return value
    raw = [value] if isinstance(value, str) else list(value)
    names = unique_names(raw)
    if not names:
        msg = "A PIC assignment needs at least one engineer name"
        raise ValueError(msg)
    if len(names) == 1:
        return OneEngineer(names[0])
    return ManyEngineers(tuple(names))
