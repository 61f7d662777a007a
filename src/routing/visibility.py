"""Visibility filter — which requests a viewer may list.

Global-access departments (ENGINEERING, IT by default) see everything.
Everyone else sees only what they submitted. The SQL form pushes the
predicate into the query; the in-memory form serves live feeds.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from typing import Any, TypeVar

from sqlalchemy import ColumnElement

from src.config import settings
from src.models.service_request import ServiceRequest
from src.routing.normalize import normalize_department
from src.schemas.directory import Viewer

R = TypeVar("R")


def has_global_access(department: str | None) -> bool:
    """True when the department is on the global-access allow-list.

    A missing department falls back to the non-privileged default.
    """
    normalized = normalize_department(department, settings.routing.fallback_department)
    return normalized in settings.routing.global_departments


def visibility_clause(viewer: Viewer) -> ColumnElement[bool] | None:
    """SQL predicate restricting requests to the viewer, or None for global access."""
    if has_global_access(viewer.department):
        return None
    return ServiceRequest.submitted_by == viewer.id


def _submitted_by(record: Any) -> Any:
    if isinstance(record, Mapping):
        return record.get("submitted_by")
    return getattr(record, "submitted_by", None)


def is_visible(viewer: Viewer, record: Any) -> bool:
    """Check one record (ORM object, schema or snapshot dict)."""
    if has_global_access(viewer.department):
        return True
    return _submitted_by(record) == viewer.id


def filter_visible(viewer: Viewer, records: Iterable[R]) -> list[R]:
    """Keep the records the viewer may see, preserving order."""
    if has_global_access(viewer.department):
        return list(records)
    return [r for r in records if _submitted_by(r) == viewer.id]
