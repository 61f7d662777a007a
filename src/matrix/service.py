"""Assignment matrix — which engineers handle each sales manager's team.

One row per manager. A toggle reads the row, computes the complete new
engineer list and writes it back only if nobody else wrote in between
(version check-and-set). Losing the race raises instead of overwriting.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from datetime import datetime, timezone
from typing import TYPE_CHECKING, NoReturn

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from src.db.writes import committed
from src.events import emit
from src.models.pic_assignment import PicAssignment as MatrixEntry
from src.routing.normalize import contains_text, normalize_token
from src.schemas.events import EventType, SystemEvent
from src.schemas.matrix import PAGE_SIZES, AssignmentRead, ManagerPage, ManagerRow

if TYPE_CHECKING:
    from src.directory.service import DirectoryService

logger = logging.getLogger(__name__)


class AssignmentConflictError(Exception):
    """Another writer changed the manager's row since it was read."""

    def __init__(self, manager_id: str, message: str) -> None:
        self.manager_id = manager_id
        super().__init__(message)


class MatrixValidationError(ValueError):
    """Bad engineer name or paging arguments."""


class MatrixWriteError(Exception):
    """The store failed to save an assignment change."""


def toggle_membership(pics: Iterable[str], engineer: str) -> list[str]:
    """Remove `engineer` if present, otherwise append it.

    Comparison is case-insensitive. Applying the same toggle twice gives
    back the original list.
    """
    name = " ".join(engineer.split())
    if not name:
        msg = "Engineer name must not be empty"
        raise MatrixValidationError(msg)

    current = list(pics)
    token = normalize_token(name)
    remaining = [p for p in current if normalize_token(p) != token]
    if len(remaining) != len(current):
        return remaining
    return [*current, name]


def _to_read(entry: MatrixEntry) -> AssignmentRead:
    return AssignmentRead(
        manager_id=entry.manager_id,
        manager_name=entry.manager_name,
        assigned_pics=list(entry.assigned_pics or []),
        version=entry.version,
    )


class MatrixService:
    """Reads and toggles manager → engineer assignments."""

    async def _get_entry(self, db: AsyncSession, manager_id: str) -> MatrixEntry | None:
        result = await db.execute(select(MatrixEntry).where(MatrixEntry.manager_id == manager_id))
        return result.scalar_one_or_none()

    async def get_assigned_pics(self, db: AsyncSession, manager_id: str | None) -> list[str]:
        """Engineers assigned to a manager's team; empty when none or unknown."""
        if not manager_id:
            return []
        entry = await self._get_entry(db, manager_id)
        return list(entry.assigned_pics or []) if entry else []

    async def list_assignments(self, db: AsyncSession) -> list[AssignmentRead]:
        result = await db.execute(select(MatrixEntry).order_by(MatrixEntry.manager_id.asc()))
        return [_to_read(e) for e in result.scalars().all()]

    async def toggle(
        self,
        db: AsyncSession,
        manager_id: str,
        engineer: str,
        manager_name: str | None = None,
        expected_version: int | None = None,
        actor: str | None = None,
    ) -> AssignmentRead:
        """Toggle one engineer for one manager.

        Args:
            expected_version: version the caller last saw (0 for a manager
                with no row yet). When given, the toggle is refused if the
                stored row moved on.

        Raises:
            AssignmentConflictError: on a concurrent write to the same manager.
            MatrixValidationError: on an empty engineer name.
            MatrixWriteError: the store failed.
        """
        entry = await self._get_entry(db, manager_id)
        found = entry.version if entry is not None else 0
        if expected_version is not None and expected_version != found:
            await self._conflict(manager_id, expected_version, found, actor)

        async with committed(db, MatrixWriteError, f"Could not save assignments for manager {manager_id}"):
            if entry is None:
                read = await self._insert(db, manager_id, engineer, manager_name, actor)
            else:
                read = await self._update(db, entry, engineer, manager_name, actor)

        await emit(SystemEvent(
            event_type=EventType.ASSIGNMENT_TOGGLED,
            actor_id=actor,
            actor_role="admin" if actor else None,
            data={
                "manager_id": manager_id,
                "engineer": engineer,
                "assigned_pics": read.assigned_pics,
                "version": read.version,
            },
            source_module="matrix.service",
        ))
        logger.info("Matrix toggle: manager=%s engineer=%r → %s (v%d)", manager_id, engineer, read.assigned_pics, read.version)
        return read

    async def _insert(
        self,
        db: AsyncSession,
        manager_id: str,
        engineer: str,
        manager_name: str | None,
        actor: str | None,
    ) -> AssignmentRead:
        new_entry = MatrixEntry(
            manager_id=manager_id,
            manager_name=manager_name,
            assigned_pics=toggle_membership([], engineer),
            version=1,
        )
        try:
            async with db.begin_nested():
                db.add(new_entry)
                await db.flush()
        except IntegrityError:
            # Another writer created the row first
            await self._conflict(manager_id, 0, None, actor)
        return _to_read(new_entry)

    async def _update(
        self,
        db: AsyncSession,
        entry: MatrixEntry,
        engineer: str,
        manager_name: str | None,
        actor: str | None,
    ) -> AssignmentRead:
        pics = toggle_membership(entry.assigned_pics or [], engineer)
        name = manager_name or entry.manager_name
        result = await db.execute(
            update(MatrixEntry)
            .where(MatrixEntry.manager_id == entry.manager_id, MatrixEntry.version == entry.version)
            .values(
                assigned_pics=pics,
                manager_name=name,
                version=entry.version + 1,
                updated_at=datetime.now(timezone.utc),
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            await self._conflict(entry.manager_id, entry.version, None, actor)
        return AssignmentRead(
            manager_id=entry.manager_id,
            manager_name=name,
            assigned_pics=pics,
            version=entry.version + 1,
        )

    async def list_managers(
        self,
        db: AsyncSession,
        directory: DirectoryService,
        search: str | None = None,
        page: int = 1,
        per_page: int = 10,
    ) -> ManagerPage:
        """Sales managers with their assigned engineers, searched and paged.

        Search is a case-insensitive substring over first name, last name
        and reference id.
        """
        if per_page not in PAGE_SIZES:
            msg = f"per_page must be one of {list(PAGE_SIZES)}"
            raise MatrixValidationError(msg)
        if page < 1:
            msg = "page must be >= 1"
            raise MatrixValidationError(msg)

        managers = await directory.list_sales_managers()
        if search:
            managers = [
                m for m in managers
                if contains_text((m.first_name, m.last_name, m.reference_id), search)
            ]
        managers.sort(key=lambda m: normalize_token(m.display_name))

        total = len(managers)
        start = (page - 1) * per_page
        page_items = managers[start:start + per_page]

        entries: dict[str, MatrixEntry] = {}
        if page_items:
            result = await db.execute(
                select(MatrixEntry).where(MatrixEntry.manager_id.in_([m.id for m in page_items]))
            )
            entries = {e.manager_id: e for e in result.scalars().all()}

        rows = []
        for m in page_items:
            entry = entries.get(m.id)
            rows.append(ManagerRow(
                id=m.id,
                name=m.display_name,
                reference_id=m.reference_id,
                position=m.position,
                assigned_pics=list(entry.assigned_pics or []) if entry else [],
                version=entry.version if entry else 0,
            ))
        return ManagerPage(items=rows, total=total, page=page, per_page=per_page)

    @staticmethod
    async def _conflict(manager_id: str, expected: int | None, found: int | None, actor: str | None) -> NoReturn:
        logger.warning("Matrix conflict for manager %s (expected v%s, found v%s)", manager_id, expected, found)
        await emit(SystemEvent(
            event_type=EventType.ASSIGNMENT_CONFLICT,
            actor_id=actor,
            data={"manager_id": manager_id, "expected_version": expected, "found_version": found},
            source_module="matrix.service",
        ))
        msg = f"Assignments for manager {manager_id} changed concurrently; reload and retry"
        raise AssignmentConflictError(manager_id, msg)


# Module-level singleton
matrix_service = MatrixService()
