"""Audit trail — persists every SystemEvent to the audit_log table and reads it back.

`audit_on_event` is registered as a global subscriber at startup. A failed
audit write is logged and never propagates into the event worker.
"""

from __future__ import annotations

import logging

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from src.db.engine import async_session_factory
from src.models.audit import AuditLog
from src.schemas.events import SystemEvent

logger = logging.getLogger(__name__)


async def audit_on_event(event: SystemEvent) -> None:
    """Write a SystemEvent to the audit_log table."""
    try:
        async with async_session_factory() as db:
            db.add(AuditLog(
                event_type=event.event_type.value,
                request_id=event.request_id,
                actor_id=event.actor_id,
                actor_role=event.actor_role,
                data={**event.data, "source_module": event.source_module} if event.source_module else event.data,
            ))
            await db.commit()
    except Exception:
        logger.exception(
            "Failed to persist audit event: %s (request=%s)",
            event.event_type.value,
            event.request_id,
        )


async def get_audit_log_paginated(
    db: AsyncSession,
    page: int = 1,
    per_page: int = 50,
    event_type: str | None = None,
) -> tuple[list[AuditLog], int]:
    """Newest-first audit entries with an optional event type filter."""
    query = select(AuditLog)
    count_query = select(func.count(AuditLog.id))

    if event_type:
        query = query.where(AuditLog.event_type == event_type)
        count_query = count_query.where(AuditLog.event_type == event_type)

    result = await db.execute(count_query)
    total = result.scalar() or 0

    result = await db.execute(
        query.order_by(AuditLog.created_at.desc()).offset((page - 1) * per_page).limit(per_page)
    )
    return list(result.scalars().all()), total
