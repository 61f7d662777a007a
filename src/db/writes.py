"""Commit boundary for service writes.

Services commit their own writes and emit change events afterwards, so
subscribers (audit trail, live feeds) only ever see stored state.
"""

from __future__ import annotations

import contextlib
import logging
from collections.abc import AsyncGenerator

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

logger = logging.getLogger(__name__)


@contextlib.asynccontextmanager
async def committed(
    db: AsyncSession,
    error_cls: type[Exception],
    message: str,
) -> AsyncGenerator[None, None]:
    """Run a write block, then commit.

    Usage:
        async with committed(db, RegistryWriteError, "Could not save the rule"):
            db.add(rule)
            await db.flush()
        await emit(...)

    Raises:
        error_cls: when the block or the commit fails in the store. The
            session is rolled back first.
    """
    try:
        yield
        await db.commit()
    except SQLAlchemyError as exc:
        logger.exception(message)
        await db.rollback()
        raise error_cls(message) from exc
