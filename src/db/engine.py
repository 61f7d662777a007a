"""Persistence wiring: the PostgreSQL engine behind every request, rule and
matrix row, and the Redis connection behind the directory user cache.

The request tables are the source of truth. Redis only caches directory
lookups, so the portal starts (with a warning) when Redis is down.
"""

from __future__ import annotations

import contextlib
import logging
from collections.abc import AsyncGenerator

import redis.asyncio as aioredis
from redis.exceptions import RedisError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from src.config import settings

logger = logging.getLogger(__name__)

# ── PostgreSQL ───────────────────────────────────────────────────────

engine: AsyncEngine = create_async_engine(
    settings.db.database_url,
    echo=settings.db.database_echo,
    pool_size=settings.db.database_pool_size,
    max_overflow=settings.db.database_max_overflow,
    pool_pre_ping=True,
)

# Rows stay readable after commit; routers serialize them post-commit.
async_session_factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


async def get_session() -> AsyncGenerator[AsyncSession, None]:
    """Per-request session. Commits on success, rolls back on any error."""
    async with async_session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


# ── Directory cache ──────────────────────────────────────────────────

redis_client: aioredis.Redis = aioredis.from_url(settings.db.redis_url, decode_responses=True)


async def ping_cache() -> bool:
    """True when the directory cache answers. Never raises."""
    try:
        return bool(await redis_client.ping())
    except (RedisError, OSError) as exc:
        logger.warning("Directory cache unreachable (%s); lookups go straight to the directory", exc)
        return False


# ── Lifespan ─────────────────────────────────────────────────────────


async def _create_schema() -> None:
    # Alembic owns the schema in production
    import src.models  # noqa: F401
    from src.models.base import Base

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Schema ensured (%d tables)", len(Base.metadata.tables))


@contextlib.asynccontextmanager
async def db_lifespan() -> AsyncGenerator[None, None]:
    """Open the stores for the app's lifetime and release them on exit."""
    if settings.is_production:
        async with engine.connect():
            logger.info("Database reachable")
    else:
        await _create_schema()
    await ping_cache()
    try:
        yield
    finally:
        await engine.dispose()
        await redis_client.aclose()
