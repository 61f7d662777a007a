"""Redis-backed TTL cache for directory user records.

Injected into DirectoryService rather than living as module state, so its
lifetime and invalidation are explicit.
"""

from __future__ import annotations

import logging

import redis.asyncio as aioredis

from src.config import settings
from src.schemas.directory import DirectoryUser

logger = logging.getLogger(__name__)

_CACHE_KEY_PREFIX = "directory:user:"


class UserCache:
    """Cache of DirectoryUser records keyed by user id.

    Entries expire after `ttl` seconds. Redis failures are logged and
    treated as cache misses; they never fail a lookup.
    """

    def __init__(self, redis: aioredis.Redis, ttl: int | None = None) -> None:
        self._redis = redis
        self.ttl = ttl if ttl is not None else settings.directory.directory_cache_ttl

    @staticmethod
    def key(user_id: str) -> str:
        return f"{_CACHE_KEY_PREFIX}{user_id}"

    async def get(self, user_id: str) -> DirectoryUser | None:
        try:
            raw = await self._redis.get(self.key(user_id))
        except Exception:
            logger.warning("Directory cache read failed for %s", user_id)
            return None
        if not raw:
            return None
        try:
            return DirectoryUser.model_validate_json(raw)
        except ValueError:
            logger.warning("Discarding undecodable cache entry for %s", user_id)
            await self.invalidate(user_id)
            return None

    async def set(self, user: DirectoryUser) -> None:
        if self.ttl <= 0:
            return
        try:
            await self._redis.setex(self.key(user.id), self.ttl, user.model_dump_json())
        except Exception:
            logger.warning("Directory cache write failed for %s", user.id)

    async def invalidate(self, user_id: str) -> None:
        """Drop one user, e.g. after a department change."""
        try:
            await self._redis.delete(self.key(user_id))
        except Exception:
            logger.warning("Directory cache invalidation failed for %s", user_id)
