"""Directory service — cached user lookups and fail-closed viewer resolution."""

from __future__ import annotations

import logging

from src.db.engine import redis_client
from src.directory.cache import UserCache
from src.directory.client import DirectoryClient, DirectoryUnavailableError, UserNotFoundError
from src.events import emit
from src.models.enums import Department
from src.routing.normalize import normalize_token
from src.schemas.directory import DirectoryUser, Viewer
from src.schemas.events import EventType, SystemEvent

logger = logging.getLogger(__name__)


class DirectoryService:
    """Reads users through the cache, falling back to the directory."""

    def __init__(self, client: DirectoryClient, cache: UserCache) -> None:
        self.client = client
        self.cache = cache

    async def get_user(self, user_id: str) -> DirectoryUser:
        """Return a user, from cache when fresh.

        Raises:
            UserNotFoundError, DirectoryUnavailableError: from the client.
        """
        cached = await self.cache.get(user_id)
        if cached is not None:
            logger.debug("Directory cache hit: %s", user_id)
            return cached

        user = await self.client.fetch_user(user_id)
        await self.cache.set(user)
        return user

    async def resolve_viewer(self, user_id: str) -> Viewer:
        """Build the acting viewer.

        Never raises for directory problems: an unknown or unreachable user
        gets the fallback (non-privileged) department.
        """
        try:
            user = await self.get_user(user_id)
        except (DirectoryUnavailableError, UserNotFoundError) as exc:
            logger.warning("Viewer %s degraded to fallback department: %s", user_id, exc)
            await emit(SystemEvent(
                event_type=EventType.DIRECTORY_UNAVAILABLE,
                actor_id=user_id,
                data={"reason": type(exc).__name__},
                source_module="directory.service",
            ))
            return Viewer.fallback(user_id)
        return Viewer.from_user(user)

    async def list_users(self, department: str | None = None) -> list[DirectoryUser]:
        return await self.client.fetch_users(department)

    async def list_engineers(self) -> list[DirectoryUser]:
        """Engineering staff, the pool PICs are picked from."""
        return await self.client.fetch_users(Department.ENGINEERING.value)

    async def list_sales_managers(self) -> list[DirectoryUser]:
        users = await self.client.fetch_users(Department.SALES.value)
        return [u for u in users if normalize_token(u.role) == "manager"]


# Module-level singleton
directory_service = DirectoryService(DirectoryClient(), UserCache(redis_client))
