"""Async httpx client for the external user/department directory."""

from __future__ import annotations

import logging
from typing import Any

import httpx

from src.config import settings
from src.routing.normalize import normalize_token
from src.schemas.directory import DirectoryUser

logger = logging.getLogger(__name__)


class DirectoryUnavailableError(Exception):
    """The directory could not be reached or answered with a server error."""


class UserNotFoundError(LookupError):
    """The directory has no user with the requested id."""


class DirectoryClient:
    """Thin async wrapper around the directory endpoints.

    Endpoints:
        GET {base_url}/user?id=<id>  → single user
        GET {base_url}/user          → every user
    """

    def __init__(self, base_url: str | None = None, timeout: float | None = None) -> None:
        self._base_url = (base_url or settings.directory.directory_base_url).rstrip("/")
        seconds = timeout if timeout is not None else settings.directory.directory_timeout
        self._timeout = httpx.Timeout(seconds, connect=min(seconds, 5.0))

    async def fetch_user(self, user_id: str) -> DirectoryUser:
        """Fetch one user.

        Raises:
            UserNotFoundError: on 404 or 400 (malformed id).
            DirectoryUnavailableError: on timeouts, transport errors or 5xx.
        """
        payload = await self._get({"id": user_id}, user_id=user_id)
        if not isinstance(payload, dict):
            msg = f"Unexpected directory payload for user {user_id}"
            raise DirectoryUnavailableError(msg)
        return DirectoryUser.model_validate(payload)

    async def fetch_users(self, department: str | None = None) -> list[DirectoryUser]:
        """Fetch all users, optionally keeping one department."""
        payload = await self._get({})
        if not isinstance(payload, list):
            msg = "Unexpected directory payload for user list"
            raise DirectoryUnavailableError(msg)

        users: list[DirectoryUser] = []
        for raw in payload:
            try:
                users.append(DirectoryUser.model_validate(raw))
            except ValueError:
                logger.warning("Skipping malformed directory record: %s", str(raw)[:80])

        if department is None:
            return users
        wanted = normalize_token(department)
        return [u for u in users if normalize_token(u.department) == wanted]

    async def _get(self, params: dict[str, str], user_id: str | None = None) -> Any:
        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                response = await client.get(f"{self._base_url}/user", params=params)
                if user_id is not None and response.status_code in (400, 404):
                    msg = f"Directory has no user {user_id}"
                    raise UserNotFoundError(msg)
                response.raise_for_status()
                return response.json()

        except httpx.TimeoutException as exc:
            logger.warning("Directory timeout (user=%s)", user_id)
            raise DirectoryUnavailableError("Directory timed out") from exc

        except httpx.HTTPStatusError as exc:
            logger.warning("Directory HTTP error %s (user=%s)", exc.response.status_code, user_id)
            raise DirectoryUnavailableError(f"Directory returned {exc.response.status_code}") from exc

        except httpx.HTTPError as exc:
            logger.warning("Directory transport error: %s", exc)
            raise DirectoryUnavailableError("Directory unreachable") from exc
