"""HTTP Basic auth for the admin API.

One shared admin account configured through ADMIN_WEB_USERNAME and
ADMIN_WEB_PASSWORD. With no password configured the admin API is closed.
"""

from __future__ import annotations

import logging
import secrets

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBasic, HTTPBasicCredentials

from src.config import settings

logger = logging.getLogger(__name__)

security = HTTPBasic()


def _matches(given: str, expected: str) -> bool:
    return secrets.compare_digest(given.encode("utf-8"), expected.encode("utf-8"))


async def verify_admin(
    credentials: HTTPBasicCredentials = Depends(security),  # noqa: B008
) -> str:
    """FastAPI dependency returning the admin username, 401 otherwise."""
    expected_password = settings.security.admin_web_password
    if not expected_password:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="ADMIN_WEB_PASSWORD not configured",
        )

    # Evaluate both comparisons so timing does not reveal which one failed
    user_ok = _matches(credentials.username, settings.security.admin_web_username)
    password_ok = _matches(credentials.password, expected_password)
    if not (user_ok and password_ok):
        logger.warning("Rejected admin credentials for user %r", credentials.username)
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid credentials",
            headers={"WWW-Authenticate": "Basic"},
        )

    return credentials.username
