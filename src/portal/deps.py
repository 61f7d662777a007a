"""Shared FastAPI dependencies and service-error → HTTP mapping."""

from __future__ import annotations

import logging
from typing import NoReturn

from fastapi import Header, HTTPException, status

from src.directory.client import DirectoryUnavailableError
from src.directory.service import directory_service
from src.matrix.service import AssignmentConflictError, MatrixValidationError, MatrixWriteError
from src.registry.service import RegistryEntryNotFoundError, RegistryValidationError, RegistryWriteError
from src.routing.resolver import EmptySelectionError
from src.schemas.directory import Viewer
from src.workflow.fsm import InvalidTransitionError, TransitionNotPermittedError
from src.workflow.service import (
    InvalidRequestError,
    RequestNotFoundError,
    RequestWriteError,
    StaleRequestError,
)

logger = logging.getLogger(__name__)

# Most specific first: InvalidTransitionError and EmptySelectionError are ValueErrors too
_STATUS_BY_ERROR: list[tuple[type[Exception], int]] = [
    (TransitionNotPermittedError, status.HTTP_403_FORBIDDEN),
    (InvalidTransitionError, status.HTTP_409_CONFLICT),
    (StaleRequestError, status.HTTP_409_CONFLICT),
    (AssignmentConflictError, status.HTTP_409_CONFLICT),
    (RequestNotFoundError, status.HTTP_404_NOT_FOUND),
    (RegistryEntryNotFoundError, status.HTTP_404_NOT_FOUND),
    (EmptySelectionError, status.HTTP_422_UNPROCESSABLE_ENTITY),
    (InvalidRequestError, status.HTTP_422_UNPROCESSABLE_ENTITY),
    (RegistryValidationError, status.HTTP_422_UNPROCESSABLE_ENTITY),
    (MatrixValidationError, status.HTTP_422_UNPROCESSABLE_ENTITY),
    (RequestWriteError, status.HTTP_503_SERVICE_UNAVAILABLE),
    (RegistryWriteError, status.HTTP_503_SERVICE_UNAVAILABLE),
    (MatrixWriteError, status.HTTP_503_SERVICE_UNAVAILABLE),
    (DirectoryUnavailableError, status.HTTP_503_SERVICE_UNAVAILABLE),
]

SERVICE_ERRORS: tuple[type[Exception], ...] = tuple(cls for cls, _ in _STATUS_BY_ERROR)


def raise_http(exc: Exception) -> NoReturn:
    """Re-raise a service error as the matching HTTPException."""
    for error_cls, code in _STATUS_BY_ERROR:
        if isinstance(exc, error_cls):
            raise HTTPException(status_code=code, detail=str(exc)) from exc
    raise exc


async def current_viewer(x_user_id: str | None = Header(default=None)) -> Viewer:
    """Acting user from the `X-User-Id` header set by the fronting layer.

    An unknown or unreachable user is degraded, not rejected.
    """
    user_id = (x_user_id or "").strip()
    if not user_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="X-User-Id header required",
        )
    return await directory_service.resolve_viewer(user_id)
