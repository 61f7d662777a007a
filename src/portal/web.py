"""Staff API — requests, protocols and PIC lookups for sales and engineering.

The acting user comes from the `X-User-Id` header; every listing applies
that user's visibility.
"""
# ruff: noqa: B008

from __future__ import annotations

import logging
import uuid
from collections.abc import AsyncIterator

from fastapi import APIRouter, Depends, Query, Request, status
from fastapi.responses import StreamingResponse
from sqlalchemy.ext.asyncio import AsyncSession

from src.db.engine import get_session
from src.events import subscribe, unsubscribe
from src.models.enums import RequestKind
from src.models.service_request import ServiceRequest
from src.portal.deps import SERVICE_ERRORS, current_viewer, raise_http
from src.registry.service import registry_service
from src.routing.visibility import filter_visible
from src.schemas.directory import Viewer
from src.schemas.registry import ProtocolRead
from src.schemas.requests import (
    ConfirmPayload,
    PicResolveRequest,
    PicResolveResponse,
    PicSchedule,
    RequestCreate,
    RequestRead,
    StatusSummary,
)
from src.workflow.feed import REQUEST_EVENTS, RequestFeed, sse_events
from src.workflow.service import request_service, request_snapshot

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["portal"])


def _to_read(viewer: Viewer, request: ServiceRequest) -> RequestRead:
    read = RequestRead.model_validate(request)
    read.allowed_actions = request_service.allowed_actions(viewer, request)
    return read


# ── Requests ─────────────────────────────────────────────────────────


@router.get("/requests", response_model=list[RequestRead])
async def list_requests(
    kind: RequestKind | None = Query(None),
    status_filter: str | None = Query(None, alias="status"),
    search: str | None = Query(None),
    db: AsyncSession = Depends(get_session),
    viewer: Viewer = Depends(current_viewer),
) -> list[RequestRead]:
    """Visible requests, newest first."""
    try:
        requests = await request_service.list_visible(db, viewer, kind=kind, status=status_filter, search=search)
    except SERVICE_ERRORS as exc:
        raise_http(exc)
    return [_to_read(viewer, r) for r in requests]


@router.post("/requests", response_model=RequestRead, status_code=status.HTTP_201_CREATED)
async def create_request(
    payload: RequestCreate,
    db: AsyncSession = Depends(get_session),
    viewer: Viewer = Depends(current_viewer),
) -> RequestRead:
    try:
        request = await request_service.create_request(db, viewer, payload)
    except SERVICE_ERRORS as exc:
        raise_http(exc)
    return _to_read(viewer, request)


@router.get("/requests/summary", response_model=StatusSummary)
async def request_summary(
    db: AsyncSession = Depends(get_session),
    viewer: Viewer = Depends(current_viewer),
) -> StatusSummary:
    """Per-status counts for dashboard badges."""
    return await request_service.status_summary(db, viewer)


@router.get("/requests/stream")
async def stream_requests(
    http_request: Request,
    db: AsyncSession = Depends(get_session),
    viewer: Viewer = Depends(current_viewer),
) -> StreamingResponse:
    """Server-Sent Events: the visible requests, then every change to them."""
    # Subscribe before loading so nothing committed in between is missed
    feed = RequestFeed(viewer)
    subscribe(feed.on_event, REQUEST_EVENTS)
    try:
        for r in await request_service.list_visible(db, viewer):
            feed.apply(request_snapshot(r))
    except Exception:
        unsubscribe(feed.on_event)
        raise
    logger.info("Live feed opened for %s (%d requests)", viewer.id, len(feed))

    async def body() -> AsyncIterator[str]:
        try:
            async for message in sse_events(feed, http_request.is_disconnected):
                yield message
        finally:
            unsubscribe(feed.on_event)
            logger.info("Live feed closed for %s", viewer.id)

    return StreamingResponse(
        body(),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache"},
    )


@router.get("/requests/{request_id}", response_model=RequestRead)
async def get_request(
    request_id: uuid.UUID,
    db: AsyncSession = Depends(get_session),
    viewer: Viewer = Depends(current_viewer),
) -> RequestRead:
    try:
        request = await request_service.get_visible(db, viewer, request_id)
    except SERVICE_ERRORS as exc:
        raise_http(exc)
    return _to_read(viewer, request)


@router.post("/requests/{request_id}/confirm", response_model=RequestRead)
async def confirm_request(
    request_id: uuid.UUID,
    payload: ConfirmPayload,
    db: AsyncSession = Depends(get_session),
    viewer: Viewer = Depends(current_viewer),
) -> RequestRead:
    """Engineering/IT confirms a pending request with a note."""
    try:
        request = await request_service.confirm(db, viewer, request_id, payload.notes)
    except SERVICE_ERRORS as exc:
        raise_http(exc)
    return _to_read(viewer, request)


@router.post("/requests/{request_id}/complete", response_model=RequestRead)
async def complete_request(
    request_id: uuid.UUID,
    db: AsyncSession = Depends(get_session),
    viewer: Viewer = Depends(current_viewer),
) -> RequestRead:
    """Sales marks a confirmed request as done."""
    try:
        request = await request_service.complete(db, viewer, request_id)
    except SERVICE_ERRORS as exc:
        raise_http(exc)
    return _to_read(viewer, request)


# ── Protocols and PICs ───────────────────────────────────────────────


@router.get("/protocols", response_model=list[ProtocolRead])
async def list_active_protocols(
    search: str | None = Query(None),
    db: AsyncSession = Depends(get_session),
    viewer: Viewer = Depends(current_viewer),
) -> list[ProtocolRead]:
    """Bookable services offered to requesters."""
    protocols = await registry_service.list_protocols(db, active_only=True, search=search)
    return [ProtocolRead.model_validate(p) for p in protocols]


@router.post("/pic/resolve", response_model=PicResolveResponse)
async def resolve_pic(
    payload: PicResolveRequest,
    db: AsyncSession = Depends(get_session),
    viewer: Viewer = Depends(current_viewer),
) -> PicResolveResponse:
    """Preview which engineer a selection would be routed to."""
    try:
        resolution = await request_service.explain_pic(db, payload.selected_types, payload.team)
    except SERVICE_ERRORS as exc:
        raise_http(exc)
    return PicResolveResponse(
        pic=resolution.display,
        engineers=resolution.assignment.names,
        rule=resolution.rule_name,
        is_default=resolution.is_default,
    )


@router.get("/pics/{name}/schedule", response_model=PicSchedule)
async def pic_schedule(
    name: str,
    year: int = Query(..., ge=2000, le=2100),
    month: int = Query(..., ge=1, le=12),
    db: AsyncSession = Depends(get_session),
    viewer: Viewer = Depends(current_viewer),
) -> PicSchedule:
    """A PIC's month of site visits, for picking a free day.

    Busy days cover every visit; full records only those the caller may see.
    """
    try:
        visits = await request_service.pic_schedule(db, name, year, month)
    except SERVICE_ERRORS as exc:
        raise_http(exc)
    busy_days = sorted({v.appointment_date.date() for v in visits if v.appointment_date})
    return PicSchedule(
        pic=name,
        year=year,
        month=month,
        busy_days=busy_days,
        visits=[_to_read(viewer, v) for v in filter_visible(viewer, visits)],
    )
