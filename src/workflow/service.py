"""Request service — create, list and move site-visit and shop-drawing requests.

Creation picks the responsible engineer (PIC); listing applies the viewer's
visibility in the query; status changes go through the state machine and
are written as a conditional partial update.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Iterable
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import String, cast, func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.attributes import set_committed_value

from src.config import settings
from src.db.writes import committed
from src.events import emit
from src.matrix.service import MatrixService, matrix_service
from src.models.enums import Department, RequestKind, RequestStatus
from src.models.protocol import Protocol
from src.models.service_request import ServiceRequest
from src.registry.service import RegistryService, registry_service
from src.routing.normalize import normalize_selection, normalize_token
from src.routing.pic import PIC_SEPARATOR, unique_names
from src.routing.resolver import PicResolver, Resolution, build_resolver, default_resolver
from src.routing.visibility import visibility_clause
from src.schemas.directory import Viewer
from src.schemas.events import EventType, SystemEvent
from src.schemas.requests import RequestCreate, StatusSummary
from src.workflow.fsm import (
    InvalidTransitionError,
    RequestStatusMachine,
    TransitionNotPermittedError,
    coerce_status,
)
from src.workflow.states import COMPLETE, CONFIRM

logger = logging.getLogger(__name__)

SITE_VISIT_REQUIRED = ("client", "address", "appointment_date")
SHOP_DRAWING_REQUIRED = ("project_name",)
APPROVAL_NOT_SET = "NOT_SET"


class InvalidRequestError(ValueError):
    """A new request is missing required fields or has no selected service."""


class RequestNotFoundError(LookupError):
    """The request does not exist or is not visible to the caller."""


class StaleRequestError(Exception):
    """The request's status changed between read and write."""


class RequestWriteError(Exception):
    """The store rejected or failed a request write."""


def request_snapshot(request: ServiceRequest) -> dict[str, Any]:
    """Event payload describing a request, including its revision."""

    def _iso(value: datetime | None) -> str | None:
        return value.isoformat() if value else None

    return {
        "id": str(request.id),
        "kind": request.kind,
        "submitted_by": request.submitted_by,
        "department": request.department,
        "protocols": list(request.protocols or []),
        "pic": request.pic,
        "status": request.status,
        "revision": request.revision,
        "client": request.client,
        "project_name": request.project_name,
        "appointment_date": _iso(request.appointment_date),
        "tsa": request.tsa,
        "tsm": request.tsm,
        "confirmed_by": request.confirmed_by,
        "completed_by": request.completed_by,
        "created_at": _iso(request.created_at),
        "updated_at": _iso(request.updated_at),
    }


def _missing_fields(payload: RequestCreate, required: Iterable[str]) -> list[str]:
    missing = []
    for name in required:
        value = getattr(payload, name)
        if value is None or (isinstance(value, str) and not value.strip()):
            missing.append(name)
    return missing


def protocol_approvals(protocols: Iterable[Protocol], pic: str) -> tuple[str, str]:
    """TSA/TSM of the first protocol listing `pic` among its engineers."""
    token = normalize_token(pic)
    for protocol in protocols:
        if token in {normalize_token(name) for name in protocol.pics or []}:
            return protocol.tsa or APPROVAL_NOT_SET, protocol.tsm or APPROVAL_NOT_SET
    return APPROVAL_NOT_SET, APPROVAL_NOT_SET


def _month_bounds(year: int, month: int) -> tuple[datetime, datetime]:
    if not 1 <= month <= 12:
        msg = f"month must be 1-12, got {month}"
        raise InvalidRequestError(msg)
    start = datetime(year, month, 1, tzinfo=timezone.utc)
    end = datetime(year + 1, 1, 1, tzinfo=timezone.utc) if month == 12 else datetime(year, month + 1, 1, tzinfo=timezone.utc)
    return start, end


class RequestService:
    """Request lifecycle operations."""

    def __init__(self, matrix: MatrixService, registry: RegistryService) -> None:
        self.matrix = matrix
        self.registry = registry

    # ── PIC selection ────────────────────────────────────────────────

    async def resolver_for(self, db: AsyncSession) -> PicResolver:
        """Built-in resolver, or one with stored booking rules in front when enabled."""
        if not settings.routing.routing_use_booking_rules:
            return default_resolver
        rules = await self.registry.list_rules(db)
        return build_resolver(rules)

    async def explain_pic(
        self,
        db: AsyncSession,
        selected_types: Iterable[str],
        team: str | None = None,
    ) -> Resolution:
        resolver = await self.resolver_for(db)
        return resolver.explain(selected_types, team)

    async def matched_protocols(self, db: AsyncSession, selected_types: Iterable[str]) -> list[Protocol]:
        """Active protocols whose label is among the selected types."""
        selected = normalize_selection(selected_types)
        return [
            p for p in await self.registry.list_protocols(db, active_only=True)
            if normalize_token(p.label) in selected
        ]

    async def pic_candidates(
        self,
        db: AsyncSession,
        submitter: Viewer,
        selected_types: Iterable[str],
        matched: list[Protocol] | None = None,
    ) -> list[str]:
        """Engineers eligible for a site visit.

        The submitter's team manager's assigned engineers first, then the
        engineers of every active protocol whose label is among the selected
        types.
        """
        candidates = await self.matrix.get_assigned_pics(db, submitter.team_manager_id)
        if matched is None:
            matched = await self.matched_protocols(db, selected_types)
        for protocol in matched:
            candidates.extend(protocol.pics or [])
        return unique_names(candidates)

    async def choose_pic(
        self,
        db: AsyncSession,
        submitter: Viewer,
        payload: RequestCreate,
        matched: list[Protocol] | None = None,
    ) -> str:
        if payload.kind == RequestKind.SITE_VISIT:
            candidates = await self.pic_candidates(db, submitter, payload.protocols, matched)
            if candidates:
                wanted = normalize_token(payload.pic)
                for name in candidates:
                    if wanted and normalize_token(name) == wanted:
                        return name
                if wanted:
                    logger.info("Requested PIC %r is not a candidate for %s; using %r", payload.pic, submitter.id, candidates[0])
                return candidates[0]

        resolution = await self.explain_pic(db, payload.protocols, payload.team)
        logger.debug("PIC resolved by rule %s: %s", resolution.rule_name, resolution.display)
        return resolution.display

    # ── Create / read ────────────────────────────────────────────────

    async def create_request(
        self,
        db: AsyncSession,
        submitter: Viewer,
        payload: RequestCreate,
    ) -> ServiceRequest:
        """File a new request in PENDING.

        Raises:
            InvalidRequestError: no selected service or a required field is blank.
            RequestWriteError: the store failed.
        """
        protocols = unique_names(payload.protocols)
        if not protocols:
            msg = "Select at least one service type"
            raise InvalidRequestError(msg)

        required = SITE_VISIT_REQUIRED if payload.kind == RequestKind.SITE_VISIT else SHOP_DRAWING_REQUIRED
        missing = _missing_fields(payload, required)
        if missing:
            msg = f"Missing required fields for {payload.kind.value}: {', '.join(missing)}"
            raise InvalidRequestError(msg)

        if payload.kind == RequestKind.SITE_VISIT:
            matched = await self.matched_protocols(db, payload.protocols)
            pic = await self.choose_pic(db, submitter, payload, matched)
            tsa, tsm = protocol_approvals(matched, pic)
            department = submitter.department
        else:
            pic = await self.choose_pic(db, submitter, payload)
            tsa = tsm = None
            department = Department.ENGINEERING.value

        request = ServiceRequest(
            kind=payload.kind.value,
            submitted_by=submitter.id,
            department=department,
            protocols=protocols,
            pic=pic,
            status=RequestStatus.PENDING.value,
            client=payload.client,
            address=payload.address,
            landmark=payload.landmark,
            agenda=payload.agenda,
            appointment_date=payload.appointment_date,
            tsa=tsa,
            tsm=tsm,
            project_name=payload.project_name,
            details=payload.details,
            notes=payload.notes,
            file_url=payload.file_url,
            last_modified_by=submitter.id,
            revision=1,
        )
        async with committed(db, RequestWriteError, "Could not save the request"):
            db.add(request)
            await db.flush()

        await emit(SystemEvent(
            event_type=EventType.REQUEST_CREATED,
            request_id=request.id,
            actor_id=submitter.id,
            actor_role=submitter.department,
            data=request_snapshot(request),
            source_module="workflow.service",
        ))
        logger.info("Request created: id=%s kind=%s pic=%r by=%s", request.id, request.kind, pic, submitter.id)
        return request

    async def list_visible(
        self,
        db: AsyncSession,
        viewer: Viewer,
        kind: RequestKind | None = None,
        status: str | None = None,
        search: str | None = None,
        limit: int = 200,
    ) -> list[ServiceRequest]:
        """Requests the viewer may see, newest first."""
        stmt = select(ServiceRequest)
        clause = visibility_clause(viewer)
        if clause is not None:
            stmt = stmt.where(clause)
        if kind is not None:
            stmt = stmt.where(ServiceRequest.kind == RequestKind(kind).value)
        if status:
            try:
                wanted = coerce_status(status)
            except InvalidTransitionError as exc:
                raise InvalidRequestError(str(exc)) from exc
            stmt = stmt.where(ServiceRequest.status == wanted.value)
        term = " ".join((search or "").split())
        if term:
            stmt = stmt.where(or_(
                ServiceRequest.client.icontains(term, autoescape=True),
                ServiceRequest.project_name.icontains(term, autoescape=True),
                cast(ServiceRequest.id, String).endswith(term.lower(), autoescape=True),
            ))
        stmt = stmt.order_by(ServiceRequest.created_at.desc()).limit(limit)

        result = await db.execute(stmt)
        return list(result.scalars().all())

    async def get_visible(self, db: AsyncSession, viewer: Viewer, request_id: uuid.UUID) -> ServiceRequest:
        """Fetch one request. Invisible requests are reported as missing."""
        stmt = select(ServiceRequest).where(ServiceRequest.id == request_id)
        clause = visibility_clause(viewer)
        if clause is not None:
            stmt = stmt.where(clause)
        result = await db.execute(stmt)
        request = result.scalar_one_or_none()
        if request is None:
            msg = f"Request {request_id} not found"
            raise RequestNotFoundError(msg)
        return request

    # ── Transitions ──────────────────────────────────────────────────

    async def confirm(
        self,
        db: AsyncSession,
        actor: Viewer,
        request_id: uuid.UUID,
        note: str | None,
    ) -> ServiceRequest:
        """PENDING → CONFIRMED, by engineering/IT, with a confirmation note."""
        return await self._transition(db, actor, request_id, CONFIRM, note)

    async def complete(self, db: AsyncSession, actor: Viewer, request_id: uuid.UUID) -> ServiceRequest:
        """CONFIRMED → COMPLETED, by sales."""
        return await self._transition(db, actor, request_id, COMPLETE)

    async def _transition(
        self,
        db: AsyncSession,
        actor: Viewer,
        request_id: uuid.UUID,
        trigger: str,
        note: str | None = None,
    ) -> ServiceRequest:
        request = await self.get_visible(db, actor, request_id)
        machine = RequestStatusMachine(request.status)

        try:
            plan = machine.plan(trigger, actor, note)
        except (InvalidTransitionError, TransitionNotPermittedError) as exc:
            logger.info("Transition %s refused for request %s by %s: %s", trigger, request_id, actor.id, exc)
            await emit(SystemEvent(
                event_type=EventType.REQUEST_TRANSITION_REFUSED,
                request_id=request.id,
                actor_id=actor.id,
                actor_role=actor.department,
                data={"trigger": trigger, "status": request.status, "reason": str(exc)},
                source_module="workflow.service",
            ))
            raise

        async with committed(db, RequestWriteError, f"Could not {trigger} the request"):
            result = await db.execute(
                update(ServiceRequest)
                .where(
                    ServiceRequest.id == request.id,
                    ServiceRequest.status == plan.from_status.value,
                )
                .values(**plan.changes, revision=ServiceRequest.revision + 1)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 0:
                msg = f"Request {request_id} is no longer {plan.from_status.value}"
                raise StaleRequestError(msg)

        # Mirror the persisted values without scheduling another UPDATE
        for field_name, value in plan.changes.items():
            set_committed_value(request, field_name, value)
        set_committed_value(request, "revision", (request.revision or 0) + 1)
        machine.apply(plan)

        await emit(SystemEvent(
            event_type=EventType.REQUEST_STATUS_CHANGED,
            request_id=request.id,
            actor_id=actor.id,
            actor_role=actor.department,
            data={
                **request_snapshot(request),
                "trigger": trigger,
                "from_status": plan.from_status.value,
            },
            source_module="workflow.service",
        ))
        return request

    def allowed_actions(self, viewer: Viewer, request: ServiceRequest) -> list[str]:
        return RequestStatusMachine(request.status).allowed_actions(viewer)

    # ── Read models ──────────────────────────────────────────────────

    async def pic_schedule(self, db: AsyncSession, pic: str, year: int, month: int) -> list[ServiceRequest]:
        """Site visits assigned to `pic` with an appointment in the given month."""
        name = " ".join(pic.split())
        if not name:
            msg = "PIC name must not be empty"
            raise InvalidRequestError(msg)
        start, end = _month_bounds(year, month)

        result = await db.execute(
            select(ServiceRequest)
            .where(
                ServiceRequest.kind == RequestKind.SITE_VISIT.value,
                ServiceRequest.appointment_date >= start,
                ServiceRequest.appointment_date < end,
                ServiceRequest.pic.icontains(name, autoescape=True),
            )
            .order_by(ServiceRequest.appointment_date.asc())
        )
        # "Mark / Karl" belongs to both Mark and Karl, but not to "Mar"
        token = normalize_token(name)
        return [
            r for r in result.scalars().all()
            if token in {normalize_token(n) for n in r.pic.split(PIC_SEPARATOR.strip())}
        ]

    async def status_summary(self, db: AsyncSession, viewer: Viewer) -> StatusSummary:
        """Counts per status over the requests the viewer may see."""
        stmt = select(ServiceRequest.status, func.count(ServiceRequest.id)).group_by(ServiceRequest.status)
        clause = visibility_clause(viewer)
        if clause is not None:
            stmt = stmt.where(clause)
        result = await db.execute(stmt)

        counts = {s.value: 0 for s in RequestStatus}
        for status, count in result.all():
            key = normalize_token(status).upper()
            if key in counts:
                counts[key] += count
        return StatusSummary(**counts)


# Module-level singleton
request_service = RequestService(matrix_service, registry_service)
