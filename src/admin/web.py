"""Admin API — booking rules, protocols, assignment matrix and audit trail.

JSON endpoints behind HTTP Basic auth. Every call emits an ADMIN_ACCESS
event; every write emits its own change event from the service layer.
"""
# ruff: noqa: B008

from __future__ import annotations

import logging
import uuid

from fastapi import APIRouter, Depends, Query, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from src.admin.auth import verify_admin
from src.db.engine import get_session
from src.directory.service import directory_service
from src.events import emit
from src.matrix.service import matrix_service
from src.portal.deps import SERVICE_ERRORS, raise_http
from src.registry.service import registry_service
from src.schemas.audit import AuditEntryRead, AuditPage
from src.schemas.events import EventType, SystemEvent
from src.schemas.matrix import AssignmentRead, EngineerRead, ManagerPage, ToggleRequest
from src.schemas.registry import (
    ProtocolCreate,
    ProtocolRead,
    ProtocolUpdate,
    RuleCreate,
    RuleRead,
    RuleUpdate,
)
from src.security.audit import get_audit_log_paginated

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/admin", tags=["admin"])


async def _emit_access(admin: str, page: str) -> None:
    """Emit ADMIN_ACCESS audit event for each admin call."""
    await emit(SystemEvent(
        event_type=EventType.ADMIN_ACCESS,
        actor_id=admin,
        actor_role="admin",
        data={"page": page, "interface": "api"},
        source_module="admin.web",
    ))


# ── Booking rules ────────────────────────────────────────────────────


@router.get("/rules", response_model=list[RuleRead])
async def list_rules(
    search: str | None = Query(None),
    db: AsyncSession = Depends(get_session),
    admin: str = Depends(verify_admin),
) -> list[RuleRead]:
    """Rules in evaluation order."""
    await _emit_access(admin, "rules")
    rules = await registry_service.list_rules(db, search=search)
    return [RuleRead.model_validate(r) for r in rules]


@router.post("/rules", response_model=RuleRead, status_code=status.HTTP_201_CREATED)
async def create_rule(
    payload: RuleCreate,
    db: AsyncSession = Depends(get_session),
    admin: str = Depends(verify_admin),
) -> RuleRead:
    try:
        rule = await registry_service.add_rule(
            db,
            type=payload.type,
            condition=payload.condition,
            assigned_pic=payload.assigned_pic,
            priority=payload.priority,
            actor=admin,
        )
    except SERVICE_ERRORS as exc:
        raise_http(exc)
    return RuleRead.model_validate(rule)


@router.patch("/rules/{rule_id}", response_model=RuleRead)
async def update_rule(
    rule_id: uuid.UUID,
    payload: RuleUpdate,
    db: AsyncSession = Depends(get_session),
    admin: str = Depends(verify_admin),
) -> RuleRead:
    try:
        rule = await registry_service.update_rule(db, rule_id, actor=admin, **payload.model_dump(exclude_unset=True))
    except SERVICE_ERRORS as exc:
        raise_http(exc)
    return RuleRead.model_validate(rule)


@router.delete("/rules/{rule_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_rule(
    rule_id: uuid.UUID,
    db: AsyncSession = Depends(get_session),
    admin: str = Depends(verify_admin),
) -> Response:
    try:
        await registry_service.delete_rule(db, rule_id, actor=admin)
    except SERVICE_ERRORS as exc:
        raise_http(exc)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# ── Protocols ────────────────────────────────────────────────────────


@router.get("/protocols", response_model=list[ProtocolRead])
async def list_protocols(
    search: str | None = Query(None),
    active_only: bool = Query(False),
    db: AsyncSession = Depends(get_session),
    admin: str = Depends(verify_admin),
) -> list[ProtocolRead]:
    await _emit_access(admin, "protocols")
    protocols = await registry_service.list_protocols(db, active_only=active_only, search=search)
    return [ProtocolRead.model_validate(p) for p in protocols]


@router.post("/protocols", response_model=ProtocolRead, status_code=status.HTTP_201_CREATED)
async def create_protocol(
    payload: ProtocolCreate,
    db: AsyncSession = Depends(get_session),
    admin: str = Depends(verify_admin),
) -> ProtocolRead:
    try:
        protocol = await registry_service.add_protocol(
            db,
            label=payload.label,
            pic=payload.pic,
            description=payload.description,
            tsa=payload.tsa,
            tsm=payload.tsm,
            actor=admin,
        )
    except SERVICE_ERRORS as exc:
        raise_http(exc)
    return ProtocolRead.model_validate(protocol)


@router.patch("/protocols/{protocol_id}", response_model=ProtocolRead)
async def update_protocol(
    protocol_id: uuid.UUID,
    payload: ProtocolUpdate,
    db: AsyncSession = Depends(get_session),
    admin: str = Depends(verify_admin),
) -> ProtocolRead:
    try:
        protocol = await registry_service.update_protocol(
            db, protocol_id, actor=admin, **payload.model_dump(exclude_unset=True)
        )
    except SERVICE_ERRORS as exc:
        raise_http(exc)
    return ProtocolRead.model_validate(protocol)


@router.delete("/protocols/{protocol_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_protocol(
    protocol_id: uuid.UUID,
    db: AsyncSession = Depends(get_session),
    admin: str = Depends(verify_admin),
) -> Response:
    try:
        await registry_service.delete_protocol(db, protocol_id, actor=admin)
    except SERVICE_ERRORS as exc:
        raise_http(exc)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/protocols/{protocol_id}/toggle", response_model=ProtocolRead)
async def toggle_protocol(
    protocol_id: uuid.UUID,
    db: AsyncSession = Depends(get_session),
    admin: str = Depends(verify_admin),
) -> ProtocolRead:
    """Activate or deactivate a protocol for requesters."""
    try:
        protocol = await registry_service.toggle_protocol_active(db, protocol_id, actor=admin)
    except SERVICE_ERRORS as exc:
        raise_http(exc)
    return ProtocolRead.model_validate(protocol)


# ── Assignment matrix ────────────────────────────────────────────────


@router.get("/matrix", response_model=list[AssignmentRead])
async def list_assignments(
    db: AsyncSession = Depends(get_session),
    admin: str = Depends(verify_admin),
) -> list[AssignmentRead]:
    await _emit_access(admin, "matrix")
    return await matrix_service.list_assignments(db)


@router.get("/matrix/managers", response_model=ManagerPage)
async def list_managers(
    search: str | None = Query(None),
    page: int = Query(1, ge=1),
    per_page: int = Query(10),
    db: AsyncSession = Depends(get_session),
    admin: str = Depends(verify_admin),
) -> ManagerPage:
    """Sales managers with their engineers, searchable and paged (5/10/20/50)."""
    await _emit_access(admin, "matrix_managers")
    try:
        return await matrix_service.list_managers(
            db, directory_service, search=search, page=page, per_page=per_page
        )
    except SERVICE_ERRORS as exc:
        raise_http(exc)


@router.post("/matrix/{manager_id}/toggle", response_model=AssignmentRead)
async def toggle_assignment(
    manager_id: str,
    payload: ToggleRequest,
    db: AsyncSession = Depends(get_session),
    admin: str = Depends(verify_admin),
) -> AssignmentRead:
    """Add or remove one engineer for one manager. 409 if someone else edited first."""
    try:
        return await matrix_service.toggle(
            db,
            manager_id,
            payload.engineer,
            manager_name=payload.manager_name,
            expected_version=payload.expected_version,
            actor=admin,
        )
    except SERVICE_ERRORS as exc:
        raise_http(exc)


@router.get("/engineers", response_model=list[EngineerRead])
async def list_engineers(
    admin: str = Depends(verify_admin),
) -> list[EngineerRead]:
    """Engineering staff from the directory, the columns of the matrix."""
    await _emit_access(admin, "engineers")
    try:
        engineers = await directory_service.list_engineers()
    except SERVICE_ERRORS as exc:
        raise_http(exc)
    return [EngineerRead(id=e.id, name=e.display_name, position=e.position) for e in engineers]


# ── Audit trail ──────────────────────────────────────────────────────


@router.get("/logs", response_model=AuditPage)
async def audit_log(
    page: int = Query(1, ge=1),
    per_page: int = Query(50, ge=1, le=200),
    event_type: str | None = Query(None),
    db: AsyncSession = Depends(get_session),
    admin: str = Depends(verify_admin),
) -> AuditPage:
    await _emit_access(admin, "logs")
    entries, total = await get_audit_log_paginated(db, page=page, per_page=per_page, event_type=event_type)
    return AuditPage(
        items=[AuditEntryRead.model_validate(e) for e in entries],
        total=total,
        page=page,
        per_page=per_page,
    )
