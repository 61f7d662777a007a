"""Pydantic schemas for service requests and PIC resolution."""

from __future__ import annotations

import uuid
from datetime import date, datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from src.models.enums import RequestKind, RequestStatus


class RequestCreate(BaseModel):
    """Payload for a new site-visit or shop-drawing request."""

    kind: RequestKind = RequestKind.SITE_VISIT
    protocols: list[str] = Field(default_factory=list, description="Selected service types")
    pic: str | None = Field(default=None, description="Requester-chosen PIC, honored only if a candidate")
    team: str | None = Field(default=None, description="Sales team name, matched by team booking rules")

    # Site visit
    client: str | None = None
    address: str | None = None
    landmark: str | None = None
    agenda: str | None = None
    appointment_date: datetime | None = None

    # Shop drawing
    project_name: str | None = None
    details: dict[str, Any] = Field(default_factory=dict)

    notes: str | None = None
    file_url: str | None = None


class ConfirmPayload(BaseModel):
    notes: str = ""


class RequestRead(BaseModel):
    """A request as returned to staff, with the actions the caller may run."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    kind: RequestKind
    submitted_by: str
    department: str
    protocols: list[str]
    pic: str
    status: RequestStatus
    revision: int

    client: str | None = None
    address: str | None = None
    landmark: str | None = None
    agenda: str | None = None
    appointment_date: datetime | None = None
    tsa: str | None = None
    tsm: str | None = None
    project_name: str | None = None
    details: dict[str, Any] | None = None
    notes: str | None = None
    file_url: str | None = None

    confirmation_notes: str | None = None
    confirmed_by: str | None = None
    confirmed_at: datetime | None = None
    completed_by: str | None = None
    completed_at: datetime | None = None
    last_modified_by: str | None = None

    created_at: datetime
    updated_at: datetime

    allowed_actions: list[str] = Field(default_factory=list)


class StatusSummary(BaseModel):
    """Request counts per status, as shown on dashboard badges."""

    PENDING: int = 0
    CONFIRMED: int = 0
    COMPLETED: int = 0

    @property
    def total(self) -> int:
        return self.PENDING + self.CONFIRMED + self.COMPLETED


class PicResolveRequest(BaseModel):
    selected_types: list[str]
    team: str | None = None


class PicResolveResponse(BaseModel):
    pic: str
    engineers: list[str]
    rule: str
    is_default: bool


class PicSchedule(BaseModel):
    """A PIC's month: every busy day, plus the visits the caller may see."""

    pic: str
    year: int
    month: int
    busy_days: list[date]
    visits: list[RequestRead]
