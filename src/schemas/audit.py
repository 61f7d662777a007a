"""Pydantic schemas for reading the audit trail."""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict


class AuditEntryRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    event_type: str
    request_id: uuid.UUID | None = None
    actor_id: str | None = None
    actor_role: str | None = None
    data: dict[str, Any] | None = None
    created_at: datetime


class AuditPage(BaseModel):
    items: list[AuditEntryRead]
    total: int
    page: int
    per_page: int
