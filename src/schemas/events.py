"""SystemEvent schema — the change notification that flows through the portal.

Every write emits a SystemEvent. Subscribers (audit logger, live request
feeds) consume them asynchronously; delivery order across different
requests is not guaranteed.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


class EventType(str, Enum):
    """All event types emitted by the portal."""

    # Requests
    REQUEST_CREATED = "request.created"
    REQUEST_STATUS_CHANGED = "request.status_changed"
    REQUEST_TRANSITION_REFUSED = "request.transition_refused"

    # Rule registry
    RULE_CREATED = "rule.created"
    RULE_UPDATED = "rule.updated"
    RULE_DELETED = "rule.deleted"
    PROTOCOL_CREATED = "protocol.created"
    PROTOCOL_UPDATED = "protocol.updated"
    PROTOCOL_DELETED = "protocol.deleted"
    PROTOCOL_TOGGLED = "protocol.toggled"

    # Assignment matrix
    ASSIGNMENT_TOGGLED = "assignment.toggled"
    ASSIGNMENT_CONFLICT = "assignment.conflict"

    # Directory
    DIRECTORY_UNAVAILABLE = "directory.unavailable"

    # Admin
    ADMIN_ACCESS = "admin.access"


class SystemEvent(BaseModel):
    """Immutable change notification.

    `data` carries a request snapshot (with `revision`) for request events,
    so live views can update without re-querying.
    """

    id: uuid.UUID = Field(default_factory=uuid.uuid4)
    event_type: EventType
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    request_id: uuid.UUID | None = None
    actor_id: str | None = None
    actor_role: str | None = None

    data: dict[str, Any] = Field(default_factory=dict)

    source_module: str | None = Field(default=None, description="Module that emitted this event")

    model_config = {"frozen": True}
