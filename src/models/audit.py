"""AuditLog model — append-only trail of every portal event."""

from __future__ import annotations

import uuid
from typing import Any

from sqlalchemy import String
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import Mapped, mapped_column

from src.models.base import Base, TimestampMixin


class AuditLog(TimestampMixin, Base):
    """Immutable audit trail entry."""

    __tablename__ = "audit_log"

    event_type: Mapped[str] = mapped_column(String(100), nullable=False, index=True)

    # Context (all nullable: rule and matrix events have no request)
    request_id: Mapped[uuid.UUID | None] = mapped_column(UUID(as_uuid=True), index=True)
    actor_id: Mapped[str | None] = mapped_column(String(100), comment="Directory user id, admin name, or 'system'")
    actor_role: Mapped[str | None] = mapped_column(String(50), comment="Department or 'admin'")

    data: Mapped[dict[str, Any] | None] = mapped_column(JSONB)

    def __repr__(self) -> str:
        return f"<AuditLog event={self.event_type} request={self.request_id}>"
