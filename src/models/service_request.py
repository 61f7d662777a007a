"""ServiceRequest model — site-visit and shop-drawing requests filed by sales."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import DateTime, Integer, String, Text
from sqlalchemy.dialects.postgresql import ARRAY, JSONB
from sqlalchemy.orm import Mapped, mapped_column

from src.models.base import Base, TimestampMixin
from src.models.enums import RequestKind, RequestStatus


class ServiceRequest(TimestampMixin, Base):
    """A request routed to an engineering PIC.

    Mutated only through status transitions, each a partial update of the
    stamped fields. `revision` increases with every write so live views can
    discard stale change notifications.
    """

    __tablename__ = "service_requests"

    kind: Mapped[str] = mapped_column(String(20), default=RequestKind.SITE_VISIT.value, nullable=False, index=True)

    # Routing
    submitted_by: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    department: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    protocols: Mapped[list[str]] = mapped_column(ARRAY(String(200)), default=list, nullable=False)
    pic: Mapped[str] = mapped_column(String(200), nullable=False, index=True)

    status: Mapped[str] = mapped_column(
        String(20), default=RequestStatus.PENDING.value, nullable=False, index=True
    )

    # Site visit details
    client: Mapped[str | None] = mapped_column(String(300))
    address: Mapped[str | None] = mapped_column(String(500))
    landmark: Mapped[str | None] = mapped_column(String(300))
    agenda: Mapped[str | None] = mapped_column(String(500))
    appointment_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), index=True)
    tsa: Mapped[str | None] = mapped_column(String(200), comment="TSA approval, from the matched protocol")
    tsm: Mapped[str | None] = mapped_column(String(200), comment="TSM approval, from the matched protocol")

    # Shop drawing details
    project_name: Mapped[str | None] = mapped_column(String(300))
    details: Mapped[dict[str, Any] | None] = mapped_column(JSONB, default=dict)

    notes: Mapped[str | None] = mapped_column(Text)
    file_url: Mapped[str | None] = mapped_column(String(1000))

    # Transition stamps
    confirmation_notes: Mapped[str | None] = mapped_column(Text)
    confirmed_by: Mapped[str | None] = mapped_column(String(200))
    confirmed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    completed_by: Mapped[str | None] = mapped_column(String(200))
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    last_modified_by: Mapped[str | None] = mapped_column(String(100))
    revision: Mapped[int] = mapped_column(Integer, default=1, nullable=False)

    def __repr__(self) -> str:
        return f"<ServiceRequest id={self.id} kind={self.kind} status={self.status} pic={self.pic!r}>"
