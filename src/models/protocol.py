"""Protocol model — a bookable engineering service and its responsible engineers."""

from __future__ import annotations

from sqlalchemy import Boolean, String
from sqlalchemy.dialects.postgresql import ARRAY
from sqlalchemy.orm import Mapped, mapped_column

from src.models.base import Base, TimestampMixin


class Protocol(TimestampMixin, Base):
    """A service category (site visit, DIAlux simulation, costing, ...)."""

    __tablename__ = "protocols"

    uid: Mapped[str] = mapped_column(String(20), unique=True, nullable=False, comment="PRT-####")
    label: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str | None] = mapped_column(String(1000))

    # Always stored as a list; single-engineer input is normalized on write.
    pics: Mapped[list[str]] = mapped_column(ARRAY(String(200)), default=list, nullable=False)

    # Approvers stamped onto site visits booked with one of this protocol's engineers
    tsa: Mapped[str | None] = mapped_column(String(200), comment="TSA approver")
    tsm: Mapped[str | None] = mapped_column(String(200), comment="TSM approver")

    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False, index=True)

    def __repr__(self) -> str:
        return f"<Protocol uid={self.uid} label={self.label!r} active={self.is_active}>"
