"""BookingRule model — admin-configured condition → PIC routing rules."""

from __future__ import annotations

from sqlalchemy import Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from src.models.base import Base, TimestampMixin
from src.models.enums import RuleType


class BookingRule(TimestampMixin, Base):
    """A routing rule: when `condition` matches a request, `assigned_pic` is responsible.

    Rules are evaluated in ascending `priority`, ties broken by `created_at`.
    """

    __tablename__ = "booking_rules"

    type: Mapped[str] = mapped_column(String(20), default=RuleType.TEAM.value, nullable=False)
    condition: Mapped[str] = mapped_column(String(200), nullable=False, comment="Team name or service keyword")
    assigned_pic: Mapped[str] = mapped_column(String(200), nullable=False, comment="Engineer full name")
    priority: Mapped[int] = mapped_column(Integer, default=100, nullable=False, index=True)

    def __repr__(self) -> str:
        return f"<BookingRule type={self.type} condition={self.condition!r} pic={self.assigned_pic!r}>"
