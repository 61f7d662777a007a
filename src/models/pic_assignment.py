"""PicAssignment model — one row per sales manager in the assignment matrix."""

from __future__ import annotations

from sqlalchemy import Integer, String
from sqlalchemy.dialects.postgresql import ARRAY
from sqlalchemy.orm import Mapped, mapped_column

from src.models.base import Base, TimestampMixin


class PicAssignment(TimestampMixin, Base):
    """Engineers handling the requests of a sales manager's team.

    `version` is bumped on every write and checked on update so that two
    admins toggling the same manager cannot silently overwrite each other.
    """

    __tablename__ = "pic_assignments"

    manager_id: Mapped[str] = mapped_column(String(100), unique=True, nullable=False, index=True)
    manager_name: Mapped[str | None] = mapped_column(String(200))
    assigned_pics: Mapped[list[str]] = mapped_column(ARRAY(String(200)), default=list, nullable=False)
    version: Mapped[int] = mapped_column(Integer, default=1, nullable=False)

    def __repr__(self) -> str:
        return f"<PicAssignment manager={self.manager_id} pics={self.assigned_pics} v={self.version}>"
