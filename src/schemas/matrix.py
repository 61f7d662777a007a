"""Pydantic schemas for the manager ↔ engineer assignment matrix."""

from __future__ import annotations

from pydantic import BaseModel, Field

PAGE_SIZES = (5, 10, 20, 50)


class ToggleRequest(BaseModel):
    engineer: str = Field(min_length=1)
    manager_name: str | None = None
    # 0 means "no row yet", as reported by ManagerRow.version
    expected_version: int | None = Field(default=None, ge=0)


class AssignmentRead(BaseModel):
    manager_id: str
    manager_name: str | None = None
    assigned_pics: list[str]
    version: int


class ManagerRow(BaseModel):
    """A sales manager with the engineers currently assigned to their team."""

    id: str
    name: str
    reference_id: str | None = None
    position: str | None = None
    assigned_pics: list[str] = Field(default_factory=list)
    version: int = 0


class ManagerPage(BaseModel):
    items: list[ManagerRow]
    total: int
    page: int
    per_page: int

    @property
    def pages(self) -> int:
        return max(1, -(-self.total // self.per_page))


class EngineerRead(BaseModel):
    id: str
    name: str
    position: str | None = None
