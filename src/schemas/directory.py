"""Pydantic schemas for directory users and the acting viewer."""

from __future__ import annotations

from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

from src.config import settings
from src.routing.normalize import normalize_department, normalize_token


def _alias(*names: str) -> AliasChoices:
    return AliasChoices(*names)


class DirectoryUser(BaseModel):
    """A user record as served by the external directory.

    Accepts both snake_case and the directory's native field names
    (`_id`, `Firstname`, `Department`, ...).
    """

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: str = Field(validation_alias=_alias("id", "_id"))
    first_name: str | None = Field(default=None, validation_alias=_alias("first_name", "Firstname"))
    last_name: str | None = Field(default=None, validation_alias=_alias("last_name", "Lastname"))
    name: str | None = Field(default=None, validation_alias=_alias("name", "Name"))
    department: str | None = Field(default=None, validation_alias=_alias("department", "Department"))
    role: str | None = Field(default=None, validation_alias=_alias("role", "Role"))
    position: str | None = Field(default=None, validation_alias=_alias("position", "Position"))
    reference_id: str | None = Field(default=None, validation_alias=_alias("reference_id", "ReferenceID"))
    manager_id: str | None = Field(default=None, validation_alias=_alias("manager_id", "ManagerID"))

    @field_validator("id", mode="before")
    @classmethod
    def unwrap_object_id(cls, v: Any) -> Any:
        """Accept Mongo extended JSON ({"$oid": "..."}) for ids."""
        if isinstance(v, dict) and "$oid" in v:
            return str(v["$oid"])
        return str(v) if v is not None else v

    @property
    def display_name(self) -> str:
        """Full name, falling back to the directory name or reference id."""
        full = " ".join(p for p in (self.first_name, self.last_name) if p and p.strip())
        return full or self.name or self.reference_id or self.id

    @property
    def normalized_department(self) -> str:
        return normalize_department(self.department, settings.routing.fallback_department)

    @property
    def is_manager(self) -> bool:
        return normalize_token(self.role) == "manager"


class Viewer(BaseModel):
    """The acting user, as the routing core sees them.

    `degraded` is True when the directory could not be reached and the
    viewer was given the fallback department.
    """

    model_config = ConfigDict(frozen=True)

    id: str
    department: str
    display_name: str
    role: str | None = None
    team_manager_id: str | None = None
    degraded: bool = False

    @classmethod
    def from_user(cls, user: DirectoryUser) -> Viewer:
        return cls(
            id=user.id,
            department=user.normalized_department,
            display_name=user.display_name,
            role=user.role,
            team_manager_id=user.id if user.is_manager else user.manager_id,
        )

    @classmethod
    def fallback(cls, user_id: str) -> Viewer:
        """Most restrictive viewer for an id the directory could not describe."""
        return cls(
            id=user_id,
            department=normalize_department(None, settings.routing.fallback_department),
            display_name=user_id,
            degraded=True,
        )
