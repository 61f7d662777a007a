"""Pydantic schemas for booking rules and protocols (admin registry)."""

from __future__ import annotations

import uuid
from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field, field_validator

from src.models.enums import RuleType
from src.routing.pic import to_pic_assignment


def _required_text(value: str) -> str:
    cleaned = " ".join(value.split())
    if not cleaned:
        msg = "must not be blank"
        raise ValueError(msg)
    return cleaned


class RuleCreate(BaseModel):
    type: RuleType = RuleType.TEAM
    condition: str
    assigned_pic: str
    priority: int = Field(default=100, ge=0)

    @field_validator("condition", "assigned_pic")
    @classmethod
    def not_blank(cls, v: str) -> str:
        return _required_text(v)


class RuleUpdate(BaseModel):
    """Partial update; omitted fields are left untouched."""

    type: RuleType | None = None
    condition: str | None = None
    assigned_pic: str | None = None
    priority: int | None = Field(default=None, ge=0)

    @field_validator("condition", "assigned_pic")
    @classmethod
    def not_blank(cls, v: str | None) -> str | None:
        return None if v is None else _required_text(v)


class RuleRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    type: RuleType
    condition: str
    assigned_pic: str
    priority: int
    created_at: datetime
    updated_at: datetime


def _pic_list(value: str | list[str]) -> list[str]:
    return to_pic_assignment(value).names


class ProtocolCreate(BaseModel):
    """`pic` accepts one name or a list; it is stored as a list."""

    label: str
    pic: list[str]
    description: str = ""
    tsa: str | None = None
    tsm: str | None = None

    @field_validator("label")
    @classmethod
    def not_blank(cls, v: str) -> str:
        return _required_text(v)

    @field_validator("pic", mode="before")
    @classmethod
    def normalize_pic(cls, v: str | list[str]) -> list[str]:
        return _pic_list(v)


class ProtocolUpdate(BaseModel):
    label: str | None = None
    pic: list[str] | None = None
    description: str | None = None
    tsa: str | None = None
    tsm: str | None = None
    is_active: bool | None = None

    @field_validator("label")
    @classmethod
    def not_blank(cls, v: str | None) -> str | None:
        return None if v is None else _required_text(v)

    @field_validator("pic", mode="before")
    @classmethod
    def normalize_pic(cls, v: str | list[str] | None) -> list[str] | None:
        return None if v is None else _pic_list(v)


class ProtocolRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    uid: str
    label: str
    description: str | None = None
    pics: list[str]
    tsa: str | None = None
    tsm: str | None = None
    is_active: bool
    created_at: datetime
    updated_at: datetime
