"""Rule registry — booking rules and protocols managed from the admin API.

Booking rules are listed in evaluation order (priority, then creation
time). Protocols carry the engineers responsible for a bookable service;
only active ones are offered to requesters and matched for PIC candidates.
"""

from __future__ import annotations

import logging
import random
import uuid
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from src.db.writes import committed
from src.events import emit
from src.models.booking_rule import BookingRule
from src.models.enums import RuleType
from src.models.protocol import Protocol
from src.routing.normalize import contains_text
from src.routing.pic import to_pic_assignment
from src.schemas.events import EventType, SystemEvent

logger = logging.getLogger(__name__)

PROTOCOL_UID_PREFIX = "PRT-"
_UID_ATTEMPTS = 20

RULE_FIELDS = frozenset({"type", "condition", "assigned_pic", "priority"})
PROTOCOL_FIELDS = frozenset({"label", "pic", "description", "tsa", "tsm", "is_active"})


class RegistryEntryNotFoundError(LookupError):
    """No booking rule or protocol with the given id."""


class RegistryValidationError(ValueError):
    """A rule or protocol field is missing or malformed."""


class RegistryWriteError(Exception):
    """The store failed to save a rule or protocol change."""


def _required(value: Any, field_name: str) -> str:
    cleaned = " ".join(str(value or "").split())
    if not cleaned:
        msg = f"{field_name} must not be empty"
        raise RegistryValidationError(msg)
    return cleaned


def _optional(value: Any) -> str | None:
    return " ".join(str(value or "").split()) or None


def _pics(value: Any) -> list[str]:
    try:
        return to_pic_assignment(value).names
    except (TypeError, ValueError) as exc:
        raise RegistryValidationError(str(exc)) from exc


def _rule_data(rule: BookingRule) -> dict[str, Any]:
    return {
        "rule_id": str(rule.id),
        "type": rule.type,
        "condition": rule.condition,
        "assigned_pic": rule.assigned_pic,
        "priority": rule.priority,
    }


def _protocol_data(protocol: Protocol) -> dict[str, Any]:
    return {
        "protocol_id": str(protocol.id),
        "uid": protocol.uid,
        "label": protocol.label,
        "pics": list(protocol.pics or []),
        "tsa": protocol.tsa,
        "tsm": protocol.tsm,
        "is_active": protocol.is_active,
    }


class RegistryService:
    """CRUD over booking rules and protocols."""

    # ── Booking rules ────────────────────────────────────────────────

    async def list_rules(self, db: AsyncSession, search: str | None = None) -> list[BookingRule]:
        """All rules in evaluation order, optionally filtered by a search string."""
        result = await db.execute(
            select(BookingRule).order_by(BookingRule.priority.asc(), BookingRule.created_at.asc())
        )
        rules = list(result.scalars().all())
        if search:
            rules = [r for r in rules if contains_text((r.type, r.condition, r.assigned_pic), search)]
        return rules

    async def get_rule(self, db: AsyncSession, rule_id: uuid.UUID) -> BookingRule:
        rule = await db.get(BookingRule, rule_id)
        if rule is None:
            msg = f"Booking rule {rule_id} not found"
            raise RegistryEntryNotFoundError(msg)
        return rule

    async def add_rule(
        self,
        db: AsyncSession,
        type: RuleType | str,
        condition: str,
        assigned_pic: str,
        priority: int = 100,
        actor: str | None = None,
    ) -> BookingRule:
        """Create a booking rule.

        Raises:
            RegistryValidationError: on empty condition or PIC.
            RegistryWriteError: the store failed.
        """
        rule = BookingRule(
            type=RuleType(type).value,
            condition=_required(condition, "condition"),
            assigned_pic=_required(assigned_pic, "assigned_pic"),
            priority=priority,
        )
        async with committed(db, RegistryWriteError, "Could not save the booking rule"):
            db.add(rule)
            await db.flush()

        await self._emit(EventType.RULE_CREATED, _rule_data(rule), actor)
        logger.info("Booking rule created: id=%s condition=%r pic=%r", rule.id, rule.condition, rule.assigned_pic)
        return rule

    async def update_rule(
        self,
        db: AsyncSession,
        rule_id: uuid.UUID,
        actor: str | None = None,
        **fields: Any,
    ) -> BookingRule:
        """Apply a partial update. Fields set to None are left untouched."""
        unknown = set(fields) - RULE_FIELDS
        if unknown:
            msg = f"Unknown booking rule fields: {sorted(unknown)}"
            raise RegistryValidationError(msg)

        rule = await self.get_rule(db, rule_id)
        changes = {k: v for k, v in fields.items() if v is not None}
        if "type" in changes:
            rule.type = RuleType(changes["type"]).value
        if "condition" in changes:
            rule.condition = _required(changes["condition"], "condition")
        if "assigned_pic" in changes:
            rule.assigned_pic = _required(changes["assigned_pic"], "assigned_pic")
        if "priority" in changes:
            rule.priority = int(changes["priority"])
        async with committed(db, RegistryWriteError, f"Could not update booking rule {rule_id}"):
            await db.flush()

        await self._emit(EventType.RULE_UPDATED, {**_rule_data(rule), "changed": sorted(changes)}, actor)
        logger.info("Booking rule updated: id=%s fields=%s", rule.id, sorted(changes))
        return rule

    async def delete_rule(self, db: AsyncSession, rule_id: uuid.UUID, actor: str | None = None) -> None:
        rule = await self.get_rule(db, rule_id)
        data = _rule_data(rule)
        async with committed(db, RegistryWriteError, f"Could not delete booking rule {rule_id}"):
            await db.delete(rule)
            await db.flush()

        await self._emit(EventType.RULE_DELETED, data, actor)
        logger.info("Booking rule deleted: id=%s", rule_id)

    # ── Protocols ────────────────────────────────────────────────────

    async def list_protocols(
        self,
        db: AsyncSession,
        active_only: bool = False,
        search: str | None = None,
    ) -> list[Protocol]:
        """Protocols ordered by label. `active_only` gives the requester selection list."""
        stmt = select(Protocol).order_by(Protocol.label.asc())
        if active_only:
            stmt = stmt.where(Protocol.is_active.is_(True))
        result = await db.execute(stmt)
        protocols = list(result.scalars().all())
        if search:
            protocols = [
                p for p in protocols
                if contains_text((p.uid, p.label, p.description, *(p.pics or [])), search)
            ]
        return protocols

    async def get_protocol(self, db: AsyncSession, protocol_id: uuid.UUID) -> Protocol:
        protocol = await db.get(Protocol, protocol_id)
        if protocol is None:
            msg = f"Protocol {protocol_id} not found"
            raise RegistryEntryNotFoundError(msg)
        return protocol

    async def add_protocol(
        self,
        db: AsyncSession,
        label: str,
        pic: str | list[str],
        description: str = "",
        tsa: str | None = None,
        tsm: str | None = None,
        actor: str | None = None,
    ) -> Protocol:
        """Create an active protocol with a fresh PRT-#### uid."""
        protocol = Protocol(
            uid=await self._new_uid(db),
            label=_required(label, "label"),
            description=(description or "").strip(),
            pics=_pics(pic),
            tsa=_optional(tsa),
            tsm=_optional(tsm),
            is_active=True,
        )
        async with committed(db, RegistryWriteError, "Could not save the protocol"):
            db.add(protocol)
            await db.flush()

        await self._emit(EventType.PROTOCOL_CREATED, _protocol_data(protocol), actor)
        logger.info("Protocol created: uid=%s label=%r pics=%s", protocol.uid, protocol.label, protocol.pics)
        return protocol

    async def update_protocol(
        self,
        db: AsyncSession,
        protocol_id: uuid.UUID,
        actor: str | None = None,
        **fields: Any,
    ) -> Protocol:
        unknown = set(fields) - PROTOCOL_FIELDS
        if unknown:
            msg = f"Unknown protocol fields: {sorted(unknown)}"
            raise RegistryValidationError(msg)

        protocol = await self.get_protocol(db, protocol_id)
        changes = {k: v for k, v in fields.items() if v is not None}
        if "label" in changes:
            protocol.label = _required(changes["label"], "label")
        if "pic" in changes:
            protocol.pics = _pics(changes["pic"])
        if "description" in changes:
            protocol.description = str(changes["description"]).strip()
        for approver in ("tsa", "tsm"):
            if approver in changes:
                setattr(protocol, approver, _optional(changes[approver]))
        if "is_active" in changes:
            protocol.is_active = bool(changes["is_active"])
        async with committed(db, RegistryWriteError, f"Could not update protocol {protocol_id}"):
            await db.flush()

        await self._emit(EventType.PROTOCOL_UPDATED, {**_protocol_data(protocol), "changed": sorted(changes)}, actor)
        logger.info("Protocol updated: uid=%s fields=%s", protocol.uid, sorted(changes))
        return protocol

    async def delete_protocol(self, db: AsyncSession, protocol_id: uuid.UUID, actor: str | None = None) -> None:
        protocol = await self.get_protocol(db, protocol_id)
        data = _protocol_data(protocol)
        async with committed(db, RegistryWriteError, f"Could not delete protocol {protocol_id}"):
            await db.delete(protocol)
            await db.flush()

        await self._emit(EventType.PROTOCOL_DELETED, data, actor)
        logger.info("Protocol deleted: uid=%s", data["uid"])

    async def toggle_protocol_active(
        self,
        db: AsyncSession,
        protocol_id: uuid.UUID,
        actor: str | None = None,
    ) -> Protocol:
        """Flip `is_active`. Inactive protocols disappear from the requester list."""
        protocol = await self.get_protocol(db, protocol_id)
        protocol.is_active = not protocol.is_active
        async with committed(db, RegistryWriteError, f"Could not toggle protocol {protocol_id}"):
            await db.flush()

        await self._emit(EventType.PROTOCOL_TOGGLED, _protocol_data(protocol), actor)
        logger.info("Protocol %s is now %s", protocol.uid, "active" if protocol.is_active else "inactive")
        return protocol

    # ── Helpers ──────────────────────────────────────────────────────

    async def _new_uid(self, db: AsyncSession) -> str:
        """Random PRT-#### uid (1000-9999) not yet in use."""
        for _ in range(_UID_ATTEMPTS):
            uid = f"{PROTOCOL_UID_PREFIX}{random.randint(1000, 9999)}"  # noqa: S311
            existing = await db.execute(select(Protocol.id).where(Protocol.uid == uid))
            if existing.scalar_one_or_none() is None:
                return uid
        msg = "Could not allocate a free protocol uid"
        raise RegistryValidationError(msg)

    @staticmethod
    async def _emit(event_type: EventType, data: dict[str, Any], actor: str | None) -> None:
        await emit(SystemEvent(
            event_type=event_type,
            actor_id=actor,
            actor_role="admin" if actor else None,
            data=data,
            source_module="registry.service",
        ))


# Module-level singleton
registry_service = RegistryService()
