"""Domain enums used across SQLAlchemy models and Pydantic schemas.

All enums use str mixin for JSON serialization.
"""

from __future__ import annotations

from enum import Enum


class Department(str, Enum):
    """Directory departments the portal knows about."""

    SALES = "SALES"
    ENGINEERING = "ENGINEERING"
    IT = "IT"


class RequestKind(str, Enum):
    """Kinds of engineering request a sales user can file."""

    SITE_VISIT = "site_visit"
    SHOP_DRAWING = "shop_drawing"


class RequestStatus(str, Enum):
    """Request lifecycle states. COMPLETED is terminal."""

    PENDING = "PENDING"
    CONFIRMED = "CONFIRMED"
    COMPLETED = "COMPLETED"


class RuleType(str, Enum):
    """How a booking rule's condition is matched."""

    TEAM = "team"  # condition is a sales team name
    SPECIALIST = "specialist"  # condition is a service keyword
