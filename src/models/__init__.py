"""SQLAlchemy ORM models for the engineering request portal.

Import all models here so Alembic and Base.metadata.create_all() discover them.
"""

from __future__ import annotations

from src.models.audit import AuditLog
from src.models.base import Base
from src.models.booking_rule import BookingRule
from src.models.enums import Department, RequestKind, RequestStatus, RuleType
from src.models.pic_assignment import PicAssignment
from src.models.protocol import Protocol
from src.models.service_request import ServiceRequest

__all__ = [
    # Base
    "Base",
    # Models
    "AuditLog",
    "BookingRule",
    "PicAssignment",
    "Protocol",
    "ServiceRequest",
    # Enums
    "Department",
    "RequestKind",
    "RequestStatus",
    "RuleType",
]
