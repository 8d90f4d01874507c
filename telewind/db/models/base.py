"""Base models and enums shared across SQLModel tables."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum

from sqlmodel import Field, SQLModel


def utcnow() -> datetime:
    """Return a timezone-aware UTC timestamp."""

    return datetime.now(timezone.utc)


class TimeStamped(SQLModel, table=False):
    """Mixin that stores creation/update timestamps in UTC."""

    created_at: datetime = Field(default_factory=utcnow, nullable=False)
    updated_at: datetime = Field(default_factory=utcnow, nullable=False)


class DeliveryState(str, Enum):
    PENDING = "pending"
    SENT = "sent"
    FAILED = "failed"
    ABANDONED = "abandoned"


# States a worker may claim (FAILED rows wait for next_attempt_at)
CLAIMABLE_STATES = (DeliveryState.PENDING, DeliveryState.FAILED)
TERMINAL_STATES = (DeliveryState.SENT, DeliveryState.ABANDONED)
