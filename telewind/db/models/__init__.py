"""Aggregate exports for SQLModel tables."""

from .base import (
    CLAIMABLE_STATES,
    TERMINAL_STATES,
    DeliveryState,
    TimeStamped,
    utcnow,
)
from .ledger import DeliveryAttemptRow, DeliveryTransitionRow, EventRow
from .observability import ErrorLog
from .subscription import SubscriptionRow

__all__ = [
    "CLAIMABLE_STATES",
    "DeliveryAttemptRow",
    "DeliveryState",
    "DeliveryTransitionRow",
    "ErrorLog",
    "EventRow",
    "SubscriptionRow",
    "TERMINAL_STATES",
    "TimeStamped",
    "utcnow",
]
