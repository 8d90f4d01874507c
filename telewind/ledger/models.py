from dataclasses import dataclass
from typing import Optional

from telewind.db.models import TERMINAL_STATES, DeliveryState


def state_label(state: DeliveryState, retry_count: int) -> str:
    """Render a state the way the audit trail shows it, e.g. ``failed(2)``."""
    if state == DeliveryState.FAILED:
        return f"failed({retry_count})"
    return state.value


@dataclass(frozen=True)
class DeliveryAttempt:
    """Read-only view of one ledger entry."""

    event_key: str
    subscription_id: int
    user_id: int
    state: DeliveryState
    retry_count: int
    next_attempt_at: int
    updated_at: int
    claimed_by: Optional[str] = None
    lease_expires_at: Optional[int] = None
    last_error: Optional[str] = None

    @property
    def key(self):
        return (self.event_key, self.subscription_id)

    @property
    def label(self) -> str:
        return state_label(self.state, self.retry_count)

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_STATES


@dataclass(frozen=True)
class Claim:
    """Exclusive, time-bounded ownership of a ledger entry by one worker."""

    event_key: str
    subscription_id: int
    user_id: int
    worker_id: str
    version: int
    retry_count: int
    lease_expires_at: int


@dataclass(frozen=True)
class DeliveryTransition:
    from_state: Optional[DeliveryState]
    to_state: DeliveryState
    retry_count: int
    worker_id: Optional[str]
    note: Optional[str]
    created_at: int

    @property
    def label(self) -> str:
        return state_label(self.to_state, self.retry_count)
