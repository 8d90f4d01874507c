"""Events and the delivery ledger (append-only)."""

from typing import Optional

from sqlalchemy import JSON, CheckConstraint, Column, Index
from sqlmodel import Field, SQLModel

from .base import DeliveryState


class EventRow(SQLModel, table=True):
    """Durable copy of an event payload; id orders events by arrival."""

    __tablename__ = "events"

    id: Optional[int] = Field(default=None, primary_key=True)
    event_key: str = Field(max_length=128, unique=True, index=True)
    payload: Optional[dict] = Field(default=None, sa_column=Column(JSON, nullable=True))
    created_at: int = Field(nullable=False)

    __table_args__ = {"sqlite_autoincrement": True}


class DeliveryAttemptRow(SQLModel, table=True):
    """Delivery state of one (event, subscription) pair. Rows are never deleted."""

    __tablename__ = "delivery_attempts"

    event_key: str = Field(primary_key=True, max_length=128, foreign_key="events.event_key")
    subscription_id: int = Field(primary_key=True)
    event_seq: int = Field(index=True)
    # Copied from the subscription so delivery survives an unsubscribe
    user_id: int = Field(nullable=False)

    state: DeliveryState = Field(default=DeliveryState.PENDING, index=True)
    retry_count: int = Field(default=0)
    last_error: Optional[str] = Field(default=None, max_length=512)

    created_at: int = Field(nullable=False)
    updated_at: int = Field(nullable=False)
    next_attempt_at: int = Field(default=0, index=True)

    # Lease
    claimed_by: Optional[str] = Field(default=None, max_length=64)
    lease_expires_at: Optional[int] = Field(default=None)
    version: int = Field(default=0)

    __table_args__ = (
        CheckConstraint("retry_count >= 0", name="ck_delivery_attempts_retry_count"),
        CheckConstraint("subscription_id >= 0", name="ck_delivery_attempts_subscription_id"),
    )


class DeliveryTransitionRow(SQLModel, table=True):
    """Audit trail: one row per ledger state change."""

    __tablename__ = "delivery_transitions"

    id: Optional[int] = Field(default=None, primary_key=True)
    event_key: str = Field(max_length=128)
    subscription_id: int
    from_state: Optional[DeliveryState] = Field(default=None)
    to_state: DeliveryState
    retry_count: int = Field(default=0)
    worker_id: Optional[str] = Field(default=None, max_length=64)
    note: Optional[str] = Field(default=None, max_length=512)
    created_at: int = Field(nullable=False)

    __table_args__ = (
        Index("ix_delivery_transitions_pair", "event_key", "subscription_id"),
    )
