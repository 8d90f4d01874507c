from typing import Optional

from sqlalchemy import CheckConstraint
from sqlmodel import Field, SQLModel, UniqueConstraint


class SubscriptionRow(SQLModel, table=True):
    """One subscriber of the (single) wind alert topic. Hard-deleted on unsubscribe."""

    __tablename__ = "subscriptions"

    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: int = Field(nullable=False)  # Telegram chat id
    created_at: int = Field(nullable=False)  # epoch seconds, immutable

    __table_args__ = (
        CheckConstraint("id >= 0", name="ck_subscriptions_id"),
        CheckConstraint("user_id >= 0", name="ck_subscriptions_user_id"),
        CheckConstraint("created_at >= 0", name="ck_subscriptions_created_at"),
        UniqueConstraint("user_id", name="uq_subscriptions_user"),
        # Never reuse ids of deleted rows
        {"sqlite_autoincrement": True},
    )
