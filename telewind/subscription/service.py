import logging
from typing import Callable, Optional

from sqlalchemy import delete, func
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError
from sqlmodel import select

from telewind.db.connection import get_engine, session_scope
from telewind.db.models import SubscriptionRow
from telewind.errors import DuplicateSubscription, NotFound
from telewind.subscription.models import ActiveSubscriptions, Subscription
from telewind.utils.timezone import epoch_seconds

log = logging.getLogger(__name__)


def _to_record(row: SubscriptionRow) -> Subscription:
    return Subscription(id=row.id, user_id=row.user_id, created_at=row.created_at)


class SubscriptionStore:
    """
    Durable table of subscribers.

    Owns id assignment and the one-subscription-per-user rule. Every
    mutation is committed before the call returns.
    """

    def __init__(self, engine: Optional[Engine] = None, clock: Callable[[], int] = epoch_seconds):
        self.engine = engine or get_engine()
        self.clock = clock

    def subscribe(self, user_id: int) -> Subscription:
        """
        Register ``user_id``.

        Raises:
            ValueError: negative user_id
            DuplicateSubscription: the user already holds a subscription
        """
        if user_id < 0:
            raise ValueError(f"user_id must be non-negative, got {user_id}")

        with session_scope(self.engine) as session:
            existing = session.exec(
                select(SubscriptionRow).where(SubscriptionRow.user_id == user_id)
            ).first()
            if existing:
                raise DuplicateSubscription(user_id)

            row = SubscriptionRow(user_id=user_id, created_at=self.clock())
            session.add(row)
            try:
                # The unique constraint serializes concurrent subscribes
                session.flush()
            except IntegrityError as e:
                raise DuplicateSubscription(user_id) from e
            record = _to_record(row)

        log.info(f"[Subscriptions] User {user_id} subscribed (id={record.id})")
        return record

    def unsubscribe(self, user_id: int) -> None:
        """
        Hard-delete the user's subscription.

        Deliveries already enqueued for the user still run; the ledger keeps
        their outcome.

        Raises:
            NotFound: the user has no subscription
        """
        with session_scope(self.engine) as session:
            result = session.connection().execute(
                delete(SubscriptionRow).where(SubscriptionRow.user_id == user_id)
            )
            if result.rowcount == 0:
                raise NotFound(user_id)

        log.info(f"[Subscriptions] User {user_id} unsubscribed")

    def list_active(self) -> ActiveSubscriptions:
        """Consistent snapshot of all subscriptions, ordered by id ascending."""
        with session_scope(self.engine) as session:
            rows = session.exec(
                select(
                    SubscriptionRow.id,
                    SubscriptionRow.user_id,
                    SubscriptionRow.created_at,
                ).order_by(SubscriptionRow.id)
            ).all()
        return ActiveSubscriptions([tuple(r) for r in rows])

    def get(self, user_id: int) -> Optional[Subscription]:
        with session_scope(self.engine) as session:
            row = session.exec(
                select(SubscriptionRow).where(SubscriptionRow.user_id == user_id)
            ).first()
            return _to_record(row) if row else None

    def is_subscribed(self, user_id: int) -> bool:
        return self.get(user_id) is not None

    def count(self) -> int:
        with session_scope(self.engine) as session:
            return session.exec(select(func.count()).select_from(SubscriptionRow)).one()
