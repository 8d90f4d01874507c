"""
Delivery ledger - durable state machine per (event key, subscription id).

    pending -> sent                       (terminal)
    pending -> failed(n) -> ... (retry)   (claimable again after next_attempt_at)
    pending/failed -> abandoned           (terminal)

Pending and failed rows double as the work queue. Workers take rows with
an atomic compare-and-set claim that carries a lease; a crashed worker's
row becomes claimable again once the lease expires. Entries and their
transitions are never deleted.
"""
import logging
from typing import Callable, Iterable, List, Optional

from sqlalchemy import and_, func, or_, update
from sqlalchemy.engine import Engine
from sqlmodel import Session, col, select

from telewind.db.connection import get_engine, session_scope
from telewind.db.models import (
    CLAIMABLE_STATES,
    DeliveryAttemptRow,
    DeliveryState,
    DeliveryTransitionRow,
    EventRow,
)
from telewind.errors import LeaseExpired
from telewind.ledger.models import Claim, DeliveryAttempt, DeliveryTransition
from telewind.notification.channel import Event
from telewind.subscription.models import Subscription
from telewind.utils.timezone import epoch_seconds

log = logging.getLogger(__name__)

ERROR_MAX_LENGTH = 500


def _to_attempt(row: DeliveryAttemptRow) -> DeliveryAttempt:
    return DeliveryAttempt(
        event_key=row.event_key,
        subscription_id=row.subscription_id,
        user_id=row.user_id,
        state=row.state,
        retry_count=row.retry_count,
        next_attempt_at=row.next_attempt_at,
        updated_at=row.updated_at,
        claimed_by=row.claimed_by,
        lease_expires_at=row.lease_expires_at,
        last_error=row.last_error,
    )


class DeliveryLedger:
    def __init__(self, engine: Optional[Engine] = None, clock: Callable[[], int] = epoch_seconds):
        self.engine = engine or get_engine()
        self.clock = clock

    # ------------------------------------------------------------------
    # Events
    # ------------------------------------------------------------------

    def record_event(self, event: Event) -> int:
        """Persist the event payload (idempotent). Returns its arrival sequence number."""
        with session_scope(self.engine) as session:
            row = session.exec(select(EventRow).where(EventRow.event_key == event.key)).first()
            if row:
                return row.id
            row = EventRow(event_key=event.key, payload=dict(event.payload), created_at=self.clock())
            session.add(row)
            session.flush()
            log.debug(f"[Ledger] Recorded event {event.key} (seq={row.id})")
            return row.id

    def get_event(self, event_key: str) -> Optional[Event]:
        with session_scope(self.engine) as session:
            row = session.exec(select(EventRow).where(EventRow.event_key == event_key)).first()
            if not row:
                return None
            return Event(key=row.event_key, payload=dict(row.payload or {}))

    def is_event_complete(self, event_key: str) -> bool:
        """True when the event is known and every entry reached sent or abandoned."""
        with session_scope(self.engine) as session:
            known = session.exec(select(EventRow.id).where(EventRow.event_key == event_key)).first()
            if known is None:
                return False
            open_entries = session.exec(
                select(func.count())
                .select_from(DeliveryAttemptRow)
                .where(
                    DeliveryAttemptRow.event_key == event_key,
                    col(DeliveryAttemptRow.state).in_(CLAIMABLE_STATES),
                )
            ).one()
            return open_entries == 0

    # ------------------------------------------------------------------
    # Entry creation
    # ------------------------------------------------------------------

    def entries_for_event(self, event_key: str) -> List[DeliveryAttempt]:
        with session_scope(self.engine) as session:
            rows = session.exec(
                select(DeliveryAttemptRow)
                .where(DeliveryAttemptRow.event_key == event_key)
                .order_by(DeliveryAttemptRow.subscription_id)
            ).all()
            return [_to_attempt(r) for r in rows]

    def create_pending(self, event_key: str, subscription: Subscription) -> bool:
        """Create a pending entry. Returns False when the pair already has one."""
        return bool(self.enqueue(event_key, [subscription]))

    def enqueue(self, event_key: str, subscriptions: Iterable[Subscription]) -> List[Subscription]:
        """
        Create pending entries for every subscription that has none for this event.

        Returns the subscriptions that were newly enqueued.
        """
        now = self.clock()
        created: List[Subscription] = []
        with session_scope(self.engine) as session:
            seq = session.exec(select(EventRow.id).where(EventRow.event_key == event_key)).first()
            if seq is None:
                raise KeyError(f"unknown event {event_key}; record_event first")

            existing = set(
                session.exec(
                    select(DeliveryAttemptRow.subscription_id).where(
                        DeliveryAttemptRow.event_key == event_key
                    )
                ).all()
            )
            for sub in subscriptions:
                if sub.id in existing:
                    continue
                session.add(
                    DeliveryAttemptRow(
                        event_key=event_key,
                        subscription_id=sub.id,
                        event_seq=seq,
                        user_id=sub.user_id,
                        state=DeliveryState.PENDING,
                        created_at=now,
                        updated_at=now,
                        next_attempt_at=now,
                    )
                )
                self._add_transition(session, event_key, sub.id, None, DeliveryState.PENDING, 0, None, None, now)
                existing.add(sub.id)
                created.append(sub)
        return created

    # ------------------------------------------------------------------
    # Work queue
    # ------------------------------------------------------------------

    def scan_pending(self) -> List[DeliveryAttempt]:
        """All non-terminal entries, FIFO by event arrival. Used for crash recovery."""
        with session_scope(self.engine) as session:
            rows = session.exec(
                select(DeliveryAttemptRow)
                .where(col(DeliveryAttemptRow.state).in_(CLAIMABLE_STATES))
                .order_by(DeliveryAttemptRow.event_seq, DeliveryAttemptRow.subscription_id)
            ).all()
            return [_to_attempt(r) for r in rows]

    def claimable(self, limit: int = 25) -> List[DeliveryAttempt]:
        """Entries a worker could claim right now."""
        now = self.clock()
        with session_scope(self.engine) as session:
            rows = session.exec(
                select(DeliveryAttemptRow)
                .where(self._claimable_clause(now))
                .order_by(DeliveryAttemptRow.event_seq, DeliveryAttemptRow.next_attempt_at)
                .limit(limit)
            ).all()
            return [_to_attempt(r) for r in rows]

    def claim(self, event_key: str, subscription_id: int, worker_id: str, lease_seconds: int) -> Optional[Claim]:
        """
        Atomically take ownership of an entry.

        Returns None when the entry is terminal, not yet due, or leased by
        another worker whose lease has not expired.
        """
        now = self.clock()
        with session_scope(self.engine) as session:
            result = session.connection().execute(
                update(DeliveryAttemptRow)
                .where(
                    DeliveryAttemptRow.event_key == event_key,
                    DeliveryAttemptRow.subscription_id == subscription_id,
                    self._claimable_clause(now),
                )
                .values(
                    claimed_by=worker_id,
                    lease_expires_at=now + lease_seconds,
                    version=DeliveryAttemptRow.version + 1,
                    updated_at=now,
                )
            )
            if result.rowcount != 1:
                return None

            row = session.get(DeliveryAttemptRow, (event_key, subscription_id))
            return Claim(
                event_key=row.event_key,
                subscription_id=row.subscription_id,
                user_id=row.user_id,
                worker_id=worker_id,
                version=row.version,
                retry_count=row.retry_count,
                lease_expires_at=row.lease_expires_at,
            )

    def release(self, claim: Claim) -> bool:
        """Give a claim back without changing the entry's state."""
        now = self.clock()
        with session_scope(self.engine) as session:
            result = session.connection().execute(
                update(DeliveryAttemptRow)
                .where(self._held_by(claim))
                .values(claimed_by=None, lease_expires_at=None, version=DeliveryAttemptRow.version + 1, updated_at=now)
            )
            return result.rowcount == 1

    # ------------------------------------------------------------------
    # Outcomes
    # ------------------------------------------------------------------

    def mark_sent(self, claim: Claim) -> None:
        """pending/failed -> sent. Raises LeaseExpired if the claim was lost."""
        self._finish(claim, DeliveryState.SENT, claim.retry_count, error=None, next_attempt_at=None)
        log.info(f"[Ledger] ({claim.event_key}, {claim.subscription_id}) sent")

    def mark_failed(
        self,
        claim: Claim,
        error: str,
        next_attempt_at: int,
        give_up: bool = False,
    ) -> DeliveryState:
        """
        Record a transient failure as failed(n).

        With ``give_up`` the entry then moves on to abandoned in the same
        transaction. Raises LeaseExpired if the claim was lost.
        """
        retry_count = claim.retry_count + 1
        now = self.clock()
        error = (error or "")[:ERROR_MAX_LENGTH] or None
        final_state = DeliveryState.ABANDONED if give_up else DeliveryState.FAILED

        with session_scope(self.engine) as session:
            from_state = self._update_held(
                session, claim, final_state, retry_count, error, next_attempt_at, now
            )
            self._add_transition(
                session, claim.event_key, claim.subscription_id, from_state,
                DeliveryState.FAILED, retry_count, claim.worker_id, error, now,
            )
            if give_up:
                self._add_transition(
                    session, claim.event_key, claim.subscription_id, DeliveryState.FAILED,
                    DeliveryState.ABANDONED, retry_count, claim.worker_id, "retries exhausted", now,
                )
        return final_state

    def mark_abandoned(self, claim: Claim, reason: str) -> None:
        """pending/failed -> abandoned. Raises LeaseExpired if the claim was lost."""
        self._finish(claim, DeliveryState.ABANDONED, claim.retry_count, error=reason, next_attempt_at=None)
        log.info(f"[Ledger] ({claim.event_key}, {claim.subscription_id}) abandoned: {reason}")

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get(self, event_key: str, subscription_id: int) -> Optional[DeliveryAttempt]:
        with session_scope(self.engine) as session:
            row = session.get(DeliveryAttemptRow, (event_key, subscription_id))
            return _to_attempt(row) if row else None

    def history(self, event_key: str, subscription_id: int) -> List[DeliveryTransition]:
        """Ordered state trail of one entry."""
        with session_scope(self.engine) as session:
            rows = session.exec(
                select(DeliveryTransitionRow)
                .where(
                    DeliveryTransitionRow.event_key == event_key,
                    DeliveryTransitionRow.subscription_id == subscription_id,
                )
                .order_by(DeliveryTransitionRow.id)
            ).all()
            return [
                DeliveryTransition(
                    from_state=r.from_state,
                    to_state=r.to_state,
                    retry_count=r.retry_count,
                    worker_id=r.worker_id,
                    note=r.note,
                    created_at=r.created_at,
                )
                for r in rows
            ]

    def count_sent(self, event_key: str, subscription_id: int) -> int:
        with session_scope(self.engine) as session:
            return session.exec(
                select(func.count())
                .select_from(DeliveryTransitionRow)
                .where(
                    DeliveryTransitionRow.event_key == event_key,
                    DeliveryTransitionRow.subscription_id == subscription_id,
                    DeliveryTransitionRow.to_state == DeliveryState.SENT,
                )
            ).one()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    @staticmethod
    def _claimable_clause(now: int):
        return and_(
            col(DeliveryAttemptRow.state).in_(CLAIMABLE_STATES),
            DeliveryAttemptRow.next_attempt_at <= now,
            or_(
                col(DeliveryAttemptRow.claimed_by).is_(None),
                col(DeliveryAttemptRow.lease_expires_at) <= now,
            ),
        )

    @staticmethod
    def _held_by(claim: Claim):
        return and_(
            DeliveryAttemptRow.event_key == claim.event_key,
            DeliveryAttemptRow.subscription_id == claim.subscription_id,
            DeliveryAttemptRow.claimed_by == claim.worker_id,
            DeliveryAttemptRow.version == claim.version,
            col(DeliveryAttemptRow.state).in_(CLAIMABLE_STATES),
        )

    def _finish(
        self,
        claim: Claim,
        state: DeliveryState,
        retry_count: int,
        error: Optional[str],
        next_attempt_at: Optional[int],
    ) -> None:
        now = self.clock()
        if error:
            error = error[:ERROR_MAX_LENGTH]
        with session_scope(self.engine) as session:
            from_state = self._update_held(session, claim, state, retry_count, error, next_attempt_at, now)
            self._add_transition(
                session, claim.event_key, claim.subscription_id, from_state,
                state, retry_count, claim.worker_id, error, now,
            )

    def _update_held(
        self,
        session: Session,
        claim: Claim,
        state: DeliveryState,
        retry_count: int,
        error: Optional[str],
        next_attempt_at: Optional[int],
        now: int,
    ) -> DeliveryState:
        """Compare-and-set the entry held by ``claim``; returns the state it left."""
        row = session.get(DeliveryAttemptRow, (claim.event_key, claim.subscription_id))
        from_state = row.state if row else None

        values = dict(
            state=state,
            retry_count=retry_count,
            claimed_by=None,
            lease_expires_at=None,
            version=DeliveryAttemptRow.version + 1,
            updated_at=now,
        )
        if error is not None:
            values["last_error"] = error
        if next_attempt_at is not None:
            values["next_attempt_at"] = next_attempt_at

        result = session.connection().execute(
            update(DeliveryAttemptRow).where(self._held_by(claim)).values(**values)
        )
        if result.rowcount != 1:
            raise LeaseExpired(claim.event_key, claim.subscription_id, claim.worker_id)
        return from_state

    @staticmethod
    def _add_transition(
        session: Session,
        event_key: str,
        subscription_id: int,
        from_state: Optional[DeliveryState],
        to_state: DeliveryState,
        retry_count: int,
        worker_id: Optional[str],
        note: Optional[str],
        now: int,
    ) -> None:
        session.add(
            DeliveryTransitionRow(
                event_key=event_key,
                subscription_id=subscription_id,
                from_state=from_state,
                to_state=to_state,
                retry_count=retry_count,
                worker_id=worker_id,
                note=note,
                created_at=now,
            )
        )
