"""
Delivery worker pool.

Workers poll the ledger for claimable entries, race on the atomic claim,
send through the delivery channel and record the outcome. Delivery errors
never leave this module.
"""
import asyncio
import logging
import math
import os
import socket
from dataclasses import dataclass, field
from typing import List, Optional

from telewind.db.connection import session_scope
from telewind.db.models import DeliveryState, ErrorLog
from telewind.errors import (
    LeaseExpired,
    NotFound,
    PermanentDeliveryError,
    TransientDeliveryError,
)
from telewind.ledger.models import Claim, DeliveryAttempt
from telewind.ledger.service import DeliveryLedger
from telewind.notification.channel import DeliveryChannel
from telewind.subscription.service import SubscriptionStore

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class RetryPolicy:
    """Exponential backoff, bounded by ``max_retries`` transient failures."""

    max_retries: int = 3
    base_backoff: float = 5.0
    max_backoff: float = 300.0

    def backoff(self, attempt: int) -> float:
        delay = self.base_backoff * (1 << max(0, attempt - 1))
        return min(self.max_backoff, delay)

    def exhausted(self, attempt: int) -> bool:
        return attempt >= self.max_retries


@dataclass(frozen=True)
class WorkerSettings:
    retry: RetryPolicy = field(default_factory=RetryPolicy)
    # Must exceed send_timeout, otherwise a slow send can be reclaimed mid-flight
    lease_seconds: int = 60
    send_timeout: float = 10.0
    poll_interval: float = 1.0
    batch_size: int = 25
    auto_unsubscribe: bool = True

    @classmethod
    def from_config(cls, cfg) -> "WorkerSettings":
        return cls(
            retry=RetryPolicy(
                max_retries=cfg.MAX_RETRIES,
                base_backoff=cfg.BASE_BACKOFF_SECONDS,
                max_backoff=cfg.MAX_BACKOFF_SECONDS,
            ),
            lease_seconds=cfg.LEASE_SECONDS,
            send_timeout=cfg.SEND_TIMEOUT_SECONDS,
            poll_interval=cfg.WORKER_POLL_SECONDS,
            batch_size=cfg.WORKER_BATCH_SIZE,
            auto_unsubscribe=cfg.AUTO_UNSUBSCRIBE_ON_ABANDON,
        )


class DeliveryWorker:
    def __init__(
        self,
        worker_id: str,
        ledger: DeliveryLedger,
        channel: DeliveryChannel,
        store: SubscriptionStore,
        settings: Optional[WorkerSettings] = None,
    ):
        self.worker_id = worker_id
        self.ledger = ledger
        self.channel = channel
        self.store = store
        self.settings = settings or WorkerSettings()

    async def _run(self, func, *args):
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, func, *args)

    async def process(self, entry: DeliveryAttempt) -> Optional[DeliveryState]:
        """
        Claim and deliver one entry.

        Returns the state recorded, or None when the entry could not be
        claimed (another worker has it, it is not due yet, or it is done).
        """
        claim = await self._run(
            self.ledger.claim,
            entry.event_key,
            entry.subscription_id,
            self.worker_id,
            self.settings.lease_seconds,
        )
        if claim is None:
            return None

        try:
            return await self._deliver(claim)
        except LeaseExpired as e:
            log.warning(f"[Worker {self.worker_id}] {e}; dropping task")
            return None
        except asyncio.CancelledError:
            await self._run(self.ledger.release, claim)
            raise

    async def _deliver(self, claim: Claim) -> DeliveryState:
        event = await self._run(self.ledger.get_event, claim.event_key)
        if event is None:
            return await self._abandon(claim, "event payload missing", permanent=False)

        try:
            await asyncio.wait_for(
                self.channel.send(claim.user_id, event.payload),
                timeout=self.settings.send_timeout,
            )
        except PermanentDeliveryError as e:
            log.warning(f"[Worker {self.worker_id}] Permanent failure for user {claim.user_id}: {e}")
            return await self._abandon(claim, str(e), permanent=True)
        except TransientDeliveryError as e:
            return await self._retry_later(claim, str(e))
        except asyncio.TimeoutError:
            return await self._retry_later(claim, f"send timed out after {self.settings.send_timeout}s")
        except Exception as e:
            # Unclassified channel errors are retried like transient ones
            log.exception(f"[Worker {self.worker_id}] Unexpected channel error for user {claim.user_id}")
            return await self._retry_later(claim, f"{type(e).__name__}: {e}")

        # The message is out; a crash before this write means one resend on recovery
        await self._run(self.ledger.mark_sent, claim)
        log.info(f"[Worker {self.worker_id}] Delivered {claim.event_key} to user {claim.user_id}")
        return DeliveryState.SENT

    async def _retry_later(self, claim: Claim, error: str) -> DeliveryState:
        policy = self.settings.retry
        attempt = claim.retry_count + 1
        give_up = policy.exhausted(attempt)
        next_attempt_at = self.ledger.clock() + math.ceil(policy.backoff(attempt))

        state = await self._run(self.ledger.mark_failed, claim, error, next_attempt_at, give_up)
        if give_up:
            log.error(
                f"[Worker {self.worker_id}] Giving up on {claim.event_key} for user {claim.user_id} "
                f"after {attempt} attempts: {error}"
            )
            await self._run(self._record_abandonment, claim, f"retries exhausted: {error}")
        else:
            log.warning(
                f"[Worker {self.worker_id}] Delivery to user {claim.user_id} failed "
                f"(attempt {attempt}/{policy.max_retries}), retry at {next_attempt_at}: {error}"
            )
        return state

    async def _abandon(self, claim: Claim, reason: str, permanent: bool) -> DeliveryState:
        await self._run(self.ledger.mark_abandoned, claim, reason)
        await self._run(self._record_abandonment, claim, reason)
        if permanent and self.settings.auto_unsubscribe:
            await self._run(self._auto_unsubscribe, claim)
        return DeliveryState.ABANDONED

    def _record_abandonment(self, claim: Claim, reason: str):
        with session_scope(self.ledger.engine) as session:
            session.add(
                ErrorLog(
                    scope="delivery",
                    code="abandoned",
                    message=reason[:500],
                    context={
                        "event_key": claim.event_key,
                        "subscription_id": claim.subscription_id,
                        "user_id": claim.user_id,
                        "worker_id": self.worker_id,
                        "retry_count": claim.retry_count,
                    },
                )
            )

    def _auto_unsubscribe(self, claim: Claim):
        current = self.store.get(claim.user_id)
        # Leave a newer subscription of the same user alone
        if current is None or current.id != claim.subscription_id:
            return
        try:
            self.store.unsubscribe(claim.user_id)
            log.info(f"[Worker {self.worker_id}] Auto-unsubscribed user {claim.user_id}")
        except NotFound:
            pass


class DeliveryWorkerPool:
    """
    Runs ``worker_count`` workers against the shared ledger.

    Usage:
        pool = DeliveryWorkerPool(ledger, channel, store, settings, worker_count=4)
        await pool.recover()
        pool.start()
        ...
        await pool.stop()
    """

    def __init__(
        self,
        ledger: DeliveryLedger,
        channel: DeliveryChannel,
        store: SubscriptionStore,
        settings: Optional[WorkerSettings] = None,
        worker_count: int = 4,
    ):
        self.ledger = ledger
        self.settings = settings or WorkerSettings()
        prefix = f"{socket.gethostname()}:{os.getpid()}"
        self.workers: List[DeliveryWorker] = [
            DeliveryWorker(f"{prefix}:{i}", ledger, channel, store, self.settings)
            for i in range(max(1, worker_count))
        ]
        self._tasks: List[asyncio.Task] = []
        self._shutdown: Optional[asyncio.Event] = None
        self._wakeup: Optional[asyncio.Event] = None

    @property
    def running(self) -> bool:
        return bool(self._tasks)

    async def recover(self) -> List[DeliveryAttempt]:
        """Log the unfinished entries left by a previous run; the workers resume them."""
        loop = asyncio.get_running_loop()
        pending = await loop.run_in_executor(None, self.ledger.scan_pending)
        if pending:
            log.info(f"[Worker] Recovering {len(pending)} unfinished deliveries")
        self.wake()
        return pending

    async def run_once(self, worker: Optional[DeliveryWorker] = None) -> int:
        """One claim-and-deliver sweep. Returns the number of entries processed."""
        worker = worker or self.workers[0]
        loop = asyncio.get_running_loop()
        entries = await loop.run_in_executor(None, self.ledger.claimable, self.settings.batch_size)
        processed = 0
        for entry in entries:
            if self._shutdown is not None and self._shutdown.is_set():
                break
            if await worker.process(entry) is not None:
                processed += 1
        return processed

    async def drain(self) -> int:
        """Sweep with every worker concurrently until nothing is claimable right now."""
        total = 0
        while True:
            counts = await asyncio.gather(*(self.run_once(w) for w in self.workers))
            if sum(counts) == 0:
                return total
            total += sum(counts)

    def start(self):
        if self._tasks:
            return
        self._shutdown = asyncio.Event()
        self._wakeup = asyncio.Event()
        self._tasks = [
            asyncio.create_task(self._worker_loop(w), name=f"delivery-worker-{i}")
            for i, w in enumerate(self.workers)
        ]
        log.info(f"[Worker] Started {len(self._tasks)} delivery workers")

    def wake(self):
        if self._wakeup is not None:
            self._wakeup.set()

    async def stop(self):
        if not self._tasks:
            return
        self._shutdown.set()
        self.wake()
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []
        log.info("[Worker] Delivery workers stopped")

    async def _worker_loop(self, worker: DeliveryWorker):
        while not self._shutdown.is_set():
            try:
                processed = await self.run_once(worker)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                log.error(f"[Worker {worker.worker_id}] Sweep failed: {e}", exc_info=True)
                processed = 0
            if processed == 0:
                await self._idle()

    async def _idle(self):
        try:
            await asyncio.wait_for(self._wakeup.wait(), timeout=self.settings.poll_interval)
        except asyncio.TimeoutError:
            pass
        self._wakeup.clear()
