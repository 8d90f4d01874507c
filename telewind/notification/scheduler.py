import asyncio
import logging
from dataclasses import dataclass, field
from typing import Callable, List, Optional

from telewind.errors import StorageUnavailable
from telewind.ledger.service import DeliveryLedger
from telewind.notification.channel import Event, EventSource
from telewind.subscription.models import Subscription
from telewind.subscription.service import SubscriptionStore

log = logging.getLogger(__name__)

STORAGE_RETRY_SECONDS = 5.0


@dataclass
class DispatchResult:
    event_key: str
    skipped: bool = False
    enqueued: List[Subscription] = field(default_factory=list)

    @property
    def count(self) -> int:
        return len(self.enqueued)


class DispatchScheduler:
    """
    Fan an event out to the active subscribers.

    Single writer: one scheduler per process handles events one at a time,
    in arrival order. Work is handed off through pending ledger rows, so a
    crash after enqueue loses nothing.

    Usage:
        scheduler = DispatchScheduler(store, ledger, on_enqueued=pool.wake)
        await scheduler.dispatch(event)
    """

    def __init__(
        self,
        store: SubscriptionStore,
        ledger: DeliveryLedger,
        on_enqueued: Optional[Callable[[], None]] = None,
    ):
        self.store = store
        self.ledger = ledger
        self.on_enqueued = on_enqueued
        self._lock = asyncio.Lock()

    def on_event(self, event: Event) -> DispatchResult:
        """Synchronous fan-out. Safe to repeat for the same event key."""
        if self.ledger.is_event_complete(event.key):
            log.info(f"[Dispatch] Event {event.key} already fully processed, skipping")
            return DispatchResult(event_key=event.key, skipped=True)

        self.ledger.record_event(event)
        active = self.store.list_active()
        enqueued = self.ledger.enqueue(event.key, active)

        log.info(
            f"[Dispatch] Event {event.key}: {len(enqueued)} new deliveries "
            f"for {len(active)} active subscriptions"
        )
        return DispatchResult(event_key=event.key, enqueued=enqueued)

    async def dispatch(self, event: Event) -> DispatchResult:
        async with self._lock:
            loop = asyncio.get_running_loop()
            result = await loop.run_in_executor(None, self.on_event, event)
        if result.enqueued and self.on_enqueued:
            self.on_enqueued()
        return result

    async def run(self, source: EventSource, shutdown_event: asyncio.Event):
        """Dispatch every event the source yields until shutdown."""
        log.info("[Dispatch] Scheduler started")
        async for event in source.events():
            if shutdown_event.is_set():
                break
            while not shutdown_event.is_set():
                try:
                    await self.dispatch(event)
                    break
                except StorageUnavailable as e:
                    log.error(f"[Dispatch] Storage unavailable for {event.key}, retrying: {e}")
                    await asyncio.sleep(STORAGE_RETRY_SECONDS)
        log.info("[Dispatch] Scheduler stopped")
