import asyncio
import logging
from typing import Any, Dict, List, Optional

from sqlalchemy.engine import Engine

from telewind.bot.handlers import BotHandler
from telewind.bot.telegram import TelegramChannel, TelegramClient
from telewind.config import ServiceConfig, config as default_config
from telewind.db.init import init_db
from telewind.errors import DeliveryError
from telewind.ledger.service import DeliveryLedger
from telewind.notification.scheduler import DispatchScheduler
from telewind.notification.worker import DeliveryWorkerPool, WorkerSettings
from telewind.subscription.service import SubscriptionStore
from telewind.wind.source import ObservationPoller, WindEventSource
from telewind.wind.tracker import Sector, WindTracker

log = logging.getLogger(__name__)

RESTART_DELAY_SECONDS = 30
UPDATES_RETRY_SECONDS = 5


class BotService:
    """
    Host process wiring: Telegram commands, wind events, dispatch and delivery.

    Usage:
        service = BotService(config)
        await service.run()
    """

    def __init__(
        self,
        cfg: ServiceConfig = default_config,
        engine: Optional[Engine] = None,
        client: Optional[TelegramClient] = None,
        poller: Optional[ObservationPoller] = None,
    ):
        self.cfg = cfg
        self.engine = engine or init_db(cfg.DB_PATH)
        self.store = SubscriptionStore(self.engine)
        self.ledger = DeliveryLedger(self.engine)

        self.client = client or TelegramClient(cfg.TELEGRAM_BOT_TOKEN)
        self.channel = TelegramChannel(self.client)
        self.pool = DeliveryWorkerPool(
            self.ledger,
            self.channel,
            self.store,
            WorkerSettings.from_config(cfg),
            worker_count=cfg.WORKER_COUNT,
        )
        self.scheduler = DispatchScheduler(self.store, self.ledger, on_enqueued=self.pool.wake)
        self.handler = BotHandler(self.store)

        tracker = WindTracker(
            sector=Sector.named(cfg.WIND_SECTOR),
            candidate_steps=cfg.CANDIDATE_STEPS,
            cooldown_steps=cfg.COOLDOWN_STEPS,
            speed_threshold=cfg.SPEED_THRESHOLD,
        )
        self.poller = poller or ObservationPoller(cfg.ANEMOMETER_URL, cfg.POLL_INTERVAL_SECONDS)
        self.source = WindEventSource(self.poller, tracker)

        self._shutdown: Optional[asyncio.Event] = None
        self._tasks: List[asyncio.Task] = []

    async def run(self):
        log.info("[Bot] Starting telewind service...")
        self._shutdown = asyncio.Event()

        await self.pool.recover()
        self.pool.start()
        self._tasks = [
            asyncio.create_task(self._event_loop(), name="parse and notify loop"),
            asyncio.create_task(self._updates_loop(), name="subscription loop"),
        ]
        try:
            await self._shutdown.wait()
        finally:
            await self._teardown()

    async def stop(self):
        if self._shutdown is not None:
            self._shutdown.set()

    async def _teardown(self):
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []
        await self.pool.stop()
        await self.poller.close()
        await self.client.close()
        log.info("[Bot] Service stopped")

    async def _event_loop(self):
        while not self._shutdown.is_set():
            try:
                await self.scheduler.run(self.source, self._shutdown)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                log.error(f"[Bot] Event loop failed, restarting in {RESTART_DELAY_SECONDS}s: {e}", exc_info=True)
                await asyncio.sleep(RESTART_DELAY_SECONDS)

    async def _updates_loop(self):
        offset: Optional[int] = None
        while not self._shutdown.is_set():
            try:
                updates = await self.client.get_updates(offset)
            except asyncio.CancelledError:
                raise
            except DeliveryError as e:
                log.warning(f"[Bot] getUpdates failed: {e}")
                await asyncio.sleep(UPDATES_RETRY_SECONDS)
                continue
            except Exception as e:
                log.error(f"[Bot] getUpdates crashed, retrying in {UPDATES_RETRY_SECONDS}s: {e}", exc_info=True)
                await asyncio.sleep(UPDATES_RETRY_SECONDS)
                continue

            for update in updates:
                if isinstance(update.get("update_id"), int):
                    offset = update["update_id"] + 1
                try:
                    await self.handle_update(update)
                except Exception as e:
                    log.error(f"[Bot] Failed to handle update {update.get('update_id')}: {e}", exc_info=True)

    async def handle_update(self, update: Dict[str, Any]):
        message = update.get("message") or {}
        chat = message.get("chat") or {}
        text = message.get("text")
        if not text or "id" not in chat:
            return

        reply = await self.handler.handle_message(chat["id"], text, chat.get("type", ""))
        if reply:
            try:
                await self.client.send_message(chat["id"], reply)
            except DeliveryError as e:
                log.warning(f"[Bot] Could not reply to {chat['id']}: {e}")
