"""Realtime wind observations and the event source built on them."""
import asyncio
import logging
from datetime import datetime
from typing import AsyncIterator, List, Optional

import aiohttp

from telewind.notification.channel import Event
from telewind.wind.parser import Observation, parse
from telewind.wind.tracker import WindTracker

log = logging.getLogger(__name__)


class ObservationPoller:
    """
    Poll the anemometer page and yield new observations one by one.

    On the first successful poll only the most recent observation is
    taken; afterwards every observation newer than the last one seen is
    yielded, oldest first.
    """

    DEFAULT_HEADERS = {
        "User-Agent": "telewind/0.2 (+https://t.me/)",
        "Accept": "text/html,application/xhtml+xml",
    }

    def __init__(self, url: str, interval: float = 55.0):
        self.url = url
        self.interval = interval
        self.last_seen: Optional[datetime] = None
        self._session: Optional[aiohttp.ClientSession] = None

    async def __aenter__(self):
        await self._ensure_session()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def _ensure_session(self):
        if self._session is None or self._session.closed:
            timeout = aiohttp.ClientTimeout(total=30, connect=10)
            self._session = aiohttp.ClientSession(headers=self.DEFAULT_HEADERS, timeout=timeout)

    async def close(self):
        if self._session and not self._session.closed:
            await self._session.close()

    async def _fetch_page(self) -> Optional[str]:
        """Fetch the page body. Network failures are logged and yield None."""
        await self._ensure_session()
        try:
            async with self._session.get(self.url) as response:
                if response.status != 200:
                    log.error(f"[Wind] Anemometer returned HTTP {response.status}: {self.url}")
                    return None
                return await response.text()
        except (aiohttp.ClientError, ConnectionResetError, asyncio.TimeoutError) as e:
            log.error("[Wind] Unable to read data from the anemometer. We'll keep trying...")
            log.warning(f"[Wind] {type(e).__name__}: {e}")
            await self.close()
            return None

    def select_new(self, observations: List[Observation]) -> List[Observation]:
        """Pick the observations not seen yet (oldest first) and remember the newest."""
        if not observations:
            return []
        newest_first = sorted(observations, key=lambda o: o.time, reverse=True)
        if self.last_seen is None:
            fresh = newest_first[:1]
        else:
            fresh = [o for o in newest_first if o.time > self.last_seen]
        if fresh:
            self.last_seen = fresh[0].time
        return list(reversed(fresh))

    async def poll_once(self) -> List[Observation]:
        """One fetch. Raises ObservationParseError on a malformed page."""
        body = await self._fetch_page()
        if body is None:
            return []
        return self.select_new(parse(body))

    async def observations(self) -> AsyncIterator[Observation]:
        first = True
        while True:
            if not first:
                await asyncio.sleep(self.interval)
            first = False
            for observation in await self.poll_once():
                yield observation


class WindEventSource:
    """Event source that fires when the tracked wind reaches HIGH."""

    def __init__(self, poller: ObservationPoller, tracker: WindTracker):
        self.poller = poller
        self.tracker = tracker

    @staticmethod
    def make_event(observation: Observation) -> Event:
        return Event(
            key=f"wind:{observation.time.isoformat()}",
            payload={
                "text": f"Wind is growing up: {observation}",
                "observed_at": observation.time.isoformat(),
                "avg_speed": observation.avg_speed,
                "direction": observation.direction,
            },
        )

    async def events(self) -> AsyncIterator[Event]:
        async for observation in self.poller.observations():
            fired = self.tracker.step(observation)
            log.debug(f"[Wind] Processing observation: {observation} ({self.tracker.state})")
            if fired:
                log.warning(f"[Wind] Wind is growing up: {observation}")
                yield self.make_event(observation)
