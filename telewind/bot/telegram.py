"""Minimal Telegram Bot API client and the delivery channel built on it."""
import asyncio
import logging
from typing import Any, Dict, List, Optional

import aiohttp

from telewind.errors import DeliveryError, PermanentDeliveryError, TransientDeliveryError

log = logging.getLogger(__name__)

DEFAULT_MESSAGE_MAX_LENGTH = 4000


def classify_failure(status: int, description: str = "") -> DeliveryError:
    """
    Map a failed Bot API call to a delivery error.

    Rate limits, server errors and odd non-error replies are worth
    retrying; any other 4xx (blocked by user, chat not found, user
    deactivated, bad request) will fail the same way next time.
    """
    detail = f"Telegram API error (HTTP {status}): {description or 'no description'}"
    if status == 429 or status >= 500 or status < 400:
        return TransientDeliveryError(detail)
    return PermanentDeliveryError(detail)


class TelegramClient:
    API_BASE = "https://api.telegram.org"

    def __init__(self, token: str, long_poll_timeout: int = 50):
        if not token:
            raise ValueError("Missing Telegram bot token")
        self.token = token
        self.long_poll_timeout = long_poll_timeout
        self._session: Optional[aiohttp.ClientSession] = None

    async def __aenter__(self):
        await self._ensure_session()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def _ensure_session(self):
        if self._session is None or self._session.closed:
            # Must outlive the getUpdates long poll
            timeout = aiohttp.ClientTimeout(total=self.long_poll_timeout + 20, connect=10)
            self._session = aiohttp.ClientSession(timeout=timeout)

    async def close(self):
        if self._session and not self._session.closed:
            await self._session.close()

    async def call(self, method: str, **params) -> Any:
        """Call a Bot API method. Failures raise Transient/PermanentDeliveryError."""
        await self._ensure_session()
        url = f"{self.API_BASE}/bot{self.token}/{method}"
        try:
            async with self._session.post(url, json=params) as response:
                status = response.status
                try:
                    payload = await response.json(content_type=None)
                except ValueError:
                    payload = {"ok": False, "description": (await response.text())[:200]}
        except (aiohttp.ClientError, ConnectionResetError, asyncio.TimeoutError) as e:
            raise TransientDeliveryError(f"{method} failed: {type(e).__name__}: {e}") from e

        if not isinstance(payload, dict):
            # Empty body or a bare JSON value from a proxy in front of the API
            payload = {"ok": False, "description": f"unexpected response body: {payload!r}"[:200]}
        if status >= 400 or not payload.get("ok"):
            raise classify_failure(status, payload.get("description", ""))
        return payload.get("result")

    async def send_message(self, chat_id: int, text: str) -> Dict[str, Any]:
        if len(text) > DEFAULT_MESSAGE_MAX_LENGTH:
            log.warning(f"[Bot] Message truncated from {len(text)} to {DEFAULT_MESSAGE_MAX_LENGTH} chars")
            text = text[:DEFAULT_MESSAGE_MAX_LENGTH]
        return await self.call(
            "sendMessage",
            chat_id=chat_id,
            text=text,
            disable_web_page_preview=True,
        )

    async def get_updates(self, offset: Optional[int] = None) -> List[Dict[str, Any]]:
        params: Dict[str, Any] = {"timeout": self.long_poll_timeout, "allowed_updates": ["message"]}
        if offset is not None:
            params["offset"] = offset
        return await self.call("getUpdates", **params) or []


class TelegramChannel:
    """Delivers notification payloads as direct messages; ``user_id`` is the chat id."""

    def __init__(self, client: TelegramClient):
        self.client = client

    async def send(self, user_id: int, payload: Dict[str, Any]) -> None:
        text = str(payload.get("text") or "")
        if not text.strip():
            raise PermanentDeliveryError("notification payload has no text")
        await self.client.send_message(user_id, text)
