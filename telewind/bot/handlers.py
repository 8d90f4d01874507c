"""
BotHandler - routes private chat messages to registered commands.
"""
import logging
from typing import Optional

from telewind.bot.commands import CommandContext, CommandRegistry, registry as default_registry
from telewind.errors import StorageUnavailable
from telewind.subscription.service import SubscriptionStore

log = logging.getLogger(__name__)


def extract_command(message: str) -> str:
    """
    Return the lower-cased command word of a message.

    ``/subscribe@telewind_bot`` is normalised to ``/subscribe``; anything
    after the first word is ignored.
    """
    parts = message.split(maxsplit=1)
    if not parts:
        return ""
    return parts[0].split("@", 1)[0].lower()


class BotHandler:
    def __init__(self, store: SubscriptionStore, registry: Optional[CommandRegistry] = None):
        self.store = store
        self.registry = registry or default_registry

    async def handle_message(self, chat_id: int, text: str, chat_type: str = "private") -> Optional[str]:
        """Return the reply for a message, or None when it is not for us."""
        if chat_type != "private" or not text:
            return None

        command = extract_command(text)
        handler = self.registry.get_handler(command)
        if handler is None:
            return None

        ctx = CommandContext(
            chat_id=chat_id,
            command=command,
            store=self.store,
            registry=self.registry,
        )
        try:
            return await handler.handle(ctx)
        except StorageUnavailable as e:
            log.error(f"[Bot] Storage unavailable while handling {command} for {chat_id}: {e}")
            return "Something went wrong, please try again later"
