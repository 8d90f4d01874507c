import asyncio
import logging
from typing import List

from telewind.bot.commands.base import CommandContext, CommandHandler
from telewind.bot.commands.registry import register_command
from telewind.errors import DuplicateSubscription, NotFound

log = logging.getLogger(__name__)


@register_command
class SubscribeCommand(CommandHandler):
    @property
    def triggers(self) -> List[str]:
        return ["/subscribe"]

    @property
    def help_text(self) -> str:
        return "/subscribe - get a message when the wind is growing up"

    async def handle(self, ctx: CommandContext) -> str:
        log.debug(f"[Bot] Subscribing {ctx.chat_id}")
        loop = asyncio.get_running_loop()
        try:
            await loop.run_in_executor(None, ctx.store.subscribe, ctx.chat_id)
        except DuplicateSubscription:
            return "You are already subscribed"
        return "You are subscribed successfully!"


@register_command
class UnsubscribeCommand(CommandHandler):
    @property
    def triggers(self) -> List[str]:
        return ["/unsubscribe"]

    @property
    def help_text(self) -> str:
        return "/unsubscribe - stop wind notifications"

    async def handle(self, ctx: CommandContext) -> str:
        log.debug(f"[Bot] Unsubscribing {ctx.chat_id}")
        loop = asyncio.get_running_loop()
        try:
            await loop.run_in_executor(None, ctx.store.unsubscribe, ctx.chat_id)
        except NotFound:
            return "You are not subscribed"
        return "You are unsubscribed"
