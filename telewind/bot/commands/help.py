from typing import List

from telewind.bot.commands.base import CommandContext, CommandHandler
from telewind.bot.commands.registry import register_command


@register_command
class HelpCommand(CommandHandler):
    @property
    def triggers(self) -> List[str]:
        return ["/help", "/start"]

    @property
    def help_text(self) -> str:
        return "/help - show this message"

    async def handle(self, ctx: CommandContext) -> str:
        lines = ["I watch the anemometer and tell you when the wind is growing up.", ""]
        for handler in ctx.registry.get_all_handlers():
            if handler.help_text:
                lines.append(handler.help_text)
        return "\n".join(lines)
