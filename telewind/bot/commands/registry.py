import logging
from typing import Dict, List, Optional, Type

from telewind.bot.commands.base import CommandHandler

log = logging.getLogger(__name__)


class CommandRegistry:
    def __init__(self):
        self._handlers: Dict[str, CommandHandler] = {}

    def register(self, handler: CommandHandler):
        for trigger in handler.triggers:
            if trigger in self._handlers:
                log.warning(
                    f"[Bot] Command '{trigger}' is already registered to {self._handlers[trigger]}. "
                    f"Overwriting with {handler}."
                )
            self._handlers[trigger] = handler

    def get_handler(self, command: str) -> Optional[CommandHandler]:
        return self._handlers.get(command)

    def get_all_handlers(self) -> List[CommandHandler]:
        seen = []
        for handler in self._handlers.values():
            if handler not in seen:
                seen.append(handler)
        return seen


# Global registry instance
registry = CommandRegistry()


def register_command(cls: Type[CommandHandler]):
    """Decorator to register a command handler"""
    registry.register(cls())
    return cls
