from abc import ABC, abstractmethod
from typing import Any, List, Optional


class CommandContext:
    """Command execution context"""

    def __init__(
        self,
        chat_id: int,
        command: str,
        store: Any = None,
        registry: Any = None,
    ):
        self.chat_id = chat_id
        self.command = command
        self.store = store
        self.registry = registry


class CommandHandler(ABC):
    """Abstract base class for command handlers"""

    @property
    @abstractmethod
    def triggers(self) -> List[str]:
        """List of commands that trigger this handler"""

    @abstractmethod
    async def handle(self, ctx: CommandContext) -> Optional[str]:
        """Execute the command and return the reply text"""

    @property
    def help_text(self) -> str:
        return ""
