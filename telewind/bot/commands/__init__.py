from .base import CommandContext, CommandHandler
from .registry import CommandRegistry, register_command, registry

# Import submodules to trigger registration
from . import help, subscription  # noqa: F401,E402

__all__ = ["CommandContext", "CommandHandler", "CommandRegistry", "register_command", "registry"]
