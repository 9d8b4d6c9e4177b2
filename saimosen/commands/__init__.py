"""Control command execution."""
from __future__ import annotations

from .executor import CommandError, CommandResult, execute_command, prepare_writes

__all__ = ["CommandError", "CommandResult", "execute_command", "prepare_writes"]
