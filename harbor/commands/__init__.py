"""Slash command registry."""

from __future__ import annotations

from .help import COMMAND as HELP_COMMAND
from .queue import COMMAND as QUEUE_COMMAND
from .sync import COMMAND as SYNC_COMMAND

COMMANDS = [
    HELP_COMMAND,
    QUEUE_COMMAND,
    SYNC_COMMAND,
]

__all__ = ["COMMANDS"]
