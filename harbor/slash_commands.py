"""Slash command registry and rendering helpers for the operator console."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from io import StringIO
import shlex
import shutil
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Sequence, TYPE_CHECKING

from rich.console import Console
from rich.table import Table

from .configuration import ConfigurationBundle

if TYPE_CHECKING:
    from .sync import SyncOrchestrator

SlashCommandHandler = Callable[["SlashCommandContext", List[str]], Awaitable[str]]


@dataclass
class SlashCommandContext:
    """What a handler may touch: configuration, the router and the engine."""

    config: ConfigurationBundle
    router: "CommandRouter"
    orchestrator: Optional["SyncOrchestrator"] = None
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass
class SlashCommand:
    name: str
    description: str
    handler: SlashCommandHandler
    requires_sync: bool = False


class CommandRouter:
    """Maps ``/name`` to async handlers.

    Commands flagged ``requires_sync`` are refused with an explanation when
    the router was built without an orchestrator, so the console stays
    usable while configuration is broken.
    """

    def __init__(
        self,
        config: ConfigurationBundle,
        orchestrator: Optional["SyncOrchestrator"] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.config = config
        self.orchestrator = orchestrator
        self.metadata = metadata or {}
        self._commands: Dict[str, SlashCommand] = {}

    def register(self, command: SlashCommand) -> None:
        self._commands[command.name.lower()] = command

    def register_all(self, commands: Iterable[SlashCommand]) -> None:
        for command in commands:
            self.register(command)

    def get(self, command_name: str) -> Optional[SlashCommand]:
        return self._commands.get(command_name.lower())

    @property
    def command_names(self) -> Sequence[str]:
        return sorted(self._commands)

    def commands(self) -> Sequence[SlashCommand]:
        return [self._commands[name] for name in self.command_names]

    def complete(self, fragment: str) -> List[str]:
        """``/name`` completions for a partially typed command."""
        prefix = fragment.lstrip("/").lower()
        return [f"/{name}" for name in self.command_names if name.startswith(prefix)]

    async def handle(self, command_name: str, args: List[str]) -> str:
        command = self.get(command_name)
        if command is None:
            return f"[router] Unknown command '/{command_name}'. Use /help for a list."
        if command.requires_sync and self.orchestrator is None:
            return f"[router] '/{command_name}' requires the sync engine, which is not running."
        return await command.handler(self._context(), args)

    async def dispatch_line(self, line: str) -> Optional[str]:
        """Route a raw ``/command arg ...`` line; ``None`` for non-commands.

        Arguments follow shell quoting, so export paths may contain spaces.
        """
        stripped = line.strip()
        if not stripped.startswith("/"):
            return None
        try:
            words = shlex.split(stripped[1:])
        except ValueError as e:
            return f"[router] Could not parse command: {e}"
        if not words:
            return None
        return await self.handle(words[0], words[1:])

    def _context(self) -> SlashCommandContext:
        return SlashCommandContext(
            config=self.config,
            router=self,
            orchestrator=self.orchestrator,
            metadata=self.metadata,
        )


def render_help_table(commands: Sequence[SlashCommand]) -> str:
    def _render(console: Console) -> None:
        table = Table(title="Slash Commands", show_header=True, header_style="bold cyan")
        table.add_column("Command", style="green", no_wrap=True)
        table.add_column("Description")
        table.add_column("Engine", justify="center")
        for cmd in commands:
            table.add_row(f"/{cmd.name}", cmd.description, "yes" if cmd.requires_sync else "")
        console.print(table)

    return render_rich(_render)


def render_rich(render_fn: Callable[[Console], None]) -> str:
    """Capture Rich output as an ANSI string sized to the current terminal."""

    columns, lines = shutil.get_terminal_size(fallback=(80, 24))
    console = Console(
        record=True,
        force_terminal=True,
        color_system="auto",
        # Rich misbehaves below these sizes.
        width=max(20, columns),
        height=max(10, lines),
        file=StringIO(),
    )
    render_fn(console)
    return console.export_text(clear=False, styles=True)


def format_timestamp(value: Optional[float]) -> str:
    if value is None:
        return "(never)"
    return datetime.fromtimestamp(value).strftime("%Y-%m-%d %H:%M:%S")


__all__ = [
    "CommandRouter",
    "SlashCommand",
    "SlashCommandContext",
    "format_timestamp",
    "render_help_table",
    "render_rich",
]
