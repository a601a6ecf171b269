"""Slash command for the offline sync engine."""

from __future__ import annotations

from typing import List

from rich.console import Console
from rich.table import Table

from ..slash_commands import (
    SlashCommand,
    SlashCommandContext,
    format_timestamp,
    render_rich,
)
from ..sync import SyncResult


async def _handler(context: SlashCommandContext, args: List[str]) -> str:
    """Inspect and drive synchronization."""

    if not args:
        return _show_status(context)

    subcommand = args[0].lower()

    if subcommand == "status":
        return _show_status(context)
    elif subcommand == "run":
        result = await context.orchestrator.sync()
        return _format_result(result)
    elif subcommand == "force":
        result = await context.orchestrator.sync(force=True)
        return _format_result(result)
    elif subcommand == "retry":
        result = await context.orchestrator.retry_failed_items()
        return _format_result(result)
    elif subcommand == "help":
        return _show_help()
    else:
        return f"[sync] Unknown subcommand '{subcommand}'. Use /sync help for usage."


def _show_status(context: SlashCommandContext) -> str:
    """Show sync status."""
    orchestrator = context.orchestrator
    status = orchestrator.get_status()
    settings = orchestrator.settings

    def _render(console: Console) -> None:
        table = Table(title="Sync Status", show_header=False)
        table.add_column("Property", style="bold")
        table.add_column("Value")

        table.add_row("Network", "[green]online[/green]" if status.is_online else "[red]offline[/red]")
        table.add_row("Sync Running", str(status.is_sync_running))
        table.add_row("Pending", str(status.pending_count))
        table.add_row(
            "Failed",
            f"[red]{status.failed_count}[/red]" if status.failed_count else "0",
        )
        table.add_row("Last Sync", format_timestamp(status.last_sync_at))
        table.add_row("Realtime", "connected" if status.realtime_connected else "disconnected")
        table.add_row("Server URL", settings.server_url or "(not configured)")
        table.add_row("Auto Sync", f"every {settings.interval_minutes:g} min" if settings.auto_sync else "off")
        table.add_row("Conflict Strategy", settings.conflict_strategy)

        console.print(table)

    return render_rich(_render)


def _format_result(result: SyncResult) -> str:
    if not result.success:
        lines = [f"[sync] Sync failed: {result.message}"]
    else:
        lines = [f"[sync] Sync completed: {result.message}"]
    for error in result.errors:
        lines.append(f"  ! {error}")
    return "\n".join(lines)


def _show_help() -> str:
    """Show sync command help."""
    return """[sync] Usage:
  /sync              Show sync status
  /sync status       Show sync status
  /sync run          Replay queued operations now
  /sync force        Wait for a running sync, then replay
  /sync retry        Reset failed items and replay them
  /sync help         Show this help

Configuration (in wallet config):
  sync:
    server_url: https://wallet.example.com/api
    auto_sync: true
    interval_minutes: 5
    conflict_strategy: local_wins  # local_wins, remote_wins, merge, manual
    retry_delay: 1  # seconds, doubled per failed attempt
  realtime:
    url: wss://wallet.example.com/ws"""


COMMAND = SlashCommand(
    name="sync",
    description="Inspect and run synchronization. Usage: /sync [status|run|force|retry]",
    handler=_handler,
    requires_sync=True,
)
