"""Slash command for inspecting and resolving queued operations."""

from __future__ import annotations

from datetime import datetime
from pathlib import Path
from typing import List, Sequence

from rich.console import Console
from rich.table import Table

from ..slash_commands import (
    SlashCommand,
    SlashCommandContext,
    format_timestamp,
    render_rich,
)
from ..sync import QueueItem


async def _handler(context: SlashCommandContext, args: List[str]) -> str:
    """Inspect the offline queue."""

    queue = context.orchestrator.queue

    if not args:
        return _render_items("Offline Queue", queue.items())

    subcommand = args[0].lower()

    if subcommand == "list":
        return _render_items("Offline Queue", queue.items())
    elif subcommand == "failed":
        return _render_items("Failed Operations", queue.failed_items())
    elif subcommand == "discard":
        return _discard(context, args[1:])
    elif subcommand == "export":
        return _export(context, args[1:])
    elif subcommand == "stats":
        return _show_stats(context)
    elif subcommand == "help":
        return _show_help()
    else:
        return f"[queue] Unknown subcommand '{subcommand}'. Use /queue help for usage."


def _render_items(title: str, items: Sequence[QueueItem]) -> str:
    if not items:
        return f"[queue] {title}: nothing queued."

    def _render(console: Console) -> None:
        table = Table(title=f"{title} ({len(items)})", show_header=True, header_style="bold cyan")
        table.add_column("ID", style="dim", no_wrap=True)
        table.add_column("Operation", style="green")
        table.add_column("Priority")
        table.add_column("Queued")
        table.add_column("Retries", justify="right")
        table.add_column("Last Error")

        for item in items:
            retries = f"[red]{item.retry_count}[/red]" if item.is_failed else str(item.retry_count)
            table.add_row(
                item.id,
                item.label,
                item.priority.value,
                format_timestamp(item.enqueued_at),
                retries,
                item.last_error or "",
            )
        console.print(table)

    return render_rich(_render)


def _discard(context: SlashCommandContext, ids: List[str]) -> str:
    if not ids:
        return "[queue] Usage: /queue discard <id> [<id> ...]"
    removed = context.orchestrator.discard_items(ids)
    missing = len(set(ids)) - removed
    message = f"[queue] Discarded {removed} item(s)."
    if missing > 0:
        message += f" {missing} id(s) were not in the queue."
    return message


def _export(context: SlashCommandContext, args: List[str]) -> str:
    queue = context.orchestrator.queue
    if not queue.failed_items():
        return "[queue] No failed items to export."

    wallet_dir = context.config.wallet_dir
    if args:
        output_path = Path(args[0])
    else:
        timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
        output_path = Path("exports") / f"failed_queue_{timestamp}.json"
    if not output_path.is_absolute():
        output_path = wallet_dir / output_path

    try:
        output_path.parent.mkdir(parents=True, exist_ok=True)
        output_path.write_text(queue.export_failed(), encoding="utf-8")
    except OSError as e:
        return f"[queue] Failed to write export: {e}"

    return f"[queue] Exported {len(queue.failed_items())} failed item(s) to {output_path}"


def _show_stats(context: SlashCommandContext) -> str:
    stats = context.orchestrator.queue.stats()

    def _render(console: Console) -> None:
        table = Table(title="Queue Statistics", show_header=False)
        table.add_column("Metric", style="bold")
        table.add_column("Value")
        table.add_row("Total", str(stats["total"]))
        table.add_row("Pending", str(stats["pending"]))
        table.add_row("Failed", str(stats["failed"]))
        for priority, count in sorted(stats["by_priority"].items()):
            table.add_row(f"Priority: {priority}", str(count))
        for resource, count in sorted(stats["by_resource"].items()):
            table.add_row(f"Resource: {resource}", str(count))
        console.print(table)

    return render_rich(_render)


def _show_help() -> str:
    return """[queue] Usage:
  /queue                     List queued operations
  /queue list                List queued operations
  /queue failed              List operations that exhausted their retries
  /queue discard <id> ...    Drop operations without replaying them
  /queue export [path]       Write failed operations to a JSON file
  /queue stats               Show counts by priority and resource
  /queue help                Show this help"""


COMMAND = SlashCommand(
    name="queue",
    description="Inspect the offline queue. Usage: /queue [list|failed|discard|export|stats]",
    handler=_handler,
    requires_sync=True,
)
