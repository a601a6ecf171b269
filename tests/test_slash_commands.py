"""Unit tests for slash command registry."""

from __future__ import annotations

import asyncio
from pathlib import Path

from harbor.configuration import ConfigurationBundle
from harbor.slash_commands import (
    CommandRouter,
    SlashCommand,
    SlashCommandContext,
    format_timestamp,
    render_help_table,
    render_rich,
)


async def _empty(context: SlashCommandContext, args: list[str]) -> str:
    return ""


def test_router_handles_registered_command(tmp_path: Path):
    config = ConfigurationBundle(wallet_dir=tmp_path, status="ready")
    router = CommandRouter(config)
    captured = {}

    async def handler(context: SlashCommandContext, args: list[str]) -> str:
        captured["context"] = context
        return f"echo:{' '.join(args)}"

    router.register(SlashCommand(name="Echo", description="Echo args", handler=handler))
    result = asyncio.run(router.handle("echo", ["hello", "world"]))

    assert result == "echo:hello world"
    assert captured["context"].config is config
    assert "echo" in router.command_names
    assert router.get("ECHO") is not None


def test_dispatch_line_parses_arguments(tmp_path: Path):
    router = CommandRouter(ConfigurationBundle(wallet_dir=tmp_path, status="ready"))

    async def handler(context: SlashCommandContext, args: list[str]) -> str:
        return ",".join(args)

    router.register(SlashCommand(name="args", description="Echo", handler=handler))

    assert asyncio.run(router.dispatch_line("  /args one  two ")) == "one,two"
    assert asyncio.run(router.dispatch_line("hello")) is None
    assert asyncio.run(router.dispatch_line("/")) is None


def test_dispatch_line_honours_quotes(tmp_path: Path):
    router = CommandRouter(ConfigurationBundle(wallet_dir=tmp_path, status="ready"))

    async def handler(context: SlashCommandContext, args: list[str]) -> str:
        return "|".join(args)

    router.register(SlashCommand(name="export", description="Export", handler=handler))

    assert asyncio.run(router.dispatch_line('/export "my reports/failed.json"')) == "my reports/failed.json"
    assert asyncio.run(router.dispatch_line('/export "unterminated')).startswith("[router] Could not parse")


def test_complete_matches_prefixes(tmp_path: Path):
    router = CommandRouter(ConfigurationBundle(wallet_dir=tmp_path, status="ready"))
    for name in ("sync", "status", "queue"):
        router.register(SlashCommand(name=name, description=name, handler=_empty))

    assert router.complete("/s") == ["/status", "/sync"]
    assert router.complete("q") == ["/queue"]
    assert router.complete("/x") == []


def test_unknown_command_points_to_help(tmp_path: Path):
    router = CommandRouter(ConfigurationBundle(wallet_dir=tmp_path, status="ready"))

    result = asyncio.run(router.handle("nope", []))

    assert result == "[router] Unknown command '/nope'. Use /help for a list."


def test_requires_sync_guard(tmp_path: Path):
    router = CommandRouter(ConfigurationBundle(wallet_dir=tmp_path, status="ready"))
    router.register(
        SlashCommand(
            name="needs_sync",
            description="Needs the engine",
            handler=_empty,
            requires_sync=True,
        )
    )

    result = asyncio.run(router.handle("needs_sync", []))

    assert "requires the sync engine" in result


def test_render_help_table_lists_commands(tmp_path: Path):
    config = ConfigurationBundle(wallet_dir=tmp_path, status="ready")
    router = CommandRouter(config)
    router.register(SlashCommand(name="status", description="Show status", handler=_empty))
    router.register(SlashCommand(name="help", description="Show help", handler=_empty))

    output = render_help_table(router.commands())

    assert "/status" in output
    assert "Show status" in output


def test_render_rich_produces_ansi():
    def _render(console):
        console.print("hello", style="bold red")

    ansi = render_rich(_render)

    assert "\x1b[" in ansi  # contains ANSI escape sequence


def test_format_timestamp_handles_never():
    assert format_timestamp(None) == "(never)"
    assert format_timestamp(0.0).count(":") == 2
