# harbor/app.py
"""
Operator console for the Harbor sync engine.

Loads configuration, starts the engine in the background and reads slash
commands until the operator quits. Queued work keeps draining while the
prompt waits for input.
"""

from __future__ import annotations

import asyncio
import logging
import os
from pathlib import Path
try:
    import readline
except ImportError:  # pragma: no cover
    readline = None
from typing import Optional

from rich.console import Console
from rich.table import Table
from rich.text import Text

from .commands import COMMANDS
from .configuration import (
    ConfigurationBundle,
    Diagnostic,
    load_runtime_configuration,
    resolve_wallet_dir,
)
from .logging_utils import setup_logging
from .slash_commands import CommandRouter
from .sync import Notification, SyncOrchestrator, build_orchestrator

REPO_ROOT = Path(__file__).resolve().parent.parent
EXIT_WORDS = {"quit", "exit", "/quit", "/exit"}
logger = logging.getLogger("harbor")

_NOTIFICATION_STYLES = {
    "error": "bold red",
    "warning": "yellow",
    "success": "green",
    "info": "cyan",
}
_DIAGNOSTIC_STYLES = {"error": "red", "warning": "yellow", "info": "dim"}


class ConsoleNotifier:
    """Prints sync notifications above the prompt."""

    def __init__(self, console: Console):
        self.console = console

    def __call__(self, notification: Notification) -> None:
        style = _NOTIFICATION_STYLES.get(notification.type, "cyan")
        self.console.print(Text(f"[{notification.title}] {notification.message}", style=style))
        logger.info("Notification (%s): %s", notification.type, notification.title)


def build_router(
    config: ConfigurationBundle,
    orchestrator: Optional[SyncOrchestrator] = None,
) -> CommandRouter:
    router = CommandRouter(config, orchestrator=orchestrator, metadata={"repo_root": str(REPO_ROOT)})
    router.register_all(COMMANDS)
    return router


def emit_configuration_report(config: ConfigurationBundle, console: Console) -> None:
    """Summarise what was loaded, or list diagnostics worth fixing."""

    if not config.diagnostics:
        console.print(f"[config] Loaded {len(config.files_loaded)} file(s) for wallet {config.wallet_dir}.", markup=False)
        return

    table = Table(title=f"Configuration diagnostics ({config.status})", show_header=True)
    table.add_column("Level", no_wrap=True)
    table.add_column("Message")
    table.add_column("Source", style="dim")
    for diag in config.diagnostics:
        table.add_row(
            Text(diag.level.upper(), style=_DIAGNOSTIC_STYLES.get(diag.level, "")),
            Text(diag.message),
            str(diag.source or config.wallet_dir),
        )
    console.print(table)


def configure_autocomplete(router: CommandRouter) -> None:
    """Tab-complete ``/commands`` at the start of the prompt."""

    if readline is None:
        return

    def completer(text: str, state: int) -> Optional[str]:
        if not readline.get_line_buffer().startswith("/"):
            return None
        matches = router.complete(text)
        return matches[state] if state < len(matches) else None

    readline.set_completer(completer)
    readline.set_completer_delims(" \t")
    readline.parse_and_bind("tab: complete")


def prepare_configuration(wallet_dir: Optional[Path] = None) -> ConfigurationBundle:
    """Create the wallet directory if needed, then load configuration and logging."""

    wallet = wallet_dir or resolve_wallet_dir()
    try:
        wallet.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        print(f"[config] Unable to create wallet directory '{wallet}': {e}")

    bundle = load_runtime_configuration(wallet)
    logging_cfg = bundle.merged.get("logging") or {}
    level = os.environ.get("HARBOR_LOG_LEVEL") or logging_cfg.get("level") or "WARNING"
    bundle.log_path = setup_logging(
        bundle.wallet_dir,
        level.upper(),
        structured=bool(logging_cfg.get("structured", True)),
        # The prompt owns the terminal; notifications reach it via ConsoleNotifier.
        console=False,
    )
    if not bundle.log_path.is_relative_to(bundle.wallet_dir):
        bundle.diagnostics.append(
            Diagnostic(
                level="warning",
                message=f"Wallet log directory is not writable; logging to '{bundle.log_path}'.",
                source=bundle.log_path,
            )
        )
    logger.info("Logging to %s", bundle.log_path)
    return bundle


async def run_console(config_bundle: ConfigurationBundle, console: Console) -> None:
    """Start the engine and serve the prompt until quit or EOF."""

    orchestrator = build_orchestrator(
        config_bundle.merged,
        config_bundle.wallet_dir,
        notifier=ConsoleNotifier(console),
    )
    router = build_router(config_bundle, orchestrator)
    configure_autocomplete(router)

    await orchestrator.start()
    console.print(Text(f"[Harbor] wallet at {config_bundle.wallet_dir}", style="bold cyan"))
    try:
        while True:
            try:
                line = (await asyncio.to_thread(input, "> ")).strip()
            except (EOFError, KeyboardInterrupt):
                console.print("\n[Exiting Harbor]", markup=False)
                break

            if not line:
                continue
            if line.lower() in EXIT_WORDS:
                console.print("[Goodbye]", markup=False)
                break

            output = await router.dispatch_line(line)
            if output is None:
                console.print("[harbor] Commands start with '/'. Try /help.", markup=False)
                continue
            logger.info("Executed console command: %s", line)
            # Command output is pre-rendered ANSI; print it untouched.
            print(output)
    finally:
        await orchestrator.cleanup()


def main() -> None:
    """Entry point for the ``harbor`` console script."""

    console = Console()
    config_bundle = prepare_configuration()
    emit_configuration_report(config_bundle, console)
    try:
        asyncio.run(run_console(config_bundle, console))
    except KeyboardInterrupt:
        console.print("\n[Exiting Harbor]", markup=False)


if __name__ == "__main__":
    main()
