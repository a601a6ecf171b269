"""Logging helpers for the Harbor runtime."""

from __future__ import annotations

import asyncio
import json
import logging
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path
import sys
from typing import Dict, Iterable, Optional, Union

LOG_SUBPATH = Path("logs") / "sync.log"
STRUCTURED_LOG_SUBPATH = Path("logs") / "sync.jsonl"
MAX_BYTES = 5 * 1024 * 1024  # 5 MB per log segment
BACKUP_COUNT = 3
REPO_ROOT = Path(__file__).resolve().parent.parent
FALLBACK_ROOT = REPO_ROOT / ".harbor_runtime"

TEXT_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
NOISY_LOGGERS = ("websockets", "asyncio")

# Attributes sync code attaches with ``extra={...}`` so JSON lines can be
# filtered per queue item.
CONTEXT_FIELDS = ("item_id", "operation", "resource", "retry_count")


class JSONFormatter(logging.Formatter):
    """One JSON object per record, with sync context when present."""

    def format(self, record: logging.LogRecord) -> str:
        entry: Dict[str, object] = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        task = _current_task_name()
        if task:
            entry["task"] = task
        context = {name: getattr(record, name) for name in CONTEXT_FIELDS if hasattr(record, name)}
        if context:
            entry["context"] = context
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


def setup_logging(
    wallet_dir: Path,
    level: Union[str, int] = logging.WARNING,
    structured: bool = True,
    console: bool = True,
) -> Path:
    """Send ``harbor.*`` records to rotating files under ``<wallet_dir>/logs``.

    ``sync.log`` always receives plain text. With ``structured`` the same
    records also go to ``sync.jsonl``. Calling this again replaces the
    previous handlers. Returns the text log path, which may sit under
    ``FALLBACK_ROOT`` when the wallet is not writable.
    """
    logger = logging.getLogger("harbor")
    _reset_handlers(logger)
    logger.setLevel(_resolve_level(level))
    logger.propagate = False

    text_formatter = logging.Formatter(TEXT_FORMAT)
    log_path = _resolve_path(wallet_dir, LOG_SUBPATH, "logs")
    logger.addHandler(_rotating_handler(log_path, text_formatter))

    if structured:
        json_path = _resolve_path(wallet_dir, STRUCTURED_LOG_SUBPATH, "structured logs")
        logger.addHandler(_rotating_handler(json_path, JSONFormatter()))

    if console:
        stream = logging.StreamHandler()
        stream.setFormatter(text_formatter)
        logger.addHandler(stream)

    _silence_third_party()
    return log_path


def _rotating_handler(path: Path, formatter: logging.Formatter) -> RotatingFileHandler:
    handler = RotatingFileHandler(path, maxBytes=MAX_BYTES, backupCount=BACKUP_COUNT, encoding="utf-8")
    handler.setFormatter(formatter)
    return handler


def _resolve_level(level: Union[str, int]) -> int:
    if isinstance(level, int):
        return level
    resolved = logging.getLevelName(level.upper())
    return resolved if isinstance(resolved, int) else logging.WARNING


def _resolve_path(wallet_dir: Path, subpath: Path, label: str) -> Path:
    primary = wallet_dir / subpath
    try:
        primary.parent.mkdir(parents=True, exist_ok=True)
    except PermissionError:
        fallback = FALLBACK_ROOT / subpath
        fallback.parent.mkdir(parents=True, exist_ok=True)
        print(
            f"[config] Cannot write {label} under '{wallet_dir}'; using '{fallback.parent}'.",
            file=sys.stderr,
        )
        return fallback
    return primary


def _current_task_name() -> Optional[str]:
    try:
        task = asyncio.current_task()
    except RuntimeError:
        return None
    return task.get_name() if task is not None else None


def _reset_handlers(logger: logging.Logger) -> None:
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()


def _silence_third_party(names: Iterable[str] = NOISY_LOGGERS) -> None:
    # websockets logs every frame at DEBUG and every reconnect at INFO.
    for name in names:
        logging.getLogger(name).setLevel(logging.WARNING)


__all__ = [
    "CONTEXT_FIELDS",
    "FALLBACK_ROOT",
    "JSONFormatter",
    "LOG_SUBPATH",
    "STRUCTURED_LOG_SUBPATH",
    "setup_logging",
]
