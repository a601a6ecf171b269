"""Tests for logging utilities."""

from __future__ import annotations

import asyncio
import json
import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path

from harbor import logging_utils


def _reset_logger() -> logging.Logger:
    logger = logging.getLogger("harbor")
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()
    logger.setLevel(logging.NOTSET)
    logger.propagate = True
    return logger


def test_setup_logging_creates_rotating_files(tmp_path: Path):
    logger = _reset_logger()
    log_path = logging_utils.setup_logging(tmp_path, level="INFO", console=False)

    assert log_path == tmp_path / "logs" / "sync.log"
    assert log_path.exists()
    assert (tmp_path / "logs" / "sync.jsonl").exists()

    file_handlers = [
        handler for handler in logger.handlers if isinstance(handler, RotatingFileHandler)
    ]
    assert len(file_handlers) == 2
    assert file_handlers[0].baseFilename == str(log_path)
    assert logger.level == logging.INFO
    assert logging.getLogger("websockets").level == logging.WARNING


def test_setup_logging_is_idempotent(tmp_path: Path):
    logger = _reset_logger()
    logging_utils.setup_logging(tmp_path, level="INFO")
    handler_count = len(logger.handlers)

    logging_utils.setup_logging(tmp_path, level="INFO")
    assert len(logger.handlers) == handler_count


def _json_entries(wallet_dir: Path, logger: logging.Logger) -> list:
    for handler in logger.handlers:
        handler.flush()
    lines = (wallet_dir / "logs" / "sync.jsonl").read_text(encoding="utf-8").splitlines()
    return [json.loads(line) for line in lines]


def test_structured_log_carries_sync_context(tmp_path: Path):
    logger = _reset_logger()
    logging_utils.setup_logging(tmp_path, level="DEBUG", console=False)

    logging.getLogger("harbor.sync.processor").warning(
        "Replay of %s failed",
        "verify credential",
        extra={"item_id": "queue_1_ab", "resource": "credential", "retry_count": 2},
    )

    entry = _json_entries(tmp_path, logger)[-1]
    assert entry["logger"] == "harbor.sync.processor"
    assert entry["message"] == "Replay of verify credential failed"
    assert entry["context"] == {"item_id": "queue_1_ab", "resource": "credential", "retry_count": 2}
    assert "task" not in entry


def test_structured_log_names_the_asyncio_task(tmp_path: Path):
    logger = _reset_logger()
    logging_utils.setup_logging(tmp_path, level="INFO", console=False)

    async def _log():
        logging.getLogger("harbor.sync").info("inside the loop")

    async def scenario():
        await asyncio.create_task(_log(), name="auto-sync")

    asyncio.run(scenario())

    entry = _json_entries(tmp_path, logger)[-1]
    assert entry["task"] == "auto-sync"
    assert "context" not in entry


def test_unknown_level_name_defaults_to_warning(tmp_path: Path):
    logger = _reset_logger()
    logging_utils.setup_logging(tmp_path, level="chatty", console=False)

    assert logger.level == logging.WARNING


def test_unstructured_logging_skips_json_file(tmp_path: Path):
    logger = _reset_logger()
    logging_utils.setup_logging(tmp_path, level="WARNING", structured=False, console=False)

    assert len(logger.handlers) == 1
    assert not (tmp_path / "logs" / "sync.jsonl").exists()


def test_setup_logging_falls_back_when_permission_denied(tmp_path: Path, monkeypatch):
    _reset_logger()
    wallet_dir = tmp_path / "wallet"
    primary_parent = wallet_dir / "logs"
    original_mkdir = Path.mkdir

    def fake_mkdir(self, *args, **kwargs):
        if str(self).startswith(str(primary_parent)):
            raise PermissionError
        return original_mkdir(self, *args, **kwargs)

    monkeypatch.setattr(Path, "mkdir", fake_mkdir)
    fallback_root = tmp_path / "fallback"
    monkeypatch.setattr(logging_utils, "FALLBACK_ROOT", fallback_root)

    log_path = logging_utils.setup_logging(wallet_dir, level="INFO", console=False)
    expected = fallback_root / "logs" / "sync.log"

    assert log_path == expected
    assert expected.exists()
