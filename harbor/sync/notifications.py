"""Notification sinks for user-facing sync events."""

from __future__ import annotations

import logging
from typing import Callable

from .models import Notification

logger = logging.getLogger("harbor.sync.notifications")

Notifier = Callable[[Notification], None]

_LEVELS = {
    "error": logging.ERROR,
    "warning": logging.WARNING,
    "success": logging.INFO,
    "info": logging.INFO,
}


def log_notification(notification: Notification) -> None:
    """Default sink: write the notification to the log."""
    level = _LEVELS.get(notification.type, logging.INFO)
    logger.log(level, "%s: %s", notification.title, notification.message)


__all__ = ["Notifier", "log_notification"]
