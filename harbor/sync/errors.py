"""Error taxonomy for the sync engine."""

from __future__ import annotations

from typing import Any, Dict, Optional

from .models import ConflictKind


class RemoteOperationError(Exception):
    """A resource API call failed."""

    def __init__(
        self,
        message: str,
        *,
        status: Optional[int] = None,
        remote_payload: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.status = status
        self.remote_payload = remote_payload or {}


class TransientError(RemoteOperationError):
    """Network or server hiccup; the replay may succeed on retry."""


class ConflictError(RemoteOperationError):
    """Local and server state diverged.

    ``conflict_kind`` is ``None`` when the server signalled a conflict
    without saying what kind; such conflicts go to manual resolution.
    """

    def __init__(
        self,
        message: str,
        *,
        conflict_kind: Optional[ConflictKind] = None,
        status: Optional[int] = None,
        remote_payload: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message, status=status, remote_payload=remote_payload)
        self.conflict_kind = conflict_kind


class PersistenceError(Exception):
    """The queue could not be written to durable storage."""


__all__ = [
    "RemoteOperationError",
    "TransientError",
    "ConflictError",
    "PersistenceError",
]
