"""Conflict resolution strategies for queue replay."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional

from .errors import ConflictError
from .models import ConflictRecord, Payload, QueueItem

logger = logging.getLogger("harbor.sync.conflict")


class ConflictStrategy(str, Enum):
    """Strategies for resolving sync conflicts."""
    LOCAL_WINS = "local_wins"
    REMOTE_WINS = "remote_wins"
    MERGE = "merge"
    MANUAL = "manual"


class ResolutionAction(str, Enum):
    """What the processor does with a conflicted item."""
    REPLAY_LOCAL = "replay_local"
    ACCEPT_REMOTE = "accept_remote"
    MERGED = "merged"
    MANUAL = "manual"


@dataclass
class Resolution:
    """Result of conflict resolution."""

    action: ResolutionAction
    payload: Optional[Payload] = None  # Only for MERGED
    record: Optional[ConflictRecord] = None
    message: str = ""


MergeFunction = Callable[[QueueItem, ConflictRecord], Optional[Payload]]


class ConflictResolver:
    """Classifies replay conflicts and picks an outcome."""

    def __init__(
        self,
        strategy: ConflictStrategy = ConflictStrategy.LOCAL_WINS,
        merge: Optional[MergeFunction] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.strategy = strategy
        self.merge = merge
        self._clock = clock

    def classify(self, item: QueueItem, error: ConflictError) -> Optional[ConflictRecord]:
        """Build a conflict record, or ``None`` when the kind is unknown."""
        if error.conflict_kind is None:
            return None
        return ConflictRecord(
            resource_id=str(getattr(item.payload, "id", "") or item.id),
            conflict_kind=error.conflict_kind,
            local_payload=item.payload.to_dict(),
            remote_payload=dict(error.remote_payload),
            detected_at=self._clock(),
        )

    def resolve(self, item: QueueItem, error: ConflictError) -> Resolution:
        """Resolve a single conflict based on the configured strategy."""
        record = self.classify(item, error)
        if record is None:
            return Resolution(
                action=ResolutionAction.MANUAL,
                message=f"Unclassified conflict: {error.message}",
            )

        if self.strategy == ConflictStrategy.LOCAL_WINS:
            resolution = Resolution(
                action=ResolutionAction.REPLAY_LOCAL,
                record=record,
                message=f"Local wins ({record.conflict_kind.value} conflict)",
            )
        elif self.strategy == ConflictStrategy.REMOTE_WINS:
            resolution = Resolution(
                action=ResolutionAction.ACCEPT_REMOTE,
                record=record,
                message=f"Remote wins ({record.conflict_kind.value} conflict)",
            )
        elif self.strategy == ConflictStrategy.MERGE:
            resolution = self._resolve_merge(item, record)
        else:  # MANUAL
            resolution = Resolution(
                action=ResolutionAction.MANUAL,
                record=record,
                message=f"Marked for manual resolution ({record.conflict_kind.value} conflict)",
            )

        logger.info("Conflict on %s (%s): %s", item.label, item.id, resolution.message)
        return resolution

    def _resolve_merge(self, item: QueueItem, record: ConflictRecord) -> Resolution:
        merged = self.merge(item, record) if self.merge else None
        if merged is None:
            return Resolution(
                action=ResolutionAction.MANUAL,
                record=record,
                message="No merge available; marked for manual resolution",
            )
        return Resolution(
            action=ResolutionAction.MERGED,
            payload=merged,
            record=record,
            message=f"Merged ({record.conflict_kind.value} conflict)",
        )


__all__ = [
    "ConflictStrategy",
    "ResolutionAction",
    "Resolution",
    "ConflictResolver",
    "MergeFunction",
]
