"""Durable, ordered store of pending mutations."""

from __future__ import annotations

import json
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Sequence, Union

from .errors import PersistenceError
from .models import (
    MAX_RETRIES,
    OperationKind,
    Payload,
    Priority,
    QueueItem,
    ResourceKind,
    coerce_payload,
    generate_item_id,
)
from .storage import KeyValueStore

logger = logging.getLogger("harbor.sync.queue")

QUEUE_KEY = "offline_queue"
DEFAULT_RETRY_DELAY = 1.0  # seconds; doubled after each failed replay
LAST_SYNC_KEY = "last_sync_at"

QueueListener = Callable[["QueueSnapshot"], None]


@dataclass
class QueueSnapshot:
    """Ordered copy of the queue plus derived counters."""

    items: List[QueueItem] = field(default_factory=list)
    pending_count: int = 0
    failed_count: int = 0

    @property
    def total(self) -> int:
        return len(self.items)


class OperationQueue:
    """Owns queue item lifetime and persists every mutation."""

    def __init__(
        self,
        store: KeyValueStore,
        clock: Callable[[], float] = time.time,
        retry_delay: float = DEFAULT_RETRY_DELAY,
    ):
        self._store = store
        self._clock = clock
        self.retry_delay = retry_delay
        self._items: List[QueueItem] = []
        self._listeners: List[QueueListener] = []
        self._last_sync_at: Optional[float] = None
        self._dirty = False
        self._restore()

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def enqueue(
        self,
        operation: Union[OperationKind, str],
        resource: Union[ResourceKind, str],
        payload: Union[Payload, Mapping[str, Any]],
        priority: Union[Priority, str] = Priority.MEDIUM,
        dependencies: Optional[Sequence[str]] = None,
    ) -> str:
        """Append a new item and return its id.

        ``dependencies`` names queued items that must replay first.
        """
        operation = OperationKind(operation)
        resource = ResourceKind.parse(resource) if isinstance(resource, str) else resource
        item = QueueItem(
            id=self._new_id(),
            operation=operation,
            resource=resource,
            payload=coerce_payload(resource, operation, payload),
            enqueued_at=self._clock(),
            priority=Priority(priority),
            dependencies=list(dependencies or ()),
        )
        self._items.append(item)
        logger.info("Queued %s (%s)", item.label, item.id)
        self._changed()
        return item.id

    def enqueue_many(self, entries: Iterable[Mapping[str, Any]]) -> List[str]:
        """Queue several operations; each entry has operation, resource, payload,
        and optionally priority and dependencies."""
        return [
            self.enqueue(
                entry["operation"],
                entry["resource"],
                entry["payload"],
                entry.get("priority", Priority.MEDIUM),
                entry.get("dependencies"),
            )
            for entry in entries
        ]

    def dequeue(self, item_id: str) -> None:
        """Remove an item after a successful replay or a manual discard."""
        before = len(self._items)
        self._items = [item for item in self._items if item.id != item_id]
        if len(self._items) != before:
            self._changed()

    def discard(self, item_ids: Sequence[str]) -> int:
        """Manually discard items; returns how many were removed."""
        wanted = set(item_ids)
        kept = [item for item in self._items if item.id not in wanted]
        removed = len(self._items) - len(kept)
        if removed:
            self._items = kept
            logger.info("Discarded %d queued item(s)", removed)
            self._changed()
        return removed

    def mark_retried(self, item_id: str, error: str) -> int:
        """Increment the retry counter, record the error and back off.

        The next attempt waits ``retry_delay * 2 ** retry_count`` seconds,
        counted before the increment.
        """
        item = self.get(item_id)
        if item is None:
            return 0
        item.next_attempt_at = self._clock() + self.retry_delay * 2 ** item.retry_count
        item.retry_count += 1
        item.last_error = error
        self._changed()
        return item.retry_count

    def mark_failed(self, item_id: str, reason: str) -> None:
        """Park an item at the failure threshold until a human acts on it."""
        item = self.get(item_id)
        if item is None:
            return
        item.retry_count = max(item.retry_count, MAX_RETRIES)
        item.last_error = reason
        item.next_attempt_at = None
        self._changed()

    def reset_retries(self, item_ids: Sequence[str]) -> int:
        wanted = set(item_ids)
        reset = 0
        for item in self._items:
            if item.id in wanted:
                item.retry_count = 0
                item.last_error = None
                item.next_attempt_at = None
                reset += 1
        if reset:
            self._changed()
        return reset

    def set_priority(self, item_id: str, priority: Union[Priority, str]) -> None:
        item = self.get(item_id)
        if item is None:
            return
        item.priority = Priority(priority)
        self._changed()

    def clear(self) -> None:
        self._items = []
        self._changed()

    def record_sync(self, timestamp: Optional[float] = None) -> None:
        self._last_sync_at = self._clock() if timestamp is None else timestamp
        if not self._store.set(LAST_SYNC_KEY, self._last_sync_at):
            logger.warning("Unable to persist last sync timestamp")

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    @property
    def last_sync_at(self) -> Optional[float]:
        return self._last_sync_at

    def now(self) -> float:
        return self._clock()

    def get(self, item_id: str) -> Optional[QueueItem]:
        for item in self._items:
            if item.id == item_id:
                return item
        return None

    def items(self) -> List[QueueItem]:
        return list(self._items)

    def pending_dependencies(self, item: QueueItem) -> List[str]:
        """Dependency ids of ``item`` that are still queued."""
        queued = {queued.id for queued in self._items}
        return [dep for dep in item.dependencies if dep in queued]

    def failed_items(self) -> List[QueueItem]:
        return [item for item in self._items if item.is_failed]

    def __len__(self) -> int:
        return len(self._items)

    def snapshot(self) -> QueueSnapshot:
        failed = sum(1 for item in self._items if item.is_failed)
        return QueueSnapshot(
            items=list(self._items),
            pending_count=len(self._items) - failed,
            failed_count=failed,
        )

    def stats(self) -> Dict[str, Any]:
        by_priority: Dict[str, int] = {}
        by_resource: Dict[str, int] = {}
        for item in self._items:
            by_priority[item.priority.value] = by_priority.get(item.priority.value, 0) + 1
            by_resource[item.resource.value] = by_resource.get(item.resource.value, 0) + 1
        snapshot = self.snapshot()
        return {
            "total": snapshot.total,
            "pending": snapshot.pending_count,
            "failed": snapshot.failed_count,
            "by_priority": by_priority,
            "by_resource": by_resource,
        }

    def export_failed(self) -> str:
        """Serialize failed items so they can be inspected outside the app."""
        return json.dumps([item.to_dict() for item in self.failed_items()], indent=2)

    # ------------------------------------------------------------------
    # Subscriptions and persistence
    # ------------------------------------------------------------------

    def subscribe(self, listener: QueueListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    @property
    def dirty(self) -> bool:
        return self._dirty

    @property
    def is_clean(self) -> bool:
        return not self._dirty

    def flush(self) -> None:
        """Write the queue, raising ``PersistenceError`` if storage refuses."""
        if not self._persist():
            raise PersistenceError("Unable to write the offline queue to durable storage")

    def _persist(self) -> bool:
        ok = self._store.set(QUEUE_KEY, [item.to_dict() for item in self._items])
        self._dirty = not ok
        if not ok:
            logger.warning("Offline queue not persisted; %d item(s) only in memory", len(self._items))
        return ok

    def _changed(self) -> None:
        self._persist()
        snapshot = self.snapshot()
        for listener in list(self._listeners):
            try:
                listener(snapshot)
            except Exception:
                logger.exception("Queue listener failed")

    def _restore(self) -> None:
        raw = self._store.get(QUEUE_KEY)
        if isinstance(raw, list):
            for entry in raw:
                try:
                    self._items.append(QueueItem.from_dict(entry))
                except (KeyError, TypeError, ValueError) as e:
                    logger.error("Dropping unreadable queue entry %r: %s", entry, e)
            if self._items:
                logger.info("Restored %d item(s) from persistent storage", len(self._items))
        last_sync = self._store.get(LAST_SYNC_KEY)
        if isinstance(last_sync, (int, float)):
            self._last_sync_at = float(last_sync)

    def _new_id(self) -> str:
        existing = {item.id for item in self._items}
        item_id = generate_item_id()
        while item_id in existing:
            item_id = generate_item_id()
        return item_id


__all__ = ["OperationQueue", "QueueSnapshot", "QUEUE_KEY", "LAST_SYNC_KEY", "DEFAULT_RETRY_DELAY"]
