"""Drains the offline queue against the resource APIs."""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from .conflict import ConflictResolver, Resolution, ResolutionAction
from .errors import ConflictError
from .handlers import OperationDispatcher
from .models import (
    MAX_RETRIES,
    Notification,
    Payload,
    QueueItem,
    SyncResult,
    coerce_payload,
)
from .network import NetworkMonitor
from .notifications import Notifier, log_notification
from .queue import OperationQueue

logger = logging.getLogger("harbor.sync.processor")


class QueueProcessor:
    """Replays queued items one at a time in enqueue order."""

    def __init__(
        self,
        queue: OperationQueue,
        dispatcher: OperationDispatcher,
        network: NetworkMonitor,
        resolver: Optional[ConflictResolver] = None,
        notifier: Notifier = log_notification,
        honor_priority: bool = False,
    ):
        self.queue = queue
        self.dispatcher = dispatcher
        self.network = network
        self.resolver = resolver or ConflictResolver()
        self.notifier = notifier
        self.honor_priority = honor_priority
        self._running = False
        self._stop_requested = False

    @property
    def is_running(self) -> bool:
        return self._running

    def request_stop(self) -> None:
        """Let the current item finish, then stop the drain."""
        if self._running:
            self._stop_requested = True

    async def drain(self, include_failed: bool = False) -> SyncResult:
        """Replay eligible items.

        Raises ``PersistenceError`` when the queue cannot be written; every
        other failure is recorded per item in the returned result.
        """
        if not self.network.is_online:
            logger.debug("Skipping drain while offline")
            return SyncResult(success=False, message="offline", errors=["Network is offline"])

        if self._running:
            return SyncResult(
                success=False,
                message="busy",
                errors=["Drain already in progress"],
            )

        self._running = True
        self._stop_requested = False
        try:
            return await self._drain(include_failed)
        finally:
            self._running = False
            self._stop_requested = False

    async def _drain(self, include_failed: bool) -> SyncResult:
        self._checkpoint()
        candidates = self._select(include_failed)
        result = SyncResult(success=True)
        logger.info("Syncing %d item(s)", len(candidates))

        for item in candidates:
            if self._stop_requested:
                logger.info("Drain stopped before %s (%s)", item.label, item.id)
                break
            if not self.network.is_online:
                logger.info("Network went offline; leaving remaining items queued")
                break
            if self.queue.get(item.id) is None:
                # Discarded while the drain was running.
                continue
            waiting = self.queue.pending_dependencies(item)
            if waiting:
                logger.info(
                    "Holding %s (%s) until %s replay",
                    item.label,
                    item.id,
                    ", ".join(waiting),
                    extra=_log_context(item),
                )
                continue
            await self._process(item, result)
            self._checkpoint()

        self.queue.record_sync()
        result.message = result.summary()
        logger.info("Sync pass finished: %s", result.message)
        return result

    def _select(self, include_failed: bool) -> List[QueueItem]:
        now = self.queue.now()
        items = [
            item
            for item in self.queue.items()
            if item.retry_count < MAX_RETRIES and item.is_due(now)
        ]
        if not include_failed:
            # Previously failed items only replay on an explicit retry.
            items = [item for item in items if item.retry_count == 0]
        # sorted() is stable, so equal timestamps keep enqueue order.
        if self.honor_priority:
            return sorted(items, key=lambda item: (item.priority.rank, item.enqueued_at))
        return sorted(items, key=lambda item: item.enqueued_at)

    async def _process(self, item: QueueItem, result: SyncResult) -> None:
        try:
            await self.dispatcher.dispatch(item)
        except ConflictError as e:
            result.conflicts += 1
            result.errors.append(f"{item.label}: {e.message}")
            await self._handle_conflict(item, e, result)
            return
        except Exception as e:
            result.failed_items += 1
            result.errors.append(f"{item.label}: {_message(e)}")
            self._record_failure(item, _message(e))
            return

        self.queue.dequeue(item.id)
        result.synced_items += 1

    async def _handle_conflict(
        self, item: QueueItem, error: ConflictError, result: SyncResult
    ) -> None:
        resolution = self.resolver.resolve(item, error)

        if resolution.action is ResolutionAction.ACCEPT_REMOTE:
            self.queue.dequeue(item.id)
            result.errors.append(f"{item.label}: discarded local change ({resolution.message})")
            logger.info("Accepted remote state for %s (%s)", item.label, item.id)
            return

        if resolution.action is ResolutionAction.MANUAL:
            self._escalate(item, resolution.message or error.message)
            return

        payload: Optional[Payload] = None
        if resolution.action is ResolutionAction.MERGED:
            try:
                payload = coerce_payload(item.resource, item.operation, resolution.payload or {})
            except (KeyError, TypeError, ValueError) as e:
                self._escalate(item, f"Merged payload rejected: {e}")
                return

        await self._replay(item, payload, resolution, result)

    async def _replay(
        self,
        item: QueueItem,
        payload: Optional[Payload],
        resolution: Resolution,
        result: SyncResult,
    ) -> None:
        try:
            await self.dispatcher.dispatch(item, payload)
        except ConflictError as e:
            self._escalate(item, f"Conflict persisted after {resolution.action.value}: {e.message}")
            return
        except Exception as e:
            result.errors.append(f"{item.label}: {_message(e)}")
            self._record_failure(item, _message(e))
            return

        self.queue.dequeue(item.id)
        result.synced_items += 1
        logger.info("Resolved conflict on %s (%s) via %s", item.label, item.id, resolution.action.value)

    def _record_failure(self, item: QueueItem, message: str) -> None:
        retries = self.queue.mark_retried(item.id, message)
        logger.warning(
            "Replay of %s (%s) failed [%d/%d]: %s",
            item.label,
            item.id,
            retries,
            MAX_RETRIES,
            message,
            extra={**_log_context(item), "retry_count": retries},
        )
        if retries >= MAX_RETRIES:
            self.notifier(
                Notification(
                    type="error",
                    title="Offline Operation Failed",
                    message=f"{item.label} operation failed after {retries} attempts.",
                )
            )

    def _escalate(self, item: QueueItem, reason: str) -> None:
        self.queue.mark_failed(item.id, reason)
        logger.warning(
            "Conflict on %s (%s) needs manual resolution: %s",
            item.label,
            item.id,
            reason,
            extra=_log_context(item),
        )
        self.notifier(
            Notification(
                type="warning",
                title="Sync Conflict Needs Attention",
                message=f"{item.label} could not be reconciled automatically: {reason}",
            )
        )

    def _checkpoint(self) -> None:
        if self.queue.dirty:
            self.queue.flush()


def _message(error: BaseException) -> str:
    return getattr(error, "message", None) or str(error) or error.__class__.__name__


def _log_context(item: QueueItem) -> Dict[str, Any]:
    return {"item_id": item.id, "operation": item.operation.value, "resource": item.resource.value}


__all__ = ["QueueProcessor"]
