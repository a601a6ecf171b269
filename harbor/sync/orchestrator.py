"""Coordinates draining, auto-sync timers, connectivity and the realtime channel."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Coroutine, Dict, List, Mapping, Optional, Sequence, Set, Union

from .conflict import ConflictResolver, ConflictStrategy, MergeFunction
from .errors import PersistenceError
from .handlers import MemoryEntityCache, OperationDispatcher, ResourceApi
from .http import DEFAULT_TIMEOUT, build_resource_apis
from .models import Notification, RealtimeMessage, ResourceKind, SyncResult, SyncStatus
from .network import InterfaceProbe, NetworkMonitor, NetworkSettings
from .notifications import Notifier, log_notification
from .processor import QueueProcessor
from .queue import DEFAULT_RETRY_DELAY, OperationQueue, QueueSnapshot
from .realtime import DEFAULT_RECONNECT_DELAY, Connector, RealtimeChannel, websocket_connect
from .storage import JsonFileStore

logger = logging.getLogger("harbor.sync.orchestrator")

StatusListener = Callable[[SyncStatus], None]

ALREADY_RUNNING = "Sync already in progress"


@dataclass
class SyncSettings:
    """Settings for the sync engine."""

    enabled: bool = True
    server_url: str = ""
    auto_sync: bool = True
    interval_minutes: float = 5.0
    conflict_strategy: str = "local_wins"
    honor_priority: bool = False
    retry_delay: float = DEFAULT_RETRY_DELAY
    request_timeout: float = DEFAULT_TIMEOUT
    auth_token_env: str = "HARBOR_API_TOKEN"
    realtime_enabled: bool = True
    realtime_url: str = ""
    reconnect_delay: float = DEFAULT_RECONNECT_DELAY
    storage_dir: str = "state"

    @classmethod
    def from_config(cls, config: Dict[str, Any]) -> "SyncSettings":
        raw = config.get("sync", {}) if config else {}
        realtime = config.get("realtime", {}) if config else {}
        storage = config.get("storage", {}) if config else {}
        return cls(
            enabled=bool(raw.get("enabled", True)),
            server_url=str(raw.get("server_url", "") or ""),
            auto_sync=bool(raw.get("auto_sync", True)),
            interval_minutes=float(raw.get("interval_minutes", 5.0)),
            conflict_strategy=str(raw.get("conflict_strategy", "local_wins")),
            honor_priority=bool(raw.get("honor_priority", False)),
            retry_delay=float(raw.get("retry_delay", DEFAULT_RETRY_DELAY)),
            request_timeout=float(raw.get("request_timeout", DEFAULT_TIMEOUT)),
            auth_token_env=str(raw.get("auth_token_env", "HARBOR_API_TOKEN") or ""),
            realtime_enabled=bool(realtime.get("enabled", True)),
            realtime_url=str(realtime.get("url", "") or ""),
            reconnect_delay=float(realtime.get("reconnect_delay", DEFAULT_RECONNECT_DELAY)),
            storage_dir=str(storage.get("directory", "state")),
        )


class SyncOrchestrator:
    """Public face of the sync engine.

    Owns the one-sync-at-a-time gate, the auto-sync timer and the reaction
    to connectivity changes. Collaborators are passed in so tests and the
    console can assemble the engine however they like.
    """

    def __init__(
        self,
        queue: OperationQueue,
        network: NetworkMonitor,
        dispatcher: OperationDispatcher,
        *,
        settings: Optional[SyncSettings] = None,
        resolver: Optional[ConflictResolver] = None,
        realtime: Optional[RealtimeChannel] = None,
        notifier: Notifier = log_notification,
    ):
        self.settings = settings or SyncSettings()
        self.queue = queue
        self.network = network
        self.dispatcher = dispatcher
        self.realtime = realtime
        self.notifier = notifier
        self.processor = QueueProcessor(
            queue,
            dispatcher,
            network,
            resolver=resolver or ConflictResolver(ConflictStrategy(self.settings.conflict_strategy)),
            notifier=notifier,
            honor_priority=self.settings.honor_priority,
        )

        self._is_syncing = False
        self._idle = asyncio.Event()
        self._idle.set()
        self._auto_task: Optional[asyncio.Task] = None
        self._background: Set[asyncio.Task] = set()
        self._status_listeners: List[StatusListener] = []

        if realtime is not None and realtime.on_sync_requested is None:
            realtime.on_sync_requested = self._on_sync_requested

        self._unsubscribers = [
            network.subscribe(self._on_network_change),
            queue.subscribe(self._on_queue_change),
        ]

    # ------------------------------------------------------------------
    # Sync runs
    # ------------------------------------------------------------------

    @property
    def is_syncing(self) -> bool:
        return self._is_syncing

    async def sync(
        self,
        force: bool = False,
        background: bool = False,
        retry_failed: bool = False,
    ) -> SyncResult:
        """Drain the queue once.

        Without ``force`` a call made while another sync runs returns
        immediately with ``success=False``. With ``force`` it waits for the
        running sync to finish and then runs its own pass.
        """
        if self._is_syncing and not force:
            logger.info(ALREADY_RUNNING)
            return SyncResult(success=False, message=ALREADY_RUNNING, errors=[ALREADY_RUNNING])

        while self._is_syncing:
            await self._idle.wait()

        self._is_syncing = True
        self._idle.clear()
        self._notify_status()
        try:
            result = await self._run(retry_failed)
        finally:
            self._is_syncing = False
            self._idle.set()
            self._notify_status()

        if background:
            logger.info("Background sync: %s", result.message)
        elif result.errors:
            self.notifier(
                Notification(
                    type="warning" if result.success else "error",
                    title="Sync Completed With Errors" if result.success else "Sync Failed",
                    message=result.message or "; ".join(result.errors),
                )
            )
        return result

    async def _run(self, retry_failed: bool) -> SyncResult:
        try:
            if retry_failed:
                reset = self.queue.reset_retries([item.id for item in self.queue.failed_items()])
                logger.info("Retrying %d failed item(s)", reset)
            return await self.processor.drain(include_failed=retry_failed)
        except PersistenceError as e:
            logger.error("Sync aborted: %s", e)
            return SyncResult(success=False, message=str(e), errors=[str(e)])
        except Exception as e:
            logger.exception("Sync failed")
            return SyncResult(success=False, message=f"Sync failed: {e}", errors=[str(e)])

    async def retry_failed_items(self) -> SyncResult:
        return await self.sync(force=True, retry_failed=True)

    def discard_items(self, item_ids: Sequence[str]) -> int:
        return self.queue.discard(item_ids)

    def stop_sync(self) -> None:
        """Stop after the in-flight item; nothing is cancelled mid-call."""
        self.processor.request_stop()

    # ------------------------------------------------------------------
    # Auto sync
    # ------------------------------------------------------------------

    def start_auto_sync(self, interval_minutes: Optional[float] = None) -> None:
        """(Re)start the periodic background sync."""
        self.stop_auto_sync()
        minutes = self.settings.interval_minutes if interval_minutes is None else interval_minutes
        if minutes <= 0:
            logger.warning("Auto-sync interval must be positive, got %s", minutes)
            return
        self._auto_task = asyncio.create_task(self._auto_sync_loop(minutes * 60.0))
        logger.info("Auto-sync every %.1f minute(s)", minutes)

    def stop_auto_sync(self) -> None:
        task, self._auto_task = self._auto_task, None
        if task is not None:
            task.cancel()
            logger.debug("Auto-sync stopped")

    @property
    def auto_sync_active(self) -> bool:
        return self._auto_task is not None and not self._auto_task.done()

    async def _auto_sync_loop(self, interval: float) -> None:
        while True:
            await asyncio.sleep(interval)
            if self.network.is_online:
                await self.sync(background=True)

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------

    def get_status(self) -> SyncStatus:
        snapshot = self.queue.snapshot()
        return SyncStatus(
            is_online=self.network.is_online,
            last_sync_at=self.queue.last_sync_at,
            pending_count=snapshot.pending_count,
            failed_count=snapshot.failed_count,
            is_sync_running=self._is_syncing,
            realtime_connected=bool(self.realtime and self.realtime.connected),
        )

    def add_status_listener(self, listener: StatusListener) -> Callable[[], None]:
        self._status_listeners.append(listener)

        def _remove() -> None:
            if listener in self._status_listeners:
                self._status_listeners.remove(listener)

        return _remove

    def _notify_status(self) -> None:
        if not self._status_listeners:
            return
        status = self.get_status()
        for listener in list(self._status_listeners):
            try:
                listener(status)
            except Exception:
                logger.exception("Status listener failed")

    def _on_queue_change(self, snapshot: QueueSnapshot) -> None:
        self._notify_status()

    # ------------------------------------------------------------------
    # Realtime
    # ------------------------------------------------------------------

    async def send_realtime_message(
        self, message: Union[RealtimeMessage, Mapping[str, Any]]
    ) -> bool:
        if self.realtime is None:
            logger.warning("Realtime channel not configured, message not sent")
            return False
        return await self.realtime.send(message)

    async def _on_sync_requested(self) -> SyncResult:
        return await self.sync(background=True)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Begin connectivity polling and, when online, the online behaviour."""
        if not self.settings.enabled:
            logger.info("Sync disabled in configuration")
            return
        await self.network.start()
        if self.network.is_online:
            await self._go_online()

    async def cleanup(self) -> None:
        """Stop timers, disconnect, unsubscribe and flush the queue."""
        self.stop_auto_sync()
        self.processor.request_stop()
        await self.network.stop()
        if self.realtime is not None:
            await self.realtime.disconnect()
        if self._background:
            await asyncio.gather(*self._background, return_exceptions=True)
        for unsubscribe in self._unsubscribers:
            unsubscribe()
        self._unsubscribers = []
        self._status_listeners = []
        if self.queue.dirty:
            self.queue.flush()
        logger.info("Sync engine stopped")

    async def _go_online(self) -> None:
        if self.settings.auto_sync:
            self.start_auto_sync()
        if self.realtime is not None:
            await self.realtime.connect()
        self._schedule(self.sync(background=True))

    async def _go_offline(self) -> None:
        self.stop_auto_sync()
        if self.realtime is not None:
            await self.realtime.disconnect()

    def _on_network_change(self, online: bool) -> None:
        self._notify_status()
        if not self.settings.enabled:
            return
        self._schedule(self._go_online() if online else self._go_offline())

    def _schedule(self, coro: Coroutine[Any, Any, Any]) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            coro.close()
            logger.debug("No running event loop; network change not acted on")
            return
        task = loop.create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)


def build_orchestrator(
    config: Dict[str, Any],
    wallet_dir: Path,
    *,
    apis: Optional[Mapping[ResourceKind, ResourceApi]] = None,
    notifier: Notifier = log_notification,
    connector: Optional[Connector] = websocket_connect,
    merge: Optional[MergeFunction] = None,
) -> SyncOrchestrator:
    """Assemble the engine from merged configuration."""
    settings = SyncSettings.from_config(config)
    network_settings = NetworkSettings.from_config(config)

    store = JsonFileStore(wallet_dir / settings.storage_dir)
    queue = OperationQueue(store, retry_delay=settings.retry_delay)
    cache = MemoryEntityCache(store)
    if apis is None:
        apis = build_resource_apis(
            settings.server_url,
            token_env=settings.auth_token_env,
            timeout=settings.request_timeout,
        )
    dispatcher = OperationDispatcher(apis, cache)

    network = NetworkMonitor(
        online=True,
        debounce=network_settings.debounce,
        probe=InterfaceProbe(network_settings),
        probe_interval=network_settings.probe_interval,
    )
    realtime = RealtimeChannel(
        settings.realtime_url,
        connector=connector,
        cache=cache,
        notifier=notifier,
        network=network,
        reconnect_delay=settings.reconnect_delay,
        enabled=settings.realtime_enabled,
    )
    resolver = ConflictResolver(ConflictStrategy(settings.conflict_strategy), merge=merge)
    return SyncOrchestrator(
        queue,
        network,
        dispatcher,
        settings=settings,
        resolver=resolver,
        realtime=realtime,
        notifier=notifier,
    )


__all__ = ["SyncOrchestrator", "SyncSettings", "build_orchestrator", "ALREADY_RUNNING"]
