"""Realtime push channel for server-initiated updates and sync requests."""

from __future__ import annotations

import asyncio
import logging
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Mapping, Optional, Set, Union

import websockets

from .handlers import EntityCache
from .models import Notification, RealtimeMessage, ResourceKind
from .network import NetworkMonitor
from .notifications import Notifier, log_notification

logger = logging.getLogger("harbor.sync.realtime")

DEFAULT_RECONNECT_DELAY = 5.0
DEFAULT_HEARTBEAT_INTERVAL = 30.0

Connector = Callable[[str], Awaitable[Any]]
MessageHandler = Callable[[RealtimeMessage], Any]
SyncTrigger = Callable[[], Awaitable[Any]]

SYNC_REQUEST_TYPES = {"sync_required", "sync_requested"}
_ENTITY_ACTIONS = {"created", "updated", "deleted"}


class ChannelState(str, Enum):
    """Lifecycle states of the realtime connection."""
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


async def websocket_connect(url: str) -> Any:
    """Open a websocket; the library answers server pings on its own."""
    return await websockets.connect(
        url,
        ping_interval=DEFAULT_HEARTBEAT_INTERVAL,
        ping_timeout=10.0,
    )


class RealtimeChannel:
    """Long-lived push connection that reconnects while the network is up."""

    def __init__(
        self,
        url: str = "",
        *,
        connector: Optional[Connector] = websocket_connect,
        cache: Optional[EntityCache] = None,
        notifier: Notifier = log_notification,
        network: Optional[NetworkMonitor] = None,
        on_sync_requested: Optional[SyncTrigger] = None,
        reconnect_delay: float = DEFAULT_RECONNECT_DELAY,
        enabled: bool = True,
    ):
        self.url = url
        self.enabled = enabled
        self.cache = cache
        self.notifier = notifier
        self.network = network
        self.on_sync_requested = on_sync_requested
        self.reconnect_delay = reconnect_delay
        self._connector = connector
        self._state = ChannelState.DISCONNECTED
        self._connection: Optional[Any] = None
        self._task: Optional[asyncio.Task] = None
        self._closing = False
        self._connected_event = asyncio.Event()
        self._handlers: Dict[str, MessageHandler] = {}
        self._background: Set[asyncio.Task] = set()

    @property
    def state(self) -> ChannelState:
        return self._state

    @property
    def connected(self) -> bool:
        return self._state is ChannelState.CONNECTED

    @property
    def supported(self) -> bool:
        return self.enabled and bool(self.url) and self._connector is not None

    def register_handler(self, message_type: str, handler: MessageHandler) -> None:
        """Handle a custom message type not covered by the built-ins."""
        self._handlers[message_type] = handler

    async def connect(self) -> bool:
        """Start the connection loop; returns False when realtime is unavailable."""
        if not self.supported:
            logger.info("Realtime sync unavailable (disabled, no URL, or no transport)")
            return False
        if self._task is not None and not self._task.done():
            return True
        self._closing = False
        self._task = asyncio.create_task(self._run())
        return True

    async def wait_connected(self, timeout: float) -> bool:
        try:
            await asyncio.wait_for(self._connected_event.wait(), timeout)
        except asyncio.TimeoutError:
            return False
        return True

    async def disconnect(self) -> None:
        """Close the socket and cancel any pending reconnect. Idempotent."""
        self._closing = True
        task, self._task = self._task, None
        connection, self._connection = self._connection, None
        if connection is not None:
            try:
                await connection.close()
            except Exception as e:
                logger.debug("Error closing realtime connection: %s", e)
        if task is not None and task is not asyncio.current_task():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._set_state(ChannelState.DISCONNECTED)

    async def send(self, message: Union[RealtimeMessage, Mapping[str, Any]]) -> bool:
        """Send a message; warns and returns False when not connected."""
        connection = self._connection
        if not self.connected or connection is None:
            logger.warning("Realtime channel not connected, message not sent")
            return False
        if isinstance(message, RealtimeMessage):
            text = message.to_json()
        else:
            text = RealtimeMessage(
                type=str(message.get("type", "")),
                data=dict(message.get("data", {})),
            ).to_json()
        try:
            await connection.send(text)
        except Exception as e:
            logger.warning("Failed to send realtime message: %s", e)
            return False
        return True

    async def _run(self) -> None:
        while not self._closing:
            self._set_state(ChannelState.CONNECTING)
            try:
                connection = await self._connector(self.url)
            except Exception as e:
                logger.warning("Realtime connection to %s failed: %s", self.url, e)
            else:
                self._connection = connection
                self._set_state(ChannelState.CONNECTED)
                logger.info("Realtime connection established: %s", self.url)
                try:
                    async for raw in connection:
                        await self.handle_raw(raw)
                except Exception as e:
                    logger.warning("Realtime connection closed with error: %s", e)
                else:
                    logger.info("Realtime connection closed")
                finally:
                    self._connection = None

            self._set_state(ChannelState.DISCONNECTED)
            if self._closing:
                break
            if self.network is not None and not self.network.is_online:
                logger.info("Offline; realtime reconnect deferred until the network returns")
                break
            logger.info("Reconnecting realtime channel in %.1fs", self.reconnect_delay)
            await asyncio.sleep(self.reconnect_delay)

    async def handle_raw(self, raw: Union[str, bytes]) -> None:
        """Parse and dispatch one inbound frame; never raises."""
        try:
            message = RealtimeMessage.parse(raw)
        except ValueError as e:
            logger.warning("Dropping unparsable realtime message: %s", e)
            return
        try:
            await self.dispatch(message)
        except Exception:
            logger.exception("Realtime handler for '%s' failed", message.type)

    async def dispatch(self, message: RealtimeMessage) -> None:
        if message.type == "pong":
            return

        if message.type in SYNC_REQUEST_TYPES:
            logger.info("Server requested sync")
            if self.on_sync_requested is not None:
                task = asyncio.create_task(self.on_sync_requested())
                self._background.add(task)
                task.add_done_callback(self._background.discard)
            return

        if message.type == "notification":
            data = message.data
            self.notifier(
                Notification(
                    type=str(data.get("type", "info")),
                    title=str(data.get("title", "")),
                    message=str(data.get("message", "")),
                )
            )
            return

        if self._apply_entity_update(message):
            return

        handler = self._handlers.get(message.type)
        if handler is not None:
            outcome = handler(message)
            if asyncio.iscoroutine(outcome):
                await outcome
            return

        logger.info("Ignoring unknown realtime message type: %s", message.type)

    def _apply_entity_update(self, message: RealtimeMessage) -> bool:
        # Server-originated changes go straight to the cache, never the queue.
        resource_name, _, action = message.type.rpartition("_")
        if action not in _ENTITY_ACTIONS or not resource_name:
            return False
        try:
            resource = ResourceKind.parse(resource_name)
        except ValueError:
            return False
        if self.cache is None:
            logger.debug("No entity cache attached; dropping %s", message.type)
            return True

        entity = message.data.get("entity", message.data)
        entity_id = str(entity.get("id", ""))
        if action == "created":
            self.cache.save_entity(resource, entity)
        elif not entity_id:
            logger.warning("Realtime %s without an entity id", message.type)
            return True
        elif action == "updated":
            self.cache.update_entity(resource, entity_id, entity)
        else:
            self.cache.delete_entity(resource, entity_id)

        name = entity.get("name") or entity_id or resource.value
        self.notifier(
            Notification(
                type="info",
                title=f"{resource.value.capitalize()} {action.capitalize()}",
                message=f"{resource.value.capitalize()} \"{name}\" has been {action}.",
            )
        )
        return True

    def _set_state(self, state: ChannelState) -> None:
        self._state = state
        if state is ChannelState.CONNECTED:
            self._connected_event.set()
        else:
            self._connected_event.clear()


__all__ = ["RealtimeChannel", "ChannelState", "websocket_connect", "SYNC_REQUEST_TYPES"]
