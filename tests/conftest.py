"""Shared fakes for the sync engine tests."""

from __future__ import annotations

import asyncio
import json
import time
from types import SimpleNamespace
from typing import Any, Callable, Dict, List, Optional

import pytest

from harbor.sync import (
    ConflictResolver,
    ConflictStrategy,
    MemoryEntityCache,
    MemoryStore,
    NetworkMonitor,
    OperationDispatcher,
    OperationQueue,
    QueueProcessor,
    ResourceKind,
)


class FakeApi:
    """In-memory resource API that records calls and replays scripted outcomes."""

    def __init__(self, resource: str, log: List[tuple]):
        self.resource = resource
        self.log = log
        self.calls: List[tuple] = []
        self.delay = 0.0
        self._scripted: Dict[str, List[Any]] = {}
        self._next_id = 0

    def script(self, method: str, *outcomes: Any) -> None:
        """Queue return values or exceptions for the next calls to ``method``."""
        self._scripted.setdefault(method, []).extend(outcomes)

    async def _invoke(self, method: str, default: Any, *args: Any) -> Any:
        self.calls.append((method, *args))
        self.log.append((self.resource, method, *args))
        if self.delay:
            await asyncio.sleep(self.delay)
        pending = self._scripted.get(method)
        if pending:
            outcome = pending.pop(0)
            if isinstance(outcome, BaseException):
                raise outcome
            return outcome
        return default

    async def create(self, data):
        self._next_id += 1
        return await self._invoke("create", {**data, "id": f"srv_{self._next_id}"}, dict(data))

    async def update(self, entity_id, updates, version=None):
        return await self._invoke("update", {**updates, "id": entity_id}, entity_id, dict(updates), version)

    async def delete(self, entity_id, version=None):
        return await self._invoke("delete", None, entity_id, version)

    async def share(self, entity_id, options):
        return await self._invoke("share", {"id": entity_id, "shared": True}, entity_id, dict(options))

    async def verify(self, entity_id):
        return await self._invoke("verify", {"id": entity_id, "verified": True}, entity_id)


class FailingStore(MemoryStore):
    """MemoryStore whose writes can be switched off."""

    def __init__(self) -> None:
        super().__init__()
        self.fail_writes = False

    def set(self, key: str, value: Any) -> bool:
        if self.fail_writes:
            return False
        return super().set(key, value)


class FakeConnection:
    """Realtime connection driven by the test through ``push``/``drop``."""

    def __init__(self) -> None:
        self.sent: List[str] = []
        self.closed = False
        self._inbox: asyncio.Queue = asyncio.Queue()

    def push(self, message: Any) -> None:
        self._inbox.put_nowait(message if isinstance(message, (str, bytes)) else json.dumps(message))

    def drop(self) -> None:
        self._inbox.put_nowait(None)

    async def send(self, text: str) -> None:
        if self.closed:
            raise ConnectionError("connection closed")
        self.sent.append(text)

    async def close(self) -> None:
        if not self.closed:
            self.closed = True
            self._inbox.put_nowait(None)

    def __aiter__(self) -> "FakeConnection":
        return self

    async def __anext__(self) -> Any:
        item = await self._inbox.get()
        if item is None:
            raise StopAsyncIteration
        return item


class FakeConnector:
    """Transport factory; the first ``failures`` attempts are refused."""

    def __init__(self, failures: int = 0):
        self.failures = failures
        self.attempts = 0
        self.connections: List[FakeConnection] = []

    async def __call__(self, url: str) -> FakeConnection:
        self.attempts += 1
        if self.failures > 0:
            self.failures -= 1
            raise ConnectionRefusedError("connection refused")
        connection = FakeConnection()
        self.connections.append(connection)
        return connection


class NotificationRecorder(list):
    def __call__(self, notification) -> None:
        self.append(notification)

    def titles(self) -> List[str]:
        return [n.title for n in self]


async def _wait_until(predicate: Callable[[], bool], timeout: float = 1.0) -> bool:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            return False
        await asyncio.sleep(0.005)
    return True


@pytest.fixture
def wait_until():
    return _wait_until


@pytest.fixture
def notifications() -> NotificationRecorder:
    return NotificationRecorder()


@pytest.fixture
def api_log() -> List[tuple]:
    return []


@pytest.fixture
def fake_apis(api_log) -> Dict[ResourceKind, FakeApi]:
    return {kind: FakeApi(kind.value, api_log) for kind in ResourceKind}


@pytest.fixture
def make_connector():
    return FakeConnector


@pytest.fixture
def connector() -> FakeConnector:
    return FakeConnector()


@pytest.fixture
def failing_store() -> FailingStore:
    return FailingStore()


@pytest.fixture
def engine(fake_apis, notifications):
    """Factory wiring queue, cache, dispatcher and processor around fakes."""

    def _make(
        store: Optional[MemoryStore] = None,
        online: bool = True,
        strategy: ConflictStrategy = ConflictStrategy.LOCAL_WINS,
        merge=None,
        honor_priority: bool = False,
        clock: Callable[[], float] = time.time,
        retry_delay: float = 0.0,
    ) -> SimpleNamespace:
        store = store if store is not None else MemoryStore()
        queue = OperationQueue(store, clock=clock, retry_delay=retry_delay)
        cache = MemoryEntityCache(store)
        network = NetworkMonitor(online=online, debounce=0)
        dispatcher = OperationDispatcher(fake_apis, cache)
        resolver = ConflictResolver(strategy, merge=merge)
        processor = QueueProcessor(
            queue,
            dispatcher,
            network,
            resolver=resolver,
            notifier=notifications,
            honor_priority=honor_priority,
        )
        return SimpleNamespace(
            store=store,
            queue=queue,
            cache=cache,
            network=network,
            dispatcher=dispatcher,
            resolver=resolver,
            processor=processor,
            apis=fake_apis,
            notifications=notifications,
        )

    return _make
