"""Tests for the persistent operation queue."""

from __future__ import annotations

import json
import re

import pytest

from harbor.sync import (
    MAX_RETRIES,
    MemoryStore,
    OperationKind,
    OperationQueue,
    PersistenceError,
    Priority,
    ResourceKind,
    UpdatePayload,
)
from harbor.sync.queue import LAST_SYNC_KEY, QUEUE_KEY


class _Clock:
    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        self.now += 1.0
        return self.now


def test_enqueue_assigns_ids_and_persists():
    store = MemoryStore()
    queue = OperationQueue(store)

    item_id = queue.enqueue("create", "credential", {"data": {"name": "Degree"}})

    assert re.match(r"^queue_\d+_[0-9a-f]{9}$", item_id)
    stored = store.get(QUEUE_KEY)
    assert stored[0]["id"] == item_id
    assert stored[0]["operation"] == "create"
    assert stored[0]["payload"] == {"data": {"name": "Degree"}}
    assert queue.is_clean


def test_enqueue_accepts_handshake_alias_and_typed_payloads():
    queue = OperationQueue(MemoryStore())

    item_id = queue.enqueue(
        OperationKind.UPDATE,
        "handshake",
        UpdatePayload(id="conn_1", updates={"status": "accepted"}, version=2),
    )

    item = queue.get(item_id)
    assert item.resource is ResourceKind.CONNECTION
    assert item.payload.version == 2


def test_enqueue_rejects_unsupported_pairs():
    queue = OperationQueue(MemoryStore())

    with pytest.raises(ValueError):
        queue.enqueue("share", "profile", {"id": "me"})
    with pytest.raises(TypeError):
        queue.enqueue("verify", "credential", ["not", "a", "mapping"])
    assert len(queue) == 0


def test_queue_restores_items_from_store():
    store = MemoryStore()
    first = OperationQueue(store)
    first.enqueue("delete", "credential", {"id": "cred_1", "version": 4}, priority="high")
    first.record_sync(42.0)

    second = OperationQueue(store)

    assert len(second) == 1
    item = second.items()[0]
    assert item.payload.id == "cred_1"
    assert item.priority is Priority.HIGH
    assert second.last_sync_at == 42.0


def test_restore_skips_unreadable_entries():
    store = MemoryStore()
    store.set(
        QUEUE_KEY,
        [
            {"id": "broken"},
            {
                "id": "queue_1_abc",
                "operation": "verify",
                "resource": "credential",
                "payload": {"id": "cred_9"},
                "enqueued_at": 5.0,
            },
        ],
    )

    queue = OperationQueue(store)

    assert [item.id for item in queue.items()] == ["queue_1_abc"]


def test_retry_bookkeeping_and_counts():
    queue = OperationQueue(MemoryStore())
    a = queue.enqueue("verify", "credential", {"id": "a"})
    b = queue.enqueue("verify", "credential", {"id": "b"})

    for attempt in range(1, MAX_RETRIES + 1):
        assert queue.mark_retried(a, "timeout") == attempt

    snapshot = queue.snapshot()
    assert snapshot.failed_count == 1
    assert snapshot.pending_count == 1
    assert snapshot.total == 2
    assert [item.id for item in queue.failed_items()] == [a]
    assert queue.get(a).last_error == "timeout"

    assert queue.reset_retries([a, "missing"]) == 1
    assert queue.get(a).retry_count == 0
    assert queue.get(a).last_error is None
    assert queue.get(b).retry_count == 0


def test_mark_failed_parks_item_at_threshold():
    queue = OperationQueue(MemoryStore())
    item_id = queue.enqueue("update", "profile", {"id": "me", "updates": {"name": "A"}})

    queue.mark_failed(item_id, "needs review")

    item = queue.get(item_id)
    assert item.retry_count == MAX_RETRIES
    assert item.is_failed
    assert item.last_error == "needs review"


def test_mark_retried_schedules_exponential_backoff():
    queue = OperationQueue(MemoryStore(), clock=lambda: 100.0, retry_delay=1.5)
    item_id = queue.enqueue("verify", "credential", {"id": "a"})

    delays = []
    for _ in range(MAX_RETRIES):
        queue.mark_retried(item_id, "timeout")
        delays.append(queue.get(item_id).next_attempt_at - 100.0)

    assert delays == [1.5, 3.0, 6.0]
    assert not queue.get(item_id).is_due(100.0)

    queue.reset_retries([item_id])
    assert queue.get(item_id).next_attempt_at is None
    assert queue.get(item_id).is_due(100.0)


def test_dependencies_survive_restore_and_track_queued_items():
    store = MemoryStore()
    queue = OperationQueue(store)
    parent = queue.enqueue("create", "credential", {"name": "Degree"})
    child_ids = queue.enqueue_many(
        [
            {
                "operation": "share",
                "resource": "credential",
                "payload": {"id": "cred_1"},
                "dependencies": [parent, "queue_gone"],
            }
        ]
    )
    queue.mark_retried(parent, "timeout")

    restored = OperationQueue(store)
    child = restored.get(child_ids[0])
    assert child.dependencies == [parent, "queue_gone"]
    assert restored.get(parent).next_attempt_at == queue.get(parent).next_attempt_at
    assert restored.pending_dependencies(child) == [parent]

    restored.dequeue(parent)
    assert restored.pending_dependencies(child) == []


def test_discard_and_dequeue_remove_items():
    queue = OperationQueue(MemoryStore())
    ids = [queue.enqueue("verify", "credential", {"id": str(n)}) for n in range(3)]

    assert queue.discard([ids[0], ids[2], "unknown"]) == 2
    queue.dequeue(ids[1])
    queue.dequeue("unknown")

    assert len(queue) == 0


def test_enqueue_many_preserves_order():
    queue = OperationQueue(MemoryStore(), clock=_Clock())

    ids = queue.enqueue_many(
        [
            {"operation": "create", "resource": "credential", "payload": {"data": {"n": 1}}},
            {"operation": "create", "resource": "connection", "payload": {"data": {"n": 2}}, "priority": "low"},
        ]
    )

    assert [item.id for item in queue.items()] == ids
    assert queue.items()[1].priority is Priority.LOW


def test_listeners_receive_snapshots_and_can_unsubscribe():
    queue = OperationQueue(MemoryStore())
    seen = []
    unsubscribe = queue.subscribe(lambda snapshot: seen.append(snapshot.total))

    queue.enqueue("verify", "credential", {"id": "a"})
    unsubscribe()
    queue.enqueue("verify", "credential", {"id": "b"})

    assert seen == [1]


def test_listener_errors_do_not_break_mutations():
    queue = OperationQueue(MemoryStore())

    def _boom(snapshot):
        raise RuntimeError("listener bug")

    queue.subscribe(_boom)
    queue.enqueue("verify", "credential", {"id": "a"})

    assert len(queue) == 1


def test_failed_write_marks_queue_dirty_and_flush_raises(failing_store):
    queue = OperationQueue(failing_store)
    failing_store.fail_writes = True

    queue.enqueue("verify", "credential", {"id": "a"})

    assert queue.dirty
    with pytest.raises(PersistenceError):
        queue.flush()

    failing_store.fail_writes = False
    queue.flush()
    assert queue.is_clean
    assert len(failing_store.get(QUEUE_KEY)) == 1


def test_stats_and_export_failed():
    queue = OperationQueue(MemoryStore())
    a = queue.enqueue("verify", "credential", {"id": "a"}, priority="high")
    queue.enqueue("update", "connection", {"id": "c", "updates": {}})
    queue.mark_failed(a, "conflict")

    stats = queue.stats()
    exported = json.loads(queue.export_failed())

    assert stats["total"] == 2
    assert stats["failed"] == 1
    assert stats["by_priority"] == {"high": 1, "medium": 1}
    assert stats["by_resource"] == {"credential": 1, "connection": 1}
    assert [entry["id"] for entry in exported] == [a]


def test_record_sync_uses_clock():
    store = MemoryStore()
    queue = OperationQueue(store, clock=lambda: 99.0)

    queue.record_sync()

    assert queue.last_sync_at == 99.0
    assert store.get(LAST_SYNC_KEY) == 99.0
