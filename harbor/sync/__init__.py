"""Offline-first sync engine for the Harbor wallet."""

from __future__ import annotations

from .models import (
    MAX_RETRIES,
    OperationKind,
    ResourceKind,
    Priority,
    CreatePayload,
    UpdatePayload,
    DeletePayload,
    SharePayload,
    VerifyPayload,
    QueueItem,
    SyncStatus,
    SyncResult,
    ConflictKind,
    ConflictRecord,
    Notification,
    RealtimeMessage,
)
from .errors import RemoteOperationError, TransientError, ConflictError, PersistenceError
from .storage import KeyValueStore, MemoryStore, JsonFileStore
from .queue import OperationQueue, QueueSnapshot
from .network import NetworkMonitor, NetworkSettings, InterfaceProbe
from .handlers import ResourceApi, EntityCache, MemoryEntityCache, OperationDispatcher
from .conflict import ConflictResolver, ConflictStrategy, Resolution, ResolutionAction
from .processor import QueueProcessor
from .realtime import RealtimeChannel, ChannelState
from .http import HttpResourceApi, ProfileApi, build_resource_apis
from .notifications import Notifier, log_notification
from .orchestrator import SyncOrchestrator, SyncSettings, build_orchestrator

__all__ = [
    # Models
    "MAX_RETRIES",
    "OperationKind",
    "ResourceKind",
    "Priority",
    "CreatePayload",
    "UpdatePayload",
    "DeletePayload",
    "SharePayload",
    "VerifyPayload",
    "QueueItem",
    "SyncStatus",
    "SyncResult",
    "ConflictKind",
    "ConflictRecord",
    "Notification",
    "RealtimeMessage",
    # Errors
    "RemoteOperationError",
    "TransientError",
    "ConflictError",
    "PersistenceError",
    # Storage and queue
    "KeyValueStore",
    "MemoryStore",
    "JsonFileStore",
    "OperationQueue",
    "QueueSnapshot",
    # Network
    "NetworkMonitor",
    "NetworkSettings",
    "InterfaceProbe",
    # Replay
    "ResourceApi",
    "EntityCache",
    "MemoryEntityCache",
    "OperationDispatcher",
    "ConflictResolver",
    "ConflictStrategy",
    "Resolution",
    "ResolutionAction",
    "QueueProcessor",
    # Realtime
    "RealtimeChannel",
    "ChannelState",
    # HTTP
    "HttpResourceApi",
    "ProfileApi",
    "build_resource_apis",
    # Orchestration
    "Notifier",
    "log_notification",
    "SyncOrchestrator",
    "SyncSettings",
    "build_orchestrator",
]
