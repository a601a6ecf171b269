"""Data structures shared by the offline sync engine."""

from __future__ import annotations

import json
import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Tuple, Type, Union

MAX_RETRIES = 3


class OperationKind(str, Enum):
    """Mutations that can be queued for replay."""
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"
    SHARE = "share"
    VERIFY = "verify"


class ResourceKind(str, Enum):
    """Domain entities the wallet keeps in sync."""
    CREDENTIAL = "credential"
    CONNECTION = "connection"
    PROFILE = "profile"

    @classmethod
    def parse(cls, value: str) -> "ResourceKind":
        normalized = str(value).strip().lower()
        if normalized == "handshake":
            return cls.CONNECTION
        return cls(normalized)


class Priority(str, Enum):
    """Drain-order hint for queued items."""
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"

    @property
    def rank(self) -> int:
        return {"high": 0, "medium": 1, "low": 2}[self.value]


@dataclass(frozen=True)
class CreatePayload:
    """Full object to create on the server."""

    data: Dict[str, Any]

    def to_dict(self) -> Dict[str, Any]:
        return {"data": dict(self.data)}

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "CreatePayload":
        if "data" in data and isinstance(data["data"], Mapping):
            return cls(data=dict(data["data"]))
        return cls(data=dict(data))


@dataclass(frozen=True)
class UpdatePayload:
    """Partial update of an existing entity."""

    id: str
    updates: Dict[str, Any]
    version: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {"id": self.id, "updates": dict(self.updates)}
        if self.version is not None:
            result["version"] = self.version
        return result

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "UpdatePayload":
        return cls(
            id=str(data["id"]),
            updates=dict(data.get("updates", {})),
            version=data.get("version"),
        )


@dataclass(frozen=True)
class DeletePayload:
    """Identifies an entity to delete."""

    id: str
    version: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {"id": self.id}
        if self.version is not None:
            result["version"] = self.version
        return result

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "DeletePayload":
        return cls(id=str(data["id"]), version=data.get("version"))


@dataclass(frozen=True)
class SharePayload:
    """Share request for a credential."""

    id: str
    options: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {"id": self.id, "options": dict(self.options)}

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "SharePayload":
        return cls(id=str(data["id"]), options=dict(data.get("options") or {}))


@dataclass(frozen=True)
class VerifyPayload:
    """Verification request for a credential."""

    id: str

    def to_dict(self) -> Dict[str, Any]:
        return {"id": self.id}

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "VerifyPayload":
        return cls(id=str(data["id"]))


Payload = Union[CreatePayload, UpdatePayload, DeletePayload, SharePayload, VerifyPayload]

_PAYLOAD_BY_OPERATION: Dict[OperationKind, Type[Any]] = {
    OperationKind.CREATE: CreatePayload,
    OperationKind.UPDATE: UpdatePayload,
    OperationKind.DELETE: DeletePayload,
    OperationKind.SHARE: SharePayload,
    OperationKind.VERIFY: VerifyPayload,
}

SUPPORTED_OPERATIONS: Dict[ResourceKind, Tuple[OperationKind, ...]] = {
    ResourceKind.CREDENTIAL: tuple(OperationKind),
    ResourceKind.CONNECTION: (
        OperationKind.CREATE,
        OperationKind.UPDATE,
        OperationKind.DELETE,
    ),
    ResourceKind.PROFILE: (OperationKind.UPDATE,),
}


def payload_type(resource: ResourceKind, operation: OperationKind) -> Type[Any]:
    """Return the payload variant for a (resource, operation) pair."""
    if operation not in SUPPORTED_OPERATIONS.get(resource, ()):
        raise ValueError(
            f"Unsupported operation '{operation.value}' for resource '{resource.value}'"
        )
    return _PAYLOAD_BY_OPERATION[operation]


def coerce_payload(
    resource: ResourceKind,
    operation: OperationKind,
    payload: Union[Payload, Mapping[str, Any]],
) -> Payload:
    """Validate ``payload`` against the pair, decoding plain mappings."""
    expected = payload_type(resource, operation)
    if isinstance(payload, expected):
        return payload
    if isinstance(payload, Mapping):
        return expected.from_dict(payload)
    raise TypeError(
        f"{operation.value} {resource.value} expects {expected.__name__}, "
        f"got {type(payload).__name__}"
    )


def _optional_float(value: Any) -> Optional[float]:
    return None if value is None else float(value)


def generate_item_id() -> str:
    """Generate a queue item id (time + random suffix)."""
    return f"queue_{int(time.time() * 1000)}_{uuid.uuid4().hex[:9]}"


def generate_local_id() -> str:
    """Placeholder id for an entity the server has not named yet."""
    return f"local_{int(time.time() * 1000)}_{uuid.uuid4().hex[:9]}"


@dataclass
class QueueItem:
    """A single pending mutation awaiting replay."""

    id: str
    operation: OperationKind
    resource: ResourceKind
    payload: Payload
    enqueued_at: float  # Unix timestamp
    retry_count: int = 0
    last_error: Optional[str] = None
    priority: Priority = Priority.MEDIUM
    # Ids of queued items that must replay before this one.
    dependencies: List[str] = field(default_factory=list)
    next_attempt_at: Optional[float] = None  # backoff after a failed replay

    @property
    def is_failed(self) -> bool:
        return self.retry_count >= MAX_RETRIES

    def is_due(self, now: float) -> bool:
        return self.next_attempt_at is None or self.next_attempt_at <= now

    @property
    def label(self) -> str:
        return f"{self.operation.value} {self.resource.value}"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "operation": self.operation.value,
            "resource": self.resource.value,
            "payload": self.payload.to_dict(),
            "enqueued_at": self.enqueued_at,
            "retry_count": self.retry_count,
            "last_error": self.last_error,
            "priority": self.priority.value,
            "dependencies": list(self.dependencies),
            "next_attempt_at": self.next_attempt_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "QueueItem":
        operation = OperationKind(data["operation"])
        resource = ResourceKind.parse(data["resource"])
        return cls(
            id=str(data["id"]),
            operation=operation,
            resource=resource,
            payload=coerce_payload(resource, operation, data.get("payload", {})),
            enqueued_at=float(data["enqueued_at"]),
            retry_count=int(data.get("retry_count", 0)),
            last_error=data.get("last_error"),
            priority=Priority(data.get("priority", "medium")),
            dependencies=[str(dep) for dep in data.get("dependencies") or []],
            next_attempt_at=_optional_float(data.get("next_attempt_at")),
        )


@dataclass
class SyncStatus:
    """Point-in-time view of the sync engine."""

    is_online: bool
    last_sync_at: Optional[float]
    pending_count: int
    failed_count: int
    is_sync_running: bool
    realtime_connected: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "is_online": self.is_online,
            "last_sync_at": self.last_sync_at,
            "pending_count": self.pending_count,
            "failed_count": self.failed_count,
            "is_sync_running": self.is_sync_running,
            "realtime_connected": self.realtime_connected,
        }


@dataclass
class SyncResult:
    """Result of a sync run."""

    success: bool
    synced_items: int = 0
    failed_items: int = 0
    conflicts: int = 0
    errors: List[str] = field(default_factory=list)
    message: str = ""

    def summary(self) -> str:
        parts = [f"{self.synced_items} synced"]
        if self.failed_items:
            parts.append(f"{self.failed_items} failed")
        if self.conflicts:
            parts.append(f"{self.conflicts} conflicts")
        return ", ".join(parts)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "synced_items": self.synced_items,
            "failed_items": self.failed_items,
            "conflicts": self.conflicts,
            "errors": self.errors,
            "message": self.message,
        }


class ConflictKind(str, Enum):
    """How local and server state diverged."""
    VERSION = "version"
    CONTENT = "content"
    DELETION = "deletion"


@dataclass
class ConflictRecord:
    """Details of a replay that failed with a conflict."""

    resource_id: str
    conflict_kind: ConflictKind
    local_payload: Dict[str, Any]
    remote_payload: Dict[str, Any] = field(default_factory=dict)
    detected_at: float = field(default_factory=time.time)


@dataclass
class Notification:
    """User-facing message routed to the notification sink."""

    type: str  # info, success, warning, error
    title: str
    message: str

    def to_dict(self) -> Dict[str, Any]:
        return {"type": self.type, "title": self.title, "message": self.message}


@dataclass
class RealtimeMessage:
    """Envelope received over the realtime channel."""

    type: str
    data: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def parse(cls, raw: Union[str, bytes]) -> "RealtimeMessage":
        """Decode a raw frame, raising ``ValueError`` when it is not an envelope."""
        if isinstance(raw, bytes):
            raw = raw.decode("utf-8")
        decoded = json.loads(raw)
        if not isinstance(decoded, dict) or not isinstance(decoded.get("type"), str):
            raise ValueError("Realtime message must be an object with a 'type'")
        data = decoded.get("data", decoded.get("payload"))
        if data is None:
            data = {}
        if not isinstance(data, dict):
            raise ValueError("Realtime message data must be an object")
        return cls(type=decoded["type"], data=data)

    def to_json(self) -> str:
        return json.dumps({"type": self.type, "data": self.data})


__all__ = [
    "MAX_RETRIES",
    "OperationKind",
    "ResourceKind",
    "Priority",
    "CreatePayload",
    "UpdatePayload",
    "DeletePayload",
    "SharePayload",
    "VerifyPayload",
    "Payload",
    "SUPPORTED_OPERATIONS",
    "payload_type",
    "coerce_payload",
    "generate_item_id",
    "generate_local_id",
    "QueueItem",
    "SyncStatus",
    "SyncResult",
    "ConflictKind",
    "ConflictRecord",
    "Notification",
    "RealtimeMessage",
]
