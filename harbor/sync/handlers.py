"""Maps queued operations onto resource APIs and the local entity cache."""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Mapping, Optional, Protocol

from .errors import RemoteOperationError
from .models import (
    OperationKind,
    Payload,
    QueueItem,
    ResourceKind,
    coerce_payload,
    generate_local_id,
)
from .storage import KeyValueStore

logger = logging.getLogger("harbor.sync.handlers")

Entity = Dict[str, Any]


class ResourceApi(Protocol):
    """Remote operations for one resource kind."""

    async def create(self, data: Mapping[str, Any]) -> Optional[Entity]: ...

    async def update(
        self, entity_id: str, updates: Mapping[str, Any], version: Optional[int] = None
    ) -> Optional[Entity]: ...

    async def delete(self, entity_id: str, version: Optional[int] = None) -> None: ...

    async def share(self, entity_id: str, options: Mapping[str, Any]) -> Optional[Entity]: ...

    async def verify(self, entity_id: str) -> Optional[Entity]: ...


class EntityCache(Protocol):
    """Local persistence façade for domain entities."""

    def save_entity(self, resource: ResourceKind, entity: Mapping[str, Any]) -> None: ...

    def update_entity(
        self, resource: ResourceKind, entity_id: str, updates: Mapping[str, Any]
    ) -> None: ...

    def delete_entity(self, resource: ResourceKind, entity_id: str) -> None: ...

    def get_all_entities(self, resource: ResourceKind) -> List[Entity]: ...


class MemoryEntityCache:
    """Dictionary-backed cache, optionally mirrored into a key-value store."""

    def __init__(self, store: Optional[KeyValueStore] = None):
        self._store = store
        self._entities: Dict[ResourceKind, Dict[str, Entity]] = {kind: {} for kind in ResourceKind}
        if store is not None:
            for kind in ResourceKind:
                raw = store.get(self._key(kind))
                if isinstance(raw, dict):
                    self._entities[kind] = {str(k): dict(v) for k, v in raw.items()}

    @staticmethod
    def _key(resource: ResourceKind) -> str:
        return f"entities_{resource.value}"

    def save_entity(self, resource: ResourceKind, entity: Mapping[str, Any]) -> None:
        entity_id = str(entity.get("id") or "")
        if not entity_id:
            # Entities created offline have no server id until replay.
            entity_id = generate_local_id()
        self._entities[resource][entity_id] = {**entity, "id": entity_id}
        self._mirror(resource)

    def update_entity(
        self, resource: ResourceKind, entity_id: str, updates: Mapping[str, Any]
    ) -> None:
        current = self._entities[resource].get(entity_id, {"id": entity_id})
        current.update(updates)
        self._entities[resource][entity_id] = current
        self._mirror(resource)

    def delete_entity(self, resource: ResourceKind, entity_id: str) -> None:
        if self._entities[resource].pop(entity_id, None) is not None:
            self._mirror(resource)

    def get_all_entities(self, resource: ResourceKind) -> List[Entity]:
        return [dict(entity) for entity in self._entities[resource].values()]

    def get_entity(self, resource: ResourceKind, entity_id: str) -> Optional[Entity]:
        entity = self._entities[resource].get(entity_id)
        return dict(entity) if entity is not None else None

    def _mirror(self, resource: ResourceKind) -> None:
        if self._store is not None:
            self._store.set(self._key(resource), self._entities[resource])


class OperationDispatcher:
    """Replays a single queue item against its resource API."""

    def __init__(self, apis: Mapping[ResourceKind, ResourceApi], cache: EntityCache):
        self.apis = dict(apis)
        self.cache = cache

    async def dispatch(self, item: QueueItem, payload: Optional[Payload] = None) -> None:
        """Replay ``item``; ``payload`` overrides the queued one (merged conflicts)."""
        api = self.apis.get(item.resource)
        if api is None:
            raise RemoteOperationError(f"No remote API registered for {item.resource.value}")

        body = coerce_payload(
            item.resource, item.operation, payload if payload is not None else item.payload
        )
        resource = item.resource

        if item.operation is OperationKind.CREATE:
            created = await api.create(body.data)
            self.cache.save_entity(resource, created or body.data)
        elif item.operation is OperationKind.UPDATE:
            updated = await api.update(body.id, body.updates, body.version)
            self.cache.update_entity(resource, body.id, updated or body.updates)
        elif item.operation is OperationKind.DELETE:
            await api.delete(body.id, body.version)
            self.cache.delete_entity(resource, body.id)
        elif item.operation is OperationKind.SHARE:
            shared = await api.share(body.id, body.options)
            self._apply_canonical(resource, body.id, shared)
        elif item.operation is OperationKind.VERIFY:
            verified = await api.verify(body.id)
            self._apply_canonical(resource, body.id, verified)
        else:  # pragma: no cover - enum is exhaustive
            raise RemoteOperationError(f"Unknown operation: {item.operation}")

        logger.debug("Replayed %s (%s)", item.label, item.id)

    def _apply_canonical(
        self, resource: ResourceKind, entity_id: str, result: Optional[Entity]
    ) -> None:
        # Share and verify only touch the cache when the server returns the entity.
        if isinstance(result, Mapping) and str(result.get("id", "")) == entity_id:
            self.cache.update_entity(resource, entity_id, result)


__all__ = ["ResourceApi", "EntityCache", "MemoryEntityCache", "OperationDispatcher"]
