"""HTTP implementations of the resource APIs used during replay."""

from __future__ import annotations

import asyncio
import json
import logging
import os
from typing import Any, Callable, Dict, Mapping, Optional
from urllib.error import HTTPError, URLError
from urllib.request import Request, urlopen

from .errors import ConflictError, RemoteOperationError, TransientError
from .models import ConflictKind, ResourceKind

logger = logging.getLogger("harbor.sync.http")

DEFAULT_TIMEOUT = 15.0

RESOURCE_PATHS: Dict[ResourceKind, str] = {
    ResourceKind.CREDENTIAL: "/credentials",
    ResourceKind.CONNECTION: "/handshake/requests",
    ResourceKind.PROFILE: "/auth/profile",
}

# Statuses worth retrying; any other 4xx is a permanent rejection.
_RETRYABLE_STATUSES = {408, 425, 429}

Opener = Callable[..., Any]


class HttpResourceApi:
    """JSON-over-HTTP client for one resource collection.

    Requests run in a worker thread so the event loop keeps serving the
    realtime channel while a replay is in flight.
    """

    def __init__(
        self,
        base_url: str,
        path: str,
        *,
        token: Optional[str] = None,
        timeout: float = DEFAULT_TIMEOUT,
        opener: Opener = urlopen,
    ):
        self.base_url = base_url.rstrip("/")
        self.path = "/" + path.strip("/")
        self.token = token
        self.timeout = timeout
        self._opener = opener

    def _url(self, entity_id: Optional[str] = None, action: Optional[str] = None) -> str:
        url = f"{self.base_url}{self.path}"
        if entity_id:
            url = f"{url}/{entity_id}"
        if action:
            url = f"{url}/{action}"
        return url

    async def create(self, data: Mapping[str, Any]) -> Optional[Dict[str, Any]]:
        return await self._call("POST", self._url(), dict(data))

    async def update(
        self, entity_id: str, updates: Mapping[str, Any], version: Optional[int] = None
    ) -> Optional[Dict[str, Any]]:
        return await self._call("PUT", self._url(entity_id), dict(updates), version=version)

    async def delete(self, entity_id: str, version: Optional[int] = None) -> None:
        await self._call("DELETE", self._url(entity_id), version=version)

    async def share(self, entity_id: str, options: Mapping[str, Any]) -> Optional[Dict[str, Any]]:
        return await self._call("POST", self._url(entity_id, "share"), dict(options))

    async def verify(self, entity_id: str) -> Optional[Dict[str, Any]]:
        return await self._call("POST", self._url(entity_id, "verify"), {})

    async def _call(
        self,
        method: str,
        url: str,
        body: Optional[Dict[str, Any]] = None,
        *,
        version: Optional[int] = None,
    ) -> Optional[Dict[str, Any]]:
        return await asyncio.to_thread(self._request, method, url, body, version)

    def _request(
        self,
        method: str,
        url: str,
        body: Optional[Dict[str, Any]],
        version: Optional[int],
    ) -> Optional[Dict[str, Any]]:
        headers = {"Content-Type": "application/json", "Accept": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        if version is not None:
            headers["If-Match"] = str(version)
        data = json.dumps(body).encode("utf-8") if body is not None else None

        req = Request(url, data=data, headers=headers, method=method)
        logger.debug("%s %s", method, url)
        try:
            with self._opener(req, timeout=self.timeout) as resp:
                raw = resp.read()
        except HTTPError as e:
            raise _map_http_error(e) from e
        except URLError as e:
            raise TransientError(f"Connection error: {e.reason}") from e
        except OSError as e:
            raise TransientError(f"Connection error: {e}") from e

        if not raw:
            return None
        try:
            decoded = json.loads(raw.decode("utf-8"))
        except ValueError as e:
            raise RemoteOperationError(f"Invalid JSON from {url}: {e}") from e
        return decoded if isinstance(decoded, dict) else None


class ProfileApi(HttpResourceApi):
    """The profile is a singleton; only updates are meaningful."""

    def _url(self, entity_id: Optional[str] = None, action: Optional[str] = None) -> str:
        return f"{self.base_url}{self.path}"

    async def create(self, data: Mapping[str, Any]) -> Optional[Dict[str, Any]]:
        raise RemoteOperationError("Profiles cannot be created remotely")

    async def delete(self, entity_id: str, version: Optional[int] = None) -> None:
        raise RemoteOperationError("Profiles cannot be deleted remotely")

    async def share(self, entity_id: str, options: Mapping[str, Any]) -> Optional[Dict[str, Any]]:
        raise RemoteOperationError("Profiles cannot be shared")

    async def verify(self, entity_id: str) -> Optional[Dict[str, Any]]:
        raise RemoteOperationError("Profiles cannot be verified")


def _read_body(error: HTTPError) -> Dict[str, Any]:
    try:
        raw = error.read()
    except OSError:
        return {}
    if not raw:
        return {}
    try:
        decoded = json.loads(raw.decode("utf-8"))
    except ValueError:
        return {}
    return decoded if isinstance(decoded, dict) else {}


def _map_http_error(error: HTTPError) -> RemoteOperationError:
    """Translate an HTTP error response into the sync error taxonomy."""
    status = error.code
    body = _read_body(error)
    current = body.get("current")
    remote = current if isinstance(current, dict) else {}

    if status == 409:
        try:
            kind: Optional[ConflictKind] = ConflictKind(body.get("conflict"))
        except ValueError:
            kind = None
        return ConflictError(
            str(body.get("message") or "Conflict"),
            conflict_kind=kind,
            status=status,
            remote_payload=remote,
        )
    if status == 412:
        return ConflictError(
            "Version precondition failed",
            conflict_kind=ConflictKind.VERSION,
            status=status,
            remote_payload=remote,
        )
    if status == 410:
        return ConflictError(
            "Entity was deleted remotely",
            conflict_kind=ConflictKind.DELETION,
            status=status,
            remote_payload=remote,
        )

    message = str(body.get("message") or f"HTTP error: {status} {error.reason}")
    if status >= 500 or status in _RETRYABLE_STATUSES:
        return TransientError(message, status=status, remote_payload=body)
    return RemoteOperationError(message, status=status, remote_payload=body)


def build_resource_apis(
    server_url: str,
    *,
    token_env: str = "",
    timeout: float = DEFAULT_TIMEOUT,
    opener: Opener = urlopen,
) -> Dict[ResourceKind, HttpResourceApi]:
    """Create one API client per resource kind against ``server_url``."""
    if not server_url:
        logger.warning("No sync server URL configured; queued items will fail to replay")
        return {}
    token = os.environ.get(token_env) if token_env else None
    if token_env and not token:
        logger.info("%s is not set; requests are sent without credentials", token_env)

    apis: Dict[ResourceKind, HttpResourceApi] = {}
    for resource, path in RESOURCE_PATHS.items():
        cls = ProfileApi if resource is ResourceKind.PROFILE else HttpResourceApi
        apis[resource] = cls(server_url, path, token=token, timeout=timeout, opener=opener)
    return apis


__all__ = [
    "HttpResourceApi",
    "ProfileApi",
    "RESOURCE_PATHS",
    "build_resource_apis",
]
