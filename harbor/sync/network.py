"""Connectivity tracking that drives queue draining."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
import logging
import socket
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

import psutil

logger = logging.getLogger("harbor.sync.network")

DEFAULT_DEBOUNCE = 0.1
DEFAULT_PROBE_INTERVAL = 5.0
DEFAULT_CONNECTIVITY_TIMEOUT = 1.0

NetworkListener = Callable[[bool], None]


@dataclass
class NetworkSettings:
    """Runtime configuration for connectivity detection."""

    debounce: float = DEFAULT_DEBOUNCE
    probe_interval: float = DEFAULT_PROBE_INTERVAL
    include_loopback: bool = False
    connectivity_checks: Sequence[str] = field(default_factory=tuple)
    connectivity_timeout: float = DEFAULT_CONNECTIVITY_TIMEOUT

    @classmethod
    def from_config(cls, config: Dict[str, Any]) -> "NetworkSettings":
        raw = config.get("network", {}) if config else {}

        def _positive(key: str, default: float) -> float:
            try:
                value = float(raw.get(key, default))
            except (TypeError, ValueError):
                return default
            return value if value > 0 else default

        checks = raw.get("connectivity_checks", [])
        if isinstance(checks, str):
            checks = [checks]

        return cls(
            debounce=_positive("debounce", DEFAULT_DEBOUNCE),
            probe_interval=_positive("probe_interval", DEFAULT_PROBE_INTERVAL),
            include_loopback=bool(raw.get("include_loopback", False)),
            connectivity_checks=tuple(str(c).strip() for c in checks if str(c).strip()),
            connectivity_timeout=_positive("connectivity_timeout", DEFAULT_CONNECTIVITY_TIMEOUT),
        )


class InterfaceProbe:
    """Reports online when an interface is up and configured targets answer."""

    def __init__(self, settings: NetworkSettings):
        self.settings = settings

    def __call__(self) -> bool:
        if not self._any_interface_up():
            return False
        if not self.settings.connectivity_checks:
            return True
        return any(
            _target_reachable(target, self.settings.connectivity_timeout)
            for target in self.settings.connectivity_checks
        )

    def _any_interface_up(self) -> bool:
        addrs = psutil.net_if_addrs()
        stats = psutil.net_if_stats()
        for name, entries in addrs.items():
            if not self.settings.include_loopback and _is_loopback(name, entries):
                continue
            if bool(getattr(stats.get(name), "isup", False)):
                return True
        return False


class NetworkMonitor:
    """Debounced online/offline state with explicit listener registration.

    ``report()`` feeds raw signals. A transition only takes effect once the
    signal has held for ``debounce`` seconds, so flicker never reaches the
    listeners.
    """

    def __init__(
        self,
        online: bool = True,
        *,
        debounce: float = DEFAULT_DEBOUNCE,
        probe: Optional[Callable[[], bool]] = None,
        probe_interval: float = DEFAULT_PROBE_INTERVAL,
    ):
        self._online = online
        self._debounce = debounce
        self._probe = probe
        self._probe_interval = probe_interval
        self._listeners: List[NetworkListener] = []
        self._pending: Optional[asyncio.TimerHandle] = None
        self._poll_task: Optional[asyncio.Task] = None

    @property
    def is_online(self) -> bool:
        return self._online

    def subscribe(self, listener: NetworkListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def report(self, online: bool) -> None:
        """Feed a raw connectivity signal."""
        if self._pending is not None:
            self._pending.cancel()
            self._pending = None

        if online == self._online:
            return

        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            self._settle(online)
            return

        if self._debounce <= 0:
            self._settle(online)
            return
        self._pending = loop.call_later(self._debounce, self._settle, online)

    def _settle(self, online: bool) -> None:
        self._pending = None
        if online == self._online:
            return
        self._online = online
        logger.info("Network is now %s", "online" if online else "offline")
        for listener in list(self._listeners):
            try:
                listener(online)
            except Exception:
                logger.exception("Network listener failed")

    async def start(self) -> None:
        """Begin polling the probe, if one was supplied."""
        if self._probe is None or self._poll_task is not None:
            return
        self._poll_task = asyncio.create_task(self._poll_loop())

    async def stop(self) -> None:
        if self._pending is not None:
            self._pending.cancel()
            self._pending = None
        task, self._poll_task = self._poll_task, None
        if task is not None:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

    async def check_now(self) -> bool:
        """Run the probe once and report its answer."""
        if self._probe is None:
            return self._online
        try:
            online = await asyncio.to_thread(self._probe)
        except Exception as e:
            logger.warning("Connectivity probe failed: %s", e)
            online = False
        self.report(online)
        return online

    async def _poll_loop(self) -> None:
        while True:
            await self.check_now()
            await asyncio.sleep(self._probe_interval)


def _is_loopback(name: str, entries: Sequence[Any]) -> bool:
    if name.lower().startswith("lo"):
        return True
    for addr in entries:
        address = getattr(addr, "address", "")
        if isinstance(address, str) and (
            address.startswith("127.") or address in {"::1", "0:0:0:0:0:0:0:1"}
        ):
            return True
    return False


def _target_reachable(target: str, timeout: float) -> bool:
    host, port = _parse_target(target)
    try:
        with socket.create_connection((host, port), timeout=timeout):
            return True
    except OSError as exc:
        logger.debug("Connectivity check %s:%d failed: %s", host, port, exc)
        return False


def _parse_target(target: str) -> Tuple[str, int]:
    default_port = 443
    stripped = target.strip()
    if not stripped:
        return ("localhost", default_port)
    if stripped.count(":") == 1 and stripped.split(":", 1)[1].isdigit():
        host, raw_port = stripped.split(":", 1)
        return (host or "localhost", int(raw_port))
    return (stripped, default_port)


__all__ = ["NetworkMonitor", "NetworkSettings", "InterfaceProbe"]
