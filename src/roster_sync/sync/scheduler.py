"""Connectivity tracking and background sync triggering."""

from __future__ import annotations

import asyncio
import contextlib
import inspect
import logging
from typing import TYPE_CHECKING, Any, Awaitable, Callable

from roster_sync.errors import TransientNetworkError
from roster_sync.remote.base import SETTINGS, RemoteStore, RemoteStoreError
from roster_sync.utils.tasks import BackgroundTasks

if TYPE_CHECKING:
    from roster_sync.sync.engine import SyncEngine

logger = logging.getLogger(__name__)

ReachabilityCheck = Callable[[], Awaitable[bool]]
Listener = Callable[[bool], Any]


class ConnectivityMonitor:
    """Tracks whether the remote store is believed reachable.

    Listeners are called with the new state on every change; coroutine
    listeners are scheduled on the running loop.
    """

    def __init__(self, online: bool = True, check: ReachabilityCheck | None = None) -> None:
        self._online = online
        self._check = check
        self._listeners: list[Listener] = []
        self._tasks = BackgroundTasks("connectivity")

    @property
    def is_online(self) -> bool:
        return self._online

    @property
    def has_check(self) -> bool:
        return self._check is not None

    def add_listener(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)

        def _remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _remove

    def set_online(self, online: bool) -> None:
        if online == self._online:
            return
        self._online = online
        logger.info("Connectivity changed: %s", "online" if online else "offline")
        for listener in list(self._listeners):
            try:
                result = listener(online)
                if inspect.iscoroutine(result):
                    self._tasks.spawn(result)
            except Exception as exc:
                logger.error("Connectivity listener failed: %s", exc)

    async def drain(self) -> None:
        await self._tasks.drain()

    async def check_once(self) -> bool:
        if self._check is None:
            return self._online
        try:
            online = await self._check()
        except Exception as exc:
            logger.debug("Connectivity check failed: %s", exc)
            online = False
        self.set_online(online)
        return online


def remote_check(remote: RemoteStore) -> ReachabilityCheck:
    """Check that treats any response from the remote store as reachability."""

    async def _check() -> bool:
        try:
            await remote.select(SETTINGS, limit=1)
        except TransientNetworkError:
            return False
        except RemoteStoreError:
            return True
        return True

    return _check


class SyncScheduler:
    """Runs ``sync_pending_writes`` on a timer and whenever connectivity returns.

    ``key_provider`` returns the signed-in user's key, or ``None`` when nobody
    is signed in (ticks are skipped).
    """

    def __init__(
        self,
        engine: "SyncEngine",
        connectivity: ConnectivityMonitor,
        key_provider: Callable[[], bytes | None],
        interval_seconds: float = 30.0,
        check_interval_seconds: float = 15.0,
    ) -> None:
        self._engine = engine
        self._connectivity = connectivity
        self._key_provider = key_provider
        self._interval = interval_seconds
        self._check_interval = check_interval_seconds
        self._tasks: list[asyncio.Task[None]] = []
        self._remove_listener: Callable[[], None] | None = None

    @property
    def running(self) -> bool:
        return bool(self._tasks)

    def start(self) -> None:
        if self._tasks:
            return
        self._remove_listener = self._connectivity.add_listener(self._on_connectivity_change)
        self._tasks.append(asyncio.create_task(self._sync_loop()))
        if self._connectivity.has_check:
            self._tasks.append(asyncio.create_task(self._check_loop()))
        logger.info("Sync scheduler started (interval=%ss)", self._interval)

    async def stop(self) -> None:
        if self._remove_listener is not None:
            self._remove_listener()
            self._remove_listener = None
        tasks, self._tasks = self._tasks, []
        for task in tasks:
            task.cancel()
        for task in tasks:
            with contextlib.suppress(asyncio.CancelledError):
                await task

    async def trigger(self) -> None:
        if not self._connectivity.is_online:
            return
        key = self._key_provider()
        if key is None:
            return
        result = await self._engine.sync_pending_writes(key)
        if not result.ok:
            logger.info("Sync pass incomplete: %s", result.error)

    async def _on_connectivity_change(self, online: bool) -> None:
        if online:
            await self._safe_trigger()

    async def _safe_trigger(self) -> None:
        try:
            await self.trigger()
        except Exception as exc:
            logger.error("Background sync failed: %s", exc)

    async def _sync_loop(self) -> None:
        while True:
            await asyncio.sleep(self._interval)
            await self._safe_trigger()

    async def _check_loop(self) -> None:
        while True:
            await self._connectivity.check_once()
            await asyncio.sleep(self._check_interval)
