"""Write queue and sync engine.

Every remote mutation goes through :meth:`SyncEngine.submit`. Offline or on a
transient failure the write is queued (encrypted) and replayed later by
:meth:`SyncEngine.sync_pending_writes`, which walks the queue strictly in
enqueue order and clears it only after a pass that was not aborted by a
network error.
"""

from __future__ import annotations

import asyncio
import logging
from enum import Enum
from typing import Awaitable, Callable

from roster_sync.crypto.adapter import decrypt, encrypt
from roster_sync.domain.models import Section
from roster_sync.errors import PermanentWriteError, RosterSyncError
from roster_sync.remote.base import RemoteStore, Row
from roster_sync.storage.local_store import LocalStore
from roster_sync.storage.notifier import DATA_REFRESHED, LOGS_REFRESHED, RefreshNotifier
from roster_sync.sync.classifier import ErrorClassifier, FailureKind, default_classifier
from roster_sync.sync.models import PendingWrite, SyncResult, WriteKind
from roster_sync.sync.scheduler import ConnectivityMonitor
from roster_sync.utils.tasks import BackgroundTasks

logger = logging.getLogger(__name__)

TableApplier = Callable[[WriteKind, str, Row], Awaitable[None]]


class WriteOutcome(str, Enum):
    APPLIED = "applied"
    QUEUED = "queued"


class SyncEngine:
    def __init__(
        self,
        local: LocalStore,
        remote: RemoteStore,
        connectivity: ConnectivityMonitor,
        classifier: ErrorClassifier = default_classifier,
        notifier: RefreshNotifier | None = None,
    ) -> None:
        self._local = local
        self._remote = remote
        self._connectivity = connectivity
        self._classifier = classifier
        self._notifier = notifier or local.notifier
        self._lock = asyncio.Lock()
        self._in_flight: asyncio.Future[SyncResult] | None = None
        self._background = BackgroundTasks("sync")
        self._appliers: dict[str, TableApplier] = {}

    @property
    def connectivity(self) -> ConnectivityMonitor:
        return self._connectivity

    @property
    def remote(self) -> RemoteStore:
        return self._remote

    def route(self, table: str, applier: TableApplier) -> None:
        """Apply writes for ``table`` through ``applier`` instead of the row store."""
        self._appliers[table] = applier

    async def _apply(self, kind: WriteKind, table: str, record_id: str, row: Row) -> None:
        applier = self._appliers.get(table)
        if applier is not None:
            await applier(kind, record_id, row)
            return
        if kind is WriteKind.INSERT:
            await self._remote.insert(table, row, ignore_duplicates=True)
        elif kind is WriteKind.UPSERT:
            await self._remote.upsert(table, row)
        elif kind is WriteKind.UPDATE:
            await self._remote.update(table, record_id, row)
        elif kind is WriteKind.DELETE:
            await self._remote.delete(table, record_id)
        else:
            raise ValueError(f"Unsupported write kind: {kind}")

    async def _enqueue(
        self,
        *,
        operation: str,
        kind: WriteKind,
        table: str,
        record_id: str,
        section: Section | None,
        row: Row,
        key: bytes,
    ) -> PendingWrite:
        write = PendingWrite(
            operation=operation,
            kind=kind,
            table=table,
            record_id=record_id,
            section=section,
            payload=encrypt(row, key),
        )
        return await self._local.enqueue(write)

    async def submit(
        self,
        *,
        operation: str,
        kind: WriteKind,
        table: str,
        record_id: str,
        section: Section | None,
        row: Row,
        key: bytes,
    ) -> WriteOutcome:
        """Apply a write remotely now, or queue it for replay.

        Writes are queued when offline, on a transient failure, or when older
        writes are still queued (so replay order is preserved).

        Raises:
            PermanentWriteError: the remote store rejected the write outright.
        """
        queue_args = dict(
            operation=operation,
            kind=kind,
            table=table,
            record_id=record_id,
            section=section,
            row=row,
            key=key,
        )
        if not self._connectivity.is_online:
            await self._enqueue(**queue_args)
            logger.info("Offline: queued %s for %s", operation, record_id)
            return WriteOutcome.QUEUED

        if await self._local.pending_count() > 0:
            await self._enqueue(**queue_args)
            self._schedule_sync(key)
            return WriteOutcome.QUEUED

        try:
            await self._apply(kind, table, record_id, row)
        except RosterSyncError as exc:
            failure = self._classifier(exc)
            if failure is FailureKind.DUPLICATE:
                logger.debug("%s for %s already applied remotely", operation, record_id)
                return WriteOutcome.APPLIED
            if failure is FailureKind.TRANSIENT:
                await self._enqueue(**queue_args)
                logger.warning("Transient failure, queued %s for %s: %s", operation, record_id, exc)
                return WriteOutcome.QUEUED
            raise PermanentWriteError(
                f"{operation} rejected by remote store: {exc}", code=getattr(exc, "code", None)
            ) from exc
        return WriteOutcome.APPLIED

    def _schedule_sync(self, key: bytes) -> None:
        self._background.spawn(self._sync_until_empty(key))

    async def _sync_until_empty(self, key: bytes) -> None:
        result = await self.sync_pending_writes(key)
        # A shared pass may have started before the latest writes were queued.
        while result.ok and result.remaining > 0:
            result = await self.sync_pending_writes(key)

    async def drain(self) -> None:
        """Wait for sync passes started in the background by :meth:`submit`."""
        await self._background.drain()

    async def sync_pending_writes(self, key: bytes) -> SyncResult:
        """Replay the pending queue. Concurrent callers share one pass."""
        async with self._lock:
            in_flight = self._in_flight
            if in_flight is None:
                in_flight = asyncio.get_running_loop().create_future()
                self._in_flight = in_flight
                should_run = True
            else:
                should_run = False

        if not should_run:
            return await asyncio.shield(in_flight)

        try:
            result = await self._replay(key)
        except BaseException as exc:
            async with self._lock:
                self._in_flight = None
            if not in_flight.done():
                in_flight.set_exception(exc)
                # Mark retrieved so a pass nobody else awaited does not warn.
                in_flight.exception()
            raise

        async with self._lock:
            self._in_flight = None
        if not in_flight.done():
            in_flight.set_result(result)
        return result

    async def _replay(self, key: bytes) -> SyncResult:
        if not self._connectivity.is_online:
            return SyncResult(
                ok=False, remaining=await self._local.pending_count(), error="offline"
            )

        writes = await self._local.list_pending()
        if not writes:
            return SyncResult(ok=True)

        applied = 0
        discarded = 0
        for write in writes:
            try:
                row = decrypt(write.payload, key)
                await self._apply(write.kind, write.table, write.record_id, row)
                applied += 1
            except Exception as exc:
                failure = self._classifier(exc)
                if failure is FailureKind.DUPLICATE:
                    applied += 1
                    continue
                if failure is FailureKind.TRANSIENT:
                    logger.warning(
                        "Sync aborted at %s (seq=%s): %s; %d writes remain queued",
                        write.operation,
                        write.seq,
                        exc,
                        len(writes),
                    )
                    return SyncResult(
                        ok=False,
                        applied=applied,
                        discarded=discarded,
                        remaining=len(writes),
                        error=str(exc),
                    )
                logger.error(
                    "Discarding %s for %s (seq=%s): %s",
                    write.operation,
                    write.record_id,
                    write.seq,
                    exc,
                )
                await self._local.add_dead_letter(write, f"{type(exc).__name__}: {exc}")
                discarded += 1

        await self._local.clear_pending(through_seq=writes[-1].seq)
        logger.info("Sync pass complete: %d applied, %d discarded", applied, discarded)

        for section in {write.section for write in writes}:
            self._notifier.publish(section, DATA_REFRESHED)
            self._notifier.publish(section, LOGS_REFRESHED)

        return SyncResult(
            ok=True,
            applied=applied,
            discarded=discarded,
            remaining=await self._local.pending_count(),
        )
