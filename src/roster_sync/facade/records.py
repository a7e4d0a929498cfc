"""Optimistic local write plus remote submit, shared by the facades."""

from __future__ import annotations

import logging

from roster_sync.crypto.adapter import decrypt, encrypt
from roster_sync.domain.models import Section
from roster_sync.errors import DecryptionError, PermanentWriteError
from roster_sync.remote.base import Row
from roster_sync.storage.local_store import LocalStore, Namespace
from roster_sync.sync.engine import SyncEngine, WriteOutcome
from roster_sync.sync.models import WriteKind

logger = logging.getLogger(__name__)


def overlay_pending(
    fresh: list[Row], cached: list[Row], pending: dict[str, WriteKind]
) -> list[Row]:
    """Remote rows, with records that have queued writes taken from the cache."""
    local = {str(row["id"]): row for row in cached}
    merged: dict[str, Row] = {}
    for row in fresh:
        record_id = str(row["id"])
        if record_id not in pending:
            merged[record_id] = row
        elif pending[record_id] is not WriteKind.DELETE:
            merged[record_id] = local.get(record_id, row)
    for record_id, kind in pending.items():
        if kind is not WriteKind.DELETE and record_id in local:
            merged[record_id] = local[record_id]
    return list(merged.values())


class RecordWriter:
    def __init__(self, local: LocalStore, engine: SyncEngine) -> None:
        self.local = local
        self.engine = engine

    async def read(
        self,
        namespace: Namespace,
        section: Section | None,
        record_id: str,
        key: bytes,
    ) -> Row | None:
        blob = await self.local.get(section, record_id, namespace)
        if blob is None:
            return None
        try:
            return decrypt(blob, key)
        except DecryptionError:
            logger.warning(
                "Cached %s %s is unreadable with the current key", namespace.value, record_id
            )
            return None

    async def read_all(
        self,
        namespace: Namespace,
        section: Section | None,
        key: bytes,
    ) -> tuple[list[Row], bool]:
        """Decrypt a whole namespace; the flag is False if any entry was unreadable."""
        rows: list[Row] = []
        readable = True
        for record in await self.local.get_all(section, namespace):
            try:
                rows.append(decrypt(record.payload, key))
            except DecryptionError:
                readable = False
        if not readable:
            logger.warning("Some cached %s entries are unreadable", namespace.value)
        return rows, readable

    async def replace_all(
        self,
        namespace: Namespace,
        section: Section | None,
        rows: list[Row],
        key: bytes,
    ) -> None:
        await self.local.put_many(
            section,
            {str(row["id"]): encrypt(row, key) for row in rows},
            namespace,
            replace=True,
        )

    async def pending_kinds(self, table: str) -> dict[str, WriteKind]:
        """Latest queued write kind per record id for ``table``."""
        return {
            write.record_id: write.kind
            for write in await self.local.list_pending()
            if write.table == table
        }

    async def reconcile_all(
        self,
        namespace: Namespace,
        section: Section | None,
        table: str,
        fresh: list[Row],
        cached: list[Row],
        key: bytes,
    ) -> list[Row]:
        """Merge remote rows with local rows that still have queued writes.

        The cache is rewritten from ``fresh`` only when the queue is empty.
        """
        if await self.local.pending_count() == 0:
            await self.replace_all(namespace, section, fresh, key)
            return fresh
        return overlay_pending(fresh, cached, await self.pending_kinds(table))

    async def reconcile_one(
        self,
        namespace: Namespace,
        section: Section | None,
        table: str,
        record_id: str,
        fresh: Row | None,
        cached: Row | None,
        key: bytes,
    ) -> Row | None:
        pending = await self.pending_kinds(table)
        if record_id in pending:
            if pending[record_id] is WriteKind.DELETE:
                return None
            return cached if cached is not None else fresh
        if fresh is None:
            return cached
        if fresh != cached and await self.local.pending_count() == 0:
            await self.local.put(section, record_id, encrypt(fresh, key), namespace)
        return fresh

    async def _rollback(
        self,
        namespace: Namespace,
        section: Section | None,
        record_id: str,
        previous: Row | None,
        key: bytes,
    ) -> None:
        if previous is None:
            await self.local.remove(section, record_id, namespace)
        else:
            await self.local.put(section, record_id, encrypt(previous, key), namespace)
        logger.info("Rolled back local %s %s", namespace.value, record_id)

    async def save(
        self,
        *,
        namespace: Namespace,
        section: Section | None,
        table: str,
        row: Row,
        previous: Row | None,
        key: bytes,
        operation: str,
        kind: WriteKind = WriteKind.UPSERT,
    ) -> WriteOutcome:
        record_id = str(row["id"])
        await self.local.put(section, record_id, encrypt(row, key), namespace)
        try:
            return await self.engine.submit(
                operation=operation,
                kind=kind,
                table=table,
                record_id=record_id,
                section=section,
                row=row,
                key=key,
            )
        except PermanentWriteError:
            await self._rollback(namespace, section, record_id, previous, key)
            raise

    async def remove(
        self,
        *,
        namespace: Namespace,
        section: Section | None,
        table: str,
        record_id: str,
        previous: Row | None,
        key: bytes,
        operation: str,
    ) -> WriteOutcome:
        await self.local.remove(section, record_id, namespace)
        try:
            return await self.engine.submit(
                operation=operation,
                kind=WriteKind.DELETE,
                table=table,
                record_id=record_id,
                section=section,
                row={"id": record_id},
                key=key,
            )
        except PermanentWriteError:
            if previous is not None:
                await self._rollback(namespace, section, record_id, previous, key)
            raise
