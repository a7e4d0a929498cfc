"""SQLite-backed local encrypted store and pending-write queue.

Records are opaque encrypted blobs keyed by ``(namespace, section, id)``.
Global records (section ``None``) are stored under the empty section. The
pending queue and dead-letter table hold encrypted remote payloads.
"""

from __future__ import annotations

import asyncio
import logging
import sqlite3
import threading
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Iterable, Mapping, Sequence

from roster_sync.crypto.adapter import EncryptedPayload
from roster_sync.domain.models import Section
from roster_sync.storage.notifier import (
    DATA_REFRESHED,
    LOGS_REFRESHED,
    ROLES_REFRESHED,
    RefreshNotifier,
)
from roster_sync.sync.models import DeadLetter, PendingWrite, WriteKind
from roster_sync.utils.time import utc_now_iso

logger = logging.getLogger(__name__)

_SqlValue = str | bytes | int | float | None
_SqlParams = Sequence[_SqlValue] | Mapping[str, _SqlValue]

_GLOBAL_SECTION = ""


class Namespace(str, Enum):
    MEMBERS = "members"
    AUDIT_LOGS = "audit_logs"
    USER_ROLES = "user_roles"
    INVITE_CODES = "invite_codes"
    SETTINGS = "settings"


_TOPICS = {
    Namespace.MEMBERS: DATA_REFRESHED,
    Namespace.AUDIT_LOGS: LOGS_REFRESHED,
    Namespace.USER_ROLES: ROLES_REFRESHED,
    Namespace.INVITE_CODES: DATA_REFRESHED,
    Namespace.SETTINGS: DATA_REFRESHED,
}


@dataclass
class StoredRecord:
    id: str
    payload: EncryptedPayload
    updated_at: str


def _section_key(section: Section | None) -> str:
    return section.value if section is not None else _GLOBAL_SECTION


def _section_from_key(value: str) -> Section | None:
    return Section(value) if value else None


def _row_to_write(row: sqlite3.Row) -> PendingWrite:
    return PendingWrite(
        operation=row["operation"],
        kind=WriteKind(row["kind"]),
        table=row["table_name"],
        record_id=row["record_id"],
        section=_section_from_key(row["section"]),
        payload=EncryptedPayload(ciphertext=row["ciphertext"], iv=row["iv"]),
        seq=row["seq"],
        created_at=row["created_at"],
    )


class LocalStore:
    def __init__(
        self,
        path: str,
        wal: bool = True,
        notifier: RefreshNotifier | None = None,
    ) -> None:
        if path != ":memory:":
            Path(path).parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._lock = threading.Lock()
        self._closed = False
        self._notifier = notifier or RefreshNotifier()
        if wal and path != ":memory:":
            self._conn.execute("PRAGMA journal_mode=WAL")
        self._init_schema()

    @property
    def notifier(self) -> RefreshNotifier:
        return self._notifier

    def _init_schema(self) -> None:
        self._conn.executescript(
            """
            CREATE TABLE IF NOT EXISTS records (
                namespace TEXT NOT NULL,
                section TEXT NOT NULL,
                id TEXT NOT NULL,
                ciphertext BLOB NOT NULL,
                iv BLOB NOT NULL,
                updated_at TEXT NOT NULL,
                PRIMARY KEY (namespace, section, id)
            );

            CREATE TABLE IF NOT EXISTS pending_writes (
                seq INTEGER PRIMARY KEY AUTOINCREMENT,
                operation TEXT NOT NULL,
                kind TEXT NOT NULL,
                table_name TEXT NOT NULL,
                record_id TEXT NOT NULL,
                section TEXT NOT NULL,
                ciphertext BLOB NOT NULL,
                iv BLOB NOT NULL,
                created_at TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS dead_letters (
                seq INTEGER PRIMARY KEY,
                operation TEXT NOT NULL,
                kind TEXT NOT NULL,
                table_name TEXT NOT NULL,
                record_id TEXT NOT NULL,
                section TEXT NOT NULL,
                ciphertext BLOB NOT NULL,
                iv BLOB NOT NULL,
                created_at TEXT NOT NULL,
                error TEXT NOT NULL,
                failed_at TEXT NOT NULL
            );

            CREATE INDEX IF NOT EXISTS idx_records_namespace_section
                ON records(namespace, section);
            """
        )
        self._conn.commit()

    # -- synchronous primitives (run in a worker thread) -------------------

    def _execute(self, query: str, params: _SqlParams = ()) -> int:
        with self._lock:
            cursor = self._conn.execute(query, params)
            self._conn.commit()
            return cursor.rowcount

    def _executemany(self, query: str, rows: Iterable[_SqlParams]) -> None:
        with self._lock:
            self._conn.executemany(query, rows)
            self._conn.commit()

    def _fetch_all(self, query: str, params: _SqlParams = ()) -> list[sqlite3.Row]:
        with self._lock:
            return self._conn.execute(query, params).fetchall()

    def _fetch_one(self, query: str, params: _SqlParams = ()) -> sqlite3.Row | None:
        with self._lock:
            return self._conn.execute(query, params).fetchone()

    def _replace_section(
        self,
        namespace: Namespace,
        section: str,
        rows: list[tuple[_SqlValue, ...]],
    ) -> None:
        with self._lock:
            with self._conn:
                self._conn.execute(
                    "DELETE FROM records WHERE namespace = ? AND section = ?",
                    (namespace.value, section),
                )
                self._conn.executemany(
                    "INSERT INTO records (namespace, section, id, ciphertext, iv, updated_at) "
                    "VALUES (?, ?, ?, ?, ?, ?)",
                    rows,
                )

    def _publish(self, namespace: Namespace, section: Section | None) -> None:
        self._notifier.publish(section, _TOPICS[namespace])

    # -- records ------------------------------------------------------------

    async def put(
        self,
        section: Section | None,
        record_id: str,
        blob: EncryptedPayload,
        namespace: Namespace = Namespace.MEMBERS,
    ) -> None:
        await asyncio.to_thread(
            self._execute,
            "INSERT OR REPLACE INTO records (namespace, section, id, ciphertext, iv, updated_at) "
            "VALUES (?, ?, ?, ?, ?, ?)",
            (
                namespace.value,
                _section_key(section),
                record_id,
                blob.ciphertext,
                blob.iv,
                utc_now_iso(),
            ),
        )
        self._publish(namespace, section)

    async def put_many(
        self,
        section: Section | None,
        blobs: Mapping[str, EncryptedPayload],
        namespace: Namespace = Namespace.MEMBERS,
        replace: bool = False,
    ) -> None:
        """Write several records; ``replace`` swaps the whole section atomically."""
        now = utc_now_iso()
        key = _section_key(section)
        rows = [
            (namespace.value, key, record_id, blob.ciphertext, blob.iv, now)
            for record_id, blob in blobs.items()
        ]
        if replace:
            await asyncio.to_thread(self._replace_section, namespace, key, rows)
        else:
            await asyncio.to_thread(
                self._executemany,
                "INSERT OR REPLACE INTO records "
                "(namespace, section, id, ciphertext, iv, updated_at) VALUES (?, ?, ?, ?, ?, ?)",
                rows,
            )
        self._publish(namespace, section)

    async def get(
        self,
        section: Section | None,
        record_id: str,
        namespace: Namespace = Namespace.MEMBERS,
    ) -> EncryptedPayload | None:
        row = await asyncio.to_thread(
            self._fetch_one,
            "SELECT ciphertext, iv FROM records WHERE namespace = ? AND section = ? AND id = ?",
            (namespace.value, _section_key(section), record_id),
        )
        if row is None:
            return None
        return EncryptedPayload(ciphertext=row["ciphertext"], iv=row["iv"])

    async def get_all(
        self,
        section: Section | None,
        namespace: Namespace = Namespace.MEMBERS,
    ) -> list[StoredRecord]:
        rows = await asyncio.to_thread(
            self._fetch_all,
            "SELECT id, ciphertext, iv, updated_at FROM records "
            "WHERE namespace = ? AND section = ? ORDER BY id",
            (namespace.value, _section_key(section)),
        )
        return [
            StoredRecord(
                id=row["id"],
                payload=EncryptedPayload(ciphertext=row["ciphertext"], iv=row["iv"]),
                updated_at=row["updated_at"],
            )
            for row in rows
        ]

    async def remove(
        self,
        section: Section | None,
        record_id: str,
        namespace: Namespace = Namespace.MEMBERS,
    ) -> bool:
        removed = await asyncio.to_thread(
            self._execute,
            "DELETE FROM records WHERE namespace = ? AND section = ? AND id = ?",
            (namespace.value, _section_key(section), record_id),
        )
        if removed:
            self._publish(namespace, section)
        return removed > 0

    async def remove_many(
        self,
        section: Section | None,
        record_ids: Sequence[str],
        namespace: Namespace = Namespace.MEMBERS,
    ) -> int:
        if not record_ids:
            return 0
        placeholders = ",".join("?" for _ in record_ids)
        removed = await asyncio.to_thread(
            self._execute,
            f"DELETE FROM records WHERE namespace = ? AND section = ? AND id IN ({placeholders})",
            (namespace.value, _section_key(section), *record_ids),
        )
        if removed:
            self._publish(namespace, section)
        return removed

    async def clear_namespace(
        self,
        section: Section | None,
        namespace: Namespace,
    ) -> int:
        removed = await asyncio.to_thread(
            self._execute,
            "DELETE FROM records WHERE namespace = ? AND section = ?",
            (namespace.value, _section_key(section)),
        )
        self._publish(namespace, section)
        return removed

    async def clear_section_data(self, section: Section) -> int:
        """Drop every cached record of ``section``. Pending writes are kept."""
        removed = await asyncio.to_thread(
            self._execute,
            "DELETE FROM records WHERE section = ?",
            (_section_key(section),),
        )
        self._notifier.publish(section, DATA_REFRESHED)
        self._notifier.publish(section, LOGS_REFRESHED)
        return removed

    # -- pending writes -----------------------------------------------------

    async def enqueue(self, write: PendingWrite) -> PendingWrite:
        def _insert() -> int:
            with self._lock:
                cursor = self._conn.execute(
                    """
                    INSERT INTO pending_writes (
                        operation, kind, table_name, record_id, section,
                        ciphertext, iv, created_at
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        write.operation,
                        write.kind.value,
                        write.table,
                        write.record_id,
                        _section_key(write.section),
                        write.payload.ciphertext,
                        write.payload.iv,
                        write.created_at,
                    ),
                )
                self._conn.commit()
                return int(cursor.lastrowid)

        write.seq = await asyncio.to_thread(_insert)
        logger.debug("Queued %s for %s (seq=%s)", write.operation, write.record_id, write.seq)
        return write

    async def list_pending(self) -> list[PendingWrite]:
        """All queued writes in enqueue order."""
        rows = await asyncio.to_thread(
            self._fetch_all, "SELECT * FROM pending_writes ORDER BY seq ASC"
        )
        return [_row_to_write(row) for row in rows]

    async def pending_count(self) -> int:
        row = await asyncio.to_thread(
            self._fetch_one, "SELECT COUNT(*) AS n FROM pending_writes"
        )
        return int(row["n"]) if row is not None else 0

    async def clear_pending(self, through_seq: int | None = None) -> int:
        """Delete queued writes in one statement.

        ``through_seq`` bounds the delete so writes enqueued during a replay
        pass survive it.
        """
        if through_seq is None:
            return await asyncio.to_thread(self._execute, "DELETE FROM pending_writes")
        return await asyncio.to_thread(
            self._execute, "DELETE FROM pending_writes WHERE seq <= ?", (through_seq,)
        )

    # -- dead letters -------------------------------------------------------

    async def add_dead_letter(self, write: PendingWrite, error: str) -> None:
        await asyncio.to_thread(
            self._execute,
            """
            INSERT OR REPLACE INTO dead_letters (
                seq, operation, kind, table_name, record_id, section,
                ciphertext, iv, created_at, error, failed_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                write.seq,
                write.operation,
                write.kind.value,
                write.table,
                write.record_id,
                _section_key(write.section),
                write.payload.ciphertext,
                write.payload.iv,
                write.created_at,
                error,
                utc_now_iso(),
            ),
        )

    async def list_dead_letters(self) -> list[DeadLetter]:
        rows = await asyncio.to_thread(
            self._fetch_all, "SELECT * FROM dead_letters ORDER BY seq ASC"
        )
        return [
            DeadLetter(write=_row_to_write(row), error=row["error"], failed_at=row["failed_at"])
            for row in rows
        ]

    async def clear_dead_letters(self) -> int:
        return await asyncio.to_thread(self._execute, "DELETE FROM dead_letters")

    def close(self) -> None:
        with self._lock:
            if self._closed:
                return
            self._conn.close()
            self._closed = True
