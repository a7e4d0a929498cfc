"""Audit log creation, retrieval and retention.

Logs are written once and never edited: the local copy is encrypted with the
session key, the remote row goes through the sync engine like any other write.
A log is "reverted" when some REVERT_ACTION log points back at it.
"""

from __future__ import annotations

import copy
import logging
from typing import Iterable

from roster_sync.audit.models import ActionType, AuditEntry, AuditLog
from roster_sync.auth.session import AuthProvider
from roster_sync.crypto.adapter import decrypt, encrypt
from roster_sync.domain.models import Section
from roster_sync.errors import DecryptionError, TransientNetworkError
from roster_sync.remote.base import AUDIT_LOGS, Filter, lt, table_name
from roster_sync.storage.local_store import LocalStore, Namespace
from roster_sync.sync.engine import SyncEngine
from roster_sync.sync.models import WriteKind
from roster_sync.utils.serialization import dumps_canonical
from roster_sync.utils.tasks import BackgroundTasks
from roster_sync.utils.time import cutoff, parse_timestamp

logger = logging.getLogger(__name__)


def sort_newest_first(logs: Iterable[AuditLog]) -> list[AuditLog]:
    return sorted(logs, key=lambda log: parse_timestamp(log.timestamp), reverse=True)


def has_been_reverted(log: AuditLog, logs: Iterable[AuditLog]) -> bool:
    return any(
        other.action_type is ActionType.REVERT_ACTION and other.reverted_log_id == log.id
        for other in logs
    )


class AuditLogService:
    def __init__(
        self,
        local: LocalStore,
        engine: SyncEngine,
        auth: AuthProvider,
        retention_days: int = 14,
        fetch_limit: int = 50,
    ) -> None:
        self._local = local
        self._engine = engine
        self._auth = auth
        self._retention_days = retention_days
        self._fetch_limit = fetch_limit
        self._background = BackgroundTasks("audit-refresh")

    async def drain(self) -> None:
        await self._background.drain()

    async def create_audit_log(
        self,
        entry: AuditEntry,
        section: Section | None,
        key: bytes,
    ) -> AuditLog:
        """Persist a new log stamped with the signed-in user's email."""
        session = self._auth.current_session()
        log = AuditLog(
            action_type=entry.action_type,
            description=entry.description,
            user_email=session.email,
            section=section,
            revert_data=copy.deepcopy(entry.revert_data),
            reverted_log_id=entry.reverted_log_id,
        )
        row = log.to_dict()
        await self._local.put(section, log.id, encrypt(row, key), Namespace.AUDIT_LOGS)
        await self._engine.submit(
            operation="createAuditLog",
            kind=WriteKind.INSERT,
            table=table_name(section, AUDIT_LOGS),
            record_id=log.id,
            section=section,
            row=row,
            key=key,
        )
        logger.info("Audit %s by %s: %s", log.action_type.value, log.user_email, log.description)
        return log

    async def _read_cache(self, section: Section | None, key: bytes) -> tuple[list[AuditLog], bool]:
        """Decrypt cached logs; the flag is False when some entry was unreadable."""
        logs: list[AuditLog] = []
        readable = True
        for record in await self._local.get_all(section, Namespace.AUDIT_LOGS):
            try:
                logs.append(AuditLog.from_dict(decrypt(record.payload, key)))
            except DecryptionError:
                readable = False
                logger.warning("Skipping unreadable cached audit log %s", record.id)
            except (KeyError, ValueError) as exc:
                logger.warning("Skipping malformed cached audit log %s: %s", record.id, exc)
        return logs, readable

    async def _refresh_scope(self, section: Section | None, key: bytes) -> list[AuditLog] | None:
        """Pull the newest logs for one table and rewrite the cache if they changed.

        Returns ``None`` when the refresh could not run.
        """
        if await self._local.pending_count() > 0:
            # Unsynced local logs would be dropped by a wholesale replace.
            return None
        try:
            rows = await self._engine.remote.select(
                table_name(section, AUDIT_LOGS),
                order_by="timestamp",
                descending=True,
                limit=self._fetch_limit,
            )
        except TransientNetworkError as exc:
            logger.info("Audit log refresh skipped: %s", exc)
            return None

        fresh = [AuditLog.from_dict(row) for row in rows]
        cached, readable = await self._read_cache(section, key)
        if readable and dumps_canonical(
            [log.to_dict() for log in sort_newest_first(cached)]
        ) == dumps_canonical([log.to_dict() for log in sort_newest_first(fresh)]):
            return fresh

        await self._local.put_many(
            section,
            {log.id: encrypt(log.to_dict(), key) for log in fresh},
            Namespace.AUDIT_LOGS,
            replace=True,
        )
        logger.info("Audit log cache refreshed for %s", section.value if section else "global")
        return fresh

    async def _refresh(self, section: Section | None, key: bytes) -> list[AuditLog] | None:
        scoped = await self._refresh_scope(section, key)
        if section is None:
            return scoped
        global_logs = await self._refresh_scope(None, key)
        if scoped is None or global_logs is None:
            return None
        return scoped + global_logs

    async def fetch_audit_logs(self, section: Section | None, key: bytes) -> list[AuditLog]:
        """Section logs plus global logs, newest first.

        A readable, non-empty cache is returned immediately and refreshed in
        the background; otherwise the remote store is consulted directly.
        """
        logs, readable = await self._read_cache(section, key)
        if section is not None:
            global_logs, global_readable = await self._read_cache(None, key)
            logs.extend(global_logs)
            readable = readable and global_readable

        if not self._engine.connectivity.is_online:
            return sort_newest_first(logs)
        if logs and readable:
            self._background.spawn(self._refresh(section, key))
            return sort_newest_first(logs)

        fresh = await self._refresh(section, key)
        return sort_newest_first(fresh if fresh is not None else logs)

    async def prune_audit_logs(self, section: Section | None, key: bytes) -> int:
        """Drop logs older than the retention window locally and remotely."""
        threshold = cutoff(self._retention_days)
        stale = []
        for record in await self._local.get_all(section, Namespace.AUDIT_LOGS):
            try:
                log = AuditLog.from_dict(decrypt(record.payload, key))
            except DecryptionError:
                continue
            if parse_timestamp(log.timestamp) < threshold:
                stale.append(log.id)
        removed = await self._local.remove_many(section, stale, Namespace.AUDIT_LOGS)

        if self._engine.connectivity.is_online:
            filters: list[Filter] = [lt("timestamp", threshold.isoformat())]
            try:
                await self._engine.remote.delete_where(table_name(section, AUDIT_LOGS), filters)
            except TransientNetworkError as exc:
                logger.info("Remote audit pruning deferred: %s", exc)
        if removed:
            logger.info("Pruned %d audit logs older than %d days", removed, self._retention_days)
        return removed

    async def clear_audit_logs(self, section: Section | None, key: bytes) -> int:
        """Delete every log of ``section`` and record the clear.

        Requires connectivity; callers check permissions first.
        """
        if not self._engine.connectivity.is_online:
            raise TransientNetworkError("Clearing audit logs requires a connection")
        removed = await self._engine.remote.delete_where(
            table_name(section, AUDIT_LOGS), [Filter("id", "not.is", None)]
        )
        await self._local.clear_namespace(section, Namespace.AUDIT_LOGS)
        await self.create_audit_log(
            AuditEntry(
                action_type=ActionType.CLEAR_AUDIT_LOGS,
                description=f"Cleared {removed} audit logs",
            ),
            section,
            key,
        )
        return removed
