"""Data access facade for members, settings, sync and audit logs.

Every call takes the section and the session key explicitly. Writes are
applied to the local encrypted cache first and then submitted to the sync
engine; reads serve the cache and refresh it from the remote store in the
background when online.
"""

from __future__ import annotations

import asyncio
import copy
import logging
from typing import Any

from roster_sync.audit.models import ActionType, AuditEntry, AuditLog
from roster_sync.audit.revert import RevertService, require_fields
from roster_sync.audit.service import AuditLogService, has_been_reverted
from roster_sync.domain.marks import (
    WeeklyEntry,
    build_weekly_updates,
    merge_marks,
    validate_member_marks,
)
from roster_sync.domain.models import Member, Section
from roster_sync.errors import EntityValidationError, NotRevertibleError, TransientNetworkError
from roster_sync.facade.records import RecordWriter
from roster_sync.remote.base import MEMBERS, SETTINGS, Row, table_name
from roster_sync.remote.settings_store import (
    DEFAULT_SETTINGS,
    SettingsStore,
    default_settings,
    settings_row,
)
from roster_sync.storage.local_store import Namespace
from roster_sync.sync.models import SyncResult, WriteKind
from roster_sync.utils.serialization import dumps_canonical
from roster_sync.utils.tasks import BackgroundTasks

logger = logging.getLogger(__name__)


def _sorted_members(members: list[Member]) -> list[Member]:
    return sorted(members, key=lambda m: (m.name.lower(), m.id))


class DataAccess:
    def __init__(
        self,
        writer: RecordWriter,
        audit: AuditLogService,
        reverts: RevertService,
        settings_store: SettingsStore,
    ) -> None:
        self._writer = writer
        self._local = writer.local
        self._engine = writer.engine
        self._audit = audit
        self._reverts = reverts
        self._settings_store = settings_store
        self._background = BackgroundTasks("member-refresh")
        self._engine.route(SETTINGS, self._apply_settings)

        reverts.register(ActionType.CREATE_MEMBER, self._revert_create)
        reverts.register(ActionType.DELETE_MEMBER, self._revert_delete)
        reverts.register(ActionType.UPDATE_MEMBER, self._revert_update)
        reverts.register(ActionType.UPDATE_SETTINGS, self._revert_settings)

    @property
    def is_online(self) -> bool:
        return self._engine.connectivity.is_online

    async def drain(self) -> None:
        """Wait for background refreshes and sync passes to finish."""
        await self._background.drain()
        await self._audit.drain()
        await self._engine.drain()

    # -- members ------------------------------------------------------------

    async def _refresh_members(self, section: Section, key: bytes) -> list[Member] | None:
        if await self._local.pending_count() > 0:
            return None
        try:
            rows = await self._engine.remote.select(table_name(section, MEMBERS))
        except TransientNetworkError as exc:
            logger.info("Member refresh skipped: %s", exc)
            return None

        fresh = _sorted_members([Member.from_dict(row) for row in rows])
        cached_rows, readable = await self._writer.read_all(Namespace.MEMBERS, section, key)
        cached = _sorted_members([Member.from_dict(row) for row in cached_rows])
        if readable and dumps_canonical(cached) == dumps_canonical(fresh):
            return fresh

        await self._writer.replace_all(
            Namespace.MEMBERS, section, [member.to_dict() for member in fresh], key
        )
        logger.info("Member cache refreshed for %s (%d members)", section.value, len(fresh))
        return fresh

    async def fetch_members(self, section: Section, key: bytes) -> list[Member]:
        rows, readable = await self._writer.read_all(Namespace.MEMBERS, section, key)
        members = _sorted_members([Member.from_dict(row) for row in rows])
        if not self.is_online:
            return members
        if members and readable:
            self._background.spawn(self._refresh_members(section, key))
            return members
        fresh = await self._refresh_members(section, key)
        return fresh if fresh is not None else members

    async def fetch_member(self, section: Section, member_id: str, key: bytes) -> Member | None:
        row = await self._writer.read(Namespace.MEMBERS, section, member_id, key)
        if row is not None:
            return Member.from_dict(row)
        if not self.is_online:
            return None
        try:
            remote_row = await self._engine.remote.select_one(
                table_name(section, MEMBERS), member_id
            )
        except TransientNetworkError:
            return None
        return Member.from_dict(remote_row) if remote_row else None

    async def _require_member(self, section: Section, member_id: str, key: bytes) -> Member:
        member = await self.fetch_member(section, member_id, key)
        if member is None:
            raise EntityValidationError(f"Member {member_id} not found in {section.value}")
        return member

    async def _store_member(
        self,
        section: Section,
        member: Member,
        key: bytes,
        previous: Member | None,
        operation: str,
    ) -> None:
        await self._writer.save(
            namespace=Namespace.MEMBERS,
            section=section,
            table=table_name(section, MEMBERS),
            row=member.to_dict(),
            previous=previous.to_dict() if previous else None,
            key=key,
            operation=operation,
            kind=WriteKind.INSERT if previous is None else WriteKind.UPSERT,
        )

    async def _remove_member(
        self,
        section: Section,
        member_id: str,
        key: bytes,
        previous: Member | None,
    ) -> None:
        await self._writer.remove(
            namespace=Namespace.MEMBERS,
            section=section,
            table=table_name(section, MEMBERS),
            record_id=member_id,
            previous=previous.to_dict() if previous else None,
            key=key,
            operation="deleteMember",
        )

    async def create_member(self, section: Section, member: Member, key: bytes) -> Member:
        """Create ``member`` under its client-generated id, online or offline."""
        validate_member_marks(member, section)
        await self._store_member(section, member, key, None, "createMember")
        await self._audit.create_audit_log(
            AuditEntry(
                action_type=ActionType.CREATE_MEMBER,
                description=f"Added new member: {member.name}",
                revert_data={"entity_id": member.id},
            ),
            section,
            key,
        )
        return member

    async def update_member(self, section: Section, member: Member, key: bytes) -> Member:
        previous = await self._require_member(section, member.id, key)
        updated = copy.deepcopy(member)
        if self.is_online:
            try:
                remote_row = await self._engine.remote.select_one(
                    table_name(section, MEMBERS), member.id
                )
            except TransientNetworkError:
                remote_row = None
            if remote_row:
                updated.marks = merge_marks(updated.marks, Member.from_dict(remote_row).marks)
        validate_member_marks(updated, section)

        await self._store_member(section, updated, key, previous, "updateMember")
        await self._audit.create_audit_log(
            AuditEntry(
                action_type=ActionType.UPDATE_MEMBER,
                description=f"Updated member: {updated.name}",
                revert_data={"entity_data": previous.to_dict()},
            ),
            section,
            key,
        )
        return updated

    async def delete_member(self, section: Section, member_id: str, key: bytes) -> Member:
        previous = await self._require_member(section, member_id, key)
        await self._remove_member(section, member_id, key, previous)
        await self._audit.create_audit_log(
            AuditEntry(
                action_type=ActionType.DELETE_MEMBER,
                description=f"Deleted member: {previous.name}",
                revert_data={"entity_data": previous.to_dict()},
            ),
            section,
            key,
        )
        return previous

    async def record_weekly_marks(
        self,
        section: Section,
        date: str,
        entries: dict[str, WeeklyEntry],
        key: bytes,
    ) -> list[Member]:
        """Record one meeting's marks as a single audited batch.

        Members without a change on ``date`` are left alone; present members
        with no score entered are skipped.
        """
        members = await self.fetch_members(section, key)
        updates = build_weekly_updates(members, date, entries, section)
        if not updates:
            return []

        await self._audit.create_audit_log(
            AuditEntry(
                action_type=ActionType.UPDATE_MEMBER,
                description=f"Updated weekly marks for {len(updates)} members on {date}",
                revert_data={"entities_data": [before.to_dict() for before, _ in updates]},
            ),
            section,
            key,
        )
        results = await asyncio.gather(
            *(
                self._store_member(section, after, key, before, "updateMember")
                for before, after in updates
            ),
            return_exceptions=True,
        )
        for result in results:
            if isinstance(result, BaseException):
                raise result
        return [after for _, after in updates]

    # -- settings -----------------------------------------------------------

    async def fetch_settings(self, section: Section, key: bytes) -> dict[str, Any]:
        row = await self._writer.read(Namespace.SETTINGS, section, section.value, key)
        if self.is_online:
            try:
                settings = await self._settings_store.get(section)
            except TransientNetworkError as exc:
                logger.info("Settings fetch fell back to cache: %s", exc)
            else:
                row = await self._writer.reconcile_one(
                    Namespace.SETTINGS,
                    section,
                    SETTINGS,
                    section.value,
                    settings_row(section, settings),
                    row,
                    key,
                )
        if row is not None and isinstance(row.get("data"), dict):
            return {**DEFAULT_SETTINGS, **row["data"]}
        return default_settings()

    async def _apply_settings(self, kind: WriteKind, record_id: str, row: Row) -> None:
        await self._settings_store.set(Section(record_id), dict(row.get("data") or {}))

    async def _store_settings(
        self,
        section: Section,
        settings: dict[str, Any],
        previous: dict[str, Any] | None,
        key: bytes,
    ) -> None:
        await self._writer.save(
            namespace=Namespace.SETTINGS,
            section=section,
            table=SETTINGS,
            row=settings_row(section, settings),
            previous=settings_row(section, previous) if previous is not None else None,
            key=key,
            operation="saveSettings",
        )

    async def save_settings(self, section: Section, settings: dict[str, Any], key: bytes) -> None:
        previous = await self.fetch_settings(section, key)
        await self._store_settings(section, settings, previous, key)
        await self._audit.create_audit_log(
            AuditEntry(
                action_type=ActionType.UPDATE_SETTINGS,
                description=f"Updated {section.value} section settings",
                revert_data={"settings": previous},
            ),
            section,
            key,
        )

    # -- sync and audit -----------------------------------------------------

    async def sync(self, key: bytes) -> SyncResult:
        return await self._engine.sync_pending_writes(key)

    async def fetch_audit_logs(self, section: Section | None, key: bytes) -> list[AuditLog]:
        return await self._audit.fetch_audit_logs(section, key)

    def has_been_reverted(self, log: AuditLog, logs: list[AuditLog]) -> bool:
        return has_been_reverted(log, logs)

    async def revert_log(
        self,
        log: AuditLog,
        key: bytes,
        logs: list[AuditLog] | None = None,
    ) -> AuditLog:
        """Revert ``log``; ``logs`` is the list the caller already shows, if any."""
        return await self._reverts.revert(log, key, logs)

    async def prune_audit_logs(self, section: Section | None, key: bytes) -> int:
        return await self._audit.prune_audit_logs(section, key)

    # -- revert handlers ----------------------------------------------------

    @staticmethod
    def _log_section(log: AuditLog) -> Section:
        if log.section is None:
            raise NotRevertibleError(f"Log {log.id} is not tied to a section")
        return log.section

    @staticmethod
    def _snapshot(data: Any) -> Member:
        try:
            return Member.from_dict(data)
        except (KeyError, TypeError, ValueError) as exc:
            raise NotRevertibleError(f"Member snapshot is incomplete: {exc}") from exc

    async def _revert_create(self, log: AuditLog, key: bytes) -> str:
        section = self._log_section(log)
        member_id = str(require_fields(log, "entity_id")["entity_id"])
        current = await self.fetch_member(section, member_id, key)
        await self._remove_member(section, member_id, key, current)
        return f"removed member {member_id}"

    async def _revert_delete(self, log: AuditLog, key: bytes) -> str:
        section = self._log_section(log)
        snapshot = self._snapshot(require_fields(log, "entity_data")["entity_data"])
        await self._store_member(section, snapshot, key, None, "recreateMember")
        return f"restored member {snapshot.name}"

    async def _revert_update(self, log: AuditLog, key: bytes) -> str:
        section = self._log_section(log)
        data = log.revert_data or {}
        if data.get("entities_data") is not None:
            raw = data["entities_data"]
            if not isinstance(raw, list):
                raise NotRevertibleError("entities_data must be a list of member snapshots")
            snapshots = [self._snapshot(item) for item in raw]
        elif data.get("entity_data") is not None:
            snapshots = [self._snapshot(data["entity_data"])]
        else:
            raise NotRevertibleError("Revert data for UPDATE_MEMBER is missing: entity_data")

        currents = [await self.fetch_member(section, s.id, key) for s in snapshots]
        results = await asyncio.gather(
            *(
                self._store_member(section, snapshot, key, current, "restoreMember")
                for snapshot, current in zip(snapshots, currents)
            ),
            return_exceptions=True,
        )
        for result in results:
            if isinstance(result, BaseException):
                raise result
        return f"restored {len(snapshots)} member(s)"

    async def _revert_settings(self, log: AuditLog, key: bytes) -> str:
        section = self._log_section(log)
        settings = require_fields(log, "settings")["settings"]
        if not isinstance(settings, dict):
            raise NotRevertibleError("Previous settings are not an object")
        current = await self.fetch_settings(section, key)
        await self._store_settings(section, settings, current, key)
        return "restored settings"
