from __future__ import annotations

import dataclasses

import pytest

from fakes import member_row
from roster_sync.audit.models import ActionType
from roster_sync.crypto.adapter import encrypt, generate_key
from roster_sync.domain.marks import WeeklyEntry
from roster_sync.domain.models import Mark, Member, Section
from roster_sync.errors import EntityValidationError, PermanentWriteError
from roster_sync.remote.base import RemoteStoreError
from roster_sync.remote.settings_store import DEFAULT_SETTINGS, SettingsStore
from roster_sync.storage.local_store import Namespace
from roster_sync.storage.notifier import DATA_REFRESHED

COMPANY = Section.COMPANY
MEMBERS_TABLE = "company_members"
LOGS_TABLE = "company_audit_logs"


def _sam(**overrides) -> Member:
    fields = {"name": "Sam", "squad": 1, "year": 8}
    fields.update(overrides)
    return Member(**fields)


@pytest.mark.asyncio
async def test_offline_create_is_cached_queued_and_synced_later(ctx, remote, key) -> None:
    ctx.connectivity.set_online(False)

    member = await ctx.data.create_member(COMPANY, _sam(), key)

    assert remote.rows(MEMBERS_TABLE) == []
    pending = [w for w in await ctx.local.list_pending() if w.table == MEMBERS_TABLE]
    assert [(w.operation, w.record_id) for w in pending] == [("createMember", member.id)]
    assert [m.id for m in await ctx.data.fetch_members(COMPANY, key)] == [member.id]

    ctx.connectivity.set_online(True)
    result = await ctx.data.sync(key)

    assert result.ok
    assert result.applied == 2
    assert remote.tables[MEMBERS_TABLE][member.id]["name"] == "Sam"
    assert len(remote.rows(LOGS_TABLE)) == 1
    assert await ctx.local.pending_count() == 0


@pytest.mark.asyncio
async def test_write_behind_queued_writes_is_synced_in_order(ctx, remote, key) -> None:
    ctx.connectivity.set_online(False)
    first = await ctx.data.create_member(COMPANY, _sam(name="First"), key)
    ctx.connectivity.set_online(True)

    second = await ctx.data.create_member(COMPANY, _sam(name="Second"), key)
    await ctx.data.drain()

    member_calls = [call[2] for call in remote.calls if call[1] == MEMBERS_TABLE]
    assert member_calls == [first.id, second.id]
    assert await ctx.local.pending_count() == 0


@pytest.mark.asyncio
async def test_members_are_sorted_by_name(ctx, key) -> None:
    await ctx.data.create_member(COMPANY, _sam(name="Zed"), key)
    await ctx.data.create_member(COMPANY, _sam(name="amy"), key)

    members = await ctx.data.fetch_members(COMPANY, key)
    await ctx.data.drain()

    assert [m.name for m in members] == ["amy", "Zed"]


@pytest.mark.asyncio
async def test_background_refresh_updates_cache_and_notifies(ctx, remote, key) -> None:
    await ctx.data.create_member(COMPANY, _sam(), key)
    remote.seed(MEMBERS_TABLE, member_row("from-elsewhere", "Alex"))
    events = []
    ctx.notifier.subscribe(COMPANY, events.append)

    first = await ctx.data.fetch_members(COMPANY, key)
    await ctx.data.drain()
    second = await ctx.data.fetch_members(COMPANY, key)
    await ctx.data.drain()

    assert [m.name for m in first] == ["Sam"]
    assert [m.name for m in second] == ["Alex", "Sam"]
    assert DATA_REFRESHED in [event.topic for event in events]


@pytest.mark.asyncio
async def test_unchanged_remote_data_does_not_notify(ctx, key) -> None:
    await ctx.data.create_member(COMPANY, _sam(), key)
    events = []
    ctx.notifier.subscribe(COMPANY, events.append)

    await ctx.data.fetch_members(COMPANY, key)
    await ctx.data.drain()

    assert [e for e in events if e.topic == DATA_REFRESHED] == []


@pytest.mark.asyncio
async def test_refresh_does_not_drop_unsynced_writes(ctx, remote, key) -> None:
    ctx.connectivity.set_online(False)
    member = await ctx.data.create_member(COMPANY, _sam(), key)
    remote.seed(MEMBERS_TABLE, member_row("from-elsewhere", "Alex"))
    ctx.connectivity.set_online(True)

    members = await ctx.data.fetch_members(COMPANY, key)
    await ctx.data.drain()

    assert [m.id for m in members] == [member.id]
    assert await ctx.local.get(COMPANY, member.id) is not None


@pytest.mark.asyncio
async def test_undecryptable_cache_falls_back_to_remote(ctx, remote, key) -> None:
    await ctx.local.put(COMPANY, "stale", encrypt(member_row("stale", "Old key"), generate_key()))
    remote.seed(MEMBERS_TABLE, member_row("m-1", "Remote"))

    members = await ctx.data.fetch_members(COMPANY, key)

    assert [m.name for m in members] == ["Remote"]
    cached = await ctx.local.get_all(COMPANY)
    assert [record.id for record in cached] == ["m-1"]


@pytest.mark.asyncio
async def test_fetch_member_falls_back_to_remote(ctx, remote, key) -> None:
    remote.seed(MEMBERS_TABLE, member_row("m-1", "Remote"))

    member = await ctx.data.fetch_member(COMPANY, "m-1", key)
    missing = await ctx.data.fetch_member(COMPANY, "nope", key)

    assert member.name == "Remote"
    assert missing is None


@pytest.mark.asyncio
async def test_sections_are_isolated(ctx, remote, key) -> None:
    await ctx.data.create_member(COMPANY, _sam(), key)

    junior = await ctx.data.fetch_members(Section.JUNIOR, key)

    assert junior == []
    assert remote.rows("junior_members") == []


@pytest.mark.asyncio
async def test_update_merges_marks_recorded_elsewhere(ctx, remote, key) -> None:
    member = await ctx.data.create_member(
        COMPANY, _sam(marks=[Mark("2026-01-02", 5)]), key
    )
    remote.tables[MEMBERS_TABLE][member.id]["marks"].append({"date": "2026-01-09", "score": 7})

    updated = await ctx.data.update_member(
        COMPANY,
        dataclasses.replace(member, marks=[Mark("2026-01-16", 8), Mark("2026-01-02", 6)]),
        key,
    )

    assert [(m.date, m.score) for m in updated.marks] == [
        ("2026-01-16", 8),
        ("2026-01-09", 7),
        ("2026-01-02", 6),
    ]
    stored = remote.tables[MEMBERS_TABLE][member.id]["marks"]
    assert [mark["date"] for mark in stored] == ["2026-01-16", "2026-01-09", "2026-01-02"]


@pytest.mark.asyncio
async def test_invalid_member_is_rejected_before_any_write(ctx, remote, key) -> None:
    with pytest.raises(EntityValidationError, match="out of range"):
        await ctx.data.create_member(COMPANY, _sam(marks=[Mark("2026-01-02", 11)]), key)

    assert remote.calls == []
    assert await ctx.local.get_all(COMPANY) == []


@pytest.mark.asyncio
async def test_update_of_unknown_member_fails(ctx, key) -> None:
    with pytest.raises(EntityValidationError, match="not found"):
        await ctx.data.update_member(COMPANY, _sam(id="ghost"), key)


@pytest.mark.asyncio
async def test_rejected_create_rolls_back_cache(ctx, remote, key) -> None:
    member = _sam()
    remote.failures[member.id] = RemoteStoreError("violates check", status=400, code="23514")

    with pytest.raises(PermanentWriteError):
        await ctx.data.create_member(COMPANY, member, key)

    assert await ctx.local.get(COMPANY, member.id) is None
    assert await ctx.local.get_all(COMPANY, Namespace.AUDIT_LOGS) == []
    assert await ctx.local.pending_count() == 0


@pytest.mark.asyncio
async def test_rejected_update_restores_previous_version(ctx, remote, key) -> None:
    member = await ctx.data.create_member(COMPANY, _sam(), key)
    remote.failures[member.id] = RemoteStoreError("violates check", status=400)

    with pytest.raises(PermanentWriteError):
        await ctx.data.update_member(COMPANY, dataclasses.replace(member, name="Samuel"), key)

    cached = await ctx.data.fetch_member(COMPANY, member.id, key)
    assert cached.name == "Sam"


@pytest.mark.asyncio
async def test_delete_removes_member_and_logs_snapshot(ctx, remote, key) -> None:
    member = await ctx.data.create_member(COMPANY, _sam(), key)

    deleted = await ctx.data.delete_member(COMPANY, member.id, key)
    logs = await ctx.data.fetch_audit_logs(COMPANY, key)
    await ctx.data.drain()

    assert deleted.id == member.id
    assert member.id not in remote.tables[MEMBERS_TABLE]
    delete_log = next(log for log in logs if log.action_type is ActionType.DELETE_MEMBER)
    assert delete_log.revert_data["entity_data"]["name"] == "Sam"


@pytest.mark.asyncio
async def test_weekly_marks_are_one_audited_batch(ctx, remote, key) -> None:
    a = await ctx.data.create_member(COMPANY, _sam(name="Ari"), key)
    b = await ctx.data.create_member(COMPANY, _sam(name="Bo"), key)
    c = await ctx.data.create_member(COMPANY, _sam(name="Cy"), key)

    updated = await ctx.data.record_weekly_marks(
        COMPANY,
        "2026-02-06",
        {
            a.id: WeeklyEntry(present=True, score=9.5),
            b.id: WeeklyEntry(present=False),
            c.id: WeeklyEntry(present=True),
        },
        key,
    )
    await ctx.data.drain()

    assert {m.id for m in updated} == {a.id, b.id}
    assert remote.tables[MEMBERS_TABLE][a.id]["marks"] == [{"date": "2026-02-06", "score": 9.5}]
    assert remote.tables[MEMBERS_TABLE][b.id]["marks"] == [{"date": "2026-02-06", "score": -1.0}]
    assert remote.tables[MEMBERS_TABLE][c.id]["marks"] == []
    batch_logs = [
        row for row in remote.rows(LOGS_TABLE) if row["action_type"] == "UPDATE_MEMBER"
    ]
    assert len(batch_logs) == 1
    assert batch_logs[0]["description"] == "Updated weekly marks for 2 members on 2026-02-06"


@pytest.mark.asyncio
async def test_weekly_marks_without_changes_write_nothing(ctx, remote, key) -> None:
    member = await ctx.data.create_member(
        COMPANY, _sam(marks=[Mark("2026-02-06", 7)]), key
    )
    logs_before = len(remote.rows(LOGS_TABLE))

    updated = await ctx.data.record_weekly_marks(
        COMPANY, "2026-02-06", {member.id: WeeklyEntry(present=True, score=7)}, key
    )
    await ctx.data.drain()

    assert updated == []
    assert len(remote.rows(LOGS_TABLE)) == logs_before


@pytest.mark.asyncio
async def test_settings_default_save_and_offline_read(ctx, remote, key) -> None:
    assert await ctx.data.fetch_settings(COMPANY, key) == {"meeting_day": 5}

    await ctx.data.save_settings(COMPANY, {"meeting_day": 2}, key)

    assert remote.tables["settings"]["company"] == {"id": "company", "data": {"meeting_day": 2}}
    assert await ctx.data.fetch_settings(COMPANY, key) == {"meeting_day": 2}
    ctx.connectivity.set_online(False)
    assert await ctx.data.fetch_settings(COMPANY, key) == {"meeting_day": 2}
    assert await ctx.data.fetch_settings(Section.JUNIOR, key) == {"meeting_day": 5}


class MemorySettingsStore(SettingsStore):
    def __init__(self) -> None:
        self.saved: dict[Section, dict] = {}
        self.set_calls: list[tuple[Section, dict]] = []

    async def get(self, section: Section) -> dict:
        return {**DEFAULT_SETTINGS, **self.saved.get(section, {})}

    async def set(self, section: Section, blob: dict) -> None:
        self.set_calls.append((section, dict(blob)))
        self.saved[section] = dict(blob)


@pytest.mark.asyncio
async def test_settings_read_after_reconnect_keeps_queued_save(ctx, remote, key) -> None:
    ctx.connectivity.set_online(False)
    await ctx.data.save_settings(COMPANY, {"meeting_day": 3}, key)
    ctx.connectivity.set_online(True)

    assert await ctx.data.fetch_settings(COMPANY, key) == {"meeting_day": 3}
    assert remote.rows("settings") == []

    await ctx.data.save_settings(COMPANY, {"meeting_day": 4}, key)
    await ctx.data.drain()

    assert remote.tables["settings"]["company"]["data"] == {"meeting_day": 4}
    logs = await ctx.data.fetch_audit_logs(COMPANY, key)
    await ctx.data.drain()
    previous = [
        log.revert_data["settings"]["meeting_day"]
        for log in logs
        if log.action_type is ActionType.UPDATE_SETTINGS
    ]
    assert sorted(previous) == [3, 5]


@pytest.mark.asyncio
async def test_settings_writes_go_through_settings_store(make_ctx, remote, key) -> None:
    store = MemorySettingsStore()
    ctx = make_ctx(settings_store=store)

    await ctx.data.save_settings(COMPANY, {"meeting_day": 2}, key)

    assert store.set_calls == [(COMPANY, {"meeting_day": 2})]
    assert remote.rows("settings") == []
    assert await ctx.data.fetch_settings(COMPANY, key) == {"meeting_day": 2}

    ctx.connectivity.set_online(False)
    await ctx.data.save_settings(COMPANY, {"meeting_day": 6}, key)
    ctx.connectivity.set_online(True)
    result = await ctx.data.sync(key)

    assert result.ok
    assert store.saved[COMPANY] == {"meeting_day": 6}

    logs = await ctx.data.fetch_audit_logs(COMPANY, key)
    await ctx.data.drain()
    latest = next(
        log
        for log in logs
        if log.action_type is ActionType.UPDATE_SETTINGS
        and log.revert_data["settings"] == {"meeting_day": 2}
    )
    await ctx.data.revert_log(latest, key, logs)

    assert store.saved[COMPANY] == {"meeting_day": 2}
    assert remote.rows("settings") == []
