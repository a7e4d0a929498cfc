from __future__ import annotations

import pytest

from roster_sync.crypto.adapter import decrypt, encrypt
from roster_sync.domain.models import Section
from roster_sync.storage.local_store import LocalStore, Namespace
from roster_sync.storage.notifier import DATA_REFRESHED, LOGS_REFRESHED, RefreshNotifier
from roster_sync.sync.models import PendingWrite, WriteKind


@pytest.fixture
def db_path(tmp_path):
    return str(tmp_path / "cache.sqlite")


@pytest.fixture
def notifier():
    return RefreshNotifier()


@pytest.fixture
def store(db_path, notifier):
    local_store = LocalStore(db_path, notifier=notifier)
    yield local_store
    local_store.close()


def _write(record_id: str, key: bytes, section: Section | None = Section.COMPANY) -> PendingWrite:
    return PendingWrite(
        operation="createMember",
        kind=WriteKind.INSERT,
        table="company_members",
        record_id=record_id,
        section=section,
        payload=encrypt({"id": record_id}, key),
    )


@pytest.mark.asyncio
async def test_records_are_scoped_by_section(store, key) -> None:
    await store.put(Section.COMPANY, "m-1", encrypt({"name": "Company"}, key))
    await store.put(Section.JUNIOR, "m-1", encrypt({"name": "Junior"}, key))

    company = await store.get_all(Section.COMPANY)
    junior_blob = await store.get(Section.JUNIOR, "m-1")

    assert [record.id for record in company] == ["m-1"]
    assert decrypt(company[0].payload, key) == {"name": "Company"}
    assert decrypt(junior_blob, key) == {"name": "Junior"}
    assert await store.get_all(None) == []


@pytest.mark.asyncio
async def test_namespaces_are_isolated(store, key) -> None:
    await store.put(Section.COMPANY, "x", encrypt({"kind": "member"}, key))
    await store.put(Section.COMPANY, "x", encrypt({"kind": "log"}, key), Namespace.AUDIT_LOGS)

    member = await store.get(Section.COMPANY, "x")
    log = await store.get(Section.COMPANY, "x", Namespace.AUDIT_LOGS)

    assert decrypt(member, key) == {"kind": "member"}
    assert decrypt(log, key) == {"kind": "log"}


@pytest.mark.asyncio
async def test_remove_reports_whether_a_record_existed(store, key) -> None:
    await store.put(Section.COMPANY, "m-1", encrypt({}, key))

    assert await store.remove(Section.COMPANY, "m-1") is True
    assert await store.remove(Section.COMPANY, "m-1") is False
    assert await store.get(Section.COMPANY, "m-1") is None


@pytest.mark.asyncio
async def test_put_many_replace_swaps_section_contents(store, key) -> None:
    await store.put(Section.COMPANY, "old", encrypt({}, key))
    await store.put(Section.JUNIOR, "keep", encrypt({}, key))

    await store.put_many(
        Section.COMPANY,
        {"a": encrypt({}, key), "b": encrypt({}, key)},
        replace=True,
    )

    assert [r.id for r in await store.get_all(Section.COMPANY)] == ["a", "b"]
    assert [r.id for r in await store.get_all(Section.JUNIOR)] == ["keep"]


@pytest.mark.asyncio
async def test_mutations_publish_refresh_events(store, notifier, key) -> None:
    events = []
    notifier.subscribe(Section.COMPANY, events.append)

    await store.put(Section.COMPANY, "m-1", encrypt({}, key))
    await store.put(Section.COMPANY, "l-1", encrypt({}, key), Namespace.AUDIT_LOGS)
    await store.put(Section.JUNIOR, "m-2", encrypt({}, key))

    assert [event.topic for event in events] == [DATA_REFRESHED, LOGS_REFRESHED]


@pytest.mark.asyncio
async def test_pending_writes_are_listed_in_enqueue_order(store, key) -> None:
    for record_id in ("w1", "w2", "w3"):
        await store.enqueue(_write(record_id, key))

    pending = await store.list_pending()

    assert [w.record_id for w in pending] == ["w1", "w2", "w3"]
    assert [w.seq for w in pending] == sorted(w.seq for w in pending)
    assert pending[0].kind is WriteKind.INSERT
    assert pending[0].section is Section.COMPANY
    assert decrypt(pending[0].payload, key) == {"id": "w1"}


@pytest.mark.asyncio
async def test_clear_pending_through_seq_keeps_later_writes(store, key) -> None:
    first = await store.enqueue(_write("w1", key))
    await store.enqueue(_write("w2", key))

    await store.clear_pending(through_seq=first.seq)

    assert [w.record_id for w in await store.list_pending()] == ["w2"]
    await store.clear_pending()
    assert await store.pending_count() == 0


@pytest.mark.asyncio
async def test_global_writes_keep_a_null_section(store, key) -> None:
    await store.enqueue(_write("g1", key, section=None))

    pending = await store.list_pending()

    assert pending[0].section is None


@pytest.mark.asyncio
async def test_dead_letters_are_deduplicated_by_seq(store, key) -> None:
    write = await store.enqueue(_write("w1", key))

    await store.add_dead_letter(write, "RemoteStoreError: bad row")
    await store.add_dead_letter(write, "RemoteStoreError: bad row again")

    letters = await store.list_dead_letters()
    assert len(letters) == 1
    assert letters[0].write.record_id == "w1"
    assert letters[0].error == "RemoteStoreError: bad row again"

    assert await store.clear_dead_letters() == 1
    assert await store.list_dead_letters() == []


@pytest.mark.asyncio
async def test_queue_survives_reopen(db_path, key) -> None:
    first = LocalStore(db_path)
    await first.enqueue(_write("w1", key))
    first.close()

    second = LocalStore(db_path)
    try:
        assert [w.record_id for w in await second.list_pending()] == ["w1"]
    finally:
        second.close()


@pytest.mark.asyncio
async def test_clear_section_data_leaves_other_sections_and_queue(store, key) -> None:
    await store.put(Section.COMPANY, "m-1", encrypt({}, key))
    await store.put(Section.COMPANY, "l-1", encrypt({}, key), Namespace.AUDIT_LOGS)
    await store.put(Section.JUNIOR, "m-2", encrypt({}, key))
    await store.enqueue(_write("w1", key))

    removed = await store.clear_section_data(Section.COMPANY)

    assert removed == 2
    assert await store.get_all(Section.COMPANY) == []
    assert len(await store.get_all(Section.JUNIOR)) == 1
    assert await store.pending_count() == 1
