from __future__ import annotations

import asyncio

import pytest

from models import APPOINTMENTS, MEMBERS, SERVICES, ChangeEvent
from reconciler import ChangeFeedReconciler, coerce_event
from errors import MalformedEventError
from store import EntityStore
from tests.conftest import appointment_row, member_row, service_row


async def _settle():
    for _ in range(5):
        await asyncio.sleep(0)


@pytest.mark.asyncio
async def test_initial_load_from_sqlite(sqlite_remote):
    svc = sqlite_remote.insert(SERVICES, service_row(id="s1"))
    sqlite_remote.insert(MEMBERS, member_row(id="m1", services=[svc["id"]]))
    sqlite_remote.insert(APPOINTMENTS, appointment_row(id="a1"))

    store = EntityStore()
    rec = ChangeFeedReconciler(sqlite_remote, store)
    assert await rec.start() is True

    assert store.get(MEMBERS, "m1").subscribed_services == ("s1",)
    assert store.get(APPOINTMENTS, "a1").status == "scheduled"
    assert store.revision_of(APPOINTMENTS, "a1") == 1
    assert not store.is_stale()
    rec.stop()


@pytest.mark.asyncio
async def test_live_writes_flow_through_the_feed(sqlite_remote):
    store = EntityStore()
    rec = ChangeFeedReconciler(sqlite_remote, store)
    await rec.start()

    sqlite_remote.insert(APPOINTMENTS, appointment_row(id="a1"))
    assert store.get(APPOINTMENTS, "a1") is not None

    sqlite_remote.update(APPOINTMENTS, "a1", {"status": "in-progress"})
    assert store.get(APPOINTMENTS, "a1").status == "in-progress"
    assert store.revision_of(APPOINTMENTS, "a1") == 2

    sqlite_remote.delete(APPOINTMENTS, "a1")
    assert store.get(APPOINTMENTS, "a1") is None
    assert rec.applied_events == 3
    rec.stop()


@pytest.mark.asyncio
async def test_duplicate_delivery_is_idempotent(fake_remote):
    store = EntityStore()
    rec = ChangeFeedReconciler(fake_remote, store)
    await rec.start()

    event = ChangeEvent("insert", APPOINTMENTS, appointment_row(id="a1"), revision=1)
    rec.handle_event(event)
    before = store.as_map(APPOINTMENTS)
    rec.handle_event(event)

    assert store.as_map(APPOINTMENTS) == before


@pytest.mark.asyncio
async def test_malformed_event_is_dropped(fake_remote):
    store = EntityStore()
    rec = ChangeFeedReconciler(fake_remote, store)
    await rec.start()

    bad = appointment_row(id="a1")
    del bad["member_id"]
    rec.handle_event(ChangeEvent("insert", APPOINTMENTS, bad))
    rec.handle_event(ChangeEvent("insert", APPOINTMENTS, appointment_row(id="a2", status="paused")))
    rec.handle_event({"kind": "upsert", "entity_type": APPOINTMENTS, "entity": appointment_row(id="a3")})
    rec.handle_event({"entity": {}})
    rec.handle_event(ChangeEvent("delete", APPOINTMENTS, {}))

    assert store.get_all(APPOINTMENTS) == []
    assert rec.dropped_events == 5
    assert rec.applied_events == 0


def test_coerce_event_accepts_plain_mappings():
    event = coerce_event({"kind": "update", "entity_type": MEMBERS, "entity": member_row(), "revision": 3})
    assert event.revision == 3

    with pytest.raises(MalformedEventError):
        coerce_event({"kind": "update", "entity_type": MEMBERS, "entity": member_row(), "revision": "3"})


@pytest.mark.asyncio
async def test_disconnect_triggers_resubscribe_and_reload(fake_remote):
    fake_remote.put(MEMBERS, member_row(id="m1"))
    store = EntityStore()
    rec = ChangeFeedReconciler(fake_remote, store)
    await rec.start()
    loads_after_start = fake_remote.load_calls

    # changes made while disconnected are never delivered as events
    fake_remote.drop_connection()
    fake_remote.put(MEMBERS, member_row(id="m2", first="Mehmet"))
    assert store.is_stale(MEMBERS)
    await _settle()

    assert rec.subscribed
    assert fake_remote.load_calls > loads_after_start
    assert store.get(MEMBERS, "m2") is not None
    assert not store.is_stale()
    rec.stop()


@pytest.mark.asyncio
async def test_failed_reload_keeps_last_known_good(fake_remote):
    fake_remote.put(MEMBERS, member_row(id="m1"))
    store = EntityStore()
    rec = ChangeFeedReconciler(fake_remote, store)
    await rec.start()

    fake_remote.fail_load.add(APPOINTMENTS)
    fake_remote.rows[MEMBERS].clear()
    fake_remote.drop_connection()
    await _settle()

    # nothing replaced: members fetch succeeded but appointments failed
    assert store.get(MEMBERS, "m1") is not None
    assert store.is_stale()

    fake_remote.fail_load.clear()
    assert await rec.resync() is True
    assert store.get(MEMBERS, "m1") is None
    assert not store.is_stale()
    rec.stop()


@pytest.mark.asyncio
async def test_events_during_load_are_replayed_after_it(fake_remote):
    fake_remote.put(APPOINTMENTS, appointment_row(id="a1"))
    store = EntityStore()
    rec = ChangeFeedReconciler(fake_remote, store)

    original_load = fake_remote.load_all

    async def load_with_concurrent_event(entity_type):
        rows = await original_load(entity_type)
        if entity_type == APPOINTMENTS:
            rec.handle_event(ChangeEvent("insert", APPOINTMENTS, appointment_row(id="a2")))
        return rows

    fake_remote.load_all = load_with_concurrent_event
    await rec.start()

    assert {a.id for a in store.get_all(APPOINTMENTS)} == {"a1", "a2"}


@pytest.mark.asyncio
async def test_feed_drop_during_load_resubscribes_and_reloads(fake_remote):
    fake_remote.put(MEMBERS, member_row(id="m1"))
    store = EntityStore()
    rec = ChangeFeedReconciler(fake_remote, store)

    original_load = fake_remote.load_all
    dropped = []

    async def load_then_drop(entity_type):
        await asyncio.sleep(0)
        if not dropped:
            dropped.append(entity_type)
            fake_remote.drop_connection()
            # written while no one is subscribed
            fake_remote.put(MEMBERS, member_row(id="m2", first="Mehmet"))
        return await original_load(entity_type)

    fake_remote.load_all = load_then_drop
    assert await rec.start() is True
    await _settle()

    assert rec.subscribed
    assert all(len(fake_remote.subscribers[t]) == 1 for t in rec.entity_types)
    assert not store.is_stale()
    assert store.get(MEMBERS, "m2") is not None

    fake_remote.emit(ChangeEvent("update", MEMBERS, member_row(id="m1", first="Elif")))
    assert store.get(MEMBERS, "m1").first_name == "Elif"
    rec.stop()


@pytest.mark.asyncio
async def test_stop_unsubscribes(fake_remote):
    rec = ChangeFeedReconciler(fake_remote, EntityStore())
    await rec.start()
    assert all(fake_remote.subscribers[t] for t in rec.entity_types)

    rec.stop()
    assert not any(fake_remote.subscribers[t] for t in rec.entity_types)
    assert not rec.subscribed
