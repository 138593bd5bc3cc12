from __future__ import annotations

from datetime import date, time

import pytest

from db import SqliteRemoteStore
from errors import FetchError, WriteError
from models import ENTITY_TYPES, Appointment, ChangeEvent, Member, Service


class FakeRemote:
    """In-memory remote store with failure switches."""

    def __init__(self):
        self.rows = {t: {} for t in ENTITY_TYPES}
        self.subscribers = {t: [] for t in ENTITY_TYPES}
        self.fail_load: set[str] = set()
        self.fail_update_ids: set[str] = set()
        self.updates: list[tuple[str, str, dict]] = []
        self.load_calls = 0

    def put(self, entity_type: str, row: dict) -> dict:
        self.rows[entity_type][row["id"]] = dict(row)
        return row

    async def load_all(self, entity_type):
        self.load_calls += 1
        if entity_type in self.fail_load:
            raise FetchError(f"{entity_type} unavailable")
        return [dict(r) for r in self.rows[entity_type].values()]

    def subscribe(self, entity_type, on_event, on_close=None):
        entry = (on_event, on_close)
        self.subscribers[entity_type].append(entry)
        return lambda: self.subscribers[entity_type].remove(entry)

    async def update_field(self, entity_type, entity_id, patch):
        if entity_id in self.fail_update_ids:
            raise WriteError(entity_type, entity_id, "backend rejected the update")
        row = self.rows[entity_type][entity_id]
        row.update(patch)
        self.updates.append((entity_type, entity_id, dict(patch)))
        for on_event, _ in list(self.subscribers[entity_type]):
            on_event(ChangeEvent("update", entity_type, dict(row)))
        return dict(row)

    def emit(self, event: ChangeEvent) -> None:
        for on_event, _ in list(self.subscribers[event.entity_type]):
            on_event(event)

    def drop_connection(self) -> None:
        closing = []
        for subs in self.subscribers.values():
            closing.extend(c for _, c in subs if c is not None)
            subs.clear()
        for on_close in closing:
            on_close()


@pytest.fixture
def fake_remote():
    return FakeRemote()


@pytest.fixture
def sqlite_remote(tmp_path):
    return SqliteRemoteStore(tmp_path / "studio.db")


def member_row(id="m1", services=("s1",), active=True, first="Zeynep", last="Kaya"):
    return {
        "id": id,
        "first_name": first,
        "last_name": last,
        "subscribed_services": list(services),
        "active": active,
        "start_date": "2026-01-05",
    }


def service_row(id="s1", name="Personal Training", session_count=3, duration=60, price=900.0):
    return {
        "id": id,
        "name": name,
        "price": price,
        "duration": duration,
        "session_count": session_count,
        "is_vip_only": False,
        "active": True,
    }


def appointment_row(id="a1", member="m1", service="s1", status="scheduled", day="2026-10-18", at="10:00", trainer="t1"):
    return {
        "id": id,
        "member_id": member,
        "trainer_id": trainer,
        "service_id": service,
        "date": day,
        "time": at,
        "status": status,
        "notes": None,
        "created_at": "2026-10-01T09:00:00",
    }


def make_member(id="m1", services=("s1",), active=True, first="Zeynep", last="Kaya") -> Member:
    return Member(id, first, last, tuple(services), active, date(2026, 1, 5))


def make_service(id="s1", name="Personal Training", session_count=3, duration=60) -> Service:
    return Service(id, name, 900.0, duration, session_count)


def make_appointment(id="a1", member="m1", service="s1", status="scheduled", day=date(2026, 10, 18), at=time(10, 0), trainer="t1") -> Appointment:
    return Appointment(id, member, trainer, service, day, at, status)
