from __future__ import annotations

from datetime import date, time

import pytest

import views
from models import Trainer
from tests.conftest import make_appointment, make_member, make_service

TODAY = date(2026, 10, 14)  # a Wednesday


def appt(id, status="scheduled", day=TODAY, at=time(10, 0), trainer="t1", member="m1", service="s1"):
    return make_appointment(id, member=member, service=service, status=status, day=day, at=at, trainer=trainer)


@pytest.fixture
def lookups():
    members = {"m1": make_member("m1"), "m2": make_member("m2", first="Mehmet", last="Yilmaz")}
    trainers = {"t1": Trainer("t1", "Ayse", "Demir"), "t2": Trainer("t2", "Ali", "Can")}
    services = {"s1": make_service("s1"), "s2": make_service("s2", name="Yoga")}
    return members, trainers, services


def test_group_by_status_keeps_lifecycle_order():
    items = [appt("a1", "completed"), appt("a2", "scheduled"), appt("a3", "completed")]
    groups = views.group_by_status(items)

    assert list(groups) == ["scheduled", "completed"]
    assert [a.id for a in groups["completed"]] == ["a1", "a3"]


def test_sort_for_listing_status_then_time():
    items = [
        appt("done-early", "completed", at=time(8, 0)),
        appt("late", "scheduled", at=time(15, 0)),
        appt("running", "in-progress", at=time(9, 30)),
        appt("early", "scheduled", at=time(11, 0)),
        appt("done-late", "completed", at=time(9, 0)),
        appt("nope", "cancelled", at=time(7, 0)),
    ]
    assert [a.id for a in views.sort_for_listing(items)] == [
        "early", "late", "running", "done-late", "done-early", "nope",
    ]


def test_filter_by_window_search_and_trainer(lookups):
    members, trainers, services = lookups
    items = [
        appt("today-t1", trainer="t1"),
        appt("today-t2-yoga", trainer="t2", service="s2"),
        appt("tomorrow", day=date(2026, 10, 15), member="m2"),
        appt("last-week", day=date(2026, 10, 7)),
    ]

    def ids(**kw):
        return {a.id for a in views.filter_appointments(items, members, trainers, services, today=TODAY, **kw)}

    assert ids(window="today") == {"today-t1", "today-t2-yoga"}
    assert ids(window="tomorrow") == {"tomorrow"}
    assert ids(window="weekly") == {"today-t1", "today-t2-yoga", "tomorrow"}
    assert ids(window="monthly") == {a.id for a in items}
    assert ids(trainer_id="t2") == {"today-t2-yoga"}
    assert ids(search="YOGA") == {"today-t2-yoga"}
    assert ids(search="mehmet") == {"tomorrow"}
    assert ids(search="ali can") == {"today-t2-yoga"}


def test_unknown_window_rejected(lookups):
    with pytest.raises(ValueError):
        views.filter_appointments([], *lookups, window="yearly")


def test_window_counts():
    items = [appt("a1"), appt("a2", day=date(2026, 10, 15)), appt("a3", day=date(2026, 11, 1))]
    counts = views.window_counts(items, TODAY)

    assert counts == {"all": 3, "today": 1, "tomorrow": 1, "weekly": 2, "monthly": 2}


def test_relevant_upcoming_order():
    items = [
        appt("done", "completed", at=time(8, 0)),
        appt("later", "scheduled", at=time(12, 0)),
        appt("sooner", "scheduled", at=time(11, 0)),
        appt("running", "in-progress", at=time(10, 0)),
        appt("cancelled", "cancelled", at=time(9, 0)),
    ]
    assert [a.id for a in views.relevant_upcoming(items)] == [
        "running", "sooner", "later", "done", "cancelled",
    ]


def test_dashboard_slice_around_running():
    ordered = [appt("a0", "completed"), appt("a1", "in-progress"), appt("a2"), appt("a3")]
    assert [a.id for a in views.dashboard_slice(ordered)] == ["a0", "a1", "a2"]

    first_running = [appt("r", "in-progress"), appt("b"), appt("c")]
    assert [a.id for a in views.dashboard_slice(first_running)] == ["r", "b"]

    idle = [appt("x"), appt("y"), appt("z"), appt("w")]
    assert [a.id for a in views.dashboard_slice(idle)] == ["x", "y", "z"]
