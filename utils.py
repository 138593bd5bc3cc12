"""
utils.py
Dates, pandas reports/exports, sample data.
"""

from __future__ import annotations

from dataclasses import asdict
from datetime import date, datetime, timedelta
from typing import Iterable, Mapping

import pandas as pd

from models import (
    APPOINTMENT_STATUSES,
    APPOINTMENTS,
    MEMBERS,
    SERVICES,
    STATUS_CANCELLED,
    STATUS_COMPLETED,
    STATUS_IN_PROGRESS,
    STATUS_SCHEDULED,
    TRAINERS,
    Appointment,
    Member,
    Service,
    Trainer,
)


def today_iso() -> str:
    return date.today().isoformat()


def parse_iso(d: str) -> date:
    return date.fromisoformat(d)


def start_of_week(d: date) -> date:
    # Weeks start on Sunday
    return d - timedelta(days=(d.weekday() + 1) % 7)


def date_window(window: str, today: date) -> tuple[date, date]:
    """Inclusive (start, end) dates for a named filter window."""
    if window == "today":
        return today, today
    if window == "tomorrow":
        tomorrow = today + timedelta(days=1)
        return tomorrow, tomorrow
    if window == "weekly":
        start = start_of_week(today)
        return start, start + timedelta(days=6)
    if window == "monthly":
        start = today.replace(day=1)
        next_month = (start.replace(day=28) + timedelta(days=4)).replace(day=1)
        return start, next_month - timedelta(days=1)
    raise ValueError(f"Unknown date window: {window}")


# ---------- Reports ----------

def appointments_frame(
    appointments: Iterable[Appointment],
    members: Mapping[str, Member],
    trainers: Mapping[str, Trainer],
    services: Mapping[str, Service],
) -> pd.DataFrame:
    rows = []
    for a in appointments:
        member = members.get(a.member_id)
        trainer = trainers.get(a.trainer_id)
        service = services.get(a.service_id)
        rows.append(
            {
                "id": a.id,
                "date": a.date.isoformat(),
                "time": a.time.strftime("%H:%M"),
                "status": a.status,
                "member": member.full_name if member else a.member_id,
                "trainer": trainer.full_name if trainer else a.trainer_id,
                "service": service.name if service else a.service_id,
                "price": service.price if service else 0.0,
                "notes": a.notes or "",
            }
        )
    columns = ["id", "date", "time", "status", "member", "trainer", "service", "price", "notes"]
    return pd.DataFrame(rows, columns=columns)


def status_distribution(appointments: Iterable[Appointment]) -> pd.DataFrame:
    counts = pd.Series([a.status for a in appointments], dtype="object").value_counts()
    counts = counts.reindex(list(APPOINTMENT_STATUSES), fill_value=0)
    return counts.rename_axis("status").reset_index(name="count")


def service_usage(frame: pd.DataFrame) -> pd.DataFrame:
    """Completed sessions and the revenue they represent, per service."""
    if frame.empty:
        return pd.DataFrame(columns=["service", "completed", "revenue"])
    done = frame[frame["status"] == STATUS_COMPLETED]
    out = (
        done.groupby("service")
        .agg(completed=("id", "count"), revenue=("price", "sum"))
        .reset_index()
        .sort_values("completed", ascending=False)
    )
    return out


def trainer_classes(frame: pd.DataFrame) -> pd.DataFrame:
    """Appointments per trainer, split by status."""
    if frame.empty:
        return pd.DataFrame(columns=["trainer", *APPOINTMENT_STATUSES])
    table = pd.crosstab(frame["trainer"], frame["status"])
    table = table.reindex(columns=list(APPOINTMENT_STATUSES), fill_value=0)
    return table.reset_index()


def frame_to_csv_bytes(frame: pd.DataFrame) -> bytes:
    return frame.to_csv(index=False).encode("utf-8")


def members_to_csv_bytes(members: Iterable[Member]) -> bytes:
    df = pd.DataFrame([asdict(m) for m in members])
    return df.to_csv(index=False).encode("utf-8")


# ---------- Sample data ----------

def insert_sample_data(remote) -> None:
    """
    Two trainers, three packages, three members and a day of appointments
    around the current time (adds new rows each run).
    """
    now = datetime.now().replace(second=0, microsecond=0)
    today = now.date()

    t1 = remote.insert(TRAINERS, {"first_name": "Ayse", "last_name": "Demir"})
    t2 = remote.insert(TRAINERS, {"first_name": "Ali", "last_name": "Can"})

    pt = remote.insert(SERVICES, {"name": "Personal Training", "price": 1200.0, "duration": 60, "session_count": 8})
    yoga = remote.insert(SERVICES, {"name": "Yoga", "price": 600.0, "duration": 45, "session_count": 4})
    trial = remote.insert(SERVICES, {"name": "Trial Session", "price": 0.0, "duration": 30, "session_count": 1})

    m1 = remote.insert(MEMBERS, {
        "first_name": "Zeynep", "last_name": "Kaya",
        "subscribed_services": [pt["id"], yoga["id"]], "active": True, "start_date": today,
    })
    m2 = remote.insert(MEMBERS, {
        "first_name": "Mehmet", "last_name": "Yilmaz",
        "subscribed_services": [trial["id"]], "active": True, "start_date": today,
    })
    m3 = remote.insert(MEMBERS, {
        "first_name": "Fatma", "last_name": "Sahin",
        "subscribed_services": [yoga["id"], yoga["id"]], "active": True, "start_date": today,
    })

    def at(minutes: int) -> dict:
        when = now + timedelta(minutes=minutes)
        return {"date": when.date(), "time": when.strftime("%H:%M")}

    appointments = [
        (m1, t1, pt, -120, STATUS_COMPLETED),
        (m1, t2, yoga, -20, STATUS_IN_PROGRESS),
        (m3, t2, yoga, 15, STATUS_SCHEDULED),
        (m1, t1, pt, 90, STATUS_SCHEDULED),
        (m2, t1, trial, -60, STATUS_COMPLETED),
        (m3, t2, yoga, -240, STATUS_CANCELLED),
    ]
    for member, trainer, service, offset, status in appointments:
        remote.insert(APPOINTMENTS, {
            "member_id": member["id"],
            "trainer_id": trainer["id"],
            "service_id": service["id"],
            "status": status,
            **at(offset),
        })
