"""
models.py
Domain dataclasses (members, trainers, services, appointments),
change-feed events and derived appointment annotations.
"""

from __future__ import annotations

import datetime as dt
import json
from dataclasses import dataclass, field
from typing import Any, Mapping, Union

from errors import MalformedEventError

MEMBERS = "members"
TRAINERS = "trainers"
SERVICES = "services"
APPOINTMENTS = "appointments"
ENTITY_TYPES = (MEMBERS, TRAINERS, SERVICES, APPOINTMENTS)

STATUS_SCHEDULED = "scheduled"
STATUS_IN_PROGRESS = "in-progress"
STATUS_COMPLETED = "completed"
STATUS_CANCELLED = "cancelled"
APPOINTMENT_STATUSES = (STATUS_SCHEDULED, STATUS_IN_PROGRESS, STATUS_COMPLETED, STATUS_CANCELLED)
TERMINAL_STATUSES = frozenset({STATUS_COMPLETED, STATUS_CANCELLED})

EVENT_INSERT = "insert"
EVENT_UPDATE = "update"
EVENT_DELETE = "delete"
EVENT_KINDS = (EVENT_INSERT, EVENT_UPDATE, EVENT_DELETE)


@dataclass(frozen=True)
class Member:
    id: str
    first_name: str
    last_name: str
    subscribed_services: tuple[str, ...]  # duplicates = repeat purchases
    active: bool
    start_date: dt.date | None = None

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()


@dataclass(frozen=True)
class Trainer:
    id: str
    first_name: str
    last_name: str

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()


@dataclass(frozen=True)
class Service:
    id: str
    name: str
    price: float
    duration: int  # minutes
    session_count: int
    is_vip_only: bool = False
    active: bool = True


@dataclass(frozen=True)
class Appointment:
    id: str
    member_id: str
    trainer_id: str
    service_id: str
    date: dt.date
    time: dt.time
    status: str
    notes: str | None = None
    created_at: str | None = None

    @property
    def starts_at(self) -> dt.datetime:
        return dt.datetime.combine(self.date, self.time)


Entity = Union[Member, Trainer, Service, Appointment]


@dataclass(frozen=True)
class ChangeEvent:
    kind: str  # insert / update / delete
    entity_type: str
    entity: Mapping[str, Any]
    revision: int | None = None


# ---------- Derived annotations (never stored) ----------

@dataclass(frozen=True)
class Upcoming:
    minutes_until_start: int
    kind: str = field(default="upcoming", init=False)


@dataclass(frozen=True)
class Running:
    minutes_elapsed: int
    minutes_remaining: int
    overtime: bool
    kind: str = field(default="running", init=False)


@dataclass(frozen=True)
class NoAnnotation:
    kind: str = field(default="none", init=False)


NO_ANNOTATION = NoAnnotation()
Annotation = Union[Upcoming, Running, NoAnnotation]


@dataclass(frozen=True)
class AppointmentView:
    appointment: Appointment
    annotation: Annotation


# ---------- Row parsing ----------

def _require(row: Mapping[str, Any], *keys: str) -> None:
    missing = [k for k in keys if row.get(k) in (None, "")]
    if missing:
        raise MalformedEventError(f"missing required field(s): {', '.join(missing)}")


def _as_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ("1", "true", "t", "yes")
    return bool(value)


def _as_date(value: Any, name: str) -> dt.date:
    if isinstance(value, dt.datetime):
        return value.date()
    if isinstance(value, dt.date):
        return value
    try:
        return dt.date.fromisoformat(str(value)[:10])
    except ValueError as e:
        raise MalformedEventError(f"{name}: not an ISO date: {value!r}") from e


def _as_time(value: Any) -> dt.time:
    if isinstance(value, dt.time):
        return value
    try:
        return dt.time.fromisoformat(str(value))
    except ValueError as e:
        raise MalformedEventError(f"time: not HH:MM[:SS]: {value!r}") from e


def _as_service_ids(value: Any) -> tuple[str, ...]:
    if value is None:
        return ()
    if isinstance(value, str):
        try:
            value = json.loads(value) if value.strip() else []
        except json.JSONDecodeError as e:
            raise MalformedEventError(f"subscribed_services: bad JSON: {value!r}") from e
    if not isinstance(value, (list, tuple)):
        raise MalformedEventError("subscribed_services must be a list")
    return tuple(str(v) for v in value)


def member_from_row(row: Mapping[str, Any]) -> Member:
    _require(row, "id", "first_name")
    start = row.get("start_date")
    return Member(
        id=str(row["id"]),
        first_name=str(row["first_name"]),
        last_name=str(row.get("last_name") or ""),
        subscribed_services=_as_service_ids(row.get("subscribed_services")),
        active=_as_bool(row.get("active", True)),
        start_date=_as_date(start, "start_date") if start else None,
    )


def trainer_from_row(row: Mapping[str, Any]) -> Trainer:
    _require(row, "id", "first_name")
    return Trainer(
        id=str(row["id"]),
        first_name=str(row["first_name"]),
        last_name=str(row.get("last_name") or ""),
    )


def service_from_row(row: Mapping[str, Any]) -> Service:
    _require(row, "id", "name", "duration")
    try:
        return Service(
            id=str(row["id"]),
            name=str(row["name"]),
            price=float(row.get("price") or 0),
            duration=int(row["duration"]),
            session_count=int(row.get("session_count") or 0),
            is_vip_only=_as_bool(row.get("is_vip_only", False)),
            active=_as_bool(row.get("active", True)),
        )
    except (TypeError, ValueError) as e:
        raise MalformedEventError(f"service {row.get('id')}: {e}") from e


def appointment_from_row(row: Mapping[str, Any]) -> Appointment:
    _require(row, "id", "member_id", "trainer_id", "service_id", "date", "time", "status")
    status = str(row["status"])
    if status not in APPOINTMENT_STATUSES:
        raise MalformedEventError(f"unknown appointment status: {status!r}")
    return Appointment(
        id=str(row["id"]),
        member_id=str(row["member_id"]),
        trainer_id=str(row["trainer_id"]),
        service_id=str(row["service_id"]),
        date=_as_date(row["date"], "date"),
        time=_as_time(row["time"]),
        status=status,
        notes=row.get("notes") or None,
        created_at=row.get("created_at"),
    )


PARSERS = {
    MEMBERS: member_from_row,
    TRAINERS: trainer_from_row,
    SERVICES: service_from_row,
    APPOINTMENTS: appointment_from_row,
}


def parse_entity(entity_type: str, row: Mapping[str, Any]) -> Entity:
    parser = PARSERS.get(entity_type)
    if parser is None:
        raise MalformedEventError(f"unknown entity type: {entity_type!r}")
    return parser(row)
