"""
views.py
Read-only appointment views: status groups, filtered lists, dashboard ordering.
Everything here is recomputed from store contents + parameters, no state.
"""

from __future__ import annotations

from datetime import date
from typing import Iterable, Mapping

import utils
from models import (
    APPOINTMENT_STATUSES,
    STATUS_COMPLETED,
    STATUS_IN_PROGRESS,
    STATUS_SCHEDULED,
    Appointment,
    Member,
    Service,
    Trainer,
)

DATE_FILTERS = ("all", "today", "tomorrow", "weekly", "monthly")


def group_by_status(appointments: Iterable[Appointment]) -> dict[str, list[Appointment]]:
    """Status -> appointments, statuses in lifecycle order, empty groups left out."""
    groups: dict[str, list[Appointment]] = {}
    items = list(appointments)
    for status in APPOINTMENT_STATUSES:
        bucket = [a for a in items if a.status == status]
        if bucket:
            groups[status] = bucket
    return groups


def in_window(appointment: Appointment, window: str, today: date) -> bool:
    if window == "all":
        return True
    start, end = utils.date_window(window, today)
    return start <= appointment.date <= end


def matches_search(
    appointment: Appointment,
    query: str,
    members: Mapping[str, Member],
    trainers: Mapping[str, Trainer],
    services: Mapping[str, Service],
) -> bool:
    query = query.strip().lower()
    if not query:
        return True
    member = members.get(appointment.member_id)
    trainer = trainers.get(appointment.trainer_id)
    service = services.get(appointment.service_id)
    haystack = [
        member.full_name if member else "",
        trainer.full_name if trainer else "",
        service.name if service else "",
    ]
    return any(query in h.lower() for h in haystack)


def sort_for_listing(appointments: Iterable[Appointment]) -> list[Appointment]:
    """
    Scheduled, in-progress, completed, cancelled. Inside a status: earliest
    first, except completed which shows the most recent first.
    """
    ordered = sorted(appointments, key=lambda a: a.starts_at)
    result: list[Appointment] = []
    for status in APPOINTMENT_STATUSES:
        bucket = [a for a in ordered if a.status == status]
        if status == STATUS_COMPLETED:
            bucket.reverse()
        result.extend(bucket)
    return result


def filter_appointments(
    appointments: Iterable[Appointment],
    members: Mapping[str, Member],
    trainers: Mapping[str, Trainer],
    services: Mapping[str, Service],
    *,
    window: str = "all",
    search: str = "",
    trainer_id: str | None = None,
    today: date | None = None,
) -> list[Appointment]:
    if window not in DATE_FILTERS:
        raise ValueError(f"Unknown date filter: {window}")
    today = today or date.today()

    filtered = [
        a
        for a in appointments
        if (not trainer_id or a.trainer_id == trainer_id)
        and matches_search(a, search, members, trainers, services)
        and in_window(a, window, today)
    ]
    return sort_for_listing(filtered)


def window_counts(appointments: Iterable[Appointment], today: date | None = None) -> dict[str, int]:
    today = today or date.today()
    items = list(appointments)
    return {w: sum(1 for a in items if in_window(a, w, today)) for w in DATE_FILTERS}


def relevant_upcoming(appointments: Iterable[Appointment]) -> list[Appointment]:
    """In-progress first, then scheduled by start time, then everything else."""
    ordered = sorted(appointments, key=lambda a: a.starts_at)
    running = [a for a in ordered if a.status == STATUS_IN_PROGRESS]
    scheduled = [a for a in ordered if a.status == STATUS_SCHEDULED]
    rest = [a for a in ordered if a.status not in (STATUS_IN_PROGRESS, STATUS_SCHEDULED)]
    return running + scheduled + rest


def dashboard_slice(ordered: list[Appointment], size: int = 3) -> list[Appointment]:
    """
    Widget window: one before / the first in-progress / one after.
    Falls back to the first `size` items when nothing is running.
    """
    idx = next((i for i, a in enumerate(ordered) if a.status == STATUS_IN_PROGRESS), None)
    if idx is None:
        return ordered[:size]
    return ordered[max(0, idx - 1):idx + size - 1]
