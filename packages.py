"""
packages.py
Session entitlement rules for purchased service packages.

Only `completed` appointments consume a session. Cancelled ones never do,
and scheduled / in-progress ones don't count until they complete.
"""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass
from typing import Iterable, Mapping

import config
from models import STATUS_COMPLETED, Appointment, Member, Service

PACKAGE_ACTIVE = "active"
PACKAGE_ALMOST_COMPLETED = "almost_completed"
PACKAGE_COMPLETED = "completed"


@dataclass(frozen=True)
class PackageUsage:
    service_id: str
    service_name: str
    purchases: int
    total_sessions: int
    used_sessions: int
    status: str

    @property
    def remaining_sessions(self) -> int:
        return max(0, self.total_sessions - self.used_sessions)


def purchase_counts(member: Member) -> Counter:
    """Service id -> number of times the member bought it."""
    return Counter(member.subscribed_services)


def consumed_sessions(member_id: str, service_id: str, appointments: Iterable[Appointment]) -> int:
    return sum(
        1
        for a in appointments
        if a.member_id == member_id and a.service_id == service_id and a.status == STATUS_COMPLETED
    )


def package_status(
    service: Service | None,
    purchases: int,
    used: int,
    threshold: int = config.ALMOST_COMPLETED_THRESHOLD,
) -> str:
    # Unknown service: nothing to measure against, never treat as exhausted
    if service is None:
        return PACKAGE_ACTIVE
    total = purchases * service.session_count
    if used >= total:
        return PACKAGE_COMPLETED
    if total - used <= threshold:
        return PACKAGE_ALMOST_COMPLETED
    return PACKAGE_ACTIVE


def member_package_summary(
    member: Member,
    services: Mapping[str, Service],
    appointments: Iterable[Appointment],
) -> list[PackageUsage]:
    appointments = list(appointments)
    summary = []
    for service_id, purchases in purchase_counts(member).items():
        service = services.get(service_id)
        used = consumed_sessions(member.id, service_id, appointments)
        summary.append(
            PackageUsage(
                service_id=service_id,
                service_name=service.name if service else service_id,
                purchases=purchases,
                total_sessions=purchases * service.session_count if service else 0,
                used_sessions=used,
                status=package_status(service, purchases, used),
            )
        )
    return summary


def member_status(
    member: Member,
    services: Mapping[str, Service],
    appointments: Iterable[Appointment],
) -> str:
    """Overall status across every purchased package."""
    statuses = [u.status for u in member_package_summary(member, services, appointments)]
    if not statuses:
        return PACKAGE_ACTIVE
    if all(s == PACKAGE_COMPLETED for s in statuses):
        return PACKAGE_COMPLETED
    if any(s == PACKAGE_ALMOST_COMPLETED for s in statuses):
        return PACKAGE_ALMOST_COMPLETED
    return PACKAGE_ACTIVE


def should_deactivate(
    member: Member,
    services: Mapping[str, Service],
    appointments: Iterable[Appointment],
) -> bool:
    if not member.active:
        return False
    if not member.subscribed_services:
        return False
    return member_status(member, services, appointments) == PACKAGE_COMPLETED
