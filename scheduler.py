"""
scheduler.py
Recurring scan that deactivates members whose purchased sessions are used up.

The scheduler is a plain object: whoever owns the process builds one, hands it
around, and calls start()/stop(). It writes exactly one field (members.active)
and only ever from True to False; the write comes back through the change
feed like any other update.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Callable

import config
import timers
from errors import MalformedEventError
from models import APPOINTMENTS, MEMBERS, SERVICES, parse_entity
from packages import should_deactivate
from reconciler import RemoteStore

logger = logging.getLogger(__name__)

Notifier = Callable[[str, str], None]  # (level, message)


@dataclass(frozen=True)
class DeactivatedMember:
    id: str
    name: str
    packages: tuple[str, ...]


@dataclass
class ScanResult:
    checked: int = 0
    deactivated: list[DeactivatedMember] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)
    aborted: bool = False
    skipped: bool = False
    error: str | None = None

    @property
    def writes(self) -> int:
        return len(self.deactivated)


class DeactivationScheduler:
    def __init__(
        self,
        remote: RemoteStore,
        period_minutes: float = config.SCAN_INTERVAL_MINUTES,
        notify: Notifier | None = None,
    ):
        self.remote = remote
        self.period_minutes = period_minutes
        self.notify = notify
        self.is_running = False
        self.total_deactivated = 0
        self.last_result: ScanResult | None = None
        self._handle: timers.RepeatingHandle | None = None
        self._scan_in_flight = False

    def start(self, period_minutes: float | None = None) -> bool:
        """Scan now, then every `period_minutes`. Refuses to start twice."""
        if self.is_running:
            logger.info("Deactivation scheduler already running")
            return False

        if period_minutes is not None:
            self.period_minutes = period_minutes
        if self.period_minutes <= 0:
            raise ValueError("period_minutes must be positive")

        self._handle = timers.schedule_repeating(
            self.period_minutes * 60,
            self.run_scan,
            run_immediately=True,
            name="member-deactivation",
        )
        self.is_running = True
        logger.info(f"Deactivation scheduler started, interval {self.period_minutes} minute(s)")
        return True

    def stop(self) -> bool:
        if not self.is_running:
            logger.info("Deactivation scheduler is not running")
            return False

        if self._handle is not None:
            self._handle.cancel()
            self._handle = None
        self.is_running = False
        logger.info(f"Deactivation scheduler stopped. Members deactivated so far: {self.total_deactivated}")
        return True

    async def run_scan(self) -> ScanResult:
        if self._scan_in_flight:
            logger.warning("Deactivation scan already in progress, skipping")
            return ScanResult(skipped=True)

        self._scan_in_flight = True
        try:
            result = await self._scan()
        finally:
            self._scan_in_flight = False
        self.last_result = result
        return result

    async def _scan(self) -> ScanResult:
        result = ScanResult()

        # Any fetch failure aborts the whole scan; next interval retries
        try:
            member_rows = await self.remote.load_all(MEMBERS)
            service_rows = await self.remote.load_all(SERVICES)
            appointment_rows = await self.remote.load_all(APPOINTMENTS)
        except Exception as e:
            result.aborted = True
            result.error = str(e)
            logger.error(f"Deactivation scan aborted, could not fetch data: {e}")
            self._notify("error", "Member status check failed; will retry on the next run.")
            return result

        members = [m for m in _parse_rows(MEMBERS, member_rows) if m.active]
        services = {s.id: s for s in _parse_rows(SERVICES, service_rows)}
        appointments = _parse_rows(APPOINTMENTS, appointment_rows)
        result.checked = len(members)
        logger.info(f"Checking {len(members)} active member(s)")

        for member in members:
            if not should_deactivate(member, services, appointments):
                continue

            try:
                await self.remote.update_field(MEMBERS, member.id, {"active": False})
            except Exception as e:
                result.failed.append(member.id)
                logger.error(f"Could not deactivate member {member.id} ({member.full_name}): {e}")
                self._notify("error", f"Could not deactivate {member.full_name}.")
                continue

            packages = tuple(
                services[sid].name if sid in services else sid for sid in member.subscribed_services
            )
            result.deactivated.append(DeactivatedMember(member.id, member.full_name, packages))
            self.total_deactivated += 1
            logger.info(f"Member {member.full_name} ({member.id}) deactivated, all packages used: {', '.join(packages)}")
            self._notify("info", f"{member.full_name} was deactivated: all packages are used up.")

        if result.deactivated:
            logger.info(f"Scan deactivated {len(result.deactivated)} member(s)")
        else:
            logger.debug("Scan found no members to deactivate")
        return result

    def _notify(self, level: str, message: str) -> None:
        if self.notify is None:
            return
        try:
            self.notify(level, message)
        except Exception:
            logger.exception("Notifier failed")


def _parse_rows(entity_type: str, rows: list[dict]) -> list:
    parsed = []
    for row in rows:
        try:
            parsed.append(parse_entity(entity_type, row))
        except MalformedEventError as e:
            logger.warning(f"Skipping malformed {entity_type} row {row.get('id')!r}: {e}")
    return parsed
