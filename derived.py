"""
derived.py
Wall-clock annotations for appointments (upcoming / running / none).

classify() is pure: same appointment + same `now` always gives the same
answer, nothing is written back. AnnotationTicker re-runs it every tick for
whatever the caller considers visible.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Callable, Iterable, Mapping

import config
import timers
from models import (
    NO_ANNOTATION,
    STATUS_IN_PROGRESS,
    STATUS_SCHEDULED,
    Annotation,
    Appointment,
    AppointmentView,
    Running,
    Service,
    Upcoming,
)

logger = logging.getLogger(__name__)


def _whole_minutes(seconds: float) -> int:
    # floor, also for negatives
    return int(seconds // 60)


def classify(
    appointment: Appointment,
    now: datetime,
    duration: int = config.DEFAULT_SERVICE_DURATION,
    window: int = config.UPCOMING_WINDOW_MINUTES,
) -> Annotation:
    starts_at = appointment.starts_at

    # in-progress wins over upcoming, even if the start is still ahead
    if appointment.status == STATUS_IN_PROGRESS:
        elapsed = _whole_minutes((now - starts_at).total_seconds())
        if elapsed < 0:
            if -elapsed > window:
                return NO_ANNOTATION  # clock skew, not an early start
            elapsed = 0
        return Running(
            minutes_elapsed=elapsed,
            minutes_remaining=max(0, duration - elapsed),
            overtime=elapsed > duration,
        )

    # completed / cancelled sessions never count down
    if appointment.status != STATUS_SCHEDULED:
        return NO_ANNOTATION

    delta = _whole_minutes((starts_at - now).total_seconds())
    if 0 <= delta <= window:
        return Upcoming(minutes_until_start=delta)
    return NO_ANNOTATION


def annotate_all(
    appointments: Iterable[Appointment],
    services: Mapping[str, Service],
    now: datetime,
) -> list[AppointmentView]:
    views = []
    for a in appointments:
        service = services.get(a.service_id)
        duration = service.duration if service else config.DEFAULT_SERVICE_DURATION
        try:
            annotation = classify(a, now, duration)
        except Exception:
            logger.exception(f"Could not classify appointment {a.id}")
            annotation = NO_ANNOTATION
        views.append(AppointmentView(a, annotation))
    return views


def describe(annotation: Annotation) -> str:
    """Short label for tables and cards."""
    if isinstance(annotation, Upcoming):
        if annotation.minutes_until_start <= 1:
            return "starting now"
        return f"starts in {annotation.minutes_until_start} min"
    if isinstance(annotation, Running):
        if annotation.overtime:
            return f"overtime ({annotation.minutes_elapsed} min elapsed)"
        return f"{annotation.minutes_remaining} min left"
    return ""


class AnnotationTicker:
    """
    Recompute annotations every tick and hand them to `sink`.

    `source` returns (visible appointments, services by id) at tick time, so
    each tick reads whatever the store holds right then.
    """

    def __init__(
        self,
        source: Callable[[], tuple[list[Appointment], Mapping[str, Service]]],
        sink: Callable[[list[AppointmentView]], None],
        clock: Callable[[], datetime] = datetime.now,
        interval_seconds: float = config.TICK_SECONDS,
    ):
        self.source = source
        self.sink = sink
        self.clock = clock
        self.interval_seconds = interval_seconds
        self._handle: timers.RepeatingHandle | None = None

    @property
    def running(self) -> bool:
        return self._handle is not None and self._handle.active

    def tick(self) -> list[AppointmentView]:
        appointments, services = self.source()
        views = annotate_all(appointments, services, self.clock())
        self.sink(views)
        return views

    def start(self) -> None:
        if self.running:
            return
        self._handle = timers.schedule_repeating(
            self.interval_seconds, self.tick, run_immediately=True, name="annotation-tick"
        )

    def stop(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None
