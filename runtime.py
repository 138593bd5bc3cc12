"""
runtime.py
Runs the sync engine (reconciler, ticker, deactivation scheduler) on its own
asyncio loop in a background thread, so a rerun-based UI can read from it.
"""

from __future__ import annotations

import asyncio
import logging
import threading
from collections import deque
from dataclasses import dataclass, field
from datetime import date, datetime
from pathlib import Path

import config
import views
from db import SqliteRemoteStore
from derived import AnnotationTicker
from models import APPOINTMENTS, MEMBERS, SERVICES, TRAINERS, AppointmentView
from reconciler import ChangeFeedReconciler
from scheduler import DeactivationScheduler
from store import EntityStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Snapshot:
    members: dict
    trainers: dict
    services: dict
    appointments: list
    stale: bool
    version: int


@dataclass(frozen=True)
class Notification:
    level: str
    message: str
    at: datetime = field(default_factory=datetime.now)


class EngineRuntime:
    def __init__(
        self,
        db_file: Path | str = config.DB_FILE,
        scan_minutes: float = config.SCAN_INTERVAL_MINUTES,
    ):
        self.loop = asyncio.new_event_loop()
        self._thread = threading.Thread(target=self._run_loop, name="sync-engine", daemon=True)
        self.remote = SqliteRemoteStore(db_file, dispatch=self.loop.call_soon_threadsafe)
        self.store = EntityStore()
        self.reconciler = ChangeFeedReconciler(self.remote, self.store)
        self.scheduler = DeactivationScheduler(self.remote, scan_minutes, notify=self._push_notification)
        self.ticker = AnnotationTicker(self._visible_today, self._keep_views)
        self.notifications: deque[Notification] = deque(maxlen=20)
        self.latest_views: list[AppointmentView] = []
        self.version = 0
        self.store.add_listener(self._on_store_change)

    # ---------- lifecycle ----------

    def start(self) -> None:
        self._thread.start()
        self.call(self._start())
        logger.info("Sync engine started")

    def shutdown(self) -> None:
        if not self._thread.is_alive():
            return
        self.call(self._stop())
        self.loop.call_soon_threadsafe(self.loop.stop)
        self._thread.join(timeout=5)
        logger.info("Sync engine stopped")

    def call(self, coro, timeout: float = 30):
        """Run a coroutine on the engine loop and wait for its result."""
        return asyncio.run_coroutine_threadsafe(coro, self.loop).result(timeout)

    # ---------- controls used by the console ----------

    def start_scheduler(self, period_minutes: float | None = None) -> bool:
        async def _start() -> bool:
            return self.scheduler.start(period_minutes)

        return self.call(_start())

    def stop_scheduler(self) -> bool:
        async def _stop() -> bool:
            return self.scheduler.stop()

        return self.call(_stop())

    def run_scan_now(self):
        return self.call(self.scheduler.run_scan())

    def resync(self) -> bool:
        return self.call(self.reconciler.resync())

    def snapshot(self) -> Snapshot:
        async def _read() -> Snapshot:
            return Snapshot(
                members=self.store.as_map(MEMBERS),
                trainers=self.store.as_map(TRAINERS),
                services=self.store.as_map(SERVICES),
                appointments=self.store.get_all(APPOINTMENTS),
                stale=self.store.is_stale(),
                version=self.version,
            )

        return self.call(_read())

    # ---------- internals ----------

    async def _start(self) -> None:
        await self.reconciler.start()
        self.ticker.start()
        self.scheduler.start()

    async def _stop(self) -> None:
        self.scheduler.stop()
        self.ticker.stop()
        self.reconciler.stop()

    def _run_loop(self) -> None:
        asyncio.set_event_loop(self.loop)
        self.loop.run_forever()

    def _visible_today(self):
        today = date.today()
        todays = [a for a in self.store.get_all(APPOINTMENTS) if a.date == today]
        return views.relevant_upcoming(todays), self.store.as_map(SERVICES)

    def _keep_views(self, latest: list[AppointmentView]) -> None:
        self.latest_views = latest

    def _on_store_change(self, entity_type: str) -> None:
        self.version += 1

    def drain_notifications(self) -> list[Notification]:
        """Take every pending notification, oldest first."""
        drained = []
        while True:
            try:
                drained.append(self.notifications.pop())
            except IndexError:
                return drained

    def _push_notification(self, level: str, message: str) -> None:
        self.notifications.appendleft(Notification(level, message))
