"""
db.py
SQLite helpers + a change-feed-emitting store adapter.

SqliteRemoteStore plays the remote store for the sync engine: full-collection
fetches, per-entity-type subscriptions and partial updates. Every write bumps
the row's revision and pushes an insert/update/delete event to subscribers.
"""

from __future__ import annotations

import asyncio
import json
import logging
import sqlite3
import uuid
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Any, Callable

import config
from errors import FetchError, WriteError
from models import (
    APPOINTMENTS,
    ENTITY_TYPES,
    EVENT_DELETE,
    EVENT_INSERT,
    EVENT_UPDATE,
    MEMBERS,
    SERVICES,
    TRAINERS,
    ChangeEvent,
)

logger = logging.getLogger(__name__)

EventCallback = Callable[[ChangeEvent], None]
CloseCallback = Callable[[], None]

# Writable columns per table (id and revision are managed here)
COLUMNS = {
    MEMBERS: ("first_name", "last_name", "subscribed_services", "active", "start_date", "created_at"),
    TRAINERS: ("first_name", "last_name", "created_at"),
    SERVICES: ("name", "price", "duration", "session_count", "is_vip_only", "active", "created_at"),
    APPOINTMENTS: ("member_id", "trainer_id", "service_id", "date", "time", "status", "notes", "created_at"),
}


@contextmanager
def get_conn(db_file: Path | str = config.DB_FILE):
    conn = sqlite3.connect(db_file, check_same_thread=False)
    conn.row_factory = sqlite3.Row
    try:
        yield conn
        conn.commit()
    finally:
        conn.close()


def execute(sql: str, params: tuple = (), db_file: Path | str = config.DB_FILE) -> int:
    with get_conn(db_file) as conn:
        cur = conn.execute(sql, params)
        return cur.rowcount


def fetch_one(sql: str, params: tuple = (), db_file: Path | str = config.DB_FILE):
    with get_conn(db_file) as conn:
        cur = conn.execute(sql, params)
        return cur.fetchone()


def fetch_all(sql: str, params: tuple = (), db_file: Path | str = config.DB_FILE) -> list[sqlite3.Row]:
    with get_conn(db_file) as conn:
        cur = conn.execute(sql, params)
        return cur.fetchall()


def _create_tables(db_file: Path | str) -> None:
    execute(
        """
        CREATE TABLE IF NOT EXISTS members (
            id TEXT PRIMARY KEY,
            first_name TEXT NOT NULL,
            last_name TEXT NOT NULL DEFAULT '',
            subscribed_services TEXT NOT NULL DEFAULT '[]',
            active INTEGER NOT NULL DEFAULT 1 CHECK(active IN (0,1)),
            start_date TEXT,
            created_at TEXT NOT NULL,
            revision INTEGER NOT NULL DEFAULT 1
        )
        """,
        db_file=db_file,
    )

    execute(
        """
        CREATE TABLE IF NOT EXISTS trainers (
            id TEXT PRIMARY KEY,
            first_name TEXT NOT NULL,
            last_name TEXT NOT NULL DEFAULT '',
            created_at TEXT NOT NULL,
            revision INTEGER NOT NULL DEFAULT 1
        )
        """,
        db_file=db_file,
    )

    execute(
        """
        CREATE TABLE IF NOT EXISTS services (
            id TEXT PRIMARY KEY,
            name TEXT NOT NULL,
            price REAL NOT NULL DEFAULT 0,
            duration INTEGER NOT NULL,
            session_count INTEGER NOT NULL DEFAULT 0,
            is_vip_only INTEGER NOT NULL DEFAULT 0,
            active INTEGER NOT NULL DEFAULT 1,
            created_at TEXT NOT NULL,
            revision INTEGER NOT NULL DEFAULT 1
        )
        """,
        db_file=db_file,
    )

    execute(
        """
        CREATE TABLE IF NOT EXISTS appointments (
            id TEXT PRIMARY KEY,
            member_id TEXT NOT NULL,
            trainer_id TEXT NOT NULL,
            service_id TEXT NOT NULL,
            date TEXT NOT NULL,
            time TEXT NOT NULL,
            status TEXT NOT NULL CHECK(status IN ('scheduled','in-progress','completed','cancelled')),
            notes TEXT,
            created_at TEXT NOT NULL,
            revision INTEGER NOT NULL DEFAULT 1
        )
        """,
        db_file=db_file,
    )

    # last revision of deleted ids, so a re-insert continues past it
    execute(
        """
        CREATE TABLE IF NOT EXISTS deleted_revisions (
            entity_type TEXT NOT NULL,
            id TEXT NOT NULL,
            revision INTEGER NOT NULL,
            PRIMARY KEY (entity_type, id)
        )
        """,
        db_file=db_file,
    )


def init_db(db_file: Path | str = config.DB_FILE) -> None:
    """Create the database file and tables if missing."""
    _create_tables(db_file)


def _to_column_value(column: str, value: Any) -> Any:
    if column == "subscribed_services":
        return json.dumps(list(value or []))
    if column in ("active", "is_vip_only"):
        return 1 if value else 0
    if hasattr(value, "isoformat"):
        return value.isoformat()
    return value


def _row_to_snapshot(row: sqlite3.Row) -> dict[str, Any]:
    snap = dict(row)
    if "subscribed_services" in snap:
        snap["subscribed_services"] = json.loads(snap["subscribed_services"] or "[]")
    for flag in ("active", "is_vip_only"):
        if flag in snap:
            snap[flag] = bool(snap[flag])
    return snap


class SqliteRemoteStore:
    """
    Remote store contract backed by a local SQLite file.

    `dispatch` decides where subscriber callbacks run; pass
    `loop.call_soon_threadsafe` to deliver events onto an asyncio loop owned
    by another thread. By default callbacks run inline after the commit.
    """

    def __init__(self, db_file: Path | str = config.DB_FILE, dispatch: Callable[[Callable[[], None]], Any] | None = None):
        self.db_file = db_file
        self._dispatch = dispatch
        self._subscribers: dict[str, list[tuple[EventCallback, CloseCallback | None]]] = {
            t: [] for t in ENTITY_TYPES
        }
        init_db(db_file)

    # ---------- remote store contract ----------

    async def load_all(self, entity_type: str) -> list[dict[str, Any]]:
        self._check_type(entity_type)
        try:
            rows = await asyncio.to_thread(fetch_all, f"SELECT * FROM {entity_type}", db_file=self.db_file)
        except sqlite3.Error as e:
            raise FetchError(f"Could not load {entity_type}: {e}") from e
        return [_row_to_snapshot(r) for r in rows]

    def subscribe(self, entity_type: str, on_event: EventCallback, on_close: CloseCallback | None = None) -> Callable[[], None]:
        self._check_type(entity_type)
        entry = (on_event, on_close)
        self._subscribers[entity_type].append(entry)

        def unsubscribe() -> None:
            subs = self._subscribers[entity_type]
            if entry in subs:
                subs.remove(entry)

        return unsubscribe

    async def update_field(self, entity_type: str, entity_id: str, patch: dict[str, Any]) -> dict[str, Any]:
        # SQL runs in a worker thread; subscribers are still notified from the caller's thread
        snapshot = await asyncio.to_thread(self._write_update, entity_type, entity_id, patch)
        self._publish(ChangeEvent(EVENT_UPDATE, entity_type, snapshot, snapshot["revision"]))
        return snapshot

    # ---------- operator writes ----------

    def insert(self, entity_type: str, values: dict[str, Any]) -> dict[str, Any]:
        self._check_type(entity_type)
        row = {k: _to_column_value(k, v) for k, v in values.items() if k in COLUMNS[entity_type]}
        row.setdefault("created_at", datetime.now().isoformat(timespec="seconds"))
        entity_id = str(values.get("id") or uuid.uuid4().hex)
        try:
            with get_conn(self.db_file) as conn:
                deleted = conn.execute(
                    "SELECT revision FROM deleted_revisions WHERE entity_type = ? AND id = ?",
                    (entity_type, entity_id),
                ).fetchone()
                if deleted is not None:
                    row["revision"] = deleted["revision"] + 1
                cols = ["id", *row.keys()]
                placeholders = ",".join("?" for _ in cols)
                conn.execute(
                    f"INSERT INTO {entity_type}({','.join(cols)}) VALUES({placeholders})",
                    (entity_id, *row.values()),
                )
                snap = conn.execute(f"SELECT * FROM {entity_type} WHERE id = ?", (entity_id,)).fetchone()
        except sqlite3.Error as e:
            raise WriteError(entity_type, entity_id, str(e)) from e
        snapshot = _row_to_snapshot(snap)
        self._publish(ChangeEvent(EVENT_INSERT, entity_type, snapshot, snapshot["revision"]))
        return snapshot

    def update(self, entity_type: str, entity_id: str, patch: dict[str, Any]) -> dict[str, Any]:
        snapshot = self._write_update(entity_type, entity_id, patch)
        self._publish(ChangeEvent(EVENT_UPDATE, entity_type, snapshot, snapshot["revision"]))
        return snapshot

    def _write_update(self, entity_type: str, entity_id: str, patch: dict[str, Any]) -> dict[str, Any]:
        self._check_type(entity_type)
        unknown = set(patch) - set(COLUMNS[entity_type])
        if unknown or not patch:
            raise WriteError(entity_type, entity_id, f"unsupported fields: {sorted(unknown) or 'empty patch'}")
        assignments = ", ".join(f"{k} = ?" for k in patch)
        params = tuple(_to_column_value(k, v) for k, v in patch.items())
        try:
            with get_conn(self.db_file) as conn:
                cur = conn.execute(
                    f"UPDATE {entity_type} SET {assignments}, revision = revision + 1 WHERE id = ?",
                    (*params, entity_id),
                )
                if cur.rowcount == 0:
                    raise WriteError(entity_type, entity_id, "not found")
                snap = conn.execute(f"SELECT * FROM {entity_type} WHERE id = ?", (entity_id,)).fetchone()
        except sqlite3.Error as e:
            raise WriteError(entity_type, entity_id, str(e)) from e
        return _row_to_snapshot(snap)

    def delete(self, entity_type: str, entity_id: str) -> bool:
        self._check_type(entity_type)
        try:
            with get_conn(self.db_file) as conn:
                row = conn.execute(f"SELECT revision FROM {entity_type} WHERE id = ?", (entity_id,)).fetchone()
                if row is None:
                    return False
                # The delete itself is one more write on top of the last stored revision
                revision = row["revision"] + 1
                conn.execute(f"DELETE FROM {entity_type} WHERE id = ?", (entity_id,))
                conn.execute(
                    "INSERT OR REPLACE INTO deleted_revisions(entity_type, id, revision) VALUES(?, ?, ?)",
                    (entity_type, entity_id, revision),
                )
        except sqlite3.Error as e:
            raise WriteError(entity_type, entity_id, str(e)) from e
        self._publish(ChangeEvent(EVENT_DELETE, entity_type, {"id": entity_id}, revision))
        return True

    def disconnect(self) -> None:
        """Drop every subscription, telling subscribers their feed closed."""
        closing = []
        for entity_type, subs in self._subscribers.items():
            closing.extend(on_close for _, on_close in subs if on_close is not None)
            subs.clear()
        logger.warning(f"Change feed disconnected ({len(closing)} subscription(s) closed)")
        for on_close in closing:
            self._deliver(on_close)

    # ---------- internals ----------

    def _publish(self, event: ChangeEvent) -> None:
        for on_event, _ in list(self._subscribers[event.entity_type]):
            self._deliver(lambda cb=on_event: cb(event))

    def _deliver(self, fn: Callable[[], None]) -> None:
        if self._dispatch is None:
            fn()
        else:
            self._dispatch(fn)

    @staticmethod
    def _check_type(entity_type: str) -> None:
        if entity_type not in ENTITY_TYPES:
            raise ValueError(f"Unknown entity type: {entity_type}")
