"""
reconciler.py
Applies the remote store's change feed to the EntityStore.

Events are applied in delivery order. Revision numbers (when present) let the
store reject stale writes; without them, feed order wins. A dropped
subscription marks the store stale, resubscribes and reloads everything,
since missed events cannot be replayed.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, Iterable, Mapping, Protocol

from errors import MalformedEventError
from models import ENTITY_TYPES, EVENT_DELETE, EVENT_KINDS, ChangeEvent, parse_entity
from store import EntityStore

logger = logging.getLogger(__name__)


class RemoteStore(Protocol):
    async def load_all(self, entity_type: str) -> list[dict[str, Any]]: ...

    def subscribe(
        self,
        entity_type: str,
        on_event: Callable[[ChangeEvent], None],
        on_close: Callable[[], None] | None = None,
    ) -> Callable[[], None]: ...

    async def update_field(self, entity_type: str, entity_id: str, patch: dict[str, Any]) -> dict[str, Any]: ...


def coerce_event(raw: ChangeEvent | Mapping[str, Any]) -> ChangeEvent:
    if isinstance(raw, ChangeEvent):
        event = raw
    else:
        try:
            event = ChangeEvent(
                kind=raw["kind"],
                entity_type=raw["entity_type"],
                entity=raw["entity"],
                revision=raw.get("revision"),
            )
        except (KeyError, TypeError) as e:
            raise MalformedEventError(f"bad event envelope: {e}") from e

    if event.kind not in EVENT_KINDS:
        raise MalformedEventError(f"unknown event kind: {event.kind!r}")
    if not isinstance(event.entity, Mapping):
        raise MalformedEventError("event entity must be a mapping")
    if event.revision is not None and not isinstance(event.revision, int):
        raise MalformedEventError(f"revision must be an int: {event.revision!r}")
    return event


class ChangeFeedReconciler:
    def __init__(self, remote: RemoteStore, store: EntityStore, entity_types: Iterable[str] = ENTITY_TYPES):
        self.remote = remote
        self.store = store
        self.entity_types = tuple(entity_types)
        self.applied_events = 0
        self.dropped_events = 0
        self._unsubscribes: dict[str, Callable[[], None]] = {}
        self._loading = False
        self._resync_pending = False
        self._buffer: list[ChangeEvent | Mapping[str, Any]] = []
        self._reconnect_task: asyncio.Task | None = None

    @property
    def subscribed(self) -> bool:
        return len(self._unsubscribes) == len(self.entity_types)

    async def start(self) -> bool:
        """Subscribe, then do the initial full load. Returns False if the load failed."""
        return await self.resync()

    def stop(self) -> None:
        for entity_type, unsubscribe in list(self._unsubscribes.items()):
            try:
                unsubscribe()
            except Exception:
                logger.exception(f"Unsubscribe failed for {entity_type}")
        self._unsubscribes.clear()
        if self._reconnect_task is not None and not self._reconnect_task.done():
            self._reconnect_task.cancel()
        self._reconnect_task = None
        logger.info("Change feed reconciler stopped")

    async def resync(self) -> bool:
        """
        Resubscribe any dropped feeds, fetch every collection and replace the
        store contents.

        Nothing is replaced unless every fetch succeeds; on failure the store
        keeps its last-known-good (stale) contents until the next trigger.
        A feed drop (or another resync request) while fetching runs one more
        pass once the current one finishes.
        """
        if self._loading:
            self._resync_pending = True
            return False
        while True:
            self._resync_pending = False
            ok = await self._resync_once()
            if not self._resync_pending:
                return ok
            logger.warning("Change feed changed during reload, reloading again")

    async def _resync_once(self) -> bool:
        self._loading = True
        for entity_type in self.entity_types:
            self.store.mark_stale(entity_type)
        ok = False
        try:
            self._subscribe_all()
            snapshots = {}
            for entity_type in self.entity_types:
                snapshots[entity_type] = await self.remote.load_all(entity_type)
            if self._resync_pending:
                # snapshot may predate the drop; stay stale and go again
                return False
            for entity_type, rows in snapshots.items():
                self._load_rows(entity_type, rows)
            ok = True
            logger.info("Entity store resynchronized: " + ", ".join(
                f"{t}={len(rows)}" for t, rows in snapshots.items()))
        except Exception as e:
            logger.error(f"Resync failed, keeping stale store until next trigger: {e}")
        finally:
            self._loading = False
            buffered, self._buffer = self._buffer, []
            for raw in buffered:
                self._apply(raw)
        return ok

    def handle_event(self, raw: ChangeEvent | Mapping[str, Any]) -> None:
        """Subscription callback: never raises."""
        if self._loading:
            self._buffer.append(raw)
            return
        self._apply(raw)

    # ---------- internals ----------

    def _subscribe_all(self) -> None:
        for entity_type in self.entity_types:
            if entity_type not in self._unsubscribes:
                self._unsubscribes[entity_type] = self.remote.subscribe(
                    entity_type, self.handle_event, self._on_close
                )

    def _on_close(self) -> None:
        self._unsubscribes.clear()
        for entity_type in self.entity_types:
            self.store.mark_stale(entity_type)
        if self._loading:
            logger.warning("Change feed closed during reload, will resubscribe after it")
            self._resync_pending = True
            return
        if self._reconnect_task is not None and not self._reconnect_task.done():
            return
        logger.warning("Change feed closed, resubscribing")
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.error("Change feed closed outside the engine loop; call resync() to recover")
            return
        self._reconnect_task = loop.create_task(self.resync())

    def _load_rows(self, entity_type: str, rows: list[Mapping[str, Any]]) -> None:
        entities = []
        revisions = {}
        for row in rows:
            try:
                entity = parse_entity(entity_type, row)
            except MalformedEventError as e:
                logger.warning(f"Skipping malformed {entity_type} row {row.get('id')!r}: {e}")
                continue
            entities.append(entity)
            if isinstance(row.get("revision"), int):
                revisions[entity.id] = row["revision"]
        self.store.load(entity_type, entities, revisions)

    def _apply(self, raw: ChangeEvent | Mapping[str, Any]) -> None:
        try:
            event = coerce_event(raw)
            if event.entity_type not in self.entity_types:
                raise MalformedEventError(f"unexpected entity type: {event.entity_type!r}")
            if event.kind == EVENT_DELETE:
                entity_id = event.entity.get("id")
                if entity_id in (None, ""):
                    raise MalformedEventError("delete event without id")
                self.store.apply_delete(event.entity_type, str(entity_id), event.revision)
            else:
                entity = parse_entity(event.entity_type, event.entity)
                self.store.apply_insert_or_update(event.entity_type, entity, event.revision)
            self.applied_events += 1
        except MalformedEventError as e:
            self.dropped_events += 1
            logger.warning(f"Dropped malformed change event: {e}")
        except Exception:
            self.dropped_events += 1
            logger.exception("Unexpected error applying change event")
