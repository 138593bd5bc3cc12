"""
store.py
In-memory entity store: one id-keyed collection per entity type.

All mutation is last-writer-wins per id. When a write carries a revision
number, writes older than (or equal to) the revision already seen for that id
are rejected; deletes leave a tombstone revision so a late update cannot
bring a deleted entity back. Writes without a revision are applied in call
order, which means an out-of-order update(v2), update(v1) pair ends on v1.
"""

from __future__ import annotations

import logging
from typing import Callable, Iterable

from models import ENTITY_TYPES, Entity

logger = logging.getLogger(__name__)

Listener = Callable[[str], None]


class EntityStore:
    def __init__(self, entity_types: Iterable[str] = ENTITY_TYPES):
        self._items: dict[str, dict[str, Entity]] = {t: {} for t in entity_types}
        self._revisions: dict[str, dict[str, int]] = {t: {} for t in entity_types}
        self._tombstones: dict[str, dict[str, int]] = {t: {} for t in entity_types}
        self._stale: set[str] = set()
        self._listeners: list[Listener] = []

    # ---------- reads ----------

    def get_all(self, entity_type: str) -> list[Entity]:
        return list(self._collection(entity_type).values())

    def get(self, entity_type: str, entity_id: str) -> Entity | None:
        return self._collection(entity_type).get(entity_id)

    def as_map(self, entity_type: str) -> dict[str, Entity]:
        return dict(self._collection(entity_type))

    def revision_of(self, entity_type: str, entity_id: str) -> int | None:
        return self._revisions[entity_type].get(entity_id)

    # ---------- writes ----------

    def load(self, entity_type: str, entities: Iterable[Entity], revisions: dict[str, int] | None = None) -> None:
        """Replace the whole collection (initial load / resync)."""
        collection = self._collection(entity_type)
        collection.clear()
        for e in entities:
            collection[e.id] = e
        self._revisions[entity_type] = dict(revisions or {})
        self._tombstones[entity_type].clear()
        self._stale.discard(entity_type)
        self._notify(entity_type)

    def apply_insert_or_update(self, entity_type: str, entity: Entity, revision: int | None = None) -> bool:
        if self._is_outdated(entity_type, entity.id, revision):
            logger.debug(f"Ignoring stale {entity_type}/{entity.id} revision {revision}")
            return False

        self._collection(entity_type)[entity.id] = entity
        self._tombstones[entity_type].pop(entity.id, None)
        if revision is not None:
            self._revisions[entity_type][entity.id] = revision
        self._notify(entity_type)
        return True

    def apply_delete(self, entity_type: str, entity_id: str, revision: int | None = None) -> bool:
        if self._is_outdated(entity_type, entity_id, revision):
            logger.debug(f"Ignoring stale delete of {entity_type}/{entity_id} revision {revision}")
            return False

        removed = self._collection(entity_type).pop(entity_id, None)
        known = self._revisions[entity_type].pop(entity_id, None)
        tomb = revision if revision is not None else known
        if tomb is not None:
            self._tombstones[entity_type][entity_id] = tomb
        if removed is None:
            return False
        self._notify(entity_type)
        return True

    # ---------- staleness / listeners ----------

    def mark_stale(self, entity_type: str) -> None:
        self._collection(entity_type)
        self._stale.add(entity_type)

    def is_stale(self, entity_type: str | None = None) -> bool:
        if entity_type is None:
            return bool(self._stale)
        return entity_type in self._stale

    def add_listener(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)

        def remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return remove

    def _notify(self, entity_type: str) -> None:
        for listener in list(self._listeners):
            try:
                listener(entity_type)
            except Exception:
                logger.exception(f"Store listener failed for {entity_type}")

    def _is_outdated(self, entity_type: str, entity_id: str, revision: int | None) -> bool:
        if revision is None:
            return False
        seen = self._revisions[entity_type].get(entity_id)
        if seen is None:
            seen = self._tombstones[entity_type].get(entity_id)
        return seen is not None and revision <= seen

    def _collection(self, entity_type: str) -> dict[str, Entity]:
        try:
            return self._items[entity_type]
        except KeyError:
            raise KeyError(f"Unknown entity type: {entity_type}") from None
