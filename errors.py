"""
errors.py
Failure taxonomy for the sync engine.
"""

from __future__ import annotations


class StoreError(Exception):
    """Base class for remote store failures."""


class FetchError(StoreError):
    """A full-collection fetch failed (backend unavailable, bad query...)."""


class WriteError(StoreError):
    """A partial update could not be applied."""

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        super().__init__(f"{entity_type}/{entity_id}: {reason}")
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason


class MalformedEventError(ValueError):
    """A feed payload is missing required fields or has unusable values."""
