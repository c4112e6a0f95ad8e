"""
Change detection between successive snapshots of one source.

- added = open keys in curr that were not open in prev
- removed = open keys in prev that are gone from curr
- newly-available if added is non-empty (even with simultaneous removals)
- now-unavailable if nothing was added and curr has strictly fewer open keys
- no-change otherwise, and always on cold start (no prev to diff against)

State is replaced with curr on every successful fetch, so the next comparison is
against the most recent observation. Fetch failures never reach this module.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum

from vaxpoll.services.detection.state import StateStore
from vaxpoll.services.providers.types import SlotKey, Snapshot

logger = logging.getLogger(__name__)


class Classification(str, Enum):
    NEWLY_AVAILABLE = "newly-available"
    NOW_UNAVAILABLE = "now-unavailable"
    NO_CHANGE = "no-change"


@dataclass(frozen=True)
class ChangeEvent:
    source_id: str
    previous: Snapshot | None
    current: Snapshot
    classification: Classification
    added: frozenset[SlotKey] = field(default_factory=frozenset)
    removed: frozenset[SlotKey] = field(default_factory=frozenset)

    @property
    def cold_start(self) -> bool:
        return self.previous is None


def classify(previous: Snapshot | None, current: Snapshot) -> tuple[Classification, frozenset[SlotKey], frozenset[SlotKey]]:
    """Pure transition function. Returns (classification, added, removed)."""
    curr_keys = current.available_keys()
    if previous is None:
        return Classification.NO_CHANGE, frozenset(), frozenset()
    prev_keys = previous.available_keys()
    added = curr_keys - prev_keys
    removed = prev_keys - curr_keys
    if added:
        return Classification.NEWLY_AVAILABLE, added, removed
    if len(curr_keys) < len(prev_keys):
        return Classification.NOW_UNAVAILABLE, added, removed
    return Classification.NO_CHANGE, added, removed


class ChangeDetector:
    """
    Classifies a fresh snapshot against stored state and replaces the state.
    Callers guarantee one observe() at a time per source (the scheduler runs a
    source's cycles strictly sequentially); different sources never interact.
    """

    def __init__(self, store: StateStore) -> None:
        self._store = store

    @property
    def store(self) -> StateStore:
        return self._store

    def current(self, source_id: str) -> Snapshot | None:
        return self._store.get(source_id)

    def observe(self, source_id: str, snapshot: Snapshot) -> ChangeEvent:
        previous = self._store.get(source_id)
        classification, added, removed = classify(previous, snapshot)
        self._store.put(source_id, snapshot)
        if previous is None:
            logger.info("%s: first observation (%s open), not alerting", source_id, snapshot.open_count)
        else:
            logger.debug(
                "%s: %s (+%s -%s, %s open)",
                source_id, classification.value, len(added), len(removed), snapshot.open_count,
            )
        return ChangeEvent(
            source_id=source_id,
            previous=previous,
            current=snapshot,
            classification=classification,
            added=added,
            removed=removed,
        )
