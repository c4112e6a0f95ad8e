"""Availability state: last successful snapshot per source. Only the ChangeDetector writes to it."""
import threading
from typing import Protocol

from vaxpoll.services.providers.types import Snapshot


class StateStore(Protocol):
    def get(self, source_id: str) -> Snapshot | None:
        """Latest snapshot, or None before the first successful fetch (unknown)."""
        ...

    def put(self, source_id: str, snapshot: Snapshot) -> None:
        ...

    def close(self) -> None:
        ...


class InMemoryStateStore:
    """Process-lifetime state. Lost on restart, so the first poll after a restart is a cold start."""

    def __init__(self) -> None:
        self._snapshots: dict[str, Snapshot] = {}
        self._lock = threading.Lock()

    def get(self, source_id: str) -> Snapshot | None:
        with self._lock:
            return self._snapshots.get(source_id)

    def put(self, source_id: str, snapshot: Snapshot) -> None:
        with self._lock:
            self._snapshots[source_id] = snapshot

    def close(self) -> None:
        pass
