from vaxpoll.services.detection.detector import ChangeDetector, ChangeEvent, Classification, classify
from vaxpoll.services.detection.sql_store import SqlStateStore
from vaxpoll.services.detection.state import InMemoryStateStore, StateStore


def build_state_store(database_url: str | None) -> StateStore:
    """In-memory unless a database URL is configured."""
    if database_url:
        return SqlStateStore(database_url)
    return InMemoryStateStore()


__all__ = [
    "ChangeDetector",
    "ChangeEvent",
    "Classification",
    "InMemoryStateStore",
    "SqlStateStore",
    "StateStore",
    "build_state_store",
    "classify",
]
