"""
Structured poll/delivery events: one-way notifications to logging and in-memory counters.

The engine never depends on a sink's response; a failing sink is logged and ignored.
Counters are in-memory only and reset on restart (heartbeat, not analytics).
"""
from __future__ import annotations

import logging
import threading
from collections import Counter
from datetime import datetime
from typing import TYPE_CHECKING, Any, Protocol

from vaxpoll.core.errors import FetchError
from vaxpoll.services.detection.detector import ChangeEvent
from vaxpoll.services.messages import NotificationMessage
from vaxpoll.services.providers.types import Snapshot, utcnow

if TYPE_CHECKING:
    from vaxpoll.services.dispatch import DeliveryAttempt

logger = logging.getLogger(__name__)


class EventSink(Protocol):
    def fetch_succeeded(self, source_id: str, snapshot: Snapshot, duration: float) -> None: ...

    def fetch_failed(self, source_id: str, error: FetchError, duration: float) -> None: ...

    def classified(self, event: ChangeEvent, forwarded: bool) -> None: ...

    def delivery_attempted(self, attempt: DeliveryAttempt) -> None: ...

    def delivery_dropped(self, backend_name: str, message: NotificationMessage, attempts: int) -> None: ...

    def lifecycle(self, stage: str, **details: Any) -> None: ...


def _iso(dt: datetime | None) -> str | None:
    return dt.isoformat() if dt is not None else None


class _SourceStats:
    __slots__ = ("fetch_ok", "fetch_failed", "last_classification", "last_success_at", "last_failure_at", "last_error")

    def __init__(self) -> None:
        self.fetch_ok = 0
        self.fetch_failed: Counter[str] = Counter()
        self.last_classification: str | None = None
        self.last_success_at: datetime | None = None
        self.last_failure_at: datetime | None = None
        self.last_error: str | None = None


class _BackendStats:
    __slots__ = ("delivered", "failed", "dropped")

    def __init__(self) -> None:
        self.delivered = 0
        self.failed: Counter[str] = Counter()
        self.dropped = 0


class LoggingEventSink:
    """Default sink: logs every event and keeps per-source / per-backend counters."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._sources: dict[str, _SourceStats] = {}
        self._backends: dict[str, _BackendStats] = {}
        self._lifecycle: list[tuple[str, datetime]] = []

    def _source(self, source_id: str) -> _SourceStats:
        stats = self._sources.get(source_id)
        if stats is None:
            stats = self._sources[source_id] = _SourceStats()
        return stats

    def _backend(self, name: str) -> _BackendStats:
        stats = self._backends.get(name)
        if stats is None:
            stats = self._backends[name] = _BackendStats()
        return stats

    def fetch_succeeded(self, source_id: str, snapshot: Snapshot, duration: float) -> None:
        logger.info("fetch ok source=%s open=%s duration=%.2fs", source_id, snapshot.open_count, duration)
        with self._lock:
            stats = self._source(source_id)
            stats.fetch_ok += 1
            stats.last_success_at = utcnow()

    def fetch_failed(self, source_id: str, error: FetchError, duration: float) -> None:
        logger.warning(
            "fetch failed source=%s kind=%s duration=%.2fs: %s",
            source_id, error.kind.value, duration, error.message,
        )
        with self._lock:
            stats = self._source(source_id)
            stats.fetch_failed[error.kind.value] += 1
            stats.last_failure_at = utcnow()
            stats.last_error = f"{error.kind.value}: {error.message}"

    def classified(self, event: ChangeEvent, forwarded: bool) -> None:
        logger.info(
            "classified source=%s classification=%s added=%s removed=%s forwarded=%s",
            event.source_id, event.classification.value, len(event.added), len(event.removed), forwarded,
        )
        with self._lock:
            self._source(event.source_id).last_classification = event.classification.value

    def delivery_attempted(self, attempt: DeliveryAttempt) -> None:
        if attempt.success:
            logger.info(
                "delivery ok backend=%s source=%s attempt=%s",
                attempt.backend_name, attempt.message.source_id, attempt.attempt,
            )
        else:
            logger.warning(
                "delivery failed backend=%s source=%s attempt=%s kind=%s: %s",
                attempt.backend_name, attempt.message.source_id, attempt.attempt,
                attempt.error_kind.value if attempt.error_kind else None, attempt.error,
            )
        with self._lock:
            stats = self._backend(attempt.backend_name)
            if attempt.success:
                stats.delivered += 1
            else:
                stats.failed[attempt.error_kind.value if attempt.error_kind else "unknown"] += 1

    def delivery_dropped(self, backend_name: str, message: NotificationMessage, attempts: int) -> None:
        logger.error(
            "delivery dropped backend=%s source=%s after %s attempts",
            backend_name, message.source_id, attempts,
        )
        with self._lock:
            self._backend(backend_name).dropped += 1

    def lifecycle(self, stage: str, **details: Any) -> None:
        if details:
            logger.info("engine %s %s", stage, details)
        else:
            logger.info("engine %s", stage)
        with self._lock:
            self._lifecycle.append((stage, utcnow()))

    def snapshot_stats(self) -> dict[str, Any]:
        """JSON-friendly counters (in-memory only)."""
        with self._lock:
            return {
                "sources": {
                    sid: {
                        "fetch_ok": s.fetch_ok,
                        "fetch_failed": dict(s.fetch_failed),
                        "last_classification": s.last_classification,
                        "last_success_at": _iso(s.last_success_at),
                        "last_failure_at": _iso(s.last_failure_at),
                        "last_error": s.last_error,
                    }
                    for sid, s in self._sources.items()
                },
                "backends": {
                    name: {"delivered": b.delivered, "failed": dict(b.failed), "dropped": b.dropped}
                    for name, b in self._backends.items()
                },
                "lifecycle": [{"stage": stage, "at": _iso(at)} for stage, at in self._lifecycle],
            }


def safe_emit(sink: EventSink, event: str, *args: Any, **kwargs: Any) -> None:
    """Call one sink method; sink failures are logged and never reach the caller."""
    try:
        getattr(sink, event)(*args, **kwargs)
    except Exception as e:
        logger.warning("Event sink %s failed: %s", event, e, exc_info=True)
