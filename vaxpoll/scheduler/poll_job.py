"""
Per-source poll jobs on an APScheduler BackgroundScheduler.

Each source gets its own interval job (max_instances=1, so a source's cycles never
overlap) with bounded jitter around its interval. A cycle hands the fetch to a
separate pool and waits at most fetch_timeout for it; a fetch that overruns is a
Timeout for this cycle and the source is skipped until the abandoned fetch returns.
The result of an abandoned fetch is discarded.

Successful snapshots go to the ChangeDetector; events in the notify policy are
turned into messages and handed to the dispatcher without waiting for delivery.
Failures are reported to the event sink and leave stored state untouched.
"""
from __future__ import annotations

import logging
import random
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout
from concurrent.futures import wait
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Iterable

from apscheduler.executors.pool import ThreadPoolExecutor as JobPoolExecutor
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger

from vaxpoll.core.constants import FIRST_POLL_SPREAD_RATIO, POLL_JOB_ID_PREFIX
from vaxpoll.core.errors import FetchError, FetchErrorKind, fetch_error_from_exception
from vaxpoll.services.detection.detector import ChangeDetector, ChangeEvent, Classification
from vaxpoll.services.dispatch import DeliveryReport, NotificationDispatcher
from vaxpoll.services.events import EventSink, safe_emit
from vaxpoll.services.messages import admin_message, build_message
from vaxpoll.services.providers.base import Source
from vaxpoll.services.providers.types import Snapshot

logger = logging.getLogger(__name__)


@dataclass
class CycleOutcome:
    """What one poll cycle did. Returned by run_cycle (used directly in tests)."""
    source_id: str
    snapshot: Snapshot | None = None
    event: ChangeEvent | None = None
    error: FetchError | None = None
    forwarded: bool = False
    # Previous fetch still running, or scheduler stopping
    skipped: bool = False
    deliveries: list[Future[DeliveryReport]] = field(default_factory=list)


def jittered_trigger(interval: float, jitter_ratio: float) -> IntervalTrigger:
    """
    Trigger whose period falls in [interval - j, interval + j], j = ratio * interval.
    APScheduler jitter is positive-only and carried into the next fire time, so the
    base interval is shortened by j and the jitter window is 2j.
    """
    j = interval * jitter_ratio
    if j <= 0:
        return IntervalTrigger(seconds=interval)
    return IntervalTrigger(seconds=interval - j, jitter=2 * j)


class PollScheduler:
    def __init__(
        self,
        sources: Iterable[Source],
        *,
        detector: ChangeDetector,
        dispatcher: NotificationDispatcher,
        sink: EventSink,
        fetch_timeout: float = 30.0,
        jitter_ratio: float = 0.1,
        min_interval: float = 0.0,
        notify_on_unavailable: bool = False,
        admin_backends: Iterable[str] = (),
    ) -> None:
        self._sources = {s.id: s for s in sources}
        self._detector = detector
        self._dispatcher = dispatcher
        self._sink = sink
        self._fetch_timeout = fetch_timeout
        self._jitter_ratio = jitter_ratio
        self._min_interval = min_interval
        self._notify_on = {Classification.NEWLY_AVAILABLE}
        if notify_on_unavailable:
            self._notify_on.add(Classification.NOW_UNAVAILABLE)
        self._admin_backends = tuple(admin_backends)

        workers = max(len(self._sources), 1)
        # One fetch in flight per source at most
        self._fetch_pool = ThreadPoolExecutor(max_workers=workers, thread_name_prefix="fetch")
        self._scheduler = BackgroundScheduler(
            executors={"default": JobPoolExecutor(max_workers=workers)},
            timezone=timezone.utc,
        )
        self._lock = threading.Lock()
        self._in_flight: dict[str, Future] = {}
        self._failing: dict[str, bool] = {}
        self._stopping = threading.Event()
        self._started = False

    @property
    def sources(self) -> list[Source]:
        return list(self._sources.values())

    @property
    def running(self) -> bool:
        return self._started and not self._stopping.is_set()

    def effective_interval(self, source: Source) -> float:
        if source.interval_seconds < self._min_interval:
            return self._min_interval
        return source.interval_seconds

    def start(self) -> None:
        """Register one interval job per source and start the scheduler. First polls are spread slightly."""
        now = datetime.now(timezone.utc)
        for source in self._sources.values():
            interval = self.effective_interval(source)
            if interval != source.interval_seconds:
                logger.warning(
                    "%s: interval %ss below minimum, using %ss", source.id, source.interval_seconds, interval
                )
            first = now + timedelta(seconds=random.uniform(0, interval * FIRST_POLL_SPREAD_RATIO))
            self._scheduler.add_job(
                self.run_cycle,
                jittered_trigger(interval, self._jitter_ratio),
                args=[source],
                id=f"{POLL_JOB_ID_PREFIX}{source.id}",
                name=source.id,
                next_run_time=first,
                max_instances=1,
                coalesce=True,
                misfire_grace_time=None,
            )
            logger.info("Scheduled %s every %ss (jitter %.0f%%)", source.id, interval, self._jitter_ratio * 100)
        self._scheduler.start()
        self._started = True

    def _fetch_done(self, source_id: str, fut: Future) -> None:
        with self._lock:
            if self._in_flight.get(source_id) is fut:
                del self._in_flight[source_id]

    def run_cycle(self, source: Source) -> CycleOutcome:
        """One poll of one source: fetch (time-boxed), classify, forward per policy."""
        outcome = CycleOutcome(source_id=source.id)
        if self._stopping.is_set():
            outcome.skipped = True
            return outcome
        with self._lock:
            prior = self._in_flight.get(source.id)
            if prior is not None and not prior.done():
                logger.warning("%s: previous fetch still running, skipping this cycle", source.id)
                outcome.skipped = True
                return outcome
            try:
                fut = self._fetch_pool.submit(source.adapter.fetch, self._fetch_timeout)
            except RuntimeError:
                # Pool already shut down
                outcome.skipped = True
                return outcome
            self._in_flight[source.id] = fut
        fut.add_done_callback(lambda f, sid=source.id: self._fetch_done(sid, f))

        started = time.monotonic()
        try:
            snapshot = fut.result(timeout=self._fetch_timeout)
        except FutureTimeout:
            outcome.error = FetchError(
                FetchErrorKind.TIMEOUT, f"no response within {self._fetch_timeout}s", source_id=source.id
            )
        except FetchError as e:
            if e.source_id is None:
                e.source_id = source.id
            outcome.error = e
        except Exception as e:
            logger.exception("%s: adapter raised unexpectedly: %s", source.id, e)
            outcome.error = fetch_error_from_exception(e)
            outcome.error.source_id = source.id
        duration = time.monotonic() - started

        if outcome.error is not None:
            safe_emit(self._sink, "fetch_failed", source.id, outcome.error, duration)
            self._note_failure(source, outcome.error)
            return outcome

        outcome.snapshot = snapshot
        safe_emit(self._sink, "fetch_succeeded", source.id, snapshot, duration)
        self._note_success(source)
        try:
            event = self._detector.observe(source.id, snapshot)
        except Exception as e:
            # State store failure: cycle ends, next tick retries
            logger.exception("%s: could not record snapshot: %s", source.id, e)
            return outcome
        outcome.event = event
        outcome.forwarded = event.classification in self._notify_on
        safe_emit(self._sink, "classified", event, outcome.forwarded)
        if outcome.forwarded:
            message = build_message(event, source.link)
            outcome.deliveries = self._dispatcher.dispatch(message, source.backend_names)
        return outcome

    def _admin(self, subject: str, text: str) -> None:
        if self._admin_backends:
            self._dispatcher.dispatch(admin_message(subject, text), self._admin_backends)

    def _note_failure(self, source: Source, error: FetchError) -> None:
        with self._lock:
            already = self._failing.get(source.id, False)
            self._failing[source.id] = True
        if not already:
            self._admin(source.id, f"fetch failing ({error.kind.value}): {error.message}")

    def _note_success(self, source: Source) -> None:
        with self._lock:
            was_failing = self._failing.get(source.id, False)
            self._failing[source.id] = False
        if was_failing:
            self._admin(source.id, "fetch recovered")

    def failing_sources(self) -> list[str]:
        with self._lock:
            return sorted(sid for sid, failing in self._failing.items() if failing)

    def next_run_times(self) -> dict[str, str | None]:
        out: dict[str, str | None] = {}
        for job in self._scheduler.get_jobs():
            out[job.name] = job.next_run_time.isoformat() if job.next_run_time else None
        return out

    def shutdown(self, grace_seconds: float | None = None) -> None:
        """
        No new cycles after this call. Waits for running cycles, then up to
        ``grace_seconds`` for abandoned fetches still holding a worker.
        """
        self._stopping.set()
        if self._started:
            self._scheduler.shutdown(wait=True)
        with self._lock:
            pending = [f for f in self._in_flight.values() if not f.done()]
        if pending:
            _done, not_done = wait(pending, timeout=grace_seconds)
            if not_done:
                logger.warning("%s fetches did not finish within %ss", len(not_done), grace_seconds)
        self._fetch_pool.shutdown(wait=False, cancel_futures=True)
