"""
Notification dispatcher: fan a message out to enabled backends, one independent
job per (message, backend). Each backend has its own thread pool, so a slow or
failing backend only queues its own deliveries.

Each job retries with bounded exponential backoff:
  delay(n) = min(base * 2**(n-1), max_delay), raised to the backend's Retry-After hint
  (still capped), and never shorter than the previous delay.
After max_attempts failures the message is dropped for that backend only.
Waits between attempts are on a stop event, so shutdown cancels pending retries.
Delivery is at-least-once per backend within the retry budget.
When a user message is dropped, the admin backends (other than the failing one) are told.
"""
from __future__ import annotations

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from typing import Iterable

from vaxpoll.core.constants import ADMIN_SOURCE_ID
from vaxpoll.core.errors import DeliveryError, DeliveryErrorKind
from vaxpoll.services.events import EventSink, safe_emit
from vaxpoll.services.messages import NotificationMessage, admin_message
from vaxpoll.services.notifiers.base import BackendHandle

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = 4
    base_delay: float = 2.0
    max_delay: float = 60.0

    def delay_after(self, failed_attempt: int, error: DeliveryError | None = None, previous: float = 0.0) -> float:
        """Wait before the next attempt, given the 1-based number of the attempt that just failed."""
        delay = min(self.base_delay * (2 ** (failed_attempt - 1)), self.max_delay)
        if error is not None and error.retry_after is not None:
            delay = min(max(delay, error.retry_after), self.max_delay)
        return max(delay, previous)


@dataclass(frozen=True)
class DeliveryAttempt:
    backend_name: str
    message: NotificationMessage
    attempt: int
    success: bool
    error_kind: DeliveryErrorKind | None = None
    error: str | None = None
    # Seconds waited before this attempt (0 for the first)
    delay: float = 0.0


@dataclass
class DeliveryReport:
    backend_name: str
    message: NotificationMessage
    attempts: list[DeliveryAttempt] = field(default_factory=list)
    delivered: bool = False
    # Retry wait interrupted by shutdown
    cancelled: bool = False

    @property
    def dropped(self) -> bool:
        return not self.delivered

    @property
    def failures(self) -> int:
        return sum(1 for a in self.attempts if not a.success)


class NotificationDispatcher:
    def __init__(
        self,
        backends: Iterable[BackendHandle],
        *,
        sink: EventSink,
        policy: RetryPolicy | None = None,
        delivery_timeout: float = 15.0,
        max_workers: int = 8,
        admin_backends: Iterable[str] = (),
    ) -> None:
        self._backends: dict[str, BackendHandle] = {}
        for handle in backends:
            self._backends[handle.name] = handle
        self._sink = sink
        self._policy = policy or RetryPolicy()
        self._delivery_timeout = delivery_timeout
        self._admin_backends = list(admin_backends)
        # Per backend, so one backend's backlog never holds another's workers
        self._executors: dict[str, ThreadPoolExecutor] = {
            name: ThreadPoolExecutor(max_workers=max(max_workers, 1), thread_name_prefix=f"dispatch-{name}")
            for name in self._backends
        }
        self._stop = threading.Event()
        self._lock = threading.Lock()
        self._pending: set[Future] = set()
        self._accepting = True

    @property
    def policy(self) -> RetryPolicy:
        return self._policy

    @property
    def backend_names(self) -> list[str]:
        return list(self._backends)

    def pending_count(self) -> int:
        with self._lock:
            return len(self._pending)

    def _targets(self, backend_names: Iterable[str] | None) -> list[BackendHandle]:
        names = list(backend_names or ())
        if not names:
            return [h for h in self._backends.values() if h.enabled]
        targets = []
        for name in names:
            handle = self._backends.get(name)
            if handle is None:
                logger.warning("Unknown backend %s, skipping", name)
            elif handle.enabled:
                targets.append(handle)
        return targets

    def dispatch(
        self, message: NotificationMessage, backend_names: Iterable[str] | None = None
    ) -> list[Future[DeliveryReport]]:
        """
        Queue delivery of ``message`` to each enabled backend (all of them, or only
        ``backend_names``). Returns immediately with one future per backend.
        """
        targets = self._targets(backend_names)
        futures: list[Future[DeliveryReport]] = []
        with self._lock:
            if not self._accepting:
                logger.warning("Dispatcher closed, not delivering message from %s", message.source_id)
                return futures
            for handle in targets:
                fut = self._executors[handle.name].submit(self._deliver_with_retry, handle, message)
                self._pending.add(fut)
                futures.append(fut)
        # Outside the lock: a future that is already done runs its callback inline
        for fut in futures:
            fut.add_done_callback(self._discard)
        if not targets:
            logger.info("No enabled backend for message from %s", message.source_id)
        return futures

    def _discard(self, fut: Future) -> None:
        with self._lock:
            self._pending.discard(fut)

    def _attempt(self, handle: BackendHandle, message: NotificationMessage) -> DeliveryError | None:
        try:
            handle.backend.deliver(message, self._delivery_timeout)
            return None
        except DeliveryError as e:
            return e
        except Exception as e:
            logger.exception("Backend %s raised unexpectedly: %s", handle.name, e)
            return DeliveryError(DeliveryErrorKind.REJECTED, f"{type(e).__name__}: {e}")

    def _deliver_with_retry(self, handle: BackendHandle, message: NotificationMessage) -> DeliveryReport:
        report = DeliveryReport(backend_name=handle.name, message=message)
        delay = 0.0
        for attempt in range(1, self._policy.max_attempts + 1):
            if attempt > 1 and self._stop.wait(delay):
                report.cancelled = True
                logger.info("Retry for %s cancelled by shutdown after %s attempts", handle.name, attempt - 1)
                break
            error = self._attempt(handle, message)
            record = DeliveryAttempt(
                backend_name=handle.name,
                message=message,
                attempt=attempt,
                success=error is None,
                error_kind=error.kind if error else None,
                error=error.message if error else None,
                delay=delay if attempt > 1 else 0.0,
            )
            report.attempts.append(record)
            safe_emit(self._sink, "delivery_attempted", record)
            if error is None:
                report.delivered = True
                return report
            delay = self._policy.delay_after(attempt, error, previous=delay)
        safe_emit(self._sink, "delivery_dropped", handle.name, message, len(report.attempts))
        if not report.cancelled:
            self._announce_drop(handle.name, message, len(report.attempts))
        return report

    def _announce_drop(self, backend_name: str, message: NotificationMessage, attempts: int) -> None:
        # Admin messages are never re-announced, otherwise a broken admin channel loops
        if message.source_id == ADMIN_SOURCE_ID:
            return
        targets = [name for name in self._admin_backends if name != backend_name]
        if not targets:
            return
        notice = admin_message(message.source_id, f"delivery via {backend_name} dropped after {attempts} attempts")
        self.dispatch(notice, targets)

    def shutdown(self, grace_seconds: float | None = None) -> None:
        """
        Stop accepting messages, let queued deliveries run for up to ``grace_seconds``,
        then cancel pending retry waits and wait for running attempts to return.
        """
        with self._lock:
            self._accepting = False
            pending = list(self._pending)
        if pending:
            _done, not_done = wait(pending, timeout=grace_seconds)
            if not_done:
                logger.warning("%s deliveries still running after %ss, cancelling retries", len(not_done), grace_seconds)
        self._stop.set()
        for executor in self._executors.values():
            executor.shutdown(wait=True, cancel_futures=True)
