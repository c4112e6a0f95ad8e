"""Fakes shared by the tests: scripted adapters, flaky backends, a recording event sink."""
import threading
import time

from vaxpoll.core.errors import DeliveryError, DeliveryErrorKind
from vaxpoll.services.providers import SlotEntry, Snapshot


def snap(*pairs, fetched_at=None):
    """Snapshot from (location, slot) pairs."""
    return Snapshot.of((SlotEntry(location=loc, slot=slot) for loc, slot in pairs), fetched_at=fetched_at)


class ScriptedAdapter:
    """Returns (or raises) the scripted results in order; repeats the last one."""

    def __init__(self, *results, delay=0.0):
        self.results = list(results)
        self.delay = delay
        self.calls = 0
        self.closed = False
        self._lock = threading.Lock()

    def fetch(self, timeout):
        with self._lock:
            idx = min(self.calls, len(self.results) - 1)
            self.calls += 1
        if self.delay:
            time.sleep(self.delay)
        result = self.results[idx]
        if isinstance(result, Exception):
            raise result
        return result

    def close(self):
        self.closed = True


class HangingAdapter:
    """Blocks until released (or 5s), then returns an empty snapshot."""

    def __init__(self):
        self.release = threading.Event()
        self.calls = 0
        self.closed = False

    def fetch(self, timeout):
        self.calls += 1
        self.release.wait(5)
        return snap()

    def close(self):
        self.closed = True


class FlakyBackend:
    """Fails the first ``failures`` deliveries with ``kind``, then accepts."""

    def __init__(self, failures=0, kind=DeliveryErrorKind.UNREACHABLE, retry_after=None, delay=0.0):
        self.failures = failures
        self.kind = kind
        self.retry_after = retry_after
        self.delay = delay
        self.calls = 0
        self.delivered = []
        self.closed = False
        self._lock = threading.Lock()

    def deliver(self, message, timeout):
        with self._lock:
            self.calls += 1
            n = self.calls
        if self.delay:
            time.sleep(self.delay)
        if n <= self.failures:
            raise DeliveryError(self.kind, f"attempt {n} failed", retry_after=self.retry_after)
        with self._lock:
            self.delivered.append(message)

    def close(self):
        self.closed = True


class RecordingSink:
    def __init__(self):
        self.events = []
        self._lock = threading.Lock()

    def _record(self, name, *args):
        with self._lock:
            self.events.append((name, args))

    def of(self, name):
        with self._lock:
            return [args for n, args in self.events if n == name]

    def fetch_succeeded(self, source_id, snapshot, duration):
        self._record("fetch_succeeded", source_id, snapshot)

    def fetch_failed(self, source_id, error, duration):
        self._record("fetch_failed", source_id, error)

    def classified(self, event, forwarded):
        self._record("classified", event, forwarded)

    def delivery_attempted(self, attempt):
        self._record("delivery_attempted", attempt)

    def delivery_dropped(self, backend_name, message, attempts):
        self._record("delivery_dropped", backend_name, message, attempts)

    def lifecycle(self, stage, **details):
        self._record("lifecycle", stage)
