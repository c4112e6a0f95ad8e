"""
Engine: builds sources, backends, state, dispatcher and scheduler from configuration
and owns their lifecycle. Nothing is module-level; everything hangs off one Engine.

Shutdown order:
  1. scheduler stops (no new cycles; running cycles finish or time out)
  2. abandoned fetches get up to shutdown_grace_seconds
  3. "terminated" admin message is queued
  4. dispatcher drains (retries still waiting are cancelled after the grace period)
  5. adapters, backends and the state store are closed
"""
from __future__ import annotations

import logging
import threading
from datetime import datetime
from typing import Any, Iterable

from vaxpoll.config import EngineConfig
from vaxpoll.core.constants import APP_NAME
from vaxpoll.core.errors import ConfigurationError
from vaxpoll.core.registration import AppConfig
from vaxpoll.scheduler.poll_job import PollScheduler
from vaxpoll.services.detection import ChangeDetector, StateStore, build_state_store
from vaxpoll.services.dispatch import NotificationDispatcher, RetryPolicy
from vaxpoll.services.events import EventSink, LoggingEventSink, safe_emit
from vaxpoll.services.messages import admin_message
from vaxpoll.services.notifiers import BackendHandle, build_backend
from vaxpoll.services.providers import Source, build_adapter
from vaxpoll.services.providers.types import utcnow

logger = logging.getLogger(__name__)


def _close_quietly(name: str, obj: Any) -> None:
    try:
        obj.close()
    except Exception as e:
        logger.warning("Closing %s failed: %s", name, e, exc_info=True)


class Engine:
    def __init__(
        self,
        sources: Iterable[Source],
        backends: Iterable[BackendHandle],
        *,
        config: EngineConfig | None = None,
        store: StateStore | None = None,
        sink: EventSink | None = None,
        admin_backends: Iterable[str] = (),
    ) -> None:
        self.config = config or EngineConfig()
        self.sources = list(sources)
        self.backends = list(backends)
        self.admin_backends = tuple(admin_backends)
        self._check_registrations()

        self.sink = sink or LoggingEventSink()
        self.store = store if store is not None else build_state_store(self.config.state_database_url)
        self.detector = ChangeDetector(self.store)
        self.dispatcher = NotificationDispatcher(
            self.backends,
            sink=self.sink,
            policy=RetryPolicy(
                max_attempts=self.config.retry_max_attempts,
                base_delay=self.config.retry_base_delay_seconds,
                max_delay=self.config.retry_max_delay_seconds,
            ),
            delivery_timeout=self.config.delivery_timeout_seconds,
            max_workers=self.config.dispatch_max_workers,
            admin_backends=self.admin_backends,
        )
        self.scheduler = PollScheduler(
            self.sources,
            detector=self.detector,
            dispatcher=self.dispatcher,
            sink=self.sink,
            fetch_timeout=self.config.fetch_timeout_seconds,
            jitter_ratio=self.config.poll_jitter_ratio,
            min_interval=self.config.min_poll_interval_seconds,
            notify_on_unavailable=self.config.notify_on_unavailable,
            admin_backends=self.admin_backends,
        )
        self._lock = threading.Lock()
        self._stopped = threading.Event()
        self._running = False
        self.started_at: datetime | None = None
        self.stopped_at: datetime | None = None

    @classmethod
    def from_config(
        cls,
        app_config: AppConfig,
        config: EngineConfig | None = None,
        *,
        sink: EventSink | None = None,
    ) -> Engine:
        """Build adapters and backends from a validated registration. Raises ConfigurationError."""
        config = config or EngineConfig()
        backends: list[BackendHandle] = []
        sources: list[Source] = []
        try:
            for name, reg in app_config.notifications.items():
                backends.append(
                    BackendHandle(name=name, backend=build_backend(reg.provider, reg.settings), enabled=reg.enabled)
                )
            for svc in app_config.services:
                adapter = build_adapter(svc.provider, svc.settings, user_agent=config.user_agent)
                sources.append(
                    Source(
                        id=svc.title,
                        interval_seconds=svc.sleep,
                        adapter=adapter,
                        backend_names=tuple(svc.notifications),
                        link=getattr(adapter, "link", None),
                    )
                )
            return cls(sources, backends, config=config, sink=sink, admin_backends=app_config.admin_notifications)
        except ConfigurationError:
            # Release the http clients built so far
            for source in sources:
                _close_quietly(f"adapter {source.id}", source.adapter)
            for handle in backends:
                _close_quietly(f"backend {handle.name}", handle.backend)
            raise

    def _check_registrations(self) -> None:
        if not self.sources:
            raise ConfigurationError("no sources registered")
        ids = [s.id for s in self.sources]
        dupes = sorted({i for i in ids if ids.count(i) > 1})
        if dupes:
            raise ConfigurationError(f"duplicate source ids: {dupes}")
        for s in self.sources:
            if s.interval_seconds <= 0:
                raise ConfigurationError(f"source {s.id}: interval must be positive")
        names = {b.name for b in self.backends}
        if len(names) != len(self.backends):
            raise ConfigurationError("duplicate backend names")
        for s in self.sources:
            unknown = [n for n in s.backend_names if n not in names]
            if unknown:
                raise ConfigurationError(f"source {s.id} references unknown backends: {unknown}")
        unknown = [n for n in self.admin_backends if n not in names]
        if unknown:
            raise ConfigurationError(f"unknown admin backends: {unknown}")

    @property
    def running(self) -> bool:
        return self._running

    def _admin(self, text: str) -> None:
        if self.admin_backends:
            self.dispatcher.dispatch(admin_message("App", f"{APP_NAME} {text}"), self.admin_backends)

    def start(self) -> None:
        with self._lock:
            if self._running or self._stopped.is_set():
                raise RuntimeError("engine can only be started once")
            self._running = True
            self.started_at = utcnow()
        self.scheduler.start()
        logger.info("Engine started: %s sources, %s backends", len(self.sources), len(self.backends))
        safe_emit(self.sink, "lifecycle", "started", sources=len(self.sources), backends=len(self.backends))
        self._admin("started")

    def stop(self) -> None:
        """Graceful stop. Returns once in-flight work has finished or timed out. Idempotent."""
        with self._lock:
            if self._stopped.is_set():
                return
            was_running = self._running
            self._running = False
        grace = self.config.shutdown_grace_seconds
        safe_emit(self.sink, "lifecycle", "stopping")
        self.scheduler.shutdown(grace_seconds=grace)
        safe_emit(self.sink, "lifecycle", "polling-stopped")
        if was_running:
            self._admin("terminated")
        self.dispatcher.shutdown(grace_seconds=grace)
        safe_emit(self.sink, "lifecycle", "dispatch-drained")
        for s in self.sources:
            _close_quietly(f"adapter {s.id}", s.adapter)
        for b in self.backends:
            _close_quietly(f"backend {b.name}", b.backend)
        _close_quietly("state store", self.store)
        self.stopped_at = utcnow()
        self._stopped.set()
        safe_emit(self.sink, "lifecycle", "stopped")
        logger.info("Engine stopped")

    def wait(self, timeout: float | None = None) -> bool:
        """Block until stop() has completed. Returns True if stopped."""
        return self._stopped.wait(timeout)

    def status(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "running": self._running,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "stopped_at": self.stopped_at.isoformat() if self.stopped_at else None,
            "sources": [
                {
                    "id": s.id,
                    "interval_seconds": self.scheduler.effective_interval(s),
                    "backends": list(s.backend_names) or "all",
                }
                for s in self.sources
            ],
            "backends": [{"name": b.name, "enabled": b.enabled} for b in self.backends],
            "admin_backends": list(self.admin_backends),
            "failing_sources": self.scheduler.failing_sources(),
            "pending_deliveries": self.dispatcher.pending_count(),
        }
        if self._running:
            out["next_runs"] = self.scheduler.next_run_times()
        stats = getattr(self.sink, "snapshot_stats", None)
        if callable(stats):
            out["stats"] = stats()
        return out
