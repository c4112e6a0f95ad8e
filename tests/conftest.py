import pytest

from vaxpoll.config import EngineConfig
from vaxpoll.services.detection import ChangeDetector, InMemoryStateStore
from vaxpoll.services.dispatch import NotificationDispatcher, RetryPolicy
from vaxpoll.services.notifiers import BackendHandle

from helpers import RecordingSink


@pytest.fixture()
def sink():
    return RecordingSink()


@pytest.fixture()
def detector():
    return ChangeDetector(InMemoryStateStore())


@pytest.fixture()
def fast_policy():
    return RetryPolicy(max_attempts=4, base_delay=0.01, max_delay=0.05)


@pytest.fixture()
def engine_config():
    return EngineConfig(
        fetch_timeout_seconds=0.5,
        delivery_timeout_seconds=0.5,
        shutdown_grace_seconds=2.0,
        retry_max_attempts=3,
        retry_base_delay_seconds=0.01,
        retry_max_delay_seconds=0.05,
        dispatch_max_workers=4,
        poll_jitter_ratio=0.0,
        min_poll_interval_seconds=0.0,
    )


@pytest.fixture()
def make_dispatcher(sink, fast_policy):
    created = []

    def _make(admin_backends=(), **backends):
        handles = [
            b if isinstance(b, BackendHandle) else BackendHandle(name=name, backend=b)
            for name, b in backends.items()
        ]
        d = NotificationDispatcher(
            handles,
            sink=sink,
            policy=fast_policy,
            delivery_timeout=1.0,
            max_workers=4,
            admin_backends=admin_backends,
        )
        created.append(d)
        return d

    yield _make
    for d in created:
        d.shutdown(grace_seconds=1.0)
