import time
from datetime import timedelta

import pytest

from vaxpoll.core.errors import FetchError, FetchErrorKind
from vaxpoll.scheduler import PollScheduler, jittered_trigger
from vaxpoll.services.detection import Classification
from vaxpoll.services.providers import Source

from helpers import FlakyBackend, HangingAdapter, ScriptedAdapter, snap


def _scheduler(sources, detector, dispatcher, sink, **kwargs):
    kwargs.setdefault("fetch_timeout", 0.3)
    kwargs.setdefault("jitter_ratio", 0.0)
    return PollScheduler(sources, detector=detector, dispatcher=dispatcher, sink=sink, **kwargs)


def test_fetch_error_leaves_state_untouched(detector, make_dispatcher, sink):
    good = snap(("ClinicX", "9am"))
    adapter = ScriptedAdapter(good, FetchError(FetchErrorKind.UNREACHABLE, "connection refused"))
    source = Source(id="a", interval_seconds=60, adapter=adapter)
    scheduler = _scheduler([source], detector, make_dispatcher(), sink)

    scheduler.run_cycle(source)
    before = detector.current("a")
    outcome = scheduler.run_cycle(source)

    assert outcome.error.kind == FetchErrorKind.UNREACHABLE
    assert outcome.error.source_id == "a"
    assert outcome.event is None
    assert detector.current("a") is before
    (failed,) = sink.of("fetch_failed")
    assert failed[0] == "a"


def test_unexpected_adapter_exception_is_contained(detector, make_dispatcher, sink):
    adapter = ScriptedAdapter(KeyError("Data"))
    source = Source(id="a", interval_seconds=60, adapter=adapter)
    scheduler = _scheduler([source], detector, make_dispatcher(), sink)

    outcome = scheduler.run_cycle(source)
    assert outcome.error.kind == FetchErrorKind.PARSE_FAILURE
    assert detector.current("a") is None


def test_timeout_is_fetch_error_and_source_skipped_while_fetch_runs(detector, make_dispatcher, sink):
    adapter = HangingAdapter()
    source = Source(id="slow", interval_seconds=60, adapter=adapter)
    scheduler = _scheduler([source], detector, make_dispatcher(), sink, fetch_timeout=0.1)

    started = time.monotonic()
    outcome = scheduler.run_cycle(source)
    assert time.monotonic() - started < 1.0
    assert outcome.error.kind == FetchErrorKind.TIMEOUT

    again = scheduler.run_cycle(source)
    assert again.skipped
    assert adapter.calls == 1

    adapter.release.set()
    scheduler.shutdown(grace_seconds=1.0)
    # Result of the abandoned fetch is discarded
    assert detector.current("slow") is None


def test_only_newly_available_is_forwarded_by_default(detector, make_dispatcher, sink):
    backend = FlakyBackend()
    adapter = ScriptedAdapter(snap(("A", "1")), snap(("A", "1"), ("B", "2")), snap(("A", "1")))
    source = Source(id="s", interval_seconds=60, adapter=adapter)
    scheduler = _scheduler([source], detector, make_dispatcher(push=backend), sink)

    outcomes = [scheduler.run_cycle(source) for _ in range(3)]
    for o in outcomes:
        for fut in o.deliveries:
            fut.result(timeout=5)

    assert [o.event.classification for o in outcomes] == [
        Classification.NO_CHANGE,
        Classification.NEWLY_AVAILABLE,
        Classification.NOW_UNAVAILABLE,
    ]
    assert [o.forwarded for o in outcomes] == [False, True, False]
    assert len(backend.delivered) == 1
    assert [args[1] for args in sink.of("classified")] == [False, True, False]


def test_notify_on_unavailable_policy(detector, make_dispatcher, sink):
    backend = FlakyBackend()
    adapter = ScriptedAdapter(snap(("A", "1")), snap())
    source = Source(id="s", interval_seconds=60, adapter=adapter)
    scheduler = _scheduler([source], detector, make_dispatcher(push=backend), sink, notify_on_unavailable=True)

    scheduler.run_cycle(source)
    outcome = scheduler.run_cycle(source)
    for fut in outcome.deliveries:
        fut.result(timeout=5)

    assert outcome.forwarded
    (message,) = backend.delivered
    assert message.urgency.value == "normal"
    assert "No longer available:\n * A -- 1" in message.summary


def test_source_routing_uses_backend_names(detector, make_dispatcher, sink):
    a = FlakyBackend()
    b = FlakyBackend()
    adapter = ScriptedAdapter(snap(), snap(("A", "1")))
    source = Source(id="s", interval_seconds=60, adapter=adapter, backend_names=("b",))
    scheduler = _scheduler([source], detector, make_dispatcher(a=a, b=b), sink)

    scheduler.run_cycle(source)
    for fut in scheduler.run_cycle(source).deliveries:
        fut.result(timeout=5)
    assert a.calls == 0
    assert len(b.delivered) == 1


def test_admin_notified_once_per_failure_streak(detector, make_dispatcher, sink):
    admin = FlakyBackend()
    users = FlakyBackend()
    err = FetchError(FetchErrorKind.RATE_LIMITED, "HTTP 429")
    adapter = ScriptedAdapter(snap(), err, err, err, snap(), err)
    source = Source(id="s", interval_seconds=60, adapter=adapter, backend_names=("users",))
    dispatcher = make_dispatcher(admin=admin, users=users)
    scheduler = _scheduler([source], detector, dispatcher, sink, admin_backends=["admin"])

    for _ in range(6):
        scheduler.run_cycle(source)
    dispatcher.shutdown(grace_seconds=2.0)

    summaries = [m.summary for m in admin.delivered]
    assert len(summaries) == 3
    assert sum("fetch failing (rate_limited)" in s for s in summaries) == 2
    assert sum("fetch recovered" in s for s in summaries) == 1
    assert users.calls == 0
    assert scheduler.failing_sources() == ["s"]


def test_admin_notified_when_user_delivery_dropped(detector, make_dispatcher, sink, fast_policy):
    admin = FlakyBackend()
    users = FlakyBackend(failures=100)
    adapter = ScriptedAdapter(snap(), snap(("Halle 1", "any")))
    source = Source(id="s", interval_seconds=60, adapter=adapter, backend_names=("users",))
    dispatcher = make_dispatcher(admin_backends=["admin", "users"], admin=admin, users=users)
    scheduler = _scheduler([source], detector, dispatcher, sink)

    scheduler.run_cycle(source)
    outcome = scheduler.run_cycle(source)
    (report,) = [fut.result(timeout=5) for fut in outcome.deliveries]
    assert report.dropped

    deadline = time.monotonic() + 5
    while not admin.delivered and time.monotonic() < deadline:
        time.sleep(0.01)
    dispatcher.shutdown(grace_seconds=2.0)

    (notice,) = admin.delivered
    assert notice.source_id == "admin"
    assert notice.summary == f"s: delivery via users dropped after {fast_policy.max_attempts} attempts"
    # The failing backend is not asked to carry its own drop notice
    assert users.calls == fast_policy.max_attempts


def test_slow_source_does_not_delay_other_source(detector, make_dispatcher, sink):
    hanging = HangingAdapter()
    fast = ScriptedAdapter(snap(("A", "1")))
    sources = [
        Source(id="hang", interval_seconds=0.2, adapter=hanging),
        Source(id="fast", interval_seconds=0.2, adapter=fast),
    ]
    scheduler = _scheduler(sources, detector, make_dispatcher(), sink, fetch_timeout=0.5)

    scheduler.start()
    try:
        time.sleep(1.3)
        fast_calls = fast.calls
    finally:
        hanging.release.set()
        scheduler.shutdown(grace_seconds=1.0)

    # Without isolation the fast source would get at most ~2 polls in 1.3s
    assert fast_calls >= 4
    assert hanging.calls <= 3
    assert sink.of("fetch_failed")
    assert all(args[1].kind == FetchErrorKind.TIMEOUT for args in sink.of("fetch_failed"))


def test_no_cycles_after_shutdown(detector, make_dispatcher, sink):
    adapter = ScriptedAdapter(snap())
    source = Source(id="s", interval_seconds=0.1, adapter=adapter)
    scheduler = _scheduler([source], detector, make_dispatcher(), sink)

    scheduler.start()
    time.sleep(0.35)
    scheduler.shutdown(grace_seconds=1.0)
    calls = adapter.calls
    time.sleep(0.3)

    assert adapter.calls == calls
    assert scheduler.run_cycle(source).skipped


def test_min_interval_is_enforced(detector, make_dispatcher, sink):
    source = Source(id="s", interval_seconds=1, adapter=ScriptedAdapter(snap()))
    scheduler = _scheduler([source], detector, make_dispatcher(), sink, min_interval=5)
    assert scheduler.effective_interval(source) == 5


@pytest.mark.parametrize("ratio", [0.1, 0.25, 0.5])
def test_jittered_trigger_period_bounds(ratio):
    trigger = jittered_trigger(60, ratio)
    j = 60 * ratio
    assert trigger.interval.total_seconds() == pytest.approx(60 - j)
    assert trigger.jitter == pytest.approx(2 * j)


def test_zero_jitter_trigger_is_plain_interval():
    trigger = jittered_trigger(30, 0.0)
    assert trigger.interval == timedelta(seconds=30)
    assert trigger.jitter is None
