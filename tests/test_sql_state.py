from datetime import datetime, timezone

import pytest
from sqlalchemy import create_engine, text
from sqlalchemy.pool import StaticPool

from vaxpoll.services.detection import ChangeDetector, Classification, InMemoryStateStore, SqlStateStore, build_state_store
from vaxpoll.services.providers import SlotEntry, Snapshot

from helpers import snap


@pytest.fixture()
def engine():
    eng = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    yield eng
    eng.dispose()


def test_unknown_source_is_none(engine):
    assert SqlStateStore(engine=engine).get("nope") is None


def test_put_then_get_round_trips_snapshot(engine):
    store = SqlStateStore(engine=engine)
    fetched = datetime(2021, 6, 1, 9, 30, tzinfo=timezone.utc)
    original = Snapshot.of(
        [SlotEntry("Halle 1 (ID 1)", "any"), SlotEntry("Halle 2 (ID 2)", "10:00", count=3)],
        fetched_at=fetched,
    )
    store.put("src", original)

    loaded = store.get("src")
    assert loaded == original
    assert loaded.fetched_at == fetched


def test_put_overwrites_latest_only(engine):
    store = SqlStateStore(engine=engine)
    store.put("src", snap(("A", "1")))
    store.put("src", snap(("B", "2")))

    assert store.get("src").available_keys() == {("B", "2")}
    with engine.connect() as conn:
        assert conn.execute(text("SELECT COUNT(*) FROM source_snapshots")).scalar() == 1


def test_unreadable_row_is_cold_start(engine):
    store = SqlStateStore(engine=engine)
    store.put("src", snap(("A", "1")))
    with engine.begin() as conn:
        conn.execute(text("UPDATE source_snapshots SET entries_json = '{broken' WHERE source_id = 'src'"))
    assert store.get("src") is None


def test_dedup_survives_restart(engine):
    first = ChangeDetector(SqlStateStore(engine=engine))
    first.observe("src", snap(("A", "1")))

    # New detector over the same database: no cold start, no duplicate alert
    restarted = ChangeDetector(SqlStateStore(engine=engine))
    event = restarted.observe("src", snap(("A", "1")))
    assert not event.cold_start
    assert event.classification == Classification.NO_CHANGE


def test_build_state_store_selects_backend():
    assert isinstance(build_state_store(None), InMemoryStateStore)
    store = build_state_store("sqlite:///:memory:")
    try:
        assert isinstance(store, SqlStateStore)
        store.put("x", snap())
        assert store.get("x") is not None
    finally:
        store.close()


def test_requires_url_or_engine():
    with pytest.raises(ValueError):
        SqlStateStore()
