"""
Persistent state store (SQLAlchemy). Keeps only the latest snapshot per source so
deduplication survives a restart. Each call uses its own short session.
"""
import json
import logging

from sqlalchemy.engine import Engine

from vaxpoll.db import Base, create_state_engine, make_session_factory
from vaxpoll.models.source_snapshot import SourceSnapshot
from vaxpoll.services.providers.types import Snapshot

logger = logging.getLogger(__name__)


class SqlStateStore:
    def __init__(self, database_url: str | None = None, *, engine: Engine | None = None) -> None:
        if engine is None:
            if not database_url:
                raise ValueError("database_url or engine is required")
            engine = create_state_engine(database_url)
        self._engine = engine
        Base.metadata.create_all(bind=engine, tables=[SourceSnapshot.__table__])
        self._session_factory = make_session_factory(engine)

    def get(self, source_id: str) -> Snapshot | None:
        db = self._session_factory()
        try:
            row = db.get(SourceSnapshot, source_id)
            if row is None:
                return None
            try:
                return Snapshot.from_dict(json.loads(row.entries_json))
            except (ValueError, KeyError, TypeError) as e:
                # Unreadable row is treated as unknown: next poll is a cold start
                logger.warning("Stored snapshot for %s unreadable, ignoring: %s", source_id, e)
                return None
        finally:
            db.close()

    def put(self, source_id: str, snapshot: Snapshot) -> None:
        payload = json.dumps(snapshot.to_dict())
        db = self._session_factory()
        try:
            row = db.get(SourceSnapshot, source_id)
            if row is None:
                db.add(SourceSnapshot(source_id=source_id, fetched_at=snapshot.fetched_at, entries_json=payload))
            else:
                row.fetched_at = snapshot.fetched_at
                row.entries_json = payload
            db.commit()
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    def close(self) -> None:
        self._engine.dispose()
