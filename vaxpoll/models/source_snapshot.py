"""Latest snapshot per source: one row per source_id, overwritten on every successful fetch. No history."""
from sqlalchemy import Column, DateTime, String, Text
from sqlalchemy.sql import func

from vaxpoll.db.base import Base


class SourceSnapshot(Base):
    __tablename__ = "source_snapshots"

    source_id = Column(String(256), primary_key=True)
    fetched_at = Column(DateTime(timezone=True), nullable=False)
    entries_json = Column(Text, nullable=False)  # Snapshot.to_dict()
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)
