"""Normalized types for all source adapters. Same shape regardless of which site produced them."""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Iterable

# (location, slot) identifies one appointment opening across snapshots
SlotKey = tuple[str, str]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class SlotEntry:
    """One (location, time-slot) row. count is optional; when set, 0 means not bookable."""

    location: str
    slot: str
    available: bool = True
    count: int | None = None

    @property
    def key(self) -> SlotKey:
        return (self.location, self.slot)

    @property
    def is_open(self) -> bool:
        if not self.available:
            return False
        return self.count is None or self.count > 0

    def to_row(self) -> dict[str, Any]:
        return {
            "location": self.location,
            "slot": self.slot,
            "available": self.available,
            "count": self.count,
        }

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> SlotEntry:
        count = row.get("count")
        return cls(
            location=str(row["location"]),
            slot=str(row["slot"]),
            available=bool(row.get("available", True)),
            count=int(count) if count is not None else None,
        )


@dataclass(frozen=True)
class Snapshot:
    """
    A source's availability at one fetch time. Value type: never mutated, always
    replaced wholesale. An empty snapshot is a valid "no slots" answer.
    """

    entries: frozenset[SlotEntry] = field(default_factory=frozenset)
    fetched_at: datetime = field(default_factory=utcnow)

    @classmethod
    def of(cls, entries: Iterable[SlotEntry], fetched_at: datetime | None = None) -> Snapshot:
        return cls(entries=frozenset(entries), fetched_at=fetched_at or utcnow())

    def available_keys(self) -> frozenset[SlotKey]:
        return frozenset(e.key for e in self.entries if e.is_open)

    def open_entries(self) -> list[SlotEntry]:
        return sorted((e for e in self.entries if e.is_open), key=lambda e: e.key)

    @property
    def open_count(self) -> int:
        return len(self.available_keys())

    def to_dict(self) -> dict[str, Any]:
        return {
            "fetched_at": self.fetched_at.isoformat(),
            "entries": [e.to_row() for e in sorted(self.entries, key=lambda e: (e.key, e.count or 0))],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Snapshot:
        fetched_at = datetime.fromisoformat(data["fetched_at"])
        if fetched_at.tzinfo is None:
            fetched_at = fetched_at.replace(tzinfo=timezone.utc)
        return cls(
            entries=frozenset(SlotEntry.from_row(r) for r in data.get("entries") or []),
            fetched_at=fetched_at,
        )
