"""Protocol for source adapters. All adapters return the same normalized Snapshot."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol

from vaxpoll.services.providers.types import Snapshot


class SourceAdapter(Protocol):
    """Interface for booked4us and any other appointment site. Same contract; only fetch differs."""

    def fetch(self, timeout: float) -> Snapshot:
        """
        Fetch the current availability. Must finish within ``timeout`` seconds.
        "No slots" is a successful empty Snapshot; only network/parse problems
        raise FetchError. Must not mutate shared state.
        """
        ...

    def close(self) -> None:
        """Release held resources (open connections). Safe to call twice."""
        ...


@dataclass(frozen=True)
class Source:
    """One monitored site. Immutable after registration."""

    id: str
    interval_seconds: float
    adapter: SourceAdapter
    # Backend names this source notifies; empty means all enabled backends
    backend_names: tuple[str, ...] = ()
    link: str | None = None
