"""Protocol for notification backends. Same contract; only the channel differs."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol

from vaxpoll.services.messages import NotificationMessage


class NotificationBackend(Protocol):
    def deliver(self, message: NotificationMessage, timeout: float) -> None:
        """
        Deliver one message within ``timeout`` seconds. Returns on success, raises
        DeliveryError otherwise. Must be safe to call concurrently and must not
        assume any ordering between messages.
        """
        ...

    def close(self) -> None:
        """Release held resources (open connections). Safe to call twice."""
        ...


@dataclass(frozen=True)
class BackendHandle:
    """A registered backend: its configured name, the instance, and whether it receives messages."""

    name: str
    backend: NotificationBackend
    enabled: bool = True
