"""Notification messages derived from change events. Same event in, same message out."""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum

from vaxpoll.core.constants import ADMIN_SOURCE_ID, ADMIN_TITLE, ANY_SLOT, MESSAGE_MAX_ENTRIES
from vaxpoll.services.detection.detector import ChangeEvent, Classification
from vaxpoll.services.providers.types import SlotKey, utcnow


class Urgency(str, Enum):
    NORMAL = "normal"
    URGENT = "urgent"


@dataclass(frozen=True)
class NotificationMessage:
    source_id: str
    title: str
    summary: str
    urgency: Urgency
    generated_at: datetime = field(default_factory=utcnow)

    def to_payload(self) -> dict:
        return {
            "source": self.source_id,
            "title": self.title,
            "summary": self.summary,
            "urgency": self.urgency.value,
            "generated_at": self.generated_at.isoformat(),
        }


def _label(key: SlotKey) -> str:
    location, slot = key
    return location if slot == ANY_SLOT else f"{location} -- {slot}"


def _bullets(keys) -> str:
    ordered = sorted(keys)
    if not ordered:
        return " (none)\n"
    lines = [f" * {_label(k)}" for k in ordered[:MESSAGE_MAX_ENTRIES]]
    if len(ordered) > MESSAGE_MAX_ENTRIES:
        lines.append(f" ... and {len(ordered) - MESSAGE_MAX_ENTRIES} more")
    return "\n".join(lines) + "\n"


def build_message(event: ChangeEvent, link: str | None = None) -> NotificationMessage:
    """Render a change event. Urgent when something opened; normal when slots only went away."""
    text = (
        f"Newly available:\n{_bullets(event.added)}"
        f"All available:\n{_bullets(event.current.available_keys())}"
        f"No longer available:\n{_bullets(event.removed)}"
    )
    if link:
        text += f"URL: {link}\n"
    urgency = Urgency.URGENT if event.classification == Classification.NEWLY_AVAILABLE else Urgency.NORMAL
    return NotificationMessage(
        source_id=event.source_id,
        title=event.source_id,
        summary=text,
        urgency=urgency,
        generated_at=event.current.fetched_at,
    )


def admin_message(subject: str, text: str) -> NotificationMessage:
    """Operational message for the admin channel, e.g. 'App: started'."""
    return NotificationMessage(
        source_id=ADMIN_SOURCE_ID,
        title=ADMIN_TITLE,
        summary=f"{subject}: {text}",
        urgency=Urgency.NORMAL,
    )
