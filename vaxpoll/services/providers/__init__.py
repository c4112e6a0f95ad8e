"""
Source adapters: booked4us, etc.
Each adapter fetches data in its own way but returns the same normalized Snapshot
so change detection and notification stay site-agnostic.
"""
from vaxpoll.services.providers.base import Source, SourceAdapter
from vaxpoll.services.providers.registry import build_adapter, list_providers
from vaxpoll.services.providers.types import SlotEntry, SlotKey, Snapshot

__all__ = [
    "SlotEntry",
    "SlotKey",
    "Snapshot",
    "Source",
    "SourceAdapter",
    "build_adapter",
    "list_providers",
]
