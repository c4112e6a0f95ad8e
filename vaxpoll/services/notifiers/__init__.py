"""
Notification backends: gotify, email, webhook, console.
The dispatcher holds BackendHandles and calls deliver() polymorphically.
"""
from vaxpoll.services.notifiers.base import BackendHandle, NotificationBackend
from vaxpoll.services.notifiers.registry import build_backend, list_backend_types

__all__ = [
    "BackendHandle",
    "NotificationBackend",
    "build_backend",
    "list_backend_types",
]
