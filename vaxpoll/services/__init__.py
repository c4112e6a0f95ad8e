from vaxpoll.services.dispatch import DeliveryAttempt, DeliveryReport, NotificationDispatcher, RetryPolicy
from vaxpoll.services.events import EventSink, LoggingEventSink
from vaxpoll.services.messages import NotificationMessage, Urgency, admin_message, build_message

__all__ = [
    "DeliveryAttempt",
    "DeliveryReport",
    "EventSink",
    "LoggingEventSink",
    "NotificationDispatcher",
    "NotificationMessage",
    "RetryPolicy",
    "Urgency",
    "admin_message",
    "build_message",
]
