"""Console backend: writes messages to the log. For dry runs and local testing."""
import logging

from vaxpoll.services.messages import NotificationMessage, Urgency

logger = logging.getLogger(__name__)


class ConsoleBackend:
    def __init__(self, prefix: str = "") -> None:
        self.prefix = prefix

    def deliver(self, message: NotificationMessage, timeout: float) -> None:
        level = logging.WARNING if message.urgency == Urgency.URGENT else logging.INFO
        logger.log(level, "%s[%s] %s\n%s", self.prefix, message.urgency.value, message.title, message.summary)

    def close(self) -> None:
        pass
