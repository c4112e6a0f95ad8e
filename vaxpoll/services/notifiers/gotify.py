"""Push notifications via a Gotify server (POST /message with an application token)."""
import logging

import httpx

from vaxpoll.core.constants import GOTIFY_PRIORITY_NORMAL, GOTIFY_PRIORITY_URGENT
from vaxpoll.core.errors import delivery_error_from_exception, delivery_error_from_status
from vaxpoll.services.messages import NotificationMessage, Urgency

logger = logging.getLogger(__name__)


class GotifyBackend:
    def __init__(self, url: str, application_token: str, *, client: httpx.Client | None = None) -> None:
        self.url = url.rstrip("/")
        self._token = application_token
        self._client = client or httpx.Client()

    def deliver(self, message: NotificationMessage, timeout: float) -> None:
        priority = GOTIFY_PRIORITY_URGENT if message.urgency == Urgency.URGENT else GOTIFY_PRIORITY_NORMAL
        form = {
            "title": message.title,
            "message": message.summary,
            "priority": str(priority),
        }
        try:
            resp = self._client.post(
                f"{self.url}/message",
                params={"token": self._token},
                data=form,
                timeout=timeout,
            )
        except Exception as e:
            raise delivery_error_from_exception(e) from e
        if not resp.is_success:
            raise delivery_error_from_status(resp.status_code, resp.headers, resp.text)
        logger.debug("Gotify accepted message for %s (priority %s)", message.source_id, priority)

    def close(self) -> None:
        self._client.close()
