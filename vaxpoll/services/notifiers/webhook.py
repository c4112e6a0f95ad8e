"""Generic webhook backend: POSTs the message as JSON."""
import logging

import httpx

from vaxpoll.core.errors import delivery_error_from_exception, delivery_error_from_status
from vaxpoll.services.messages import NotificationMessage

logger = logging.getLogger(__name__)


class WebhookBackend:
    def __init__(
        self,
        url: str,
        *,
        headers: dict[str, str] | None = None,
        client: httpx.Client | None = None,
    ) -> None:
        self.url = url
        self._headers = dict(headers or {})
        self._client = client or httpx.Client()

    def deliver(self, message: NotificationMessage, timeout: float) -> None:
        try:
            resp = self._client.post(self.url, json=message.to_payload(), headers=self._headers, timeout=timeout)
        except Exception as e:
            raise delivery_error_from_exception(e) from e
        if not resp.is_success:
            raise delivery_error_from_status(resp.status_code, resp.headers, resp.text)
        logger.debug("Webhook %s accepted message for %s", self.url, message.source_id)

    def close(self) -> None:
        self._client.close()
