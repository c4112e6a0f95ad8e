"""
Send notifications by email via SMTP (any provider; Gmail needs an App Password).
One connection per message, so concurrent deliveries never share a socket.
"""
import logging
import smtplib
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Callable

from vaxpoll.core.errors import DeliveryError, DeliveryErrorKind, delivery_error_from_exception
from vaxpoll.services.messages import NotificationMessage, Urgency

logger = logging.getLogger(__name__)


class EmailBackend:
    def __init__(
        self,
        *,
        from_addr: str,
        to: list[str],
        subject: str,
        smtp_host: str,
        smtp_port: int = 587,
        smtp_user: str = "",
        smtp_password: str = "",
        smtp_starttls: bool = True,
        smtp_factory: Callable[..., smtplib.SMTP] = smtplib.SMTP,
    ) -> None:
        self.from_addr = from_addr
        self.to = list(to)
        self.subject = subject
        self.smtp_host = smtp_host
        self.smtp_port = smtp_port
        self._user = smtp_user
        self._password = smtp_password
        self.smtp_starttls = smtp_starttls
        self._smtp_factory = smtp_factory

    def _build(self, message: NotificationMessage) -> MIMEMultipart:
        msg = MIMEMultipart("alternative")
        msg["Subject"] = f"{self.subject}: {message.title}" if self.subject else message.title
        msg["From"] = self.from_addr
        msg["To"] = ", ".join(self.to)
        if message.urgency == Urgency.URGENT:
            msg["X-Priority"] = "1"
        msg.attach(MIMEText(message.summary, "plain"))
        msg.attach(MIMEText(f"<pre style='font-family:sans-serif'>{message.summary}</pre>", "html"))
        return msg

    def deliver(self, message: NotificationMessage, timeout: float) -> None:
        if not self.to:
            raise DeliveryError(DeliveryErrorKind.REJECTED, "no recipients configured")
        msg = self._build(message)
        try:
            with self._smtp_factory(self.smtp_host, self.smtp_port, timeout=timeout) as server:
                if self.smtp_starttls:
                    server.starttls()
                if self._user and self._password:
                    server.login(self._user, self._password)
                server.sendmail(self.from_addr, self.to, msg.as_string())
        except Exception as e:
            raise delivery_error_from_exception(e) from e
        logger.info("Email sent to %s for %s", len(self.to), message.source_id)

    def close(self) -> None:
        pass
