"""Backend factories by provider name. Add new channels here."""
import logging
from types import MappingProxyType
from typing import Any, Callable

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from vaxpoll.core.errors import ConfigurationError
from vaxpoll.services.notifiers.base import NotificationBackend
from vaxpoll.services.notifiers.console import ConsoleBackend
from vaxpoll.services.notifiers.email_notify import EmailBackend
from vaxpoll.services.notifiers.gotify import GotifyBackend
from vaxpoll.services.notifiers.webhook import WebhookBackend

logger = logging.getLogger(__name__)


class GotifySettings(BaseModel):
    url: str = Field(min_length=1)
    application_token: str = Field(min_length=1)


class SmtpSettings(BaseModel):
    host: str = Field(min_length=1)
    port: int = Field(default=587, gt=0, lt=65536)
    user: str = ""
    password: str = ""
    starttls: bool = True


class EmailSettings(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    from_addr: str = Field(alias="from", min_length=1)
    to: list[str] = Field(min_length=1)
    subject: str = ""
    smtp: SmtpSettings


class WebhookSettings(BaseModel):
    url: str = Field(min_length=1)
    headers: dict[str, str] = Field(default_factory=dict)


class ConsoleSettings(BaseModel):
    prefix: str = ""


def _gotify(settings: dict[str, Any]) -> NotificationBackend:
    s = GotifySettings.model_validate(settings)
    return GotifyBackend(s.url, s.application_token)


def _email(settings: dict[str, Any]) -> NotificationBackend:
    s = EmailSettings.model_validate(settings)
    return EmailBackend(
        from_addr=s.from_addr,
        to=s.to,
        subject=s.subject,
        smtp_host=s.smtp.host,
        smtp_port=s.smtp.port,
        smtp_user=s.smtp.user,
        smtp_password=s.smtp.password,
        smtp_starttls=s.smtp.starttls,
    )


def _webhook(settings: dict[str, Any]) -> NotificationBackend:
    s = WebhookSettings.model_validate(settings)
    return WebhookBackend(s.url, headers=s.headers)


def _console(settings: dict[str, Any]) -> NotificationBackend:
    s = ConsoleSettings.model_validate(settings)
    return ConsoleBackend(prefix=s.prefix)


BackendFactory = Callable[[dict[str, Any]], NotificationBackend]

BACKEND_FACTORIES: MappingProxyType[str, BackendFactory] = MappingProxyType({
    "console": _console,
    "email": _email,
    "gotify": _gotify,
    "webhook": _webhook,
})


def list_backend_types() -> list[str]:
    return sorted(BACKEND_FACTORIES)


def build_backend(provider: str, settings: dict[str, Any]) -> NotificationBackend:
    """Build a backend from its registration. Raises ConfigurationError if unknown or invalid."""
    factory = BACKEND_FACTORIES.get(provider)
    if factory is None:
        raise ConfigurationError(f"Unknown notification provider: {provider}. Available: {list_backend_types()}")
    try:
        backend = factory(settings or {})
    except ValidationError as e:
        raise ConfigurationError(f"Invalid settings for notification provider {provider}: {e}") from e
    logger.debug("Built %s backend", provider)
    return backend
