"""Adapter factories by provider name. Add new sites here."""
import logging
from types import MappingProxyType
from typing import Any, Callable

from pydantic import BaseModel, ValidationError, field_validator

from vaxpoll.core.errors import ConfigurationError
from vaxpoll.services.providers.base import SourceAdapter
from vaxpoll.services.providers.booked4us import Booked4usAdapter

logger = logging.getLogger(__name__)


class Booked4usSettings(BaseModel):
    url: str

    @field_validator("url")
    @classmethod
    def http_url(cls, v: str) -> str:
        v = v.strip()
        if not v.startswith(("http://", "https://")):
            raise ValueError("url must start with http:// or https://")
        return v


def _booked4us(settings: dict[str, Any], user_agent: str | None) -> SourceAdapter:
    s = Booked4usSettings.model_validate(settings)
    return Booked4usAdapter(s.url, user_agent=user_agent)


AdapterFactory = Callable[[dict[str, Any], str | None], SourceAdapter]

ADAPTER_FACTORIES: MappingProxyType[str, AdapterFactory] = MappingProxyType({
    "booked4us": _booked4us,
})


def list_providers() -> list[str]:
    return sorted(ADAPTER_FACTORIES)


def build_adapter(provider: str, settings: dict[str, Any], *, user_agent: str | None = None) -> SourceAdapter:
    """Build an adapter from its registration. Raises ConfigurationError if unknown or invalid."""
    factory = ADAPTER_FACTORIES.get(provider)
    if factory is None:
        raise ConfigurationError(f"Unknown provider: {provider}. Available: {list_providers()}")
    try:
        adapter = factory(settings or {}, user_agent)
    except ValidationError as e:
        raise ConfigurationError(f"Invalid settings for provider {provider}: {e}") from e
    logger.debug("Built %s adapter", provider)
    return adapter
