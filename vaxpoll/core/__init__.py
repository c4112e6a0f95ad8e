from vaxpoll.core.errors import (
    ConfigurationError,
    DeliveryError,
    DeliveryErrorKind,
    FetchError,
    FetchErrorKind,
    VaxPollError,
)
from vaxpoll.core.registration import AppConfig, load_config, parse_config

__all__ = [
    "AppConfig",
    "ConfigurationError",
    "DeliveryError",
    "DeliveryErrorKind",
    "FetchError",
    "FetchErrorKind",
    "VaxPollError",
    "load_config",
    "parse_config",
]
