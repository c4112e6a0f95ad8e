"""
Centralized error taxonomy for polling and delivery failures.
Constants and small mapping helpers so adapters and backends stay thin and new
failure categories are easy to add.
"""
from __future__ import annotations

import json
import smtplib
from enum import Enum
from typing import Callable, Mapping

import httpx


class FetchErrorKind(str, Enum):
    TIMEOUT = "timeout"
    UNREACHABLE = "unreachable"
    PARSE_FAILURE = "parse_failure"
    RATE_LIMITED = "rate_limited"


class DeliveryErrorKind(str, Enum):
    UNREACHABLE = "unreachable"
    REJECTED = "rejected"
    THROTTLED = "throttled"


class VaxPollError(Exception):
    """Base for all errors raised by the poller."""


class ConfigurationError(VaxPollError):
    """Invalid source/backend registration. Only raised before the engine starts."""


class FetchError(VaxPollError):
    """A source could not produce a snapshot this cycle."""

    def __init__(self, kind: FetchErrorKind, message: str = "", source_id: str | None = None) -> None:
        self.kind = FetchErrorKind(kind)
        self.message = message or self.kind.value
        self.source_id = source_id
        super().__init__(self.message)

    def __str__(self) -> str:
        prefix = f"{self.source_id}: " if self.source_id else ""
        return f"{prefix}fetch failed ({self.kind.value}): {self.message}"


class DeliveryError(VaxPollError):
    """A backend did not accept a message. retry_after is a hint in seconds (Throttled)."""

    def __init__(
        self,
        kind: DeliveryErrorKind,
        message: str = "",
        retry_after: float | None = None,
    ) -> None:
        self.kind = DeliveryErrorKind(kind)
        self.message = message or self.kind.value
        self.retry_after = retry_after
        super().__init__(self.message)

    def __str__(self) -> str:
        return f"delivery failed ({self.kind.value}): {self.message}"


# ---------------------------------------------------------------------------
# HTTP status rules: (predicate, kind). First match wins.
# ---------------------------------------------------------------------------

def _is_rate_limited(status: int) -> bool:
    return status == 429


def _is_server_error(status: int) -> bool:
    return status >= 500


def _is_client_error(status: int) -> bool:
    return 400 <= status < 500


FETCH_STATUS_RULES: list[tuple[Callable[[int], bool], FetchErrorKind]] = [
    (_is_rate_limited, FetchErrorKind.RATE_LIMITED),
    (_is_server_error, FetchErrorKind.UNREACHABLE),
    (_is_client_error, FetchErrorKind.PARSE_FAILURE),
]

DELIVERY_STATUS_RULES: list[tuple[Callable[[int], bool], DeliveryErrorKind]] = [
    (_is_rate_limited, DeliveryErrorKind.THROTTLED),
    (_is_server_error, DeliveryErrorKind.UNREACHABLE),
    (_is_client_error, DeliveryErrorKind.REJECTED),
]


def parse_retry_after(headers: Mapping[str, str] | None) -> float | None:
    """Retry-After in seconds. HTTP-date values are ignored (backoff applies instead)."""
    if not headers:
        return None
    raw = headers.get("retry-after") or headers.get("Retry-After")
    if not raw:
        return None
    try:
        value = float(raw.strip())
    except ValueError:
        return None
    return value if value >= 0 else None


def fetch_error_from_status(status_code: int, detail: str = "") -> FetchError:
    for predicate, kind in FETCH_STATUS_RULES:
        if predicate(status_code):
            return FetchError(kind, f"HTTP {status_code} {detail}".strip())
    return FetchError(FetchErrorKind.PARSE_FAILURE, f"unexpected HTTP {status_code}")


def fetch_error_from_exception(exc: Exception) -> FetchError:
    """Map a transport/parse exception raised while fetching into a FetchError."""
    if isinstance(exc, FetchError):
        return exc
    if isinstance(exc, httpx.TimeoutException):
        return FetchError(FetchErrorKind.TIMEOUT, str(exc) or "request timed out")
    if isinstance(exc, httpx.HTTPStatusError):
        return fetch_error_from_status(exc.response.status_code)
    if isinstance(exc, httpx.TransportError):
        return FetchError(FetchErrorKind.UNREACHABLE, str(exc) or type(exc).__name__)
    if isinstance(exc, (json.JSONDecodeError, KeyError, TypeError, ValueError)):
        return FetchError(FetchErrorKind.PARSE_FAILURE, str(exc) or type(exc).__name__)
    return FetchError(FetchErrorKind.PARSE_FAILURE, f"{type(exc).__name__}: {exc}")


def delivery_error_from_status(
    status_code: int,
    headers: Mapping[str, str] | None = None,
    body: str | None = None,
) -> DeliveryError:
    detail = f"HTTP {status_code}"
    if body:
        detail = f"{detail}: {body[:200]}"
    for predicate, kind in DELIVERY_STATUS_RULES:
        if predicate(status_code):
            retry_after = parse_retry_after(headers) if kind == DeliveryErrorKind.THROTTLED else None
            return DeliveryError(kind, detail, retry_after=retry_after)
    return DeliveryError(DeliveryErrorKind.REJECTED, detail)


def delivery_error_from_exception(exc: Exception) -> DeliveryError:
    """Map a transport exception raised while delivering into a DeliveryError."""
    if isinstance(exc, DeliveryError):
        return exc
    if isinstance(exc, httpx.HTTPStatusError):
        resp = exc.response
        return delivery_error_from_status(resp.status_code, resp.headers, resp.text)
    if isinstance(exc, (httpx.TransportError, ConnectionError, TimeoutError)):
        return DeliveryError(DeliveryErrorKind.UNREACHABLE, str(exc) or type(exc).__name__)
    if isinstance(exc, (smtplib.SMTPAuthenticationError, smtplib.SMTPRecipientsRefused, smtplib.SMTPSenderRefused)):
        return DeliveryError(DeliveryErrorKind.REJECTED, str(exc))
    if isinstance(exc, (smtplib.SMTPServerDisconnected, smtplib.SMTPConnectError)):
        return DeliveryError(DeliveryErrorKind.UNREACHABLE, str(exc) or type(exc).__name__)
    if isinstance(exc, smtplib.SMTPResponseException):
        # 4xx SMTP replies are transient ("try again later")
        if 400 <= exc.smtp_code < 500:
            return DeliveryError(DeliveryErrorKind.THROTTLED, str(exc))
        return DeliveryError(DeliveryErrorKind.REJECTED, str(exc))
    if isinstance(exc, OSError):
        return DeliveryError(DeliveryErrorKind.UNREACHABLE, str(exc) or type(exc).__name__)
    return DeliveryError(DeliveryErrorKind.REJECTED, f"{type(exc).__name__}: {exc}")
