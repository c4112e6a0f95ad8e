"""booked4us source adapter. Lists calendars, then asks each for its first free slot."""
import logging
import time
from typing import Any

import httpx

from vaxpoll.core.constants import ANY_SLOT
from vaxpoll.core.errors import (
    FetchError,
    FetchErrorKind,
    fetch_error_from_exception,
    fetch_error_from_status,
)
from vaxpoll.services.providers.types import SlotEntry, Snapshot

logger = logging.getLogger(__name__)

OVERVIEW_PATH = "/rest-v2/api/Calendars/WithDetails"
FIRST_FREE_SLOT_PATH = "/rest-v2/api/Calendars/{id}/FirstFreeSlot"


def _parse_calendars(data: Any) -> list[tuple[int, str]]:
    """Overview response -> [(id, name)]. Raises FetchError(ParseFailure) on an unexpected shape."""
    if not isinstance(data, dict) or not isinstance(data.get("Data"), list):
        raise FetchError(FetchErrorKind.PARSE_FAILURE, "overview response has no Data list")
    calendars: list[tuple[int, str]] = []
    for row in data["Data"]:
        if not isinstance(row, dict):
            raise FetchError(FetchErrorKind.PARSE_FAILURE, "calendar entry is not an object")
        cal_id = row.get("Id")
        name = row.get("Name")
        if not isinstance(cal_id, int) or isinstance(cal_id, bool) or cal_id < 0:
            raise FetchError(FetchErrorKind.PARSE_FAILURE, f"calendar Id invalid: {cal_id!r}")
        if not isinstance(name, str):
            raise FetchError(FetchErrorKind.PARSE_FAILURE, f"calendar {cal_id} Name invalid")
        calendars.append((cal_id, name.strip()))
    return calendars


def _has_free_slot(data: Any) -> bool:
    if not isinstance(data, dict) or "Data" not in data:
        raise FetchError(FetchErrorKind.PARSE_FAILURE, "first-free-slot response has no Data")
    return data["Data"] is not None


def location_label(cal_id: int, name: str) -> str:
    return f"{name} (ID {cal_id})" if name else f"ID {cal_id}"


class Booked4usAdapter:
    provider_id = "booked4us"

    def __init__(
        self,
        url: str,
        *,
        user_agent: str | None = None,
        client: httpx.Client | None = None,
    ) -> None:
        self.url = url.rstrip("/")
        headers = {"Accept": "application/json"}
        if user_agent:
            headers["User-Agent"] = user_agent
        self._client = client or httpx.Client(headers=headers, follow_redirects=True)

    @property
    def link(self) -> str:
        return self.url

    def _get_json(self, path: str, deadline: float) -> Any:
        remaining = deadline - time.monotonic()
        if remaining <= 0:
            raise FetchError(FetchErrorKind.TIMEOUT, f"deadline passed before GET {path}")
        try:
            resp = self._client.get(f"{self.url}{path}", timeout=remaining)
        except Exception as e:
            raise fetch_error_from_exception(e) from e
        if not resp.is_success:
            raise fetch_error_from_status(resp.status_code, path)
        try:
            return resp.json()
        except ValueError as e:
            raise FetchError(FetchErrorKind.PARSE_FAILURE, f"invalid JSON from {path}") from e

    def fetch(self, timeout: float) -> Snapshot:
        deadline = time.monotonic() + timeout
        calendars = _parse_calendars(self._get_json(OVERVIEW_PATH, deadline))
        logger.debug("booked4us %s: %s calendars", self.url, len(calendars))
        entries: list[SlotEntry] = []
        for cal_id, name in calendars:
            data = self._get_json(FIRST_FREE_SLOT_PATH.format(id=cal_id), deadline)
            if _has_free_slot(data):
                entries.append(SlotEntry(location=location_label(cal_id, name), slot=ANY_SLOT))
        logger.info("booked4us %s: %s of %s calendars have free slots", self.url, len(entries), len(calendars))
        return Snapshot.of(entries)

    def close(self) -> None:
        self._client.close()
