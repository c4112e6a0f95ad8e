import httpx
import pytest

from vaxpoll.core.errors import ConfigurationError, FetchError, FetchErrorKind
from vaxpoll.services.providers import build_adapter, list_providers
from vaxpoll.services.providers.booked4us import Booked4usAdapter, location_label

BASE = "https://impfen.booked4us.de"


def _adapter(handler):
    return Booked4usAdapter(BASE + "/", client=httpx.Client(transport=httpx.MockTransport(handler)))


def _site(calendars, free_ids):
    def handler(request: httpx.Request) -> httpx.Response:
        path = request.url.path
        if path == "/rest-v2/api/Calendars/WithDetails":
            return httpx.Response(200, json={"Data": [{"Id": i, "Name": n} for i, n in calendars]})
        cal_id = int(path.split("/")[4])
        data = {"Start": "2021-06-01T09:00:00"} if cal_id in free_ids else None
        return httpx.Response(200, json={"Data": data})

    return handler


def test_free_calendars_become_entries():
    adapter = _adapter(_site([(1, "Halle 1"), (2, "Halle 2"), (3, "Mobil")], {1, 3}))
    snapshot = adapter.fetch(timeout=5)
    assert snapshot.available_keys() == {
        ("Halle 1 (ID 1)", "any"),
        ("Mobil (ID 3)", "any"),
    }


def test_no_free_slots_is_empty_snapshot():
    adapter = _adapter(_site([(1, "Halle 1")], set()))
    snapshot = adapter.fetch(timeout=5)
    assert snapshot.open_count == 0
    assert snapshot.entries == frozenset()


def test_no_calendars_is_empty_snapshot():
    adapter = _adapter(_site([], set()))
    assert adapter.fetch(timeout=5).open_count == 0


@pytest.mark.parametrize(
    "status,kind",
    [
        (429, FetchErrorKind.RATE_LIMITED),
        (503, FetchErrorKind.UNREACHABLE),
        (404, FetchErrorKind.PARSE_FAILURE),
    ],
)
def test_http_status_maps_to_fetch_error(status, kind):
    adapter = _adapter(lambda request: httpx.Response(status, text="nope"))
    with pytest.raises(FetchError) as exc_info:
        adapter.fetch(timeout=5)
    assert exc_info.value.kind == kind


def test_connect_error_is_unreachable():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(FetchError) as exc_info:
        _adapter(handler).fetch(timeout=5)
    assert exc_info.value.kind == FetchErrorKind.UNREACHABLE


def test_read_timeout_is_timeout():
    def handler(request):
        raise httpx.ReadTimeout("timed out", request=request)

    with pytest.raises(FetchError) as exc_info:
        _adapter(handler).fetch(timeout=5)
    assert exc_info.value.kind == FetchErrorKind.TIMEOUT


@pytest.mark.parametrize(
    "body",
    [
        {"Result": []},
        {"Data": "not a list"},
        {"Data": [{"Id": "7", "Name": "x"}]},
        {"Data": [{"Id": 7}]},
    ],
)
def test_unexpected_overview_shape_is_parse_failure(body):
    adapter = _adapter(lambda request: httpx.Response(200, json=body))
    with pytest.raises(FetchError) as exc_info:
        adapter.fetch(timeout=5)
    assert exc_info.value.kind == FetchErrorKind.PARSE_FAILURE


def test_invalid_json_is_parse_failure():
    adapter = _adapter(lambda request: httpx.Response(200, text="<html>maintenance</html>"))
    with pytest.raises(FetchError) as exc_info:
        adapter.fetch(timeout=5)
    assert exc_info.value.kind == FetchErrorKind.PARSE_FAILURE


def test_expired_deadline_is_timeout():
    adapter = _adapter(_site([(1, "Halle 1")], {1}))
    with pytest.raises(FetchError) as exc_info:
        adapter.fetch(timeout=0)
    assert exc_info.value.kind == FetchErrorKind.TIMEOUT


def test_location_label():
    assert location_label(12, "Impfzentrum") == "Impfzentrum (ID 12)"
    assert location_label(12, "") == "ID 12"


def test_registry_builds_booked4us():
    assert "booked4us" in list_providers()
    adapter = build_adapter("booked4us", {"url": BASE}, user_agent="vaxpoll-test")
    try:
        assert isinstance(adapter, Booked4usAdapter)
        assert adapter.link == BASE
    finally:
        adapter.close()


@pytest.mark.parametrize(
    "provider,settings",
    [
        ("unknown", {"url": BASE}),
        ("booked4us", {}),
        ("booked4us", {"url": "ftp://example.com"}),
    ],
)
def test_registry_rejects_bad_registration(provider, settings):
    with pytest.raises(ConfigurationError):
        build_adapter(provider, settings)
