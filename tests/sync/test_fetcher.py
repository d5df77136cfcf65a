"""Unit tests for RemoteEventFetcher pagination, retries and error mapping."""

from __future__ import annotations

from datetime import UTC, datetime

import httpx
import pytest

from calsync.errors import CursorInvalidError, RemoteAuthError, RemoteRequestError
from calsync.sync.fetcher import RemoteEventFetcher, google_rfc3339, safe_google_error_message
from calsync.sync.strategy import FullSync, IncrementalSync, RecoveryFullSync

pytestmark = pytest.mark.unit

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=UTC)
BASE = "https://calendar.test/v3"


class _Tokens:
    def __init__(self) -> None:
        self.calls: list[bool] = []

    async def __call__(self, *, force_refresh: bool = False) -> str:
        self.calls.append(force_refresh)
        return "fresh-token" if force_refresh else "stale-token"


class _Sleeps:
    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


def _fetcher(handler, sleep: _Sleeps | None = None, **kwargs) -> RemoteEventFetcher:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return RemoteEventFetcher(
        http_client=client,
        api_base_url=BASE + "/",
        page_size=50,
        clock=lambda: NOW,
        sleep=sleep or _Sleeps(),
        **kwargs,
    )


class TestBuildParams:
    def test_full_mode_bounds_window_and_includes_deleted(self):
        fetcher = _fetcher(lambda r: httpx.Response(200, json={}))

        params = fetcher.build_params(FullSync())

        assert params["showDeleted"] == "true"
        assert params["singleEvents"] == "true"
        assert params["maxResults"] == 50
        assert params["timeMin"] == "2026-01-30T12:00:00Z"
        assert params["timeMax"] == "2027-03-01T12:00:00Z"
        assert params["orderBy"] == "startTime"
        assert "syncToken" not in params

    def test_incremental_mode_sends_only_cursor(self):
        fetcher = _fetcher(lambda r: httpx.Response(200, json={}))

        params = fetcher.build_params(IncrementalSync(cursor="cursor-1"))

        assert params["syncToken"] == "cursor-1"
        assert params["showDeleted"] == "true"
        assert "timeMin" not in params
        assert "timeMax" not in params
        assert "orderBy" not in params

    def test_recovery_mode_uses_full_window(self):
        fetcher = _fetcher(lambda r: httpx.Response(200, json={}))

        assert "timeMin" in fetcher.build_params(RecoveryFullSync())


class TestFetchEvents:
    async def test_follows_pages_and_returns_final_cursor(self):
        requests: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            if "pageToken" not in request.url.params:
                return httpx.Response(
                    200,
                    json={"items": [{"id": "a"}, {"id": "b"}], "nextPageToken": "p2"},
                )
            return httpx.Response(200, json={"items": [{"id": "c"}], "nextSyncToken": "sync-2"})

        tokens = _Tokens()
        result = await _fetcher(handler).fetch_events("me@example.com", FullSync(), tokens)

        assert [item["id"] for item in result.items] == ["a", "b", "c"]
        assert result.next_cursor == "sync-2"
        assert result.pages == 2
        assert requests[0].url.path == "/v3/calendars/me@example.com/events"
        assert requests[1].url.params["pageToken"] == "p2"
        assert requests[0].headers["Authorization"] == "Bearer stale-token"

    async def test_missing_sync_token_yields_no_cursor(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"items": []})

        result = await _fetcher(handler).fetch_events("cal", FullSync(), _Tokens())

        assert result.items == []
        assert result.next_cursor is None

    async def test_non_dict_items_are_dropped(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"items": [{"id": "a"}, "junk", 3]})

        result = await _fetcher(handler).fetch_events("cal", FullSync(), _Tokens())

        assert result.items == [{"id": "a"}]

    async def test_gone_on_incremental_raises_cursor_invalid(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(410, json={"error": {"message": "Sync token is no longer valid"}})

        with pytest.raises(CursorInvalidError):
            await _fetcher(handler).fetch_events(
                "cal", IncrementalSync(cursor="old"), _Tokens()
            )

    async def test_gone_on_full_is_a_request_error(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(410, json={"error": {"message": "gone"}})

        with pytest.raises(RemoteRequestError) as exc_info:
            await _fetcher(handler).fetch_events("cal", FullSync(), _Tokens())

        assert not isinstance(exc_info.value, CursorInvalidError)
        assert exc_info.value.status_code == 410

    async def test_unauthorized_retries_once_with_forced_refresh(self):
        def handler(request: httpx.Request) -> httpx.Response:
            if request.headers["Authorization"] == "Bearer stale-token":
                return httpx.Response(401, json={"error": {"message": "Invalid Credentials"}})
            return httpx.Response(200, json={"items": [], "nextSyncToken": "s"})

        tokens = _Tokens()
        result = await _fetcher(handler).fetch_events("cal", FullSync(), tokens)

        assert tokens.calls == [False, True]
        assert result.next_cursor == "s"

    async def test_unauthorized_after_refresh_raises_auth_error(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(401, json={"error": {"message": "Invalid Credentials"}})

        tokens = _Tokens()
        with pytest.raises(RemoteAuthError):
            await _fetcher(handler).fetch_events("cal", FullSync(), tokens)

        assert tokens.calls == [False, True]

    async def test_rate_limit_honours_retry_after(self):
        attempts = 0

        def handler(request: httpx.Request) -> httpx.Response:
            nonlocal attempts
            attempts += 1
            if attempts == 1:
                return httpx.Response(429, headers={"Retry-After": "7"})
            return httpx.Response(200, json={"items": [], "nextSyncToken": "s"})

        sleeps = _Sleeps()
        result = await _fetcher(handler, sleeps).fetch_events("cal", FullSync(), _Tokens())

        assert sleeps.delays == [7.0]
        assert result.next_cursor == "s"

    async def test_unavailable_backs_off_exponentially_then_gives_up(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(503, text="backend unavailable")

        sleeps = _Sleeps()
        fetcher = _fetcher(handler, sleeps, max_retries=3, base_backoff_s=0.5)
        with pytest.raises(RemoteRequestError) as exc_info:
            await fetcher.fetch_events("cal", FullSync(), _Tokens())

        assert sleeps.delays == [0.5, 1.0, 2.0]
        assert exc_info.value.status_code == 503

    async def test_transport_error_becomes_request_error(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectTimeout("timed out", request=request)

        with pytest.raises(RemoteRequestError) as exc_info:
            await _fetcher(handler).fetch_events("cal", FullSync(), _Tokens())

        assert exc_info.value.status_code == 0

    async def test_non_object_payload_raises(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json=["not", "an", "object"])

        with pytest.raises(RemoteRequestError, match="JSON object"):
            await _fetcher(handler).fetch_events("cal", FullSync(), _Tokens())


class TestListCalendars:
    async def test_lists_all_pages_and_skips_deleted(self):
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.path == "/v3/users/me/calendarList"
            if "pageToken" not in request.url.params:
                return httpx.Response(
                    200,
                    json={
                        "items": [
                            {"id": "primary@example.com", "summary": "Me", "primary": True},
                            {"id": "gone@example.com", "summary": "Old", "deleted": True},
                        ],
                        "nextPageToken": "p2",
                    },
                )
            return httpx.Response(
                200,
                json={
                    "items": [
                        {
                            "id": "team@example.com",
                            "summary": "Team",
                            "timeZone": "Europe/Berlin",
                            "backgroundColor": "#ff0000",
                        },
                        {"summary": "no id"},
                    ]
                },
            )

        calendars = await _fetcher(handler).list_calendars(_Tokens())

        assert [calendar.id for calendar in calendars] == [
            "primary@example.com",
            "team@example.com",
        ]
        assert calendars[0].primary is True
        assert calendars[1].time_zone == "Europe/Berlin"
        assert calendars[1].background_color == "#ff0000"


class TestHelpers:
    def test_google_rfc3339_normalizes_to_utc(self):
        assert google_rfc3339(datetime(2026, 1, 1, 9, 30)) == "2026-01-01T09:30:00Z"

    def test_error_message_prefers_structured_message(self):
        response = httpx.Response(403, json={"error": {"message": "Rate Limit Exceeded"}})

        assert safe_google_error_message(response) == "Rate Limit Exceeded"

    def test_error_message_falls_back_to_body(self):
        assert safe_google_error_message(httpx.Response(500, text="")) == "unknown error"
        assert safe_google_error_message(httpx.Response(500, text="oops")) == "oops"
