"""Paginated reads against the Google Calendar v3 API."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from typing import Any, Protocol
from urllib.parse import quote

import httpx

from calsync.config import GOOGLE_CALENDAR_API_BASE_URL
from calsync.errors import (
    CursorInvalidError,
    RemoteAuthError,
    RemoteRequestError,
    sanitize_error_message,
)
from calsync.models import RemoteCalendar, utcnow
from calsync.sync.strategy import IncrementalSync, SyncMode

# Throttling and transient unavailability; Retry-After wins over the doubling backoff.
RETRYABLE_STATUSES = {429, 503}
MAX_THROTTLE_RETRIES = 3
THROTTLE_BACKOFF_SECONDS = 1.0
DEFAULT_PAGE_SIZE = 2500
CALENDAR_LIST_PAGE_SIZE = 250


class AccessTokenFn(Protocol):
    """Returns a bearer token; ``force_refresh`` is requested after a 401."""

    async def __call__(self, *, force_refresh: bool = False) -> str: ...


@dataclass
class FetchResult:
    """Everything one fetch collected across all pages."""

    items: list[dict[str, Any]] = field(default_factory=list)
    next_cursor: str | None = None
    pages: int = 0


def google_rfc3339(value: datetime) -> str:
    normalized = value if value.tzinfo is not None else value.replace(tzinfo=UTC)
    return normalized.astimezone(UTC).isoformat().replace("+00:00", "Z")


def safe_google_error_message(response: httpx.Response) -> str:
    try:
        payload = response.json()
    except ValueError:
        payload = None

    if isinstance(payload, dict):
        error_payload = payload.get("error")
        if isinstance(error_payload, dict):
            message = error_payload.get("message")
            if isinstance(message, str) and message.strip():
                return sanitize_error_message(message)
        message = payload.get("error_description") or payload.get("message")
        if isinstance(message, str) and message.strip():
            return sanitize_error_message(message)
        if isinstance(error_payload, str) and error_payload.strip():
            return sanitize_error_message(error_payload)

    text = response.text.strip()
    if text:
        return sanitize_error_message(text)
    return "unknown error"


def _as_non_empty_string(value: Any) -> str | None:
    if not isinstance(value, str):
        return None
    normalized = value.strip()
    return normalized or None


def _retry_after_seconds(response: httpx.Response) -> float | None:
    raw = response.headers.get("Retry-After")
    if raw is None:
        return None
    try:
        return max(0.0, float(raw))
    except ValueError:
        # HTTP-date form; fall back to the exponential delay
        return None


class RemoteEventFetcher:
    """Reads events and calendar lists, following ``nextPageToken`` to the end."""

    def __init__(
        self,
        *,
        http_client: httpx.AsyncClient,
        api_base_url: str = GOOGLE_CALENDAR_API_BASE_URL,
        page_size: int = DEFAULT_PAGE_SIZE,
        full_window_past: timedelta = timedelta(days=30),
        full_window_future: timedelta = timedelta(days=365),
        max_retries: int = MAX_THROTTLE_RETRIES,
        base_backoff_s: float = THROTTLE_BACKOFF_SECONDS,
        clock: Callable[[], datetime] = utcnow,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        logger: logging.Logger | None = None,
    ) -> None:
        self._http_client = http_client
        self._api_base_url = api_base_url.rstrip("/")
        self._page_size = max(1, int(page_size))
        self._full_window_past = full_window_past
        self._full_window_future = full_window_future
        self._max_retries = max(0, int(max_retries))
        self._base_backoff_s = base_backoff_s
        self._clock = clock
        self._sleep = sleep
        self._logger = logger or logging.getLogger(__name__)

    def build_params(self, mode: SyncMode) -> dict[str, Any]:
        params: dict[str, Any] = {
            "showDeleted": "true",
            "singleEvents": "true",
            "maxResults": self._page_size,
        }
        if isinstance(mode, IncrementalSync):
            params["syncToken"] = mode.cursor
        else:
            now = self._clock()
            params["timeMin"] = google_rfc3339(now - self._full_window_past)
            params["timeMax"] = google_rfc3339(now + self._full_window_future)
            params["orderBy"] = "startTime"
        return params

    async def fetch_events(
        self,
        calendar_source_id: str,
        mode: SyncMode,
        access_token: AccessTokenFn,
    ) -> FetchResult:
        """Collect every event item for *calendar_source_id* in *mode*.

        Raises
        ------
        CursorInvalidError
            The provider answered 410 to an incremental request.
        RemoteAuthError
            The request was still unauthorized after a forced token refresh.
        RemoteRequestError
            Any other non-2xx response or an unusable payload.
        """
        path = f"/calendars/{quote(calendar_source_id, safe='')}/events"
        params = self.build_params(mode)
        result = FetchResult()

        while True:
            response = await self._get(path, params, access_token)

            if response.status_code == 410 and isinstance(mode, IncrementalSync):
                raise CursorInvalidError(calendar_source_id)

            payload = self._json_payload(response)
            items = payload.get("items")
            if isinstance(items, list):
                result.items.extend(item for item in items if isinstance(item, dict))
            result.pages += 1

            next_page_token = _as_non_empty_string(payload.get("nextPageToken"))
            if next_page_token is None:
                result.next_cursor = _as_non_empty_string(payload.get("nextSyncToken"))
                break
            params["pageToken"] = next_page_token

        self._logger.debug(
            "Fetched %d item(s) in %d page(s) for calendar %s (mode=%s)",
            len(result.items),
            result.pages,
            calendar_source_id,
            mode.name,
        )
        return result

    async def list_calendars(self, access_token: AccessTokenFn) -> list[RemoteCalendar]:
        """Return the user's calendar list, skipping deleted entries."""
        params: dict[str, Any] = {"maxResults": CALENDAR_LIST_PAGE_SIZE}
        calendars: list[RemoteCalendar] = []
        while True:
            response = await self._get("/users/me/calendarList", params, access_token)
            payload = self._json_payload(response)
            items = payload.get("items")
            if isinstance(items, list):
                for item in items:
                    if not isinstance(item, dict) or not _as_non_empty_string(item.get("id")):
                        continue
                    entry = RemoteCalendar.model_validate(item)
                    if not entry.deleted:
                        calendars.append(entry)
            next_page_token = _as_non_empty_string(payload.get("nextPageToken"))
            if next_page_token is None:
                return calendars
            params["pageToken"] = next_page_token

    def _json_payload(self, response: httpx.Response) -> dict[str, Any]:
        if response.status_code == 401:
            raise RemoteAuthError(
                status_code=response.status_code,
                message=safe_google_error_message(response),
            )
        if response.status_code < 200 or response.status_code >= 300:
            raise RemoteRequestError(
                status_code=response.status_code,
                message=safe_google_error_message(response),
            )
        try:
            payload = response.json()
        except ValueError as exc:
            raise RemoteRequestError(
                status_code=response.status_code,
                message="Invalid JSON payload from Google Calendar API",
            ) from exc
        if not isinstance(payload, dict):
            raise RemoteRequestError(
                status_code=response.status_code,
                message="Google Calendar API payload must be a JSON object",
            )
        return payload

    async def _get(
        self,
        path: str,
        params: dict[str, Any],
        access_token: AccessTokenFn,
    ) -> httpx.Response:
        url = f"{self._api_base_url}{path}"
        response = await self._request_once(url, params, access_token, force_refresh=False)

        if response.status_code == 401:
            response = await self._request_once(url, params, access_token, force_refresh=True)

        retry = 0
        while response.status_code in RETRYABLE_STATUSES and retry < self._max_retries:
            backoff = self._base_backoff_s * (2**retry)
            if response.status_code == 429:
                retry_after = _retry_after_seconds(response)
                if retry_after is not None:
                    backoff = retry_after
            self._logger.warning(
                "Google answered %d; retry %d of %d in %.1fs",
                response.status_code,
                retry + 1,
                self._max_retries,
                backoff,
            )
            await self._sleep(backoff)
            response = await self._request_once(url, params, access_token, force_refresh=False)
            retry += 1

        return response

    async def _request_once(
        self,
        url: str,
        params: dict[str, Any],
        access_token: AccessTokenFn,
        *,
        force_refresh: bool,
    ) -> httpx.Response:
        token = await access_token(force_refresh=force_refresh)
        try:
            return await self._http_client.get(
                url,
                params=params,
                headers={
                    "Authorization": f"Bearer {token}",
                    "Accept": "application/json",
                },
            )
        except httpx.HTTPError as exc:
            raise RemoteRequestError(
                status_code=0,
                message=sanitize_error_message(f"Google Calendar request failed: {exc}"),
            ) from exc
