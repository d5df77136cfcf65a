"""OAuth access-token refresh for linked provider accounts."""

from __future__ import annotations

import asyncio
import logging
import uuid
import weakref
from collections.abc import Callable
from datetime import datetime, timedelta
from typing import Any

import httpx

from calsync.config import GOOGLE_OAUTH_TOKEN_URL
from calsync.errors import MissingRefreshTokenError, TokenRefreshError
from calsync.models import Account, utcnow
from calsync.storage.base import AccountStore
from calsync.sync.fetcher import safe_google_error_message

DEFAULT_REFRESH_SKEW = timedelta(minutes=5)
DEFAULT_EXPIRES_IN_SECONDS = 3600


def _coerce_expires_in_seconds(value: Any) -> int:
    if isinstance(value, bool):
        return DEFAULT_EXPIRES_IN_SECONDS
    if isinstance(value, int | float):
        return int(value) if value > 0 else DEFAULT_EXPIRES_IN_SECONDS
    if isinstance(value, str) and value.strip().isdigit():
        return int(value.strip()) or DEFAULT_EXPIRES_IN_SECONDS
    return DEFAULT_EXPIRES_IN_SECONDS


class CredentialRefresher:
    """Keeps account access tokens usable; refreshes are single-flight per account."""

    def __init__(
        self,
        *,
        store: AccountStore,
        http_client: httpx.AsyncClient,
        client_id: str,
        client_secret: str,
        token_url: str = GOOGLE_OAUTH_TOKEN_URL,
        refresh_skew: timedelta = DEFAULT_REFRESH_SKEW,
        clock: Callable[[], datetime] = utcnow,
        logger: logging.Logger | None = None,
    ) -> None:
        self._store = store
        self._http_client = http_client
        self._client_id = client_id
        self._client_secret = client_secret
        self._token_url = token_url
        self._refresh_skew = refresh_skew
        self._clock = clock
        self._logger = logger or logging.getLogger(__name__)
        # entries vanish once no caller holds the lock
        self._locks: weakref.WeakValueDictionary[tuple[uuid.UUID, str], asyncio.Lock] = (
            weakref.WeakValueDictionary()
        )

    def needs_refresh(self, account: Account) -> bool:
        if not account.access_token or account.expiry is None:
            return True
        return self._clock() + self._refresh_skew >= account.expiry

    async def ensure_fresh(self, account: Account, *, force: bool = False) -> Account:
        """Return *account* with a usable access token, refreshing if needed.

        Raises
        ------
        MissingRefreshTokenError
            A refresh is required but the account has no refresh token.
        TokenRefreshError
            The token endpoint rejected the request or returned garbage.
        """
        if not force and not self.needs_refresh(account):
            return account

        key = (account.user_id, account.provider)
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        async with lock:
            current = await self._store.get(account.user_id, account.provider) or account
            # Another caller may have refreshed while we waited on the lock.
            if not self.needs_refresh(current) and (
                not force or current.access_token != account.access_token
            ):
                return current
            return await self._refresh(current)

    async def _refresh(self, account: Account) -> Account:
        refresh_token = (account.refresh_token or "").strip()
        if not refresh_token:
            raise MissingRefreshTokenError(
                f"Account for user {account.user_id} has no refresh token; re-link required"
            )

        try:
            response = await self._http_client.post(
                self._token_url,
                data={
                    "client_id": self._client_id,
                    "client_secret": self._client_secret,
                    "refresh_token": refresh_token,
                    "grant_type": "refresh_token",
                },
                headers={"Accept": "application/json"},
            )
        except httpx.HTTPError as exc:
            raise TokenRefreshError(f"Google OAuth token refresh request failed: {exc}") from exc

        if response.status_code < 200 or response.status_code >= 300:
            raise TokenRefreshError(
                "Google OAuth token refresh failed "
                f"({response.status_code}): {safe_google_error_message(response)}"
            )

        try:
            payload = response.json()
        except ValueError as exc:
            raise TokenRefreshError("Google OAuth token endpoint returned invalid JSON") from exc

        access_token = payload.get("access_token") if isinstance(payload, dict) else None
        if not isinstance(access_token, str) or not access_token.strip():
            raise TokenRefreshError(
                "Google OAuth token response is missing a non-empty access_token"
            )

        new_refresh_token = payload.get("refresh_token")
        if not isinstance(new_refresh_token, str) or not new_refresh_token.strip():
            new_refresh_token = refresh_token

        expiry = self._clock() + timedelta(
            seconds=_coerce_expires_in_seconds(payload.get("expires_in"))
        )
        refreshed = account.model_copy(
            update={
                "access_token": access_token.strip(),
                "refresh_token": new_refresh_token.strip(),
                "expiry": expiry,
            }
        )
        await self._store.update_tokens(
            refreshed.user_id,
            refreshed.provider,
            access_token=refreshed.access_token,
            refresh_token=refreshed.refresh_token,
            expiry=refreshed.expiry,
        )
        self._logger.info(
            "Refreshed access token for user=%s provider=%s (expires %s)",
            refreshed.user_id,
            refreshed.provider,
            expiry.isoformat(),
        )
        return refreshed


class AccountTokenSource:
    """Bearer-token callable handed to the fetcher for one user sweep.

    ``force_refresh=True`` is used after a 401 and goes through the refresher,
    so the new token is persisted as well.
    """

    def __init__(self, refresher: CredentialRefresher, account: Account) -> None:
        self._refresher = refresher
        self.account = account

    async def __call__(self, *, force_refresh: bool = False) -> str:
        self.account = await self._refresher.ensure_fresh(self.account, force=force_refresh)
        assert self.account.access_token is not None
        return self.account.access_token
