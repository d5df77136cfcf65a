"""Per-user entry point that decides whether any calendar needs a sync pass."""

from __future__ import annotations

import logging
import uuid
from collections.abc import Callable, Sequence
from datetime import datetime, timedelta

from opentelemetry import trace

from calsync.core.logging import bind_sync_user
from calsync.errors import AccountNotLinkedError, CredentialError, sanitize_error_message
from calsync.models import GOOGLE_PROVIDER, Calendar, utcnow
from calsync.storage.base import AccountStore, CalendarStore
from calsync.sync.credentials import AccountTokenSource, CredentialRefresher
from calsync.sync.engine import CalendarSyncEngine

DEFAULT_FRESHNESS_WINDOW = timedelta(seconds=60)


class SyncOrchestrator:
    """Drives sync sweeps for read paths; never raises, degrades to cached data."""

    def __init__(
        self,
        *,
        accounts: AccountStore,
        calendars: CalendarStore,
        refresher: CredentialRefresher,
        engine: CalendarSyncEngine,
        freshness_window: timedelta = DEFAULT_FRESHNESS_WINDOW,
        provider: str = GOOGLE_PROVIDER,
        clock: Callable[[], datetime] = utcnow,
        logger: logging.Logger | None = None,
    ) -> None:
        self._accounts = accounts
        self._calendars = calendars
        self._refresher = refresher
        self._engine = engine
        self._freshness_window = freshness_window
        self._provider = provider
        self._clock = clock
        self._logger = logger or logging.getLogger(__name__)

    def is_stale(self, calendar: Calendar, now: datetime | None = None) -> bool:
        if calendar.last_checked_at is None:
            return True
        current = now if now is not None else self._clock()
        return current - calendar.last_checked_at > self._freshness_window

    def needs_sync(self, calendars: Sequence[Calendar], force: bool) -> bool:
        if force or not calendars:
            return True
        now = self._clock()
        return any(calendar.is_remote and self.is_stale(calendar, now) for calendar in calendars)

    async def sync_if_needed(self, user_id: uuid.UUID, force: bool = False) -> bool:
        """Sync the user's stale remote calendars.

        Returns ``True`` when at least one calendar pass was attempted and
        ``False`` when cached data should be served as-is. Errors are logged,
        never raised.
        """
        tracer = trace.get_tracer("calsync")
        with bind_sync_user(user_id), tracer.start_as_current_span("calsync.sync_sweep") as span:
            span.set_attribute("calsync.force", force)
            try:
                attempted = await self._sweep(user_id, force)
            except Exception as exc:
                self._logger.exception(
                    "Sync sweep failed for user %s; serving cached data: %s",
                    user_id,
                    sanitize_error_message(exc),
                )
                span.record_exception(exc)
                span.set_status(trace.StatusCode.ERROR, sanitize_error_message(exc))
                return False
            span.set_attribute("calsync.attempted", attempted)
            return attempted

    async def _sweep(self, user_id: uuid.UUID, force: bool) -> bool:
        calendars = await self._calendars.list_calendars(user_id)
        if not self.needs_sync(calendars, force):
            self._logger.debug("Using cached data for user %s; no sync needed", user_id)
            return False

        if force:
            self._logger.info("Performing forced sync for user %s", user_id)
        else:
            self._logger.info("Performing automatic sync for user %s; cache expired", user_id)

        try:
            account = await self._accounts.get(user_id, self._provider)
            if account is None:
                raise AccountNotLinkedError(
                    f"User {user_id} has no linked {self._provider} account"
                )
            account = await self._refresher.ensure_fresh(account)
        except CredentialError as exc:
            self._logger.error(
                "Credential check failed for user %s; serving cached data: %s",
                user_id,
                sanitize_error_message(exc),
            )
            return False

        token_source = AccountTokenSource(self._refresher, account)
        now = self._clock()
        attempts = 0
        successes = 0
        for calendar in calendars:
            if not calendar.is_remote:
                continue
            if not force and not self.is_stale(calendar, now):
                continue
            attempts += 1
            try:
                await self._engine.sync_calendar(calendar, token_source, force=force)
            except Exception as exc:
                # One calendar failing must not stop the sweep.
                self._logger.error(
                    "Failed to sync calendar %s (%s): %s",
                    calendar.id,
                    calendar.source_id,
                    sanitize_error_message(exc) or type(exc).__name__,
                )
                continue
            successes += 1

        if attempts:
            self._logger.info(
                "Calendar sync completed for user %s: %d/%d succeeded",
                user_id,
                successes,
                attempts,
            )
        return attempts > 0
