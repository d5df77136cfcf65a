"""Per-calendar sync pass: select mode, fetch, classify, apply, record."""

from __future__ import annotations

import asyncio
import logging
import uuid

from opentelemetry import trace
from pydantic import BaseModel, ConfigDict

from calsync.errors import CalendarSyncError, CursorInvalidError
from calsync.models import Calendar
from calsync.storage.base import CalendarStore
from calsync.sync.applier import ChangeApplier
from calsync.sync.classifier import ChangeClassifier
from calsync.sync.fetcher import AccessTokenFn, RemoteEventFetcher
from calsync.sync.strategy import IncrementalSync, SyncStrategySelector

DEFAULT_PASS_TIMEOUT_S = 120.0


class CalendarPassResult(BaseModel):
    """Outcome summary from one calendar pass."""

    model_config = ConfigDict(extra="forbid")

    calendar_id: uuid.UUID
    mode: str
    recovered: bool = False
    fetched: int = 0
    created: int = 0
    updated: int = 0
    deleted: int = 0
    delete_failures: int = 0
    skipped: int = 0
    next_cursor: str | None = None
    committed: bool = True


class CalendarSyncEngine:
    """Runs one sync pass for one remote calendar.

    A full pass clears the stored cursor before fetching. A rejected cursor
    (HTTP 410) is dropped and the fetch is retried exactly once as a
    recovery full sync. The sync-state write is always the last write and is
    skipped when a batched create or update failed, so the next read retries
    from the previous cursor.
    """

    def __init__(
        self,
        *,
        store: CalendarStore,
        fetcher: RemoteEventFetcher,
        selector: SyncStrategySelector,
        classifier: ChangeClassifier,
        applier: ChangeApplier,
        pass_timeout_s: float = DEFAULT_PASS_TIMEOUT_S,
        logger: logging.Logger | None = None,
    ) -> None:
        self._store = store
        self._fetcher = fetcher
        self._selector = selector
        self._classifier = classifier
        self._applier = applier
        self._pass_timeout_s = pass_timeout_s
        self._logger = logger or logging.getLogger(__name__)

    async def sync_calendar(
        self,
        calendar: Calendar,
        access_token: AccessTokenFn,
        *,
        force: bool = False,
    ) -> CalendarPassResult:
        if not calendar.is_remote:
            raise CalendarSyncError(f"Calendar {calendar.id} has no remote source to sync")

        tracer = trace.get_tracer("calsync")
        with tracer.start_as_current_span("calsync.calendar_pass") as span:
            span.set_attribute("calsync.calendar_id", str(calendar.id))
            span.set_attribute("calsync.force", force)
            async with asyncio.timeout(self._pass_timeout_s):
                result = await self._run_pass(calendar, access_token, force=force)
            span.set_attribute("calsync.mode", result.mode)
            span.set_attribute("calsync.fetched", result.fetched)
            return result

    async def _run_pass(
        self,
        calendar: Calendar,
        access_token: AccessTokenFn,
        *,
        force: bool,
    ) -> CalendarPassResult:
        assert calendar.source_id is not None
        mode = self._selector.select(calendar, force)
        await self._selector.begin(calendar, mode)

        recovered = False
        try:
            fetched = await self._fetcher.fetch_events(calendar.source_id, mode, access_token)
        except CursorInvalidError:
            mode = await self._selector.invalidate(calendar)
            recovered = True
            fetched = await self._fetcher.fetch_events(calendar.source_id, mode, access_token)

        local_events = await self._store.list_events(calendar.id)
        change_set = self._classifier.classify(
            fetched.items, local_events, calendar=calendar, mode=mode
        )
        applied = await self._applier.apply(change_set)

        previous_cursor = mode.cursor if isinstance(mode, IncrementalSync) else None
        committed = not (applied.create_failed or applied.update_failed)
        if committed:
            next_cursor = fetched.next_cursor or previous_cursor
            await self._selector.record_success(calendar, mode, next_cursor)
        else:
            # unsaved changes would be skipped by a newer cursor
            next_cursor = previous_cursor
            self._logger.warning(
                "Calendar %s (%s) not marked current: %s",
                calendar.id,
                calendar.summary,
                "; ".join(applied.errors) or "batched write failed",
            )

        self._logger.info(
            "Synced calendar %s (%s, mode=%s): %d fetched, %d created, %d updated, "
            "%d deleted, %d skipped",
            calendar.id,
            calendar.summary,
            mode.name,
            len(fetched.items),
            applied.created,
            applied.updated,
            applied.deletes_succeeded,
            change_set.skipped,
        )
        return CalendarPassResult(
            calendar_id=calendar.id,
            mode=mode.name,
            recovered=recovered,
            fetched=len(fetched.items),
            created=applied.created,
            updated=applied.updated,
            deleted=applied.deletes_succeeded,
            delete_failures=applied.deletes_failed,
            skipped=change_set.skipped,
            next_cursor=next_cursor,
            committed=committed,
        )
