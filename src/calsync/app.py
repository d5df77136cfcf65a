"""Wire configuration, database pool, HTTP client and sync components together."""

from __future__ import annotations

from datetime import timedelta
from types import TracebackType

import httpx

from calsync.config import CalsyncConfig
from calsync.db import Database
from calsync.service import CalendarService
from calsync.storage.base import AccountStore, CalendarStore
from calsync.storage.postgres import PostgresAccountStore, PostgresCalendarStore
from calsync.sync.applier import ChangeApplier
from calsync.sync.classifier import ChangeClassifier
from calsync.sync.credentials import CredentialRefresher
from calsync.sync.engine import CalendarSyncEngine
from calsync.sync.fetcher import RemoteEventFetcher
from calsync.sync.ics import StaticImporter
from calsync.sync.orchestrator import SyncOrchestrator
from calsync.sync.strategy import SyncStrategySelector


def database_from_config(config: CalsyncConfig) -> Database:
    db_config = config.database
    if db_config.url:
        return Database.from_url(
            db_config.url,
            min_pool_size=db_config.min_pool_size,
            max_pool_size=db_config.max_pool_size,
        )
    return Database.from_env(
        db_config.db_name,
        min_pool_size=db_config.min_pool_size,
        max_pool_size=db_config.max_pool_size,
    )


def build_service(
    config: CalsyncConfig,
    *,
    accounts: AccountStore,
    calendars: CalendarStore,
    http_client: httpx.AsyncClient,
) -> CalendarService:
    """Assemble a :class:`CalendarService` from already-open resources."""
    sync = config.sync
    google = config.google
    refresher = CredentialRefresher(
        store=accounts,
        http_client=http_client,
        client_id=google.client_id,
        client_secret=google.client_secret,
        token_url=google.token_url,
        refresh_skew=timedelta(seconds=sync.refresh_skew_s),
    )
    fetcher = RemoteEventFetcher(
        http_client=http_client,
        api_base_url=google.api_base_url,
        page_size=sync.page_size,
        full_window_past=timedelta(days=sync.full_window_past_days),
        full_window_future=timedelta(days=sync.full_window_future_days),
        max_retries=sync.rate_limit_max_retries,
        base_backoff_s=sync.rate_limit_base_backoff_s,
    )
    engine = CalendarSyncEngine(
        store=calendars,
        fetcher=fetcher,
        selector=SyncStrategySelector(
            store=calendars,
            full_sync_max_age=timedelta(hours=sync.full_sync_max_age_h),
        ),
        classifier=ChangeClassifier(
            untitled_events=sync.untitled_events,
            placeholder_title=sync.placeholder_title,
        ),
        applier=ChangeApplier(store=calendars),
        pass_timeout_s=sync.calendar_pass_timeout_s,
    )
    orchestrator = SyncOrchestrator(
        accounts=accounts,
        calendars=calendars,
        refresher=refresher,
        engine=engine,
        freshness_window=timedelta(seconds=sync.freshness_window_s),
    )
    return CalendarService(
        accounts=accounts,
        calendars=calendars,
        orchestrator=orchestrator,
        refresher=refresher,
        fetcher=fetcher,
        engine=engine,
        importer=StaticImporter(
            store=calendars,
            untitled_events=sync.untitled_events,
            placeholder_title=sync.placeholder_title,
        ),
        max_range_months=sync.max_range_months,
    )


class CalsyncApp:
    """Async context manager owning the pool and HTTP client for one process."""

    def __init__(self, config: CalsyncConfig) -> None:
        self.config = config
        self.db = database_from_config(config)
        self._http_client: httpx.AsyncClient | None = None
        self.service: CalendarService | None = None

    async def __aenter__(self) -> CalendarService:
        pool = await self.db.connect()
        self._http_client = httpx.AsyncClient(
            timeout=httpx.Timeout(self.config.google.request_timeout_s, connect=10.0)
        )
        self.service = build_service(
            self.config,
            accounts=PostgresAccountStore(pool),
            calendars=PostgresCalendarStore(pool),
            http_client=self._http_client,
        )
        return self.service

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        if self._http_client is not None:
            await self._http_client.aclose()
            self._http_client = None
        await self.db.close()
