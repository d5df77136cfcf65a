"""Shared fixtures for the calsync test suite.

Unit tests use the in-memory stores from ``calsync.testing``. Integration
tests get a fresh, migrated Postgres database per usage from a single
session-scoped testcontainer; they are skipped when Docker is unavailable.
"""

from __future__ import annotations

import shutil
import time
import uuid
import warnings
from collections.abc import AsyncIterator, Callable, Iterator
from contextlib import AbstractAsyncContextManager, asynccontextmanager
from typing import TYPE_CHECKING

import pytest

from calsync.testing import InMemoryAccountStore, InMemoryCalendarStore

if TYPE_CHECKING:
    from asyncpg.pool import Pool
    from testcontainers.postgres import PostgresContainer

docker_available = shutil.which("docker") is not None

# Docker daemon messages seen when a container is already going away.
_FLAKY_STOP_MESSAGES = (
    "did not receive an exit event",
    "tried to kill container",
    "no such container",
    "removal of container",
    "is already in progress",
    "is dead or marked for removal",
)


def _stop_quietly(container: PostgresContainer, attempts: int = 4) -> None:
    for attempt in range(1, attempts + 1):
        try:
            container.stop()
            return
        except Exception as exc:
            text = f"{exc} {getattr(exc, 'explanation', '') or ''}".lower()
            if not any(message in text for message in _FLAKY_STOP_MESSAGES):
                raise
            if attempt == attempts:
                warnings.warn(
                    f"Postgres container did not stop cleanly: {exc}",
                    RuntimeWarning,
                    stacklevel=2,
                )
                return
            time.sleep(0.1 * attempt)


@pytest.fixture
def user_id() -> uuid.UUID:
    return uuid.uuid4()


@pytest.fixture
def account_store() -> InMemoryAccountStore:
    return InMemoryAccountStore()


@pytest.fixture
def calendar_store() -> InMemoryCalendarStore:
    return InMemoryCalendarStore()


@pytest.fixture(scope="session")
def postgres_container() -> Iterator[PostgresContainer]:
    """One Postgres 16 container for the whole session; databases are per test."""
    if not docker_available:
        pytest.skip("Docker not available")
    from testcontainers.postgres import PostgresContainer

    container = PostgresContainer("postgres:16")
    container.start()
    try:
        yield container
    finally:
        _stop_quietly(container)


@pytest.fixture
def provisioned_postgres_pool(
    postgres_container: PostgresContainer,
) -> Callable[..., AbstractAsyncContextManager[Pool]]:
    """Factory for a pool on a newly provisioned database at ``core@head``.

    Usage::

        async with provisioned_postgres_pool() as pool:
            ...
    """
    from calsync.db import Database
    from calsync.migrations import run_migrations

    @asynccontextmanager
    async def _provision(*, min_pool_size: int = 1, max_pool_size: int = 3) -> AsyncIterator[Pool]:
        db = Database(
            db_name=f"calsync_test_{uuid.uuid4().hex[:12]}",
            host=postgres_container.get_container_host_ip(),
            port=int(postgres_container.get_exposed_port(5432)),
            user=postgres_container.username,
            password=postgres_container.password,
            min_pool_size=min_pool_size,
            max_pool_size=max_pool_size,
        )
        await db.provision()
        await run_migrations(db.sqlalchemy_url)
        try:
            yield await db.connect()
        finally:
            await db.close()

    return _provision
