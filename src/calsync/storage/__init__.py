"""Persistence contracts and their PostgreSQL implementations."""

from calsync.storage.base import AccountStore, CalendarStore
from calsync.storage.postgres import PostgresAccountStore, PostgresCalendarStore

__all__ = [
    "AccountStore",
    "CalendarStore",
    "PostgresAccountStore",
    "PostgresCalendarStore",
]
