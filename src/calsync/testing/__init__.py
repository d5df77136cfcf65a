"""Test doubles for the calsync store contracts."""

from calsync.testing.memory import InMemoryAccountStore, InMemoryCalendarStore

__all__ = ["InMemoryAccountStore", "InMemoryCalendarStore"]
