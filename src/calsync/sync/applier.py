"""Persist a classified change set without letting one failure abort the rest."""

from __future__ import annotations

import logging

from pydantic import BaseModel, ConfigDict, Field

from calsync.errors import sanitize_error_message
from calsync.storage.base import CalendarStore
from calsync.sync.classifier import ChangeSet


class ApplyResult(BaseModel):
    """Outcome summary of applying one change set."""

    model_config = ConfigDict(extra="forbid")

    created: int = 0
    updated: int = 0
    create_failed: bool = False
    update_failed: bool = False
    deletes_attempted: int = 0
    deletes_succeeded: int = 0
    deletes_failed: int = 0
    errors: list[str] = Field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not (self.create_failed or self.update_failed or self.deletes_failed)


class ChangeApplier:
    """One batched create, one batched update, then a per-item deletion loop."""

    def __init__(self, *, store: CalendarStore, logger: logging.Logger | None = None) -> None:
        self._store = store
        self._logger = logger or logging.getLogger(__name__)

    async def apply(self, change_set: ChangeSet) -> ApplyResult:
        result = ApplyResult()

        if change_set.creates:
            try:
                result.created = await self._store.create_events(change_set.creates)
            except Exception as exc:
                result.create_failed = True
                result.errors.append(f"create: {sanitize_error_message(exc)}")
                self._logger.error(
                    "Failed to create %d event(s): %s",
                    len(change_set.creates),
                    sanitize_error_message(exc),
                )

        if change_set.updates:
            try:
                result.updated = await self._store.update_events(change_set.updates)
            except Exception as exc:
                result.update_failed = True
                result.errors.append(f"update: {sanitize_error_message(exc)}")
                self._logger.error(
                    "Failed to update %d event(s): %s",
                    len(change_set.updates),
                    sanitize_error_message(exc),
                )

        for source_id in change_set.deletes:
            result.deletes_attempted += 1
            try:
                await self._store.delete_event_by_source_id(change_set.calendar_id, source_id)
            except Exception as exc:
                result.deletes_failed += 1
                result.errors.append(f"delete {source_id}: {sanitize_error_message(exc)}")
                self._logger.warning(
                    "Failed to delete event %s: %s", source_id, sanitize_error_message(exc)
                )
                continue
            result.deletes_succeeded += 1

        return result
