"""Calendar sync engine components."""

from calsync.sync.applier import ApplyResult, ChangeApplier
from calsync.sync.classifier import ChangeClassifier, ChangeSet
from calsync.sync.credentials import AccountTokenSource, CredentialRefresher
from calsync.sync.engine import CalendarPassResult, CalendarSyncEngine
from calsync.sync.fetcher import FetchResult, RemoteEventFetcher
from calsync.sync.ics import StaticImporter, StaticImportResult
from calsync.sync.orchestrator import SyncOrchestrator
from calsync.sync.strategy import (
    FullSync,
    IncrementalSync,
    RecoveryFullSync,
    SyncMode,
    SyncStrategySelector,
    select_mode,
    should_full_sync,
)

__all__ = [
    "AccountTokenSource",
    "ApplyResult",
    "CalendarPassResult",
    "CalendarSyncEngine",
    "ChangeApplier",
    "ChangeClassifier",
    "ChangeSet",
    "CredentialRefresher",
    "FetchResult",
    "FullSync",
    "IncrementalSync",
    "RecoveryFullSync",
    "RemoteEventFetcher",
    "StaticImportResult",
    "StaticImporter",
    "SyncMode",
    "SyncOrchestrator",
    "SyncStrategySelector",
    "select_mode",
    "should_full_sync",
]
