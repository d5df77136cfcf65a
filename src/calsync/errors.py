"""Error taxonomy for the sync engine.

Four families matter to callers:

- credential errors abort one user's sync pass; the orchestrator serves cache
- ``CursorInvalidError`` triggers an automatic full re-sync
- item-level problems never raise; they are logged and skipped
- input validation errors (``TimeRangeError``, ``ImportValidationError``)
  are raised straight to the caller
"""

from __future__ import annotations

import re


class CalendarSyncError(RuntimeError):
    """Base error for everything raised by calsync."""


class CredentialError(CalendarSyncError):
    """Base error for credential problems that abort a sync pass."""


class AccountNotLinkedError(CredentialError):
    """Raised when the user has no linked provider account."""


class MissingRefreshTokenError(CredentialError):
    """Raised when a refresh is required but no refresh token is stored."""


class TokenRefreshError(CredentialError):
    """Raised when the refresh-token exchange fails."""


class RemoteRequestError(CalendarSyncError):
    """Raised when a provider API request fails."""

    def __init__(self, *, status_code: int, message: str) -> None:
        self.status_code = status_code
        self.message = message
        super().__init__(f"Google Calendar API request failed ({status_code}): {message}")


class RemoteAuthError(RemoteRequestError):
    """Raised on 401 so callers can force a credential refresh and retry."""


class CursorInvalidError(CalendarSyncError):
    """Raised when the provider rejects a sync cursor (HTTP 410 Gone)."""

    def __init__(self, calendar_source_id: str) -> None:
        self.calendar_source_id = calendar_source_id
        super().__init__(
            f"Sync cursor expired for calendar '{calendar_source_id}'; full re-sync required"
        )


class TimeRangeError(CalendarSyncError, ValueError):
    """Raised when a requested read window is inverted or too wide."""


class ImportValidationError(CalendarSyncError, ValueError):
    """Raised when a static calendar document is empty or unparseable."""


class CalendarNotFoundError(CalendarSyncError):
    """Raised when a calendar cannot be found locally or in the remote list."""


class CalendarAlreadyImportedError(CalendarSyncError):
    """Raised when a remote calendar is imported twice for the same user."""


_CREDENTIAL_KEYS = r"client_secret|refresh_token|access_token|token"


def redact_credential_values(message: str) -> str:
    """Redact credential values from *message* before it is logged or stored."""
    redacted = re.sub(
        rf"(?i)\b({_CREDENTIAL_KEYS})\s*=\s*([^\s,;&]+)",
        r"\1=[REDACTED]",
        message,
    )
    redacted = re.sub(
        rf"""(?i)(['"]?(?:{_CREDENTIAL_KEYS})['"]?\s*:\s*)(['"]).*?\2""",
        r'\1"[REDACTED]"',
        redacted,
    )
    redacted = re.sub(
        rf"(?i)\b({_CREDENTIAL_KEYS})\s*:\s*([^\s,;'\"]+)",
        r"\1: [REDACTED]",
        redacted,
    )
    return redacted


def sanitize_error_message(exc: BaseException | str, *, limit: int = 200) -> str:
    """Redact, collapse whitespace and truncate an error for logs and state."""
    raw = exc if isinstance(exc, str) else str(exc)
    return " ".join(redact_credential_values(raw).split())[:limit]
