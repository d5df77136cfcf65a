"""calsync configuration loading and validation.

Reads ``calsync.toml``, resolves ``${VAR_NAME}`` references against the
environment, and returns a validated :class:`CalsyncConfig`. Every section is
optional; missing keys fall back to the defaults below.
"""

from __future__ import annotations

import os
import re
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Literal

GOOGLE_OAUTH_TOKEN_URL = "https://oauth2.googleapis.com/token"
GOOGLE_CALENDAR_API_BASE_URL = "https://www.googleapis.com/calendar/v3"
DEFAULT_CONFIG_FILENAME = "calsync.toml"
DEFAULT_PLACEHOLDER_TITLE = "(untitled)"

_ENV_VAR_PATTERN = re.compile(r"\$\{([A-Za-z_][A-Za-z0-9_]*)\}")
_VALID_LOG_FORMATS = {"text", "json"}
_VALID_UNTITLED_POLICIES = {"skip", "placeholder"}

UntitledEventPolicy = Literal["skip", "placeholder"]


class ConfigError(Exception):
    """Raised when configuration is missing, malformed, or invalid."""


@dataclass
class LoggingConfig:
    """Logging configuration from the [logging] section."""

    level: str = "INFO"
    format: str = "text"  # "text" or "json"
    log_file: str | None = None


@dataclass
class DatabaseConfig:
    """Connection settings from the [database] section.

    When ``url`` is unset the ``DATABASE_URL`` / ``POSTGRES_*`` environment
    variables are consulted by :meth:`calsync.db.Database.from_env`.
    """

    url: str | None = None
    db_name: str = "calsync"
    min_pool_size: int = 2
    max_pool_size: int = 10


@dataclass
class GoogleConfig:
    """OAuth client and API endpoints from the [google] section."""

    client_id: str = ""
    client_secret: str = ""
    token_url: str = GOOGLE_OAUTH_TOKEN_URL
    api_base_url: str = GOOGLE_CALENDAR_API_BASE_URL
    request_timeout_s: float = 30.0


@dataclass
class SyncConfig:
    """Sync engine tuning from the [sync] section."""

    freshness_window_s: int = 60
    full_sync_max_age_h: int = 24
    full_window_past_days: int = 30
    full_window_future_days: int = 365
    refresh_skew_s: int = 300
    max_range_months: int = 3
    page_size: int = 2500
    calendar_pass_timeout_s: float = 120.0
    untitled_events: UntitledEventPolicy = "skip"
    placeholder_title: str = DEFAULT_PLACEHOLDER_TITLE
    rate_limit_max_retries: int = 3
    rate_limit_base_backoff_s: float = 1.0


@dataclass
class CalsyncConfig:
    """Parsed and validated calsync configuration."""

    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    google: GoogleConfig = field(default_factory=GoogleConfig)
    sync: SyncConfig = field(default_factory=SyncConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)


def resolve_env_vars(value: Any) -> Any:
    """Recursively resolve ``${VAR_NAME}`` references in config values.

    Walks dicts, lists, and strings. Non-string leaves are returned unchanged.

    Raises
    ------
    ConfigError
        If a referenced environment variable is not set.
    """
    if isinstance(value, dict):
        return {k: resolve_env_vars(v) for k, v in value.items()}

    if isinstance(value, list):
        return [resolve_env_vars(item) for item in value]

    if isinstance(value, str):
        return _resolve_string(value)

    return value


def _resolve_string(s: str) -> str:
    missing: list[str] = []

    def _replace(match: re.Match) -> str:
        var_name = match.group(1)
        env_value = os.environ.get(var_name)
        if env_value is None:
            missing.append(var_name)
            return match.group(0)
        return env_value

    result = _ENV_VAR_PATTERN.sub(_replace, s)

    if missing:
        vars_str = ", ".join(missing)
        raise ConfigError(
            f"Unresolved environment variable(s) in config value: {vars_str} (original: {s!r})"
        )

    return result


def _section(data: dict[str, Any], name: str) -> dict[str, Any]:
    section = data.get(name, {})
    if not isinstance(section, dict):
        raise ConfigError(f"[{name}] must be a TOML table")
    return section


def _positive_int(section: dict[str, Any], key: str, default: int, path: str) -> int:
    raw = section.get(key, default)
    if isinstance(raw, bool) or not isinstance(raw, int) or raw <= 0:
        raise ConfigError(f"Invalid {path}.{key}: {raw!r}. Must be a positive integer.")
    return raw


def _positive_float(section: dict[str, Any], key: str, default: float, path: str) -> float:
    raw = section.get(key, default)
    if isinstance(raw, bool) or not isinstance(raw, int | float) or raw <= 0:
        raise ConfigError(f"Invalid {path}.{key}: {raw!r}. Must be a positive number.")
    return float(raw)


def _parse_logging(data: dict[str, Any]) -> LoggingConfig:
    section = _section(data, "logging")
    fmt = str(section.get("format", "text")).lower()
    if fmt not in _VALID_LOG_FORMATS:
        raise ConfigError(
            f"Invalid logging.format: {fmt!r}. Must be one of {sorted(_VALID_LOG_FORMATS)}."
        )
    log_file = section.get("log_file")
    return LoggingConfig(
        level=str(section.get("level", "INFO")).upper(),
        format=fmt,
        log_file=str(log_file) if log_file else None,
    )


def _parse_database(data: dict[str, Any]) -> DatabaseConfig:
    section = _section(data, "database")
    url = section.get("url")
    if url is not None and (not isinstance(url, str) or not url.strip()):
        raise ConfigError("database.url must be a non-empty string when set")
    min_size = _positive_int(section, "min_pool_size", 2, "database")
    max_size = _positive_int(section, "max_pool_size", 10, "database")
    if min_size > max_size:
        raise ConfigError("database.min_pool_size must not exceed database.max_pool_size")
    return DatabaseConfig(
        url=url.strip() if isinstance(url, str) else None,
        db_name=str(section.get("db_name", "calsync")),
        min_pool_size=min_size,
        max_pool_size=max_size,
    )


def _parse_google(data: dict[str, Any]) -> GoogleConfig:
    section = _section(data, "google")
    return GoogleConfig(
        client_id=str(section.get("client_id", "")).strip(),
        client_secret=str(section.get("client_secret", "")).strip(),
        token_url=str(section.get("token_url", GOOGLE_OAUTH_TOKEN_URL)),
        api_base_url=str(section.get("api_base_url", GOOGLE_CALENDAR_API_BASE_URL)).rstrip("/"),
        request_timeout_s=_positive_float(section, "request_timeout_s", 30.0, "google"),
    )


def _parse_sync(data: dict[str, Any]) -> SyncConfig:
    section = _section(data, "sync")
    policy = str(section.get("untitled_events", "skip")).strip().lower()
    if policy not in _VALID_UNTITLED_POLICIES:
        raise ConfigError(
            f"Invalid sync.untitled_events: {policy!r}. "
            f"Must be one of {sorted(_VALID_UNTITLED_POLICIES)}."
        )
    placeholder = str(section.get("placeholder_title", DEFAULT_PLACEHOLDER_TITLE)).strip()
    if not placeholder:
        raise ConfigError("sync.placeholder_title must be a non-empty string")

    max_retries = section.get("rate_limit_max_retries", 3)
    if isinstance(max_retries, bool) or not isinstance(max_retries, int) or max_retries < 0:
        raise ConfigError(
            f"Invalid sync.rate_limit_max_retries: {max_retries!r}. "
            "Must be a non-negative integer."
        )
    backoff = section.get("rate_limit_base_backoff_s", 1.0)
    if isinstance(backoff, bool) or not isinstance(backoff, int | float) or backoff < 0:
        raise ConfigError(
            f"Invalid sync.rate_limit_base_backoff_s: {backoff!r}. Must be >= 0."
        )

    return SyncConfig(
        freshness_window_s=_positive_int(section, "freshness_window_s", 60, "sync"),
        full_sync_max_age_h=_positive_int(section, "full_sync_max_age_h", 24, "sync"),
        full_window_past_days=_positive_int(section, "full_window_past_days", 30, "sync"),
        full_window_future_days=_positive_int(section, "full_window_future_days", 365, "sync"),
        refresh_skew_s=_positive_int(section, "refresh_skew_s", 300, "sync"),
        max_range_months=_positive_int(section, "max_range_months", 3, "sync"),
        page_size=_positive_int(section, "page_size", 2500, "sync"),
        calendar_pass_timeout_s=_positive_float(
            section, "calendar_pass_timeout_s", 120.0, "sync"
        ),
        untitled_events=policy,  # type: ignore[arg-type]
        placeholder_title=placeholder,
        rate_limit_max_retries=max_retries,
        rate_limit_base_backoff_s=float(backoff),
    )


def parse_config(data: dict[str, Any]) -> CalsyncConfig:
    """Validate an already-decoded TOML document."""
    data = resolve_env_vars(data)
    return CalsyncConfig(
        database=_parse_database(data),
        google=_parse_google(data),
        sync=_parse_sync(data),
        logging=_parse_logging(data),
    )


def load_config(path: Path) -> CalsyncConfig:
    """Load and validate a calsync TOML file.

    *path* may point at the file itself or at a directory containing
    ``calsync.toml``.

    Raises
    ------
    ConfigError
        If the file is missing, contains invalid TOML, or has invalid values.
    """
    toml_path = path / DEFAULT_CONFIG_FILENAME if path.is_dir() else path

    if not toml_path.exists():
        raise ConfigError(f"Config file not found: {toml_path}")

    try:
        data = tomllib.loads(toml_path.read_bytes().decode())
    except tomllib.TOMLDecodeError as exc:
        raise ConfigError(f"Invalid TOML in {toml_path}: {exc}") from exc

    return parse_config(data)
