"""Tests for calsync.config: TOML loading, env resolution and validation."""

from __future__ import annotations

from pathlib import Path

import pytest

from calsync.config import (
    DEFAULT_PLACEHOLDER_TITLE,
    GOOGLE_CALENDAR_API_BASE_URL,
    CalsyncConfig,
    ConfigError,
    load_config,
    parse_config,
    resolve_env_vars,
)

pytestmark = pytest.mark.unit


def _write(tmp_path: Path, content: str) -> Path:
    path = tmp_path / "calsync.toml"
    path.write_text(content)
    return path


def test_empty_document_uses_defaults():
    config = parse_config({})

    assert isinstance(config, CalsyncConfig)
    assert config.sync.freshness_window_s == 60
    assert config.sync.full_sync_max_age_h == 24
    assert config.sync.full_window_past_days == 30
    assert config.sync.full_window_future_days == 365
    assert config.sync.refresh_skew_s == 300
    assert config.sync.max_range_months == 3
    assert config.sync.page_size == 2500
    assert config.sync.untitled_events == "skip"
    assert config.sync.placeholder_title == DEFAULT_PLACEHOLDER_TITLE
    assert config.google.api_base_url == GOOGLE_CALENDAR_API_BASE_URL
    assert config.logging.format == "text"
    assert config.database.url is None


def test_load_config_from_directory(tmp_path):
    _write(
        tmp_path,
        """
        [database]
        url = "postgresql://u:p@localhost:5432/calsync"

        [google]
        client_id = "cid"
        client_secret = "secret"
        api_base_url = "https://calendar.example/v3/"

        [sync]
        freshness_window_s = 120
        untitled_events = "placeholder"

        [logging]
        level = "debug"
        format = "json"
        """,
    )

    config = load_config(tmp_path)

    assert config.database.url == "postgresql://u:p@localhost:5432/calsync"
    assert config.google.client_id == "cid"
    assert config.google.api_base_url == "https://calendar.example/v3"
    assert config.sync.freshness_window_s == 120
    assert config.sync.untitled_events == "placeholder"
    assert config.logging.level == "DEBUG"
    assert config.logging.format == "json"


def test_env_vars_are_resolved(tmp_path, monkeypatch):
    monkeypatch.setenv("CALSYNC_CLIENT_SECRET", "from-env")
    path = _write(tmp_path, '[google]\nclient_secret = "${CALSYNC_CLIENT_SECRET}"\n')

    config = load_config(path)

    assert config.google.client_secret == "from-env"


def test_missing_env_var_raises(monkeypatch):
    monkeypatch.delenv("CALSYNC_MISSING", raising=False)

    with pytest.raises(ConfigError, match="CALSYNC_MISSING"):
        resolve_env_vars({"google": {"client_id": "${CALSYNC_MISSING}"}})


def test_resolve_env_vars_leaves_non_strings_untouched():
    assert resolve_env_vars({"a": [1, True, 2.5]}) == {"a": [1, True, 2.5]}


def test_missing_file_raises(tmp_path):
    with pytest.raises(ConfigError, match="not found"):
        load_config(tmp_path / "nope.toml")


def test_invalid_toml_raises(tmp_path):
    path = _write(tmp_path, "[sync\n")

    with pytest.raises(ConfigError, match="Invalid TOML"):
        load_config(path)


@pytest.mark.parametrize(
    ("document", "message"),
    [
        ({"sync": {"freshness_window_s": 0}}, "freshness_window_s"),
        ({"sync": {"page_size": True}}, "page_size"),
        ({"sync": {"untitled_events": "drop"}}, "untitled_events"),
        ({"sync": {"placeholder_title": "  "}}, "placeholder_title"),
        ({"sync": {"rate_limit_max_retries": -1}}, "rate_limit_max_retries"),
        ({"logging": {"format": "xml"}}, "logging.format"),
        ({"database": {"min_pool_size": 5, "max_pool_size": 2}}, "min_pool_size"),
        ({"database": {"url": ""}}, "database.url"),
        ({"sync": "fast"}, r"\[sync\]"),
    ],
)
def test_invalid_values_raise(document, message):
    with pytest.raises(ConfigError, match=message):
        parse_config(document)
