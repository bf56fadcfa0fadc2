from __future__ import annotations

import logging
from pathlib import Path

import pytest

from notion_data_cache.config import (
    FALLBACK_POLL_SECONDS,
    load_settings,
    parse_duration,
    resolve_poll_interval,
)


@pytest.fixture(autouse=True)
def _clear_env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path):
    keys = [
        "NOTION_TOKEN",
        "NOTION_POLL_DURATION",
        "NOTION_KNOWN_DATABASES",
        "HOST",
        "PORT",
        "NOTION_DATA_TRANSPORT",
        "NOTION_REQUEST_TIMEOUT_SECONDS",
        "NOTION_DATA_LOG_LEVEL",
        "NOTION_DATA_CONFIG",
    ]
    for key in keys:
        monkeypatch.delenv(key, raising=False)
    monkeypatch.chdir(tmp_path)


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ("6h", 21600.0),
        ("5m", 300.0),
        ("1h30m", 5400.0),
        ("90s", 90.0),
        ("1.5s", 1.5),
        ("250ms", 0.25),
        ("120", 120.0),
        (45, 45.0),
    ],
)
def test_parse_duration(raw, expected):
    assert parse_duration(raw) == pytest.approx(expected)


@pytest.mark.parametrize("raw", ["", "soon", "5 minutes", "h5", "5m!", None])
def test_parse_duration_rejects_garbage(raw):
    assert parse_duration(raw) is None


def test_unparsable_poll_duration_falls_back_to_five_minutes():
    assert resolve_poll_interval("whenever") == FALLBACK_POLL_SECONDS
    assert resolve_poll_interval("0s") == FALLBACK_POLL_SECONDS


def test_poll_fallback_is_resolved_once_at_load(
    monkeypatch: pytest.MonkeyPatch, caplog: pytest.LogCaptureFixture
):
    monkeypatch.setenv("NOTION_POLL_DURATION", "whenever")

    with caplog.at_level(logging.WARNING, logger="notion_data_cache.config"):
        settings = load_settings()
        first = settings.poll_interval_seconds
        second = settings.poll_interval_seconds

    assert first == second == FALLBACK_POLL_SECONDS
    warnings = [r for r in caplog.records if "poll duration" in r.getMessage()]
    assert len(warnings) == 1


def test_defaults_without_file_or_env():
    settings = load_settings()

    assert settings.notion_access_token == ""
    assert settings.poll_interval_seconds == 21600.0
    assert settings.known_databases == []
    assert settings.port == 5432
    assert settings.transport == "streamable-http"


def test_env_settings(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setenv("NOTION_TOKEN", "tok")
    monkeypatch.setenv("NOTION_POLL_DURATION", "10m")
    monkeypatch.setenv("NOTION_KNOWN_DATABASES", "abc-123, def456 ,,")
    monkeypatch.setenv("PORT", "8080")
    monkeypatch.setenv("NOTION_DATA_TRANSPORT", "STDIO")

    settings = load_settings()

    assert settings.notion_access_token == "tok"
    assert settings.poll_interval_seconds == 600.0
    assert settings.known_databases == ["abc-123", "def456"]
    assert settings.port == 8080
    assert settings.transport == "stdio"


def test_yaml_file_with_env_override(monkeypatch: pytest.MonkeyPatch, tmp_path: Path):
    config = tmp_path / "service.yaml"
    config.write_text(
        "notionAccessToken: from-file\n"
        "notionPollDuration: 1h\n"
        "knownDatabases:\n"
        "  - db-one\n"
        "  - db-two\n"
        "port: 9000\n"
    )
    monkeypatch.setenv("NOTION_TOKEN", "from-env")

    settings = load_settings(str(config))

    assert settings.notion_access_token == "from-env"
    assert settings.poll_interval_seconds == 3600.0
    assert settings.known_databases == ["db-one", "db-two"]
    assert settings.port == 9000


def test_default_config_yaml_in_working_directory(tmp_path: Path):
    (tmp_path / "config.yaml").write_text("notionAccessToken: local\n")

    assert load_settings().notion_access_token == "local"


def test_explicit_missing_config_file_raises(tmp_path: Path):
    with pytest.raises(FileNotFoundError):
        load_settings(str(tmp_path / "nope.yaml"))


def test_invalid_transport_raises(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setenv("NOTION_DATA_TRANSPORT", "carrier-pigeon")

    with pytest.raises(ValueError):
        load_settings()
