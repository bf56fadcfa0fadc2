"""
Service settings from environment variables, optionally layered over a YAML file.
"""

from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = "config.yaml"
DEFAULT_POLL_DURATION = "6h"
FALLBACK_POLL_SECONDS = 300.0

_DURATION_PART = re.compile(r"(\d+(?:\.\d+)?)(ms|h|m|s)")
_DURATION_UNITS = {"h": 3600.0, "m": 60.0, "s": 1.0, "ms": 0.001}


@dataclass
class Settings:
    notion_access_token: str = ""
    notion_poll_duration: str = DEFAULT_POLL_DURATION
    poll_interval_seconds: float = 21600.0
    known_databases: list[str] = field(default_factory=list)
    host: str = "0.0.0.0"
    port: int = 5432
    transport: str = "streamable-http"
    request_timeout_seconds: float = 30.0
    log_level: str = "INFO"


def resolve_poll_interval(raw: str) -> float:
    """Seconds between refreshes; unparsable or non-positive values fall back to 5 minutes."""
    seconds = parse_duration(raw)
    if seconds is None or seconds <= 0:
        logger.warning(
            "Could not parse the notion poll duration %r, using default duration of 5 minutes",
            raw,
        )
        return FALLBACK_POLL_SECONDS
    return seconds


def parse_duration(raw: str | int | float | None) -> float | None:
    """Parse "90s", "5m", "1h30m" or a bare number of seconds. None if unparsable."""
    if raw is None or isinstance(raw, bool):
        return None
    if isinstance(raw, (int, float)):
        return float(raw)
    text = raw.strip()
    if not text:
        return None
    try:
        return float(text)
    except ValueError:
        pass

    total = 0.0
    position = 0
    for match in _DURATION_PART.finditer(text):
        if match.start() != position:
            return None
        total += float(match.group(1)) * _DURATION_UNITS[match.group(2)]
        position = match.end()
    if position != len(text):
        return None
    return total


def _parse_csv(raw: str) -> list[str]:
    values = [item.strip() for item in raw.split(",")]
    return [item for item in values if item]


def _load_yaml(path: Path) -> dict[str, Any]:
    with path.open("r", encoding="utf-8") as fh:
        data = yaml.safe_load(fh) or {}
    if not isinstance(data, dict):
        raise ValueError(f"config file {path} must contain a mapping")
    return data


def load_settings(config_path: str | None = None) -> Settings:
    """Build settings: environment overrides the YAML file, which overrides defaults."""
    path = Path(config_path or os.getenv("NOTION_DATA_CONFIG", DEFAULT_CONFIG_PATH))
    file_values: dict[str, Any] = {}
    if path.exists():
        file_values = _load_yaml(path)
        logger.info("Loaded configuration from %s", path)
    elif config_path:
        raise FileNotFoundError(f"config file not found: {path}")

    settings = Settings()

    token = os.getenv("NOTION_TOKEN", file_values.get("notionAccessToken"))
    if token is not None:
        settings.notion_access_token = str(token)

    poll = os.getenv("NOTION_POLL_DURATION", file_values.get("notionPollDuration"))
    if poll is not None:
        settings.notion_poll_duration = str(poll)
    settings.poll_interval_seconds = resolve_poll_interval(settings.notion_poll_duration)

    known_env = os.getenv("NOTION_KNOWN_DATABASES")
    if known_env is not None:
        settings.known_databases = _parse_csv(known_env)
    elif file_values.get("knownDatabases"):
        known = file_values["knownDatabases"]
        if isinstance(known, str):
            settings.known_databases = _parse_csv(known)
        else:
            settings.known_databases = [str(item) for item in known]

    settings.host = os.getenv("HOST", str(file_values.get("host", settings.host)))
    settings.port = int(os.getenv("PORT", file_values.get("port", settings.port)))
    settings.transport = os.getenv(
        "NOTION_DATA_TRANSPORT", str(file_values.get("transport", settings.transport))
    ).lower()
    settings.request_timeout_seconds = float(
        os.getenv(
            "NOTION_REQUEST_TIMEOUT_SECONDS",
            file_values.get("requestTimeoutSeconds", settings.request_timeout_seconds),
        )
    )
    settings.log_level = os.getenv(
        "NOTION_DATA_LOG_LEVEL", str(file_values.get("logLevel", settings.log_level))
    ).upper()

    if settings.transport not in {"stdio", "sse", "streamable-http"}:
        raise ValueError("NOTION_DATA_TRANSPORT must be one of: stdio, sse, streamable-http")
    return settings
