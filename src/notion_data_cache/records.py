"""
Normalized Notion records.

Flattens Notion page payloads into an id plus an ordered list of
(property name, printable values) pairs.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any

logger = logging.getLogger(__name__)

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


@dataclass
class RecordProperty:
    """One named property with its values in Notion's own order."""

    name: str
    values: list[str] = field(default_factory=list)


@dataclass
class Record:
    """One normalized page from a Notion database."""

    id: str
    properties: list[RecordProperty] = field(default_factory=list)
    last_updated: datetime = _EPOCH

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "properties": [{"name": p.name, "values": list(p.values)} for p in self.properties],
            "last_updated": self.last_updated.isoformat(),
        }


class PropertyKind(str, Enum):
    TITLE = "title"
    RICH_TEXT = "rich_text"
    DATE = "date"
    SELECT = "select"
    MULTI_SELECT = "multi_select"
    URL = "url"
    CHECKBOX = "checkbox"
    EMAIL = "email"
    PHONE_NUMBER = "phone_number"
    FORMULA = "formula"
    NUMBER = "number"
    CREATED_TIME = "created_time"
    LAST_EDITED_TIME = "last_edited_time"
    CREATED_BY = "created_by"
    LAST_EDITED_BY = "last_edited_by"
    PEOPLE = "people"


def normalized_database_id(database_id: str) -> str:
    """Strip spaces and hyphens so equivalent spellings of an id compare equal."""
    return database_id.replace(" ", "").replace("-", "")


def _parse_timestamp(value: Any) -> datetime | None:
    if not isinstance(value, str) or not value:
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None


def _plain_texts(fragments: Any) -> list[str]:
    if not isinstance(fragments, list):
        return []
    return [
        str(fragment.get("plain_text", ""))
        for fragment in fragments
        if isinstance(fragment, dict)
    ]


def _user_name(user: Any) -> list[str]:
    if isinstance(user, dict) and user.get("name"):
        return [str(user["name"])]
    return []


def _scalar(value: Any) -> list[str]:
    if value is None:
        return []
    return [str(value)]


def _format_number(value: Any) -> list[str]:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return []
    return [f"{value:.5f}"]


def _format_unix(value: Any) -> list[str]:
    parsed = _parse_timestamp(value)
    if parsed is None:
        return []
    return [str(int(parsed.timestamp()))]


def _title(payload: Any) -> list[str]:
    # Title fragments form a single value.
    return ["".join(_plain_texts(payload))]


def _rfc3339(value: Any) -> str:
    parsed = _parse_timestamp(value)
    if parsed is None:
        return str(value)
    # Date-only and offset-less values are UTC.
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.replace(microsecond=0).isoformat().replace("+00:00", "Z")


def _date(payload: Any) -> list[str]:
    if not isinstance(payload, dict):
        return []
    return [_rfc3339(payload[key]) for key in ("start", "end") if payload.get(key)]


def _select(payload: Any) -> list[str]:
    if isinstance(payload, dict) and payload.get("name") is not None:
        return [str(payload["name"])]
    return []


def _multi_select(payload: Any) -> list[str]:
    if not isinstance(payload, list):
        return []
    return [str(option["name"]) for option in payload if isinstance(option, dict) and "name" in option]


def _checkbox(payload: Any) -> list[str]:
    return ["true" if payload is True else "false"]


def _formula(payload: Any) -> list[str]:
    if not isinstance(payload, dict):
        return []
    result_type = payload.get("type")
    value = payload.get(result_type) if isinstance(result_type, str) else None
    if result_type == "number":
        return _format_number(value)
    if result_type == "boolean":
        return _checkbox(value)
    if result_type == "date":
        return _date(value)
    return _scalar(value)


def _people(payload: Any) -> list[str]:
    if not isinstance(payload, list):
        return []
    names: list[str] = []
    for person in payload:
        names.extend(_user_name(person))
    return names


PROPERTY_FORMATTERS: dict[PropertyKind, Callable[[Any], list[str]]] = {
    PropertyKind.TITLE: _title,
    PropertyKind.RICH_TEXT: _plain_texts,
    PropertyKind.DATE: _date,
    PropertyKind.SELECT: _select,
    PropertyKind.MULTI_SELECT: _multi_select,
    PropertyKind.URL: _scalar,
    PropertyKind.CHECKBOX: _checkbox,
    PropertyKind.EMAIL: _scalar,
    PropertyKind.PHONE_NUMBER: _scalar,
    PropertyKind.FORMULA: _formula,
    PropertyKind.NUMBER: _format_number,
    PropertyKind.CREATED_TIME: _format_unix,
    PropertyKind.LAST_EDITED_TIME: _format_unix,
    PropertyKind.CREATED_BY: _user_name,
    PropertyKind.LAST_EDITED_BY: _user_name,
    PropertyKind.PEOPLE: _people,
}


def property_values(payload: Any) -> list[str]:
    """Printable values for one Notion property payload; unknown kinds yield none."""
    if not isinstance(payload, dict):
        return []
    try:
        kind = PropertyKind(payload.get("type"))
    except ValueError:
        logger.debug("Dropping values of unsupported property type %r", payload.get("type"))
        return []
    return PROPERTY_FORMATTERS[kind](payload.get(kind.value))


def normalize_page(page: Any) -> Record:
    """Convert one Notion page into a Record, keeping Notion's property order."""
    if not isinstance(page, dict):
        return Record(id="")

    record_id = str(page.get("id", "")).replace("-", "")
    last_updated = _parse_timestamp(page.get("last_edited_time")) or _EPOCH

    properties = page.get("properties")
    if not isinstance(properties, dict):
        properties = {}

    return Record(
        id=record_id,
        properties=[
            RecordProperty(name=str(name), values=property_values(payload))
            for name, payload in properties.items()
        ],
        last_updated=last_updated,
    )
