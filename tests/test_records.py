from __future__ import annotations

from datetime import datetime, timezone

from notion_data_cache.records import (
    PROPERTY_FORMATTERS,
    PropertyKind,
    Record,
    RecordProperty,
    normalize_page,
    normalized_database_id,
    property_values,
)


def _page(properties: dict, page_id: str = "a1b2c3d4-0000-1111-2222-333344445555") -> dict:
    return {
        "object": "page",
        "id": page_id,
        "last_edited_time": "2024-01-02T03:04:05.000Z",
        "properties": properties,
    }


def test_every_kind_has_a_formatter():
    assert set(PROPERTY_FORMATTERS) == set(PropertyKind)


def test_page_id_is_url_friendly():
    record = normalize_page(_page({}))

    assert record.id == "a1b2c3d4000011112222333344445555"
    assert record.last_updated == datetime(2024, 1, 2, 3, 4, 5, tzinfo=timezone.utc)


def test_property_order_follows_payload():
    record = normalize_page(
        _page(
            {
                "Zeta": {"type": "url", "url": "https://example.com"},
                "Alpha": {"type": "email", "email": "a@example.com"},
                "Mid": {"type": "checkbox", "checkbox": True},
            }
        )
    )

    assert [p.name for p in record.properties] == ["Zeta", "Alpha", "Mid"]


def test_title_fragments_join_into_one_value():
    values = property_values(
        {"type": "title", "title": [{"plain_text": "Hello "}, {"plain_text": "world"}]}
    )

    assert values == ["Hello world"]


def test_rich_text_keeps_one_value_per_fragment():
    values = property_values(
        {"type": "rich_text", "rich_text": [{"plain_text": "a"}, {"plain_text": "b"}]}
    )

    assert values == ["a", "b"]


def test_date_emits_start_and_end_as_rfc3339():
    assert property_values(
        {"type": "date", "date": {"start": "2024-01-01", "end": "2024-01-05"}}
    ) == ["2024-01-01T00:00:00Z", "2024-01-05T00:00:00Z"]
    assert property_values(
        {"type": "date", "date": {"start": "2024-01-01T09:30:00.000-05:00", "end": None}}
    ) == ["2024-01-01T09:30:00-05:00"]
    assert property_values({"type": "date", "date": None}) == []


def test_unparsable_date_is_kept_verbatim():
    assert property_values({"type": "date", "date": {"start": "someday"}}) == ["someday"]


def test_select_and_multi_select():
    assert property_values({"type": "select", "select": {"name": "In Progress"}}) == ["In Progress"]
    assert property_values({"type": "select", "select": None}) == []
    assert property_values(
        {"type": "multi_select", "multi_select": [{"name": "red"}, {"name": "blue"}]}
    ) == ["red", "blue"]


def test_checkbox_values():
    assert property_values({"type": "checkbox", "checkbox": True}) == ["true"]
    assert property_values({"type": "checkbox", "checkbox": False}) == ["false"]


def test_number_uses_five_decimals():
    assert property_values({"type": "number", "number": 3.5}) == ["3.50000"]
    assert property_values({"type": "number", "number": None}) == []


def test_formula_result_types():
    assert property_values({"type": "formula", "formula": {"type": "string", "string": "x"}}) == ["x"]
    assert property_values({"type": "formula", "formula": {"type": "number", "number": 2}}) == [
        "2.00000"
    ]
    assert property_values({"type": "formula", "formula": {"type": "boolean", "boolean": True}}) == [
        "true"
    ]


def test_times_are_unix_seconds():
    assert property_values(
        {"type": "created_time", "created_time": "2021-01-01T00:00:00.000Z"}
    ) == ["1609459200"]
    assert property_values(
        {"type": "last_edited_time", "last_edited_time": "2021-01-01T00:01:00.000Z"}
    ) == ["1609459260"]


def test_people_and_users():
    assert property_values(
        {"type": "people", "people": [{"name": "Ada"}, {"name": "Grace"}, {"id": "no-name"}]}
    ) == ["Ada", "Grace"]
    assert property_values({"type": "created_by", "created_by": {"name": "Ada"}}) == ["Ada"]
    assert property_values({"type": "last_edited_by", "last_edited_by": {"name": "Grace"}}) == [
        "Grace"
    ]


def test_unknown_kind_emits_no_values_but_keeps_record():
    record = normalize_page(
        _page(
            {
                "Files": {"type": "files", "files": [{"name": "a.pdf"}]},
                "Link": {"type": "url", "url": "https://example.com"},
            }
        )
    )

    assert record.properties == [
        RecordProperty(name="Files", values=[]),
        RecordProperty(name="Link", values=["https://example.com"]),
    ]


def test_malformed_page_is_still_normalized():
    record = normalize_page({"id": "abc", "properties": None, "last_edited_time": "garbage"})

    assert record.id == "abc"
    assert record.properties == []
    assert record.last_updated.year == 1970


def test_normalization_is_deterministic():
    page = _page(
        {
            "Tags": {"type": "multi_select", "multi_select": [{"name": "b"}, {"name": "a"}]},
            "Name": {"type": "title", "title": [{"plain_text": "n"}]},
        }
    )

    assert normalize_page(page) == normalize_page(page)


def test_to_dict_shape():
    record = Record(
        id="abc",
        properties=[RecordProperty(name="Status", values=["Done"])],
        last_updated=datetime(2024, 1, 1, tzinfo=timezone.utc),
    )

    assert record.to_dict() == {
        "id": "abc",
        "properties": [{"name": "Status", "values": ["Done"]}],
        "last_updated": "2024-01-01T00:00:00+00:00",
    }


def test_normalized_database_id():
    assert normalized_database_id("abc-123") == "abc123"
    assert normalized_database_id("abc 123") == "abc123"
    assert normalized_database_id("ABC-123") == "ABC123"


def test_non_dict_page_normalizes_to_empty_record():
    record = normalize_page(["not", "a", "page"])

    assert record.id == ""
    assert record.properties == []
