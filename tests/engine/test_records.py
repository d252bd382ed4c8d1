from __future__ import annotations

import pytest
from pydantic import ValidationError

from subporter.engine.records import (
    Record,
    RecordFilter,
    channel_url_for,
    compare,
    filter_records,
    identifier_from_href,
    merge,
    parse_approximate_count,
)


@pytest.mark.parametrize(
    ("text", "expected"),
    [
        ("1,234", 1234),
        ("15.2M", 15_200_000),
        ("500K", 500_000),
        ("", 0),
        ("abc", 0),
        (None, 0),
        ("1.5K subscribers", 1500),
        (" 2 m ", 2_000_000),
    ],
)
def test_parse_approximate_count(text, expected) -> None:
    assert parse_approximate_count(text) == pytest.approx(expected)


def test_record_requires_name_and_url() -> None:
    with pytest.raises(ValidationError):
        Record(display_name="  ", target_url="https://www.youtube.com/@x")
    with pytest.raises(ValidationError):
        Record(display_name="Name", target_url="")


def test_record_accepts_wire_names_and_blanks_optional_fields() -> None:
    record = Record.model_validate(
        {
            "channelId": "",
            "channelName": "Some Channel",
            "channelUrl": "https://www.youtube.com/@some",
            "subscriberCount": "  ",
        }
    )
    assert record.identifier is None
    assert record.follower_count_text is None
    wire = record.to_wire()
    assert wire["channelName"] == "Some Channel"
    assert set(wire) >= {"channelId", "channelUrl", "extractedAt"}


def test_from_wire_rebuilds_missing_url() -> None:
    canonical = Record.from_wire({"channelId": "UC" + "a" * 22, "channelName": "A"})
    handle = Record.from_wire({"channelId": "@maker", "channelName": "B"})
    assert canonical.target_url == "https://www.youtube.com/channel/UC" + "a" * 22
    assert handle.target_url == "https://www.youtube.com/@maker"
    with pytest.raises(ValidationError):
        Record.from_wire({"channelId": "not-an-id", "channelName": "C"})


def test_identifier_from_href() -> None:
    canonical = "UC" + "x" * 21 + "-"
    assert identifier_from_href(f"/channel/{canonical}/videos") == canonical
    assert identifier_from_href("https://www.youtube.com/@some.handle") == "@some.handle"
    assert identifier_from_href("/user/legacy") is None
    assert identifier_from_href(None) is None
    assert channel_url_for(None) is None


def test_merge_first_occurrence_wins_and_keeps_unidentified(make_record) -> None:
    a = [make_record(1), make_record(2), make_record(9, identifier=None)]
    b = [make_record(2, display_name="Renamed"), make_record(3), make_record(9, identifier=None)]
    result = merge([a, b])
    assert [r.display_name for r in result.merged] == [
        "Channel 1",
        "Channel 2",
        "Channel 9",
        "Channel 3",
        "Channel 9",
    ]
    assert result.duplicate_count == 1


def test_merge_is_idempotent(make_record) -> None:
    a = [make_record(1), make_record(2), make_record(7, identifier=None)]
    b = [make_record(2), make_record(3)]
    once = merge([a, b])
    again = merge([once.merged])
    assert again.merged == once.merged
    assert again.duplicate_count == 0


def test_self_merge_drops_identified_copies_only(make_record) -> None:
    a = [make_record(1), make_record(2), make_record(5, identifier=None)]
    result = merge([a, a])
    identified = [r for r in result.merged if r.identifier]
    unidentified = [r for r in result.merged if not r.identifier]
    assert len(identified) == 2
    assert len(unidentified) == 2
    assert result.duplicate_count == 2


def test_compare_partitions_identified_records(make_record) -> None:
    a = [make_record(1), make_record(2), make_record(3, identifier=None)]
    b = [make_record(2), make_record(4), make_record(5, identifier=None)]
    result = compare(a, b)

    identified_a = {r.identifier for r in a if r.identifier}
    assert {r.identifier for r in result.only_in_a} | {r.identifier for r in result.in_both} == identified_a
    assert [r.identifier for r in result.in_both] == [make_record(2).identifier]
    assert [r.display_name for r in result.unidentified_a] == ["Channel 3"]
    assert [r.display_name for r in result.unidentified_b] == ["Channel 5"]
    assert result.counts()["a_count"] == 3


def test_compare_is_asymmetric(make_record) -> None:
    a = [make_record(1), make_record(2)]
    b = [make_record(2), make_record(3)]
    assert compare(a, b).only_in_a == compare(b, a).only_in_b
    assert compare(a, b).only_in_b == compare(b, a).only_in_a


def test_filter_keyword_matches_name_or_handle(make_record) -> None:
    records = [
        make_record(1, display_name="Cooking Daily", handle="@chef"),
        make_record(2, display_name="Tech Talk", handle="@cookingtech"),
        make_record(3, display_name="Music", handle=None),
    ]
    result = filter_records(records, RecordFilter(keyword="COOK"))
    assert [r.display_name for r in result] == ["Cooking Daily", "Tech Talk"]


def test_filter_count_bounds_and_selection_are_anded(make_record) -> None:
    records = [
        make_record(1, follower_count_text="900 subscribers"),
        make_record(2, follower_count_text="15K subscribers"),
        make_record(3, follower_count_text="2.1M subscribers"),
        make_record(4, follower_count_text=None),
    ]
    bounded = filter_records(records, RecordFilter(min_count=1_000, max_count=3_000_000))
    assert [r.identifier for r in bounded] == [records[1].identifier, records[2].identifier]

    selected = filter_records(
        records,
        RecordFilter(min_count=1_000, selected_identifiers=[records[2].identifier, records[0].identifier]),
    )
    assert [r.identifier for r in selected] == [records[2].identifier]

    assert filter_records(records, RecordFilter()) == records
