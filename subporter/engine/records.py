"""Subscription record value type and the set algebra used by compare/merge/filter."""

from __future__ import annotations

import math
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Iterable, Mapping, Sequence

from pydantic import BaseModel, ConfigDict, Field, field_validator

DEFAULT_BASE_URL = "https://www.youtube.com"

CANONICAL_ID_PATTERN = re.compile(r"/channel/(UC[\w-]{22})")
HANDLE_PATH_PATTERN = re.compile(r"/@([\w.-]+)")
_CANONICAL_ID = re.compile(r"^UC[\w-]{22}$")
_LEADING_NUMBER = re.compile(r"[-+]?(?:\d+\.?\d*|\.\d+)")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Record(BaseModel):
    """One subscription entry.

    Attribute names are used in Python code; the aliases are the field names of
    the export file so that files written by the browser extension stay readable.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    identifier: str | None = Field(default=None, alias="channelId")
    handle: str | None = Field(default=None, alias="channelHandle")
    display_name: str = Field(alias="channelName")
    target_url: str = Field(alias="channelUrl")
    thumbnail_url: str | None = Field(default=None, alias="thumbnailUrl")
    follower_count_text: str | None = Field(default=None, alias="subscriberCount")
    extracted_at: datetime = Field(default_factory=_utcnow, alias="extractedAt")

    @field_validator("identifier", "handle", "thumbnail_url", "follower_count_text", mode="before")
    @classmethod
    def _blank_to_none(cls, value: Any) -> Any:
        if isinstance(value, str):
            value = value.strip()
            return value or None
        return value

    @field_validator("display_name", "target_url", mode="before")
    @classmethod
    def _require_text(cls, value: Any) -> str:
        if not isinstance(value, str) or not value.strip():
            raise ValueError("must be a non-empty string")
        return value.strip()

    @property
    def key(self) -> str | None:
        return self.identifier

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)

    @classmethod
    def from_wire(cls, payload: Mapping[str, Any], base_url: str = DEFAULT_BASE_URL) -> "Record":
        """Build a record from an export-file entry.

        A missing ``channelUrl`` is rebuilt from the identifier when one is present.
        Raises ``pydantic.ValidationError`` for entries that stay invalid.
        """

        data = dict(payload)
        if not data.get("channelUrl") and not data.get("target_url"):
            identifier = data.get("channelId") or data.get("identifier")
            url = channel_url_for(identifier, base_url) if isinstance(identifier, str) else None
            if url:
                data["channelUrl"] = url
        return cls.model_validate(data)


def channel_url_for(identifier: str | None, base_url: str = DEFAULT_BASE_URL) -> str | None:
    """Return the channel page URL for a canonical id or an ``@handle`` token."""

    if not identifier:
        return None
    identifier = identifier.strip()
    base = base_url.rstrip("/")
    if _CANONICAL_ID.match(identifier):
        return f"{base}/channel/{identifier}"
    if identifier.startswith("@") and len(identifier) > 1:
        return f"{base}/{identifier}"
    return None


def identifier_from_href(href: str | None) -> str | None:
    """Prefer the canonical channel id, fall back to an ``@handle`` token."""

    if not href:
        return None
    match = CANONICAL_ID_PATTERN.search(href)
    if match:
        return match.group(1)
    handle_match = HANDLE_PATH_PATTERN.search(href)
    if handle_match:
        return f"@{handle_match.group(1)}"
    return None


def parse_approximate_count(text: str | None) -> float:
    """Parse display counts such as ``"15.2M"``, ``"500K"`` or ``"1,234"``.

    The result is approximate by nature; unparsable input yields ``0``.
    """

    if not text or not isinstance(text, str):
        return 0.0
    cleaned = re.sub(r"[,\s]", "", text).upper()
    multiplier = 1
    if "M" in cleaned:
        multiplier = 1_000_000
    elif "K" in cleaned:
        multiplier = 1_000
    match = _LEADING_NUMBER.match(cleaned.replace("M", "").replace("K", ""))
    if not match:
        return 0.0
    try:
        return float(match.group(0)) * multiplier
    except ValueError:
        return 0.0


@dataclass(slots=True)
class ComparisonResult:
    """Identifier-based partition of two record lists."""

    only_in_a: list[Record] = field(default_factory=list)
    only_in_b: list[Record] = field(default_factory=list)
    in_both: list[Record] = field(default_factory=list)
    # records without identifier cannot be matched across lists
    unidentified_a: list[Record] = field(default_factory=list)
    unidentified_b: list[Record] = field(default_factory=list)
    a_count: int = 0
    b_count: int = 0

    def counts(self) -> dict[str, int]:
        return {
            "a_count": self.a_count,
            "b_count": self.b_count,
            "only_in_a": len(self.only_in_a),
            "only_in_b": len(self.only_in_b),
            "in_both": len(self.in_both),
            "unidentified_a": len(self.unidentified_a),
            "unidentified_b": len(self.unidentified_b),
        }


@dataclass(slots=True)
class MergeResult:
    merged: list[Record]
    duplicate_count: int


@dataclass(slots=True)
class RecordFilter:
    """Filter criteria; unset fields are inactive, active ones are ANDed."""

    keyword: str | None = None
    min_count: float | None = None
    max_count: float | None = None
    selected_identifiers: Iterable[str] | None = None


def compare(list_a: Sequence[Record], list_b: Sequence[Record]) -> ComparisonResult:
    ids_a = {record.identifier for record in list_a if record.identifier}
    ids_b = {record.identifier for record in list_b if record.identifier}
    result = ComparisonResult(a_count=len(list_a), b_count=len(list_b))
    for record in list_a:
        if not record.identifier:
            result.unidentified_a.append(record)
        elif record.identifier in ids_b:
            result.in_both.append(record)
        else:
            result.only_in_a.append(record)
    for record in list_b:
        if not record.identifier:
            result.unidentified_b.append(record)
        elif record.identifier not in ids_a:
            result.only_in_b.append(record)
    return result


def merge(lists: Iterable[Sequence[Record]]) -> MergeResult:
    seen: set[str] = set()
    merged: list[Record] = []
    total = 0
    for records in lists:
        for record in records:
            total += 1
            if record.identifier is None:
                merged.append(record)
                continue
            if record.identifier in seen:
                continue
            seen.add(record.identifier)
            merged.append(record)
    return MergeResult(merged=merged, duplicate_count=total - len(merged))


def filter_records(records: Iterable[Record], criteria: RecordFilter) -> list[Record]:
    filtered = list(records)

    keyword = (criteria.keyword or "").strip().lower()
    if keyword:
        filtered = [
            record
            for record in filtered
            if keyword in record.display_name.lower()
            or (record.handle is not None and keyword in record.handle.lower())
        ]

    if criteria.min_count is not None or criteria.max_count is not None:
        low = criteria.min_count if criteria.min_count is not None else 0.0
        high = criteria.max_count if criteria.max_count is not None else math.inf
        filtered = [
            record
            for record in filtered
            if low <= parse_approximate_count(record.follower_count_text) <= high
        ]

    if criteria.selected_identifiers is not None:
        selected = set(criteria.selected_identifiers)
        filtered = [record for record in filtered if record.identifier in selected]

    return filtered


__all__ = [
    "CANONICAL_ID_PATTERN",
    "ComparisonResult",
    "DEFAULT_BASE_URL",
    "MergeResult",
    "Record",
    "RecordFilter",
    "channel_url_for",
    "compare",
    "filter_records",
    "identifier_from_href",
    "merge",
    "parse_approximate_count",
]
