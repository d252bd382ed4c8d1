"""File exporters for the subscription export format (JSON) and a flat CSV view."""

from __future__ import annotations

import csv
import json
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from pathlib import Path
from typing import Any

from ..records import ComparisonResult, Record
from .base import BaseExporter

FORMAT_VERSION = "1.0"
DEFAULT_SOURCE = "YouTube Subporter"
COMPARISON_SOURCE = "YouTube Subporter - Comparison"
CSV_FIELDS = [
    "channelId",
    "channelHandle",
    "channelName",
    "channelUrl",
    "thumbnailUrl",
    "subscriberCount",
    "extractedAt",
]


def default_export_filename(fmt: str = "json", today: date | None = None) -> str:
    day = (today or datetime.now().date()).isoformat()
    extension = "csv" if fmt == "csv" else "json"
    return f"youtube-subscriptions-{day}.{extension}"


def default_comparison_filename(today: date | None = None) -> str:
    day = (today or datetime.now().date()).isoformat()
    return f"subscription-comparison-{day}.json"


def _write_json(path: Path, payload: dict[str, Any]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    # write-then-rename
    tmp_path = path.with_suffix(path.suffix + ".tmp")
    with tmp_path.open("w", encoding="utf-8") as stream:
        json.dump(payload, stream, ensure_ascii=False, indent=2)
    tmp_path.replace(path)


@dataclass(slots=True)
class ExportSnapshot:
    """One export run; written as the file body and kept as the last export."""

    records: list[Record]
    source: str = DEFAULT_SOURCE
    exported_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    format_version: str = FORMAT_VERSION

    @property
    def total(self) -> int:
        return len(self.records)

    def to_payload(self) -> dict[str, Any]:
        return {
            "formatVersion": self.format_version,
            "exportedAt": self.exported_at.isoformat(),
            "source": self.source,
            "totalSubscriptions": self.total,
            "subscriptions": [record.to_wire() for record in self.records],
        }


class JsonExporter(BaseExporter):
    """Buffer records and write a single export document on flush."""

    def __init__(self, path: Path, source: str = DEFAULT_SOURCE) -> None:
        self.path = Path(path)
        self.source = source
        self._records: list[Record] = []
        self.snapshot: ExportSnapshot | None = None

    def export(self, record: Record) -> None:
        self._records.append(record)

    def flush(self) -> None:
        self.snapshot = ExportSnapshot(records=list(self._records), source=self.source)
        _write_json(self.path, self.snapshot.to_payload())

    def close(self) -> None:
        self._records.clear()


class CsvExporter(BaseExporter):
    """Write records as CSV rows keyed by the export field names."""

    def __init__(self, path: Path) -> None:
        self.path = Path(path)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._file = self.path.open("w", encoding="utf-8", newline="")
        self._writer = csv.DictWriter(self._file, fieldnames=CSV_FIELDS)
        self._writer.writeheader()

    def export(self, record: Record) -> None:
        row = record.to_wire()
        self._writer.writerow({name: row.get(name) or "" for name in CSV_FIELDS})

    def flush(self) -> None:
        self._file.flush()

    def close(self) -> None:
        if not self._file.closed:
            self._file.close()


def comparison_payload(
    result: ComparisonResult, exported_at: datetime | None = None
) -> dict[str, Any]:
    """Diff document: file 1 is the ``a`` side of the comparison, file 2 the ``b`` side."""

    def wire(records: list[Record]) -> list[dict[str, Any]]:
        return [record.to_wire() for record in records]

    return {
        "version": FORMAT_VERSION,
        "exportedAt": (exported_at or datetime.now(timezone.utc)).isoformat(),
        "source": COMPARISON_SOURCE,
        "comparison": {
            "onlyInFile1": wire(result.only_in_a),
            "onlyInFile2": wire(result.only_in_b),
            "inBoth": wire(result.in_both),
            "unidentifiedInFile1": wire(result.unidentified_a),
            "unidentifiedInFile2": wire(result.unidentified_b),
        },
    }


def write_comparison(result: ComparisonResult, path: Path) -> Path:
    """Write the diff document; an existing directory gets the dated default name."""

    path = Path(path)
    if path.is_dir():
        path = path / default_comparison_filename()
    _write_json(path, comparison_payload(result))
    return path


def exporter_for(path: Path, fmt: str = "json", source: str = DEFAULT_SOURCE) -> BaseExporter:
    if fmt == "json":
        return JsonExporter(path, source=source)
    if fmt == "csv":
        return CsvExporter(path)
    raise ValueError(f"Unsupported export format: {fmt}")


__all__ = [
    "COMPARISON_SOURCE",
    "CSV_FIELDS",
    "CsvExporter",
    "DEFAULT_SOURCE",
    "ExportSnapshot",
    "FORMAT_VERSION",
    "JsonExporter",
    "comparison_payload",
    "default_comparison_filename",
    "default_export_filename",
    "exporter_for",
    "write_comparison",
]
