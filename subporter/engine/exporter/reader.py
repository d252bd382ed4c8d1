"""Read and validate export files used as import input."""

from __future__ import annotations

import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import structlog
from pydantic import ValidationError

from ...errors import ImportFileError
from ..records import DEFAULT_BASE_URL, Record

logger = structlog.get_logger("subporter").bind(component="import_file")


@dataclass(slots=True)
class ImportBatch:
    records: list[Record]
    invalid_count: int = 0
    source: str | None = None
    exported_at: str | None = None
    format_version: str | None = None


def parse_export_payload(data: Any, base_url: str = DEFAULT_BASE_URL) -> ImportBatch:
    """Validate a decoded export document.

    Malformed entries are dropped and counted; the whole document is rejected
    only when there is no ``subscriptions`` array, it is empty, or nothing valid
    is left after dropping.
    """

    if not isinstance(data, dict):
        raise ImportFileError("Export file must contain a JSON object")
    entries = data.get("subscriptions")
    if not isinstance(entries, list):
        raise ImportFileError('Invalid format: missing or invalid "subscriptions" array')
    if not entries:
        raise ImportFileError("No subscriptions found in file")

    records: list[Record] = []
    invalid = 0
    for index, entry in enumerate(entries):
        if not isinstance(entry, dict):
            invalid += 1
            logger.warning("import_entry_invalid", index=index, reason="not an object")
            continue
        try:
            records.append(Record.from_wire(entry, base_url))
        except ValidationError as exc:
            invalid += 1
            logger.warning("import_entry_invalid", index=index, reason=str(exc.errors()[0]["msg"]))
    if not records:
        raise ImportFileError("No valid subscriptions found in file")

    version = data.get("formatVersion") or data.get("version")
    return ImportBatch(
        records=records,
        invalid_count=invalid,
        source=data.get("source"),
        exported_at=data.get("exportedAt"),
        format_version=str(version) if version is not None else None,
    )


def read_export_file(path: Path, base_url: str = DEFAULT_BASE_URL) -> ImportBatch:
    path = Path(path)
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise ImportFileError(f"Cannot read {path}: {exc}") from exc
    try:
        data = json.loads(text)
    except json.JSONDecodeError as exc:
        raise ImportFileError(f"{path} is not valid JSON: {exc.msg}") from exc
    batch = parse_export_payload(data, base_url)
    logger.info(
        "import_file_loaded",
        path=str(path),
        records=len(batch.records),
        invalid=batch.invalid_count,
    )
    return batch


__all__ = ["ImportBatch", "parse_export_payload", "read_export_file"]
