"""Progress events pushed by the engines, and best-effort delivery."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Protocol, Union

import structlog

if TYPE_CHECKING:
    from .job import Outcomes
    from .records import Record


@dataclass(slots=True, frozen=True)
class ScrollProgress:
    current_count: int
    attempt: int
    max_attempts: int
    kind: str = "scroll_progress"


@dataclass(slots=True, frozen=True)
class ExtractProgress:
    extracted: int
    total: int
    current: int
    kind: str = "extract_progress"


@dataclass(slots=True, frozen=True)
class ExtractComplete:
    total: int
    dropped: int = 0
    kind: str = "complete"


@dataclass(slots=True, frozen=True)
class ImportProgress:
    current: int
    total: int
    current_record: "Record"
    outcomes: "Outcomes"
    kind: str = "import_progress"


ProgressEvent = Union[ScrollProgress, ExtractProgress, ExtractComplete, ImportProgress]


class ProgressSink(Protocol):
    def publish(self, event: ProgressEvent) -> None:
        ...


def deliver(
    sink: ProgressSink | None,
    event: ProgressEvent,
    logger: structlog.BoundLogger | None = None,
) -> None:
    """Push an event without ever letting the listener affect the caller."""

    if sink is None:
        return
    try:
        sink.publish(event)
    except Exception as exc:  # noqa: BLE001
        (logger or structlog.get_logger("subporter")).debug(
            "progress_delivery_failed", kind=event.kind, error=str(exc)
        )


__all__ = [
    "ExtractComplete",
    "ExtractProgress",
    "ImportProgress",
    "ProgressEvent",
    "ProgressSink",
    "ScrollProgress",
    "deliver",
]
