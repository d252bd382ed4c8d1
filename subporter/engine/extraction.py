"""Listing extraction: scroll until the page stops growing, then map units to records."""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable
from urllib.parse import urljoin

import structlog

from ..config import ExtractionConfig
from ..errors import ExtractionError
from .events import ExtractComplete, ExtractProgress, ProgressSink, ScrollProgress, deliver
from .records import Record, identifier_from_href
from .surface import ListingSurface, ListingUnit, Probe, SurfaceState


class ExtractionPhase(str, Enum):
    SCROLLING = "scrolling"
    EXTRACTING = "extracting"
    DONE = "done"


@dataclass(slots=True)
class ExtractionReport:
    records: list[Record] = field(default_factory=list)
    discovered: int = 0
    dropped: int = 0
    scroll_attempts: int = 0

    @property
    def count(self) -> int:
        return len(self.records)


def record_from_unit(unit: ListingUnit, origin: str) -> Record | None:
    """Derive a record from one listing unit, or ``None`` when name/URL are missing."""

    name = (unit.name or "").strip()
    href = (unit.href or "").strip()
    if not name or not href:
        return None
    return Record(
        identifier=identifier_from_href(href),
        handle=unit.handle,
        display_name=name,
        target_url=urljoin(origin.rstrip("/") + "/", href),
        thumbnail_url=unit.thumbnail,
        follower_count_text=unit.count_text,
    )


class ExtractionEngine:
    """Drive a listing surface through ``Scrolling -> Extracting -> Done``."""

    def __init__(
        self,
        surface: ListingSurface,
        config: ExtractionConfig | None = None,
        *,
        progress: ProgressSink | None = None,
        sleep: Callable[[float], None] = time.sleep,
        logger: structlog.BoundLogger | None = None,
    ) -> None:
        self.surface = surface
        self.config = config or ExtractionConfig()
        self.progress = progress
        self._sleep = sleep
        self.logger = logger or structlog.get_logger("subporter").bind(component="extraction")
        self.phase = ExtractionPhase.SCROLLING

    def run(self, listing_url: str | None = None) -> ExtractionReport:
        """Run one full pass.

        When ``listing_url`` is given the surface is first navigated there and the
        signed-in probe is checked. Any surface-layer failure aborts the pass with
        ``ExtractionError``; individual units that fail to map are only dropped.
        """

        if self.phase is not ExtractionPhase.SCROLLING:
            raise ExtractionError("Extraction engine instances run only once")
        report = ExtractionReport()
        try:
            if listing_url:
                self.surface.navigate(listing_url)
                self._sleep(self.config.scroll_settle_delay)
                if self.surface.detect_state(Probe.ACCOUNT) is not SurfaceState.ACTIVE:
                    raise ExtractionError("Not signed in; log in before exporting")
            report.discovered, report.scroll_attempts = self._scroll_until_stable()
            self.phase = ExtractionPhase.EXTRACTING
            units = self.surface.units()
            origin = self.surface.origin
        except ExtractionError:
            self.phase = ExtractionPhase.DONE
            raise
        except Exception as exc:  # noqa: BLE001
            self.phase = ExtractionPhase.DONE
            self.logger.error("extraction_aborted", error=str(exc))
            raise ExtractionError(f"Listing surface failed: {exc}") from exc

        total = len(units)
        for index, unit in enumerate(units, start=1):
            try:
                record = record_from_unit(unit, origin)
            except Exception as exc:  # noqa: BLE001
                self.logger.warning("unit_mapping_failed", index=index, error=str(exc))
                record = None
            if record is None:
                report.dropped += 1
                self.logger.info(
                    "unit_dropped", index=index, name=unit.name, href=unit.href
                )
            else:
                report.records.append(record)
            if index % self.config.progress_every == 0:
                deliver(
                    self.progress,
                    ExtractProgress(extracted=len(report.records), total=total, current=index),
                    self.logger,
                )

        self.phase = ExtractionPhase.DONE
        deliver(
            self.progress,
            ExtractComplete(total=len(report.records), dropped=report.dropped),
            self.logger,
        )
        self.logger.info(
            "extraction_complete",
            discovered=report.discovered,
            extracted=len(report.records),
            dropped=report.dropped,
        )
        return report

    def _scroll_until_stable(self) -> tuple[int, int]:
        """Scroll until the extent is unchanged ``stable_rounds`` times in a row."""

        max_attempts = self.config.max_scroll_attempts
        last_extent = 0
        unchanged = 0
        attempts = 0
        for attempt in range(1, max_attempts + 1):
            attempts = attempt
            self.surface.scroll_to_end()
            self._sleep(self.config.scroll_settle_delay)
            measurement = self.surface.measure()
            deliver(
                self.progress,
                ScrollProgress(
                    current_count=measurement.item_count,
                    attempt=attempt,
                    max_attempts=max_attempts,
                ),
                self.logger,
            )
            self.logger.debug(
                "scroll_attempt",
                attempt=attempt,
                items=measurement.item_count,
                extent=measurement.extent,
            )
            if measurement.extent == last_extent:
                unchanged += 1
                if unchanged >= self.config.stable_rounds:
                    break
            else:
                unchanged = 0
            last_extent = measurement.extent
        final_count = self.surface.measure().item_count
        self.logger.info("scrolling_complete", items=final_count, attempts=attempts)
        return final_count, attempts


__all__ = ["ExtractionEngine", "ExtractionPhase", "ExtractionReport", "record_from_unit"]
