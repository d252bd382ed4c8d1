"""Command protocol wiring extraction, export files, the import job and persistence."""

from __future__ import annotations

import time
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Iterable, Iterator

from .config import BrowserConfig, ConfigRepository, GlobalConfig, Settings
from .engine.events import ProgressSink
from .engine.exporter import (
    ExportSnapshot,
    ImportBatch,
    JsonExporter,
    default_export_filename,
    exporter_for,
    read_export_file,
)
from .engine.extraction import ExtractionEngine, ExtractionReport
from .engine.job import JobController, JobResult, PersistedPhaseSignal, ResultStatus
from .engine.records import Record
from .engine.surface import ListingSurface
from .errors import ExtractionError, StorageError, SubporterError
from .infra.storage import StateStore
from .logging_conf import configure_logging, run_log

SurfaceFactory = Callable[[BrowserConfig], ListingSurface]


def _default_surface_factory(config: BrowserConfig) -> ListingSurface:
    from .engine.browser import PlaywrightSurface

    return PlaywrightSurface(config)


class Orchestrator:
    """Central coordinator owning the shared surface and the one job controller."""

    def __init__(
        self,
        config_repository: ConfigRepository,
        store: StateStore,
        surface_factory: SurfaceFactory | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.config_repository = config_repository
        self.global_config: GlobalConfig = config_repository.load_global_config()
        self.store = store
        self._surface_factory = surface_factory or _default_surface_factory
        self._sleep = sleep
        self._surface: ListingSurface | None = None
        self._controller: JobController | None = None
        self.logger = configure_logging().bind(component="orchestrator")

    # ------------------------------------------------------------------
    @property
    def surface(self) -> ListingSurface:
        if self._surface is None:
            self._surface = self._surface_factory(self.global_config.browser)
        return self._surface

    @property
    def controller(self) -> JobController:
        if self._controller is None:
            self._controller = JobController(
                self.surface,
                self.store,
                signal=PersistedPhaseSignal(self.store),
                settle_delay=self.global_config.settle_delay,
                sleep=self._sleep,
            )
        return self._controller

    def close(self) -> None:
        if self._surface is not None:
            self._surface.close()
            self._surface = None
        self._controller = None

    # export ---------------------------------------------------------------

    def extract(self, progress: ProgressSink | None = None) -> dict[str, Any]:
        try:
            report = self._run_extraction(progress)
        except ExtractionError as exc:
            return {"success": False, "error": str(exc)}
        return {"success": True, "records": report.records, "count": report.count}

    def _run_extraction(self, progress: ProgressSink | None) -> ExtractionReport:
        try:
            self.surface.ensure_ready()
        except SubporterError as exc:
            raise ExtractionError(str(exc)) from exc
        engine = ExtractionEngine(
            self.surface,
            self.global_config.extraction,
            progress=progress,
            sleep=self._sleep,
            logger=self.logger.bind(component="extraction"),
        )
        return engine.run(self.global_config.browser.listing_url)

    def export(
        self,
        output: Path | None = None,
        fmt: str = "json",
        progress: ProgressSink | None = None,
    ) -> dict[str, Any]:
        """Extract the listing and write it out; the JSON snapshot becomes the last export."""

        with run_log("export") as log:
            try:
                report = self._run_extraction(progress)
            except ExtractionError as exc:
                log.error("export_failed", error=str(exc))
                return {"success": False, "error": str(exc)}

            path = Path(output) if output else self.global_config.exports_dir / default_export_filename(fmt)
            exporter = exporter_for(path, fmt)
            try:
                exporter.export_many(report.records)
                exporter.flush()
            finally:
                exporter.close()

            snapshot = exporter.snapshot if isinstance(exporter, JsonExporter) else None
            if snapshot is None:
                snapshot = ExportSnapshot(records=report.records)
            self.store.save_last_export(snapshot.to_payload())
            log.info(
                "export_written",
                path=str(path),
                count=report.count,
                dropped=report.dropped,
                scroll_attempts=report.scroll_attempts,
            )
        return {
            "success": True,
            "path": str(path),
            "count": report.count,
            "dropped": report.dropped,
        }

    def last_export_records(self) -> list[Record]:
        snapshot = self.store.last_export()
        if not snapshot:
            return []
        base_url = self.global_config.browser.base_url
        return [Record.from_wire(item, base_url) for item in snapshot.get("subscriptions", [])]

    # settings -------------------------------------------------------------

    def resolve_settings(self, **overrides: Any) -> Settings:
        """Caller overrides, then saved settings, then ``global_config.yaml`` defaults."""

        saved = self.store.load_settings()
        return self.global_config.import_defaults.merged(**saved).merged(**overrides)

    def save_settings(self, **changes: Any) -> Settings:
        settings = self.resolve_settings(**changes)
        self.store.save_settings(settings)
        return settings

    # import ---------------------------------------------------------------

    def load_import_file(self, path: Path) -> ImportBatch:
        return read_export_file(path, self.global_config.browser.base_url)

    def failed_records_from_last_run(self) -> list[Record]:
        result = self.store.last_result() or {}
        failed = (result.get("outcomes") or {}).get("failed") or []
        base_url = self.global_config.browser.base_url
        return [Record.from_wire(item["record"], base_url) for item in failed]

    def start_import(
        self,
        records: Iterable[Record],
        settings: Settings | None = None,
        progress: ProgressSink | None = None,
    ) -> dict[str, Any]:
        records = list(records)
        settings = settings or self.resolve_settings()
        with self._import_run() as log:
            log.info("import_requested", total=len(records), **settings.model_dump())
            result = self.controller.start(records, settings, progress)
            return self._finish(result, log)

    def resume_import(self, progress: ProgressSink | None = None) -> dict[str, Any]:
        with self._import_run() as log:
            log.info("import_resume_requested")
            return self._finish(self.controller.resume(progress), log)

    @contextmanager
    def _import_run(self) -> Iterator[Any]:
        """Route the job controller's events into a per-run import log."""

        controller = self.controller
        previous = controller.logger
        with run_log("import") as log:
            controller.logger = log.bind(component="job")
            try:
                yield log
            finally:
                controller.logger = previous

    def pause_import(self) -> dict[str, Any]:
        applied = self.controller.pause()
        return {"success": applied, "phase": self.controller.get_state()["phase"]}

    def cancel_import(self) -> dict[str, Any]:
        applied = self.controller.cancel()
        return {"success": applied, "phase": self.controller.get_state()["phase"]}

    def import_state(self) -> dict[str, Any]:
        return self.controller.get_state()

    def reset_import(self) -> dict[str, Any]:
        self.controller.reset()
        return {"success": True, "phase": "idle"}

    def _finish(self, result: JobResult, log: Any) -> dict[str, Any]:
        payload = result.to_payload()
        if result.status in (ResultStatus.COMPLETED, ResultStatus.CANCELLED):
            payload_to_keep = {
                "status": result.status.value,
                "finishedAt": datetime.now(timezone.utc).isoformat(),
                "summary": result.summary(),
                "outcomes": result.outcomes.to_payload(),
            }
            try:
                self.store.save_last_result(payload_to_keep)
            except StorageError as exc:
                log.error("last_result_save_failed", error=str(exc))
        log.info("import_finished", status=result.status.value, error=result.error, **result.summary())
        return payload


__all__ = ["Orchestrator", "SurfaceFactory"]
