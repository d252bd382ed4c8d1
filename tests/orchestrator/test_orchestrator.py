from __future__ import annotations

import json

import pytest

from subporter.config import GlobalConfig, Settings
from subporter.engine.surface import SurfaceState
from subporter.infra.storage import StateStore
from subporter.logging_conf import available_run_logs, tail_log
from subporter.orchestrator import Orchestrator

FAST = Settings(delay_between_items=0, batch_size=10, batch_pause_duration=0)


@pytest.fixture
def build_orchestrator(temp_config_repository, recording_sleep):
    created: list[Orchestrator] = []

    def _builder(surface, global_config: GlobalConfig | None = None) -> Orchestrator:
        if global_config is not None:
            temp_config_repository.save_global_config(global_config)
        config = temp_config_repository.load_global_config()
        store = StateStore(config.database_path)
        orchestrator = Orchestrator(
            temp_config_repository,
            store,
            surface_factory=lambda browser_config: surface,
            sleep=recording_sleep,
        )
        created.append(orchestrator)
        return orchestrator

    yield _builder
    for orchestrator in created:
        orchestrator.close()
        orchestrator.store.close()


def test_settings_resolution_order(build_orchestrator, scripted_surface) -> None:
    orchestrator = build_orchestrator(
        scripted_surface(),
        GlobalConfig(import_defaults=Settings(delay_between_items=1.0, batch_size=4)),
    )
    assert orchestrator.resolve_settings().batch_size == 4

    orchestrator.save_settings(batch_size=6)
    resolved = orchestrator.resolve_settings(delay_between_items=0.2)

    assert resolved == Settings(delay_between_items=0.2, batch_size=6, batch_pause_duration=10.0)


def test_export_writes_file_and_snapshot(build_orchestrator, listing_surface, tmp_path, timeline) -> None:
    surface = listing_surface([(5, 500)], units=5)
    orchestrator = build_orchestrator(surface)
    output = tmp_path / "out.json"

    result = orchestrator.export(output)

    assert result == {"success": True, "path": str(output), "count": 5, "dropped": 0}
    payload = json.loads(output.read_text(encoding="utf-8"))
    assert payload["totalSubscriptions"] == 5
    assert orchestrator.store.last_export()["totalSubscriptions"] == 5
    assert len(orchestrator.last_export_records()) == 5
    assert timeline.navigations() == ["https://www.youtube.com/feed/channels"]


def test_export_defaults_to_exports_dir(build_orchestrator, listing_surface) -> None:
    orchestrator = build_orchestrator(listing_surface([(2, 200)], units=2))
    result = orchestrator.export(fmt="csv")
    assert result["success"]
    assert result["path"].startswith(str(orchestrator.global_config.exports_dir))
    assert result["path"].endswith(".csv")
    assert orchestrator.store.last_export()["totalSubscriptions"] == 2


def test_extract_reports_failure_instead_of_raising(build_orchestrator, listing_surface) -> None:
    orchestrator = build_orchestrator(listing_surface([(2, 200)], units=2, account=SurfaceState.ABSENT))
    result = orchestrator.extract()
    assert result["success"] is False
    assert "Not signed in" in result["error"]
    assert orchestrator.store.last_export() is None


def test_extract_returns_records(build_orchestrator, listing_surface) -> None:
    orchestrator = build_orchestrator(listing_surface([(3, 300)], units=3))
    result = orchestrator.extract()
    assert result["success"] is True
    assert result["count"] == 3
    assert len(result["records"]) == 3


def test_import_keeps_last_result_for_retry(build_orchestrator, scripted_surface, make_record) -> None:
    records = [make_record(i) for i in range(1, 4)]
    surface = scripted_surface({records[1].target_url: SurfaceState.ABSENT})
    orchestrator = build_orchestrator(surface)

    payload = orchestrator.start_import(records, FAST)

    assert payload["success"] is True
    assert payload["summary"] == {"total": 3, "succeeded": 2, "failed": 1, "skipped": 0}
    assert orchestrator.store.last_result()["status"] == "completed"
    retry = orchestrator.failed_records_from_last_run()
    assert [r.identifier for r in retry] == [records[1].identifier]
    assert orchestrator.import_state() == {"phase": "completed", "progress": None}


def test_pause_and_cancel_without_job(build_orchestrator, scripted_surface) -> None:
    orchestrator = build_orchestrator(scripted_surface())
    assert orchestrator.pause_import() == {"success": False, "phase": "idle"}
    assert orchestrator.cancel_import() == {"success": False, "phase": "idle"}
    assert orchestrator.reset_import() == {"success": True, "phase": "idle"}


def test_load_import_file(build_orchestrator, scripted_surface, write_export, make_record) -> None:
    orchestrator = build_orchestrator(scripted_surface())
    path = write_export("subs.json", [make_record(1), {"channelName": ""}])
    batch = orchestrator.load_import_file(path)
    assert len(batch.records) == 1
    assert batch.invalid_count == 1


def test_import_and_export_runs_get_their_own_logs(
    build_orchestrator, listing_surface, make_record, tmp_path
) -> None:
    orchestrator = build_orchestrator(listing_surface([(2, 200)], units=2))

    orchestrator.start_import([make_record(1)], FAST)
    orchestrator.export(tmp_path / "out.json")

    import_logs = available_run_logs("import")
    assert len(import_logs) == 1
    text = "".join(tail_log(import_logs[0], 50))
    assert "job_completed" in text
    assert "import_finished" in text
    assert len(available_run_logs("export")) == 1
