from __future__ import annotations

from datetime import datetime, timezone

import pytest

from subporter.logging_conf import available_run_logs, run_log, run_log_path, run_tag, tail_log


def test_run_tag_names_kind_and_start_time() -> None:
    started = datetime(2024, 5, 1, 10, 15, 0, tzinfo=timezone.utc)
    assert run_tag("import", started) == "import-20240501-101500"
    with pytest.raises(ValueError):
        run_tag("crawl", started)


def test_run_log_writes_file_and_detaches_handler(subporter_home) -> None:
    with run_log("export") as log:
        log.info("export_written", count=3)

    logs = available_run_logs("export")
    assert len(logs) == 1
    assert "export_written" in logs[0].read_text(encoding="utf-8")
    assert available_run_logs("import") == []
    assert run_log_path(logs[0].name) == logs[0]
    assert run_log_path(logs[0].stem) == logs[0]


def test_tail_log_returns_trailing_lines(tmp_path) -> None:
    path = tmp_path / "sample.log"
    path.write_text("".join(f"line {i}\n" for i in range(10)), encoding="utf-8")
    assert tail_log(path, 3) == ["line 7\n", "line 8\n", "line 9\n"]
    assert tail_log(path, 0) == []
    assert tail_log(tmp_path / "missing.log") == []
