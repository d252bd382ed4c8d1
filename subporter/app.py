"""Typer CLI entrypoint for Subporter."""

from __future__ import annotations

import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Any, List, Optional, Sequence

import typer
from rich import box
from rich.console import Console
from rich.table import Table

from .config import ConfigRepository
from .engine.exporter import JsonExporter, write_comparison
from .engine.records import (
    Record,
    RecordFilter,
    compare,
    filter_records,
    merge,
    parse_approximate_count,
)
from .errors import JobStateError, SubporterError
from .infra.storage import StateStore
from .logging_conf import RUN_KINDS, app_log_path, available_run_logs, configure_logging, run_log_path, tail_log
from .orchestrator import Orchestrator
from .ui import ExtractionActivity, ImportProgressReporter

app = typer.Typer(
    help="Subporter 订阅迁移命令行工具",
    no_args_is_help=True,
    rich_markup_mode=None,
)
import_app = typer.Typer(
    name="import",
    help="订阅导入任务命令",
    no_args_is_help=True,
    rich_markup_mode=None,
)
settings_app = typer.Typer(
    name="settings",
    help="导入节流设置",
    no_args_is_help=True,
    rich_markup_mode=None,
)
log_app = typer.Typer(
    name="log",
    help="日志查看命令",
    no_args_is_help=True,
    rich_markup_mode=None,
)

console = Console()


@dataclass
class AppState:
    repository: ConfigRepository
    store: StateStore
    orchestrator: Orchestrator


def build_state(verbose: bool) -> AppState:
    configure_logging(verbose=verbose)
    repository = ConfigRepository()
    global_config = repository.load_global_config()
    store = StateStore(global_config.database_path)
    orchestrator = Orchestrator(config_repository=repository, store=store)
    return AppState(repository=repository, store=store, orchestrator=orchestrator)


def _get_state(ctx: typer.Context) -> AppState:
    state = ctx.obj
    if state is None:
        state = build_state(verbose=False)
        ctx.obj = state
    return state


def _stdout_is_tty() -> bool:
    return bool(getattr(sys.stdout, "isatty", lambda: False)())


# 进度条策略：命令行开关优先；否则遵循 enable_progress_bar，且仅在交互式终端显示
def _progress_enabled(state: AppState, option: Optional[bool]) -> bool:
    if option is not None:
        return option
    return state.orchestrator.global_config.enable_progress_bar and _stdout_is_tty()


def _fail(message: str) -> None:
    console.print(message, style="red")
    raise typer.Exit(code=1)


def _load_records(state: AppState, path: Path) -> list[Record]:
    try:
        batch = state.orchestrator.load_import_file(path)
    except SubporterError as exc:
        _fail(f"无法读取 {path}：{exc}")
    if batch.invalid_count:
        console.print(f"{path.name}：已忽略 {batch.invalid_count} 条无效记录。", style="yellow")
    return batch.records


def _write_records(records: Sequence[Record], output: Path) -> None:
    exporter = JsonExporter(output)
    try:
        exporter.export_many(records)
        exporter.flush()
    finally:
        exporter.close()


def _render_summary_table(title: str, summary: dict[str, Any]) -> Table:
    table = Table(title=title, box=box.SIMPLE_HEAD)
    table.add_column("总数", justify="right")
    table.add_column("成功", style="green", justify="right")
    table.add_column("失败", style="red", justify="right")
    table.add_column("跳过", style="yellow", justify="right")
    table.add_row(
        str(summary.get("total", 0)),
        str(summary.get("succeeded", 0)),
        str(summary.get("failed", 0)),
        str(summary.get("skipped", 0)),
    )
    return table


def _render_failures(outcomes: dict[str, Any], limit: int = 10) -> Table | None:
    failed = outcomes.get("failed") or []
    if not failed:
        return None
    table = Table(title=f"失败明细 · 共 {len(failed)} 条", box=box.SIMPLE_HEAD)
    table.add_column("频道", style="cyan", overflow="fold")
    table.add_column("原因", style="red", overflow="fold")
    for item in failed[:limit]:
        table.add_row(str(item["record"].get("channelName", "-")), str(item.get("reason", "")))
    return table


def _render_records_table(title: str, records: Sequence[Record], limit: int = 20) -> Table:
    table = Table(title=f"{title} · 共 {len(records)} 个", box=box.SIMPLE_HEAD)
    table.add_column("名称", style="cyan", overflow="fold")
    table.add_column("标识", style="magenta", no_wrap=True)
    table.add_column("订阅数", style="green", justify="right")
    for record in records[:limit]:
        table.add_row(
            record.display_name,
            record.identifier or record.handle or "-",
            record.follower_count_text or "-",
        )
    if len(records) > limit:
        table.caption = f"仅显示前 {limit} 个"
    return table


def _report_import_result(payload: dict[str, Any]) -> None:
    status = payload.get("status")
    if status == "paused":
        progress = payload.get("progress") or {}
        console.print(
            f"任务已暂停：已处理 {progress.get('current', 0)}/{progress.get('total', 0)}，"
            "使用 `subporter import resume` 继续。",
            style="yellow",
        )
        return
    if status == "cancelled":
        console.print("任务已取消，已完成的操作不会回滚。", style="yellow")
        console.print(_render_summary_table("取消前结果", payload.get("summary") or {}))
        return
    if status == "failed":
        console.print(f"任务中止：{payload.get('error')}", style="red")
        console.print("检查点已保留，可使用 `subporter import resume` 继续。", style="dim")
        failures = _render_failures(payload.get("outcomes") or {})
        if failures is not None:
            console.print(failures)
        raise typer.Exit(code=1)
    console.print(_render_summary_table("导入结果", payload.get("summary") or {}))
    failures = _render_failures(payload.get("outcomes") or {})
    if failures is not None:
        console.print(failures)
        console.print("可使用 `subporter import start --retry-failed` 重试失败项。", style="dim")


def _run_import(state: AppState, action, total: int, completed: int, show_progress: bool) -> None:
    reporter = ImportProgressReporter(enabled=show_progress)
    reporter.start(total, completed=completed)
    try:
        payload = action(reporter)
    except KeyboardInterrupt:
        reporter.close()
        state.orchestrator.pause_import()
        console.print("已中断，任务转为暂停状态。", style="yellow")
        raise typer.Exit(code=130)
    except JobStateError as exc:
        reporter.close()
        _fail(str(exc))
    reporter.close()
    _report_import_result(payload)


app.add_typer(import_app, name="import", help="导入订阅（start/pause/resume/cancel/status/reset）")
app.add_typer(settings_app, name="settings", help="查看或修改导入节流设置")
app.add_typer(log_app, name="log", help="查看日志文件")


@app.callback()
def main(
    ctx: typer.Context, verbose: bool = typer.Option(False, "--verbose", help="开启调试日志", is_flag=True)
) -> None:
    ctx.obj = build_state(verbose)


# ---------------------------------------------------------------------------
# export
# ---------------------------------------------------------------------------


@app.command("export", help="从订阅页提取全部频道并导出为文件。")
def export_command(
    ctx: typer.Context,
    output: Optional[Path] = typer.Option(None, "--output", "-o", help="输出文件路径（默认写入 exports 目录）。"),
    fmt: str = typer.Option("json", "--format", "-f", help="输出格式：json 或 csv。"),
    show_progress: Optional[bool] = typer.Option(
        None, "--progress/--no-progress", help="是否显示进度。"
    ),
) -> None:
    if fmt not in ("json", "csv"):
        raise typer.BadParameter("仅支持 json 或 csv。", param_hint="--format")
    state = _get_state(ctx)
    activity = ExtractionActivity(enabled=_progress_enabled(state, show_progress), console=console)
    activity.start("正在打开订阅页面，请稍候…")
    try:
        result = state.orchestrator.export(output, fmt, progress=activity)
    finally:
        activity.close()
        state.orchestrator.close()
    if not result.get("success"):
        _fail(f"导出失败：{result.get('error')}")
    console.print(f"已导出 {result['count']} 个订阅 → {result['path']}", style="green")
    if result.get("dropped"):
        console.print(f"有 {result['dropped']} 个条目缺少名称或链接，已跳过。", style="yellow")


# ---------------------------------------------------------------------------
# import
# ---------------------------------------------------------------------------


@import_app.command("start", help="从导出文件开始新的导入任务。")
def import_start(
    ctx: typer.Context,
    file: Optional[Path] = typer.Argument(None, help="导出文件路径。"),
    delay: Optional[float] = typer.Option(None, "--delay", help="每个频道之间的等待秒数。"),
    batch_size: Optional[int] = typer.Option(None, "--batch-size", help="每批处理的频道数。"),
    batch_pause: Optional[float] = typer.Option(None, "--batch-pause", help="批次之间的额外等待秒数。"),
    retry_failed: bool = typer.Option(False, "--retry-failed", help="仅重试上一次任务中失败的频道。"),
    show_progress: Optional[bool] = typer.Option(
        None, "--progress/--no-progress", help="是否显示进度条。"
    ),
) -> None:
    state = _get_state(ctx)
    if retry_failed:
        records = state.orchestrator.failed_records_from_last_run()
        if not records:
            _fail("上一次任务没有失败的频道可重试。")
    elif file is None:
        _fail("请提供导出文件路径，或使用 --retry-failed。")
    else:
        records = _load_records(state, file)
    try:
        settings = state.orchestrator.resolve_settings(
            delay_between_items=delay,
            batch_size=batch_size,
            batch_pause_duration=batch_pause,
        )
    except ValueError as exc:
        _fail(f"设置无效：{exc}")
    console.print(
        f"共 {len(records)} 个频道；间隔 {settings.delay_between_items}s，"
        f"每 {settings.batch_size} 个暂停 {settings.batch_pause_duration}s。",
        style="cyan",
    )
    try:
        _run_import(
            state,
            lambda reporter: state.orchestrator.start_import(records, settings, progress=reporter),
            total=len(records),
            completed=0,
            show_progress=_progress_enabled(state, show_progress),
        )
    finally:
        state.orchestrator.close()


@import_app.command("resume", help="从检查点继续导入任务。")
def import_resume(
    ctx: typer.Context,
    show_progress: Optional[bool] = typer.Option(
        None, "--progress/--no-progress", help="是否显示进度条。"
    ),
) -> None:
    state = _get_state(ctx)
    progress = state.orchestrator.import_state().get("progress") or {}
    try:
        _run_import(
            state,
            lambda reporter: state.orchestrator.resume_import(progress=reporter),
            total=int(progress.get("total", 0)),
            completed=int(progress.get("current", 0)),
            show_progress=_progress_enabled(state, show_progress),
        )
    finally:
        state.orchestrator.close()


@import_app.command("pause", help="请求暂停正在运行的导入任务。")
def import_pause(ctx: typer.Context) -> None:
    state = _get_state(ctx)
    result = state.orchestrator.pause_import()
    if result["success"]:
        console.print("已请求暂停，当前频道处理完后生效。", style="green")
    else:
        console.print(f"没有运行中的任务（当前状态：{result['phase']}）。", style="dim")


@import_app.command("cancel", help="取消运行中或已暂停的导入任务。")
def import_cancel(ctx: typer.Context) -> None:
    state = _get_state(ctx)
    result = state.orchestrator.cancel_import()
    if result["success"]:
        console.print("已请求取消。", style="green")
    else:
        console.print(f"没有可取消的任务（当前状态：{result['phase']}）。", style="dim")


@import_app.command("status", help="查看导入任务状态。")
def import_status(ctx: typer.Context) -> None:
    state = _get_state(ctx)
    snapshot = state.orchestrator.import_state()
    table = Table(title="导入任务状态", box=box.SIMPLE_HEAD)
    table.add_column("状态", style="cyan")
    table.add_column("进度", style="green")
    table.add_column("成功", style="green", justify="right")
    table.add_column("失败", style="red", justify="right")
    table.add_column("跳过", style="yellow", justify="right")
    progress = snapshot.get("progress")
    if progress:
        table.add_row(
            snapshot["phase"],
            f"{progress['current']}/{progress['total']}",
            str(progress["succeeded"]),
            str(progress["failed"]),
            str(progress["skipped"]),
        )
    else:
        table.add_row(snapshot["phase"], "-", "-", "-", "-")
    console.print(table)


@import_app.command("reset", help="清除检查点并将任务状态重置为空闲。")
def import_reset(
    ctx: typer.Context,
    yes: bool = typer.Option(False, "--yes", "-y", help="跳过确认。"),
) -> None:
    state = _get_state(ctx)
    if not yes and not typer.confirm("确认清除导入检查点？"):
        raise typer.Exit()
    try:
        state.orchestrator.reset_import()
    except JobStateError as exc:
        _fail(str(exc))
    console.print("检查点已清除。", style="green")


# ---------------------------------------------------------------------------
# settings
# ---------------------------------------------------------------------------


@settings_app.command("show", help="显示当前生效的导入设置。")
def settings_show(ctx: typer.Context) -> None:
    state = _get_state(ctx)
    settings = state.orchestrator.resolve_settings()
    table = Table(title="导入设置", box=box.SIMPLE_HEAD)
    table.add_column("项目", style="cyan")
    table.add_column("值", style="green")
    table.add_row("delay_between_items", f"{settings.delay_between_items}s")
    table.add_row("batch_size", str(settings.batch_size))
    table.add_row("batch_pause_duration", f"{settings.batch_pause_duration}s")
    console.print(table)


@settings_app.command("set", help="保存导入设置。")
def settings_set(
    ctx: typer.Context,
    delay: Optional[float] = typer.Option(None, "--delay", help="每个频道之间的等待秒数。"),
    batch_size: Optional[int] = typer.Option(None, "--batch-size", help="每批处理的频道数。"),
    batch_pause: Optional[float] = typer.Option(None, "--batch-pause", help="批次之间的额外等待秒数。"),
) -> None:
    state = _get_state(ctx)
    try:
        settings = state.orchestrator.save_settings(
            delay_between_items=delay,
            batch_size=batch_size,
            batch_pause_duration=batch_pause,
        )
    except ValueError as exc:
        _fail(f"设置无效：{exc}")
    console.print(
        f"已保存：间隔 {settings.delay_between_items}s，批大小 {settings.batch_size}，"
        f"批间暂停 {settings.batch_pause_duration}s。",
        style="green",
    )


# ---------------------------------------------------------------------------
# record algebra
# ---------------------------------------------------------------------------


@app.command("compare", help="比较两个导出文件的订阅差异。")
def compare_command(
    ctx: typer.Context,
    file_a: Path = typer.Argument(..., help="文件 A。"),
    file_b: Optional[Path] = typer.Argument(None, help="文件 B。"),
    against_last: bool = typer.Option(False, "--against-last", help="以最近一次导出作为 B。"),
    show: int = typer.Option(20, "--show", help="每个分组最多列出的频道数。"),
    output: Optional[Path] = typer.Option(None, "--output", "-o", help="将比较结果写入 JSON 文件。"),
) -> None:
    state = _get_state(ctx)
    records_a = _load_records(state, file_a)
    if against_last:
        records_b = state.orchestrator.last_export_records()
        if not records_b:
            _fail("尚无导出记录。")
    elif file_b is None:
        _fail("请提供文件 B，或使用 --against-last。")
    else:
        records_b = _load_records(state, file_b)

    result = compare(records_a, records_b)
    counts = result.counts()
    table = Table(title="比较结果", box=box.SIMPLE_HEAD)
    table.add_column("A 总数", justify="right")
    table.add_column("B 总数", justify="right")
    table.add_column("仅在 A", style="cyan", justify="right")
    table.add_column("仅在 B", style="magenta", justify="right")
    table.add_column("共同", style="green", justify="right")
    table.add_column("无标识", style="dim", justify="right")
    table.add_row(
        str(counts["a_count"]),
        str(counts["b_count"]),
        str(counts["only_in_a"]),
        str(counts["only_in_b"]),
        str(counts["in_both"]),
        str(counts["unidentified_a"] + counts["unidentified_b"]),
    )
    console.print(table)
    if show > 0:
        if result.only_in_a:
            console.print(_render_records_table("仅在 A", result.only_in_a, show))
        if result.only_in_b:
            console.print(_render_records_table("仅在 B", result.only_in_b, show))
    if output is not None:
        written = write_comparison(result, output)
        console.print(f"已写入比较结果 → {written}", style="green")


@app.command("merge", help="合并多个导出文件并去重。")
def merge_command(
    ctx: typer.Context,
    files: List[Path] = typer.Argument(..., help="要合并的导出文件。"),
    output: Path = typer.Option(..., "--output", "-o", help="合并结果输出路径。"),
) -> None:
    state = _get_state(ctx)
    lists = [_load_records(state, path) for path in files]
    result = merge(lists)
    _write_records(result.merged, output)
    console.print(
        f"已合并 {len(files)} 个文件：{len(result.merged)} 个频道，去除重复 {result.duplicate_count} 个 → {output}",
        style="green",
    )


@app.command("filter", help="按关键词、订阅数或标识筛选导出文件。")
def filter_command(
    ctx: typer.Context,
    file: Path = typer.Argument(..., help="导出文件。"),
    keyword: Optional[str] = typer.Option(None, "--keyword", "-k", help="匹配名称或 @handle（不区分大小写）。"),
    min_count: Optional[str] = typer.Option(None, "--min", help="最小订阅数，如 10K。"),
    max_count: Optional[str] = typer.Option(None, "--max", help="最大订阅数，如 1.5M。"),
    ids: Optional[List[str]] = typer.Option(None, "--id", help="只保留这些频道标识（可重复）。"),
    output: Optional[Path] = typer.Option(None, "--output", "-o", help="将结果写入新的导出文件。"),
) -> None:
    state = _get_state(ctx)
    records = _load_records(state, file)
    criteria = RecordFilter(
        keyword=keyword,
        min_count=parse_approximate_count(min_count) if min_count else None,
        max_count=parse_approximate_count(max_count) if max_count else None,
        selected_identifiers=ids or None,
    )
    filtered = filter_records(records, criteria)
    console.print(_render_records_table("筛选结果", filtered))
    if output is not None:
        _write_records(filtered, output)
        console.print(f"已写入 {len(filtered)} 个频道 → {output}", style="green")


# ---------------------------------------------------------------------------
# logs
# ---------------------------------------------------------------------------


@log_app.command("list", help="列出各次运行的日志文件。")
def log_list(
    kind: Optional[str] = typer.Option(None, "--kind", help="只列出 export 或 import 运行。"),
) -> None:
    if kind is not None and kind not in RUN_KINDS:
        raise typer.BadParameter("仅支持 export 或 import。", param_hint="--kind")
    logs = available_run_logs(kind)
    console.print("日志文件：", style="cyan")
    if not logs:
        console.print("暂未生成任何运行日志。", style="dim")
        return
    table = Table(box=box.SIMPLE_HEAD)
    table.add_column("文件名", style="green")
    table.add_column("类型", style="cyan")
    for path in logs:
        table.add_row(path.name, path.stem.split("-", 1)[0])
    console.print(table)


@log_app.command("show", help="查看日志的最近内容。")
def log_show(
    run: Optional[str] = typer.Option(None, "--run", help="运行日志名称（为空则展示全局日志）。"),
    tail: int = typer.Option(100, "--tail", help="显示最近 N 行内容。"),
) -> None:
    if run:
        path = run_log_path(run)
    else:
        path = app_log_path()
    lines = tail_log(path, tail)
    if not lines:
        console.print("暂无日志信息，请稍后再试。", style="dim")
        return
    header = f"{'运行日志' if run else '全局日志'} · 最近 {len(lines)} 行"
    console.print(header, style="cyan")
    console.print("".join(lines), markup=False, highlight=False)


def cli() -> None:
    app()


if __name__ == "__main__":  # pragma: no cover
    cli()
