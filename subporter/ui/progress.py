"""Terminal progress sinks with Rich-based rendering."""

from __future__ import annotations

from dataclasses import dataclass

from rich.console import Console
from rich.errors import LiveError
from rich.progress import (
    BarColumn,
    Progress,
    ProgressColumn,
    SpinnerColumn,
    Task,
    TaskID,
    TaskProgressColumn,
    TextColumn,
    TimeElapsedColumn,
)
from rich.status import Status
from rich.text import Text

from ..engine.events import ExtractComplete, ExtractProgress, ImportProgress, ProgressEvent, ScrollProgress


@dataclass
class ProgressState:
    total: int
    completed: int = 0
    success: int = 0
    failed: int = 0
    skipped: int = 0
    current_name: str | None = None


class RateColumn(ProgressColumn):
    """
    显示导入速率的自定义列

    渲染每秒处理的频道数量，格式为 "X.XX item/s"
    """

    def render(self, task: Task) -> Text:
        speed = task.finished_speed or task.speed
        if speed is None:
            return Text("", style="progress.percentage")
        # 导入节流后速率通常远小于 1
        return Text(f"{speed:.2f} item/s", style="progress.percentage")


class ImportProgressReporter:
    """Render import progress and keep counters for the CLI summary."""

    def __init__(self, enabled: bool = True, console: Console | None = None) -> None:
        self.enabled = enabled
        self._console = console
        self._progress: Progress | None = None
        self._task_id: TaskID | None = None
        self.state: ProgressState | None = None
        self._label = "订阅导入"

    def start(self, total: int, completed: int = 0) -> None:
        self.state = ProgressState(total=total, completed=completed)
        if not self.enabled:
            return
        if self._console is None:
            self._console = Console()
        if not self._console.is_terminal:
            # 非交互环境回退为静默模式，避免重复打印
            self.enabled = False
            return
        self._progress = Progress(
            SpinnerColumn(style="cyan"),
            TextColumn("[bold blue]{task.fields[label]:<10}", justify="left"),
            BarColumn(bar_width=None, complete_style="green", finished_style="green"),
            TaskProgressColumn(show_speed=False),
            TimeElapsedColumn(),
            RateColumn(),
            TextColumn("[green]✓{task.fields[success]:>3}", justify="right"),
            TextColumn("[red]✗{task.fields[failed]:>3}", justify="right"),
            TextColumn("[yellow]↺{task.fields[skipped]:>3}", justify="right"),
            TextColumn("[dim]{task.fields[current]}", justify="left"),
            refresh_per_second=8,
            expand=True,
            transient=True,
            console=self._console,
        )
        try:
            self._progress.__enter__()
        except LiveError:
            # 同一控制台已存在活动进度条，退化为静默模式
            self.enabled = False
            self._progress = None
            return
        self._task_id = self._progress.add_task(
            "import",
            total=total,
            completed=completed,
            label=self._label,
            success=0,
            failed=0,
            skipped=0,
            current="等待中…",
        )

    def publish(self, event: ProgressEvent) -> None:
        if not isinstance(event, ImportProgress):
            return
        if self.state is None:
            self.start(event.total)
        assert self.state is not None
        counts = event.outcomes.counts()
        self.state.completed = event.current
        self.state.success = counts["succeeded"]
        self.state.failed = counts["failed"]
        self.state.skipped = counts["skipped"]
        self.state.current_name = event.current_record.display_name
        if self._progress is not None and self._task_id is not None:
            name = self.state.current_name or ""
            if len(name) > 40:
                name = name[:37] + "..."
            self._progress.update(
                self._task_id,
                completed=event.current,
                success=self.state.success,
                failed=self.state.failed,
                skipped=self.state.skipped,
                current=name,
            )

    def close(self) -> None:
        if self._progress is not None:
            if self._task_id is not None:
                self._progress.update(self._task_id, current="已结束")
            self._progress.stop()
            self._progress.__exit__(None, None, None)
            self._progress = None
        self._task_id = None


class ProgressActivity:
    """Indeterminate activity indicator using Rich Status spinner."""

    def __init__(self, enabled: bool = True, console: Console | None = None) -> None:
        self.enabled = enabled
        self.console = console or Console()
        self._status: Status | None = None
        self.last_message: str | None = None

    def start(self, message: str) -> None:
        self.last_message = message
        if not self.enabled or self._status is not None:
            return
        self._status = self.console.status(message)
        self._status.start()

    def update(self, message: str) -> None:
        self.last_message = message
        if self._status is not None:
            self._status.update(message)

    def close(self) -> None:
        if self._status is not None:
            self._status.stop()
            self._status = None


class ExtractionActivity(ProgressActivity):
    """Spinner fed by extraction progress events."""

    def publish(self, event: ProgressEvent) -> None:
        if isinstance(event, ScrollProgress):
            self.update(
                f"滚动加载中：已发现 {event.current_count} 个频道"
                f"（第 {event.attempt}/{event.max_attempts} 次）"
            )
        elif isinstance(event, ExtractProgress):
            self.update(f"解析频道：{event.current}/{event.total}")
        elif isinstance(event, ExtractComplete):
            self.update(f"提取完成：{event.total} 个频道")


__all__ = [
    "ExtractionActivity",
    "ImportProgressReporter",
    "ProgressActivity",
    "ProgressState",
    "RateColumn",
]
