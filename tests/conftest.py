"""Pytest configuration providing scripted surfaces and shared fixtures."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Callable, Iterable, Sequence

import pytest

from subporter.config import ConfigLocator, ConfigRepository
from subporter.engine.records import Record
from subporter.engine.surface import (
    ActionResult,
    ListingMeasurement,
    ListingUnit,
    Probe,
    SurfaceState,
)
from subporter.errors import SurfaceUnavailableError
from subporter.infra.storage import StateStore

ORIGIN = "https://www.youtube.com"


def channel_id(index: int) -> str:
    return f"UC{index:022d}"


class Timeline(list):
    """Ordered log of surface calls and sleeps shared by the fakes."""

    def sleeps(self) -> list[float]:
        return [value for kind, value in self if kind == "sleep"]

    def navigations(self) -> list[str]:
        return [value for kind, value in self if kind == "navigate"]


class RecordingSleep:
    def __init__(self, timeline: Timeline) -> None:
        self.timeline = timeline

    def __call__(self, seconds: float) -> None:
        self.timeline.append(("sleep", seconds))


class ScriptedSurface:
    """Action surface answering probes from a per-target script.

    ``script`` maps a target URL to the state reported by the subscribe probe, or to
    an exception raised by it. ``navigate_errors`` raises on navigation instead.
    """

    def __init__(
        self,
        timeline: Timeline | None = None,
        script: dict[str, Any] | None = None,
        *,
        after_act: SurfaceState = SurfaceState.ACTIVE,
        account: SurfaceState = SurfaceState.ACTIVE,
        ready_error: Exception | None = None,
    ) -> None:
        self.timeline = timeline if timeline is not None else Timeline()
        self.script = script or {}
        self.navigate_errors: dict[str, Exception] = {}
        self.after_act = after_act
        self.account = account
        self.ready_error = ready_error
        self.acted: list[str] = []
        self.closed = False
        self._current: str | None = None

    @property
    def origin(self) -> str:
        return ORIGIN

    def ensure_ready(self) -> None:
        self.timeline.append(("ensure_ready", None))
        if self.ready_error is not None:
            raise self.ready_error

    def navigate(self, target: str) -> None:
        self.timeline.append(("navigate", target))
        error = self.navigate_errors.get(target)
        if error is not None:
            raise error
        self._current = target

    def detect_state(self, probe: Probe) -> SurfaceState:
        self.timeline.append(("detect", probe.value))
        if probe is Probe.ACCOUNT:
            return self.account
        if self._current in self.acted:
            return self.after_act
        outcome = self.script.get(self._current, SurfaceState.READY)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    def act(self, probe: Probe) -> ActionResult:
        self.timeline.append(("act", self._current))
        self.acted.append(self._current)
        return ActionResult(performed=True)

    def close(self) -> None:
        self.closed = True


class FakeListingSurface(ScriptedSurface):
    """Listing surface replaying a fixed sequence of measurements."""

    def __init__(
        self,
        measurements: Sequence[tuple[int, int]],
        units: Iterable[ListingUnit],
        timeline: Timeline | None = None,
        **kwargs: Any,
    ) -> None:
        super().__init__(timeline, **kwargs)
        self.measurements = list(measurements)
        self._units = list(units)
        self.scrolls = 0
        self.measure_calls = 0
        self.fail_on_scroll: int | None = None

    def scroll_to_end(self) -> None:
        self.scrolls += 1
        if self.fail_on_scroll is not None and self.scrolls >= self.fail_on_scroll:
            raise SurfaceUnavailableError("page crashed")
        self.timeline.append(("scroll", self.scrolls))

    def measure(self) -> ListingMeasurement:
        index = min(self.measure_calls, len(self.measurements) - 1)
        self.measure_calls += 1
        count, extent = self.measurements[index]
        return ListingMeasurement(item_count=count, extent=extent)

    def units(self) -> list[ListingUnit]:
        return list(self._units)


def make_units(count: int) -> list[ListingUnit]:
    return [
        ListingUnit(
            href=f"/channel/{channel_id(index)}",
            name=f"Channel {index}",
            handle=f"@channel{index}",
            thumbnail=f"https://yt3.example/{index}.jpg",
            count_text=f"{index}K subscribers",
        )
        for index in range(count)
    ]


@pytest.fixture
def timeline() -> Timeline:
    return Timeline()


@pytest.fixture
def recording_sleep(timeline: Timeline) -> RecordingSleep:
    return RecordingSleep(timeline)


@pytest.fixture
def make_record() -> Callable[..., Record]:
    def _builder(index: int = 0, **overrides: Any) -> Record:
        base: dict[str, Any] = {
            "identifier": channel_id(index),
            "handle": f"@channel{index}",
            "display_name": f"Channel {index}",
            "target_url": f"{ORIGIN}/channel/{channel_id(index)}",
            "follower_count_text": f"{index}K subscribers",
        }
        base.update(overrides)
        return Record(**base)

    return _builder


@pytest.fixture
def records(make_record) -> list[Record]:
    return [make_record(index) for index in range(1, 6)]


@pytest.fixture
def state_store(tmp_path: Path) -> Iterable[StateStore]:
    store = StateStore(tmp_path / "state.db")
    yield store
    store.close()


@pytest.fixture
def subporter_home(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    monkeypatch.setenv("SUBPORTER_HOME", str(tmp_path))
    return tmp_path


@pytest.fixture
def temp_config_repository(subporter_home: Path) -> ConfigRepository:
    return ConfigRepository(ConfigLocator(project_root=subporter_home))


@pytest.fixture
def write_export(tmp_path: Path) -> Callable[..., Path]:
    """Write an export document built from records or raw entries."""

    def _writer(name: str, entries: Sequence[Record | dict], **extra: Any) -> Path:
        payload: dict[str, Any] = {
            "formatVersion": "1.0",
            "exportedAt": "2024-05-01T10:00:00+00:00",
            "source": "YouTube Subporter",
            "totalSubscriptions": len(entries),
            "subscriptions": [
                entry.to_wire() if isinstance(entry, Record) else entry for entry in entries
            ],
        }
        payload.update(extra)
        path = tmp_path / name
        path.write_text(json.dumps(payload), encoding="utf-8")
        return path

    return _writer


@pytest.fixture
def scripted_surface(timeline: Timeline) -> Callable[..., ScriptedSurface]:
    def _builder(script: dict[str, Any] | None = None, **kwargs: Any) -> ScriptedSurface:
        return ScriptedSurface(timeline, script, **kwargs)

    return _builder


@pytest.fixture
def listing_surface(timeline: Timeline) -> Callable[..., FakeListingSurface]:
    def _builder(
        measurements: Sequence[tuple[int, int]],
        units: Iterable[ListingUnit] | int = 0,
        **kwargs: Any,
    ) -> FakeListingSurface:
        if isinstance(units, int):
            units = make_units(units)
        return FakeListingSurface(measurements, units, timeline, **kwargs)

    return _builder
