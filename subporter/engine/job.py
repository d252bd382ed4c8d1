"""Resumable import job: sequencing, throttling, pause/resume/cancel and checkpoints."""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import Enum
from threading import Lock
from typing import Any, Callable, Iterable, Mapping, Protocol

import structlog

from ..config import Settings
from ..errors import (
    JobStateError,
    ProbeTimeoutError,
    StorageError,
    SurfaceError,
    SurfaceUnavailableError,
)
from .events import ImportProgress, ProgressSink, deliver
from .records import Record
from .surface import ActionSurface, Probe, SurfaceState

TARGET_NOT_FOUND = "action target not found"


class JobPhase(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    PAUSED = "paused"
    CANCELLED = "cancelled"
    COMPLETED = "completed"


@dataclass(slots=True)
class FailedOutcome:
    record: Record
    reason: str


@dataclass(slots=True)
class Outcomes:
    """Outcome buckets; each processed record lands in exactly one of them."""

    succeeded: list[Record] = field(default_factory=list)
    failed: list[FailedOutcome] = field(default_factory=list)
    skipped: list[Record] = field(default_factory=list)

    def copy(self) -> "Outcomes":
        return Outcomes(
            succeeded=list(self.succeeded),
            failed=list(self.failed),
            skipped=list(self.skipped),
        )

    def counts(self) -> dict[str, int]:
        return {
            "succeeded": len(self.succeeded),
            "failed": len(self.failed),
            "skipped": len(self.skipped),
        }

    def to_payload(self) -> dict[str, Any]:
        return {
            "succeeded": [record.to_wire() for record in self.succeeded],
            "failed": [
                {"record": item.record.to_wire(), "reason": item.reason} for item in self.failed
            ],
            "skipped": [record.to_wire() for record in self.skipped],
        }

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any] | None) -> "Outcomes":
        payload = payload or {}
        return cls(
            succeeded=[Record.from_wire(item) for item in payload.get("succeeded", [])],
            failed=[
                FailedOutcome(Record.from_wire(item["record"]), str(item.get("reason", "")))
                for item in payload.get("failed", [])
            ],
            skipped=[Record.from_wire(item) for item in payload.get("skipped", [])],
        )


@dataclass(slots=True)
class JobState:
    """Everything needed to continue a run; serialised as the checkpoint."""

    records: list[Record]
    settings: Settings
    phase: JobPhase = JobPhase.IDLE
    cursor: int = 0
    outcomes: Outcomes = field(default_factory=Outcomes)

    @property
    def total(self) -> int:
        return len(self.records)

    def progress(self) -> dict[str, int]:
        return {"current": self.cursor, "total": self.total, **self.outcomes.counts()}

    def to_checkpoint(self) -> dict[str, Any]:
        return {
            "phase": self.phase.value,
            "cursor": self.cursor,
            "records": [record.to_wire() for record in self.records],
            "outcomes": self.outcomes.to_payload(),
            "settings": self.settings.model_dump(mode="json"),
        }

    @classmethod
    def from_checkpoint(cls, payload: Mapping[str, Any]) -> "JobState":
        records = [Record.from_wire(item) for item in payload.get("records", [])]
        cursor = int(payload.get("cursor", 0))
        if not 0 <= cursor <= len(records):
            raise JobStateError(f"Checkpoint cursor {cursor} out of range")
        return cls(
            records=records,
            settings=Settings.model_validate(payload.get("settings") or {}),
            phase=JobPhase(payload.get("phase", JobPhase.IDLE.value)),
            cursor=cursor,
            outcomes=Outcomes.from_payload(payload.get("outcomes")),
        )


class ResultStatus(str, Enum):
    COMPLETED = "completed"
    PAUSED = "paused"
    CANCELLED = "cancelled"
    FAILED = "failed"


@dataclass(slots=True)
class JobResult:
    status: ResultStatus
    outcomes: Outcomes
    total: int
    cursor: int = 0
    error: str | None = None

    @property
    def success(self) -> bool:
        return self.status is ResultStatus.COMPLETED

    def summary(self) -> dict[str, int]:
        return {"total": self.total, **self.outcomes.counts()}

    def progress(self) -> dict[str, int]:
        return {"current": self.cursor, "total": self.total, **self.outcomes.counts()}

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"status": self.status.value}
        if self.status is ResultStatus.COMPLETED:
            payload.update(success=True, outcomes=self.outcomes.to_payload(), summary=self.summary())
        elif self.status is ResultStatus.PAUSED:
            payload.update(paused=True, progress=self.progress())
        elif self.status is ResultStatus.CANCELLED:
            payload.update(cancelled=True, outcomes=self.outcomes.to_payload(), summary=self.summary())
        else:
            payload.update(success=False, error=self.error, outcomes=self.outcomes.to_payload())
        return payload


# ---------------------------------------------------------------------------
# Phase signal and checkpoint store
# ---------------------------------------------------------------------------


class PhaseSignal(Protocol):
    """Shared phase flag observed by the loop at iteration boundaries."""

    def read(self) -> JobPhase:
        ...

    def set(self, phase: JobPhase) -> None:
        ...


class CheckpointStore(Protocol):
    def load_checkpoint(self) -> dict[str, Any] | None:
        ...

    def save_checkpoint(self, payload: Mapping[str, Any]) -> None:
        ...

    def clear_checkpoint(self) -> None:
        ...

    def get_phase(self) -> str | None:
        ...

    def set_phase(self, phase: str) -> None:
        ...


class MemoryPhaseSignal:
    """In-process signal for a single controller."""

    def __init__(self, phase: JobPhase = JobPhase.IDLE) -> None:
        self.phase = phase

    def read(self) -> JobPhase:
        return self.phase

    def set(self, phase: JobPhase) -> None:
        self.phase = phase


class PersistedPhaseSignal:
    """Phase flag kept in the persistence store, visible to other processes."""

    def __init__(self, store: CheckpointStore) -> None:
        self.store = store

    def read(self) -> JobPhase:
        raw = self.store.get_phase()
        try:
            return JobPhase(raw) if raw else JobPhase.IDLE
        except ValueError:
            return JobPhase.IDLE

    def set(self, phase: JobPhase) -> None:
        self.store.set_phase(phase.value)


# ---------------------------------------------------------------------------
# Controller
# ---------------------------------------------------------------------------


class JobController:
    """Owns one ``JobState`` and drives it against an action surface."""

    def __init__(
        self,
        surface: ActionSurface,
        store: CheckpointStore,
        *,
        signal: PhaseSignal | None = None,
        progress: ProgressSink | None = None,
        settle_delay: float = 2.0,
        sleep: Callable[[float], None] = time.sleep,
        logger: structlog.BoundLogger | None = None,
    ) -> None:
        self.surface = surface
        self.store = store
        self.signal = signal or PersistedPhaseSignal(store)
        self.progress = progress
        self.settle_delay = settle_delay
        self._sleep = sleep
        self.logger = logger or structlog.get_logger("subporter").bind(component="job")
        self._state: JobState | None = None
        self._active = False
        self._guard = Lock()

    @property
    def active(self) -> bool:
        return self._active

    # commands ---------------------------------------------------------------

    def start(
        self,
        records: Iterable[Record],
        settings: Settings | None = None,
        progress: ProgressSink | None = None,
    ) -> JobResult:
        """Begin a fresh run over ``records``; rejected while a job is running or paused."""

        with self._guard:
            if self._active:
                raise JobStateError("An import job is already active in this process")
            phase = self.signal.read()
            if phase in (JobPhase.RUNNING, JobPhase.PAUSED):
                raise JobStateError(f"Cannot start a new job while one is {phase.value}")
            if self._stop_pending(phase):
                raise JobStateError(
                    "The previous job has not acknowledged the cancel request yet; "
                    "wait for it to stop or run `import reset`"
                )
            state = JobState(
                records=list(records),
                settings=settings or Settings(),
                phase=JobPhase.RUNNING,
            )
            self._begin(state)
        self.logger.info(
            "job_started",
            total=state.total,
            delay=state.settings.delay_between_items,
            batch_size=state.settings.batch_size,
            batch_pause=state.settings.batch_pause_duration,
        )
        return self._run(state, progress or self.progress)

    def resume(self, progress: ProgressSink | None = None) -> JobResult:
        """Continue from the checkpoint, re-processing the checkpointed item."""

        with self._guard:
            if self._active:
                raise JobStateError("An import job is already active in this process")
            phase = self.signal.read()
            if phase in (JobPhase.CANCELLED, JobPhase.COMPLETED):
                raise JobStateError(f"Cannot resume a {phase.value} job; start a new one")
            checkpoint = self.store.load_checkpoint()
            if not checkpoint:
                raise JobStateError("No checkpoint to resume from")
            if self._stop_pending(phase, checkpoint):
                raise JobStateError("The job is still running; wait for the pause to take effect")
            state = JobState.from_checkpoint(checkpoint)
            state.phase = JobPhase.RUNNING
            self._begin(state)
        self.logger.info("job_resumed", cursor=state.cursor, total=state.total, from_phase=phase.value)
        return self._run(state, progress or self.progress)

    def pause(self) -> bool:
        """Request a pause; only a running job is affected."""

        if self.signal.read() is not JobPhase.RUNNING:
            return False
        self.signal.set(JobPhase.PAUSED)
        self.logger.info("job_pause_requested")
        return True

    def cancel(self) -> bool:
        """Request cancellation of a running or paused job; nothing is rolled back."""

        phase = self.signal.read()
        if phase not in (JobPhase.RUNNING, JobPhase.PAUSED):
            return False
        self.signal.set(JobPhase.CANCELLED)
        if phase is JobPhase.PAUSED and not self._active:
            checkpoint = self.store.load_checkpoint()
            # a stopped loop left a paused checkpoint; a live one acknowledges by itself
            if checkpoint and checkpoint.get("phase") == JobPhase.PAUSED.value:
                checkpoint["phase"] = JobPhase.CANCELLED.value
                self.store.save_checkpoint(checkpoint)
        self.logger.info("job_cancel_requested", from_phase=phase.value)
        return True

    def reset(self) -> None:
        """Drop the checkpoint and return to idle."""

        if self._active:
            raise JobStateError("Cannot reset while the job loop is active")
        self.store.clear_checkpoint()
        self.signal.set(JobPhase.IDLE)
        self._state = None
        self.logger.info("job_reset")

    def get_state(self) -> dict[str, Any]:
        phase = self.signal.read()
        state = self._state if self._active else None
        if state is None:
            checkpoint = self.store.load_checkpoint()
            if checkpoint:
                state = JobState.from_checkpoint(checkpoint)
        return {"phase": phase.value, "progress": state.progress() if state else None}

    # loop -------------------------------------------------------------------

    def _stop_pending(self, phase: JobPhase, checkpoint: Mapping[str, Any] | None = None) -> bool:
        """True while a pause or cancel was requested but the loop has not stopped yet.

        A loop writes its checkpoint with phase ``running`` after every item and only
        switches it to ``paused``/``cancelled`` once it has observed the request.
        """

        if phase not in (JobPhase.PAUSED, JobPhase.CANCELLED):
            return False
        if checkpoint is None:
            checkpoint = self.store.load_checkpoint()
        return bool(checkpoint) and checkpoint.get("phase") == JobPhase.RUNNING.value

    def _begin(self, state: JobState) -> None:
        self._active = True
        self._state = state

    def _run(self, state: JobState, progress: ProgressSink | None) -> JobResult:
        try:
            self.signal.set(JobPhase.RUNNING)
            self.store.save_checkpoint(state.to_checkpoint())
            self.surface.ensure_ready()
            return self._loop(state, progress)
        except (SurfaceError, StorageError) as exc:
            return self._fail(state, exc)
        finally:
            self._active = False

    def _loop(self, state: JobState, progress: ProgressSink | None) -> JobResult:
        settings = state.settings
        while state.cursor < state.total:
            requested = self.signal.read()
            if requested is JobPhase.PAUSED:
                state.phase = JobPhase.PAUSED
                self.store.save_checkpoint(state.to_checkpoint())
                self.logger.info("job_paused", cursor=state.cursor, total=state.total)
                return self._result(ResultStatus.PAUSED, state)
            if requested is JobPhase.CANCELLED:
                state.phase = JobPhase.CANCELLED
                self.store.save_checkpoint(state.to_checkpoint())
                self.logger.info("job_cancelled", cursor=state.cursor, total=state.total)
                return self._result(ResultStatus.CANCELLED, state)

            record = state.records[state.cursor]
            self._process(record, state.outcomes)
            state.cursor += 1
            self.store.save_checkpoint(state.to_checkpoint())
            deliver(
                progress,
                ImportProgress(
                    current=state.cursor,
                    total=state.total,
                    current_record=record,
                    outcomes=state.outcomes.copy(),
                ),
                self.logger,
            )

            self._sleep(settings.delay_between_items)
            if state.cursor % settings.batch_size == 0 and state.cursor < state.total:
                self.logger.info(
                    "batch_pause", after=state.cursor, seconds=settings.batch_pause_duration
                )
                self._sleep(settings.batch_pause_duration)

        state.phase = JobPhase.COMPLETED
        self.signal.set(JobPhase.COMPLETED)
        self.store.clear_checkpoint()
        self.logger.info("job_completed", **state.outcomes.counts(), total=state.total)
        return self._result(ResultStatus.COMPLETED, state)

    def _process(self, record: Record, outcomes: Outcomes) -> None:
        """Navigate, probe and act for one record, filing it into one bucket.

        Only ``SurfaceUnavailableError`` escapes; it ends the run.
        """

        log = self.logger.bind(target=record.target_url, name=record.display_name)
        try:
            self.surface.navigate(record.target_url)
            self._sleep(self.settle_delay)
            observed = self.surface.detect_state(Probe.SUBSCRIBE)
            if observed is SurfaceState.ACTIVE:
                outcomes.skipped.append(record)
                log.info("item_skipped")
                return
            if observed is SurfaceState.ABSENT:
                outcomes.failed.append(FailedOutcome(record, TARGET_NOT_FOUND))
                log.warning("item_failed", reason=TARGET_NOT_FOUND)
                return
            result = self.surface.act(Probe.SUBSCRIBE)
            if not result.performed:
                reason = result.detail or "action not performed"
                outcomes.failed.append(FailedOutcome(record, reason))
                log.warning("item_failed", reason=reason)
                return
            confirmed = self._confirm()
            outcomes.succeeded.append(record)
            if confirmed:
                log.info("item_succeeded")
            else:
                log.warning("item_succeeded_unconfirmed")
        except SurfaceUnavailableError:
            raise
        except ProbeTimeoutError:
            outcomes.failed.append(FailedOutcome(record, TARGET_NOT_FOUND))
            log.warning("item_failed", reason=TARGET_NOT_FOUND)
        except Exception as exc:  # noqa: BLE001
            reason = str(exc) or exc.__class__.__name__
            outcomes.failed.append(FailedOutcome(record, reason))
            log.warning("item_failed", reason=reason)

    def _confirm(self) -> bool:
        try:
            return self.surface.detect_state(Probe.SUBSCRIBE) is SurfaceState.ACTIVE
        except SurfaceUnavailableError:
            raise
        except Exception as exc:  # noqa: BLE001
            self.logger.debug("confirmation_probe_failed", error=str(exc))
            return False

    def _fail(self, state: JobState, exc: Exception) -> JobResult:
        self.logger.error("job_aborted", cursor=state.cursor, total=state.total, error=str(exc))
        try:
            requested = self.signal.read()
            if requested in (JobPhase.PAUSED, JobPhase.CANCELLED):
                # keep the pending request and acknowledge it in the checkpoint
                state.phase = requested
                self.store.save_checkpoint(state.to_checkpoint())
                self.logger.info("stop_request_kept", phase=requested.value)
            else:
                state.phase = JobPhase.IDLE
                self.signal.set(JobPhase.IDLE)
        except StorageError as flag_exc:
            self.logger.error("phase_reset_failed", error=str(flag_exc))
        return self._result(ResultStatus.FAILED, state, error=str(exc) or exc.__class__.__name__)

    def _result(self, status: ResultStatus, state: JobState, error: str | None = None) -> JobResult:
        return JobResult(
            status=status,
            outcomes=state.outcomes.copy(),
            total=state.total,
            cursor=state.cursor,
            error=error,
        )


__all__ = [
    "CheckpointStore",
    "FailedOutcome",
    "JobController",
    "JobPhase",
    "JobResult",
    "JobState",
    "MemoryPhaseSignal",
    "Outcomes",
    "PersistedPhaseSignal",
    "ResultStatus",
    "TARGET_NOT_FOUND",
]
