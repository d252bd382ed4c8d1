"""Logging configuration built around structlog JSON logging."""

from __future__ import annotations

import logging
import logging.config
import os
from collections import deque
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterator

import structlog

_LOGGING_INITIALISED = False


def _default_log_dir() -> Path:
    env_root = os.environ.get("SUBPORTER_HOME")
    if env_root:
        return Path(env_root).expanduser().resolve() / "logs"
    return Path(__file__).resolve().parents[1] / "logs"


def configure_logging(verbose: bool = False) -> structlog.BoundLogger:
    """Configure structlog + stdlib handlers and return application logger."""

    global _LOGGING_INITIALISED
    log_dir = _default_log_dir()
    error_log = log_dir / "error.log"
    app_log = log_dir / "subporter.log"
    runs_dir = log_dir / "runs"
    runs_dir.mkdir(parents=True, exist_ok=True)
    error_log.touch(exist_ok=True)
    app_log.touch(exist_ok=True)

    if not _LOGGING_INITIALISED:
        level = "DEBUG" if verbose else "INFO"
        logging.config.dictConfig(
            {
                "version": 1,
                "disable_existing_loggers": False,
                "formatters": {
                    "plain": {
                        "()": "pythonjsonlogger.jsonlogger.JsonFormatter",
                        "fmt": "%(asctime)s %(levelname)s %(name)s %(message)s",
                    }
                },
                "handlers": {
                    "console": {
                        "class": "logging.StreamHandler",
                        "level": "DEBUG" if verbose else "WARNING",
                        "formatter": "plain",
                    },
                    "app_file": {
                        "class": "logging.FileHandler",
                        "level": "INFO",
                        "filename": str(app_log),
                        "formatter": "plain",
                    },
                    "error_file": {
                        "class": "logging.FileHandler",
                        "level": "ERROR",
                        "filename": str(error_log),
                        "formatter": "plain",
                    },
                },
                "loggers": {
                    "subporter": {
                        "handlers": ["console", "app_file", "error_file"],
                        "level": level,
                        "propagate": False,
                    },
                },
            }
        )

        # structlog renders nothing itself; the JSON formatter on each handler does
        structlog.configure(
            processors=[
                structlog.contextvars.merge_contextvars,
                structlog.processors.TimeStamper(fmt="iso"),
                structlog.stdlib.add_log_level,
                structlog.processors.StackInfoRenderer(),
                structlog.processors.format_exc_info,
                structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
            ],
            logger_factory=structlog.stdlib.LoggerFactory(),
            cache_logger_on_first_use=True,
        )
        _LOGGING_INITIALISED = True
    return structlog.get_logger("subporter")


RUN_KINDS = ("export", "import")


def _runs_dir() -> Path:
    return _default_log_dir() / "runs"


def run_tag(kind: str, started_at: datetime | None = None) -> str:
    """Name of one run's log file, e.g. ``import-20240501-101500``."""

    if kind not in RUN_KINDS:
        raise ValueError(f"Unknown run kind: {kind}")
    moment = started_at or datetime.now(timezone.utc)
    return f"{kind}-{moment.strftime('%Y%m%d-%H%M%S')}"


@contextmanager
def run_log(kind: str, verbose: bool = False) -> Iterator[structlog.BoundLogger]:
    """Mirror one export or import run into ``logs/runs/<tag>.log`` while it lasts.

    Events still reach the application log through propagation; the run file
    handler is detached and closed when the block exits.
    """

    configure_logging(verbose)
    tag = run_tag(kind)
    path = _runs_dir() / f"{tag}.log"
    path.parent.mkdir(parents=True, exist_ok=True)

    logger_name = f"subporter.run.{kind}"
    py_logger = logging.getLogger(logger_name)
    handler = logging.FileHandler(path, encoding="utf-8")
    handler.setLevel(logging.INFO)
    app_logger = logging.getLogger("subporter")
    if app_logger.handlers:
        handler.setFormatter(app_logger.handlers[0].formatter)
    py_logger.addHandler(handler)
    try:
        yield structlog.get_logger(logger_name).bind(run=tag)
    finally:
        py_logger.removeHandler(handler)
        handler.close()


def tail_log(path: Path, line_count: int = 100) -> list[str]:
    """Return up to ``line_count`` trailing lines without loading the whole file."""

    if line_count <= 0 or not path.exists():
        return []
    with path.open("r", encoding="utf-8", errors="ignore") as stream:
        return list(deque(stream, maxlen=line_count))


def available_run_logs(kind: str | None = None) -> list[Path]:
    """Run log files, oldest first; ``kind`` narrows to export or import runs."""

    runs_dir = _runs_dir()
    if not runs_dir.exists():
        return []
    pattern = f"{kind}-*.log" if kind else "*.log"
    return sorted(runs_dir.glob(pattern))


def run_log_path(name: str) -> Path:
    """Resolve ``import-20240501-101500`` (with or without ``.log``) under the runs dir."""

    return _runs_dir() / f"{Path(name).stem}.log"


def app_log_path() -> Path:
    return _default_log_dir() / "subporter.log"


__all__ = [
    "RUN_KINDS",
    "app_log_path",
    "available_run_logs",
    "configure_logging",
    "run_log",
    "run_log_path",
    "run_tag",
    "tail_log",
]
