"""User interaction helpers."""

from .progress import (
    ExtractionActivity,
    ImportProgressReporter,
    ProgressActivity,
    ProgressState,
)

__all__ = [
    "ExtractionActivity",
    "ImportProgressReporter",
    "ProgressActivity",
    "ProgressState",
]
