"""Exception hierarchy shared across engine, storage and CLI layers."""

from __future__ import annotations


class SubporterError(Exception):
    """Base exception for all Subporter failures."""


class SurfaceError(SubporterError):
    """Raised when the automation surface misbehaves for a single interaction."""


class SurfaceUnavailableError(SurfaceError):
    """Raised when the automation surface is gone (browser closed, page crashed)."""


class ProbeTimeoutError(SurfaceError):
    """Raised when a probed element does not appear within its timeout."""


class ExtractionError(SubporterError):
    """Raised when a listing extraction pass has to be aborted."""


class StorageError(SubporterError):
    """Raised when the persistence store cannot be read or written."""


class ImportFileError(SubporterError):
    """Raised when an export file cannot be used as import input."""


class JobStateError(SubporterError):
    """Raised when a job command is not legal in the current phase."""


__all__ = [
    "ExtractionError",
    "ImportFileError",
    "JobStateError",
    "ProbeTimeoutError",
    "StorageError",
    "SubporterError",
    "SurfaceError",
    "SurfaceUnavailableError",
]
