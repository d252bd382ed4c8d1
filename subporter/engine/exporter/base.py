"""Exporter Service Provider Interface."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Iterable

from ..records import Record


class BaseExporter(ABC):
    """Uniform exporter contract for writing extracted records out."""

    @abstractmethod
    def export(self, record: Record) -> None:
        """Accept a single record."""

    def export_many(self, records: Iterable[Record]) -> None:
        for record in records:
            self.export(record)

    @abstractmethod
    def flush(self) -> None:
        """Flush buffered data to destination."""

    @abstractmethod
    def close(self) -> None:
        """Release underlying resources."""


__all__ = ["BaseExporter"]
