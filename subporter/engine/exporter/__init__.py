"""Exporter SPI, export-file writers and the import-file reader."""

from .base import BaseExporter
from .file_exporter import (
    CsvExporter,
    ExportSnapshot,
    FORMAT_VERSION,
    JsonExporter,
    comparison_payload,
    default_comparison_filename,
    default_export_filename,
    exporter_for,
    write_comparison,
)
from .reader import ImportBatch, parse_export_payload, read_export_file

__all__ = [
    "BaseExporter",
    "CsvExporter",
    "ExportSnapshot",
    "FORMAT_VERSION",
    "ImportBatch",
    "JsonExporter",
    "comparison_payload",
    "default_comparison_filename",
    "default_export_filename",
    "exporter_for",
    "parse_export_payload",
    "read_export_file",
    "write_comparison",
]
