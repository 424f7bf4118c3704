"""
Source adapter protocol and probe DTO.

Contract:
    SourceAdapter.read() yields one dict per source record (streaming).
    SourceAdapter.probe() returns a quick snapshot: row count, columns, sample rows.

Architecture: care_ingestion/adapters. File I/O only, no DB or kernel imports.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Iterator, Protocol, runtime_checkable

SAMPLE_SIZE = 5


@runtime_checkable
class SourceAdapter(Protocol):
    """Reads a structured export from a previous care system."""

    def read(self, source_path: Path, options: dict[str, Any]) -> Iterator[dict[str, Any]]:
        ...

    def probe(self, source_path: Path, options: dict[str, Any]) -> "SourceProbe":
        ...


@dataclass(frozen=True)
class SourceProbe:
    """Row count, detected columns and the first few rows of a source file."""

    row_count: int
    columns: tuple[str, ...]
    sample_rows: tuple[dict[str, Any], ...]
    encoding: str | None = None
    detected_delimiter: str | None = None
