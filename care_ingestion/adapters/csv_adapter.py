"""
CSV source adapter.

Options: delimiter, encoding, has_header, columns (when headerless),
skip_rows.  utf-8 is read as utf-8-sig so Excel's BOM never leaks into the
first column name.
"""

from __future__ import annotations

import csv
from itertools import islice
from pathlib import Path
from typing import Any, Iterator

from care_ingestion.adapters.base import SAMPLE_SIZE, SourceProbe


def _encoding(options: dict[str, Any]) -> str:
    enc = options.get("encoding", "utf-8")
    return "utf-8-sig" if enc.lower() in ("utf-8", "utf8") else enc


class CsvSourceAdapter:
    """Read CSV files as one dict per row."""

    def _rows(self, handle, options: dict[str, Any]) -> Iterator[dict[str, Any]]:
        delimiter = options.get("delimiter", ",")
        for _ in range(int(options.get("skip_rows", 0))):
            next(handle, None)
        if options.get("has_header", True):
            yield from csv.DictReader(handle, delimiter=delimiter)
            return
        reader = csv.reader(handle, delimiter=delimiter)
        columns = options.get("columns")
        for row in reader:
            names = columns or [f"field_{i}" for i in range(len(row))]
            yield dict(zip(names, row))

    def read(self, source_path: Path, options: dict[str, Any]) -> Iterator[dict[str, Any]]:
        with source_path.open("r", encoding=_encoding(options), newline="") as handle:
            for row in self._rows(handle, options):
                if any((v or "").strip() for v in row.values() if isinstance(v, str)):
                    yield row

    def probe(self, source_path: Path, options: dict[str, Any]) -> SourceProbe:
        rows = self.read(source_path, options)
        sample = list(islice(rows, SAMPLE_SIZE))
        count = len(sample) + sum(1 for _ in rows)
        columns = tuple(sample[0].keys()) if sample else ()
        return SourceProbe(
            row_count=count,
            columns=columns,
            sample_rows=tuple(sample),
            encoding=_encoding(options),
            detected_delimiter=options.get("delimiter", ","),
        )
