"""
XLSX source adapter (openpyxl).

Care-system exports often carry a title block above the real header, so
the header row is auto-detected: the first row within the first 15 that
contains at least two known column names (NHS number, surname, date of
birth, NI number, account code, ...).

Options:
  sheet: 0-based index or sheet name.  Default: active sheet.
  skip_rows: rows to skip before looking for the header.
  header_row: 0-based header row; disables auto-detection.
"""

from __future__ import annotations

import re
from datetime import date, datetime
from itertools import islice
from pathlib import Path
from typing import Any, Iterator

import openpyxl

from care_ingestion.adapters.base import SAMPLE_SIZE, SourceProbe

_HEADER_KEYWORDS = frozenset({
    "nhs number", "nhs no", "first name", "forename", "last name", "surname",
    "date of birth", "dob", "admission date", "room", "care level", "weekly fee",
    "ni number", "national insurance", "employee number", "payroll number",
    "start date", "tax code", "salary", "hourly rate",
    "account code", "account name", "account type", "name", "type",
})
_MAX_HEADER_SEARCH = 15


def _header_text(value: Any) -> str:
    if value is None:
        return ""
    return re.sub(r"\s+", " ", str(value)).strip()


def _cell(value: Any) -> Any:
    if value is None:
        return ""
    if isinstance(value, datetime):
        return value.date().isoformat() if value.time() == datetime.min.time() else value.isoformat()
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if isinstance(value, str):
        return value.strip()
    return value


def _looks_like_header(row: tuple) -> bool:
    names = {_header_text(v).lower() for v in row if v is not None}
    return len(names & _HEADER_KEYWORDS) >= 2


def _headers(row: tuple) -> list[str]:
    headers: list[str] = []
    for i, value in enumerate(row):
        key = _header_text(value) or f"Column_{i + 1}"
        base, n = key, 0
        while key in headers:
            n += 1
            key = f"{base}_{n}"
        headers.append(key)
    while headers and headers[-1].startswith("Column_"):
        headers.pop()
    return headers


class XlsxSourceAdapter:
    """Read .xlsx worksheets as one dict per data row."""

    def _sheet(self, workbook: Any, options: dict[str, Any]) -> Any:
        ref = options.get("sheet")
        if ref is None:
            return workbook.active
        if isinstance(ref, int):
            return workbook.worksheets[ref]
        return workbook[ref]

    def read(self, source_path: Path, options: dict[str, Any]) -> Iterator[dict[str, Any]]:
        workbook = openpyxl.load_workbook(source_path, read_only=True, data_only=True)
        try:
            sheet = self._sheet(workbook, options)
            skip_rows = int(options.get("skip_rows", 0))
            rows = sheet.iter_rows(min_row=1 + skip_rows, values_only=True)

            header_row = options.get("header_row")
            if header_row is not None:
                header = next(islice(rows, int(header_row), None), None)
            else:
                scanned = list(islice(rows, _MAX_HEADER_SEARCH))
                index = next((i for i, r in enumerate(scanned) if _looks_like_header(r)), 0)
                header = scanned[index] if scanned else None
                rows = iter(scanned[index + 1:] + list(rows))
            if header is None:
                return

            headers = _headers(header)
            for row in rows:
                values = [_cell(v) for v in row[: len(headers)]]
                if any(v != "" for v in values):
                    yield dict(zip(headers, values))
        finally:
            workbook.close()

    def probe(self, source_path: Path, options: dict[str, Any]) -> SourceProbe:
        rows = self.read(source_path, options)
        sample = list(islice(rows, SAMPLE_SIZE))
        count = len(sample) + sum(1 for _ in rows)
        return SourceProbe(
            row_count=count,
            columns=tuple(sample[0].keys()) if sample else (),
            sample_rows=tuple(sample),
        )
