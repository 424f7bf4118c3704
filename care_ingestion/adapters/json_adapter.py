"""
JSON source adapter.

Handles a JSON array (``[{...}, {...}]``) or JSON Lines (``format: jsonl``).
``json_path`` follows dot-separated keys to a nested array, e.g.
``"export.residents"``.  Keys are lower-cased so mappings match regardless
of the exporting system's casing.
"""

from __future__ import annotations

import json
from itertools import islice
from pathlib import Path
from typing import Any, Iterator

from care_ingestion.adapters.base import SAMPLE_SIZE, SourceProbe


def _get_nested(data: Any, path: str) -> Any:
    for key in (k.strip() for k in path.split(".")):
        if not key:
            continue
        if isinstance(data, list):
            try:
                data = data[int(key)]
            except (ValueError, IndexError):
                return None
        elif isinstance(data, dict) and key in data:
            data = data[key]
        else:
            return None
    return data


def _normalise_keys(item: dict[str, Any]) -> dict[str, Any]:
    return {str(k).strip().lower(): v for k, v in item.items()}


class JsonSourceAdapter:
    """Read JSON array or JSON Lines files as one dict per record."""

    def read(self, source_path: Path, options: dict[str, Any]) -> Iterator[dict[str, Any]]:
        encoding = options.get("encoding", "utf-8")
        if options.get("format", "array") == "jsonl":
            with source_path.open("r", encoding=encoding) as handle:
                for line in handle:
                    line = line.strip()
                    if not line:
                        continue
                    item = json.loads(line)
                    if isinstance(item, dict):
                        yield _normalise_keys(item)
            return

        with source_path.open("r", encoding=encoding) as handle:
            data = json.load(handle)
        json_path = options.get("json_path")
        root = _get_nested(data, json_path) if json_path else data
        if not isinstance(root, list):
            raise ValueError(f"No JSON array found at {json_path or 'document root'!r}")
        for item in root:
            if isinstance(item, dict):
                yield _normalise_keys(item)

    def probe(self, source_path: Path, options: dict[str, Any]) -> SourceProbe:
        rows = self.read(source_path, options)
        sample = list(islice(rows, SAMPLE_SIZE))
        count = len(sample) + sum(1 for _ in rows)
        columns: set[str] = set()
        for row in sample:
            columns.update(row)
        return SourceProbe(
            row_count=count,
            columns=tuple(sorted(columns)),
            sample_rows=tuple(sample),
            encoding=options.get("encoding", "utf-8"),
        )
