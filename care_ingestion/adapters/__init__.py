"""Source adapters: CSV, JSON and XLSX readers yielding one dict per record."""

from care_ingestion.adapters.base import SourceAdapter, SourceProbe
from care_ingestion.adapters.csv_adapter import CsvSourceAdapter
from care_ingestion.adapters.json_adapter import JsonSourceAdapter
from care_ingestion.adapters.xlsx_adapter import XlsxSourceAdapter

__all__ = [
    "CsvSourceAdapter",
    "JsonSourceAdapter",
    "SourceAdapter",
    "SourceProbe",
    "XlsxSourceAdapter",
]
