"""Staging tables for migration batches."""

from care_ingestion.models.staging import ImportBatchModel, ImportRecordModel

__all__ = ["ImportBatchModel", "ImportRecordModel"]
