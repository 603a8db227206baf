"""Backup and restore option/result models.

``BackupManager`` lives in ``dbporter.backup.manager``.
"""

from dbporter.backup.models import (
    BackupEstimate,
    BackupOptions,
    BackupResult,
    CapabilityReport,
    ExecutionStatistics,
    FailureRecord,
    OperationError,
    ProgressCallback,
    RestoreOptions,
    RestoreResult,
    SelectionCriteria,
    StrategyDescriptor,
    ValidationReport,
)

__all__ = [
    "BackupEstimate",
    "BackupOptions",
    "BackupResult",
    "CapabilityReport",
    "ExecutionStatistics",
    "FailureRecord",
    "OperationError",
    "ProgressCallback",
    "RestoreOptions",
    "RestoreResult",
    "SelectionCriteria",
    "StrategyDescriptor",
    "ValidationReport",
]
