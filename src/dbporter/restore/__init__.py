"""Restore pipeline: backup reading, statement validation and execution.

Usage:
    from dbporter.restore import RestoreOrchestrator

    result = await RestoreOrchestrator(engine).run("backup.sql")
"""

from dbporter.restore.orchestrator import RestoreOrchestrator
from dbporter.restore.reader import (
    BackupHeader,
    check_backup_path,
    format_backup_header,
    read_backup_bytes,
    read_backup_file,
    read_backup_header,
)
from dbporter.restore.session import (
    SessionPlan,
    is_sequence_statement,
    sequence_statements,
    session_plan,
)
from dbporter.restore.validation import check_statement

__all__ = [
    "BackupHeader",
    "RestoreOrchestrator",
    "SessionPlan",
    "check_statement",
    "check_backup_path",
    "format_backup_header",
    "is_sequence_statement",
    "read_backup_bytes",
    "read_backup_file",
    "read_backup_header",
    "sequence_statements",
    "session_plan",
]
