"""Error taxonomy shared by every dbporter component.

All structural failures surface as ``BackupError`` with a fixed ``kind``,
free-form ``context`` and a deterministic ``user_message`` per kind. Low-level
driver or OS errors are wrapped with ``raise BackupError.xxx(...) from exc``
so the original exception stays available as ``__cause__``.

Usage:
    from dbporter.errors import BackupError, ErrorKind

    try:
        ...
    except BackupError as exc:
        if exc.kind is ErrorKind.FILE_EMPTY:
            print(exc.user_message)
"""

from enum import Enum
from typing import Any


class ErrorKind(str, Enum):
    """Fixed categories of backup/restore failure."""

    FILE_NOT_FOUND = "file_not_found"
    FILE_EMPTY = "file_empty"
    FILE_CORRUPT = "file_corrupt"
    PERMISSION_DENIED = "permission_denied"
    DISK_SPACE = "disk_space"
    STRATEGY_UNAVAILABLE = "strategy_unavailable"
    DATABASE_CONNECTION = "database_connection"
    VALIDATION_FAILED = "validation_failed"
    RESTORE_FAILED = "restore_failed"
    BACKUP_FAILED = "backup_failed"
    TIMEOUT = "timeout"
    PARSE_ERROR = "parse_error"
    GENERAL = "general"


USER_MESSAGES: dict[ErrorKind, str] = {
    ErrorKind.FILE_NOT_FOUND: (
        "The backup file could not be found. Please check the file path and try again."
    ),
    ErrorKind.FILE_EMPTY: (
        "The backup file is empty or corrupted. Please create a new backup and try again."
    ),
    ErrorKind.FILE_CORRUPT: (
        "The backup file appears to be corrupted and cannot be restored."
    ),
    ErrorKind.PERMISSION_DENIED: (
        "Permission denied. Please check file permissions and try again."
    ),
    ErrorKind.DISK_SPACE: (
        "Insufficient disk space to complete the operation. "
        "Please free up space and try again."
    ),
    ErrorKind.STRATEGY_UNAVAILABLE: (
        "The required backup method is not available. "
        "Please check your system configuration."
    ),
    ErrorKind.DATABASE_CONNECTION: (
        "Unable to connect to the database. Please check your connection settings."
    ),
    ErrorKind.VALIDATION_FAILED: (
        "The backup file failed validation checks and may be corrupted."
    ),
    ErrorKind.RESTORE_FAILED: (
        "The database restore operation failed. Please check the backup file and try again."
    ),
    ErrorKind.BACKUP_FAILED: "The database backup operation failed. Please try again.",
    ErrorKind.TIMEOUT: (
        "The operation timed out. Please try again or increase the timeout limit."
    ),
    ErrorKind.PARSE_ERROR: (
        "The backup file contains malformed SQL and could not be parsed."
    ),
}


class BackupError(Exception):
    """A categorized backup/restore failure.

    Args:
        message: Technical description of the failure.
        kind: Error category.
        context: Machine-usable details (path, dialect, strategy, ...).
    """

    def __init__(
        self,
        message: str,
        kind: ErrorKind = ErrorKind.GENERAL,
        context: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.kind = kind
        self.context: dict[str, Any] = dict(context or {})

    def __str__(self) -> str:
        return self.message

    # ------------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------------

    @property
    def path(self) -> str | None:
        return self.context.get("path")

    @property
    def dialect(self) -> str | None:
        return self.context.get("dialect")

    @property
    def strategy(self) -> str | None:
        return self.context.get("strategy")

    @property
    def user_message(self) -> str:
        """Deterministic, end-user facing message for this error's kind."""
        fixed = USER_MESSAGES.get(self.kind)
        if fixed is not None:
            return fixed
        return f"A backup/restore error occurred: {self.message}"

    def is_file_related(self) -> bool:
        return self.kind in (
            ErrorKind.FILE_NOT_FOUND,
            ErrorKind.FILE_EMPTY,
            ErrorKind.FILE_CORRUPT,
            ErrorKind.PERMISSION_DENIED,
        )

    def is_resource_related(self) -> bool:
        return self.kind in (ErrorKind.DISK_SPACE, ErrorKind.TIMEOUT)

    def to_dict(self) -> dict[str, Any]:
        """Serialize to a plain mapping for structured results."""
        data: dict[str, Any] = {
            "kind": self.kind.value,
            "message": self.message,
            "user_message": self.user_message,
            "context": dict(self.context),
        }
        if self.__cause__ is not None:
            data["cause"] = f"{type(self.__cause__).__name__}: {self.__cause__}"
        return data

    # ------------------------------------------------------------------
    # Constructors
    # ------------------------------------------------------------------

    @classmethod
    def file_not_found(cls, path: str, operation: str = "restore") -> "BackupError":
        return cls(
            f"Backup file not found: {path}",
            ErrorKind.FILE_NOT_FOUND,
            {"path": str(path), "operation": operation},
        )

    @classmethod
    def file_empty(cls, path: str) -> "BackupError":
        return cls(
            f"Backup file is empty: {path}",
            ErrorKind.FILE_EMPTY,
            {"path": str(path)},
        )

    @classmethod
    def file_corrupt(cls, path: str, reason: str = "") -> "BackupError":
        message = f"Backup file is corrupted: {path}"
        if reason:
            message += f" ({reason})"
        return cls(
            message, ErrorKind.FILE_CORRUPT, {"path": str(path), "reason": reason}
        )

    @classmethod
    def permission_denied(cls, path: str, operation: str = "access") -> "BackupError":
        return cls(
            f"Permission denied for {operation}: {path}",
            ErrorKind.PERMISSION_DENIED,
            {"path": str(path), "operation": operation},
        )

    @classmethod
    def disk_space(cls, path: str, required: int, available: int) -> "BackupError":
        return cls(
            f"Insufficient disk space at {path}: "
            f"required {required} bytes, available {available} bytes",
            ErrorKind.DISK_SPACE,
            {"path": str(path), "required_bytes": required, "available_bytes": available},
        )

    @classmethod
    def strategy_unavailable(
        cls, strategy: str, dialect: str | None = None, reason: str = ""
    ) -> "BackupError":
        message = f"Backup strategy '{strategy}' is not available"
        if dialect:
            message += f" for {dialect}"
        if reason:
            message += f": {reason}"
        return cls(
            message,
            ErrorKind.STRATEGY_UNAVAILABLE,
            {"strategy": strategy, "dialect": dialect, "reason": reason},
        )

    @classmethod
    def database_connection(
        cls, dialect: str | None, details: str, cause: BaseException | None = None
    ) -> "BackupError":
        error = cls(
            f"Database connection failed: {details}",
            ErrorKind.DATABASE_CONNECTION,
            {"dialect": dialect, "details": details},
        )
        error.__cause__ = cause
        return error

    @classmethod
    def validation_failed(cls, path: str, errors: list[str]) -> "BackupError":
        return cls(
            f"Backup validation failed: {'; '.join(errors)}",
            ErrorKind.VALIDATION_FAILED,
            {"path": str(path), "errors": list(errors)},
        )

    @classmethod
    def restore_failed(
        cls,
        path: str | None,
        reason: str,
        context: dict[str, Any] | None = None,
        cause: BaseException | None = None,
    ) -> "BackupError":
        error = cls(
            f"Restore failed: {reason}",
            ErrorKind.RESTORE_FAILED,
            {"path": str(path) if path else None, **(context or {})},
        )
        error.__cause__ = cause
        return error

    @classmethod
    def backup_failed(
        cls,
        path: str | None,
        reason: str,
        context: dict[str, Any] | None = None,
        cause: BaseException | None = None,
    ) -> "BackupError":
        error = cls(
            f"Backup failed: {reason}",
            ErrorKind.BACKUP_FAILED,
            {"path": str(path) if path else None, **(context or {})},
        )
        error.__cause__ = cause
        return error

    @classmethod
    def timeout(
        cls, operation: str, seconds: float, context: dict[str, Any] | None = None
    ) -> "BackupError":
        return cls(
            f"Command timeout after {seconds:g} seconds: {operation}",
            ErrorKind.TIMEOUT,
            {"operation": operation, "timeout_seconds": seconds, **(context or {})},
        )

    @classmethod
    def parse_error(cls, message: str, offset: int, line: int = 0) -> "ParseError":
        return ParseError(message, offset=offset, line=line)


class ParseError(BackupError):
    """Malformed SQL input, carrying the offending character offset."""

    def __init__(self, message: str, offset: int, line: int = 0) -> None:
        super().__init__(
            f"{message} at offset {offset} (line {line})",
            ErrorKind.PARSE_ERROR,
            {"offset": offset, "line": line},
        )
        self.offset = offset
        self.line = line


class UnsupportedFeatureError(BackupError):
    """A schema feature the target dialect cannot express (strict mode)."""

    def __init__(self, message: str, context: dict[str, Any] | None = None) -> None:
        super().__init__(message, ErrorKind.VALIDATION_FAILED, context)
