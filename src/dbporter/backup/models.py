"""Option and result models for backup and restore operations.

Every public backup/restore operation takes an options model and returns a
structured result with ``success`` and, on failure, an ``OperationError``
carrying the error kind, a user-facing message and machine context.

Usage:
    from dbporter.backup.models import BackupOptions, RestoreOptions

    options = RestoreOptions(stop_on_error=True, progress_callback=print)
"""

from collections.abc import Callable
from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from dbporter.errors import BackupError, ErrorKind

ProgressCallback = Callable[[dict[str, Any]], None]


# ============================================================================
# Strategy description
# ============================================================================


class SelectionCriteria(BaseModel):
    """Ordered facts the factory consults when choosing a strategy."""

    model_config = ConfigDict(frozen=True)

    priority: int                                           # lower wins
    requirements: tuple[str, ...] = ()
    advantages: tuple[str, ...] = ()
    limitations: tuple[str, ...] = ()


class StrategyDescriptor(BaseModel):
    """Immutable description of one strategy variant."""

    model_config = ConfigDict(frozen=True)

    strategy_type: str
    dialect: str
    description: str
    compression: bool = False
    criteria: SelectionCriteria


# ============================================================================
# Options
# ============================================================================


class BackupOptions(BaseModel):
    """Options accepted by ``create_backup``."""

    model_config = ConfigDict(extra="forbid", arbitrary_types_allowed=True)

    force_strategy: str | None = None
    compress: bool = False                                  # gzip SQL output
    include_schema: bool = True
    include_data: bool = True
    tables: list[str] | None = None                         # None = all tables
    exclude_tables: list[str] = Field(default_factory=list)
    drop_existing: bool = True                              # emit DROP TABLE IF EXISTS
    batch_size: int = Field(default=500, ge=1)              # rows per INSERT
    target_dialect: str | None = None                       # cross-dialect request
    timeout: float = Field(default=1800, gt=0)              # external tool timeout
    progress_callback: ProgressCallback | None = None


class RestoreOptions(BaseModel):
    """Options accepted by ``restore_backup``."""

    model_config = ConfigDict(extra="forbid", arbitrary_types_allowed=True)

    force_strategy: str | None = None
    execute_in_transaction: bool = True
    disable_constraints: bool = True
    disable_foreign_keys: bool = True
    disable_unique_checks: bool = True
    reset_sequences: bool = True
    stop_on_error: bool = False
    validate_statements: bool = True
    parser: str = "scanner"                                 # "scanner" or "line"
    translate: bool = True                                  # honor Target-Dialect
    max_failure_records: int = Field(default=100, ge=0)
    progress_interval: int = Field(default=10, ge=1)        # statements between reports
    timeout: float = Field(default=1800, gt=0)
    progress_callback: ProgressCallback | None = None

    @property
    def foreign_keys_disabled(self) -> bool:
        return self.disable_constraints and self.disable_foreign_keys

    @property
    def unique_checks_disabled(self) -> bool:
        return self.disable_constraints and self.disable_unique_checks


# ============================================================================
# Errors and statistics
# ============================================================================


class OperationError(BaseModel):
    """Serializable form of a ``BackupError``."""

    kind: ErrorKind
    message: str
    user_message: str
    context: dict[str, Any] = Field(default_factory=dict)
    cause: str | None = None

    @classmethod
    def from_exception(cls, exc: BaseException) -> "OperationError":
        if isinstance(exc, BackupError):
            data = exc.to_dict()
            return cls(
                kind=exc.kind,
                message=data["message"],
                user_message=data["user_message"],
                context=data["context"],
                cause=data.get("cause"),
            )
        error = BackupError(str(exc))
        return cls(
            kind=error.kind,
            message=str(exc),
            user_message=error.user_message,
            cause=type(exc).__name__,
        )


class FailureRecord(BaseModel):
    """One failed statement: position, preview and driver message."""

    index: int
    preview: str
    message: str


class ExecutionStatistics(BaseModel):
    """Counters for one restore run.

    ``executed + failed + skipped == total`` holds once the run ends.
    """

    total: int = 0
    executed: int = 0
    failed: int = 0
    skipped: int = 0
    sequences_reset: int = 0
    sequence_failures: int = 0
    failures: list[FailureRecord] = Field(default_factory=list)
    failures_truncated: int = 0                             # failures beyond the record limit
    max_failure_records: int = 100

    def record_failure(self, index: int, preview: str, message: str) -> None:
        self.failed += 1
        if len(self.failures) < self.max_failure_records:
            self.failures.append(FailureRecord(index=index, preview=preview, message=message))
        else:
            self.failures_truncated += 1

    @property
    def accounted(self) -> int:
        return self.executed + self.failed + self.skipped


# ============================================================================
# Results
# ============================================================================


class BackupResult(BaseModel):
    success: bool
    strategy: str | None = None
    output_path: str | None = None
    size_bytes: int = 0
    duration_seconds: float = 0.0
    compressed: bool = False
    format_id: str | None = None
    tables: list[str] = Field(default_factory=list)
    rows: int = 0
    metadata: dict[str, Any] = Field(default_factory=dict)
    warnings: list[str] = Field(default_factory=list)
    error: OperationError | None = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @classmethod
    def failed(cls, exc: BaseException, strategy: str | None = None, **kwargs: Any) -> "BackupResult":
        return cls(success=False, strategy=strategy, error=OperationError.from_exception(exc), **kwargs)


class RestoreResult(BaseModel):
    success: bool
    strategy: str | None = None
    input_path: str | None = None
    duration_seconds: float = 0.0
    statistics: ExecutionStatistics = Field(default_factory=ExecutionStatistics)
    source_dialect: str | None = None
    translated: bool = False
    warnings: list[str] = Field(default_factory=list)
    rolled_back: bool = False
    error: OperationError | None = None

    @classmethod
    def failed(cls, exc: BaseException, strategy: str | None = None, **kwargs: Any) -> "RestoreResult":
        return cls(success=False, strategy=strategy, error=OperationError.from_exception(exc), **kwargs)


class CapabilityReport(BaseModel):
    """Per-capability pass/fail map for one strategy."""

    strategy: str
    dialect: str
    available: bool
    capabilities: dict[str, bool] = Field(default_factory=dict)
    details: dict[str, str] = Field(default_factory=dict)
    error: str | None = None


class ValidationReport(BaseModel):
    valid: bool
    path: str
    format_id: str | None = None
    dialect: str | None = None
    compressed: bool = False
    size_bytes: int = 0
    statement_count: int = 0
    errors: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)


class BackupEstimate(BaseModel):
    strategy: str | None = None
    size_bytes: int = 0
    time_seconds: int = 0
    error: OperationError | None = None
