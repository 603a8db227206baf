"""Strategy interface shared by every backup/restore variant.

``BackupStrategy`` is the capability-set interface: create, restore, probe
and estimate. ``RestoreStrategy`` extends it with file validation,
option inference and partial restore. Concrete variants override the
``_write_backup`` / ``_restore`` / ``_probe`` hooks; the public methods
here turn every failure into a structured result.

Usage:
    strategy = SQLiteNativeStrategy(ConnectionInfo.from_url("sqlite:///app.db"))
    report = await strategy.test_capabilities()
    if report.available:
        result = await strategy.create_backup("backups/app.db")
"""

import logging
import os
import time
from abc import ABC, abstractmethod
from collections.abc import Iterable
from pathlib import Path
from typing import Any, ClassVar

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine

from dbporter.adapters.base import ConnectionInfo
from dbporter.backup.models import (
    BackupOptions,
    BackupResult,
    CapabilityReport,
    RestoreOptions,
    RestoreResult,
    SelectionCriteria,
    StrategyDescriptor,
    ValidationReport,
)
from dbporter.dialects import Dialect
from dbporter.errors import BackupError
from dbporter.parser import get_parser
from dbporter.process.executor import SecureProcessExecutor
from dbporter.restore.orchestrator import RestoreOrchestrator
from dbporter.restore.reader import check_backup_path, read_backup_file, read_backup_header
from dbporter.strategies.formats import SQL_FORMATS, detect_format

MB = 1024 * 1024


class BackupStrategy(ABC):
    """One backup/restore implementation for one dialect.

    Args:
        connection: Target database.
        engine: Async engine for in-process work and connection probes.
        executor: Process executor for external tools.
        logger: Optional logger.
    """

    strategy_type: ClassVar[str]
    dialect: ClassVar[Dialect]
    description: ClassVar[str] = ""
    priority: ClassVar[int] = 99                            # lower wins
    compression: ClassVar[bool] = False
    requirements: ClassVar[tuple[str, ...]] = ()
    advantages: ClassVar[tuple[str, ...]] = ()
    limitations: ClassVar[tuple[str, ...]] = ()
    restore_formats: ClassVar[frozenset[str]] = frozenset()
    bytes_per_second: ClassVar[int] = 2 * MB
    minimum_seconds: ClassVar[int] = 60

    def __init__(
        self,
        connection: ConnectionInfo,
        engine: AsyncEngine | None = None,
        executor: SecureProcessExecutor | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self.connection = connection
        self.engine = engine
        self.logger = logger or logging.getLogger(__name__)
        self.executor = executor or SecureProcessExecutor(logger=self.logger)

    # ------------------------------------------------------------------
    # Description
    # ------------------------------------------------------------------

    def get_strategy_type(self) -> str:
        return self.strategy_type

    def get_description(self) -> str:
        return self.description

    @classmethod
    def get_selection_criteria(cls) -> SelectionCriteria:
        return SelectionCriteria(
            priority=cls.priority,
            requirements=cls.requirements,
            advantages=cls.advantages,
            limitations=cls.limitations,
        )

    def supports_compression(self) -> bool:
        return self.compression

    @classmethod
    def descriptor(cls) -> StrategyDescriptor:
        """Immutable description used by the factory and the CLI."""
        return StrategyDescriptor(
            strategy_type=cls.strategy_type,
            dialect=cls.dialect.value,
            description=cls.description,
            compression=cls.compression,
            criteria=cls.get_selection_criteria(),
        )

    def detect_backup_format(self, path: str | os.PathLike) -> str:
        return detect_format(path).format_id

    # ------------------------------------------------------------------
    # Backup
    # ------------------------------------------------------------------

    async def create_backup(
        self, output_path: str | os.PathLike, options: BackupOptions | None = None
    ) -> BackupResult:
        """Write a backup to ``output_path``.

        The backup is written to ``<output_path>.partial`` and renamed into
        place only when complete. On failure the partial file is removed,
        as is a destination this call created.

        Returns:
            BackupResult; failures carry an ``error`` instead of raising.
        """
        options = options or BackupOptions()
        destination = Path(output_path)
        partial = destination.with_name(destination.name + ".partial")
        existed = destination.exists()
        started = time.monotonic()
        self.logger.info(f"Creating backup with {self.strategy_type}: {destination}")

        try:
            try:
                destination.parent.mkdir(parents=True, exist_ok=True)
            except PermissionError as exc:
                raise BackupError.permission_denied(str(destination.parent), "create directory") from exc
            details = await self._write_backup(partial, options)
            os.replace(partial, destination)
        except BaseException as exc:
            self._cleanup(partial, None if existed else destination)
            if isinstance(exc, BackupError):
                error = exc
            elif isinstance(exc, PermissionError):
                error = BackupError.permission_denied(str(destination), "write")
                error.__cause__ = exc
            elif isinstance(exc, (OSError, SQLAlchemyError)):
                error = BackupError.backup_failed(
                    str(destination), str(exc), context=self._context(), cause=exc
                )
            else:
                raise
            self.logger.error(f"Backup with {self.strategy_type} failed: {error}")
            return BackupResult.failed(
                error,
                self.strategy_type,
                output_path=str(destination),
                duration_seconds=time.monotonic() - started,
            )

        result = BackupResult(
            success=True,
            strategy=self.strategy_type,
            output_path=str(destination),
            size_bytes=destination.stat().st_size,
            duration_seconds=time.monotonic() - started,
            **details,
        )
        self.logger.info(
            f"Backup complete: {destination} ({result.size_bytes} bytes, "
            f"{result.duration_seconds:.2f}s)"
        )
        return result

    @abstractmethod
    async def _write_backup(self, path: Path, options: BackupOptions) -> dict[str, Any]:
        """Write the backup to ``path``; return extra ``BackupResult`` fields."""

    # ------------------------------------------------------------------
    # Restore
    # ------------------------------------------------------------------

    async def restore_backup(
        self, backup_path: str | os.PathLike, options: RestoreOptions | None = None
    ) -> RestoreResult:
        """Restore ``backup_path`` into the target database.

        Returns:
            RestoreResult; failures carry an ``error`` instead of raising.
        """
        return await self._guarded_restore(backup_path, options or RestoreOptions(), None)

    async def _guarded_restore(
        self,
        backup_path: str | os.PathLike,
        options: RestoreOptions,
        tables: list[str] | None,
    ) -> RestoreResult:
        started = time.monotonic()
        self.logger.info(f"Restoring {backup_path} with {self.strategy_type}")
        try:
            result = await self._restore(Path(backup_path), options, tables)
        except BackupError as exc:
            error = exc
        except (OSError, SQLAlchemyError) as exc:
            error = BackupError.restore_failed(
                str(backup_path), str(exc), context=self._context(), cause=exc
            )
        else:
            result.strategy = self.strategy_type
            result.input_path = str(backup_path)
            result.duration_seconds = time.monotonic() - started
            return result
        self.logger.error(f"Restore with {self.strategy_type} failed: {error}")
        return RestoreResult.failed(
            error,
            self.strategy_type,
            input_path=str(backup_path),
            duration_seconds=time.monotonic() - started,
        )

    @abstractmethod
    async def _restore(
        self, path: Path, options: RestoreOptions, tables: list[str] | None
    ) -> RestoreResult:
        """Restore ``path``; ``tables`` limits the restore when supported."""

    async def _restore_sql(
        self, path: Path, options: RestoreOptions, tables: list[str] | None
    ) -> RestoreResult:
        orchestrator = RestoreOrchestrator(self.require_engine(), self.dialect, logger=self.logger)
        return await orchestrator.run(path, options, tables=tables)

    # ------------------------------------------------------------------
    # Capabilities and estimates
    # ------------------------------------------------------------------

    async def test_capabilities(self) -> CapabilityReport:
        """Probe this strategy's requirements.

        Never raises; a failing probe yields ``available=False`` with the
        reason in ``error`` or ``details``.
        """
        report = CapabilityReport(
            strategy=self.strategy_type, dialect=self.dialect.value, available=False
        )
        try:
            await self._probe(report)
        except (BackupError, OSError, SQLAlchemyError) as exc:
            report.error = str(exc)
        report.available = (
            report.error is None
            and bool(report.capabilities)
            and all(report.capabilities.values())
        )
        self.logger.debug(
            f"Capabilities of {self.strategy_type}: "
            f"{'available' if report.available else 'unavailable'} {report.capabilities}"
        )
        return report

    @abstractmethod
    async def _probe(self, report: CapabilityReport) -> None:
        """Fill ``report.capabilities`` (and ``details`` for failures)."""

    async def _probe_connection(self, report: CapabilityReport) -> bool:
        if self.engine is None:
            report.capabilities["database_connection"] = False
            report.details["database_connection"] = "no engine configured"
            return False
        try:
            async with self.engine.connect() as conn:
                await conn.execute(text("SELECT 1"))
        except (SQLAlchemyError, OSError) as exc:
            report.capabilities["database_connection"] = False
            report.details["database_connection"] = str(getattr(exc, "orig", None) or exc)
            return False
        report.capabilities["database_connection"] = True
        return True

    async def estimate_backup_size(self) -> int:
        """Approximate size of the database in bytes (0 if unknown)."""
        try:
            return await self._database_size()
        except (SQLAlchemyError, OSError) as exc:
            self.logger.debug(f"Failed to estimate backup size: {exc}")
            return 0

    async def estimate_backup_time(self) -> int:
        """Approximate backup duration in whole seconds."""
        size = await self.estimate_backup_size()
        return max(self.minimum_seconds, int(size / self.bytes_per_second))

    async def _database_size(self) -> int:
        if self.dialect is Dialect.SQLITE:
            path = self.connection.sqlite_path
            return path.stat().st_size if path is not None and path.is_file() else 0
        if self.engine is None:
            return 0
        if self.dialect is Dialect.POSTGRESQL:
            query = "SELECT pg_database_size(current_database())"
        else:
            query = (
                "SELECT COALESCE(SUM(data_length + index_length), 0) "
                "FROM information_schema.tables WHERE table_schema = DATABASE()"
            )
        async with self.engine.connect() as conn:
            result = await conn.execute(text(query))
            return int(result.scalar() or 0)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def require_engine(self) -> AsyncEngine:
        if self.engine is None:
            raise BackupError.strategy_unavailable(
                self.strategy_type, self.dialect.value, reason="no database engine configured"
            )
        return self.engine

    def _context(self) -> dict[str, Any]:
        return {"strategy": self.strategy_type, "dialect": self.dialect.value}

    def _cleanup(self, *paths: Path | None) -> None:
        for path in paths:
            if path is None:
                continue
            try:
                path.unlink(missing_ok=True)
            except OSError as exc:
                self.logger.warning(f"Could not remove {path}: {exc}")


class RestoreStrategy(BackupStrategy):
    """Strategy with the extended restore contract."""

    supports_partial_restore: ClassVar[bool] = False

    def validate_backup_file(self, path: str | os.PathLike) -> ValidationReport:
        """Check that ``path`` is a backup this strategy can restore.

        SQL backups are parsed in full, so a malformed script is reported
        here rather than midway through a restore.
        """
        report = ValidationReport(valid=False, path=str(path))
        try:
            checked = check_backup_path(path)
            report.size_bytes = checked.stat().st_size
            fmt = detect_format(checked)
        except BackupError as exc:
            report.errors.append(exc.message)
            return report

        report.format_id = fmt.format_id
        report.compressed = fmt.compressed
        report.dialect = fmt.dialect.value if fmt.dialect else None
        if fmt.format_id not in self.restore_formats:
            report.errors.append(
                f"Format {fmt.format_id} cannot be restored by {self.strategy_type}"
            )
            return report

        if fmt.is_sql:
            self._validate_sql(checked, fmt.dialect, report)
        else:
            self._validate_binary(checked, report)
        report.valid = not report.errors
        return report

    def _validate_sql(self, path: Path, dialect: Dialect | None, report: ValidationReport) -> None:
        try:
            content = read_backup_file(path)
            statements = get_parser(dialect or self.dialect).parse(content)
        except BackupError as exc:
            report.errors.append(exc.message)
            return
        report.statement_count = len(statements)
        if not statements:
            report.warnings.append("Backup contains no statements")
        header = read_backup_header(content)
        if header is None:
            report.warnings.append("No dbporter header; dialect was inferred from content")
        elif header.needs_translation:
            report.warnings.append(
                f"Backup requests conversion from {header.dialect.label} "
                f"to {header.target_dialect.label}"
            )

    def _validate_binary(self, path: Path, report: ValidationReport) -> None:
        """Formats without a structural check pass on signature alone."""

    def get_restore_options(self, path: str | os.PathLike) -> dict[str, Any]:
        """Restore options inferred from the file's content."""
        validation = self.validate_backup_file(path)
        is_sql = validation.format_id in SQL_FORMATS
        return {
            "full_restore": validation.valid,
            "format": validation.format_id,
            "dialect": validation.dialect,
            "compressed": validation.compressed,
            "execute_in_transaction": is_sql,
            "validate_statements": is_sql,
            "partial_restore": self.supports_partial_restore,
            "statement_count": validation.statement_count,
            "estimated_duration_seconds": max(
                self.minimum_seconds, int(validation.size_bytes / self.bytes_per_second)
            ),
        }

    async def partial_restore(
        self,
        path: str | os.PathLike,
        targets: Iterable[str],
        options: RestoreOptions | None = None,
    ) -> RestoreResult:
        """Restore only the statements that touch ``targets`` (table names)."""
        if not self.supports_partial_restore:
            error = BackupError.strategy_unavailable(
                self.strategy_type, self.dialect.value, reason="partial restore is not supported"
            )
            return RestoreResult.failed(error, self.strategy_type, input_path=str(path))
        return await self._guarded_restore(path, options or RestoreOptions(), list(targets))
