"""Backup facade: strategy selection plus pre-flight checks.

``BackupManager`` is the entry point most callers need. It owns (or
borrows) the async engine, picks a strategy per operation and converts
every ``BackupError`` into a structured result.

Usage:
    async with BackupManager("postgresql://app:secret@db/app") as manager:
        result = await manager.create_backup("backups/app.sql", BackupOptions(compress=True))
        if not result.success:
            print(result.error.user_message)
"""

import logging
import os
import shutil
from pathlib import Path
from typing import Any

from sqlalchemy.ext.asyncio import AsyncEngine

from dbporter.adapters.base import ConnectionInfo
from dbporter.adapters.engine import create_async_engine_pooled
from dbporter.backup.models import (
    BackupEstimate,
    BackupOptions,
    BackupResult,
    CapabilityReport,
    OperationError,
    RestoreOptions,
    RestoreResult,
    StrategyDescriptor,
    ValidationReport,
)
from dbporter.errors import BackupError
from dbporter.process.executor import SecureProcessExecutor
from dbporter.restore.reader import check_backup_path
from dbporter.strategies.base import RestoreStrategy
from dbporter.strategies.factory import STRATEGY_CLASSES, StrategyFactory
from dbporter.strategies.formats import detect_format


class BackupManager:
    """Create, restore and inspect backups of one database.

    Args:
        database: Connection URL or parsed ``ConnectionInfo``.
        engine: Existing async engine. When omitted the manager creates one
            and disposes it on ``close()``.
        executor: Process executor for shell strategies.
        logger: Optional logger.
    """

    def __init__(
        self,
        database: str | ConnectionInfo,
        *,
        engine: AsyncEngine | None = None,
        executor: SecureProcessExecutor | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self.connection = (
            database if isinstance(database, ConnectionInfo) else ConnectionInfo.from_url(database)
        )
        self.logger = logger or logging.getLogger(__name__)
        self._owns_engine = engine is None
        self.engine = engine or create_async_engine_pooled(self.connection)
        self.factory = StrategyFactory(
            self.connection, engine=self.engine, executor=executor, logger=self.logger
        )

    async def __aenter__(self) -> "BackupManager":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    async def close(self) -> None:
        """Dispose the engine if this manager created it."""
        if self._owns_engine:
            await self.engine.dispose()

    # ------------------------------------------------------------------
    # Backup
    # ------------------------------------------------------------------

    async def create_backup(
        self, output_path: str | os.PathLike, options: BackupOptions | None = None
    ) -> BackupResult:
        """Back up the database to ``output_path``.

        Checks that the destination is writable and that free space covers
        the size estimate, then delegates to the selected strategy.
        Strategies that cannot select tables or convert dialects are passed
        over when the options ask for either.
        """
        options = options or BackupOptions()
        destination = Path(output_path)
        try:
            directory = _existing_parent(destination)
            if not os.access(directory, os.W_OK):
                raise BackupError.permission_denied(str(directory), "write")

            sql_only = bool(options.tables or options.exclude_tables or options.target_dialect)
            selection = await self.factory.select_for_backup(options.force_strategy, sql_only=sql_only)
            strategy = selection.strategy

            required = await strategy.estimate_backup_size()
            available = shutil.disk_usage(directory).free
            if required > available:
                raise BackupError.disk_space(str(directory), required, available)
        except BackupError as exc:
            self.logger.error(f"Backup not started: {exc}")
            return BackupResult.failed(exc, options.force_strategy, output_path=str(destination))

        return await strategy.create_backup(destination, options)

    # ------------------------------------------------------------------
    # Restore
    # ------------------------------------------------------------------

    async def restore_backup(
        self, backup_path: str | os.PathLike, options: RestoreOptions | None = None
    ) -> RestoreResult:
        """Restore ``backup_path`` with the best strategy for its format."""
        options = options or RestoreOptions()
        try:
            strategy = await self._restore_strategy(backup_path, options)
        except BackupError as exc:
            self.logger.error(f"Restore not started: {exc}")
            return RestoreResult.failed(exc, options.force_strategy, input_path=str(backup_path))
        return await strategy.restore_backup(backup_path, options)

    async def partial_restore(
        self,
        backup_path: str | os.PathLike,
        tables: list[str],
        options: RestoreOptions | None = None,
    ) -> RestoreResult:
        """Restore only the statements touching ``tables``."""
        options = options or RestoreOptions()
        try:
            strategy = await self._restore_strategy(backup_path, options)
        except BackupError as exc:
            self.logger.error(f"Partial restore not started: {exc}")
            return RestoreResult.failed(exc, options.force_strategy, input_path=str(backup_path))
        return await strategy.partial_restore(backup_path, tables, options)

    async def _restore_strategy(
        self, backup_path: str | os.PathLike, options: RestoreOptions
    ) -> RestoreStrategy:
        check_backup_path(backup_path)
        selection = await self.factory.select_for_restore(backup_path, options.force_strategy)
        return selection.strategy

    # ------------------------------------------------------------------
    # Inspection (no database access)
    # ------------------------------------------------------------------

    def validate_backup_file(self, backup_path: str | os.PathLike) -> ValidationReport:
        """Validate ``backup_path`` with the first strategy that reads its format."""
        try:
            strategy = self._reader_for(backup_path)
        except BackupError as exc:
            report = ValidationReport(valid=False, path=str(backup_path))
            report.errors.append(exc.message)
            return report
        return strategy.validate_backup_file(backup_path)

    def get_restore_options(self, backup_path: str | os.PathLike) -> dict[str, Any]:
        """Restore options inferred from the backup's content."""
        try:
            strategy = self._reader_for(backup_path)
        except BackupError as exc:
            return {"full_restore": False, "error": OperationError.from_exception(exc).model_dump()}
        options = strategy.get_restore_options(backup_path)
        options["strategy"] = strategy.strategy_type
        return options

    def _reader_for(self, backup_path: str | os.PathLike) -> RestoreStrategy:
        checked = check_backup_path(backup_path)
        fmt = detect_format(checked)
        for strategy in self.factory.candidates():
            if fmt.format_id in strategy.restore_formats:
                return strategy
        raise BackupError.strategy_unavailable(
            "auto",
            self.connection.dialect.value,
            reason=f"no {self.connection.dialect.label} strategy reads {fmt.format_id} backups",
        )

    # ------------------------------------------------------------------
    # Capabilities
    # ------------------------------------------------------------------

    async def test_capabilities(self) -> list[CapabilityReport]:
        """Probe every strategy for this database."""
        return await self.factory.probe()

    async def estimate_backup(self, force_strategy: str | None = None) -> BackupEstimate:
        """Size and duration estimate from the strategy a backup would use."""
        try:
            selection = await self.factory.select_for_backup(force_strategy)
        except BackupError as exc:
            return BackupEstimate(strategy=force_strategy, error=OperationError.from_exception(exc))
        strategy = selection.strategy
        return BackupEstimate(
            strategy=strategy.strategy_type,
            size_bytes=await strategy.estimate_backup_size(),
            time_seconds=await strategy.estimate_backup_time(),
        )

    def available_strategies(self) -> list[StrategyDescriptor]:
        """Descriptors of every strategy registered for this dialect."""
        return [cls.descriptor() for cls in STRATEGY_CLASSES[self.connection.dialect]]


def _existing_parent(path: Path) -> Path:
    """Nearest existing ancestor directory of ``path``."""
    directory = path.absolute().parent
    while not directory.exists() and directory != directory.parent:
        directory = directory.parent
    return directory
