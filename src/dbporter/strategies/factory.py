"""Strategy selection.

Every strategy registered for the connection's dialect is probed with
``test_capabilities()``; the passing ones are ranked by
``(priority, declaration index)`` and the first wins. A forced strategy
skips ranking but must still pass its probe.

Usage:
    factory = StrategyFactory(connection, engine=engine)
    selection = await factory.select_for_backup()
    await selection.strategy.create_backup("backup.sql")
"""

import logging
import os
from dataclasses import dataclass, field

from sqlalchemy.ext.asyncio import AsyncEngine

from dbporter.adapters.base import ConnectionInfo
from dbporter.backup.models import CapabilityReport
from dbporter.dialects import Dialect
from dbporter.errors import BackupError
from dbporter.process.executor import SecureProcessExecutor
from dbporter.strategies.base import RestoreStrategy
from dbporter.strategies.formats import SQL_FORMATS, detect_format
from dbporter.strategies.generated import MySQLSQLStrategy, PostgreSQLSQLStrategy
from dbporter.strategies.shell import MySQLShellStrategy, PostgreSQLShellStrategy
from dbporter.strategies.sqlite import (
    SQLiteFileCopyStrategy,
    SQLiteNativeStrategy,
    SQLiteSQLStrategy,
    SQLiteVacuumStrategy,
)

# Declaration order breaks priority ties
STRATEGY_CLASSES: dict[Dialect, tuple[type[RestoreStrategy], ...]] = {
    Dialect.MYSQL: (MySQLShellStrategy, MySQLSQLStrategy),
    Dialect.POSTGRESQL: (PostgreSQLShellStrategy, PostgreSQLSQLStrategy),
    Dialect.SQLITE: (
        SQLiteNativeStrategy,
        SQLiteVacuumStrategy,
        SQLiteSQLStrategy,
        SQLiteFileCopyStrategy,
    ),
}


@dataclass
class StrategySelection:
    """The chosen strategy plus the probe reports behind the choice."""

    strategy: RestoreStrategy
    reports: list[CapabilityReport] = field(default_factory=list)
    forced: bool = False


class StrategyFactory:
    """Builds and selects strategies for one connection.

    Args:
        connection: Target database.
        engine: Async engine handed to every strategy.
        executor: Process executor handed to every strategy.
        logger: Optional logger.
    """

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

    @property
    def dialect(self) -> Dialect:
        return self.connection.dialect

    def candidates(self) -> list[RestoreStrategy]:
        """One instance of every strategy for this dialect, in declaration order."""
        return [
            cls(self.connection, engine=self.engine, executor=self.executor, logger=self.logger)
            for cls in STRATEGY_CLASSES[self.dialect]
        ]

    def get(self, strategy_type: str) -> RestoreStrategy:
        """Instantiate ``strategy_type``.

        Raises:
            BackupError: strategy_unavailable if no such strategy exists for
                this dialect.
        """
        for strategy in self.candidates():
            if strategy.strategy_type == strategy_type:
                return strategy
        known = ", ".join(cls.strategy_type for cls in STRATEGY_CLASSES[self.dialect])
        raise BackupError.strategy_unavailable(
            strategy_type, self.dialect.value, reason=f"unknown strategy; choose from {known}"
        )

    async def probe(self) -> list[CapabilityReport]:
        """Capability reports for every candidate."""
        return [await strategy.test_capabilities() for strategy in self.candidates()]

    async def select_for_backup(
        self, force_strategy: str | None = None, sql_only: bool = False
    ) -> StrategySelection:
        """Pick the best available strategy for a backup.

        Args:
            force_strategy: Use this strategy if its probe passes.
            sql_only: Only consider strategies that write SQL (needed for
                table selection and dialect conversion).

        Raises:
            BackupError: strategy_unavailable when nothing qualifies.
        """
        if force_strategy:
            return await self._forced(force_strategy)
        pool = self.candidates()
        if sql_only:
            pool = [strategy for strategy in pool if strategy.restore_formats & SQL_FORMATS]
        return await self._rank(pool, "backup")

    async def select_for_restore(
        self, path: str | os.PathLike, force_strategy: str | None = None
    ) -> StrategySelection:
        """Pick the best available strategy able to read ``path``.

        Raises:
            BackupError: strategy_unavailable when nothing qualifies, or a
                file error from format detection.
        """
        if force_strategy:
            return await self._forced(force_strategy)
        fmt = detect_format(path)
        pool = [strategy for strategy in self.candidates() if fmt.format_id in strategy.restore_formats]
        self.logger.debug(
            f"Backup format {fmt.format_id}; restore candidates: "
            f"{[strategy.strategy_type for strategy in pool]}"
        )
        return await self._rank(pool, f"restore of {fmt.format_id} backup")

    async def _forced(self, strategy_type: str) -> StrategySelection:
        strategy = self.get(strategy_type)
        report = await strategy.test_capabilities()
        if not report.available:
            failed = [name for name, ok in report.capabilities.items() if not ok]
            reason = report.error or f"failed checks: {', '.join(failed) or 'none reported'}"
            raise BackupError.strategy_unavailable(strategy_type, self.dialect.value, reason=reason)
        self.logger.info(f"Using forced strategy {strategy_type}")
        return StrategySelection(strategy=strategy, reports=[report], forced=True)

    async def _rank(self, pool: list[RestoreStrategy], purpose: str) -> StrategySelection:
        reports = []
        passing = []
        for index, strategy in enumerate(pool):
            report = await strategy.test_capabilities()
            reports.append(report)
            if report.available:
                passing.append((strategy.priority, index, strategy))
        if not passing:
            tried = ", ".join(strategy.strategy_type for strategy in pool) or "none"
            raise BackupError.strategy_unavailable(
                "auto", self.dialect.value, reason=f"no strategy available for {purpose} (tried: {tried})"
            )
        passing.sort(key=lambda item: (item[0], item[1]))
        chosen = passing[0][2]
        self.logger.info(f"Selected strategy {chosen.strategy_type} for {purpose}")
        return StrategySelection(strategy=chosen, reports=reports)
