"""Backup strategies and their selection."""

from dbporter.strategies.base import BackupStrategy, RestoreStrategy
from dbporter.strategies.factory import STRATEGY_CLASSES, StrategyFactory, StrategySelection
from dbporter.strategies.formats import BackupFormat, detect_format, guess_dialect
from dbporter.strategies.generated import (
    MySQLSQLStrategy,
    PostgreSQLSQLStrategy,
    SQLGenerationStrategy,
)
from dbporter.strategies.shell import MySQLShellStrategy, PostgreSQLShellStrategy, ShellStrategy
from dbporter.strategies.sqlite import (
    SQLiteFileCopyStrategy,
    SQLiteImageStrategy,
    SQLiteNativeStrategy,
    SQLiteSQLStrategy,
    SQLiteVacuumStrategy,
)

__all__ = [
    "STRATEGY_CLASSES",
    "BackupFormat",
    "BackupStrategy",
    "MySQLSQLStrategy",
    "MySQLShellStrategy",
    "PostgreSQLSQLStrategy",
    "PostgreSQLShellStrategy",
    "RestoreStrategy",
    "SQLGenerationStrategy",
    "SQLiteFileCopyStrategy",
    "SQLiteImageStrategy",
    "SQLiteNativeStrategy",
    "SQLiteSQLStrategy",
    "SQLiteVacuumStrategy",
    "ShellStrategy",
    "StrategyFactory",
    "StrategySelection",
    "detect_format",
    "guess_dialect",
]
