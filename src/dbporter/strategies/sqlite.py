"""SQLite strategies.

=====================  ========  ==========================================
Strategy               Priority  Mechanism
=====================  ========  ==========================================
``sqlite_native``      1         online backup API (page-by-page copy)
``sqlite_vacuum``      2         ``VACUUM INTO`` (compacted copy, 3.27+)
``sqlite_sql``         3         in-process SQL generation
``sqlite_file_copy``   4         WAL checkpoint, then a plain file copy
=====================  ========  ==========================================

The three image strategies write a complete database file and restore by
replacing the target database wholesale; they do not support table
selection, compression or cross-dialect conversion.
"""

import asyncio
import os
import shutil
import sqlite3
from abc import abstractmethod
from contextlib import closing
from pathlib import Path
from typing import Any

import aiosqlite

from dbporter.backup.models import (
    BackupOptions,
    CapabilityReport,
    RestoreOptions,
    RestoreResult,
    ValidationReport,
)
from dbporter.dialects import Dialect
from dbporter.errors import BackupError
from dbporter.restore.reader import check_backup_path
from dbporter.strategies.base import MB, RestoreStrategy
from dbporter.strategies.formats import SQLITE_BINARY, detect_format
from dbporter.strategies.generated import SQLGenerationStrategy

VACUUM_INTO_VERSION = (3, 27, 0)


def integrity_error(path: Path) -> str | None:
    """``PRAGMA integrity_check`` on a database file; ``None`` when it is ok."""
    uri = f"{path.resolve().as_uri()}?mode=ro"
    try:
        with closing(sqlite3.connect(uri, uri=True)) as conn:
            row = conn.execute("PRAGMA integrity_check").fetchone()
    except sqlite3.DatabaseError as exc:
        return str(exc)
    if row is None or row[0] != "ok":
        return row[0] if row else "integrity check returned nothing"
    return None


class SQLiteImageStrategy(RestoreStrategy):
    """Strategies that back up and restore whole database files."""

    dialect = Dialect.SQLITE
    restore_formats = frozenset({SQLITE_BINARY})
    limitations = (
        "Whole database only",
        "No compression or cross-dialect conversion",
    )

    def database_path(self) -> Path:
        path = self.connection.sqlite_path
        if path is None:
            raise BackupError.strategy_unavailable(
                self.strategy_type, self.dialect.value, reason="an on-disk SQLite database is required"
            )
        return path

    # ------------------------------------------------------------------
    # Backup
    # ------------------------------------------------------------------

    async def _write_backup(self, path: Path, options: BackupOptions) -> dict[str, Any]:
        source = self.database_path()
        if not source.is_file():
            raise BackupError.backup_failed(
                str(path), f"database file not found: {source}", context=self._context()
            )
        warnings = []
        if options.compress:
            warnings.append(f"{self.strategy_type} does not compress; the image is uncompressed")
        if options.tables or options.exclude_tables:
            warnings.append(f"{self.strategy_type} copies the whole database; table selection ignored")
        if options.target_dialect:
            warnings.append(f"{self.strategy_type} cannot convert dialects; Target-Dialect ignored")

        await self._copy_database(source, path)
        problem = await asyncio.to_thread(integrity_error, path)
        if problem:
            raise BackupError.backup_failed(
                str(path), f"backup image failed integrity check: {problem}", context=self._context()
            )
        return {
            "compressed": False,
            "format_id": SQLITE_BINARY,
            "warnings": warnings,
            "metadata": {"dialect": self.dialect.value, "source_path": str(source)},
        }

    @abstractmethod
    async def _copy_database(self, source: Path, destination: Path) -> None:
        ...

    # ------------------------------------------------------------------
    # Restore
    # ------------------------------------------------------------------

    async def _restore(
        self, path: Path, options: RestoreOptions, tables: list[str] | None
    ) -> RestoreResult:
        check_backup_path(path)
        fmt = detect_format(path)
        if fmt.format_id != SQLITE_BINARY or fmt.compressed:
            raise BackupError.file_corrupt(
                str(path), f"expected an uncompressed SQLite database image, found {fmt.format_id}"
            )
        problem = await asyncio.to_thread(integrity_error, path)
        if problem:
            raise BackupError.file_corrupt(str(path), f"integrity check failed: {problem}")

        target = self.database_path()
        if self.engine is not None:
            # Pooled connections would keep the old file open
            await self.engine.dispose()
        await self._replace_database(path, target)
        self.logger.info(f"Replaced {target} with {path}")
        return RestoreResult(success=True, source_dialect=self.dialect.value)

    async def _replace_database(self, backup: Path, target: Path) -> None:
        async with aiosqlite.connect(backup) as source, aiosqlite.connect(target) as destination:
            await source.backup(destination)

    def _validate_binary(self, path: Path, report: ValidationReport) -> None:
        problem = integrity_error(path)
        if problem:
            report.errors.append(f"Integrity check failed: {problem}")

    # ------------------------------------------------------------------
    # Probes
    # ------------------------------------------------------------------

    async def _probe(self, report: CapabilityReport) -> None:
        report.capabilities["sqlite3_module"] = True
        report.details["sqlite_version"] = sqlite3.sqlite_version
        path = self.connection.sqlite_path
        exists = path is not None and path.is_file()
        report.capabilities["database_file"] = exists
        if not exists:
            report.details["database_file"] = "in-memory or missing database file"
            return
        report.capabilities["database_readable"] = os.access(path, os.R_OK)


class SQLiteNativeStrategy(SQLiteImageStrategy):
    strategy_type = "sqlite_native"
    description = "SQLite Native Backup (online backup API)"
    priority = 1
    requirements = ("sqlite3_module", "database_file")
    advantages = (
        "Atomic, consistent snapshot",
        "Safe with concurrent writers and WAL mode",
    )
    bytes_per_second = 10 * MB
    minimum_seconds = 10

    async def _copy_database(self, source: Path, destination: Path) -> None:
        async with aiosqlite.connect(source) as src, aiosqlite.connect(destination) as dest:
            await src.backup(dest)


class SQLiteVacuumStrategy(SQLiteImageStrategy):
    strategy_type = "sqlite_vacuum"
    description = "SQLite VACUUM INTO Backup (compacted copy)"
    priority = 2
    requirements = ("sqlite_3.27.0+", "database_file")
    advantages = (
        "Compacted, defragmented output",
        "Single statement operation",
    )
    bytes_per_second = 8 * MB
    minimum_seconds = 15

    async def _copy_database(self, source: Path, destination: Path) -> None:
        # VACUUM INTO refuses to overwrite
        destination.unlink(missing_ok=True)
        async with aiosqlite.connect(source, isolation_level=None) as conn:
            await conn.execute("VACUUM INTO ?", (str(destination),))

    async def _probe(self, report: CapabilityReport) -> None:
        supported = sqlite3.sqlite_version_info >= VACUUM_INTO_VERSION
        report.capabilities["vacuum_into"] = supported
        if not supported:
            report.details["vacuum_into"] = f"SQLite {sqlite3.sqlite_version} < 3.27.0"
        await super()._probe(report)


class SQLiteSQLStrategy(SQLGenerationStrategy):
    strategy_type = "sqlite_sql"
    dialect = Dialect.SQLITE
    description = "SQLite SQL Dump (in-process generation)"
    priority = 3
    bytes_per_second = 1 * MB
    minimum_seconds = 30


class SQLiteFileCopyStrategy(SQLiteImageStrategy):
    strategy_type = "sqlite_file_copy"
    description = "SQLite File Copy Backup (checkpoint and copy)"
    priority = 4
    requirements = ("database_file", "database_readable")
    advantages = (
        "Works everywhere",
        "Fastest for small databases",
    )
    limitations = (
        "Not safe against concurrent writers",
        "Whole database only",
    )
    bytes_per_second = 20 * MB
    minimum_seconds = 5

    async def _copy_database(self, source: Path, destination: Path) -> None:
        await asyncio.to_thread(self._checkpoint, source)
        await asyncio.to_thread(shutil.copy2, source, destination)

    async def _replace_database(self, backup: Path, target: Path) -> None:
        staged = target.with_name(target.name + ".partial")
        await asyncio.to_thread(shutil.copy2, backup, staged)
        for suffix in ("-wal", "-shm"):
            target.with_name(target.name + suffix).unlink(missing_ok=True)
        os.replace(staged, target)

    def _checkpoint(self, source: Path) -> None:
        with closing(sqlite3.connect(source)) as conn:
            mode = conn.execute("PRAGMA journal_mode").fetchone()
            if mode and mode[0].lower() == "wal":
                conn.execute("PRAGMA wal_checkpoint(TRUNCATE)")
                self.logger.debug(f"Checkpointed WAL of {source}")
