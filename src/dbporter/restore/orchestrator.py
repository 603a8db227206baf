"""Sequential restore of a parsed SQL backup against a live connection.

A run moves through fixed phases, each reported to the progress callback:

====================  ========
Phase                 Progress
====================  ========
Read backup file      5
Parse statements      10
Prepare session       15
Execute statements    20 - 90
Finalize              95
Done                  100
====================  ========

Statements execute strictly in file order on one connection. Inside a
transaction, PostgreSQL statements each run under a SAVEPOINT so a failed
statement does not abort the rest of the run; without a transaction every
statement is committed on its own.

Usage:
    from dbporter.restore import RestoreOrchestrator

    orchestrator = RestoreOrchestrator(engine, "sqlite")
    result = await orchestrator.run("backup.sql", RestoreOptions(stop_on_error=True))
    print(result.statistics.executed, result.statistics.failed)
"""

import asyncio
import logging
import os
import time
from collections.abc import Iterable, Sequence
from typing import Any

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine

from dbporter.backup.models import (
    ExecutionStatistics,
    ProgressCallback,
    RestoreOptions,
    RestoreResult,
)
from dbporter.dialects import Dialect
from dbporter.errors import BackupError
from dbporter.parser import Statement, get_parser
from dbporter.restore.reader import read_backup_file, read_backup_header
from dbporter.restore.session import sequence_statements, session_plan
from dbporter.restore.validation import check_statement
from dbporter.schema.ddl import statement_table
from dbporter.schema.translator import SchemaTranslator

_NO_PARAMETERS = {"no_parameters": True}
_MESSAGE_LIMIT = 500


def _no_progress(progress: dict[str, Any]) -> None:
    return None


class RestoreOrchestrator:
    """Replay backup statements against one database.

    Args:
        engine: Async engine for the target database.
        dialect: Target dialect (defaults to the engine's).
        progress_callback: Default callback when the options carry none.
        logger: Optional logger.
    """

    def __init__(
        self,
        engine: AsyncEngine,
        dialect: Dialect | str | None = None,
        *,
        progress_callback: ProgressCallback | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self.engine = engine
        self.dialect = Dialect.from_value(dialect or engine.dialect.name)
        self._progress_callback = progress_callback
        self.logger = logger or logging.getLogger(__name__)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def run(
        self,
        path: str | os.PathLike,
        options: RestoreOptions | None = None,
        tables: Iterable[str] | None = None,
    ) -> RestoreResult:
        """Restore the SQL backup at ``path``.

        Args:
            path: SQL backup file (plain or gzip).
            options: Restore options.
            tables: Only run statements touching these tables; the rest are
                counted as skipped.

        Returns:
            RestoreResult; structural failures come back with ``success``
            False and an ``error``, never as exceptions.
        """
        options = options or RestoreOptions()
        callback = self._callback(options)
        started = time.monotonic()
        stats = ExecutionStatistics(max_failure_records=options.max_failure_records)
        warnings: list[str] = []
        translated = False
        source = self.dialect

        try:
            self._report(callback, 5, "Reading backup file", stats)
            text = await asyncio.to_thread(read_backup_file, path)
            header = read_backup_header(text)
            if header is not None and header.dialect is not None:
                source = header.dialect

            self._report(callback, 10, "Parsing statements", stats)
            statements = get_parser(source, kind=options.parser).parse(text)
            self.logger.info(f"Parsed {len(statements)} statements from {path}")

            if header is not None and header.needs_translation and options.translate:
                if header.target_dialect is not self.dialect:
                    warnings.append(
                        f"Backup was converted for {header.target_dialect.label} "
                        f"but is restored into {self.dialect.label}"
                    )
                translation = SchemaTranslator(logger=self.logger).translate_statements(
                    statements, source, self.dialect
                )
                statements = translation.statements
                warnings.extend(str(warning) for warning in translation.warnings)
                translated = True
            elif source is not self.dialect:
                warnings.append(
                    f"Backup was written for {source.label}; statements are executed "
                    f"unchanged against {self.dialect.label}"
                )
        except BackupError as exc:
            self.logger.error(f"Restore of {path} failed before execution: {exc}")
            return RestoreResult.failed(
                exc,
                input_path=str(path),
                duration_seconds=time.monotonic() - started,
                statistics=stats,
            )

        result = await self._run(statements, options, tables, callback, stats, str(path))
        result.input_path = str(path)
        result.source_dialect = source.value
        result.translated = translated
        result.warnings = warnings + result.warnings
        result.duration_seconds = time.monotonic() - started
        return result

    async def run_statements(
        self,
        statements: Sequence[Statement],
        options: RestoreOptions | None = None,
        tables: Iterable[str] | None = None,
    ) -> RestoreResult:
        """Execute already-parsed statements (no file, no translation)."""
        options = options or RestoreOptions()
        started = time.monotonic()
        stats = ExecutionStatistics(max_failure_records=options.max_failure_records)
        result = await self._run(list(statements), options, tables, self._callback(options), stats, None)
        result.source_dialect = self.dialect.value
        result.duration_seconds = time.monotonic() - started
        return result

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    async def _run(
        self,
        statements: list[Statement],
        options: RestoreOptions,
        tables: Iterable[str] | None,
        callback: ProgressCallback,
        stats: ExecutionStatistics,
        path: str | None,
    ) -> RestoreResult:
        stats.total = len(statements)
        wanted = {name.lower() for name in tables} if tables is not None else None

        if not statements:
            self._report(callback, 100, "Restore completed (no statements)", stats)
            return RestoreResult(success=True, statistics=stats)

        try:
            aborted = await self._execute(statements, options, wanted, callback, stats, path)
        except BackupError as exc:
            self.logger.error(f"Restore failed: {exc}")
            self._settle(stats)
            return RestoreResult.failed(exc, statistics=stats, rolled_back=options.execute_in_transaction)

        if aborted is not None:
            error = BackupError.restore_failed(
                path,
                f"statement {aborted.index} failed and stop_on_error is set",
                context={"dialect": self.dialect.value, "statement": aborted.preview()},
            )
            return RestoreResult.failed(
                error, statistics=stats, rolled_back=options.execute_in_transaction
            )

        self._report(callback, 100, "Restore completed", stats)
        warnings = []
        if stats.failed:
            warnings.append(f"{stats.failed} statement(s) failed")
        self.logger.info(
            f"Restore finished: {stats.executed} executed, {stats.failed} failed, "
            f"{stats.skipped} skipped of {stats.total}"
        )
        return RestoreResult(success=True, statistics=stats, warnings=warnings)

    async def _execute(
        self,
        statements: list[Statement],
        options: RestoreOptions,
        wanted: set[str] | None,
        callback: ProgressCallback,
        stats: ExecutionStatistics,
        path: str | None,
    ) -> Statement | None:
        """Run setup, all statements, sequence replay and teardown.

        Returns the statement that aborted the run under ``stop_on_error``
        (after rolling back), or ``None`` when the run completed.
        """
        transactional = options.execute_in_transaction
        plan = session_plan(self.dialect, options)

        try:
            conn = await self.engine.connect()
        except (SQLAlchemyError, OSError) as exc:
            raise BackupError.database_connection(self.dialect.value, str(exc), cause=exc) from exc

        try:
            transaction = None
            if transactional:
                try:
                    transaction = await conn.begin()
                except SQLAlchemyError as exc:
                    raise BackupError.restore_failed(
                        path, "could not begin transaction", cause=exc
                    ) from exc

            try:
                self._report(callback, 15, "Preparing database session", stats)
                for sql in plan.setup:
                    error = await self._execute_one(conn, sql, transactional)
                    if error:
                        self.logger.warning(f"Session setup failed (continuing): {sql}: {error}")

                aborted = await self._main_pass(conn, statements, options, wanted, callback, stats)
                if aborted is not None:
                    if transaction is not None:
                        await transaction.rollback()
                        self.logger.warning("Restore aborted; transaction rolled back")
                    return aborted

                self._report(callback, 95, "Finalizing restore", stats)
                if options.reset_sequences:
                    await self._replay_sequences(conn, statements, wanted, stats, transactional)
                for sql in plan.teardown:
                    error = await self._execute_one(conn, sql, transactional)
                    if error:
                        raise BackupError.restore_failed(
                            path,
                            f"session teardown failed: {error}",
                            context={"dialect": self.dialect.value, "statement": sql},
                        )

                if transaction is not None:
                    try:
                        await transaction.commit()
                    except SQLAlchemyError as exc:
                        raise BackupError.restore_failed(
                            path, f"commit failed: {self._message(exc)}", cause=exc
                        ) from exc
                return None
            except BaseException:
                if transaction is not None and transaction.is_active:
                    await transaction.rollback()
                    self.logger.warning("Transaction rolled back")
                raise
        finally:
            await conn.close()

    async def _main_pass(
        self,
        conn: AsyncConnection,
        statements: list[Statement],
        options: RestoreOptions,
        wanted: set[str] | None,
        callback: ProgressCallback,
        stats: ExecutionStatistics,
    ) -> Statement | None:
        transactional = options.execute_in_transaction
        total = len(statements)
        for position, statement in enumerate(statements):
            failure = None
            if wanted is not None and (statement_table(statement.text) or "").lower() not in wanted:
                stats.skipped += 1
            else:
                if options.validate_statements:
                    failure = check_statement(statement.text)
                if failure is None:
                    failure = await self._execute_one(conn, statement.text, transactional)
                if failure is None:
                    stats.executed += 1
                else:
                    stats.record_failure(statement.index, statement.preview(), failure)
                    self.logger.warning(
                        f"Statement {statement.index} failed: {failure} [{statement.preview()}]"
                    )
                    if options.stop_on_error:
                        stats.skipped += total - position - 1
                        return statement

            done = position + 1
            if done % options.progress_interval == 0 or done == total:
                percent = 20 + int(70 * done / total)
                self._report(callback, percent, f"Executing statements ({done}/{total})", stats)
        return None

    async def _replay_sequences(
        self,
        conn: AsyncConnection,
        statements: list[Statement],
        wanted: set[str] | None,
        stats: ExecutionStatistics,
        transactional: bool,
    ) -> None:
        for statement in sequence_statements(statements, self.dialect):
            if wanted is not None and not any(name in statement.text.lower() for name in wanted):
                continue
            error = await self._execute_one(conn, statement.text, transactional)
            if error:
                stats.sequence_failures += 1
                self.logger.warning(f"Sequence reset failed (skipped): {statement.preview()}: {error}")
            else:
                stats.sequences_reset += 1
        if stats.sequences_reset or stats.sequence_failures:
            self.logger.debug(
                f"Replayed {stats.sequences_reset} sequence statements "
                f"({stats.sequence_failures} failed)"
            )

    async def _execute_one(self, conn: AsyncConnection, sql: str, transactional: bool) -> str | None:
        """Execute one statement; returns the driver's message on failure."""
        try:
            if transactional and self.dialect is Dialect.POSTGRESQL:
                async with conn.begin_nested():
                    await conn.exec_driver_sql(sql, execution_options=_NO_PARAMETERS)
            else:
                await conn.exec_driver_sql(sql, execution_options=_NO_PARAMETERS)
                if not transactional:
                    await conn.commit()
        except SQLAlchemyError as exc:
            if not transactional:
                await conn.rollback()
            return self._message(exc)
        return None

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _callback(self, options: RestoreOptions) -> ProgressCallback:
        return options.progress_callback or self._progress_callback or _no_progress

    @staticmethod
    def _report(
        callback: ProgressCallback, percent: int, operation: str, stats: ExecutionStatistics
    ) -> None:
        callback({
            "progress_percent": percent,
            "current_operation": operation,
            "statements_executed": stats.executed,
            "statements_failed": stats.failed,
        })

    @staticmethod
    def _message(exc: SQLAlchemyError) -> str:
        message = str(getattr(exc, "orig", None) or exc).strip()
        return message[:_MESSAGE_LIMIT]

    @staticmethod
    def _settle(stats: ExecutionStatistics) -> None:
        # A structural failure mid-run leaves the remaining statements unrun
        remaining = stats.total - stats.accounted
        if remaining > 0:
            stats.skipped += remaining
