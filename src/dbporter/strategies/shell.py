"""Dump-utility strategies: mysqldump / mysql and pg_dump / psql / pg_restore.

Commands run through ``SecureProcessExecutor``. Passwords travel only in
the tool's environment variable (``MYSQL_PWD``, ``PGPASSWORD``), never in
argv. Plain SQL dumps get a dbporter header prepended so a
``Target-Dialect`` request survives into the file.

SQL restores are checked against the statement deny-list before the
script is piped to the client, since the client executes it unseen.
"""

import asyncio
import gzip
from abc import abstractmethod
from pathlib import Path
from typing import Any, ClassVar

from dbporter import __version__
from dbporter.backup.models import (
    BackupOptions,
    CapabilityReport,
    ExecutionStatistics,
    RestoreOptions,
    RestoreResult,
)
from dbporter.dialects import Dialect
from dbporter.errors import BackupError
from dbporter.parser import get_parser
from dbporter.process.executor import Credentials, ProcessResult
from dbporter.restore.reader import format_backup_header, read_backup_file, read_backup_header
from dbporter.restore.validation import check_statement
from dbporter.strategies.base import MB, RestoreStrategy
from dbporter.strategies.formats import (
    GENERIC_SQL,
    POSTGRESQL_CUSTOM,
    POSTGRESQL_TAR,
    detect_format,
)

_STDERR_TAIL = 500
_MAX_REJECTIONS = 10


class ShellStrategy(RestoreStrategy):
    """Shared plumbing for strategies backed by external dump tools."""

    password_env: ClassVar[str]
    dump_program: ClassVar[str]
    load_program: ClassVar[str]
    compression = True
    minimum_seconds = 30

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    @abstractmethod
    def connection_args(self) -> list[str]:
        """Host/port/user flags shared by the dump and load commands."""

    @abstractmethod
    def dump_command(self, options: BackupOptions) -> list[str]:
        ...

    @abstractmethod
    def load_command(self, options: RestoreOptions) -> list[str]:
        ...

    def credentials(self) -> Credentials | None:
        password = self.connection.password_value
        if not password:
            return None
        return Credentials(password, env_var=self.password_env)

    def database_name(self) -> str:
        if not self.connection.database:
            raise BackupError.strategy_unavailable(
                self.strategy_type, self.dialect.value, reason="no database name in connection URL"
            )
        return self.connection.database

    # ------------------------------------------------------------------
    # Backup
    # ------------------------------------------------------------------

    async def _write_backup(self, path: Path, options: BackupOptions) -> dict[str, Any]:
        argv = self.dump_command(options)
        result = await self.executor.run(
            argv,
            credentials=self.credentials(),
            timeout=options.timeout,
            progress_callback=options.progress_callback,
        )
        self._check(result, self.dump_program, path, BackupError.backup_failed)
        if not result.stdout.strip():
            raise BackupError.backup_failed(
                str(path), f"{self.dump_program} produced no output", context=self._context()
            )

        target = Dialect.from_value(options.target_dialect) if options.target_dialect else None
        header = format_backup_header(self.dialect, self.strategy_type, __version__, target)
        opener = gzip.open if options.compress else open
        with opener(path, "wb") as out:
            out.write(header.encode("utf-8") + b"\n")
            out.write(result.stdout)

        metadata: dict[str, Any] = {
            "dialect": self.dialect.value,
            "tool": self.dump_program,
            "tool_duration_seconds": round(result.duration_seconds, 3),
        }
        if target is not None:
            metadata["target_dialect"] = target.value
        return {
            "compressed": options.compress,
            "format_id": f"{self.dialect.value}_sql",
            "tables": list(options.tables or []),
            "metadata": metadata,
        }

    # ------------------------------------------------------------------
    # Restore
    # ------------------------------------------------------------------

    async def _restore(
        self, path: Path, options: RestoreOptions, tables: list[str] | None
    ) -> RestoreResult:
        return await self._restore_script(path, options)

    async def _restore_script(self, path: Path, options: RestoreOptions) -> RestoreResult:
        content = await asyncio.to_thread(read_backup_file, path)
        header = read_backup_header(content)
        if header is not None and header.needs_translation:
            raise BackupError.restore_failed(
                str(path),
                f"{self.strategy_type} cannot convert a {header.dialect.label} backup; "
                f"restore it with an SQL strategy",
                context=self._context(),
            )

        stats = ExecutionStatistics(max_failure_records=options.max_failure_records)
        statements = get_parser(self.dialect, kind=options.parser).parse(content)
        stats.total = len(statements)
        if options.validate_statements:
            rejected = []
            for statement in statements:
                reason = check_statement(statement.text)
                if reason:
                    rejected.append(f"statement {statement.index}: {reason}")
            if rejected:
                raise BackupError.validation_failed(str(path), rejected[:_MAX_REJECTIONS])

        result = await self.executor.run(
            self.load_command(options),
            credentials=self.credentials(),
            stdin_data=content,
            timeout=options.timeout,
        )
        self._check(result, self.load_program, path, BackupError.restore_failed)
        stats.executed = stats.total
        warnings = []
        if result.stderr_text.strip():
            warnings.append(result.stderr_text.strip()[-_STDERR_TAIL:])
        return RestoreResult(
            success=True,
            statistics=stats,
            source_dialect=self.dialect.value,
            warnings=warnings,
        )

    def _check(self, result: ProcessResult, program: str, path: Path, make_error) -> None:
        if result.success:
            return
        stderr = result.stderr_text.strip()[-_STDERR_TAIL:]
        raise make_error(
            str(path),
            f"{program} exited with code {result.return_code}: {stderr or 'no output'}",
            context={**self._context(), "return_code": result.return_code},
        )

    # ------------------------------------------------------------------
    # Probes
    # ------------------------------------------------------------------

    async def _probe(self, report: CapabilityReport) -> None:
        shell = await self.executor.test_shell_access()
        report.capabilities["shell_access"] = bool(shell.get("available"))
        if not report.capabilities["shell_access"]:
            report.details["shell_access"] = str(shell.get("error", "shell test failed"))
            return
        for program in self.programs():
            available = await self.executor.is_command_available(program)
            report.capabilities[f"{program}_available"] = available
            if not available:
                report.details[f"{program}_available"] = f"{program} not found on PATH"
        await self._probe_connection(report)

    def programs(self) -> tuple[str, ...]:
        return (self.dump_program, self.load_program)


class MySQLShellStrategy(ShellStrategy):
    strategy_type = "mysql_shell"
    dialect = Dialect.MYSQL
    description = "MySQL Shell Backup (mysqldump via secure subprocess)"
    priority = 1
    requirements = ("shell_access", "mysqldump_command", "mysql_command")
    advantages = (
        "Complete schema and data export",
        "Routines, triggers and MySQL-specific features",
        "Consistent snapshot with --single-transaction",
    )
    limitations = (
        "Requires mysqldump and mysql on PATH",
        "Whole dump is buffered in memory",
    )
    restore_formats = frozenset({"mysql_sql", GENERIC_SQL})
    password_env = "MYSQL_PWD"
    dump_program = "mysqldump"
    load_program = "mysql"
    bytes_per_second = 5 * MB

    def connection_args(self) -> list[str]:
        args = []
        if self.connection.host:
            args.append(f"--host={self.connection.host}")
        if self.connection.port:
            args.append(f"--port={self.connection.port}")
        if self.connection.username:
            args.append(f"--user={self.connection.username}")
        return args

    def dump_command(self, options: BackupOptions) -> list[str]:
        database = self.database_name()
        argv = [
            self.dump_program,
            *self.connection_args(),
            "--single-transaction",
            "--skip-lock-tables",
            "--routines",
            "--triggers",
            "--default-character-set=utf8mb4",
            "--hex-blob",
            "--complete-insert",
            "--add-drop-table" if options.drop_existing else "--skip-add-drop-table",
        ]
        if not options.include_schema:
            argv.append("--no-create-info")
        if not options.include_data:
            argv.append("--no-data")
        for table in options.exclude_tables:
            argv.append(f"--ignore-table={database}.{table}")
        argv.append(database)
        argv.extend(options.tables or [])
        return argv

    def load_command(self, options: RestoreOptions) -> list[str]:
        argv = [self.load_program, *self.connection_args(), "--default-character-set=utf8mb4"]
        if not options.stop_on_error:
            argv.append("--force")
        argv.append(self.database_name())
        return argv


class PostgreSQLShellStrategy(ShellStrategy):
    strategy_type = "postgresql_shell"
    dialect = Dialect.POSTGRESQL
    description = "PostgreSQL Shell Backup (pg_dump via secure subprocess)"
    priority = 1
    requirements = ("shell_access", "pg_dump_command", "psql_command")
    advantages = (
        "Complete schema and data export",
        "PostgreSQL-specific features support",
        "Restores pg_dump custom and tar archives",
    )
    limitations = (
        "Requires pg_dump, psql and pg_restore on PATH",
        "Whole dump is buffered in memory",
    )
    restore_formats = frozenset({"postgresql_sql", GENERIC_SQL, POSTGRESQL_CUSTOM, POSTGRESQL_TAR})
    password_env = "PGPASSWORD"
    dump_program = "pg_dump"
    load_program = "psql"
    archive_program = "pg_restore"
    bytes_per_second = 8 * MB

    def connection_args(self) -> list[str]:
        args = []
        if self.connection.host:
            args.append(f"--host={self.connection.host}")
        if self.connection.port:
            args.append(f"--port={self.connection.port}")
        if self.connection.username:
            args.append(f"--username={self.connection.username}")
        args.append("--no-password")
        return args

    def dump_command(self, options: BackupOptions) -> list[str]:
        argv = [
            self.dump_program,
            *self.connection_args(),
            "--format=plain",
            "--encoding=UTF8",
            "--no-owner",
            "--no-privileges",
        ]
        if options.drop_existing:
            argv.extend(["--clean", "--if-exists"])
        if not options.include_schema:
            argv.append("--data-only")
        if not options.include_data:
            argv.append("--schema-only")
        for table in options.tables or []:
            argv.append(f"--table={table}")
        for table in options.exclude_tables:
            argv.append(f"--exclude-table={table}")
        argv.append(f"--dbname={self.database_name()}")
        return argv

    def load_command(self, options: RestoreOptions) -> list[str]:
        argv = [
            self.load_program,
            *self.connection_args(),
            f"--dbname={self.database_name()}",
            "--no-psqlrc",
            "--quiet",
        ]
        if options.stop_on_error:
            argv.append("--set=ON_ERROR_STOP=1")
        if options.execute_in_transaction:
            argv.append("--single-transaction")
        return argv

    def archive_command(self, path: Path, options: RestoreOptions) -> list[str]:
        argv = [
            self.archive_program,
            *self.connection_args(),
            f"--dbname={self.database_name()}",
            "--no-owner",
            "--no-privileges",
        ]
        if options.execute_in_transaction:
            argv.append("--single-transaction")
        if options.stop_on_error:
            argv.append("--exit-on-error")
        argv.append(str(path))
        return argv

    def programs(self) -> tuple[str, ...]:
        return (self.dump_program, self.load_program, self.archive_program)

    async def _restore(
        self, path: Path, options: RestoreOptions, tables: list[str] | None
    ) -> RestoreResult:
        fmt = detect_format(path)
        if fmt.format_id not in (POSTGRESQL_CUSTOM, POSTGRESQL_TAR):
            return await self._restore_script(path, options)
        if fmt.compressed:
            raise BackupError.file_corrupt(str(path), "gzip-wrapped pg_dump archives are not supported")

        result = await self.executor.run(
            self.archive_command(path, options),
            credentials=self.credentials(),
            timeout=options.timeout,
        )
        self._check(result, self.archive_program, path, BackupError.restore_failed)
        return RestoreResult(success=True, source_dialect=self.dialect.value)
