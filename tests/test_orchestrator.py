"""Tests for RestoreOrchestrator against real SQLite databases.

Every test runs against a fresh database file under tmp_path through the
same aiosqlite engine configuration the library uses in production.
"""

import gzip

import pytest

from dbporter.adapters.engine import create_async_engine_pooled
from dbporter.backup.models import RestoreOptions
from dbporter.dialects import Dialect
from dbporter.errors import ErrorKind
from dbporter.parser import SQLScanner
from dbporter.restore import RestoreOrchestrator, format_backup_header

USERS_SQL = """
CREATE TABLE users (id INTEGER PRIMARY KEY, name TEXT NOT NULL);
INSERT INTO users VALUES (1, 'alice');
INSERT INTO users VALUES (2, 'bob');
"""


# ------------------------------------------------------------------
# Helpers: engine fixture, backup writer, scalar query
# ------------------------------------------------------------------


@pytest.fixture
async def engine(tmp_path):
    engine = create_async_engine_pooled(f"sqlite:///{tmp_path / 'target.db'}")
    yield engine
    await engine.dispose()


@pytest.fixture
def backup(tmp_path):
    def _write(sql: str, name: str = "backup.sql"):
        path = tmp_path / name
        path.write_text(sql, encoding="utf-8")
        return path

    return _write


async def _scalar(engine, sql: str):
    async with engine.connect() as conn:
        return (await conn.exec_driver_sql(sql)).scalar()


async def _table_exists(engine, name: str) -> bool:
    count = await _scalar(
        engine, f"SELECT COUNT(*) FROM sqlite_master WHERE type = 'table' AND name = '{name}'"
    )
    return count == 1


class TestRestoreSuccess:
    """Test complete restores."""

    async def test_basic_restore(self, engine, backup):
        result = await RestoreOrchestrator(engine).run(backup(USERS_SQL))
        assert result.success
        assert result.error is None
        assert result.statistics.total == 3
        assert result.statistics.executed == 3
        assert result.source_dialect == "sqlite"
        assert not result.translated
        assert await _scalar(engine, "SELECT name FROM users WHERE id = 2") == "bob"

    async def test_dialect_taken_from_engine(self, engine):
        assert RestoreOrchestrator(engine).dialect is Dialect.SQLITE

    async def test_comments_only_is_a_no_op(self, engine, backup):
        result = await RestoreOrchestrator(engine).run(backup("-- nothing to do\n/* really */\n"))
        assert result.success
        assert result.statistics.total == 0
        assert result.warnings == []

    async def test_statistics_balance(self, engine, backup):
        result = await RestoreOrchestrator(engine).run(
            backup(USERS_SQL + "INSERT INTO missing VALUES (1);\n")
        )
        stats = result.statistics
        assert stats.executed + stats.failed + stats.skipped == stats.total

    async def test_progress_phases(self, engine, backup):
        reports = []
        result = await RestoreOrchestrator(engine).run(
            backup(USERS_SQL), RestoreOptions(progress_callback=reports.append)
        )
        assert result.success
        percents = [report["progress_percent"] for report in reports]
        assert percents == [5, 10, 15, 90, 95, 100]
        assert reports[-1]["statements_executed"] == 3
        assert reports[-1]["statements_failed"] == 0

    async def test_default_progress_callback(self, engine, backup):
        reports = []
        orchestrator = RestoreOrchestrator(engine, "sqlite", progress_callback=reports.append)
        await orchestrator.run(backup(USERS_SQL))
        assert reports[-1]["current_operation"] == "Restore completed"

    async def test_gzip_backup(self, engine, tmp_path):
        path = tmp_path / "backup.sql.gz"
        path.write_bytes(gzip.compress(USERS_SQL.encode()))
        result = await RestoreOrchestrator(engine).run(path)
        assert result.success
        assert await _scalar(engine, "SELECT COUNT(*) FROM users") == 2


class TestStatementFailures:
    """Test per-statement failure handling."""

    async def test_failures_are_counted_not_raised(self, engine, backup):
        result = await RestoreOrchestrator(engine).run(
            backup("CREATE TABLE t (a INTEGER);\nINSERT INTO missing VALUES (1);\nINSERT INTO t VALUES (1);\n")
        )
        assert result.success
        assert result.statistics.executed == 2
        assert result.statistics.failed == 1
        assert result.warnings == ["1 statement(s) failed"]
        failure = result.statistics.failures[0]
        assert failure.index == 1
        assert "missing" in failure.message
        assert await _scalar(engine, "SELECT COUNT(*) FROM t") == 1

    async def test_deny_list_blocks_statement(self, engine, backup):
        result = await RestoreOrchestrator(engine).run(
            backup("CREATE TABLE t (a INTEGER);\nDROP DATABASE production;\nDELETE FROM t;\n")
        )
        messages = [failure.message for failure in result.statistics.failures]
        assert messages == [
            "DROP DATABASE/SCHEMA without IF EXISTS is not allowed",
            "DELETE without a WHERE clause is not allowed",
        ]

    async def test_validation_can_be_disabled(self, engine, backup):
        result = await RestoreOrchestrator(engine).run(
            backup("CREATE TABLE t (a INTEGER);\nINSERT INTO t VALUES (1);\nDELETE FROM t;\n"),
            RestoreOptions(validate_statements=False),
        )
        assert result.statistics.failed == 0
        assert await _scalar(engine, "SELECT COUNT(*) FROM t") == 0

    async def test_failure_records_capped(self, engine, backup):
        sql = "".join(f"INSERT INTO nope{i} VALUES (1);\n" for i in range(3))
        result = await RestoreOrchestrator(engine).run(backup(sql), RestoreOptions(max_failure_records=1))
        stats = result.statistics
        assert stats.failed == 3
        assert len(stats.failures) == 1
        assert stats.failures_truncated == 2


class TestStopOnError:
    """Test aborting on the first failure."""

    SQL = (
        "CREATE TABLE t (a INTEGER);\n"
        "INSERT INTO t VALUES (1);\n"
        "INSERT INTO missing VALUES (1);\n"
        "INSERT INTO t VALUES (2);\n"
    )

    async def test_rolls_back_transaction(self, engine, backup):
        result = await RestoreOrchestrator(engine).run(backup(self.SQL), RestoreOptions(stop_on_error=True))
        assert not result.success
        assert result.rolled_back
        assert result.error.kind is ErrorKind.RESTORE_FAILED
        stats = result.statistics
        assert (stats.executed, stats.failed, stats.skipped) == (2, 1, 1)
        assert not await _table_exists(engine, "t")

    async def test_first_statement_invalid(self, engine, backup):
        result = await RestoreOrchestrator(engine).run(
            backup("DROP DATABASE prod;\nCREATE TABLE t (a INTEGER);\n"),
            RestoreOptions(stop_on_error=True),
        )
        assert not result.success
        assert result.rolled_back
        assert (result.statistics.executed, result.statistics.failed) == (0, 1)
        assert not await _table_exists(engine, "t")

    async def test_without_transaction_keeps_earlier_work(self, engine, backup):
        result = await RestoreOrchestrator(engine).run(
            backup(self.SQL), RestoreOptions(stop_on_error=True, execute_in_transaction=False)
        )
        assert not result.success
        assert not result.rolled_back
        assert await _scalar(engine, "SELECT COUNT(*) FROM t") == 1


class TestStatementOrder:
    """Statements run strictly in file order; nothing is reordered.

    Deferred constraint checking is not attempted: a backup whose own order
    is wrong fails on the out-of-order statements.
    """

    async def test_out_of_order_statement_fails(self, engine, backup):
        result = await RestoreOrchestrator(engine).run(
            backup("INSERT INTO t VALUES (1);\nCREATE TABLE t (a INTEGER);\n")
        )
        assert result.success
        assert result.statistics.failed == 1
        assert result.statistics.failures[0].index == 0
        assert await _scalar(engine, "SELECT COUNT(*) FROM t") == 0


class TestTableFilter:
    """Test partial restores limited to some tables."""

    async def test_other_tables_skipped(self, engine, backup):
        sql = (
            "CREATE TABLE users (id INTEGER);\n"
            "CREATE TABLE logs (id INTEGER);\n"
            "INSERT INTO users VALUES (1);\n"
            "INSERT INTO logs VALUES (1);\n"
        )
        result = await RestoreOrchestrator(engine).run(backup(sql), tables=["USERS"])
        assert result.success
        assert result.statistics.executed == 2
        assert result.statistics.skipped == 2
        assert await _table_exists(engine, "users")
        assert not await _table_exists(engine, "logs")


class TestSequences:
    """Test sequence replay after the main pass."""

    async def test_sqlite_sequence_replayed(self, engine, backup):
        sql = (
            "CREATE TABLE items (id INTEGER PRIMARY KEY AUTOINCREMENT, v TEXT);\n"
            "INSERT INTO items (v) VALUES ('a');\n"
            "UPDATE sqlite_sequence SET seq = 10 WHERE name = 'items';\n"
        )
        result = await RestoreOrchestrator(engine).run(backup(sql))
        assert result.statistics.sequences_reset == 1
        assert result.statistics.sequence_failures == 0
        async with engine.begin() as conn:
            await conn.exec_driver_sql("INSERT INTO items (v) VALUES ('b')")
        assert await _scalar(engine, "SELECT MAX(id) FROM items") == 11

    async def test_reset_disabled(self, engine, backup):
        sql = (
            "CREATE TABLE items (id INTEGER PRIMARY KEY AUTOINCREMENT, v TEXT);\n"
            "INSERT INTO items (v) VALUES ('a');\n"
            "UPDATE sqlite_sequence SET seq = 10 WHERE name = 'items';\n"
        )
        result = await RestoreOrchestrator(engine).run(backup(sql), RestoreOptions(reset_sequences=False))
        assert result.statistics.sequences_reset == 0


class TestHeadersAndTranslation:
    """Test dialect headers on backup files."""

    async def test_translates_converted_backup(self, engine, backup):
        sql = format_backup_header(Dialect.MYSQL, "mysql_sql", "0.1.0", Dialect.SQLITE) + (
            "CREATE TABLE `authors` (\n"
            "  `id` int NOT NULL AUTO_INCREMENT,\n"
            "  `name` varchar(50) NOT NULL,\n"
            "  PRIMARY KEY (`id`)\n"
            ") ENGINE=InnoDB;\n"
            "LOCK TABLES `authors` WRITE;\n"
            "INSERT INTO `authors` VALUES (1,'O\\'Brien');\n"
            "UNLOCK TABLES;\n"
        )
        result = await RestoreOrchestrator(engine).run(backup(sql))
        assert result.success, result.error
        assert result.translated
        assert result.source_dialect == "mysql"
        assert result.statistics.failed == 0
        assert await _scalar(engine, "SELECT name FROM authors WHERE id = 1") == "O'Brien"

    async def test_translation_can_be_disabled(self, engine, backup):
        sql = format_backup_header(Dialect.MYSQL, "mysql_sql", "0.1.0", Dialect.SQLITE) + (
            "CREATE TABLE t (a int);\n"
        )
        result = await RestoreOrchestrator(engine).run(backup(sql), RestoreOptions(translate=False))
        assert not result.translated
        assert result.warnings[0].startswith("Backup was written for MySQL")

    async def test_foreign_dialect_warning(self, engine, backup):
        sql = format_backup_header(Dialect.POSTGRESQL, "postgresql_sql", "0.1.0") + "CREATE TABLE t (a int);\n"
        result = await RestoreOrchestrator(engine).run(backup(sql))
        assert result.success
        assert result.source_dialect == "postgresql"
        assert result.warnings == [
            "Backup was written for PostgreSQL; statements are executed unchanged against SQLite"
        ]


class TestStructuralFailures:
    """Test failures that prevent execution entirely."""

    async def test_missing_file(self, engine, tmp_path):
        result = await RestoreOrchestrator(engine).run(tmp_path / "missing.sql")
        assert not result.success
        assert result.error.kind is ErrorKind.FILE_NOT_FOUND
        assert result.input_path.endswith("missing.sql")

    async def test_empty_file(self, engine, backup):
        result = await RestoreOrchestrator(engine).run(backup(""))
        assert result.error.kind is ErrorKind.FILE_EMPTY

    async def test_unterminated_string(self, engine, backup):
        result = await RestoreOrchestrator(engine).run(backup("INSERT INTO t VALUES ('oops);\n"))
        assert not result.success
        assert result.error.kind is ErrorKind.PARSE_ERROR


class TestRunStatements:
    """Test executing pre-parsed statements."""

    async def test_run_statements(self, engine):
        statements = SQLScanner("sqlite").parse(USERS_SQL)
        result = await RestoreOrchestrator(engine).run_statements(statements)
        assert result.success
        assert result.input_path is None
        assert result.statistics.executed == 3

    async def test_empty_statement_list(self, engine):
        result = await RestoreOrchestrator(engine).run_statements([])
        assert result.success
        assert result.statistics.total == 0

    async def test_line_parser_option(self, engine, backup):
        result = await RestoreOrchestrator(engine).run(backup(USERS_SQL), RestoreOptions(parser="line"))
        assert result.success
        assert result.statistics.executed == 3
