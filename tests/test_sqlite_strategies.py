"""Tests for the SQLite strategies against real database files."""

import gzip
import sqlite3
from contextlib import closing

import pytest

from dbporter.adapters.base import ConnectionInfo
from dbporter.adapters.engine import create_async_engine_pooled
from dbporter.backup.models import BackupOptions
from dbporter.errors import ErrorKind
from dbporter.strategies.sqlite import (
    SQLiteFileCopyStrategy,
    SQLiteNativeStrategy,
    SQLiteSQLStrategy,
    SQLiteVacuumStrategy,
    integrity_error,
)

SOURCE_SCHEMA = """
CREATE TABLE authors (id INTEGER PRIMARY KEY AUTOINCREMENT, name TEXT NOT NULL);
CREATE TABLE books (
    id INTEGER PRIMARY KEY,
    author_id INTEGER REFERENCES authors(id),
    title TEXT,
    cover BLOB
);
CREATE INDEX ix_books_title ON books (title);
INSERT INTO authors (name) VALUES ('Ann'), ('O''Neil');
INSERT INTO books VALUES (1, 1, 'First', X'0102'), (2, 2, 'Second', NULL);
"""

IMAGE_STRATEGIES = [SQLiteNativeStrategy, SQLiteVacuumStrategy, SQLiteFileCopyStrategy]


# ------------------------------------------------------------------
# Helpers: source database, strategy construction, sync queries
# ------------------------------------------------------------------


def _query(path, sql: str) -> list[tuple]:
    with closing(sqlite3.connect(path)) as conn:
        return conn.execute(sql).fetchall()


@pytest.fixture
def source_db(tmp_path):
    path = tmp_path / "source.db"
    with closing(sqlite3.connect(path)) as conn:
        conn.executescript(SOURCE_SCHEMA)
        conn.commit()
    return path


@pytest.fixture
async def make_strategy():
    engines = []

    def _make(cls, path):
        info = ConnectionInfo.from_url(f"sqlite:///{path}")
        engine = create_async_engine_pooled(info)
        engines.append(engine)
        return cls(info, engine=engine)

    yield _make
    for engine in engines:
        await engine.dispose()


class TestImageBackup:
    """Test the whole-file strategies."""

    @pytest.mark.parametrize("cls", IMAGE_STRATEGIES)
    async def test_backup_creates_valid_image(self, cls, source_db, make_strategy, tmp_path):
        if cls is SQLiteVacuumStrategy and sqlite3.sqlite_version_info < (3, 27, 0):
            pytest.skip("VACUUM INTO needs SQLite 3.27")
        output = tmp_path / "out" / "image.db"
        result = await make_strategy(cls, source_db).create_backup(output)
        assert result.success, result.error
        assert result.strategy == cls.strategy_type
        assert result.format_id == "sqlite_binary"
        assert result.size_bytes == output.stat().st_size
        assert integrity_error(output) is None
        assert not (tmp_path / "out" / "image.db.partial").exists()
        assert _query(output, "SELECT name FROM authors ORDER BY id") == [("Ann",), ("O'Neil",)]

    async def test_unsupported_options_warn(self, source_db, make_strategy, tmp_path):
        strategy = make_strategy(SQLiteNativeStrategy, source_db)
        result = await strategy.create_backup(
            tmp_path / "image.db", BackupOptions(compress=True, tables=["authors"])
        )
        assert result.success
        assert not result.compressed
        assert len(result.warnings) == 2

    async def test_file_copy_checkpoints_wal(self, tmp_path, make_strategy):
        path = tmp_path / "wal.db"
        with closing(sqlite3.connect(path)) as conn:
            conn.execute("PRAGMA journal_mode=WAL")
            conn.execute("CREATE TABLE t (a INTEGER)")
            conn.execute("INSERT INTO t VALUES (42)")
            conn.commit()
            output = tmp_path / "copy.db"
            result = await make_strategy(SQLiteFileCopyStrategy, path).create_backup(output)
        assert result.success
        assert _query(output, "SELECT a FROM t") == [(42,)]

    async def test_in_memory_database_unavailable(self, tmp_path):
        strategy = SQLiteNativeStrategy(ConnectionInfo.from_url("sqlite:///:memory:"))
        result = await strategy.create_backup(tmp_path / "image.db")
        assert not result.success
        assert result.error.kind is ErrorKind.STRATEGY_UNAVAILABLE
        assert not (tmp_path / "image.db").exists()

    async def test_missing_source_file(self, tmp_path, make_strategy):
        strategy = make_strategy(SQLiteNativeStrategy, tmp_path / "missing.db")
        result = await strategy.create_backup(tmp_path / "image.db")
        assert result.error.kind is ErrorKind.BACKUP_FAILED

    async def test_failed_backup_keeps_existing_destination(self, tmp_path):
        output = tmp_path / "image.db"
        output.write_bytes(b"previous backup")
        strategy = SQLiteNativeStrategy(ConnectionInfo.from_url("sqlite:///:memory:"))
        result = await strategy.create_backup(output)
        assert not result.success
        assert output.read_bytes() == b"previous backup"


class TestImageRestore:
    """Test replacing the database from an image."""

    @pytest.mark.parametrize("cls", [SQLiteNativeStrategy, SQLiteFileCopyStrategy])
    async def test_restore_replaces_database(self, cls, source_db, make_strategy, tmp_path):
        strategy = make_strategy(cls, source_db)
        image = tmp_path / "image.db"
        assert (await strategy.create_backup(image)).success

        with closing(sqlite3.connect(source_db)) as conn:
            conn.execute("DELETE FROM books")
            conn.execute("DROP TABLE authors")
            conn.commit()

        result = await strategy.restore_backup(image)
        assert result.success, result.error
        assert result.strategy == cls.strategy_type
        assert _query(source_db, "SELECT COUNT(*) FROM authors") == [(2,)]
        assert _query(source_db, "SELECT cover FROM books WHERE id = 1") == [(b"\x01\x02",)]

    async def test_sql_file_rejected(self, source_db, make_strategy, tmp_path):
        script = tmp_path / "dump.sql"
        script.write_text("CREATE TABLE t (a int);\n")
        result = await make_strategy(SQLiteNativeStrategy, source_db).restore_backup(script)
        assert not result.success
        assert result.error.kind is ErrorKind.FILE_CORRUPT

    async def test_damaged_image_rejected(self, source_db, make_strategy, tmp_path):
        image = tmp_path / "damaged.db"
        image.write_bytes(b"SQLite format 3\x00" + b"\xff" * 200)
        result = await make_strategy(SQLiteNativeStrategy, source_db).restore_backup(image)
        assert result.error.kind is ErrorKind.FILE_CORRUPT
        assert _query(source_db, "SELECT COUNT(*) FROM authors") == [(2,)]

    async def test_partial_restore_not_supported(self, source_db, make_strategy, tmp_path):
        result = await make_strategy(SQLiteNativeStrategy, source_db).partial_restore(
            tmp_path / "image.db", ["authors"]
        )
        assert result.error.kind is ErrorKind.STRATEGY_UNAVAILABLE


class TestImageInspection:
    """Test validation, options, probes and estimates."""

    async def test_validate_image(self, source_db, make_strategy, tmp_path):
        strategy = make_strategy(SQLiteNativeStrategy, source_db)
        image = tmp_path / "image.db"
        await strategy.create_backup(image)
        report = strategy.validate_backup_file(image)
        assert report.valid
        assert report.format_id == "sqlite_binary"
        assert report.dialect == "sqlite"

    async def test_validate_wrong_format(self, source_db, make_strategy, tmp_path):
        script = tmp_path / "dump.sql"
        script.write_text("PRAGMA foreign_keys=OFF;\nCREATE TABLE t (a int);\n")
        report = make_strategy(SQLiteNativeStrategy, source_db).validate_backup_file(script)
        assert not report.valid
        assert report.errors == ["Format sqlite_sql cannot be restored by sqlite_native"]

    async def test_restore_options(self, source_db, make_strategy, tmp_path):
        strategy = make_strategy(SQLiteNativeStrategy, source_db)
        image = tmp_path / "image.db"
        await strategy.create_backup(image)
        options = strategy.get_restore_options(image)
        assert options["full_restore"] is True
        assert options["execute_in_transaction"] is False
        assert options["partial_restore"] is False
        assert options["estimated_duration_seconds"] == SQLiteNativeStrategy.minimum_seconds

    async def test_capabilities(self, source_db, make_strategy, tmp_path):
        report = await make_strategy(SQLiteNativeStrategy, source_db).test_capabilities()
        assert report.available
        assert report.capabilities["database_file"] is True

        missing = await make_strategy(SQLiteFileCopyStrategy, tmp_path / "missing.db").test_capabilities()
        assert not missing.available
        assert missing.capabilities["database_file"] is False

    async def test_estimate_respects_minimum(self, source_db, make_strategy):
        assert await make_strategy(SQLiteNativeStrategy, source_db).estimate_backup_time() == 10
        assert await make_strategy(SQLiteFileCopyStrategy, source_db).estimate_backup_time() == 5

    def test_integrity_error_on_text_file(self, tmp_path):
        path = tmp_path / "notes.txt"
        path.write_text("definitely not a database " * 50)
        assert integrity_error(path)

    def test_descriptor(self):
        descriptor = SQLiteVacuumStrategy.descriptor()
        assert descriptor.strategy_type == "sqlite_vacuum"
        assert descriptor.criteria.priority == 2
        assert descriptor.dialect == "sqlite"


class TestSQLDump:
    """Test the in-process SQL generation strategy on SQLite."""

    async def test_backup_contents(self, source_db, make_strategy, tmp_path):
        output = tmp_path / "dump.sql"
        result = await make_strategy(SQLiteSQLStrategy, source_db).create_backup(output)
        assert result.success, result.error
        assert result.format_id == "sqlite_sql"
        assert result.tables == ["authors", "books"]
        assert result.rows == 4
        text = output.read_text()
        assert text.startswith("-- dbporter ")
        assert "-- Dialect: sqlite" in text
        assert 'CREATE INDEX "ix_books_title" ON "books" ("title")' in text
        assert "X'0102'" in text
        assert "UPDATE sqlite_sequence SET seq = 2 WHERE name = 'authors'" in text

    async def test_round_trip(self, source_db, make_strategy, tmp_path):
        output = tmp_path / "dump.sql"
        await make_strategy(SQLiteSQLStrategy, source_db).create_backup(output)

        target = tmp_path / "target.db"
        result = await make_strategy(SQLiteSQLStrategy, target).restore_backup(output)
        assert result.success, result.error
        assert result.statistics.failed == 0
        assert _query(target, "SELECT name FROM authors ORDER BY id") == [("Ann",), ("O'Neil",)]
        assert _query(target, "SELECT cover FROM books ORDER BY id") == [(b"\x01\x02",), (None,)]
        assert _query(target, "SELECT seq FROM sqlite_sequence WHERE name = 'authors'") == [(2,)]

    async def test_compressed_round_trip(self, source_db, make_strategy, tmp_path):
        output = tmp_path / "dump.sql.gz"
        result = await make_strategy(SQLiteSQLStrategy, source_db).create_backup(
            output, BackupOptions(compress=True, batch_size=1)
        )
        assert result.compressed
        assert gzip.decompress(output.read_bytes()).decode().count("INSERT INTO") == 4

        target = tmp_path / "target.db"
        restored = await make_strategy(SQLiteSQLStrategy, target).restore_backup(output)
        assert restored.success
        assert _query(target, "SELECT COUNT(*) FROM books") == [(2,)]

    async def test_partial_restore(self, source_db, make_strategy, tmp_path):
        output = tmp_path / "dump.sql"
        await make_strategy(SQLiteSQLStrategy, source_db).create_backup(output)

        target = tmp_path / "target.db"
        result = await make_strategy(SQLiteSQLStrategy, target).partial_restore(output, ["authors"])
        assert result.success
        assert result.statistics.skipped > 0
        tables = _query(target, "SELECT name FROM sqlite_master WHERE type = 'table' ORDER BY name")
        assert ("authors",) in tables
        assert ("books",) not in tables

    async def test_exclude_tables(self, source_db, make_strategy, tmp_path):
        result = await make_strategy(SQLiteSQLStrategy, source_db).create_backup(
            tmp_path / "dump.sql", BackupOptions(exclude_tables=["BOOKS"])
        )
        assert result.tables == ["authors"]

    async def test_target_dialect_header(self, source_db, make_strategy, tmp_path):
        output = tmp_path / "dump.sql"
        result = await make_strategy(SQLiteSQLStrategy, source_db).create_backup(
            output, BackupOptions(target_dialect="postgresql")
        )
        assert result.metadata["target_dialect"] == "postgresql"
        assert "-- Target-Dialect: postgresql" in output.read_text()

    async def test_progress(self, source_db, make_strategy, tmp_path):
        reports = []
        await make_strategy(SQLiteSQLStrategy, source_db).create_backup(
            tmp_path / "dump.sql", BackupOptions(progress_callback=reports.append)
        )
        assert [report["tables_done"] for report in reports] == [1, 2]
        assert reports[-1]["progress_percent"] == 100
        assert reports[-1]["rows_written"] == 4

    async def test_capabilities(self, source_db, make_strategy):
        report = await make_strategy(SQLiteSQLStrategy, source_db).test_capabilities()
        assert report.available
        assert report.details["tables"] == "2"
