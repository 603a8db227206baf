"""Tests for reading backup files and their header."""

import gzip

import pytest

from dbporter.dialects import Dialect
from dbporter.errors import BackupError, ErrorKind
from dbporter.restore.reader import (
    check_backup_path,
    format_backup_header,
    read_backup_bytes,
    read_backup_file,
    read_backup_header,
)


# ------------------------------------------------------------------
# Helper: write raw bytes under tmp_path
# ------------------------------------------------------------------


@pytest.fixture
def write(tmp_path):
    def _write(name: str, data: bytes):
        path = tmp_path / name
        path.write_bytes(data)
        return path

    return _write


class TestBackupPath:
    """Test the fail-fast path checks."""

    def test_missing_file(self, tmp_path):
        with pytest.raises(BackupError) as exc_info:
            check_backup_path(tmp_path / "nope.sql")
        assert exc_info.value.kind is ErrorKind.FILE_NOT_FOUND

    def test_directory_is_not_a_backup(self, tmp_path):
        with pytest.raises(BackupError) as exc_info:
            check_backup_path(tmp_path)
        assert exc_info.value.kind is ErrorKind.FILE_NOT_FOUND

    def test_empty_file(self, write):
        with pytest.raises(BackupError) as exc_info:
            check_backup_path(write("empty.sql", b""))
        assert exc_info.value.kind is ErrorKind.FILE_EMPTY


class TestReadBackupFile:
    """Test decoding and corruption checks."""

    def test_plain_text(self, write):
        assert read_backup_file(write("a.sql", b"SELECT 1;\n")) == "SELECT 1;\n"

    def test_gzip_transparent(self, write):
        path = write("a.sql.gz", gzip.compress(b"INSERT INTO t VALUES (1);"))
        assert read_backup_file(path) == "INSERT INTO t VALUES (1);"
        assert read_backup_bytes(path) == b"INSERT INTO t VALUES (1);"

    def test_bad_gzip_stream(self, write):
        with pytest.raises(BackupError) as exc_info:
            read_backup_file(write("a.sql.gz", b"\x1f\x8b\x08\x00garbage"))
        assert exc_info.value.kind is ErrorKind.FILE_CORRUPT
        assert exc_info.value.context["reason"] == "invalid gzip stream"

    def test_gzip_of_nothing_is_empty(self, write):
        with pytest.raises(BackupError) as exc_info:
            read_backup_file(write("a.sql.gz", gzip.compress(b"")))
        assert exc_info.value.kind is ErrorKind.FILE_EMPTY

    def test_utf8_bom_stripped(self, write):
        assert read_backup_file(write("bom.sql", b"\xef\xbb\xbfSELECT 1;")) == "SELECT 1;"

    @pytest.mark.parametrize(
        "data",
        [
            b"SQLite format 3\x00" + b"\x00" * 32,
            b"PGDMP\x01\x0e\x00",
            b"SELECT '\xff\xfe';",
            b"SELECT 1;\x00\x00",
        ],
        ids=["sqlite", "pg_custom", "latin1", "nul"],
    )
    def test_corrupt_inputs(self, write, data):
        with pytest.raises(BackupError) as exc_info:
            read_backup_file(write("bad.sql", data))
        assert exc_info.value.kind is ErrorKind.FILE_CORRUPT


class TestBackupHeader:
    """Test writing and reading the dbporter header."""

    def test_round_trip_with_target(self):
        text = format_backup_header(Dialect.MYSQL, "mysql_sql", "0.1.0", Dialect.POSTGRESQL)
        header = read_backup_header(text + "CREATE TABLE t (a int);\n")
        assert header.version == "0.1.0"
        assert header.dialect is Dialect.MYSQL
        assert header.target_dialect is Dialect.POSTGRESQL
        assert header.strategy == "mysql_sql"
        assert header.created
        assert header.needs_translation

    def test_first_line(self):
        text = format_backup_header(Dialect.SQLITE, "sqlite_sql", "0.1.0")
        assert text.splitlines()[0] == "-- dbporter 0.1.0 SQL backup"
        assert "Target-Dialect" not in text
        assert text.endswith("\n")

    def test_same_target_omitted(self):
        text = format_backup_header(Dialect.SQLITE, "sqlite_sql", "0.1.0", Dialect.SQLITE)
        assert "Target-Dialect" not in text
        assert not read_backup_header(text).needs_translation

    def test_foreign_file_has_no_header(self):
        assert read_backup_header("-- MySQL dump 10.13\nCREATE TABLE t (a int);") is None
        assert read_backup_header("") is None

    def test_unknown_dialect_ignored(self):
        header = read_backup_header("-- dbporter 0.1.0 SQL backup\n-- Dialect: oracle\n")
        assert header.dialect is None
        assert not header.needs_translation

    def test_header_stops_at_first_statement(self):
        header = read_backup_header(
            "-- dbporter 0.1.0 SQL backup\nSELECT 1;\n-- Dialect: mysql\n"
        )
        assert header.dialect is None
