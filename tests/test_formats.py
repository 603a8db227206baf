"""Tests for backup format and dialect detection."""

import gzip

import pytest

from dbporter.dialects import Dialect
from dbporter.errors import BackupError, ErrorKind
from dbporter.restore.reader import format_backup_header
from dbporter.strategies.formats import (
    GENERIC_SQL,
    POSTGRESQL_CUSTOM,
    POSTGRESQL_TAR,
    SQLITE_BINARY,
    UNKNOWN,
    detect_bytes,
    detect_format,
    guess_dialect,
)

MYSQL_DUMP = (
    "-- MySQL dump 10.13  Distrib 8.0.36\n"
    "/*!40101 SET NAMES utf8mb4 */;\n"
    "CREATE TABLE `t` (`id` int NOT NULL AUTO_INCREMENT) ENGINE=InnoDB;\n"
)
POSTGRES_DUMP = (
    "--\n-- PostgreSQL database dump\n--\n"
    "SET client_encoding = 'UTF8';\n"
    "SELECT pg_catalog.set_config('search_path', '', false);\n"
)
SQLITE_DUMP = (
    "PRAGMA foreign_keys=OFF;\n"
    "BEGIN TRANSACTION;\n"
    "CREATE TABLE t(id INTEGER PRIMARY KEY AUTOINCREMENT);\n"
)


class TestDetectBytes:
    """Test classification by leading bytes."""

    def test_sqlite_image(self):
        fmt = detect_bytes(b"SQLite format 3\x00" + b"\x00" * 100)
        assert fmt.format_id == SQLITE_BINARY
        assert fmt.dialect is Dialect.SQLITE
        assert not fmt.is_sql

    def test_pg_custom_archive(self):
        fmt = detect_bytes(b"PGDMP\x01\x0e\x00\x04\x08")
        assert (fmt.format_id, fmt.dialect) == (POSTGRESQL_CUSTOM, Dialect.POSTGRESQL)

    def test_pg_tar_archive(self):
        head = b"toc.dat".ljust(257, b"\x00") + b"ustar\x0000" + b"\x00" * 100
        assert detect_bytes(head).format_id == POSTGRESQL_TAR

    @pytest.mark.parametrize(
        "text, format_id",
        [
            (MYSQL_DUMP, "mysql_sql"),
            (POSTGRES_DUMP, "postgresql_sql"),
            (SQLITE_DUMP, "sqlite_sql"),
            ("CREATE TABLE t (a int);\nINSERT INTO t VALUES (1);\n", GENERIC_SQL),
            ("hello, world", UNKNOWN),
        ],
    )
    def test_text_dumps(self, text, format_id):
        fmt = detect_bytes(text.encode())
        assert fmt.format_id == format_id
        assert fmt.is_sql is (format_id != UNKNOWN)

    def test_header_wins_over_markers(self):
        text = format_backup_header(Dialect.SQLITE, "sqlite_sql", "0.1.0") + MYSQL_DUMP
        assert detect_bytes(text.encode()).dialect is Dialect.SQLITE

    def test_binary_garbage_is_unknown(self):
        assert detect_bytes(b"\x89PNG\r\n\x1a\n\x00\x00").format_id == UNKNOWN


class TestGuessDialect:
    """Test keyword scoring."""

    def test_case_insensitive(self):
        assert guess_dialect("create table t (id int) engine=innodb;") is Dialect.MYSQL

    def test_tie_is_undecided(self):
        assert guess_dialect("SET NAMES utf8;\nPRAGMA cache_size=100;") is None

    def test_nothing_matches(self):
        assert guess_dialect("SELECT 1;") is None

    def test_only_leading_lines_scanned(self):
        text = "SELECT 1;\n" * 50 + "ENGINE=InnoDB"
        assert guess_dialect(text) is None


class TestDetectFormat:
    """Test detection from files on disk."""

    def test_gzip_sql(self, tmp_path):
        path = tmp_path / "dump.sql.gz"
        path.write_bytes(gzip.compress(POSTGRES_DUMP.encode()))
        fmt = detect_format(path)
        assert fmt.format_id == "postgresql_sql"
        assert fmt.compressed

    def test_broken_gzip_is_unknown(self, tmp_path):
        path = tmp_path / "dump.sql.gz"
        path.write_bytes(b"\x1f\x8b\x08\x00broken")
        fmt = detect_format(path)
        assert fmt.format_id == UNKNOWN
        assert fmt.compressed

    def test_empty_file_is_unknown(self, tmp_path):
        path = tmp_path / "empty.sql"
        path.write_bytes(b"")
        assert detect_format(path).format_id == UNKNOWN

    def test_missing_file(self, tmp_path):
        with pytest.raises(BackupError) as exc_info:
            detect_format(tmp_path / "missing.sql")
        assert exc_info.value.kind is ErrorKind.FILE_NOT_FOUND
        assert exc_info.value.context["operation"] == "detect format"
