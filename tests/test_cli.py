"""Tests for the dbporter CLI.

Commands run through ``main()`` against SQLite files under tmp_path; rich
output is captured by swapping the module console for a wide in-memory one.
"""

import io
import sqlite3
from contextlib import closing
from unittest.mock import patch

import pytest
from rich.console import Console

from dbporter import cli

MYSQL_SCHEMA = """
CREATE TABLE `authors` (
  `id` int NOT NULL AUTO_INCREMENT,
  `bio` text,
  PRIMARY KEY (`id`),
  FULLTEXT KEY `ft_bio` (`bio`)
) ENGINE=InnoDB;
INSERT INTO `authors` VALUES (1,'It\\'s me');
"""


# ------------------------------------------------------------------
# Helpers
# ------------------------------------------------------------------


@pytest.fixture
def output(monkeypatch):
    buffer = io.StringIO()
    monkeypatch.setattr(cli, "console", Console(file=buffer, width=200, color_system=None))
    return buffer


@pytest.fixture
def workdir(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    monkeypatch.delenv("DB_PROFILE", raising=False)
    return tmp_path


@pytest.fixture
def db_url(workdir):
    path = workdir / "app.db"
    with closing(sqlite3.connect(path)) as conn:
        conn.execute("CREATE TABLE users (id INTEGER PRIMARY KEY, name TEXT)")
        conn.execute("INSERT INTO users VALUES (1, 'alice'), (2, 'bob')")
        conn.commit()
    return f"sqlite:///{path}"


def _count(url: str) -> int:
    with closing(sqlite3.connect(url.removeprefix("sqlite:///"))) as conn:
        return conn.execute("SELECT COUNT(*) FROM users").fetchone()[0]


class TestArgumentParsing:
    """Test parser wiring."""

    def test_dispatch_passes_global_options(self):
        with patch("dbporter.cli.cmd_test", return_value=0) as mock_test:
            assert cli.main(["--env-prefix", "APP_", "test"]) == 0
        args = mock_test.call_args[0][0]
        assert args.env_prefix == "APP_"
        assert args.url is None

    def test_url_and_profile_are_exclusive(self):
        with pytest.raises(SystemExit) as exc_info:
            cli.main(["--url", "sqlite:///a.db", "--profile", "p", "test"])
        assert exc_info.value.code == 2

    def test_restore_requires_input(self):
        with pytest.raises(SystemExit) as exc_info:
            cli.main(["restore"])
        assert exc_info.value.code == 2

    def test_schema_only_and_data_only_exclusive(self):
        with pytest.raises(SystemExit) as exc_info:
            cli.main(["backup", "--schema-only", "--data-only"])
        assert exc_info.value.code == 2


class TestDatabaseCommands:
    """Test commands that open a database."""

    def test_backup_restore_validate(self, db_url, workdir, output):
        backup = workdir / "backups" / "app.sql"
        assert cli.main(["--url", db_url, "backup", "-o", str(backup), "--strategy", "sqlite_sql"]) == 0
        assert "Backup Complete" in output.getvalue()
        assert backup.is_file()

        with closing(sqlite3.connect(workdir / "app.db")) as conn:
            conn.execute("DELETE FROM users")
            conn.commit()

        assert cli.main(["--url", db_url, "restore", "-i", str(backup)]) == 0
        assert _count(db_url) == 2
        assert "Restored with sqlite_sql" in output.getvalue()

        assert cli.main(["--url", db_url, "validate", "-i", str(backup)]) == 0
        assert "Backup is valid" in output.getvalue()

    def test_default_output_path(self, db_url, workdir, output):
        assert cli.main(["--url", db_url, "backup", "--strategy", "sqlite_sql", "--compress"]) == 0
        written = list((workdir / "backups").glob("app-*.sql.gz"))
        assert len(written) == 1

    def test_restore_with_failed_statement(self, db_url, workdir, output):
        script = workdir / "broken.sql"
        script.write_text("PRAGMA foreign_keys=OFF;\nINSERT INTO missing VALUES (1);\n")
        assert cli.main(["--url", db_url, "restore", "-i", str(script)]) == 1
        assert "Failed Statements" in output.getvalue()

    def test_restore_missing_file(self, db_url, workdir, output):
        assert cli.main(["--url", db_url, "restore", "-i", str(workdir / "missing.sql")]) == 1
        assert "file_not_found" in output.getvalue()

    def test_validate_unknown_file(self, db_url, workdir, output):
        path = workdir / "notes.txt"
        path.write_text("nothing useful")
        assert cli.main(["--url", db_url, "validate", "-i", str(path)]) == 1

    def test_capabilities(self, db_url, output):
        assert cli.main(["--url", db_url, "test"]) == 0
        text = output.getvalue()
        assert "Strategy Capabilities" in text
        assert "sqlite_file_copy" in text

    def test_estimate(self, db_url, output):
        assert cli.main(["--url", db_url, "estimate"]) == 0
        assert "sqlite_native" in output.getvalue()

    def test_estimate_unknown_strategy(self, db_url, output):
        assert cli.main(["--url", db_url, "estimate", "--strategy", "nope"]) == 1

    def test_migrate(self, db_url, workdir, output):
        copy_url = f"sqlite:///{workdir / 'copy.db'}"
        assert cli.main(["--url", db_url, "migrate", "--to", copy_url]) == 0
        assert _count(copy_url) == 2
        text = output.getvalue()
        assert "Migration Complete" in text
        assert "Copied 2 rows across 1 tables" in text

        assert cli.main(["--url", db_url, "migrate", "--to", copy_url]) == 1
        assert "restore_failed" in output.getvalue()
        assert cli.main(["--url", db_url, "migrate", "--to", copy_url, "--drop-existing"]) == 0
        assert _count(copy_url) == 2

    def test_profile_from_config(self, db_url, workdir, output):
        (workdir / "dbporter.toml").write_text(f'[profiles.local]\nurl = "{db_url}"\n')
        assert cli.main(["--profile", "local", "estimate"]) == 0

    def test_no_database_configured(self, workdir, output):
        assert cli.main(["test"]) == 1
        assert "dbporter config not found" in output.getvalue()


class TestOfflineCommands:
    """Test commands that never touch a database."""

    def test_strategies(self, output):
        assert cli.main(["strategies"]) == 0
        text = output.getvalue()
        for name in ("mysql_shell", "postgresql_sql", "sqlite_native", "sqlite_file_copy"):
            assert name in text

    def test_strategies_for_one_dialect(self, output):
        assert cli.main(["strategies", "--dialect", "postgres"]) == 0
        text = output.getvalue()
        assert "postgresql_shell" in text
        assert "sqlite_native" not in text

    def test_strategies_unknown_dialect(self, output):
        assert cli.main(["strategies", "--dialect", "oracle"]) == 1

    def test_translate_to_stdout(self, workdir, output, capsys):
        dump = workdir / "dump.sql"
        dump.write_text(MYSQL_SCHEMA)
        assert cli.main(["translate", "-i", str(dump), "--from", "mysql", "--to", "postgresql"]) == 0
        translated = capsys.readouterr().out
        assert "-- Dialect: postgresql" in translated
        assert 'CREATE TABLE "authors"' in translated
        assert "'It''s me'" in translated
        assert "[dropped] index authors.ft_bio" in output.getvalue()

    def test_translate_to_file(self, workdir, output):
        dump = workdir / "dump.sql"
        dump.write_text(MYSQL_SCHEMA)
        target = workdir / "app.sqlite.sql"
        assert cli.main(
            ["translate", "-i", str(dump), "--from", "mysql", "--to", "sqlite", "-o", str(target)]
        ) == 0
        assert "AUTOINCREMENT" in target.read_text()
        assert "MySQL -> SQLite" in output.getvalue()

    def test_translate_strict(self, workdir, output):
        dump = workdir / "dump.sql"
        dump.write_text(MYSQL_SCHEMA)
        assert cli.main(
            ["translate", "-i", str(dump), "--from", "mysql", "--to", "postgresql", "--strict"]
        ) == 1
        assert "Strict mode" in output.getvalue()

    def test_translate_missing_input(self, workdir, output):
        assert cli.main(
            ["translate", "-i", str(workdir / "nope.sql"), "--from", "mysql", "--to", "sqlite"]
        ) == 1

    def test_translate_unknown_dialect(self, workdir, output):
        dump = workdir / "dump.sql"
        dump.write_text("SELECT 1;")
        assert cli.main(["translate", "-i", str(dump), "--from", "db2", "--to", "sqlite"]) == 1
