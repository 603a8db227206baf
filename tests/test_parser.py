"""Tests for SQL statement parsing.

Covers the character scanner (quotes, comments, DELIMITER, trigger and
routine bodies, dollar quotes, streaming input, error offsets), the
line-oriented fallback parser and the ``get_parser`` selector.
"""

import re

import pytest

from dbporter.errors import ErrorKind, ParseError
from dbporter.parser import (
    LineParser,
    SQLScanner,
    StatementKind,
    classify,
    get_parser,
    statement_verb,
)


def _texts(statements) -> list[str]:
    return [statement.text for statement in statements]


# ------------------------------------------------------------------
# Scanner: basic splitting
# ------------------------------------------------------------------


class TestScannerSplitting:
    """Test top-level terminator handling."""

    def test_splits_on_semicolons(self):
        """Each top-level semicolon ends a statement."""
        statements = SQLScanner("sqlite").parse("CREATE TABLE a (id INT);\nINSERT INTO a VALUES (1);")
        assert _texts(statements) == ["CREATE TABLE a (id INT)", "INSERT INTO a VALUES (1)"]

    def test_trailing_statement_without_terminator(self):
        """A final statement without ';' is still emitted."""
        statements = SQLScanner("postgresql").parse("SELECT 1;\nSELECT 2")
        assert _texts(statements) == ["SELECT 1", "SELECT 2"]
        assert statements[1].terminator is None

    def test_semicolon_inside_string(self):
        """Semicolons inside string literals do not split."""
        sql = "INSERT INTO t VALUES ('a;b');INSERT INTO t VALUES ('c')"
        statements = SQLScanner("sqlite").parse(sql)
        assert _texts(statements) == ["INSERT INTO t VALUES ('a;b')", "INSERT INTO t VALUES ('c')"]

    def test_doubled_quote_escape(self):
        """'' inside a string is an escaped quote, not a terminator."""
        statements = SQLScanner("postgresql").parse("INSERT INTO t VALUES ('it''s; fine');")
        assert _texts(statements) == ["INSERT INTO t VALUES ('it''s; fine')"]

    def test_mysql_backslash_escape(self):
        """MySQL strings honor backslash escapes."""
        statements = SQLScanner("mysql").parse("INSERT INTO t VALUES ('a\\';b');SELECT 1;")
        assert _texts(statements) == ["INSERT INTO t VALUES ('a\\';b')", "SELECT 1"]

    def test_quoted_identifiers(self):
        """Backtick, double-quote and bracket identifiers can contain ';'."""
        assert len(SQLScanner("mysql").parse("SELECT `a;b` FROM t;")) == 1
        assert len(SQLScanner("postgresql").parse('SELECT "a;b" FROM t;')) == 1
        assert len(SQLScanner("sqlite").parse("SELECT [a;b] FROM t;")) == 1

    def test_empty_statements_dropped(self):
        """Bare terminators produce no statements."""
        assert _texts(SQLScanner("sqlite").parse(";;SELECT 1;;")) == ["SELECT 1"]

    def test_indices_are_sequential(self):
        """Statements are numbered in file order from zero."""
        statements = SQLScanner("sqlite").parse("SELECT 1; SELECT 2; SELECT 3;")
        assert [statement.index for statement in statements] == [0, 1, 2]

    def test_line_numbers(self):
        """Each statement records the line it starts on."""
        statements = SQLScanner("sqlite").parse("SELECT 1;\n\nSELECT 2;")
        assert statements[0].line == 1
        assert statements[1].line == 3

    def test_offsets_point_into_input(self):
        """start/end are character offsets of the statement in the input."""
        sql = "  SELECT 1;"
        statement = SQLScanner("sqlite").parse(sql)[0]
        assert statement.start == 2
        assert sql[statement.end] == ";"


# ------------------------------------------------------------------
# Scanner: comments
# ------------------------------------------------------------------


class TestScannerComments:
    """Test comment handling per dialect."""

    def test_line_and_block_comments_removed(self):
        """-- and /* */ comments are stripped from statement text."""
        sql = "-- header\nSELECT /* inline */ 1; /* trailing */"
        statements = SQLScanner("postgresql").parse(sql)
        assert _texts(statements) == ["SELECT 1"]

    def test_whitespace_around_removed_comments(self):
        """A removed comment leaves a single separator, however input is chunked."""
        sql = "SELECT a, -- first\n   b /* second */  FROM t;"
        assert _texts(SQLScanner("postgresql").parse(sql)) == ["SELECT a, b FROM t"]

        scanner = SQLScanner("postgresql")
        streamed = []
        for ch in sql:
            streamed.extend(scanner.feed(ch))
        streamed.extend(scanner.finish())
        assert _texts(streamed) == ["SELECT a, b FROM t"]

    def test_adjacent_comment_still_separates(self):
        """Tokens on both sides of a comment are not glued together."""
        assert _texts(SQLScanner("sqlite").parse("SELECT/*x*/1;")) == ["SELECT 1"]

    def test_comments_only_yields_nothing(self):
        """A script of comments contains no statements."""
        assert SQLScanner("sqlite").parse("-- one\n/* two */\n") == []

    def test_semicolon_in_comment_ignored(self):
        """A ';' inside a comment does not split."""
        statements = SQLScanner("sqlite").parse("SELECT 1 -- not; here\n+ 1;")
        assert len(statements) == 1

    def test_hash_comment_mysql_only(self):
        """'#' starts a comment on MySQL only."""
        assert _texts(SQLScanner("mysql").parse("# note; here\nSELECT 1;")) == ["SELECT 1"]
        statements = SQLScanner("postgresql").parse("SELECT '#' || 'x';")
        assert _texts(statements) == ["SELECT '#' || 'x'"]

    def test_executable_comment_kept(self):
        """MySQL /*! ... */ comments are part of the statement."""
        statements = SQLScanner("mysql").parse("/*!40101 SET NAMES utf8mb4 */;\nSELECT 1;")
        assert statements[0].text == "/*!40101 SET NAMES utf8mb4 */"
        assert len(statements) == 2

    def test_keep_comments(self):
        """keep_comments leaves comment text in place."""
        statements = SQLScanner("sqlite", keep_comments=True).parse("SELECT 1 /* note */;")
        assert "/* note */" in statements[0].text

    def test_comment_counted(self):
        """Removed comments are counted in the statistics."""
        scanner = SQLScanner("sqlite")
        scanner.parse("-- a\n/* b */SELECT 1;")
        assert scanner.statistics.comments_removed == 2


# ------------------------------------------------------------------
# Scanner: routine bodies
# ------------------------------------------------------------------


class TestScannerRoutines:
    """Test DELIMITER directives, BEGIN...END bodies and dollar quotes."""

    def test_mysql_delimiter_procedure(self):
        """DELIMITER switches the terminator for a procedure body."""
        sql = (
            "DELIMITER //\n"
            "CREATE PROCEDURE p()\nBEGIN\n  SELECT 1;\n  SELECT 2;\nEND //\n"
            "DELIMITER ;\n"
            "SELECT 3;\n"
        )
        scanner = SQLScanner("mysql")
        statements = scanner.parse(sql)
        assert len(statements) == 2
        assert statements[0].text.startswith("CREATE PROCEDURE p()")
        assert statements[0].text.endswith("END")
        assert statements[0].terminator == "//"
        assert statements[0].in_routine_body
        assert statements[1].text == "SELECT 3"
        assert scanner.statistics.delimiter_changes == 2

    def test_delimiter_property(self):
        """The active delimiter is visible while streaming."""
        scanner = SQLScanner("mysql")
        scanner.feed("DELIMITER $$\n")
        assert scanner.delimiter == "$$"

    def test_sqlite_trigger_body(self):
        """A trigger body's inner ';' does not end the CREATE TRIGGER."""
        sql = (
            "CREATE TRIGGER trg AFTER INSERT ON a\nBEGIN\n"
            "  INSERT INTO log VALUES (new.id);\n"
            "  UPDATE a SET n = 1 WHERE id = new.id;\n"
            "END;\n"
            "SELECT 1;"
        )
        statements = SQLScanner("sqlite").parse(sql)
        assert len(statements) == 2
        assert statements[0].in_routine_body
        assert statements[0].text.endswith("END")
        assert not statements[1].in_routine_body

    def test_mysql_trigger_with_if_block(self):
        """END IF does not close the outer BEGIN."""
        sql = (
            "CREATE TRIGGER trg BEFORE INSERT ON t FOR EACH ROW BEGIN "
            "IF NEW.a IS NULL THEN SET NEW.a = 0; END IF; END;"
            "SELECT 1;"
        )
        statements = SQLScanner("mysql").parse(sql)
        assert len(statements) == 2
        assert statements[0].text.endswith("END IF; END")

    def test_case_expression_in_trigger(self):
        """CASE ... END inside a body balances its own END."""
        sql = (
            "CREATE TRIGGER trg AFTER UPDATE ON a BEGIN "
            "UPDATE b SET v = CASE WHEN new.x THEN 1 ELSE 0 END; END;"
        )
        statements = SQLScanner("sqlite").parse(sql)
        assert len(statements) == 1

    def test_postgres_dollar_quoted_function(self):
        """A $$ function body is one statement."""
        sql = (
            "CREATE FUNCTION f() RETURNS int AS $$\nBEGIN\n  RETURN 1;\nEND;\n$$ LANGUAGE plpgsql;\n"
            "SELECT f();"
        )
        statements = SQLScanner("postgresql").parse(sql)
        assert len(statements) == 2
        assert statements[0].text.endswith("LANGUAGE plpgsql")
        assert statements[0].in_routine_body

    def test_postgres_tagged_dollar_quote(self):
        """$tag$ quotes close only on the same tag."""
        sql = "SELECT $body$ a $$ ; b $body$;SELECT 2;"
        statements = SQLScanner("postgresql").parse(sql)
        assert len(statements) == 2

    def test_create_table_not_a_routine(self):
        """Plain CREATE TABLE is never treated as a compound statement."""
        statements = SQLScanner("mysql").parse("CREATE TABLE t (a INT);SELECT 1;")
        assert len(statements) == 2
        assert not statements[0].in_routine_body


# ------------------------------------------------------------------
# Scanner: errors and streaming
# ------------------------------------------------------------------


class TestScannerErrors:
    """Test ParseError reporting."""

    def test_unterminated_string_offset(self):
        """The error points at the opening quote."""
        with pytest.raises(ParseError) as exc_info:
            SQLScanner("sqlite").parse("SELECT 'abc")
        assert exc_info.value.offset == 7
        assert exc_info.value.kind is ErrorKind.PARSE_ERROR
        assert "Unterminated string literal" in str(exc_info.value)

    def test_unterminated_block_comment(self):
        """An open block comment at end of input is an error."""
        with pytest.raises(ParseError) as exc_info:
            SQLScanner("postgresql").parse("SELECT 1;\n/* open")
        assert exc_info.value.offset == 10
        assert exc_info.value.line == 2

    def test_unterminated_dollar_quote(self):
        """An open dollar quote names its tag."""
        with pytest.raises(ParseError, match=r"\$fn\$"):
            SQLScanner("postgresql").parse("CREATE FUNCTION f() AS $fn$ BEGIN")

    def test_statement_size_limit(self):
        """Statements larger than max_statement_size are rejected."""
        with pytest.raises(ParseError, match="maximum size"):
            SQLScanner("sqlite", max_statement_size=10).parse("SELECT 'aaaaaaaaaaaaaaaaaaaa';")

    def test_scanner_reusable_after_error(self):
        """A failed parse leaves the scanner ready for new input."""
        scanner = SQLScanner("sqlite")
        with pytest.raises(ParseError):
            scanner.parse("SELECT 'abc")
        assert _texts(scanner.parse("SELECT 1;")) == ["SELECT 1"]


class TestScannerStreaming:
    """Test that chunked input yields the same statements as whole input."""

    SQL = (
        "DELIMITER //\n"
        "CREATE PROCEDURE p() BEGIN SELECT 'x;y'; END //\n"
        "DELIMITER ;\n"
        "/*!40101 SET NAMES utf8 */;\n"
        "INSERT INTO `t` VALUES ('it''s', \"q\\\"d\"); -- tail\n"
        "SELECT 1;"
    )

    @pytest.mark.parametrize("size", [1, 2, 3, 7, 64])
    def test_chunked_feed_matches_parse(self, size):
        """Any chunk size produces identical statements."""
        whole = SQLScanner("mysql").parse(self.SQL)

        scanner = SQLScanner("mysql")
        streamed = []
        for position in range(0, len(self.SQL), size):
            streamed.extend(scanner.feed(self.SQL[position:position + size]))
        streamed.extend(scanner.finish())

        assert _texts(streamed) == _texts(whole)
        assert [s.start for s in streamed] == [s.start for s in whole]

    def test_statistics(self):
        """Statistics count statements and routine bodies."""
        scanner = SQLScanner("mysql")
        scanner.parse(self.SQL)
        assert scanner.statistics.statements == 4
        assert scanner.statistics.routine_bodies == 1
        assert scanner.statistics.characters == len(self.SQL)


class TestScannerProperties:
    """Test whole-script guarantees of the scanner."""

    SCRIPTS = [
        (
            "mysql",
            "DELIMITER //\n"
            "CREATE PROCEDURE p()\nBEGIN\n  SELECT 1;\n  SELECT 'a;b';\nEND //\n"
            "DELIMITER ;\n"
            "INSERT INTO t VALUES ('x;y');\n",
        ),
        (
            "postgresql",
            "CREATE FUNCTION f() RETURNS int AS $body$\nBEGIN\n  RETURN 1;\nEND;\n$body$ "
            "LANGUAGE plpgsql;\nSELECT f();\nSELECT $$;$$;\n",
        ),
    ]

    @pytest.mark.parametrize("dialect,sql", SCRIPTS)
    def test_parse_is_idempotent(self, dialect, sql):
        """Parsing the same input twice yields the same statements."""
        scanner = SQLScanner(dialect)
        first = scanner.parse(sql)
        assert scanner.parse(sql) == first
        assert SQLScanner(dialect).parse(sql) == first

    @pytest.mark.parametrize("dialect,sql", SCRIPTS)
    def test_rejoined_statements_match_script(self, dialect, sql):
        """Statements plus their terminators rebuild the script, minus DELIMITER lines."""
        statements = SQLScanner(dialect).parse(sql)
        rejoined = "".join(s.text + (s.terminator or "") for s in statements)
        script = "".join(
            line for line in sql.splitlines(keepends=True) if not line.startswith("DELIMITER")
        )
        assert re.sub(r"\s+", "", rejoined) == re.sub(r"\s+", "", script)
        assert len(statements) == (2 if dialect == "mysql" else 3)


# ------------------------------------------------------------------
# Line parser and selector
# ------------------------------------------------------------------


class TestLineParser:
    """Test the line-oriented fallback parser."""

    def test_splits_on_line_final_terminator(self):
        """Statements end where a line ends with ';'."""
        sql = "CREATE TABLE a (\n  id INT\n);\nINSERT INTO a VALUES (1);\n"
        statements = LineParser("sqlite").parse(sql)
        assert _texts(statements) == ["CREATE TABLE a (\n  id INT\n)", "INSERT INTO a VALUES (1)"]

    def test_skips_comment_lines(self):
        """Comment-only lines between statements are skipped."""
        statements = LineParser("mysql").parse("-- x\n# y\nSELECT 1;\n")
        assert _texts(statements) == ["SELECT 1"]

    def test_delimiter_directive(self):
        """DELIMITER lines change the terminator."""
        sql = "DELIMITER //\nCREATE PROCEDURE p() BEGIN\nSELECT 1;\nEND //\nDELIMITER ;\nSELECT 2;\n"
        statements = LineParser("mysql").parse(sql)
        assert len(statements) == 2
        assert statements[0].text.endswith("END")
        assert statements[0].terminator == "//"

    def test_dollar_function_kept_together(self):
        """A $$ body spanning ';'-terminated lines stays one statement."""
        sql = "CREATE FUNCTION f() RETURNS int AS $$\nBEGIN\nRETURN 1;\nEND;\n$$ LANGUAGE plpgsql;\n"
        statements = LineParser("postgresql").parse(sql)
        assert len(statements) == 1
        assert statements[0].in_routine_body

    def test_unterminated_tail(self):
        """Trailing text without a terminator is emitted."""
        statements = LineParser("sqlite").parse("SELECT 1")
        assert statements[0].terminator is None


class TestGetParser:
    """Test parser selection."""

    def test_default_is_scanner(self):
        assert isinstance(get_parser("mysql"), SQLScanner)

    def test_line_kind(self):
        assert isinstance(get_parser("postgresql", kind="line"), LineParser)

    def test_unknown_kind(self):
        with pytest.raises(ValueError, match="Unknown parser kind"):
            get_parser("sqlite", kind="regex")

    def test_scanner_kwargs_forwarded(self):
        parser = get_parser("sqlite", keep_comments=True)
        assert parser.keep_comments is True


class TestStatementClassification:
    """Test verbs, kinds and previews."""

    def test_statement_verb(self):
        assert statement_verb("create unique index ix on t (a)") == "CREATE INDEX"
        assert statement_verb("CREATE OR REPLACE VIEW v AS SELECT 1") == "CREATE VIEW"
        assert statement_verb("insert into t values (1)") == "INSERT"
        assert statement_verb("/*!40101 SET NAMES utf8 */") == "SET"

    def test_classify(self):
        assert classify("CREATE TABLE t (a int)") is StatementKind.DDL
        assert classify("INSERT INTO t VALUES (1)") is StatementKind.DML
        assert classify("PRAGMA foreign_keys=OFF") is StatementKind.SET
        assert classify("SELECT 1") is StatementKind.OTHER

    def test_statement_kind_and_preview(self):
        statement = SQLScanner("sqlite").parse("INSERT INTO t VALUES ('" + "x" * 200 + "');")[0]
        assert statement.kind is StatementKind.DML
        assert statement.verb == "INSERT"
        assert len(statement.preview()) <= 103
