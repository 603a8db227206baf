"""Character-scanning SQL statement splitter.

``SQLScanner`` walks the input one token at a time, tracking quote state,
comment state, PostgreSQL dollar-quote tags, the active ``DELIMITER`` and
BEGIN...END nesting inside trigger/routine bodies. A statement is emitted
for each top-level terminator.

The scanner is incremental: ``feed()`` accepts arbitrary chunks and pauses
whenever a decision needs characters that have not arrived yet, so the
statement boundaries for streamed input are the same as for whole input.

Usage:
    from dbporter.parser.scanner import SQLScanner

    scanner = SQLScanner("mysql")
    statements = scanner.parse(open("dump.sql").read())

    # Streaming
    scanner = SQLScanner("postgresql")
    for chunk in chunks:
        for statement in scanner.feed(chunk):
            ...
    tail = scanner.finish()
"""

import re
from dataclasses import dataclass
from enum import Enum

from dbporter.dialects import Dialect
from dbporter.errors import ParseError
from dbporter.parser.models import Statement

DEFAULT_MAX_STATEMENT_SIZE = 100 * 1024 * 1024

_WORD_START = frozenset("ABCDEFGHIJKLMNOPQRSTUVWXYZabcdefghijklmnopqrstuvwxyz_")
_WORD_RE = re.compile(r"[A-Za-z_][A-Za-z0-9_$]*")
_SPACE_RE = re.compile(r"\s+")
_DOLLAR_TAG_RE = re.compile(r"\$(?:[A-Za-z_][A-Za-z0-9_]*)?\$")
_DOLLAR_PARTIAL_RE = re.compile(r"\$[A-Za-z0-9_]*\Z")

_COMPOUND_OBJECTS = frozenset({"TRIGGER", "PROCEDURE", "FUNCTION", "EVENT"})
_PLAIN_OBJECTS = frozenset({"TABLE", "VIEW", "INDEX", "SEQUENCE", "SCHEMA", "DATABASE", "TYPE"})
_END_QUALIFIERS = frozenset({"IF", "LOOP", "WHILE", "REPEAT"})
_HEADER_WORDS = 8


class _State(Enum):
    NORMAL = "normal"
    SINGLE_QUOTE = "single_quote"
    DOUBLE_QUOTE = "double_quote"
    BACKTICK = "backtick"
    BRACKET = "bracket"
    LINE_COMMENT = "line_comment"
    BLOCK_COMMENT = "block_comment"
    DOLLAR_QUOTE = "dollar_quote"


_UNTERMINATED = {
    _State.SINGLE_QUOTE: "Unterminated string literal",
    _State.DOUBLE_QUOTE: "Unterminated double-quoted literal",
    _State.BACKTICK: "Unterminated backtick identifier",
    _State.BRACKET: "Unterminated bracket identifier",
    _State.BLOCK_COMMENT: "Unterminated block comment",
    _State.DOLLAR_QUOTE: "Unterminated dollar-quoted block",
}


@dataclass
class ParseStatistics:
    statements: int = 0
    characters: int = 0
    comments_removed: int = 0
    delimiter_changes: int = 0
    routine_bodies: int = 0


class SQLScanner:
    """Dialect-aware state-machine statement parser.

    Args:
        dialect: Source dialect, or ``None`` for a permissive generic mode
            that accepts backticks, dollar quotes and ``DELIMITER``.
        keep_comments: Keep comment text inside emitted statements.
        max_statement_size: Upper bound for a single statement, in characters.
    """

    def __init__(
        self,
        dialect: Dialect | str | None = None,
        *,
        keep_comments: bool = False,
        max_statement_size: int = DEFAULT_MAX_STATEMENT_SIZE,
    ) -> None:
        self.dialect = Dialect.from_value(dialect) if dialect else None
        self.keep_comments = keep_comments
        self.max_statement_size = max_statement_size

        generic = self.dialect is None
        self._backticks = generic or self.dialect in (Dialect.MYSQL, Dialect.SQLITE)
        self._brackets = self.dialect is Dialect.SQLITE
        self._dollar_quotes = generic or self.dialect is Dialect.POSTGRESQL
        self._hash_comments = self.dialect is Dialect.MYSQL
        self._delimiter_directive = generic or self.dialect is Dialect.MYSQL
        self._executable_comments = generic or self.dialect is Dialect.MYSQL

        self._handlers = {
            _State.NORMAL: self._scan_normal,
            _State.SINGLE_QUOTE: self._scan_quoted,
            _State.DOUBLE_QUOTE: self._scan_quoted,
            _State.BACKTICK: self._scan_quoted,
            _State.BRACKET: self._scan_quoted,
            _State.LINE_COMMENT: self._scan_line_comment,
            _State.BLOCK_COMMENT: self._scan_block_comment,
            _State.DOLLAR_QUOTE: self._scan_dollar_quote,
        }
        self.reset()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def reset(self) -> None:
        """Discard all buffered input and return to the initial state."""
        self._buf = ""
        self._base = 0
        self._pos = 0
        self._line = 1
        self._state = _State.NORMAL
        self._delimiter = ";"
        self._index = 0
        self.statistics = ParseStatistics()
        self._reset_statement()

    def parse(self, text: str) -> list[Statement]:
        """Split a complete script into statements.

        Raises:
            ParseError: On an unterminated quote, dollar block or comment.
        """
        self.reset()
        statements = self.feed(text)
        statements.extend(self.finish())
        return statements

    def feed(self, chunk: str) -> list[Statement]:
        """Consume a chunk of input and return the statements it completed."""
        self._buf += chunk
        self.statistics.characters += len(chunk)
        try:
            emitted = self._scan(final=False)
        except ParseError:
            self.reset()
            raise
        self._buf = self._buf[self._pos:]
        self._base += self._pos
        self._pos = 0
        return emitted

    def finish(self) -> list[Statement]:
        """Flush the trailing statement and reset the scanner.

        Raises:
            ParseError: If input ended inside a quote, dollar block or
                block comment.
        """
        try:
            emitted = self._scan(final=True)
            if self._state not in (_State.NORMAL, _State.LINE_COMMENT):
                message = _UNTERMINATED[self._state]
                if self._state is _State.DOLLAR_QUOTE:
                    message = f"{message} {self._dollar_tag}"
                raise ParseError(message, offset=self._open_offset, line=self._open_line)
            self._emit(len(self._buf), None, emitted)
        except ParseError:
            self.reset()
            raise
        statistics = self.statistics
        self.reset()
        self.statistics = statistics
        return emitted

    @property
    def delimiter(self) -> str:
        """Currently active statement terminator."""
        return self._delimiter

    # ------------------------------------------------------------------
    # Scanning loop
    # ------------------------------------------------------------------

    def _scan(self, final: bool) -> list[Statement]:
        emitted: list[Statement] = []
        buf = self._buf
        n = len(buf)
        i = self._pos
        while i < n:
            j = self._handlers[self._state](buf, i, n, final, emitted)
            if j < 0:
                break
            self._line += buf.count("\n", i, j)
            i = j
        self._pos = i
        return emitted

    def _scan_normal(self, buf: str, i: int, n: int, final: bool, emitted: list) -> int:
        ch = buf[i]
        delimiter = self._delimiter

        if ch == delimiter[0]:
            if buf.startswith(delimiter, i):
                if delimiter != ";" or self._block_closed():
                    self._emit(i, delimiter, emitted)
                    return i + len(delimiter)
            elif not final and delimiter.startswith(buf[i:]):
                return -1

        if ch in _WORD_START:
            end = _WORD_RE.match(buf, i).end()
            if end == n and not final:
                return -1
            word = buf[i:end]
            if (
                self._delimiter_directive
                and self._stmt_start is None
                and word.upper() == "DELIMITER"
            ):
                return self._delimiter_line(buf, i, n, final)
            self._on_word(word, i)
            return end

        if ch.isspace():
            end = _SPACE_RE.match(buf, i).end()
            # one separator where a removed comment already left one
            if self._out and not self._after_comment:
                self._out.append(buf[i:end])
                self._trailing_space = True
            return end

        if ch == "'":
            escapes = self._string_escapes(i)
            return self._open_quote(_State.SINGLE_QUOTE, "'", escapes, i)
        if ch == '"':
            escapes = self.dialect is Dialect.MYSQL
            return self._open_quote(_State.DOUBLE_QUOTE, '"', escapes, i)
        if ch == "`" and self._backticks:
            return self._open_quote(_State.BACKTICK, "`", False, i)
        if ch == "[" and self._brackets:
            return self._open_quote(_State.BRACKET, "]", False, i)

        if ch == "-" or ch == "/":
            if i + 1 >= n:
                if not final:
                    return -1
            elif ch == "-" and buf[i + 1] == "-":
                return self._open_line_comment(i, "--")
            elif ch == "/" and buf[i + 1] == "*":
                return self._open_block_comment(buf, i, n, final)

        if ch == "#" and self._hash_comments:
            return self._open_line_comment(i, "#")

        if ch == "$" and self._dollar_quotes:
            match = _DOLLAR_TAG_RE.match(buf, i)
            if match is not None:
                self._dollar_tag = match.group(0)
                self._mark_open(i)
                self._append(self._dollar_tag, i)
                self._routine = True
                self._state = _State.DOLLAR_QUOTE
                return match.end()
            if not final and _DOLLAR_PARTIAL_RE.match(buf, i):
                return -1

        self._append(ch, i)
        return i + 1

    def _scan_quoted(self, buf: str, i: int, n: int, final: bool, emitted: list) -> int:
        match = self._quote_pattern.search(buf, i)
        if match is None:
            self._append_raw(buf[i:n])
            return n
        j = match.start()
        if j > i:
            self._append_raw(buf[i:j])
            return j
        if buf[j] == "\\":
            if j + 1 >= n and not final:
                return -1
            self._append_raw(buf[j:j + 2])
            return min(j + 2, n)
        if j + 1 >= n and not final:
            return -1
        close = self._quote_close
        if j + 1 < n and buf[j + 1] == close:
            self._append_raw(buf[j:j + 2])
            return j + 2
        self._append_raw(close)
        self._state = _State.NORMAL
        return j + 1

    def _scan_line_comment(self, buf: str, i: int, n: int, final: bool, emitted: list) -> int:
        j = buf.find("\n", i)
        end = n if j == -1 else j
        if self.keep_comments:
            self._out.append(buf[i:end])
        if j == -1:
            return n
        self._state = _State.NORMAL
        self._comment_gap()
        return j

    def _scan_block_comment(self, buf: str, i: int, n: int, final: bool, emitted: list) -> int:
        j = buf.find("*/", i)
        if j == -1:
            end = n if final or not buf.endswith("*") else n - 1
            if end <= i:
                return -1
            if self._comment_kept:
                self._append_raw(buf[i:end])
            return end
        if self._comment_kept:
            self._append_raw(buf[i:j + 2])
        else:
            self._comment_gap()
        self._state = _State.NORMAL
        return j + 2

    def _scan_dollar_quote(self, buf: str, i: int, n: int, final: bool, emitted: list) -> int:
        tag = self._dollar_tag
        j = buf.find(tag, i)
        if j == -1:
            end = n if final else n - len(tag) + 1
            if end <= i:
                return -1
            self._append_raw(buf[i:end])
            return end
        end = j + len(tag)
        self._append_raw(buf[i:end])
        self._state = _State.NORMAL
        return end

    # ------------------------------------------------------------------
    # State transitions
    # ------------------------------------------------------------------

    def _open_quote(self, state: _State, close: str, escapes: bool, i: int) -> int:
        self._mark_open(i)
        self._append(self._buf[i], i)
        self._quote_close = close
        chars = re.escape(close) + ("\\\\" if escapes else "")
        self._quote_pattern = re.compile(f"[{chars}]")
        self._state = state
        return i + 1

    def _open_line_comment(self, i: int, marker: str) -> int:
        self.statistics.comments_removed += 1
        if self.keep_comments:
            self._out.append(marker)
        self._state = _State.LINE_COMMENT
        return i + len(marker)

    def _open_block_comment(self, buf: str, i: int, n: int, final: bool) -> int:
        if self._executable_comments:
            if i + 2 >= n and not final:
                return -1
            if buf.startswith("/*!", i):
                self._mark_open(i)
                self._append("/*!", i)
                self._comment_kept = True
                self._state = _State.BLOCK_COMMENT
                return i + 3
        self._mark_open(i)
        self.statistics.comments_removed += 1
        self._comment_kept = self.keep_comments
        if self._comment_kept:
            self._out.append("/*")
        self._state = _State.BLOCK_COMMENT
        return i + 2

    def _delimiter_line(self, buf: str, i: int, n: int, final: bool) -> int:
        eol = buf.find("\n", i)
        if eol == -1:
            if not final:
                return -1
            eol = n
        argument = buf[i + len("DELIMITER"):eol].split()
        if argument:
            self._delimiter = argument[0]
            self.statistics.delimiter_changes += 1
        return eol

    def _on_word(self, word: str, i: int) -> None:
        self._append(word, i)
        self._last_word = word
        self._last_word_end = self._base + i + len(word)
        upper = word.upper()

        if len(self._words) < _HEADER_WORDS:
            self._words.append(upper)
            if self._compound is None:
                self._detect_compound()

        if not self._compound:
            return
        if self._pending_end:
            self._pending_end = False
            if upper in _END_QUALIFIERS:
                return
            self._depth = max(0, self._depth - 1)
            if upper == "CASE":
                return
        if upper in ("BEGIN", "CASE"):
            self._depth += 1
            self._routine = True
        elif upper == "END":
            self._pending_end = True

    def _detect_compound(self) -> None:
        words = self._words
        if words[0] != "CREATE":
            self._compound = False
            return
        last = words[-1]
        if last in _PLAIN_OBJECTS:
            self._compound = False
        elif last in _COMPOUND_OBJECTS:
            self._compound = True
        elif len(words) >= _HEADER_WORDS:
            self._compound = False

    def _block_closed(self) -> bool:
        if not self._compound:
            return True
        if self._pending_end:
            self._pending_end = False
            self._depth = max(0, self._depth - 1)
        return self._depth == 0

    def _string_escapes(self, i: int) -> bool:
        if self.dialect is Dialect.MYSQL:
            return True
        if self.dialect is Dialect.POSTGRESQL:
            return (
                self._last_word_end == self._base + i
                and self._last_word.upper() == "E"
            )
        return False

    # ------------------------------------------------------------------
    # Statement buffer
    # ------------------------------------------------------------------

    def _reset_statement(self) -> None:
        self._out: list[str] = []
        self._size = 0
        self._stmt_start: int | None = None
        self._stmt_line = 1
        self._trailing_space = True
        self._after_comment = False
        self._words: list[str] = []
        self._compound: bool | None = None
        self._depth = 0
        self._pending_end = False
        self._routine = False
        self._last_word = ""
        self._last_word_end = -1
        self._comment_kept = False
        self._open_offset = 0
        self._open_line = 1
        self._dollar_tag = ""

    def _mark_open(self, i: int) -> None:
        self._open_offset = self._base + i
        self._open_line = self._line

    def _append(self, text: str, i: int) -> None:
        if self._stmt_start is None:
            self._stmt_start = self._base + i
            self._stmt_line = self._line
        self._append_raw(text)

    def _append_raw(self, text: str) -> None:
        self._out.append(text)
        self._trailing_space = False
        self._after_comment = False
        self._size += len(text)
        if self._size > self.max_statement_size:
            raise ParseError(
                f"Statement exceeds maximum size of {self.max_statement_size} characters",
                offset=self._stmt_start or self._base,
                line=self._stmt_line,
            )

    def _comment_gap(self) -> None:
        if self.keep_comments:
            return
        self._after_comment = True
        if self._out and not self._trailing_space:
            self._out.append(" ")
            self._trailing_space = True

    def _emit(self, i: int, terminator: str | None, emitted: list) -> None:
        text = "".join(self._out).strip()
        if self._stmt_start is not None and text:
            emitted.append(
                Statement(
                    text=text,
                    index=self._index,
                    start=self._stmt_start,
                    end=self._base + i,
                    line=self._stmt_line,
                    terminator=terminator,
                    in_routine_body=self._routine,
                )
            )
            self._index += 1
            self.statistics.statements += 1
            if self._routine:
                self.statistics.routine_bodies += 1
        self._reset_statement()
