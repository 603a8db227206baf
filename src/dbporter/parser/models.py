"""Statement value objects produced by the parsers."""

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Protocol


class StatementKind(str, Enum):
    DDL = "ddl"
    DML = "dml"
    SET = "set"
    OTHER = "other"


_DDL_VERBS = {"CREATE", "ALTER", "DROP", "TRUNCATE", "RENAME", "COMMENT"}
_DML_VERBS = {"INSERT", "UPDATE", "DELETE", "REPLACE", "MERGE", "COPY", "UPSERT"}
_SET_VERBS = {"SET", "PRAGMA", "USE"}

# Words that may sit between CREATE/DROP/ALTER and the object keyword
_OBJECT_MODIFIERS = {
    "OR", "REPLACE", "UNIQUE", "TEMP", "TEMPORARY", "GLOBAL", "LOCAL",
    "UNLOGGED", "MATERIALIZED", "VIRTUAL", "FULLTEXT", "SPATIAL",
    "ONLINE", "IGNORE", "AGGREGATE", "RECURSIVE", "CONSTRAINT",
}

_EXEC_COMMENT = re.compile(r"^/\*!\d*\s*")
_WORD = re.compile(r"[A-Za-z_]+")


def _leading_words(text: str, limit: int = 8) -> list[str]:
    body = _EXEC_COMMENT.sub("", text.lstrip("( \t\r\n"))
    words = []
    for match in _WORD.finditer(body[:400]):
        words.append(match.group(0).upper())
        if len(words) >= limit:
            break
    return words


def statement_verb(text: str) -> str:
    """Return the statement's leading verb, e.g. ``CREATE TABLE`` or ``INSERT``.

    Example:
        >>> statement_verb("create unique index ix on t (a)")
        'CREATE INDEX'
    """
    words = _leading_words(text)
    if not words:
        return ""
    first = words[0]
    if first in ("CREATE", "ALTER", "DROP"):
        for word in words[1:]:
            if word in _OBJECT_MODIFIERS or word == "DEFINER":
                continue
            return f"{first} {word}"
        return first
    return first


def classify(text: str) -> StatementKind:
    """Classify a statement as DDL, DML, SET or OTHER by its leading verb."""
    words = _leading_words(text, limit=2)
    if not words:
        return StatementKind.OTHER
    first = words[0]
    if first == "WITH":
        return StatementKind.DML if "INSERT" in text.upper() else StatementKind.OTHER
    if first in _DDL_VERBS:
        return StatementKind.DDL
    if first in _DML_VERBS:
        return StatementKind.DML
    if first in _SET_VERBS:
        return StatementKind.SET
    return StatementKind.OTHER


@dataclass(frozen=True)
class Statement:
    """One executable SQL unit.

    ``start``/``end`` are absolute character offsets of the statement body
    in the parsed input (terminator excluded). ``terminator`` is the active
    delimiter that closed the statement, or ``None`` for trailing text at
    end of input.
    """

    text: str
    index: int
    start: int
    end: int
    line: int = 1
    terminator: str | None = ";"
    in_routine_body: bool = False
    kind: StatementKind = field(default=StatementKind.OTHER)

    def __post_init__(self) -> None:
        if self.kind is StatementKind.OTHER:
            object.__setattr__(self, "kind", classify(self.text))

    @property
    def verb(self) -> str:
        return statement_verb(self.text)

    def preview(self, limit: int = 100) -> str:
        """First ``limit`` characters, single-lined, with an ellipsis if cut."""
        flat = " ".join(self.text.split())
        if len(flat) <= limit:
            return flat
        return flat[:limit] + "..."


class StatementParser(Protocol):
    """Anything that splits SQL text into statements."""

    def parse(self, text: str) -> list[Statement]: ...
