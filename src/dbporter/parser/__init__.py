"""Dialect-aware SQL statement parsing.

Usage:
    from dbporter.parser import get_parser

    statements = get_parser("mysql").parse(sql_text)
"""

from dbporter.dialects import Dialect
from dbporter.parser.fallback import LineParser
from dbporter.parser.models import (
    Statement,
    StatementKind,
    StatementParser,
    classify,
    statement_verb,
)
from dbporter.parser.scanner import ParseStatistics, SQLScanner


def get_parser(
    dialect: Dialect | str | None = None, kind: str = "scanner", **kwargs
) -> StatementParser:
    """Return a statement parser for ``dialect``.

    Args:
        dialect: Source dialect (``None`` for generic).
        kind: ``"scanner"`` for the state machine, ``"line"`` for the
            line-oriented fallback.
        **kwargs: Forwarded to ``SQLScanner``.

    Raises:
        ValueError: If ``kind`` is unknown.
    """
    if kind == "scanner":
        return SQLScanner(dialect, **kwargs)
    if kind == "line":
        return LineParser(dialect)
    raise ValueError(f"Unknown parser kind: {kind!r}")


__all__ = [
    "LineParser",
    "ParseStatistics",
    "SQLScanner",
    "Statement",
    "StatementKind",
    "StatementParser",
    "classify",
    "get_parser",
    "statement_verb",
]
