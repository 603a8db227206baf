"""Deny-list check applied to every statement before a restore executes it.

Rejected:
- ``DROP DATABASE`` / ``DROP SCHEMA`` without ``IF EXISTS``
- ``DELETE`` without a WHERE clause, or with an always-true one
  (``sqlite_sequence`` bookkeeping is exempt)
- Server-side file access: ``LOAD_FILE``, ``INTO OUTFILE|DUMPFILE``,
  ``LOAD DATA INFILE``, ``pg_read_file``, ``pg_read_binary_file``,
  ``pg_ls_dir``, ``lo_import``, ``lo_export``, ``COPY`` to/from a file or
  program, SQLite ``readfile``/``writefile``
"""

import re

from dbporter.schema.ddl import QNAME, unquote

_STRING = re.compile(r"'(?:[^'\\]|\\.|'')*'", re.DOTALL)
_LINE_COMMENT = re.compile(r"--[^\n]*")
_BLOCK_COMMENT = re.compile(r"/\*(?!!).*?\*/", re.DOTALL)
_EXEC_COMMENT_OPEN = re.compile(r"/\*!\d*")

DENY_RULES: list[tuple[re.Pattern, str]] = [
    (
        re.compile(r"^\s*DROP\s+(?:DATABASE|SCHEMA)\s+(?!IF\s+EXISTS\b)", re.I),
        "DROP DATABASE/SCHEMA without IF EXISTS is not allowed",
    ),
    (re.compile(r"\bLOAD_FILE\s*\(", re.I), "LOAD_FILE() is not allowed"),
    (re.compile(r"\bINTO\s+(?:OUTFILE|DUMPFILE)\b", re.I), "SELECT ... INTO OUTFILE is not allowed"),
    (
        re.compile(r"\bLOAD\s+DATA\s+(?:(?:LOW_PRIORITY|CONCURRENT|LOCAL)\s+)*INFILE\b", re.I),
        "LOAD DATA INFILE is not allowed",
    ),
    (
        re.compile(r"\b(pg_read_file|pg_read_binary_file|pg_ls_dir|lo_import|lo_export)\s*\(", re.I),
        "Server file access functions are not allowed",
    ),
    (
        re.compile(r"^\s*COPY\b.*?\b(?:FROM|TO)\s+(?:PROGRAM\b|'[^']*')", re.I | re.S),
        "COPY to or from a server file or program is not allowed",
    ),
    (re.compile(r"\b(?:readfile|writefile)\s*\(", re.I), "readfile()/writefile() are not allowed"),
]

_DELETE = re.compile(
    rf"^\s*DELETE\s+(?:(?:LOW_PRIORITY|QUICK|IGNORE)\s+)*FROM\s+(?:ONLY\s+)?({QNAME})(.*)$",
    re.I | re.S,
)
_WHERE = re.compile(r"\bWHERE\b(.*)$", re.I | re.S)
_TAUTOLOGY = re.compile(
    r"^\(*\s*(?:true|1|not\s+false|1\s*<>\s*0|(?P<a>[\w.'\"`]+)\s*=\s*(?P=a))\s*\)*$",
    re.I,
)
_EXEMPT_DELETE_TABLES = frozenset({"sqlite_sequence"})


def _strip_comments(text: str) -> str:
    text = _BLOCK_COMMENT.sub(" ", text)
    text = _EXEC_COMMENT_OPEN.sub(" ", text)
    return _LINE_COMMENT.sub(" ", text)


def _is_tautology(condition: str) -> bool:
    condition = " ".join(condition.strip().rstrip(";").split())
    if _TAUTOLOGY.match(condition):
        return True
    return any(
        _TAUTOLOGY.match(part.strip()) for part in re.split(r"\bOR\b", condition, flags=re.I)
    )


def check_statement(text: str) -> str | None:
    """Reason ``text`` must not be executed, or ``None`` if it is allowed.

    Example:
        >>> check_statement("DROP DATABASE foo")
        'DROP DATABASE/SCHEMA without IF EXISTS is not allowed'
        >>> check_statement("DROP DATABASE IF EXISTS foo") is None
        True
    """
    body = _strip_comments(text)
    # Keywords inside string literals are data, not calls
    masked = _STRING.sub("''", body)
    for pattern, reason in DENY_RULES:
        if pattern.search(masked):
            return reason

    match = _DELETE.match(body)
    if match and unquote(match.group(1)).lower() not in _EXEMPT_DELETE_TABLES:
        where = _WHERE.search(match.group(2))
        if where is None:
            return "DELETE without a WHERE clause is not allowed"
        if _is_tautology(where.group(1)):
            return "DELETE with an always-true WHERE clause is not allowed"
    return None
