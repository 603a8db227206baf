"""Build a SchemaGraph from DDL text.

``DDLReader`` understands the DDL emitted by mysqldump, pg_dump, the
SQLite shell and dbporter itself:

- ``CREATE TABLE`` with column definitions, inline constraints, table-level
  PRIMARY KEY / UNIQUE / KEY / INDEX / FULLTEXT / SPATIAL / FOREIGN KEY /
  CHECK items and MySQL table options
- ``CREATE [UNIQUE|FULLTEXT|SPATIAL] INDEX ... ON t [USING m] (...) [WHERE ...]``
- ``ALTER TABLE t ADD ...`` / ``MODIFY ...`` / ``ALTER COLUMN c SET DEFAULT ...``

Other statements are ignored. Statement splitting is delegated to the
dialect's ``SQLScanner``.

Usage:
    from dbporter.schema.ddl import DDLReader

    graph = DDLReader("postgresql").read(open("schema.sql").read())
"""

import logging
import re
from collections.abc import Iterable

from dbporter.dialects import Dialect
from dbporter.parser import SQLScanner, Statement
from dbporter.schema.models import (
    Column,
    Constraint,
    ConstraintType,
    Index,
    IndexColumn,
    IndexType,
    SchemaGraph,
    Table,
)
from dbporter.schema.types import SERIAL_BASE_TYPES

logger = logging.getLogger(__name__)

IDENT = r'(?:"(?:[^"]|"")*"|`(?:[^`]|``)*`|\[[^\]]*\]|[\w$]+)'
QNAME = rf"{IDENT}(?:\s*\.\s*{IDENT})*"

_CREATE_TABLE = re.compile(
    rf"^CREATE\s+(?:OR\s+REPLACE\s+)?(?:(?:GLOBAL|LOCAL)\s+)?(?:TEMP(?:ORARY)?\s+|UNLOGGED\s+)?"
    rf"TABLE\s+(?:IF\s+NOT\s+EXISTS\s+)?({QNAME})\s*\(",
    re.IGNORECASE,
)
_CREATE_INDEX = re.compile(
    rf"^CREATE\s+(UNIQUE\s+|FULLTEXT\s+|SPATIAL\s+)?INDEX\s+(?:CONCURRENTLY\s+)?"
    rf"(?:IF\s+NOT\s+EXISTS\s+)?({QNAME})?\s*ON\s+(?:ONLY\s+)?({QNAME})\s*"
    rf"(?:USING\s+(\w+)\s*)?\(",
    re.IGNORECASE,
)
_ALTER_TABLE = re.compile(
    rf"^ALTER\s+TABLE\s+(?:ONLY\s+)?(?:IF\s+EXISTS\s+)?(?:ONLY\s+)?({QNAME})\s+(.*)$",
    re.IGNORECASE | re.DOTALL,
)
_TOKEN = re.compile(
    r"""'(?:[^'\\]|''|\\.)*'|"(?:[^"]|"")*"|`(?:[^`]|``)*`|\[[^\]]*\]|::|[\w$.]+|\S""",
    re.DOTALL,
)
_SIMPLE_INDEX_COLUMN = re.compile(
    rf"^({IDENT})\s*(?:\(\s*(\d+)\s*\))?\s*(?:(ASC|DESC)\b)?(?:\s+NULLS\s+(?:FIRST|LAST))?$",
    re.IGNORECASE,
)
_TABLE_OPTION = re.compile(
    r"(?:DEFAULT\s+)?(ENGINE|CHARSET|CHARACTER\s+SET|COLLATE|AUTO_INCREMENT|COMMENT|ROW_FORMAT)"
    r"\s*=?\s*('(?:[^']|'')*'|\S+)",
    re.IGNORECASE,
)

_MULTIWORD_TYPES = (
    "double precision",
    "character varying",
    "bit varying",
    "timestamp with time zone",
    "timestamp without time zone",
    "time with time zone",
    "time without time zone",
)
_INTEGER_TYPES = frozenset({"tinyint", "smallint", "mediumint", "int", "integer", "bigint"})
_PRECISION_TYPES = frozenset({"decimal", "numeric", "float", "double", "real", "double precision"})
_TIME_PRECISION_TYPES = frozenset({"time", "timestamp", "datetime", "timestamptz"})
_COLUMN_STOP_WORDS = frozenset({
    "NOT", "NULL", "PRIMARY", "UNIQUE", "REFERENCES", "CHECK", "CONSTRAINT", "ON",
    "COMMENT", "AUTO_INCREMENT", "AUTOINCREMENT", "COLLATE", "GENERATED", "DEFAULT",
    "CHARACTER", "CHARSET", "UNSIGNED", "ZEROFILL",
})
_FK_ACTIONS = "|".join(
    action.replace(" ", r"\s+")
    for action in ("CASCADE", "RESTRICT", "SET NULL", "SET DEFAULT", "NO ACTION")
)
_ON_DELETE = re.compile(rf"ON\s+DELETE\s+({_FK_ACTIONS})", re.IGNORECASE)
_ON_UPDATE = re.compile(rf"ON\s+UPDATE\s+({_FK_ACTIONS})", re.IGNORECASE)
_INDEX_ITEM_HEAD = re.compile(
    rf"^(?:(?:KEY|INDEX)\s+)?(?:{IDENT}\s*)?(?:USING\s+\w+\s*)?\(", re.IGNORECASE
)


# ============================================================================
# Identifier and text helpers
# ============================================================================


def unquote(identifier: str) -> str:
    """Strip identifier quoting and schema qualification.

    Example:
        >>> unquote('"public"."user ""x"" name"')
        'user "x" name'
    """
    parts = _split_qualified(identifier.strip())
    name = parts[-1].strip()
    if len(name) >= 2 and name[0] == name[-1] and name[0] in "\"`":
        quote = name[0]
        return name[1:-1].replace(quote * 2, quote)
    if len(name) >= 2 and name[0] == "[" and name[-1] == "]":
        return name[1:-1]
    return name


def _split_qualified(name: str) -> list[str]:
    parts: list[str] = []
    current: list[str] = []
    quote = ""
    for ch in name:
        if quote:
            current.append(ch)
            if ch == quote:
                quote = ""
        elif ch in "\"`":
            quote = ch
            current.append(ch)
        elif ch == "[":
            quote = "]"
            current.append(ch)
        elif ch == ".":
            parts.append("".join(current))
            current = []
        else:
            current.append(ch)
    parts.append("".join(current))
    return parts


def split_top_level(text: str, separator: str = ",") -> list[str]:
    """Split on ``separator`` outside parentheses and quotes."""
    parts: list[str] = []
    depth = 0
    start = 0
    quote = ""
    i = 0
    while i < len(text):
        ch = text[i]
        if quote:
            if ch == "\\" and quote == "'":
                i += 2
                continue
            if ch == quote:
                quote = ""
        elif ch in "'\"`":
            quote = ch
        elif ch == "(":
            depth += 1
        elif ch == ")":
            depth -= 1
        elif ch == separator and depth == 0:
            parts.append(text[start:i].strip())
            start = i + 1
        i += 1
    tail = text[start:].strip()
    if tail:
        parts.append(tail)
    return [part for part in parts if part]


def matching_paren(text: str, open_index: int) -> int:
    """Index of the parenthesis closing the one at ``open_index`` (or -1)."""
    depth = 0
    quote = ""
    i = open_index
    while i < len(text):
        ch = text[i]
        if quote:
            if ch == "\\" and quote == "'":
                i += 2
                continue
            if ch == quote:
                quote = ""
        elif ch in "'\"`":
            quote = ch
        elif ch == "(":
            depth += 1
        elif ch == ")":
            depth -= 1
            if depth == 0:
                return i
        i += 1
    return -1


def _tokens(text: str) -> list[tuple[str, int, int]]:
    """Top-level tokens with spans; a parenthesized group is one token."""
    tokens: list[tuple[str, int, int]] = []
    pos = 0
    while pos < len(text):
        match = _TOKEN.search(text, pos)
        if match is None:
            break
        start = match.start()
        if match.group(0) == "(":
            end = matching_paren(text, start)
            end = len(text) if end == -1 else end + 1
            tokens.append((text[start:end], start, end))
            pos = end
            continue
        tokens.append((match.group(0), start, match.end()))
        pos = match.end()
    return tokens


_TABLE_TARGETS = (
    _CREATE_TABLE,
    re.compile(rf"^CREATE\s+(?:\w+\s+)*?INDEX\s+.*?\bON\s+(?:ONLY\s+)?({QNAME})", re.I | re.S),
    re.compile(rf"^ALTER\s+TABLE\s+(?:ONLY\s+)?(?:IF\s+EXISTS\s+)?(?:ONLY\s+)?({QNAME})", re.I),
    re.compile(rf"^DROP\s+TABLE\s+(?:IF\s+EXISTS\s+)?({QNAME})", re.I),
    re.compile(
        rf"^(?:INSERT|REPLACE)\s+(?:(?:IGNORE|OR\s+\w+|LOW_PRIORITY|DELAYED|HIGH_PRIORITY)\s+)*"
        rf"(?:INTO\s+)?({QNAME})",
        re.I,
    ),
    re.compile(rf"^UPDATE\s+(?:OR\s+\w+\s+)?(?:ONLY\s+)?({QNAME})", re.I),
    re.compile(rf"^DELETE\s+FROM\s+(?:ONLY\s+)?({QNAME})", re.I),
    re.compile(rf"^TRUNCATE\s+(?:TABLE\s+)?(?:ONLY\s+)?({QNAME})", re.I),
    re.compile(rf"^COPY\s+({QNAME})", re.I),
    re.compile(rf"^LOCK\s+TABLES?\s+({QNAME})", re.I),
)
_LEADING_COMMENT = re.compile(r"^(?:\s+|--[^\n]*\n|/\*(?!!).*?\*/|/\*!\d*)*", re.S)


def statement_table(sql: str) -> str | None:
    """Name of the table a statement writes to or defines, if any.

    Example:
        >>> statement_table("INSERT INTO `users` VALUES (1)")
        'users'
    """
    body = _LEADING_COMMENT.sub("", sql, count=1)
    for pattern in _TABLE_TARGETS:
        match = pattern.match(body)
        if match:
            return unquote(match.group(1))
    return None


def _paren_list(group: str) -> list[str]:
    inner = group.strip()
    if inner.startswith("(") and inner.endswith(")"):
        inner = inner[1:-1]
    return [unquote(part) for part in split_top_level(inner)]


def _string_values(group: str) -> list[str]:
    inner = group.strip()[1:-1]
    values = []
    for part in split_top_level(inner):
        part = part.strip()
        if len(part) >= 2 and part[0] in "'\"" and part[-1] == part[0]:
            values.append(part[1:-1].replace(part[0] * 2, part[0]).replace("\\'", "'"))
        else:
            values.append(part)
    return values


# ============================================================================
# Reader
# ============================================================================


class DDLReader:
    """Parse DDL statements into a ``SchemaGraph``.

    Args:
        dialect: Dialect the DDL was written for.
    """

    def __init__(self, dialect: Dialect | str) -> None:
        self.dialect = Dialect.from_value(dialect)

    def read(self, source: str | Iterable[Statement]) -> SchemaGraph:
        """Build a graph from SQL text or already-parsed statements."""
        if isinstance(source, str):
            statements: Iterable[Statement] = SQLScanner(self.dialect).parse(source)
        else:
            statements = source

        graph = SchemaGraph(dialect=self.dialect)
        for statement in statements:
            self.apply(graph, statement.text)
        return graph

    def apply(self, graph: SchemaGraph, sql: str) -> None:
        """Apply one DDL statement to ``graph``; non-DDL text is ignored."""
        sql = sql.strip()
        if _CREATE_TABLE.match(sql):
            table = self.read_table(sql)
            if table is not None and graph.get_table(table.name) is None:
                graph.add_table(table)
            return
        parsed = self.read_index(sql)
        if parsed is not None:
            table_name, index = parsed
            table = graph.get_table(table_name)
            if table is None:
                logger.debug(f"Index {index.name} references unknown table {table_name}")
                return
            table.add_index(index)
            return
        match = _ALTER_TABLE.match(sql)
        if match:
            table = graph.get_table(unquote(match.group(1)))
            if table is not None:
                self._apply_alter(table, match.group(2))

    # ------------------------------------------------------------------
    # CREATE TABLE
    # ------------------------------------------------------------------

    def read_table(self, sql: str) -> Table | None:
        match = _CREATE_TABLE.match(sql.strip())
        if match is None:
            return None
        sql = sql.strip()
        open_index = match.end() - 1
        close_index = matching_paren(sql, open_index)
        if close_index == -1:
            return None

        table = Table(name=unquote(match.group(1)), original_sql=sql)
        items = split_top_level(sql[open_index + 1:close_index])
        deferred: list[str] = []
        for item in items:
            if self._is_table_item(item):
                deferred.append(item)
            else:
                self._add_column(table, item)
        for item in deferred:
            self._apply_item(table, item)

        table.options = self._table_options(sql[close_index + 1:])
        return table

    def _is_table_item(self, item: str) -> bool:
        words = item.split(None, 1)
        if not words:
            return False
        first = words[0].upper()
        if first in ("PRIMARY", "FOREIGN", "CONSTRAINT", "CHECK", "FULLTEXT", "SPATIAL", "EXCLUDE"):
            return True
        if first in ("UNIQUE", "KEY", "INDEX"):
            # "key varchar(10)" is a column whose type takes a numeric argument
            rest = words[1] if len(words) > 1 else ""
            match = _INDEX_ITEM_HEAD.match(rest)
            return match is not None and not rest[match.end():].lstrip().startswith(
                tuple("0123456789")
            )
        return False

    def _apply_item(self, table: Table, item: str) -> None:
        name: str | None = None
        body = item.strip()
        match = re.match(rf"^CONSTRAINT\s+({IDENT})\s+(.*)$", body, re.I | re.S)
        if match:
            name = unquote(match.group(1))
            body = match.group(2).strip()
        upper = body.upper()

        if upper.startswith("PRIMARY KEY"):
            group = body[body.index("("):matching_paren(body, body.index("(")) + 1]
            columns = [column.name for column in self._index_columns(group)[0]]
            table.set_primary_key(columns)
            return
        if upper.startswith("FOREIGN KEY"):
            table.add_constraint(self._foreign_key(name, body[len("FOREIGN KEY"):]))
            return
        if upper.startswith("CHECK"):
            group = body[len("CHECK"):].strip()
            table.add_constraint(
                Constraint(name=name, type=ConstraintType.CHECK, expression=group[1:-1].strip())
            )
            return
        if upper.startswith("EXCLUDE"):
            logger.debug(f"Ignoring EXCLUDE constraint on {table.name}")
            return

        index_type = IndexType.INDEX
        for keyword, kind in (
            ("UNIQUE", IndexType.UNIQUE),
            ("FULLTEXT", IndexType.FULLTEXT),
            ("SPATIAL", IndexType.SPATIAL),
        ):
            if upper.startswith(keyword):
                index_type = kind
                body = body[len(keyword):].strip()
                break
        body = re.sub(r"^(?:KEY|INDEX)\b\s*", "", body, flags=re.I)
        match = re.match(rf"^({IDENT})?\s*(?:USING\s+(\w+)\s*)?\(", body, re.I)
        if match is None:
            logger.debug(f"Unrecognized table item on {table.name}: {item}")
            return
        open_index = match.end() - 1
        close_index = matching_paren(body, open_index)
        columns, expression = self._index_columns(body[open_index:close_index + 1])
        index_name = unquote(match.group(1)) if match.group(1) else name
        trailing = body[close_index + 1:]
        method = match.group(2) or self._using(trailing)

        if index_type is IndexType.UNIQUE and not match.group(1) and columns:
            table.add_constraint(
                Constraint(
                    name=index_name,
                    type=ConstraintType.UNIQUE,
                    columns=[column.name for column in columns],
                )
            )
            return
        table.add_index(
            Index(
                name=index_name or self._index_name(table.name, columns),
                type=index_type,
                columns=columns,
                expression=expression,
                method=method.lower() if method else None,
                comment=self._comment(trailing),
                origin=self.dialect,
            )
        )

    # ------------------------------------------------------------------
    # Columns
    # ------------------------------------------------------------------

    def _add_column(self, table: Table, item: str) -> None:
        column, extras = self.read_column(item, table.name)
        if column is None:
            return
        table.add_column(column)
        for extra in extras:
            if isinstance(extra, Constraint):
                table.add_constraint(extra)
            elif extra == "primary":
                table.set_primary_key([column.name])

    def read_column(self, item: str, table_name: str = "") -> tuple[Column | None, list]:
        """Parse one column definition.

        Returns:
            The column, plus inline extras: ``"primary"`` for an inline
            PRIMARY KEY and ``Constraint`` objects for inline UNIQUE,
            REFERENCES and CHECK clauses.
        """
        match = re.match(rf"^({IDENT})\s+(.*)$", item.strip(), re.S)
        if match is None:
            return None, []
        name = unquote(match.group(1))
        rest = match.group(2).strip()

        data_type, args, is_array, rest = self._split_type(rest)
        column = Column(name=name, data_type=data_type, is_array=is_array)
        self._apply_type_args(column, args)

        extras: list = []
        tokens = _tokens(rest)
        i = 0
        while i < len(tokens):
            word = tokens[i][0].upper()
            following = tokens[i + 1][0].upper() if i + 1 < len(tokens) else ""
            if word == "UNSIGNED":
                column.unsigned = True
            elif word == "NOT" and following == "NULL":
                column.nullable = False
                i += 1
            elif word == "NULL":
                column.nullable = True
            elif word == "DEFAULT":
                end = i + 1
                while end < len(tokens) and tokens[end][0].upper() not in _COLUMN_STOP_WORDS:
                    end += 1
                if end > i + 1:
                    column.default = rest[tokens[i + 1][1]:tokens[end - 1][2]].strip()
                i = end - 1
            elif word in ("AUTO_INCREMENT", "AUTOINCREMENT"):
                column.auto_increment = True
            elif word == "PRIMARY":
                extras.append("primary")
                column.nullable = False
                i += 1
            elif word == "UNIQUE":
                extras.append(Constraint(type=ConstraintType.UNIQUE, columns=[name]))
                if following == "KEY":
                    i += 1
            elif word == "REFERENCES":
                text = rest[tokens[i][2]:]
                extras.append(self._references(None, [name], text))
                break
            elif word == "CHECK" and i + 1 < len(tokens):
                expression = tokens[i + 1][0].strip()[1:-1].strip()
                extras.append(Constraint(type=ConstraintType.CHECK, expression=expression))
                i += 1
            elif word == "COMMENT" and i + 1 < len(tokens):
                column.comment = _string_values(f"({tokens[i + 1][0]})")[0]
                i += 1
            elif word == "ON" and following == "UPDATE" and i + 2 < len(tokens):
                end = i + 3
                if end < len(tokens) and tokens[end][0].startswith("("):
                    end += 1
                column.on_update = rest[tokens[i + 2][1]:tokens[end - 1][2]]
                i = end - 1
            elif word == "GENERATED":
                end = i + 1
                while end < len(tokens) and tokens[end][0].upper() not in _COLUMN_STOP_WORDS - {"DEFAULT"}:
                    if tokens[end][0].upper() == "IDENTITY":
                        column.auto_increment = True
                    end += 1
                i = end - 1
            elif word in ("COLLATE", "CONSTRAINT", "CHARSET"):
                i += 1
            elif word == "CHARACTER" and following == "SET":
                i += 2
            i += 1

        self.normalize_serial(column)
        return column, extras

    def _split_type(self, rest: str) -> tuple[str, str | None, bool, str]:
        lowered = rest.lower()
        base = None
        for multiword in _MULTIWORD_TYPES:
            if lowered.startswith(multiword) and (
                len(rest) == len(multiword) or not rest[len(multiword)].isalnum()
            ):
                base = multiword
                rest = rest[len(multiword):]
                break
        if base is None:
            match = re.match(rf"^({IDENT})", rest)
            if match is None:
                return "text", None, False, rest
            base = unquote(match.group(1)).lower()
            rest = rest[match.end():]

        args = None
        stripped = rest.lstrip()
        if stripped.startswith("("):
            close_index = matching_paren(stripped, 0)
            args = stripped[1:close_index]
            rest = stripped[close_index + 1:]

        zone = re.match(r"^\s+(with|without)\s+time\s+zone\b", rest, re.I)
        if zone and base in ("timestamp", "time"):
            base = f"{base} {zone.group(1).lower()} time zone"
            rest = rest[zone.end():]

        is_array = False
        array = re.match(r"^\s*(?:\[\s*\d*\s*\])+", rest)
        if array:
            is_array = True
            rest = rest[array.end():]
        return base, args, is_array, rest.strip()

    def _apply_type_args(self, column: Column, args: str | None) -> None:
        if args is None:
            return
        if column.data_type in ("enum", "set"):
            column.enum_values = _string_values(f"({args})")
            return
        numbers = [part.strip() for part in args.split(",")]
        if not all(part.isdigit() for part in numbers):
            return
        if column.data_type in _INTEGER_TYPES:
            return  # display width
        if column.data_type in _PRECISION_TYPES:
            column.precision = int(numbers[0])
            if len(numbers) > 1:
                column.scale = int(numbers[1])
        elif column.data_type.split()[0] in _TIME_PRECISION_TYPES:
            column.precision = int(numbers[0])
        else:
            column.length = int(numbers[0])

    def normalize_serial(self, column: Column) -> None:
        base = SERIAL_BASE_TYPES.get(column.data_type)
        if base is not None:
            column.data_type = base
            column.auto_increment = True
            column.nullable = False
        if column.default and column.default.lower().startswith("nextval("):
            column.auto_increment = True
            column.default = None

    # ------------------------------------------------------------------
    # Indexes and constraints
    # ------------------------------------------------------------------

    def read_index(self, sql: str) -> tuple[str, Index] | None:
        """Parse ``CREATE INDEX``; returns ``(table_name, index)`` or ``None``."""
        sql = sql.strip()
        match = _CREATE_INDEX.match(sql)
        if match is None:
            return None
        open_index = match.end() - 1
        close_index = matching_paren(sql, open_index)
        if close_index == -1:
            return None
        columns, expression = self._index_columns(sql[open_index:close_index + 1])
        trailing = sql[close_index + 1:]
        where = re.search(r"\bWHERE\s+(.*)$", trailing, re.I | re.S)

        modifier = (match.group(1) or "").strip().upper()
        index_type = {
            "UNIQUE": IndexType.UNIQUE,
            "FULLTEXT": IndexType.FULLTEXT,
            "SPATIAL": IndexType.SPATIAL,
        }.get(modifier, IndexType.INDEX)
        table_name = unquote(match.group(3))
        method = match.group(4) or self._using(trailing)
        if self.dialect is Dialect.POSTGRESQL and method and method.lower() == "gin" and (
            expression and "to_tsvector" in expression.lower()
        ):
            index_type = IndexType.FULLTEXT

        index = Index(
            name=unquote(match.group(2)) if match.group(2) else self._index_name(table_name, columns),
            type=index_type,
            columns=columns,
            expression=expression,
            where=where.group(1).strip() if where else None,
            method=method.lower() if method else None,
            comment=self._comment(trailing),
            origin=self.dialect,
        )
        return table_name, index

    def _index_columns(self, group: str) -> tuple[list[IndexColumn], str | None]:
        inner = group.strip()[1:-1]
        columns: list[IndexColumn] = []
        for part in split_top_level(inner):
            match = _SIMPLE_INDEX_COLUMN.match(part.strip())
            if match is None:
                return [], inner.strip()
            columns.append(
                IndexColumn(
                    name=unquote(match.group(1)),
                    length=int(match.group(2)) if match.group(2) else None,
                    direction=match.group(3),
                )
            )
        return columns, None

    def _foreign_key(self, name: str | None, body: str) -> Constraint:
        body = body.strip()
        match = re.match(rf"^({IDENT})?\s*\(", body)
        if match and match.group(1):
            name = name or unquote(match.group(1))
        open_index = body.index("(")
        close_index = matching_paren(body, open_index)
        columns = _paren_list(body[open_index:close_index + 1])
        rest = re.sub(r"^\s*REFERENCES\b", "", body[close_index + 1:], flags=re.I)
        return self._references(name, columns, rest)

    def _references(self, name: str | None, columns: list[str], text: str) -> Constraint:
        match = re.match(rf"^\s*({QNAME})\s*(\([^)]*\))?", text)
        referenced = unquote(match.group(1)) if match else ""
        referenced_columns = _paren_list(match.group(2)) if match and match.group(2) else []
        on_delete = _ON_DELETE.search(text)
        on_update = _ON_UPDATE.search(text)
        return Constraint(
            name=name,
            type=ConstraintType.FOREIGN_KEY,
            columns=columns,
            referenced_table=referenced,
            referenced_columns=referenced_columns,
            on_delete=" ".join(on_delete.group(1).upper().split()) if on_delete else None,
            on_update=" ".join(on_update.group(1).upper().split()) if on_update else None,
        )

    # ------------------------------------------------------------------
    # ALTER TABLE
    # ------------------------------------------------------------------

    def _apply_alter(self, table: Table, body: str) -> None:
        for clause in split_top_level(body):
            upper = clause.upper()
            if upper.startswith("ADD COLUMN"):
                self._add_column(table, clause[len("ADD COLUMN"):].strip())
            elif upper.startswith("ADD "):
                item = clause[4:].strip()
                if self._is_table_item(item):
                    self._apply_item(table, item)
                else:
                    self._add_column(table, item)
            elif upper.startswith(("MODIFY COLUMN", "MODIFY ")):
                item = re.sub(r"^MODIFY\s+(?:COLUMN\s+)?", "", clause, flags=re.I)
                column, _ = self.read_column(item, table.name)
                if column is not None:
                    self._replace_column(table, column)
            else:
                match = re.match(
                    rf"^ALTER\s+(?:COLUMN\s+)?({IDENT})\s+SET\s+DEFAULT\s+(.*)$", clause, re.I | re.S
                )
                if match:
                    column = table.get_column(unquote(match.group(1)))
                    if column is not None:
                        column.default = match.group(2).strip()
                        self.normalize_serial(column)

    @staticmethod
    def _replace_column(table: Table, column: Column) -> None:
        for position, existing in enumerate(table.columns):
            if existing.name.lower() == column.name.lower():
                table.columns[position] = column
                return
        table.add_column(column)

    # ------------------------------------------------------------------
    # Small helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _using(text: str) -> str | None:
        match = re.search(r"\bUSING\s+(\w+)", text, re.I)
        return match.group(1) if match else None

    @staticmethod
    def _comment(text: str) -> str | None:
        match = re.search(r"\bCOMMENT\s+'((?:[^']|'')*)'", text, re.I)
        return match.group(1).replace("''", "'") if match else None

    @staticmethod
    def _index_name(table_name: str, columns: list[IndexColumn]) -> str:
        suffix = "_".join(column.name for column in columns) or "expr"
        return f"{table_name}_{suffix}_idx"

    @staticmethod
    def _table_options(text: str) -> dict[str, str]:
        options: dict[str, str] = {}
        for match in _TABLE_OPTION.finditer(text):
            key = "_".join(match.group(1).lower().split())
            if key == "character_set":
                key = "charset"
            value = match.group(2).rstrip(";")
            if value.startswith("'") and value.endswith("'"):
                value = value[1:-1].replace("''", "'")
            options[key] = value
        return options
