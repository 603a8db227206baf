"""Render schema graphs and row data as dialect-specific SQL.

Usage:
    from dbporter.schema.renderer import SchemaRenderer

    renderer = SchemaRenderer(Dialect.POSTGRESQL)
    for sql in renderer.render_graph(graph):
        print(sql + ";")
"""

import json
import math
from datetime import date, datetime, time, timedelta
from decimal import Decimal
from typing import Any, Iterable, Sequence
from uuid import UUID

from dbporter.dialects import Dialect
from dbporter.schema.models import (
    Column,
    Constraint,
    ConstraintType,
    Index,
    IndexType,
    SchemaGraph,
    Table,
)
from dbporter.schema.types import (
    LENGTH_TYPES,
    PRECISION_TYPES,
    SERIAL_TYPES,
    TIME_PRECISION_TYPES,
)


class SchemaRenderer:
    """Turn schema models and Python values into SQL text for one dialect."""

    def __init__(self, dialect: Dialect | str) -> None:
        self.dialect = Dialect.from_value(dialect)

    # ------------------------------------------------------------------
    # Identifiers
    # ------------------------------------------------------------------

    def quote(self, name: str) -> str:
        if self.dialect is Dialect.MYSQL:
            return "`" + name.replace("`", "``") + "`"
        return '"' + name.replace('"', '""') + '"'

    def quote_list(self, names: Iterable[str]) -> str:
        return ", ".join(self.quote(name) for name in names)

    # ------------------------------------------------------------------
    # DDL
    # ------------------------------------------------------------------

    def column_type(self, column: Column) -> str:
        base = column.data_type
        if column.auto_increment and self.dialect is Dialect.POSTGRESQL:
            return SERIAL_TYPES.get(column.logical_type, "serial")
        if column.auto_increment and self.dialect is Dialect.SQLITE:
            return "INTEGER"
        if base in ("enum", "set") and self.dialect is Dialect.MYSQL:
            values = ", ".join(self.render_literal(value) for value in column.enum_values)
            return f"{base}({values})"

        rendered = base
        if base in LENGTH_TYPES and column.length:
            rendered = f"{base}({column.length})"
        elif base in PRECISION_TYPES and column.precision:
            if column.scale is not None:
                rendered = f"{base}({column.precision},{column.scale})"
            else:
                rendered = f"{base}({column.precision})"
        elif base.split()[0] in TIME_PRECISION_TYPES and column.precision is not None:
            head, _, tail = base.partition(" ")
            rendered = f"{head}({column.precision})" + (f" {tail}" if tail else "")

        if column.unsigned and self.dialect is Dialect.MYSQL:
            rendered += " unsigned"
        if column.is_array and self.dialect is Dialect.POSTGRESQL:
            rendered += "[]"
        return rendered

    def render_column(self, column: Column, table: Table | None = None) -> str:
        parts = [self.quote(column.name), self.column_type(column)]
        inline_pk = (
            self.dialect is Dialect.SQLITE
            and column.auto_increment
            and table is not None
            and [name.lower() for name in table.primary_key] == [column.name.lower()]
        )
        if inline_pk:
            parts.append("PRIMARY KEY AUTOINCREMENT")
        elif not column.nullable:
            parts.append("NOT NULL")
        if column.default is not None and not (
            column.auto_increment and self.dialect is not Dialect.MYSQL
        ):
            parts.append(f"DEFAULT {column.default}")
        if self.dialect is Dialect.MYSQL:
            if column.auto_increment:
                parts.append("AUTO_INCREMENT")
            if column.on_update:
                parts.append(f"ON UPDATE {column.on_update}")
            if column.comment:
                parts.append(f"COMMENT {self.render_literal(column.comment)}")
        return " ".join(parts)

    def render_table(
        self,
        table: Table,
        *,
        if_not_exists: bool = False,
        inline_foreign_keys: bool | None = None,
    ) -> str:
        """Render ``CREATE TABLE``.

        Foreign keys are rendered inline on SQLite (which cannot add them
        later) and as separate ``ALTER TABLE`` statements elsewhere, unless
        ``inline_foreign_keys`` says otherwise.
        """
        if inline_foreign_keys is None:
            inline_foreign_keys = self.dialect is Dialect.SQLITE

        lines = [self.render_column(column, table) for column in table.columns]
        rowid_pk = False
        if self.dialect is Dialect.SQLITE and len(table.primary_key) == 1:
            pk_column = table.get_column(table.primary_key[0])
            rowid_pk = pk_column is not None and pk_column.auto_increment
        if table.primary_key and not rowid_pk:
            lines.append(f"PRIMARY KEY ({self.quote_list(table.primary_key)})")
        for constraint in table.constraints:
            if constraint.type is ConstraintType.FOREIGN_KEY and not inline_foreign_keys:
                continue
            lines.append(self.render_constraint(constraint))

        head = "CREATE TABLE IF NOT EXISTS" if if_not_exists else "CREATE TABLE"
        body = ",\n  ".join(lines)
        sql = f"{head} {self.quote(table.name)} (\n  {body}\n)"
        if self.dialect is Dialect.MYSQL:
            sql += self._mysql_table_options(table.options)
        return sql

    def render_constraint(self, constraint: Constraint) -> str:
        prefix = f"CONSTRAINT {self.quote(constraint.name)} " if constraint.name else ""
        if constraint.type is ConstraintType.CHECK:
            return f"{prefix}CHECK ({constraint.expression})"
        if constraint.type is ConstraintType.UNIQUE:
            return f"{prefix}UNIQUE ({self.quote_list(constraint.columns)})"
        sql = (
            f"{prefix}FOREIGN KEY ({self.quote_list(constraint.columns)}) "
            f"REFERENCES {self.quote(constraint.referenced_table or '')}"
        )
        if constraint.referenced_columns:
            sql += f" ({self.quote_list(constraint.referenced_columns)})"
        if constraint.on_delete:
            sql += f" ON DELETE {constraint.on_delete}"
        if constraint.on_update:
            sql += f" ON UPDATE {constraint.on_update}"
        return sql

    def render_foreign_key(self, table: Table, constraint: Constraint) -> str:
        return (
            f"ALTER TABLE {self.quote(table.name)} ADD "
            f"{self.render_constraint(constraint)}"
        )

    def render_index(self, table: Table, index: Index) -> str | None:
        if index.type is IndexType.PRIMARY:
            return None
        keyword = {
            IndexType.UNIQUE: "UNIQUE INDEX",
            IndexType.FULLTEXT: "FULLTEXT INDEX",
            IndexType.SPATIAL: "SPATIAL INDEX",
        }.get(index.type, "INDEX")
        if self.dialect is not Dialect.MYSQL and index.type in (
            IndexType.FULLTEXT, IndexType.SPATIAL
        ):
            keyword = "INDEX"

        if index.expression and not index.columns:
            target = f"(({index.expression}))" if self.dialect is Dialect.MYSQL else f"({index.expression})"
        else:
            parts = []
            for column in index.columns:
                part = self.quote(column.name)
                if column.length and self.dialect is Dialect.MYSQL:
                    part += f"({column.length})"
                if column.direction:
                    part += f" {column.direction}"
                parts.append(part)
            target = f"({', '.join(parts)})"

        sql = f"CREATE {keyword} {self.quote(index.name)} ON {self.quote(table.name)}"
        if index.method and self.dialect is Dialect.POSTGRESQL:
            sql += f" USING {index.method}"
        sql += f" {target}"
        if index.method and self.dialect is Dialect.MYSQL:
            sql += f" USING {index.method.upper()}"
        if index.where and self.dialect is not Dialect.MYSQL:
            sql += f" WHERE {index.where}"
        return sql

    def render_drop_table(self, table: Table) -> str:
        suffix = " CASCADE" if self.dialect is Dialect.POSTGRESQL else ""
        return f"DROP TABLE IF EXISTS {self.quote(table.name)}{suffix}"

    def render_graph(
        self,
        graph: SchemaGraph,
        *,
        drop_existing: bool = False,
        include_indexes: bool = True,
        include_foreign_keys: bool = True,
    ) -> list[str]:
        """All DDL for ``graph`` in a creatable order (statements, no terminators)."""
        ordered = graph.create_order()
        statements: list[str] = []
        if drop_existing:
            statements.extend(self.render_drop_table(table) for table in reversed(ordered))
        inline = self.dialect is Dialect.SQLITE and include_foreign_keys
        for table in ordered:
            statements.append(self.render_table(table, inline_foreign_keys=inline))
        if include_indexes:
            for table in ordered:
                for index in table.indexes:
                    sql = self.render_index(table, index)
                    if sql:
                        statements.append(sql)
        if include_foreign_keys and self.dialect is not Dialect.SQLITE:
            for table in ordered:
                for constraint in table.foreign_keys:
                    statements.append(self.render_foreign_key(table, constraint))
        return statements

    def _mysql_table_options(self, options: dict[str, str]) -> str:
        rendered = []
        for key, label in (("engine", "ENGINE"), ("charset", "DEFAULT CHARSET"), ("collate", "COLLATE")):
            if options.get(key):
                rendered.append(f"{label}={options[key]}")
        if options.get("comment"):
            rendered.append(f"COMMENT={self.render_literal(options['comment'])}")
        return (" " + " ".join(rendered)) if rendered else ""

    # ------------------------------------------------------------------
    # Data
    # ------------------------------------------------------------------

    def render_literal(self, value: Any) -> str:
        """Render a Python value as a SQL literal.

        Example:
            >>> SchemaRenderer("mysql").render_literal("it's")
            "'it''s'"
        """
        if value is None:
            return "NULL"
        if isinstance(value, bool):
            if self.dialect is Dialect.POSTGRESQL:
                return "TRUE" if value else "FALSE"
            return "1" if value else "0"
        if isinstance(value, int):
            return str(value)
        if isinstance(value, float):
            if math.isnan(value) or math.isinf(value):
                if self.dialect is Dialect.POSTGRESQL:
                    return f"'{value}'::float8"
                return "NULL"
            return repr(value)
        if isinstance(value, Decimal):
            if not value.is_finite():
                if self.dialect is Dialect.POSTGRESQL:
                    special = "NaN" if value.is_nan() else ("-Infinity" if value < 0 else "Infinity")
                    return f"'{special}'::numeric"
                return "NULL"
            return str(value)
        if isinstance(value, (bytes, bytearray, memoryview)):
            raw = bytes(value).hex()
            if self.dialect is Dialect.POSTGRESQL:
                return f"'\\x{raw}'::bytea"
            return f"X'{raw}'"
        if isinstance(value, datetime):
            return self._string(value.isoformat(sep=" "))
        if isinstance(value, (date, time)):
            return self._string(value.isoformat())
        if isinstance(value, timedelta):
            if self.dialect is Dialect.POSTGRESQL:
                return f"'{value.total_seconds()} seconds'::interval"
            return self._string(str(value))
        if isinstance(value, UUID):
            return self._string(str(value))
        if isinstance(value, (list, tuple)) and self.dialect is Dialect.POSTGRESQL:
            if not value:
                return "'{}'"
            return "ARRAY[" + ", ".join(self.render_literal(item) for item in value) + "]"
        if isinstance(value, (dict, list, tuple)):
            return self._string(json.dumps(value, default=str))
        return self._string(str(value))

    def render_insert(
        self, table_name: str, columns: Sequence[str], rows: Iterable[Sequence[Any]]
    ) -> str:
        """Multi-row ``INSERT`` for ``rows``."""
        values = ",\n  ".join(
            "(" + ", ".join(self.render_literal(value) for value in row) + ")" for row in rows
        )
        return (
            f"INSERT INTO {self.quote(table_name)} ({self.quote_list(columns)}) VALUES\n  {values}"
        )

    def _string(self, text: str) -> str:
        if self.dialect is Dialect.MYSQL:
            text = text.replace("\\", "\\\\").replace("\x00", "\\0")
        return "'" + text.replace("'", "''") + "'"
