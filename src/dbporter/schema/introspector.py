"""Live schema introspection for MySQL, PostgreSQL and SQLite.

This module reads the connected database into a ``SchemaGraph``:
- Tables and columns (raw types, nullability, defaults, auto-increment)
- Primary keys, foreign keys, unique and check constraints
- Indexes (uniqueness, method, partial predicate, MySQL FULLTEXT/SPATIAL)
- MySQL table options

Uses ``sqlalchemy.inspect`` on the synchronous side of an
``AsyncConnection`` (``run_sync``), so the same code serves every dialect.
"""

import logging
from collections.abc import Iterable

from sqlalchemy import inspect
from sqlalchemy.engine import Connection, Inspector
from sqlalchemy.exc import CompileError, NoSuchTableError
from sqlalchemy.ext.asyncio import AsyncEngine

from dbporter.dialects import Dialect
from dbporter.schema.ddl import DDLReader
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

logger = logging.getLogger(__name__)


class SchemaIntrospector:
    """Introspects a live database schema.

    Usage:
        introspector = SchemaIntrospector(engine)

        # Full graph, or a subset of tables
        graph = await introspector.introspect()
        graph = await introspector.introspect(tables=["users", "orders"])

        # Just the names
        names = await introspector.get_table_names()
    """

    # Tables to exclude from introspection (system and bookkeeping tables)
    EXCLUDED_TABLES = {
        "schema_migrations",
        "pg_stat_statements",
        "spatial_ref_sys",
        "sqlite_sequence",
        "sqlite_stat1",
    }

    def __init__(
        self,
        engine: AsyncEngine,
        dialect: Dialect | str | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        """Initialize with an async engine.

        Args:
            engine: Connected ``AsyncEngine``.
            dialect: Override the dialect (defaults to the engine's).
            logger: Optional logger.
        """
        self._engine = engine
        self.dialect = Dialect.from_value(dialect or engine.dialect.name)
        self._reader = DDLReader(self.dialect)
        self.logger = logger or logging.getLogger(__name__)

    async def get_table_names(self) -> list[str]:
        """User table names in the connected database."""
        async with self._engine.connect() as conn:
            return await conn.run_sync(self._table_names)

    async def introspect(self, tables: Iterable[str] | None = None) -> SchemaGraph:
        """Introspect the database schema.

        Args:
            tables: Restrict to these tables (case-insensitive); unknown
                names are ignored.

        Returns:
            SchemaGraph with tables in the order the database reports them.
        """
        wanted = None if tables is None else {name.lower() for name in tables}
        async with self._engine.connect() as conn:
            return await conn.run_sync(self._introspect, wanted)

    # ------------------------------------------------------------------
    # Sync side
    # ------------------------------------------------------------------

    def _table_names(self, sync_conn: Connection) -> list[str]:
        names = inspect(sync_conn).get_table_names()
        return [
            name
            for name in names
            if name not in self.EXCLUDED_TABLES and not name.startswith("sqlite_")
        ]

    def _introspect(self, sync_conn: Connection, wanted: set[str] | None) -> SchemaGraph:
        inspector = inspect(sync_conn)
        graph = SchemaGraph(dialect=self.dialect)
        for name in self._table_names(sync_conn):
            if wanted is not None and name.lower() not in wanted:
                continue
            try:
                graph.add_table(self._read_table(inspector, sync_conn, name))
            except NoSuchTableError:
                self.logger.debug(f"Table {name} disappeared during introspection")
        self.logger.debug(f"Introspected {len(graph.tables)} tables")
        return graph

    def _read_table(self, inspector: Inspector, sync_conn: Connection, name: str) -> Table:
        table = Table(name=name)

        for info in inspector.get_columns(name):
            table.add_column(self._read_column(sync_conn, info))

        pk = inspector.get_pk_constraint(name) or {}
        primary_key = [c for c in pk.get("constrained_columns") or [] if table.has_column(c)]
        if primary_key:
            table.set_primary_key(primary_key)
        if self.dialect is Dialect.SQLITE and len(primary_key) == 1:
            # INTEGER PRIMARY KEY is the rowid alias and assigns ids itself
            column = table.get_column(primary_key[0])
            if column is not None and column.data_type == "integer":
                column.auto_increment = True

        sqlite_actions = (
            self._sqlite_fk_actions(sync_conn, name) if self.dialect is Dialect.SQLITE else {}
        )
        for fk in inspector.get_foreign_keys(name):
            if not fk.get("referred_table"):
                continue
            options = dict(fk.get("options") or {})
            actions = sqlite_actions.get(
                (tuple(fk.get("constrained_columns") or []), fk["referred_table"].lower())
            )
            if actions:
                options["ondelete"] = options.get("ondelete") or actions[0]
                options["onupdate"] = options.get("onupdate") or actions[1]
            table.add_constraint(
                Constraint(
                    name=fk.get("name"),
                    type=ConstraintType.FOREIGN_KEY,
                    columns=list(fk.get("constrained_columns") or []),
                    referenced_table=fk["referred_table"],
                    referenced_columns=list(fk.get("referred_columns") or []),
                    on_delete=_action(options.get("ondelete")),
                    on_update=_action(options.get("onupdate")),
                )
            )

        for unique in self._optional(inspector.get_unique_constraints, name):
            table.add_constraint(
                Constraint(
                    name=unique.get("name"),
                    type=ConstraintType.UNIQUE,
                    columns=list(unique.get("column_names") or []),
                )
            )
        for check in self._optional(inspector.get_check_constraints, name):
            if check.get("sqltext"):
                table.add_constraint(
                    Constraint(
                        name=check.get("name"),
                        type=ConstraintType.CHECK,
                        expression=str(check["sqltext"]),
                    )
                )

        unique_names = {c.name for c in table.constraints if c.type is ConstraintType.UNIQUE}
        for info in inspector.get_indexes(name):
            if info.get("duplicates_constraint") or info.get("name") in unique_names:
                continue
            index = self._read_index(info)
            if index is not None:
                table.add_index(index)

        if self.dialect is Dialect.MYSQL:
            table.options = self._mysql_options(inspector, name)
        return table

    def _read_column(self, sync_conn: Connection, info: dict) -> Column:
        name = info["name"]
        try:
            type_sql = info["type"].compile(dialect=sync_conn.dialect)
        except CompileError:
            self.logger.debug(f"Column {name} has an uncompilable type; using text")
            type_sql = "text"

        quoted = '"' + name.replace('"', '""') + '"'
        column, _ = self._reader.read_column(f"{quoted} {type_sql}")
        if column is None:
            column = Column(name=name, data_type="text")

        column.nullable = bool(info.get("nullable", True))
        default = info.get("default")
        if default is not None:
            default = str(default)
            if " on update " in default.lower():
                head, _, tail = default.partition(" ON UPDATE ")
                if not tail:
                    head, _, tail = default.partition(" on update ")
                default, column.on_update = head, tail.strip()
            column.default = default.strip()
        if info.get("autoincrement") is True and self.dialect is Dialect.MYSQL:
            column.auto_increment = True
        if info.get("identity"):
            column.auto_increment = True
        if info.get("comment"):
            column.comment = info["comment"]
        self._reader.normalize_serial(column)
        return column

    def _read_index(self, info: dict) -> Index | None:
        options = info.get("dialect_options") or {}
        names = info.get("column_names") or []
        expressions = info.get("expressions") or []
        lengths = options.get("mysql_length") or {}
        if isinstance(lengths, int):
            lengths = {name: lengths for name in names if name}

        expression = None
        columns: list[IndexColumn] = []
        if any(name is None for name in names):
            expression = ", ".join(str(expr) for expr in expressions) or None
            if expression is None:
                return None
        else:
            columns = [IndexColumn(name=name, length=lengths.get(name)) for name in names]

        prefix = str(options.get("mysql_prefix") or "").upper()
        if prefix == "FULLTEXT":
            index_type = IndexType.FULLTEXT
        elif prefix == "SPATIAL":
            index_type = IndexType.SPATIAL
        elif info.get("unique"):
            index_type = IndexType.UNIQUE
        else:
            index_type = IndexType.INDEX

        method = options.get("postgresql_using") or options.get("mysql_using")
        where = options.get("postgresql_where") or options.get("sqlite_where")
        if method and str(method).lower() == "gin" and expression and "to_tsvector" in expression:
            index_type = IndexType.FULLTEXT
        if method and str(method).lower() == "btree":
            method = None
        return Index(
            name=info["name"],
            type=index_type,
            columns=columns,
            expression=expression,
            where=str(where) if where is not None else None,
            method=str(method).lower() if method else None,
            origin=self.dialect,
        )

    def _mysql_options(self, inspector: Inspector, name: str) -> dict[str, str]:
        raw = inspector.get_table_options(name)
        options = {}
        for key, option in (
            ("mysql_engine", "engine"),
            ("mysql_default charset", "charset"),
            ("mysql_collate", "collate"),
            ("mysql_comment", "comment"),
        ):
            if raw.get(key):
                options[option] = str(raw[key])
        return options

    def _sqlite_fk_actions(
        self, sync_conn: Connection, name: str
    ) -> dict[tuple[tuple[str, ...], str], tuple[str | None, str | None]]:
        """ON DELETE / ON UPDATE per foreign key, keyed by (columns, referred table).

        The SQLite inspector omits the actions of column-level
        ``REFERENCES ... ON DELETE`` clauses; the pragma always has them.
        """
        quoted = name.replace("'", "''")
        rows = sync_conn.exec_driver_sql(f"PRAGMA foreign_key_list('{quoted}')").fetchall()
        grouped: dict[int, list] = {}
        for row in rows:
            grouped.setdefault(row[0], []).append(row)
        actions = {}
        for fk_rows in grouped.values():
            fk_rows.sort(key=lambda row: row[1])
            columns = tuple(row[3] for row in fk_rows)
            first = fk_rows[0]
            actions[(columns, first[2].lower())] = (
                _explicit_action(first[6]),
                _explicit_action(first[5]),
            )
        return actions

    def _optional(self, method, name: str) -> list[dict]:
        try:
            return method(name)
        except NotImplementedError:
            self.logger.debug(f"{method.__name__} is not implemented for {self.dialect.label}")
            return []


def _action(value: str | None) -> str | None:
    return " ".join(value.upper().split()) if value else None


def _explicit_action(value: str | None) -> str | None:
    action = _action(value)
    return None if action == "NO ACTION" else action
