"""In-process SQL generation: the fallback strategy for every dialect.

The backup is a plain SQL script produced from live introspection:

1. dbporter header (dialect, strategy, optional ``Target-Dialect``)
2. session preamble
3. ``DROP TABLE IF EXISTS`` (reverse dependency order) and ``CREATE TABLE``
4. data as batched multi-row ``INSERT`` statements
5. indexes, then foreign keys (inline on SQLite)
6. sequence / auto-increment statements

Rows are streamed from the database in ``batch_size`` partitions, so
memory use does not grow with table size. Restore goes through the
``RestoreOrchestrator``.
"""

import gzip
from pathlib import Path
from typing import IO, Any

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncConnection

from dbporter import __version__
from dbporter.backup.models import BackupOptions, CapabilityReport, RestoreOptions, RestoreResult
from dbporter.dialects import Dialect
from dbporter.restore.reader import format_backup_header
from dbporter.schema.introspector import SchemaIntrospector
from dbporter.schema.models import SchemaGraph, Table
from dbporter.schema.renderer import SchemaRenderer
from dbporter.strategies.base import RestoreStrategy
from dbporter.strategies.formats import SQL_FORMATS

PREAMBLE = {
    Dialect.MYSQL: ["SET NAMES utf8mb4", "SET FOREIGN_KEY_CHECKS=0"],
    Dialect.POSTGRESQL: [
        "SET client_encoding = 'UTF8'",
        "SET standard_conforming_strings = on",
    ],
    Dialect.SQLITE: ["PRAGMA foreign_keys=OFF"],
}

EPILOGUE = {
    Dialect.MYSQL: ["SET FOREIGN_KEY_CHECKS=1"],
}


class SQLGenerationStrategy(RestoreStrategy):
    """Dump and restore through the async engine, without external tools."""

    compression = True
    requirements = ("database_connection",)
    advantages = (
        "No external tools required",
        "Portable output with optional cross-dialect conversion",
        "Partial restore by table",
    )
    limitations = (
        "Slower than native tools on large databases",
        "Views, routines and triggers are not exported",
    )
    restore_formats = SQL_FORMATS
    supports_partial_restore = True

    # ------------------------------------------------------------------
    # Backup
    # ------------------------------------------------------------------

    async def _write_backup(self, path: Path, options: BackupOptions) -> dict[str, Any]:
        engine = self.require_engine()
        target = Dialect.from_value(options.target_dialect) if options.target_dialect else None
        introspector = SchemaIntrospector(engine, self.dialect, logger=self.logger)
        graph = await introspector.introspect(tables=options.tables)
        excluded = {name.lower() for name in options.exclude_tables}
        for name in [name for name in graph.tables if name.lower() in excluded]:
            del graph.tables[name]

        renderer = SchemaRenderer(self.dialect)
        ordered = graph.create_order()
        rows_written = 0
        statements = 0

        with self._open(path, options.compress) as out:

            def emit(sql: str) -> None:
                nonlocal statements
                out.write(sql + ";\n")
                statements += 1

            out.write(format_backup_header(self.dialect, self.strategy_type, __version__, target))
            out.write("\n")
            for sql in PREAMBLE.get(self.dialect, []):
                emit(sql)

            if options.include_schema:
                out.write("\n-- Schema\n")
                if options.drop_existing:
                    for table in reversed(ordered):
                        emit(renderer.render_drop_table(table))
                for table in ordered:
                    emit(renderer.render_table(table))

            async with engine.connect() as conn:
                if options.include_data:
                    for position, table in enumerate(ordered, start=1):
                        out.write(f"\n-- Data for {table.name}\n")
                        count = await self._dump_rows(conn, renderer, table, options.batch_size, emit)
                        rows_written += count
                        self._report(options, position, len(ordered), table.name, rows_written)

                if options.include_schema:
                    out.write("\n-- Indexes and constraints\n")
                    for table in ordered:
                        for index in table.indexes:
                            sql = renderer.render_index(table, index)
                            if sql:
                                emit(sql)
                    if self.dialect is not Dialect.SQLITE:
                        for table in ordered:
                            for constraint in table.foreign_keys:
                                emit(renderer.render_foreign_key(table, constraint))

                if options.include_data:
                    sequence_sql = await self._sequence_statements(conn, renderer, graph)
                    if sequence_sql:
                        out.write("\n-- Sequences\n")
                        for sql in sequence_sql:
                            emit(sql)

            for sql in EPILOGUE.get(self.dialect, []):
                emit(sql)

        self.logger.debug(
            f"Wrote {statements} statements ({len(ordered)} tables, {rows_written} rows) to {path}"
        )
        metadata: dict[str, Any] = {"dialect": self.dialect.value, "statements": statements}
        if target is not None:
            metadata["target_dialect"] = target.value
        return {
            "compressed": options.compress,
            "format_id": f"{self.dialect.value}_sql",
            "tables": [table.name for table in ordered],
            "rows": rows_written,
            "metadata": metadata,
        }

    def _open(self, path: Path, compress: bool) -> IO[str]:
        if compress:
            return gzip.open(path, "wt", encoding="utf-8")
        return open(path, "w", encoding="utf-8")

    async def _dump_rows(
        self,
        conn: AsyncConnection,
        renderer: SchemaRenderer,
        table: Table,
        batch_size: int,
        emit,
    ) -> int:
        columns = table.column_names
        query = text(f"SELECT {renderer.quote_list(columns)} FROM {renderer.quote(table.name)}")
        result = await conn.stream(query)
        count = 0
        async for batch in result.partitions(batch_size):
            emit(renderer.render_insert(table.name, columns, batch))
            count += len(batch)
        return count

    async def _sequence_statements(
        self, conn: AsyncConnection, renderer: SchemaRenderer, graph: SchemaGraph
    ) -> list[str]:
        """Statements that restore sequence / auto-increment positions."""
        statements: list[str] = []
        if self.dialect is Dialect.SQLITE:
            exists = await conn.execute(
                text("SELECT name FROM sqlite_master WHERE type = 'table' AND name = 'sqlite_sequence'")
            )
            if exists.first() is None:
                return statements
            result = await conn.execute(text("SELECT name, seq FROM sqlite_sequence"))
            for name, seq in result.all():
                if graph.get_table(name) is not None:
                    statements.append(
                        f"UPDATE sqlite_sequence SET seq = {int(seq)} "
                        f"WHERE name = {renderer.render_literal(name)}"
                    )
            return statements

        for table in graph.tables.values():
            for column in table.columns:
                if not column.auto_increment:
                    continue
                quoted_table = renderer.quote(table.name)
                quoted_column = renderer.quote(column.name)
                if self.dialect is Dialect.POSTGRESQL:
                    statements.append(
                        f"SELECT setval(pg_get_serial_sequence({renderer.render_literal(quoted_table)}, "
                        f"{renderer.render_literal(column.name)}), "
                        f"COALESCE((SELECT MAX({quoted_column}) FROM {quoted_table}), 1), "
                        f"(SELECT MAX({quoted_column}) FROM {quoted_table}) IS NOT NULL)"
                    )
                else:
                    result = await conn.execute(
                        text(f"SELECT MAX({quoted_column}) FROM {quoted_table}")
                    )
                    current = result.scalar()
                    if current is not None:
                        statements.append(f"ALTER TABLE {quoted_table} AUTO_INCREMENT={int(current) + 1}")
        return statements

    def _report(
        self, options: BackupOptions, position: int, total: int, table: str, rows: int
    ) -> None:
        if options.progress_callback is None:
            return
        options.progress_callback({
            "progress_percent": int(100 * position / total) if total else 100,
            "current_operation": f"Exported {table}",
            "tables_done": position,
            "rows_written": rows,
        })

    # ------------------------------------------------------------------
    # Restore and probes
    # ------------------------------------------------------------------

    async def _restore(
        self, path: Path, options: RestoreOptions, tables: list[str] | None
    ) -> RestoreResult:
        return await self._restore_sql(path, options, tables)

    async def _probe(self, report: CapabilityReport) -> None:
        if not await self._probe_connection(report):
            return
        try:
            names = await SchemaIntrospector(self.engine, self.dialect).get_table_names()
        except (SQLAlchemyError, OSError) as exc:
            report.capabilities["schema_introspection"] = False
            report.details["schema_introspection"] = str(exc)
            return
        report.capabilities["schema_introspection"] = True
        report.details["tables"] = str(len(names))


class MySQLSQLStrategy(SQLGenerationStrategy):
    strategy_type = "mysql_sql"
    dialect = Dialect.MYSQL
    description = "MySQL SQL Backup (in-process generation)"
    priority = 2


class PostgreSQLSQLStrategy(SQLGenerationStrategy):
    strategy_type = "postgresql_sql"
    dialect = Dialect.POSTGRESQL
    description = "PostgreSQL SQL Backup (in-process generation)"
    priority = 2
