"""Live database-to-database migration with row-count verification.

The source schema is introspected, translated to the target dialect and
created on the target; rows are then streamed across in batches and both
sides are counted per table once the copy commits. Everything written to
the target happens in one transaction.

Usage:
    from dbporter.migration import MigrationOptions, Migrator

    migrator = Migrator(source_engine, target_engine)
    result = await migrator.migrate(MigrationOptions(drop_existing=True))
    if not result.verified:
        for count in result.mismatches:
            print(count.table, count.source_rows, count.target_rows)
"""

import logging
import time

from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine

from dbporter.backup.models import OperationError, ProgressCallback
from dbporter.dialects import Dialect
from dbporter.errors import BackupError
from dbporter.schema.introspector import SchemaIntrospector
from dbporter.schema.models import SchemaGraph, Table
from dbporter.schema.renderer import SchemaRenderer
from dbporter.schema.translator import SchemaTranslator
from dbporter.strategies.generated import EPILOGUE, PREAMBLE

_NO_PARAMETERS = {"no_parameters": True}


class MigrationOptions(BaseModel):
    """Options accepted by ``Migrator.migrate``."""

    model_config = ConfigDict(extra="forbid", arbitrary_types_allowed=True)

    tables: list[str] | None = None                         # None = all tables
    exclude_tables: list[str] = Field(default_factory=list)
    include_data: bool = True
    drop_existing: bool = False                             # drop target tables first
    batch_size: int = Field(default=500, ge=1)              # rows per INSERT
    strict: bool = False                                    # fail on dropped features
    verify_row_counts: bool = True
    progress_callback: ProgressCallback | None = None


class TableCount(BaseModel):
    table: str
    source_rows: int
    target_rows: int

    @property
    def matches(self) -> bool:
        return self.source_rows == self.target_rows


class MigrationResult(BaseModel):
    success: bool
    source_dialect: str | None = None
    target_dialect: str | None = None
    tables: list[str] = Field(default_factory=list)
    rows_copied: int = 0
    counts: list[TableCount] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)
    duration_seconds: float = 0.0
    error: OperationError | None = None

    @property
    def mismatches(self) -> list[TableCount]:
        return [count for count in self.counts if not count.matches]

    @property
    def verified(self) -> bool:
        """True when the copy succeeded and every counted table matches."""
        return self.success and not self.mismatches


class Migrator:
    """Copy schema and data from one live database into another.

    Args:
        source: Engine for the database to read.
        target: Engine for the database to write.
        logger: Optional logger.
    """

    def __init__(
        self, source: AsyncEngine, target: AsyncEngine, logger: logging.Logger | None = None
    ) -> None:
        self.source = source
        self.target = target
        self.source_dialect = Dialect.from_value(source.dialect.name)
        self.target_dialect = Dialect.from_value(target.dialect.name)
        self.logger = logger or logging.getLogger(__name__)

    async def migrate(self, options: MigrationOptions | None = None) -> MigrationResult:
        """Run the migration.

        Returns:
            MigrationResult; failures carry an ``error`` instead of raising.
            Row-count mismatches do not fail the run; they are listed in
            ``mismatches`` and ``warnings``.
        """
        options = options or MigrationOptions()
        started = time.monotonic()
        result = MigrationResult(
            success=False,
            source_dialect=self.source_dialect.value,
            target_dialect=self.target_dialect.value,
        )
        self.logger.info(
            f"Migrating {self.source_dialect.label} database to {self.target_dialect.label}"
        )
        try:
            graph = await self._source_graph(options)
            translation = SchemaTranslator(strict=options.strict, logger=self.logger).translate(
                graph, self.target_dialect, self.source_dialect
            )
            result.warnings.extend(str(warning) for warning in translation.warnings)
            ordered = graph.create_order()
            result.tables = [table.name for table in ordered]
            result.rows_copied = await self._copy(translation.graph, ordered, options)
            if options.verify_row_counts and options.include_data:
                result.counts = await self._count_rows(ordered)
        except BackupError as exc:
            error = exc
        except (OSError, SQLAlchemyError) as exc:
            error = BackupError.restore_failed(
                None,
                f"migration to {self.target_dialect.label} failed: {exc}",
                context={"dialect": self.target_dialect.value},
                cause=exc,
            )
        else:
            result.success = True
            for count in result.mismatches:
                result.warnings.append(
                    f"Row count mismatch for {count.table} "
                    f"(source: {count.source_rows}, target: {count.target_rows})"
                )
            result.duration_seconds = time.monotonic() - started
            self.logger.info(
                f"Migration complete: {len(result.tables)} tables, {result.rows_copied} rows "
                f"({result.duration_seconds:.2f}s)"
            )
            if result.mismatches:
                self.logger.warning(f"{len(result.mismatches)} tables failed row-count verification")
            return result

        self.logger.error(f"Migration failed: {error}")
        result.error = OperationError.from_exception(error)
        result.duration_seconds = time.monotonic() - started
        return result

    # ------------------------------------------------------------------
    # Phases
    # ------------------------------------------------------------------

    async def _source_graph(self, options: MigrationOptions) -> SchemaGraph:
        introspector = SchemaIntrospector(self.source, self.source_dialect, logger=self.logger)
        graph = await introspector.introspect(tables=options.tables)
        excluded = {name.lower() for name in options.exclude_tables}
        for name in [name for name in graph.tables if name.lower() in excluded]:
            del graph.tables[name]
        return graph

    async def _copy(
        self,
        target_graph: SchemaGraph,
        ordered: list[Table],
        options: MigrationOptions,
    ) -> int:
        renderer = SchemaRenderer(self.target_dialect)
        inline_foreign_keys = self.target_dialect is Dialect.SQLITE
        rows = 0
        async with self.target.begin() as target_conn:
            for sql in PREAMBLE.get(self.target_dialect, []):
                await self._execute(target_conn, sql)
            for sql in renderer.render_graph(
                target_graph,
                drop_existing=options.drop_existing,
                include_indexes=False,
                include_foreign_keys=inline_foreign_keys,
            ):
                await self._execute(target_conn, sql)

            if options.include_data:
                async with self.source.connect() as source_conn:
                    for position, table in enumerate(ordered, start=1):
                        target_table = target_graph.get_table(table.name)
                        rows += await self._copy_rows(
                            source_conn, target_conn, renderer, table, target_table, options.batch_size
                        )
                        self._report(options, position, len(ordered), table.name, rows)

            for table in target_graph.create_order():
                for index in table.indexes:
                    sql = renderer.render_index(table, index)
                    if sql:
                        await self._execute(target_conn, sql)
            if not inline_foreign_keys:
                for table in target_graph.create_order():
                    for constraint in table.foreign_keys:
                        await self._execute(target_conn, renderer.render_foreign_key(table, constraint))

            if options.include_data and self.target_dialect is Dialect.POSTGRESQL:
                for sql in SchemaTranslator().sequence_resets(target_graph, renderer):
                    await self._execute(target_conn, sql)
            for sql in EPILOGUE.get(self.target_dialect, []):
                await self._execute(target_conn, sql)
        self.logger.debug(f"Copied {rows} rows across {len(ordered)} tables")
        return rows

    async def _copy_rows(
        self,
        source_conn: AsyncConnection,
        target_conn: AsyncConnection,
        renderer: SchemaRenderer,
        table: Table,
        target_table: Table,
        batch_size: int,
    ) -> int:
        reader = SchemaRenderer(self.source_dialect)
        query = text(f"SELECT {reader.quote_list(table.column_names)} FROM {reader.quote(table.name)}")
        result = await source_conn.stream(query)
        count = 0
        async for batch in result.partitions(batch_size):
            await self._execute(
                target_conn, renderer.render_insert(target_table.name, target_table.column_names, batch)
            )
            count += len(batch)
        self.logger.debug(f"Copied {count} rows into {target_table.name}")
        return count

    async def _count_rows(self, ordered: list[Table]) -> list[TableCount]:
        source_counts = await self._count(self.source, self.source_dialect, ordered)
        target_counts = await self._count(self.target, self.target_dialect, ordered)
        return [
            TableCount(table=table.name, source_rows=source, target_rows=target)
            for table, source, target in zip(ordered, source_counts, target_counts)
        ]

    async def _count(self, engine: AsyncEngine, dialect: Dialect, tables: list[Table]) -> list[int]:
        renderer = SchemaRenderer(dialect)
        counts = []
        async with engine.connect() as conn:
            for table in tables:
                result = await conn.execute(text(f"SELECT COUNT(*) FROM {renderer.quote(table.name)}"))
                counts.append(int(result.scalar() or 0))
        return counts

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    async def _execute(conn: AsyncConnection, sql: str) -> None:
        await conn.exec_driver_sql(sql, execution_options=_NO_PARAMETERS)

    @staticmethod
    def _report(
        options: MigrationOptions, position: int, total: int, table: str, rows: int
    ) -> None:
        if options.progress_callback is None:
            return
        options.progress_callback({
            "progress_percent": int(100 * position / total) if total else 100,
            "current_operation": f"Copied {table}",
            "tables_done": position,
            "rows_copied": rows,
        })
