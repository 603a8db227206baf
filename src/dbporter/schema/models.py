"""Pydantic models for the dialect-agnostic schema graph.

This module contains the schema-domain models:
- Index models: IndexType, IndexColumn, Index
- Constraint models: ConstraintType, Constraint
- Table models: Column, Table
- Graph: SchemaGraph

Graphs are built fresh per operation, either from live introspection
(``SchemaIntrospector``) or from parsed DDL (``DDLReader``).
"""

from enum import Enum

from pydantic import BaseModel, Field, field_validator, model_validator

from dbporter.dialects import Dialect
from dbporter.schema.types import logical_type


# ============================================================================
# Index Models
# ============================================================================


class IndexType(str, Enum):
    PRIMARY = "primary"
    UNIQUE = "unique"
    INDEX = "index"
    FULLTEXT = "fulltext"
    SPATIAL = "spatial"


# Dialects able to express each optional index feature
PARTIAL_INDEX_DIALECTS = frozenset({Dialect.POSTGRESQL, Dialect.SQLITE})
EXPRESSION_INDEX_DIALECTS = frozenset({Dialect.POSTGRESQL, Dialect.SQLITE, Dialect.MYSQL})
PREFIX_LENGTH_DIALECTS = frozenset({Dialect.MYSQL})
INDEX_METHODS: dict[Dialect, frozenset[str]] = {
    Dialect.POSTGRESQL: frozenset({"btree", "hash", "gist", "gin", "spgist", "brin"}),
    Dialect.MYSQL: frozenset({"btree", "hash"}),
    Dialect.SQLITE: frozenset(),
}


class IndexColumn(BaseModel):
    """One column of an index, with optional prefix length and direction."""

    name: str
    length: int | None = None
    direction: str | None = None

    @field_validator("direction")
    @classmethod
    def _normalize_direction(cls, value: str | None) -> str | None:
        if value is None:
            return None
        value = value.upper()
        if value not in ("ASC", "DESC"):
            raise ValueError(f"Invalid index direction: {value}")
        return value


class Index(BaseModel):
    """A table index.

    Example:
        >>> idx = Index(name="ft_body", type=IndexType.FULLTEXT,
        ...             columns=[IndexColumn(name="body")])
        >>> idx.is_supported_by(Dialect.SQLITE)
        False
    """

    name: str
    type: IndexType = IndexType.INDEX
    columns: list[IndexColumn] = Field(default_factory=list)
    expression: str | None = None
    where: str | None = None
    method: str | None = None
    comment: str | None = None
    origin: Dialect | None = None

    @property
    def column_names(self) -> list[str]:
        return [column.name for column in self.columns]

    @property
    def is_unique(self) -> bool:
        return self.type in (IndexType.PRIMARY, IndexType.UNIQUE)

    def is_supported_by(self, target: Dialect) -> bool:
        """Whether ``target`` can express this index's type at all.

        Full-text indexes only exist on MySQL, or on the dialect the index
        was read from. Spatial indexes do not exist on SQLite.
        """
        if self.type is IndexType.FULLTEXT:
            return target is Dialect.MYSQL or target is self.origin
        if self.type is IndexType.SPATIAL:
            return target is not Dialect.SQLITE
        return True

    def validate_for(self, target: Dialect) -> list[str]:
        """Collect every incompatibility with ``target`` without changing the index."""
        warnings: list[str] = []
        if not self.is_supported_by(target):
            warnings.append(
                f"{self.type.value.upper()} indexes are not supported by {target.label}"
            )
        if self.where and target not in PARTIAL_INDEX_DIALECTS:
            warnings.append(
                f"Partial index predicate (WHERE) is not supported by {target.label}"
            )
        if self.expression and target not in EXPRESSION_INDEX_DIALECTS:
            warnings.append(f"Expression indexes are not supported by {target.label}")
        if self.method and self.method.lower() not in INDEX_METHODS[target]:
            warnings.append(
                f"Index method '{self.method}' is not supported by {target.label}"
            )
        if target not in PREFIX_LENGTH_DIALECTS and any(
            column.length for column in self.columns
        ):
            warnings.append(f"Index prefix lengths are not supported by {target.label}")
        return warnings


# ============================================================================
# Constraint Models
# ============================================================================


class ConstraintType(str, Enum):
    FOREIGN_KEY = "foreign_key"
    CHECK = "check"
    UNIQUE = "unique"


class Constraint(BaseModel):
    """Foreign key, check or unique constraint."""

    name: str | None = None
    type: ConstraintType
    columns: list[str] = Field(default_factory=list)
    referenced_table: str | None = None
    referenced_columns: list[str] = Field(default_factory=list)
    on_delete: str | None = None
    on_update: str | None = None
    expression: str | None = None

    @model_validator(mode="after")
    def _check_shape(self) -> "Constraint":
        if self.type is ConstraintType.FOREIGN_KEY and not self.referenced_table:
            raise ValueError("Foreign key constraint requires a referenced table")
        if self.type is ConstraintType.CHECK and not self.expression:
            raise ValueError("Check constraint requires an expression")
        return self


# ============================================================================
# Table Models
# ============================================================================


class Column(BaseModel):
    """A table column.

    ``data_type`` is the raw, lower-cased base type as written in the source
    dialect (``varchar``, ``int``, ``timestamptz``); ``logical_type`` is its
    dialect-independent family.

    Example:
        >>> Column(name="id", data_type="bigint", auto_increment=True).logical_type
        'bigint'
    """

    name: str
    data_type: str
    length: int | None = None
    precision: int | None = None
    scale: int | None = None
    unsigned: bool = False
    nullable: bool = True
    default: str | None = None
    auto_increment: bool = False
    enum_values: list[str] = Field(default_factory=list)
    is_array: bool = False
    on_update: str | None = None
    comment: str | None = None

    @field_validator("data_type")
    @classmethod
    def _lower_type(cls, value: str) -> str:
        return " ".join(value.lower().split())

    @property
    def logical_type(self) -> str:
        if self.is_array:
            return "array"
        return logical_type(self.data_type)


class Table(BaseModel):
    """A table with ordered columns, indexes and constraints.

    Column names are unique (case-insensitive) and every attached index,
    primary key and constraint column must exist on the table. Both rules
    are checked at construction and by the ``add_*`` methods.
    """

    name: str
    columns: list[Column] = Field(default_factory=list)
    primary_key: list[str] = Field(default_factory=list)
    indexes: list[Index] = Field(default_factory=list)
    constraints: list[Constraint] = Field(default_factory=list)
    options: dict[str, str] = Field(default_factory=dict)
    original_sql: str | None = None

    @model_validator(mode="after")
    def _check_integrity(self) -> "Table":
        seen: set[str] = set()
        for column in self.columns:
            key = column.name.lower()
            if key in seen:
                raise ValueError(f"Duplicate column '{column.name}' in table '{self.name}'")
            seen.add(key)
        self._require_columns(self.primary_key, "primary key")
        for index in self.indexes:
            self._check_index(index)
        for constraint in self.constraints:
            self._require_columns(constraint.columns, f"constraint {constraint.name or ''}")
        return self

    @property
    def column_names(self) -> list[str]:
        return [column.name for column in self.columns]

    def get_column(self, name: str) -> Column | None:
        lowered = name.lower()
        for column in self.columns:
            if column.name.lower() == lowered:
                return column
        return None

    def has_column(self, name: str) -> bool:
        return self.get_column(name) is not None

    def add_column(self, column: Column) -> None:
        if self.has_column(column.name):
            raise ValueError(f"Duplicate column '{column.name}' in table '{self.name}'")
        self.columns.append(column)

    def add_index(self, index: Index) -> None:
        self._check_index(index)
        self.indexes.append(index)

    def add_constraint(self, constraint: Constraint) -> None:
        self._require_columns(constraint.columns, f"constraint {constraint.name or ''}")
        self.constraints.append(constraint)

    def set_primary_key(self, columns: list[str]) -> None:
        self._require_columns(columns, "primary key")
        self.primary_key = list(columns)

    @property
    def foreign_keys(self) -> list[Constraint]:
        return [c for c in self.constraints if c.type is ConstraintType.FOREIGN_KEY]

    @property
    def dependencies(self) -> set[str]:
        """Names of other tables this table references."""
        return {
            fk.referenced_table
            for fk in self.foreign_keys
            if fk.referenced_table and fk.referenced_table != self.name
        }

    def _check_index(self, index: Index) -> None:
        if index.expression and not index.columns:
            return
        self._require_columns(index.column_names, f"index {index.name}")

    def _require_columns(self, names: list[str], owner: str) -> None:
        for name in names:
            if not self.has_column(name):
                raise ValueError(
                    f"Column '{name}' referenced by {owner.strip()} "
                    f"does not exist on table '{self.name}'"
                )


# ============================================================================
# Schema Graph
# ============================================================================


class SchemaGraph(BaseModel):
    """All tables of one database, keyed by name in declaration order."""

    dialect: Dialect | None = None
    tables: dict[str, Table] = Field(default_factory=dict)

    def add_table(self, table: Table) -> None:
        if table.name in self.tables:
            raise ValueError(f"Duplicate table '{table.name}'")
        self.tables[table.name] = table

    def get_table(self, name: str) -> Table | None:
        table = self.tables.get(name)
        if table is not None:
            return table
        lowered = name.lower()
        for candidate in self.tables.values():
            if candidate.name.lower() == lowered:
                return candidate
        return None

    def create_order(self) -> list[Table]:
        """Tables with referenced (parent) tables first.

        Depth-first over foreign-key dependencies; a cycle is broken at the
        table where it is detected, so the result is always complete and
        deterministic for a given graph.
        """
        ordered: list[str] = []
        visited: set[str] = set()
        visiting: set[str] = set()

        def visit(name: str) -> None:
            if name in visited or name in visiting:
                return
            visiting.add(name)
            for dependency in sorted(self.tables[name].dependencies):
                if dependency in self.tables:
                    visit(dependency)
            visiting.discard(name)
            visited.add(name)
            ordered.append(name)

        for name in self.tables:
            visit(name)
        return [self.tables[name] for name in ordered]
