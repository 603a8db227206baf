"""Dialect-agnostic schema model, DDL reading, rendering and translation.

Provides the schema graph (``SchemaGraph`` and its tables, columns,
indexes and constraints), live introspection (``SchemaIntrospector``),
DDL parsing (``DDLReader``), SQL rendering (``SchemaRenderer``) and
cross-dialect translation (``SchemaTranslator``).

Usage:
    from dbporter.schema import SchemaTranslator, DDLReader, SchemaRenderer
    from dbporter.schema import SchemaIntrospector
"""

from dbporter.schema.ddl import DDLReader, statement_table, unquote
from dbporter.schema.introspector import SchemaIntrospector
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
from dbporter.schema.renderer import SchemaRenderer
from dbporter.schema.translator import (
    SchemaTranslator,
    StatementTranslation,
    TranslationResult,
    TranslationWarning,
    requote,
    translate_dump,
)
from dbporter.schema.types import logical_type, lookup, translate_type

__all__ = [
    "Column",
    "Constraint",
    "ConstraintType",
    "DDLReader",
    "Index",
    "IndexColumn",
    "IndexType",
    "SchemaGraph",
    "SchemaIntrospector",
    "SchemaRenderer",
    "SchemaTranslator",
    "StatementTranslation",
    "Table",
    "TranslationResult",
    "TranslationWarning",
    "logical_type",
    "lookup",
    "requote",
    "statement_table",
    "translate_dump",
    "translate_type",
    "unquote",
]
