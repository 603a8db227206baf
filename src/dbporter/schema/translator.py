"""Cross-dialect schema and statement translation.

Translation works on a deep copy of the schema graph: column types are
mapped through ``schema.types``, features the target cannot express are
emulated (ENUM -> text + CHECK) or dropped, and every loss is reported as
a ``TranslationWarning``. In strict mode the first dropped feature raises
``UnsupportedFeatureError`` instead.

Usage:
    from dbporter.schema.translator import SchemaTranslator

    result = SchemaTranslator().translate_sql(mysql_ddl, "mysql", "postgresql")
    for warning in result.warnings:
        print(warning)
    print(";\n".join(result.sql))
"""

import logging
import re
from collections import Counter
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field

from pydantic import BaseModel, Field

from dbporter.dialects import Dialect
from dbporter.errors import UnsupportedFeatureError
from dbporter.parser import SQLScanner, Statement
from dbporter.schema.ddl import DDLReader, statement_table
from dbporter.schema.models import (
    INDEX_METHODS,
    PREFIX_LENGTH_DIALECTS,
    Constraint,
    ConstraintType,
    Index,
    IndexType,
    SchemaGraph,
    Table,
)
from dbporter.schema.renderer import SchemaRenderer
from dbporter.schema.types import (
    ARRAY_TARGET_TYPES,
    FORCED_LENGTHS,
    LENGTH_TYPES,
    PRECISION_TYPES,
    SERIAL_TYPES,
    TIME_PRECISION_TYPES,
    UUID_DEFAULTS,
    lookup,
    translate_type,
)

logger = logging.getLogger(__name__)

LOSSY = "lossy"
DROPPED = "dropped"

_CURRENT_TIMESTAMP_DEFAULTS = frozenset({
    "now()", "current_timestamp", "current_timestamp()", "localtimestamp",
    "localtimestamp()", "datetime('now')", "(datetime('now'))", "transaction_timestamp()",
})
_BOOLEAN_DEFAULTS = {
    "true": True, "false": False, "'t'": True, "'f'": False,
    "1": True, "0": False, "'1'": True, "'0'": False, "b'1'": True, "b'0'": False,
}
_SCHEMA_VERBS = frozenset({"CREATE TABLE", "CREATE INDEX", "ALTER TABLE"})
_SESSION_VERBS = frozenset({
    "SET", "PRAGMA", "USE", "LOCK", "UNLOCK", "BEGIN", "COMMIT", "START", "ROLLBACK",
    "SAVEPOINT", "RELEASE", "ANALYZE", "VACUUM", "DELIMITER",
})
_SEQUENCE_STATEMENT = re.compile(
    r"^\s*(?:SELECT\s+(?:pg_catalog\.)?setval\b|(?:CREATE|ALTER|DROP)\s+SEQUENCE\b"
    r"|(?:UPDATE|INSERT\s+INTO|DELETE\s+FROM)\s+[\"`]?sqlite_sequence\b)",
    re.IGNORECASE,
)
_INSERT_IGNORE = re.compile(r"^(\s*)INSERT\s+IGNORE\s+INTO\b", re.IGNORECASE)
_REPLACE_INTO = re.compile(r"^(\s*)REPLACE\s+INTO\b", re.IGNORECASE)
_INSERT_OR = re.compile(r"^(\s*)INSERT\s+OR\s+(IGNORE|REPLACE)\s+INTO\b", re.IGNORECASE)
_MYSQL_ESCAPES = {
    "0": "\x00", "n": "\n", "r": "\r", "t": "\t", "Z": "\x1a", "b": "\b",
    "%": "\\%", "_": "\\_",
}


# ============================================================================
# Results
# ============================================================================


class TranslationWarning(BaseModel):
    """One feature the target dialect could not express as-is."""

    entity_type: str
    entity: str
    table: str | None = None
    message: str
    severity: str = LOSSY

    def __str__(self) -> str:
        where = f"{self.table}.{self.entity}" if self.table and self.table != self.entity else self.entity
        return f"[{self.severity}] {self.entity_type} {where}: {self.message}"


class TranslationResult(BaseModel):
    """Translated graph, warnings and (for ``translate_sql``) rendered DDL."""

    graph: SchemaGraph
    warnings: list[TranslationWarning] = Field(default_factory=list)
    sql: list[str] = Field(default_factory=list)


@dataclass
class StatementTranslation:
    """Statements rewritten for a target dialect."""

    statements: list[Statement]
    warnings: list[TranslationWarning] = field(default_factory=list)
    dropped: int = 0


# ============================================================================
# Translator
# ============================================================================


class SchemaTranslator:
    """Translate schema graphs and dump statements between dialects.

    Args:
        strict: Raise ``UnsupportedFeatureError`` on the first dropped
            feature instead of warning.
        logger: Optional logger.
    """

    def __init__(self, strict: bool = False, logger: logging.Logger | None = None) -> None:
        self.strict = strict
        self.logger = logger or logging.getLogger(__name__)

    # ------------------------------------------------------------------
    # Graph translation
    # ------------------------------------------------------------------

    def translate(
        self,
        graph: SchemaGraph,
        target: Dialect | str,
        source: Dialect | str | None = None,
    ) -> TranslationResult:
        """Translate ``graph`` to ``target``; the input graph is not mutated."""
        target = Dialect.from_value(target)
        source = Dialect.from_value(source) if source is not None else graph.dialect or target
        translated = graph.model_copy(deep=True)
        translated.dialect = target
        warnings: list[TranslationWarning] = []
        if source is target:
            return TranslationResult(graph=translated, warnings=warnings)

        for table in translated.tables.values():
            self._translate_table(table, source, target, warnings)
        return TranslationResult(graph=translated, warnings=warnings)

    def translate_sql(
        self, sql: str, source: Dialect | str, target: Dialect | str
    ) -> TranslationResult:
        """Parse DDL written for ``source`` and render it for ``target``."""
        source = Dialect.from_value(source)
        target = Dialect.from_value(target)
        graph = DDLReader(source).read(sql)
        result = self.translate(graph, target, source)
        result.sql = SchemaRenderer(target).render_graph(result.graph)
        return result

    def _translate_table(
        self, table: Table, source: Dialect, target: Dialect, warnings: list[TranslationWarning]
    ) -> None:
        for constraint in table.constraints:
            self._translate_constraint(table, constraint, source, target, warnings)
        for column in table.columns:
            self._translate_column(table, column, source, target, warnings)

        if target is Dialect.SQLITE:
            pk_columns = [name.lower() for name in table.primary_key]
            for column in table.columns:
                if column.auto_increment and pk_columns != [column.name.lower()]:
                    column.auto_increment = False
                    self._warn(
                        warnings, DROPPED, "column", column.name, table.name,
                        "AUTOINCREMENT requires a single-column INTEGER PRIMARY KEY on SQLite",
                    )

        kept: list[Index] = []
        for index in table.indexes:
            translated = self._translate_index(table, index, source, target, warnings)
            if translated is not None:
                kept.append(translated)
        table.indexes = kept

        if target is not Dialect.MYSQL:
            table.options = {}
        table.original_sql = None

    def _translate_column(self, table, column, source, target, warnings) -> None:
        raw = column.data_type

        if column.is_array and target is not Dialect.POSTGRESQL:
            column.data_type = ARRAY_TARGET_TYPES[target]
            column.is_array = False
            self._warn(
                warnings, LOSSY, "column", column.name, table.name,
                f"Array column stored as {column.data_type.upper()} on {target.label}",
            )
        elif raw in ("enum", "set") and target is not Dialect.MYSQL:
            self._emulate_enum(table, column, target, warnings)
        else:
            column.data_type = translate_type(raw, source, target)
            forced = FORCED_LENGTHS.get((source, target, raw))
            if forced is not None:
                column.length = forced

        base = column.data_type
        if base not in LENGTH_TYPES:
            column.length = None
        if base not in PRECISION_TYPES and base.split()[0] not in TIME_PRECISION_TYPES:
            column.precision = None
            column.scale = None
        if target is Dialect.MYSQL and column.length is None:
            if base == "varchar":
                column.length = 255
            elif base == "char":
                column.length = 1

        if column.unsigned and target is not Dialect.MYSQL:
            column.unsigned = False
            self._warn(
                warnings, LOSSY, "column", column.name, table.name,
                f"UNSIGNED attribute is not supported by {target.label}",
            )
        if column.on_update and target is not Dialect.MYSQL:
            column.on_update = None
            self._warn(
                warnings, DROPPED, "column", column.name, table.name,
                f"ON UPDATE clause is not supported by {target.label}",
            )
        if target is not Dialect.MYSQL:
            column.comment = None

        self._translate_default(table, column, source, target, warnings)

        if column.auto_increment and target is Dialect.POSTGRESQL:
            if column.logical_type not in SERIAL_TYPES:
                column.auto_increment = False
                self._warn(
                    warnings, DROPPED, "column", column.name, table.name,
                    f"Auto-increment on {column.data_type} columns is not supported by PostgreSQL",
                )
        elif column.auto_increment and target is Dialect.SQLITE:
            column.data_type = "integer"

    def _emulate_enum(self, table, column, target, warnings) -> None:
        values = list(column.enum_values)
        was_set = column.data_type == "set"
        column.data_type = "text"
        column.enum_values = []
        if was_set or not values:
            self._warn(
                warnings, LOSSY, "column", column.name, table.name,
                f"SET column stored as TEXT on {target.label}; allowed values are not enforced",
            )
            return
        renderer = SchemaRenderer(target)
        allowed = ", ".join(renderer.render_literal(value) for value in values)
        table.add_constraint(
            Constraint(
                name=f"{table.name}_{column.name}_check",
                type=ConstraintType.CHECK,
                columns=[],
                expression=f"{renderer.quote(column.name)} IN ({allowed})",
            )
        )
        self._warn(
            warnings, LOSSY, "column", column.name, table.name,
            f"ENUM converted to TEXT with a CHECK constraint on {target.label}",
        )

    def _translate_default(self, table, column, source, target, warnings) -> None:
        if column.default is None:
            return
        value = requote(column.default.strip(), source, target)
        lowered = value.lower()

        if lowered in UUID_DEFAULTS:
            rendered = lookup("uuid_default", source, target)
            if rendered is None:
                column.default = None
                self._warn(
                    warnings, DROPPED, "column", column.name, table.name,
                    f"UUID default {value} is not supported by {target.label}",
                )
            else:
                column.default = rendered
            return
        if lowered in _CURRENT_TIMESTAMP_DEFAULTS:
            column.default = "CURRENT_TIMESTAMP"
            return
        if column.logical_type == "boolean" or lowered in ("true", "false"):
            flag = _BOOLEAN_DEFAULTS.get(lowered)
            if flag is not None:
                true_literal, false_literal = (lookup("boolean", source, target) or "1|0").split("|")
                column.default = true_literal if flag else false_literal
                return
        column.default = value

    def _translate_index(
        self,
        table: Table,
        index: Index,
        source: Dialect,
        target: Dialect,
        warnings: list[TranslationWarning],
    ) -> Index | None:
        if index.type is IndexType.PRIMARY:
            return index

        problems = index.validate_for(target)
        fatal = (
            not index.is_supported_by(target)
            or any("WHERE" in problem or "Expression" in problem for problem in problems)
        )
        if fatal:
            self._warn(
                warnings, DROPPED, "index", index.name, table.name,
                f"Index dropped: {'; '.join(problems)}",
            )
            return None

        translated = index.model_copy(deep=True)
        if translated.method and translated.method.lower() not in INDEX_METHODS[target]:
            self._warn(
                warnings, DROPPED, "index", index.name, table.name,
                f"Index method '{translated.method}' is not supported by {target.label}",
            )
            translated.method = None
        if target not in PREFIX_LENGTH_DIALECTS and any(c.length for c in translated.columns):
            for column in translated.columns:
                column.length = None
            self._warn(
                warnings, LOSSY, "index", index.name, table.name,
                f"Index prefix lengths are not supported by {target.label}",
            )
        if target is Dialect.MYSQL:
            for index_column in translated.columns:
                column = table.get_column(index_column.name)
                if (
                    column is not None
                    and index_column.length is None
                    and column.logical_type in ("text", "binary")
                    and column.data_type not in LENGTH_TYPES
                ):
                    index_column.length = 255
                    self._warn(
                        warnings, LOSSY, "index", index.name, table.name,
                        f"Prefix length 255 added for {column.data_type.upper()} column "
                        f"'{column.name}' on MySQL",
                    )
        if translated.where:
            translated.where = requote(translated.where, source, target)
        if translated.expression:
            translated.expression = requote(translated.expression, source, target)
        return translated

    def _translate_constraint(self, table, constraint, source, target, warnings) -> None:
        if constraint.type is ConstraintType.FOREIGN_KEY and target is Dialect.MYSQL:
            for attribute in ("on_delete", "on_update"):
                if getattr(constraint, attribute) == "SET DEFAULT":
                    setattr(constraint, attribute, "NO ACTION")
                    self._warn(
                        warnings, LOSSY, "constraint", constraint.name or "foreign_key", table.name,
                        "SET DEFAULT referential action replaced by NO ACTION on MySQL",
                    )
        if constraint.type is ConstraintType.CHECK and constraint.expression:
            constraint.expression = requote(constraint.expression, source, target)

    # ------------------------------------------------------------------
    # Statement translation
    # ------------------------------------------------------------------

    def translate_statements(
        self,
        statements: Sequence[Statement],
        source: Dialect | str,
        target: Dialect | str,
    ) -> StatementTranslation:
        """Rewrite parsed dump statements from ``source`` to ``target``.

        Table DDL (including later ``CREATE INDEX`` and ``ALTER TABLE``) is
        folded into a schema graph and re-rendered where each ``CREATE
        TABLE`` stood; foreign keys are added after all data on server
        targets. DML is re-quoted. Session statements, sequence
        statements and routines are dropped; PostgreSQL targets get
        ``setval`` calls for every auto-increment column at the end.
        """
        source = Dialect.from_value(source)
        target = Dialect.from_value(target)
        if source is target:
            return StatementTranslation(statements=list(statements))

        reader = DDLReader(source)
        graph = SchemaGraph(dialect=source)
        for statement in statements:
            if statement.verb in _SCHEMA_VERBS:
                reader.apply(graph, statement.text)
        result = self.translate(graph, target, source)
        warnings = list(result.warnings)
        renderer = SchemaRenderer(target)

        texts: list[tuple[str, Statement]] = []
        deferred: list[str] = []
        dropped: Counter[str] = Counter()
        rewrites: Counter[str] = Counter()

        for statement in statements:
            verb = statement.verb
            head = verb.split()[0] if verb else ""
            text = statement.text
            if verb == "CREATE TABLE":
                table = result.graph.get_table(statement_table(text) or "")
                if table is None:
                    self._warn(
                        warnings, DROPPED, "statement", verb, None,
                        f"Unrecognized table definition skipped: {statement.preview(60)}",
                    )
                    dropped["unparsed"] += 1
                    continue
                texts.append((renderer.render_table(table), statement))
                for index in table.indexes:
                    sql = renderer.render_index(table, index)
                    if sql:
                        texts.append((sql, statement))
                if target is not Dialect.SQLITE:
                    deferred.extend(renderer.render_foreign_key(table, fk) for fk in table.foreign_keys)
            elif verb in ("CREATE INDEX", "ALTER TABLE"):
                dropped["folded"] += 1
            elif verb == "DROP TABLE":
                name = statement_table(text)
                table = result.graph.get_table(name or "") or (Table(name=name) if name else None)
                if table is not None:
                    texts.append((renderer.render_drop_table(table), statement))
                else:
                    dropped[verb] += 1
            elif _SEQUENCE_STATEMENT.match(_strip_exec_comment(text)):
                dropped["sequence"] += 1
            elif head in _SESSION_VERBS or head in ("CREATE", "DROP", "ALTER", ""):
                dropped[verb or "empty"] += 1
            elif head == "SELECT" and "pg_catalog." in text:
                dropped[verb] += 1
            elif verb == "COPY":
                dropped[verb] += 1
            else:
                rewritten, note = self._rewrite_dml(text, source, target)
                if note:
                    rewrites[note] += 1
                texts.append((rewritten, statement))

        last = statements[-1] if statements else None
        for sql in deferred:
            texts.append((sql, last))
        if target is Dialect.POSTGRESQL:
            for sql in self.sequence_resets(result.graph, renderer):
                texts.append((sql, last))

        for verb, count in sorted(dropped.items()):
            if verb in ("folded", "empty", "unparsed"):
                continue
            if verb == "sequence":
                message = f"{count} sequence statement(s) replaced by target-native resets"
            else:
                message = f"{count} {verb} statement(s) specific to {source.label} dropped"
            session = verb == "sequence" or verb.split()[0] in _SESSION_VERBS or verb == "SELECT"
            self._warn(warnings, LOSSY if session else DROPPED, "statement", verb, None, message)
        for note, count in sorted(rewrites.items()):
            self._warn(warnings, LOSSY, "statement", "DML", None, f"{note} ({count} statement(s))")

        translated = [
            Statement(
                text=sql,
                index=position,
                start=origin.start if origin else 0,
                end=origin.end if origin else 0,
                line=origin.line if origin else 1,
            )
            for position, (sql, origin) in enumerate(texts)
        ]
        return StatementTranslation(
            statements=translated,
            warnings=warnings,
            dropped=sum(dropped.values()),
        )

    def sequence_resets(self, graph: SchemaGraph, renderer: SchemaRenderer) -> list[str]:
        """PostgreSQL ``setval`` calls moving serial sequences past the copied rows."""
        statements = []
        for table in graph.create_order():
            for column in table.columns:
                if not column.auto_increment:
                    continue
                table_ref = renderer.render_literal(renderer.quote(table.name))
                column_ref = renderer.render_literal(column.name)
                statements.append(
                    f"SELECT setval(pg_get_serial_sequence({table_ref}, {column_ref}), "
                    f"COALESCE((SELECT MAX({renderer.quote(column.name)}) "
                    f"FROM {renderer.quote(table.name)}), 0) + 1, false)"
                )
        return statements

    def _rewrite_dml(self, text: str, source: Dialect, target: Dialect) -> tuple[str, str | None]:
        note = None
        suffix = ""
        if source is Dialect.MYSQL:
            if _INSERT_IGNORE.match(text):
                if target is Dialect.POSTGRESQL:
                    text = _INSERT_IGNORE.sub(r"\1INSERT INTO", text, count=1)
                    suffix = " ON CONFLICT DO NOTHING"
                else:
                    text = _INSERT_IGNORE.sub(r"\1INSERT OR IGNORE INTO", text, count=1)
            elif _REPLACE_INTO.match(text):
                if target is Dialect.SQLITE:
                    text = _REPLACE_INTO.sub(r"\1INSERT OR REPLACE INTO", text, count=1)
                else:
                    text = _REPLACE_INTO.sub(r"\1INSERT INTO", text, count=1)
                    note = "REPLACE INTO rewritten as plain INSERT"
        elif source is Dialect.SQLITE:
            match = _INSERT_OR.match(text)
            if match:
                action = match.group(2).upper()
                if target is Dialect.MYSQL:
                    verb = "INSERT IGNORE INTO" if action == "IGNORE" else "REPLACE INTO"
                    text = _INSERT_OR.sub(rf"\1{verb}", text, count=1)
                else:
                    text = _INSERT_OR.sub(r"\1INSERT INTO", text, count=1)
                    if action == "IGNORE":
                        suffix = " ON CONFLICT DO NOTHING"
                    else:
                        note = "INSERT OR REPLACE rewritten as plain INSERT"
        return requote(text, source, target) + suffix, note

    # ------------------------------------------------------------------
    # Warnings
    # ------------------------------------------------------------------

    def _warn(
        self,
        warnings: list[TranslationWarning],
        severity: str,
        entity_type: str,
        entity: str,
        table: str | None,
        message: str,
    ) -> None:
        warning = TranslationWarning(
            entity_type=entity_type,
            entity=entity,
            table=table,
            message=message,
            severity=severity,
        )
        if self.strict and severity == DROPPED:
            raise UnsupportedFeatureError(
                str(warning),
                context={"entity_type": entity_type, "entity": entity, "table": table},
            )
        self.logger.warning(str(warning))
        warnings.append(warning)


def _strip_exec_comment(text: str) -> str:
    return re.sub(r"^\s*/\*!\d*\s*", "", text)


# ============================================================================
# Literal and identifier re-quoting
# ============================================================================

_MYSQL_TOKENS = re.compile(
    r"""(?P<string>'(?:[^'\\]|\\.|'')*')
      | (?P<dstring>"(?:[^"\\]|\\.|"")*")
      | (?P<ident>`(?:[^`]|``)*`)
      | (?P<hex>\b0x[0-9A-Fa-f]+\b|\b[Xx]'[0-9A-Fa-f]*')
      | (?P<charset>\b_(?:binary|utf8mb4|utf8|latin1)\s*(?=['"0xX]))""",
    re.VERBOSE | re.DOTALL,
)
_STANDARD_TOKENS = re.compile(
    r"""(?P<estring>\b[Ee]'(?:[^'\\]|\\.|'')*')
      | (?P<string>'(?:[^']|'')*')
      | (?P<ident>"(?:[^"]|"")*"|`(?:[^`]|``)*`)
      | (?P<hex>\b[Xx]'[0-9A-Fa-f]*')
      | (?P<cast>::\s*[A-Za-z_][\w.]*(?:\s+(?:varying|precision|with(?:out)?\s+time\s+zone))?
          (?:\s*\(\s*\d+(?:\s*,\s*\d+)?\s*\))?(?:\[\])*)""",
    re.VERBOSE | re.DOTALL,
)
_SQLITE_TOKENS = re.compile(_STANDARD_TOKENS.pattern + r"| (?P<bracket>\[[^\]\n]*\])", re.VERBOSE | re.DOTALL)


def _decode_backslashes(body: str) -> str:
    out: list[str] = []
    i = 0
    while i < len(body):
        ch = body[i]
        if ch == "\\" and i + 1 < len(body):
            nxt = body[i + 1]
            out.append(_MYSQL_ESCAPES.get(nxt, nxt))
            i += 2
            continue
        out.append(ch)
        i += 1
    return "".join(out)


def _decode_string(token: str, source: Dialect, quote: str = "'") -> str:
    body = token[1:-1]
    if source is Dialect.MYSQL:
        body = body.replace(quote * 2, "\x01Q\x01")
        return _decode_backslashes(body).replace("\x01Q\x01", quote)
    return body.replace(quote * 2, quote)


def strip_casts(sql: str) -> str:
    """Remove PostgreSQL ``::type`` casts outside string literals.

    Example:
        >>> strip_casts("'draft'::character varying")
        "'draft'"
    """
    return requote(sql, Dialect.POSTGRESQL, Dialect.POSTGRESQL, keep_casts=False)


def requote(sql: str, source: Dialect, target: Dialect, *, keep_casts: bool | None = None) -> str:
    """Re-encode identifiers and literals of ``sql`` for ``target``.

    Identifiers get the target's quote character, string literals are
    decoded with the source's escape rules and re-encoded for the target,
    MySQL hex literals become blobs, and PostgreSQL casts are removed on
    non-PostgreSQL targets.
    """
    renderer = SchemaRenderer(target)
    if keep_casts is None:
        keep_casts = target is Dialect.POSTGRESQL
    if source is Dialect.MYSQL:
        pattern = _MYSQL_TOKENS
    elif source is Dialect.SQLITE:
        pattern = _SQLITE_TOKENS
    else:
        pattern = _STANDARD_TOKENS

    def replace(match: re.Match) -> str:
        kind = match.lastgroup
        token = match.group(0)
        if kind == "string":
            return renderer.render_literal(_decode_string(token, source))
        if kind == "dstring":
            return renderer.render_literal(_decode_string(token, source, '"'))
        if kind == "estring":
            return renderer.render_literal(_decode_backslashes(token[2:-1].replace("''", "'")))
        if kind == "ident":
            quote = token[0]
            return renderer.quote(token[1:-1].replace(quote * 2, quote))
        if kind == "bracket":
            return renderer.quote(token[1:-1])
        if kind == "hex":
            digits = token[2:] if token[:2].lower() == "0x" else token[2:-1]
            if len(digits) % 2:
                digits = "0" + digits
            return renderer.render_literal(bytes.fromhex(digits))
        if kind == "charset":
            return ""
        if kind == "cast":
            return token if keep_casts else ""
        return token

    return pattern.sub(replace, sql)


def translate_dump(
    sql: str,
    source: Dialect | str,
    target: Dialect | str,
    *,
    strict: bool = False,
) -> StatementTranslation:
    """Parse a dump written for ``source`` and translate all of it for ``target``."""
    statements: Iterable[Statement] = SQLScanner(source).parse(sql)
    return SchemaTranslator(strict=strict).translate_statements(list(statements), source, target)
