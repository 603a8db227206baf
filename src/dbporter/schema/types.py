"""Cross-dialect type and feature lookup tables.

Every dialect-dependent rendering decision made by the translator is read
from one of the two tables below:

``TYPE_MAP[(source, target)]``
    Raw base type in the source dialect -> base type in the target dialect.
    Types absent from a mapping are kept as-is.

``FEATURE_MAP[(feature, source, target)]``
    How a column-level feature is expressed on the target. Features:

    ``auto_increment``
        ``serial`` family on PostgreSQL, the ``AUTO_INCREMENT`` keyword on
        MySQL, ``INTEGER PRIMARY KEY AUTOINCREMENT`` on SQLite.
    ``enum``
        Native ``ENUM(...)`` on MySQL, ``text`` plus a CHECK constraint
        elsewhere.
    ``boolean``
        Literal used for true/false defaults.
    ``uuid_default``
        Function generating a UUID default.
    ``current_timestamp_on_update``
        ``ON UPDATE CURRENT_TIMESTAMP`` support (MySQL only).

Usage:
    from dbporter.schema.types import lookup, translate_type

    translate_type("tinyint", Dialect.MYSQL, Dialect.POSTGRESQL)  # "smallint"
    lookup("auto_increment", Dialect.MYSQL, Dialect.POSTGRESQL)   # "serial"
"""

from dbporter.dialects import Dialect

MYSQL = Dialect.MYSQL
SQLITE = Dialect.SQLITE
POSTGRESQL = Dialect.POSTGRESQL


# ============================================================================
# Base type map
# ============================================================================

TYPE_MAP: dict[tuple[Dialect, Dialect], dict[str, str]] = {
    (MYSQL, SQLITE): {
        "tinyint": "integer",
        "smallint": "integer",
        "mediumint": "integer",
        "int": "integer",
        "integer": "integer",
        "bigint": "integer",
        "decimal": "real",
        "numeric": "real",
        "float": "real",
        "double": "real",
        "real": "real",
        "bit": "integer",
        "bool": "integer",
        "boolean": "integer",
        "char": "text",
        "varchar": "text",
        "tinytext": "text",
        "text": "text",
        "mediumtext": "text",
        "longtext": "text",
        "enum": "text",
        "set": "text",
        "json": "text",
        "date": "text",
        "time": "text",
        "datetime": "text",
        "timestamp": "text",
        "year": "integer",
        "binary": "blob",
        "varbinary": "blob",
        "tinyblob": "blob",
        "blob": "blob",
        "mediumblob": "blob",
        "longblob": "blob",
    },
    (MYSQL, POSTGRESQL): {
        "tinyint": "smallint",
        "mediumint": "integer",
        "int": "integer",
        "double": "double precision",
        "float": "real",
        "bit": "boolean",
        "bool": "boolean",
        "datetime": "timestamp",
        "year": "smallint",
        "tinytext": "text",
        "mediumtext": "text",
        "longtext": "text",
        "binary": "bytea",
        "varbinary": "bytea",
        "tinyblob": "bytea",
        "blob": "bytea",
        "mediumblob": "bytea",
        "longblob": "bytea",
        "enum": "text",
        "set": "text",
    },
    (POSTGRESQL, MYSQL): {
        "serial": "int",
        "bigserial": "bigint",
        "smallserial": "smallint",
        "integer": "int",
        "int4": "int",
        "int8": "bigint",
        "int2": "smallint",
        "double precision": "double",
        "float8": "double",
        "float4": "float",
        "real": "float",
        "numeric": "decimal",
        "boolean": "tinyint",
        "bool": "tinyint",
        "bytea": "longblob",
        "timestamp": "datetime",
        "timestamp without time zone": "datetime",
        "timestamptz": "datetime",
        "timestamp with time zone": "datetime",
        "time without time zone": "time",
        "timetz": "time",
        "time with time zone": "time",
        "interval": "varchar",
        "uuid": "char",
        "jsonb": "json",
        "character varying": "varchar",
        "character": "char",
        "citext": "text",
        "inet": "varchar",
        "cidr": "varchar",
        "macaddr": "varchar",
        "money": "decimal",
        "tsvector": "text",
        "xml": "text",
    },
    (POSTGRESQL, SQLITE): {
        "serial": "integer",
        "bigserial": "integer",
        "smallserial": "integer",
        "smallint": "integer",
        "int": "integer",
        "int2": "integer",
        "int4": "integer",
        "int8": "integer",
        "bigint": "integer",
        "numeric": "real",
        "decimal": "real",
        "double precision": "real",
        "float8": "real",
        "float4": "real",
        "boolean": "integer",
        "bool": "integer",
        "bytea": "blob",
        "uuid": "text",
        "json": "text",
        "jsonb": "text",
        "varchar": "text",
        "character varying": "text",
        "char": "text",
        "character": "text",
        "citext": "text",
        "date": "text",
        "time": "text",
        "timetz": "text",
        "timestamp": "text",
        "timestamptz": "text",
        "timestamp without time zone": "text",
        "timestamp with time zone": "text",
        "interval": "text",
        "inet": "text",
        "cidr": "text",
        "money": "real",
        "tsvector": "text",
        "xml": "text",
    },
    (SQLITE, MYSQL): {
        "integer": "int",
        "real": "double",
        "numeric": "decimal",
        "blob": "longblob",
        "text": "text",
        "boolean": "tinyint",
        "datetime": "datetime",
    },
    (SQLITE, POSTGRESQL): {
        "real": "double precision",
        "blob": "bytea",
        "datetime": "timestamp",
        "tinyint": "smallint",
        "double": "double precision",
    },
}

# Fixed lengths forced by a type translation (uuid -> char(36) and friends)
FORCED_LENGTHS: dict[tuple[Dialect, Dialect, str], int] = {
    (POSTGRESQL, MYSQL, "uuid"): 36,
    (POSTGRESQL, MYSQL, "interval"): 64,
    (POSTGRESQL, MYSQL, "inet"): 45,
    (POSTGRESQL, MYSQL, "cidr"): 45,
    (POSTGRESQL, MYSQL, "macaddr"): 17,
    (POSTGRESQL, MYSQL, "boolean"): 1,
    (POSTGRESQL, MYSQL, "bool"): 1,
    (SQLITE, MYSQL, "boolean"): 1,
}

# Array types have no scalar equivalent outside PostgreSQL
ARRAY_TARGET_TYPES: dict[Dialect, str] = {
    MYSQL: "json",
    SQLITE: "text",
}


# ============================================================================
# Feature map
# ============================================================================

FEATURE_MAP: dict[tuple[str, Dialect, Dialect], str] = {}

for _source in Dialect:
    FEATURE_MAP[("auto_increment", _source, POSTGRESQL)] = "serial"
    FEATURE_MAP[("auto_increment", _source, MYSQL)] = "AUTO_INCREMENT"
    FEATURE_MAP[("auto_increment", _source, SQLITE)] = "INTEGER PRIMARY KEY AUTOINCREMENT"
    FEATURE_MAP[("enum", _source, MYSQL)] = "native"
    FEATURE_MAP[("enum", _source, POSTGRESQL)] = "check"
    FEATURE_MAP[("enum", _source, SQLITE)] = "check"
    FEATURE_MAP[("boolean", _source, POSTGRESQL)] = "TRUE|FALSE"
    FEATURE_MAP[("boolean", _source, MYSQL)] = "1|0"
    FEATURE_MAP[("boolean", _source, SQLITE)] = "1|0"
    FEATURE_MAP[("uuid_default", _source, POSTGRESQL)] = "gen_random_uuid()"
    FEATURE_MAP[("uuid_default", _source, MYSQL)] = "(UUID())"
    FEATURE_MAP[("current_timestamp_on_update", _source, MYSQL)] = "ON UPDATE CURRENT_TIMESTAMP"
del _source

# Sequence-backed types per integer width on PostgreSQL
SERIAL_TYPES = {
    "smallint": "smallserial",
    "integer": "serial",
    "bigint": "bigserial",
}

SERIAL_BASE_TYPES = {"serial": "integer", "bigserial": "bigint", "smallserial": "smallint"}

UUID_DEFAULTS = frozenset({"gen_random_uuid()", "uuid_generate_v4()", "uuid()", "(uuid())"})


def lookup(feature: str, source: Dialect, target: Dialect) -> str | None:
    """Return how ``feature`` is expressed on ``target``, or ``None`` if it cannot be."""
    return FEATURE_MAP.get((feature, source, target))


def translate_type(raw: str, source: Dialect, target: Dialect) -> str:
    """Map a raw base type from ``source`` to ``target``.

    Example:
        >>> translate_type("bytea", Dialect.POSTGRESQL, Dialect.MYSQL)
        'longblob'
    """
    raw = " ".join(raw.lower().split())
    if source is target:
        return raw
    return TYPE_MAP.get((source, target), {}).get(raw, raw)


# ============================================================================
# Logical type families
# ============================================================================

_LOGICAL_TYPES: dict[str, tuple[str, ...]] = {
    "smallint": ("tinyint", "smallint", "int2", "smallserial", "year"),
    "integer": ("int", "integer", "mediumint", "int4", "serial"),
    "bigint": ("bigint", "int8", "bigserial"),
    "decimal": ("decimal", "numeric", "money"),
    "float": ("float", "double", "double precision", "real", "float4", "float8"),
    "boolean": ("bool", "boolean", "bit"),
    "string": ("char", "varchar", "character", "character varying", "citext",
               "inet", "cidr", "macaddr"),
    "text": ("text", "tinytext", "mediumtext", "longtext", "clob", "tsvector", "xml"),
    "binary": ("binary", "varbinary", "blob", "tinyblob", "mediumblob", "longblob", "bytea"),
    "date": ("date",),
    "time": ("time", "timetz", "time with time zone", "time without time zone", "interval"),
    "datetime": ("datetime", "timestamp", "timestamptz", "timestamp with time zone",
                 "timestamp without time zone"),
    "json": ("json", "jsonb"),
    "uuid": ("uuid",),
    "enum": ("enum",),
    "set": ("set",),
    "spatial": ("geometry", "point", "linestring", "polygon", "multipoint",
                "multilinestring", "multipolygon", "geometrycollection"),
}

_LOGICAL_BY_RAW = {raw: family for family, raws in _LOGICAL_TYPES.items() for raw in raws}


def logical_type(raw: str) -> str:
    """Dialect-independent family of a raw type (``other`` when unknown)."""
    return _LOGICAL_BY_RAW.get(" ".join(raw.lower().split()), "other")


# ============================================================================
# Type argument rules
# ============================================================================

# Base types that take a length argument
LENGTH_TYPES = frozenset({
    "char", "varchar", "character", "character varying", "binary", "varbinary", "bit",
    "bit varying", "nchar", "nvarchar",
})
PRECISION_TYPES = frozenset({"decimal", "numeric"})
TIME_PRECISION_TYPES = frozenset({"time", "timestamp", "datetime", "timestamptz", "timetz"})
