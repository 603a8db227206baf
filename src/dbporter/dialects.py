"""Supported SQL dialects.

Usage:
    from dbporter.dialects import Dialect

    Dialect.from_value("postgres+asyncpg")  # Dialect.POSTGRESQL
"""

from enum import Enum


class Dialect(str, Enum):
    """One of the three supported database families."""

    MYSQL = "mysql"
    SQLITE = "sqlite"
    POSTGRESQL = "postgresql"

    @classmethod
    def from_value(cls, value: "str | Dialect") -> "Dialect":
        """Normalize a dialect name or URL scheme.

        Accepts driver-qualified schemes (``mysql+aiomysql``) and common
        aliases (``postgres``, ``mariadb``, ``sqlite3``).

        Raises:
            ValueError: If the value names no supported dialect.
        """
        if isinstance(value, Dialect):
            return value
        name = value.strip().lower().split("+", 1)[0].split(":", 1)[0]
        alias = _ALIASES.get(name)
        if alias is None:
            raise ValueError(f"Unsupported dialect: {value!r}")
        return alias

    @property
    def label(self) -> str:
        return _LABELS[self]


_ALIASES = {
    "mysql": Dialect.MYSQL,
    "mariadb": Dialect.MYSQL,
    "sqlite": Dialect.SQLITE,
    "sqlite3": Dialect.SQLITE,
    "postgres": Dialect.POSTGRESQL,
    "postgresql": Dialect.POSTGRESQL,
    "pgsql": Dialect.POSTGRESQL,
}

_LABELS = {
    Dialect.MYSQL: "MySQL",
    Dialect.SQLITE: "SQLite",
    Dialect.POSTGRESQL: "PostgreSQL",
}
