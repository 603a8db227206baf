"""Connection description shared by strategies and the backup facade.

Usage:
    from dbporter.adapters.base import ConnectionInfo

    info = ConnectionInfo.from_url("postgres://app:secret@db:5432/shop")
    info.async_url()      # postgresql+asyncpg://app:secret@db:5432/shop
    info.display_url()    # postgresql+asyncpg://app:***@db:5432/shop
"""

from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field, SecretStr
from sqlalchemy.engine import URL, make_url
from sqlalchemy.exc import ArgumentError

from dbporter.dialects import Dialect

ASYNC_DRIVERS = {
    Dialect.MYSQL: "mysql+aiomysql",
    Dialect.SQLITE: "sqlite+aiosqlite",
    Dialect.POSTGRESQL: "postgresql+asyncpg",
}

DEFAULT_PORTS = {
    Dialect.MYSQL: 3306,
    Dialect.POSTGRESQL: 5432,
}


class ConnectionInfo(BaseModel):
    """Parsed connection parameters for one database."""

    dialect: Dialect
    host: str | None = None
    port: int | None = None
    username: str | None = None
    password: SecretStr | None = None
    database: str | None = None                             # file path for SQLite
    query: dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def from_url(cls, url: str | URL) -> "ConnectionInfo":
        """Parse a database URL.

        Accepts plain and async-driver schemes (``postgres://``,
        ``postgresql+asyncpg://``, ``mysql://``, ``mariadb://``,
        ``sqlite:///path``).

        Raises:
            ValueError: If the URL cannot be parsed or names an unsupported
                dialect.
        """
        try:
            parsed = make_url(url) if isinstance(url, str) else url
        except (ArgumentError, ValueError) as exc:
            raise ValueError(f"Invalid database URL: {exc}") from exc
        dialect = Dialect.from_value(parsed.get_backend_name())
        return cls(
            dialect=dialect,
            host=parsed.host,
            port=parsed.port or DEFAULT_PORTS.get(dialect),
            username=parsed.username,
            password=SecretStr(parsed.password) if parsed.password else None,
            database=parsed.database,
            query=dict(parsed.query),
        )

    @property
    def password_value(self) -> str | None:
        return self.password.get_secret_value() if self.password else None

    @property
    def sqlite_path(self) -> Path | None:
        """Database file for SQLite (``None`` for in-memory or other dialects)."""
        if self.dialect is not Dialect.SQLITE:
            return None
        if not self.database or self.database == ":memory:":
            return None
        return Path(self.database)

    def to_url(self) -> URL:
        return URL.create(
            ASYNC_DRIVERS[self.dialect],
            username=self.username,
            password=self.password_value,
            host=self.host,
            port=self.port if self.dialect is not Dialect.SQLITE else None,
            database=self.database,
            query=self.query,
        )

    def async_url(self) -> str:
        """URL with the async driver scheme and the real password."""
        return self.to_url().render_as_string(hide_password=False)

    def display_url(self) -> str:
        """URL safe for logs and console output."""
        return self.to_url().render_as_string(hide_password=True)
