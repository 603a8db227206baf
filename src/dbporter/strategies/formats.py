"""Backup file format detection.

A file is classified by its leading bytes first:

- ``SQLite format 3\\0``: native SQLite database image
- ``PGDMP``: pg_dump custom archive
- ``ustar`` at offset 257: pg_dump tar archive
- gzip magic: decompressed transparently, then classified again

Anything else is treated as text. A dbporter header names its dialect
directly; otherwise dialect-identifying keywords in the first 40 lines are
scored case-insensitively and the best-scoring dialect wins.

Usage:
    from dbporter.strategies.formats import detect_format

    fmt = detect_format("backup.sql.gz")
    fmt.format_id     # "mysql_sql"
    fmt.compressed    # True
"""

import gzip
import os
import re
import zlib
from dataclasses import dataclass
from pathlib import Path

from dbporter.dialects import Dialect
from dbporter.errors import BackupError
from dbporter.restore.reader import GZIP_MAGIC, read_backup_header

SQLITE_SIGNATURE = b"SQLite format 3\x00"
PGDMP_SIGNATURE = b"PGDMP"
TAR_MAGIC = b"ustar"
TAR_MAGIC_OFFSET = 257
HEAD_BYTES = 8192
SCAN_LINES = 40

SQLITE_BINARY = "sqlite_binary"
POSTGRESQL_CUSTOM = "postgresql_custom"
POSTGRESQL_TAR = "postgresql_tar"
GENERIC_SQL = "generic_sql"
UNKNOWN = "unknown"

SQL_FORMATS = frozenset({
    "mysql_sql",
    "postgresql_sql",
    "sqlite_sql",
    GENERIC_SQL,
})

# (marker, weight); markers are matched against lowercased text
DIALECT_MARKERS: dict[Dialect, tuple[tuple[str, int], ...]] = {
    Dialect.MYSQL: (
        ("-- mysql dump", 5),
        ("-- mariadb dump", 5),
        ("mysqldump", 3),
        ("/*!40", 3),
        ("engine=innodb", 3),
        ("engine=", 1),
        ("lock tables", 2),
        ("auto_increment", 2),
        ("set names", 1),
        ("`", 1),
    ),
    Dialect.POSTGRESQL: (
        ("-- postgresql database dump", 5),
        ("pg_dump", 3),
        ("pg_catalog", 2),
        ("set client_encoding", 2),
        ("set search_path", 2),
        ("set standard_conforming_strings", 2),
        ("setval(", 2),
        ("owner to", 2),
        ("::regclass", 2),
        ("serial", 1),
    ),
    Dialect.SQLITE: (
        ("sqlite_sequence", 3),
        ("pragma foreign_keys", 3),
        ("pragma", 1),
        ("autoincrement", 2),
        ("begin transaction", 1),
    ),
}

_SQL_KEYWORDS = re.compile(
    r"^\s*(?:CREATE|INSERT|DROP|ALTER|SELECT|SET|BEGIN|COMMIT|UPDATE|DELETE|REPLACE|COPY)\b",
    re.I | re.M,
)


@dataclass(frozen=True)
class BackupFormat:
    format_id: str
    dialect: Dialect | None = None
    compressed: bool = False

    @property
    def is_sql(self) -> bool:
        return self.format_id in SQL_FORMATS


def detect_format(path: str | os.PathLike) -> BackupFormat:
    """Classify the backup file at ``path``.

    Raises:
        BackupError: file_not_found or permission_denied if the file cannot
            be opened. An empty file is classified ``unknown``.
    """
    path = Path(path)
    if not path.is_file():
        raise BackupError.file_not_found(str(path), "detect format")
    try:
        with path.open("rb") as handle:
            head = handle.read(HEAD_BYTES)
    except PermissionError as exc:
        raise BackupError.permission_denied(str(path), "read") from exc

    if not head.startswith(GZIP_MAGIC):
        return detect_bytes(head)
    try:
        with gzip.open(path, "rb") as handle:
            head = handle.read(HEAD_BYTES)
    except (OSError, EOFError, zlib.error):
        return BackupFormat(UNKNOWN, compressed=True)
    return detect_bytes(head, compressed=True)


def detect_bytes(head: bytes, compressed: bool = False) -> BackupFormat:
    """Classify a backup from its first bytes (already decompressed)."""
    if head.startswith(SQLITE_SIGNATURE):
        return BackupFormat(SQLITE_BINARY, Dialect.SQLITE, compressed)
    if head.startswith(PGDMP_SIGNATURE):
        return BackupFormat(POSTGRESQL_CUSTOM, Dialect.POSTGRESQL, compressed)
    if head[TAR_MAGIC_OFFSET:TAR_MAGIC_OFFSET + len(TAR_MAGIC)] == TAR_MAGIC:
        return BackupFormat(POSTGRESQL_TAR, Dialect.POSTGRESQL, compressed)
    if b"\x00" in head:
        return BackupFormat(UNKNOWN, compressed=compressed)

    text = head.decode("utf-8", errors="replace").lstrip("\ufeff")
    header = read_backup_header(text)
    if header is not None and header.dialect is not None:
        return BackupFormat(f"{header.dialect.value}_sql", header.dialect, compressed)

    dialect = guess_dialect(text)
    if dialect is not None:
        return BackupFormat(f"{dialect.value}_sql", dialect, compressed)
    if _SQL_KEYWORDS.search(text):
        return BackupFormat(GENERIC_SQL, compressed=compressed)
    return BackupFormat(UNKNOWN, compressed=compressed)


def guess_dialect(text: str, max_lines: int = SCAN_LINES) -> Dialect | None:
    """Best-scoring dialect over the first ``max_lines`` lines.

    Returns ``None`` when nothing matches or the top score is tied.

    Example:
        >>> guess_dialect("CREATE TABLE `t` (id int) ENGINE=InnoDB;")
        <Dialect.MYSQL: 'mysql'>
    """
    sample = "\n".join(text.splitlines()[:max_lines]).lower()
    scores = {
        dialect: sum(weight for marker, weight in markers if marker in sample)
        for dialect, markers in DIALECT_MARKERS.items()
    }
    best = max(scores.values())
    if best == 0:
        return None
    leaders = [dialect for dialect, score in scores.items() if score == best]
    return leaders[0] if len(leaders) == 1 else None
