"""Read backup files and their dbporter header.

SQL backups written by dbporter start with a comment header::

    -- dbporter 0.1.0 SQL backup
    -- Dialect: mysql
    -- Target-Dialect: postgresql
    -- Strategy: mysql_sql
    -- Created: 2026-01-01T00:00:00+00:00

``Target-Dialect`` is only present when a cross-dialect restore was
requested at backup time. Files from other tools have no header.
"""

import gzip
import os
import zlib
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path

from dbporter.dialects import Dialect
from dbporter.errors import BackupError

HEADER_MARKER = "-- dbporter"
GZIP_MAGIC = b"\x1f\x8b"
_BINARY_SIGNATURES = (b"SQLite format 3\x00", b"PGDMP")


@dataclass
class BackupHeader:
    dialect: Dialect | None = None
    target_dialect: Dialect | None = None
    strategy: str | None = None
    created: str | None = None
    version: str | None = None

    @property
    def needs_translation(self) -> bool:
        return (
            self.dialect is not None
            and self.target_dialect is not None
            and self.dialect is not self.target_dialect
        )


def check_backup_path(path: str | os.PathLike) -> Path:
    """Fail fast on a missing, unreadable or empty backup file.

    Raises:
        BackupError: file_not_found, permission_denied or file_empty.
    """
    path = Path(path)
    if not path.is_file():
        raise BackupError.file_not_found(str(path))
    if not os.access(path, os.R_OK):
        raise BackupError.permission_denied(str(path), "read")
    if path.stat().st_size == 0:
        raise BackupError.file_empty(str(path))
    return path


def read_backup_bytes(path: str | os.PathLike) -> bytes:
    """Raw (decompressed) bytes of a backup file.

    Raises:
        BackupError: As ``check_backup_path``, plus file_corrupt for a bad
            gzip stream.
    """
    path = check_backup_path(path)
    try:
        raw = path.read_bytes()
    except PermissionError as exc:
        raise BackupError.permission_denied(str(path), "read") from exc
    except OSError as exc:
        raise BackupError.file_corrupt(str(path), f"unreadable: {exc.strerror or exc}") from exc

    if raw.startswith(GZIP_MAGIC):
        try:
            raw = gzip.decompress(raw)
        except (OSError, EOFError, zlib.error) as exc:
            raise BackupError.file_corrupt(str(path), "invalid gzip stream") from exc
        if not raw:
            raise BackupError.file_empty(str(path))
    return raw


def read_backup_file(path: str | os.PathLike) -> str:
    """Text of a SQL backup, gzip-decompressed transparently.

    Raises:
        BackupError: As ``read_backup_bytes``, plus file_corrupt for binary
            formats and text that is not valid UTF-8.
    """
    raw = read_backup_bytes(path)
    if raw.startswith(_BINARY_SIGNATURES):
        raise BackupError.file_corrupt(str(path), "binary backup format is not a SQL script")
    try:
        text = raw.decode("utf-8-sig")
    except UnicodeDecodeError as exc:
        raise BackupError.file_corrupt(
            str(path), f"not valid UTF-8 text at byte {exc.start}"
        ) from exc
    if "\x00" in text:
        raise BackupError.file_corrupt(str(path), "unexpected NUL bytes in SQL text")
    return text


def read_backup_header(text: str) -> BackupHeader | None:
    """Parse the dbporter header at the top of ``text``, if present."""
    lines = text.lstrip().splitlines()
    if not lines or not lines[0].startswith(HEADER_MARKER):
        return None
    parts = lines[0].split()
    header = BackupHeader(version=parts[2] if len(parts) > 2 else None)
    for line in lines[1:20]:
        if not line.startswith("--"):
            break
        key, sep, value = line[2:].partition(":")
        if not sep:
            continue
        key = key.strip().lower()
        value = value.strip()
        if key == "dialect":
            header.dialect = _dialect_or_none(value)
        elif key == "target-dialect":
            header.target_dialect = _dialect_or_none(value)
        elif key == "strategy":
            header.strategy = value
        elif key == "created":
            header.created = value
    return header


def format_backup_header(
    dialect: Dialect,
    strategy: str,
    version: str,
    target_dialect: Dialect | None = None,
) -> str:
    """Header lines for a new SQL backup (newline-terminated)."""
    lines = [
        f"{HEADER_MARKER} {version} SQL backup",
        f"-- Dialect: {dialect.value}",
    ]
    if target_dialect is not None and target_dialect is not dialect:
        lines.append(f"-- Target-Dialect: {target_dialect.value}")
    lines.append(f"-- Strategy: {strategy}")
    lines.append(f"-- Created: {datetime.now(timezone.utc).isoformat(timespec='seconds')}")
    return "\n".join(lines) + "\n"


def _dialect_or_none(value: str) -> Dialect | None:
    try:
        return Dialect.from_value(value)
    except ValueError:
        return None
