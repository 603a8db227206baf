"""Per-dialect session setup/teardown and sequence-statement detection."""

import re
from collections.abc import Iterable
from dataclasses import dataclass, field

from dbporter.backup.models import RestoreOptions
from dbporter.dialects import Dialect
from dbporter.parser import Statement


@dataclass
class SessionPlan:
    """Statements run before and after the main restore pass."""

    setup: list[str] = field(default_factory=list)
    teardown: list[str] = field(default_factory=list)


def session_plan(dialect: Dialect, options: RestoreOptions) -> SessionPlan:
    """Setup/teardown for ``dialect`` under ``options``.

    MySQL saves and restores each session variable it changes. PostgreSQL
    disables triggers (and with them FK enforcement) through
    ``session_replication_role``. SQLite defers FK checks to commit inside
    a transaction and switches them off otherwise.
    """
    plan = SessionPlan()
    if dialect is Dialect.MYSQL:
        if options.foreign_keys_disabled:
            plan.setup.append("SET @DBPORTER_OLD_FK_CHECKS=@@FOREIGN_KEY_CHECKS, FOREIGN_KEY_CHECKS=0")
            plan.teardown.append("SET FOREIGN_KEY_CHECKS=@DBPORTER_OLD_FK_CHECKS")
        if options.unique_checks_disabled:
            plan.setup.append("SET @DBPORTER_OLD_UNIQUE_CHECKS=@@UNIQUE_CHECKS, UNIQUE_CHECKS=0")
            plan.teardown.append("SET UNIQUE_CHECKS=@DBPORTER_OLD_UNIQUE_CHECKS")
        plan.setup.append("SET @DBPORTER_OLD_SQL_MODE=@@SQL_MODE, SQL_MODE='NO_AUTO_VALUE_ON_ZERO'")
        plan.setup.append("SET @DBPORTER_OLD_TIME_ZONE=@@TIME_ZONE, TIME_ZONE='+00:00'")
        plan.teardown.append("SET SQL_MODE=@DBPORTER_OLD_SQL_MODE")
        plan.teardown.append("SET TIME_ZONE=@DBPORTER_OLD_TIME_ZONE")
    elif dialect is Dialect.POSTGRESQL:
        if options.foreign_keys_disabled:
            plan.setup.append("SET session_replication_role = replica")
            plan.teardown.append("SET session_replication_role = DEFAULT")
    elif dialect is Dialect.SQLITE:
        if options.foreign_keys_disabled:
            if options.execute_in_transaction:
                plan.setup.append("PRAGMA defer_foreign_keys = ON")
            else:
                plan.setup.append("PRAGMA foreign_keys = OFF")
                plan.teardown.append("PRAGMA foreign_keys = ON")
    return plan


# ============================================================================
# Sequence statements
# ============================================================================

SEQUENCE_PATTERNS: dict[Dialect, tuple[re.Pattern, ...]] = {
    Dialect.POSTGRESQL: (
        re.compile(r"^\s*SELECT\s+(?:pg_catalog\.)?setval\s*\(", re.I),
        re.compile(r"^\s*ALTER\s+SEQUENCE\s+.*\bRESTART\b", re.I | re.S),
    ),
    Dialect.MYSQL: (
        re.compile(r"^\s*ALTER\s+TABLE\s+\S+\s+AUTO_INCREMENT\s*=?\s*\d+\s*$", re.I),
    ),
    Dialect.SQLITE: (
        re.compile(r"^\s*UPDATE\s+[\"`\[]?sqlite_sequence\b", re.I),
    ),
}


def is_sequence_statement(text: str, dialect: Dialect) -> bool:
    return any(pattern.match(text) for pattern in SEQUENCE_PATTERNS.get(dialect, ()))


def sequence_statements(statements: Iterable[Statement], dialect: Dialect) -> list[Statement]:
    """Sequence/auto-increment statements of ``statements``, in file order."""
    return [s for s in statements if is_sequence_statement(s.text, dialect)]
