"""Line-oriented fallback statement parser.

A simpler splitter for degraded environments: statements end where a line
ends with the active terminator. Comment-only lines are skipped,
``DELIMITER`` lines switch the terminator, and PostgreSQL ``$$`` function
bodies are kept together. It does not understand terminators inside string
literals that span lines; use ``SQLScanner`` unless there is a reason not to.
"""

import re

from dbporter.dialects import Dialect
from dbporter.parser.models import Statement

_ROUTINE_START = re.compile(
    r"^\s*CREATE\s+(?:OR\s+REPLACE\s+)?(?:FUNCTION|PROCEDURE)\b", re.IGNORECASE
)


class LineParser:
    """Split SQL text on line-final terminators."""

    def __init__(self, dialect: Dialect | str | None = None) -> None:
        self.dialect = Dialect.from_value(dialect) if dialect else None

    def parse(self, text: str) -> list[Statement]:
        statements: list[Statement] = []
        delimiter = ";"
        lines: list[str] = []
        start = 0
        start_line = 1
        in_routine = False
        offset = 0

        def emit(end: int, terminator: str | None) -> None:
            body = "".join(lines).strip()
            if terminator and body.endswith(terminator):
                body = body[: -len(terminator)].rstrip()
            if body:
                statements.append(
                    Statement(
                        text=body,
                        index=len(statements),
                        start=start,
                        end=end,
                        line=start_line,
                        terminator=terminator,
                        in_routine_body=in_routine,
                    )
                )

        for number, raw in enumerate(text.splitlines(keepends=True), start=1):
            line_start = offset
            offset += len(raw)
            line = raw.strip()

            if not lines:
                if not line or line.startswith("--"):
                    continue
                if line.startswith("#") and self.dialect is Dialect.MYSQL:
                    continue
                if self._is_directive(line):
                    parts = line.split()
                    if len(parts) > 1:
                        delimiter = parts[1]
                    continue
                start = line_start + (len(raw) - len(raw.lstrip()))
                start_line = number
                in_routine = bool(
                    self.dialect in (None, Dialect.POSTGRESQL)
                    and _ROUTINE_START.match(line)
                )

            lines.append(raw)
            if not line.endswith(delimiter):
                continue
            if in_routine:
                tags = "".join(lines).count("$$")
                if tags == 0 or tags % 2:
                    continue
            emit(line_start + raw.rstrip().rfind(delimiter), delimiter)
            lines = []
            in_routine = False

        if lines:
            emit(offset, None)
        return statements

    def _is_directive(self, line: str) -> bool:
        if self.dialect not in (None, Dialect.MYSQL):
            return False
        return line.upper().startswith("DELIMITER ")
