"""External process execution with credential and log hygiene.

Usage:
    from dbporter.process import SecureProcessExecutor, Credentials
"""

from dbporter.process.executor import (
    Credentials,
    ProcessResult,
    ProcessState,
    SecureProcessExecutor,
)
from dbporter.process.redaction import redact_text, sanitize_argv, sanitize_env

__all__ = [
    "Credentials",
    "ProcessResult",
    "ProcessState",
    "SecureProcessExecutor",
    "redact_text",
    "sanitize_argv",
    "sanitize_env",
]
