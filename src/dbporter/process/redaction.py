"""Secret redaction for commands, environments and log text.

Every command line, environment mapping or message that may end up in a
log record or a result object goes through one of these functions first.

Usage:
    from dbporter.process.redaction import sanitize_argv

    sanitize_argv(["mysql", "--password=secret", "db"])
    # ['mysql', '[PASSWORD_HIDDEN]', 'db']
"""

import re
from collections.abc import Iterable, Mapping, Sequence

PASSWORD_HIDDEN = "[PASSWORD_HIDDEN]"
HIDDEN = "[HIDDEN]"

_PASSWORD_ASSIGNMENT = re.compile(r"(password\s*=\s*)[^&\s;]*", re.IGNORECASE)
_URL_USERINFO = re.compile(r"(\b[a-z][a-z0-9+.\-]*://[^:/@\s]+:)([^@\s]*)(@)", re.IGNORECASE)
_SECRET_KEY = re.compile(r"PASS|PWD|SECRET|TOKEN", re.IGNORECASE)


def _is_password_flag(arg: str) -> bool:
    if arg.startswith("--password"):
        return True
    # MySQL client style -pSECRET (value attached to the flag)
    return arg.startswith("-p") and not arg.startswith("--") and len(arg) > 2


def redact_text(text: str, secrets: Iterable[str] = ()) -> str:
    """Mask passwords in free-form text (URLs, ``password=`` pairs, known values)."""
    if not text:
        return text
    for secret in secrets:
        if secret:
            text = text.replace(secret, HIDDEN)
    text = _URL_USERINFO.sub(rf"\1{HIDDEN}\3", text)
    return _PASSWORD_ASSIGNMENT.sub(rf"\1{HIDDEN}", text)


def sanitize_argv(argv: Sequence[str], secrets: Iterable[str] = ()) -> list[str]:
    """Copy of ``argv`` that is safe to log.

    Example:
        >>> sanitize_argv(["psql", "postgresql://u:pw@h/db"])
        ['psql', 'postgresql://u:[HIDDEN]@h/db']
    """
    secrets = [secret for secret in secrets if secret]
    sanitized: list[str] = []
    for arg in argv:
        arg = str(arg)
        if _is_password_flag(arg):
            sanitized.append(PASSWORD_HIDDEN)
        else:
            sanitized.append(redact_text(arg, secrets))
    return sanitized


def sanitize_env(env: Mapping[str, str] | None) -> dict[str, str]:
    """Copy of ``env`` with secret-looking values masked."""
    if not env:
        return {}
    return {key: HIDDEN if _SECRET_KEY.search(key) else value for key, value in env.items()}


def contains_secret(argv: Sequence[str], secret: str) -> bool:
    """Whether ``secret`` appears anywhere on the command line."""
    return bool(secret) and any(secret in str(arg) for arg in argv)
