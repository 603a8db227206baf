"""Backup manager factory.

Resolves a connection URL from, in order:
1. An explicit URL
2. A named profile from dbporter.toml
3. ``{PREFIX}DB_PROFILE`` env var, then ``default_profile`` in the config
"""

import logging
import os
from pathlib import Path
from urllib.parse import quote

from dbporter.backup.manager import BackupManager
from dbporter.config.loader import load_config
from dbporter.config.models import DatabaseProfile, PorterConfig
from dbporter.process.executor import SecureProcessExecutor

PASSWORD_PLACEHOLDER = "[YOUR-PASSWORD]"


# ============================================================================
# Profile Resolution
# ============================================================================


class ProfileNotFoundError(Exception):
    """Raised when no database profile or URL is configured."""

    pass


def get_active_profile_name(env_prefix: str = "", config: PorterConfig | None = None) -> str:
    """Get active profile name from env var or config default.

    Priority:
    1. {env_prefix}DB_PROFILE env var
    2. ``default_profile`` in the config
    3. Raise ProfileNotFoundError

    Args:
        env_prefix: Prefix for the environment variable (e.g. ``"APP_"``)
        config: Loaded config, consulted for ``default_profile``

    Returns:
        Profile name

    Raises:
        ProfileNotFoundError: If no profile is configured
    """
    env_var = f"{env_prefix}DB_PROFILE"
    env_profile = os.environ.get(env_var)
    if env_profile:
        return env_profile

    if config is not None and config.default_profile:
        return config.default_profile

    raise ProfileNotFoundError(
        "No database profile configured.\n"
        f"Set {env_var}=<name>, pass --profile, or pass --url."
    )


def resolve_url(profile: DatabaseProfile) -> str:
    """Resolve profile URL with password substitution.

    Args:
        profile: Database profile from config

    Returns:
        Connection URL with password substituted

    Example:
        >>> resolve_url(DatabaseProfile(url="mysql://app:[YOUR-PASSWORD]@db/app", db_password="p@ss"))
        'mysql://app:p%40ss@db/app'
    """
    url = profile.url
    if profile.db_password and PASSWORD_PLACEHOLDER in url:
        url = url.replace(PASSWORD_PLACEHOLDER, quote(profile.db_password, safe=""))
    return url


def get_profile(
    profile_name: str | None = None,
    config: PorterConfig | None = None,
    env_prefix: str = "",
    config_path: Path | None = None,
) -> tuple[str, DatabaseProfile]:
    """Get profile name and configuration.

    Raises:
        ProfileNotFoundError: If no profile is configured or the name is unknown
        FileNotFoundError: If the config file doesn't exist
    """
    if config is None:
        config = load_config(config_path)
    if profile_name is None:
        profile_name = get_active_profile_name(env_prefix, config)

    if profile_name not in config.profiles:
        available = ", ".join(config.profiles) or "none"
        raise ProfileNotFoundError(
            f"Profile '{profile_name}' not found in config.\n"
            f"Available profiles: {available}"
        )
    return profile_name, config.profiles[profile_name]


# ============================================================================
# Manager Factory
# ============================================================================


def get_manager(
    profile_name: str | None = None,
    url: str | None = None,
    config: PorterConfig | None = None,
    env_prefix: str = "",
    config_path: Path | None = None,
    executor: SecureProcessExecutor | None = None,
    logger: logging.Logger | None = None,
) -> BackupManager:
    """Build a ``BackupManager`` for a URL or a configured profile.

    Returns:
        BackupManager owning its engine; close it (or use ``async with``)

    Raises:
        ProfileNotFoundError: If neither a URL nor a usable profile is found
        FileNotFoundError: If a profile is needed and the config file is missing

    Example:
        >>> async with get_manager("staging") as manager:
        ...     await manager.create_backup("backups/staging.sql")
    """
    if url is None:
        _, profile = get_profile(profile_name, config, env_prefix, config_path)
        url = resolve_url(profile)
    return BackupManager(url, executor=executor, logger=logger)
