"""Configuration loading for dbporter."""

import tomllib
from pathlib import Path

from dbporter.config.models import BackupSettings, DatabaseProfile, PorterConfig

DEFAULT_CONFIG_FILE = "dbporter.toml"


def load_config(config_path: Path | None = None) -> PorterConfig:
    """Load dbporter configuration from a TOML file.

    Args:
        config_path: Path to the config file (default: ./dbporter.toml)

    Returns:
        PorterConfig with all profiles and backup defaults

    Raises:
        FileNotFoundError: If config file doesn't exist
        ValueError: If config format is invalid
    """
    if config_path is None:
        config_path = Path.cwd() / DEFAULT_CONFIG_FILE

    if not config_path.exists():
        raise FileNotFoundError(
            f"dbporter config not found: {config_path}\n"
            f"Copy dbporter.toml.example to dbporter.toml and configure your profiles."
        )

    with open(config_path, "rb") as f:
        try:
            data = tomllib.load(f)
        except tomllib.TOMLDecodeError as e:
            raise ValueError(f"Invalid TOML in {config_path}: {e}") from e

    # Parse profiles
    profiles = {}
    for name, profile_data in data.get("profiles", {}).items():
        profiles[name] = DatabaseProfile(**profile_data)

    return PorterConfig(
        profiles=profiles,
        backup=BackupSettings(**data.get("backup", {})),
        default_profile=data.get("default_profile"),
    )
