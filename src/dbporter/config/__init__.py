"""Configuration management: profiles, TOML loading, and config models.

Usage:
    >>> from dbporter.config import load_config, DatabaseProfile, PorterConfig
"""

from dbporter.config.loader import DEFAULT_CONFIG_FILE, load_config
from dbporter.config.models import BackupSettings, DatabaseProfile, PorterConfig

__all__ = ["load_config", "BackupSettings", "DatabaseProfile", "PorterConfig", "DEFAULT_CONFIG_FILE"]
