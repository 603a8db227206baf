"""Pydantic models for dbporter configuration."""

from pydantic import BaseModel, Field


# ============================================================================
# Configuration Models
# ============================================================================


class DatabaseProfile(BaseModel):
    """Database connection profile from dbporter.toml."""

    url: str
    description: str = ""
    db_password: str | None = None  # For [YOUR-PASSWORD] placeholder substitution
    dialect: str | None = None  # Informational; the URL scheme decides


class BackupSettings(BaseModel):
    """Defaults applied by the CLI to backup and restore runs."""

    output_dir: str = "backups"
    timeout: float = Field(default=1800, gt=0)
    compress: bool = False
    stop_on_error: bool = False
    validate_statements: bool = True


class PorterConfig(BaseModel):
    """Complete configuration from dbporter.toml."""

    profiles: dict[str, DatabaseProfile] = Field(default_factory=dict)
    backup: BackupSettings = Field(default_factory=BackupSettings)
    default_profile: str | None = None
