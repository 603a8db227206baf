"""dbporter: cross-dialect backup and restore for MySQL, SQLite and PostgreSQL.

Picks the best available strategy per database (native tools, the SQLite
backup API, or in-process SQL generation), restores with per-dialect
session handling, converts dumps between dialects and copies live
databases across dialects with row-count verification.

Usage:
    from dbporter import BackupManager, BackupOptions, RestoreOptions
    from dbporter import get_manager, load_config, translate_dump
    from dbporter import BackupError, ErrorKind, Dialect
    from dbporter import Migrator, MigrationOptions
"""

import logging

__version__ = "0.1.0"

logging.getLogger(__name__).addHandler(logging.NullHandler())

# Dialects and errors
from dbporter.dialects import Dialect
from dbporter.errors import BackupError, ErrorKind, ParseError, UnsupportedFeatureError

# Connection layer
from dbporter.adapters.base import ConnectionInfo
from dbporter.adapters.engine import create_async_engine_pooled

# Models
from dbporter.backup.models import (
    BackupEstimate,
    BackupOptions,
    BackupResult,
    CapabilityReport,
    RestoreOptions,
    RestoreResult,
    ValidationReport,
)

# Parsing and schema
from dbporter.parser import Statement, get_parser
from dbporter.schema.translator import SchemaTranslator, translate_dump

# Migration
from dbporter.migration import MigrationOptions, MigrationResult, Migrator

# Process execution
from dbporter.process.executor import SecureProcessExecutor

# Restore and strategies
from dbporter.restore.orchestrator import RestoreOrchestrator
from dbporter.strategies.factory import StrategyFactory
from dbporter.strategies.formats import detect_format

# Facade, config and factory
from dbporter.backup.manager import BackupManager
from dbporter.config.loader import load_config
from dbporter.config.models import DatabaseProfile, PorterConfig
from dbporter.factory import ProfileNotFoundError, get_manager, resolve_url

__all__ = [
    # Dialects and errors
    "Dialect",
    "BackupError",
    "ErrorKind",
    "ParseError",
    "UnsupportedFeatureError",
    # Connection layer
    "ConnectionInfo",
    "create_async_engine_pooled",
    # Models
    "BackupEstimate",
    "BackupOptions",
    "BackupResult",
    "CapabilityReport",
    "RestoreOptions",
    "RestoreResult",
    "ValidationReport",
    # Parsing and schema
    "Statement",
    "get_parser",
    "SchemaTranslator",
    "translate_dump",
    # Migration
    "MigrationOptions",
    "MigrationResult",
    "Migrator",
    # Process execution
    "SecureProcessExecutor",
    # Restore and strategies
    "RestoreOrchestrator",
    "StrategyFactory",
    "detect_format",
    # Facade, config and factory
    "BackupManager",
    "load_config",
    "DatabaseProfile",
    "PorterConfig",
    "ProfileNotFoundError",
    "get_manager",
    "resolve_url",
]
