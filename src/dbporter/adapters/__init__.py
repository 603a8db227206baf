"""Connection layer: URL parsing and async engine construction.

Usage:
    from dbporter.adapters import ConnectionInfo, create_async_engine_pooled
"""

from dbporter.adapters.base import ConnectionInfo
from dbporter.adapters.engine import create_async_engine_pooled, test_connection

__all__ = [
    "ConnectionInfo",
    "create_async_engine_pooled",
    "test_connection",
]
