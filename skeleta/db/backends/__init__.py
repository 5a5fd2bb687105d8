"""
Skeleta DB backends.

Only the SQLite adapter ships with Skeleta; other engines plug in by
implementing ``DatabaseAdapter``.
"""

from .base import DatabaseAdapter, AdapterCapabilities
from .sqlite import SQLiteAdapter

__all__ = [
    "DatabaseAdapter",
    "AdapterCapabilities",
    "SQLiteAdapter",
]
