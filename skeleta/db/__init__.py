"""
Skeleta Database — async query executor used by the ORM core.

Provides:
- Database: connection manager delegating to a backend adapter
- SQLite driver (aiosqlite)
- Module-level accessors for the default database
- Structured faults (DatabaseConnectionFault, QueryFault)
"""

from .engine import (
    Database,
    register_adapter,
    get_database,
    configure_database,
    set_database,
)

from .backends import (
    DatabaseAdapter,
    AdapterCapabilities,
    SQLiteAdapter,
)

from ..faults.domains import (
    DatabaseConnectionFault,
    QueryFault,
)

__all__ = [
    "Database",
    "register_adapter",
    "DatabaseConnectionFault",
    "QueryFault",
    "get_database",
    "configure_database",
    "set_database",
    "DatabaseAdapter",
    "AdapterCapabilities",
    "SQLiteAdapter",
]
