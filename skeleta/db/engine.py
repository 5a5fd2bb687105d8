"""
Skeleta Database — the async query executor the model layer runs on.

    db = Database("sqlite:///:memory:")
    await db.connect()
    rows = await db.fetch_all("SELECT * FROM notes WHERE member_id = ?", [1])
    await db.disconnect()

Statements use ``?`` placeholders. Driver errors surface as ``QueryFault``
(with the statement in the metadata) or ``DatabaseConnectionFault``; they
are never logged and dropped here.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence

from ..faults.domains import DatabaseConnectionFault, QueryFault
from .backends.base import AdapterCapabilities, DatabaseAdapter
from .backends.sqlite import SQLiteAdapter

logger = logging.getLogger("skeleta.db")

__all__ = [
    "Database",
    "register_adapter",
    "get_database",
    "configure_database",
    "set_database",
]

_ADAPTERS: Dict[str, Callable[[], DatabaseAdapter]] = {
    "sqlite": SQLiteAdapter,
}


def register_adapter(scheme: str, factory: Callable[[], DatabaseAdapter]) -> None:
    """Make ``Database`` accept URLs starting with ``scheme:``."""
    _ADAPTERS[scheme] = factory


def _adapter_for(url: str) -> DatabaseAdapter:
    scheme = url.split(":", 1)[0].split("+", 1)[0]
    factory = _ADAPTERS.get(scheme)
    if factory is None:
        raise DatabaseConnectionFault(
            url=url,
            reason=f"no adapter registered for scheme '{scheme}'",
        )
    return factory()


class Database:
    """Connection manager delegating every statement to one adapter."""

    __slots__ = ("_url", "_adapter", "_options", "_lock")

    def __init__(
        self,
        url: str = "sqlite:///:memory:",
        *,
        adapter: Optional[DatabaseAdapter] = None,
        **options: Any,
    ):
        self._url = url
        self._adapter = adapter or _adapter_for(url)
        self._options = options
        self._lock = asyncio.Lock()

    # ── Connection ───────────────────────────────────────────────────

    async def connect(self) -> None:
        async with self._lock:
            if self._adapter.is_connected:
                return
            try:
                await self._adapter.connect(self._url, **self._options)
            except DatabaseConnectionFault:
                raise
            except Exception as exc:
                raise DatabaseConnectionFault(url=self._url, reason=str(exc)) from exc
        logger.info(f"Database connected ({self.dialect})")

    async def disconnect(self) -> None:
        async with self._lock:
            if not self._adapter.is_connected:
                return
            await self._adapter.disconnect()
        logger.info("Database disconnected")

    async def ensure_connected(self) -> None:
        """Connect lazily on first use."""
        if not self._adapter.is_connected:
            await self.connect()

    # ── Statements ───────────────────────────────────────────────────

    async def _run(
        self,
        operation: str,
        call: Callable[[str, Sequence[Any]], Awaitable[Any]],
        sql: str,
        params: Optional[Sequence[Any]],
    ) -> Any:
        await self.ensure_connected()
        values = list(params or ())
        logger.debug(f"{operation}: {sql} {values}")
        try:
            return await call(sql, values)
        except (DatabaseConnectionFault, QueryFault):
            raise
        except Exception as exc:
            raise QueryFault(
                model="<raw>",
                operation=operation,
                reason=str(exc),
                metadata={"sql": sql[:200]},
            ) from exc

    async def execute(self, sql: str, params: Optional[Sequence[Any]] = None) -> Any:
        """Run a write or DDL statement; the cursor exposes ``lastrowid`` and ``rowcount``."""
        return await self._run("execute", self._adapter.execute, sql, params)

    async def fetch_all(
        self, sql: str, params: Optional[Sequence[Any]] = None
    ) -> List[Dict[str, Any]]:
        return await self._run("fetch_all", self._adapter.fetch_all, sql, params)

    async def fetch_one(
        self, sql: str, params: Optional[Sequence[Any]] = None
    ) -> Optional[Dict[str, Any]]:
        return await self._run("fetch_one", self._adapter.fetch_one, sql, params)

    async def fetch_val(self, sql: str, params: Optional[Sequence[Any]] = None) -> Any:
        """First column of the first row, or None."""
        return await self._run("fetch_val", self._adapter.fetch_val, sql, params)

    async def table_exists(self, table_name: str) -> bool:
        await self.ensure_connected()
        return await self._adapter.table_exists(table_name)

    # ── Properties ───────────────────────────────────────────────────

    @property
    def is_connected(self) -> bool:
        return self._adapter.is_connected

    @property
    def url(self) -> str:
        return self._url

    @property
    def dialect(self) -> str:
        return self._adapter.dialect

    @property
    def capabilities(self) -> AdapterCapabilities:
        return self._adapter.capabilities

    @property
    def adapter(self) -> DatabaseAdapter:
        return self._adapter

    def __repr__(self) -> str:
        state = "connected" if self.is_connected else "disconnected"
        return f"<Database {self._url} ({state})>"


# ── Default database ─────────────────────────────────────────────────────────

_default_database: Optional[Database] = None


def get_database() -> Database:
    """
    Raises:
        DatabaseConnectionFault: no default database has been configured.
    """
    if _default_database is None:
        raise DatabaseConnectionFault(
            url="<not configured>",
            reason="no default database; call configure_database() first",
        )
    return _default_database


def configure_database(url: str = "sqlite:///:memory:", **options: Any) -> Database:
    """Create a database and make it the default."""
    db = Database(url, **options)
    set_database(db)
    return db


def set_database(db: Optional[Database]) -> None:
    global _default_database
    _default_database = db
