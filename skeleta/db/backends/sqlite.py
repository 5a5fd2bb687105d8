"""
SQLite backend on aiosqlite.

Rows come back as dicts through a connection-level row factory. Every
``execute`` commits, so a write is durable once the call returns.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Sequence

import aiosqlite

from ...faults.domains import DatabaseConnectionFault
from .base import AdapterCapabilities, DatabaseAdapter

logger = logging.getLogger("skeleta.db.backends.sqlite")

__all__ = ["SQLiteAdapter"]

MEMORY = ":memory:"


def _dict_row(cursor: Any, row: tuple) -> Dict[str, Any]:
    return {column[0]: value for column, value in zip(cursor.description, row)}


class SQLiteAdapter(DatabaseAdapter):
    """aiosqlite connection speaking the ``sqlite`` dialect."""

    capabilities = AdapterCapabilities(
        name="sqlite",
        supports_truncate=False,
    )

    def __init__(self):
        self._connection: Optional[aiosqlite.Connection] = None
        self._path: Optional[str] = None

    @staticmethod
    def _parse_url(url: str) -> str:
        """``sqlite:///notes.db`` gives ``notes.db``; an empty path means in-memory."""
        for prefix in ("sqlite:///", "sqlite://"):
            if url.startswith(prefix):
                return url[len(prefix):] or MEMORY
        return url

    async def connect(self, url: str, **options: Any) -> None:
        if self._connection is not None:
            return
        path = self._parse_url(url)
        connection = await aiosqlite.connect(path, **options)
        connection.row_factory = _dict_row
        if path != MEMORY:
            await connection.execute("PRAGMA journal_mode=WAL")
        self._connection = connection
        self._path = path
        logger.info(f"SQLite connected: {path}")

    async def disconnect(self) -> None:
        if self._connection is None:
            return
        connection, self._connection = self._connection, None
        await connection.close()
        logger.info(f"SQLite disconnected: {self._path}")

    @property
    def is_connected(self) -> bool:
        return self._connection is not None

    def _require(self) -> aiosqlite.Connection:
        if self._connection is None:
            raise DatabaseConnectionFault(
                url=f"sqlite:///{self._path or MEMORY}",
                reason="adapter is not connected",
            )
        return self._connection

    async def execute(self, sql: str, params: Sequence[Any] = ()) -> Any:
        connection = self._require()
        cursor = await connection.execute(sql, tuple(params))
        await connection.commit()
        return cursor

    async def fetch_all(self, sql: str, params: Sequence[Any] = ()) -> List[Dict[str, Any]]:
        async with self._require().execute(sql, tuple(params)) as cursor:
            return list(await cursor.fetchall())

    async def fetch_one(self, sql: str, params: Sequence[Any] = ()) -> Optional[Dict[str, Any]]:
        async with self._require().execute(sql, tuple(params)) as cursor:
            return await cursor.fetchone()

    async def table_exists(self, table_name: str) -> bool:
        row = await self.fetch_one(
            "SELECT 1 AS found FROM sqlite_master WHERE type = 'table' AND name = ?",
            [table_name],
        )
        return row is not None
