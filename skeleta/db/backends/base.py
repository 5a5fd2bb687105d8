"""
Skeleta backend contract.

A backend turns parameterized SQL (``?`` placeholders) into rows. The model
layer never sees a driver object: it gets dict rows, scalars, and the
cursor of a write so it can read ``lastrowid``.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence

__all__ = [
    "DatabaseAdapter",
    "AdapterCapabilities",
]


@dataclass(frozen=True)
class AdapterCapabilities:
    """What a backend's SQL dialect can do, as far as the model layer cares."""

    name: str
    supports_truncate: bool = True


class DatabaseAdapter(ABC):
    """
    Driver wrapper used by ``Database``.

    Subclasses provide connection handling, ``execute``, ``fetch_all`` and
    ``table_exists``; single-row and scalar fetches are derived from
    ``fetch_all`` unless the driver can do better.
    """

    capabilities: AdapterCapabilities = AdapterCapabilities(name="abstract")

    @abstractmethod
    async def connect(self, url: str, **options: Any) -> None:
        ...

    @abstractmethod
    async def disconnect(self) -> None:
        ...

    @property
    @abstractmethod
    def is_connected(self) -> bool:
        ...

    @abstractmethod
    async def execute(self, sql: str, params: Sequence[Any] = ()) -> Any:
        """Run a write or DDL statement and return its cursor."""

    @abstractmethod
    async def fetch_all(self, sql: str, params: Sequence[Any] = ()) -> List[Dict[str, Any]]:
        """Run a query and return every row keyed by column name."""

    @abstractmethod
    async def table_exists(self, table_name: str) -> bool:
        ...

    async def fetch_one(self, sql: str, params: Sequence[Any] = ()) -> Optional[Dict[str, Any]]:
        rows = await self.fetch_all(sql, params)
        return rows[0] if rows else None

    async def fetch_val(self, sql: str, params: Sequence[Any] = ()) -> Any:
        row = await self.fetch_one(sql, params)
        if not row:
            return None
        return next(iter(row.values()))

    @property
    def dialect(self) -> str:
        return self.capabilities.name
