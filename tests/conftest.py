"""
Shared test fixtures for the Skeleta test suite.
"""

from types import SimpleNamespace
from typing import Any, List, Optional, Sequence

import pytest
import pytest_asyncio

from skeleta.db import Database
from skeleta.models import (
    BelongsTo,
    Column,
    DataTypes,
    HasMany,
    HasOne,
    Model,
    ModelRegistry,
)


# ============================================================================
# Registry / database
# ============================================================================


@pytest.fixture(autouse=True)
def reset_registry():
    """Reset ModelRegistry between tests to avoid cross-contamination."""
    ModelRegistry.reset()
    yield
    ModelRegistry.reset()


class CountingDatabase:
    """Database wrapper recording every SELECT issued through ``fetch_all``."""

    def __init__(self, db: Database):
        self._db = db
        self.queries: List[str] = []

    async def fetch_all(self, sql: str, params: Optional[Sequence[Any]] = None):
        self.queries.append(sql)
        return await self._db.fetch_all(sql, params)

    def selects(self, table: str) -> List[str]:
        return [sql for sql in self.queries if f'FROM "{table}"' in sql]

    def reset(self) -> None:
        self.queries.clear()

    def __getattr__(self, name: str) -> Any:
        return getattr(self._db, name)


@pytest_asyncio.fixture
async def db():
    database = Database("sqlite:///:memory:")
    await database.connect()
    counting = CountingDatabase(database)
    ModelRegistry.set_database(counting)
    yield counting
    await database.disconnect()


# ============================================================================
# Notebook domain
# ============================================================================


@pytest_asyncio.fixture
async def notebook(db):
    """Members writing notes, notes tagged through a polymorphic tag map."""

    class Member(Model):
        name = Column(DataTypes.STRING(64), allow_null=False)
        email = Column()

        notes = HasMany("Note", select=lambda name: name != "content")
        latest_notes = HasMany("Note", order="-id")
        profile = HasOne("Profile")
        only_profile = HasOne("Profile", strict=True)

    class Note(Model):
        name = Column(allow_null=False)
        content = Column(DataTypes.TEXT)
        is_private = Column(default=True)
        word_count = Column(DataTypes.INTEGER, default=0)
        member_id = Column()
        author_id = Column()
        created_at = Column()
        updated_at = Column()

        author = BelongsTo("Member", foreign_key="author_id")
        tag_maps = HasMany("TagMap", foreign_key="target_id", scope={"target_type": 1})
        tags = HasMany("Tag", through="tag_maps")

    class Tag(Model):
        name = Column(DataTypes.STRING(64), allow_null=False)

    class TagMap(Model):
        target_id = Column()
        target_type = Column(DataTypes.INTEGER)
        tag_id = Column()

        tag = BelongsTo("Tag")

    class Profile(Model):
        member_id = Column()
        bio = Column(DataTypes.TEXT)

    await ModelRegistry.create_tables()
    db.reset()
    return SimpleNamespace(
        Member=Member,
        Note=Note,
        Tag=Tag,
        TagMap=TagMap,
        Profile=Profile,
    )
