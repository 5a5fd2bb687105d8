"""
Skeleta Query — chainable, immutable, awaitable queries over one model.

Every chain method returns a NEW Query (immutable cloning). Terminal
methods are async; awaiting the query itself runs it::

    notes = await Note.find(member_id=1).order("-id").limit(10)
    member = await Member.find_one(name="thor").with_("notes", "notes.author")
    total = await Note.find().where("word_count > ?", 100).count()
"""

from __future__ import annotations

import logging
from typing import Any, Callable, List, Optional, Sequence, Tuple, Type, Union, TYPE_CHECKING

from ..faults.domains import QueryFault
from .attributes import AttributeRegistry, EntitySchema, quote_name
from .planner import EagerLoadPlanner, _required_keys

if TYPE_CHECKING:
    from ..db.engine import Database
    from .base import Model

logger = logging.getLogger("skeleta.models.query")

__all__ = ["Query"]


class Query:
    """
    Query over a single model.

    ``where`` accepts either attribute equality conditions
    (``where(name="thor", status=[1, 2])``) or a raw parameterized clause
    (``where("status > ?", 1)``). ``with_`` requests eager-loaded
    associations, dotted for nesting.
    """

    __slots__ = (
        "_model_cls",
        "_db",
        "_wheres",
        "_params",
        "_order_clauses",
        "_limit_val",
        "_offset_val",
        "_select_names",
        "_with_paths",
        "_single",
    )

    def __init__(self, model_cls: Type[Model], db: Optional[Database] = None):
        self._model_cls = model_cls
        self._db = db
        self._wheres: List[str] = []
        self._params: List[Any] = []
        self._order_clauses: List[Tuple[str, bool]] = []
        self._limit_val: Optional[int] = None
        self._offset_val: Optional[int] = None
        self._select_names: Optional[List[str]] = None
        self._with_paths: List[str] = []
        self._single = False

    # ── Helpers ──────────────────────────────────────────────────────

    @property
    def _schema(self) -> EntitySchema:
        return AttributeRegistry.finalize(self._model_cls)

    def _get_db(self) -> Database:
        return self._db or self._model_cls._get_db()

    def _attribute(self, name: str, operation: str):
        attr = self._schema.get(name)
        if attr is None or attr.virtual:
            raise QueryFault(
                model=self._model_cls.__name__,
                operation=operation,
                reason=f"'{name}' is not a persisted attribute",
            )
        return attr

    def _storage_value(self, attr, value: Any) -> Any:
        if value is None:
            return None
        return attr.uncast(attr.cast(value, self._model_cls.__name__), self._model_cls.__name__)

    # ── Chain methods (return new Query) ─────────────────────────────

    def where(self, clause: Optional[str] = None, *args: Any, **conditions: Any) -> Query:
        """
        Add WHERE conditions.

        Usage:
            .where(name="thor")                 # equality
            .where(status=[1, 2])               # IN
            .where(deleted_at=None)             # IS NULL
            .where("word_count > ?", 100)       # raw clause
        """
        new = self._clone()
        if clause is not None:
            new._wheres.append(clause)
            new._params.extend(args)
        for name, value in conditions.items():
            attr = self._attribute(name, "where")
            if isinstance(value, (list, tuple, set, frozenset)):
                new = new.where_in(name, value)
                continue
            column = new._column(attr.column_name)
            if value is None:
                new._wheres.append(f"{column} IS NULL")
            else:
                new._wheres.append(f"{column} = ?")
                new._params.append(self._storage_value(attr, value))
        return new

    def where_in(self, name: str, values: Sequence[Any]) -> Query:
        """WHERE <column> IN (...); an empty list matches nothing."""
        attr = self._attribute(name, "where_in")
        new = self._clone()
        values = list(values)
        if not values:
            new._wheres.append("1 = 0")
            return new
        placeholders = ", ".join("?" for _ in values)
        new._wheres.append(f"{new._column(attr.column_name)} IN ({placeholders})")
        new._params.extend(self._storage_value(attr, v) for v in values)
        return new

    def order(self, *fields: str) -> Query:
        """
        ORDER BY attribute names, prefix with '-' for DESC.

        Usage:
            .order("-created_at", "name")
        """
        new = self._clone()
        for field in fields:
            for part in field.split(","):
                part = part.strip()
                if not part:
                    continue
                descending = part.startswith("-")
                name = part[1:] if descending else part
                if " " in name:
                    name, _, direction = name.partition(" ")
                    descending = direction.strip().upper() == "DESC"
                attr = self._attribute(name, "order")
                new._order_clauses.append((attr.column_name, descending))
        return new

    def limit(self, n: int) -> Query:
        new = self._clone()
        new._limit_val = n
        return new

    def offset(self, n: int) -> Query:
        new = self._clone()
        new._offset_val = n
        return new

    def select(self, *names: Union[str, Callable[[str], bool]]) -> Query:
        """
        Restrict the projection to some attributes.

        Accepts attribute names or one predicate over attribute names.
        The primary key is always selected. Attributes left out stay
        unloaded on the returned instances.
        """
        schema = self._schema
        if len(names) == 1 and callable(names[0]):
            predicate = names[0]
            wanted = [attr.name for attr in schema.persisted if predicate(attr.name)]
        else:
            wanted = [self._attribute(name, "select").name for name in names]
        pk = schema.primary_key.name
        if pk not in wanted:
            wanted.insert(0, pk)
        new = self._clone()
        new._select_names = wanted
        return new

    def with_(self, *paths: str) -> Query:
        """
        Eager-load associations.

        Usage:
            .with_("notes")
            .with_("notes", "notes.author", "tags")
        """
        new = self._clone()
        for path in paths:
            if path not in new._with_paths:
                new._with_paths.append(path)
        return new

    def _clone(self) -> Query:
        """Create an immutable copy of this query."""
        c = Query(self._model_cls, self._db)
        c._wheres = self._wheres.copy()
        c._params = self._params.copy()
        c._order_clauses = self._order_clauses.copy()
        c._limit_val = self._limit_val
        c._offset_val = self._offset_val
        c._select_names = None if self._select_names is None else self._select_names.copy()
        c._with_paths = self._with_paths.copy()
        c._single = self._single
        return c

    # ── SQL ──────────────────────────────────────────────────────────

    def _dialect(self) -> str:
        db = self._db or self._model_cls._get_db(required=False)
        return db.dialect if db is not None else "sqlite"

    def _column(self, column: str) -> str:
        return quote_name(column, self._dialect())

    def _build_select(self, count: bool = False) -> Tuple[str, List[Any]]:
        """Build the SELECT SQL and parameter list."""
        schema = self._schema
        dialect = self._dialect()
        params = self._params.copy()

        if count:
            col = "COUNT(*)"
        else:
            names = self._select_names or [attr.name for attr in schema.persisted]
            col = ", ".join(quote_name(schema.get(n).column_name, dialect) for n in names)

        sql = f"SELECT {col} FROM {quote_name(schema.table_name, dialect)}"

        if self._wheres:
            sql += " WHERE " + " AND ".join(f"({w})" for w in self._wheres)

        if not count and self._order_clauses:
            sql += " ORDER BY " + ", ".join(
                f"{quote_name(column, dialect)} {'DESC' if desc else 'ASC'}"
                for column, desc in self._order_clauses
            )

        if not count and self._limit_val is not None:
            sql += f" LIMIT {int(self._limit_val)}"
        if not count and self._offset_val is not None:
            if self._limit_val is None:
                sql += " LIMIT -1"
            sql += f" OFFSET {int(self._offset_val)}"

        return sql, params

    # ── Terminal methods (async, execute query) ──────────────────────

    async def all(self) -> List[Model]:
        """Execute and return all matching rows as model instances."""
        plan = EagerLoadPlanner.plan(self._model_cls, self._with_paths) if self._with_paths else None
        query = self
        if plan is not None and self._select_names is not None:
            # eager loads read foreign keys off the root rows
            missing = sorted(_required_keys(plan) - set(self._select_names))
            if missing:
                query = self._clone()
                query._select_names.extend(missing)
        sql, params = query._build_select()
        rows = await self._get_db().fetch_all(sql, params)
        instances = [self._model_cls._from_row(row, query._select_names) for row in rows]
        if plan is not None and instances:
            await EagerLoadPlanner.execute(plan, instances)
        return instances

    async def first(self) -> Optional[Model]:
        """Return first matching row or None."""
        results = await self.limit(1).all()
        return results[0] if results else None

    async def count(self) -> int:
        """Return count of matching rows."""
        sql, params = self._build_select(count=True)
        val = await self._get_db().fetch_val(sql, params)
        return int(val) if val else 0

    async def _run(self) -> Any:
        if self._single:
            return await self.first()
        return await self.all()

    def __await__(self):
        return self._run().__await__()

    def __aiter__(self):
        """
        Async iteration over query results.

        Usage:
            async for note in Note.find(member_id=1):
                print(note.name)
        """
        return _QueryIterator(self)

    def __repr__(self) -> str:
        sql, params = self._build_select()
        return f"<Query: {sql} {params}>"

    @property
    def sql(self) -> str:
        """Return the SELECT statement that would be executed."""
        sql, _ = self._build_select()
        return sql


class _QueryIterator:
    """Async iterator for queries."""

    def __init__(self, query: Query):
        self._query = query
        self._results: Optional[List] = None
        self._index = 0

    def __aiter__(self):
        return self

    async def __anext__(self):
        if self._results is None:
            self._results = await self._query.all()
        if self._index >= len(self._results):
            raise StopAsyncIteration
        item = self._results[self._index]
        self._index += 1
        return item
