"""
Skeleta Model base class — declaration front-end and entity runtime.

Define models by subclassing and declaring attributes and associations:

    class Note(Model):
        table = "notes"

        id = Column()
        name = Column(allow_null=False, validate={"not_in": [["zeus"]]})
        is_private = Column(default=True)
        content = Column(DataTypes.TEXT)
        member_id = Column()
        created_at = Column()

        author = BelongsTo("Member", foreign_key="member_id")

    class Member(Model):
        name = Column(DataTypes.STRING(64))
        notes = HasMany("Note", select=lambda name: name != "content")

API:
    await Member.sync()                                  # finalize, resolve, create table
    member = await Member.create(name="thor")
    member = await Member.find_one(name="thor").with_("notes")
    notes = await Note.find(member_id=member.id).order("-id")
    member.name = "loki"
    await member.save()
    await member.reload()
"""

from __future__ import annotations

import datetime
import logging
from collections import OrderedDict
from typing import Any, ClassVar, Dict, List, Optional, Tuple, TYPE_CHECKING

from ..faults.domains import (
    CoercionFault,
    DatabaseConnectionFault,
    MissingPrimaryKeyFault,
    ModelNotFoundFault,
)
from .associations import BELONGS_TO, HAS_MANY, HAS_ONE, AssociationGraph
from .attributes import UNSET, AttributeMeta, AttributeRegistry, EntitySchema, quote_name
from .query import Query
from .registry import ModelRegistry
from .validators import ValidationPipeline

if TYPE_CHECKING:
    from ..db.engine import Database

logger = logging.getLogger("skeleta.models.base")

__all__ = ["Model", "ModelMeta", "Column", "HasMany", "HasOne", "BelongsTo"]

_MISSING = object()

TIMESTAMPS = ("created_at", "updated_at")


# ── Declarations ─────────────────────────────────────────────────────────────


class Column:
    """
    Attribute declaration and instance-level access descriptor.

    Usage:
        name = Column(DataTypes.STRING(64), allow_null=False)
        gmt_create = Column(DataTypes.DATETIME, name="gmt_create")

        @name.setter
        def name(self, value):
            self.attribute("name", value.strip())

        @name.getter
        def name(self):
            return self.attribute("name").upper()
    """

    def __init__(
        self,
        type: Any = None,
        *,
        name: Optional[str] = None,
        column: Optional[str] = None,
        allow_null: bool = True,
        default: Any = UNSET,
        primary_key: bool = False,
        auto_increment: Optional[bool] = None,
        unique: bool = False,
        comment: Optional[str] = None,
        validate: Optional[Dict[str, Any]] = None,
        validators: Optional[List[Any]] = None,
        get: Any = None,
        set: Any = None,
    ):
        options: Dict[str, Any] = {
            "allow_null": allow_null,
            "primary_key": primary_key,
            "unique": unique,
        }
        for key, value in (
            ("type", type), ("name", name), ("column", column),
            ("auto_increment", auto_increment), ("comment", comment),
            ("validate", validate), ("validators", validators),
            ("get", get), ("set", set),
        ):
            if value is not None:
                options[key] = value
        if default is not UNSET:
            options["default"] = default
        self.options = options
        self.attr_name: Optional[str] = None

    def getter(self, fn):
        self.options["get"] = fn
        return self

    def setter(self, fn):
        self.options["set"] = fn
        return self

    def __set_name__(self, owner: type, name: str) -> None:
        self.attr_name = name

    def __get__(self, instance: Any, owner: Optional[type] = None) -> Any:
        if instance is None:
            return self
        return instance._read(self.attr_name)

    def __set__(self, instance: Any, value: Any) -> None:
        instance._write(self.attr_name, value)

    def __repr__(self) -> str:
        return f"<Column: {self.attr_name}>"


class Relation:
    """Base association declaration; reads return the eager-loaded value."""

    kind: str = ""

    def __init__(self, target: Any = None, **options: Any):
        if target is not None:
            options["target"] = target
        self.options = options
        self.attr_name: Optional[str] = None

    def __set_name__(self, owner: type, name: str) -> None:
        self.attr_name = name

    def __get__(self, instance: Any, owner: Optional[type] = None) -> Any:
        if instance is None:
            return self
        return instance._associations.get(self.attr_name)

    def __set__(self, instance: Any, value: Any) -> None:
        instance._attach(self.attr_name, value)

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__}: {self.attr_name}>"


class HasMany(Relation):
    """The target holds a foreign key to this model's primary key."""

    kind = HAS_MANY


class HasOne(Relation):
    """Like HasMany, keeping a single row (``strict=True`` rejects extras)."""

    kind = HAS_ONE


class BelongsTo(Relation):
    """This model holds the foreign key of the target."""

    kind = BELONGS_TO


# ── Metaclass ────────────────────────────────────────────────────────────────


class ModelMeta(type):
    """
    Metaclass for Skeleta models.

    Handles:
    - Table name from ``table = "..."`` or ``Meta.table``
    - Attribute registration (``Column``) with the explicit parent model
    - Association declaration (``HasMany`` / ``HasOne`` / ``BelongsTo``)
    - Schema finalization, so configuration faults surface at class creation
    - Model registration in ModelRegistry
    """

    def __new__(
        mcs,
        name: str,
        bases: Tuple[type, ...],
        namespace: Dict[str, Any],
        **kwargs,
    ) -> ModelMeta:
        # Don't process the base Model class itself
        parents = [b for b in bases if isinstance(b, ModelMeta)]
        if not parents:
            return super().__new__(mcs, name, bases, namespace)

        meta_class = namespace.pop("Meta", None)
        table = None
        for key in ("table", "table_name"):
            # a Column may be named "table"
            if isinstance(namespace.get(key), str):
                value = namespace.pop(key)
                table = table or value
        table = (
            table
            or getattr(meta_class, "table", None)
            or getattr(meta_class, "table_name", None)
        )

        cls = super().__new__(mcs, name, bases, namespace)

        parent = parents[0] if parents[0].__dict__.get("_concrete") else None
        cls._concrete = True

        AttributeRegistry.declare_model(cls, parent=parent, table=table)
        AssociationGraph.declare_model(cls, parent=parent)

        for key, value in namespace.items():
            if isinstance(value, Column):
                AttributeRegistry.register(cls, key, value.options)
            elif isinstance(value, Relation):
                AssociationGraph.declare(cls, key, value.kind, value.options)

        schema = AttributeRegistry.finalize(cls)
        for attr in schema:
            if not isinstance(getattr(cls, attr.name, None), Column):
                # implicit primary key
                descriptor = Column()
                descriptor.__set_name__(cls, attr.name)
                setattr(cls, attr.name, descriptor)

        ModelRegistry.register(cls)
        return cls


# ── Model ────────────────────────────────────────────────────────────────────


class Model(metaclass=ModelMeta):
    """
    Skeleta Model base class — async-first mapped record.

    Each instance owns its attribute values, the set of attributes changed
    since load or last save, and the associations loaded onto it.
    """

    _db: ClassVar[Optional[Database]] = None

    def __init__(self, **values: Any):
        """Create a model instance (in-memory, not persisted)."""
        self._init_state()
        schema = self._schema()
        for attr in schema.persisted:
            if attr.name not in values and attr.has_default():
                self.attribute(attr.name, attr.get_default())
        for key, value in values.items():
            if key not in schema:
                raise TypeError(f"{self.__class__.__name__} has no attribute '{key}'")
            setattr(self, key, value)

    def _init_state(self) -> None:
        object.__setattr__(self, "_values", {})
        object.__setattr__(self, "_dirty", set())
        object.__setattr__(self, "_uncast", set())
        object.__setattr__(self, "_persisted", False)
        object.__setattr__(self, "_associations", {})

    def __setattr__(self, name: str, value: Any) -> None:
        if not name.startswith("_") and not hasattr(type(self), name) and name in self._schema():
            self._write(name, value)
            return
        object.__setattr__(self, name, value)

    def __getattr__(self, name: str) -> Any:
        # Attributes registered after class creation have no descriptor
        if not name.startswith("_") and name in self._schema():
            return self._read(name)
        raise AttributeError(f"'{type(self).__name__}' object has no attribute '{name}'")

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} pk={self.pk}>"

    def __eq__(self, other: Any) -> bool:
        if not isinstance(other, Model):
            return NotImplemented
        if type(other) is not type(self) or self.pk is None:
            return self is other
        return self.pk == other.pk

    def __hash__(self) -> int:
        return hash((self.__class__.__name__, self.pk))

    # ── Schema / DB ──────────────────────────────────────────────────

    @classmethod
    def _schema(cls) -> EntitySchema:
        return AttributeRegistry.finalize(cls)

    @classmethod
    def _get_db(cls, required: bool = True) -> Optional[Database]:
        """Get database connection."""
        db = cls._db or ModelRegistry.get_database()
        if db is None:
            from ..db.engine import get_database
            try:
                db = get_database()
            except DatabaseConnectionFault:
                if required:
                    raise
                return None
        return db

    @classmethod
    def initialize(cls) -> EntitySchema:
        """Finalize the schema and resolve associations, without touching storage."""
        schema = cls._schema()
        AssociationGraph.resolve(cls)
        return schema

    @classmethod
    async def sync(cls, force: bool = False, db: Optional[Database] = None) -> str:
        """
        Finalize, resolve associations and create the table.

        Args:
            force: Drop the table first.
            db: Database to use instead of the bound one.

        Returns:
            The CREATE TABLE statement that was run.
        """
        schema = cls.initialize()
        db = db or cls._get_db()
        dialect = db.dialect
        table = quote_name(schema.table_name, dialect)
        if force:
            await db.execute(f"DROP TABLE IF EXISTS {table}")
        sql = schema.create_table_sql(dialect)
        await db.execute(sql)
        logger.info(f"Synced {cls.__name__} -> {schema.table_name}")
        return sql

    @classmethod
    async def truncate(cls) -> None:
        """Delete every row of the table."""
        schema = cls._schema()
        db = cls._get_db()
        table = quote_name(schema.table_name, db.dialect)
        if db.capabilities.supports_truncate:
            await db.execute(f"TRUNCATE TABLE {table}")
        else:
            await db.execute(f"DELETE FROM {table}")

    # ── Query API ────────────────────────────────────────────────────

    @classmethod
    def query(cls) -> Query:
        """Start a query chain."""
        return Query(cls)

    @classmethod
    def find(cls, clause: Any = None, *args: Any, **conditions: Any) -> Query:
        """
        Query rows; awaiting the result yields a list.

        Usage:
            await Note.find(member_id=1)
            await Note.find("word_count > ?", 100)
            await Note.find(1)                       # by primary key
        """
        query = cls.query()
        if clause is None:
            return query.where(**conditions)
        if isinstance(clause, str):
            return query.where(clause, *args, **conditions)
        pk = cls._schema().primary_key.name
        return query.where(**{pk: clause}, **conditions)

    @classmethod
    def find_one(cls, clause: Any = None, *args: Any, **conditions: Any) -> Query:
        """Like ``find`` but awaiting yields the first row or None."""
        query = cls.find(clause, *args, **conditions).limit(1)
        query._single = True
        return query

    @classmethod
    def find_all(cls, **conditions: Any) -> Query:
        return cls.find(**conditions)

    @classmethod
    def find_by_pk(cls, pk: Any) -> Query:
        pk_name = cls._schema().primary_key.name
        return cls.find_one(**{pk_name: pk})

    @classmethod
    def with_(cls, *paths: str) -> Query:
        return cls.query().with_(*paths)

    @classmethod
    async def count(cls, **conditions: Any) -> int:
        return await cls.find(**conditions).count()

    @classmethod
    async def create(cls, **values: Any) -> Model:
        """
        Create and persist a new record.

        Usage:
            member = await Member.create(name="thor")
        """
        instance = cls(**values)
        await instance.save()
        return instance

    @classmethod
    def _from_row(cls, row: Dict[str, Any], names: Optional[List[str]] = None) -> Model:
        """Create a persisted instance from a database row dict."""
        instance = cls.__new__(cls)
        instance._init_state()
        schema = cls._schema()
        wanted = set(names) if names is not None else None
        for attr in schema.persisted:
            if wanted is not None and attr.name not in wanted:
                continue
            if attr.column_name in row:
                instance._values[attr.name] = attr.cast(row[attr.column_name], cls.__name__)
        instance._persisted = True
        return instance

    # ── Attribute access ─────────────────────────────────────────────

    @property
    def pk(self) -> Any:
        return self._values.get(self._schema().primary_key.name)

    def _attribute_meta(self, name: str) -> AttributeMeta:
        attr = self._schema().get(name)
        if attr is None:
            raise AttributeError(f"{self.__class__.__name__} has no attribute '{name}'")
        return attr

    def _read(self, name: str) -> Any:
        attr = self._attribute_meta(name)
        if attr.getter is not None:
            return attr.getter(self)
        return self._values.get(name)

    def _write(self, name: str, value: Any) -> None:
        attr = self._attribute_meta(name)
        if attr.setter is not None:
            attr.setter(self, value)
            return
        if attr.virtual:
            raise CoercionFault(
                self.__class__.__name__, name, attr.kind, value,
                "virtual attribute without a setter cannot be written",
            )
        self.attribute(name, value)

    def attribute(self, name: str, value: Any = _MISSING) -> Any:
        """
        Read or write the raw attribute value, bypassing getter and setter.

        Writes are coerced to the attribute's data kind and mark the
        attribute dirty when the value changes. A value that does not fit
        is kept as assigned; ``save()`` validates it and then raises the
        ``CoercionFault``.
        """
        attr = self._attribute_meta(name)
        if value is _MISSING:
            return self._values.get(name)

        if not attr.virtual:
            try:
                value = attr.cast(value, self.__class__.__name__)
            except CoercionFault:
                self._uncast.add(name)
            else:
                self._uncast.discard(name)
        if name not in self._values or self._values[name] != value:
            self._values[name] = value
            if not attr.virtual:
                self._dirty.add(name)
        return None

    def is_loaded(self, name: str) -> bool:
        """Whether the attribute has a value (loaded from storage or assigned)."""
        return name in self._values

    def changed(self, name: Optional[str] = None) -> Any:
        """Dirty attribute names in schema order, or whether ``name`` is dirty."""
        if name is not None:
            return name in self._dirty
        return [attr.name for attr in self._schema() if attr.name in self._dirty]

    # ── Associations ─────────────────────────────────────────────────

    def _attach(self, name: str, value: Any) -> None:
        self._associations[name] = value

    def is_association_loaded(self, name: str) -> bool:
        return name in self._associations

    # ── Persistence ──────────────────────────────────────────────────

    async def save(self) -> Model:
        """
        Validate, coerce and persist: INSERT when new, UPDATE of the dirty
        attributes otherwise.

        Nothing is written if any attribute fails validation. The dirty set
        is cleared only after the statement succeeded.
        """
        if self._persisted:
            await self._update()
        else:
            await self._insert()
        return self

    def _prepare(self, attrs: List[AttributeMeta], pending: Dict[str, Any]) -> "OrderedDict[str, Any]":
        model_name = self.__class__.__name__
        values = {**self._values, **pending}
        for attr in attrs:
            ValidationPipeline.validate(model_name, attr, values.get(attr.name))
        data: "OrderedDict[str, Any]" = OrderedDict()
        for attr in attrs:
            if attr.name in values:
                value = values[attr.name]
                if attr.name in self._uncast:
                    value = attr.cast(value, model_name)
                data[attr.column_name] = attr.uncast(value, model_name)
        return data

    async def _insert(self) -> None:
        schema = self._schema()
        db = self._get_db()
        now = datetime.datetime.now()

        pending: Dict[str, Any] = {}
        for name in TIMESTAMPS:
            if name in schema and self._values.get(name) is None:
                pending[name] = now

        attrs = [
            attr for attr in schema.persisted
            if not (attr.primary_key and attr.auto_increment and self._values.get(attr.name) is None)
        ]
        data = self._prepare(attrs, pending)

        table = quote_name(schema.table_name, db.dialect)
        if data:
            columns = ", ".join(quote_name(c, db.dialect) for c in data)
            placeholders = ", ".join("?" for _ in data)
            sql = f"INSERT INTO {table} ({columns}) VALUES ({placeholders})"
        else:
            sql = f"INSERT INTO {table} DEFAULT VALUES"
        cursor = await db.execute(sql, list(data.values()))

        self._values.update(pending)
        pk = schema.primary_key
        if self._values.get(pk.name) is None and getattr(cursor, "lastrowid", None):
            self._values[pk.name] = cursor.lastrowid
        self._persisted = True
        self._dirty.clear()
        self._uncast.clear()
        logger.debug(f"Inserted {self!r}")

    async def _update(self) -> None:
        schema = self._schema()
        pk = schema.primary_key
        if self.pk is None:
            raise MissingPrimaryKeyFault(self.__class__.__name__, "update")
        attrs = [attr for attr in schema.persisted if attr.name in self._dirty]
        if not attrs:
            return

        pending: Dict[str, Any] = {}
        if "updated_at" in schema and "updated_at" not in self._dirty:
            pending["updated_at"] = datetime.datetime.now()
            attrs.append(schema.get("updated_at"))
        data = self._prepare(attrs, pending)

        db = self._get_db()
        set_parts = ", ".join(f"{quote_name(c, db.dialect)} = ?" for c in data)
        sql = (
            f"UPDATE {quote_name(schema.table_name, db.dialect)} SET {set_parts} "
            f"WHERE {quote_name(pk.column_name, db.dialect)} = ?"
        )
        await db.execute(sql, list(data.values()) + [pk.uncast(self.pk)])

        self._values.update(pending)
        self._dirty.clear()
        self._uncast.clear()
        logger.debug(f"Updated {self!r}: {list(data)}")

    async def reload(self) -> Model:
        """
        Replace every persisted attribute with its stored value.

        Raises:
            ModelNotFoundFault: the row no longer exists.
        """
        pk = self.pk
        if pk is None:
            raise MissingPrimaryKeyFault(self.__class__.__name__, "reload")
        fresh = await self.__class__.find_by_pk(pk)
        if fresh is None:
            raise ModelNotFoundFault(self.__class__.__name__, pk)
        schema = self._schema()
        for attr in schema.persisted:
            self._values.pop(attr.name, None)
        self._values.update(fresh._values)
        self._dirty.clear()
        self._uncast.clear()
        return self

    # ── Serialization ────────────────────────────────────────────────

    def to_dict(self, *, exclude: Optional[List[str]] = None) -> Dict[str, Any]:
        """Serialize loaded attributes, virtual attributes and loaded associations."""
        exclude = set(exclude or [])
        result: Dict[str, Any] = {}
        for attr in self._schema():
            if attr.name in exclude:
                continue
            if not attr.virtual and attr.name not in self._values:
                continue
            value = self._read(attr.name)
            if isinstance(value, (datetime.datetime, datetime.date)):
                value = value.isoformat()
            elif isinstance(value, bytes):
                value = value.hex()
            result[attr.name] = value
        for name, value in self._associations.items():
            if name in exclude:
                continue
            if isinstance(value, list):
                result[name] = [item.to_dict() for item in value]
            else:
                result[name] = value.to_dict() if value is not None else None
        return result
