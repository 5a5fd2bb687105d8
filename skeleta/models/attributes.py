"""
Skeleta Attributes — per-model attribute metadata and schema composition.

``AttributeRegistry.register`` records one declared attribute on one model.
``AttributeRegistry.finalize`` composes the model's ``EntitySchema`` from its
parent's finalized schema plus its own declarations:

    Base          id
    Note          id, body
    Comment       id, body, target_type, target_id
    SubContent    id, body, target_type, target_id, description, status

Ancestor attributes come first. Redeclaring a name shadows its metadata in
place without moving it.
"""

from __future__ import annotations

import copy
import datetime
import json
import logging
from collections import OrderedDict
from typing import Any, Callable, Dict, Iterator, List, Mapping, Optional

from ..faults.domains import (
    CoercionFault,
    ConfigurationFault,
    DuplicateColumnFault,
    DuplicatePrimaryKeyFault,
    UnknownDataKindFault,
)
from ..utils.naming import table_name_for, underscore
from .types import BigInt, CoercionError, DataType, Integer, TypeCoercionRegistry
from .validators import Rule, ValidationPipeline

logger = logging.getLogger("skeleta.models.attributes")

__all__ = [
    "UNSET",
    "AttributeMeta",
    "EntitySchema",
    "AttributeRegistry",
    "quote_name",
]


# ── Sentinel ─────────────────────────────────────────────────────────────────

class _Unset:
    """Sentinel for distinguishing 'not set' from None."""
    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self):
        return "<UNSET>"

    def __bool__(self):
        return False

UNSET = _Unset()


def quote_name(name: str, dialect: str = "mysql") -> str:
    """Quote an identifier for the given dialect."""
    if dialect == "mysql":
        return f"`{name}`"
    return '"' + name.replace('"', '""') + '"'


_OPTION_KEYS = frozenset({
    "type", "name", "column", "allow_null", "default", "default_value",
    "primary_key", "auto_increment", "unique", "comment",
    "get", "set", "validate", "validators",
})


# ── AttributeMeta ────────────────────────────────────────────────────────────


class AttributeMeta:
    """Metadata for one declared model property."""

    def __init__(
        self,
        name: str,
        data_type: DataType,
        *,
        column_name: Optional[str] = None,
        allow_null: bool = True,
        default: Any = UNSET,
        primary_key: bool = False,
        auto_increment: Optional[bool] = None,
        unique: bool = False,
        comment: Optional[str] = None,
        getter: Optional[Callable[[Any], Any]] = None,
        setter: Optional[Callable[[Any, Any], None]] = None,
        validators: Optional[List[Rule]] = None,
    ):
        self.name = name
        self.data_type = data_type
        self.column_name = column_name or underscore(name)
        self.allow_null = allow_null
        self.default = default
        self.primary_key = primary_key
        self.auto_increment = auto_increment
        self.unique = unique
        self.comment = comment
        self.getter = getter
        self.setter = setter
        self.validators: List[Rule] = list(validators or [])

    @property
    def virtual(self) -> bool:
        return self.data_type.virtual

    @property
    def kind(self) -> str:
        return self.data_type.kind

    def has_default(self) -> bool:
        return self.default is not UNSET

    def get_default(self) -> Any:
        if self.default is UNSET:
            return None
        if callable(self.default):
            return self.default()
        return copy.deepcopy(self.default)

    def cast(self, value: Any, model_name: str = "") -> Any:
        """
        Convert a raw value to the native value.

        Raises:
            CoercionFault: the value does not fit the data kind.
        """
        try:
            return self.data_type.cast(value)
        except CoercionError as exc:
            raise CoercionFault(model_name, self.name, self.kind, value, exc.reason) from exc

    def uncast(self, value: Any, model_name: str = "") -> Any:
        """
        Convert a native value to its storage form.

        Raises:
            CoercionFault: the value does not fit the data kind.
        """
        try:
            return self.data_type.uncast(value)
        except CoercionError as exc:
            raise CoercionFault(model_name, self.name, self.kind, value, exc.reason) from exc

    def copy(self, **changes: Any) -> "AttributeMeta":
        attrs = {
            "column_name": self.column_name,
            "allow_null": self.allow_null,
            "default": self.default,
            "primary_key": self.primary_key,
            "auto_increment": self.auto_increment,
            "unique": self.unique,
            "comment": self.comment,
            "getter": self.getter,
            "setter": self.setter,
            "validators": self.validators,
        }
        attrs.update(changes)
        data_type = attrs.pop("data_type", self.data_type)
        return AttributeMeta(self.name, data_type, **attrs)

    # ── DDL ──────────────────────────────────────────────────────────

    def _sql_default(self, dialect: str) -> Optional[str]:
        value = self.default
        if value is UNSET or value is None or callable(value):
            return None
        if isinstance(value, bool):
            if dialect == "mysql":
                return "true" if value else "false"
            return "1" if value else "0"
        if isinstance(value, (int, float)):
            return str(value)
        if isinstance(value, str):
            return "'" + value.replace("'", "''") + "'"
        if isinstance(value, (dict, list)):
            return "'" + json.dumps(value).replace("'", "''") + "'"
        if isinstance(value, (datetime.date, datetime.datetime)):
            return f"'{self.data_type.uncast(value)}'"
        return None

    def to_sql_string(self, dialect: str = "mysql") -> str:
        """
        Render the column definition.

        Flag order is fixed: type, nullability, default, uniqueness,
        comment, primary key.
        """
        if self.virtual:
            raise ConfigurationFault(
                code="VIRTUAL_COLUMN",
                message=f"Virtual attribute '{self.name}' has no column definition",
                metadata={"attribute": self.name},
            )
        if dialect == "sqlite" and self.primary_key and self.auto_increment:
            return f"{quote_name(self.column_name, dialect)} INTEGER PRIMARY KEY AUTOINCREMENT"

        parts = [quote_name(self.column_name, dialect), self.data_type.to_sql_type(dialect)]
        if not self.allow_null and not self.primary_key:
            parts.append("NOT NULL")
        sql_default = self._sql_default(dialect)
        if sql_default is not None:
            parts.append(f"DEFAULT {sql_default}")
        if self.unique and not self.primary_key:
            parts.append("UNIQUE")
        if self.comment and dialect == "mysql":
            parts.append("COMMENT '" + self.comment.replace("'", "''") + "'")
        if self.primary_key:
            parts.append("PRIMARY KEY")
            if self.auto_increment:
                parts.append("AUTO_INCREMENT" if dialect == "mysql" else "AUTOINCREMENT")
        return " ".join(parts)

    def __repr__(self) -> str:
        return f"<AttributeMeta: {self.name} ({self.data_type.to_sql_type()})>"


# ── EntitySchema ─────────────────────────────────────────────────────────────


class EntitySchema:
    """Finalized table name and ordered attributes of one model."""

    def __init__(
        self,
        model_name: str,
        table_name: str,
        attributes: "OrderedDict[str, AttributeMeta]",
        parent: Optional["EntitySchema"] = None,
    ):
        self.model_name = model_name
        self.table_name = table_name
        self.attributes = attributes
        self.parent = parent
        self.primary_key: AttributeMeta = next(
            attr for attr in attributes.values() if attr.primary_key
        )
        self._by_column: Dict[str, AttributeMeta] = {
            attr.column_name: attr for attr in attributes.values() if not attr.virtual
        }

    @property
    def names(self) -> List[str]:
        return list(self.attributes)

    @property
    def persisted(self) -> List[AttributeMeta]:
        """Non-virtual attributes in declaration order."""
        return [attr for attr in self.attributes.values() if not attr.virtual]

    def get(self, name: str) -> Optional[AttributeMeta]:
        return self.attributes.get(name)

    def by_column(self, column: str) -> Optional[AttributeMeta]:
        return self._by_column.get(column)

    def __contains__(self, name: object) -> bool:
        return name in self.attributes

    def __iter__(self) -> Iterator[AttributeMeta]:
        return iter(self.attributes.values())

    def __len__(self) -> int:
        return len(self.attributes)

    def create_table_sql(self, dialect: str = "sqlite") -> str:
        columns = ",\n  ".join(attr.to_sql_string(dialect) for attr in self.persisted)
        return (
            f"CREATE TABLE IF NOT EXISTS {quote_name(self.table_name, dialect)} (\n"
            f"  {columns}\n"
            f")"
        )

    def __repr__(self) -> str:
        return f"<EntitySchema: {self.model_name} -> {self.table_name} {self.names}>"


# ── AttributeRegistry ────────────────────────────────────────────────────────


class AttributeRegistry:
    """
    Per-model attribute declarations and finalized schemas.

    Models are declared with ``declare_model`` (naming their parent model
    explicitly), then attributes are added with ``register``. ``finalize``
    rebuilds the merged schema whenever registrations changed.
    """

    _own: Dict[type, "OrderedDict[str, AttributeMeta]"] = {}
    _parents: Dict[type, Optional[type]] = {}
    _tables: Dict[type, Optional[str]] = {}
    _schemas: Dict[type, EntitySchema] = {}

    @classmethod
    def declare_model(
        cls,
        model: type,
        parent: Optional[type] = None,
        table: Optional[str] = None,
    ) -> None:
        cls._own.setdefault(model, OrderedDict())
        cls._parents[model] = parent
        cls._tables[model] = table
        cls._schemas.clear()

    @classmethod
    def register(
        cls,
        model: type,
        name: str,
        options: Optional[Mapping[str, Any]] = None,
    ) -> AttributeMeta:
        """
        Add or override one attribute on ``model``.

        Raises:
            UnknownDataKindFault: the declared type is not registered.
            ConfigurationFault: an unknown option or validation rule.
        """
        options = dict(options or {})
        unknown = set(options) - _OPTION_KEYS
        if unknown:
            raise ConfigurationFault(
                code="UNKNOWN_ATTRIBUTE_OPTION",
                message=(
                    f"Unknown option(s) {sorted(unknown)} for "
                    f"{model.__name__}.{name}"
                ),
                metadata={"entity": model.__name__, "attribute": name},
            )

        default = options.get("default", options.get("default_value", UNSET))
        type_spec = options.get("type")
        try:
            if type_spec is None:
                data_type = TypeCoercionRegistry.infer(
                    name, None if default is UNSET else default
                )
            else:
                data_type = TypeCoercionRegistry.resolve(type_spec)
        except UnknownDataKindFault as fault:
            raise UnknownDataKindFault(
                fault.metadata.get("kind", type_spec),
                entity=model.__name__,
                attribute=name,
            ) from fault

        attribute = AttributeMeta(
            name,
            data_type,
            column_name=options.get("column") or options.get("name"),
            allow_null=options.get("allow_null", True),
            default=default,
            primary_key=options.get("primary_key", False),
            auto_increment=options.get("auto_increment"),
            unique=options.get("unique", False),
            comment=options.get("comment"),
            getter=options.get("get"),
            setter=options.get("set"),
            validators=ValidationPipeline.build(
                name, options.get("validate"), options.get("validators")
            ),
        )

        own = cls._own.setdefault(model, OrderedDict())
        own[name] = attribute
        cls._schemas.clear()
        logger.debug(f"Registered attribute {model.__name__}.{name} ({data_type.kind})")
        return attribute

    @classmethod
    def finalize(cls, model: type) -> EntitySchema:
        """
        Build (or return the cached) merged schema for ``model``.

        Raises:
            DuplicatePrimaryKeyFault: more than one primary key after merge.
            DuplicateColumnFault: two attributes share a column.
        """
        cached = cls._schemas.get(model)
        if cached is not None:
            return cached

        parent = cls._parents.get(model)
        parent_schema = cls.finalize(parent) if parent is not None else None
        own = cls._own.get(model, OrderedDict())

        merged: "OrderedDict[str, AttributeMeta]" = OrderedDict()
        if parent_schema is not None:
            merged.update(parent_schema.attributes)
        for name, attribute in own.items():
            merged[name] = attribute

        merged = cls._resolve_primary_key(model.__name__, merged)
        cls._check_columns(model.__name__, merged)

        table = cls._tables.get(model)
        if table is None:
            if own or parent_schema is None:
                table = table_name_for(model.__name__)
            else:
                table = parent_schema.table_name

        schema = EntitySchema(model.__name__, table, merged, parent_schema)
        cls._schemas[model] = schema
        logger.debug(f"Finalized {schema!r}")
        return schema

    @staticmethod
    def _resolve_primary_key(
        model_name: str,
        merged: "OrderedDict[str, AttributeMeta]",
    ) -> "OrderedDict[str, AttributeMeta]":
        keys = [name for name, attr in merged.items() if attr.primary_key]
        if len(keys) > 1:
            raise DuplicatePrimaryKeyFault(model_name, keys)

        if keys:
            name = keys[0]
            attr = merged[name]
            if attr.auto_increment is None:
                merged[name] = attr.copy(auto_increment=isinstance(attr.data_type, Integer))
            return merged

        if "id" in merged:
            attr = merged["id"]
            auto = attr.auto_increment
            if auto is None:
                auto = isinstance(attr.data_type, Integer)
            merged["id"] = attr.copy(primary_key=True, auto_increment=auto)
            return merged

        injected: "OrderedDict[str, AttributeMeta]" = OrderedDict()
        injected["id"] = AttributeMeta("id", BigInt(), primary_key=True, auto_increment=True)
        injected.update(merged)
        return injected

    @staticmethod
    def _check_columns(model_name: str, merged: Mapping[str, AttributeMeta]) -> None:
        seen: Dict[str, List[str]] = {}
        for attr in merged.values():
            if attr.virtual:
                continue
            seen.setdefault(attr.column_name, []).append(attr.name)
        for column, names in seen.items():
            if len(names) > 1:
                raise DuplicateColumnFault(model_name, column, names)

    @classmethod
    def to_sql_string(cls, attribute: AttributeMeta, dialect: str = "mysql") -> str:
        return attribute.to_sql_string(dialect)

    @classmethod
    def forget(cls, model: type) -> None:
        cls._own.pop(model, None)
        cls._parents.pop(model, None)
        cls._tables.pop(model, None)
        cls._schemas.clear()
