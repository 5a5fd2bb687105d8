"""
Skeleta Data Types — abstract data kinds, SQL rendering and coercion.

Every attribute carries one ``DataType`` instance. A data type knows:

- how to render itself as a SQL column type (``to_sql_type``)
- how to turn raw input / stored values into the native Python value (``cast``)
- how to turn a native value back into a storage value (``uncast``)

Declaration surface (``DataTypes``)::

    Column(DataTypes.TEXT)
    Column(DataTypes.STRING(64))
    Column(DataTypes.INTEGER(2).UNSIGNED)
    Column(type=DataTypes.BOOLEAN, default=True)

Both a type class and an instance of it are accepted wherever a type is
expected. Custom kinds are added with ``TypeCoercionRegistry.register``.
"""

from __future__ import annotations

import datetime
import json
import re
from typing import Any, Callable, Dict, Optional, Type, Union

from ..faults.domains import UnknownDataKindFault

__all__ = [
    "CoercionError",
    "DataType",
    "String",
    "Text",
    "Integer",
    "BigInt",
    "Boolean",
    "Date",
    "DateTime",
    "Binary",
    "Json",
    "Virtual",
    "DataTypes",
    "TypeCoercionRegistry",
]


class CoercionError(ValueError):
    """Raised by data types when a value cannot be converted."""

    def __init__(self, kind: str, value: Any, reason: str = ""):
        self.kind = kind
        self.value = value
        self.reason = reason
        super().__init__(f"Cannot coerce {value!r} to {kind}" + (f": {reason}" if reason else ""))


# ── Base DataType ────────────────────────────────────────────────────────────


class DataType:
    """
    Base data type.

    Subclasses set ``kind`` (registry key) and override the rendering and
    coercion hooks they need.
    """

    kind: str = "abstract"

    def to_sql_type(self, dialect: str = "mysql") -> str:
        raise NotImplementedError(
            f"{self.__class__.__name__} must implement to_sql_type()"
        )

    def cast(self, value: Any) -> Any:
        """Convert stored or user-supplied value to the native value."""
        return value

    def uncast(self, value: Any) -> Any:
        """Convert native value to the storage value."""
        return value

    @property
    def virtual(self) -> bool:
        return False

    def params(self) -> tuple:
        return ()

    def __eq__(self, other: Any) -> bool:
        return type(self) is type(other) and self.params() == other.params()

    def __hash__(self) -> int:
        return hash((type(self), self.params()))

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__}: {self.to_sql_type()}>"


# ── Text kinds ───────────────────────────────────────────────────────────────


class String(DataType):
    """VARCHAR(n), 255 by default."""

    kind = "varchar"

    def __init__(self, length: int = 255):
        self.length = length

    def params(self) -> tuple:
        return (self.length,)

    def to_sql_type(self, dialect: str = "mysql") -> str:
        return f"VARCHAR({self.length})"

    def cast(self, value: Any) -> Any:
        if value is None or isinstance(value, str):
            return value
        if isinstance(value, (bytes, bytearray)):
            return bytes(value).decode("utf-8")
        if isinstance(value, (dict, list)):
            raise CoercionError(self.kind, value, "structured value for text column")
        return str(value)


class Text(String):
    """Unbounded TEXT."""

    kind = "text"

    def __init__(self, length: Optional[str] = None):
        # MySQL flavours: tiny / medium / long
        self.length = length

    def to_sql_type(self, dialect: str = "mysql") -> str:
        if self.length and dialect == "mysql":
            return f"{self.length.upper()}TEXT"
        return "TEXT"


# ── Numeric kinds ────────────────────────────────────────────────────────────


class Integer(DataType):
    """INTEGER, optionally with display width and UNSIGNED."""

    kind = "integer"
    _sql_name = "INTEGER"

    def __init__(self, length: Optional[int] = None, *, unsigned: bool = False):
        self.length = length
        self.unsigned = unsigned

    def params(self) -> tuple:
        return (self.length, self.unsigned)

    @property
    def UNSIGNED(self) -> "Integer":  # noqa: N802 - declaration DSL
        return self.__class__(self.length, unsigned=True)

    def to_sql_type(self, dialect: str = "mysql") -> str:
        if dialect == "sqlite":
            return self._sql_name
        sql = self._sql_name
        if self.length is not None:
            sql += f"({self.length})"
        if self.unsigned:
            sql += " UNSIGNED"
        return sql

    def cast(self, value: Any) -> Any:
        if value is None:
            return None
        if isinstance(value, bool):
            return int(value)
        if isinstance(value, int):
            return value
        if isinstance(value, float):
            if value.is_integer():
                return int(value)
            raise CoercionError(self.kind, value, "fractional value")
        if isinstance(value, str):
            text = value.strip()
            if re.fullmatch(r"[+-]?\d+", text):
                return int(text)
            raise CoercionError(self.kind, value, "not a numeric string")
        raise CoercionError(self.kind, value, f"unsupported type {type(value).__name__}")

    def uncast(self, value: Any) -> Any:
        return self.cast(value)


class BigInt(Integer):
    """BIGINT."""

    kind = "bigint"
    _sql_name = "BIGINT"


# ── Boolean ──────────────────────────────────────────────────────────────────


_TRUE_STRINGS = frozenset({"1", "true", "t", "yes", "y", "on"})
_FALSE_STRINGS = frozenset({"0", "false", "f", "no", "n", "off"})


class Boolean(DataType):
    """Stored as TINYINT(1)."""

    kind = "boolean"

    def to_sql_type(self, dialect: str = "mysql") -> str:
        if dialect == "sqlite":
            return "BOOLEAN"
        return "TINYINT(1)"

    def cast(self, value: Any) -> Any:
        if value is None or isinstance(value, bool):
            return value
        if isinstance(value, (int, float)):
            if value in (0, 1):
                return bool(value)
            raise CoercionError(self.kind, value, "numeric boolean must be 0 or 1")
        if isinstance(value, (bytes, bytearray)):
            value = bytes(value).decode("utf-8")
        if isinstance(value, str):
            text = value.strip().lower()
            if text in _TRUE_STRINGS:
                return True
            if text in _FALSE_STRINGS:
                return False
        raise CoercionError(self.kind, value)

    def uncast(self, value: Any) -> Any:
        return self.cast(value)


# ── Date / time ──────────────────────────────────────────────────────────────


class Date(DataType):
    """DATE."""

    kind = "date"

    def to_sql_type(self, dialect: str = "mysql") -> str:
        return "DATE"

    def cast(self, value: Any) -> Any:
        if value is None:
            return None
        if isinstance(value, datetime.datetime):
            return value.date()
        if isinstance(value, datetime.date):
            return value
        if isinstance(value, str):
            try:
                return datetime.date.fromisoformat(value[:10])
            except ValueError as exc:
                raise CoercionError(self.kind, value, str(exc)) from exc
        raise CoercionError(self.kind, value, f"unsupported type {type(value).__name__}")

    def uncast(self, value: Any) -> Any:
        value = self.cast(value)
        return value.isoformat() if value is not None else None


class DateTime(DataType):
    """DATETIME, optionally with fractional seconds precision."""

    kind = "datetime"

    def __init__(self, precision: Optional[int] = None):
        self.precision = precision

    def params(self) -> tuple:
        return (self.precision,)

    def to_sql_type(self, dialect: str = "mysql") -> str:
        if self.precision is not None and dialect != "sqlite":
            return f"DATETIME({self.precision})"
        return "DATETIME"

    def cast(self, value: Any) -> Any:
        if value is None:
            return None
        if isinstance(value, datetime.datetime):
            return value
        if isinstance(value, datetime.date):
            return datetime.datetime.combine(value, datetime.time())
        if isinstance(value, bool):
            raise CoercionError(self.kind, value, "boolean is not a timestamp")
        if isinstance(value, (int, float)):
            return datetime.datetime.fromtimestamp(value)
        if isinstance(value, str):
            text = value.strip()
            if text.endswith("Z"):
                text = text[:-1] + "+00:00"
            try:
                return datetime.datetime.fromisoformat(text)
            except ValueError as exc:
                raise CoercionError(self.kind, value, str(exc)) from exc
        raise CoercionError(self.kind, value, f"unsupported type {type(value).__name__}")

    def uncast(self, value: Any) -> Any:
        value = self.cast(value)
        if value is None:
            return None
        return value.isoformat(sep=" ")


# ── Binary / JSON ────────────────────────────────────────────────────────────


class Binary(DataType):
    """BLOB, or VARBINARY(n) when sized."""

    kind = "binary"

    def __init__(self, length: Optional[int] = None):
        self.length = length

    def params(self) -> tuple:
        return (self.length,)

    def to_sql_type(self, dialect: str = "mysql") -> str:
        if self.length is not None and dialect != "sqlite":
            return f"VARBINARY({self.length})"
        return "BLOB"

    def cast(self, value: Any) -> Any:
        if value is None or isinstance(value, bytes):
            return value
        if isinstance(value, (bytearray, memoryview)):
            return bytes(value)
        if isinstance(value, str):
            return value.encode("utf-8")
        raise CoercionError(self.kind, value, f"unsupported type {type(value).__name__}")


class Json(DataType):
    """JSON document, stored as text where the backend has no JSON type."""

    kind = "json"

    def to_sql_type(self, dialect: str = "mysql") -> str:
        if dialect == "sqlite":
            return "TEXT"
        return "JSON"

    def cast(self, value: Any) -> Any:
        if isinstance(value, (bytes, bytearray)):
            value = bytes(value).decode("utf-8")
        if isinstance(value, str):
            try:
                return json.loads(value)
            except ValueError:
                return value
        return value

    def uncast(self, value: Any) -> Any:
        if value is None:
            return None
        try:
            return json.dumps(value, ensure_ascii=False, default=str)
        except (TypeError, ValueError) as exc:
            raise CoercionError(self.kind, value, str(exc)) from exc


# ── Virtual ──────────────────────────────────────────────────────────────────


class Virtual(DataType):
    """Computed-only attribute: never rendered, selected or persisted."""

    kind = "virtual"

    @property
    def virtual(self) -> bool:
        return True

    def to_sql_type(self, dialect: str = "mysql") -> str:
        return "VIRTUAL"

    def uncast(self, value: Any) -> Any:
        raise CoercionError(self.kind, value, "virtual attributes are never persisted")


# ── Registry ─────────────────────────────────────────────────────────────────


TypeSpec = Union[str, DataType, Type[DataType]]

_KIND_RE = re.compile(
    r"^\s*(?P<kind>[a-zA-Z_]+)\s*(?:\((?P<args>[^)]*)\))?\s*(?P<unsigned>unsigned)?\s*$",
    re.IGNORECASE,
)


class TypeCoercionRegistry:
    """
    Maps abstract data kinds onto ``DataType`` factories.

    Resolution happens at declaration time, so a misspelt kind fails the
    moment the model class is defined rather than on first save.
    """

    _kinds: Dict[str, Callable[..., DataType]] = {}

    @classmethod
    def register(cls, kind: str, factory: Callable[..., DataType]) -> None:
        """Register (or replace) the factory for a data kind."""
        cls._kinds[kind.lower()] = factory

    @classmethod
    def kinds(cls) -> list[str]:
        return sorted(cls._kinds)

    @classmethod
    def is_registered(cls, kind: str) -> bool:
        return kind.lower() in cls._kinds

    @classmethod
    def resolve(cls, spec: TypeSpec, *params: Any) -> DataType:
        """
        Turn a type spec into a ``DataType`` instance.

        Accepts an instance, a ``DataType`` subclass, or a kind string such
        as ``"varchar(64)"`` / ``"integer(2) unsigned"``.

        Raises:
            UnknownDataKindFault: the kind is not registered.
        """
        if isinstance(spec, DataType):
            if not cls.is_registered(spec.kind):
                raise UnknownDataKindFault(spec.kind)
            return spec
        if isinstance(spec, type) and issubclass(spec, DataType):
            if not cls.is_registered(spec.kind):
                raise UnknownDataKindFault(spec.kind)
            return spec(*params)
        if isinstance(spec, str):
            match = _KIND_RE.match(spec)
            if not match:
                raise UnknownDataKindFault(spec)
            factory = cls._kinds.get(match.group("kind").lower())
            if factory is None:
                raise UnknownDataKindFault(spec)
            args = list(params)
            if match.group("args"):
                args = [int(a) if a.strip().isdigit() else a.strip()
                        for a in match.group("args").split(",")] + args
            data_type = factory(*args)
            if match.group("unsigned"):
                if not isinstance(data_type, Integer):
                    raise UnknownDataKindFault(spec)
                data_type = data_type.UNSIGNED
            return data_type
        raise UnknownDataKindFault(spec)

    @classmethod
    def render(cls, kind: TypeSpec, *params: Any, dialect: str = "mysql") -> str:
        """Render the SQL column type for a kind."""
        return cls.resolve(kind, *params).to_sql_type(dialect)

    @classmethod
    def coerce(cls, kind: TypeSpec, raw: Any, *params: Any) -> Any:
        """Convert a raw value to the native representation of a kind."""
        return cls.resolve(kind, *params).cast(raw)

    @classmethod
    def infer(cls, name: str, default: Any = None) -> DataType:
        """
        Pick a data type for an untyped declaration.

        Uses naming conventions and the type of a literal default value,
        never annotations.
        """
        lowered = name.lower()
        if lowered == "id" or lowered.endswith("_id"):
            return BigInt()
        if lowered in ("created_at", "updated_at", "deleted_at"):
            return DateTime()
        if isinstance(default, bool):
            return Boolean()
        if isinstance(default, int):
            return Integer()
        if isinstance(default, datetime.datetime):
            return DateTime()
        if isinstance(default, (dict, list)):
            return Json()
        return String()


for _cls in (String, Text, Integer, BigInt, Boolean, Date, DateTime, Binary, Json, Virtual):
    TypeCoercionRegistry.register(_cls.kind, _cls)
TypeCoercionRegistry.register("string", String)


class DataTypes:
    """Declaration-friendly aliases for the built-in kinds."""

    STRING = String
    TEXT = Text
    INTEGER = Integer
    BIGINT = BigInt
    BOOLEAN = Boolean
    DATE = Date
    DATETIME = DateTime
    BINARY = Binary
    JSON = Json
    VIRTUAL = Virtual
