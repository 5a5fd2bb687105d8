"""
Skeleta Associations — declared relations between models.

Two-phase protocol:

1. ``AssociationGraph.declare`` records raw options while model classes are
   being defined. Targets are plain names at this point.
2. ``AssociationGraph.resolve`` binds target classes, validates foreign keys
   and wires ``through`` associations to their intermediate and source
   hops. It runs only when asked (``Model.sync()``, ``Model.initialize()``,
   ``ModelRegistry.resolve_all()``).

Kinds:

- ``belongs_to``  the owner holds ``foreign_key``; target matched by its pk.
- ``has_many``    the target holds ``foreign_key`` referencing the owner pk.
- ``has_one``     like ``has_many`` with at most one row kept.
- ``through``     any has_many/has_one whose rows come from another
                  association of the owner (``through=``) followed by one
                  association of the intermediate model (``source=``).
"""

from __future__ import annotations

import logging
from collections import OrderedDict
from typing import Any, Callable, Dict, List, Mapping, Optional, Type, Union

from ..faults.domains import (
    ConfigurationFault,
    UndeclaredRelationFault,
    UnknownAssociationKindFault,
    UnresolvedAssociationFault,
)
from ..utils.naming import classify, singularize, underscore
from .attributes import AttributeRegistry
from .registry import ModelRegistry

logger = logging.getLogger("skeleta.models.associations")

__all__ = [
    "HAS_MANY",
    "HAS_ONE",
    "BELONGS_TO",
    "AssociationMeta",
    "AssociationGraph",
]

HAS_MANY = "has_many"
HAS_ONE = "has_one"
BELONGS_TO = "belongs_to"
KINDS = (HAS_MANY, HAS_ONE, BELONGS_TO)

_OPTION_KEYS = frozenset({
    "target", "model", "foreign_key", "through", "source",
    "scope", "where", "select", "order", "strict",
})


def _select_predicate(select: Any) -> Optional[Callable[[str], bool]]:
    if select is None or callable(select):
        return select
    if isinstance(select, (list, tuple, set, frozenset)):
        allowed = frozenset(select)
        return lambda name: name in allowed
    raise TypeError(f"select must be a callable or a list of names, got {select!r}")


class AssociationMeta:
    """Metadata for one declared relation."""

    def __init__(
        self,
        owner: type,
        name: str,
        kind: str,
        *,
        target: Union[str, type, None] = None,
        foreign_key: Optional[str] = None,
        through: Optional[str] = None,
        source: Optional[str] = None,
        scope: Optional[Mapping[str, Any]] = None,
        select: Any = None,
        order: Union[str, List[str], None] = None,
        strict: bool = False,
    ):
        self.owner = owner
        self.name = name
        self.kind = kind
        self.target_name = (
            target if isinstance(target, str)
            else target.__name__ if target is not None
            else classify(name)
        )
        self.target: Optional[type] = target if isinstance(target, type) else None
        self.through = through
        self.source = source
        self.scope: Dict[str, Any] = dict(scope or {})
        self.select = _select_predicate(select)
        self.order: List[str] = [order] if isinstance(order, str) else list(order or [])
        self.strict = strict

        if foreign_key is not None:
            self.foreign_key = foreign_key
        elif kind == BELONGS_TO:
            self.foreign_key = f"{underscore(name)}_id"
        else:
            self.foreign_key = f"{underscore(owner.__name__)}_id"

        self.through_association: Optional[AssociationMeta] = None
        self.source_association: Optional[AssociationMeta] = None
        self.resolved = False

    @property
    def is_through(self) -> bool:
        return self.through is not None

    @property
    def is_collection(self) -> bool:
        return self.kind == HAS_MANY

    def includes(self, attribute_name: str) -> bool:
        """Whether an eager load through this association selects the attribute."""
        return self.select is None or bool(self.select(attribute_name))

    def __repr__(self) -> str:
        via = f" through {self.through}" if self.through else ""
        return f"<AssociationMeta: {self.owner.__name__}.{self.name} {self.kind} {self.target_name}{via}>"


class AssociationGraph:
    """Per-model association declarations and their resolution."""

    _declared: Dict[type, "OrderedDict[str, AssociationMeta]"] = {}
    _parents: Dict[type, Optional[type]] = {}

    @classmethod
    def declare_model(cls, model: type, parent: Optional[type] = None) -> None:
        cls._declared.setdefault(model, OrderedDict())
        cls._parents[model] = parent

    @classmethod
    def declare(
        cls,
        model: type,
        name: str,
        kind: str,
        options: Optional[Mapping[str, Any]] = None,
    ) -> AssociationMeta:
        """
        Register one association on ``model``.

        Raises:
            UnknownAssociationKindFault: ``kind`` is not a supported kind.
            ConfigurationFault: an unknown option was given.
        """
        if kind not in KINDS:
            raise UnknownAssociationKindFault(model.__name__, name, kind)
        options = dict(options or {})
        unknown = set(options) - _OPTION_KEYS
        if unknown:
            raise ConfigurationFault(
                code="UNKNOWN_ASSOCIATION_OPTION",
                message=f"Unknown option(s) {sorted(unknown)} for {model.__name__}.{name}",
                metadata={"entity": model.__name__, "relation": name},
            )
        if options.get("through") and kind == BELONGS_TO:
            raise ConfigurationFault(
                code="INVALID_THROUGH",
                message=f"{model.__name__}.{name}: belongs_to cannot use 'through'",
                metadata={"entity": model.__name__, "relation": name},
            )

        meta = AssociationMeta(
            model,
            name,
            kind,
            target=options.get("target", options.get("model")),
            foreign_key=options.get("foreign_key"),
            through=options.get("through"),
            source=options.get("source"),
            scope=options.get("scope", options.get("where")),
            select=options.get("select"),
            order=options.get("order"),
            strict=options.get("strict", False),
        )
        cls._declared.setdefault(model, OrderedDict())[name] = meta
        logger.debug(f"Declared {meta!r}")
        return meta

    @classmethod
    def associations(cls, model: type) -> "OrderedDict[str, AssociationMeta]":
        """Associations of ``model`` including those of its ancestors."""
        merged: "OrderedDict[str, AssociationMeta]" = OrderedDict()
        parent = cls._parents.get(model)
        if parent is not None:
            merged.update(cls.associations(parent))
        merged.update(cls._declared.get(model, {}))
        return merged

    @classmethod
    def get(cls, model: type, name: str) -> AssociationMeta:
        """
        Raises:
            UndeclaredRelationFault: no association named ``name``.
        """
        meta = cls.associations(model).get(name)
        if meta is None:
            raise UndeclaredRelationFault(model.__name__, name)
        return meta

    # ── Resolution ───────────────────────────────────────────────────

    @classmethod
    def resolve(cls, model: type) -> None:
        """
        Bind every association of ``model`` (including inherited ones).

        Direct associations are bound before ``through`` associations so the
        latter can rely on their intermediate hop.

        Raises:
            UnresolvedAssociationFault: a target model, foreign key, through
                association or source association cannot be found.
        """
        metas = list(cls.associations(model).values())
        for meta in metas:
            if not meta.is_through:
                cls._bind_direct(model, meta)
        for meta in metas:
            if meta.is_through:
                cls._bind_through(model, meta)

    @classmethod
    def _target_for(cls, model: type, meta: AssociationMeta) -> type:
        if meta.target is not None:
            return meta.target
        target = ModelRegistry.get(meta.target_name)
        if target is None:
            raise UnresolvedAssociationFault(
                model.__name__, meta.name,
                f"target model '{meta.target_name}' is not registered",
            )
        return target

    @classmethod
    def _check_foreign_key(cls, model: type, meta: AssociationMeta, holder: type) -> None:
        schema = AttributeRegistry.finalize(holder)
        if meta.foreign_key in schema:
            return
        # Accept the column spelling of the key as well
        attr = schema.by_column(meta.foreign_key) or schema.get(underscore(meta.foreign_key))
        if attr is None:
            raise UnresolvedAssociationFault(
                model.__name__, meta.name,
                f"foreign key '{meta.foreign_key}' is not an attribute of {holder.__name__}",
            )
        meta.foreign_key = attr.name

    @classmethod
    def _bind_direct(cls, model: type, meta: AssociationMeta) -> None:
        target = cls._target_for(model, meta)
        holder = meta.owner if meta.kind == BELONGS_TO else target
        meta.target = target
        cls._check_foreign_key(model, meta, holder)
        for key in meta.scope:
            if key not in AttributeRegistry.finalize(target):
                raise UnresolvedAssociationFault(
                    model.__name__, meta.name,
                    f"scope attribute '{key}' is not an attribute of {target.__name__}",
                )
        meta.resolved = True
        logger.debug(f"Resolved {meta!r} -> {target.__name__}.{meta.foreign_key}")

    @classmethod
    def _bind_through(cls, model: type, meta: AssociationMeta) -> None:
        via = cls.associations(model).get(meta.through)
        if via is None:
            raise UnresolvedAssociationFault(
                model.__name__, meta.name,
                f"through association '{meta.through}' is not declared on {model.__name__}",
            )
        if via.is_through:
            raise UnresolvedAssociationFault(
                model.__name__, meta.name,
                f"through association '{meta.through}' is itself a through association",
            )
        if not via.resolved:
            cls._bind_direct(model, via)

        intermediate = via.target
        candidates = cls.associations(intermediate)
        source: Optional[AssociationMeta] = None
        if meta.source is not None:
            source = candidates.get(meta.source)
        else:
            for candidate in candidates.values():
                if not candidate.is_through and candidate.target_name == meta.target_name:
                    source = candidate
                    break
            if source is None:
                source = candidates.get(singularize(underscore(meta.name))) or candidates.get(meta.name)

        if source is None or source.is_through:
            raise UnresolvedAssociationFault(
                model.__name__, meta.name,
                f"no source association on {intermediate.__name__} leads to '{meta.target_name}'",
            )
        if not source.resolved:
            cls._bind_direct(intermediate, source)

        meta.through_association = via
        meta.source_association = source
        meta.target = source.target
        meta.target_name = source.target.__name__
        meta.resolved = True
        logger.debug(
            f"Resolved {meta!r} via {intermediate.__name__}.{source.name} -> {meta.target_name}"
        )

    @classmethod
    def forget(cls, model: type) -> None:
        cls._declared.pop(model, None)
        cls._parents.pop(model, None)
