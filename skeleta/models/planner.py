"""
Skeleta Eager Loading — batched association loading.

``EagerLoadPlanner.plan`` turns requested relation paths into a tree of
``LoadPlan`` levels::

    Member.find().with_("notes", "notes.author", "tags")

    LoadPlan(Member)
      ├─ LoadStep(notes)   -> LoadPlan(Note)
      │                         └─ LoadStep(author)
      └─ LoadStep(tags)    (through tag_maps)

``EagerLoadPlanner.execute`` loads one level at a time. Each association
costs one ``IN (...)`` query for the whole level, however many rows the
level holds. Results are attached by key, so the order in which concurrent
queries return does not matter.
"""

from __future__ import annotations

import asyncio
import logging
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Set, Tuple

from ..faults.domains import AssociationFault, UnresolvedAssociationFault
from .associations import BELONGS_TO, HAS_MANY, AssociationGraph, AssociationMeta
from .attributes import AttributeRegistry

logger = logging.getLogger("skeleta.models.planner")

__all__ = ["LoadStep", "LoadPlan", "EagerLoadPlanner"]


@dataclass(frozen=True)
class LoadStep:
    """One association to load at a plan level, with the plan for its rows."""

    association: AssociationMeta
    children: Optional["LoadPlan"] = None

    @property
    def name(self) -> str:
        return self.association.name


@dataclass(frozen=True)
class LoadPlan:
    """Associations to load for a set of rows of one model."""

    model: type
    steps: Tuple[LoadStep, ...] = ()

    @property
    def direct_steps(self) -> Tuple[LoadStep, ...]:
        return tuple(step for step in self.steps if not step.association.is_through)

    @property
    def through_steps(self) -> Tuple[LoadStep, ...]:
        return tuple(step for step in self.steps if step.association.is_through)

    def __bool__(self) -> bool:
        return bool(self.steps)


def _as_list(value: Any) -> List[Any]:
    if value is None:
        return []
    if isinstance(value, list):
        return value
    return [value]


def _distinct(values: Iterable[Any]) -> List[Any]:
    seen: Set[Any] = set()
    result: List[Any] = []
    for value in values:
        if value is None or value in seen:
            continue
        seen.add(value)
        result.append(value)
    return result


def _required_keys(children: Optional[LoadPlan]) -> Set[str]:
    """Attributes the next level reads from this level's rows."""
    keys: Set[str] = set()
    if children is None:
        return keys
    for step in children.steps:
        assoc = step.association
        if assoc.is_through:
            assoc = assoc.through_association
        if assoc.kind == BELONGS_TO:
            keys.add(assoc.foreign_key)
    return keys


class EagerLoadPlanner:
    """Builds and runs eager-load plans."""

    @classmethod
    def plan(cls, model: type, relation_paths: Sequence[str]) -> LoadPlan:
        """
        Build the plan for ``relation_paths`` on ``model``.

        Dotted paths (``"notes.author"``) nest one level per segment.

        Raises:
            UndeclaredRelationFault: a path names an undeclared association.
            UnresolvedAssociationFault: the association has not been resolved.
        """
        tree: "OrderedDict[str, List[str]]" = OrderedDict()
        for path in relation_paths:
            head, _, rest = path.partition(".")
            tree.setdefault(head, [])
            if rest:
                tree[head].append(rest)

        steps: List[LoadStep] = []
        for name, rest in tree.items():
            assoc = AssociationGraph.get(model, name)
            if not assoc.resolved or (
                assoc.is_through and not (
                    assoc.through_association is not None
                    and assoc.through_association.resolved
                )
            ):
                raise UnresolvedAssociationFault(
                    model.__name__, name,
                    "association has not been resolved; call sync() or initialize() first",
                )
            children = cls.plan(assoc.target, rest) if rest else None
            steps.append(LoadStep(assoc, children))

        plan = LoadPlan(model, tuple(steps))
        logger.debug(f"Planned {model.__name__}: {[step.name for step in steps]}")
        return plan

    @classmethod
    async def execute(cls, plan: LoadPlan, roots: List[Any]) -> List[Any]:
        """
        Load every step of ``plan`` onto ``roots`` and return ``roots``.

        Direct associations run concurrently. ``through`` associations run
        afterwards so they can reuse an intermediate association loaded in
        the same pass. Child plans then run on the flattened loaded rows.
        """
        if not roots or not plan.steps:
            return roots

        needed_by_through: Dict[str, Set[str]] = {}
        for step in plan.through_steps:
            source = step.association.source_association
            keys = needed_by_through.setdefault(step.association.through, set())
            if source.kind == BELONGS_TO:
                keys.add(source.foreign_key)

        await asyncio.gather(*(
            cls._load(
                step.association,
                roots,
                required=_required_keys(step.children) | needed_by_through.get(step.name, set()),
            )
            for step in plan.direct_steps
        ))

        for step in plan.through_steps:
            await cls._load_through(step.association, roots, _required_keys(step.children))

        for step in plan.steps:
            if step.children is None:
                continue
            children: List[Any] = []
            for root in roots:
                children.extend(_as_list(root._associations.get(step.name)))
            await cls.execute(step.children, _distinct_instances(children))

        return roots

    # ── Loading ──────────────────────────────────────────────────────

    @classmethod
    async def _fetch(
        cls,
        target: type,
        key_attr: str,
        keys: List[Any],
        *,
        scope: Dict[str, Any],
        select: Optional[Callable[[str], bool]],
        order: List[str],
        required: Set[str],
    ) -> List[Any]:
        schema = AttributeRegistry.finalize(target)
        query = target.query().where_in(key_attr, keys)
        if scope:
            query = query.where(**scope)
        if select is not None:
            always = {schema.primary_key.name, key_attr} | required
            query = query.select(*[
                attr.name for attr in schema.persisted
                if attr.name in always or select(attr.name)
            ])
        if order:
            query = query.order(*order)
        rows = await query.all()
        logger.debug(f"Batched {target.__name__} by {key_attr}: {len(keys)} keys, {len(rows)} rows")
        return rows

    @classmethod
    async def _load(
        cls,
        assoc: AssociationMeta,
        owners: List[Any],
        *,
        required: Set[str] = frozenset(),
        scope: Optional[Dict[str, Any]] = None,
        select: Optional[Callable[[str], bool]] = None,
        order: Optional[List[str]] = None,
    ) -> List[Any]:
        """Load a direct association onto ``owners`` with a single query."""
        target = assoc.target
        scope = assoc.scope if scope is None else scope
        select = assoc.select if select is None else select
        order = assoc.order if order is None else order

        if assoc.kind == BELONGS_TO:
            target_pk = AttributeRegistry.finalize(target).primary_key.name
            keys = _distinct(owner.attribute(assoc.foreign_key) for owner in owners)
            if not keys:
                for owner in owners:
                    owner._attach(assoc.name, None)
                return []
            rows = await cls._fetch(
                target, target_pk, keys,
                scope=scope, select=select, order=order, required=required,
            )
            index: Dict[Any, Any] = {}
            for row in rows:
                index.setdefault(row.attribute(target_pk), row)
            for owner in owners:
                owner._attach(assoc.name, index.get(owner.attribute(assoc.foreign_key)))
            return rows

        keys = _distinct(owner.pk for owner in owners)
        if not keys:
            for owner in owners:
                owner._attach(assoc.name, [] if assoc.kind == HAS_MANY else None)
            return []
        rows = await cls._fetch(
            target, assoc.foreign_key, keys,
            scope=scope, select=select, order=order, required=required,
        )
        groups: Dict[Any, List[Any]] = {}
        for row in rows:
            groups.setdefault(row.attribute(assoc.foreign_key), []).append(row)

        for owner in owners:
            group = groups.get(owner.pk, [])
            if assoc.kind == HAS_MANY:
                owner._attach(assoc.name, list(group))
                continue
            if assoc.strict and len(group) > 1:
                raise AssociationFault(
                    owner.__class__.__name__, assoc.name,
                    f"{len(group)} rows match primary key {owner.pk!r}",
                )
            owner._attach(assoc.name, group[0] if group else None)
        return rows

    @classmethod
    async def _load_through(
        cls,
        assoc: AssociationMeta,
        roots: List[Any],
        required: Set[str],
    ) -> None:
        via = assoc.through_association
        source = assoc.source_association

        missing = [root for root in roots if via.name not in root._associations]
        if missing:
            via_required = {source.foreign_key} if source.kind == BELONGS_TO else set()
            await cls._load(via, missing, required=via_required)

        intermediates: List[Any] = []
        for root in roots:
            intermediates.extend(_as_list(root._associations.get(via.name)))
        intermediates = _distinct_instances(intermediates)

        rows: List[Any] = []
        if intermediates:
            rows = await cls._load(
                source,
                intermediates,
                required=required,
                scope={**source.scope, **assoc.scope},
                select=assoc.select or source.select,
                order=assoc.order or source.order,
            )
        position = {id(row): index for index, row in enumerate(rows)}

        for root in roots:
            items: List[Any] = []
            seen: Set[int] = set()
            for intermediate in _as_list(root._associations.get(via.name)):
                for item in _as_list(intermediate._associations.get(source.name)):
                    if id(item) in seen:
                        continue
                    seen.add(id(item))
                    items.append(item)
            if assoc.order:
                items.sort(key=lambda item: position.get(id(item), 0))
            if assoc.kind == HAS_MANY:
                root._attach(assoc.name, items)
            else:
                if assoc.strict and len(items) > 1:
                    raise AssociationFault(
                        root.__class__.__name__, assoc.name,
                        f"{len(items)} rows reached through '{via.name}'",
                    )
                root._attach(assoc.name, items[0] if items else None)


def _distinct_instances(instances: Iterable[Any]) -> List[Any]:
    seen: Set[int] = set()
    result: List[Any] = []
    for instance in instances:
        if id(instance) in seen:
            continue
        seen.add(id(instance))
        result.append(instance)
    return result
