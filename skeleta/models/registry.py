"""
Skeleta Model Registry — global registry for all Model subclasses.

Tracks models by name for lazy association targets, binds the database,
runs the explicit resolution pass and creates tables.
"""

from __future__ import annotations

import logging
from typing import Dict, List, Optional, Type, TYPE_CHECKING

if TYPE_CHECKING:
    from ..db.engine import Database
    from .base import Model

logger = logging.getLogger("skeleta.models.registry")

__all__ = ["ModelRegistry"]


class ModelRegistry:
    """
    Global name -> model map.

    Registering a model never resolves associations; call ``resolve_all``
    (or ``Model.sync()`` / ``Model.initialize()``) once every model that
    takes part in a relation has been declared.
    """

    _models: Dict[str, Type[Model]] = {}
    _db: Optional[Database] = None

    @classmethod
    def register(cls, model_cls: Type[Model]) -> None:
        """Register a model class."""
        name = model_cls.__name__
        if name in cls._models and cls._models[name] is not model_cls:
            logger.debug(f"Model '{name}' re-registered, replacing previous class")
        cls._models[name] = model_cls

    @classmethod
    def get(cls, name: str) -> Optional[Type[Model]]:
        """Get model class by name."""
        return cls._models.get(name)

    @classmethod
    def all_models(cls) -> Dict[str, Type[Model]]:
        """Get all registered models."""
        return dict(cls._models)

    @classmethod
    def set_database(cls, db: Optional[Database]) -> None:
        """Set the database used by every model without its own binding."""
        cls._db = db

    @classmethod
    def get_database(cls) -> Optional[Database]:
        return cls._db

    @classmethod
    def resolve_all(cls) -> None:
        """
        Resolve associations of every registered model.

        Raises:
            UnresolvedAssociationFault: a target or through association is missing.
        """
        from .associations import AssociationGraph

        for model_cls in cls._models.values():
            AssociationGraph.resolve(model_cls)

    @classmethod
    async def create_tables(cls, db: Optional[Database] = None) -> List[str]:
        """Create tables for all registered models, resolving associations first."""
        cls.resolve_all()
        statements: List[str] = []
        seen: set = set()
        for model_cls in cls._models.values():
            table = model_cls._schema().table_name
            if table in seen:
                continue
            seen.add(table)
            statements.append(await model_cls.sync(db=db))
        return statements

    @classmethod
    def reset(cls) -> None:
        """Clear registry and the per-model metadata (for testing)."""
        from .associations import AssociationGraph
        from .attributes import AttributeRegistry

        for model_cls in cls._models.values():
            AttributeRegistry.forget(model_cls)
            AssociationGraph.forget(model_cls)
        cls._models.clear()
        cls._db = None
