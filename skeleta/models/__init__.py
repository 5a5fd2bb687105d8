"""
Skeleta Model System — declarative async ORM core.

Usage:
    from skeleta.models import Model, Column, DataTypes, HasMany, BelongsTo

    class Member(Model):
        name = Column(DataTypes.STRING(64), allow_null=False)
        notes = HasMany("Note")

    class Note(Model):
        name = Column(allow_null=False)
        content = Column(DataTypes.TEXT)
        member_id = Column()
        member = BelongsTo("Member")

    await Member.sync()
    await Note.sync()
    member = await Member.find_one(name="thor").with_("notes")

Public API:
    - Model, Column, HasMany, HasOne, BelongsTo: declaration front-end
    - DataTypes, TypeCoercionRegistry: data kinds and coercion
    - AttributeRegistry, AttributeMeta, EntitySchema: schema metadata
    - ValidationPipeline, Rule: attribute validation
    - AssociationGraph, AssociationMeta: relations
    - EagerLoadPlanner, LoadPlan, LoadStep: batched eager loading
    - Query: chainable queries
    - ModelRegistry: global model registry
"""

from .types import (
    DataType,
    DataTypes,
    TypeCoercionRegistry,
    CoercionError,
)
from .validators import (
    Rule,
    ValidationError,
    ValidationPipeline,
    register_rule,
)
from .attributes import (
    UNSET,
    AttributeMeta,
    AttributeRegistry,
    EntitySchema,
)
from .associations import (
    AssociationGraph,
    AssociationMeta,
)
from .planner import (
    EagerLoadPlanner,
    LoadPlan,
    LoadStep,
)
from .registry import ModelRegistry
from .query import Query
from .base import (
    Model,
    ModelMeta,
    Column,
    HasMany,
    HasOne,
    BelongsTo,
)

__all__ = [
    # Types
    "DataType",
    "DataTypes",
    "TypeCoercionRegistry",
    "CoercionError",
    # Validation
    "Rule",
    "ValidationError",
    "ValidationPipeline",
    "register_rule",
    # Attributes
    "UNSET",
    "AttributeMeta",
    "AttributeRegistry",
    "EntitySchema",
    # Associations
    "AssociationGraph",
    "AssociationMeta",
    # Eager loading
    "EagerLoadPlanner",
    "LoadPlan",
    "LoadStep",
    # Runtime
    "ModelRegistry",
    "Query",
    "Model",
    "ModelMeta",
    "Column",
    "HasMany",
    "HasOne",
    "BelongsTo",
]
