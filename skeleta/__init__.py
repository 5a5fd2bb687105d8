"""
Skeleta - async object-relational mapping core

- Models: declarative entities with inheritable schema
- Associations: has_many / has_one / belongs_to, through-chains
- Eager loading: batched, nested, field-filtered
- Faults: structured error taxonomy
- Database: async query executor (aiosqlite backend)
"""

__version__ = "0.1.0"

from .faults import (
    Fault,
    FaultDomain,
    Severity,
    ConfigurationFault,
    ValidationFault,
    CoercionFault,
    AssociationFault,
    ModelNotFoundFault,
    MissingPrimaryKeyFault,
    QueryFault,
)
from .db import Database, configure_database, get_database, set_database
from .models import (
    Model,
    Column,
    DataTypes,
    HasMany,
    HasOne,
    BelongsTo,
    ModelRegistry,
    Query,
)

__all__ = [
    "__version__",
    "Fault",
    "FaultDomain",
    "Severity",
    "ConfigurationFault",
    "ValidationFault",
    "CoercionFault",
    "AssociationFault",
    "ModelNotFoundFault",
    "MissingPrimaryKeyFault",
    "QueryFault",
    "Database",
    "configure_database",
    "get_database",
    "set_database",
    "Model",
    "Column",
    "DataTypes",
    "HasMany",
    "HasOne",
    "BelongsTo",
    "ModelRegistry",
    "Query",
]
