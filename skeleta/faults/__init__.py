"""
Skeleta Faults - typed fault signals.

Errors raised by Skeleta are structured faults carrying a stable code,
a domain, a severity and metadata naming the entity, attribute or
relation involved. Nothing inside the core logs and swallows them.

Domains:
- config:  declaration / finalize / plan time, fatal, never retried
- model:   validation, coercion and lookup failures, recoverable
- storage: query executor failures
"""

from .core import (
    Fault,
    FaultDomain,
    Severity,
)

from .domains import (
    # Config
    ConfigurationFault,
    UnknownDataKindFault,
    DuplicatePrimaryKeyFault,
    DuplicateColumnFault,
    UnknownAssociationKindFault,
    UnresolvedAssociationFault,
    UndeclaredRelationFault,
    # Model
    ModelFault,
    ValidationFault,
    CoercionFault,
    AssociationFault,
    ModelNotFoundFault,
    MissingPrimaryKeyFault,
    # Storage
    StorageFault,
    QueryFault,
    DatabaseConnectionFault,
)

__all__ = [
    "Fault",
    "FaultDomain",
    "Severity",
    "ConfigurationFault",
    "UnknownDataKindFault",
    "DuplicatePrimaryKeyFault",
    "DuplicateColumnFault",
    "UnknownAssociationKindFault",
    "UnresolvedAssociationFault",
    "UndeclaredRelationFault",
    "ModelFault",
    "ValidationFault",
    "CoercionFault",
    "AssociationFault",
    "ModelNotFoundFault",
    "MissingPrimaryKeyFault",
    "StorageFault",
    "QueryFault",
    "DatabaseConnectionFault",
]
