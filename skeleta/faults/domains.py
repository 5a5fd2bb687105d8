"""
Skeleta Faults - Domain-specific fault types.

Provides concrete fault classes for each domain:
- CONFIG faults (declaration, finalize and plan time; never retried)
- MODEL faults (validation, coercion, lookups)
- STORAGE faults (query executor)
"""

from typing import Any, Optional
from .core import Fault, FaultDomain, Severity


# ============================================================================
# CONFIG Faults
# ============================================================================

class ConfigurationFault(Fault):
    """Base class for model configuration faults."""

    def __init__(
        self,
        code: str,
        message: str,
        *,
        metadata: Optional[dict[str, Any]] = None,
    ):
        super().__init__(
            code=code,
            message=message,
            domain=FaultDomain.CONFIG,
            severity=Severity.FATAL,
            retryable=False,
            metadata=metadata,
        )


class UnknownDataKindFault(ConfigurationFault):
    """An attribute was declared with a data kind nobody registered."""

    def __init__(self, kind: Any, *, entity: str = "", attribute: str = "", **kwargs):
        where = f" on {entity}.{attribute}" if entity else ""
        super().__init__(
            code="UNKNOWN_DATA_KIND",
            message=f"Unknown data kind {kind!r}{where}",
            metadata={"kind": str(kind), "entity": entity, "attribute": attribute,
                      **kwargs.get("metadata", {})},
        )


class DuplicatePrimaryKeyFault(ConfigurationFault):
    """More than one primary key in a merged schema."""

    def __init__(self, entity: str, attributes: list[str], **kwargs):
        super().__init__(
            code="DUPLICATE_PRIMARY_KEY",
            message=(
                f"Model '{entity}' declares more than one primary key: "
                f"{', '.join(attributes)}"
            ),
            metadata={"entity": entity, "attributes": attributes, **kwargs.get("metadata", {})},
        )


class DuplicateColumnFault(ConfigurationFault):
    """Two attributes of one table map onto the same column."""

    def __init__(self, entity: str, column: str, attributes: list[str], **kwargs):
        super().__init__(
            code="DUPLICATE_COLUMN",
            message=(
                f"Model '{entity}' maps {', '.join(attributes)} "
                f"onto the same column '{column}'"
            ),
            metadata={"entity": entity, "column": column, "attributes": attributes,
                      **kwargs.get("metadata", {})},
        )


class UnknownAssociationKindFault(ConfigurationFault):
    """Association declared with an unsupported kind."""

    def __init__(self, entity: str, relation: str, kind: str, **kwargs):
        super().__init__(
            code="UNKNOWN_ASSOCIATION_KIND",
            message=f"Association {entity}.{relation} has unknown kind '{kind}'",
            metadata={"entity": entity, "relation": relation, "kind": kind,
                      **kwargs.get("metadata", {})},
        )


class UnresolvedAssociationFault(ConfigurationFault):
    """Association target or through-association could not be resolved."""

    def __init__(self, entity: str, relation: str, reason: str, **kwargs):
        super().__init__(
            code="UNRESOLVED_ASSOCIATION",
            message=f"Cannot resolve association {entity}.{relation}: {reason}",
            metadata={"entity": entity, "relation": relation, "reason": reason,
                      **kwargs.get("metadata", {})},
        )


class UndeclaredRelationFault(ConfigurationFault):
    """A relation path names an association that was never declared."""

    def __init__(self, entity: str, relation: str, **kwargs):
        super().__init__(
            code="UNDECLARED_RELATION",
            message=f"Model '{entity}' has no association named '{relation}'",
            metadata={"entity": entity, "relation": relation, **kwargs.get("metadata", {})},
        )


# ============================================================================
# MODEL Faults
# ============================================================================

class ModelFault(Fault):
    """Base class for faults raised against entity values."""

    def __init__(
        self,
        code: str,
        message: str,
        *,
        severity: Severity = Severity.ERROR,
        retryable: bool = False,
        metadata: Optional[dict[str, Any]] = None,
    ):
        super().__init__(
            code=code,
            message=message,
            domain=FaultDomain.MODEL,
            severity=severity,
            retryable=retryable,
            metadata=metadata,
        )


class ValidationFault(ModelFault):
    """A validator rejected an attribute value."""

    def __init__(self, entity: str, attribute: str, rule: str, message: str, **kwargs):
        self.entity = entity
        self.attribute = attribute
        self.rule = rule
        super().__init__(
            code="VALIDATION_FAILED",
            message=message,
            metadata={"entity": entity, "attribute": attribute, "rule": rule,
                      **kwargs.get("metadata", {})},
        )


class CoercionFault(ModelFault):
    """A value could not be converted to the attribute's declared kind."""

    def __init__(self, entity: str, attribute: str, kind: str, value: Any, reason: str = "", **kwargs):
        self.entity = entity
        self.attribute = attribute
        self.kind = kind
        self.value = value
        detail = f": {reason}" if reason else ""
        super().__init__(
            code="COERCION_FAILED",
            message=f"Cannot coerce {value!r} to {kind} for {entity}.{attribute}{detail}",
            metadata={"entity": entity, "attribute": attribute, "kind": kind,
                      "value": repr(value), **kwargs.get("metadata", {})},
        )


class AssociationFault(ModelFault):
    """Loaded rows violate a declared association (e.g. strict has_one)."""

    def __init__(self, entity: str, relation: str, reason: str, **kwargs):
        super().__init__(
            code="ASSOCIATION_VIOLATION",
            message=f"Association {entity}.{relation} violated: {reason}",
            metadata={"entity": entity, "relation": relation, "reason": reason,
                      **kwargs.get("metadata", {})},
        )


class ModelNotFoundFault(ModelFault):
    """A row expected to exist is gone."""

    def __init__(self, model_name: str, pk: Any = None, **kwargs):
        where = f" with pk={pk!r}" if pk is not None else ""
        super().__init__(
            code="MODEL_NOT_FOUND",
            message=f"{model_name}{where} not found",
            metadata={"model": model_name, "pk": pk, **kwargs.get("metadata", {})},
        )


class MissingPrimaryKeyFault(ModelFault):
    """An instance needs its primary key value for an operation but has none."""

    def __init__(self, model_name: str, operation: str, **kwargs):
        self.operation = operation
        super().__init__(
            code="MISSING_PRIMARY_KEY",
            message=f"Cannot {operation} {model_name}: instance has no primary key value",
            metadata={"model": model_name, "operation": operation, **kwargs.get("metadata", {})},
        )


# ============================================================================
# STORAGE Faults
# ============================================================================

class StorageFault(Fault):
    """Base class for query executor faults."""

    def __init__(
        self,
        code: str,
        message: str,
        *,
        severity: Severity = Severity.ERROR,
        retryable: bool = False,
        metadata: Optional[dict[str, Any]] = None,
    ):
        super().__init__(
            code=code,
            message=message,
            domain=FaultDomain.STORAGE,
            severity=severity,
            retryable=retryable,
            metadata=metadata,
        )


class QueryFault(StorageFault):
    """A query could not be built or run."""

    def __init__(self, model: str, operation: str, reason: str, **kwargs):
        super().__init__(
            code="QUERY_FAILED",
            message=f"Query on '{model}' ({operation}) failed: {reason}",
            metadata={"model": model, "operation": operation, "reason": reason,
                      **kwargs.get("metadata", {})},
        )


class DatabaseConnectionFault(StorageFault):
    """Database connection failed or is missing."""

    def __init__(self, url: str, reason: str, **kwargs):
        super().__init__(
            code="DB_CONNECTION_FAILED",
            message=f"Database connection failed ({url}): {reason}",
            severity=Severity.FATAL,
            metadata={"url": url, "reason": reason, **kwargs.get("metadata", {})},
        )
