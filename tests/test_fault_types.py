"""
Tests for the fault taxonomy.
"""

from skeleta.faults import (
    AssociationFault,
    CoercionFault,
    ConfigurationFault,
    DatabaseConnectionFault,
    DuplicatePrimaryKeyFault,
    Fault,
    FaultDomain,
    ModelFault,
    QueryFault,
    Severity,
    StorageFault,
    UnresolvedAssociationFault,
    ValidationFault,
)


class TestFaultBasics:

    def test_str_and_dict(self):
        fault = ValidationFault("Member", "name", "not_null", "name cannot be null")
        assert str(fault) == "[VALIDATION_FAILED] name cannot be null"
        data = fault.to_dict()
        assert data["code"] == "VALIDATION_FAILED"
        assert data["domain"] == "model"
        assert data["severity"] == "error"
        assert data["retryable"] is False
        assert data["metadata"] == {"entity": "Member", "attribute": "name", "rule": "not_null"}

    def test_custom_fault_requires_code(self):
        try:
            Fault(message="missing code", domain=FaultDomain.MODEL)
        except TypeError as exc:
            assert "missing required" in str(exc)
        else:
            raise AssertionError("Fault without code should not construct")

    def test_domain_equality(self):
        assert FaultDomain.CONFIG == "config"
        assert FaultDomain.CONFIG == FaultDomain("config")
        assert hash(FaultDomain.STORAGE) == hash(FaultDomain("storage"))


class TestFaultHierarchy:

    def test_config_faults_are_fatal(self):
        fault = DuplicatePrimaryKeyFault("Post", ["code", "slug"])
        assert isinstance(fault, ConfigurationFault)
        assert fault.domain == FaultDomain.CONFIG
        assert fault.severity == Severity.FATAL
        assert "code, slug" in fault.message

    def test_unresolved_association(self):
        fault = UnresolvedAssociationFault("Note", "tags", "no source")
        assert fault.code == "UNRESOLVED_ASSOCIATION"
        assert fault.metadata["relation"] == "tags"

    def test_model_faults(self):
        coercion = CoercionFault("Hero", "status", "integer", "two", "not a numeric string")
        assert isinstance(coercion, ModelFault)
        assert coercion.metadata["value"] == "'two'"
        assert "not a numeric string" in coercion.message

        association = AssociationFault("Member", "profile", "2 rows")
        assert association.code == "ASSOCIATION_VIOLATION"

    def test_storage_faults(self):
        query = QueryFault(model="Note", operation="where", reason="bad column")
        assert isinstance(query, StorageFault)
        assert query.domain == FaultDomain.STORAGE

        connection = DatabaseConnectionFault(url="sqlite:///x.db", reason="locked")
        assert connection.severity == Severity.FATAL
        assert connection.metadata["url"] == "sqlite:///x.db"

    def test_faults_are_exceptions(self):
        assert issubclass(ValidationFault, Exception)
        assert issubclass(QueryFault, Fault)
