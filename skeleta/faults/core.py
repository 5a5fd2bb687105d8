"""
Skeleta Faults - core types.

A fault is an exception that also carries a stable machine-readable code,
the domain it belongs to, how severe it is, whether retrying can help, and
metadata naming the entity, attribute or relation involved.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Optional


class Severity(str, Enum):
    """How loudly a caller should react."""

    INFO = "info"
    WARN = "warn"
    ERROR = "error"
    FATAL = "fatal"


class FaultDomain(str, Enum):
    """
    Where a fault comes from.

    - CONFIG:  declaration, finalize and plan time; the model set is wrong
    - MODEL:   a value or a loaded row violates the model
    - STORAGE: the query executor failed
    """

    CONFIG = "config"
    MODEL = "model"
    STORAGE = "storage"

    @property
    def default_severity(self) -> Severity:
        return Severity.FATAL if self is FaultDomain.CONFIG else Severity.ERROR

    def __str__(self) -> str:
        return self.value


class Fault(Exception):
    """
    Base fault.

    ``code``, ``message`` and ``domain`` may come from the constructor or
    from class attributes of a subclass::

        class NoteLockedFault(Fault):
            code = "NOTE_LOCKED"
            message = "Note is locked"
            domain = FaultDomain.MODEL

        raise NoteLockedFault(metadata={"pk": 7})
    """

    def __init__(
        self,
        code: str | None = None,
        message: str | None = None,
        *,
        domain: FaultDomain | None = None,
        severity: Optional[Severity] = None,
        retryable: Optional[bool] = None,
        metadata: Optional[dict[str, Any]] = None,
    ):
        self.code = code if code is not None else getattr(type(self), "code", None)
        self.message = message if message is not None else getattr(type(self), "message", None)
        self.domain = domain if domain is not None else getattr(type(self), "domain", None)
        if self.code is None or self.message is None or self.domain is None:
            raise TypeError(f"{type(self).__name__} missing required code, message, or domain")

        super().__init__(self.message)
        self.severity = severity or self.domain.default_severity
        # Nothing the core raises goes away on its own
        self.retryable = bool(retryable)
        self.metadata: dict[str, Any] = dict(metadata or {})

    def __str__(self) -> str:
        return f"[{self.code}] {self.message}"

    def __repr__(self) -> str:
        return (
            f"{type(self).__name__}(code={self.code!r}, domain={self.domain.value}, "
            f"severity={self.severity.value})"
        )

    def to_dict(self) -> dict[str, Any]:
        """Plain-data form for logs and API error bodies."""
        return {
            "code": self.code,
            "message": self.message,
            "domain": self.domain.value,
            "severity": self.severity.value,
            "retryable": self.retryable,
            "metadata": self.metadata,
        }
