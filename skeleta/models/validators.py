"""
Skeleta Validators — ordered, fail-fast attribute validation.

Rules are attached per attribute with ``validate={...}`` (named built-in
rules or callables) and/or ``validators=[...]`` (callables)::

    class Member(Model):
        name = Column(allow_null=False, validate={
            "not_in": [["zeus", "hera"]],
            "len": [1, 40],
        })
        status = Column(DataTypes.INTEGER, validate={
            "is_in": {"args": [["1", "2"]], "msg": "Error status"},
        })
        email = Column(validators=[check_domain])

``allow_null=False`` is evaluated before any declared rule. Declared rules
run in declaration order and stop at the first failure.

A rule check fails by returning a false value or by raising; when it
raises, the exception message becomes the failure message.
"""

from __future__ import annotations

import datetime
import logging
import re
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Sequence

from ..faults.domains import ConfigurationFault, ValidationFault
from ..utils.naming import underscore

logger = logging.getLogger("skeleta.models.validators")

__all__ = [
    "ValidationError",
    "Rule",
    "ValidationPipeline",
    "BUILTIN_RULES",
    "register_rule",
]


class ValidationError(ValueError):
    """Raised by validator callables that want to supply their own message."""

    def __init__(self, message: str, code: str = "invalid"):
        self.message = message
        self.code = code
        super().__init__(message)


# ── Built-in checks ──────────────────────────────────────────────────────────

_NUMERIC_RE = re.compile(r"^[+-]?(\d+\.?\d*|\.\d+)([eE][+-]?\d+)?$")
_INT_RE = re.compile(r"^[+-]?\d+$")
_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[a-zA-Z0-9-]{2,}$")
_URL_RE = re.compile(r"^(https?|ftp)://[^\s/$.?#][^\s]*$", re.IGNORECASE)


def _text(value: Any) -> str:
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    return str(value)


def _choices(args: Sequence[Any]) -> List[str]:
    # is_in / not_in take either is_in: [["a", "b"]] or is_in: ["a", "b"]
    if len(args) == 1 and isinstance(args[0], (list, tuple, set, frozenset)):
        args = list(args[0])
    return [_text(arg) for arg in args]


def _is_float(value: Any) -> bool:
    try:
        float(_text(value))
    except ValueError:
        return False
    return True


def _is_date(value: Any) -> bool:
    if isinstance(value, (datetime.date, datetime.datetime)):
        return True
    text = _text(value).strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        datetime.datetime.fromisoformat(text)
    except ValueError:
        return False
    return True


def _length(value: Any, minimum: int = 0, maximum: Optional[int] = None) -> bool:
    size = len(value) if isinstance(value, (list, tuple, dict, bytes)) else len(_text(value))
    if size < minimum:
        return False
    return maximum is None or size <= maximum


def _min(value: Any, limit: Any) -> bool:
    try:
        return float(value) >= float(limit)
    except (TypeError, ValueError):
        return False


def _max(value: Any, limit: Any) -> bool:
    try:
        return float(value) <= float(limit)
    except (TypeError, ValueError):
        return False


def _matches(value: Any, pattern: Any, flags: str = "") -> bool:
    re_flags = 0
    if "i" in flags:
        re_flags |= re.IGNORECASE
    if "m" in flags:
        re_flags |= re.MULTILINE
    if isinstance(pattern, re.Pattern):
        return pattern.search(_text(value)) is not None
    return re.search(pattern, _text(value), re_flags) is not None


BUILTIN_RULES: Dict[str, Callable[..., bool]] = {
    "is_numeric": lambda v: bool(_NUMERIC_RE.match(_text(v))),
    "is_int": lambda v: bool(_INT_RE.match(_text(v))),
    "is_float": _is_float,
    "is_alpha": lambda v: _text(v).isalpha(),
    "is_alphanumeric": lambda v: _text(v).isalnum(),
    "is_email": lambda v: bool(_EMAIL_RE.match(_text(v))),
    "is_url": lambda v: bool(_URL_RE.match(_text(v))),
    "is_lowercase": lambda v: _text(v) == _text(v).lower(),
    "is_uppercase": lambda v: _text(v) == _text(v).upper(),
    "not_empty": lambda v: bool(_text(v).strip()),
    "is_in": lambda v, *args: _text(v) in _choices(args),
    "not_in": lambda v, *args: _text(v) not in _choices(args),
    "contains": lambda v, sub: _text(sub) in _text(v),
    "not_contains": lambda v, sub: _text(sub) not in _text(v),
    "len": _length,
    "min": _min,
    "max": _max,
    "is": _matches,
    "not": lambda v, *args: not _matches(v, *args),
    "is_date": _is_date,
}


def register_rule(name: str, check: Callable[..., bool]) -> None:
    """Add a named rule usable from ``validate={name: ...}``."""
    BUILTIN_RULES[underscore(name)] = check


# ── Rule ─────────────────────────────────────────────────────────────────────


class Rule:
    """One named check in an attribute's validation pipeline."""

    __slots__ = ("name", "check", "args", "message")

    def __init__(
        self,
        name: str,
        check: Callable[..., Any],
        args: Sequence[Any] = (),
        message: Optional[str] = None,
    ):
        self.name = name
        self.check = check
        self.args = tuple(args)
        self.message = message

    def run(self, attribute_name: str, value: Any) -> Optional[str]:
        """Return the failure message, or None if the value passes."""
        try:
            ok = self.check(value, *self.args)
        except Exception as exc:
            return self.message or str(exc) or self.default_message(attribute_name)
        # None means "did not object"; callables may signal failure by raising
        if ok is not None and not ok:
            return self.message or self.default_message(attribute_name)
        return None

    def default_message(self, attribute_name: str) -> str:
        return f"Validation {self.name} on {attribute_name} failed"

    def __repr__(self) -> str:
        return f"Rule({self.name!r}, args={self.args!r})"


def _rule_from_spec(attribute_name: str, name: str, spec: Any) -> Optional[Rule]:
    rule_name = underscore(name)

    if callable(spec) and not isinstance(spec, type):
        return Rule(rule_name, spec)

    check = BUILTIN_RULES.get(rule_name)
    if check is None:
        raise ConfigurationFault(
            code="UNKNOWN_VALIDATOR",
            message=f"Unknown validation rule '{name}' on attribute '{attribute_name}'",
            metadata={"attribute": attribute_name, "rule": name},
        )

    if spec is False or spec is None:
        return None
    if spec is True:
        return Rule(rule_name, check)
    if isinstance(spec, Mapping):
        args = spec.get("args", ())
        if args is True:
            args = ()
        elif not isinstance(args, (list, tuple)):
            args = (args,)
        return Rule(rule_name, check, args, spec.get("msg") or spec.get("message"))
    if isinstance(spec, (list, tuple)):
        return Rule(rule_name, check, spec)
    return Rule(rule_name, check, (spec,))


# ── Pipeline ─────────────────────────────────────────────────────────────────


class ValidationPipeline:
    """
    Runs an attribute's rules against a value.

    Not-null first, then the declared rules in order. The first failing
    rule stops the pipeline.
    """

    NOT_NULL = "not_null"

    @classmethod
    def build(
        cls,
        attribute_name: str,
        validate: Optional[Mapping[str, Any]] = None,
        validators: Optional[Iterable[Callable[..., Any]]] = None,
    ) -> List[Rule]:
        """
        Turn declaration options into an ordered rule list.

        Raises:
            ConfigurationFault: a rule name is neither built in nor callable.
        """
        rules: List[Rule] = []
        for name, spec in (validate or {}).items():
            rule = _rule_from_spec(attribute_name, name, spec)
            if rule is not None:
                rules.append(rule)
        for fn in validators or ():
            name = getattr(fn, "code", None) or getattr(fn, "__name__", None) or type(fn).__name__
            rules.append(Rule(underscore(name), fn))
        return rules

    @classmethod
    def check(cls, model_name: str, attribute: Any, value: Any) -> Optional[ValidationFault]:
        """Return the first failure as a ``ValidationFault`` without raising."""
        if value is None or (isinstance(value, str) and value == ""):
            if not attribute.allow_null:
                return ValidationFault(
                    model_name,
                    attribute.name,
                    cls.NOT_NULL,
                    f"{attribute.name} cannot be null",
                )
            if value is None:
                return None

        for rule in attribute.validators:
            message = rule.run(attribute.name, value)
            if message is not None:
                logger.debug(
                    f"{model_name}.{attribute.name} failed rule '{rule.name}': {message}"
                )
                return ValidationFault(model_name, attribute.name, rule.name, message)
        return None

    @classmethod
    def validate(cls, model_name: str, attribute: Any, value: Any) -> None:
        """
        Raises:
            ValidationFault: the value fails not-null or a declared rule.
        """
        fault = cls.check(model_name, attribute, value)
        if fault is not None:
            raise fault
