"""Schema nodes — immutable building blocks of a schema graph.

Every node is a frozen dataclass. Builder methods (``.min()``, ``.optional()``,
``.refine()`` ...) never touch ``self``; they return a new node with the
change applied, so one node can be shared by any number of parents and
validated from any number of threads.

The variant set is closed:

  Primitive       string / number / boolean / date with ordered constraints
  EnumNode        one of a fixed tuple of literals
  OptionalNode    accepts ABSENT, delegates otherwise
  NullableNode    accepts None, delegates otherwise
  DefaultNode     substitutes a fallback for ABSENT
  PreprocessNode  rewrites the raw value before delegating
  ObjectNode      named fields plus an unknown-key policy
  ArrayNode       homogeneous sequence
  RefinementNode  custom checks over an already-valid value
"""

from __future__ import annotations

import datetime as dt
import enum
import math
import re
from dataclasses import dataclass, replace
from types import MappingProxyType
from typing import Any, Callable, Iterable, Literal, Mapping
from urllib.parse import urlparse

from formschema.config import get_settings
from formschema.schemas.validation import IssueCode, Path
from formschema.validation.errors import SchemaDefinitionError


class _Absent:
    """Marker for a value that was not supplied at all."""

    _instance: _Absent | None = None

    def __new__(cls) -> _Absent:
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "ABSENT"

    def __bool__(self) -> bool:
        return False

    def __reduce__(self):
        return (_Absent, ())


ABSENT = _Absent()
Absent = _Absent

PrimitiveKind = Literal["string", "number", "boolean", "date"]
UnknownKeys = Literal["strip", "passthrough", "reject"]

PRIMITIVE_KINDS = frozenset({"string", "number", "boolean", "date"})
UNKNOWN_KEY_POLICIES = frozenset({"strip", "passthrough", "reject"})

_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


# ─── Constraint / refinement records ───


@dataclass(frozen=True)
class Constraint:
    predicate: Callable[[Any], bool]
    message: str
    code: IssueCode = IssueCode.CUSTOM


@dataclass(frozen=True)
class RefinementIssue:
    """An issue reported by a refinement check.

    ``path`` is relative to the refined node.
    """

    message: str
    path: Path = ()
    fatal: bool = False
    code: IssueCode = IssueCode.CUSTOM


RefinementCheck = Callable[[Any], "Iterable[RefinementIssue] | None"]


def as_instant(value: dt.datetime) -> dt.datetime:
    """Attach the configured default zone to naive datetimes."""
    if value.tzinfo is None:
        return value.replace(tzinfo=get_settings().tz)
    return value


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _is_multiple(value: float, step: float) -> bool:
    if isinstance(value, int) and isinstance(step, int):
        return value % step == 0
    return abs(math.remainder(value, step)) <= 1e-9 * max(1.0, abs(step))


def _is_url(value: str) -> bool:
    parsed = urlparse(value)
    return bool(parsed.scheme and parsed.netloc)


# ═══════════════════════════════════════════════════════════
# Base node
# ═══════════════════════════════════════════════════════════


class SchemaNode:
    """Common builder and entry-point methods shared by all node kinds."""

    # ─── Wrappers ───

    def optional(self) -> OptionalNode:
        return OptionalNode(self)

    def nullable(self) -> NullableNode:
        return NullableNode(self)

    def nullish(self) -> OptionalNode:
        return OptionalNode(self.nullable())

    def default(self, fallback: Any) -> DefaultNode:
        return DefaultNode(self, fallback)

    def refine(
        self,
        predicate: Callable[[Any], bool],
        message: str = "Invalid input",
        *,
        path: Iterable[str | int] = (),
        fatal: bool = False,
    ) -> RefinementNode:
        """Fail with ``message`` at ``path`` when ``predicate`` is falsy."""
        issue = RefinementIssue(message, path=tuple(path), fatal=fatal)

        def check(value: Any) -> tuple[RefinementIssue, ...]:
            return () if predicate(value) else (issue,)

        return RefinementNode(self, check, fatal)

    def super_refine(
        self, check: RefinementCheck, *, fatal: bool = False
    ) -> RefinementNode:
        return RefinementNode(self, check, fatal)

    # ─── Entry points ───

    def validate(self, value: Any = ABSENT, path: Iterable[str | int] = ()):
        from formschema.validation.engine import validate

        return validate(self, value, path)

    def safe_parse(self, value: Any = ABSENT):
        from formschema.validation.engine import safe_parse

        return safe_parse(self, value)

    def parse(self, value: Any = ABSENT) -> Any:
        from formschema.validation.engine import parse

        return parse(self, value)

    def infer_type(self) -> Any:
        from formschema.validation.inference import infer_type

        return infer_type(self)


def _require_node(node: Any, owner: str) -> None:
    if not isinstance(node, SchemaNode):
        raise SchemaDefinitionError(
            f"{owner} expects a schema node, got {type(node).__name__}"
        )


# ═══════════════════════════════════════════════════════════
# Primitive
# ═══════════════════════════════════════════════════════════


@dataclass(frozen=True)
class Primitive(SchemaNode):
    kind: PrimitiveKind
    constraints: tuple[Constraint, ...] = ()
    coerce: bool = False

    def __post_init__(self):
        if self.kind not in PRIMITIVE_KINDS:
            raise SchemaDefinitionError(f"Unknown primitive kind: {self.kind!r}")
        object.__setattr__(self, "constraints", tuple(self.constraints))

    def _with(self, predicate, message: str, code: IssueCode) -> Primitive:
        return replace(
            self, constraints=self.constraints + (Constraint(predicate, message, code),)
        )

    def _require_kind(self, operation: str, *kinds: str) -> None:
        if self.kind not in kinds:
            raise SchemaDefinitionError(
                f"{operation}() is not available on {self.kind} schemas"
            )

    def check(
        self,
        predicate: Callable[[Any], bool],
        message: str = "Invalid input",
        code: IssueCode = IssueCode.CUSTOM,
    ) -> Primitive:
        """Append a custom constraint evaluated after coercion."""
        return self._with(predicate, message, code)

    # ─── Bounds (kind-aware) ───

    def min(self, bound: Any, message: str | None = None) -> Primitive:
        self._require_kind("min", "string", "number", "date")
        if self.kind == "string":
            n = _length_bound(bound, "min")
            return self._with(
                lambda v: len(v) >= n,
                message or f"String must contain at least {n} character(s)",
                IssueCode.TOO_SMALL,
            )
        if self.kind == "number":
            limit = _number_bound(bound, "min")
            return self._with(
                lambda v: v >= limit,
                message or f"Number must be greater than or equal to {limit}",
                IssueCode.TOO_SMALL,
            )
        instant = _date_bound(bound, "min")
        return self._with(
            lambda v: as_instant(v) >= as_instant(instant),
            message or f"Date must be greater than or equal to {instant.isoformat()}",
            IssueCode.TOO_SMALL,
        )

    def max(self, bound: Any, message: str | None = None) -> Primitive:
        self._require_kind("max", "string", "number", "date")
        if self.kind == "string":
            n = _length_bound(bound, "max")
            return self._with(
                lambda v: len(v) <= n,
                message or f"String must contain at most {n} character(s)",
                IssueCode.TOO_BIG,
            )
        if self.kind == "number":
            limit = _number_bound(bound, "max")
            return self._with(
                lambda v: v <= limit,
                message or f"Number must be less than or equal to {limit}",
                IssueCode.TOO_BIG,
            )
        instant = _date_bound(bound, "max")
        return self._with(
            lambda v: as_instant(v) <= as_instant(instant),
            message or f"Date must be less than or equal to {instant.isoformat()}",
            IssueCode.TOO_BIG,
        )

    # ─── String ───

    def length(self, n: int, message: str | None = None) -> Primitive:
        self._require_kind("length", "string")
        n = _length_bound(n, "length")
        return self._with(
            lambda v: len(v) == n,
            message or f"String must contain exactly {n} character(s)",
            IssueCode.TOO_SMALL,
        )

    def nonempty(self, message: str | None = None) -> Primitive:
        self._require_kind("nonempty", "string")
        return self.min(1, message or "String must not be empty")

    def email(self, message: str = "Invalid email") -> Primitive:
        self._require_kind("email", "string")
        return self._with(
            lambda v: _EMAIL_RE.match(v) is not None, message, IssueCode.INVALID_STRING
        )

    def url(self, message: str = "Invalid url") -> Primitive:
        self._require_kind("url", "string")
        return self._with(_is_url, message, IssueCode.INVALID_STRING)

    def regex(self, pattern: str | re.Pattern, message: str = "Invalid") -> Primitive:
        self._require_kind("regex", "string")
        compiled = re.compile(pattern)
        return self._with(
            lambda v: compiled.search(v) is not None, message, IssueCode.INVALID_STRING
        )

    def startswith(self, prefix: str, message: str | None = None) -> Primitive:
        self._require_kind("startswith", "string")
        return self._with(
            lambda v: v.startswith(prefix),
            message or f'Invalid input: must start with "{prefix}"',
            IssueCode.INVALID_STRING,
        )

    def endswith(self, suffix: str, message: str | None = None) -> Primitive:
        self._require_kind("endswith", "string")
        return self._with(
            lambda v: v.endswith(suffix),
            message or f'Invalid input: must end with "{suffix}"',
            IssueCode.INVALID_STRING,
        )

    # ─── Number ───

    def gte(self, bound: float, message: str | None = None) -> Primitive:
        self._require_kind("gte", "number")
        return self.min(bound, message)

    def lte(self, bound: float, message: str | None = None) -> Primitive:
        self._require_kind("lte", "number")
        return self.max(bound, message)

    def gt(self, bound: float, message: str | None = None) -> Primitive:
        self._require_kind("gt", "number")
        limit = _number_bound(bound, "gt")
        return self._with(
            lambda v: v > limit,
            message or f"Number must be greater than {limit}",
            IssueCode.TOO_SMALL,
        )

    def lt(self, bound: float, message: str | None = None) -> Primitive:
        self._require_kind("lt", "number")
        limit = _number_bound(bound, "lt")
        return self._with(
            lambda v: v < limit,
            message or f"Number must be less than {limit}",
            IssueCode.TOO_BIG,
        )

    def int_(self, message: str = "Expected integer, received float") -> Primitive:
        self._require_kind("int_", "number")
        return self._with(
            lambda v: isinstance(v, int) or float(v).is_integer(),
            message,
            IssueCode.NOT_INTEGER,
        )

    def positive(self, message: str | None = None) -> Primitive:
        return self.gt(0, message)

    def nonnegative(self, message: str | None = None) -> Primitive:
        return self.gte(0, message)

    def negative(self, message: str | None = None) -> Primitive:
        return self.lt(0, message)

    def multiple_of(self, step: float, message: str | None = None) -> Primitive:
        self._require_kind("multiple_of", "number")
        step = _number_bound(step, "multiple_of")
        if step == 0:
            raise SchemaDefinitionError("multiple_of() step must be non-zero")
        return self._with(
            lambda v: _is_multiple(v, step),
            message or f"Number must be a multiple of {step}",
            IssueCode.NOT_MULTIPLE_OF,
        )


def _length_bound(bound: Any, operation: str) -> int:
    if not isinstance(bound, int) or isinstance(bound, bool) or bound < 0:
        raise SchemaDefinitionError(
            f"{operation}() on a string needs a non-negative int, got {bound!r}"
        )
    return bound


def _number_bound(bound: Any, operation: str) -> float:
    if not _is_number(bound) or math.isnan(bound):
        raise SchemaDefinitionError(f"{operation}() needs a number, got {bound!r}")
    return bound


def _date_bound(bound: Any, operation: str) -> dt.datetime:
    if isinstance(bound, dt.datetime):
        return bound
    if isinstance(bound, dt.date):
        return dt.datetime.combine(bound, dt.time())
    raise SchemaDefinitionError(f"{operation}() on a date needs a date, got {bound!r}")


# ═══════════════════════════════════════════════════════════
# Enum
# ═══════════════════════════════════════════════════════════


def literal_equal(a: Any, b: Any) -> bool:
    """Equality that keeps booleans apart from 0 and 1."""
    return isinstance(a, bool) == isinstance(b, bool) and a == b


@dataclass(frozen=True)
class EnumNode(SchemaNode):
    allowed: tuple[Any, ...]

    def __post_init__(self):
        allowed = tuple(self.allowed)
        if not allowed:
            raise SchemaDefinitionError("An enum needs at least one allowed value")
        for i, value in enumerate(allowed):
            if any(literal_equal(value, other) for other in allowed[:i]):
                raise SchemaDefinitionError(f"Duplicate enum value: {value!r}")
        object.__setattr__(self, "allowed", allowed)

    @property
    def options(self) -> tuple[Any, ...]:
        """Allowed values, in declaration order."""
        return self.allowed

    @property
    def enum(self) -> dict[str, Any]:
        return {str(value): value for value in self.allowed}

    def accepts(self, value: Any) -> bool:
        return any(literal_equal(value, allowed) for allowed in self.allowed)

    def _check_members(self, values: Iterable[Any], operation: str) -> tuple:
        values = tuple(values)
        missing = [v for v in values if not self.accepts(v)]
        if missing:
            raise SchemaDefinitionError(
                f"{operation}(): {missing!r} not in enum {list(self.allowed)!r}"
            )
        return values

    def extract(self, values: Iterable[Any]) -> EnumNode:
        chosen = self._check_members(values, "extract")
        return EnumNode(
            tuple(v for v in self.allowed if any(literal_equal(v, c) for c in chosen))
        )

    def exclude(self, values: Iterable[Any]) -> EnumNode:
        dropped = self._check_members(values, "exclude")
        return EnumNode(
            tuple(
                v for v in self.allowed if not any(literal_equal(v, d) for d in dropped)
            )
        )


# ═══════════════════════════════════════════════════════════
# Wrappers
# ═══════════════════════════════════════════════════════════


@dataclass(frozen=True)
class OptionalNode(SchemaNode):
    inner: SchemaNode

    def __post_init__(self):
        _require_node(self.inner, "optional")

    def optional(self) -> OptionalNode:
        return self

    def unwrap(self) -> SchemaNode:
        return self.inner


@dataclass(frozen=True)
class NullableNode(SchemaNode):
    inner: SchemaNode

    def __post_init__(self):
        _require_node(self.inner, "nullable")

    def nullable(self) -> NullableNode:
        return self

    def unwrap(self) -> SchemaNode:
        return self.inner


@dataclass(frozen=True)
class DefaultNode(SchemaNode):
    inner: SchemaNode
    fallback: Any = None

    def __post_init__(self):
        _require_node(self.inner, "default")

    def fallback_value(self) -> Any:
        return self.fallback() if callable(self.fallback) else self.fallback

    def unwrap(self) -> SchemaNode:
        return self.inner


@dataclass(frozen=True)
class PreprocessNode(SchemaNode):
    inner: SchemaNode
    transform: Callable[[Any], Any]

    def __post_init__(self):
        _require_node(self.inner, "preprocess")
        if not callable(self.transform):
            raise SchemaDefinitionError("preprocess() transform must be callable")


@dataclass(frozen=True)
class RefinementNode(SchemaNode):
    inner: SchemaNode
    check: RefinementCheck
    fatal: bool = False

    def __post_init__(self):
        _require_node(self.inner, "refine")
        if not callable(self.check):
            raise SchemaDefinitionError("refinement check must be callable")


# ═══════════════════════════════════════════════════════════
# Object
# ═══════════════════════════════════════════════════════════


@dataclass(frozen=True)
class ObjectNode(SchemaNode):
    fields: Mapping[str, SchemaNode]
    unknown_keys: UnknownKeys = "strip"

    def __post_init__(self):
        fields = dict(self.fields)
        for name, node in fields.items():
            if not isinstance(name, str):
                raise SchemaDefinitionError(f"Field names must be strings, got {name!r}")
            _require_node(node, f"field {name!r}")
        if self.unknown_keys not in UNKNOWN_KEY_POLICIES:
            raise SchemaDefinitionError(
                f"Unknown-key policy must be one of {sorted(UNKNOWN_KEY_POLICIES)}, "
                f"got {self.unknown_keys!r}"
            )
        object.__setattr__(self, "fields", MappingProxyType(fields))

    def __hash__(self):
        return hash((tuple(self.fields.items()), self.unknown_keys))

    @property
    def shape(self) -> Mapping[str, SchemaNode]:
        return self.fields

    # ─── Derivations ───

    def pick(self, names: Iterable[str]) -> ObjectNode:
        from formschema.validation.derivation import pick

        return pick(self, names)

    def omit(self, names: Iterable[str]) -> ObjectNode:
        from formschema.validation.derivation import omit

        return omit(self, names)

    def partial(self, names: Iterable[str] | None = None) -> ObjectNode:
        from formschema.validation.derivation import partial

        return partial(self, names)

    def required(self, names: Iterable[str] | None = None) -> ObjectNode:
        from formschema.validation.derivation import required

        return required(self, names)

    def merge(self, other: SchemaNode) -> ObjectNode:
        from formschema.validation.derivation import merge

        return merge(self, other)

    def extend(self, fields: Mapping[str, SchemaNode]) -> ObjectNode:
        from formschema.validation.derivation import extend

        return extend(self, fields)

    def strict(self) -> ObjectNode:
        return replace(self, unknown_keys="reject")

    def strip(self) -> ObjectNode:
        return replace(self, unknown_keys="strip")

    def passthrough(self) -> ObjectNode:
        return replace(self, unknown_keys="passthrough")

    def keyof(self) -> EnumNode:
        from formschema.validation.derivation import keyof

        return keyof(self)

    def to_model(self, name: str = "Model"):
        from formschema.validation.inference import to_model

        return to_model(self, name)


# ═══════════════════════════════════════════════════════════
# Array
# ═══════════════════════════════════════════════════════════


@dataclass(frozen=True)
class ArrayNode(SchemaNode):
    element: SchemaNode
    constraints: tuple[Constraint, ...] = ()

    def __post_init__(self):
        _require_node(self.element, "array")
        object.__setattr__(self, "constraints", tuple(self.constraints))

    def _with(self, predicate, message: str, code: IssueCode) -> ArrayNode:
        return replace(
            self, constraints=self.constraints + (Constraint(predicate, message, code),)
        )

    def min(self, n: int, message: str | None = None) -> ArrayNode:
        n = _length_bound(n, "min")
        return self._with(
            lambda v: len(v) >= n,
            message or f"Array must contain at least {n} element(s)",
            IssueCode.TOO_SMALL,
        )

    def max(self, n: int, message: str | None = None) -> ArrayNode:
        n = _length_bound(n, "max")
        return self._with(
            lambda v: len(v) <= n,
            message or f"Array must contain at most {n} element(s)",
            IssueCode.TOO_BIG,
        )

    def length(self, n: int, message: str | None = None) -> ArrayNode:
        n = _length_bound(n, "length")
        return self._with(
            lambda v: len(v) == n,
            message or f"Array must contain exactly {n} element(s)",
            IssueCode.TOO_SMALL,
        )

    def nonempty(self, message: str | None = None) -> ArrayNode:
        return self.min(1, message or "Array must not be empty")


# ═══════════════════════════════════════════════════════════
# Factories
# ═══════════════════════════════════════════════════════════


def string(*, coerce: bool = False) -> Primitive:
    return Primitive("string", coerce=coerce)


def number(*, coerce: bool = False) -> Primitive:
    return Primitive("number", coerce=coerce)


def boolean(*, coerce: bool = False) -> Primitive:
    return Primitive("boolean", coerce=coerce)


def date(*, coerce: bool = False) -> Primitive:
    return Primitive("date", coerce=coerce)


def enum_(values: Iterable[Any] | type[enum.Enum]) -> EnumNode:
    """Build an enum node from literals or from a Python ``Enum`` class."""
    if isinstance(values, type) and issubclass(values, enum.Enum):
        values = [member.value for member in values]
    return EnumNode(tuple(values))


def object_(
    fields: Mapping[str, SchemaNode], *, unknown_keys: UnknownKeys | None = None
) -> ObjectNode:
    policy = unknown_keys or get_settings().default_unknown_keys
    return ObjectNode(fields, policy)


def array_(element: SchemaNode) -> ArrayNode:
    return ArrayNode(element)


def optional(node: SchemaNode) -> OptionalNode:
    _require_node(node, "optional")
    return node.optional()


def nullable(node: SchemaNode) -> NullableNode:
    _require_node(node, "nullable")
    return node.nullable()


def preprocess(transform: Callable[[Any], Any], node: SchemaNode) -> PreprocessNode:
    return PreprocessNode(node, transform)
