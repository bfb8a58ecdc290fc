"""Validation Engine — recursive, accumulating schema checker.

Drives a schema node graph against an untyped input value.

Input:  SchemaNode + raw value (+ path prefix)
Output: Success(value) with the typed, coerced value, or
        Failure(issues) with every problem found, each tagged with its path

Failures never short-circuit across sibling fields or across the
constraints of one primitive. The only exceptions that escape ``validate``
are those raised by user callbacks (preprocess transforms, refinement
checks, custom constraint predicates); ``safe_parse`` converts those into a
single ``host_fault`` issue.
"""

from __future__ import annotations

import datetime as dt
import logging
import math
from collections.abc import Mapping
from typing import Any, Callable, Iterable

from formschema.config import get_settings
from formschema.schemas.validation import (
    Failure,
    Issue,
    IssueCode,
    Path,
    Result,
    Success,
)
from formschema.validation.errors import ParseError
from formschema.validation.nodes import (
    ABSENT,
    ArrayNode,
    DefaultNode,
    EnumNode,
    NullableNode,
    ObjectNode,
    OptionalNode,
    PreprocessNode,
    Primitive,
    RefinementIssue,
    RefinementNode,
    SchemaNode,
)

logger = logging.getLogger(__name__)


# ─── Internal Helpers ───


class _NoMatch:
    pass


_NO_MATCH = _NoMatch()

_TRUE_STRINGS = frozenset({"true", "1", "yes", "on"})
_FALSE_STRINGS = frozenset({"false", "0", "no", "off"})


def _fail(path: Path, message: str, code: IssueCode) -> Failure:
    return Failure(issues=[Issue(path=path, message=message, code=code)])


def _received(value: Any) -> str:
    """Describe a raw value's type for invalid_type messages."""
    if value is ABSENT:
        return "absent"
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "boolean"
    if isinstance(value, float) and math.isnan(value):
        return "nan"
    if isinstance(value, (int, float)):
        return "number"
    if isinstance(value, str):
        return "string"
    if isinstance(value, (dt.date, dt.datetime)):
        return "date"
    if isinstance(value, Mapping):
        return "object"
    if isinstance(value, (list, tuple)):
        return "array"
    return type(value).__name__


def _required(path: Path) -> Failure:
    return _fail(path, "Required", IssueCode.REQUIRED)


def _invalid_type(path: Path, expected: str, value: Any) -> Failure:
    return _fail(
        path,
        f"Expected {expected}, received {_received(value)}",
        IssueCode.INVALID_TYPE,
    )


# ═══════════════════════════════════════════════════════════
# Coercion
# ═══════════════════════════════════════════════════════════


def _to_string(value: Any, coerce: bool) -> Any:
    if isinstance(value, str):
        return value
    if coerce and value is not None:
        return str(value)
    return _NO_MATCH


def _to_number(value: Any, coerce: bool) -> Any:
    if isinstance(value, bool):
        return _NO_MATCH
    if isinstance(value, (int, float)):
        return _NO_MATCH if isinstance(value, float) and math.isnan(value) else value
    if not (coerce and isinstance(value, str)):
        return _NO_MATCH

    text = value.strip()
    if not text or "_" in text:
        return _NO_MATCH
    try:
        return int(text)
    except ValueError:
        pass
    try:
        parsed = float(text)
    except ValueError:
        return _NO_MATCH
    # Coerced text must be finite; digit strings past the int() limit end up as inf
    return parsed if math.isfinite(parsed) else _NO_MATCH


def _to_boolean(value: Any, coerce: bool) -> Any:
    if isinstance(value, bool):
        return value
    if coerce and isinstance(value, str):
        text = value.strip().lower()
        if text in _TRUE_STRINGS:
            return True
        if text in _FALSE_STRINGS:
            return False
    return _NO_MATCH


def _to_date(value: Any, coerce: bool) -> Any:
    if isinstance(value, dt.datetime):
        return value
    if isinstance(value, dt.date):
        return dt.datetime.combine(value, dt.time())
    if not coerce:
        return _NO_MATCH

    if isinstance(value, str):
        text = value.strip()
        if not text:
            return _NO_MATCH
        try:
            return dt.datetime.fromisoformat(text)
        except ValueError:
            return _NO_MATCH

    if isinstance(value, (int, float)) and not isinstance(value, bool):
        # Epoch milliseconds
        try:
            return dt.datetime.fromtimestamp(value / 1000, tz=get_settings().tz)
        except (OverflowError, OSError, ValueError):
            return _NO_MATCH

    return _NO_MATCH


_COERCERS: dict[str, Callable[[Any, bool], Any]] = {
    "string": _to_string,
    "number": _to_number,
    "boolean": _to_boolean,
    "date": _to_date,
}


# ═══════════════════════════════════════════════════════════
# Per-variant validators
# ═══════════════════════════════════════════════════════════


def _validate_primitive(node: Primitive, value: Any, path: Path) -> Result:
    """Coerce, then run every constraint in order and report all failures."""
    if value is ABSENT:
        return _required(path)

    coerced = _COERCERS[node.kind](value, node.coerce)
    if coerced is _NO_MATCH:
        return _invalid_type(path, node.kind, value)

    issues = [
        Issue(path=path, message=constraint.message, code=constraint.code)
        for constraint in node.constraints
        if not constraint.predicate(coerced)
    ]
    if issues:
        return Failure(issues=issues)
    return Success(value=coerced)


def _validate_enum(node: EnumNode, value: Any, path: Path) -> Result:
    if value is ABSENT:
        return _required(path)
    if node.accepts(value):
        return Success(value=value)

    expected = " | ".join(repr(option) for option in node.allowed)
    return _fail(
        path,
        f"Invalid enum value. Expected {expected}, received {value!r}",
        IssueCode.INVALID_ENUM_VALUE,
    )


def _validate_optional(node: OptionalNode, value: Any, path: Path) -> Result:
    if value is ABSENT:
        return Success(value=ABSENT)
    return validate(node.inner, value, path)


def _validate_nullable(node: NullableNode, value: Any, path: Path) -> Result:
    if value is None:
        return Success(value=None)
    return validate(node.inner, value, path)


def _validate_default(node: DefaultNode, value: Any, path: Path) -> Result:
    if value is ABSENT:
        value = node.fallback_value()
    return validate(node.inner, value, path)


def _validate_preprocess(node: PreprocessNode, value: Any, path: Path) -> Result:
    return validate(node.inner, node.transform(value), path)


def _validate_object(node: ObjectNode, value: Any, path: Path) -> Result:
    """Validate every declared field; pool issues in declared field order.

    Fields that resolve to ABSENT are left out of the record. Unknown keys
    follow the node's policy; under ``reject`` they produce one issue at the
    object's own path, after all field issues.
    """
    if value is ABSENT:
        return _required(path)
    if not isinstance(value, Mapping):
        return _invalid_type(path, "object", value)

    issues: list[Issue] = []
    record: dict[str, Any] = {}

    for name, field_node in node.fields.items():
        result = validate(field_node, value.get(name, ABSENT), path + (name,))
        if isinstance(result, Failure):
            issues.extend(result.issues)
        elif result.value is not ABSENT:
            record[name] = result.value

    unknown = [key for key in value if key not in node.fields]
    if unknown:
        if node.unknown_keys == "reject":
            issues.append(
                Issue(
                    path=path,
                    message=(
                        "Unrecognized key(s) in object: "
                        + ", ".join(repr(key) for key in unknown)
                    ),
                    code=IssueCode.UNRECOGNIZED_KEYS,
                )
            )
        elif node.unknown_keys == "passthrough":
            for key in unknown:
                record[key] = value[key]

    if issues:
        return Failure(issues=issues)
    return Success(value=record)


def _validate_array(node: ArrayNode, value: Any, path: Path) -> Result:
    """Length constraints report at the array's path, before element issues."""
    if value is ABSENT:
        return _required(path)
    if not isinstance(value, (list, tuple)):
        return _invalid_type(path, "array", value)

    issues = [
        Issue(path=path, message=constraint.message, code=constraint.code)
        for constraint in node.constraints
        if not constraint.predicate(value)
    ]
    items: list[Any] = []
    for index, item in enumerate(value):
        result = validate(node.element, item, path + (index,))
        if isinstance(result, Failure):
            issues.extend(result.issues)
        else:
            items.append(result.value)

    if issues:
        return Failure(issues=issues)
    return Success(value=items)


def _refinement_issues(
    refinement: RefinementNode, value: Any, path: Path
) -> list[Issue]:
    reported = refinement.check(value) or ()
    if isinstance(reported, (RefinementIssue, Issue, str)):
        reported = (reported,)

    issues: list[Issue] = []
    for item in reported:
        if isinstance(item, str):
            item = RefinementIssue(item)
        issues.append(
            Issue(
                path=path + tuple(item.path),
                message=item.message,
                code=item.code,
                fatal=item.fatal or refinement.fatal,
            )
        )
    return issues


def _validate_refinement(node: RefinementNode, value: Any, path: Path) -> Result:
    """Run a chain of refinements over one structurally valid base.

    ``a.refine(f).refine(g)`` is evaluated as: validate ``a``; if that
    failed, stop. Otherwise run ``f`` then ``g``. Every issue they report is
    kept; a fatal issue stops the refinements after it.
    """
    chain: list[RefinementNode] = []
    base: SchemaNode = node
    while isinstance(base, RefinementNode):
        chain.append(base)
        base = base.inner
    chain.reverse()

    result = validate(base, value, path)
    if isinstance(result, Failure):
        return result

    issues: list[Issue] = []
    for refinement in chain:
        raised = _refinement_issues(refinement, result.value, path)
        issues.extend(raised)
        if any(issue.fatal for issue in raised):
            break

    if issues:
        return Failure(issues=issues)
    return result


# ═══════════════════════════════════════════════════════════
# Entry points
# ═══════════════════════════════════════════════════════════

# Registry of every node kind; a node class missing here cannot be validated.
VALIDATORS: dict[type, Callable[[Any, Any, Path], Result]] = {
    Primitive: _validate_primitive,
    EnumNode: _validate_enum,
    OptionalNode: _validate_optional,
    NullableNode: _validate_nullable,
    DefaultNode: _validate_default,
    PreprocessNode: _validate_preprocess,
    ObjectNode: _validate_object,
    ArrayNode: _validate_array,
    RefinementNode: _validate_refinement,
}


def validate(
    node: SchemaNode,
    value: Any = ABSENT,
    path: Iterable[str | int] = (),
) -> Result:
    """Validate ``value`` against ``node``.

    Args:
        node: Root of the schema graph.
        value: Raw input. Leave out (or pass ``ABSENT``) for "not supplied".
        path: Prefix for every issue path, for nested calls.

    Returns:
        Success with the typed value, or Failure with all issues found.

    Raises:
        Whatever a preprocess transform, refinement check or custom
        constraint raises. Use ``safe_parse`` to contain those.
    """
    handler = VALIDATORS.get(type(node))
    if handler is None:
        raise TypeError(f"Unsupported schema node: {type(node).__name__}")
    return handler(node, value, tuple(path))


def safe_parse(node: SchemaNode, value: Any = ABSENT) -> Result:
    """Validate without ever raising for callback failures.

    A fault inside a user callback becomes one root-level ``host_fault``
    issue carrying the configured generic message.
    """
    settings = get_settings()
    try:
        result = validate(node, value)
    except Exception:
        if settings.log_host_faults:
            logger.exception(
                "Host fault while validating against %s", type(node).__name__
            )
        return _fail((), settings.host_fault_message, IssueCode.HOST_FAULT)

    if isinstance(result, Failure):
        logger.debug(
            "safe_parse %s: %d issue(s)", type(node).__name__, len(result.issues)
        )
    return result


def parse(node: SchemaNode, value: Any = ABSENT) -> Any:
    """Return the typed value or raise ParseError with every issue."""
    result = validate(node, value)
    if isinstance(result, Failure):
        raise ParseError(result.issues)
    return result.value
