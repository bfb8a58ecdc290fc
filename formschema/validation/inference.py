"""Type derivation — map a schema node to the type of its parsed value.

``infer_type`` gives a ``typing`` annotation (object schemas become
``TypedDict`` classes, optional fields become ``NotRequired`` keys).
``to_model`` turns an object schema into a pydantic model class for host
code that wants a concrete class to annotate with.
"""

from __future__ import annotations

import datetime as dt
from typing import (
    Any,
    Callable,
    Literal,
    NotRequired,
    Optional,
    TypedDict,
    Union,
    get_args,
    get_origin,
)

from pydantic import BaseModel, Field, create_model

from formschema.validation.nodes import (
    Absent,
    ArrayNode,
    DefaultNode,
    EnumNode,
    NullableNode,
    ObjectNode,
    OptionalNode,
    PreprocessNode,
    Primitive,
    RefinementNode,
    SchemaNode,
)

PRIMITIVE_TYPES: dict[str, type] = {
    "string": str,
    "number": float,
    "boolean": bool,
    "date": dt.datetime,
}


def _union(members: list[Any]) -> Any:
    if len(members) == 1:
        return members[0]
    return Union[tuple(members)]


def _members(annotation: Any) -> list[Any]:
    if get_origin(annotation) is Union:
        return list(get_args(annotation))
    return [annotation]


def can_be_absent(annotation: Any) -> bool:
    return Absent in _members(annotation)


def without_absent(annotation: Any) -> Any:
    return _union([m for m in _members(annotation) if m is not Absent])


# ═══════════════════════════════════════════════════════════
# infer_type
# ═══════════════════════════════════════════════════════════


def _infer_object(node: ObjectNode, name: str) -> Any:
    keys: dict[str, Any] = {}
    for field_name, field_node in node.fields.items():
        annotation = infer_type(field_node, f"{name}_{field_name}")
        if can_be_absent(annotation):
            keys[field_name] = NotRequired[without_absent(annotation)]
        else:
            keys[field_name] = annotation
    return TypedDict(name, keys)


_INFERRERS: dict[type, Callable[[Any, str], Any]] = {
    Primitive: lambda node, name: PRIMITIVE_TYPES[node.kind],
    EnumNode: lambda node, name: Literal[node.allowed],
    OptionalNode: lambda node, name: _union(
        _members(infer_type(node.inner, name)) + [Absent]
    ),
    NullableNode: lambda node, name: Optional[infer_type(node.inner, name)],
    DefaultNode: lambda node, name: without_absent(infer_type(node.inner, name)),
    PreprocessNode: lambda node, name: infer_type(node.inner, name),
    RefinementNode: lambda node, name: infer_type(node.inner, name),
    ObjectNode: _infer_object,
    ArrayNode: lambda node, name: list[infer_type(node.element, f"{name}_item")],
}


def infer_type(node: SchemaNode, name: str = "Record") -> Any:
    """Return the type of the value ``node`` produces on success.

    ``name`` names the generated TypedDict for object schemas; nested
    objects get ``<name>_<field>``.
    """
    inferrer = _INFERRERS.get(type(node))
    if inferrer is None:
        raise TypeError(f"Unsupported schema node: {type(node).__name__}")
    return inferrer(node, name)


# ═══════════════════════════════════════════════════════════
# to_model
# ═══════════════════════════════════════════════════════════


def _model_annotation(node: SchemaNode, name: str) -> Any:
    """Like ``infer_type`` but nested objects become pydantic models."""
    if isinstance(node, ObjectNode):
        return to_model(node, name)
    if isinstance(node, (OptionalNode, NullableNode)):
        return Optional[_model_annotation(node.inner, name)]
    if isinstance(node, (DefaultNode, PreprocessNode, RefinementNode)):
        return _model_annotation(node.inner, name)
    if isinstance(node, ArrayNode):
        return list[_model_annotation(node.element, f"{name}_item")]
    return infer_type(node, name)


def _model_field(node: SchemaNode, name: str) -> tuple[Any, Any]:
    annotation = _model_annotation(node, name)
    if isinstance(node, DefaultNode):
        if callable(node.fallback):
            return annotation, Field(default_factory=node.fallback)
        return annotation, node.fallback
    if can_be_absent(infer_type(node, name)):
        return annotation, None
    return annotation, ...


def to_model(node: SchemaNode, name: str = "Model") -> type[BaseModel]:
    """Build a pydantic model class mirroring an object schema.

    Optional fields default to ``None``; fields with a default keep it.
    The model describes the parsed shape only; use the schema itself to
    validate raw input.
    """
    if not isinstance(node, ObjectNode):
        raise TypeError(f"to_model() needs an object schema, got {type(node).__name__}")
    definitions = {
        field_name: _model_field(field_node, f"{name}_{field_name}")
        for field_name, field_node in node.fields.items()
    }
    return create_model(name, **definitions)
