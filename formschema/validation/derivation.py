"""Schema derivation — build new object schemas from existing ones.

pick / omit / partial / required / merge / extend never modify their inputs.
Field nodes are immutable, so derived objects share them with the source.

Each operation also accepts an object wrapped in optional / nullable /
default / preprocess layers; the same wrappers are put back around the
derived object. Refinements are dropped, since their checks were written
against the old shape.
"""

from __future__ import annotations

import logging
from dataclasses import replace
from typing import Callable, Iterable, Mapping

from formschema.validation.errors import SchemaDefinitionError
from formschema.validation.nodes import (
    DefaultNode,
    EnumNode,
    NullableNode,
    ObjectNode,
    OptionalNode,
    PreprocessNode,
    RefinementNode,
    SchemaNode,
    UnknownKeys,
)

logger = logging.getLogger(__name__)

_REWRAPPABLE = (OptionalNode, NullableNode, DefaultNode, PreprocessNode)


def _locate_object(
    node: SchemaNode, operation: str
) -> tuple[ObjectNode, Callable[[ObjectNode], SchemaNode]]:
    """Find the object under any wrappers and return it with a rewrapper."""
    wrappers: list[SchemaNode] = []
    current = node
    while not isinstance(current, ObjectNode):
        if isinstance(current, _REWRAPPABLE):
            wrappers.append(current)
        elif isinstance(current, RefinementNode):
            logger.warning(
                "%s(): dropping refinement %r from the derived schema",
                operation,
                getattr(current.check, "__name__", current.check),
            )
        else:
            raise SchemaDefinitionError(
                f"{operation}() needs an object schema, got {type(current).__name__}"
            )
        current = current.inner

    def rewrap(derived: ObjectNode) -> SchemaNode:
        result: SchemaNode = derived
        for wrapper in reversed(wrappers):
            result = replace(wrapper, inner=result)
        return result

    return current, rewrap


def _selected(
    obj: ObjectNode, names: Iterable[str] | None, operation: str
) -> list[str]:
    """Resolve a field selection; ``None`` means every field."""
    if names is None:
        return list(obj.fields)
    if isinstance(names, str):
        names = [names]
    names = list(names)
    unknown = [name for name in names if name not in obj.fields]
    if unknown:
        raise SchemaDefinitionError(
            f"{operation}(): unknown field(s) {unknown!r}; "
            f"known fields are {list(obj.fields)!r}"
        )
    return names


# ═══════════════════════════════════════════════════════════
# Field selection
# ═══════════════════════════════════════════════════════════


def pick(node: SchemaNode, names: Iterable[str]) -> SchemaNode:
    """Keep only ``names``, in the source's declared order."""
    obj, rewrap = _locate_object(node, "pick")
    keep = set(_selected(obj, names, "pick"))
    fields = {name: f for name, f in obj.fields.items() if name in keep}
    return rewrap(ObjectNode(fields, obj.unknown_keys))


def omit(node: SchemaNode, names: Iterable[str]) -> SchemaNode:
    obj, rewrap = _locate_object(node, "omit")
    drop = set(_selected(obj, names, "omit"))
    fields = {name: f for name, f in obj.fields.items() if name not in drop}
    return rewrap(ObjectNode(fields, obj.unknown_keys))


# ═══════════════════════════════════════════════════════════
# Optionality
# ═══════════════════════════════════════════════════════════


def partial(node: SchemaNode, names: Iterable[str] | None = None) -> SchemaNode:
    """Make the selected fields (default: all) optional.

    Fields that are already optional are left as they are, so applying
    ``partial`` twice gives an equal schema.
    """
    obj, rewrap = _locate_object(node, "partial")
    targets = set(_selected(obj, names, "partial"))
    fields = {
        name: (f.optional() if name in targets else f) for name, f in obj.fields.items()
    }
    return rewrap(ObjectNode(fields, obj.unknown_keys))


def required(node: SchemaNode, names: Iterable[str] | None = None) -> SchemaNode:
    """Remove one optional or nullable layer from the selected fields."""
    obj, rewrap = _locate_object(node, "required")
    targets = set(_selected(obj, names, "required"))
    fields = {}
    for name, f in obj.fields.items():
        if name in targets and isinstance(f, (OptionalNode, NullableNode)):
            f = f.inner
        fields[name] = f
    return rewrap(ObjectNode(fields, obj.unknown_keys))


# ═══════════════════════════════════════════════════════════
# Composition
# ═══════════════════════════════════════════════════════════


def merge(a: SchemaNode, b: SchemaNode) -> SchemaNode:
    """Union of both field sets. On a name collision ``b``'s field wins
    outright; ``b``'s unknown-key policy wins as well."""
    left, rewrap = _locate_object(a, "merge")
    right, _ = _locate_object(b, "merge")
    fields = dict(left.fields)
    fields.update(right.fields)
    return rewrap(ObjectNode(fields, right.unknown_keys))


def extend(a: SchemaNode, fields: Mapping[str, SchemaNode]) -> SchemaNode:
    """Add or replace fields, keeping ``a``'s unknown-key policy."""
    left, _ = _locate_object(a, "extend")
    return merge(a, ObjectNode(fields, left.unknown_keys))


def with_unknown_keys(node: SchemaNode, policy: UnknownKeys) -> SchemaNode:
    obj, rewrap = _locate_object(node, "with_unknown_keys")
    return rewrap(ObjectNode(obj.fields, policy))


def keyof(node: SchemaNode) -> EnumNode:
    """Enum of the object's field names, for field pickers and the like."""
    obj, _ = _locate_object(node, "keyof")
    return EnumNode(tuple(obj.fields))
