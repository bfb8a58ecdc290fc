"""formschema — composable schema validation and derivation.

Usage:
    import formschema as fs

    schema = fs.object_({
        "investmentAmount": fs.number(coerce=True).min(1000).max(2_000_000),
        "dateOfBirth": fs.date(coerce=True),
        "nickname": fs.string().optional(),
    })

    result = fs.safe_parse(schema, {"investmentAmount": "1500", ...})
    if result.ok:
        record = result.value
    else:
        errors = result.flatten().field_errors
"""

from formschema.schemas.validation import (
    Failure,
    FlattenedIssues,
    Issue,
    IssueCode,
    Result,
    Success,
)
from formschema.validation.derivation import (
    extend,
    keyof,
    merge,
    omit,
    partial,
    pick,
    required,
    with_unknown_keys,
)
from formschema.validation.engine import parse, safe_parse, validate
from formschema.validation.errors import (
    FormSchemaError,
    ParseError,
    SchemaDefinitionError,
)
from formschema.validation.inference import infer_type, to_model
from formschema.validation.nodes import (
    ABSENT,
    Absent,
    ArrayNode,
    Constraint,
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
    array_,
    boolean,
    date,
    enum_,
    nullable,
    number,
    object_,
    optional,
    preprocess,
    string,
)

__all__ = [
    # Result model
    "Failure",
    "FlattenedIssues",
    "Issue",
    "IssueCode",
    "Result",
    "Success",
    # Nodes
    "ABSENT",
    "Absent",
    "ArrayNode",
    "Constraint",
    "DefaultNode",
    "EnumNode",
    "NullableNode",
    "ObjectNode",
    "OptionalNode",
    "PreprocessNode",
    "Primitive",
    "RefinementIssue",
    "RefinementNode",
    "SchemaNode",
    # Factories
    "array_",
    "boolean",
    "date",
    "enum_",
    "nullable",
    "number",
    "object_",
    "optional",
    "preprocess",
    "string",
    # Engine
    "parse",
    "safe_parse",
    "validate",
    # Derivation
    "extend",
    "keyof",
    "merge",
    "omit",
    "partial",
    "pick",
    "required",
    "with_unknown_keys",
    # Types
    "infer_type",
    "to_model",
    # Errors
    "FormSchemaError",
    "ParseError",
    "SchemaDefinitionError",
]
