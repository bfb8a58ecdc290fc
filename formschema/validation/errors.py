"""Exceptions raised by formschema.

Validation problems are never raised; they are returned as issues inside a
``Failure``. Exceptions cover schema authoring mistakes and the strict
``parse`` entry point.
"""

from __future__ import annotations

from typing import Sequence

from formschema.schemas.validation import Issue


class FormSchemaError(Exception):
    """Base class for all formschema exceptions."""


class SchemaDefinitionError(FormSchemaError, ValueError):
    """A schema was built incorrectly (unknown field, bad bound, ...)."""


class ParseError(FormSchemaError):
    """Raised by ``parse`` when the input does not satisfy the schema."""

    def __init__(self, issues: Sequence[Issue]):
        self.issues = list(issues)
        summary = "; ".join(
            f"{issue.dotted_path or '<root>'}: {issue.message}" for issue in self.issues
        )
        super().__init__(
            f"{len(self.issues)} validation issue(s): {summary}"
        )
