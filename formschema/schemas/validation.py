from __future__ import annotations

from enum import Enum
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field

PathSegment = Union[str, int]
Path = tuple[PathSegment, ...]


class IssueCode(str, Enum):
    INVALID_TYPE = "invalid_type"
    REQUIRED = "required"
    TOO_SMALL = "too_small"
    TOO_BIG = "too_big"
    INVALID_STRING = "invalid_string"
    NOT_INTEGER = "not_integer"
    NOT_MULTIPLE_OF = "not_multiple_of"
    INVALID_ENUM_VALUE = "invalid_enum_value"
    UNRECOGNIZED_KEYS = "unrecognized_keys"
    CUSTOM = "custom"
    HOST_FAULT = "host_fault"


class Issue(BaseModel):
    model_config = ConfigDict(frozen=True)

    path: Path = ()
    message: str
    code: IssueCode = IssueCode.CUSTOM
    fatal: bool = False

    @property
    def dotted_path(self) -> str:
        return ".".join(str(segment) for segment in self.path)


class FlattenedIssues(BaseModel):
    """Issues grouped for display: root-level messages and per-field messages."""

    form_errors: list[str] = Field(default_factory=list)
    field_errors: dict[str, list[str]] = Field(default_factory=dict)


class Success(BaseModel):
    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    status: Literal["success"] = "success"
    value: Any = None

    @property
    def ok(self) -> bool:
        return True


class Failure(BaseModel):
    model_config = ConfigDict(frozen=True)

    status: Literal["failure"] = "failure"
    issues: list[Issue] = Field(min_length=1)

    @property
    def ok(self) -> bool:
        return False

    def flatten(self) -> FlattenedIssues:
        """Group messages by dotted field path, keeping issue order.

        Root-level issues (empty path) land in ``form_errors``.
        """
        flat = FlattenedIssues()
        for issue in self.issues:
            if not issue.path:
                flat.form_errors.append(issue.message)
                continue
            flat.field_errors.setdefault(issue.dotted_path, []).append(issue.message)
        return flat

    def field_errors(self) -> dict[str, list[str]]:
        return self.flatten().field_errors


Result = Annotated[Union[Success, Failure], Field(discriminator="status")]
