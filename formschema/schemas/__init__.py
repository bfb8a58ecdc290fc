from formschema.schemas.validation import (
    Failure,
    FlattenedIssues,
    Issue,
    IssueCode,
    Path,
    Result,
    Success,
)

__all__ = [
    "Failure",
    "FlattenedIssues",
    "Issue",
    "IssueCode",
    "Path",
    "Result",
    "Success",
]
