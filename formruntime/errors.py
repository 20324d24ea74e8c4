"""Error taxonomy and structured field errors for formruntime.

Construction-time problems (missing options, malformed schemas) are raised as
exceptions. Everything that can go wrong while a user is filling the form in
(field validation, expression evaluation, submission failures) is caught at
its origin and turned into UI state; the types below describe that state.

Exception hierarchy:
    FormRuntimeError
    ├── ConfigError        missing schema/container at construction
    ├── SchemaError        structurally invalid schema
    ├── ExpressionError    calculated-field or rule evaluation failure
    └── SubmissionError    submit callback failure
"""

from dataclasses import dataclass
from typing import Any, Dict, Optional

from formruntime.types import FieldErrorCode


class FormRuntimeError(Exception):
    """Base class for all formruntime exceptions."""


class ConfigError(FormRuntimeError):
    """Raised synchronously when required construction options are missing."""


class SchemaError(FormRuntimeError):
    """Raised when a form schema is absent or structurally invalid.

    Attributes:
        path: Dot-notation location of the problem (e.g., "pages.0.fields.2.type"),
              empty when the schema as a whole is unusable
    """

    def __init__(self, message: str, path: str = ""):
        self.path = path
        super().__init__(f"{path}: {message}" if path else message)


class ExpressionError(FormRuntimeError):
    """Raised when an expression cannot be evaluated.

    Never escapes the engine: callers substitute 0 / False.
    """


class SubmissionError(FormRuntimeError):
    """Describes a failed submission attempt.

    Attributes:
        message: Human-readable reason surfaced to the user
        cause: The exception raised by the callback, if any
    """

    def __init__(self, message: str, cause: Optional[BaseException] = None):
        self.message = message
        self.cause = cause
        super().__init__(message)


@dataclass(frozen=True)
class FieldError:
    """Per-field validation failure.

    This is the ValidationError of the engine: it is recorded in the value
    store and shown inline, never raised.

    Attributes:
        field_id: Field identifier, namespaced for repeatable instances
                  (e.g., "contacts[1].email")
        message: Human-readable error text shown next to the field
        code: Which rule failed

    Examples:
        >>> err = FieldError(field_id="name", message="Name is required",
        ...                  code=FieldErrorCode.REQUIRED)
        >>> err.to_dict()
        {'fieldId': 'name', 'message': 'Name is required', 'code': 'required'}
    """
    field_id: str
    message: str
    code: Optional[FieldErrorCode] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dict for serialization."""
        result: Dict[str, Any] = {
            "fieldId": self.field_id,
            "message": self.message,
        }
        if self.code is not None:
            result["code"] = self.code.value if isinstance(self.code, FieldErrorCode) else self.code
        return result

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "FieldError":
        """Create FieldError from dict."""
        code = data.get("code")
        if isinstance(code, str):
            code = FieldErrorCode(code)
        return cls(
            field_id=data["fieldId"],
            message=data["message"],
            code=code,
        )


# The engine-level name for inline field failures.
ValidationError = FieldError


__all__ = [
    "FormRuntimeError",
    "ConfigError",
    "SchemaError",
    "ExpressionError",
    "SubmissionError",
    "FieldError",
    "ValidationError",
]
