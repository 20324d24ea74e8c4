"""Core type definitions for the formruntime engine.

This module defines the enumerations shared across the engine:
- FieldType: Field kinds a schema may declare
- ConditionalOperator / LogicOperator: Operators for conditional display and skip rules
- CrossFieldOperator: Operators for cross-field validation
- CalculatedFormat: Display formats for calculated fields
- SkipActionType: Actions a skip rule may trigger
- RuntimeState: Lifecycle states of a mounted form
- EventType: Runtime event types for the event stream
- FieldErrorCode: Validation error codes for individual fields

It also defines FileHandle, the value stored for file fields.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, FrozenSet, Optional


class FieldType(str, Enum):
    """Field kinds understood by the renderer.

    The last three (richtext, header, paragraph) are display-only and never
    hold a value.
    """
    TEXT = "text"
    TEXTAREA = "textarea"
    EMAIL = "email"
    NUMBER = "number"
    TEL = "tel"
    URL = "url"
    DATE = "date"
    TIME = "time"
    DATETIME = "datetime"
    SELECT = "select"
    RADIO = "radio"
    CHECKBOXES = "checkboxes"
    FILE = "file"
    HIDDEN = "hidden"
    RICHTEXT = "richtext"
    HEADER = "header"
    PARAGRAPH = "paragraph"


DISPLAY_ONLY_TYPES: FrozenSet[FieldType] = frozenset(
    {FieldType.RICHTEXT, FieldType.HEADER, FieldType.PARAGRAPH}
)

CHOICE_GROUP_TYPES: FrozenSet[FieldType] = frozenset(
    {FieldType.RADIO, FieldType.CHECKBOXES}
)


class ConditionalOperator(str, Enum):
    """Comparison operators for conditional rules."""
    EQUALS = "equals"
    NOT_EQUALS = "notEquals"
    GREATER_THAN = "greaterThan"
    LESS_THAN = "lessThan"
    CONTAINS = "contains"
    NOT_CONTAINS = "notContains"


class LogicOperator(str, Enum):
    """How multiple conditional rules combine."""
    AND = "AND"
    OR = "OR"


class CrossFieldOperator(str, Enum):
    """Comparison operators for cross-field validation."""
    EQUALS = "equals"
    NOT_EQUALS = "notEquals"
    GREATER_THAN = "greaterThan"
    LESS_THAN = "lessThan"
    AFTER = "after"
    BEFORE = "before"


class CalculatedFormat(str, Enum):
    NUMBER = "number"
    CURRENCY = "currency"
    PERCENTAGE = "percentage"


class LayoutWidth(str, Enum):
    FULL = "full"
    HALF = "half"
    THIRD = "third"
    TWO_THIRDS = "twoThirds"


class SkipActionType(str, Enum):
    """Actions triggered by a matching skip rule."""
    SKIP_TO_PAGE = "skipToPage"
    ENABLE_FIELD = "enableField"
    DISABLE_FIELD = "disableField"


class RuntimeState(str, Enum):
    """Lifecycle states of a mounted form.

    Terminal state: destroyed. ``submitted`` is a terminal *display* state
    that only ``reset()`` leaves.
    """
    INITIAL = "initial"
    RENDERING = "rendering"
    IDLE = "idle"
    SUBMITTING = "submitting"
    SUBMITTED = "submitted"
    DESTROYED = "destroyed"


class EventType(str, Enum):
    """Runtime event types for the event stream."""
    FORM_RENDERED = "form.rendered"
    FIELD_UPDATED = "field.updated"
    FIELD_VALIDATED = "field.validated"
    PAGE_CHANGED = "page.changed"
    INSTANCE_ADDED = "instance.added"
    INSTANCE_REMOVED = "instance.removed"
    VALIDATION_PASSED = "validation.passed"
    VALIDATION_FAILED = "validation.failed"
    SUBMISSION_STARTED = "submission.started"
    SUBMISSION_SUCCEEDED = "submission.succeeded"
    SUBMISSION_FAILED = "submission.failed"
    FORM_RESET = "form.reset"
    FORM_DESTROYED = "form.destroyed"


class FieldErrorCode(str, Enum):
    """Validation error codes for individual field failures."""
    REQUIRED = "required"
    INVALID_FORMAT = "invalid_format"
    TOO_SHORT = "too_short"
    TOO_LONG = "too_long"
    TOO_SMALL = "too_small"
    TOO_LARGE = "too_large"
    FILE_TOO_LARGE = "file_too_large"
    FILE_WRONG_TYPE = "file_wrong_type"
    CROSS_FIELD = "cross_field"


@dataclass(frozen=True)
class FileHandle:
    """A file chosen for a file field.

    Only metadata matters to validation; ``content`` is carried through to
    the submission callback untouched.

    Attributes:
        name: File name including extension (e.g., "resume.pdf")
        size: Size in bytes
        content_type: MIME type, may be empty when unknown
        content: Optional raw bytes

    Examples:
        >>> FileHandle(name="cv.pdf", size=1024, content_type="application/pdf").extension
        'pdf'
    """
    name: str
    size: int = 0
    content_type: str = ""
    content: Optional[bytes] = None

    @property
    def extension(self) -> str:
        if "." not in self.name:
            return ""
        return self.name.rsplit(".", 1)[1].lower()

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dict for serialization (content is omitted)."""
        result: Dict[str, Any] = {"name": self.name, "size": self.size}
        if self.content_type:
            result["type"] = self.content_type
        return result


__all__ = [
    "FieldType",
    "DISPLAY_ONLY_TYPES",
    "CHOICE_GROUP_TYPES",
    "ConditionalOperator",
    "LogicOperator",
    "CrossFieldOperator",
    "CalculatedFormat",
    "LayoutWidth",
    "SkipActionType",
    "RuntimeState",
    "EventType",
    "FieldErrorCode",
    "FileHandle",
]
