"""formruntime: declarative-schema-driven form rendering and validation engine.

Given a JSON form description the engine:
- Renders an accessible element tree (single or multi-page)
- Keeps values, errors, calculated fields and conditional visibility consistent
  while the user edits fields, navigates pages and adds or removes repeatable
  instances
- Validates fields (required, pattern, length, bounds, files, cross-field)
- Produces a normalized data snapshot and hands it to a submit callback or
  connector

Basic usage:
    >>> from formruntime import Element, FormRuntime
    >>> schema = {
    ...     "formId": "contact",
    ...     "pages": [{"id": "p1", "fields": [{"id": "name", "type": "text", "label": "Name"}]}],
    ... }
    >>> runtime = FormRuntime(schema=schema, container=Element("div"))
    >>> runtime.render()
    >>> print(runtime.state.value)
    idle
"""

__version__ = "0.1.0"
__author__ = "formruntime contributors"

# Version info
VERSION = (0, 1, 0)

# Core exports
from formruntime.dom import Element
from formruntime.errors import (
    ConfigError,
    ExpressionError,
    FieldError,
    FormRuntimeError,
    SchemaError,
    SubmissionError,
    ValidationError,
)
from formruntime.runtime import FormRuntime
from formruntime.schema import FormSchema, load_schema
from formruntime.submission import SubmitResult
from formruntime.types import EventType, FieldType, FileHandle, RuntimeState

# Package metadata
__all__ = [
    "__version__",
    "VERSION",
    "ConfigError",
    "Element",
    "EventType",
    "ExpressionError",
    "FieldError",
    "FieldType",
    "FileHandle",
    "FormRuntime",
    "FormRuntimeError",
    "FormSchema",
    "RuntimeState",
    "SchemaError",
    "SubmissionError",
    "SubmitResult",
    "ValidationError",
    "load_schema",
]
