"""Field validation engine for formruntime.

Rules run in a fixed order and stop at the first failure:

    required -> pattern -> length -> numeric bounds -> file constraints -> cross-field

An empty value on a field that is not required is valid straight away; no
further rule is consulted for it.

Pattern, length and numeric-bound rules are compiled into a small JSON Schema
per field and checked with jsonschema, whose errors are translated into the
engine's FieldError format. File and cross-field rules need context JSON
Schema cannot express (file metadata, another field's value, date parsing)
and are checked directly.
"""

import logging
import re
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

import jsonschema
from dateutil import parser as date_parser
from jsonschema import Draft7Validator

from formruntime.errors import FieldError
from formruntime.expressions import parse_number, to_display_string
from formruntime.schema import FormField
from formruntime.store import is_empty
from formruntime.types import CrossFieldOperator, FieldErrorCode, FieldType, FileHandle

logger = logging.getLogger(__name__)

ValueLookup = Callable[[str], Any]

# Which jsonschema keyword wins when several fail for the same value
_RULE_PRIORITY = ("pattern", "minLength", "maxLength", "minimum", "maximum")


@dataclass(frozen=True)
class ValidationResult:
    """Outcome of validating a set of fields.

    Attributes:
        is_valid: Whether every field passed
        errors: Ordered field errors (empty if valid)
        missing_fields: Ids of required fields left empty
        invalid_fields: Ids of fields that failed any other rule

    Examples:
        >>> result = ValidationResult(is_valid=True, errors=[])
        >>> result.to_dict()
        {'valid': True, 'errors': [], 'missingFields': [], 'invalidFields': []}
    """
    is_valid: bool
    errors: List[FieldError]
    missing_fields: List[str] = field(default_factory=list)
    invalid_fields: List[str] = field(default_factory=list)

    @property
    def first_error(self) -> Optional[FieldError]:
        return self.errors[0] if self.errors else None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dict for serialization."""
        return {
            "valid": self.is_valid,
            "errors": [e.to_dict() for e in self.errors],
            "missingFields": list(self.missing_fields),
            "invalidFields": list(self.invalid_fields),
        }


def _parse_date(value: Any) -> Optional[datetime]:
    if isinstance(value, datetime):
        return value
    try:
        return date_parser.parse(str(value))
    except (ValueError, OverflowError):
        return None


class ValidationEngine:
    """Per-field and whole-form rule evaluation.

    The engine is stateless apart from a cache of compiled rule validators;
    recording errors against the value store is the caller's job.

    Examples:
        >>> from formruntime.schema import FormField
        >>> engine = ValidationEngine()
        >>> name = FormField(id="name", type=FieldType.TEXT, label="Name", required=True)
        >>> engine.validate_field(name, "").message
        'Name is required'
        >>> engine.validate_field(name, "Ada") is None
        True
    """

    def __init__(self) -> None:
        self._validators: Dict[Tuple[Any, ...], Draft7Validator] = {}

    def validate_field(
        self,
        form_field: FormField,
        value: Any,
        lookup: Optional[ValueLookup] = None,
    ) -> Optional[FieldError]:
        """Validate one field value.

        Args:
            form_field: Field definition (namespaced copy for instances)
            value: Current value
            lookup: Resolves other fields' values for cross-field rules

        Returns:
            The first failing rule as a FieldError, or None when valid
        """
        if form_field.is_display_only:
            return None

        rules = form_field.validation
        if is_empty(value):
            if form_field.is_required:
                label = form_field.label or form_field.id
                return self._error(form_field, FieldErrorCode.REQUIRED, f"{label} is required")
            return None

        error = self._check_rule_schema(form_field, value)
        if error is not None:
            return error

        if form_field.type == FieldType.FILE and isinstance(value, FileHandle):
            error = self._check_file(form_field, value)
            if error is not None:
                return error

        if rules.cross_field is not None and lookup is not None:
            error = self._check_cross_field(form_field, value, lookup)
            if error is not None:
                return error

        return None

    def validate_fields(
        self,
        entries: Iterable[Tuple[FormField, Any]],
        lookup: Optional[ValueLookup] = None,
    ) -> ValidationResult:
        """Validate (field, value) pairs and aggregate the failures in order."""
        errors: List[FieldError] = []
        missing: List[str] = []
        invalid: List[str] = []
        for form_field, value in entries:
            error = self.validate_field(form_field, value, lookup)
            if error is None:
                continue
            errors.append(error)
            if error.code == FieldErrorCode.REQUIRED:
                missing.append(error.field_id)
            else:
                invalid.append(error.field_id)
        return ValidationResult(
            is_valid=not errors,
            errors=errors,
            missing_fields=missing,
            invalid_fields=invalid,
        )

    def _error(self, form_field: FormField, code: FieldErrorCode, default: str) -> FieldError:
        message = form_field.validation.message or default
        return FieldError(field_id=form_field.id, message=message, code=code)

    def _rule_schema(self, form_field: FormField, value: Any) -> Optional[Dict[str, Any]]:
        """Compile pattern/length/bound rules that apply to this value."""
        rules = form_field.validation
        schema: Dict[str, Any] = {}

        if isinstance(value, str):
            if rules.pattern:
                try:
                    re.compile(rules.pattern)
                except re.error as exc:
                    logger.warning("Ignoring invalid pattern on field '%s': %s", form_field.id, exc)
                else:
                    schema["pattern"] = rules.pattern
            if rules.min_length:
                schema["minLength"] = rules.min_length
            if rules.max_length:
                schema["maxLength"] = rules.max_length

        if form_field.type == FieldType.NUMBER:
            if rules.min is not None:
                schema["minimum"] = rules.min
            if rules.max is not None:
                schema["maximum"] = rules.max

        return schema or None

    def _validator_for(self, schema: Dict[str, Any]) -> Draft7Validator:
        key = tuple(sorted(schema.items()))
        validator = self._validators.get(key)
        if validator is None:
            validator = Draft7Validator(schema)
            self._validators[key] = validator
        return validator

    def _check_rule_schema(self, form_field: FormField, value: Any) -> Optional[FieldError]:
        schema = self._rule_schema(form_field, value)
        if schema is None:
            return None

        string_rules = {k: v for k, v in schema.items() if k in ("pattern", "minLength", "maxLength")}
        bound_rules = {k: v for k, v in schema.items() if k in ("minimum", "maximum")}

        errors: List[jsonschema.ValidationError] = []
        if string_rules:
            errors.extend(self._validator_for(string_rules).iter_errors(value))
        if bound_rules:
            number = parse_number(value)
            if number is not None:
                errors.extend(self._validator_for(bound_rules).iter_errors(number))

        if not errors:
            return None
        errors.sort(key=lambda e: _RULE_PRIORITY.index(e.validator))
        return self._translate_error(form_field, errors[0])

    def _translate_error(self, form_field: FormField, error: jsonschema.ValidationError) -> FieldError:
        """Map a jsonschema rule failure onto a field error.

        Error mapping:
            - 'pattern'   -> INVALID_FORMAT
            - 'minLength' -> TOO_SHORT
            - 'maxLength' -> TOO_LONG
            - 'minimum'   -> TOO_SMALL
            - 'maximum'   -> TOO_LARGE
        """
        limit = error.validator_value
        if isinstance(limit, float) and limit.is_integer():
            limit = int(limit)

        if error.validator == "pattern":
            return self._error(form_field, FieldErrorCode.INVALID_FORMAT, "Invalid format")
        if error.validator == "minLength":
            return self._error(form_field, FieldErrorCode.TOO_SHORT, f"Minimum length is {limit}")
        if error.validator == "maxLength":
            return self._error(form_field, FieldErrorCode.TOO_LONG, f"Maximum length is {limit}")
        if error.validator == "minimum":
            return self._error(form_field, FieldErrorCode.TOO_SMALL, f"Minimum value is {limit}")
        return self._error(form_field, FieldErrorCode.TOO_LARGE, f"Maximum value is {limit}")

    def _check_file(self, form_field: FormField, value: FileHandle) -> Optional[FieldError]:
        rules = form_field.validation
        if rules.file_size_limit and value.size > rules.file_size_limit:
            return self._error(form_field, FieldErrorCode.FILE_TOO_LARGE, "File size exceeds limit")
        if rules.file_types and not _file_type_allowed(value, rules.file_types):
            return self._error(form_field, FieldErrorCode.FILE_WRONG_TYPE, "File type not allowed")
        return None

    def _check_cross_field(self, form_field: FormField, value: Any, lookup: ValueLookup) -> Optional[FieldError]:
        cross = form_field.validation.cross_field
        other = lookup(cross.field)
        if is_empty(other):
            return None

        operator = cross.operator
        if operator == CrossFieldOperator.EQUALS:
            valid = to_display_string(value) == to_display_string(other)
        elif operator == CrossFieldOperator.NOT_EQUALS:
            valid = to_display_string(value) != to_display_string(other)
        elif operator in (CrossFieldOperator.GREATER_THAN, CrossFieldOperator.LESS_THAN):
            left, right = parse_number(value), parse_number(other)
            if left is None or right is None:
                valid = False
            elif operator == CrossFieldOperator.GREATER_THAN:
                valid = left > right
            else:
                valid = left < right
        else:
            left_date, right_date = _parse_date(value), _parse_date(other)
            if left_date is None or right_date is None:
                valid = False
            else:
                try:
                    if operator == CrossFieldOperator.AFTER:
                        valid = left_date > right_date
                    else:
                        valid = left_date < right_date
                except TypeError:
                    # offset-naive vs offset-aware
                    valid = False

        if valid:
            return None
        return self._error(form_field, FieldErrorCode.CROSS_FIELD, "Validation failed")


def _file_type_allowed(value: FileHandle, allowed: List[str]) -> bool:
    """Match a file against MIME types ("image/png", "image/*") or extensions (".pdf", "pdf")."""
    content_type = value.content_type.lower()
    extension = value.extension
    for entry in allowed:
        entry = entry.strip().lower()
        if not entry:
            continue
        if "/" in entry:
            if entry.endswith("/*") and content_type.startswith(entry[:-1]):
                return True
            if content_type == entry:
                return True
        elif entry.lstrip(".") == extension:
            return True
    return False


__all__ = [
    "ValidationEngine",
    "ValidationResult",
]
