"""Typed form schema model.

A form schema is the declarative description of a form: its pages and
fields, repeatable sections, calculated fields and skip rules. This module
turns the camelCase JSON shape into frozen dataclasses and rejects schemas
that are structurally unusable.

Structural checks are expressed as a JSON Schema document
(FORM_DEFINITION_SCHEMA) and enforced with jsonschema; failures become
SchemaError with the offending path.

Usage:
    >>> schema = load_schema({
    ...     "formId": "contact",
    ...     "version": "1.0",
    ...     "title": "Contact",
    ...     "pages": [{"id": "p1", "fields": [{"id": "name", "type": "text"}]}],
    ... })
    >>> schema.pages[0].fields[0].type
    <FieldType.TEXT: 'text'>
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List, Mapping, Optional, Union

from jsonschema import Draft7Validator

from formruntime.errors import SchemaError
from formruntime.types import (
    CalculatedFormat,
    ConditionalOperator,
    CrossFieldOperator,
    DISPLAY_ONLY_TYPES,
    FieldType,
    LayoutWidth,
    LogicOperator,
    SkipActionType,
)


_RULE_DEFINITION = {
    "type": "object",
    "required": ["field", "operator"],
    "properties": {
        "field": {"type": "string", "minLength": 1},
        "operator": {"enum": [o.value for o in ConditionalOperator]},
    },
}

_FIELD_DEFINITION = {
    "type": "object",
    "required": ["id", "type"],
    "properties": {
        "id": {"type": "string", "minLength": 1},
        "type": {"enum": [t.value for t in FieldType]},
        "label": {"type": "string"},
        "required": {"type": "boolean"},
        "options": {
            "type": "array",
            "items": {"type": "object", "required": ["value"]},
        },
        "validation": {
            "type": "object",
            "properties": {
                "minLength": {"type": "integer", "minimum": 0},
                "maxLength": {"type": "integer", "minimum": 0},
                "min": {"type": "number"},
                "max": {"type": "number"},
                "fileSizeLimit": {"type": "number", "minimum": 0},
                "fileTypes": {"type": "array", "items": {"type": "string"}},
                "crossField": {
                    "type": "object",
                    "required": ["field", "operator"],
                    "properties": {
                        "operator": {"enum": [o.value for o in CrossFieldOperator]},
                    },
                },
            },
        },
        "conditionalDisplay": {
            "type": "object",
            "required": ["rules"],
            "properties": {
                "rules": {"type": "array", "items": _RULE_DEFINITION},
                "logic": {"enum": [o.value for o in LogicOperator]},
            },
        },
        "level": {"type": "integer", "minimum": 1, "maximum": 6},
    },
}

FORM_DEFINITION_SCHEMA: Dict[str, Any] = {
    "$schema": "http://json-schema.org/draft-07/schema#",
    "type": "object",
    "required": ["formId", "pages"],
    "properties": {
        "formId": {"type": "string", "minLength": 1},
        "version": {"type": ["string", "number"]},
        "title": {"type": "string"},
        "settings": {"type": "object"},
        "pages": {
            "type": "array",
            "minItems": 1,
            "items": {
                "type": "object",
                "required": ["id", "fields"],
                "properties": {
                    "id": {"type": "string", "minLength": 1},
                    "fields": {"type": "array", "items": _FIELD_DEFINITION},
                },
            },
        },
        "repeatableSections": {
            "type": "array",
            "items": {
                "type": "object",
                "required": ["id", "fields"],
                "properties": {
                    "id": {"type": "string", "minLength": 1},
                    "minInstances": {"type": "integer", "minimum": 0},
                    "maxInstances": {"type": "integer", "minimum": 0},
                    "fields": {"type": "array", "items": _FIELD_DEFINITION},
                },
            },
        },
        "calculatedFields": {
            "type": "array",
            "items": {
                "type": "object",
                "required": ["id", "expression"],
                "properties": {
                    "id": {"type": "string", "minLength": 1},
                    "expression": {"type": "string"},
                    "format": {"enum": [f.value for f in CalculatedFormat]},
                    "decimalPlaces": {"type": "integer", "minimum": 0},
                },
            },
        },
        "conditionalLogic": {
            "type": "object",
            "properties": {
                "skipRules": {
                    "type": "array",
                    "items": {
                        "type": "object",
                        "required": ["condition", "action"],
                        "properties": {
                            "condition": _RULE_DEFINITION,
                            "action": {
                                "type": "object",
                                "required": ["type", "target"],
                                "properties": {
                                    "type": {"enum": [a.value for a in SkipActionType]},
                                    "target": {"type": "string"},
                                },
                            },
                        },
                    },
                },
            },
        },
    },
}

_structure_validator = Draft7Validator(FORM_DEFINITION_SCHEMA)


def _drop_none(data: Dict[str, Any]) -> Dict[str, Any]:
    return {k: v for k, v in data.items() if v is not None}


@dataclass(frozen=True)
class FieldOption:
    value: str
    label: str

    def to_dict(self) -> Dict[str, Any]:
        return {"value": self.value, "label": self.label}

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "FieldOption":
        value = str(data["value"])
        return cls(value=value, label=str(data.get("label", value)))


@dataclass(frozen=True)
class CrossFieldRule:
    field: str
    operator: CrossFieldOperator

    def to_dict(self) -> Dict[str, Any]:
        return {"field": self.field, "operator": self.operator.value}

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "CrossFieldRule":
        return cls(field=data["field"], operator=CrossFieldOperator(data["operator"]))


@dataclass(frozen=True)
class Validation:
    """Validation rules attached to a field.

    ``message`` overrides every default message produced for the field.
    """
    required: bool = False
    pattern: Optional[str] = None
    min_length: Optional[int] = None
    max_length: Optional[int] = None
    min: Optional[float] = None
    max: Optional[float] = None
    min_date: Optional[str] = None
    max_date: Optional[str] = None
    file_size_limit: Optional[int] = None
    file_types: List[str] = field(default_factory=list)
    message: Optional[str] = None
    cross_field: Optional[CrossFieldRule] = None

    def to_dict(self) -> Dict[str, Any]:
        return _drop_none({
            "required": self.required or None,
            "pattern": self.pattern,
            "minLength": self.min_length,
            "maxLength": self.max_length,
            "min": self.min,
            "max": self.max,
            "minDate": self.min_date,
            "maxDate": self.max_date,
            "fileSizeLimit": self.file_size_limit,
            "fileTypes": list(self.file_types) or None,
            "message": self.message,
            "crossField": self.cross_field.to_dict() if self.cross_field else None,
        })

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Validation":
        cross = data.get("crossField")
        return cls(
            required=bool(data.get("required", False)),
            pattern=data.get("pattern"),
            min_length=data.get("minLength"),
            max_length=data.get("maxLength"),
            min=data.get("min"),
            max=data.get("max"),
            min_date=data.get("minDate"),
            max_date=data.get("maxDate"),
            file_size_limit=data.get("fileSizeLimit"),
            file_types=list(data.get("fileTypes") or []),
            message=data.get("message"),
            cross_field=CrossFieldRule.from_dict(cross) if cross else None,
        )


@dataclass(frozen=True)
class ConditionalRule:
    """A single comparison against another field's current value.

    Examples:
        >>> ConditionalRule.from_dict({"field": "a", "operator": "equals", "value": "x"})
        ConditionalRule(field='a', operator=<ConditionalOperator.EQUALS: 'equals'>, value='x')
    """
    field: str
    operator: ConditionalOperator
    value: Any = None

    def to_dict(self) -> Dict[str, Any]:
        return _drop_none({"field": self.field, "operator": self.operator.value, "value": self.value})

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ConditionalRule":
        return cls(
            field=data["field"],
            operator=ConditionalOperator(data["operator"]),
            value=data.get("value"),
        )


@dataclass(frozen=True)
class ConditionalDisplay:
    rules: List[ConditionalRule] = field(default_factory=list)
    logic: LogicOperator = LogicOperator.AND

    def to_dict(self) -> Dict[str, Any]:
        return {"rules": [r.to_dict() for r in self.rules], "logic": self.logic.value}

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ConditionalDisplay":
        return cls(
            rules=[ConditionalRule.from_dict(r) for r in data.get("rules", [])],
            logic=LogicOperator(data.get("logic") or LogicOperator.AND.value),
        )


@dataclass(frozen=True)
class Layout:
    width: LayoutWidth = LayoutWidth.FULL
    order: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return _drop_none({"width": self.width.value, "order": self.order})

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Layout":
        return cls(
            width=LayoutWidth(data.get("width") or LayoutWidth.FULL.value),
            order=data.get("order"),
        )


@dataclass(frozen=True)
class FormField:
    """A single input or display unit.

    Attributes:
        id: Identifier, unique within its page or repeatable section
        type: Field kind
        label: Visible label (also the header/paragraph text)
        required: Whether an empty value fails validation
        default_value: Value applied the first time the field is rendered
        validation: Rule set checked after required-ness
        options: Choices for select/radio/checkboxes
        conditional_display: Visibility rules, None means always visible
        layout: Width/order hints
        level: Heading level for header fields
    """
    id: str
    type: FieldType
    label: str = ""
    placeholder: str = ""
    help_text: str = ""
    required: bool = False
    default_value: Any = None
    validation: Validation = field(default_factory=Validation)
    options: List[FieldOption] = field(default_factory=list)
    conditional_display: Optional[ConditionalDisplay] = None
    layout: Layout = field(default_factory=Layout)
    level: int = 2

    @property
    def is_display_only(self) -> bool:
        return self.type in DISPLAY_ONLY_TYPES

    @property
    def is_required(self) -> bool:
        return self.required or self.validation.required

    def to_dict(self) -> Dict[str, Any]:
        validation = self.validation.to_dict()
        return _drop_none({
            "id": self.id,
            "type": self.type.value,
            "label": self.label or None,
            "placeholder": self.placeholder or None,
            "helpText": self.help_text or None,
            "required": self.required or None,
            "defaultValue": self.default_value,
            "validation": validation or None,
            "options": [o.to_dict() for o in self.options] or None,
            "conditionalDisplay": self.conditional_display.to_dict() if self.conditional_display else None,
            "layout": self.layout.to_dict() if self.layout != Layout() else None,
            "level": self.level if self.type == FieldType.HEADER else None,
        })

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "FormField":
        conditional = data.get("conditionalDisplay")
        return cls(
            id=data["id"],
            type=FieldType(data["type"]),
            label=data.get("label") or "",
            placeholder=data.get("placeholder") or "",
            help_text=data.get("helpText") or "",
            required=bool(data.get("required", False)),
            default_value=data.get("defaultValue"),
            validation=Validation.from_dict(data.get("validation") or {}),
            options=[FieldOption.from_dict(o) for o in data.get("options") or []],
            conditional_display=ConditionalDisplay.from_dict(conditional) if conditional else None,
            layout=Layout.from_dict(data.get("layout") or {}),
            level=data.get("level") or 2,
        )


@dataclass(frozen=True)
class FormPage:
    id: str
    title: str = ""
    fields: List[FormField] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return _drop_none({
            "id": self.id,
            "title": self.title or None,
            "fields": [f.to_dict() for f in self.fields],
        })

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "FormPage":
        return cls(
            id=data["id"],
            title=data.get("title") or "",
            fields=[FormField.from_dict(f) for f in data.get("fields", [])],
        )


@dataclass(frozen=True)
class FormSettings:
    multi_page: bool = False
    progress_bar: bool = False
    save_progress: bool = False
    submit_button_text: str = "Submit"
    success_message: str = "Thank you!"
    theme: Optional[str] = None
    custom_styles: Dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return _drop_none({
            "multiPage": self.multi_page,
            "progressBar": self.progress_bar,
            "saveProgress": self.save_progress,
            "submitButtonText": self.submit_button_text,
            "successMessage": self.success_message,
            "theme": self.theme,
            "customStyles": dict(self.custom_styles) or None,
        })

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "FormSettings":
        return cls(
            multi_page=bool(data.get("multiPage", False)),
            progress_bar=bool(data.get("progressBar", False)),
            save_progress=bool(data.get("saveProgress", False)),
            submit_button_text=data.get("submitButtonText") or "Submit",
            success_message=data.get("successMessage") or "Thank you!",
            theme=data.get("theme"),
            custom_styles=dict(data.get("customStyles") or {}),
        )


@dataclass(frozen=True)
class RepeatableSection:
    """A field group the user may instantiate between min and max times.

    When ``minInstances`` is absent the section starts with one instance;
    ``max_instances`` of None means unbounded.
    """
    id: str
    title: str = ""
    add_button_text: str = "Add Another"
    remove_button_text: str = "Remove"
    min_instances: int = 1
    max_instances: Optional[int] = None
    fields: List[FormField] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return _drop_none({
            "id": self.id,
            "title": self.title or None,
            "addButtonText": self.add_button_text,
            "removeButtonText": self.remove_button_text,
            "minInstances": self.min_instances,
            "maxInstances": self.max_instances,
            "fields": [f.to_dict() for f in self.fields],
        })

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "RepeatableSection":
        min_instances = data.get("minInstances")
        return cls(
            id=data["id"],
            title=data.get("title") or "",
            add_button_text=data.get("addButtonText") or "Add Another",
            remove_button_text=data.get("removeButtonText") or "Remove",
            min_instances=1 if min_instances is None else min_instances,
            max_instances=data.get("maxInstances"),
            fields=[FormField.from_dict(f) for f in data.get("fields", [])],
        )


@dataclass(frozen=True)
class CalculatedField:
    id: str
    expression: str
    label: str = ""
    format: CalculatedFormat = CalculatedFormat.NUMBER
    decimal_places: int = 2

    def to_dict(self) -> Dict[str, Any]:
        return _drop_none({
            "id": self.id,
            "expression": self.expression,
            "label": self.label or None,
            "format": self.format.value,
            "decimalPlaces": self.decimal_places,
        })

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "CalculatedField":
        decimal_places = data.get("decimalPlaces")
        return cls(
            id=data["id"],
            expression=data["expression"],
            label=data.get("label") or "",
            format=CalculatedFormat(data.get("format") or CalculatedFormat.NUMBER.value),
            decimal_places=2 if decimal_places is None else decimal_places,
        )


@dataclass(frozen=True)
class SkipAction:
    type: SkipActionType
    target: str

    def to_dict(self) -> Dict[str, Any]:
        return {"type": self.type.value, "target": self.target}


@dataclass(frozen=True)
class SkipRule:
    condition: ConditionalRule
    action: SkipAction

    def to_dict(self) -> Dict[str, Any]:
        return {"condition": self.condition.to_dict(), "action": self.action.to_dict()}

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "SkipRule":
        action = data["action"]
        return cls(
            condition=ConditionalRule.from_dict(data["condition"]),
            action=SkipAction(type=SkipActionType(action["type"]), target=action["target"]),
        )


@dataclass(frozen=True)
class FormSchema:
    """Root of a form definition.

    Instances are immutable; producing a modified schema means building a
    new value and reloading it into the runtime.
    """
    form_id: str
    pages: List[FormPage]
    version: str = "1.0"
    title: str = ""
    description: str = ""
    settings: FormSettings = field(default_factory=FormSettings)
    repeatable_sections: List[RepeatableSection] = field(default_factory=list)
    calculated_fields: List[CalculatedField] = field(default_factory=list)
    skip_rules: List[SkipRule] = field(default_factory=list)

    def find_page(self, page_id: str) -> Optional[FormPage]:
        return next((p for p in self.pages if p.id == page_id), None)

    def page_index(self, page_id: str) -> int:
        """Return the index of a page, or -1 when it does not exist."""
        for index, page in enumerate(self.pages):
            if page.id == page_id:
                return index
        return -1

    def find_section(self, section_id: str) -> Optional[RepeatableSection]:
        return next((s for s in self.repeatable_sections if s.id == section_id), None)

    def find_field(self, field_id: str) -> Optional[FormField]:
        """Look up a page-level field by id."""
        return next((f for f in self.iter_page_fields() if f.id == field_id), None)

    def iter_page_fields(self) -> Iterator[FormField]:
        for page in self.pages:
            yield from page.fields

    def input_fields(self) -> List[FormField]:
        """Page-level fields that hold a value."""
        return [f for f in self.iter_page_fields() if not f.is_display_only]

    def to_dict(self) -> Dict[str, Any]:
        """Convert back to the camelCase JSON shape."""
        result: Dict[str, Any] = {
            "formId": self.form_id,
            "version": self.version,
            "title": self.title,
            "settings": self.settings.to_dict(),
            "pages": [p.to_dict() for p in self.pages],
        }
        if self.description:
            result["description"] = self.description
        if self.repeatable_sections:
            result["repeatableSections"] = [s.to_dict() for s in self.repeatable_sections]
        if self.calculated_fields:
            result["calculatedFields"] = [c.to_dict() for c in self.calculated_fields]
        if self.skip_rules:
            result["conditionalLogic"] = {"skipRules": [r.to_dict() for r in self.skip_rules]}
        return result

    @classmethod
    def from_dict(cls, data: Any) -> "FormSchema":
        """Parse and structurally validate a schema mapping.

        Raises:
            SchemaError: If the schema is absent or structurally invalid
        """
        if data is None:
            raise SchemaError("Form schema is required")
        if not isinstance(data, Mapping):
            raise SchemaError(f"Form schema must be an object, got {type(data).__name__}")

        errors = sorted(_structure_validator.iter_errors(data), key=lambda e: [str(p) for p in e.absolute_path])
        if errors:
            error = errors[0]
            path = ".".join(str(p) for p in error.absolute_path)
            raise SchemaError(error.message, path=path)

        conditional_logic = data.get("conditionalLogic") or {}
        schema = cls(
            form_id=data["formId"],
            version=str(data.get("version", "1.0")),
            title=data.get("title") or "",
            description=data.get("description") or "",
            settings=FormSettings.from_dict(data.get("settings") or {}),
            pages=[FormPage.from_dict(p) for p in data["pages"]],
            repeatable_sections=[RepeatableSection.from_dict(s) for s in data.get("repeatableSections") or []],
            calculated_fields=[CalculatedField.from_dict(c) for c in data.get("calculatedFields") or []],
            skip_rules=[SkipRule.from_dict(r) for r in conditional_logic.get("skipRules") or []],
        )
        _check_scopes(schema)
        return schema


def _check_scopes(schema: FormSchema) -> None:
    """Enforce identifier uniqueness and instance bounds."""
    for page_index, page in enumerate(schema.pages):
        seen = set()
        for field_index, form_field in enumerate(page.fields):
            if form_field.id in seen:
                raise SchemaError(
                    f"Duplicate field id '{form_field.id}'",
                    path=f"pages.{page_index}.fields.{field_index}.id",
                )
            seen.add(form_field.id)

    for section_index, section in enumerate(schema.repeatable_sections):
        seen = set()
        for field_index, form_field in enumerate(section.fields):
            if form_field.id in seen:
                raise SchemaError(
                    f"Duplicate field id '{form_field.id}'",
                    path=f"repeatableSections.{section_index}.fields.{field_index}.id",
                )
            seen.add(form_field.id)
        if section.max_instances is not None and section.max_instances < section.min_instances:
            raise SchemaError(
                f"maxInstances ({section.max_instances}) is less than minInstances ({section.min_instances})",
                path=f"repeatableSections.{section_index}.maxInstances",
            )


def load_schema(schema: Union[FormSchema, Mapping[str, Any], None]) -> FormSchema:
    """Accept a parsed FormSchema or a raw mapping.

    Raises:
        SchemaError: If the schema is absent or structurally invalid
    """
    if isinstance(schema, FormSchema):
        return schema
    return FormSchema.from_dict(schema)


__all__ = [
    "FORM_DEFINITION_SCHEMA",
    "FieldOption",
    "CrossFieldRule",
    "Validation",
    "ConditionalRule",
    "ConditionalDisplay",
    "Layout",
    "FormField",
    "FormPage",
    "FormSettings",
    "RepeatableSection",
    "CalculatedField",
    "SkipAction",
    "SkipRule",
    "FormSchema",
    "load_schema",
]
