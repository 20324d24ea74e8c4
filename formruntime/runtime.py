"""FormRuntime orchestrator.

FormRuntime mounts one form schema into a container element and keeps the
rendered tree, the value store and the dependent state (calculated values,
conditional visibility, skip rules, submit-button enablement) consistent
while the user edits fields, navigates pages and adds or removes repeatable
instances.

Usage:
    >>> from formruntime.dom import Element
    >>> schema = {
    ...     "formId": "contact",
    ...     "pages": [{"id": "p1", "fields": [
    ...         {"id": "name", "type": "text", "label": "Name", "required": True},
    ...     ]}],
    ... }
    >>> runtime = FormRuntime(schema=schema, container=Element("div"))
    >>> runtime.render()
    >>> runtime.validate()
    False
    >>> runtime.set_field_value("name", "Ada")
    >>> runtime.validate(), runtime.get_data()
    (True, {'name': 'Ada'})
"""

import asyncio
import logging
from typing import Any, Dict, List, Mapping, Optional, Set, Union

from formruntime.config import RuntimeConfig
from formruntime.dom import DomEvent, Element
from formruntime.errors import FieldError, SubmissionError
from formruntime.events import EventEmitter, EventListener
from formruntime.expressions import (
    calculate,
    evaluate_rule,
    evaluate_rules,
    format_calculated_value,
    referenced_fields,
)
from formruntime.repeatable import RepeatableSectionManager, namespaced_id, parse_namespaced_id
from formruntime.rendering import Renderer
from formruntime.schema import FormField, FormPage, FormSchema, load_schema
from formruntime.state_machine import RuntimeStateMachine
from formruntime.store import FieldValueStore, is_empty
from formruntime.submission import SubmissionController, SubmitResult, VALIDATION_FAILED_MESSAGE
from formruntime.types import EventType, RuntimeState, SkipActionType
from formruntime.validation import ValidationEngine, ValidationResult

logger = logging.getLogger(__name__)

# States in which the tree may be rebuilt for a structural change
_STRUCTURAL_BLOCKED = (RuntimeState.SUBMITTING, RuntimeState.SUBMITTED, RuntimeState.DESTROYED)


class FormRuntime:
    """Runtime engine for one mounted form.

    Attributes:
        schema: The loaded FormSchema
        container: Element the form is mounted into
        theme: Theme identifier used for the container class
        store: Field value store (single source of truth for values/errors)
        sections: Repeatable section manager
        renderer: Rendering engine (owns the field registry)
        state_machine: Lifecycle state machine
        events: Runtime event stream
        current_page_index: Index of the visible page in multi-page mode
        pending_submission: Task scheduled by the last form "submit" event
    """

    def __init__(self, options: Union[RuntimeConfig, Mapping[str, Any], None] = None, **kwargs: Any):
        """Initialize the runtime.

        Args:
            options: A RuntimeConfig or an options mapping (camelCase aliases allowed)
            **kwargs: Options as keyword arguments (schema, container, theme,
                on_submit, on_validation_error, submit_timeout)

        Raises:
            ConfigError: If schema or container is missing
            SchemaError: If the schema is structurally invalid
        """
        if isinstance(options, RuntimeConfig):
            config = options
        else:
            config = RuntimeConfig.from_options(options, **kwargs)
        self.config = config
        self.schema: FormSchema = load_schema(config.schema)
        self.container: Element = config.container
        self.theme = config.theme or self.schema.settings.theme or "default"
        self.on_validation_error = config.on_validation_error

        self.events = EventEmitter()
        self.state_machine = RuntimeStateMachine(form_id=self.schema.form_id, emitter=self.events)
        self.store = FieldValueStore()
        self.validator = ValidationEngine()
        self.sections = RepeatableSectionManager(self.schema, self.store)
        self.renderer = Renderer(self.schema, self.container, self.theme, self.store, self.sections, host=self)
        self.submission = SubmissionController(self, config.on_submit, config.submit_timeout)

        self.current_page_index = 0
        self.pending_submission: Optional["asyncio.Task[SubmitResult]"] = None
        self.last_validation: Optional[ValidationResult] = None
        self._hidden: Set[str] = set()
        self._disabled: Set[str] = set()

        self.sections.initialize()
        self._apply_defaults()
        self.store.subscribe(self._on_store_change)
        self._recompute()

    # Properties

    @property
    def form_id(self) -> str:
        return self.schema.form_id

    @property
    def state(self) -> RuntimeState:
        return self.state_machine.state

    @property
    def is_multi_page(self) -> bool:
        return self.schema.settings.multi_page

    @property
    def current_page(self) -> FormPage:
        return self.schema.pages[self.current_page_index]

    @property
    def last_submission_error(self) -> Optional[SubmissionError]:
        return self.submission.last_error

    # Field resolution

    def _field_for(self, field_id: str) -> Optional[FormField]:
        """Page field or namespaced instance field for an identifier."""
        parsed = parse_namespaced_id(field_id)
        if parsed is None:
            return self.schema.find_field(field_id)
        section_id, index, _ = parsed
        if index >= self.sections.count(section_id):
            return None
        return next((f for f in self.sections.instance_fields(section_id, index) if f.id == field_id), None)

    def _instance_fields(self) -> List[FormField]:
        return [f for _section, _index, f in self.sections.iter_instance_fields()]

    def _all_fields(self) -> List[FormField]:
        return list(self.schema.iter_page_fields()) + self._instance_fields()

    def _scope_fields(self) -> List[FormField]:
        """Input fields of every page plus all repeatable instances."""
        return [f for f in self._all_fields() if not f.is_display_only]

    def _page_index_of(self, field_id: str) -> int:
        """Index of the page holding a page field, -1 for instance fields."""
        for index, page in enumerate(self.schema.pages):
            if any(f.id == field_id for f in page.fields):
                return index
        return -1

    def _participates(self, field_id: str) -> bool:
        return field_id not in self._hidden and field_id not in self._disabled

    def _apply_defaults(self) -> None:
        """Seed default values for fields that have never held a value."""
        for form_field in self._all_fields():
            if form_field.is_display_only or form_field.default_value is None:
                continue
            if not self.store.has(form_field.id):
                self.store.set(form_field.id, form_field.default_value, notify=False)

    # Dependent state

    def _on_store_change(self, field_id: str, value: Any) -> None:
        self.validate_field(field_id)
        self._recompute(navigate=True, changed=field_id)
        self.state_machine.emit(EventType.FIELD_UPDATED, {"fieldId": field_id, "value": value})

    def _recompute(self, navigate: bool = False, changed: Optional[str] = None) -> None:
        """Refresh calculated values, visibility, skip rules and the submit button.

        With ``changed`` set, only calculated fields referencing that field are
        re-evaluated.
        """
        for calc in self.schema.calculated_fields:
            if changed is not None and changed not in referenced_fields(calc.expression):
                continue
            value = calculate(calc.expression, self.store.get)
            self.renderer.update_calculated(
                calc.id, format_calculated_value(value, calc.format, calc.decimal_places)
            )
        self._apply_visibility()
        target = self._apply_skip_rules()
        self.refresh_submit_state()
        if navigate and target is not None:
            logger.info("Skip rule moved form '%s' to page '%s'", self.form_id, target)
            self.go_to_page(target)

    def _apply_visibility(self) -> None:
        for form_field in self._all_fields():
            display = form_field.conditional_display
            if display is None:
                continue
            visible = evaluate_rules(display.rules, self.store.get, display.logic)
            if visible:
                self._hidden.discard(form_field.id)
            else:
                self._hidden.add(form_field.id)
                self.store.clear_error(form_field.id)
                self.renderer.clear_error(form_field.id)
            self.renderer.set_visible(form_field.id, visible)

    def _apply_skip_rules(self) -> Optional[str]:
        """Apply enable/disable actions and return a page to skip to, if any."""
        target_page = None
        for rule in self.schema.skip_rules:
            matched = evaluate_rule(rule.condition, self.store.get)
            action = rule.action
            if action.type == SkipActionType.SKIP_TO_PAGE:
                index = self.schema.page_index(action.target)
                if matched and target_page is None and self.is_multi_page and index > self.current_page_index:
                    target_page = action.target
                continue

            disabled = matched if action.type == SkipActionType.DISABLE_FIELD else not matched
            if disabled:
                self._disabled.add(action.target)
                self.store.clear_error(action.target)
                self.renderer.clear_error(action.target)
            else:
                self._disabled.discard(action.target)
            self.renderer.set_disabled(action.target, disabled)
        return target_page

    def refresh_submit_state(self) -> None:
        self.renderer.update_submit_state(self._submit_ready())

    def _submit_ready(self) -> bool:
        """Whether every visible, enabled required field in scope is answered and valid."""
        for form_field in self._scope_fields():
            if not form_field.is_required or not self._participates(form_field.id):
                continue
            if is_empty(self.store.get(form_field.id)) or self.store.get_error(form_field.id):
                return False
        return True

    def is_field_visible(self, field_id: str) -> bool:
        return field_id not in self._hidden

    def is_field_disabled(self, field_id: str) -> bool:
        return field_id in self._disabled

    def get_calculated_value(self, calc_id: str) -> Optional[float]:
        """Current numeric value of a calculated field, None for unknown ids."""
        calc = next((c for c in self.schema.calculated_fields if c.id == calc_id), None)
        if calc is None:
            return None
        return calculate(calc.expression, self.store.get)

    # Rendering

    def render(self) -> None:
        """Build the tree for the current page and instance counts.

        Does nothing once the form has been submitted (the success message
        stays until ``reset()``) or destroyed.
        """
        if self.state in _STRUCTURAL_BLOCKED:
            logger.warning("Ignoring render of form '%s' in state '%s'", self.form_id, self.state.value)
            return
        self._render()

    def _render(self) -> None:
        self.state_machine.transition_to(RuntimeState.RENDERING)
        self.renderer.render(self.current_page_index)
        self._recompute()
        self.state_machine.transition_to(RuntimeState.IDLE)
        self.state_machine.emit(EventType.FORM_RENDERED, {"page": self.current_page.id})

    def _structural_change_allowed(self, operation: str) -> bool:
        if self.state in _STRUCTURAL_BLOCKED:
            logger.warning("Ignoring %s on form '%s' in state '%s'", operation, self.form_id, self.state.value)
            return False
        return True

    def _refresh_structure(self) -> None:
        """Rebuild the tree if mounted, otherwise just recompute dependents."""
        if self.state == RuntimeState.IDLE:
            self._render()
        else:
            self._recompute()

    def to_html(self) -> str:
        return self.container.to_html()

    # Validation

    def validate_field(self, field_id: str) -> bool:
        """Validate one field against the store and update its error display."""
        form_field = self._field_for(field_id)
        if form_field is None or form_field.is_display_only:
            return True
        if not self._participates(field_id):
            self.store.clear_error(field_id)
            self.renderer.clear_error(field_id)
            return True

        error = self.validator.validate_field(form_field, self.store.get(field_id), self.store.get)
        self._record_error(field_id, error)
        self.state_machine.emit(EventType.FIELD_VALIDATED, {
            "fieldId": field_id,
            "valid": error is None,
            "error": error.message if error else None,
        })
        return error is None

    def _record_error(self, field_id: str, error: Optional[FieldError]) -> None:
        if error is None:
            self.store.clear_error(field_id)
            self.renderer.clear_error(field_id)
        else:
            self.store.set_error(field_id, error.message)
            self.renderer.show_error(field_id, error.message)

    def _validate_fields(self, fields: List[FormField]) -> ValidationResult:
        participating = [f for f in fields if not f.is_display_only and self._participates(f.id)]
        result = self.validator.validate_fields(
            ((f, self.store.get(f.id)) for f in participating), self.store.get
        )
        failed = {e.field_id: e for e in result.errors}
        for form_field in participating:
            self._record_error(form_field.id, failed.get(form_field.id))
        self.refresh_submit_state()
        return result

    def validate(self) -> bool:
        """Validate every field in scope and show the errors inline.

        On failure the ``on_validation_error`` callback receives the ordered
        error list.
        """
        result = self._validate_fields(self._scope_fields())
        self.last_validation = result
        if result.is_valid:
            self.state_machine.emit(EventType.VALIDATION_PASSED)
            return True

        self.state_machine.emit(EventType.VALIDATION_FAILED, result.to_dict())
        if self.on_validation_error is not None:
            try:
                self.on_validation_error(list(result.errors))
            except Exception:
                logger.exception("on_validation_error callback failed for form '%s'", self.form_id)
        return False

    def validate_page(self) -> bool:
        """Validate the fields of the current page only."""
        result = self._validate_fields(list(self.current_page.fields))
        self.last_validation = result
        return result.is_valid

    def focus_first_invalid(self) -> None:
        """Show the page holding the first invalid field and focus it.

        Repeatable sections render on every page, so only page fields can
        require a page change.
        """
        errors = self.last_validation.errors if self.last_validation else []
        if self.is_multi_page and errors:
            index = self._page_index_of(errors[0].field_id)
            if index >= 0 and index != self.current_page_index and self.state == RuntimeState.IDLE:
                self._change_page(index)
        self.renderer.focus_first_invalid()

    # Data

    def get_data(self) -> Dict[str, Any]:
        """Normalized snapshot of all visible input values."""
        return self.store.snapshot(self.schema, self.sections.counts(), self.is_field_visible)

    def set_data(self, data: Mapping[str, Any]) -> None:
        """Populate values from a (partial) snapshot-shaped mapping.

        Section entries are lists of per-instance mappings; the instance count
        follows the list length, clamped to the section bounds. Unknown keys
        are ignored. Fields that already show an error are re-validated.
        """
        structure_changed = False
        written: List[str] = []
        for key, value in data.items():
            section = self.schema.find_section(key)
            if section is not None:
                if not isinstance(value, (list, tuple)):
                    logger.warning("Ignoring non-list data for repeatable section '%s'", key)
                    continue
                before = self.sections.count(key)
                if len(value) != before:
                    if not self._structural_change_allowed("set_data"):
                        continue
                    self.sections.set_count(key, len(value))
                    structure_changed = structure_changed or self.sections.count(key) != before
                for index, item in enumerate(value[:self.sections.count(key)]):
                    if not isinstance(item, Mapping):
                        logger.warning("Ignoring non-mapping instance %d for repeatable section '%s'", index, key)
                        continue
                    for template in section.fields:
                        if not template.is_display_only and template.id in item:
                            field_id = namespaced_id(key, index, template.id)
                            self.store.set(field_id, item[template.id], notify=False)
                            written.append(field_id)
                continue

            form_field = self.schema.find_field(key)
            if form_field is None or form_field.is_display_only:
                logger.debug("Ignoring unknown field '%s' in set_data", key)
                continue
            self.store.set(key, value, notify=False)
            written.append(key)

        self._apply_defaults()
        if structure_changed:
            self._refresh_structure()
        else:
            for field_id, binding in self.renderer.bindings.items():
                if self.store.has(field_id):
                    self.renderer.write_value(binding, self.store.get(field_id))
            self._recompute()
        for field_id in written:
            if self.store.get_error(field_id):
                self.validate_field(field_id)
        self.refresh_submit_state()

    def set_field_value(self, field_id: str, value: Any) -> None:
        """Set a value as if the user had edited the field."""
        if self._field_for(field_id) is None:
            logger.warning("Ignoring value for unknown field '%s'", field_id)
            return
        binding = self.renderer.bindings.get(field_id)
        if binding is not None:
            self.renderer.write_value(binding, value)
        self.store.set(field_id, value)

    def reset(self) -> None:
        """Clear every value and error and return to the first page."""
        if self.state in (RuntimeState.SUBMITTING, RuntimeState.DESTROYED):
            logger.warning("Ignoring reset of form '%s' in state '%s'", self.form_id, self.state.value)
            return
        self.store.clear()
        self.sections.initialize()
        self.current_page_index = 0
        self._hidden.clear()
        self._disabled.clear()
        self._apply_defaults()
        self.renderer.clear_status()
        self.state_machine.emit(EventType.FORM_RESET)
        if self.state in (RuntimeState.IDLE, RuntimeState.SUBMITTED):
            self._render()
        else:
            self._recompute()

    def load_schema(self, schema: Union[FormSchema, Mapping[str, Any]]) -> None:
        """Replace the schema and rebuild. Values of surviving field ids are kept.

        Raises:
            SchemaError: If the new schema is structurally invalid
        """
        if self.state in (RuntimeState.SUBMITTING, RuntimeState.DESTROYED):
            logger.warning("Ignoring schema reload of form '%s' in state '%s'", self.form_id, self.state.value)
            return
        new_schema = load_schema(schema)
        counts = self.sections.counts()

        self.schema = new_schema
        self.sections.schema = new_schema
        self.sections.initialize()
        for section_id, count in counts.items():
            if new_schema.find_section(section_id) is not None:
                self.sections.set_count(section_id, count)
        self.renderer.schema = new_schema
        self.state_machine.form_id = new_schema.form_id
        if self.config.theme is None:
            self.theme = new_schema.settings.theme or "default"
            self.renderer.theme = self.theme
        self.current_page_index = min(self.current_page_index, len(new_schema.pages) - 1)
        self._hidden.clear()
        self._disabled.clear()
        self._apply_defaults()
        logger.info("Reloaded schema for form '%s'", self.form_id)
        if self.state in (RuntimeState.IDLE, RuntimeState.SUBMITTED):
            self._render()
        else:
            self._recompute()

    # Navigation

    def go_to_page(self, page_id: str) -> bool:
        index = self.schema.page_index(page_id)
        if index < 0:
            logger.warning("Unknown page '%s' in form '%s'", page_id, self.form_id)
            return False
        if not self._structural_change_allowed("go_to_page"):
            return False
        self._change_page(index)
        return True

    def next_page(self) -> bool:
        """Advance one page if the current page validates."""
        if not self.is_multi_page or self.current_page_index >= len(self.schema.pages) - 1:
            return False
        if not self._structural_change_allowed("next_page"):
            return False
        if not self.validate_page():
            self.renderer.announce(VALIDATION_FAILED_MESSAGE)
            self.renderer.focus_first_invalid()
            return False
        self._change_page(self.current_page_index + 1)
        return True

    def previous_page(self) -> bool:
        if not self.is_multi_page or self.current_page_index == 0:
            return False
        if not self._structural_change_allowed("previous_page"):
            return False
        self._change_page(self.current_page_index - 1)
        return True

    def _change_page(self, index: int) -> None:
        previous = self.current_page_index
        self.current_page_index = index
        self._refresh_structure()
        self.renderer.announce(f"Navigated to page {index + 1}")
        self.state_machine.emit(EventType.PAGE_CHANGED, {
            "from": self.schema.pages[previous].id,
            "to": self.current_page.id,
            "index": index,
        })
        logger.info("Form '%s' moved to page %d", self.form_id, index + 1)

    # Repeatable sections

    def add_instance(self, section_id: str) -> bool:
        if not self._structural_change_allowed("add_instance"):
            return False
        if not self.sections.add_instance(section_id):
            return False
        index = self.sections.count(section_id) - 1
        self._apply_defaults()
        self._refresh_structure()
        self.state_machine.emit(EventType.INSTANCE_ADDED, {"sectionId": section_id, "index": index})
        first = next(iter(self.sections.instance_field_ids(section_id, index)), None)
        binding = self.renderer.bindings.get(first) if first else None
        if binding is not None:
            binding.focus_target.focus()
        return True

    def remove_instance(self, section_id: str, index: int) -> bool:
        if not self._structural_change_allowed("remove_instance"):
            return False
        if not self.sections.remove_instance(section_id, index):
            return False
        # Visibility flags are keyed by position and get recomputed on rebuild
        self._hidden = {f for f in self._hidden if parse_namespaced_id(f) is None}
        self._refresh_structure()
        self.state_machine.emit(EventType.INSTANCE_REMOVED, {"sectionId": section_id, "index": index})
        return True

    # Submission

    async def submit(self) -> SubmitResult:
        """Validate, snapshot and hand the data to the submit callback."""
        return await self.submission.submit()

    # Lifecycle

    def destroy(self) -> None:
        """Detach from the container and release listeners. Idempotent."""
        if self.state == RuntimeState.DESTROYED:
            return
        self.store.unsubscribe(self._on_store_change)
        self.renderer.destroy()
        self.state_machine.transition_to(RuntimeState.DESTROYED)
        self.events.clear()
        logger.info("Destroyed form '%s'", self.form_id)

    # Event stream

    def on(self, event_type: Optional[EventType], listener: EventListener) -> None:
        """Subscribe to one event type, or to every event when ``event_type`` is None."""
        if event_type is None:
            self.events.on_any(listener)
        else:
            self.events.on(event_type, listener)

    def off(self, event_type: Optional[EventType], listener: EventListener) -> None:
        if event_type is None:
            self.events.off_any(listener)
        else:
            self.events.off(event_type, listener)

    # Element event handlers

    def handle_field_change(self, field_id: str) -> None:
        binding = self.renderer.bindings.get(field_id)
        if binding is None or binding.field.is_display_only:
            return
        self.store.set(field_id, self.renderer.read_value(binding))

    def handle_field_blur(self, field_id: str) -> None:
        self.validate_field(field_id)
        self.refresh_submit_state()

    def handle_submit_event(self, event: DomEvent) -> None:
        event.prevent_default()
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            asyncio.run(self.submit())
            return
        self.pending_submission = loop.create_task(self.submit())

    def handle_add_instance(self, section_id: str) -> None:
        self.add_instance(section_id)

    def handle_remove_instance(self, section_id: str, index: int) -> None:
        self.remove_instance(section_id, index)

    def handle_previous(self) -> None:
        self.previous_page()

    def handle_next(self) -> None:
        self.next_page()


__all__ = [
    "FormRuntime",
]
