"""Rendering engine: schema + state -> element tree.

Every structural change rebuilds the tree from scratch; there is no diffing.
Values live in the FieldValueStore, so after each rebuild they are written
back onto the fresh elements and nothing the user typed is lost.

The renderer owns the field registry (``bindings``: field id ->
FieldBinding). It is emptied and refilled on every render, so bindings never
point at detached elements, and namespaced instance ids always match the
current instance positions.

Accessibility contract:
- every input has a label (choice groups: fieldset + legend)
- every error region is an assertive live region bound to its input through
  ``aria-describedby``
- required fields carry a visual marker and ``aria-required="true"``
- announcements go through a polite ``role="status"`` live region
"""

import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

from typing_extensions import Protocol

from formruntime.dom import DomEvent, Element
from formruntime.expressions import to_display_string
from formruntime.repeatable import RepeatableSectionManager
from formruntime.schema import CalculatedField, FormField, FormPage, FormSchema, RepeatableSection
from formruntime.store import FieldValueStore
from formruntime.types import CHOICE_GROUP_TYPES, FieldType, FileHandle, LayoutWidth

logger = logging.getLogger(__name__)

SUBMITTING_TEXT = "Submitting..."
INCOMPLETE_TITLE = "Please complete all required fields"

_INPUT_TYPES = {
    FieldType.TEXT: "text",
    FieldType.EMAIL: "email",
    FieldType.NUMBER: "number",
    FieldType.TEL: "tel",
    FieldType.URL: "url",
    FieldType.DATE: "date",
    FieldType.TIME: "time",
    FieldType.DATETIME: "datetime-local",
}


class RenderHost(Protocol):
    """Event handlers the renderer wires into the tree."""

    def handle_field_change(self, field_id: str) -> None: ...

    def handle_field_blur(self, field_id: str) -> None: ...

    def handle_submit_event(self, event: DomEvent) -> None: ...

    def handle_add_instance(self, section_id: str) -> None: ...

    def handle_remove_instance(self, section_id: str, index: int) -> None: ...

    def handle_previous(self) -> None: ...

    def handle_next(self) -> None: ...


@dataclass
class FieldBinding:
    """Element handles for one rendered field."""
    field: FormField
    container: Element
    input: Element
    error: Optional[Element] = None
    help: Optional[Element] = None

    @property
    def options(self) -> List[Element]:
        """Radio/checkbox inputs of a choice group."""
        return self.input.find_all(tag="input")

    @property
    def focus_target(self) -> Element:
        if self.field.type in CHOICE_GROUP_TYPES:
            options = self.options
            if options:
                return options[0]
        return self.input


class Renderer:
    """Builds and patches the element tree for one mounted form."""

    def __init__(
        self,
        schema: FormSchema,
        container: Element,
        theme: str,
        store: FieldValueStore,
        sections: RepeatableSectionManager,
        host: RenderHost,
    ):
        self.schema = schema
        self.container = container
        self.theme = theme
        self.store = store
        self.sections = sections
        self.host = host
        self.bindings: Dict[str, FieldBinding] = {}
        self.form: Optional[Element] = None
        self.submit_button: Optional[Element] = None
        self.success_element: Optional[Element] = None
        self.status_element: Optional[Element] = None
        self.calculated_elements: Dict[str, Element] = {}
        self.announcements: List[str] = []
        self.live_region = Element("div", {
            "role": "status",
            "aria-live": "polite",
            "aria-atomic": "true",
            "class": "sr-only",
        })

    # Full render

    def render(self, page_index: int) -> Element:
        """Rebuild the whole tree for the given page and current instance counts."""
        self._teardown()

        self.container.set_attribute("class", f"form-runtime theme-{self.theme}")
        settings = self.schema.settings

        form = Element("form", {"novalidate": "novalidate", "aria-label": self.schema.title or "Form"})
        if settings.custom_styles:
            form.set_attribute("style", "; ".join(f"{k}: {v}" for k, v in settings.custom_styles.items()))

        if self.schema.title:
            form.append(Element("h1", {"class": "form-title"}, text=self.schema.title))
        if self.schema.description:
            form.append(Element("p", {"class": "form-description"}, text=self.schema.description))

        if settings.multi_page and settings.progress_bar:
            form.append(self._render_progress_bar(page_index))

        if self.schema.calculated_fields:
            form.append(self._render_calculated_fields())

        if settings.multi_page:
            form.append(self._render_page(self.schema.pages[page_index]))
        else:
            for page in self.schema.pages:
                form.append(self._render_page(page))

        for section in self.schema.repeatable_sections:
            form.append(self._render_section(section))

        if settings.multi_page:
            form.append(self._render_navigation(page_index))

        self.submit_button = form.append(Element(
            "button",
            {"type": "submit", "class": "form-submit-btn"},
            text=settings.submit_button_text,
        ))
        form.add_event_listener("submit", self.host.handle_submit_event)

        self.form = form
        self.container.append(form)
        self.container.append(self.live_region)
        self.apply_values()
        logger.debug("Rendered form '%s' page %d with %d bindings",
                     self.schema.form_id, page_index, len(self.bindings))
        return form

    def _teardown(self) -> None:
        if self.form is not None:
            self.form.remove_all_listeners()
        self.container.clear()
        self.store.unbind_all()
        self.bindings = {}
        self.calculated_elements = {}
        self.form = None
        self.submit_button = None
        self.success_element = None
        self.status_element = None

    def destroy(self) -> None:
        """Detach listeners and empty the container."""
        self._teardown()
        self.live_region.text = ""
        self.container.remove_attribute("class")

    def _render_progress_bar(self, page_index: int) -> Element:
        total = len(self.schema.pages)
        current = page_index + 1
        progress = Element("div", {
            "class": "form-progress",
            "role": "progressbar",
            "aria-valuenow": current,
            "aria-valuemin": 1,
            "aria-valuemax": total,
            "aria-label": f"Page {current} of {total}",
        })
        percentage = current / total * 100
        progress.append(Element("div", {
            "class": "form-progress-bar",
            "style": f"width: {percentage:g}%",
            "aria-hidden": "true",
        }))
        return progress

    def _render_calculated_fields(self) -> Element:
        block = Element("div", {"class": "form-calculated-fields"})
        for calc in self.schema.calculated_fields:
            block.append(self._render_calculated_field(calc))
        return block

    def _render_calculated_field(self, calc: CalculatedField) -> Element:
        wrapper = Element("div", {"class": "form-calculated-field", "id": f"calc-field-{calc.id}"})
        if calc.label:
            wrapper.append(Element("span", {"class": "form-calculated-label"}, text=calc.label))
        value = wrapper.append(Element("output", {
            "class": "form-calculated-value",
            "id": f"calc-{calc.id}",
            "aria-live": "polite",
        }))
        self.calculated_elements[calc.id] = value
        return wrapper

    def _render_page(self, page: FormPage) -> Element:
        container = Element("div", {"class": "form-page", "id": f"page-{page.id}", "data-page-id": page.id})
        if page.title:
            container.append(Element("h2", {"class": "form-page-title"}, text=page.title))
        fields_container = container.append(Element("div", {"class": "form-fields"}))
        for form_field in page.fields:
            fields_container.append(self.render_field(form_field))
        return container

    def _render_section(self, section: RepeatableSection) -> Element:
        container = Element("div", {"class": "form-repeatable-section", "id": f"repeatable-{section.id}"})
        container.append(Element("h3", text=section.title or section.id))
        item_title = section.title or "Item"

        count = self.sections.count(section.id)
        can_remove = self.sections.can_remove(section.id)
        for index in range(count):
            label = f"{item_title} {index + 1}"
            instance = container.append(Element("div", {
                "class": "form-repeatable-instance",
                "data-instance-index": index,
                "role": "group",
                "aria-label": label,
            }))
            instance.append(Element("h4", text=label))
            for form_field in self.sections.instance_fields(section.id, index):
                instance.append(self.render_field(form_field))
            if can_remove:
                remove = instance.append(Element("button", {
                    "type": "button",
                    "class": "form-remove-instance-btn",
                    "aria-label": f"{section.remove_button_text} {label}",
                }, text=section.remove_button_text))
                remove.add_event_listener(
                    "click",
                    lambda _event, sid=section.id, i=index: self.host.handle_remove_instance(sid, i),
                )

        if self.sections.can_add(section.id):
            add = container.append(Element("button", {
                "type": "button",
                "class": "form-add-instance-btn",
            }, text=section.add_button_text))
            add.add_event_listener("click", lambda _event, sid=section.id: self.host.handle_add_instance(sid))
        return container

    def _render_navigation(self, page_index: int) -> Element:
        nav = Element("div", {"class": "form-navigation"})
        if page_index > 0:
            previous = nav.append(Element("button", {"type": "button", "class": "form-nav-btn form-nav-prev"},
                                          text="Previous"))
            previous.add_event_listener("click", lambda _event: self.host.handle_previous())
        if page_index < len(self.schema.pages) - 1:
            following = nav.append(Element("button", {"type": "button", "class": "form-nav-btn form-nav-next"},
                                           text="Next"))
            following.add_event_listener("click", lambda _event: self.host.handle_next())
        return nav

    # Fields

    def render_field(self, form_field: FormField) -> Element:
        """Render one field, register its binding and wire its listeners."""
        container = Element("div", {
            "class": f"form-field form-field-{form_field.type.value}",
            "data-field-id": form_field.id,
        })
        if form_field.layout.width != LayoutWidth.FULL:
            container.add_class(f"form-field-{form_field.layout.width.value}")
        if form_field.layout.order is not None:
            container.set_attribute("style", f"order: {form_field.layout.order}")

        builder = self._builders().get(form_field.type)
        primitive = builder(form_field)

        if form_field.is_display_only:
            container.append(primitive)
            self.bindings[form_field.id] = FieldBinding(field=form_field, container=container, input=primitive)
            return container

        if form_field.type not in CHOICE_GROUP_TYPES and form_field.type != FieldType.HIDDEN:
            container.append(self._render_label(form_field))
        container.append(primitive)

        described_by = []
        help_element = None
        if form_field.help_text:
            help_element = container.append(Element(
                "div", {"class": "form-help-text", "id": f"help-{form_field.id}"}, text=form_field.help_text,
            ))
            described_by.append(f"help-{form_field.id}")

        error = container.append(Element("div", {
            "class": "form-error",
            "id": f"error-{form_field.id}",
            "role": "alert",
            "aria-live": "assertive",
            "aria-hidden": "true",
        }))
        described_by.append(f"error-{form_field.id}")
        primitive.set_attribute("aria-describedby", " ".join(described_by))

        binding = FieldBinding(field=form_field, container=container, input=primitive, error=error,
                               help=help_element)
        self.bindings[form_field.id] = binding
        self.store.bind(form_field.id, binding)
        self._attach_listeners(binding)
        return container

    def _builders(self) -> Dict[FieldType, Callable[[FormField], Element]]:
        builders: Dict[FieldType, Callable[[FormField], Element]] = {t: self._render_input for t in _INPUT_TYPES}
        builders.update({
            FieldType.TEXTAREA: self._render_textarea,
            FieldType.SELECT: self._render_select,
            FieldType.RADIO: self._render_choice_group,
            FieldType.CHECKBOXES: self._render_choice_group,
            FieldType.FILE: self._render_file,
            FieldType.HIDDEN: self._render_hidden,
            FieldType.RICHTEXT: self._render_richtext,
            FieldType.HEADER: self._render_header,
            FieldType.PARAGRAPH: self._render_paragraph,
        })
        return builders

    def _required_marker(self) -> Element:
        return Element("span", {"class": "form-required", "aria-hidden": "true"}, text=" *")

    def _render_label(self, form_field: FormField) -> Element:
        label = Element("label", {"for": form_field.id}, text=form_field.label)
        if form_field.is_required:
            label.append(self._required_marker())
        return label

    def _mark_required(self, element: Element, form_field: FormField) -> None:
        if form_field.is_required:
            element.set_attribute("required", "required")
            element.set_attribute("aria-required", "true")

    def _render_input(self, form_field: FormField) -> Element:
        rules = form_field.validation
        element = Element("input", {
            "type": _INPUT_TYPES[form_field.type],
            "id": form_field.id,
            "name": form_field.id,
            "class": "form-input",
        })
        if form_field.placeholder:
            element.set_attribute("placeholder", form_field.placeholder)
        self._mark_required(element, form_field)
        if rules.pattern:
            element.set_attribute("pattern", rules.pattern)
        if rules.min_length:
            element.set_attribute("minlength", rules.min_length)
        if rules.max_length:
            element.set_attribute("maxlength", rules.max_length)
        if form_field.type == FieldType.NUMBER:
            if rules.min is not None:
                element.set_attribute("min", to_display_string(rules.min))
            if rules.max is not None:
                element.set_attribute("max", to_display_string(rules.max))
        if form_field.type in (FieldType.DATE, FieldType.DATETIME):
            if rules.min_date:
                element.set_attribute("min", rules.min_date)
            if rules.max_date:
                element.set_attribute("max", rules.max_date)
        return element

    def _render_textarea(self, form_field: FormField) -> Element:
        rules = form_field.validation
        element = Element("textarea", {"id": form_field.id, "name": form_field.id, "class": "form-textarea"})
        if form_field.placeholder:
            element.set_attribute("placeholder", form_field.placeholder)
        self._mark_required(element, form_field)
        if rules.min_length:
            element.set_attribute("minlength", rules.min_length)
        if rules.max_length:
            element.set_attribute("maxlength", rules.max_length)
        return element

    def _render_select(self, form_field: FormField) -> Element:
        element = Element("select", {"id": form_field.id, "name": form_field.id, "class": "form-select"})
        self._mark_required(element, form_field)
        element.append(Element("option", {"value": ""}, text=form_field.placeholder or "Select..."))
        for option in form_field.options:
            element.append(Element("option", {"value": option.value}, text=option.label))
        return element

    def _render_choice_group(self, form_field: FormField) -> Element:
        is_radio = form_field.type == FieldType.RADIO
        kind = "radio" if is_radio else "checkbox"
        group_class = "form-radio-group" if is_radio else "form-checkboxes-group"
        fieldset = Element("fieldset", {"class": group_class, "id": f"fieldset-{form_field.id}"})
        if is_radio:
            fieldset.set_attribute("role", "radiogroup")
        if form_field.is_required:
            fieldset.set_attribute("aria-required", "true")

        legend = fieldset.append(Element("legend", text=form_field.label))
        if form_field.is_required:
            legend.append(self._required_marker())

        for index, option in enumerate(form_field.options):
            option_id = f"{form_field.id}-{index}"
            wrapper = fieldset.append(Element("div", {"class": f"form-{kind}-option"}))
            choice = wrapper.append(Element("input", {
                "type": kind,
                "id": option_id,
                "name": form_field.id,
                "value": option.value,
                "class": f"form-{kind}",
            }))
            choice.value = option.value
            if is_radio:
                self._mark_required(choice, form_field)
            wrapper.append(Element("label", {"for": option_id}, text=option.label))
        return fieldset

    def _render_file(self, form_field: FormField) -> Element:
        element = Element("input", {"type": "file", "id": form_field.id, "name": form_field.id, "class": "form-file"})
        self._mark_required(element, form_field)
        if form_field.validation.file_types:
            element.set_attribute("accept", ",".join(form_field.validation.file_types))
        return element

    def _render_hidden(self, form_field: FormField) -> Element:
        return Element("input", {"type": "hidden", "id": form_field.id, "name": form_field.id})

    def _render_richtext(self, form_field: FormField) -> Element:
        return Element("div", {"class": "form-richtext", "id": form_field.id},
                       text=to_display_string(form_field.default_value))

    def _render_header(self, form_field: FormField) -> Element:
        level = min(max(form_field.level, 1), 6)
        return Element(f"h{level}", {"class": "form-header", "id": form_field.id}, text=form_field.label)

    def _render_paragraph(self, form_field: FormField) -> Element:
        text = form_field.label or to_display_string(form_field.default_value)
        return Element("p", {"class": "form-paragraph", "id": form_field.id}, text=text)

    def _attach_listeners(self, binding: FieldBinding) -> None:
        field_id = binding.field.id

        def on_change(_event: DomEvent) -> None:
            self.host.handle_field_change(field_id)

        def on_blur(_event: DomEvent) -> None:
            self.host.handle_field_blur(field_id)

        if binding.field.type in CHOICE_GROUP_TYPES:
            binding.input.add_event_listener("change", on_change)
            for option in binding.options:
                option.add_event_listener("blur", on_blur)
        else:
            binding.input.add_event_listener("input", on_change)
            binding.input.add_event_listener("change", on_change)
            binding.input.add_event_listener("blur", on_blur)

    # Values

    def read_value(self, binding: FieldBinding) -> Any:
        """Current value of a bound field as the user left it in the element."""
        field_type = binding.field.type
        if field_type == FieldType.CHECKBOXES:
            return [option.value for option in binding.options if option.checked]
        if field_type == FieldType.RADIO:
            return next((option.value for option in binding.options if option.checked), None)
        if field_type == FieldType.FILE:
            return binding.input.files[0] if binding.input.files else None
        return binding.input.value or None

    def write_value(self, binding: FieldBinding, value: Any) -> None:
        """Reflect a stored value onto the bound element(s)."""
        field_type = binding.field.type
        if binding.field.is_display_only:
            return
        if field_type == FieldType.CHECKBOXES:
            selected = {to_display_string(v) for v in value} if isinstance(value, (list, tuple)) else set()
            for option in binding.options:
                option.checked = option.value in selected
        elif field_type == FieldType.RADIO:
            wanted = None if value is None else to_display_string(value)
            for option in binding.options:
                option.checked = option.value == wanted
        elif field_type == FieldType.FILE:
            binding.input.files = [value] if isinstance(value, FileHandle) else []
        else:
            binding.input.value = to_display_string(value)

    def apply_values(self) -> None:
        """Write every stored value and error onto the freshly bound elements."""
        for field_id, binding in self.bindings.items():
            if binding.field.is_display_only:
                continue
            if self.store.has(field_id):
                self.write_value(binding, self.store.get(field_id))
            error = self.store.get_error(field_id)
            if error:
                self.show_error(field_id, error)

    # Incremental updates

    def show_error(self, field_id: str, message: str) -> None:
        binding = self.bindings.get(field_id)
        if binding is None or binding.error is None:
            return
        binding.error.text = message
        binding.error.set_attribute("aria-hidden", "false")
        binding.input.set_attribute("aria-invalid", "true")
        binding.container.add_class("form-field-error")

    def clear_error(self, field_id: str) -> None:
        binding = self.bindings.get(field_id)
        if binding is None or binding.error is None:
            return
        binding.error.text = ""
        binding.error.set_attribute("aria-hidden", "true")
        binding.input.remove_attribute("aria-invalid")
        binding.container.remove_class("form-field-error")

    def set_visible(self, field_id: str, visible: bool) -> None:
        binding = self.bindings.get(field_id)
        if binding is None:
            return
        container = binding.container
        style = (container.get_attribute("style") or "").replace("display: none", "").strip("; ")
        if visible:
            container.remove_attribute("hidden")
            container.set_attribute("aria-hidden", "false")
            if style:
                container.set_attribute("style", style)
            else:
                container.remove_attribute("style")
        else:
            container.set_attribute("hidden", "hidden")
            container.set_attribute("aria-hidden", "true")
            container.set_attribute("style", f"{style}; display: none" if style else "display: none")

    def set_disabled(self, field_id: str, disabled: bool) -> None:
        binding = self.bindings.get(field_id)
        if binding is None or binding.field.is_display_only:
            return
        binding.input.disabled = disabled
        if binding.field.type in CHOICE_GROUP_TYPES:
            for option in binding.options:
                option.disabled = disabled

    def update_calculated(self, calc_id: str, text: str) -> None:
        element = self.calculated_elements.get(calc_id)
        if element is not None:
            element.text = text

    def update_submit_state(self, ready: bool) -> None:
        """Enable the submit button only when every required field in scope is answered."""
        button = self.submit_button
        if button is None or button.text == SUBMITTING_TEXT:
            return
        button.disabled = not ready
        if ready:
            button.remove_attribute("aria-disabled")
            button.remove_attribute("title")
        else:
            button.set_attribute("aria-disabled", "true")
            button.set_attribute("title", INCOMPLETE_TITLE)

    def set_submit_busy(self, busy: bool) -> None:
        button = self.submit_button
        if button is None:
            return
        if busy:
            button.disabled = True
            button.text = SUBMITTING_TEXT
            button.set_attribute("aria-busy", "true")
        else:
            button.disabled = False
            button.text = self.schema.settings.submit_button_text
            button.remove_attribute("aria-busy")

    def focus_first_invalid(self) -> Optional[Element]:
        """Focus the first field (in document order) that has an error."""
        for field_id, binding in self.bindings.items():
            if self.store.get_error(field_id):
                target = binding.focus_target
                target.focus()
                return target
        return None

    # Messages

    def announce(self, message: str) -> None:
        self.live_region.text = message
        self.announcements.append(message)

    def show_success(self, message: str) -> None:
        """Hide the form and show the terminal success message."""
        if self.form is not None:
            self.form.set_attribute("hidden", "hidden")
            self.form.set_attribute("style", "display: none")
        self.clear_status()
        self.success_element = Element("div", {"class": "form-success", "role": "alert"}, text=message)
        self.container.append(self.success_element)

    def show_status(self, message: str, kind: str = "error") -> Element:
        """Show a dismissable status message at the top of the form."""
        self.clear_status()
        status = Element("div", {"class": f"form-status form-status-{kind}", "role": "alert"})
        status.append(Element("span", {"class": "form-status-message"}, text=message))
        dismiss = status.append(Element("button", {
            "type": "button",
            "class": "form-status-dismiss",
            "aria-label": "Dismiss",
        }, text="Dismiss"))
        dismiss.add_event_listener("click", lambda _event: self.clear_status())
        if self.form is not None:
            self.form.insert(0, status)
        else:
            self.container.append(status)
        self.status_element = status
        return status

    def clear_status(self) -> None:
        if self.status_element is not None:
            self.status_element.remove_all_listeners()
            self.status_element.remove()
            self.status_element = None


__all__ = [
    "FieldBinding",
    "RenderHost",
    "Renderer",
    "SUBMITTING_TEXT",
]
