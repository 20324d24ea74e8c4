"""Unit tests for the rendering engine.

Tests cover:
- Tree structure for single and multi-page forms
- Field primitives per type, layout hints and repeatable instances
- Accessibility attributes (labels, live regions, required markers)
- Element events flowing back into the value store
"""

import pytest

from formruntime.dom import Element
from formruntime.runtime import FormRuntime
from formruntime.types import FileHandle


def mount(schema, **options):
    runtime = FormRuntime(schema=schema, container=Element("div"), **options)
    runtime.render()
    return runtime


def profile_schema(**settings):
    return {
        "formId": "profile",
        "title": "Profile",
        "description": "Tell us about you",
        "settings": settings,
        "pages": [
            {"id": "about", "title": "About", "fields": [
                {"id": "intro", "type": "header", "label": "Basics", "level": 3},
                {"id": "name", "type": "text", "label": "Name", "required": True,
                 "helpText": "As on your passport", "placeholder": "Ada Lovelace",
                 "layout": {"width": "half", "order": 2}},
                {"id": "age", "type": "number", "label": "Age", "validation": {"min": 18, "max": 120}},
                {"id": "bio", "type": "textarea", "label": "Bio", "validation": {"maxLength": 200}},
            ]},
            {"id": "prefs", "title": "Preferences", "fields": [
                {"id": "color", "type": "select", "label": "Color",
                 "options": [{"value": "red", "label": "Red"}, {"value": "blue", "label": "Blue"}]},
                {"id": "size", "type": "radio", "label": "Size", "required": True,
                 "options": [{"value": "s", "label": "Small"}, {"value": "l", "label": "Large"}]},
                {"id": "tags", "type": "checkboxes", "label": "Tags",
                 "options": [{"value": "a"}, {"value": "b"}, {"value": "c"}]},
                {"id": "cv", "type": "file", "label": "CV", "validation": {"fileTypes": [".pdf"]}},
                {"id": "token", "type": "hidden", "defaultValue": "abc"},
                {"id": "note", "type": "paragraph", "label": "Optional section"},
            ]},
        ],
    }


class TestStructure:
    """Test the overall tree."""

    def test_container_and_form(self):
        """Should mount a labelled form and a polite live region."""
        runtime = mount(profile_schema())
        container = runtime.container

        assert container.get_attribute("class") == "form-runtime theme-default"
        form, live_region = container.children
        assert form.tag == "form"
        assert form.get_attribute("novalidate") == "novalidate"
        assert form.get_attribute("aria-label") == "Profile"
        assert form.find(tag="h1").text == "Profile"
        assert form.find(class_name="form-description").text == "Tell us about you"
        assert live_region.get_attribute("role") == "status"
        assert live_region.get_attribute("aria-live") == "polite"

    def test_theme_from_settings_and_option(self):
        """Should prefer the theme option over the schema theme."""
        assert mount(profile_schema(theme="dark")).container.get_attribute("class") == "form-runtime theme-dark"
        runtime = mount(profile_schema(theme="dark"), theme="ocean")
        assert runtime.container.get_attribute("class") == "form-runtime theme-ocean"

    def test_custom_styles(self):
        """Should apply custom styles to the form element."""
        runtime = mount(profile_schema(customStyles={"--accent": "#f00"}))
        assert runtime.renderer.form.get_attribute("style") == "--accent: #f00"

    def test_single_page_renders_all_pages(self):
        """Should render every page when multi-page is off."""
        runtime = mount(profile_schema())
        pages = runtime.container.find_all(class_name="form-page")
        assert [p.id for p in pages] == ["page-about", "page-prefs"]
        assert runtime.container.find(class_name="form-navigation") is None

    def test_multi_page_renders_current_page(self):
        """Should render only the current page plus navigation and progress."""
        runtime = mount(profile_schema(multiPage=True, progressBar=True))
        pages = runtime.container.find_all(class_name="form-page")
        assert [p.id for p in pages] == ["page-about"]

        progress = runtime.container.find(class_name="form-progress")
        assert progress.get_attribute("role") == "progressbar"
        assert progress.get_attribute("aria-valuenow") == "1"
        assert progress.get_attribute("aria-valuemax") == "2"
        assert progress.find(class_name="form-progress-bar").get_attribute("style") == "width: 50%"

        nav = runtime.container.find(class_name="form-navigation")
        assert nav.find(class_name="form-nav-prev") is None
        assert nav.find(class_name="form-nav-next").text == "Next"

    def test_submit_button_text(self):
        """Should label the submit button from settings."""
        runtime = mount(profile_schema(submitButtonText="Send"))
        button = runtime.container.find(class_name="form-submit-btn")
        assert button.text == "Send"
        assert button.get_attribute("type") == "submit"

    def test_rerender_keeps_one_form(self):
        """Should replace the previous tree instead of appending to it."""
        runtime = mount(profile_schema())
        runtime.render()
        assert len(runtime.container.find_all(tag="form")) == 1


class TestFieldPrimitives:
    """Test the element each field type renders."""

    def test_text_input(self):
        """Should render a labelled input with hints and layout classes."""
        runtime = mount(profile_schema())
        binding = runtime.renderer.bindings["name"]

        assert binding.input.tag == "input"
        assert binding.input.get_attribute("type") == "text"
        assert binding.input.get_attribute("placeholder") == "Ada Lovelace"
        assert binding.container.has_class("form-field-half")
        assert binding.container.get_attribute("style") == "order: 2"
        label = binding.container.find(tag="label")
        assert label.get_attribute("for") == "name"
        assert label.text_content == "Name *"

    def test_number_bounds(self):
        """Should mirror numeric bounds as attributes."""
        element = mount(profile_schema()).renderer.bindings["age"].input
        assert element.get_attribute("type") == "number"
        assert element.get_attribute("min") == "18"
        assert element.get_attribute("max") == "120"

    def test_textarea(self):
        """Should render a textarea with maxlength."""
        element = mount(profile_schema()).renderer.bindings["bio"].input
        assert element.tag == "textarea"
        assert element.get_attribute("maxlength") == "200"

    def test_select_has_placeholder_option(self):
        """Should start selects with an empty option."""
        element = mount(profile_schema()).renderer.bindings["color"].input
        options = element.find_all(tag="option")
        assert [(o.get_attribute("value"), o.text) for o in options] == [
            ("", "Select..."), ("red", "Red"), ("blue", "Blue"),
        ]

    def test_radio_group(self):
        """Should render radios inside a fieldset with a legend."""
        binding = mount(profile_schema()).renderer.bindings["size"]
        assert binding.input.tag == "fieldset"
        assert binding.input.get_attribute("role") == "radiogroup"
        assert binding.input.find(tag="legend").text_content == "Size *"
        assert [o.id for o in binding.options] == ["size-0", "size-1"]
        assert binding.focus_target.id == "size-0"

    def test_checkbox_labels_default_to_value(self):
        """Should label options by value when no label is given."""
        binding = mount(profile_schema()).renderer.bindings["tags"]
        labels = [label.text for label in binding.input.find_all(tag="label")]
        assert labels == ["a", "b", "c"]

    def test_file_accept(self):
        """Should restrict the file picker to allowed types."""
        element = mount(profile_schema()).renderer.bindings["cv"].input
        assert element.get_attribute("type") == "file"
        assert element.get_attribute("accept") == ".pdf"

    def test_hidden_has_no_label(self):
        """Should render hidden fields without a label and with their default."""
        binding = mount(profile_schema()).renderer.bindings["token"]
        assert binding.container.find(tag="label") is None
        assert binding.input.value == "abc"

    def test_display_only_fields(self):
        """Should render headers and paragraphs without error regions."""
        bindings = mount(profile_schema()).renderer.bindings
        assert bindings["intro"].input.tag == "h3"
        assert bindings["intro"].error is None
        assert bindings["note"].input.text == "Optional section"


class TestAccessibility:
    """Test accessibility attributes."""

    def test_error_region(self):
        """Should bind an assertive error region through aria-describedby."""
        binding = mount(profile_schema()).renderer.bindings["name"]
        assert binding.error.id == "error-name"
        assert binding.error.get_attribute("role") == "alert"
        assert binding.error.get_attribute("aria-live") == "assertive"
        assert binding.input.get_attribute("aria-describedby") == "help-name error-name"

    def test_required_attributes(self):
        """Should mark required inputs for assistive technology."""
        element = mount(profile_schema()).renderer.bindings["name"].input
        assert element.get_attribute("aria-required") == "true"
        assert element.get_attribute("required") == "required"

    def test_error_display(self):
        """Should reveal the error and flag the input as invalid."""
        runtime = mount(profile_schema())
        runtime.validate()
        binding = runtime.renderer.bindings["name"]
        assert binding.error.text == "Name is required"
        assert binding.error.get_attribute("aria-hidden") == "false"
        assert binding.input.get_attribute("aria-invalid") == "true"
        assert binding.container.has_class("form-field-error")

    def test_submit_button_disabled_until_required_answered(self):
        """Should describe why the submit button is disabled."""
        runtime = mount(profile_schema())
        button = runtime.renderer.submit_button
        assert button.disabled is True
        assert button.get_attribute("aria-disabled") == "true"
        assert button.get_attribute("title") == "Please complete all required fields"

        runtime.set_field_value("name", "Ada")
        runtime.set_field_value("size", "s")

        assert button.disabled is False
        assert button.has_attribute("aria-disabled") is False


class TestElementEvents:
    """Test element events updating the store."""

    def test_typing_updates_store(self):
        """Should store the value on input events."""
        runtime = mount(profile_schema())
        element = runtime.renderer.bindings["name"].input
        element.value = "Ada"
        element.dispatch_event("input")
        assert runtime.store.get("name") == "Ada"

    def test_clearing_stores_none(self):
        """Should store None for an emptied text input."""
        runtime = mount(profile_schema())
        element = runtime.renderer.bindings["name"].input
        element.value = ""
        element.dispatch_event("input")
        assert runtime.store.get("name") is None

    def test_blur_validates(self):
        """Should show the field error on blur."""
        runtime = mount(profile_schema())
        binding = runtime.renderer.bindings["name"]
        binding.input.blur()
        assert binding.error.text == "Name is required"

    def test_radio_change(self):
        """Should read the checked radio through the bubbling change event."""
        runtime = mount(profile_schema())
        option = runtime.renderer.bindings["size"].options[1]
        option.checked = True
        option.dispatch_event("change")
        assert runtime.store.get("size") == "l"

    def test_checkboxes_change(self):
        """Should store the list of checked values."""
        runtime = mount(profile_schema())
        options = runtime.renderer.bindings["tags"].options
        options[0].checked = True
        options[2].checked = True
        options[2].dispatch_event("change")
        assert runtime.store.get("tags") == ["a", "c"]

    def test_file_change(self):
        """Should store the first chosen file."""
        runtime = mount(profile_schema())
        element = runtime.renderer.bindings["cv"].input
        handle = FileHandle(name="cv.pdf", size=10, content_type="application/pdf")
        element.files = [handle]
        element.dispatch_event("change")
        assert runtime.store.get("cv") == handle

    def test_values_survive_rerender(self):
        """Should write stored values onto the rebuilt elements."""
        runtime = mount(profile_schema())
        runtime.set_field_value("name", "Ada")
        runtime.set_field_value("tags", ["b"])
        runtime.render()
        bindings = runtime.renderer.bindings
        assert bindings["name"].input.value == "Ada"
        assert [o.checked for o in bindings["tags"].options] == [False, True, False]


class TestRepeatableRendering:
    """Test repeatable section rendering."""

    @pytest.fixture
    def runtime(self):
        return mount({
            "formId": "order",
            "pages": [{"id": "p1", "fields": [{"id": "name", "type": "text"}]}],
            "repeatableSections": [{
                "id": "items",
                "title": "Item",
                "minInstances": 1,
                "maxInstances": 2,
                "fields": [{"id": "sku", "type": "text", "label": "SKU"}],
            }],
        })

    def test_instances_and_buttons(self, runtime):
        """Should render instance groups and only the allowed buttons."""
        section = runtime.container.find_by_id("repeatable-items")
        instances = section.find_all(class_name="form-repeatable-instance")
        assert len(instances) == 1
        assert instances[0].get_attribute("role") == "group"
        assert instances[0].find(tag="h4").text == "Item 1"
        assert section.find(class_name="form-remove-instance-btn") is None
        assert section.find(class_name="form-add-instance-btn") is not None
        assert runtime.renderer.bindings["items[0].sku"].input.id == "items[0].sku"

    def test_add_button(self, runtime):
        """Should add an instance and hide the add button at the maximum."""
        runtime.container.find(class_name="form-add-instance-btn").click()
        section = runtime.container.find_by_id("repeatable-items")
        assert len(section.find_all(class_name="form-repeatable-instance")) == 2
        assert section.find(class_name="form-add-instance-btn") is None
        assert len(section.find_all(class_name="form-remove-instance-btn")) == 2
        assert runtime.renderer.bindings["items[1].sku"].input.focused is True

    def test_remove_button(self, runtime):
        """Should remove the clicked instance."""
        runtime.add_instance("items")
        runtime.set_field_value("items[1].sku", "B2")
        runtime.container.find_all(class_name="form-remove-instance-btn")[0].click()
        assert runtime.sections.count("items") == 1
        assert runtime.renderer.bindings["items[0].sku"].input.value == "B2"


class TestCalculatedRendering:
    """Test calculated field output elements."""

    def test_output_updates(self):
        """Should show the formatted value in an output element."""
        runtime = mount({
            "formId": "calc",
            "pages": [{"id": "p1", "fields": [
                {"id": "qty", "type": "number"},
                {"id": "price", "type": "number"},
            ]}],
            "calculatedFields": [{"id": "total", "label": "Total", "expression": "qty * price",
                                  "format": "currency"}],
        })
        output = runtime.container.find_by_id("calc-total")
        assert output.tag == "output"
        assert output.text == "$0.00"

        runtime.set_field_value("qty", "3")
        runtime.set_field_value("price", "2.5")

        assert output.text == "$7.50"
