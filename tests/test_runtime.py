"""Unit tests for the FormRuntime orchestrator.

Tests cover:
- Construction options and failures
- Conditional display, skip rules and calculated values
- Page navigation
- Data snapshots, set_data, reset and schema reloads
- Lifecycle (destroy) and the event stream
"""

import logging

import pytest

from formruntime.config import RuntimeConfig
from formruntime.dom import Element
from formruntime.errors import ConfigError, SchemaError
from formruntime.runtime import FormRuntime
from formruntime.types import EventType, RuntimeState


def mount(schema, **options):
    runtime = FormRuntime(schema=schema, container=Element("div"), **options)
    runtime.render()
    return runtime


def wizard_schema():
    return {
        "formId": "wizard",
        "settings": {"multiPage": True, "progressBar": True},
        "pages": [
            {"id": "start", "fields": [
                {"id": "name", "type": "text", "label": "Name", "required": True},
                {"id": "plan", "type": "select", "options": [{"value": "basic"}, {"value": "pro"}]},
            ]},
            {"id": "details", "fields": [{"id": "company", "type": "text"}]},
            {"id": "billing", "fields": [{"id": "card", "type": "text"}]},
        ],
        "conditionalLogic": {"skipRules": [
            {"condition": {"field": "plan", "operator": "equals", "value": "basic"},
             "action": {"type": "skipToPage", "target": "billing"}},
        ]},
    }


class TestConstruction:
    """Test construction options."""

    def test_missing_schema(self):
        """Should raise ConfigError without a schema."""
        with pytest.raises(ConfigError, match="schema is required"):
            FormRuntime(container=Element("div"))

    def test_missing_container(self):
        """Should raise ConfigError without a container."""
        with pytest.raises(ConfigError, match="container is required"):
            FormRuntime(schema={"formId": "f", "pages": [{"id": "p", "fields": []}]})

    def test_unknown_option(self):
        """Should reject unknown options."""
        with pytest.raises(ConfigError, match="unknown option 'colour'"):
            FormRuntime(schema={"formId": "f", "pages": []}, container=Element("div"), colour="red")

    def test_invalid_schema(self):
        """Should raise SchemaError for a structurally invalid schema."""
        with pytest.raises(SchemaError):
            FormRuntime(schema={"formId": "f", "pages": []}, container=Element("div"))

    def test_camel_case_options_mapping(self):
        """Should accept a mapping with camelCase option names."""
        runtime = FormRuntime({
            "schema": {"formId": "f", "pages": [{"id": "p", "fields": []}]},
            "container": Element("div"),
            "submitTimeout": 5,
        })
        assert runtime.config.submit_timeout == 5

    def test_runtime_config(self):
        """Should accept a prebuilt RuntimeConfig."""
        config = RuntimeConfig(schema={"formId": "f", "pages": [{"id": "p", "fields": []}]},
                               container=Element("div"), theme="dark")
        runtime = FormRuntime(config)
        assert runtime.theme == "dark"
        assert runtime.state == RuntimeState.INITIAL

    def test_render_moves_to_idle(self):
        """Should be idle after rendering and announce it."""
        seen = []
        runtime = FormRuntime(schema={"formId": "f", "pages": [{"id": "p", "fields": []}]},
                              container=Element("div"))
        runtime.on(EventType.FORM_RENDERED, seen.append)
        runtime.render()
        assert runtime.state == RuntimeState.IDLE
        assert seen[0].payload == {"page": "p"}


class TestConditionalDisplay:
    """Test conditional visibility."""

    def schema(self, logic="AND"):
        return {
            "formId": "f",
            "pages": [{"id": "p", "fields": [
                {"id": "country", "type": "text"},
                {"id": "age", "type": "number"},
                {"id": "state", "type": "text", "label": "State", "required": True,
                 "conditionalDisplay": {"logic": logic, "rules": [
                     {"field": "country", "operator": "equals", "value": "US"},
                     {"field": "age", "operator": "greaterThan", "value": 17},
                 ]}},
            ]}],
        }

    def test_and_logic(self):
        """Should show the field only when every rule matches."""
        runtime = mount(self.schema())
        runtime.set_field_value("country", "US")
        assert runtime.is_field_visible("state") is False
        runtime.set_field_value("age", "30")
        assert runtime.is_field_visible("state") is True
        assert runtime.renderer.bindings["state"].container.hidden is False

    def test_or_logic(self):
        """Should show the field when any rule matches."""
        runtime = mount(self.schema("OR"))
        assert runtime.is_field_visible("state") is False
        runtime.set_field_value("age", "30")
        assert runtime.is_field_visible("state") is True

    def test_hidden_field_markup(self):
        """Should hide the container for sighted and assistive users."""
        runtime = mount(self.schema())
        container = runtime.renderer.bindings["state"].container
        assert container.get_attribute("hidden") == "hidden"
        assert container.get_attribute("aria-hidden") == "true"
        assert "display: none" in container.get_attribute("style")

    def test_hidden_fields_skip_validation_and_data(self):
        """Should neither validate nor submit hidden fields."""
        runtime = mount(self.schema())
        runtime.set_field_value("country", "FR")
        assert runtime.validate() is True
        assert "state" not in runtime.get_data()

    def test_hiding_clears_error(self):
        """Should clear a shown error when the field becomes hidden."""
        runtime = mount(self.schema("OR"))
        runtime.set_field_value("country", "US")
        runtime.validate()
        assert runtime.store.get_error("state") == "State is required"
        runtime.set_field_value("country", "FR")
        assert runtime.store.get_error("state") is None
        assert runtime.renderer.bindings["state"].error.text == ""


class TestSkipRules:
    """Test skip rule actions."""

    def test_skip_to_page(self):
        """Should jump forward when the condition matches."""
        runtime = mount(wizard_schema())
        runtime.set_field_value("plan", "basic")
        assert runtime.current_page.id == "billing"

    def test_skip_never_moves_backwards(self):
        """Should ignore skip targets at or before the current page."""
        runtime = mount(wizard_schema())
        runtime.go_to_page("billing")
        runtime.set_field_value("plan", "basic")
        runtime.previous_page()
        assert runtime.current_page.id == "details"

    def enable_schema(self, action):
        return {
            "formId": "f",
            "pages": [{"id": "p", "fields": [
                {"id": "member", "type": "text"},
                {"id": "number", "type": "text", "label": "Number", "required": True},
            ]}],
            "conditionalLogic": {"skipRules": [
                {"condition": {"field": "member", "operator": "equals", "value": "yes"},
                 "action": {"type": action, "target": "number"}},
            ]},
        }

    def test_enable_field(self):
        """Should disable the target until the condition matches."""
        runtime = mount(self.enable_schema("enableField"))
        assert runtime.is_field_disabled("number") is True
        assert runtime.renderer.bindings["number"].input.disabled is True
        assert runtime.validate() is True

        runtime.set_field_value("member", "yes")
        assert runtime.is_field_disabled("number") is False
        assert runtime.validate() is False

    def test_disable_field(self):
        """Should disable the target while the condition matches."""
        runtime = mount(self.enable_schema("disableField"))
        assert runtime.is_field_disabled("number") is False
        runtime.set_field_value("member", "yes")
        assert runtime.is_field_disabled("number") is True


class TestCalculatedValues:
    """Test calculated fields."""

    def schema(self):
        return {
            "formId": "f",
            "pages": [{"id": "p", "fields": [
                {"id": "a", "type": "number"},
                {"id": "b", "type": "number"},
            ]}],
            "calculatedFields": [
                {"id": "ratio", "expression": "a / b * 100", "format": "percentage", "decimalPlaces": 1},
            ],
        }

    def test_value(self):
        """Should compute from current values."""
        runtime = mount(self.schema())
        runtime.set_field_value("a", "1")
        runtime.set_field_value("b", "8")
        assert runtime.get_calculated_value("ratio") == 12.5
        assert runtime.container.find_by_id("calc-ratio").text == "12.5%"

    def test_failure_recovers_to_zero(self):
        """Should show 0 for division by zero and missing values."""
        runtime = mount(self.schema())
        runtime.set_field_value("a", "1")
        runtime.set_field_value("b", "0")
        assert runtime.get_calculated_value("ratio") == 0.0

    def test_only_dependent_fields_recomputed(self):
        """Should re-evaluate a calculated field only when one of its inputs changes."""
        schema = self.schema()
        schema["pages"][0]["fields"].append({"id": "note", "type": "text"})
        runtime = mount(schema)
        updated = []
        original = runtime.renderer.update_calculated

        def record(calc_id, text):
            updated.append(calc_id)
            original(calc_id, text)

        runtime.renderer.update_calculated = record
        runtime.set_field_value("note", "hello")
        assert updated == []

        runtime.set_field_value("a", "1")
        assert updated == ["ratio"]

    def test_unknown_id(self):
        """Should return None for unknown calculated fields."""
        assert mount(self.schema()).get_calculated_value("nope") is None


class TestNavigation:
    """Test multi-page navigation."""

    def test_next_page_requires_valid_page(self):
        """Should stay put and focus the first invalid field."""
        runtime = mount(wizard_schema())
        assert runtime.next_page() is False
        assert runtime.current_page.id == "start"
        assert runtime.renderer.bindings["name"].input.focused is True
        assert runtime.renderer.announcements[-1] == "Please fix the errors before submitting"

    def test_next_and_previous(self):
        """Should move between pages and announce the change."""
        runtime = mount(wizard_schema())
        seen = []
        runtime.on(EventType.PAGE_CHANGED, seen.append)
        runtime.set_field_value("name", "Ada")

        assert runtime.next_page() is True
        assert runtime.current_page.id == "details"
        assert runtime.container.find_by_id("page-details") is not None
        assert runtime.renderer.announcements[-1] == "Navigated to page 2"

        assert runtime.previous_page() is True
        assert runtime.current_page.id == "start"
        assert [e.payload["to"] for e in seen] == ["details", "start"]

    def test_values_survive_navigation(self):
        """Should keep values of pages that are not rendered."""
        runtime = mount(wizard_schema())
        runtime.set_field_value("name", "Ada")
        runtime.next_page()
        runtime.set_field_value("company", "Analytical Engines")
        runtime.previous_page()
        assert runtime.renderer.bindings["name"].input.value == "Ada"
        assert runtime.get_data()["company"] == "Analytical Engines"

    def test_go_to_unknown_page(self, caplog):
        """Should warn and stay on the current page."""
        runtime = mount(wizard_schema())
        with caplog.at_level(logging.WARNING, logger="formruntime.runtime"):
            assert runtime.go_to_page("nope") is False
        assert "Unknown page 'nope'" in caplog.text
        assert runtime.current_page.id == "start"

    def test_previous_on_first_page(self):
        """Should refuse to go before the first page."""
        assert mount(wizard_schema()).previous_page() is False

    def test_navigation_buttons(self):
        """Should navigate when the buttons are clicked."""
        runtime = mount(wizard_schema())
        runtime.set_field_value("name", "Ada")
        runtime.container.find(class_name="form-nav-next").click()
        assert runtime.current_page.id == "details"
        runtime.container.find(class_name="form-nav-prev").click()
        assert runtime.current_page.id == "start"

    def test_validate_covers_every_page(self):
        """Should fail on a required field of a page that is not shown."""
        schema = wizard_schema()
        schema["pages"][1]["fields"][0]["required"] = True
        runtime = mount(schema)
        runtime.set_field_value("name", "Ada")

        assert runtime.validate_page() is True
        assert runtime.validate() is False
        assert [e.field_id for e in runtime.last_validation.errors] == ["company"]
        assert runtime.renderer.submit_button.disabled is True

    @pytest.mark.asyncio
    async def test_submit_moves_to_first_invalid_page(self):
        """Should refuse to submit and show the page holding the missing field."""
        calls = []
        schema = wizard_schema()
        schema["pages"][1]["fields"][0]["required"] = True
        runtime = mount(schema, on_submit=calls.append)
        runtime.set_field_value("name", "Ada")

        result = await runtime.submit()

        assert result.success is False
        assert calls == []
        assert runtime.current_page.id == "details"
        assert runtime.renderer.bindings["company"].input.focused is True
        assert runtime.renderer.bindings["company"].error.text == "company is required"
        assert runtime.renderer.announcements[-1] == "Please fix the errors before submitting"

        runtime.set_field_value("company", "Analytical Engines")
        assert runtime.renderer.submit_button.disabled is False
        assert (await runtime.submit()).success is True
        assert calls == [{"name": "Ada", "plan": None, "company": "Analytical Engines", "card": None}]


class TestData:
    """Test snapshots and bulk updates."""

    def schema(self):
        return {
            "formId": "f",
            "pages": [{"id": "p", "fields": [
                {"id": "name", "type": "text"},
                {"id": "newsletter", "type": "checkboxes", "options": [{"value": "weekly"}]},
                {"id": "country", "type": "text", "defaultValue": "UK"},
            ]}],
            "repeatableSections": [{"id": "items", "minInstances": 1, "maxInstances": 3,
                                    "fields": [{"id": "sku", "type": "text"}]}],
        }

    def test_defaults(self):
        """Should seed default values."""
        data = mount(self.schema()).get_data()
        assert data == {"name": None, "newsletter": None, "country": "UK", "items": [{"sku": None}]}

    def test_set_data_round_trip(self):
        """Should reproduce the snapshot it was given."""
        runtime = mount(self.schema())
        data = {"name": "Ada", "newsletter": ["weekly"], "country": "FR",
                "items": [{"sku": "A1"}, {"sku": "B2"}]}
        runtime.set_data(data)
        assert runtime.get_data() == data
        assert runtime.renderer.bindings["items[1].sku"].input.value == "B2"

    def test_set_data_clamps_instances(self):
        """Should clamp the instance count to the section bounds."""
        runtime = mount(self.schema())
        runtime.set_data({"items": [{"sku": str(i)} for i in range(5)]})
        assert runtime.get_data()["items"] == [{"sku": "0"}, {"sku": "1"}, {"sku": "2"}]

    def test_set_data_ignores_unknown_keys(self):
        """Should ignore keys that name no field."""
        runtime = mount(self.schema())
        runtime.set_data({"nope": 1, "name": "Ada"})
        assert "nope" not in runtime.get_data()
        assert runtime.renderer.bindings["name"].input.value == "Ada"

    def test_set_data_revalidates_errors(self):
        """Should clear a stale error once the bulk value is valid."""
        runtime = mount({"formId": "f", "pages": [{"id": "p", "fields": [
            {"id": "name", "type": "text", "label": "Name", "required": True},
        ]}]})
        assert runtime.validate() is False
        assert runtime.renderer.submit_button.disabled is True

        runtime.set_data({"name": "Ada"})

        assert runtime.store.get_error("name") is None
        assert runtime.container.find_by_id("error-name").text == ""
        assert runtime.renderer.submit_button.disabled is False

    def test_set_data_skips_malformed_instances(self, caplog):
        """Should ignore instance entries that are not mappings."""
        runtime = mount(self.schema())
        with caplog.at_level(logging.WARNING, logger="formruntime.runtime"):
            runtime.set_data({"items": ["A1", {"sku": "B2"}]})
        assert "Ignoring non-mapping instance 0 for repeatable section 'items'" in caplog.text
        assert runtime.get_data()["items"] == [{"sku": None}, {"sku": "B2"}]

    def test_set_field_value_unknown(self, caplog):
        """Should warn about unknown fields."""
        runtime = mount(self.schema())
        runtime.set_field_value("nope", 1)
        assert "Ignoring value for unknown field 'nope'" in caplog.text

    def test_field_updated_event(self):
        """Should emit field.updated with the new value."""
        runtime = mount(self.schema())
        seen = []
        runtime.on(EventType.FIELD_UPDATED, seen.append)
        runtime.set_field_value("name", "Ada")
        assert seen[0].payload == {"fieldId": "name", "value": "Ada"}

    def test_reset(self):
        """Should clear values, restore defaults and the minimum instances."""
        runtime = mount(self.schema())
        runtime.set_data({"name": "Ada", "country": "FR", "items": [{"sku": "A1"}, {"sku": "B2"}]})
        seen = []
        runtime.on(EventType.FORM_RESET, seen.append)

        runtime.reset()

        assert runtime.get_data() == {"name": None, "newsletter": None, "country": "UK", "items": [{"sku": None}]}
        assert runtime.renderer.bindings["name"].input.value == ""
        assert len(seen) == 1


class TestLoadSchema:
    """Test schema reloads."""

    def test_keeps_surviving_values(self):
        """Should keep values for field ids present in the new schema."""
        runtime = mount({"formId": "f", "pages": [{"id": "p", "fields": [
            {"id": "name", "type": "text"}, {"id": "old", "type": "text"},
        ]}]})
        runtime.set_field_value("name", "Ada")
        runtime.load_schema({"formId": "f", "settings": {"theme": "dark"}, "pages": [{"id": "p", "fields": [
            {"id": "name", "type": "text"}, {"id": "new", "type": "text"},
        ]}]})
        assert runtime.get_data() == {"name": "Ada", "new": None}
        assert runtime.renderer.bindings["name"].input.value == "Ada"
        assert runtime.container.get_attribute("class") == "form-runtime theme-dark"

    def test_invalid_schema_keeps_current(self):
        """Should raise and keep the current schema."""
        runtime = mount({"formId": "f", "pages": [{"id": "p", "fields": []}]})
        with pytest.raises(SchemaError):
            runtime.load_schema({"formId": "f"})
        assert runtime.form_id == "f"
        assert runtime.state == RuntimeState.IDLE


class TestLifecycle:
    """Test destroy and the event stream."""

    def test_destroy(self):
        """Should empty the container and ignore further structural calls."""
        runtime = mount(wizard_schema())
        destroyed = []
        runtime.on(EventType.FORM_DESTROYED, destroyed.append)

        runtime.destroy()
        runtime.destroy()

        assert runtime.state == RuntimeState.DESTROYED
        assert runtime.container.children == []
        assert len(destroyed) == 1
        runtime.render()
        assert runtime.container.children == []
        assert runtime.go_to_page("details") is False

    def test_wildcard_subscription(self):
        """Should deliver every event to wildcard listeners until removed."""
        runtime = mount({"formId": "f", "pages": [{"id": "p", "fields": [{"id": "name", "type": "text"}]}]})
        seen = []
        runtime.on(None, seen.append)
        runtime.set_field_value("name", "Ada")
        runtime.off(None, seen.append)
        runtime.set_field_value("name", "Grace")
        assert [e.type for e in seen] == [EventType.FIELD_VALIDATED, EventType.FIELD_UPDATED]
