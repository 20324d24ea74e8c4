"""Repeatable section instance management.

A repeatable section is a group of template fields the user may instantiate
between ``min_instances`` and ``max_instances`` times. Each instance's fields
are namespaced ``sectionId[index].fieldId``; indices are always derived from
array position, so removing a middle instance shifts every later instance
down by one and its stored values and errors move with it.

Usage:
    >>> namespaced_id("contacts", 1, "email")
    'contacts[1].email'
    >>> parse_namespaced_id("contacts[1].email")
    ('contacts', 1, 'email')
"""

import logging
import re
from dataclasses import replace
from typing import TYPE_CHECKING, Dict, Iterator, List, Optional, Tuple

from formruntime.schema import FormField, FormSchema, RepeatableSection

if TYPE_CHECKING:
    from formruntime.store import FieldValueStore

logger = logging.getLogger(__name__)

_NAMESPACED_RE = re.compile(r"^(?P<section>[^\[\]]+)\[(?P<index>\d+)\]\.(?P<field>.+)$")


def namespaced_id(section_id: str, index: int, field_id: str) -> str:
    return f"{section_id}[{index}].{field_id}"


def parse_namespaced_id(field_id: str) -> Optional[Tuple[str, int, str]]:
    """Split a namespaced identifier, or return None for page-level ids."""
    match = _NAMESPACED_RE.match(field_id)
    if match is None:
        return None
    return match.group("section"), int(match.group("index")), match.group("field")


def _bind_to_instance(section: RepeatableSection, index: int, template: FormField) -> FormField:
    sibling_ids = {f.id for f in section.fields}

    def scoped(field_id: str) -> str:
        if field_id in sibling_ids:
            return namespaced_id(section.id, index, field_id)
        return field_id

    validation = template.validation
    cross = validation.cross_field
    if cross is not None and cross.field in sibling_ids:
        validation = replace(validation, cross_field=replace(cross, field=scoped(cross.field)))

    conditional = template.conditional_display
    if conditional is not None:
        conditional = replace(conditional, rules=[replace(r, field=scoped(r.field)) for r in conditional.rules])

    return replace(
        template,
        id=namespaced_id(section.id, index, template.id),
        validation=validation,
        conditional_display=conditional,
    )


class RepeatableSectionManager:
    """Keeps per-section instance counts within their bounds.

    Add and remove requests that would leave [min, max] are no-ops that
    return False; the renderer simply stops offering the control.

    Examples:
        >>> from formruntime.schema import load_schema
        >>> from formruntime.store import FieldValueStore
        >>> schema = load_schema({
        ...     "formId": "f", "pages": [{"id": "p", "fields": []}],
        ...     "repeatableSections": [{"id": "contacts", "minInstances": 1,
        ...                             "maxInstances": 2, "fields": []}],
        ... })
        >>> manager = RepeatableSectionManager(schema, FieldValueStore())
        >>> manager.initialize()
        >>> manager.add_instance("contacts"), manager.add_instance("contacts")
        (True, False)
        >>> manager.count("contacts")
        2
    """

    def __init__(self, schema: FormSchema, store: "FieldValueStore"):
        self.schema = schema
        self.store = store
        self._counts: Dict[str, int] = {}

    def initialize(self) -> None:
        """Start every section at its minimum instance count."""
        self._counts = {s.id: s.min_instances for s in self.schema.repeatable_sections}

    def reset(self) -> None:
        """Drop every instance value and return to minimum counts."""
        for section in self.schema.repeatable_sections:
            for index in range(self.count(section.id)):
                for field_id in self.instance_field_ids(section.id, index):
                    self.store.delete(field_id)
        self.initialize()

    def count(self, section_id: str) -> int:
        return self._counts.get(section_id, 0)

    def counts(self) -> Dict[str, int]:
        return dict(self._counts)

    def _section(self, section_id: str) -> Optional[RepeatableSection]:
        section = self.schema.find_section(section_id)
        if section is None:
            logger.warning("Unknown repeatable section '%s'", section_id)
        return section

    def can_add(self, section_id: str) -> bool:
        section = self.schema.find_section(section_id)
        if section is None:
            return False
        return section.max_instances is None or self.count(section_id) < section.max_instances

    def can_remove(self, section_id: str) -> bool:
        section = self.schema.find_section(section_id)
        if section is None:
            return False
        return self.count(section_id) > section.min_instances

    def add_instance(self, section_id: str) -> bool:
        """Append an empty instance unless the section is at its maximum."""
        if self._section(section_id) is None or not self.can_add(section_id):
            return False
        self._counts[section_id] = self.count(section_id) + 1
        logger.info("Added instance %d to section '%s'", self._counts[section_id] - 1, section_id)
        return True

    def remove_instance(self, section_id: str, index: int) -> bool:
        """Remove the instance at ``index`` unless that would go below minimum.

        Later instances shift down: their stored values and errors are
        re-keyed to their new position.
        """
        section = self._section(section_id)
        if section is None or not self.can_remove(section_id):
            return False
        current = self.count(section_id)
        if index < 0 or index >= current:
            logger.warning("Instance %d out of range for section '%s'", index, section_id)
            return False

        for field_id in self.instance_field_ids(section_id, index):
            self.store.delete(field_id)
        for later in range(index + 1, current):
            for template in section.fields:
                self.store.rename(
                    namespaced_id(section_id, later, template.id),
                    namespaced_id(section_id, later - 1, template.id),
                )
        self._counts[section_id] = current - 1
        logger.info("Removed instance %d from section '%s'", index, section_id)
        return True

    def set_count(self, section_id: str, count: int) -> int:
        """Grow or shrink a section towards ``count``, clamped to its bounds.

        Returns:
            The resulting instance count
        """
        section = self._section(section_id)
        if section is None:
            return 0
        while self.count(section_id) < count and self.add_instance(section_id):
            pass
        while self.count(section_id) > count and self.remove_instance(section_id, self.count(section_id) - 1):
            pass
        return self.count(section_id)

    @staticmethod
    def field_id(section_id: str, index: int, field_id: str) -> str:
        return namespaced_id(section_id, index, field_id)

    @staticmethod
    def parse_field_id(field_id: str) -> Optional[Tuple[str, int, str]]:
        return parse_namespaced_id(field_id)

    def instance_field_ids(self, section_id: str, index: int) -> List[str]:
        section = self.schema.find_section(section_id)
        if section is None:
            return []
        return [namespaced_id(section_id, index, f.id) for f in section.fields]

    def instance_fields(self, section_id: str, index: int) -> List[FormField]:
        """Template fields bound to the namespaced ids of one instance.

        Conditional-display rules and cross-field rules that name a sibling
        template field are rewritten to that sibling's namespaced id, so an
        instance's rules look at its own values; other references stay global.
        """
        section = self.schema.find_section(section_id)
        if section is None:
            return []
        return [_bind_to_instance(section, index, f) for f in section.fields]

    def iter_instance_fields(self) -> Iterator[Tuple[RepeatableSection, int, FormField]]:
        """Every (section, index, namespaced field) across all instances."""
        for section in self.schema.repeatable_sections:
            for index in range(self.count(section.id)):
                for form_field in self.instance_fields(section.id, index):
                    yield section, index, form_field


__all__ = [
    "RepeatableSectionManager",
    "namespaced_id",
    "parse_namespaced_id",
]
