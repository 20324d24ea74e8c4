"""Field value store: the single source of truth for form state.

Each entry maps a field identifier (namespaced for repeatable instances,
e.g. ``contacts[0].email``) to its current value, its validation error if
any, and the element handles the renderer bound for it. Values outlive
element handles: a structural re-render drops every binding and rebinds
fresh elements, then re-applies the stored values onto them.
"""

import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterator, List, Mapping, Optional

from formruntime.repeatable import namespaced_id
from formruntime.schema import FormSchema

logger = logging.getLogger(__name__)

StoreListener = Callable[[str, Any], None]
"""Called with (field_id, value) after every notifying ``set``."""


@dataclass
class FieldEntry:
    value: Any = None
    error: Optional[str] = None
    handles: Any = None
    assigned: bool = False


def is_empty(value: Any) -> bool:
    """None, blank strings and empty selections count as no answer."""
    if value is None:
        return True
    if isinstance(value, str):
        return value == ""
    if isinstance(value, (list, tuple)):
        return len(value) == 0
    return False


class FieldValueStore:
    """Mapping from field identifier to value, error and bound handles.

    Examples:
        >>> store = FieldValueStore()
        >>> store.set("name", "Ada")
        >>> store.get("name")
        'Ada'
        >>> store.set_error("name", "Too short")
        >>> store.errors()
        {'name': 'Too short'}
    """

    def __init__(self) -> None:
        self._entries: Dict[str, FieldEntry] = {}
        self._listeners: List[StoreListener] = []

    def __contains__(self, field_id: str) -> bool:
        entry = self._entries.get(field_id)
        return entry is not None and entry.assigned

    def __len__(self) -> int:
        return len(self._entries)

    def keys(self) -> Iterator[str]:
        return iter(list(self._entries))

    def has(self, field_id: str) -> bool:
        """Whether a value was ever stored for the field."""
        entry = self._entries.get(field_id)
        return entry is not None and entry.assigned

    def get(self, field_id: str, default: Any = None) -> Any:
        entry = self._entries.get(field_id)
        if entry is None:
            return default
        return entry.value

    def set(self, field_id: str, value: Any, notify: bool = True) -> None:
        """Store a value and, unless ``notify`` is False, tell subscribers.

        Subscribers recompute whatever depends on the field (calculated
        values, visibility, submit-button state).
        """
        entry = self._entries.setdefault(field_id, FieldEntry())
        entry.value = value
        entry.assigned = True
        if notify:
            for listener in list(self._listeners):
                listener(field_id, value)

    def delete(self, field_id: str) -> None:
        self._entries.pop(field_id, None)

    def clear(self) -> None:
        """Forget every value and error (handles go with them)."""
        self._entries.clear()

    def rename(self, old_id: str, new_id: str) -> None:
        """Move an entry to a new identifier, replacing whatever was there."""
        entry = self._entries.pop(old_id, None)
        if entry is None:
            self._entries.pop(new_id, None)
            return
        self._entries[new_id] = entry

    # Errors

    def set_error(self, field_id: str, message: str) -> None:
        self._entries.setdefault(field_id, FieldEntry()).error = message

    def clear_error(self, field_id: str) -> None:
        entry = self._entries.get(field_id)
        if entry is not None:
            entry.error = None

    def get_error(self, field_id: str) -> Optional[str]:
        entry = self._entries.get(field_id)
        return entry.error if entry is not None else None

    def errors(self) -> Dict[str, str]:
        return {fid: e.error for fid, e in self._entries.items() if e.error is not None}

    def clear_errors(self) -> None:
        for entry in self._entries.values():
            entry.error = None

    # Element handles

    def bind(self, field_id: str, handles: Any) -> None:
        self._entries.setdefault(field_id, FieldEntry()).handles = handles

    def get_binding(self, field_id: str) -> Any:
        entry = self._entries.get(field_id)
        return entry.handles if entry is not None else None

    def unbind_all(self) -> None:
        for entry in self._entries.values():
            entry.handles = None

    # Subscriptions

    def subscribe(self, listener: StoreListener) -> None:
        self._listeners.append(listener)

    def unsubscribe(self, listener: StoreListener) -> None:
        try:
            self._listeners.remove(listener)
        except ValueError:
            pass  # Listener not registered, ignore

    # Snapshot

    def snapshot(
        self,
        schema: FormSchema,
        instance_counts: Mapping[str, int],
        is_visible: Optional[Callable[[str], bool]] = None,
    ) -> Dict[str, Any]:
        """Build the normalized data object for submission.

        Page fields appear under their own identifier, repeatable sections as
        a list of per-instance objects keyed by template field identifier.
        Display-only fields never appear; fields for which ``is_visible``
        returns False are left out.

        Args:
            schema: Form definition to walk
            instance_counts: Current instance count per section id
            is_visible: Visibility predicate on (namespaced) field ids
        """
        visible = is_visible or (lambda _field_id: True)
        data: Dict[str, Any] = {}

        for form_field in schema.input_fields():
            if visible(form_field.id):
                data[form_field.id] = self.get(form_field.id)

        for section in schema.repeatable_sections:
            instances = []
            for index in range(instance_counts.get(section.id, 0)):
                instance: Dict[str, Any] = {}
                for template in section.fields:
                    if template.is_display_only:
                        continue
                    field_id = namespaced_id(section.id, index, template.id)
                    if visible(field_id):
                        instance[template.id] = self.get(field_id)
                instances.append(instance)
            data[section.id] = instances

        return data


__all__ = [
    "FieldEntry",
    "FieldValueStore",
    "StoreListener",
    "is_empty",
]
