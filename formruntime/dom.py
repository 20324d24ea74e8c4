"""A minimal element tree the renderer builds into.

Elements model what the engine needs from a UI tree: tag, attributes,
children, text, the live input properties a browser keeps outside the markup
(``value``, ``checked``, ``disabled``, ``files``), focus and event listeners.
``to_html()`` serializes the tree with the live properties reflected as
attributes, so a host can ship the markup anywhere.

Usage:
    >>> root = Element("div", {"id": "root"})
    >>> field = root.append(Element("input", {"id": "name", "type": "text"}))
    >>> field.value = "Ada"
    >>> root.to_html()
    '<div id="root"><input id="name" type="text" value="Ada"></div>'
"""

import logging
from dataclasses import dataclass
from html import escape
from typing import Any, Callable, Dict, Iterator, List, Optional

from formruntime.types import FileHandle

logger = logging.getLogger(__name__)

VOID_TAGS = frozenset({"input", "br", "hr", "img", "link", "meta"})


@dataclass
class DomEvent:
    """An event dispatched on an element."""
    type: str
    target: "Element"
    default_prevented: bool = False

    def prevent_default(self) -> None:
        self.default_prevented = True


Listener = Callable[[DomEvent], Any]


class Element:
    """A node in the rendered UI tree.

    Attributes:
        tag: Lower-case tag name
        attrs: Markup attributes (insertion ordered)
        children: Child elements in document order
        parent: Containing element, None for a detached root
        text: Text content rendered before the children
        value: Live value of inputs, textareas and selects
        checked: Live checked state of radios and checkboxes
        disabled: Live disabled state
        files: Chosen files of a file input
        focused: Whether this element currently holds focus
    """

    def __init__(self, tag: str, attrs: Optional[Dict[str, Any]] = None, text: str = ""):
        self.tag = tag.lower()
        self.attrs: Dict[str, str] = {}
        for name, value in (attrs or {}).items():
            self.set_attribute(name, value)
        self.children: List["Element"] = []
        self.parent: Optional["Element"] = None
        self.text = text
        self.value = ""
        self.checked = False
        self.disabled = False
        self.files: List[FileHandle] = []
        self.focused = False
        self._listeners: Dict[str, List[Listener]] = {}

    def __repr__(self) -> str:
        ident = f"#{self.id}" if self.id else ""
        return f"<Element {self.tag}{ident}>"

    # Attributes

    @property
    def id(self) -> Optional[str]:
        return self.attrs.get("id")

    def set_attribute(self, name: str, value: Any) -> None:
        self.attrs[name] = value if isinstance(value, str) else str(value)

    def get_attribute(self, name: str) -> Optional[str]:
        return self.attrs.get(name)

    def has_attribute(self, name: str) -> bool:
        return name in self.attrs

    def remove_attribute(self, name: str) -> None:
        self.attrs.pop(name, None)

    @property
    def class_list(self) -> List[str]:
        return self.attrs.get("class", "").split()

    def add_class(self, *names: str) -> None:
        classes = self.class_list
        for name in names:
            if name not in classes:
                classes.append(name)
        self.attrs["class"] = " ".join(classes)

    def remove_class(self, name: str) -> None:
        classes = [c for c in self.class_list if c != name]
        if classes:
            self.attrs["class"] = " ".join(classes)
        else:
            self.attrs.pop("class", None)

    def has_class(self, name: str) -> bool:
        return name in self.class_list

    @property
    def hidden(self) -> bool:
        return "hidden" in self.attrs

    # Tree

    def append(self, child: "Element") -> "Element":
        if child.parent is not None:
            child.remove()
        child.parent = self
        self.children.append(child)
        return child

    def insert(self, index: int, child: "Element") -> "Element":
        if child.parent is not None:
            child.remove()
        child.parent = self
        self.children.insert(index, child)
        return child

    def remove(self) -> None:
        """Detach this element from its parent."""
        if self.parent is not None:
            self.parent.children.remove(self)
            self.parent = None

    def clear(self) -> None:
        """Detach every child."""
        for child in list(self.children):
            child.parent = None
        self.children = []

    def iter(self) -> Iterator["Element"]:
        """Depth-first iteration including self."""
        yield self
        for child in self.children:
            yield from child.iter()

    def find_all(
        self,
        tag: Optional[str] = None,
        class_name: Optional[str] = None,
        predicate: Optional[Callable[["Element"], bool]] = None,
    ) -> List["Element"]:
        """Descendants (and self) matching every given criterion."""
        matches = []
        for element in self.iter():
            if tag is not None and element.tag != tag:
                continue
            if class_name is not None and not element.has_class(class_name):
                continue
            if predicate is not None and not predicate(element):
                continue
            matches.append(element)
        return matches

    def find(self, tag: Optional[str] = None, class_name: Optional[str] = None,
             predicate: Optional[Callable[["Element"], bool]] = None) -> Optional["Element"]:
        found = self.find_all(tag=tag, class_name=class_name, predicate=predicate)
        return found[0] if found else None

    def find_by_id(self, element_id: str) -> Optional["Element"]:
        return self.find(predicate=lambda e: e.id == element_id)

    @property
    def text_content(self) -> str:
        return self.text + "".join(child.text_content for child in self.children)

    # Events

    def add_event_listener(self, event_type: str, listener: Listener) -> None:
        self._listeners.setdefault(event_type, []).append(listener)

    def remove_event_listener(self, event_type: str, listener: Listener) -> None:
        if event_type in self._listeners:
            try:
                self._listeners[event_type].remove(listener)
            except ValueError:
                pass  # Listener not registered, ignore

    def remove_all_listeners(self) -> None:
        """Detach listeners from this element and every descendant."""
        for element in self.iter():
            element._listeners.clear()

    def listener_count(self, event_type: Optional[str] = None) -> int:
        if event_type is not None:
            return len(self._listeners.get(event_type, []))
        return sum(len(listeners) for listeners in self._listeners.values())

    def dispatch_event(self, event_type: str, bubbles: bool = True) -> DomEvent:
        """Invoke listeners on this element, then on its ancestors.

        Returns:
            The dispatched event, so callers can inspect ``default_prevented``
        """
        event = DomEvent(type=event_type, target=self)
        node: Optional[Element] = self
        while node is not None:
            for listener in list(node._listeners.get(event_type, [])):
                listener(event)
            node = node.parent if bubbles else None
        return event

    def click(self) -> DomEvent:
        """Dispatch a click; clicking a submit button also submits its form.

        Disabled elements swallow the click without dispatching anything.
        """
        event = DomEvent(type="click", target=self)
        if self.disabled:
            return event
        event = self.dispatch_event("click")
        if self.tag == "button" and self.get_attribute("type") == "submit":
            form = self.closest("form")
            if form is not None:
                form.dispatch_event("submit")
        return event

    def closest(self, tag: str) -> Optional["Element"]:
        node: Optional[Element] = self
        while node is not None:
            if node.tag == tag:
                return node
            node = node.parent
        return None

    # Focus

    def focus(self) -> None:
        root = self
        while root.parent is not None:
            root = root.parent
        for element in root.iter():
            element.focused = False
        self.focused = True
        self.dispatch_event("focus", bubbles=False)

    def blur(self) -> None:
        self.focused = False
        self.dispatch_event("blur", bubbles=False)

    # Serialization

    def _live_attrs(self) -> Dict[str, str]:
        attrs = dict(self.attrs)
        if self.tag == "input":
            input_type = attrs.get("type", "text")
            if input_type in ("radio", "checkbox"):
                if self.checked:
                    attrs["checked"] = "checked"
            elif input_type != "file" and self.value != "":
                attrs["value"] = self.value
        if self.tag == "option" and self.parent is not None and self.parent.tag == "select":
            if self.parent.value != "" and self.parent.value == attrs.get("value"):
                attrs["selected"] = "selected"
        if self.disabled:
            attrs["disabled"] = "disabled"
        return attrs

    def to_html(self) -> str:
        parts = [f"<{self.tag}"]
        for name, value in self._live_attrs().items():
            parts.append(f' {name}="{escape(value, quote=True)}"')
        parts.append(">")
        if self.tag in VOID_TAGS:
            return "".join(parts)
        if self.tag == "textarea":
            parts.append(escape(self.value))
        else:
            parts.append(escape(self.text))
            parts.extend(child.to_html() for child in self.children)
        parts.append(f"</{self.tag}>")
        return "".join(parts)


__all__ = [
    "DomEvent",
    "Element",
    "Listener",
    "VOID_TAGS",
]
