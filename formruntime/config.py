"""Construction options for FormRuntime.

Options arrive either as keyword arguments or as a single mapping using the
camelCase names hosts already use in their JSON configuration (``onSubmit``,
``onValidationError``, ``submitTimeout``).
"""

from dataclasses import dataclass, fields
from typing import Any, Awaitable, Callable, List, Mapping, Optional, Union

from formruntime.dom import Element
from formruntime.errors import ConfigError, FieldError
from formruntime.schema import FormSchema

SubmitCallback = Callable[[dict], Union[Awaitable[Any], Any]]
ValidationErrorCallback = Callable[[List[FieldError]], None]

_ALIASES = {
    "onSubmit": "on_submit",
    "onValidationError": "on_validation_error",
    "submitTimeout": "submit_timeout",
}


@dataclass
class RuntimeConfig:
    """Validated construction options.

    Attributes:
        schema: Form definition, as a FormSchema or raw mapping (required)
        container: Element the form mounts into (required)
        theme: Theme identifier; when None the schema's settings.theme is
               used, falling back to "default"
        on_submit: Callback (sync or async) or connector object with a
                   ``submit(data)`` method
        on_validation_error: Called with the ordered error list whenever
                             whole-form validation fails
        submit_timeout: Seconds to wait for the submit callback, None waits
                        indefinitely
    """
    schema: Union[FormSchema, Mapping[str, Any], None] = None
    container: Optional[Element] = None
    theme: Optional[str] = None
    on_submit: Any = None
    on_validation_error: Optional[ValidationErrorCallback] = None
    submit_timeout: Optional[float] = None

    def __post_init__(self):
        if self.schema is None:
            raise ConfigError("FormRuntime: schema is required")
        if self.container is None:
            raise ConfigError("FormRuntime: container is required")
        if not isinstance(self.container, Element):
            raise ConfigError(
                f"FormRuntime: container must be an Element, got {type(self.container).__name__}"
            )
        if self.submit_timeout is not None and self.submit_timeout <= 0:
            raise ConfigError("FormRuntime: submit_timeout must be positive")

    @classmethod
    def from_options(cls, options: Optional[Mapping[str, Any]] = None, **kwargs: Any) -> "RuntimeConfig":
        """Build a config from a mapping and/or keyword arguments.

        Raises:
            ConfigError: If required options are missing or unknown ones are given
        """
        merged = dict(options or {})
        merged.update(kwargs)
        known = {f.name for f in fields(cls)}
        normalized = {}
        for key, value in merged.items():
            name = _ALIASES.get(key, key)
            if name not in known:
                raise ConfigError(f"FormRuntime: unknown option '{key}'")
            normalized[name] = value
        return cls(**normalized)


__all__ = [
    "RuntimeConfig",
    "SubmitCallback",
    "ValidationErrorCallback",
]
