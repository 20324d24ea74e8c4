"""Connector protocol for handing submitted data to another system.

Any object with an (async or sync) ``submit(data)`` method returning
``{success, message, id?}`` or a SubmitResult can be passed as a form's
``on_submit``. BaseConnector adds the optional hooks the bundled connectors
share.
"""

import logging
from typing import Any, Dict, List, Mapping, Optional, Union

from typing_extensions import Protocol, runtime_checkable

from formruntime.submission import SubmitResult

logger = logging.getLogger(__name__)


@runtime_checkable
class FormConnector(Protocol):
    """Structural type of a submit target."""

    async def submit(self, data: Dict[str, Any]) -> Union[SubmitResult, Mapping[str, Any]]: ...


class BaseConnector:
    """Common behaviour for the bundled connectors.

    Attributes:
        config: Raw connector configuration
    """

    def __init__(self, config: Optional[Mapping[str, Any]] = None):
        self.config: Dict[str, Any] = dict(config or {})

    async def submit(self, data: Dict[str, Any]) -> SubmitResult:
        raise NotImplementedError(f"{type(self).__name__} must implement submit()")

    async def validate(self, data: Mapping[str, Any]) -> Dict[str, Any]:
        """Reject empty payloads before they leave the process."""
        errors: List[Dict[str, str]] = []
        if not data:
            errors.append({"field": "general", "message": "No data to submit"})
        return {"valid": not errors, "errors": errors}


__all__ = [
    "BaseConnector",
    "FormConnector",
]
