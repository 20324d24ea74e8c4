"""Submission controller.

A submit attempt runs in this order and stops at the first failure:

    guard -> whole-form validation -> snapshot -> callback -> outcome

While the callback is in flight the submit button is disabled and shows
"Submitting...", and further attempts return immediately. On success the
form is replaced by the success message; on failure the error is announced,
shown as a dismissable status and the form returns to idle so the user can
retry. The in-flight callback is never cancelled; if the form is destroyed
while waiting, the outcome is recorded but not displayed.

Callbacks may be plain functions, coroutine functions, or connector objects
exposing ``submit(data)``. Their return value is normalized by
``SubmitResult.coerce``:

    >>> SubmitResult.coerce({"success": True, "id": "sub_1"})
    SubmitResult(success=True, message='', id='sub_1')
    >>> SubmitResult.coerce(None)
    SubmitResult(success=True, message='', id=None)
"""

import asyncio
import inspect
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Dict, Mapping, Optional

from formruntime.errors import SubmissionError
from formruntime.types import EventType, RuntimeState

if TYPE_CHECKING:
    from formruntime.runtime import FormRuntime

logger = logging.getLogger(__name__)

VALIDATION_FAILED_MESSAGE = "Please fix the errors before submitting"
IN_PROGRESS_MESSAGE = "Submission already in progress"
DEFAULT_FAILURE_MESSAGE = "Submission failed"


@dataclass(frozen=True)
class SubmitResult:
    """Outcome of one submit attempt.

    Attributes:
        success: Whether the callback accepted the data
        message: Success or failure message to surface
        id: Identifier returned by the receiving system, if any
    """
    success: bool
    message: str = ""
    id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {"success": self.success, "message": self.message}
        if self.id is not None:
            result["id"] = self.id
        return result

    @classmethod
    def coerce(cls, outcome: Any) -> "SubmitResult":
        """Normalize whatever a callback returned.

        None (a callback that returned nothing) counts as success; mappings
        and objects are read for ``success``, ``message`` and ``id``.
        """
        if isinstance(outcome, SubmitResult):
            return outcome
        if outcome is None:
            return cls(success=True)
        if isinstance(outcome, Mapping):
            return cls(
                success=bool(outcome.get("success", False)),
                message=str(outcome.get("message") or outcome.get("error") or ""),
                id=outcome.get("id"),
            )
        if isinstance(outcome, bool):
            return cls(success=outcome)
        return cls(
            success=bool(getattr(outcome, "success", False)),
            message=str(getattr(outcome, "message", "") or ""),
            id=getattr(outcome, "id", None),
        )


class SubmissionController:
    """Runs submit attempts for one FormRuntime.

    Attributes:
        callback: Submit handler, connector or None (local success)
        timeout: Seconds to wait for the handler, None waits indefinitely
        last_error: Error of the most recent failed attempt, cleared on success
        last_result: Result of the most recent attempt
        attempts: Number of attempts that reached the callback
    """

    def __init__(self, runtime: "FormRuntime", callback: Any = None, timeout: Optional[float] = None):
        self.runtime = runtime
        self.callback = callback
        self.timeout = timeout
        self.last_error: Optional[SubmissionError] = None
        self.last_result: Optional[SubmitResult] = None
        self.attempts = 0
        self._in_flight = False

    @property
    def in_flight(self) -> bool:
        return self._in_flight

    async def submit(self) -> SubmitResult:
        """Validate, snapshot and hand the data to the callback."""
        runtime = self.runtime
        if self._in_flight:
            logger.info("Ignoring submit for form '%s': %s", runtime.form_id, IN_PROGRESS_MESSAGE)
            return SubmitResult(success=False, message=IN_PROGRESS_MESSAGE)

        if runtime.state != RuntimeState.IDLE:
            logger.warning("Ignoring submit for form '%s' in state '%s'", runtime.form_id, runtime.state.value)
            return SubmitResult(success=False, message=f"Form cannot be submitted while {runtime.state.value}")

        if not runtime.validate():
            runtime.focus_first_invalid()
            runtime.renderer.announce(VALIDATION_FAILED_MESSAGE)
            return SubmitResult(success=False, message=VALIDATION_FAILED_MESSAGE)

        data = runtime.get_data()
        self._in_flight = True
        self.attempts += 1
        runtime.renderer.clear_status()
        runtime.renderer.set_submit_busy(True)
        runtime.state_machine.transition_to(RuntimeState.SUBMITTING, {"attempt": self.attempts})

        try:
            result = await self._invoke(data)
        finally:
            self._in_flight = False

        self.last_result = result
        if runtime.state != RuntimeState.SUBMITTING:
            logger.info("Form '%s' left submitting before its callback returned", runtime.form_id)
            return result

        if result.success:
            self.last_error = None
            runtime.renderer.set_submit_busy(False)
            runtime.state_machine.transition_to(RuntimeState.SUBMITTED, result.to_dict())
            message = result.message or runtime.schema.settings.success_message
            runtime.renderer.show_success(message)
            runtime.renderer.announce(message)
            logger.info("Form '%s' submitted (attempt %d)", runtime.form_id, self.attempts)
        else:
            self.last_error = SubmissionError(result.message or DEFAULT_FAILURE_MESSAGE)
            runtime.renderer.set_submit_busy(False)
            runtime.state_machine.transition_to(RuntimeState.IDLE)
            runtime.state_machine.emit(EventType.SUBMISSION_FAILED, {"message": str(self.last_error)})
            runtime.renderer.show_status(f"Error: {self.last_error}")
            runtime.renderer.announce(f"Error: {self.last_error}")
            runtime.refresh_submit_state()
        return result

    async def _invoke(self, data: Dict[str, Any]) -> SubmitResult:
        """Call the handler once; failures become unsuccessful results."""
        if self.callback is None:
            return SubmitResult(success=True)

        handler = getattr(self.callback, "submit", self.callback)
        try:
            outcome = handler(data)
            if inspect.isawaitable(outcome):
                if self.timeout is not None:
                    outcome = await asyncio.wait_for(outcome, self.timeout)
                else:
                    outcome = await outcome
        except asyncio.TimeoutError:
            logger.warning("Submit handler for form '%s' timed out after %ss", self.runtime.form_id, self.timeout)
            return SubmitResult(success=False, message=f"Submission timed out after {self.timeout} seconds")
        except Exception as exc:
            logger.warning("Submit handler for form '%s' failed: %s", self.runtime.form_id, exc)
            return SubmitResult(success=False, message=str(exc) or DEFAULT_FAILURE_MESSAGE)

        result = SubmitResult.coerce(outcome)
        if not result.success and not result.message:
            result = SubmitResult(success=False, message=DEFAULT_FAILURE_MESSAGE, id=result.id)
        return result


__all__ = [
    "SubmissionController",
    "SubmitResult",
    "VALIDATION_FAILED_MESSAGE",
]
