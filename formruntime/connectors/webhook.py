"""Webhook connector: POST the submission as JSON to an HTTP endpoint.

Failed requests (transport errors, timeouts, non-2xx responses) are retried
with exponential back-off: ``retry_delay * 2 ** attempt`` seconds between
attempts. The connector never raises; the outcome is a SubmitResult.
"""

import asyncio
import logging
from typing import Any, Dict, Mapping, Optional

import httpx

from formruntime.connectors.base import BaseConnector
from formruntime.submission import SubmitResult
from formruntime.types import FileHandle

logger = logging.getLogger(__name__)

DEFAULT_HEADERS = {"Content-Type": "application/json"}


def _jsonable(value: Any) -> Any:
    """Make a snapshot JSON-serializable (file handles become metadata)."""
    if isinstance(value, FileHandle):
        return value.to_dict()
    if isinstance(value, Mapping):
        return {k: _jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_jsonable(v) for v in value]
    return value


class WebhookConnector(BaseConnector):
    """Send submissions to a webhook.

    Args:
        url: Endpoint to call
        method: HTTP method, POST by default
        headers: Request headers, JSON content type by default
        retry_attempts: Total number of attempts (at least 1)
        retry_delay: Base delay in seconds before the first retry
        timeout: Per-request timeout in seconds
        transport: Optional httpx transport (e.g. httpx.MockTransport)
    """

    def __init__(
        self,
        url: Optional[str] = None,
        method: str = "POST",
        headers: Optional[Mapping[str, str]] = None,
        retry_attempts: int = 3,
        retry_delay: float = 1.0,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        super().__init__({"url": url, "method": method.upper()})
        self.url = url
        self.method = method.upper()
        self.headers = dict(headers) if headers is not None else dict(DEFAULT_HEADERS)
        self.retry_attempts = max(1, retry_attempts)
        self.retry_delay = retry_delay
        self.timeout = timeout
        self.transport = transport

    async def submit(self, data: Dict[str, Any]) -> SubmitResult:
        if not self.url:
            return SubmitResult(success=False, message="Webhook URL is required")
        checked = await self.validate(data)
        if not checked["valid"]:
            return SubmitResult(success=False, message=checked["errors"][0]["message"])

        last_error = ""
        for attempt in range(self.retry_attempts):
            try:
                body = await self._request(data)
            except httpx.TimeoutException:
                last_error = "Request timeout"
            except httpx.HTTPStatusError as exc:
                last_error = f"HTTP {exc.response.status_code}: {exc.response.reason_phrase}"
            except httpx.RequestError as exc:
                last_error = str(exc) or type(exc).__name__
            else:
                logger.info("Webhook %s %s succeeded on attempt %d", self.method, self.url, attempt + 1)
                return SubmitResult(success=True, message="Data submitted successfully", id=_response_id(body))

            logger.warning("Webhook attempt %d/%d to %s failed: %s",
                           attempt + 1, self.retry_attempts, self.url, last_error)
            if attempt < self.retry_attempts - 1:
                await asyncio.sleep(self.retry_delay * 2 ** attempt)

        return SubmitResult(
            success=False,
            message=f"Failed after {self.retry_attempts} attempts: {last_error}",
        )

    async def _request(self, data: Dict[str, Any]) -> Dict[str, Any]:
        async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
            response = await client.request(
                self.method,
                self.url,
                json=_jsonable(data),
                headers=self.headers,
            )
            response.raise_for_status()
            if "application/json" in response.headers.get("content-type", ""):
                try:
                    body = response.json()
                except ValueError:
                    logger.warning("Ignoring malformed JSON response from %s", self.url)
                    return {}
                return body if isinstance(body, dict) else {}
            return {}


def _response_id(body: Mapping[str, Any]) -> Optional[str]:
    identifier = body.get("id")
    if identifier is None and isinstance(body.get("data"), Mapping):
        identifier = body["data"].get("id")
    return None if identifier is None else str(identifier)


__all__ = [
    "WebhookConnector",
]
