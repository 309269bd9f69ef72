"""
Error reporters: best-effort sinks for failure notifications.

Neither reporter ever raises. A failure to log is itself only logged.
"""

import logging

import httpx

from flashdeck.domain.constants import RESPONSIVENESS_TIMEOUT
from flashdeck.domain.interfaces import ErrorReporter
from flashdeck.domain.models import ErrorLogPayload


def _is_complete(payload: ErrorLogPayload) -> bool:
    return bool(payload.path and payload.message)


class LoggingErrorReporter(ErrorReporter):
    """Writes client errors to the local log."""

    def __init__(self):
        self.logger = logging.getLogger(__name__)

    async def report(self, payload: ErrorLogPayload) -> None:
        try:
            if not _is_complete(payload):
                self.logger.warning("Error log missing required fields")
                return
            self.logger.error(
                f"Client error path={payload.path} message={payload.message}"
                + (f"\n{payload.stack}" if payload.stack else "")
            )
        except Exception as e:
            self.logger.warning(f"Failed to log error: {e}")


class HttpErrorReporter(ErrorReporter):
    """POSTs client errors to a remote collector."""

    def __init__(
        self,
        url: str,
        timeout: float = RESPONSIVENESS_TIMEOUT,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.logger = logging.getLogger(__name__)
        self.url = url
        self.timeout = timeout
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    async def report(self, payload: ErrorLogPayload) -> None:
        if not _is_complete(payload):
            self.logger.warning("Error log missing required fields")
            return
        try:
            if self._client is None:
                self._client = httpx.AsyncClient(timeout=self.timeout, transport=self._transport)
            resp = await self._client.post(self.url, json=payload.as_dict())
            resp.raise_for_status()
        except Exception as e:
            self.logger.warning(f"Failed to log error: {e}")

    async def close(self) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None
