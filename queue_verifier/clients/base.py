"""Shared ``httpx`` client for the ``/verify/*`` endpoints.

Every request carries the anti-forgery header supplied by the hosting
page and the XHR marker the server uses to answer with JSON.  Transport
failures, timeouts, non-2xx responses and unparseable bodies are all
translated into the verifier exception taxonomy here, so nothing above
this layer needs to know about ``httpx``.

Error mapping:
    httpx.TimeoutException   -> StatusRequestTimeoutError (retried)
    httpx.TransportError     -> NetworkError              (retried)
    non-2xx response         -> ServerResponseError       (retried)
    invalid / non-object JSON -> ContractError            (ends the poll loop)
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, Self

import httpx

from queue_verifier.core.constants import CSRF_HEADER, DEFAULT_REQUEST_TIMEOUT_MS
from queue_verifier.core.exceptions import (
    ContractError,
    NetworkError,
    ServerResponseError,
    StatusRequestTimeoutError,
    VerifierError,
)

if TYPE_CHECKING:
    from types import TracebackType

logger = logging.getLogger("queue_verifier.clients.base")


def translate_http_error(
    exc: httpx.HTTPError,
    *,
    stage: str = "",
    correlation_id: str = "",
) -> VerifierError:
    """Map an ``httpx`` exception onto the verifier taxonomy."""
    if isinstance(exc, httpx.TimeoutException):
        return StatusRequestTimeoutError(
            f"Request timed out: {exc}", stage=stage, correlation_id=correlation_id
        )
    if isinstance(exc, httpx.HTTPStatusError):
        return ServerResponseError(
            exc.response.status_code,
            exc.response.reason_phrase,
            stage=stage,
            correlation_id=correlation_id,
        )
    return NetworkError(f"Network error: {exc}", stage=stage, correlation_id=correlation_id)


class ApiClient:
    """Async JSON client bound to one application base URL.

    Args:
        base_url: Application root (e.g. ``https://app.example.com``).
        csrf_token: Anti-forgery token; an empty token is logged, not rejected.
        timeout_ms: Per-request timeout applied by ``httpx``.
        client: Pre-built ``httpx.AsyncClient`` (tests pass one with a
            ``MockTransport``).  A client passed in is not closed by ``aclose()``.
    """

    def __init__(
        self,
        base_url: str,
        *,
        csrf_token: str = "",
        timeout_ms: int = DEFAULT_REQUEST_TIMEOUT_MS,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._csrf_token = csrf_token
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=httpx.Timeout(timeout_ms / 1000.0))
        if not csrf_token:
            logger.warning("CSRF token not configured | base_url=%s", self._base_url)

    @property
    def base_url(self) -> str:
        return self._base_url

    def _headers(self) -> dict[str, str]:
        headers = {
            "Accept": "application/json",
            "X-Requested-With": "XMLHttpRequest",
        }
        if self._csrf_token:
            headers[CSRF_HEADER] = self._csrf_token
        return headers

    async def request_json(
        self,
        method: str,
        path: str,
        *,
        stage: str,
        params: dict[str, str] | None = None,
        json: dict[str, Any] | None = None,
        correlation_id: str = "",
    ) -> Any:
        """Send a request and return the decoded JSON body.

        An empty body decodes to ``None``.

        Raises:
            NetworkError: On transport failure.
            StatusRequestTimeoutError: When the request times out.
            ServerResponseError: On a non-2xx response.
            ContractError: When the body is not valid JSON.
        """
        url = f"{self._base_url}{path}"
        try:
            response = await self._client.request(
                method, url, params=params, json=json, headers=self._headers()
            )
            response.raise_for_status()
        except httpx.HTTPError as exc:
            raise translate_http_error(exc, stage=stage, correlation_id=correlation_id) from exc

        if not response.content.strip():
            return None
        try:
            return response.json()
        except ValueError as exc:
            msg = f"{stage}: response body is not valid JSON"
            raise ContractError(
                msg,
                stage=stage,
                code="RESPONSE_CONTRACT_VIOLATION",
                correlation_id=correlation_id,
            ) from exc

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self) -> Self:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.aclose()
