"""HTTP transport for the chat server.

Thin wrapper around ``httpx.AsyncClient`` that gives the rest of the
core a single contract::

    data = await transport.request("/sessions", method="POST", payload={...})

It injects bearer auth, decodes JSON bodies, and turns every failure
into a typed ``TransportError`` so callers can classify it without
inspecting message strings.  Cancelling the awaiting task aborts the
request in flight.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any

import httpx

from chatsync.errors import (
    AuthenticationError,
    ConnectionFailedError,
    GatewayTimeoutError,
    NotFoundError,
    PermissionDeniedError,
    RequestTimeoutError,
    ServerError,
    TransportError,
)

logger = logging.getLogger(__name__)


@dataclass
class ClientConfig:
    """Connection settings for the chat server."""

    server_url: str = "http://localhost:8800"
    auth_token: str = ""
    timeout_seconds: float = 30.0

    @classmethod
    def from_settings(cls, settings: Any) -> "ClientConfig":
        return cls(
            server_url=settings.SERVER_URL,
            auth_token=settings.AUTH_TOKEN,
            timeout_seconds=settings.REQUEST_TIMEOUT,
        )


def auth_headers(auth_token: str = "") -> dict[str, str]:
    """Default request headers, with bearer auth when a token is set."""
    headers = {"Content-Type": "application/json"}
    if auth_token:
        headers["Authorization"] = f"Bearer {auth_token}"
    return headers


class HttpTransport:
    """Async JSON-over-HTTP transport.

    Parameters
    ----------
    config:
        Server URL, bearer token and default timeout.
    transport:
        Optional ``httpx`` transport, e.g. ``httpx.MockTransport`` in tests.
    """

    def __init__(
        self,
        config: ClientConfig | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._config = config or ClientConfig()
        self._base_url = self._config.server_url.rstrip("/")
        self._transport = transport
        self._http: httpx.AsyncClient | None = None

    @property
    def base_url(self) -> str:
        return self._base_url

    @property
    def auth_token(self) -> str:
        return self._config.auth_token

    def _client(self) -> httpx.AsyncClient:
        if self._http is None or self._http.is_closed:
            self._http = httpx.AsyncClient(
                base_url=self._base_url,
                headers=auth_headers(self._config.auth_token),
                timeout=self._config.timeout_seconds,
                transport=self._transport,
            )
        return self._http

    async def request(
        self,
        path: str,
        *,
        method: str = "GET",
        params: dict[str, Any] | None = None,
        payload: Any = None,
        timeout: float | None = None,
    ) -> Any:
        """Perform one request and return the decoded JSON body.

        Non-JSON success responses decode to ``{}``.  ``timeout`` is in
        seconds and overrides the configured default for this call only.
        """
        client = self._client()
        kwargs: dict[str, Any] = {}
        if params:
            kwargs["params"] = {k: v for k, v in params.items() if v is not None}
        if payload is not None and method.upper() != "GET":
            kwargs["json"] = payload
        if timeout is not None:
            kwargs["timeout"] = timeout

        logger.debug("%s %s params=%s", method.upper(), path, kwargs.get("params"))
        try:
            resp = await client.request(method.upper(), path, **kwargs)
        except httpx.TimeoutException as e:
            raise RequestTimeoutError("Request timeout") from e
        except httpx.ConnectError as e:
            raise ConnectionFailedError(
                f"Cannot connect to chat server at {self._base_url}: {e}"
            ) from e
        except httpx.HTTPError as e:
            raise TransportError(f"Request failed: {e}") from e

        if resp.is_error:
            raise _error_for_response(resp)

        content_type = resp.headers.get("content-type", "")
        if "application/json" not in content_type:
            return {}
        try:
            return resp.json()
        except ValueError as e:
            raise ServerError(
                f"Invalid JSON response: {e}", resp.status_code
            ) from e

    async def aclose(self) -> None:
        if self._http is not None:
            await self._http.aclose()
            self._http = None

    async def __aenter__(self) -> "HttpTransport":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()


def _error_for_response(resp: httpx.Response) -> TransportError:
    """Build the typed error for a non-2xx response."""
    status = resp.status_code
    if status == 401:
        return AuthenticationError(
            "Authentication failed: Invalid or expired token. Please log in again.",
            status,
        )
    if status == 403:
        return PermissionDeniedError(
            "Access denied: You do not have permission to perform this action.",
            status,
        )
    if status == 504:
        return GatewayTimeoutError("Gateway timeout: 504", status)

    try:
        body = resp.json()
    except ValueError:
        body = {"message": resp.reason_phrase}
    detail = json.dumps(body, default=str)
    if status == 404:
        return NotFoundError(f"HTTP 404: {detail}", status)
    return ServerError(f"HTTP {status}: {detail}", status)
