"""Error taxonomy for the chat synchronization core.

Every failure the core can observe is mapped onto one of these types so
callers can decide whether to surface or absorb it:

    - ``TokenError``: malformed bearer token (absorbed, caller falls back to guest)
    - ``TransportError``: a failed HTTP exchange, with subclasses for
      auth (401/403), missing resources (404), gateway and client timeouts,
      other server errors, and connection failures
    - ``SessionError``: session creation failed or no active session

``classify_error`` collapses any exception into an ``ErrorCategory`` that
the controller and polling engine use for their propagation policy.
"""

from __future__ import annotations

import enum


class ErrorCategory(str, enum.Enum):
    """Propagation classes for failures seen by the core."""

    TIMEOUT = "timeout"      # expected long-poll behaviour, absorbed
    AUTH = "auth"            # surfaced verbatim, never retried
    IDENTITY = "identity"    # degrades to guest, logged only
    SESSION = "session"      # surfaced, creation may be retried
    NETWORK = "network"      # surfaced, retried by the poller


class ChatSyncError(Exception):
    """Base class for all errors raised by chatsync."""


class TokenError(ChatSyncError):
    """Raised when a bearer token cannot be decoded into claims."""


class SessionError(ChatSyncError):
    """Raised when a session cannot be created or is not available."""


class TransportError(ChatSyncError):
    """Raised when an HTTP exchange with the chat server fails.

    Parameters
    ----------
    message:
        Human-readable description, suitable for the error channel.
    status:
        HTTP status code, or ``None`` when no response was received.
    """

    category: ErrorCategory = ErrorCategory.NETWORK

    def __init__(self, message: str, status: int | None = None) -> None:
        super().__init__(message)
        self.status = status

    @property
    def is_timeout(self) -> bool:
        return self.category is ErrorCategory.TIMEOUT


class AuthenticationError(TransportError):
    """HTTP 401: token missing, invalid or expired."""

    category = ErrorCategory.AUTH


class PermissionDeniedError(TransportError):
    """HTTP 403: token valid but not allowed to perform the action."""

    category = ErrorCategory.AUTH


class NotFoundError(TransportError):
    """HTTP 404."""


class GatewayTimeoutError(TransportError):
    """HTTP 504: the proxy gave up on a long-poll before the server did."""

    category = ErrorCategory.TIMEOUT


class RequestTimeoutError(TransportError):
    """The client-side timeout elapsed before a response arrived."""

    category = ErrorCategory.TIMEOUT


class ServerError(TransportError):
    """Any other non-2xx response."""


class ConnectionFailedError(TransportError):
    """The server could not be reached at all."""


def classify_error(exc: BaseException) -> ErrorCategory:
    """Map an exception onto the propagation taxonomy."""
    if isinstance(exc, TransportError):
        return exc.category
    if isinstance(exc, TokenError):
        return ErrorCategory.IDENTITY
    if isinstance(exc, SessionError):
        return ErrorCategory.SESSION
    return ErrorCategory.NETWORK


def describe_error(exc: BaseException) -> str:
    """Return the message shown to the user for *exc*."""
    text = str(exc)
    return text or "Unknown error"
