"""Session lifecycle: one active conversation per chat.

State machine::

    IDLE ──create──▶ CREATING ──ok──▶ ACTIVE ──replace──▶ IDLE
      │                  └──fail──▶ IDLE                    │
      └──adopt(external id)──────▶ ACTIVE                  │
    any ──close──▶ CLOSED (terminal)

Observers subscribe to ``SessionNotice`` records instead of passing
callbacks through every layer.  Each replacement bumps ``key`` so that
state derived from the old session (messages, polling cursor) can be
torn down and rebuilt rather than silently reused.
"""

from __future__ import annotations

import asyncio
import enum
import logging
from dataclasses import dataclass
from typing import Callable

from chatsync.api.client import ChatServerClient
from chatsync.api.models import Session
from chatsync.errors import SessionError, describe_error
from chatsync.identity.resolver import GUEST_CUSTOMER_ID

logger = logging.getLogger(__name__)


class SessionState(str, enum.Enum):
    IDLE = "idle"
    CREATING = "creating"
    ACTIVE = "active"
    CLOSED = "closed"


class NoticeKind(str, enum.Enum):
    CREATED = "created"
    ADOPTED = "adopted"
    REPLACED = "replaced"
    CLOSED = "closed"
    FAILED = "failed"


@dataclass(frozen=True)
class SessionNotice:
    """Published to observers on every lifecycle transition."""
    kind: NoticeKind
    session_id: str | None
    key: int
    error: str = ""


SessionObserver = Callable[[SessionNotice], None]


class SessionLifecycle:
    """Creates, adopts and replaces the chat's active session.

    Parameters
    ----------
    client:
        Chat server client used for customer and session calls.
    agent_id:
        Agent the session talks to.
    customer_id:
        Customer identifier to bind the session to.  The guest sentinel
        and empty values create anonymous sessions.
    """

    def __init__(
        self,
        client: ChatServerClient,
        agent_id: str,
        customer_id: str | None = None,
    ) -> None:
        self._client = client
        self._agent_id = agent_id
        self._customer_id = customer_id
        self._state = SessionState.IDLE
        self._session_id: str | None = None
        self._key = 0
        self._error = ""
        self._observers: list[SessionObserver] = []

    # -- Read-only state ----------------------------------------------------

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def session_id(self) -> str | None:
        return self._session_id

    @property
    def key(self) -> int:
        return self._key

    @property
    def is_creating(self) -> bool:
        return self._state is SessionState.CREATING

    @property
    def error(self) -> str:
        return self._error

    @property
    def agent_id(self) -> str:
        return self._agent_id

    @property
    def customer_id(self) -> str | None:
        return self._customer_id

    # -- Observers ----------------------------------------------------------

    def subscribe(self, observer: SessionObserver) -> Callable[[], None]:
        """Register *observer*; returns a function that unregisters it."""
        self._observers.append(observer)

        def unsubscribe() -> None:
            if observer in self._observers:
                self._observers.remove(observer)

        return unsubscribe

    def _publish(self, kind: NoticeKind, error: str = "") -> None:
        notice = SessionNotice(kind, self._session_id, self._key, error)
        for observer in list(self._observers):
            try:
                observer(notice)
            except Exception:
                logger.exception("Session observer failed on %s", kind.value)

    # -- Transitions --------------------------------------------------------

    async def create_session(
        self,
        first_message: str | None = None,
        title: str | None = None,
    ) -> str | None:
        """Create a session, optionally posting *first_message* into it.

        Returns the new session id, or ``None`` when a creation is
        already in flight or the context was replaced meanwhile.  Raises
        on creation failure after publishing a ``FAILED`` notice.
        """
        if self._state is SessionState.CLOSED:
            raise SessionError("Session lifecycle is closed")
        if self._state is SessionState.CREATING:
            logger.debug("Session creation already in flight, ignoring request")
            return None

        self._state = SessionState.CREATING
        self._error = ""
        key = self._key

        try:
            customer_ref = await self._bind_customer()
            session = await self._client.create_session(
                agent_id=self._agent_id,
                customer_id=customer_ref,
                title=title,
            )
        except asyncio.CancelledError:
            if key == self._key and self._state is SessionState.CREATING:
                self._state = SessionState.IDLE
            logger.info("Session creation cancelled")
            raise
        except Exception as e:
            if key == self._key:
                self._state = SessionState.IDLE
            self._error = f"Failed to create session: {describe_error(e)}"
            logger.error(self._error)
            self._publish(NoticeKind.FAILED, self._error)
            raise

        if key != self._key:
            # Replaced while the request was in flight: the session belongs
            # to the previous agent/customer context.
            logger.info("Discarding session %s created for a replaced context", session.id)
            return None

        self._session_id = session.id
        self._state = SessionState.ACTIVE
        logger.info("Session created: %s", session.id)
        self._publish(NoticeKind.CREATED)

        if first_message:
            try:
                await self._client.create_event(session.id, first_message)
            except Exception as e:
                logger.warning("Failed to send initial message: %s", e)

        return session.id

    async def _bind_customer(self) -> str | None:
        """Server-side customer id for the session, or ``None`` for guests.

        Lookup failures other than "not found" leave the session
        anonymous instead of aborting creation.
        """
        identifier = (self._customer_id or "").strip()
        if not identifier or identifier == GUEST_CUSTOMER_ID:
            logger.debug("No customer ID provided, creating guest session")
            return None
        try:
            customer = await self._client.ensure_customer(identifier)
            return customer.id
        except Exception as e:
            logger.warning(
                "Failed to handle customer, proceeding with guest session: %s", e
            )
            return None

    def adopt(self, session_id: str) -> None:
        """Take over an existing session without creating one."""
        if not session_id or not session_id.strip():
            raise SessionError("Cannot adopt an empty session id")
        if self._state is SessionState.CLOSED:
            raise SessionError("Session lifecycle is closed")
        if session_id == self._session_id:
            return
        if self._session_id is not None:
            self._key += 1
        self._session_id = session_id
        self._state = SessionState.ACTIVE
        self._error = ""
        logger.info("Loading existing session: %s", session_id)
        self._publish(NoticeKind.ADOPTED)

    def replace_context(
        self,
        agent_id: str | None = None,
        customer_id: str | None = None,
    ) -> bool:
        """Switch agent and/or customer; invalidates the active session.

        Returns True when the context actually changed.
        """
        new_agent = agent_id if agent_id is not None else self._agent_id
        new_customer = customer_id if customer_id is not None else self._customer_id
        if new_agent == self._agent_id and new_customer == self._customer_id:
            return False

        self._agent_id = new_agent
        self._customer_id = new_customer
        if self._session_id is not None or self._state is SessionState.CREATING:
            logger.info(
                "Agent or customer changed - clearing session (agent=%s)", new_agent
            )
            self._invalidate()
        return True

    def _invalidate(self) -> None:
        self._session_id = None
        self._key += 1
        self._state = SessionState.IDLE
        self._publish(NoticeKind.REPLACED)

    def close(self) -> None:
        """End the chat; no further sessions can be created."""
        if self._state is SessionState.CLOSED:
            return
        self._session_id = None
        self._key += 1
        self._state = SessionState.CLOSED
        self._publish(NoticeKind.CLOSED)

    def clear_error(self) -> None:
        self._error = ""

    # -- Session directory --------------------------------------------------

    async def list_sessions(self) -> list[Session]:
        """Sessions of the bound customer, most recent first."""
        customer = self._customer_id
        if not customer or customer == GUEST_CUSTOMER_ID:
            customer = None
        return await self._client.list_sessions(customer)

    async def delete_session(self, session_id: str) -> None:
        """Delete *session_id*; deleting the active session replaces it."""
        await self._client.delete_session(session_id)
        if session_id == self._session_id:
            self._invalidate()
