"""Chat server API client: sessions, events and customers.

All methods are coroutines over a shared ``HttpTransport`` and return
validated wire models.  Errors surface as the typed ``TransportError``
hierarchy; this layer does no retrying of its own.

Usage::

    client = ChatServerClient(ClientConfig(server_url="https://chat.example"))
    session = await client.create_session(agent_id="agent-1")
    await client.create_event(session.id, "Hello")
    events = await client.fetch_events(session.id, min_offset=0, wait_for_data=30)
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Iterable

from chatsync.api.models import Customer, Event, Session
from chatsync.errors import NotFoundError, SessionError
from chatsync.transport.http import ClientConfig, HttpTransport

logger = logging.getLogger(__name__)

# Extra client-side budget on top of the server's long-poll wait.
LONG_POLL_GRACE_SECONDS = 10
PING_TIMEOUT_SECONDS = 3.0


class ChatServerClient:
    """Async client for the chat server REST API.

    Parameters
    ----------
    config:
        Connection settings; ignored when *transport* is given.
    transport:
        Pre-built transport, shared with other components.
    """

    def __init__(
        self,
        config: ClientConfig | None = None,
        transport: HttpTransport | None = None,
    ) -> None:
        self._transport = transport or HttpTransport(config)

    @property
    def transport(self) -> HttpTransport:
        return self._transport

    # -- Sessions -----------------------------------------------------------

    async def create_session(
        self,
        agent_id: str,
        customer_id: str | None = None,
        title: str | None = None,
        allow_greeting: bool = False,
    ) -> Session:
        """Create a new session and return it.

        Raises ``SessionError`` when the server answers without an id.
        """
        now = datetime.now(timezone.utc).isoformat()
        payload: dict[str, Any] = {
            "agent_id": agent_id,
            "allow_greeting": allow_greeting,
            "title": title or f"Chat Session {now}",
        }
        if customer_id:
            payload["customer_id"] = customer_id

        data = await self._transport.request("/sessions", method="POST", payload=payload)
        if not isinstance(data, dict) or not data.get("id"):
            raise SessionError("Session was not created - no ID returned")
        return Session.model_validate(data)

    async def list_sessions(self, customer_id: str | None = None) -> list[Session]:
        """List sessions, most recently active first."""
        data = await self._transport.request(
            "/sessions", params={"customer_id": customer_id}
        )
        sessions = [Session.model_validate(item) for item in _as_list(data)]
        sessions.sort(key=lambda s: s.last_activity, reverse=True)
        return sessions

    async def delete_session(self, session_id: str) -> None:
        await self._transport.request(f"/sessions/{session_id}", method="DELETE")

    # -- Events -------------------------------------------------------------

    async def fetch_events(
        self,
        session_id: str,
        min_offset: int = 0,
        wait_for_data: int = 60,
    ) -> list[Event]:
        """Long-poll for events at or after *min_offset*.

        The server holds the request up to *wait_for_data* seconds and
        answers with an empty list when nothing new arrived.
        """
        data = await self._transport.request(
            f"/sessions/{session_id}/events",
            params={"min_offset": min_offset, "wait_for_data": wait_for_data},
            timeout=float(wait_for_data + LONG_POLL_GRACE_SECONDS),
        )
        return [Event.model_validate(item) for item in _as_list(data)]

    async def create_event(
        self,
        session_id: str,
        message: str,
        kind: str = "message",
        source: str = "customer",
    ) -> Event | None:
        """Append an event (by default a customer message) to a session."""
        data = await self._transport.request(
            f"/sessions/{session_id}/events",
            method="POST",
            payload={"kind": kind, "source": source, "message": message},
        )
        if isinstance(data, dict) and "offset" in data:
            return Event.model_validate(data)
        return None

    # -- Customers ----------------------------------------------------------

    async def retrieve_customer(self, customer_id: str) -> Customer:
        data = await self._transport.request(f"/customers/{customer_id}")
        return Customer.model_validate(data)

    async def list_customers(self) -> list[Customer]:
        data = await self._transport.request("/customers")
        return [Customer.model_validate(item) for item in _as_list(data)]

    async def create_customer(self, name: str, tags: Iterable[str] = ()) -> Customer:
        data = await self._transport.request(
            "/customers", method="POST", payload={"name": name, "tags": list(tags)}
        )
        return Customer.model_validate(data)

    async def ensure_customer(self, identifier: str) -> Customer:
        """Return the customer for *identifier*, creating it when missing.

        The identifier is tried as a customer id first, then matched
        against customer names.  Any failure other than "not found"
        propagates to the caller.
        """
        try:
            customer = await self.retrieve_customer(identifier)
            logger.debug("Customer exists: %s", customer.id)
            return customer
        except NotFoundError:
            pass

        for customer in await self.list_customers():
            if customer.name == identifier:
                logger.debug("Found customer by name: %s", customer.id)
                return customer

        logger.info("Customer not found, creating: %s", identifier[:8])
        return await self.create_customer(identifier)

    # -- Health -------------------------------------------------------------

    async def ping(self) -> bool:
        """True when the server answers ``GET /agents`` within 3 seconds."""
        try:
            await self._transport.request("/agents", timeout=PING_TIMEOUT_SECONDS)
            return True
        except Exception as e:
            logger.warning("Backend ping failed: %s", e)
            return False

    async def aclose(self) -> None:
        await self._transport.aclose()


def _as_list(data: Any) -> list[dict[str, Any]]:
    if isinstance(data, list):
        return [item for item in data if isinstance(item, dict)]
    return []
