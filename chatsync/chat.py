"""Chat controller: the composition root of the synchronization core.

Wires identity resolution, the session lifecycle, the polling engine and
the message reconciler together.  Components talk through lifecycle
notices and plain method calls rather than callbacks threaded through
every layer:

    lifecycle notice CREATED/ADOPTED  -> poller.start(session_id)
    lifecycle notice REPLACED         -> poller.reset(), reconciler.reset()
    poller batch                      -> reconciler.process_events()
    reconciler bot status             -> poller.update_bot_status()
    poller / send failures            -> ErrorChannel

Usage::

    controller = ChatController.from_settings(auto_create=True)
    await controller.start()
    await controller.send_message("Hello")
    view = controller.snapshot()
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable

from chatsync.api.client import ChatServerClient
from chatsync.api.models import Event
from chatsync.errors import SessionError, describe_error
from chatsync.identity.resolver import (
    GUEST_CUSTOMER_ID,
    CustomerIdentity,
    resolve_customer,
)
from chatsync.polling.engine import PollingEngine, Scheduler
from chatsync.polling.intervals import PollingConfig
from chatsync.reconcile.engine import MessageReconciler
from chatsync.reconcile.messages import (
    ChatMessage,
    ConfirmedMessage,
    PendingMessage,
    StatusMessage,
    StatusPhrases,
)
from chatsync.session.lifecycle import NoticeKind, SessionLifecycle, SessionNotice
from chatsync.transport.http import ClientConfig

logger = logging.getLogger(__name__)


class ErrorChannel:
    """Holds the single user-visible error string."""

    def __init__(self) -> None:
        self._message = ""
        self._subscribers: list[Callable[[str], None]] = []

    @property
    def message(self) -> str:
        return self._message

    def set(self, message: str) -> None:
        self._message = message
        self._notify()

    def dismiss(self) -> None:
        if not self._message:
            return
        self._message = ""
        self._notify()

    def subscribe(self, subscriber: Callable[[str], None]) -> Callable[[], None]:
        self._subscribers.append(subscriber)

        def unsubscribe() -> None:
            if subscriber in self._subscribers:
                self._subscribers.remove(subscriber)

        return unsubscribe

    def _notify(self) -> None:
        for subscriber in list(self._subscribers):
            try:
                subscriber(self._message)
            except Exception:
                logger.exception("Error channel subscriber failed")


@dataclass(frozen=True)
class ChatSnapshot:
    """Everything a presentation layer needs to render the chat."""

    session_id: str | None
    messages: list[ConfirmedMessage] = field(default_factory=list)
    pending: PendingMessage | None = None
    status: StatusMessage | None = None
    bot_status: str = "ready"
    error: str = ""
    is_creating: bool = False
    is_polling: bool = False

    @property
    def items(self) -> list[ChatMessage]:
        """Render order: confirmed, then pending, then status."""
        items: list[ChatMessage] = list(self.messages)
        if self.pending is not None:
            items.append(self.pending)
        if self.status is not None:
            items.append(self.status)
        return items


class ChatController:
    """One chat window's worth of synchronization state.

    Parameters
    ----------
    client:
        Chat server client shared by the lifecycle and the poller.
    agent_id:
        Agent the chat talks to.
    customer:
        Resolved customer identity; defaults to the guest identity.
    session_id:
        Existing session to adopt on ``start()``.
    auto_create:
        Create a session on ``start()`` when none is adopted.
    polling:
        Polling cadence and retry policy.
    phrases:
        Display strings for the status indicator.
    clock, scheduler:
        Forwarded to the polling engine.
    """

    def __init__(
        self,
        client: ChatServerClient,
        agent_id: str,
        *,
        customer: CustomerIdentity | None = None,
        session_id: str | None = None,
        auto_create: bool = False,
        polling: PollingConfig | None = None,
        phrases: StatusPhrases | None = None,
        clock: Callable[[], float] = time.monotonic,
        scheduler: Scheduler | None = None,
    ) -> None:
        self._client = client
        self._customer = customer or CustomerIdentity(GUEST_CUSTOMER_ID)
        self._initial_session_id = session_id
        self._auto_create = auto_create

        self.errors = ErrorChannel()
        self.lifecycle = SessionLifecycle(client, agent_id, self._customer.customer_id)
        self.reconciler = MessageReconciler(phrases)
        self.poller = PollingEngine(
            client,
            polling,
            on_events=self._on_events,
            on_error=self.errors.set,
            clock=clock,
            scheduler=scheduler,
        )
        self._view_key = self.lifecycle.key
        self._listeners: list[Callable[[ChatSnapshot], None]] = []
        self._unsubscribe = self.lifecycle.subscribe(self._on_notice)

    @classmethod
    def from_settings(cls, settings: Any = None, **kwargs: Any) -> "ChatController":
        """Build a controller from ``CHATSYNC_*`` settings."""
        if settings is None:
            from chatsync.config.settings import settings as default_settings
            settings = default_settings

        customer = resolve_customer(
            customer_id=settings.CUSTOMER_ID or None,
            customer_name=settings.CUSTOMER_NAME or None,
            token=settings.AUTH_TOKEN or None,
            provider=settings.AUTH_PROVIDER,
            guest_id=settings.GUEST_CUSTOMER_ID,
        )
        client = ChatServerClient(ClientConfig.from_settings(settings))
        kwargs.setdefault("customer", customer)
        kwargs.setdefault("session_id", settings.SESSION_ID or None)
        kwargs.setdefault("polling", PollingConfig.from_settings(settings))
        return cls(client, settings.AGENT_ID, **kwargs)

    @property
    def client(self) -> ChatServerClient:
        return self._client

    @property
    def customer(self) -> CustomerIdentity:
        return self._customer

    @property
    def session_id(self) -> str | None:
        return self.lifecycle.session_id

    # -- Operations ---------------------------------------------------------

    async def start(self) -> str | None:
        """Adopt the configured session or create one; returns its id."""
        if self.lifecycle.session_id is not None:
            return self.lifecycle.session_id
        if self._initial_session_id:
            self.lifecycle.adopt(self._initial_session_id)
        elif self._auto_create:
            await self.create_session()
        return self.lifecycle.session_id

    async def create_session(self) -> str | None:
        """Create a session; failures go to the error channel."""
        try:
            return await self.lifecycle.create_session()
        except Exception:
            self.errors.set(self.lifecycle.error)
            return None

    def load_session(self, session_id: str) -> None:
        """Switch the chat to an existing session."""
        self.lifecycle.adopt(session_id)

    async def replace_context(
        self,
        agent_id: str | None = None,
        customer: CustomerIdentity | None = None,
    ) -> bool:
        """Point the chat at another agent or customer.

        The active session is discarded; a new one is created right away
        when ``auto_create`` is set.
        """
        if customer is not None:
            self._customer = customer
        changed = self.lifecycle.replace_context(
            agent_id=agent_id,
            customer_id=customer.customer_id if customer is not None else None,
        )
        if changed and self._auto_create and self.lifecycle.session_id is None:
            await self.create_session()
        return changed

    async def send_message(self, text: str) -> str | None:
        """Send *text*, creating a session first when there is none.

        Returns ``None`` on success (or for blank input) and the original
        text on failure so the caller can put it back into the input.
        """
        message = text.strip()
        if not message:
            return None

        self.poller.mark_user_activity()
        self.reconciler.add_pending(message)
        self._changed()

        try:
            session_id = self.lifecycle.session_id
            if session_id is None:
                session_id = await self.lifecycle.create_session()
                if session_id is None:
                    raise SessionError("No active session")
            await self._client.create_event(session_id, message)
        except Exception as e:
            logger.error("Failed to send message: %s", e)
            self.reconciler.clear_pending()
            self.errors.set(f"Failed to send message: {describe_error(e)}")
            self._changed()
            return text

        self.poller.trigger_immediate_poll()
        return None

    def dismiss_error(self) -> None:
        self.errors.dismiss()
        self.lifecycle.clear_error()

    def snapshot(self) -> ChatSnapshot:
        return ChatSnapshot(
            session_id=self.lifecycle.session_id,
            messages=self.reconciler.messages,
            pending=self.reconciler.pending_message,
            status=self.reconciler.status_message,
            bot_status=self.reconciler.bot_status,
            error=self.errors.message,
            is_creating=self.lifecycle.is_creating,
            is_polling=self.poller.is_polling,
        )

    def subscribe(self, listener: Callable[[ChatSnapshot], None]) -> Callable[[], None]:
        """Call *listener* with a fresh snapshot whenever the view changes."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    async def aclose(self) -> None:
        """Stop polling, close the lifecycle and release the transport."""
        self.poller.stop()
        self.lifecycle.close()
        self._unsubscribe()
        await self.poller.join()
        await self._client.aclose()

    # -- Wiring -------------------------------------------------------------

    def _on_notice(self, notice: SessionNotice) -> None:
        logger.debug("Session notice: %s (key=%d)", notice.kind.value, notice.key)

        if notice.kind in (NoticeKind.CREATED, NoticeKind.ADOPTED):
            if notice.key != self._view_key:
                self._reset_view(notice.key)
            if notice.session_id:
                self.poller.start(notice.session_id)
        elif notice.kind is NoticeKind.REPLACED:
            self.poller.reset()
            self._reset_view(notice.key)
        elif notice.kind is NoticeKind.CLOSED:
            self.poller.stop()
        self._changed()

    def _reset_view(self, key: int) -> None:
        self.reconciler.reset()
        self._view_key = key

    def _on_events(self, events: list[Event]) -> None:
        changed = self.reconciler.process_events(events)
        self.poller.update_bot_status(self.reconciler.bot_status)
        if changed:
            self._changed()

    def _changed(self) -> None:
        if not self._listeners:
            return
        snapshot = self.snapshot()
        for listener in list(self._listeners):
            try:
                listener(snapshot)
            except Exception:
                logger.exception("Chat listener failed")
