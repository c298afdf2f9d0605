"""Event-to-message reconciliation.

Turns the growing raw event log of a session into the list the UI
renders, plus the optimistic pending message and the transient status
indicator.

Each pass:

    1. drops events whose offset was already seen (at-least-once delivery)
    2. groups the whole log by correlation prefix and derives a status
       for every message event from the latest event in its group
    3. upserts messages into an id-keyed map (never removing ids) and
       re-sorts by offset
    4. clears the pending message when its confirmed copy arrives, in the
       same pass, so no snapshot shows it twice or not at all
    5. recomputes the status indicator from the batch's latest status
       event; a newer agent message clears it
"""

from __future__ import annotations

import logging
from collections import defaultdict

from chatsync.api.models import Event
from chatsync.reconcile.messages import (
    ChatMessage,
    ConfirmedMessage,
    PendingMessage,
    StatusMessage,
    StatusPhrases,
)

logger = logging.getLogger(__name__)


class MessageReconciler:
    """Reconciled conversation state for a single session."""

    def __init__(self, phrases: StatusPhrases | None = None) -> None:
        self._phrases = phrases or StatusPhrases()
        self._events: dict[int, Event] = {}
        self._messages: dict[str, ConfirmedMessage] = {}
        self._ordered: list[ConfirmedMessage] = []
        self._pending: PendingMessage | None = None
        self._status: StatusMessage | None = None
        self._bot_status = "ready"
        self._last_status_offset = -1

    # -- Read-only state ----------------------------------------------------

    @property
    def messages(self) -> list[ConfirmedMessage]:
        """Confirmed messages, ascending by offset, unique by id."""
        return list(self._ordered)

    @property
    def pending_message(self) -> PendingMessage | None:
        return self._pending

    @property
    def status_message(self) -> StatusMessage | None:
        return self._status

    @property
    def bot_status(self) -> str:
        return self._bot_status

    @property
    def event_count(self) -> int:
        return len(self._events)

    def view(self) -> list[ChatMessage]:
        """Render order: confirmed messages, then pending, then status."""
        items: list[ChatMessage] = list(self._ordered)
        if self._pending is not None:
            items.append(self._pending)
        if self._status is not None:
            items.append(self._status)
        return items

    # -- Pending message ----------------------------------------------------

    def add_pending(self, text: str) -> PendingMessage:
        """Show *text* optimistically; replaces any previous pending message."""
        self._pending = PendingMessage(text=text)
        return self._pending

    def clear_pending(self) -> None:
        self._pending = None

    # -- Reconciliation -----------------------------------------------------

    def process_events(self, events: list[Event]) -> bool:
        """Merge a batch into the conversation; returns True if anything changed."""
        fresh: list[Event] = []
        for event in events:
            if event.offset in self._events:
                continue
            self._events[event.offset] = event
            fresh.append(event)
        if not fresh:
            return False

        fresh.sort(key=lambda e: e.offset)
        known_ids = set(self._messages)
        derived = self._derive_messages()

        for message in derived:
            self._messages[message.id] = message
        self._ordered = sorted(self._messages.values(), key=lambda m: m.offset)

        new_messages = [m for m in derived if m.id not in known_ids]
        self._settle_pending(new_messages)
        self._update_status(fresh, new_messages)
        return True

    def _derive_messages(self) -> list[ConfirmedMessage]:
        log = sorted(self._events.values(), key=lambda e: e.offset)

        groups: dict[str, list[Event]] = defaultdict(list)
        for event in log:
            groups[event.correlation_key].append(event)

        message_events = [e for e in log if e.kind == "message"]
        derived: list[ConfirmedMessage] = []
        for i, event in enumerate(message_events):
            if not event.id or event.deleted:
                continue
            latest = groups[event.correlation_key][-1]
            status = latest.status
            if status is None and i + 1 < len(message_events):
                status = "ready"
            derived.append(ConfirmedMessage(
                id=event.id,
                kind=event.kind,
                source=event.source,
                offset=event.offset,
                correlation_id=event.correlation_id or "",
                creation_utc=event.creation_utc,
                data=dict(event.data),
                status=status,
                error=latest.exception if status == "error" else None,
            ))
        return derived

    def _settle_pending(self, new_messages: list[ConfirmedMessage]) -> None:
        if self._pending is None:
            return
        text = self._pending.text
        for message in new_messages:
            if message.source == "customer" and message.text == text:
                logger.debug("Pending message confirmed as %s", message.id)
                self._pending = None
                return

    def _update_status(
        self,
        fresh: list[Event],
        new_messages: list[ConfirmedMessage],
    ) -> None:
        status_events = [e for e in fresh if e.kind == "status"]
        if status_events:
            latest = status_events[-1]
            self._last_status_offset = latest.offset
            self._bot_status = latest.status or "ready"
            text = self.status_text(latest)
            self._status = StatusMessage(text=text, phase=latest.status or "") if text else None

        if self._status is not None and any(
            m.source == "ai_agent" and m.offset > self._last_status_offset
            for m in new_messages
        ):
            self._status = None

    def status_text(self, event: Event) -> str:
        """Display text for a status event; empty when the agent is idle."""
        if event.status == "processing":
            stage = event.stage
            return self._phrases.for_stage(stage) if stage else self._phrases.thinking
        if event.status == "typing":
            return self._phrases.typing
        return ""

    def reset(self) -> None:
        """Forget everything; used when the session is replaced."""
        self._events.clear()
        self._messages.clear()
        self._ordered = []
        self._pending = None
        self._status = None
        self._bot_status = "ready"
        self._last_status_offset = -1
