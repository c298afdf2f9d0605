"""View-model message types.

Three kinds of record reach the presentation layer, kept apart rather
than forced into one id-keyed structure:

    ConfirmedMessage   a server event, keyed by id, ordered by offset
    PendingMessage     the optimistic local copy of an outgoing message
    StatusMessage      the transient "thinking"/"typing" indicator
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Union


def _now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class ConfirmedMessage:
    id: str
    kind: str
    source: str
    offset: int
    correlation_id: str
    creation_utc: datetime
    data: dict[str, Any]
    status: str | None = None
    error: str | None = None

    @property
    def text(self) -> str:
        value = self.data.get("message")
        return value if isinstance(value, str) else ""

    @property
    def participant_name(self) -> str | None:
        participant = self.data.get("participant")
        if isinstance(participant, dict):
            return participant.get("display_name")
        return None


@dataclass(frozen=True)
class PendingMessage:
    text: str
    correlation_id: str = field(default_factory=lambda: f"temp-{uuid.uuid4().hex[:12]}")
    created_at: datetime = field(default_factory=_now)
    kind: str = "message"
    source: str = "customer"
    server_status: str = "pending"
    id: None = None
    status: None = None


@dataclass(frozen=True)
class StatusMessage:
    text: str
    phase: str                  # processing | typing
    created_at: datetime = field(default_factory=_now)
    id: str = "status-bubble"
    kind: str = "message"
    source: str = "ai_agent"
    offset: int = -1
    correlation_id: str = "status"
    is_status_message: bool = True


ChatMessage = Union[ConfirmedMessage, PendingMessage, StatusMessage]


@dataclass
class StatusPhrases:
    """Display strings for agent activity.

    ``stages`` maps a normalized stage key (lower-case, trailing ``...``
    removed) to a display string; unknown stages are shown as given with
    an ellipsis appended.
    """

    thinking: str = "Thinking..."
    typing: str = "Typing..."
    stages: dict[str, str] = field(default_factory=dict)

    def for_stage(self, stage: str) -> str:
        key = stage.lower().replace("...", "").strip()
        if key in self.stages:
            return self.stages[key]
        return stage if stage.endswith("...") else f"{stage}..."
