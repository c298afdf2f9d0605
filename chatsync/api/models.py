"""Wire models for the chat server API.

Server payloads are validated into pydantic models so the rest of the
core works with typed attributes instead of raw dicts.  Unknown fields
are ignored; the server may add fields without breaking the client.
"""

from __future__ import annotations

import logging
import re
from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel, ConfigDict, field_validator

logger = logging.getLogger(__name__)

# Separator between the stable correlation prefix and per-event suffixes.
CORRELATION_SEPARATOR = "::"

MESSAGE_SOURCES = ("customer", "ai_agent", "human_agent")
BOT_STATUSES = ("ready", "processing", "typing", "error")

_SLASH_FORMAT = re.compile(
    r"^(\d{1,2})/(\d{1,2})/(\d{4})\s+(\d{1,2}):(\d{1,2})(?::(\d{1,2}))?$"
)
_DOT_FORMAT = re.compile(
    r"^(\d{1,2})\.(\d{1,2})\.(\d{4})\s+(\d{1,2})\.(\d{1,2})(?:\.(\d{1,2}))?$"
)


def parse_date(value: Any) -> datetime:
    """Parse a server timestamp, tolerating a few non-ISO layouts.

    Accepts ISO 8601 (``Z`` suffix allowed), ``DD/MM/YYYY HH:MM[:SS]``
    and ``DD.MM.YYYY HH.MM[.SS]``.  Naive results are taken as UTC.
    Anything else falls back to the current time with a warning.
    """
    if isinstance(value, datetime):
        parsed = value
    elif not value:
        logger.warning("Empty date string provided to parse_date")
        return datetime.now(timezone.utc)
    else:
        text = str(value).strip()
        parsed = None
        try:
            parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
        except ValueError:
            for pattern in (_SLASH_FORMAT, _DOT_FORMAT):
                m = pattern.match(text)
                if m:
                    day, month, year, hour, minute, second = m.groups()
                    try:
                        parsed = datetime(
                            int(year), int(month), int(day),
                            int(hour), int(minute), int(second or 0),
                        )
                    except ValueError:
                        parsed = None
                    break
        if parsed is None:
            logger.warning("Unparseable date %r, using current time", text)
            return datetime.now(timezone.utc)

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def correlation_key(correlation_id: str | None) -> str:
    """Stable prefix of a correlation id, or ``"unknown"``."""
    if not correlation_id:
        return "unknown"
    return correlation_id.split(CORRELATION_SEPARATOR)[0] or "unknown"


class Event(BaseModel):
    """One append-only record in a session's event log."""

    model_config = ConfigDict(extra="ignore", frozen=True)

    id: str | None = None
    kind: str
    source: str = "system"
    offset: int
    correlation_id: str | None = None
    creation_utc: datetime
    data: dict[str, Any] = {}
    deleted: bool = False

    @field_validator("creation_utc", mode="before")
    @classmethod
    def _lenient_date(cls, v: Any) -> datetime:
        return parse_date(v)

    @field_validator("data", mode="before")
    @classmethod
    def _coerce_data(cls, v: Any) -> dict[str, Any]:
        return v if isinstance(v, dict) else {}

    @property
    def correlation_key(self) -> str:
        return correlation_key(self.correlation_id)

    @property
    def message(self) -> str:
        value = self.data.get("message")
        return value if isinstance(value, str) else ""

    @property
    def status(self) -> str | None:
        value = self.data.get("status")
        return value if isinstance(value, str) and value else None

    @property
    def stage(self) -> str | None:
        nested = self.data.get("data")
        if isinstance(nested, dict):
            stage = nested.get("stage")
            if isinstance(stage, str) and stage:
                return stage
        return None

    @property
    def exception(self) -> str | None:
        value = self.data.get("exception")
        return str(value) if value else None

    @property
    def participant_name(self) -> str | None:
        participant = self.data.get("participant")
        if isinstance(participant, dict):
            return participant.get("display_name")
        return None


class Session(BaseModel):
    """A conversation between one agent and (optionally) one customer."""

    model_config = ConfigDict(extra="ignore")

    id: str
    agent_id: str = ""
    customer_id: str | None = None
    title: str = ""
    created_at: str = ""
    updated_at: str = ""

    @property
    def last_activity(self) -> datetime:
        return parse_date(self.updated_at or self.created_at)


class Customer(BaseModel):
    """A server-side customer record."""

    model_config = ConfigDict(extra="ignore")

    id: str
    name: str = ""
    tags: list[str] = []
