"""Resumable long-poll loop over a session's event stream.

The engine owns the session's offset cursor and is the only component
that talks to ``GET /sessions/{id}/events``.  Each poll blocks
server-side for up to ``wait_seconds``; when it returns, the next poll
is scheduled after an interval chosen from recent activity (see
``chatsync.polling.intervals``).

Guarantees:

    - at most one fetch in flight per engine (``busy`` flag, checked
      synchronously before a request starts)
    - the cursor only advances, to ``max(offset) + 1`` of each batch,
      and is reset only when the engine is pointed at another session
    - ``stop()`` aborts the in-flight request and cancels the scheduled
      timer, so nothing fires afterwards

Long-poll timeouts (HTTP 504 or a client-side timeout) are expected and
handled with exponential backoff and a shrinking wait budget.  Other
failures are reported on every occurrence and retried after at least
``error_retry_ms``; authentication failures stop the engine.
"""

from __future__ import annotations

import asyncio
import enum
import logging
import math
import time
from typing import Any, Callable, Protocol

from chatsync.api.client import ChatServerClient
from chatsync.api.models import Event
from chatsync.errors import ErrorCategory, classify_error, describe_error
from chatsync.polling.intervals import (
    PollingConfig,
    next_retry_count,
    select_interval,
    timeout_backoff_ms,
    wait_seconds_for,
)

logger = logging.getLogger(__name__)


class PollState(str, enum.Enum):
    IDLE = "idle"
    POLLING = "polling"
    STOPPED = "stopped"


class TimerHandle(Protocol):
    def cancel(self) -> None: ...


class Scheduler(Protocol):
    """Anything with ``call_later``, e.g. an asyncio event loop."""

    def call_later(self, delay: float, callback: Callable[[], Any]) -> TimerHandle: ...


EventsCallback = Callable[[list[Event]], None]
ErrorCallback = Callable[[str], None]


class PollingEngine:
    """Adaptive long-poll loop for one session at a time.

    Parameters
    ----------
    client:
        Chat server client providing ``fetch_events``.
    config:
        Cadence and retry policy.
    on_events:
        Called with every non-empty batch, after the cursor advanced.
    on_error:
        Called with a user-facing message for surfaced failures.
    clock:
        Monotonic clock in seconds.  Injectable for tests.
    scheduler:
        Timer source; defaults to the running event loop.
    """

    def __init__(
        self,
        client: ChatServerClient,
        config: PollingConfig | None = None,
        *,
        on_events: EventsCallback | None = None,
        on_error: ErrorCallback | None = None,
        clock: Callable[[], float] = time.monotonic,
        scheduler: Scheduler | None = None,
    ) -> None:
        self._client = client
        self._config = config or PollingConfig()
        self._on_events = on_events
        self._on_error = on_error
        self._clock = clock
        self._scheduler = scheduler

        self._state = PollState.IDLE
        self._session_id: str | None = None
        self._offset = 0
        self._busy = False
        self._poll_token = 0
        self._task: asyncio.Task[None] | None = None
        self._timer: TimerHandle | None = None
        self._next_delay_ms: int | None = None

        self._bot_status = "ready"
        self._last_user_message_at: float | None = None
        self._last_event_at: float | None = None
        self._retry_count = 0
        self._wait_seconds = self._config.wait_max_s

    # -- Read-only state ----------------------------------------------------

    @property
    def state(self) -> PollState:
        return self._state

    @property
    def is_polling(self) -> bool:
        return self._state is PollState.POLLING

    @property
    def is_busy(self) -> bool:
        return self._busy

    @property
    def session_id(self) -> str | None:
        return self._session_id

    @property
    def offset(self) -> int:
        return self._offset

    @property
    def bot_status(self) -> str:
        return self._bot_status

    @property
    def retry_count(self) -> int:
        return self._retry_count

    @property
    def wait_seconds(self) -> int:
        return self._wait_seconds

    @property
    def next_delay_ms(self) -> int | None:
        """Delay of the most recently scheduled poll."""
        return self._next_delay_ms

    # -- Control ------------------------------------------------------------

    def start(self, session_id: str) -> bool:
        """Begin polling *session_id*; returns False when nothing started.

        Pointing the engine at a different session resets the cursor.
        Must be called from within a running event loop.
        """
        if not session_id or not session_id.strip():
            logger.debug("start skipped: invalid session id")
            return False
        if self._state is PollState.POLLING and session_id == self._session_id:
            logger.debug("start skipped: already polling %s", session_id)
            return False

        self._cancel_timer()
        self._abort_in_flight()
        if session_id != self._session_id:
            self._reset_cursor()
            self._session_id = session_id

        logger.info("Starting polling for session: %s", session_id)
        self._state = PollState.POLLING
        self._begin_poll()
        return True

    def stop(self) -> None:
        """Abort the in-flight request and cancel the scheduled poll."""
        if self._state is PollState.POLLING:
            logger.info("Stopping polling for session: %s", self._session_id)
        self._state = PollState.STOPPED
        self._cancel_timer()
        self._abort_in_flight()

    def reset(self) -> None:
        """Stop and forget the session; used when the session is replaced."""
        self.stop()
        self._session_id = None
        self._reset_cursor()
        self._state = PollState.IDLE

    def update_bot_status(self, status: str) -> None:
        self._bot_status = status

    def mark_user_activity(self) -> None:
        self._last_user_message_at = self._clock()

    def trigger_immediate_poll(self) -> None:
        """Poll now instead of waiting for the scheduled timer.

        Also stamps user activity so the following interval is fast
        even before this poll returns.
        """
        if self._state is not PollState.POLLING or not self._session_id:
            return
        logger.debug("Triggering immediate poll after user action")
        self._cancel_timer()
        self._abort_in_flight()
        self.mark_user_activity()
        self._begin_poll()

    async def join(self) -> None:
        """Wait for the in-flight poll, if any, to finish."""
        task = self._task
        if task is not None and not task.done():
            await asyncio.wait({task})

    def current_interval_ms(self) -> int:
        now = self._clock()
        return select_interval(
            self._config,
            self._bot_status,
            _elapsed_ms(now, self._last_user_message_at),
            _elapsed_ms(now, self._last_event_at),
        )

    # -- Internals ----------------------------------------------------------

    def _reset_cursor(self) -> None:
        self._offset = 0
        self._retry_count = 0
        self._wait_seconds = self._config.wait_max_s
        self._bot_status = "ready"
        self._last_user_message_at = None
        self._last_event_at = None
        self._next_delay_ms = None

    def _begin_poll(self) -> None:
        if self._state is not PollState.POLLING or not self._session_id:
            return
        if self._busy:
            logger.debug("Poll skipped: request already in flight")
            return

        self._busy = True
        self._poll_token += 1
        loop = asyncio.get_running_loop()
        self._task = loop.create_task(self._poll(self._poll_token))

    def _abort_in_flight(self) -> None:
        self._poll_token += 1
        self._busy = False
        task, self._task = self._task, None
        if task is None or task.done():
            return
        try:
            current = asyncio.current_task()
        except RuntimeError:
            current = None
        if task is not current:
            task.cancel()

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _schedule(self, delay_ms: int) -> None:
        self._cancel_timer()
        self._next_delay_ms = delay_ms
        scheduler = self._scheduler or asyncio.get_running_loop()
        self._timer = scheduler.call_later(delay_ms / 1000.0, self._on_timer)

    def _on_timer(self) -> None:
        self._timer = None
        if self._state is PollState.POLLING:
            self._begin_poll()

    async def _poll(self, token: int) -> None:
        session_id = self._session_id
        if session_id is None:
            if token == self._poll_token:
                self._busy = False
            return
        logger.debug(
            "Starting poll: offset=%d wait=%ds", self._offset, self._wait_seconds
        )
        error: Exception | None = None
        events: list[Event] = []
        try:
            events = await self._client.fetch_events(
                session_id, self._offset, self._wait_seconds
            )
        except asyncio.CancelledError:
            if token == self._poll_token:
                self._busy = False
            raise
        except Exception as e:
            error = e

        if token != self._poll_token:
            return
        self._busy = False
        if self._state is not PollState.POLLING:
            return

        if error is not None:
            self._handle_failure(error)
        else:
            self._handle_events(events, token)

    def _handle_events(self, events: list[Event], token: int) -> None:
        if events:
            max_offset = max(e.offset for e in events)
            logger.debug("Received %d events, max offset: %d", len(events), max_offset)
            self._last_event_at = self._clock()
            self._offset = max(self._offset, max_offset + 1)
            self._deliver(events)
        else:
            logger.debug("No new events received")

        self._retry_count = 0
        self._wait_seconds = self._config.wait_max_s

        # The consumer may have stopped or re-triggered us from the callback.
        if token != self._poll_token or self._state is not PollState.POLLING:
            return
        self._schedule(self.current_interval_ms())

    def _handle_failure(self, error: Exception) -> None:
        category = classify_error(error)

        if category is ErrorCategory.TIMEOUT:
            self._retry_count = next_retry_count(self._config, self._retry_count)
            self._wait_seconds = wait_seconds_for(self._config, self._retry_count)
            delay = max(
                self.current_interval_ms(),
                timeout_backoff_ms(self._config, self._retry_count),
            )
            logger.info(
                "Long-poll timeout (attempt %d), retrying in %dms with %ds wait",
                self._retry_count, delay, self._wait_seconds,
            )
            if self._retry_count == 1:
                self._report(f"Failed to fetch events: {describe_error(error)}")
            self._schedule(delay)
            return

        self._retry_count = 0
        self._wait_seconds = self._config.wait_max_s

        if category is ErrorCategory.AUTH:
            logger.error("Polling stopped on authentication failure: %s", error)
            self._report(describe_error(error))
            self.stop()
            return

        logger.error("Error polling events: %s", error)
        delay = max(self.current_interval_ms(), self._config.error_retry_ms)
        self._report(f"Failed to fetch events: {describe_error(error)}")
        self._schedule(delay)

    def _deliver(self, events: list[Event]) -> None:
        if self._on_events is None:
            return
        try:
            self._on_events(events)
        except Exception:
            logger.exception("Event consumer failed")

    def _report(self, message: str) -> None:
        if self._on_error is None:
            return
        try:
            self._on_error(message)
        except Exception:
            logger.exception("Error consumer failed")


def _elapsed_ms(now: float, then: float | None) -> float:
    if then is None:
        return math.inf
    return (now - then) * 1000.0
