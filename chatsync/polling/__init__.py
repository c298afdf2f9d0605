from chatsync.polling.engine import PollingEngine, PollState
from chatsync.polling.intervals import (
    IntervalTier,
    PollingConfig,
    select_interval,
    select_tier,
    timeout_backoff_ms,
    wait_seconds_for,
)

__all__ = [
    "PollingEngine",
    "PollState",
    "IntervalTier",
    "PollingConfig",
    "select_interval",
    "select_tier",
    "timeout_backoff_ms",
    "wait_seconds_for",
]
