"""Adaptive polling cadence and long-poll timeout backoff.

Pure functions over a ``PollingConfig`` so the policy can be tested
without a running loop.  All intervals are in milliseconds, all
long-poll wait budgets in seconds.

Interval tiers, evaluated before each next poll:

    ACTIVE     bot processing/typing, or user/event activity < recency window
    NORMAL     last user message < idle threshold
    IDLE       last user message < very-idle threshold
    VERY_IDLE  otherwise
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Any


class IntervalTier(str, enum.Enum):
    ACTIVE = "active"
    NORMAL = "normal"
    IDLE = "idle"
    VERY_IDLE = "very_idle"


ACTIVE_BOT_STATUSES = frozenset({"processing", "typing"})


@dataclass
class PollingConfig:
    """Polling cadence and retry policy."""

    active_ms: int = 50
    normal_ms: int = 1000
    idle_ms: int = 3000
    very_idle_ms: int = 5000

    recent_activity_ms: int = 5000
    idle_threshold_ms: int = 10000
    very_idle_threshold_ms: int = 30000

    wait_max_s: int = 30
    wait_min_s: int = 10
    wait_step_s: int = 5
    max_retries: int = 5
    backoff_base_ms: int = 5000
    backoff_cap_ms: int = 30000
    error_retry_ms: int = 5000

    @classmethod
    def from_settings(cls, settings: Any) -> "PollingConfig":
        return cls(
            active_ms=settings.POLL_ACTIVE_MS,
            normal_ms=settings.POLL_NORMAL_MS,
            idle_ms=settings.POLL_IDLE_MS,
            very_idle_ms=settings.POLL_VERY_IDLE_MS,
            recent_activity_ms=settings.POLL_RECENT_ACTIVITY_MS,
            idle_threshold_ms=settings.POLL_IDLE_THRESHOLD_MS,
            very_idle_threshold_ms=settings.POLL_VERY_IDLE_THRESHOLD_MS,
            wait_max_s=settings.POLL_WAIT_MAX_S,
            wait_min_s=settings.POLL_WAIT_MIN_S,
            wait_step_s=settings.POLL_WAIT_STEP_S,
            max_retries=settings.POLL_MAX_RETRIES,
            backoff_base_ms=settings.POLL_BACKOFF_BASE_MS,
            backoff_cap_ms=settings.POLL_BACKOFF_CAP_MS,
            error_retry_ms=settings.POLL_ERROR_RETRY_MS,
        )

    def interval_for(self, tier: IntervalTier) -> int:
        return {
            IntervalTier.ACTIVE: self.active_ms,
            IntervalTier.NORMAL: self.normal_ms,
            IntervalTier.IDLE: self.idle_ms,
            IntervalTier.VERY_IDLE: self.very_idle_ms,
        }[tier]


def select_tier(
    config: PollingConfig,
    bot_status: str,
    since_user_message_ms: float,
    since_last_event_ms: float,
) -> IntervalTier:
    """Pick the cadence tier from bot status and elapsed activity times."""
    if bot_status in ACTIVE_BOT_STATUSES:
        return IntervalTier.ACTIVE
    if (
        since_user_message_ms < config.recent_activity_ms
        or since_last_event_ms < config.recent_activity_ms
    ):
        return IntervalTier.ACTIVE
    if since_user_message_ms < config.idle_threshold_ms:
        return IntervalTier.NORMAL
    if since_user_message_ms < config.very_idle_threshold_ms:
        return IntervalTier.IDLE
    return IntervalTier.VERY_IDLE


def select_interval(
    config: PollingConfig,
    bot_status: str,
    since_user_message_ms: float,
    since_last_event_ms: float,
) -> int:
    """Milliseconds to wait before the next poll."""
    tier = select_tier(config, bot_status, since_user_message_ms, since_last_event_ms)
    return config.interval_for(tier)


def next_retry_count(config: PollingConfig, retry_count: int) -> int:
    return min(retry_count + 1, config.max_retries)


def wait_seconds_for(config: PollingConfig, retry_count: int) -> int:
    """Server-side wait budget after *retry_count* consecutive timeouts.

    Shrinks from ``wait_max_s`` by ``wait_step_s`` per retry down to
    ``wait_min_s``: 30, 25, 20, 15, 10, 10, ...
    """
    return max(config.wait_min_s, config.wait_max_s - retry_count * config.wait_step_s)


def timeout_backoff_ms(config: PollingConfig, retry_count: int) -> int:
    """Exponential backoff after a long-poll timeout, capped."""
    if retry_count < 1:
        return 0
    return min(config.backoff_base_ms * 2 ** (retry_count - 1), config.backoff_cap_ms)
