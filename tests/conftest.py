"""Shared fixtures."""

from __future__ import annotations

import pytest

from tests.fakes import FakeClock, FakeScheduler


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def scheduler(clock: FakeClock) -> FakeScheduler:
    return FakeScheduler(clock)
