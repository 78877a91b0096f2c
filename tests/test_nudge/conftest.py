"""Shared fixtures for the nudge pipeline tests."""

from __future__ import annotations

from unittest.mock import AsyncMock

import pytest

BASE_TIME = 1_700_000_000.0


class FakeClock:
    """Manually advanced replacement for ``time.time``."""

    def __init__(self, start: float = BASE_TIME) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> float:
        self.now += seconds
        return self.now


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def generate() -> AsyncMock:
    """Stand-in for the language model: always answers with a short hint."""
    return AsyncMock(return_value="Count the total outcomes first.")
