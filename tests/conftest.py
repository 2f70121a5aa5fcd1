"""Shared fixtures for governance layer tests.

Time is driven by a fake millisecond clock and a recording sleep so that
backoff schedules can be asserted without real waiting.
"""

import asyncio

import pytest


class FakeClock:
    """Callable clock returning epoch milliseconds under test control."""

    def __init__(self, start: float = 1_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, ms: float) -> None:
        self.now += ms


class RecordingSleep:
    """Sleep replacement that records requested delays in seconds.

    With ``advance=True`` each sleep also moves the fake clock forward by
    the requested delay, as a real wait would.
    """

    def __init__(self, clock: FakeClock, advance: bool = False):
        self.clock = clock
        self.advance = advance
        self.delays: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)
        if self.advance:
            self.clock.advance(seconds * 1000)
        await asyncio.sleep(0)

    @property
    def delays_ms(self) -> list[float]:
        return [round(d * 1000) for d in self.delays]


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def sleep(clock):
    """Recording sleep that leaves the clock untouched."""
    return RecordingSleep(clock)


@pytest.fixture
def advancing_sleep(clock):
    """Recording sleep that advances the clock by each delay."""
    return RecordingSleep(clock, advance=True)
