from __future__ import annotations

from collections.abc import Callable

import pytest

from aiounison.models.core import Track
from aiounison.server.catalog import TrackCatalog


class FakeClock:
    """Manually advanced millisecond clock."""

    def __init__(self, now: float = 1_000_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, ms: float) -> None:
        self.now += ms


class FakeScheduler:
    """Records the countdown instead of arming a timer."""

    def __init__(self) -> None:
        self.delay_ms: float | None = None
        self._callback: Callable[[], None] | None = None

    @property
    def armed(self) -> bool:
        return self._callback is not None

    def arm(self, delay_ms: float, callback: Callable[[], None]) -> None:
        self.delay_ms = delay_ms
        self._callback = callback

    def cancel(self) -> None:
        self.delay_ms = None
        self._callback = None

    def fire(self) -> None:
        callback = self._callback
        assert callback is not None
        self.cancel()
        callback()


def make_tracks() -> list[Track]:
    return [
        Track(id="a", name="Track A", duration=60_000, asset="a.mp3"),
        Track(id="b", name="Track B", duration=120_000, asset="b.mp3"),
        Track(id="c", name="Track C", duration=30_000, asset="c.mp3"),
    ]


@pytest.fixture
def catalog() -> TrackCatalog:
    return TrackCatalog(make_tracks())


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def scheduler() -> FakeScheduler:
    return FakeScheduler()
