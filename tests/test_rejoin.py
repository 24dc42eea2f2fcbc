from __future__ import annotations

import pytest

from aiounison.client.rejoin import (
    HoldAt,
    ScheduleStart,
    StartAt,
    StopPlayback,
    resolve_playback,
)
from aiounison.models.core import PlaybackState
from aiounison.models.types import PlaybackMode

NOW = 2_000_000.0


def test_idle_stops() -> None:
    assert resolve_playback(PlaybackState(), NOW) == StopPlayback()


def test_late_join_starts_mid_track() -> None:
    state = PlaybackState(mode=PlaybackMode.PLAYING, track_id="a", anchor_time=NOW - 30_000)

    action = resolve_playback(state, NOW, duration=60_000)

    assert isinstance(action, StartAt)
    assert action.track_id == "a"
    assert action.offset == pytest.approx(30_000)


def test_future_anchor_schedules_start() -> None:
    state = PlaybackState(mode=PlaybackMode.SCHEDULED, track_id="b", anchor_time=NOW + 3_000)

    action = resolve_playback(state, NOW, duration=60_000)

    assert action == ScheduleStart(track_id="b", start_at=NOW + 3_000, start_in=3_000)


def test_scheduled_state_past_anchor_plays() -> None:
    state = PlaybackState(mode=PlaybackMode.SCHEDULED, track_id="b", anchor_time=NOW - 100)

    assert resolve_playback(state, NOW) == StartAt(track_id="b", offset=100)


def test_paused_holds_at_offset_regardless_of_time() -> None:
    state = PlaybackState(mode=PlaybackMode.PAUSED, track_id="c", paused_offset=12_500)

    assert resolve_playback(state, NOW) == HoldAt(track_id="c", offset=12_500)
    assert resolve_playback(state, NOW + 60_000) == HoldAt(track_id="c", offset=12_500)


def test_finished_track_stops() -> None:
    state = PlaybackState(mode=PlaybackMode.PLAYING, track_id="a", anchor_time=NOW - 60_000)

    assert resolve_playback(state, NOW, duration=60_000) == StopPlayback()
    assert resolve_playback(state, NOW - 1, duration=60_000) == StartAt(
        track_id="a", offset=59_999
    )


def test_repeated_resolution_only_differs_by_elapsed_time() -> None:
    state = PlaybackState(mode=PlaybackMode.PLAYING, track_id="a", anchor_time=NOW - 10_000)

    first = resolve_playback(state, NOW, duration=60_000)
    again = resolve_playback(state, NOW, duration=60_000)
    later = resolve_playback(state, NOW + 250, duration=60_000)

    assert first == again
    assert isinstance(first, StartAt)
    assert isinstance(later, StartAt)
    assert later.offset - first.offset == pytest.approx(250)
