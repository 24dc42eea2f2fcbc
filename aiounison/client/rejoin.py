"""Decide what local playback should do for a given shared playback state."""

from __future__ import annotations

from dataclasses import dataclass

from aiounison.models.core import PlaybackState
from aiounison.models.types import PlaybackMode


@dataclass(frozen=True, slots=True)
class StopPlayback:
    """Silence local playback."""


@dataclass(frozen=True, slots=True)
class ScheduleStart:
    """Start the track from its beginning at a future shared time."""

    track_id: str
    start_at: float
    """Shared clock time of in-track offset zero."""
    start_in: float
    """Milliseconds from now until the start."""


@dataclass(frozen=True, slots=True)
class StartAt:
    """Start the track right away at an in-track offset (late join)."""

    track_id: str
    offset: float


@dataclass(frozen=True, slots=True)
class HoldAt:
    """Keep the track stopped at an in-track offset."""

    track_id: str
    offset: float


PlaybackAction = StopPlayback | ScheduleStart | StartAt | HoldAt


def resolve_playback(
    state: PlaybackState, now: float, duration: float | None = None
) -> PlaybackAction:
    """
    Compute the local playback action for ``state`` at shared time ``now``.

    The result only depends on the arguments. The in-track offset is always derived
    from the anchor, so two calls a few milliseconds apart describe the same running
    track and differ only by the elapsed time.

    A track whose end already passed resolves to StopPlayback; the server moves on
    to the next track right around that time anyway.
    """
    match state.mode:
        case PlaybackMode.IDLE:
            return StopPlayback()
        case PlaybackMode.PAUSED:
            assert state.track_id is not None
            assert state.paused_offset is not None
            return HoldAt(track_id=state.track_id, offset=state.paused_offset)
        case PlaybackMode.SCHEDULED | PlaybackMode.PLAYING:
            assert state.track_id is not None
            assert state.anchor_time is not None
            delta = now - state.anchor_time
            if delta < 0:
                return ScheduleStart(
                    track_id=state.track_id, start_at=state.anchor_time, start_in=-delta
                )
            if duration is not None and delta >= duration:
                return StopPlayback()
            return StartAt(track_id=state.track_id, offset=delta)
    raise ValueError(f"Unknown playback mode: {state.mode}")
