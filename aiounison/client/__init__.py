"""Public interface for the unison client package."""

from .audio import LocalPlayback
from .client import (
    CommandRejectedCallback,
    PlaylistCallback,
    SessionsCallback,
    StateCallback,
    TerminatedCallback,
    TrackEndedCallback,
    UnisonClient,
)
from .rejoin import (
    HoldAt,
    PlaybackAction,
    ScheduleStart,
    StartAt,
    StopPlayback,
    resolve_playback,
)
from .time_sync import ClockNotSyncedError, ClockSyncError, OffsetEstimator

__all__ = [
    "ClockNotSyncedError",
    "ClockSyncError",
    "CommandRejectedCallback",
    "HoldAt",
    "LocalPlayback",
    "OffsetEstimator",
    "PlaybackAction",
    "PlaylistCallback",
    "ScheduleStart",
    "SessionsCallback",
    "StartAt",
    "StateCallback",
    "StopPlayback",
    "TerminatedCallback",
    "TrackEndedCallback",
    "UnisonClient",
    "resolve_playback",
]
