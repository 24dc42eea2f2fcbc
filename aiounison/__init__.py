"""Unison: synchronized playback of local audio on many devices."""

from __future__ import annotations

# Re-export client library for easy import
from aiounison.client import (
    ClockNotSyncedError,
    ClockSyncError,
    HoldAt,
    LocalPlayback,
    OffsetEstimator,
    PlaybackAction,
    ScheduleStart,
    StartAt,
    StopPlayback,
    UnisonClient,
    resolve_playback,
)

__all__ = [
    "ClockNotSyncedError",
    "ClockSyncError",
    "HoldAt",
    "LocalPlayback",
    "OffsetEstimator",
    "PlaybackAction",
    "ScheduleStart",
    "StartAt",
    "StopPlayback",
    "UnisonClient",
    "resolve_playback",
]
