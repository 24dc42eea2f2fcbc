"""Models for the unison synchronized playback protocol."""

from __future__ import annotations

__all__ = [
    "ClientMessage",
    "CommandType",
    "PlaybackFlag",
    "PlaybackMode",
    "PlaybackState",
    "Roles",
    "ServerMessage",
    "Track",
    "controller",
    "core",
    "player",
    "types",
]

from . import controller, core, player, types
from .core import PlaybackState, Track
from .types import (
    ClientMessage,
    CommandType,
    PlaybackFlag,
    PlaybackMode,
    Roles,
    ServerMessage,
)
