"""
Controller messages for the unison protocol.

This module contains messages specific to clients with the controller role, which
enables remote control of the shared playback. Controller clients send playback
commands, edit the playlist and may remove misbehaving players.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Literal

from mashumaro.config import BaseConfig
from mashumaro.mixins.orjson import DataClassORJSONMixin

from .types import ClientMessage, CommandType, ServerMessage


# Client -> Server: command/start
@dataclass
class StartCommandPayload(DataClassORJSONMixin):
    """Start a track after a countdown."""

    track_id: str
    """Catalog id of the track to start."""
    delay_ms: int
    """Countdown in milliseconds, must be positive."""


@dataclass
class StartCommandMessage(ClientMessage):
    """Message sent by the controller to start a track."""

    payload: StartCommandPayload
    type: Literal["command/start"] = "command/start"


# Client -> Server: command/stop, command/pause, command/resume, command/skip, command/back
@dataclass
class StopCommandMessage(ClientMessage):
    """Message sent by the controller to stop playback."""

    type: Literal["command/stop"] = "command/stop"


@dataclass
class PauseCommandMessage(ClientMessage):
    """Message sent by the controller to pause playback."""

    type: Literal["command/pause"] = "command/pause"


@dataclass
class ResumeCommandMessage(ClientMessage):
    """Message sent by the controller to resume paused playback."""

    type: Literal["command/resume"] = "command/resume"


@dataclass
class SkipCommandMessage(ClientMessage):
    """Message sent by the controller to jump to the next playlist track."""

    type: Literal["command/skip"] = "command/skip"


@dataclass
class BackCommandMessage(ClientMessage):
    """Message sent by the controller to restart or go to the previous track."""

    type: Literal["command/back"] = "command/back"


# Client -> Server: command/seek
@dataclass
class SeekCommandPayload(DataClassORJSONMixin):
    """Jump to an in-track offset, optionally on another track."""

    offset_ms: int
    """In-track offset in milliseconds."""
    track_id: str | None = None
    """Track to switch to, the current track if not set."""

    class Config(BaseConfig):
        """Config for parsing json messages."""

        omit_none = True


@dataclass
class SeekCommandMessage(ClientMessage):
    """Message sent by the controller to seek."""

    payload: SeekCommandPayload
    type: Literal["command/seek"] = "command/seek"


# Client -> Server: command/set-playlist
@dataclass
class SetPlaylistCommandPayload(DataClassORJSONMixin):
    """Replace the playlist."""

    playlist: list[str]
    """Track ids in playback order."""


@dataclass
class SetPlaylistCommandMessage(ClientMessage):
    """Message sent by the controller to replace the playlist."""

    payload: SetPlaylistCommandPayload
    type: Literal["command/set-playlist"] = "command/set-playlist"


# Client -> Server: command/set-next-override
@dataclass
class SetNextOverrideCommandPayload(DataClassORJSONMixin):
    """Play this track next, once, instead of the playlist successor."""

    track_id: str | None = None
    """Track to play next, None clears a pending override."""


@dataclass
class SetNextOverrideCommandMessage(ClientMessage):
    """Message sent by the controller to set or clear the next-track override."""

    payload: SetNextOverrideCommandPayload
    type: Literal["command/set-next-override"] = "command/set-next-override"


# Client -> Server: command/kick
@dataclass
class KickCommandPayload(DataClassORJSONMixin):
    """Disconnect a player."""

    session_id: int


@dataclass
class KickCommandMessage(ClientMessage):
    """Message sent by the controller to disconnect a player."""

    payload: KickCommandPayload
    type: Literal["command/kick"] = "command/kick"


# Server -> Client: server/playlist
@dataclass
class ServerPlaylistPayload(DataClassORJSONMixin):
    """Current playlist."""

    playlist: list[str]
    next_override: str | None = None


@dataclass
class ServerPlaylistMessage(ServerMessage):
    """Message sent to controllers whenever the playlist or override changes."""

    payload: ServerPlaylistPayload
    type: Literal["server/playlist"] = "server/playlist"


# Server -> Client: track/ended
@dataclass
class TrackEndedPayload(DataClassORJSONMixin):
    """The track that reached its natural end."""

    track_id: str


@dataclass
class TrackEndedMessage(ServerMessage):
    """Message sent to controllers right before auto-advance moves on."""

    payload: TrackEndedPayload
    type: Literal["track/ended"] = "track/ended"


# Server -> Client: server/command-rejected
@dataclass
class CommandRejectedPayload(DataClassORJSONMixin):
    """Why a controller command was not applied."""

    command: CommandType
    reason: str


@dataclass
class CommandRejectedMessage(ServerMessage):
    """Message sent only to the controller whose command was rejected."""

    payload: CommandRejectedPayload
    type: Literal["server/command-rejected"] = "server/command-rejected"
