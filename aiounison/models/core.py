"""
Core messages for the unison protocol.

This module contains the fundamental messages that establish communication between
clients and the server: the initial handshake, the clock offset probes, the shared
playback state and the track catalog.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Literal

from mashumaro.config import BaseConfig
from mashumaro.mixins.orjson import DataClassORJSONMixin

from .types import ClientMessage, PlaybackMode, Roles, ServerMessage


# Client -> Server: client/hello
@dataclass
class ClientHelloPayload(DataClassORJSONMixin):
    """Information about a connecting client."""

    role: Roles
    """Role this connection acts in."""
    name: str | None = None
    """Optional display name, players may also register it later."""

    class Config(BaseConfig):
        """Config for parsing json messages."""

        omit_none = True


@dataclass
class ClientHelloMessage(ClientMessage):
    """Message sent by the client to identify itself."""

    payload: ClientHelloPayload
    type: Literal["client/hello"] = "client/hello"


# Client -> Server: client/probe
@dataclass
class ClientProbePayload(DataClassORJSONMixin):
    """Clock probe sent by a client."""

    send_time: float
    """Client's local clock in milliseconds when the probe was sent."""


@dataclass
class ClientProbeMessage(ClientMessage):
    """Message sent by the client to measure its clock offset."""

    payload: ClientProbePayload
    type: Literal["client/probe"] = "client/probe"


# Server -> Client: server/probe-reply
@dataclass
class ServerProbeReplyPayload(DataClassORJSONMixin):
    """Reply to a clock probe."""

    send_time: float
    """The send_time of the probe this reply answers, echoed unchanged."""
    reference_time: float
    """Shared clock in milliseconds when the server received the probe."""


@dataclass
class ServerProbeReplyMessage(ServerMessage):
    """Message sent by the server in answer to client/probe."""

    payload: ServerProbeReplyPayload
    type: Literal["server/probe-reply"] = "server/probe-reply"


# Server -> Client: server/state
@dataclass(frozen=True)
class PlaybackState(DataClassORJSONMixin):
    """
    Full snapshot of the shared playback state.

    anchor_time is only set while scheduled or playing, paused_offset only while
    paused. Both are None when idle.
    """

    mode: PlaybackMode = PlaybackMode.IDLE
    """Current mode."""
    track_id: str | None = None
    """Catalog id of the current track, None only when idle."""
    anchor_time: float | None = None
    """Shared clock time in milliseconds of in-track offset zero."""
    paused_offset: float | None = None
    """In-track offset in milliseconds at the moment of pause."""


@dataclass
class ServerStateMessage(ServerMessage):
    """Message sent by the server whenever the playback state changes."""

    payload: PlaybackState
    type: Literal["server/state"] = "server/state"


# Server -> Client: server/tracks
@dataclass(frozen=True)
class Track(DataClassORJSONMixin):
    """A track in the catalog."""

    id: str
    """Catalog identifier."""
    name: str
    """Human readable title."""
    duration: int
    """Duration in milliseconds."""
    asset: str
    """Reference to the local audio asset (e.g. a file name)."""


@dataclass
class ServerTracksPayload(DataClassORJSONMixin):
    """The track catalog."""

    tracks: list[Track]


@dataclass
class ServerTracksMessage(ServerMessage):
    """Message sent by the server after the handshake with the track catalog."""

    payload: ServerTracksPayload
    type: Literal["server/tracks"] = "server/tracks"


# Server -> Client: server/terminated
@dataclass
class ServerTerminatedMessage(ServerMessage):
    """Message sent to a player right before the server closes its connection."""

    type: Literal["server/terminated"] = "server/terminated"
