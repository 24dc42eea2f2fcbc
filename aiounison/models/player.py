"""Player messages for the unison protocol.

This module contains messages specific to clients with the player role. Players
register a display name, report when their audio is armed and tell the server
whether they are currently playing. Controllers receive the resulting session list.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Literal

from mashumaro.config import BaseConfig
from mashumaro.mixins.orjson import DataClassORJSONMixin

from .types import ClientMessage, ServerMessage


# Client -> Server player/register
@dataclass
class PlayerRegisterPayload(DataClassORJSONMixin):
    """Display name chosen on the device."""

    name: str


@dataclass
class PlayerRegisterMessage(ClientMessage):
    """Message sent by the player to set its display name."""

    payload: PlayerRegisterPayload
    type: Literal["player/register"] = "player/register"


# Client -> Server player/armed
@dataclass
class PlayerArmedMessage(ClientMessage):
    """Message sent once local audio is prepared and the user consented to playback."""

    type: Literal["player/armed"] = "player/armed"


# Client -> Server player/state
@dataclass
class PlayerStatePayload(DataClassORJSONMixin):
    """Self-reported playback flag of the player."""

    playing: bool
    paused: bool = False


@dataclass
class PlayerStateMessage(ClientMessage):
    """Message sent by the player whenever its local playback changes."""

    payload: PlayerStatePayload
    type: Literal["player/state"] = "player/state"


# Server -> Client server/sessions
@dataclass
class SessionInfo(DataClassORJSONMixin):
    """One connected player as seen by controllers."""

    id: int
    armed: bool
    playing: bool
    paused: bool
    name: str | None = None

    class Config(BaseConfig):
        """Config for parsing json messages."""

        omit_none = True


@dataclass
class ServerSessionsPayload(DataClassORJSONMixin):
    """All connected players."""

    sessions: list[SessionInfo]


@dataclass
class ServerSessionsMessage(ServerMessage):
    """Message sent to controllers whenever the session registry changes."""

    payload: ServerSessionsPayload
    type: Literal["server/sessions"] = "server/sessions"
