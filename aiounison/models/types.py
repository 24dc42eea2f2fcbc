"""Models for enum types used by unison."""

from dataclasses import dataclass
from enum import Enum

from mashumaro.config import BaseConfig
from mashumaro.mixins.orjson import DataClassORJSONMixin
from mashumaro.types import Discriminator


# Base message classes
@dataclass
class ClientMessage(DataClassORJSONMixin):
    """Base class for client messages."""

    class Config(BaseConfig):
        """Config for parsing json messages."""

        discriminator = Discriminator(field="type", include_subtypes=True)


@dataclass
class ServerMessage(DataClassORJSONMixin):
    """Base class for server messages."""

    class Config(BaseConfig):
        """Config for parsing json messages."""

        discriminator = Discriminator(field="type", include_subtypes=True)


# Enums


class Roles(Enum):
    """Client roles."""

    PLAYER = "player"
    """
    Plays its own local copy of the current track in sync with the shared clock.

    Reports its name, armed status and playback flag to the server.
    """
    CONTROLLER = "controller"
    """Issues playback commands and sees the list of connected players."""


class PlaybackMode(Enum):
    """Enum for the modes of the shared playback state."""

    IDLE = "idle"
    """Nothing is playing."""
    SCHEDULED = "scheduled"
    """A track starts at an anchor time that may still be in the future."""
    PLAYING = "playing"
    """A track is running; the anchor time is in the past."""
    PAUSED = "paused"
    """A track is held at a fixed in-track offset."""


class PlaybackFlag(Enum):
    """Playback status self-reported by a player device."""

    NOT_PLAYING = "not-playing"
    PLAYING = "playing"
    PAUSED = "paused"

    @classmethod
    def from_report(cls, *, playing: bool, paused: bool) -> "PlaybackFlag":
        """Build the flag from the two booleans sent on the wire."""
        if paused:
            return cls.PAUSED
        if playing:
            return cls.PLAYING
        return cls.NOT_PLAYING


class CommandType(Enum):
    """Controller commands, used when reporting a rejected command."""

    START = "start"
    STOP = "stop"
    PAUSE = "pause"
    RESUME = "resume"
    SEEK = "seek"
    SKIP = "skip"
    BACK = "back"
    SET_PLAYLIST = "set-playlist"
    SET_NEXT_OVERRIDE = "set-next-override"
    KICK = "kick"
