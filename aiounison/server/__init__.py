"""
Unison Server implementation coordinating synchronized playback on many devices.

UnisonServer is the single authority of the system, responsible for:
- Tracking connected players and controllers
- Holding the shared playback state and turning commands into anchor times
- Advancing to the next track when the current one ends
"""

__all__ = [
    "AutoAdvanceScheduler",
    "Client",
    "ControllerClient",
    "DeviceSession",
    "InvalidCommandError",
    "InvalidTransitionError",
    "PlaybackError",
    "PlaybackStateChangedEvent",
    "PlaybackStateMachine",
    "Playlist",
    "SessionRegistry",
    "SessionsChangedEvent",
    "TrackCatalog",
    "UnisonEvent",
    "UnisonServer",
    "UnisonServerConfig",
    "UnknownTrackError",
]

from .catalog import TrackCatalog, UnknownTrackError
from .client import Client
from .controller import ControllerClient
from .playback import (
    InvalidCommandError,
    InvalidTransitionError,
    PlaybackError,
    PlaybackStateMachine,
    Playlist,
)
from .registry import DeviceSession, SessionRegistry
from .scheduler import AutoAdvanceScheduler
from .server import (
    PlaybackStateChangedEvent,
    SessionsChangedEvent,
    UnisonEvent,
    UnisonServer,
    UnisonServerConfig,
)
