"""Helpers for clients supporting the controller role."""

from __future__ import annotations

from typing import TYPE_CHECKING

from aiounison.models.controller import (
    BackCommandMessage,
    CommandRejectedMessage,
    CommandRejectedPayload,
    KickCommandMessage,
    PauseCommandMessage,
    ResumeCommandMessage,
    SeekCommandMessage,
    SetNextOverrideCommandMessage,
    SetPlaylistCommandMessage,
    SkipCommandMessage,
    StartCommandMessage,
    StopCommandMessage,
)
from aiounison.models.types import ClientMessage, CommandType

from .catalog import UnknownTrackError
from .playback import InvalidCommandError, PlaybackError

if TYPE_CHECKING:
    from .client import Client


class ControllerClient:
    """Encapsulates controller role behaviour for a client."""

    def __init__(self, client: Client) -> None:
        """Attach to a client that declared the controller role."""
        self.client = client
        self._logger = client._logger.getChild("controller")  # noqa: SLF001

    def handle_command(self, message: ClientMessage) -> None:
        """
        Apply a playback command to the shared state.

        Rejected commands leave the state untouched and are reported back to this
        controller only.
        """
        command = _command_type(message)
        self._logger.debug("Received %s command", command.value)
        try:
            self._dispatch(message)
        except (PlaybackError, UnknownTrackError) as err:
            self._logger.info("Rejected %s command: %s", command.value, err)
            self.client.send_message(
                CommandRejectedMessage(CommandRejectedPayload(command=command, reason=str(err)))
            )

    def _dispatch(self, message: ClientMessage) -> None:
        server = self.client._server  # noqa: SLF001
        playback = server.playback
        match message:
            case StartCommandMessage(payload):
                playback.start(payload.track_id, payload.delay_ms)
            case StopCommandMessage():
                playback.stop()
            case PauseCommandMessage():
                playback.pause()
            case ResumeCommandMessage():
                playback.resume()
            case SeekCommandMessage(payload):
                playback.seek(payload.offset_ms, payload.track_id)
            case SkipCommandMessage():
                playback.skip()
            case BackCommandMessage():
                playback.back()
            case SetPlaylistCommandMessage(payload):
                playback.set_playlist(payload.playlist)
            case SetNextOverrideCommandMessage(payload):
                playback.set_next_override(payload.track_id)
            case KickCommandMessage(payload):
                if not server.kick(payload.session_id):
                    raise InvalidCommandError(f"no player session {payload.session_id}")
            case _:
                raise InvalidCommandError(f"unsupported command {type(message).__name__}")


def _command_type(message: ClientMessage) -> CommandType:
    match message:
        case StartCommandMessage():
            return CommandType.START
        case StopCommandMessage():
            return CommandType.STOP
        case PauseCommandMessage():
            return CommandType.PAUSE
        case ResumeCommandMessage():
            return CommandType.RESUME
        case SeekCommandMessage():
            return CommandType.SEEK
        case SkipCommandMessage():
            return CommandType.SKIP
        case BackCommandMessage():
            return CommandType.BACK
        case SetPlaylistCommandMessage():
            return CommandType.SET_PLAYLIST
        case SetNextOverrideCommandMessage():
            return CommandType.SET_NEXT_OVERRIDE
        case KickCommandMessage():
            return CommandType.KICK
    raise ValueError(f"Not a controller command: {type(message).__name__}")
