"""Bookkeeping of connected player devices."""

from __future__ import annotations

import itertools
import logging
from collections.abc import Callable
from dataclasses import dataclass

from aiounison.models.player import SessionInfo
from aiounison.models.types import PlaybackFlag

logger = logging.getLogger(__name__)


@dataclass
class DeviceSession:
    """One connected player device. Identity lasts as long as the connection."""

    id: int
    display_name: str | None = None
    armed: bool = False
    playback_flag: PlaybackFlag = PlaybackFlag.NOT_PLAYING

    def to_info(self) -> SessionInfo:
        """Wire representation sent to controllers."""
        return SessionInfo(
            id=self.id,
            name=self.display_name,
            armed=self.armed,
            playing=self.playback_flag is PlaybackFlag.PLAYING,
            paused=self.playback_flag is PlaybackFlag.PAUSED,
        )


class SessionRegistry:
    """
    Tracks player sessions and reports every change through ``on_change``.

    The playback state machine never touches the registry; the registry never
    touches playback state.
    """

    def __init__(self, on_change: Callable[[list[SessionInfo]], None] | None = None) -> None:
        """Create an empty registry."""
        self._sessions: dict[int, DeviceSession] = {}
        self._ids = itertools.count(1)
        self._on_change = on_change

    def add_player(self, name: str | None = None) -> DeviceSession:
        """Create a session with a fresh id."""
        session = DeviceSession(id=next(self._ids), display_name=name)
        self._sessions[session.id] = session
        logger.info("Player session %d joined", session.id)
        self._changed()
        return session

    def remove(self, session_id: int) -> DeviceSession | None:
        """Drop a session; unknown ids are ignored."""
        session = self._sessions.pop(session_id, None)
        if session is None:
            return None
        logger.info("Player session %d (%s) left", session_id, session.display_name)
        self._changed()
        return session

    def rename(self, session_id: int, name: str) -> None:
        """Set the display name reported by the device."""
        session = self._sessions.get(session_id)
        if session is None or session.display_name == name:
            return
        session.display_name = name
        logger.debug("Player session %d registered as %s", session_id, name)
        self._changed()

    def arm(self, session_id: int) -> None:
        """Mark the device as ready for programmatic playback."""
        session = self._sessions.get(session_id)
        if session is None or session.armed:
            return
        session.armed = True
        logger.debug("Player session %d armed", session_id)
        self._changed()

    def report_playback(self, session_id: int, *, playing: bool, paused: bool) -> None:
        """Store the advisory playback flag reported by the device."""
        session = self._sessions.get(session_id)
        if session is None:
            return
        flag = PlaybackFlag.from_report(playing=playing, paused=paused)
        if session.playback_flag is flag:
            return
        session.playback_flag = flag
        self._changed()

    def get(self, session_id: int) -> DeviceSession | None:
        """Return the session with the given id."""
        return self._sessions.get(session_id)

    def listing(self) -> list[SessionInfo]:
        """Full listing in join order."""
        return [session.to_info() for session in self._sessions.values()]

    def __len__(self) -> int:
        """Number of connected players."""
        return len(self._sessions)

    def _changed(self) -> None:
        if self._on_change is not None:
            self._on_change(self.listing())
