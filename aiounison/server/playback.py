"""Authoritative playback state shared by every connected device."""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from dataclasses import replace

from aiounison.models.core import PlaybackState
from aiounison.models.types import PlaybackMode

from .catalog import TrackCatalog
from .scheduler import AutoAdvanceScheduler

DEFAULT_BACK_THRESHOLD_MS = 5_000
DEFAULT_AUTO_ADVANCE_EPSILON_MS = 200

logger = logging.getLogger(__name__)

IDLE_STATE = PlaybackState()


class PlaybackError(Exception):
    """Base class for commands that were rejected without touching the state."""


class InvalidTransitionError(PlaybackError):
    """The command is not valid in the current playback mode."""


class InvalidCommandError(PlaybackError):
    """The command arguments are invalid."""


class Playlist:
    """Playback order plus a one-shot override for the next track."""

    def __init__(self, track_ids: Iterable[str] = ()) -> None:
        """Create a playlist in the given order."""
        self._track_ids = list(track_ids)
        self.next_override: str | None = None

    @property
    def track_ids(self) -> list[str]:
        """Copy of the track ids in playback order."""
        return list(self._track_ids)

    def replace(self, track_ids: Iterable[str]) -> None:
        """Replace the playback order, keeping the override."""
        self._track_ids = list(track_ids)

    def peek_next(self, current: str | None) -> str | None:
        """Return the track that follows ``current`` without consuming the override."""
        if self.next_override is not None:
            return self.next_override
        if not self._track_ids:
            return None
        index = self._index(current)
        return self._track_ids[(index + 1) % len(self._track_ids)]

    def take_next(self, current: str | None) -> str | None:
        """Return the track that follows ``current``, consuming the override."""
        track_id = self.peek_next(current)
        self.next_override = None
        return track_id

    def previous(self, current: str | None) -> str | None:
        """Return the track before ``current``, wrapping from the first to the last."""
        if not self._track_ids:
            return None
        index = self._index(current)
        if index <= 0:
            return self._track_ids[-1]
        return self._track_ids[index - 1]

    def _index(self, track_id: str | None) -> int:
        if track_id is None or track_id not in self._track_ids:
            return -1
        return self._track_ids.index(track_id)


class PlaybackStateMachine:
    """
    Owns the single PlaybackState instance and applies controller commands to it.

    Every accepted transition replaces the state in one assignment, rearms (or
    cancels) the auto-advance countdown and publishes the new state through
    ``on_state_change``. Rejected transitions raise a PlaybackError subclass, or
    UnknownTrackError from the catalog, before anything is modified.

    All times are milliseconds on the shared clock returned by ``clock``.
    """

    def __init__(
        self,
        catalog: TrackCatalog,
        scheduler: AutoAdvanceScheduler,
        clock: Callable[[], float],
        *,
        playlist: Playlist | None = None,
        back_threshold_ms: float = DEFAULT_BACK_THRESHOLD_MS,
        auto_advance_epsilon_ms: float = DEFAULT_AUTO_ADVANCE_EPSILON_MS,
        on_state_change: Callable[[PlaybackState], None] | None = None,
        on_playlist_change: Callable[[Playlist], None] | None = None,
        on_track_ended: Callable[[str], None] | None = None,
    ) -> None:
        """Create an idle state machine."""
        self._catalog = catalog
        self._scheduler = scheduler
        self._clock = clock
        self._playlist = playlist if playlist is not None else Playlist(catalog.track_ids)
        self.back_threshold_ms = back_threshold_ms
        self.auto_advance_epsilon_ms = auto_advance_epsilon_ms
        self._on_state_change = on_state_change
        self._on_playlist_change = on_playlist_change
        self._on_track_ended = on_track_ended
        self._state = IDLE_STATE

    @property
    def state(self) -> PlaybackState:
        """Current immutable snapshot."""
        return self._state

    @property
    def playlist(self) -> Playlist:
        """The playlist used by skip, back and auto-advance."""
        return self._playlist

    def position(self) -> float | None:
        """In-track offset right now, None when idle."""
        state = self._state
        if state.mode is PlaybackMode.PAUSED:
            return state.paused_offset
        if state.anchor_time is None:
            return None
        return self._clock() - state.anchor_time

    # ------------------------------------------------------------------
    # Primitive transitions
    # ------------------------------------------------------------------
    def start(self, track_id: str, delay_ms: float) -> PlaybackState:
        """Start ``track_id`` after a positive countdown of ``delay_ms``."""
        if delay_ms <= 0:
            raise InvalidCommandError(f"delay_ms must be positive, got {delay_ms}")
        return self._start_track(track_id, delay_ms)

    def pause(self) -> PlaybackState:
        """Freeze the current in-track position."""
        state = self._state
        if state.mode not in (PlaybackMode.SCHEDULED, PlaybackMode.PLAYING):
            raise InvalidTransitionError(f"cannot pause while {state.mode.value}")
        assert state.track_id is not None
        assert state.anchor_time is not None
        duration = self._catalog.get_track(state.track_id).duration
        offset = min(max(self._clock() - state.anchor_time, 0.0), float(duration))
        return self._apply(
            replace(
                state,
                mode=PlaybackMode.PAUSED,
                anchor_time=None,
                paused_offset=offset,
            )
        )

    def resume(self) -> PlaybackState:
        """Continue from the paused position."""
        state = self._state
        if state.mode is not PlaybackMode.PAUSED:
            raise InvalidTransitionError(f"cannot resume while {state.mode.value}")
        assert state.paused_offset is not None
        return self._apply(
            replace(
                state,
                mode=PlaybackMode.PLAYING,
                anchor_time=self._clock() - state.paused_offset,
                paused_offset=None,
            )
        )

    def seek(self, offset_ms: float, track_id: str | None = None) -> PlaybackState:
        """Jump to ``offset_ms``, optionally switching to ``track_id`` first."""
        state = self._state
        if state.mode is PlaybackMode.IDLE:
            raise InvalidTransitionError("cannot seek while idle")
        if offset_ms < 0:
            raise InvalidCommandError(f"offset_ms must not be negative, got {offset_ms}")
        target = track_id if track_id is not None else state.track_id
        assert target is not None
        self._catalog.get_track(target)
        return self._apply(
            PlaybackState(
                mode=PlaybackMode.PLAYING,
                track_id=target,
                anchor_time=self._clock() - offset_ms,
                paused_offset=None,
            )
        )

    def stop(self) -> PlaybackState:
        """Return to idle from any mode."""
        return self._apply(IDLE_STATE)

    # ------------------------------------------------------------------
    # Computed transitions
    # ------------------------------------------------------------------
    def back(self) -> PlaybackState:
        """Restart the current track, or go to the previous one if it barely started."""
        state = self._state
        position = self.position()
        if state.track_id is None or position is None:
            raise InvalidTransitionError("nothing to go back from while idle")
        if position > self.back_threshold_ms:
            logger.debug("Back at %.0f ms: restarting %s", position, state.track_id)
            return self.seek(0)
        previous = self._playlist.previous(state.track_id)
        if previous is None:
            raise InvalidTransitionError("playlist is empty")
        logger.debug("Back at %.0f ms: previous track %s", position, previous)
        return self._start_track(previous, 0)

    def skip(self) -> PlaybackState:
        """Move to the next track right away, as auto-advance would."""
        next_track = self._playlist.peek_next(self._state.track_id)
        if next_track is None:
            raise InvalidTransitionError("playlist is empty")
        self._catalog.get_track(next_track)
        self._take_next()
        return self._start_track(next_track, 0)

    # ------------------------------------------------------------------
    # Playlist
    # ------------------------------------------------------------------
    def set_playlist(self, track_ids: list[str]) -> None:
        """Replace the playlist; every id must be in the catalog."""
        for track_id in track_ids:
            self._catalog.get_track(track_id)
        self._playlist.replace(track_ids)
        logger.info("Playlist set to %s", track_ids)
        self._publish_playlist()

    def set_next_override(self, track_id: str | None) -> None:
        """Play ``track_id`` after the current one, once. None clears it."""
        if track_id is not None:
            self._catalog.get_track(track_id)
        self._playlist.next_override = track_id
        logger.info("Next track override set to %s", track_id)
        self._publish_playlist()

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------
    def _start_track(self, track_id: str, delay_ms: float) -> PlaybackState:
        self._catalog.get_track(track_id)
        return self._apply(
            PlaybackState(
                mode=PlaybackMode.SCHEDULED,
                track_id=track_id,
                anchor_time=self._clock() + delay_ms,
                paused_offset=None,
            )
        )

    def _apply(self, new_state: PlaybackState) -> PlaybackState:
        self._state = new_state
        self._rearm(new_state)
        logger.info(
            "Playback state: %s track=%s anchor=%s paused_offset=%s",
            new_state.mode.value,
            new_state.track_id,
            new_state.anchor_time,
            new_state.paused_offset,
        )
        if self._on_state_change is not None:
            self._on_state_change(new_state)
        return new_state

    def _rearm(self, state: PlaybackState) -> None:
        if (
            state.mode in (PlaybackMode.SCHEDULED, PlaybackMode.PLAYING)
            and state.track_id is not None
            and state.anchor_time is not None
        ):
            duration = self._catalog.get_track(state.track_id).duration
            ends_at = state.anchor_time + duration - self.auto_advance_epsilon_ms
            self._scheduler.arm(ends_at - self._clock(), self._on_track_end)
        else:
            self._scheduler.cancel()

    def _on_track_end(self) -> None:
        ended = self._state.track_id
        if ended is None:
            return
        logger.info("Track %s reached its end", ended)
        if self._on_track_ended is not None:
            self._on_track_ended(ended)
        next_track = self._playlist.peek_next(ended)
        if next_track is None or next_track not in self._catalog:
            if next_track is not None:
                logger.warning("Next track %s is not in the catalog, stopping", next_track)
            self._take_next()
            self.stop()
            return
        self._take_next()
        self._start_track(next_track, 0)

    def _take_next(self) -> None:
        override = self._playlist.next_override
        self._playlist.take_next(self._state.track_id)
        if override is not None:
            self._publish_playlist()

    def _publish_playlist(self) -> None:
        if self._on_playlist_change is not None:
            self._on_playlist_change(self._playlist)
