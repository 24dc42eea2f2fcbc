"""Unison Client implementation to connect to a Unison Server."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from contextlib import suppress
from types import TracebackType
from typing import Any, Self

from aiohttp import ClientSession, ClientWebSocketResponse, WSMessage, WSMsgType

from aiounison.models.controller import (
    BackCommandMessage,
    CommandRejectedMessage,
    CommandRejectedPayload,
    KickCommandMessage,
    KickCommandPayload,
    PauseCommandMessage,
    ResumeCommandMessage,
    SeekCommandMessage,
    SeekCommandPayload,
    ServerPlaylistMessage,
    ServerPlaylistPayload,
    SetNextOverrideCommandMessage,
    SetNextOverrideCommandPayload,
    SetPlaylistCommandMessage,
    SetPlaylistCommandPayload,
    SkipCommandMessage,
    StartCommandMessage,
    StartCommandPayload,
    StopCommandMessage,
    TrackEndedMessage,
)
from aiounison.models.core import (
    ClientHelloMessage,
    ClientHelloPayload,
    ClientProbeMessage,
    ClientProbePayload,
    PlaybackState,
    ServerProbeReplyMessage,
    ServerStateMessage,
    ServerTerminatedMessage,
    ServerTracksMessage,
    Track,
)
from aiounison.models.player import (
    PlayerArmedMessage,
    PlayerRegisterMessage,
    PlayerRegisterPayload,
    PlayerStateMessage,
    PlayerStatePayload,
    ServerSessionsMessage,
    SessionInfo,
)
from aiounison.models.types import ClientMessage, PlaybackFlag, Roles, ServerMessage

from .audio import LocalPlayback
from .rejoin import (
    HoldAt,
    PlaybackAction,
    ScheduleStart,
    StartAt,
    StopPlayback,
    resolve_playback,
)
from .time_sync import (
    DEFAULT_SAMPLE_COUNT,
    DEFAULT_SYNC_TIMEOUT,
    ClockSyncError,
    OffsetEstimator,
)

logger = logging.getLogger(__name__)

RESYNC_INTERVAL = 60.0
RETRY_SYNC_INTERVAL = 2.0

StateCallback = Callable[[PlaybackState], Awaitable[None] | None]
SessionsCallback = Callable[[list[SessionInfo]], Awaitable[None] | None]
PlaylistCallback = Callable[[ServerPlaylistPayload], Awaitable[None] | None]
TrackEndedCallback = Callable[[str], Awaitable[None] | None]
CommandRejectedCallback = Callable[[CommandRejectedPayload], Awaitable[None] | None]
TerminatedCallback = Callable[[], Awaitable[None] | None]


class UnisonClient:
    """
    Async unison client for players and controllers.

    Players keep their clock offset fresh, and once armed they turn every state
    pushed by the server into a call on their LocalPlayback. Controllers send
    playback commands and follow the session list and playlist.
    """

    def __init__(
        self,
        name: str | None = None,
        *,
        role: Roles = Roles.PLAYER,
        playback: LocalPlayback | None = None,
        session: ClientSession | None = None,
        sample_count: int = DEFAULT_SAMPLE_COUNT,
        sync_timeout: float = DEFAULT_SYNC_TIMEOUT,
        resync_interval: float = RESYNC_INTERVAL,
        local_clock: Callable[[], float] | None = None,
    ) -> None:
        """
        Create a new unison client instance.

        ``local_clock`` returns the local monotonic time in milliseconds and defaults
        to the event loop clock.
        """
        self._name = name
        self._role = role
        self._playback = playback
        self._session = session
        self._owns_session = session is None
        self._sample_count = sample_count
        self._sync_timeout = sync_timeout
        self._resync_interval = resync_interval
        self._loop: asyncio.AbstractEventLoop | None = None
        self._ws: ClientWebSocketResponse | None = None
        self._reader_task: asyncio.Task[None] | None = None
        self._sync_task: asyncio.Task[None] | None = None
        self._send_tasks: set[asyncio.Task[None]] = set()
        self._send_lock = asyncio.Lock()
        self._estimator = OffsetEstimator(self._send_probe, local_clock)
        self._state_received: asyncio.Event | None = None
        self._connected = False
        self._armed = False
        self._terminated = False
        self._state: PlaybackState | None = None
        self._tracks: dict[str, Track] = {}
        self._sessions: list[SessionInfo] = []
        self._playlist: ServerPlaylistPayload | None = None
        self._applied: PlaybackAction | None = None
        self._reported_flag: PlaybackFlag | None = None
        self._state_callbacks: list[StateCallback] = []
        self._sessions_callbacks: list[SessionsCallback] = []
        self._playlist_callbacks: list[PlaylistCallback] = []
        self._track_ended_callbacks: list[TrackEndedCallback] = []
        self._rejected_callbacks: list[CommandRejectedCallback] = []
        self._terminated_callbacks: list[TerminatedCallback] = []

    # ---------------------------------------------------------------------
    # Public API
    # ---------------------------------------------------------------------
    @property
    def connected(self) -> bool:
        """Return True if the client currently has an active connection."""
        return self._connected and self._ws is not None and not self._ws.closed

    @property
    def role(self) -> Roles:
        """Role declared to the server."""
        return self._role

    @property
    def estimator(self) -> OffsetEstimator:
        """Clock offset estimator of this client."""
        return self._estimator

    @property
    def synced(self) -> bool:
        """Return True once a clock sync succeeded."""
        return self._estimator.synced

    @property
    def armed(self) -> bool:
        """Return True once arm() was called."""
        return self._armed

    @property
    def terminated(self) -> bool:
        """Return True if the server removed this client."""
        return self._terminated

    @property
    def state(self) -> PlaybackState | None:
        """Last playback state pushed by the server."""
        return self._state

    @property
    def tracks(self) -> dict[str, Track]:
        """Track catalog by id."""
        return self._tracks

    @property
    def sessions(self) -> list[SessionInfo]:
        """Connected players, only filled for controllers."""
        return self._sessions

    @property
    def playlist(self) -> ServerPlaylistPayload | None:
        """Current playlist, only filled for controllers."""
        return self._playlist

    async def connect(self, url: str) -> None:
        """Connect to a unison server via WebSocket and complete the handshake."""
        if self.connected:
            logger.debug("Already connected")
            return

        self._loop = asyncio.get_running_loop()
        if self._session is None:
            self._session = ClientSession()
        self._state_received = asyncio.Event()
        self._terminated = False

        logger.info("Connecting to unison server at %s", url)
        self._ws = await self._session.ws_connect(url, heartbeat=30)
        self._connected = True
        self._reader_task = self._loop.create_task(self._reader_loop())
        await self._send_json(
            ClientHelloMessage(ClientHelloPayload(role=self._role, name=self._name))
        )

        try:
            await asyncio.wait_for(self._state_received.wait(), timeout=10)
        except TimeoutError as err:
            await self.disconnect()
            raise TimeoutError("Timed out waiting for the playback state") from err

        if self._role is Roles.PLAYER:
            self._sync_task = self._loop.create_task(self._time_sync_loop())
        logger.info("Handshake with server complete")

    async def disconnect(self) -> None:
        """Disconnect from the server and release resources."""
        self._connected = False
        current_task = asyncio.current_task(loop=self._loop) if self._loop else None

        if self._sync_task is not None and self._sync_task is not current_task:
            self._sync_task.cancel()
            with suppress(asyncio.CancelledError):
                await self._sync_task
        self._sync_task = None
        if self._reader_task is not None:
            if self._reader_task is not current_task:
                self._reader_task.cancel()
                with suppress(asyncio.CancelledError):
                    await self._reader_task
            self._reader_task = None
        if self._ws is not None:
            await self._ws.close()
            self._ws = None
        if self._playback is not None and self._applied is not None:
            self._playback.stop()
        if self._owns_session and self._session is not None:
            await self._session.close()
            self._session = None
        self._estimator.reset()
        self._state = None
        self._applied = None
        self._reported_flag = None
        self._sessions = []
        self._playlist = None

    async def sync(self) -> float:
        """
        Measure the clock offset now.

        Raises ClockSyncError if not every probe was answered within the sync
        timeout. Playback that is already running is left alone; a pending scheduled
        start is rescheduled with the new offset.
        """
        offset = await self._estimator.sync(self._sample_count, self._sync_timeout)
        applied = self._applied
        if applied is None:
            await self._apply_state()
        elif isinstance(applied, ScheduleStart):
            now = self._estimator.now()
            if now < applied.start_at:
                self._applied = None
                await self._apply_state()
            else:
                # the scheduled start already happened locally
                self._applied = StartAt(track_id=applied.track_id, offset=now - applied.start_at)
                if self.connected:
                    await self.report_playback(playing=True)
        return offset

    # Player API
    async def register(self, name: str) -> None:
        """Set the display name shown to controllers."""
        self._name = name
        await self._send_json(PlayerRegisterMessage(PlayerRegisterPayload(name=name)))

    async def arm(self) -> None:
        """
        Declare local audio ready and join whatever is playing.

        Call once the asset is loaded and the user allowed playback.
        """
        if self._armed:
            return
        self._armed = True
        await self._send_json(PlayerArmedMessage())
        await self._apply_state()

    async def report_playback(self, *, playing: bool, paused: bool = False) -> None:
        """Send the local playback flag to the server."""
        flag = PlaybackFlag.from_report(playing=playing, paused=paused)
        if flag is self._reported_flag:
            return
        self._reported_flag = flag
        await self._send_json(
            PlayerStateMessage(PlayerStatePayload(playing=playing, paused=paused))
        )

    # Controller API
    async def start(self, track_id: str, delay_ms: int) -> None:
        """Start ``track_id`` in ``delay_ms`` milliseconds."""
        await self._send_json(
            StartCommandMessage(StartCommandPayload(track_id=track_id, delay_ms=delay_ms))
        )

    async def stop(self) -> None:
        """Stop playback."""
        await self._send_json(StopCommandMessage())

    async def pause(self) -> None:
        """Pause playback."""
        await self._send_json(PauseCommandMessage())

    async def resume(self) -> None:
        """Resume paused playback."""
        await self._send_json(ResumeCommandMessage())

    async def seek(self, offset_ms: int, track_id: str | None = None) -> None:
        """Seek to ``offset_ms``, optionally on another track."""
        await self._send_json(
            SeekCommandMessage(SeekCommandPayload(offset_ms=offset_ms, track_id=track_id))
        )

    async def skip(self) -> None:
        """Jump to the next track."""
        await self._send_json(SkipCommandMessage())

    async def back(self) -> None:
        """Restart the track or go to the previous one."""
        await self._send_json(BackCommandMessage())

    async def set_playlist(self, playlist: list[str]) -> None:
        """Replace the playlist."""
        await self._send_json(
            SetPlaylistCommandMessage(SetPlaylistCommandPayload(playlist=playlist))
        )

    async def set_next_override(self, track_id: str | None) -> None:
        """Play ``track_id`` next, or clear the override with None."""
        await self._send_json(
            SetNextOverrideCommandMessage(SetNextOverrideCommandPayload(track_id=track_id))
        )

    async def kick(self, session_id: int) -> None:
        """Disconnect a player."""
        await self._send_json(KickCommandMessage(KickCommandPayload(session_id=session_id)))

    # Listeners
    def add_state_listener(self, callback: StateCallback) -> None:
        """Register a callback invoked on every playback state push."""
        self._state_callbacks.append(callback)

    def add_sessions_listener(self, callback: SessionsCallback) -> None:
        """Register a callback invoked when the session list changes."""
        self._sessions_callbacks.append(callback)

    def add_playlist_listener(self, callback: PlaylistCallback) -> None:
        """Register a callback invoked when the playlist changes."""
        self._playlist_callbacks.append(callback)

    def add_track_ended_listener(self, callback: TrackEndedCallback) -> None:
        """Register a callback invoked when a track reaches its natural end."""
        self._track_ended_callbacks.append(callback)

    def add_command_rejected_listener(self, callback: CommandRejectedCallback) -> None:
        """Register a callback invoked when the server rejects one of our commands."""
        self._rejected_callbacks.append(callback)

    def add_terminated_listener(self, callback: TerminatedCallback) -> None:
        """Register a callback invoked when the server removes this client."""
        self._terminated_callbacks.append(callback)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------
    def _send_probe(self, send_time: float) -> None:
        if not self.connected or self._loop is None:
            return
        message = ClientProbeMessage(ClientProbePayload(send_time=send_time))
        task = self._loop.create_task(self._send_json(message))
        self._send_tasks.add(task)
        task.add_done_callback(self._send_tasks.discard)

    async def _send_json(self, message: ClientMessage) -> None:
        if not self._ws:
            raise RuntimeError("WebSocket is not connected")
        async with self._send_lock:
            await self._ws.send_str(message.to_json())

    async def _reader_loop(self) -> None:
        assert self._ws is not None
        try:
            async for msg in self._ws:
                await self._handle_ws_message(msg)
        except asyncio.CancelledError:  # pragma: no cover - cancellation path
            pass
        except Exception:
            logger.exception("WebSocket reader encountered an error")
        finally:
            if self._connected:
                await self.disconnect()

    async def _handle_ws_message(self, msg: WSMessage) -> None:
        if msg.type is WSMsgType.TEXT:
            await self._handle_json_message(msg.data)
        elif msg.type in (WSMsgType.CLOSE, WSMsgType.CLOSING, WSMsgType.CLOSED):
            logger.info("WebSocket closed by server")
            await self.disconnect()
        elif msg.type is WSMsgType.ERROR:
            logger.error("WebSocket error: %s", self._ws.exception() if self._ws else "unknown")
            await self.disconnect()

    async def _handle_json_message(self, data: str) -> None:
        try:
            message = ServerMessage.from_json(data)
        except Exception:  # noqa: BLE001
            logger.debug("Dropping unparseable server message: %.200s", data)
            return

        match message:
            case ServerProbeReplyMessage(payload=payload):
                self._estimator.handle_reply(payload.send_time, payload.reference_time)
            case ServerStateMessage(payload=payload):
                await self._handle_state(payload)
            case ServerTracksMessage(payload=payload):
                self._tracks = {track.id: track for track in payload.tracks}
            case ServerSessionsMessage(payload=payload):
                self._sessions = payload.sessions
                await self._notify_callbacks(self._sessions_callbacks, payload.sessions)
            case ServerPlaylistMessage(payload=payload):
                self._playlist = payload
                await self._notify_callbacks(self._playlist_callbacks, payload)
            case TrackEndedMessage(payload=payload):
                await self._notify_callbacks(self._track_ended_callbacks, payload.track_id)
            case CommandRejectedMessage(payload=payload):
                logger.warning("Command %s rejected: %s", payload.command.value, payload.reason)
                await self._notify_callbacks(self._rejected_callbacks, payload)
            case ServerTerminatedMessage():
                logger.warning("Removed by the server")
                self._terminated = True
                await self._notify_callbacks(self._terminated_callbacks)
                await self.disconnect()
            case _:
                logger.debug("Unhandled server message type: %s", type(message).__name__)

    async def _handle_state(self, state: PlaybackState) -> None:
        unchanged = state == self._state and self._applied is not None
        self._state = state
        if self._state_received is not None:
            self._state_received.set()
        if not unchanged:
            self._applied = None
            await self._apply_state()
        await self._notify_callbacks(self._state_callbacks, state)

    async def _apply_state(self) -> None:
        """Drive local playback from the last known state, if allowed to."""
        state = self._state
        if self._role is not Roles.PLAYER or state is None or not self._armed:
            return
        if not self._estimator.synced:
            logger.info("Clock not synced yet, holding off playback")
            return
        duration: float | None = None
        if state.track_id is not None:
            track = self._tracks.get(state.track_id)
            if track is None:
                logger.warning("Track %s is not in the catalog", state.track_id)
                return
            duration = track.duration
        action = resolve_playback(state, self._estimator.now(), duration)
        self._applied = action
        if self._playback is not None:
            self._perform(action)
        if self.connected:
            await self.report_playback(
                playing=isinstance(action, StartAt), paused=isinstance(action, HoldAt)
            )

    def _perform(self, action: PlaybackAction) -> None:
        assert self._playback is not None
        match action:
            case StopPlayback():
                logger.debug("Stopping local playback")
                self._playback.stop()
            case ScheduleStart(track_id=track_id, start_at=start_at, start_in=start_in):
                logger.debug("Starting %s in %.0f ms", track_id, start_in)
                self._playback.schedule(self._tracks[track_id], self._estimator.to_local(start_at))
            case StartAt(track_id=track_id, offset=offset):
                logger.debug("Joining %s at %.0f ms", track_id, offset)
                self._playback.start_at(self._tracks[track_id], offset)
            case HoldAt(track_id=track_id, offset=offset):
                logger.debug("Holding %s at %.0f ms", track_id, offset)
                self._playback.hold(self._tracks[track_id], offset)

    async def _time_sync_loop(self) -> None:
        try:
            while self.connected:
                try:
                    await self.sync()
                except ClockSyncError as err:
                    logger.warning("%s", err)
                    await asyncio.sleep(RETRY_SYNC_INTERVAL)
                    continue
                await asyncio.sleep(self._resync_interval)
        except asyncio.CancelledError:  # pragma: no cover - cancellation path
            pass

    async def _notify_callbacks(
        self,
        callbacks: list[Callable[..., Awaitable[None] | None]],
        *args: Any,
    ) -> None:
        for callback in callbacks:
            try:
                result = callback(*args)
                if asyncio.iscoroutine(result):
                    await result
            except Exception:
                logger.exception("Error in client callback %s", callback)

    async def __aenter__(self) -> Self:
        """Enter the async context manager returning this instance."""
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        """Disconnect when leaving the async context manager."""
        await self.disconnect()
