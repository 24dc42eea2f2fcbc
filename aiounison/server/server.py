"""Unison Server implementation to coordinate synchronized playback across many devices."""

from __future__ import annotations

import asyncio
import logging
import uuid
from collections.abc import Callable, Coroutine
from dataclasses import dataclass, field

from aiohttp import web

from aiounison.models.controller import (
    ServerPlaylistMessage,
    ServerPlaylistPayload,
    TrackEndedMessage,
    TrackEndedPayload,
)
from aiounison.models.core import (
    PlaybackState,
    ServerStateMessage,
    ServerTracksMessage,
    ServerTracksPayload,
)
from aiounison.models.player import ServerSessionsMessage, ServerSessionsPayload, SessionInfo
from aiounison.models.types import ServerMessage

from .catalog import TrackCatalog
from .client import Client
from .playback import (
    DEFAULT_AUTO_ADVANCE_EPSILON_MS,
    DEFAULT_BACK_THRESHOLD_MS,
    PlaybackStateMachine,
    Playlist,
)
from .registry import SessionRegistry
from .scheduler import AutoAdvanceScheduler

DEFAULT_PATH = "/unison"
MAX_PENDING_MSG = 512

logger = logging.getLogger(__name__)


@dataclass
class UnisonServerConfig:
    """Tunable parameters of a UnisonServer."""

    server_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    server_name: str = "Unison"
    back_threshold_ms: float = DEFAULT_BACK_THRESHOLD_MS
    """Back restarts the current track once it has played longer than this."""
    auto_advance_epsilon_ms: float = DEFAULT_AUTO_ADVANCE_EPSILON_MS
    """Auto-advance fires this long before the natural end of the track."""
    max_pending_messages: int = MAX_PENDING_MSG
    """Outgoing queue size per connection before the connection is dropped."""
    path: str = DEFAULT_PATH
    """WebSocket endpoint path."""


class UnisonEvent:
    """Base event type used by UnisonServer.add_event_listener()."""


@dataclass
class PlaybackStateChangedEvent(UnisonEvent):
    """The shared playback state changed."""

    state: PlaybackState


@dataclass
class SessionsChangedEvent(UnisonEvent):
    """A player joined, left or updated its session data."""

    sessions: list[SessionInfo]


class UnisonServer:
    """
    Unison Server implementation to connect to and coordinate many devices.

    The server owns the single playback state, the session registry and the
    playlist. Everything runs on one event loop, so command handling is serialized.
    Every change is pushed in full to the relevant connections: the playback state
    to everyone, sessions and playlist to controllers only.
    """

    _clients: set[Client]
    loop: asyncio.AbstractEventLoop
    _event_cbs: list[Callable[[UnisonEvent], Coroutine[None, None, None]]]
    _app: web.Application | None
    _runner: web.AppRunner | None
    _site: web.TCPSite | None

    def __init__(
        self,
        loop: asyncio.AbstractEventLoop,
        catalog: TrackCatalog,
        config: UnisonServerConfig | None = None,
        *,
        playlist: list[str] | None = None,
    ) -> None:
        """Initialize a new Unison Server."""
        self.loop = loop
        self.config = config or UnisonServerConfig()
        self.catalog = catalog
        self._clients = set()
        self._event_cbs = []
        self._app = None
        self._runner = None
        self._site = None
        if playlist is not None:
            for track_id in playlist:
                catalog.get_track(track_id)
        self.registry = SessionRegistry(on_change=self._on_sessions_change)
        self.scheduler = AutoAdvanceScheduler(loop)
        self.playback = PlaybackStateMachine(
            catalog,
            self.scheduler,
            self.clock,
            playlist=Playlist(playlist if playlist is not None else catalog.track_ids),
            back_threshold_ms=self.config.back_threshold_ms,
            auto_advance_epsilon_ms=self.config.auto_advance_epsilon_ms,
            on_state_change=self._on_state_change,
            on_playlist_change=self._on_playlist_change,
            on_track_ended=self._on_track_ended,
        )
        logger.debug(
            "UnisonServer initialized: id=%s, name=%s, tracks=%d",
            self.config.server_id,
            self.config.server_name,
            len(catalog),
        )

    def clock(self) -> float:
        """Shared reference clock in milliseconds."""
        return self.loop.time() * 1_000

    # ------------------------------------------------------------------
    # HTTP
    # ------------------------------------------------------------------
    def create_app(self) -> web.Application:
        """Build an aiohttp application serving the WebSocket endpoint."""
        app = web.Application()
        app.router.add_get(self.config.path, self.on_client_connect)
        return app

    async def start_server(self, host: str = "0.0.0.0", port: int = 8928) -> None:  # noqa: S104
        """Start listening for connections."""
        self._app = self.create_app()
        self._runner = web.AppRunner(self._app)
        await self._runner.setup()
        self._site = web.TCPSite(self._runner, host, port)
        await self._site.start()
        logger.info("Unison server listening on %s:%d at %s", host, port, self.config.path)

    async def close(self) -> None:
        """Stop playback, disconnect everyone and stop listening."""
        self.scheduler.cancel()
        for client in list(self._clients):
            await client.disconnect()
        if self._site is not None:
            await self._site.stop()
            self._site = None
        if self._runner is not None:
            await self._runner.cleanup()
            self._runner = None
        self._app = None
        logger.debug("Unison server stopped")

    async def on_client_connect(self, request: web.Request) -> web.WebSocketResponse:
        """Handle an incoming WebSocket connection from a Unison client."""
        logger.debug("Incoming client connection from %s", request.remote)
        client = Client(self, request)
        return await client._handle_client()  # noqa: SLF001

    # ------------------------------------------------------------------
    # Connections
    # ------------------------------------------------------------------
    @property
    def clients(self) -> set[Client]:
        """All connections that completed the handshake."""
        return self._clients

    @property
    def controllers(self) -> list[Client]:
        """Connections with the controller role."""
        return [client for client in self._clients if client.is_controller]

    def get_player(self, session_id: int) -> Client | None:
        """Get the player connection with the given session id."""
        for client in self._clients:
            if client.session_id == session_id:
                return client
        return None

    def kick(self, session_id: int) -> bool:
        """Remove a player; returns False when no such session is connected."""
        client = self.get_player(session_id)
        if client is None:
            logger.debug("Kick requested for unknown session %d", session_id)
            return False
        logger.info("Kicking player session %d", session_id)
        client.terminate()
        return True

    def _on_client_add(self, client: Client) -> None:
        """
        Register a client that completed the handshake and send it the full picture.

        Players get the catalog and the playback state. Controllers additionally get
        the playlist and the session list.
        """
        if client in self._clients:
            return
        self._clients.add(client)
        client.send_message(ServerTracksMessage(ServerTracksPayload(tracks=list(self.catalog))))
        if client.is_controller:
            client.send_message(self._playlist_message(self.playback.playlist))
            client.send_message(
                ServerSessionsMessage(ServerSessionsPayload(sessions=self.registry.listing()))
            )
        client.send_message(ServerStateMessage(self.playback.state))

    def _on_client_remove(self, client: Client) -> None:
        if client not in self._clients:
            return
        self._clients.remove(client)

    # ------------------------------------------------------------------
    # Fan-out
    # ------------------------------------------------------------------
    def broadcast(self, message: ServerMessage, *, controllers_only: bool = False) -> None:
        """Enqueue ``message`` on every connection of the given audience."""
        for client in list(self._clients):
            if controllers_only and not client.is_controller:
                continue
            client.send_message(message)

    def _on_state_change(self, state: PlaybackState) -> None:
        self.broadcast(ServerStateMessage(state))
        self._signal_event(PlaybackStateChangedEvent(state))

    def _on_sessions_change(self, sessions: list[SessionInfo]) -> None:
        self.broadcast(
            ServerSessionsMessage(ServerSessionsPayload(sessions=sessions)), controllers_only=True
        )
        self._signal_event(SessionsChangedEvent(sessions))

    def _on_playlist_change(self, playlist: Playlist) -> None:
        self.broadcast(self._playlist_message(playlist), controllers_only=True)

    def _on_track_ended(self, track_id: str) -> None:
        self.broadcast(
            TrackEndedMessage(TrackEndedPayload(track_id=track_id)), controllers_only=True
        )

    @staticmethod
    def _playlist_message(playlist: Playlist) -> ServerPlaylistMessage:
        return ServerPlaylistMessage(
            ServerPlaylistPayload(
                playlist=playlist.track_ids, next_override=playlist.next_override
            )
        )

    # ------------------------------------------------------------------
    # Events
    # ------------------------------------------------------------------
    def add_event_listener(
        self, callback: Callable[[UnisonEvent], Coroutine[None, None, None]]
    ) -> Callable[[], None]:
        """Register a callback to listen for state changes of the server.

        State changes include:
        - The playback state changed
        - A player joined, left or updated its session

        Returns a function to remove the listener.
        """
        self._event_cbs.append(callback)
        return lambda: self._event_cbs.remove(callback)

    def _signal_event(self, event: UnisonEvent) -> None:
        for cb in self._event_cbs:
            _ = self.loop.create_task(cb(event))

    @property
    def id(self) -> str:
        """Get the unique identifier of this server."""
        return self.config.server_id

    @property
    def name(self) -> str:
        """Get the name of this server."""
        return self.config.server_name
