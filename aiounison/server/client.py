"""Represents a single device or controller connected to the server."""

from __future__ import annotations

import asyncio
import logging
from contextlib import suppress
from typing import TYPE_CHECKING, cast

from aiohttp import WSMessage, WSMsgType, web

from aiounison.models.controller import (
    BackCommandMessage,
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
from aiounison.models.core import (
    ClientHelloMessage,
    ClientHelloPayload,
    ClientProbeMessage,
    ServerProbeReplyMessage,
    ServerProbeReplyPayload,
    ServerTerminatedMessage,
)
from aiounison.models.player import (
    PlayerArmedMessage,
    PlayerRegisterMessage,
    PlayerStateMessage,
)
from aiounison.models.types import ClientMessage, Roles, ServerMessage

from .controller import ControllerClient

logger = logging.getLogger(__name__)

# The cyclic import is not an issue during runtime, so hide it
# pyright: reportImportCycles=none
if TYPE_CHECKING:
    from .server import UnisonServer


class Client:
    """
    A Client that is connected to a UnisonServer.

    The role declared in client/hello decides which messages are accepted: players
    report their own session data, controllers send playback commands.
    """

    _server: UnisonServer
    """Reference to the UnisonServer instance this client belongs to."""
    _wsock: web.WebSocketResponse
    _request: web.Request
    _info: ClientHelloPayload | None = None
    _session_id: int | None = None
    """Registry id, only set for players."""
    _controller: ControllerClient | None = None
    _writer_task: asyncio.Task[None] | None = None
    """Task responsible for sending JSON messages."""
    _to_write: asyncio.Queue[ServerMessage]
    """Queue for messages to be sent to the client through the WebSocket."""
    _closing: bool = False
    _disconnected: bool = False
    _logger: logging.Logger

    def __init__(self, server: UnisonServer, request: web.Request) -> None:
        """
        DO NOT CALL THIS CONSTRUCTOR. INTERNAL USE ONLY.

        Use UnisonServer.on_client_connect instead.
        """
        self._server = server
        self._request = request
        self._wsock = web.WebSocketResponse(heartbeat=55)
        self._to_write = asyncio.Queue(maxsize=server.config.max_pending_messages)
        self._closing = False
        self._logger = logger.getChild(f"unknown-{request.remote}")
        self._logger.debug("Client initialized")

    @property
    def role(self) -> Roles | None:
        """Role declared in client/hello, None before the handshake."""
        return self._info.role if self._info is not None else None

    @property
    def session_id(self) -> int | None:
        """Registry id of this player, None for controllers and before the handshake."""
        return self._session_id

    @property
    def is_controller(self) -> bool:
        """Whether this connection declared the controller role."""
        return self.role is Roles.CONTROLLER

    @property
    def websocket_connection(self) -> web.WebSocketResponse:
        """The underlying aiohttp WebSocket."""
        return self._wsock

    @property
    def closing(self) -> bool:
        """Whether this client is in the process of closing/disconnecting."""
        return self._closing

    def send_message(self, message: ServerMessage) -> None:
        """
        Enqueue a message to be sent to the client.

        Never blocks. A client whose queue is full is considered stalled and gets
        disconnected so it cannot hold back the others.
        """
        if self._closing:
            return
        if not isinstance(message, ServerProbeReplyMessage):
            self._logger.debug("Enqueueing message: %s", type(message).__name__)
        try:
            self._to_write.put_nowait(message)
        except asyncio.QueueFull:
            self._logger.warning("Outgoing queue full, dropping slow client")
            self._closing = True
            self._server.loop.create_task(self.disconnect())

    def terminate(self) -> None:
        """Tell the client it was removed and close the connection once that is sent."""
        self._logger.info("Terminating client")
        self._detach_session()
        self.send_message(ServerTerminatedMessage())

    async def disconnect(self) -> None:
        """Disconnect this client from the server."""
        if self._disconnected:
            return
        self._disconnected = True
        self._closing = True
        self._logger.debug("Disconnecting client")

        if self._writer_task and not self._writer_task.done():
            self._logger.debug("Cancelling writer task")
            _ = self._writer_task.cancel()  # Don't care about cancellation result
            with suppress(asyncio.CancelledError):
                await self._writer_task

        if not self._wsock.closed:
            _ = await self._wsock.close()  # Don't care about close result

        self._detach_session()
        self._server._on_client_remove(self)  # noqa: SLF001
        self._logger.info("Client disconnected")

    async def _handle_client(self) -> web.WebSocketResponse:
        """
        Handle the complete websocket connection lifecycle.

        This method is private and should only be called by UnisonServer
        during client connection handling.
        """
        try:
            await self._setup_connection()
            await self._run_message_loop()
        finally:
            await self.disconnect()
        return self._wsock

    async def _setup_connection(self) -> None:
        """Establish WebSocket connection."""
        try:
            async with asyncio.timeout(10):
                _ = await self._wsock.prepare(self._request)
        except TimeoutError:
            self._logger.warning("Timeout preparing request")
            raise

        self._logger.info("Connection established")
        self._writer_task = self._server.loop.create_task(self._writer())

    async def _run_message_loop(self) -> None:
        """Run the main message processing loop."""
        wsock = self._wsock
        receive_task: asyncio.Task[WSMessage] | None = None
        try:
            while not wsock.closed:
                # Wait for either a message or the writer task to complete (meaning the client
                # disconnected, errored or was terminated)
                receive_task = self._server.loop.create_task(wsock.receive())
                assert self._writer_task is not None  # for type checking
                done, pending = await asyncio.wait(
                    [receive_task, self._writer_task],
                    return_when=asyncio.FIRST_COMPLETED,
                )

                if self._writer_task in done:
                    self._logger.debug("Writer task ended, closing connection")
                    if receive_task in pending:
                        _ = receive_task.cancel()  # Don't care about cancellation result
                    break

                try:
                    msg = await receive_task
                except (ConnectionError, asyncio.CancelledError, TimeoutError) as e:
                    self._logger.error("Error receiving message: %s", e)
                    break

                timestamp = self._server.clock()

                if msg.type in (WSMsgType.CLOSE, WSMsgType.CLOSING, WSMsgType.CLOSED):
                    break

                if msg.type != WSMsgType.TEXT:
                    continue

                try:
                    message = ClientMessage.from_json(cast("str", msg.data))
                except Exception:  # noqa: BLE001
                    self._logger.debug("Dropping unparseable message: %.200s", msg.data)
                    continue

                try:
                    self._handle_message(message, timestamp)
                except Exception:
                    self._logger.exception("Error handling %s", type(message).__name__)
            self._logger.debug("wsock was closed")

        except asyncio.CancelledError:
            self._logger.debug("Connection closed by client")
        except Exception:
            self._logger.exception("Unexpected error inside websocket API")
        finally:
            if receive_task and not receive_task.done():
                _ = receive_task.cancel()  # Don't care about cancellation result

    def _handle_message(self, message: ClientMessage, timestamp: float) -> None:
        """Handle an incoming message from the client."""
        if self._info is None and not isinstance(message, ClientHelloMessage):
            self._logger.debug("Dropping %s received before client/hello", type(message).__name__)
            return
        match message:
            # Core messages
            case ClientHelloMessage(payload):
                self._handle_hello(payload)
            case ClientProbeMessage(probe):
                self.send_message(
                    ServerProbeReplyMessage(
                        ServerProbeReplyPayload(
                            send_time=probe.send_time, reference_time=timestamp
                        )
                    )
                )
            # Player messages
            case PlayerRegisterMessage(payload):
                if self._session_id is None:
                    self._logger.debug("Ignoring player/register from non-player")
                    return
                self._server.registry.rename(self._session_id, payload.name)
            case PlayerArmedMessage():
                if self._session_id is None:
                    self._logger.debug("Ignoring player/armed from non-player")
                    return
                self._server.registry.arm(self._session_id)
            case PlayerStateMessage(payload):
                if self._session_id is None:
                    self._logger.debug("Ignoring player/state from non-player")
                    return
                self._server.registry.report_playback(
                    self._session_id, playing=payload.playing, paused=payload.paused
                )
            # Controller messages
            case (
                StartCommandMessage()
                | StopCommandMessage()
                | PauseCommandMessage()
                | ResumeCommandMessage()
                | SeekCommandMessage()
                | SkipCommandMessage()
                | BackCommandMessage()
                | SetPlaylistCommandMessage()
                | SetNextOverrideCommandMessage()
                | KickCommandMessage()
            ):
                if self._controller is None:
                    self._logger.warning(
                        "Ignoring %s from a client without the controller role",
                        type(message).__name__,
                    )
                    return
                self._controller.handle_command(message)
            case _:
                self._logger.debug("Unhandled client message type: %s", type(message).__name__)

    def _handle_hello(self, payload: ClientHelloPayload) -> None:
        if self._info is not None:
            self._logger.warning("Ignoring repeated client/hello")
            return
        self._info = payload
        if payload.role is Roles.CONTROLLER:
            self._controller = ControllerClient(self)
            self._logger = logger.getChild(f"controller-{self._request.remote}")
        else:
            session = self._server.registry.add_player(payload.name)
            self._session_id = session.id
            self._logger = logger.getChild(f"player-{session.id}")
        self._logger.info("Received client/hello as %s", payload.role.value)
        self._server._on_client_add(self)  # noqa: SLF001

    def _detach_session(self) -> None:
        if self._session_id is not None:
            session_id = self._session_id
            self._session_id = None
            self._server.registry.remove(session_id)

    async def _writer(self) -> None:
        """Write outgoing messages from the queue."""
        wsock = self._wsock
        try:
            while not wsock.closed and not self._closing:
                item = await self._to_write.get()
                try:
                    await wsock.send_str(item.to_json())
                except ConnectionError:
                    self._logger.warning("Connection error sending JSON data, ending writer task")
                    break
                if isinstance(item, ServerTerminatedMessage):
                    self._logger.debug("Termination notice sent, ending writer task")
                    break
            self._logger.debug("WebSocket Connection was closed for the client, ending writer task")
        except Exception:
            self._logger.exception("Error in writer task for client")
