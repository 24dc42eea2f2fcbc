from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from typing import Any

import pytest
from aiohttp import ClientWebSocketResponse, WSMsgType
from aiohttp.test_utils import TestClient, TestServer
from conftest import make_tracks

from aiounison.client import UnisonClient
from aiounison.models.core import Track
from aiounison.models.types import PlaybackMode, Roles
from aiounison.server import TrackCatalog, UnisonServer

Scenario = Callable[[UnisonServer, TestClient], Awaitable[None]]


def _run(scenario: Scenario) -> None:
    async def run() -> None:
        server = UnisonServer(asyncio.get_running_loop(), TrackCatalog(make_tracks()))
        client = TestClient(TestServer(server.create_app()))
        await client.start_server()
        try:
            await asyncio.wait_for(scenario(server, client), timeout=10)
        finally:
            await server.close()
            await client.close()

    asyncio.run(run())


async def _receive(ws: ClientWebSocketResponse, message_type: str) -> dict[str, Any]:
    """Skip messages until one of the given type arrives."""
    while True:
        data = await ws.receive_json()
        if data["type"] == message_type:
            return data


async def _hello(
    client: TestClient, role: str, name: str | None = None
) -> ClientWebSocketResponse:
    ws = await client.ws_connect("/unison")
    payload: dict[str, Any] = {"role": role}
    if name is not None:
        payload["name"] = name
    await ws.send_json({"type": "client/hello", "payload": payload})
    return ws


async def _round_trip(ws: ClientWebSocketResponse) -> None:
    """Wait until everything sent before has been handled by the server."""
    await ws.send_json({"type": "client/probe", "payload": {"send_time": -1.0}})
    await _receive(ws, "server/probe-reply")


def test_player_gets_catalog_then_state() -> None:
    async def scenario(server: UnisonServer, client: TestClient) -> None:
        ws = await _hello(client, "player", "Kitchen")

        tracks = await ws.receive_json()
        state = await ws.receive_json()

        assert tracks["type"] == "server/tracks"
        assert [track["id"] for track in tracks["payload"]["tracks"]] == ["a", "b", "c"]
        assert state["type"] == "server/state"
        assert state["payload"]["mode"] == "idle"
        assert len(server.registry) == 1
        assert server.registry.get(1) is not None

    _run(scenario)


def test_controller_gets_playlist_and_sessions() -> None:
    async def scenario(server: UnisonServer, client: TestClient) -> None:
        player = await _hello(client, "player", "Den")
        await _receive(player, "server/state")
        controller = await _hello(client, "controller")

        types = [(await controller.receive_json())["type"] for _ in range(4)]

        assert types == ["server/tracks", "server/playlist", "server/sessions", "server/state"]
        assert len(server.controllers) == 1

    _run(scenario)


def test_probe_is_answered_with_server_clock() -> None:
    async def scenario(server: UnisonServer, client: TestClient) -> None:
        ws = await _hello(client, "player")
        await _receive(ws, "server/state")

        before = server.clock()
        await ws.send_json({"type": "client/probe", "payload": {"send_time": 42.5}})
        reply = await _receive(ws, "server/probe-reply")

        assert reply["payload"]["send_time"] == 42.5
        assert before <= reply["payload"]["reference_time"] <= server.clock()

    _run(scenario)


def test_start_is_broadcast_to_everyone() -> None:
    async def scenario(server: UnisonServer, client: TestClient) -> None:
        player = await _hello(client, "player")
        await _receive(player, "server/state")
        controller = await _hello(client, "controller")
        await _receive(controller, "server/state")

        await controller.send_json(
            {"type": "command/start", "payload": {"track_id": "b", "delay_ms": 3000}}
        )
        pushed = [await _receive(ws, "server/state") for ws in (player, controller)]

        assert pushed[0] == pushed[1]
        assert pushed[0]["payload"]["mode"] == "scheduled"
        assert pushed[0]["payload"]["track_id"] == "b"
        assert server.playback.state.mode is PlaybackMode.SCHEDULED
        assert server.scheduler.armed

    _run(scenario)


def test_commands_from_players_are_ignored() -> None:
    async def scenario(server: UnisonServer, client: TestClient) -> None:
        player = await _hello(client, "player")
        await _receive(player, "server/state")

        await player.send_json(
            {"type": "command/start", "payload": {"track_id": "a", "delay_ms": 1000}}
        )
        await _round_trip(player)

        assert server.playback.state.mode is PlaybackMode.IDLE

    _run(scenario)


def test_rejected_command_is_reported_to_sender() -> None:
    async def scenario(server: UnisonServer, client: TestClient) -> None:
        controller = await _hello(client, "controller")
        await _receive(controller, "server/state")

        await controller.send_json(
            {"type": "command/start", "payload": {"track_id": "nope", "delay_ms": 1000}}
        )
        rejected = await _receive(controller, "server/command-rejected")
        await controller.send_json({"type": "command/resume"})
        rejected_resume = await _receive(controller, "server/command-rejected")

        assert rejected["payload"] == {"command": "start", "reason": "unknown track: nope"}
        assert rejected_resume["payload"]["command"] == "resume"
        assert server.playback.state.mode is PlaybackMode.IDLE

    _run(scenario)


def test_playlist_changes_go_to_controllers() -> None:
    async def scenario(server: UnisonServer, client: TestClient) -> None:
        controller = await _hello(client, "controller")
        await _receive(controller, "server/state")

        await controller.send_json(
            {"type": "command/set-playlist", "payload": {"playlist": ["c", "a"]}}
        )
        playlist = await _receive(controller, "server/playlist")
        await controller.send_json(
            {"type": "command/set-next-override", "payload": {"track_id": "b"}}
        )
        override = await _receive(controller, "server/playlist")

        assert playlist["payload"] == {"playlist": ["c", "a"], "next_override": None}
        assert override["payload"] == {"playlist": ["c", "a"], "next_override": "b"}

    _run(scenario)


def test_player_updates_reach_controllers() -> None:
    async def scenario(server: UnisonServer, client: TestClient) -> None:
        controller = await _hello(client, "controller")
        await _receive(controller, "server/state")
        player = await _hello(client, "player")
        joined = await _receive(controller, "server/sessions")

        await player.send_json({"type": "player/register", "payload": {"name": "Patio"}})
        renamed = await _receive(controller, "server/sessions")
        await player.send_json({"type": "player/armed"})
        armed = await _receive(controller, "server/sessions")
        await player.send_json({"type": "player/state", "payload": {"playing": True}})
        playing = await _receive(controller, "server/sessions")

        assert joined["payload"]["sessions"] == [
            {"id": 1, "armed": False, "playing": False, "paused": False}
        ]
        assert renamed["payload"]["sessions"][0]["name"] == "Patio"
        assert armed["payload"]["sessions"][0]["armed"] is True
        assert playing["payload"]["sessions"][0]["playing"] is True

    _run(scenario)


def test_disconnect_removes_session() -> None:
    async def scenario(server: UnisonServer, client: TestClient) -> None:
        controller = await _hello(client, "controller")
        await _receive(controller, "server/state")
        player = await _hello(client, "player")
        await _receive(controller, "server/sessions")

        await player.close()
        left = await _receive(controller, "server/sessions")

        assert left["payload"]["sessions"] == []
        assert len(server.registry) == 0

    _run(scenario)


def test_kick_terminates_player() -> None:
    async def scenario(server: UnisonServer, client: TestClient) -> None:
        controller = await _hello(client, "controller")
        await _receive(controller, "server/state")
        player = await _hello(client, "player")
        await _receive(player, "server/state")
        await _receive(controller, "server/sessions")

        await controller.send_json({"type": "command/kick", "payload": {"session_id": 1}})
        terminated = await _receive(player, "server/terminated")
        left = await _receive(controller, "server/sessions")
        closed = await player.receive()

        assert terminated == {"type": "server/terminated"}
        assert left["payload"]["sessions"] == []
        assert closed.type in (WSMsgType.CLOSE, WSMsgType.CLOSING, WSMsgType.CLOSED)

        await controller.send_json({"type": "command/kick", "payload": {"session_id": 1}})
        rejected = await _receive(controller, "server/command-rejected")
        assert rejected["payload"]["command"] == "kick"

    _run(scenario)


def test_playlist_must_reference_catalog() -> None:
    async def run() -> None:
        with pytest.raises(KeyError):
            UnisonServer(
                asyncio.get_running_loop(), TrackCatalog(make_tracks()), playlist=["a", "x"]
            )

    asyncio.run(run())


class _RecordingPlayback:
    def __init__(self) -> None:
        self.calls: list[tuple[str, str | None, float | None]] = []
        self.changed = asyncio.Event()

    def schedule(self, track: Track, start_at_local: float) -> None:
        self.calls.append(("schedule", track.id, start_at_local))
        self.changed.set()

    def start_at(self, track: Track, offset_ms: float) -> None:
        self.calls.append(("start_at", track.id, offset_ms))
        self.changed.set()

    def hold(self, track: Track, offset_ms: float) -> None:
        self.calls.append(("hold", track.id, offset_ms))
        self.changed.set()

    def stop(self) -> None:
        self.calls.append(("stop", None, None))
        self.changed.set()


async def _wait_for_call(playback: _RecordingPlayback, kind: str) -> tuple[Any, ...]:
    while True:
        for call in playback.calls:
            if call[0] == kind:
                return call
        playback.changed.clear()
        await playback.changed.wait()


def test_unison_clients_end_to_end() -> None:
    async def scenario(server: UnisonServer, client: TestClient) -> None:
        url = str(client.make_url("/unison"))
        playback = _RecordingPlayback()
        player = UnisonClient("Attic", playback=playback, sample_count=3)
        controller = UnisonClient(role=Roles.CONTROLLER)
        rejected: list[str] = []
        controller.add_command_rejected_listener(lambda payload: rejected.append(payload.reason))
        try:
            await player.connect(url)
            await controller.connect(url)
            assert set(player.tracks) == {"a", "b", "c"}
            assert controller.playlist is not None
            assert controller.playlist.playlist == ["a", "b", "c"]

            await player.arm()
            # the offset of a client on the same host is close to zero
            offset = await player.sync()
            assert abs(offset) < 1_000

            await controller.start("c", 5_000)
            call = await _wait_for_call(playback, "schedule")
            assert call[1] == "c"
            anchor = server.playback.state.anchor_time
            assert anchor is not None
            assert call[2] == pytest.approx(player.estimator.to_local(anchor))

            await controller.pause()
            hold = await _wait_for_call(playback, "hold")
            assert hold[1:] == ("c", 0)

            await controller.start("a", 0)
            while not rejected:  # noqa: ASYNC110
                await asyncio.sleep(0.01)
            assert "delay_ms" in rejected[0]
            assert [info.id for info in controller.sessions] == [1]
        finally:
            await player.disconnect()
            await controller.disconnect()

    _run(scenario)
