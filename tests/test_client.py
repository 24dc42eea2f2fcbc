from __future__ import annotations

import asyncio

import orjson
import pytest
from conftest import FakeClock, make_tracks

from aiounison.client import UnisonClient
from aiounison.models.core import (
    PlaybackState,
    ServerProbeReplyMessage,
    ServerProbeReplyPayload,
    ServerStateMessage,
    ServerTracksMessage,
    ServerTracksPayload,
    Track,
)
from aiounison.models.types import PlaybackMode


class _FakeWebSocket:
    """Collects everything the client sends."""

    def __init__(self) -> None:
        self.closed = False
        self.sent: list[dict] = []

    async def send_str(self, data: str) -> None:
        self.sent.append(orjson.loads(data))

    async def close(self) -> None:
        self.closed = True


class _RecordingPlayback:
    def __init__(self) -> None:
        self.calls: list[tuple[str, str | None]] = []

    def schedule(self, track: Track, start_at_local: float) -> None:
        self.calls.append(("schedule", track.id))

    def start_at(self, track: Track, offset_ms: float) -> None:
        self.calls.append(("start_at", track.id))

    def hold(self, track: Track, offset_ms: float) -> None:
        self.calls.append(("hold", track.id))

    def stop(self) -> None:
        self.calls.append(("stop", None))


async def _make_client(
    clock: FakeClock,
) -> tuple[UnisonClient, _RecordingPlayback, _FakeWebSocket]:
    """Player client wired to a fake websocket, with the catalog already received."""
    playback = _RecordingPlayback()
    client = UnisonClient("Test", playback=playback, sample_count=1, local_clock=clock)
    ws = _FakeWebSocket()
    client._ws = ws  # type: ignore[assignment]  # noqa: SLF001
    client._connected = True  # noqa: SLF001
    client._loop = asyncio.get_running_loop()  # noqa: SLF001
    await _push(client, ServerTracksMessage(ServerTracksPayload(tracks=make_tracks())))
    return client, playback, ws


async def _push(client: UnisonClient, message: ServerTracksMessage | ServerStateMessage) -> None:
    await client._handle_json_message(message.to_json())  # noqa: SLF001


async def _sync(client: UnisonClient, ws: _FakeWebSocket) -> None:
    """Answer the single clock sync request so that the shared clock equals the local one."""
    task = asyncio.create_task(client.sync())
    while not any(sent["type"] == "client/probe" for sent in ws.sent):
        await asyncio.sleep(0)
    request = next(sent for sent in ws.sent if sent["type"] == "client/probe")
    ws.sent.remove(request)
    send_time = request["payload"]["send_time"]
    reply = ServerProbeReplyMessage(
        ServerProbeReplyPayload(send_time=send_time, reference_time=send_time)
    )
    await client._handle_json_message(reply.to_json())  # noqa: SLF001
    await asyncio.wait_for(task, timeout=5)


def test_armed_player_waits_for_sync_before_playing() -> None:
    async def run() -> None:
        clock = FakeClock()
        client, playback, ws = await _make_client(clock)
        state = PlaybackState(
            mode=PlaybackMode.PLAYING, track_id="a", anchor_time=clock.now - 30_000
        )
        await _push(client, ServerStateMessage(state))

        await client.arm()

        assert client.armed
        assert not client.synced
        assert playback.calls == []
        assert [sent["type"] for sent in ws.sent] == ["player/armed"]

        await _sync(client, ws)

        assert playback.calls == [("start_at", "a")]
        assert ws.sent[-1] == {
            "type": "player/state",
            "payload": {"playing": True, "paused": False},
        }

    asyncio.run(run())


def test_unarmed_player_never_plays() -> None:
    async def run() -> None:
        clock = FakeClock()
        client, playback, ws = await _make_client(clock)
        state = PlaybackState(mode=PlaybackMode.PLAYING, track_id="b", anchor_time=clock.now)
        await _push(client, ServerStateMessage(state))

        await _sync(client, ws)

        assert client.synced
        assert playback.calls == []

    asyncio.run(run())


def test_resync_while_playing_keeps_audio_running() -> None:
    async def run() -> None:
        clock = FakeClock()
        client, playback, ws = await _make_client(clock)
        state = PlaybackState(
            mode=PlaybackMode.PLAYING, track_id="b", anchor_time=clock.now - 10_000
        )
        await _push(client, ServerStateMessage(state))
        await client.arm()
        await _sync(client, ws)
        assert playback.calls == [("start_at", "b")]

        clock.advance(5_000)
        await _sync(client, ws)

        assert playback.calls == [("start_at", "b")]

    asyncio.run(run())


def test_resync_after_scheduled_start_does_not_restart() -> None:
    async def run() -> None:
        clock = FakeClock()
        client, playback, ws = await _make_client(clock)
        await client.arm()
        await _sync(client, ws)
        state = PlaybackState(
            mode=PlaybackMode.SCHEDULED, track_id="a", anchor_time=clock.now + 3_000
        )
        await _push(client, ServerStateMessage(state))
        assert playback.calls == [("schedule", "a")]

        clock.advance(20_000)
        await _sync(client, ws)

        assert playback.calls == [("schedule", "a")]
        assert ws.sent[-1]["payload"] == {"playing": True, "paused": False}

    asyncio.run(run())


def test_resync_before_scheduled_start_reschedules() -> None:
    async def run() -> None:
        clock = FakeClock()
        client, playback, ws = await _make_client(clock)
        await client.arm()
        await _sync(client, ws)
        state = PlaybackState(
            mode=PlaybackMode.SCHEDULED, track_id="c", anchor_time=clock.now + 3_000
        )
        await _push(client, ServerStateMessage(state))

        clock.advance(1_000)
        await _sync(client, ws)

        assert playback.calls == [("schedule", "c"), ("schedule", "c")]

    asyncio.run(run())


def test_same_state_pushed_twice_is_applied_once() -> None:
    async def run() -> None:
        clock = FakeClock()
        client, playback, ws = await _make_client(clock)
        await client.arm()
        await _sync(client, ws)
        state = PlaybackState(mode=PlaybackMode.PAUSED, track_id="a", paused_offset=1_500)

        await _push(client, ServerStateMessage(state))
        await _push(client, ServerStateMessage(state))

        assert playback.calls == [("hold", "a")]
        assert client.state == state

    asyncio.run(run())


def test_disconnect_stops_local_playback() -> None:
    async def run() -> None:
        clock = FakeClock()
        client, playback, ws = await _make_client(clock)
        state = PlaybackState(mode=PlaybackMode.PLAYING, track_id="a", anchor_time=clock.now)
        await _push(client, ServerStateMessage(state))
        await client.arm()
        await _sync(client, ws)

        await client.disconnect()

        assert playback.calls == [("start_at", "a"), ("stop", None)]
        assert ws.closed
        assert not client.connected
        assert client.state is None

    asyncio.run(run())


@pytest.mark.parametrize("mode", [PlaybackMode.IDLE, PlaybackMode.PAUSED])
def test_idle_or_paused_state_reports_not_playing(mode: PlaybackMode) -> None:
    async def run() -> None:
        clock = FakeClock()
        client, _, ws = await _make_client(clock)
        await client.arm()
        await _sync(client, ws)
        if mode is PlaybackMode.PAUSED:
            state = PlaybackState(mode=mode, track_id="a", paused_offset=10)
        else:
            state = PlaybackState()

        await _push(client, ServerStateMessage(state))

        reports = [sent["payload"] for sent in ws.sent if sent["type"] == "player/state"]
        assert reports[-1]["playing"] is False
        assert reports[-1]["paused"] is (mode is PlaybackMode.PAUSED)

    asyncio.run(run())
