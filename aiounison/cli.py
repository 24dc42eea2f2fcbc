"""Command-line interface for running a unison server or joining one."""

from __future__ import annotations

import argparse
import asyncio
import logging
import signal
import sys
from collections.abc import Sequence
from pathlib import Path

import aioconsole
from aiohttp import ClientError

from aiounison.client import ClockSyncError, UnisonClient
from aiounison.client.time_sync import DEFAULT_SAMPLE_COUNT
from aiounison.discovery import ServiceAdvertisement, ServiceDiscovery
from aiounison.models.controller import CommandRejectedPayload, ServerPlaylistPayload
from aiounison.models.core import PlaybackState, Track
from aiounison.models.player import SessionInfo
from aiounison.models.types import PlaybackMode, Roles
from aiounison.server import TrackCatalog, UnisonServer, UnisonServerConfig
from aiounison.server.playback import DEFAULT_AUTO_ADVANCE_EPSILON_MS, DEFAULT_BACK_THRESHOLD_MS
from aiounison.server.server import DEFAULT_PATH

logger = logging.getLogger(__name__)

DEFAULT_PORT = 8928
LOG_LEVELS = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    """Parse CLI arguments."""
    parser = argparse.ArgumentParser(description="Synchronized playback across devices")
    subparsers = parser.add_subparsers(dest="command", required=True)

    serve = subparsers.add_parser("serve", help="Run a unison server")
    serve.add_argument("--host", default="0.0.0.0", help="Address to listen on")  # noqa: S104
    serve.add_argument("--port", type=int, default=DEFAULT_PORT, help="Port to listen on")
    serve.add_argument("--path", default=DEFAULT_PATH, help="WebSocket endpoint path")
    serve.add_argument(
        "--catalog", type=Path, required=True, help='JSON file of the form {"tracks": [...]}'
    )
    serve.add_argument(
        "--playlist",
        nargs="*",
        default=None,
        help="Initial playlist as track ids, defaults to the whole catalog",
    )
    serve.add_argument("--name", default="Unison", help="Server name advertised via mDNS")
    serve.add_argument(
        "--back-threshold-ms",
        type=float,
        default=DEFAULT_BACK_THRESHOLD_MS,
        help="Back restarts the track once it played longer than this",
    )
    serve.add_argument(
        "--epsilon-ms",
        type=float,
        default=DEFAULT_AUTO_ADVANCE_EPSILON_MS,
        help="Advance to the next track this long before the current one ends",
    )
    serve.add_argument(
        "--no-advertise", action="store_true", help="Do not advertise the server via mDNS"
    )
    serve.add_argument("--log-level", default="INFO", choices=LOG_LEVELS)

    join = subparsers.add_parser("join", help="Join a unison server")
    join.add_argument(
        "--url",
        default=None,
        help="WebSocket URL of the unison server. If omitted, discover via mDNS.",
    )
    join.add_argument(
        "--role",
        type=Roles,
        choices=list(Roles),
        default=Roles.PLAYER,
        help="Join as a player or as a controller",
    )
    join.add_argument("--name", default=None, help="Display name of this player")
    join.add_argument(
        "--sample-count",
        type=int,
        default=DEFAULT_SAMPLE_COUNT,
        help="Number of probes per clock sync",
    )
    join.add_argument("--log-level", default="INFO", choices=LOG_LEVELS)
    return parser.parse_args(argv)


# ----------------------------------------------------------------------
# serve
# ----------------------------------------------------------------------
async def serve(args: argparse.Namespace) -> int:
    """Run a server until interrupted."""
    try:
        catalog = TrackCatalog.from_file(args.catalog)
    except (OSError, LookupError, ValueError) as err:
        logger.error("Cannot load catalog %s: %s", args.catalog, err)  # noqa: TRY400
        return 1

    loop = asyncio.get_running_loop()
    config = UnisonServerConfig(
        server_name=args.name,
        back_threshold_ms=args.back_threshold_ms,
        auto_advance_epsilon_ms=args.epsilon_ms,
        path=args.path,
    )
    try:
        server = UnisonServer(loop, catalog, config, playlist=args.playlist)
    except LookupError as err:
        logger.error("Invalid playlist %s: %s", args.playlist, err)  # noqa: TRY400
        return 1
    await server.start_server(args.host, args.port)

    advertisement = None
    if not args.no_advertise:
        advertisement = ServiceAdvertisement(args.name, args.port, args.path)
        await advertisement.start()

    stop_event = asyncio.Event()
    loop.add_signal_handler(signal.SIGINT, stop_event.set)
    loop.add_signal_handler(signal.SIGTERM, stop_event.set)
    try:
        await stop_event.wait()
    finally:
        loop.remove_signal_handler(signal.SIGINT)
        loop.remove_signal_handler(signal.SIGTERM)
        if advertisement is not None:
            await advertisement.stop()
        await server.close()
    return 0


# ----------------------------------------------------------------------
# join
# ----------------------------------------------------------------------
class LoggingPlayback:
    """Local playback that only reports what it would play."""

    def schedule(self, track: Track, start_at_local: float) -> None:
        """Announce a scheduled start."""
        delay = start_at_local - asyncio.get_running_loop().time() * 1_000
        _print_event(f"Starting {track.name} in {max(delay, 0):.0f} ms ({track.asset})")

    def start_at(self, track: Track, offset_ms: float) -> None:
        """Announce a start at an offset."""
        _print_event(f"Playing {track.name} from {offset_ms / 1000:.1f} s ({track.asset})")

    def hold(self, track: Track, offset_ms: float) -> None:
        """Announce a hold."""
        _print_event(f"Paused {track.name} at {offset_ms / 1000:.1f} s")

    def stop(self) -> None:
        """Announce a stop."""
        _print_event("Stopped")


async def join(args: argparse.Namespace) -> int:
    """Join a server and run the keyboard loop until the user quits."""
    client = UnisonClient(
        args.name,
        role=args.role,
        playback=LoggingPlayback() if args.role is Roles.PLAYER else None,
        sample_count=args.sample_count,
    )
    client.add_state_listener(_print_state)
    client.add_sessions_listener(_print_sessions)
    client.add_playlist_listener(_print_playlist)
    client.add_track_ended_listener(lambda track_id: _print_event(f"Track ended: {track_id}"))
    client.add_command_rejected_listener(_print_rejected)
    client.add_terminated_listener(lambda: _print_event("Removed by the server"))

    discovery = ServiceDiscovery()
    await discovery.start()
    try:
        url = args.url
        if url is None:
            _print_event("Searching for unison server...")
            url = await discovery.wait_for_first_server()
            _print_event(f"Found server at {url}")

        try:
            await client.connect(url)
        except (TimeoutError, OSError, ClientError) as err:
            logger.error("Cannot connect to %s: %s", url, err)  # noqa: TRY400
            return 1
        _print_event(f"Connected to {url}")
        _print_instructions(args.role)

        keyboard_task = asyncio.create_task(_keyboard_loop(client))
        loop = asyncio.get_running_loop()
        loop.add_signal_handler(signal.SIGINT, keyboard_task.cancel)
        try:
            while client.connected and not keyboard_task.done():  # noqa: ASYNC110
                await asyncio.sleep(0.5)
        finally:
            loop.remove_signal_handler(signal.SIGINT)
            keyboard_task.cancel()
            await client.disconnect()
    finally:
        await discovery.stop()
    return 0


def _print_state(state: PlaybackState) -> None:
    match state.mode:
        case PlaybackMode.IDLE:
            _print_event("State: idle")
        case PlaybackMode.PAUSED:
            _print_event(f"State: paused {state.track_id} at {state.paused_offset:.0f} ms")
        case _:
            _print_event(f"State: {state.mode.value} {state.track_id} anchor {state.anchor_time:.0f}")


def _print_sessions(sessions: list[SessionInfo]) -> None:
    _print_event(f"{len(sessions)} player(s) connected")
    for info in sessions:
        flags = "playing" if info.playing else "paused" if info.paused else "not playing"
        armed = "armed" if info.armed else "not armed"
        _print_event(f"  #{info.id} {info.name or '(unnamed)'}: {armed}, {flags}")


def _print_playlist(payload: ServerPlaylistPayload) -> None:
    line = "Playlist: " + ", ".join(payload.playlist)
    if payload.next_override:
        line += f" (next: {payload.next_override})"
    _print_event(line)


def _print_rejected(payload: CommandRejectedPayload) -> None:
    _print_event(f"Rejected {payload.command.value}: {payload.reason}")


async def _keyboard_loop(client: UnisonClient) -> None:
    try:
        while True:
            try:
                line = await aioconsole.ainput()
            except EOFError:
                break
            parts = line.split()
            if not parts:
                continue
            keyword = parts[0].lower()
            if keyword in {"quit", "exit", "q"}:
                break
            if client.role is Roles.PLAYER:
                await _handle_player_command(client, keyword, parts[1:])
            else:
                await _handle_controller_command(client, keyword, parts[1:])
    except asyncio.CancelledError:
        logger.debug("Keyboard loop cancelled, exiting gracefully")
        raise


async def _handle_player_command(client: UnisonClient, keyword: str, args: list[str]) -> None:
    if keyword == "arm":
        await client.arm()
        _print_event("Armed")
    elif keyword == "name" and args:
        await client.register(" ".join(args))
    elif keyword == "sync":
        try:
            offset = await client.sync()
        except ClockSyncError as err:
            _print_event(str(err))
        else:
            _print_event(f"Clock offset: {offset:.1f} ms")
    else:
        _print_event("Unknown command")


async def _handle_controller_command(  # noqa: PLR0912
    client: UnisonClient, keyword: str, args: list[str]
) -> None:
    try:
        if keyword == "start" and args:
            delay = int(args[1]) if len(args) > 1 else 1000
            await client.start(args[0], delay)
        elif keyword in {"stop", "s"}:
            await client.stop()
        elif keyword == "pause":
            await client.pause()
        elif keyword == "resume":
            await client.resume()
        elif keyword == "seek" and args:
            await client.seek(int(args[0]), args[1] if len(args) > 1 else None)
        elif keyword in {"skip", "n"}:
            await client.skip()
        elif keyword in {"back", "b"}:
            await client.back()
        elif keyword == "playlist" and args:
            await client.set_playlist(args)
        elif keyword == "next":
            await client.set_next_override(args[0] if args and args[0] != "none" else None)
        elif keyword == "kick" and args:
            await client.kick(int(args[0]))
        elif keyword == "sessions":
            _print_sessions(client.sessions)
        elif keyword == "tracks":
            for track in client.tracks.values():
                _print_event(f"  {track.id}: {track.name} ({track.duration / 1000:.0f} s)")
        else:
            _print_event("Unknown command")
    except ValueError:
        _print_event("Invalid number")


def _print_event(message: str) -> None:
    print(message, flush=True)  # noqa: T201


def _print_instructions(role: Roles) -> None:
    if role is Roles.PLAYER:
        text = "Commands: arm, name <name>, sync, quit(q)"
    else:
        text = (
            "Commands: start <track> [delay ms], stop(s), pause, resume, seek <ms> [track], "
            "skip(n), back(b), playlist <track...>, next <track|none>, kick <id>, sessions, "
            "tracks, quit(q)"
        )
    print(text, flush=True)  # noqa: T201


async def main_async(argv: Sequence[str] | None = None) -> int:
    """Entry point executing the asynchronous CLI workflow."""
    args = parse_args(list(argv) if argv is not None else None)
    logging.basicConfig(level=getattr(logging, args.log_level))
    if args.command == "serve":
        return await serve(args)
    return await join(args)


def main() -> int:
    """Run the CLI."""
    return asyncio.run(main_async(sys.argv[1:]))


if __name__ == "__main__":  # pragma: no cover - CLI entry
    raise SystemExit(main())
