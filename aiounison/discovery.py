"""mDNS advertisement and discovery of unison servers."""

from __future__ import annotations

import asyncio
import logging
import socket
from typing import TYPE_CHECKING, cast

from zeroconf import IPVersion
from zeroconf.asyncio import AsyncServiceBrowser, AsyncServiceInfo, AsyncZeroconf

if TYPE_CHECKING:
    from zeroconf import ServiceListener

from aiounison.server.server import DEFAULT_PATH

logger = logging.getLogger(__name__)

SERVICE_TYPE = "_unison-server._tcp.local."


def build_service_url(host: str, port: int, properties: dict[bytes, bytes | None]) -> str:
    """Construct WebSocket URL from mDNS service info."""
    path_raw = properties.get(b"path")
    path = path_raw.decode("utf-8", "ignore") if isinstance(path_raw, bytes) else DEFAULT_PATH
    if not path:
        path = DEFAULT_PATH
    if not path.startswith("/"):
        path = "/" + path
    host_fmt = f"[{host}]" if ":" in host else host
    return f"ws://{host_fmt}:{port}{path}"


class ServiceAdvertisement:
    """Advertises a unison server via mDNS."""

    def __init__(self, name: str, port: int, path: str = DEFAULT_PATH) -> None:
        """Initialize the advertisement for a server listening on ``port``."""
        self._name = name
        self._port = port
        self._path = path
        self._zeroconf: AsyncZeroconf | None = None
        self._service_info: AsyncServiceInfo | None = None
        self._registered = False

    async def start(self) -> None:
        """Start advertising the service."""
        if self._registered:
            return

        hostname = socket.gethostname()
        self._service_info = AsyncServiceInfo(
            SERVICE_TYPE,
            f"{self._name}.{SERVICE_TYPE}",
            port=self._port,
            properties={"path": self._path},
            server=f"{hostname}.local.",
        )
        self._zeroconf = AsyncZeroconf(ip_version=IPVersion.All)

        try:
            await self._zeroconf.async_register_service(self._service_info)
            self._registered = True
            logger.info("Advertising unison server on port %d (path: %s)", self._port, self._path)
        except Exception:
            await self.stop()
            raise

    async def stop(self) -> None:
        """Stop advertising and clean up resources."""
        if self._zeroconf is None:
            return
        if self._service_info is not None and self._registered:
            try:
                await self._zeroconf.async_unregister_service(self._service_info)
            except Exception:
                logger.exception("Error unregistering service")
        await self._zeroconf.async_close()
        self._zeroconf = None
        self._service_info = None
        self._registered = False
        logger.debug("Service advertisement stopped")


class _ServiceDiscoveryListener:
    """Listens for unison server advertisements."""

    def __init__(self, loop: asyncio.AbstractEventLoop) -> None:
        self._loop = loop
        self._current_url: str | None = None
        self._first_result: asyncio.Future[str] = loop.create_future()
        self.tasks: set[asyncio.Task[None]] = set()

    @property
    def current_url(self) -> str | None:
        return self._current_url

    async def wait_for_first(self) -> str:
        return await self._first_result

    async def _process_service_info(
        self, zeroconf: AsyncZeroconf, service_type: str, name: str
    ) -> None:
        info = await zeroconf.async_get_service_info(service_type, name)
        if info is None or info.port is None:
            return
        addresses = info.parsed_addresses()
        if not addresses:
            return
        url = build_service_url(addresses[0], info.port, info.properties)
        self._current_url = url
        if not self._first_result.done():
            self._first_result.set_result(url)

    def _schedule(self, zeroconf: AsyncZeroconf, service_type: str, name: str) -> None:
        task = self._loop.create_task(self._process_service_info(zeroconf, service_type, name))
        self.tasks.add(task)
        task.add_done_callback(self.tasks.discard)

    def add_service(self, zeroconf: AsyncZeroconf, service_type: str, name: str) -> None:
        self._schedule(zeroconf, service_type, name)

    def update_service(self, zeroconf: AsyncZeroconf, service_type: str, name: str) -> None:
        self._schedule(zeroconf, service_type, name)

    def remove_service(self, _zeroconf: AsyncZeroconf, _service_type: str, _name: str) -> None:
        self._current_url = None


class ServiceDiscovery:
    """Discovers unison servers via mDNS."""

    def __init__(self) -> None:
        """Initialize the service discovery manager."""
        self._listener: _ServiceDiscoveryListener | None = None
        self._browser: AsyncServiceBrowser | None = None
        self._zeroconf: AsyncZeroconf | None = None

    async def start(self) -> None:
        """Start browsing, keeps running until stop() is called."""
        self._listener = _ServiceDiscoveryListener(asyncio.get_running_loop())
        self._zeroconf = AsyncZeroconf()
        try:
            self._browser = AsyncServiceBrowser(
                self._zeroconf.zeroconf, SERVICE_TYPE, cast("ServiceListener", self._listener)
            )
        except Exception:
            await self.stop()
            raise

    async def wait_for_first_server(self) -> str:
        """Wait for the first server to be discovered and return its URL."""
        if self._listener is None:
            raise RuntimeError("Discovery not started. Call start() first.")
        return await self._listener.wait_for_first()

    def current_url(self) -> str | None:
        """Get the current discovered server URL, or None if no servers."""
        return self._listener.current_url if self._listener else None

    async def stop(self) -> None:
        """Stop discovery and clean up resources."""
        if self._browser:
            await self._browser.async_cancel()
            self._browser = None
        if self._zeroconf:
            await self._zeroconf.async_close()
            self._zeroconf = None
        self._listener = None
