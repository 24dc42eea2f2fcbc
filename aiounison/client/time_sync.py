"""Clock offset estimation for unison clients."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass

DEFAULT_SAMPLE_COUNT = 10
DEFAULT_SYNC_TIMEOUT = 10.0
SEND_TIME_STEP = 1e-3

logger = logging.getLogger(__name__)


class ClockNotSyncedError(RuntimeError):
    """Raised when the shared clock is read before any sync succeeded."""


class ClockSyncError(Exception):
    """Raised when a sync run did not collect enough replies in time."""


@dataclass(slots=True)
class OffsetSample:
    """Result of one probe round trip."""

    round_trip_time: float
    estimated_offset: float


class OffsetEstimator:
    """
    Estimates ``reference clock - local clock`` from a burst of probes.

    A sync run sends all probes back to back. Each reply gives a round trip time
    and an offset under the assumption that the server stamped it half way through
    the round trip. Once every probe is answered, the offsets of the fastest half of
    the round trips are averaged; slow round trips carry the most queueing noise.

    Replies are matched to probes by their exact send time, which is unique per
    probe. Unknown send times (duplicates, replies from an earlier run) are dropped.
    A run that never gets all its replies never resolves, so callers must bound it
    with a timeout; ``sync`` does that for you.

    All times are milliseconds.
    """

    def __init__(
        self,
        send_probe: Callable[[float], None],
        local_clock: Callable[[], float] | None = None,
    ) -> None:
        """
        Create an estimator.

        Args:
            send_probe: Called with the local send time of every probe to emit.
            local_clock: Local clock in milliseconds, defaults to the running event
                loop's monotonic clock.
        """
        self._send_probe = send_probe
        self._local_clock = local_clock or _loop_clock_ms
        self._offset: float | None = None
        self._pending: list[float] = []
        self._samples: list[OffsetSample] = []
        self._sample_count = 0
        self._result: asyncio.Future[float] | None = None
        self._last_send_time = float("-inf")

    @property
    def synced(self) -> bool:
        """Whether at least one sync run succeeded."""
        return self._offset is not None

    @property
    def offset(self) -> float:
        """Current offset in milliseconds."""
        if self._offset is None:
            raise ClockNotSyncedError("Clock offset is not known yet")
        return self._offset

    @property
    def in_progress(self) -> bool:
        """Whether a sync run is waiting for replies."""
        return self._result is not None and not self._result.done()

    def local_now(self) -> float:
        """Local clock in milliseconds."""
        return self._local_clock()

    def now(self) -> float:
        """Shared reference clock in milliseconds."""
        return self._local_clock() + self.offset

    def to_local(self, shared_time: float) -> float:
        """Convert a shared clock time to the local clock."""
        return shared_time - self.offset

    def begin_sync(self, sample_count: int = DEFAULT_SAMPLE_COUNT) -> asyncio.Future[float]:
        """
        Start a sync run and return a future resolving with the new offset.

        Probes still in flight from a previous run are forgotten. The previous offset
        stays in force until this run completes.
        """
        if sample_count < 1:
            raise ValueError("sample_count must be at least 1")
        self.reset()
        loop = asyncio.get_running_loop()
        self._result = loop.create_future()
        self._sample_count = sample_count
        logger.debug("Starting clock sync with %d probes", sample_count)
        for _ in range(sample_count):
            # stamps must stay unique even on a coarse clock
            send_time = max(self._local_clock(), self._last_send_time + SEND_TIME_STEP)
            self._last_send_time = send_time
            self._pending.append(send_time)
            self._send_probe(send_time)
        return self._result

    def resync(self, sample_count: int = DEFAULT_SAMPLE_COUNT) -> asyncio.Future[float]:
        """Run a new sync, for example to correct drift while playing."""
        return self.begin_sync(sample_count)

    async def sync(
        self,
        sample_count: int = DEFAULT_SAMPLE_COUNT,
        timeout: float = DEFAULT_SYNC_TIMEOUT,
    ) -> float:
        """
        Run a sync and wait for it, raising ClockSyncError after ``timeout`` seconds.

        Joins the run already in progress instead of restarting it.
        """
        if self._result is not None and not self._result.done():
            result = self._result
            sample_count = self._sample_count
        else:
            result = self.begin_sync(sample_count)
        try:
            async with asyncio.timeout(timeout):
                return await asyncio.shield(result)
        except TimeoutError as err:
            received = len(self._samples)
            self.reset()
            raise ClockSyncError(
                f"Clock sync got {received} of {sample_count} replies within {timeout} s"
            ) from err

    def reset(self) -> None:
        """Forget the current run; its future is left unresolved."""
        self._pending.clear()
        self._samples.clear()
        self._result = None

    def handle_reply(self, send_time: float, reference_time: float) -> None:
        """Feed the reply to a probe."""
        try:
            self._pending.remove(send_time)
        except ValueError:
            logger.debug("Dropping reply for unknown probe %s", send_time)
            return
        receive_time = self._local_clock()
        rtt = receive_time - send_time
        self._samples.append(
            OffsetSample(
                round_trip_time=rtt,
                estimated_offset=reference_time - (send_time + rtt / 2),
            )
        )
        if len(self._samples) >= self._sample_count:
            self._finish()

    def _finish(self) -> None:
        best = sorted(self._samples, key=lambda sample: sample.round_trip_time)
        best = best[: max(len(best) // 2, 1)]
        offset = sum(sample.estimated_offset for sample in best) / len(best)
        self._offset = offset
        logger.info(
            "Clock synced: offset=%.2f ms (best rtt %.2f ms, %d samples)",
            offset,
            best[0].round_trip_time,
            len(self._samples),
        )
        result = self._result
        self.reset()
        if result is not None and not result.done():
            result.set_result(offset)


def _loop_clock_ms() -> float:
    return asyncio.get_running_loop().time() * 1_000
