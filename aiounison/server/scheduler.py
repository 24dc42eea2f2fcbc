"""Single countdown used to advance to the next track when the current one ends."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable

logger = logging.getLogger(__name__)


class AutoAdvanceScheduler:
    """
    Holds at most one pending countdown.

    Arming always cancels the previous countdown first. Both operations run on the
    event loop that owns the playback state, so a cancelled countdown can never fire.
    """

    _loop: asyncio.AbstractEventLoop
    _handle: asyncio.TimerHandle | None

    def __init__(self, loop: asyncio.AbstractEventLoop) -> None:
        """Create an idle scheduler bound to ``loop``."""
        self._loop = loop
        self._handle = None

    def arm(self, delay_ms: float, callback: Callable[[], None]) -> None:
        """Replace any pending countdown with one firing ``callback`` after ``delay_ms``."""
        self.cancel()
        delay_s = max(delay_ms, 0.0) / 1_000
        logger.debug("Arming auto-advance in %.3f s", delay_s)
        self._handle = self._loop.call_later(delay_s, self._fire, callback)

    def cancel(self) -> None:
        """Cancel the pending countdown, if any."""
        if self._handle is not None:
            logger.debug("Cancelling auto-advance")
            self._handle.cancel()
            self._handle = None

    @property
    def armed(self) -> bool:
        """Whether a countdown is pending."""
        return self._handle is not None

    @property
    def due_in_ms(self) -> float | None:
        """Milliseconds until the pending countdown fires, None when idle."""
        if self._handle is None:
            return None
        return max(self._handle.when() - self._loop.time(), 0.0) * 1_000

    def _fire(self, callback: Callable[[], None]) -> None:
        self._handle = None
        try:
            callback()
        except Exception:
            logger.exception("Auto-advance failed")
