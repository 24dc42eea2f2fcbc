"""Interface of the local audio output used by unison players."""

from __future__ import annotations

from typing import Protocol

from aiounison.models.core import Track


class LocalPlayback(Protocol):
    """
    Plays a track's local asset on this device.

    Decoding and output are not part of unison; any implementation that can start
    a buffer at a given local time or offset works. Every call replaces whatever
    was playing before.
    """

    def schedule(self, track: Track, start_at_local: float) -> None:
        """Start ``track`` from its beginning when the local clock reaches ``start_at_local``."""

    def start_at(self, track: Track, offset_ms: float) -> None:
        """Start ``track`` immediately, ``offset_ms`` into the track."""

    def hold(self, track: Track, offset_ms: float) -> None:
        """Stop output and keep ``track`` positioned at ``offset_ms``."""

    def stop(self) -> None:
        """Stop output."""
