"""Read-only track catalog shared by the server and its clients."""

from __future__ import annotations

import logging
from collections.abc import Iterable, Iterator
from dataclasses import dataclass
from pathlib import Path

from mashumaro.mixins.orjson import DataClassORJSONMixin

from aiounison.models.core import Track

logger = logging.getLogger(__name__)


class UnknownTrackError(KeyError):
    """Raised when a track id is not part of the catalog."""

    def __init__(self, track_id: str) -> None:
        """Remember the offending id."""
        super().__init__(track_id)
        self.track_id = track_id

    def __str__(self) -> str:
        """Describe the missing track."""
        return f"unknown track: {self.track_id}"


@dataclass
class CatalogFile(DataClassORJSONMixin):
    """On-disk layout of a catalog file."""

    tracks: list[Track]


class TrackCatalog:
    """Ordered, immutable lookup of tracks by id."""

    def __init__(self, tracks: Iterable[Track]) -> None:
        """Build the catalog, rejecting duplicate ids and non-positive durations."""
        self._tracks: dict[str, Track] = {}
        for track in tracks:
            if track.id in self._tracks:
                raise ValueError(f"Duplicate track id in catalog: {track.id}")
            if track.duration <= 0:
                raise ValueError(f"Track {track.id} must have a positive duration")
            self._tracks[track.id] = track

    @classmethod
    def from_file(cls, path: Path | str) -> TrackCatalog:
        """Load a catalog from a JSON file of the form {"tracks": [...]}."""
        data = Path(path).read_text(encoding="utf-8")
        catalog = cls(CatalogFile.from_json(data).tracks)
        logger.info("Loaded %d tracks from %s", len(catalog), path)
        return catalog

    def get_track(self, track_id: str) -> Track:
        """Return the track with the given id."""
        try:
            return self._tracks[track_id]
        except KeyError:
            raise UnknownTrackError(track_id) from None

    def __contains__(self, track_id: object) -> bool:
        """Whether the id is part of the catalog."""
        return track_id in self._tracks

    def __iter__(self) -> Iterator[Track]:
        """Iterate tracks in catalog order."""
        return iter(self._tracks.values())

    def __len__(self) -> int:
        """Number of tracks."""
        return len(self._tracks)

    @property
    def track_ids(self) -> list[str]:
        """All ids in catalog order."""
        return list(self._tracks)
