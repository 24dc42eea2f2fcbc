from __future__ import annotations

from pathlib import Path

import pytest
from conftest import make_tracks

from aiounison.models.core import Track
from aiounison.server.catalog import TrackCatalog, UnknownTrackError


def test_lookup_by_id(catalog: TrackCatalog) -> None:
    assert catalog.get_track("b").duration == 120_000
    assert "a" in catalog
    assert "nope" not in catalog
    assert catalog.track_ids == ["a", "b", "c"]
    assert [track.id for track in catalog] == ["a", "b", "c"]


def test_unknown_track_error(catalog: TrackCatalog) -> None:
    with pytest.raises(UnknownTrackError) as exc_info:
        catalog.get_track("nope")

    assert exc_info.value.track_id == "nope"
    assert str(exc_info.value) == "unknown track: nope"


def test_rejects_duplicate_ids() -> None:
    tracks = [*make_tracks(), Track(id="a", name="Again", duration=1_000, asset="x.mp3")]

    with pytest.raises(ValueError, match="Duplicate"):
        TrackCatalog(tracks)


def test_rejects_non_positive_duration() -> None:
    with pytest.raises(ValueError, match="positive duration"):
        TrackCatalog([Track(id="z", name="Zero", duration=0, asset="z.mp3")])


def test_from_file(tmp_path: Path) -> None:
    path = tmp_path / "tracks.json"
    path.write_text(
        '{"tracks": [{"id": "tyh", "name": "Thank You Hashem", '
        '"duration": 532000, "asset": "TYH.mp3"}]}',
        encoding="utf-8",
    )

    catalog = TrackCatalog.from_file(path)

    assert len(catalog) == 1
    assert catalog.get_track("tyh") == Track(
        id="tyh", name="Thank You Hashem", duration=532_000, asset="TYH.mp3"
    )


def test_example_catalog_loads() -> None:
    path = Path(__file__).parent.parent / "examples_data" / "tracks.json"

    catalog = TrackCatalog.from_file(path)

    assert len(catalog) == 9
    assert catalog.get_track("srulivnetanel").duration == 206_000
