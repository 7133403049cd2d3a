from __future__ import annotations

import math
from dataclasses import replace
from typing import Iterable, Mapping, Sequence, TypeVar

from liked_sorter.errors import MalformedUpstreamData
from liked_sorter.models import FEATURE_NAMES, AudioFeatures, Track

T = TypeVar("T")


def chunked(items: Sequence[T], size: int) -> list[list[T]]:
    if size < 1:
        raise ValueError("Chunk size must be positive")
    return [list(items[i:i + size]) for i in range(0, len(items), size)]


def _feature_value(raw: Mapping, name: str) -> float:
    value = raw.get(name)
    # bool is an int subclass; a true/false feature is never valid.
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise MalformedUpstreamData(f"Audio feature '{name}' is missing or not numeric: {value!r}")
    value = float(value)
    if not math.isfinite(value):
        raise MalformedUpstreamData(f"Audio feature '{name}' is not finite: {value!r}")
    return value


def parse_audio_features(raw: Mapping | None) -> AudioFeatures | None:
    if not raw:
        return None
    if not isinstance(raw, Mapping):
        raise MalformedUpstreamData(f"Audio features must be an object, got {type(raw).__name__}")
    return AudioFeatures(**{name: _feature_value(raw, name) for name in FEATURE_NAMES})


def parse_track(raw: Mapping, audio: AudioFeatures | None = None, added_at: str | None = None) -> Track:
    if not isinstance(raw, Mapping):
        raise MalformedUpstreamData(f"Track must be an object, got {type(raw).__name__}")

    name = raw.get("name")
    if not isinstance(name, str):
        raise MalformedUpstreamData(f"Track name is missing or not a string: {name!r}")

    track_id = raw.get("id")
    if track_id is not None and not isinstance(track_id, str):
        raise MalformedUpstreamData(f"Track id must be a string or null: {track_id!r}")

    popularity = raw.get("popularity")
    if popularity is not None and (isinstance(popularity, bool) or not isinstance(popularity, int)):
        raise MalformedUpstreamData(f"Track popularity must be an integer: {popularity!r}")

    artists = [
        a["name"]
        for a in raw.get("artists") or []
        if isinstance(a, Mapping) and isinstance(a.get("name"), str) and a["name"]
    ]
    album = raw.get("album") or {}

    return Track(
        track_id=track_id or None,
        name=name,
        artists=artists,
        popularity=popularity,
        audio=audio,
        uri=raw.get("uri") or None,
        album=album.get("name") if isinstance(album, Mapping) else None,
        added_at=added_at,
    )


def parse_playlist_item(item: Mapping) -> Track | None:
    """Unwrap a playlist item envelope. Removed or local items come back as None."""
    raw = (item or {}).get("track")
    if not raw:
        return None
    return parse_track(raw)


def parse_saved_track(item: Mapping) -> Track | None:
    raw = (item or {}).get("track")
    if not raw:
        return None
    return parse_track(raw, added_at=item.get("added_at"))


def attach_audio_features(tracks: Iterable[Track], features_by_id: Mapping[str, AudioFeatures]) -> list[Track]:
    enriched: list[Track] = []
    for track in tracks:
        audio = features_by_id.get(track.track_id) if track.track_id else None
        enriched.append(replace(track, artists=list(track.artists), audio=audio))
    return enriched
