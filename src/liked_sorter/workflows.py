"""Sorting and insight workflows that sit between Spotify, the store and the core.

Both workflows take their collaborators as arguments: the Spotify service
(anything with the ``SpotifyService`` read/write methods) and, for sorting,
an explicit ``already_processed`` query plus a ``record`` sink. Neither the
classifier nor the cluster engine knows about persistence.
"""
from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass, field
from typing import Callable, Iterable

from liked_sorter.classifier import classify
from liked_sorter.clustering import cluster_tracks, feature_averages
from liked_sorter.models import ClusterResult, Decision, Track
from liked_sorter.parsing import attach_audio_features
from liked_sorter.store import ProcessedRecord

logger = logging.getLogger(__name__)

STATUS_ADDED = "added"
STATUS_DRY_RUN = "dryrun"
STATUS_MISSING_PLAYLIST = "skipped_missing_playlist"

AlreadyProcessed = Callable[[Iterable[str]], set[str]]
RecordDecisions = Callable[[list[ProcessedRecord]], object]


@dataclass(slots=True)
class TrackDecision:
    track: Track
    decision: Decision


@dataclass(slots=True)
class SortReport:
    dry_run: bool
    requested: int
    liked_count: int
    already_processed: int
    to_process: int
    summary: dict[str, int]
    missing_playlists: list[str]
    adds: list[dict] = field(default_factory=list)
    decisions: list[TrackDecision] = field(default_factory=list)
    note: str | None = None


@dataclass(slots=True)
class InsightsReport:
    playlist_id: str
    count: int
    top_artists: list[dict]
    audio_summary: dict[str, float | None]
    clusters: ClusterResult


def _processed(d: TrackDecision, playlist_id: str, status: str, error: str = "") -> ProcessedRecord:
    return ProcessedRecord(
        track_id=d.track.track_id,
        track_uri=d.track.uri,
        track_name=d.track.name,
        artists=d.track.artists,
        liked_added_at=d.track.added_at,
        decision=d.decision.rule,
        confidence=d.decision.confidence,
        target_playlist_name=d.decision.label,
        target_playlist_id=playlist_id,
        action_status=status,
        error=error,
    )


def sort_liked_songs(
    service,
    already_processed: AlreadyProcessed,
    record: RecordDecisions,
    limit: int = 20,
    dry_run: bool = False,
) -> SortReport:
    liked = service.fetch_liked_tracks(limit=limit)
    seen = already_processed([t.track_id for t in liked])
    todo = [t for t in liked if t.track_id not in seen]
    logger.info("Liked tracks: %d fetched, %d already processed", len(liked), len(liked) - len(todo))

    features = service.fetch_audio_features(t.track_id for t in todo)
    todo = attach_audio_features(todo, features)
    decisions = [TrackDecision(track=t, decision=classify(t.audio)) for t in todo]

    playlists = service.list_playlists() if decisions else []
    playlist_ids: dict[str, str] = {}
    missing: list[str] = []
    for label in dict.fromkeys(d.decision.label for d in decisions):
        playlist_id = service.find_playlist_id(playlists, label)
        if playlist_id:
            playlist_ids[label] = playlist_id
        else:
            missing.append(label)

    uris_by_label: dict[str, list[str]] = {}
    for d in decisions:
        if d.decision.label in playlist_ids:
            uris_by_label.setdefault(d.decision.label, []).append(d.track.uri)

    skipped = [d for d in decisions if d.decision.label not in playlist_ids]
    if skipped:
        record([_processed(d, "", STATUS_MISSING_PLAYLIST, "missing_playlist") for d in skipped])

    adds: list[dict] = []
    if dry_run:
        planned = [d for d in decisions if d.decision.label in playlist_ids]
        if planned:
            record([_processed(d, playlist_ids[d.decision.label], STATUS_DRY_RUN) for d in planned])
    else:
        for label, uris in uris_by_label.items():
            added = service.add_tracks(playlist_ids[label], uris)
            # Rows are recorded as soon as their playlist add succeeds.
            record(
                [
                    _processed(d, playlist_ids[label], STATUS_ADDED)
                    for d in decisions
                    if d.decision.label == label
                ]
            )
            adds.append({"playlist_name": label, "playlist_id": playlist_ids[label], "added": added})

    summary = dict(Counter(d.decision.label for d in decisions))
    return SortReport(
        dry_run=dry_run,
        requested=limit,
        liked_count=len(liked),
        already_processed=len(liked) - len(todo),
        to_process=len(todo),
        summary=summary,
        missing_playlists=missing,
        adds=adds,
        decisions=decisions,
        note="Create the missing playlists (exact name match) or adjust rules/names." if missing else None,
    )


def top_artists(tracks: Iterable[Track], n: int) -> list[dict]:
    # Counter.most_common keeps first-seen order among equal counts.
    counts = Counter(artist for t in tracks for artist in t.artists)
    return [{"key": name, "count": count} for name, count in counts.most_common(n)]


def audio_summary(tracks: Iterable[Track]) -> dict[str, float | None]:
    return feature_averages(list(tracks))


def playlist_insights(service, playlist_id: str, top: int = 15, k: int = 5) -> InsightsReport:
    tracks = service.fetch_playlist_tracks(playlist_id)
    return InsightsReport(
        playlist_id=playlist_id,
        count=len(tracks),
        top_artists=top_artists(tracks, top),
        audio_summary=audio_summary(tracks),
        clusters=cluster_tracks(tracks, k),
    )
