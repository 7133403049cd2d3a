"""FastAPI web server for the liked-songs sorter."""
from __future__ import annotations

import hmac
import logging
import uuid
from functools import lru_cache

from fastapi import FastAPI, Header, HTTPException, Query
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import RedirectResponse
from pydantic import BaseModel, Field

from liked_sorter.classifier import RULES, target_labels
from liked_sorter.config import Settings
from liked_sorter.errors import AuthenticationMissing, LikedSorterError, MalformedUpstreamData, UpstreamUnavailable
from liked_sorter.models import Cluster, ClusterResult, Track
from liked_sorter.spotify_service import SpotifyService
from liked_sorter.store import ProcessedTrackStore
from liked_sorter.workflows import playlist_insights, sort_liked_songs

logger = logging.getLogger(__name__)

MAX_LIKED_LIMIT = 50
MAX_TOP_ARTISTS = 50

app = FastAPI(title="Liked Sorter")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Request/Response models
class CreatePlaylistRequest(BaseModel):
    name: str = Field(default="Liked Sorter", min_length=1)
    public: bool = False
    description: str = "Created by Liked Sorter"


class TrackOut(BaseModel):
    id: str | None
    name: str
    artists: list[str] = []
    album: str | None = None
    popularity: int | None = None
    uri: str | None = None
    audio: dict[str, float] | None = None


class ClusterOut(BaseModel):
    id: int
    count: int
    averages: dict[str, float | None]
    samples: list[TrackOut]


class ClusterResultOut(BaseModel):
    performed: bool
    effective_k: int
    clusters: list[ClusterOut]
    note: str | None = None


def get_settings() -> Settings:
    return Settings.from_env()


def get_spotify_service() -> SpotifyService:
    return SpotifyService(get_settings())


@lru_cache(maxsize=4)
def _store_for(database_url: str) -> ProcessedTrackStore:
    return ProcessedTrackStore(database_url)


def get_store() -> ProcessedTrackStore:
    return _store_for(get_settings().database_url)


def _track_out(track: Track) -> TrackOut:
    return TrackOut(
        id=track.track_id,
        name=track.name,
        artists=track.artists,
        album=track.album,
        popularity=track.popularity,
        uri=track.uri,
        audio=track.audio.as_dict() if track.audio else None,
    )


def _cluster_out(cluster: Cluster) -> ClusterOut:
    return ClusterOut(
        id=cluster.cluster_id,
        count=cluster.size,
        averages=cluster.averages,
        samples=[_track_out(t) for t in cluster.samples],
    )


def _cluster_result_out(result: ClusterResult) -> ClusterResultOut:
    return ClusterResultOut(
        performed=result.performed,
        effective_k=result.effective_k,
        clusters=[_cluster_out(c) for c in result.clusters],
        note=result.note,
    )


def _http_error(exc: LikedSorterError, error: str) -> HTTPException:
    if isinstance(exc, AuthenticationMissing):
        status_code = 401
        kind = "authentication_missing"
    elif isinstance(exc, MalformedUpstreamData):
        status_code = 502
        kind = "malformed_upstream_data"
    elif isinstance(exc, UpstreamUnavailable):
        status_code = 502
        kind = "upstream_unavailable"
    else:
        status_code = 500
        kind = "internal_error"
    logger.warning("%s: %s", error, exc)
    return HTTPException(status_code=status_code, detail={"ok": False, "error": error, "kind": kind, "details": str(exc)})


def check_cron_secret(expected: str | None, provided: str | None) -> bool:
    if not expected:
        return True
    return hmac.compare_digest(expected.encode("utf-8"), (provided or "").encode("utf-8"))


@app.get("/health")
def health_check():
    """Health check endpoint."""
    return {"status": "ok"}


@app.get("/api/rules")
def list_rules():
    return {
        "ok": True,
        "rules": [{"rule": r.rule_id, "label": r.label, "confidence": r.confidence} for r in RULES],
        "labels": target_labels(),
    }


@app.get("/api/spotify/status")
def spotify_status():
    try:
        status = get_spotify_service().status()
    except LikedSorterError as exc:
        raise _http_error(exc, "status_failed") from exc
    return {"ok": True, **status}


@app.get("/api/spotify/auth")
def spotify_auth():
    """Start the Spotify authorization-code flow."""
    try:
        url = get_spotify_service().authorize_url(state=uuid.uuid4().hex)
    except LikedSorterError as exc:
        raise _http_error(exc, "missing_env") from exc
    return RedirectResponse(url)


@app.get("/api/spotify/callback")
def spotify_callback(code: str | None = None, state: str | None = None, error: str | None = None):
    if error:
        raise HTTPException(
            status_code=400,
            detail={"ok": False, "error": error, "details": "Spotify returned an error in callback."},
        )
    if not code:
        raise HTTPException(
            status_code=400,
            detail={"ok": False, "error": "missing_code", "details": "No code param in callback."},
        )
    try:
        token = get_spotify_service().exchange_code(code)
    except LikedSorterError as exc:
        raise _http_error(exc, "token_exchange_failed") from exc
    return {
        "ok": True,
        "connected": bool(token.get("refresh_token")),
        "scope": token.get("scope", ""),
        "state": state,
    }


@app.get("/api/spotify/playlists")
def spotify_playlists():
    try:
        playlists = get_spotify_service().list_playlists()
    except LikedSorterError as exc:
        raise _http_error(exc, "playlists_failed") from exc
    return {"ok": True, "count": len(playlists), "playlists": playlists}


@app.get("/api/spotify/playlist/{playlist_id}/tracks")
def spotify_playlist_tracks(playlist_id: str):
    try:
        tracks = get_spotify_service().fetch_playlist_tracks(playlist_id)
    except LikedSorterError as exc:
        raise _http_error(exc, "playlist_tracks_failed") from exc
    return {
        "ok": True,
        "playlistId": playlist_id,
        "count": len(tracks),
        "tracks": [_track_out(t).model_dump() for t in tracks],
    }


@app.post("/api/spotify/playlist/create")
def spotify_create_playlist(request: CreatePlaylistRequest):
    name = request.name.strip()
    if not name:
        raise HTTPException(status_code=400, detail={"ok": False, "error": "missing_name"})
    try:
        created = get_spotify_service().create_playlist(
            name, public=request.public, description=request.description.strip()
        )
    except LikedSorterError as exc:
        raise _http_error(exc, "playlist_create_failed") from exc
    return {"ok": True, **created}


@app.post("/api/spotify/liked/process")
def process_liked_songs(
    limit: int = 20,
    dry_run: bool = Query(default=False, alias="dryRun"),
    secret: str | None = None,
    x_cron_secret: str | None = Header(default=None),
):
    settings = get_settings()
    if not check_cron_secret(settings.cron_secret, x_cron_secret or secret):
        raise HTTPException(status_code=401, detail={"ok": False, "error": "unauthorized"})

    limit = min(limit if limit > 0 else 20, MAX_LIKED_LIMIT)
    try:
        store = get_store()
        report = sort_liked_songs(
            get_spotify_service(),
            already_processed=store.already_processed,
            record=store.record,
            limit=limit,
            dry_run=dry_run,
        )
    except LikedSorterError as exc:
        raise _http_error(exc, "liked_process_failed") from exc

    return {
        "ok": True,
        "dryRun": report.dry_run,
        "requested": report.requested,
        "likedCount": report.liked_count,
        "alreadyProcessed": report.already_processed,
        "toProcess": report.to_process,
        "missingPlaylists": report.missing_playlists,
        "summary": report.summary,
        "adds": report.adds,
        "decisions": [
            {
                "trackId": d.track.track_id,
                "trackName": d.track.name,
                "playlistName": d.decision.label,
                "confidence": d.decision.confidence,
                "rule": d.decision.rule,
            }
            for d in report.decisions
        ],
        "note": report.note,
    }


@app.get("/api/spotify/processed")
def processed_tracks(limit: int = Query(default=50, ge=1, le=500)):
    return {"ok": True, "tracks": get_store().recent(limit)}


@app.get("/api/spotify/insights")
def spotify_insights(
    playlist_id: str | None = Query(default=None, alias="playlistId"),
    top: int = 15,
    k: int = 5,
):
    if not playlist_id:
        raise HTTPException(
            status_code=400,
            detail={"ok": False, "error": "missing_playlistId", "hint": "Use ?playlistId=<id>"},
        )
    top = min(top if top > 0 else 15, MAX_TOP_ARTISTS)
    try:
        report = playlist_insights(get_spotify_service(), playlist_id, top=top, k=k)
    except LikedSorterError as exc:
        raise _http_error(exc, "insights_failed") from exc

    return {
        "ok": True,
        "playlistId": report.playlist_id,
        "count": report.count,
        "topArtists": report.top_artists,
        "audioSummary": report.audio_summary,
        "clusters": _cluster_result_out(report.clusters).model_dump(),
    }
