from __future__ import annotations

import logging
import warnings
from typing import Any, Callable, Iterable

import spotipy
from requests.exceptions import HTTPError
from spotipy.cache_handler import CacheFileHandler
from spotipy.exceptions import SpotifyException
from spotipy.oauth2 import SpotifyOAuth, SpotifyOauthError

from liked_sorter.config import Settings
from liked_sorter.errors import AuthenticationMissing, MalformedUpstreamData, UpstreamUnavailable
from liked_sorter.models import AudioFeatures, Track
from liked_sorter.parsing import (
    attach_audio_features,
    chunked,
    parse_audio_features,
    parse_playlist_item,
    parse_saved_track,
)

logger = logging.getLogger(__name__)


def _status_of(exc: HTTPError | SpotifyException) -> int | None:
    if isinstance(exc, HTTPError):
        return exc.response.status_code if exc.response is not None else None
    return exc.http_status


class SpotifyService:
    # Spotify caps /audio-features at 100 ids and playlist additions at 100
    # uris per request; additions are kept at 50 to stay well under it.
    AUDIO_FEATURES_BATCH = 100
    ADD_TRACKS_BATCH = 50
    PLAYLIST_PAGE_SIZE = 100
    MAX_PLAYLIST_PAGES = 30
    PLAYLISTS_PAGE_SIZE = 50
    MAX_PLAYLISTS_PAGES = 20
    MAX_LIKED_LIMIT = 50

    def __init__(self, settings: Settings | None = None, client: spotipy.Spotify | None = None) -> None:
        self.settings = settings or Settings.from_env()
        self._validate_credentials(self.settings)
        self.auth_manager = SpotifyOAuth(
            client_id=self.settings.client_id,
            client_secret=self.settings.client_secret,
            redirect_uri=self.settings.redirect_uri,
            scope=self.settings.scopes,
            cache_handler=CacheFileHandler(cache_path=self.settings.token_cache_path),
            open_browser=False,
        )
        self.client = client or spotipy.Spotify(auth_manager=self.auth_manager)

    @staticmethod
    def _validate_credentials(settings: Settings) -> None:
        missing = settings.missing_credentials()
        if missing:
            missing_list = ", ".join(missing)
            raise AuthenticationMissing(
                f"Missing Spotify credentials: {missing_list}. "
                "Set them in environment variables or local .env file."
            )

    # -- OAuth -----------------------------------------------------------

    def authorize_url(self, state: str) -> str:
        return self.auth_manager.get_authorize_url(state=state)

    def exchange_code(self, code: str) -> dict:
        try:
            token = self.auth_manager.get_access_token(code, as_dict=True, check_cache=False)
        except SpotifyOauthError as exc:
            raise AuthenticationMissing(f"Spotify token exchange failed: {exc}") from exc
        logger.info("Stored Spotify token (scope=%s)", token.get("scope", ""))
        return token

    def _cached_token(self) -> dict | None:
        return self.auth_manager.cache_handler.get_cached_token()

    def status(self) -> dict:
        token = self._cached_token() or {}
        return {
            "connected": bool(token.get("refresh_token")),
            "scope": token.get("scope", ""),
            "token_type": token.get("token_type", ""),
            "expires_at": token.get("expires_at"),
        }

    def _require_token(self) -> None:
        token = self._cached_token()
        if not token or not token.get("refresh_token"):
            raise AuthenticationMissing("Spotify not connected (missing refresh_token)")

    # -- Transport -------------------------------------------------------

    def _call(self, what: str, fn: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
        try:
            return fn(*args, **kwargs)
        except SpotifyOauthError as exc:
            raise AuthenticationMissing(f"Spotify refresh failed: {exc}") from exc
        except (HTTPError, SpotifyException) as exc:
            status = _status_of(exc)
            raise UpstreamUnavailable(f"Spotify {what} failed: {status} {exc}", status=status) from exc

    def _paginate(self, what: str, first_page: Callable[[], dict], max_pages: int) -> list[dict]:
        items: list[dict] = []
        page = self._call(what, first_page)
        fetched = 1
        while page:
            items.extend(page.get("items") or [])
            if not page.get("next") or fetched >= max_pages:
                break
            page = self._call(what, self.client.next, page)
            fetched += 1
        return items

    # -- Reads -----------------------------------------------------------

    def fetch_audio_features(self, track_ids: Iterable[str]) -> dict[str, AudioFeatures]:
        ids = [tid for tid in track_ids if tid]
        features_by_id: dict[str, AudioFeatures] = {}
        for group in chunked(ids, self.AUDIO_FEATURES_BATCH):
            try:
                rows = self.client.audio_features(group) or []
            except SpotifyOauthError as exc:
                raise AuthenticationMissing(f"Spotify refresh failed: {exc}") from exc
            except (HTTPError, SpotifyException) as exc:
                status = _status_of(exc)
                if status == 403:
                    warnings.warn(
                        "Spotify audio-features endpoint returned 403 Forbidden. "
                        "This endpoint may be restricted for your app credentials. "
                        f"Treating {len(group)} tracks as having no audio features.",
                        RuntimeWarning,
                        stacklevel=2,
                    )
                    continue
                raise UpstreamUnavailable(f"Spotify audio-features failed: {status} {exc}", status=status) from exc
            for row in rows:
                if not row or not row.get("id"):
                    continue
                features_by_id[row["id"]] = parse_audio_features(row)
        logger.info("Fetched audio features for %d of %d tracks", len(features_by_id), len(ids))
        return features_by_id

    def fetch_playlist_tracks(self, playlist_id: str) -> list[Track]:
        self._require_token()
        items = self._paginate(
            "playlist tracks",
            lambda: self.client.playlist_items(
                playlist_id, limit=self.PLAYLIST_PAGE_SIZE, market="from_token"
            ),
            self.MAX_PLAYLIST_PAGES,
        )
        tracks = [t for t in (parse_playlist_item(item) for item in items) if t is not None]
        features = self.fetch_audio_features(t.track_id for t in tracks if t.track_id)
        return attach_audio_features(tracks, features)

    def fetch_liked_tracks(self, limit: int = 20) -> list[Track]:
        self._require_token()
        limit = max(1, min(limit, self.MAX_LIKED_LIMIT))
        page = self._call("saved tracks", self.client.current_user_saved_tracks, limit=limit)
        items = (page or {}).get("items")
        if not isinstance(items, list):
            raise MalformedUpstreamData("Spotify saved tracks response has no items list")
        tracks = [t for t in (parse_saved_track(item) for item in items) if t is not None]
        return [t for t in tracks if t.track_id and t.uri]

    def list_playlists(self) -> list[dict]:
        self._require_token()
        items = self._paginate(
            "playlists",
            lambda: self.client.current_user_playlists(limit=self.PLAYLISTS_PAGE_SIZE),
            self.MAX_PLAYLISTS_PAGES,
        )
        slim = []
        for p in items:
            if not p:
                continue
            owner = p.get("owner") or {}
            slim.append(
                {
                    "id": p.get("id"),
                    "name": p.get("name"),
                    "tracks": (p.get("tracks") or {}).get("total"),
                    "public": p.get("public"),
                    "collaborative": p.get("collaborative"),
                    "owner": owner.get("display_name") or owner.get("id"),
                }
            )
        return slim

    @staticmethod
    def find_playlist_id(playlists: Iterable[dict], name: str) -> str | None:
        target = name.strip().lower()
        for playlist in playlists:
            if str(playlist.get("name") or "").strip().lower() == target:
                return playlist.get("id") or None
        return None

    # -- Writes ----------------------------------------------------------

    def create_playlist(self, name: str, public: bool = False, description: str = "") -> dict:
        self._require_token()
        me = self._call("current user", self.client.current_user) or {}
        user_id = me.get("id")
        if not user_id:
            raise MalformedUpstreamData("Spotify /me did not return id")
        created = self._call(
            "create playlist",
            self.client.user_playlist_create,
            user_id,
            name,
            public=public,
            description=description,
        ) or {}
        logger.info("Created playlist %r (%s)", name, created.get("id"))
        return {
            "user": {"id": user_id, "display_name": me.get("display_name")},
            "playlist": {
                "id": created.get("id"),
                "name": created.get("name") or name,
                "url": (created.get("external_urls") or {}).get("spotify"),
                "public": created.get("public", public),
            },
        }

    def add_tracks(self, playlist_id: str, uris: list[str]) -> int:
        added = 0
        for group in chunked(uris, self.ADD_TRACKS_BATCH):
            self._call("add tracks", self.client.playlist_add_items, playlist_id, group)
            added += len(group)
        return added
