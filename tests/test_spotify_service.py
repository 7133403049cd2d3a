import unittest
import warnings
from unittest.mock import MagicMock, patch

from requests.exceptions import HTTPError
from requests.models import Response
from spotipy.exceptions import SpotifyException

from liked_sorter.config import Settings
from liked_sorter.errors import AuthenticationMissing, UpstreamUnavailable
from liked_sorter.spotify_service import SpotifyService


def _make_403_http_error() -> HTTPError:
    response = Response()
    response.status_code = 403
    return HTTPError(response=response)


def _make_403_spotify_exception() -> SpotifyException:
    return SpotifyException(http_status=403, code=-1, msg="https://api.spotify.com/v1/audio-features/")


def _make_500_spotify_exception() -> SpotifyException:
    return SpotifyException(http_status=500, code=-1, msg="https://api.spotify.com/v1/me/tracks")


def _features_row(track_id: str) -> dict:
    return {
        "id": track_id,
        "danceability": 0.7,
        "energy": 0.8,
        "valence": 0.4,
        "tempo": 128.0,
        "acousticness": 0.05,
        "instrumentalness": 0.0,
        "speechiness": 0.09,
        "liveness": 0.12,
        "loudness": -5.2,
    }


def _track_json(track_id: str, uri: bool = True) -> dict:
    return {
        "id": track_id,
        "uri": f"spotify:track:{track_id}" if uri else None,
        "name": f"Song {track_id}",
        "artists": [{"name": "Artist"}],
        "popularity": 40,
    }


def _make_service(token: dict | None = None) -> SpotifyService:
    """Return a SpotifyService with a mocked spotipy client (no network calls)."""
    settings = Settings(client_id="x", client_secret="y")
    with patch("liked_sorter.spotify_service.SpotifyOAuth"), \
         patch("liked_sorter.spotify_service.CacheFileHandler"), \
         patch("liked_sorter.spotify_service.spotipy.Spotify"):
        svc = SpotifyService(settings)
    if token is None:
        token = {"refresh_token": "r", "scope": "user-library-read", "token_type": "Bearer", "expires_at": 1}
    svc.auth_manager.cache_handler.get_cached_token = MagicMock(return_value=token)
    return svc


class CredentialTests(unittest.TestCase):
    def test_missing_credentials_raise(self) -> None:
        with self.assertRaises(AuthenticationMissing) as exc:
            SpotifyService(Settings())
        self.assertIn("SPOTIPY_CLIENT_ID", str(exc.exception))

    def test_missing_refresh_token_raises(self) -> None:
        svc = _make_service(token={})
        with self.assertRaises(AuthenticationMissing):
            svc.fetch_liked_tracks(limit=5)

    def test_status_reports_connection(self) -> None:
        svc = _make_service()
        status = svc.status()
        self.assertTrue(status["connected"])
        self.assertEqual(status["scope"], "user-library-read")

    def test_status_when_not_connected(self) -> None:
        svc = _make_service(token={})
        svc.auth_manager.cache_handler.get_cached_token = MagicMock(return_value=None)
        self.assertFalse(svc.status()["connected"])

    def test_injected_client_is_used(self) -> None:
        client = MagicMock()
        client.current_user_playlists.return_value = {"items": [{"id": "p1", "name": "Valth"}], "next": None}
        with patch("liked_sorter.spotify_service.SpotifyOAuth"), \
             patch("liked_sorter.spotify_service.CacheFileHandler"), \
             patch("liked_sorter.spotify_service.spotipy.Spotify") as spotify_cls:
            svc = SpotifyService(Settings(client_id="x", client_secret="y"), client=client)
        svc.auth_manager.cache_handler.get_cached_token = MagicMock(return_value={"refresh_token": "r"})

        playlists = svc.list_playlists()

        self.assertIs(svc.client, client)
        spotify_cls.assert_not_called()
        self.assertEqual([p["id"] for p in playlists], ["p1"])

    def test_exchange_code_skips_cache(self) -> None:
        svc = _make_service()
        svc.auth_manager.get_access_token = MagicMock(return_value={"refresh_token": "new", "scope": "s"})

        token = svc.exchange_code("abc")

        self.assertEqual(token["refresh_token"], "new")
        svc.auth_manager.get_access_token.assert_called_once_with("abc", as_dict=True, check_cache=False)


class AudioFeaturesTests(unittest.TestCase):
    def test_batches_never_exceed_one_hundred_ids(self) -> None:
        svc = _make_service()
        svc.client.audio_features = MagicMock(side_effect=lambda ids: [_features_row(i) for i in ids])
        ids = [f"t{i}" for i in range(250)]

        result = svc.fetch_audio_features(ids)

        self.assertEqual(len(result), 250)
        batch_sizes = [len(call.args[0]) for call in svc.client.audio_features.call_args_list]
        self.assertEqual(batch_sizes, [100, 100, 50])

    def test_null_rows_are_skipped(self) -> None:
        svc = _make_service()
        svc.client.audio_features = MagicMock(return_value=[_features_row("a"), None])

        result = svc.fetch_audio_features(["a", "b"])

        self.assertEqual(list(result), ["a"])

    def test_forbidden_degrades_to_missing_features(self) -> None:
        for error in (_make_403_http_error(), _make_403_spotify_exception()):
            svc = _make_service()
            svc.client.audio_features = MagicMock(side_effect=error)

            with warnings.catch_warnings(record=True) as caught:
                warnings.simplefilter("always")
                result = svc.fetch_audio_features(["a"])

            self.assertEqual(result, {})
            self.assertTrue(any("403" in str(w.message) for w in caught))

    def test_other_errors_raise_upstream_unavailable(self) -> None:
        svc = _make_service()
        svc.client.audio_features = MagicMock(side_effect=_make_500_spotify_exception())

        with self.assertRaises(UpstreamUnavailable) as exc:
            svc.fetch_audio_features(["a"])
        self.assertEqual(exc.exception.status, 500)


class PlaylistTracksTests(unittest.TestCase):
    def test_paginates_and_attaches_features(self) -> None:
        svc = _make_service()
        page1 = {"items": [{"track": _track_json("a")}, {"track": None}], "next": "page2"}
        page2 = {"items": [{"track": _track_json("b")}], "next": None}
        svc.client.playlist_items = MagicMock(return_value=page1)
        svc.client.next = MagicMock(return_value=page2)
        svc.client.audio_features = MagicMock(return_value=[_features_row("a")])

        tracks = svc.fetch_playlist_tracks("pl1")

        self.assertEqual([t.track_id for t in tracks], ["a", "b"])
        self.assertIsNotNone(tracks[0].audio)
        self.assertIsNone(tracks[1].audio)
        svc.client.playlist_items.assert_called_once_with("pl1", limit=100, market="from_token")

    def test_stops_after_max_pages(self) -> None:
        svc = _make_service()
        page = {"items": [], "next": "more"}
        svc.client.playlist_items = MagicMock(return_value=page)
        svc.client.next = MagicMock(return_value=page)
        svc.client.audio_features = MagicMock(return_value=[])

        svc.fetch_playlist_tracks("pl1")

        # The first page comes from playlist_items, the rest from next().
        self.assertEqual(svc.client.next.call_count, SpotifyService.MAX_PLAYLIST_PAGES - 1)

    def test_http_errors_map_to_upstream_unavailable(self) -> None:
        svc = _make_service()
        svc.client.playlist_items = MagicMock(side_effect=_make_500_spotify_exception())

        with self.assertRaises(UpstreamUnavailable):
            svc.fetch_playlist_tracks("pl1")


class LikedTracksTests(unittest.TestCase):
    def test_drops_tracks_without_uri_and_caps_limit(self) -> None:
        svc = _make_service()
        svc.client.current_user_saved_tracks = MagicMock(
            return_value={
                "items": [
                    {"added_at": "2024-01-01T00:00:00Z", "track": _track_json("a")},
                    {"added_at": "2024-01-02T00:00:00Z", "track": _track_json("b", uri=False)},
                    {"added_at": "2024-01-03T00:00:00Z", "track": None},
                ]
            }
        )

        tracks = svc.fetch_liked_tracks(limit=200)

        self.assertEqual([t.track_id for t in tracks], ["a"])
        self.assertEqual(tracks[0].added_at, "2024-01-01T00:00:00Z")
        svc.client.current_user_saved_tracks.assert_called_once_with(limit=50)


class PlaylistWriteTests(unittest.TestCase):
    def test_list_playlists_is_slim(self) -> None:
        svc = _make_service()
        svc.client.current_user_playlists = MagicMock(
            return_value={
                "items": [
                    {
                        "id": "p1",
                        "name": "Valth",
                        "tracks": {"total": 12},
                        "public": False,
                        "collaborative": False,
                        "owner": {"id": "me"},
                        "images": [],
                    }
                ],
                "next": None,
            }
        )

        playlists = svc.list_playlists()

        self.assertEqual(
            playlists,
            [{"id": "p1", "name": "Valth", "tracks": 12, "public": False, "collaborative": False, "owner": "me"}],
        )

    def test_find_playlist_id_ignores_case_and_whitespace(self) -> None:
        playlists = [{"id": "p1", "name": "  g(OLD) "}, {"id": "p2", "name": "Valth"}]
        self.assertEqual(SpotifyService.find_playlist_id(playlists, "G(old)"), "p1")
        self.assertIsNone(SpotifyService.find_playlist_id(playlists, "Unsorted / Review"))

    def test_add_tracks_in_chunks_of_fifty(self) -> None:
        svc = _make_service()
        svc.client.playlist_add_items = MagicMock(return_value={"snapshot_id": "s"})
        uris = [f"spotify:track:{i}" for i in range(120)]

        added = svc.add_tracks("p1", uris)

        self.assertEqual(added, 120)
        sizes = [len(call.args[1]) for call in svc.client.playlist_add_items.call_args_list]
        self.assertEqual(sizes, [50, 50, 20])

    def test_create_playlist(self) -> None:
        svc = _make_service()
        svc.client.current_user = MagicMock(return_value={"id": "me", "display_name": "Me"})
        svc.client.user_playlist_create = MagicMock(
            return_value={"id": "new", "name": "Valth", "external_urls": {"spotify": "https://open.spotify.com/p"}}
        )

        created = svc.create_playlist("Valth", public=True, description="d")

        self.assertEqual(created["playlist"]["id"], "new")
        self.assertEqual(created["playlist"]["url"], "https://open.spotify.com/p")
        self.assertEqual(created["user"], {"id": "me", "display_name": "Me"})
        svc.client.user_playlist_create.assert_called_once_with("me", "Valth", public=True, description="d")


if __name__ == "__main__":
    unittest.main()
