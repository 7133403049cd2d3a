from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path

DEFAULT_SCOPES = " ".join(
    (
        "playlist-read-private",
        "playlist-modify-private",
        "playlist-modify-public",
        "user-library-read",
        "user-library-modify",
    )
)
DEFAULT_REDIRECT_URI = "http://127.0.0.1:8000/api/spotify/callback"
DEFAULT_DATABASE_URL = "sqlite:///liked_sorter.db"
_LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"

logger = logging.getLogger(__name__)


def _parse_env_line(line: str) -> tuple[str, str] | None:
    line = line.strip()
    if line.startswith("export "):
        line = line[len("export "):].lstrip()
    if not line or line.startswith("#") or "=" not in line:
        return None

    key, _, value = line.partition("=")
    key, value = key.strip(), value.strip()
    if len(value) >= 2 and value[0] == value[-1] and value[0] in "\"'":
        value = value[1:-1]
    elif " #" in value:
        value = value.split(" #", 1)[0].rstrip()
    return (key, value) if key else None


def load_local_env_file(env_path: str = ".env") -> dict[str, str]:
    """Copy settings from a dotenv file into ``os.environ``.

    Accepts ``KEY=value`` lines with an optional ``export`` prefix, quoted
    values and trailing ``# comments`` on unquoted values. Variables that
    are already set win over the file. Returns the variables it set.
    """

    path = Path(env_path)
    if not path.is_file():
        return {}

    loaded: dict[str, str] = {}
    for raw_line in path.read_text(encoding="utf-8").splitlines():
        parsed = _parse_env_line(raw_line)
        if parsed is None:
            continue
        key, value = parsed
        if key not in os.environ:
            os.environ[key] = value
            loaded[key] = value
    if loaded:
        logger.debug("Loaded %s from %s", ", ".join(sorted(loaded)), path)
    return loaded


def env_int(name: str, fallback: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return fallback
    try:
        return int(raw)
    except ValueError:
        return fallback


def _env_str(name: str, fallback: str | None = None) -> str | None:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return fallback
    return raw.strip()


@dataclass(slots=True)
class Settings:
    client_id: str | None = None
    client_secret: str | None = None
    redirect_uri: str = DEFAULT_REDIRECT_URI
    scopes: str = DEFAULT_SCOPES
    token_cache_path: str = ".spotify_token_cache"
    cron_secret: str | None = None
    database_url: str = DEFAULT_DATABASE_URL
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            client_id=_env_str("SPOTIPY_CLIENT_ID"),
            client_secret=_env_str("SPOTIPY_CLIENT_SECRET"),
            redirect_uri=_env_str("SPOTIPY_REDIRECT_URI", DEFAULT_REDIRECT_URI),
            scopes=_env_str("SPOTIFY_SCOPES", DEFAULT_SCOPES),
            token_cache_path=_env_str("SPOTIFY_TOKEN_CACHE", ".spotify_token_cache"),
            cron_secret=_env_str("SPOTIFY_CRON_SECRET"),
            database_url=_env_str("LIKED_SORTER_DATABASE_URL", DEFAULT_DATABASE_URL),
            log_level=_env_str("LOG_LEVEL", "INFO").upper(),
        )

    def missing_credentials(self) -> list[str]:
        missing = []
        if not self.client_id:
            missing.append("SPOTIPY_CLIENT_ID")
        if not self.client_secret:
            missing.append("SPOTIPY_CLIENT_SECRET")
        return missing


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(level=getattr(logging, level.upper(), logging.INFO), format=_LOG_FORMAT)
