from __future__ import annotations


class LikedSorterError(Exception):
    """Base class for failures raised around the sorting core."""


class AuthenticationMissing(LikedSorterError, ValueError):
    """Spotify client credentials or the stored refresh token are missing."""


class UpstreamUnavailable(LikedSorterError):
    def __init__(self, message: str, status: int | None = None) -> None:
        super().__init__(message)
        self.status = status


class MalformedUpstreamData(LikedSorterError, ValueError):
    """Spotify returned data that cannot be turned into a Track or AudioFeatures."""
