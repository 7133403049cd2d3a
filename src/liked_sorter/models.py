from __future__ import annotations

from dataclasses import dataclass, field

FEATURE_NAMES: tuple[str, ...] = (
    "danceability",
    "energy",
    "valence",
    "tempo",
    "acousticness",
    "instrumentalness",
    "speechiness",
    "liveness",
    "loudness",
)


@dataclass(slots=True, frozen=True)
class AudioFeatures:
    danceability: float
    energy: float
    valence: float
    tempo: float
    acousticness: float
    instrumentalness: float
    speechiness: float
    liveness: float
    loudness: float

    def as_dict(self) -> dict[str, float]:
        return {name: getattr(self, name) for name in FEATURE_NAMES}


@dataclass(slots=True)
class Track:
    track_id: str | None
    name: str
    artists: list[str] = field(default_factory=list)
    popularity: int | None = None
    audio: AudioFeatures | None = None
    uri: str | None = None
    album: str | None = None
    added_at: str | None = None


@dataclass(slots=True, frozen=True)
class Decision:
    label: str
    confidence: int
    rule: str


@dataclass(slots=True)
class Cluster:
    cluster_id: int
    members: list[Track]
    averages: dict[str, float | None]
    samples: list[Track]

    @property
    def size(self) -> int:
        return len(self.members)


@dataclass(slots=True)
class ClusterResult:
    performed: bool
    effective_k: int
    clusters: list[Cluster]
    note: str | None = None
