from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Iterable

from sqlalchemy import DateTime, Integer, String, Text, create_engine, select
from sqlalchemy.dialects.postgresql import insert as postgresql_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import DeclarativeBase, Mapped, Session, mapped_column, sessionmaker
from sqlalchemy.pool import StaticPool

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    pass


class ProcessedTrack(Base):
    __tablename__ = "spotify_processed_tracks"

    track_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    track_uri: Mapped[str] = mapped_column(String(128), nullable=False)
    track_name: Mapped[str] = mapped_column(Text, nullable=False, default="")
    artists: Mapped[str] = mapped_column(Text, nullable=False, default="")
    liked_added_at: Mapped[str | None] = mapped_column(String(64), nullable=True)
    decision: Mapped[str] = mapped_column(String(64), nullable=False)
    confidence: Mapped[int] = mapped_column(Integer, nullable=False)
    target_playlist_name: Mapped[str] = mapped_column(Text, nullable=False)
    target_playlist_id: Mapped[str] = mapped_column(String(64), nullable=False, default="")
    action_status: Mapped[str] = mapped_column(String(32), nullable=False)
    error: Mapped[str] = mapped_column(Text, nullable=False, default="")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)

    def to_dict(self) -> dict:
        return {
            "track_id": self.track_id,
            "track_uri": self.track_uri,
            "track_name": self.track_name,
            "artists": self.artists,
            "liked_added_at": self.liked_added_at,
            "decision": self.decision,
            "confidence": self.confidence,
            "target_playlist_name": self.target_playlist_name,
            "target_playlist_id": self.target_playlist_id,
            "action_status": self.action_status,
            "error": self.error,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }


@dataclass(slots=True)
class ProcessedRecord:
    track_id: str
    track_uri: str
    track_name: str
    artists: list[str]
    liked_added_at: str | None
    decision: str
    confidence: int
    target_playlist_name: str
    target_playlist_id: str
    action_status: str
    error: str = ""


def _row_values(r: ProcessedRecord) -> dict:
    return {
        "track_id": r.track_id,
        "track_uri": r.track_uri,
        "track_name": r.track_name,
        "artists": ", ".join(r.artists),
        "liked_added_at": r.liked_added_at,
        "decision": r.decision,
        "confidence": r.confidence,
        "target_playlist_name": r.target_playlist_name,
        "target_playlist_id": r.target_playlist_id,
        "action_status": r.action_status,
        "error": r.error,
        "created_at": _utcnow(),
    }


# Dialects with INSERT ... ON CONFLICT DO NOTHING.
_CONFLICT_INSERTS = {"sqlite": sqlite_insert, "postgresql": postgresql_insert}


class ProcessedTrackStore:
    """Decisions already applied to liked tracks, keyed by Spotify track id."""

    def __init__(self, database_url: str) -> None:
        engine_kwargs: dict = {}
        if database_url in ("sqlite://", "sqlite:///:memory:"):
            # A single shared connection keeps the in-memory database alive.
            engine_kwargs = {"connect_args": {"check_same_thread": False}, "poolclass": StaticPool}
        self.engine = create_engine(database_url, **engine_kwargs)
        Base.metadata.create_all(self.engine)
        self._sessions = sessionmaker(bind=self.engine, expire_on_commit=False)

    def _session(self) -> Session:
        return self._sessions()

    def already_processed(self, track_ids: Iterable[str]) -> set[str]:
        ids = [tid for tid in track_ids if tid]
        if not ids:
            return set()
        with self._session() as session:
            rows = session.scalars(select(ProcessedTrack.track_id).where(ProcessedTrack.track_id.in_(ids)))
            return set(rows)

    def record(self, records: Iterable[ProcessedRecord]) -> int:
        """Insert decisions for tracks not yet recorded and return how many were new.

        A track that is already present keeps its first decision, including
        one written by a concurrent run between the caller's check and this
        insert.
        """

        rows = {r.track_id: _row_values(r) for r in records}
        if not rows:
            return 0

        make_insert = _CONFLICT_INSERTS.get(self.engine.dialect.name)
        if make_insert is not None:
            statement = (
                make_insert(ProcessedTrack.__table__)
                .values(list(rows.values()))
                .on_conflict_do_nothing(index_elements=["track_id"])
            )
            with self.engine.begin() as connection:
                inserted = connection.execute(statement).rowcount
        else:
            inserted = 0
            for values in rows.values():
                try:
                    with self._session() as session, session.begin():
                        session.add(ProcessedTrack(**values))
                except IntegrityError:
                    continue
                inserted += 1

        if inserted != len(rows):
            logger.info("Skipped %d already recorded tracks", len(rows) - inserted)
        return inserted

    def recent(self, limit: int = 50) -> list[dict]:
        with self._session() as session:
            rows = session.scalars(
                select(ProcessedTrack).order_by(ProcessedTrack.created_at.desc()).limit(limit)
            )
            return [row.to_dict() for row in rows]
