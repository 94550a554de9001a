"""SQLAlchemy ORM models backing the persistent state."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import DateTime, Float, Integer, JSON, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from .database import Base
from .utils import utcnow


class WatchEntry(Base):
    """A primary-catalog title (one row per season) on a user's watch list."""

    __tablename__ = "watch_entries"
    __table_args__ = (
        UniqueConstraint(
            "user_id", "source", "external_id", "season", name="uq_watch_entry"
        ),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(64), index=True)
    source: Mapped[str] = mapped_column(String(16), default="tmdb")
    external_id: Mapped[str] = mapped_column(String(64), index=True)
    media_type: Mapped[str] = mapped_column(String(16), default="TV")
    season: Mapped[int] = mapped_column(Integer, default=1)
    title: Mapped[str | None] = mapped_column(String(255), nullable=True)
    year: Mapped[int | None] = mapped_column(Integer, nullable=True)
    status: Mapped[str] = mapped_column(String(32), default="Plan to Watch")
    progress: Mapped[int] = mapped_column(Integer, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=utcnow, onupdate=utcnow
    )


class CachedLink(Base):
    """Resolved Catalog-B link and enrichment for a title (season 1)."""

    __tablename__ = "cached_links"

    external_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    slug: Mapped[str] = mapped_column(String(255), default="", index=True)
    rating: Mapped[float | None] = mapped_column(Float, nullable=True)
    ranking: Mapped[int | None] = mapped_column(Integer, nullable=True)
    popularity: Mapped[int | None] = mapped_column(Integer, nullable=True)
    tags: Mapped[list[str] | None] = mapped_column(JSON, nullable=True)
    cast_json: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    cached_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)


class SeasonLinkRecord(Base):
    """Per-season override for seasons two and up of a multi-season title."""

    __tablename__ = "season_links"
    __table_args__ = (
        UniqueConstraint("external_id", "season", name="uq_season_link"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    external_id: Mapped[str] = mapped_column(String(64), index=True)
    season: Mapped[int] = mapped_column(Integer)
    slug: Mapped[str] = mapped_column(String(255), default="")
    rating: Mapped[float | None] = mapped_column(Float, nullable=True)
    ranking: Mapped[int | None] = mapped_column(Integer, nullable=True)
    popularity: Mapped[int | None] = mapped_column(Integer, nullable=True)
    tags: Mapped[list[str] | None] = mapped_column(JSON, nullable=True)
    cast_json: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    cached_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)


class CachedPerson(Base):
    """Cached Catalog-B person profile including the credit list."""

    __tablename__ = "cached_people"

    person_key: Mapped[str] = mapped_column(String(255), primary_key=True)
    payload: Mapped[dict[str, Any]] = mapped_column(JSON)
    cached_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)


class SyncLog(Base):
    """Audit record of the most recent scheduled sync."""

    __tablename__ = "sync_logs"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    last_sync: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    results: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
