"""Read-only access to the primary-catalog watch list."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Sequence

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..db_models import WatchEntry


@dataclass(slots=True, frozen=True)
class WatchTitle:
    """One distinct Catalog-A title tracked by any user."""

    external_id: str
    title: str | None
    year: int | None
    media_type: str


class WatchListReader:
    """Enumerates watch-list titles for the cache warmer and the scheduled sync."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def titles(self, source: str = "tmdb") -> list[WatchTitle]:
        """Distinct titles, described by their lowest tracked season."""

        stmt = (
            select(WatchEntry)
            .where(WatchEntry.source == source)
            .order_by(WatchEntry.external_id, WatchEntry.season, WatchEntry.id)
        )
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            entries = result.scalars().all()

        titles: dict[str, WatchTitle] = {}
        for entry in entries:
            if entry.external_id in titles:
                continue
            titles[entry.external_id] = WatchTitle(
                external_id=entry.external_id,
                title=entry.title,
                year=entry.year,
                media_type=entry.media_type,
            )
        return list(titles.values())

    async def active_seasons(
        self, statuses: Sequence[str], source: str = "tmdb"
    ) -> list[tuple[str, int]]:
        """``(external_id, season)`` pairs in an active state, most recently updated first."""

        if not statuses:
            return []
        stmt = (
            select(WatchEntry.external_id, WatchEntry.season)
            .where(WatchEntry.source == source, WatchEntry.status.in_(list(statuses)))
            .order_by(WatchEntry.updated_at.desc(), WatchEntry.id)
        )
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            rows = result.all()

        seen: dict[tuple[str, int], None] = {}
        for external_id, season in rows:
            seen.setdefault((external_id, season or 1), None)
        return list(seen)
