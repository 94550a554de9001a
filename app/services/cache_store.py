"""Keyed, timestamped persistence for links, season overrides and people.

The store records ``cached_at`` and answers range queries over it; freshness
decisions live with the callers.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Callable, Iterable

from pydantic import ValidationError
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..db_models import CachedLink, CachedPerson, SeasonLinkRecord
from ..models import CastPayload, Enrichment, PersonProfile, ResolvedLink, SeasonLink
from ..utils import utcnow

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


class MalformedCacheRecord(ValueError):
    """A stored payload no longer matches the typed record shape."""


@dataclass(slots=True, frozen=True)
class LinkTarget:
    """Identifies a cached link that a refresh pass can re-enrich."""

    external_id: str
    season: int
    slug: str

    @property
    def is_season_override(self) -> bool:
        return self.season > 1


def is_fresh(cached_at: datetime, ttl_seconds: float, now: datetime) -> bool:
    """A record is fresh while its age is strictly below the TTL."""

    return now - cached_at < timedelta(seconds=ttl_seconds)


def _load_cast(raw: Any, *, key: str) -> CastPayload | None:
    if raw is None:
        return None
    try:
        return CastPayload.model_validate(raw)
    except ValidationError as exc:
        raise MalformedCacheRecord(f"Stored cast for {key} is malformed") from exc


def _dump_cast(cast: CastPayload | None) -> dict[str, Any] | None:
    if cast is None:
        return None
    return cast.model_dump(mode="json")


def _load_tags(raw: Any, *, key: str) -> list[str]:
    if raw is None:
        return []
    if not isinstance(raw, list):
        raise MalformedCacheRecord(f"Stored tags for {key} are malformed")
    return [str(tag) for tag in raw]


class CacheStore:
    """Read/upsert pairs for the three cached record kinds."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        clock: Clock = utcnow,
    ):
        self._session_factory = session_factory
        self._clock = clock

    def now(self) -> datetime:
        return self._clock()

    # Resolved links -----------------------------------------------------

    async def get_resolved_link(self, external_id: str) -> ResolvedLink | None:
        async with self._session_factory() as session:
            row = await session.get(CachedLink, external_id)
            if row is None:
                return None
            return self._link_from_row(row)

    async def upsert_resolved_link(
        self, external_id: str, slug: str, enrichment: Enrichment | None = None
    ) -> ResolvedLink:
        """Create the link, or replace its enrichment and refresh ``cached_at``."""

        fields = enrichment or Enrichment()
        now = self.now()
        async with self._session_factory() as session:
            row = await session.get(CachedLink, external_id)
            if row is None:
                row = CachedLink(external_id=external_id, cached_at=now)
                session.add(row)
            else:
                row.cached_at = now
            row.slug = slug
            row.rating = fields.rating
            row.ranking = fields.ranking
            row.popularity = fields.popularity
            row.tags = list(fields.tags)
            row.cast_json = _dump_cast(fields.cast)
            await session.commit()
            return self._link_from_row(row)

    async def record_known_miss(self, external_id: str) -> ResolvedLink:
        """Remember that resolution found nothing, so loops skip this title."""

        return await self.upsert_resolved_link(external_id, "", None)

    async def update_link_cast(self, external_id: str, cast: CastPayload) -> bool:
        """Replace only the cast of an existing link; ``cached_at`` is untouched."""

        async with self._session_factory() as session:
            row = await session.get(CachedLink, external_id)
            if row is None:
                return False
            row.cast_json = _dump_cast(cast)
            await session.commit()
            return True

    async def list_link_targets(
        self, *, stale_before: datetime | None = None
    ) -> list[LinkTarget]:
        """Links with a non-empty slug, optionally only those cached before a cutoff."""

        stmt = select(CachedLink.external_id, CachedLink.slug).where(
            CachedLink.slug != ""
        )
        if stale_before is not None:
            stmt = stmt.where(CachedLink.cached_at < stale_before)
        stmt = stmt.order_by(CachedLink.cached_at, CachedLink.external_id)
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            return [
                LinkTarget(external_id=external_id, season=1, slug=slug)
                for external_id, slug in result.all()
            ]

    async def link_slugs(self, external_ids: Iterable[str]) -> dict[str, str]:
        """Map external ids to their non-empty slugs."""

        ids = list(dict.fromkeys(external_ids))
        if not ids:
            return {}
        stmt = select(CachedLink.external_id, CachedLink.slug).where(
            CachedLink.external_id.in_(ids), CachedLink.slug != ""
        )
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            return {external_id: slug for external_id, slug in result.all()}

    async def season_slugs(
        self, external_ids: Iterable[str]
    ) -> dict[tuple[str, int], str]:
        """Map ``(external_id, season)`` to non-empty override slugs."""

        ids = list(dict.fromkeys(external_ids))
        if not ids:
            return {}
        stmt = select(
            SeasonLinkRecord.external_id, SeasonLinkRecord.season, SeasonLinkRecord.slug
        ).where(SeasonLinkRecord.external_id.in_(ids), SeasonLinkRecord.slug != "")
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            return {
                (external_id, season): slug for external_id, season, slug in result.all()
            }

    async def fresh_link_ids(self, fresh_after: datetime) -> set[str]:
        stmt = select(CachedLink.external_id).where(CachedLink.cached_at > fresh_after)
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            return {row[0] for row in result.all()}

    async def cast_person_keys(self) -> list[str]:
        """Every person key referenced by any cached link, in first-seen order."""

        stmt = select(CachedLink.external_id, CachedLink.cast_json).where(
            CachedLink.cast_json.is_not(None)
        )
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            rows = result.all()

        keys: dict[str, None] = {}
        for external_id, raw_cast in rows:
            try:
                cast = _load_cast(raw_cast, key=external_id)
            except MalformedCacheRecord as exc:
                logger.warning("Skipping cast of %s: %s", external_id, exc)
                continue
            if cast is None:
                continue
            for person_key in cast.person_keys():
                keys.setdefault(person_key, None)
        return list(keys)

    # Season overrides ---------------------------------------------------

    async def get_season_link(
        self, external_id: str, season: int
    ) -> SeasonLink | None:
        if season <= 1:
            return None
        async with self._session_factory() as session:
            row = await self._season_row(session, external_id, season)
            if row is None:
                return None
            return self._season_from_row(row)

    async def upsert_season_link(
        self,
        external_id: str,
        season: int,
        slug: str,
        enrichment: Enrichment | None = None,
    ) -> SeasonLink:
        """Store enrichment for a season override, refreshing ``cached_at`` on update."""

        self._require_override_season(season)
        fields = enrichment or Enrichment()
        now = self.now()
        async with self._session_factory() as session:
            row = await self._season_row(session, external_id, season)
            if row is None:
                row = SeasonLinkRecord(
                    external_id=external_id, season=season, cached_at=now
                )
                session.add(row)
            else:
                row.cached_at = now
            row.slug = slug
            row.rating = fields.rating
            row.ranking = fields.ranking
            row.popularity = fields.popularity
            row.tags = list(fields.tags)
            row.cast_json = _dump_cast(fields.cast)
            await session.commit()
            return self._season_from_row(row)

    async def set_season_slug(
        self, external_id: str, season: int, slug: str
    ) -> SeasonLink:
        """Link a season to a slug without enrichment (the pending state)."""

        self._require_override_season(season)
        if not slug:
            raise ValueError("A season link needs a non-empty slug")
        async with self._session_factory() as session:
            row = await self._season_row(session, external_id, season)
            if row is None:
                row = SeasonLinkRecord(
                    external_id=external_id,
                    season=season,
                    slug=slug,
                    tags=[],
                    cached_at=self.now(),
                )
                session.add(row)
            elif row.slug != slug:
                row.slug = slug
                row.rating = None
                row.ranking = None
                row.popularity = None
                row.tags = []
                row.cast_json = None
            await session.commit()
            return self._season_from_row(row)

    async def list_season_targets(
        self, *, stale_before: datetime | None = None, include_pending: bool = False
    ) -> list[LinkTarget]:
        """Season overrides with a slug, stale ones and optionally pending ones."""

        stmt = select(SeasonLinkRecord).where(SeasonLinkRecord.slug != "")
        stmt = stmt.order_by(
            SeasonLinkRecord.cached_at,
            SeasonLinkRecord.external_id,
            SeasonLinkRecord.season,
        )
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            rows = list(result.scalars().all())

        targets: list[LinkTarget] = []
        for row in rows:
            stale = stale_before is None or row.cached_at < stale_before
            pending = include_pending and self._row_is_pending(row)
            if stale or pending:
                targets.append(
                    LinkTarget(external_id=row.external_id, season=row.season, slug=row.slug)
                )
        return targets

    # People -------------------------------------------------------------

    async def get_person_profile(self, person_key: str) -> PersonProfile | None:
        async with self._session_factory() as session:
            row = await session.get(CachedPerson, person_key)
            if row is None:
                return None
            if not isinstance(row.payload, dict):
                raise MalformedCacheRecord(f"Stored profile for {person_key} is malformed")
            return PersonProfile(
                person_key=row.person_key, payload=row.payload, cached_at=row.cached_at
            )

    async def upsert_person_profile(
        self, person_key: str, payload: dict[str, Any]
    ) -> PersonProfile:
        now = self.now()
        async with self._session_factory() as session:
            row = await session.get(CachedPerson, person_key)
            if row is None:
                row = CachedPerson(person_key=person_key, payload=payload, cached_at=now)
                session.add(row)
            else:
                row.payload = payload
                row.cached_at = now
            await session.commit()
            return PersonProfile(
                person_key=row.person_key, payload=row.payload, cached_at=row.cached_at
            )

    async def fresh_person_keys(
        self, fresh_after: datetime, person_keys: Iterable[str] | None = None
    ) -> set[str]:
        stmt = select(CachedPerson.person_key).where(CachedPerson.cached_at > fresh_after)
        if person_keys is not None:
            stmt = stmt.where(CachedPerson.person_key.in_(list(person_keys)))
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            return {row[0] for row in result.all()}

    # Helpers ------------------------------------------------------------

    @staticmethod
    def _require_override_season(season: int) -> None:
        if season <= 1:
            raise ValueError("Season 1 is stored on the resolved link, not as an override")

    @staticmethod
    async def _season_row(
        session: AsyncSession, external_id: str, season: int
    ) -> SeasonLinkRecord | None:
        stmt = select(SeasonLinkRecord).where(
            SeasonLinkRecord.external_id == external_id,
            SeasonLinkRecord.season == season,
        )
        result = await session.execute(stmt)
        return result.scalar_one_or_none()

    @classmethod
    def _row_is_pending(cls, row: SeasonLinkRecord) -> bool:
        try:
            return cls._season_from_row(row).is_pending
        except MalformedCacheRecord:
            # Re-enriching overwrites the broken payload.
            return True

    @staticmethod
    def _link_from_row(row: CachedLink) -> ResolvedLink:
        return ResolvedLink(
            external_id=row.external_id,
            slug=row.slug or "",
            rating=row.rating,
            ranking=row.ranking,
            popularity=row.popularity,
            tags=_load_tags(row.tags, key=row.external_id),
            cast=_load_cast(row.cast_json, key=row.external_id),
            cached_at=row.cached_at,
        )

    @staticmethod
    def _season_from_row(row: SeasonLinkRecord) -> SeasonLink:
        key = f"{row.external_id}#s{row.season}"
        return SeasonLink(
            external_id=row.external_id,
            season=row.season,
            slug=row.slug or "",
            rating=row.rating,
            ranking=row.ranking,
            popularity=row.popularity,
            tags=_load_tags(row.tags, key=key),
            cast=_load_cast(row.cast_json, key=key),
            cached_at=row.cached_at,
        )
