"""Read path used by detail pages, plus the manual linking actions."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Hashable, TypeVar

from ..config import Settings
from ..models import PersonProfile, ResolvedLink, SeasonLink
from .cache_store import CacheStore, MalformedCacheRecord, is_fresh
from .enrichment import EnrichmentFetcher
from .kuryana import KuryanaClient, KuryanaDrama
from .resolver import Resolver

logger = logging.getLogger(__name__)

ResultT = TypeVar("ResultT")


class RequestMemo:
    """Deduplicates identical lookups within a single inbound request.

    Build one per request and drop it afterwards; concurrent callers asking
    for the same key share a single in-flight lookup.
    """

    def __init__(self) -> None:
        self._entries: dict[Hashable, asyncio.Task[Any]] = {}

    def __len__(self) -> int:
        return len(self._entries)

    async def get_or_run(
        self, key: Hashable, factory: Callable[[], Awaitable[ResultT]]
    ) -> ResultT:
        task = self._entries.get(key)
        if task is None:
            task = asyncio.ensure_future(factory())
            self._entries[key] = task
        return await asyncio.shield(task)


class LinkService:
    """Serves cached Catalog-B data, resolving and backfilling on demand."""

    def __init__(
        self,
        settings: Settings,
        store: CacheStore,
        resolver: Resolver,
        fetcher: EnrichmentFetcher,
        kuryana: KuryanaClient,
    ):
        self._settings = settings
        self._store = store
        self._resolver = resolver
        self._fetcher = fetcher
        self._kuryana = kuryana

    async def get_resolved_link(
        self,
        external_id: str,
        title: str,
        year: int | None,
        native_title: str | None = None,
        *,
        memo: RequestMemo | None = None,
    ) -> ResolvedLink | None:
        """Return enrichment for a title; ``None`` means none is available."""

        if memo is None:
            return await self._load_link(external_id, title, year, native_title)
        key = ("link", external_id, title, year, native_title)
        return await memo.get_or_run(
            key, lambda: self._load_link(external_id, title, year, native_title)
        )

    async def get_season_link(
        self,
        external_id: str,
        season: int,
        title: str,
        year: int | None,
        native_title: str | None = None,
        *,
        memo: RequestMemo | None = None,
    ) -> ResolvedLink | None:
        """Season-aware read; seasons without a usable override use season 1."""

        if season > 1:
            try:
                override = await self._store.get_season_link(external_id, season)
            except MalformedCacheRecord as exc:
                logger.warning("Ignoring season %s of %s: %s", season, external_id, exc)
                override = None
            if override is not None and override.slug and not override.is_pending:
                return override
        return await self.get_resolved_link(
            external_id, title, year, native_title, memo=memo
        )

    async def get_person_profile(self, person_key: str) -> PersonProfile | None:
        """Read-through person cache; a stale copy beats nothing when upstream fails."""

        try:
            cached = await self._store.get_person_profile(person_key)
        except MalformedCacheRecord as exc:
            logger.warning("Refetching person %s: %s", person_key, exc)
            cached = None
        ttl = self._settings.person_cache_ttl_seconds
        if cached is not None and is_fresh(cached.cached_at, ttl, self._store.now()):
            return cached

        payload = await self._fetcher.fetch_person(person_key)
        if payload is None:
            return cached
        return await self._store.upsert_person_profile(person_key, payload)

    async def search_catalog_b(self, query: str) -> list[KuryanaDrama]:
        """Raw Catalog-B candidates for a manual link picker."""

        result = await self._kuryana.search(query)
        return list(result.results.dramas) if result else []

    async def native_title_for(self, slug: str) -> str | None:
        return await self._fetcher.fetch_native_title(slug)

    async def relink_title(self, external_id: str, slug: str) -> ResolvedLink:
        """Point a title at a hand-picked slug and enrich it immediately."""

        if not external_id or not slug:
            raise ValueError("Both an external id and a slug are required")
        enrichment = await self._fetcher.fetch_enrichment(slug)
        if enrichment is None:
            raise LookupError(f"No Catalog-B details for {slug}")
        return await self._store.upsert_resolved_link(external_id, slug, enrichment)

    async def refetch_title(self, external_id: str) -> ResolvedLink | None:
        """Re-enrich a linked title from its stored slug without searching.

        A failed cast call keeps the cast already on record. ``None`` means
        Catalog B returned no details and the cached row was left alone.
        """

        slug = (await self._store.link_slugs([external_id])).get(external_id)
        if not slug:
            raise LookupError(f"No Catalog-B link for {external_id}")
        enrichment = await self._fetcher.fetch_enrichment(slug)
        if enrichment is None:
            return None
        if enrichment.cast is None:
            try:
                cached = await self._store.get_resolved_link(external_id)
            except MalformedCacheRecord as exc:
                logger.warning("Dropping stored cast of %s: %s", external_id, exc)
                cached = None
            if cached is not None:
                enrichment = enrichment.model_copy(update={"cast": cached.cast})
        return await self._store.upsert_resolved_link(external_id, slug, enrichment)

    async def link_season(self, external_id: str, season: int, slug: str) -> SeasonLink:
        """Record a pending season override; the scheduled sync enriches it."""

        return await self._store.set_season_slug(external_id, season, slug)

    async def _load_link(
        self,
        external_id: str,
        title: str,
        year: int | None,
        native_title: str | None,
    ) -> ResolvedLink | None:
        try:
            return await self._load_link_unguarded(
                external_id, title, year, native_title
            )
        except Exception:  # pragma: no cover - safety net for page rendering
            logger.exception("Failed to load Catalog-B data for %s", title or external_id)
            return None

    async def _load_link_unguarded(
        self,
        external_id: str,
        title: str,
        year: int | None,
        native_title: str | None,
    ) -> ResolvedLink | None:
        try:
            cached = await self._store.get_resolved_link(external_id)
        except MalformedCacheRecord as exc:
            logger.warning("Re-resolving %s: %s", external_id, exc)
            cached = None

        ttl = self._settings.link_cache_ttl_seconds
        if cached is not None and is_fresh(cached.cached_at, ttl, self._store.now()):
            if cached.is_known_miss:
                return None
            if cached.cast_is_incomplete:
                return await self._backfill_cast(cached)
            return cached

        if cached is not None and cached.slug:
            enrichment = await self._fetcher.fetch_enrichment(cached.slug)
            if enrichment is None:
                # Serve the stale copy rather than nothing.
                return cached
            return await self._store.upsert_resolved_link(
                external_id, cached.slug, enrichment
            )

        resolution = await self._resolver.resolve_detailed(title, native_title, year)
        if resolution.match is None:
            if resolution.candidate_count:
                await self._store.record_known_miss(external_id)
            return None

        enrichment = await self._fetcher.fetch_enrichment(resolution.match.slug)
        if enrichment is None:
            return None
        return await self._store.upsert_resolved_link(
            external_id, resolution.match.slug, enrichment
        )

    async def _backfill_cast(self, cached: ResolvedLink) -> ResolvedLink:
        """Fetch only the cast for a fresh link that was stored without one."""

        try:
            cast = await self._fetcher.fetch_cast(cached.slug)
            if cast is not None:
                await self._store.update_link_cast(cached.external_id, cast)
        except Exception as exc:
            logger.warning("Cast backfill for %s failed: %s", cached.slug, exc)
            cast = None
        return cached.model_copy(update={"cast": cast})
