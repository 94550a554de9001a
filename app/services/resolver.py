"""Resolve a Catalog-A title to a single Catalog-B record by title and year."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Sequence

from ..utils import normalize_title, sanitize_for_search
from .kuryana import KuryanaClient, KuryanaDrama, KuryanaSearchResult

logger = logging.getLogger(__name__)

YEAR_TOLERANCE = 1


@dataclass(slots=True)
class Resolution:
    """Outcome of a resolution attempt.

    ``candidate_count`` of zero means the searches came back empty, which
    also covers an unreachable upstream.
    """

    match: KuryanaDrama | None
    candidate_count: int


def merge_candidates(
    *result_sets: KuryanaSearchResult | None,
) -> list[KuryanaDrama]:
    """Flatten search results into one pool, keeping the first occurrence of each slug."""

    seen: set[str] = set()
    pool: list[KuryanaDrama] = []
    for result in result_sets:
        if result is None:
            continue
        for drama in result.results.dramas:
            if drama.slug in seen:
                continue
            seen.add(drama.slug)
            pool.append(drama)
    return pool


def best_year_match(
    candidates: Sequence[KuryanaDrama],
    target_year: int,
    queries: Sequence[str],
) -> KuryanaDrama | None:
    """Pick the best candidate for ``target_year``.

    Exact-year candidates win over ``±1`` year candidates. Ties are broken by
    normalised title: exact equality first, then containment in either
    direction, trying ``queries`` in priority order. When no query matches, the
    first year-plausible candidate is returned; when no candidate is
    year-plausible the result is ``None``.
    """

    by_year = [drama for drama in candidates if drama.year == target_year]
    if not by_year:
        by_year = [
            drama
            for drama in candidates
            if drama.year is not None
            and abs(drama.year - target_year) <= YEAR_TOLERANCE
        ]
    if not by_year:
        return None
    if len(by_year) == 1:
        return by_year[0]

    normalized_queries = [q for q in (normalize_title(q) for q in queries) if q]
    normalized_titles = [normalize_title(drama.title) for drama in by_year]

    for query in normalized_queries:
        for drama, title in zip(by_year, normalized_titles):
            if title == query:
                return drama
    for query in normalized_queries:
        for drama, title in zip(by_year, normalized_titles):
            if title and (query in title or title in query):
                return drama
    return by_year[0]


class Resolver:
    """Searches Catalog B with the native and primary titles and picks a match."""

    def __init__(self, kuryana: KuryanaClient):
        self._kuryana = kuryana

    async def search_pool(
        self, title: str, native_title: str | None = None
    ) -> list[KuryanaDrama]:
        """Run both searches concurrently and merge them, native results first."""

        native_query = sanitize_for_search(native_title) if native_title else ""
        primary_query = sanitize_for_search(title) or title

        results = await asyncio.gather(
            self._search(native_query),
            self._search(primary_query),
            return_exceptions=True,
        )
        result_sets: list[KuryanaSearchResult | None] = []
        for query, result in zip((native_query, primary_query), results):
            if isinstance(result, BaseException):
                logger.warning("Kuryana search for %r failed: %s", query, result)
                result_sets.append(None)
                continue
            result_sets.append(result)
        return merge_candidates(*result_sets)

    async def resolve(
        self,
        title: str,
        native_title: str | None,
        target_year: int | None,
    ) -> KuryanaDrama | None:
        """Return the single best Catalog-B record, or ``None`` when nothing fits."""

        return (await self.resolve_detailed(title, native_title, target_year)).match

    async def resolve_detailed(
        self,
        title: str,
        native_title: str | None,
        target_year: int | None,
    ) -> Resolution:
        """Like :meth:`resolve` but also reports how many candidates were seen."""

        if target_year is None or not (title or native_title):
            return Resolution(match=None, candidate_count=0)
        pool = await self.search_pool(title or native_title or "", native_title)
        queries = [query for query in (native_title, title) if query]
        match = best_year_match(pool, target_year, queries)
        if match is None:
            logger.info(
                "No Kuryana match for %s (%s) among %d candidates",
                title,
                target_year,
                len(pool),
            )
        return Resolution(match=match, candidate_count=len(pool))

    async def _search(self, query: str) -> KuryanaSearchResult | None:
        if not query:
            return None
        return await self._kuryana.search(query)
