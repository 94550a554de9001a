"""Policy layer that keeps the link cache warm.

Two entry points share the same building blocks:

* :meth:`SyncOrchestrator.warm_all` is the operator-triggered bulk job. Phase 1
  resolves and enriches every watch-list title whose link is missing or stale;
  phase 2 refreshes person profiles for everyone credited on any cached link.
  Both phases go through :func:`run_batches`.
* :meth:`SyncOrchestrator.run_scheduled_sync` is the time-boxed periodic pass.
  It never searches; it only re-enriches known links, titles in an active watch
  state first and then links older than the sweep threshold, one at a time.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Awaitable, Callable, Sequence

from ..config import Settings
from ..models import TaskResult
from .batching import BatchOutcome, run_batches
from .cache_store import CacheStore, LinkTarget
from .enrichment import EnrichmentFetcher
from .resolver import Resolver
from .tmdb import TMDBClient
from .watchlist import WatchListReader, WatchTitle

logger = logging.getLogger(__name__)

PRIORITY_TASK = "refresh-priority"
STALE_TASK = "refresh-stale"


@dataclass(slots=True)
class PhaseSummary:
    """Counts for one warm-up phase."""

    ran: bool = False
    total: int = 0
    fresh: int = 0
    succeeded: int = 0
    failed: int = 0

    def record(self, outcome: BatchOutcome) -> None:
        self.succeeded += outcome.succeeded
        self.failed += outcome.failed


@dataclass(slots=True)
class WarmSummary:
    phase1: PhaseSummary = field(default_factory=PhaseSummary)
    phase2: PhaseSummary = field(default_factory=PhaseSummary)


@dataclass(slots=True)
class _TierState:
    processed: int = 0
    succeeded: int = 0
    failed: int = 0


class SyncOrchestrator:
    """Decides what to refresh and feeds the work to the throttled runners."""

    def __init__(
        self,
        settings: Settings,
        store: CacheStore,
        resolver: Resolver,
        fetcher: EnrichmentFetcher,
        watchlist: WatchListReader,
        tmdb: TMDBClient | None = None,
        *,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        monotonic: Callable[[], float] = time.monotonic,
    ):
        self._settings = settings
        self._store = store
        self._resolver = resolver
        self._fetcher = fetcher
        self._watchlist = watchlist
        self._tmdb = tmdb
        self._sleep = sleep
        self._monotonic = monotonic

    # Warm mode ----------------------------------------------------------

    async def warm_all(
        self, *, phase1_only: bool = False, phase2_only: bool = False
    ) -> WarmSummary:
        if phase1_only and phase2_only:
            raise ValueError("phase1_only and phase2_only are mutually exclusive")

        summary = WarmSummary()
        collected: dict[str, None] = {}
        if not phase2_only:
            summary.phase1 = await self._warm_links(collected)
        if not phase1_only:
            summary.phase2 = await self._warm_people(list(collected))
        return summary

    async def _warm_links(self, collected: dict[str, None]) -> PhaseSummary:
        summary = PhaseSummary(ran=True)
        titles = await self._watchlist.titles()
        fresh_after = self._store.now() - timedelta(
            seconds=self._settings.link_cache_ttl_seconds
        )
        fresh_ids = await self._store.fresh_link_ids(fresh_after)
        to_fetch = [title for title in titles if title.external_id not in fresh_ids]
        summary.total = len(titles)
        summary.fresh = len(titles) - len(to_fetch)
        logger.info(
            "Watch list: %d titles | fresh: %d | to fetch: %d",
            summary.total,
            summary.fresh,
            len(to_fetch),
        )
        if not to_fetch:
            return summary

        known_slugs = await self._store.link_slugs(
            title.external_id for title in to_fetch
        )
        total = len(to_fetch)

        async def work(title: WatchTitle, index: int) -> bool:
            logger.info(
                "[%d/%d] %s (%s)", index + 1, total, title.title or "Unknown", title.year
            )
            slug = known_slugs.get(title.external_id)
            if not slug:
                slug = await self._resolve_title(title)
                if not slug:
                    return False
            enrichment = await self._fetcher.fetch_enrichment(slug)
            if enrichment is None:
                logger.info("No Catalog-B details for %s (%s)", title.external_id, slug)
                return False
            await self._store.upsert_resolved_link(title.external_id, slug, enrichment)
            if enrichment.cast is not None:
                for person_key in enrichment.cast.person_keys():
                    collected.setdefault(person_key, None)
            logger.info(
                "Cached %s -> %s rating=%s", title.external_id, slug, enrichment.rating
            )
            return True

        outcome = await run_batches(
            to_fetch,
            self._settings.warm_batch_size,
            self._settings.warm_batch_delay_seconds,
            work,
            describe=lambda title: title.external_id,
            sleep=self._sleep,
        )
        summary.record(outcome)
        logger.info(
            "Phase 1 complete: %d cached, %d failed", outcome.succeeded, outcome.failed
        )
        return summary

    async def _resolve_title(self, title: WatchTitle) -> str | None:
        native_title = await self._native_title(title)
        resolution = await self._resolver.resolve_detailed(
            title.title or "", native_title, title.year
        )
        if resolution.match is None:
            if resolution.candidate_count:
                await self._store.record_known_miss(title.external_id)
            return None
        return resolution.match.slug

    async def _native_title(self, title: WatchTitle) -> str | None:
        if self._tmdb is None:
            return None
        details = await self._tmdb.get_details(title.external_id, title.media_type)
        if details is None:
            return None
        native = details.native_title
        if native and native != title.title:
            return native
        return None

    async def _warm_people(self, collected: Sequence[str]) -> PhaseSummary:
        summary = PhaseSummary(ran=True)
        person_keys = list(dict.fromkeys([*collected, *await self._store.cast_person_keys()]))
        fresh_after = self._store.now() - timedelta(
            seconds=self._settings.person_cache_ttl_seconds
        )
        fresh_keys = await self._store.fresh_person_keys(fresh_after, person_keys)
        to_fetch = [key for key in person_keys if key not in fresh_keys]
        summary.total = len(person_keys)
        summary.fresh = len(person_keys) - len(to_fetch)
        logger.info(
            "Cast members: %d unique | fresh: %d | to fetch: %d",
            summary.total,
            summary.fresh,
            len(to_fetch),
        )
        if not to_fetch:
            return summary

        async def work(person_key: str, index: int) -> bool:
            payload = await self._fetcher.fetch_person(person_key)
            if payload is None:
                logger.info("[%d/%d] %s not found", index + 1, len(to_fetch), person_key)
                return False
            await self._store.upsert_person_profile(person_key, payload)
            return True

        outcome = await run_batches(
            to_fetch,
            self._settings.warm_batch_size,
            self._settings.warm_batch_delay_seconds,
            work,
            sleep=self._sleep,
        )
        summary.record(outcome)
        logger.info(
            "Phase 2 complete: %d cached, %d failed", outcome.succeeded, outcome.failed
        )
        return summary

    # Scheduled sync -----------------------------------------------------

    async def run_scheduled_sync(
        self, time_budget_seconds: float | None = None
    ) -> list[TaskResult]:
        """Refresh priority links, then stale ones, until the budget runs out."""

        budget = (
            time_budget_seconds
            if time_budget_seconds is not None
            else self._settings.sync_time_budget_seconds
        )
        started = self._monotonic()
        tiers: list[tuple[str, Callable[[], Awaitable[list[LinkTarget]]]]] = []
        priority_keys: set[tuple[str, int]] = set()

        async def load_priority() -> list[LinkTarget]:
            targets = await self._priority_targets()
            priority_keys.update((t.external_id, t.season) for t in targets)
            return targets

        async def load_stale() -> list[LinkTarget]:
            targets = await self._stale_targets()
            return [t for t in targets if (t.external_id, t.season) not in priority_keys]

        tiers.append((PRIORITY_TASK, load_priority))
        tiers.append((STALE_TASK, load_stale))

        results: list[TaskResult] = []
        first_item = True
        for task_name, load in tiers:
            task_started = self._monotonic()
            try:
                targets = await load()
            except Exception as exc:
                logger.exception("Could not list %s targets", task_name)
                results.append(
                    TaskResult(
                        task=task_name,
                        success=False,
                        error=str(exc) or exc.__class__.__name__,
                        duration_ms=self._elapsed_ms(task_started),
                    )
                )
                continue

            state = _TierState()
            for target in targets:
                if self._monotonic() - started >= budget:
                    break
                if not first_item:
                    await self._sleep(self._settings.sync_item_delay_seconds)
                first_item = False
                state.processed += 1
                if await self._refresh_target(target):
                    state.succeeded += 1
                else:
                    state.failed += 1

            skipped = len(targets) - state.processed
            if skipped:
                logger.info(
                    "Time budget reached; leaving %d %s links for the next run",
                    skipped,
                    task_name,
                )
            results.append(
                TaskResult(
                    task=task_name,
                    success=True,
                    count=state.succeeded,
                    failed=state.failed,
                    skipped=skipped,
                    duration_ms=self._elapsed_ms(task_started),
                )
            )
        return results

    async def _priority_targets(self) -> list[LinkTarget]:
        active = await self._watchlist.active_seasons(self._settings.priority_statuses)
        if not active:
            return []
        external_ids = [external_id for external_id, _ in active]
        link_slugs = await self._store.link_slugs(external_ids)
        season_slugs = await self._store.season_slugs(external_ids)

        targets: dict[tuple[str, int], LinkTarget] = {}
        for external_id, season in active:
            season_slug = season_slugs.get((external_id, season)) if season > 1 else None
            if season_slug:
                target = LinkTarget(external_id=external_id, season=season, slug=season_slug)
            elif external_id in link_slugs:
                target = LinkTarget(
                    external_id=external_id, season=1, slug=link_slugs[external_id]
                )
            else:
                continue
            targets.setdefault((target.external_id, target.season), target)
        return list(targets.values())

    async def _stale_targets(self) -> list[LinkTarget]:
        stale_before = self._store.now() - timedelta(
            seconds=self._settings.sync_stale_seconds
        )
        links = await self._store.list_link_targets(stale_before=stale_before)
        seasons = await self._store.list_season_targets(
            stale_before=stale_before, include_pending=True
        )
        return [*links, *seasons]

    async def _refresh_target(self, target: LinkTarget) -> bool:
        """Re-enrich one link; failures are logged and reported, never raised."""

        try:
            enrichment = await self._fetcher.fetch_enrichment(target.slug)
            if enrichment is None:
                logger.warning(
                    "Sync refresh for %s season %s (%s) returned no details",
                    target.external_id,
                    target.season,
                    target.slug,
                )
                return False
            if target.is_season_override:
                await self._store.upsert_season_link(
                    target.external_id, target.season, target.slug, enrichment
                )
            else:
                await self._store.upsert_resolved_link(
                    target.external_id, target.slug, enrichment
                )
            return True
        except Exception as exc:
            logger.warning(
                "Sync refresh for %s season %s failed: %s",
                target.external_id,
                target.season,
                exc,
            )
            return False

    def _elapsed_ms(self, started: float) -> int:
        return int((self._monotonic() - started) * 1000)
