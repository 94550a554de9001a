"""Persistence behaviour of the link, season and person caches."""

from __future__ import annotations

from datetime import datetime, timedelta

import pytest
from sqlalchemy import update

from app.database import Database
from app.db_models import CachedLink
from app.models import CastMember, CastPayload, Enrichment
from app.services.cache_store import CacheStore, MalformedCacheRecord, is_fresh
from app.utils import utcnow

TTL = 7 * 24 * 60 * 60
START = datetime(2025, 3, 1, 12, 0, 0)


class FakeClock:
    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now += timedelta(**kwargs)


async def _open(tmp_path, clock=utcnow) -> tuple[Database, CacheStore]:
    database = Database(f"sqlite+aiosqlite:///{tmp_path / 'cache.db'}")
    await database.create_all()
    return database, CacheStore(database.session_factory, clock=clock)


def _cast(*keys: str) -> CastPayload:
    return CastPayload(
        main=[CastMember(name=key.title(), person_key=key, role_type="Main Role") for key in keys]
    )


def test_staleness_boundary_around_ttl() -> None:
    now = START
    ttl = timedelta(seconds=TTL)
    millisecond = timedelta(milliseconds=1)

    assert is_fresh(now - ttl + millisecond, TTL, now)
    assert not is_fresh(now - ttl - millisecond, TTL, now)
    assert not is_fresh(now - ttl, TTL, now)


@pytest.mark.anyio("asyncio")
async def test_resolved_link_round_trip(tmp_path) -> None:
    database, store = await _open(tmp_path)
    enrichment = Enrichment(
        rating=8.7, ranking=12, popularity=1204, tags=["Life", "Family"], cast=_cast("lee-je-hoon")
    )
    try:
        before = utcnow()
        await store.upsert_resolved_link("tmdb-99", "49231-move-to-heaven", enrichment)
        after = utcnow()
        link = await store.get_resolved_link("tmdb-99")
    finally:
        await database.dispose()

    assert link is not None
    assert link.slug == "49231-move-to-heaven"
    assert Enrichment.model_validate(link.model_dump(include=set(Enrichment.model_fields))) == enrichment
    assert before <= link.cached_at <= after


@pytest.mark.anyio("asyncio")
async def test_upsert_refreshes_cached_at_and_replaces_fields(tmp_path) -> None:
    clock = FakeClock(START)
    database, store = await _open(tmp_path, clock)
    try:
        await store.upsert_resolved_link("tmdb-1", "slug", Enrichment(rating=8.0, tags=["A"]))
        clock.advance(days=3)
        link = await store.upsert_resolved_link("tmdb-1", "slug", Enrichment(rating=8.5))
    finally:
        await database.dispose()

    assert link.cached_at == START + timedelta(days=3)
    assert link.rating == pytest.approx(8.5)
    assert link.tags == []


@pytest.mark.anyio("asyncio")
async def test_update_link_cast_leaves_cached_at_alone(tmp_path) -> None:
    clock = FakeClock(START)
    database, store = await _open(tmp_path, clock)
    try:
        await store.upsert_resolved_link("tmdb-1", "slug", Enrichment(rating=8.0))
        clock.advance(hours=5)
        updated = await store.update_link_cast("tmdb-1", _cast("actor"))
        missing = await store.update_link_cast("tmdb-404", _cast("actor"))
        link = await store.get_resolved_link("tmdb-1")
    finally:
        await database.dispose()

    assert updated is True
    assert missing is False
    assert link is not None
    assert link.cached_at == START
    assert link.cast is not None
    assert link.cast.person_keys() == ["actor"]


@pytest.mark.anyio("asyncio")
async def test_known_miss_is_excluded_from_refresh_targets(tmp_path) -> None:
    clock = FakeClock(START)
    database, store = await _open(tmp_path, clock)
    try:
        await store.record_known_miss("tmdb-miss")
        await store.upsert_resolved_link("tmdb-hit", "hit-slug", Enrichment(rating=7.0))
        miss = await store.get_resolved_link("tmdb-miss")
        clock.advance(days=8)
        targets = await store.list_link_targets(stale_before=clock.now - timedelta(days=6))
    finally:
        await database.dispose()

    assert miss is not None and miss.is_known_miss
    assert [(t.external_id, t.slug) for t in targets] == [("tmdb-hit", "hit-slug")]


@pytest.mark.anyio("asyncio")
async def test_malformed_stored_cast_fails_at_the_store_boundary(tmp_path) -> None:
    database, store = await _open(tmp_path)
    try:
        await store.upsert_resolved_link("tmdb-1", "slug", Enrichment(rating=8.0, cast=_cast("a")))
        await store.upsert_resolved_link("tmdb-2", "slug-2", Enrichment(cast=_cast("b")))
        async with database.session_factory() as session:
            await session.execute(
                update(CachedLink)
                .where(CachedLink.external_id == "tmdb-1")
                .values(cast_json={"main": "not-a-list"})
            )
            await session.commit()

        with pytest.raises(MalformedCacheRecord):
            await store.get_resolved_link("tmdb-1")
        keys = await store.cast_person_keys()
    finally:
        await database.dispose()

    assert keys == ["b"]


@pytest.mark.anyio("asyncio")
async def test_legacy_cast_without_version_still_loads(tmp_path) -> None:
    database, store = await _open(tmp_path)
    try:
        await store.upsert_resolved_link("tmdb-1", "slug")
        async with database.session_factory() as session:
            await session.execute(
                update(CachedLink)
                .where(CachedLink.external_id == "tmdb-1")
                .values(
                    cast_json={
                        "main": [{"name": "Kim", "slug": "kim", "roleType": "Main Role"}],
                        "support": [],
                        "guest": [],
                    }
                )
            )
            await session.commit()
        link = await store.get_resolved_link("tmdb-1")
    finally:
        await database.dispose()

    assert link is not None and link.cast is not None
    assert link.cast.person_keys() == ["kim"]


@pytest.mark.anyio("asyncio")
async def test_season_links_start_pending_and_reset_on_relink(tmp_path) -> None:
    clock = FakeClock(START)
    database, store = await _open(tmp_path, clock)
    try:
        pending = await store.set_season_slug("tmdb-5", 2, "season-two")
        enriched = await store.upsert_season_link(
            "tmdb-5", 2, "season-two", Enrichment(rating=9.0, cast=_cast("lead"))
        )
        relinked = await store.set_season_slug("tmdb-5", 2, "season-two-fixed")
        targets = await store.list_season_targets(
            stale_before=clock.now - timedelta(days=6), include_pending=True
        )
        assert await store.get_season_link("tmdb-5", 1) is None
        with pytest.raises(ValueError):
            await store.set_season_slug("tmdb-5", 1, "nope")
    finally:
        await database.dispose()

    assert pending.is_pending
    assert not enriched.is_pending
    assert relinked.is_pending
    assert relinked.rating is None
    assert [(t.external_id, t.season, t.slug) for t in targets] == [
        ("tmdb-5", 2, "season-two-fixed")
    ]


@pytest.mark.anyio("asyncio")
async def test_person_profiles_and_freshness_queries(tmp_path) -> None:
    clock = FakeClock(START)
    database, store = await _open(tmp_path, clock)
    try:
        await store.upsert_person_profile("old", {"name": "Old"})
        clock.advance(days=8)
        await store.upsert_person_profile("new", {"name": "New"})
        fresh = await store.fresh_person_keys(clock.now - timedelta(days=7), ["old", "new", "none"])
        profile = await store.get_person_profile("new")
    finally:
        await database.dispose()

    assert fresh == {"new"}
    assert profile is not None
    assert profile.payload == {"name": "New"}
    assert profile.cached_at == clock.now
