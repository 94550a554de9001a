"""Normalisation of Kuryana details and cast into the cache shape."""

from __future__ import annotations

import pytest
from conftest import cast_member

from app.config import Settings
from app.services.enrichment import EnrichmentFetcher, build_cast
from app.services.kuryana import KuryanaCastResult, KuryanaClient


def _fetcher(http_client) -> EnrichmentFetcher:
    return EnrichmentFetcher(KuryanaClient(Settings(_env_file=None), http_client))


def test_build_cast_groups_members_by_role() -> None:
    result = KuryanaCastResult.model_validate(
        {
            "data": {
                "casts": {
                    "Main Role": [cast_member("Lee Je Hoon", "lee-je-hoon", "Main Role", "Cho Sang Gu")],
                    "Support Role": [cast_member("Tang Jun Sang", "tang-jun-sang", "Support Role")],
                    "Guest Role": [cast_member("Ji Jin Hee", "ji-jin-hee", "Guest Role")],
                    "Screenwriter": [{"name": "Yoon Ji Ryun", "slug": "yoon-ji-ryun"}],
                }
            }
        }
    )

    cast = build_cast(result)

    assert cast is not None
    assert [member.person_key for member in cast.main] == ["lee-je-hoon"]
    assert cast.main[0].character_name == "Cho Sang Gu"
    assert cast.main[0].image == "https://img.test/lee-je-hoon.jpg"
    assert [member.person_key for member in cast.support] == ["tang-jun-sang"]
    assert [member.person_key for member in cast.guest] == ["ji-jin-hee"]
    assert cast.person_keys() == ["lee-je-hoon", "tang-jun-sang", "ji-jin-hee"]


def test_build_cast_of_missing_result_is_none() -> None:
    assert build_cast(None) is None


@pytest.mark.anyio("asyncio")
async def test_fetch_enrichment_parses_rating_rank_and_tags(kuryana_stub) -> None:
    kuryana_stub.add_drama(
        "49231-move-to-heaven",
        title="Move to Heaven",
        rating="8.7",
        ranked="#12",
        popularity="#1,204",
        tags=["Life", "Family"],
        casts={"Main Role": [cast_member("Lee Je Hoon", "lee-je-hoon", "Main Role")]},
    )

    async with kuryana_stub.http_client() as http_client:
        enrichment = await _fetcher(http_client).fetch_enrichment("49231-move-to-heaven")

    assert enrichment is not None
    assert enrichment.rating == pytest.approx(8.7)
    assert enrichment.ranking == 12
    assert enrichment.popularity == 1204
    assert enrichment.tags == ["Life", "Family"]
    assert enrichment.cast is not None
    assert enrichment.cast.person_keys() == ["lee-je-hoon"]


@pytest.mark.anyio("asyncio")
async def test_missing_details_fail_the_whole_fetch(kuryana_stub) -> None:
    kuryana_stub.add("/id/gone/cast", {"data": {"casts": {}}})

    async with kuryana_stub.http_client() as http_client:
        assert await _fetcher(http_client).fetch_enrichment("gone") is None


@pytest.mark.anyio("asyncio")
async def test_missing_cast_degrades_to_partial_enrichment(kuryana_stub) -> None:
    kuryana_stub.add_drama("partial", title="Partial", rating=7.9, tags=["Romance"])
    kuryana_stub.add("/id/partial/cast", {"error": "upstream"}, status=503)

    async with kuryana_stub.http_client() as http_client:
        enrichment = await _fetcher(http_client).fetch_enrichment("partial")

    assert enrichment is not None
    assert enrichment.rating == pytest.approx(7.9)
    assert enrichment.tags == ["Romance"]
    assert enrichment.cast is None


@pytest.mark.anyio("asyncio")
async def test_malformed_cast_entries_keep_the_rest_of_the_cast(kuryana_stub) -> None:
    kuryana_stub.add_drama(
        "mth",
        title="Move to Heaven",
        casts={
            "Main Role": [
                cast_member("Lee Je Hoon", "lee-je-hoon", "Main Role"),
                {"name": None, "slug": "tang-jun-sang", "profile_image": None, "role": None},
                "not-a-member",
            ],
            "Guest Role": None,
        },
    )

    async with kuryana_stub.http_client() as http_client:
        enrichment = await _fetcher(http_client).fetch_enrichment("mth")

    assert enrichment is not None
    assert enrichment.cast is not None
    assert enrichment.cast.person_keys() == ["lee-je-hoon", "tang-jun-sang"]
    assert enrichment.cast.main[1].name == ""
    assert enrichment.cast.main[1].image == ""
    assert enrichment.cast.guest == []


@pytest.mark.anyio("asyncio")
async def test_fetch_native_title_uses_sub_title_prefix(kuryana_stub) -> None:
    kuryana_stub.add_drama(
        "697695-alchemy-of-souls",
        title="Alchemy of Souls",
        sub_title="환혼 ‧ Drama ‧ 2022",
    )

    async with kuryana_stub.http_client() as http_client:
        native = await _fetcher(http_client).fetch_native_title("697695-alchemy-of-souls")

    assert native == "환혼"
