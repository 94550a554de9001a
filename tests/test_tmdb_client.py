"""Tests for the TMDB metadata client."""

from __future__ import annotations

import httpx
import pytest

from app.config import Settings
from app.services.tmdb import TMDBClient


def _settings() -> Settings:
    return Settings(_env_file=None, TMDB_API_KEY="tmdb-key")


@pytest.mark.anyio("asyncio")
async def test_get_details_extracts_native_title_and_seasons() -> None:
    requests: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return httpx.Response(
            200,
            json={
                "name": "Hospital Playlist",
                "original_name": "슬기로운 의사생활",
                "first_air_date": "2020-03-12",
                "status": "Ended",
                "seasons": [
                    {"season_number": 0},
                    {"season_number": 1},
                    {"season_number": 2},
                ],
            },
        )

    async with httpx.AsyncClient(
        base_url="https://tmdb.test/3", transport=httpx.MockTransport(handler)
    ) as http_client:
        details = await TMDBClient(_settings(), http_client).get_details("tmdb-96162", "TV")

    assert details is not None
    assert details.title == "Hospital Playlist"
    assert details.native_title == "슬기로운 의사생활"
    assert details.year == 2020
    assert details.seasons == [1, 2]
    assert requests[0].url.path == "/3/tv/96162"
    assert requests[0].url.params["api_key"] == "tmdb-key"


@pytest.mark.anyio("asyncio")
async def test_search_keeps_only_tv_and_movies() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            200,
            json={
                "results": [
                    {"id": 1, "media_type": "tv", "name": "Signal", "first_air_date": "2016-01-22"},
                    {"id": 2, "media_type": "person", "name": "Kim Hye Soo"},
                    {"id": 3, "media_type": "movie", "title": "Parasite", "release_date": "2019-05-30"},
                ]
            },
        )

    async with httpx.AsyncClient(
        base_url="https://tmdb.test/3", transport=httpx.MockTransport(handler)
    ) as http_client:
        results = await TMDBClient(_settings(), http_client).search("Signal")

    assert [(r.external_id, r.media_type, r.year) for r in results] == [
        ("1", "TV", 2016),
        ("3", "Movie", 2019),
    ]


@pytest.mark.anyio("asyncio")
async def test_failures_and_bad_ids_return_none() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(401, json={"status_message": "Invalid API key"})

    async with httpx.AsyncClient(
        base_url="https://tmdb.test/3", transport=httpx.MockTransport(handler)
    ) as http_client:
        client = TMDBClient(_settings(), http_client)
        assert await client.get_details("tmdb-1", "TV") is None
        assert await client.get_details("imdb-tt123", "TV") is None
        assert await client.search("anything") == []


def test_client_requires_an_api_key() -> None:
    with pytest.raises(ValueError):
        TMDBClient(Settings(_env_file=None), httpx.AsyncClient())
