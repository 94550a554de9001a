"""Utilities for reading title metadata from The Movie Database (Catalog A)."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

import httpx

from ..config import Settings
from ..utils import parse_year

logger = logging.getLogger(__name__)

POSTER_BASE_URL = "https://image.tmdb.org/t/p/w342"


@dataclass(slots=True)
class TMDBSearchResult:
    """Normalized view of a TMDB multi-search result."""

    external_id: str
    title: str
    media_type: str
    year: int | None
    poster: str | None
    country: str = ""
    rating: float = 0.0


@dataclass(slots=True)
class TMDBTitleDetails:
    """The subset of TMDB details the link resolver cares about."""

    external_id: str
    title: str
    native_title: str | None
    year: int | None
    seasons: list[int] = field(default_factory=list)
    status: str | None = None


class TMDBClient:
    """Client responsible for read-only TMDB lookups."""

    def __init__(self, settings: Settings, http_client: httpx.AsyncClient):
        if not settings.tmdb_api_key:
            raise ValueError("TMDB API key is required when initialising TMDBClient")
        self._settings = settings
        self._client = http_client

    async def search(self, query: str) -> list[TMDBSearchResult]:
        """Return TV and movie matches for a free-text query."""

        if not query.strip():
            return []
        params = {
            "query": query,
            "include_adult": "false",
            "language": "en-US",
            "page": 1,
            "api_key": self._settings.tmdb_api_key,
        }
        payload = await self._get("/search/multi", params)
        if payload is None:
            return []

        results: list[TMDBSearchResult] = []
        for entry in payload.get("results") or []:
            if not isinstance(entry, dict):
                continue
            media_type = entry.get("media_type")
            if media_type not in {"tv", "movie"}:
                continue
            poster_path = entry.get("poster_path")
            countries = entry.get("origin_country") or []
            results.append(
                TMDBSearchResult(
                    external_id=str(entry.get("id")),
                    title=str(entry.get("title") or entry.get("name") or "Unknown"),
                    media_type="TV" if media_type == "tv" else "Movie",
                    year=parse_year(
                        entry.get("release_date") or entry.get("first_air_date")
                    ),
                    poster=f"{POSTER_BASE_URL}{poster_path}" if poster_path else None,
                    country=str(countries[0]) if countries else "",
                    rating=float(entry.get("vote_average") or 0.0),
                )
            )
        return results[:12]

    async def get_details(
        self, external_id: str, media_type: str
    ) -> TMDBTitleDetails | None:
        """Return title, native title, year and season numbers for a title."""

        numeric_id = self.numeric_id(external_id)
        if not numeric_id:
            return None
        kind = "movie" if media_type.lower() == "movie" else "tv"
        params = {"api_key": self._settings.tmdb_api_key, "language": "en-US"}
        payload = await self._get(f"/{kind}/{numeric_id}", params)
        if payload is None:
            return None

        seasons = sorted(
            {
                int(season["season_number"])
                for season in payload.get("seasons") or []
                if isinstance(season, dict)
                and isinstance(season.get("season_number"), int)
                and season["season_number"] > 0
            }
        )
        return TMDBTitleDetails(
            external_id=external_id,
            title=str(payload.get("title") or payload.get("name") or ""),
            native_title=payload.get("original_title")
            or payload.get("original_name")
            or None,
            year=parse_year(payload.get("release_date") or payload.get("first_air_date")),
            seasons=seasons,
            status=payload.get("status"),
        )

    async def _get(
        self, endpoint: str, params: dict[str, Any]
    ) -> dict[str, Any] | None:
        try:
            response = await self._client.get(endpoint, params=params)
        except httpx.HTTPError as exc:
            logger.warning("TMDB request %s failed: %s", endpoint, exc)
            return None
        if response.status_code >= 400:
            logger.warning(
                "TMDB request %s failed: %s", endpoint, response.status_code
            )
            return None
        try:
            payload = response.json()
        except ValueError:
            logger.warning("Unexpected non-JSON TMDB response for %s", endpoint)
            return None
        if not isinstance(payload, dict):
            return None
        return payload

    @staticmethod
    def numeric_id(external_id: str) -> str:
        """Strip the ``tmdb-`` prefix watch-list rows carry."""

        value = (external_id or "").strip()
        if value.startswith("tmdb-"):
            value = value[len("tmdb-"):]
        return value if value.isdigit() else ""
