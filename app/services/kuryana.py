"""Client for the Kuryana scraping proxy in front of MyDramaList (Catalog B)."""

from __future__ import annotations

import logging
from typing import Any, TypeVar
from urllib.parse import quote

import httpx
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from ..config import Settings
from ..utils import parse_year

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)


class _Lenient(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)


class KuryanaDrama(_Lenient):
    """A search candidate; ``year`` is ``None`` when unannounced ("TBA")."""

    slug: str
    title: str = ""
    year: int | None = None
    mdl_id: str | int | None = None
    thumb: str | None = None
    ranking: str | int | None = None
    type: str | None = None

    @field_validator("year", mode="before")
    @classmethod
    def _coerce_year(cls, value: object) -> int | None:
        return parse_year(value)

    @field_validator("title", mode="before")
    @classmethod
    def _coerce_title(cls, value: object) -> str:
        return str(value or "")


class _SearchResults(_Lenient):
    dramas: list[KuryanaDrama] = Field(default_factory=list)

    @field_validator("dramas", mode="before")
    @classmethod
    def _drop_unkeyed(cls, value: object) -> list[object]:
        if not isinstance(value, list):
            return []
        return [entry for entry in value if isinstance(entry, dict) and entry.get("slug")]


class KuryanaSearchResult(_Lenient):
    query: str | None = None
    results: _SearchResults = Field(default_factory=_SearchResults)


class _DetailsBlock(_Lenient):
    ranked: str | int | None = None
    popularity: str | int | None = None
    episodes: str | int | None = None
    country: str | None = None


class _OthersBlock(_Lenient):
    tags: list[str] = Field(default_factory=list)
    genres: list[str] = Field(default_factory=list)

    @field_validator("tags", "genres", mode="before")
    @classmethod
    def _coerce_list(cls, value: object) -> list[str]:
        if not isinstance(value, list):
            return []
        return [str(entry) for entry in value if entry]


class KuryanaDetailsData(_Lenient):
    title: str = ""
    sub_title: str | None = None
    year: str | int | None = None
    rating: float | int | str | None = None
    poster: str | None = None
    details: _DetailsBlock = Field(default_factory=_DetailsBlock)
    others: _OthersBlock = Field(default_factory=_OthersBlock)

    @field_validator("details", "others", mode="before")
    @classmethod
    def _default_block(cls, value: object) -> object:
        return value if isinstance(value, dict) else {}


class KuryanaDetails(_Lenient):
    slug_query: str | None = None
    data: KuryanaDetailsData


class KuryanaRole(_Lenient):
    name: str | None = None
    type: str | None = None


class KuryanaCastMember(_Lenient):
    name: str = ""
    slug: str = ""
    profile_image: str = ""
    link: str | None = None
    role: KuryanaRole | None = None

    @field_validator("name", "slug", "profile_image", mode="before")
    @classmethod
    def _coerce_text(cls, value: object) -> str:
        return str(value or "")

    @field_validator("role", mode="before")
    @classmethod
    def _drop_odd_role(cls, value: object) -> object:
        return value if isinstance(value, dict) else None


class KuryanaCastData(_Lenient):
    title: str | None = None
    casts: dict[str, list[KuryanaCastMember]] = Field(default_factory=dict)

    @field_validator("casts", mode="before")
    @classmethod
    def _coerce_buckets(cls, value: object) -> dict[str, list[object]]:
        if not isinstance(value, dict):
            return {}
        return {
            str(role): [entry for entry in members if isinstance(entry, dict)]
            if isinstance(members, list)
            else []
            for role, members in value.items()
        }


class KuryanaCastResult(_Lenient):
    slug_query: str | None = None
    data: KuryanaCastData


class KuryanaPerson(_Lenient):
    slug_query: str | None = None
    data: dict[str, Any]


class KuryanaClient:
    """Thin wrapper around the Kuryana HTTP API.

    Every call is bounded by the configured timeout. Timeouts, non-2xx
    responses, non-JSON bodies and unexpected shapes all collapse into ``None``
    so callers never have to tell "not found" from "upstream down".
    """

    def __init__(self, settings: Settings, http_client: httpx.AsyncClient):
        self._settings = settings
        self._client = http_client
        self._timeout = httpx.Timeout(settings.kuryana_timeout_seconds)

    async def search(self, query: str) -> KuryanaSearchResult | None:
        if not query or not query.strip():
            return None
        path = f"/search/q/{quote(query, safe='')}"
        return await self._fetch(path, KuryanaSearchResult)

    async def get_details(self, slug: str) -> KuryanaDetails | None:
        if not slug:
            return None
        return await self._fetch(f"/id/{slug}", KuryanaDetails)

    async def get_cast(self, slug: str) -> KuryanaCastResult | None:
        if not slug:
            return None
        return await self._fetch(f"/id/{slug}/cast", KuryanaCastResult)

    async def get_person(self, slug: str) -> KuryanaPerson | None:
        if not slug:
            return None
        return await self._fetch(f"/people/{slug}", KuryanaPerson)

    async def _fetch(self, path: str, model: type[ModelT]) -> ModelT | None:
        try:
            response = await self._client.get(path, timeout=self._timeout)
        except httpx.HTTPError as exc:
            logger.warning("Kuryana request %s failed: %s", path, exc.__class__.__name__)
            return None
        if response.status_code >= 400:
            logger.warning("Kuryana request %s returned %s", path, response.status_code)
            return None
        try:
            payload = response.json()
        except ValueError:
            logger.warning("Unexpected non-JSON Kuryana response for %s", path)
            return None
        try:
            return model.model_validate(payload)
        except ValidationError as exc:
            logger.warning(
                "Unexpected Kuryana response structure for %s: %s",
                path,
                exc.error_count(),
            )
            return None
