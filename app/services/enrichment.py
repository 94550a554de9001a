"""Fetch and normalise Catalog-B enrichment for a resolved slug."""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from ..models import CastMember, CastPayload, Enrichment
from ..utils import parse_rank, parse_rating
from .kuryana import (
    KuryanaCastMember,
    KuryanaCastResult,
    KuryanaClient,
    KuryanaDetails,
)

logger = logging.getLogger(__name__)

ROLE_BUCKETS: dict[str, str] = {
    "Main Role": "main",
    "Support Role": "support",
    "Guest Role": "guest",
}
NATIVE_TITLE_SEPARATOR = "‧"


def normalize_cast_members(members: list[KuryanaCastMember]) -> list[CastMember]:
    return [
        CastMember(
            name=member.name,
            image=member.profile_image or "",
            person_key=member.slug,
            character_name=(member.role.name if member.role else None) or "",
            role_type=_role_type(member),
        )
        for member in members
    ]


def _role_type(member: KuryanaCastMember) -> str:
    role_type = member.role.type if member.role else None
    return role_type if role_type in ROLE_BUCKETS else "Support Role"


def build_cast(result: KuryanaCastResult | None) -> CastPayload | None:
    """Group the upstream cast listing into main/support/guest buckets."""

    if result is None:
        return None
    buckets: dict[str, list[CastMember]] = {"main": [], "support": [], "guest": []}
    for role, bucket in ROLE_BUCKETS.items():
        buckets[bucket] = normalize_cast_members(result.data.casts.get(role) or [])
    return CastPayload(**buckets)


def build_enrichment(
    details: KuryanaDetails, cast_result: KuryanaCastResult | None
) -> Enrichment:
    data = details.data
    return Enrichment(
        rating=parse_rating(data.rating),
        ranking=parse_rank(data.details.ranked),
        popularity=parse_rank(data.details.popularity),
        tags=list(data.others.tags),
        cast=build_cast(cast_result),
    )


def extract_native_title(details: KuryanaDetails | None) -> str | None:
    """Return the native title from a ``"환혼 ‧ Drama ‧ 2022"`` style sub-title."""

    if details is None or not details.data.sub_title:
        return None
    native = details.data.sub_title.split(NATIVE_TITLE_SEPARATOR)[0].strip()
    return native or None


class EnrichmentFetcher:
    """Turns a Catalog-B slug into the cache's storage shape."""

    def __init__(self, kuryana: KuryanaClient):
        self._kuryana = kuryana

    async def fetch_enrichment(self, slug: str) -> Enrichment | None:
        """Fetch details and cast concurrently.

        Missing details fail the whole call; a missing cast only leaves
        ``cast`` empty.
        """

        if not slug:
            return None
        details, cast_result = await asyncio.gather(
            self._kuryana.get_details(slug),
            self._kuryana.get_cast(slug),
        )
        if details is None:
            logger.info("No Kuryana details for %s", slug)
            return None
        if cast_result is None:
            logger.info("Kuryana cast unavailable for %s; storing without cast", slug)
        return build_enrichment(details, cast_result)

    async def fetch_cast(self, slug: str) -> CastPayload | None:
        if not slug:
            return None
        return build_cast(await self._kuryana.get_cast(slug))

    async def fetch_person(self, person_key: str) -> dict[str, Any] | None:
        if not person_key:
            return None
        result = await self._kuryana.get_person(person_key)
        if result is None or not result.data:
            return None
        return result.data

    async def fetch_native_title(self, slug: str) -> str | None:
        return extract_native_title(await self._kuryana.get_details(slug))
