"""Pydantic models describing cached links and sync results."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Iterator, Literal

from pydantic import AliasChoices, BaseModel, ConfigDict, Field

CastRole = Literal["Main Role", "Support Role", "Guest Role"]
CAST_SCHEMA_VERSION = 1


class CastMember(BaseModel):
    """A single credited performer on a Catalog-B title."""

    model_config = ConfigDict(populate_by_name=True)

    name: str
    image: str = Field(
        default="", validation_alias=AliasChoices("image", "profileImage")
    )
    person_key: str = Field(
        default="", validation_alias=AliasChoices("person_key", "slug")
    )
    character_name: str = Field(
        default="", validation_alias=AliasChoices("character_name", "characterName")
    )
    role_type: CastRole = Field(
        default="Support Role", validation_alias=AliasChoices("role_type", "roleType")
    )


class CastPayload(BaseModel):
    """Versioned cast document stored alongside a link.

    Rows written before versioning carry only the three buckets; they validate
    as version 1.
    """

    version: Literal[1] = CAST_SCHEMA_VERSION
    main: list[CastMember] = Field(default_factory=list)
    support: list[CastMember] = Field(default_factory=list)
    guest: list[CastMember] = Field(default_factory=list)

    def is_empty(self) -> bool:
        return not (self.main or self.support or self.guest)

    def members(self) -> Iterator[CastMember]:
        yield from self.main
        yield from self.support
        yield from self.guest

    def person_keys(self) -> list[str]:
        """Return unique person keys in bucket order."""

        seen: dict[str, None] = {}
        for member in self.members():
            if member.person_key:
                seen.setdefault(member.person_key, None)
        return list(seen)


class Enrichment(BaseModel):
    """Normalised enrichment fields fetched from Catalog B."""

    rating: float | None = None
    ranking: int | None = None
    popularity: int | None = None
    tags: list[str] = Field(default_factory=list)
    cast: CastPayload | None = None


class ResolvedLink(Enrichment):
    """Cached link between a Catalog-A title and its Catalog-B record."""

    external_id: str
    slug: str = ""
    cached_at: datetime

    @property
    def is_known_miss(self) -> bool:
        """Resolution was attempted and found nothing."""

        return not self.slug

    @property
    def cast_is_incomplete(self) -> bool:
        return self.cast is None or self.cast.is_empty()


class SeasonLink(ResolvedLink):
    """Override for seasons two and up."""

    season: int

    @property
    def is_pending(self) -> bool:
        """Linked by hand but not enriched yet."""

        has_cast = self.cast is not None and bool(self.cast.main or self.cast.support)
        return not (self.rating or self.ranking or has_cast)


class PersonProfile(BaseModel):
    """Cached Catalog-B person profile; the payload is opaque to the store."""

    person_key: str
    payload: dict[str, Any]
    cached_at: datetime


class LinkRequest(BaseModel):
    """Body of the manual linking endpoints."""

    slug: str = Field(min_length=1)


class TaskResult(BaseModel):
    """Outcome of one scheduled sync sub-task, persisted as an audit trail."""

    model_config = ConfigDict(populate_by_name=True)

    task: str
    success: bool
    count: int = 0
    failed: int = 0
    skipped: int = 0
    error: str | None = None
    duration_ms: int = Field(default=0, serialization_alias="durationMs")

    def to_payload(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)
