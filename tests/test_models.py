from __future__ import annotations

from datetime import datetime

import pytest
from pydantic import ValidationError

from app.models import CastMember, CastPayload, ResolvedLink, SeasonLink, TaskResult

NOW = datetime(2025, 1, 1)


def test_cast_payload_accepts_upstream_field_names() -> None:
    payload = CastPayload.model_validate(
        {
            "main": [
                {
                    "name": "Kim Tae Ri",
                    "profileImage": "https://img.test/kim.jpg",
                    "slug": "kim-tae-ri",
                    "characterName": "Go Ae Shin",
                    "roleType": "Main Role",
                }
            ]
        }
    )

    member = payload.main[0]
    assert payload.version == 1
    assert member.person_key == "kim-tae-ri"
    assert member.image == "https://img.test/kim.jpg"
    assert member.character_name == "Go Ae Shin"


def test_cast_payload_rejects_unknown_versions_and_roles() -> None:
    with pytest.raises(ValidationError):
        CastPayload.model_validate({"version": 2, "main": []})
    with pytest.raises(ValidationError):
        CastMember.model_validate({"name": "X", "roleType": "Cameo"})


def test_known_miss_and_incomplete_cast_flags() -> None:
    miss = ResolvedLink(external_id="tmdb-1", slug="", cached_at=NOW)
    empty_cast = ResolvedLink(
        external_id="tmdb-2", slug="slug", cast=CastPayload(), cached_at=NOW
    )

    assert miss.is_known_miss
    assert empty_cast.cast_is_incomplete
    assert not empty_cast.is_known_miss


def test_season_link_is_pending_until_enriched() -> None:
    guest_only = CastPayload(guest=[CastMember(name="Guest", role_type="Guest Role")])
    pending = SeasonLink(
        external_id="tmdb-1", season=2, slug="s2", cast=guest_only, cached_at=NOW
    )
    ranked = SeasonLink(
        external_id="tmdb-1", season=2, slug="s2", ranking=10, cached_at=NOW
    )

    assert pending.is_pending
    assert not ranked.is_pending


def test_task_result_payload_uses_camel_case_duration() -> None:
    result = TaskResult(task="refresh-stale", success=True, count=3, duration_ms=1520)

    assert result.to_payload() == {
        "task": "refresh-stale",
        "success": True,
        "count": 3,
        "failed": 0,
        "skipped": 0,
        "durationMs": 1520,
    }
