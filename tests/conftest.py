"""Pytest configuration and test helpers."""

from __future__ import annotations

import sys
from pathlib import Path
from typing import Any

import httpx
import pytest


# Ensure the application package is importable when running tests without an
# editable install. This mirrors the expected runtime layout where ``app`` sits
# at the project root.
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))


class KuryanaStub:
    """In-memory stand-in for the Kuryana proxy keyed by decoded request path."""

    base_url = "https://kuryana.test"

    def __init__(self) -> None:
        self.routes: dict[str, tuple[int, Any]] = {}
        self.calls: list[str] = []

    def add(self, path: str, payload: Any, status: int = 200) -> None:
        self.routes[path] = (status, payload)

    def add_drama(
        self,
        slug: str,
        *,
        title: str,
        rating: Any = None,
        ranked: Any = None,
        popularity: Any = None,
        tags: list[str] | None = None,
        casts: dict[str, list[dict[str, Any]]] | None = None,
        sub_title: str | None = None,
    ) -> None:
        self.add(
            f"/id/{slug}",
            {
                "slug_query": slug,
                "data": {
                    "title": title,
                    "sub_title": sub_title,
                    "rating": rating,
                    "details": {"ranked": ranked, "popularity": popularity},
                    "others": {"tags": tags or []},
                },
            },
        )
        if casts is not None:
            self.add(f"/id/{slug}/cast", {"slug_query": slug, "data": {"casts": casts}})

    def add_search(self, query: str, dramas: list[dict[str, Any]]) -> None:
        self.add(f"/search/q/{query}", {"query": query, "results": {"dramas": dramas}})

    def count(self, path: str) -> int:
        return sum(1 for call in self.calls if call == path)

    def handler(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path
        self.calls.append(path)
        status, payload = self.routes.get(path, (404, {"error": "not found"}))
        return httpx.Response(status, json=payload)

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)

    def http_client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(base_url=self.base_url, transport=self.transport())


def cast_member(name: str, slug: str, role_type: str, character: str = "") -> dict[str, Any]:
    return {
        "name": name,
        "slug": slug,
        "profile_image": f"https://img.test/{slug}.jpg",
        "role": {"name": character, "type": role_type},
    }


@pytest.fixture
def anyio_backend() -> str:
    """Force AnyIO tests to run on asyncio without requiring trio."""

    return "asyncio"


@pytest.fixture
def kuryana_stub() -> KuryanaStub:
    return KuryanaStub()
