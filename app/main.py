"""Entry point for the FastAPI-powered link service."""

from __future__ import annotations

import logging
import secrets
from contextlib import asynccontextmanager
from dataclasses import asdict
from typing import Any

import httpx
from fastapi import Depends, FastAPI, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .config import Settings, settings
from .models import LinkRequest
from .runtime import Services, open_services
from .services.link_service import RequestMemo

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

app: FastAPI


def create_app(
    app_settings: Settings | None = None,
    *,
    transport: httpx.AsyncBaseTransport | None = None,
) -> FastAPI:
    resolved_settings = app_settings or settings

    @asynccontextmanager
    async def lifespan(fastapi_app: FastAPI):
        async with open_services(resolved_settings, transport=transport) as services:
            fastapi_app.state.services = services
            try:
                yield
            finally:  # pragma: no cover - teardown path exercised at runtime
                fastapi_app.state.services = None

    fastapi_app = FastAPI(
        title=resolved_settings.app_name,
        description="Cross-catalog links and cached enrichment from MyDramaList",
        version="1.0.0",
        lifespan=lifespan,
    )

    fastapi_app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET", "POST", "PUT"],
        allow_headers=["*"],
    )

    register_routes(fastapi_app)
    return fastapi_app


def get_services(request: Request) -> Services:
    services = getattr(request.app.state, "services", None)
    if not isinstance(services, Services):
        raise RuntimeError("Services not initialised")
    return services


def get_request_memo() -> RequestMemo:
    """A fresh memo per inbound request."""

    return RequestMemo()


def _check_cron_auth(request: Request, services: Services) -> None:
    secret = services.settings.cron_secret
    if not secret:
        return
    header = request.headers.get("authorization") or ""
    scheme, _, token = header.partition(" ")
    if scheme.lower() != "bearer" or not secrets.compare_digest(token.strip(), secret):
        raise HTTPException(status_code=401, detail="Unauthorized")


def register_routes(fastapi_app: FastAPI) -> None:
    @fastapi_app.get("/healthz")
    async def healthcheck() -> dict[str, str]:
        return {"status": "ok"}

    @fastapi_app.get("/titles/{external_id}/link")
    async def title_link(
        external_id: str,
        title: str = Query(default=""),
        year: int | None = Query(default=None),
        native_title: str | None = Query(default=None),
        season: int = Query(default=1, ge=1),
        services: Services = Depends(get_services),
        memo: RequestMemo = Depends(get_request_memo),
    ) -> JSONResponse:
        link = await services.link_service.get_season_link(
            external_id, season, title, year, native_title, memo=memo
        )
        if link is None:
            raise HTTPException(status_code=404, detail="No Catalog-B link")
        return JSONResponse(link.model_dump(mode="json"))

    @fastapi_app.get("/people/{person_key}")
    async def person_profile(
        person_key: str, services: Services = Depends(get_services)
    ) -> JSONResponse:
        profile = await services.link_service.get_person_profile(person_key)
        if profile is None:
            raise HTTPException(status_code=404, detail="Person not found")
        return JSONResponse(profile.model_dump(mode="json"))

    @fastapi_app.get("/catalog-b/search")
    async def search_catalog_b(
        q: str = Query(default=""), services: Services = Depends(get_services)
    ) -> dict[str, Any]:
        if not q.strip():
            raise HTTPException(status_code=400, detail="Query parameter q is required")
        dramas = await services.link_service.search_catalog_b(q)
        return {"results": [drama.model_dump(mode="json") for drama in dramas]}

    @fastapi_app.get("/catalog-a/search")
    async def search_catalog_a(
        q: str = Query(default=""), services: Services = Depends(get_services)
    ) -> dict[str, Any]:
        if services.tmdb is None:
            raise HTTPException(status_code=503, detail="TMDB_API_KEY is not configured")
        if not q.strip():
            raise HTTPException(status_code=400, detail="Query parameter q is required")
        results = await services.tmdb.search(q)
        return {"results": [asdict(result) for result in results]}

    @fastapi_app.put("/titles/{external_id}/link")
    async def relink_title(
        external_id: str,
        body: LinkRequest,
        services: Services = Depends(get_services),
    ) -> JSONResponse:
        try:
            link = await services.link_service.relink_title(external_id, body.slug)
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        except LookupError as exc:
            raise HTTPException(status_code=404, detail=str(exc)) from exc
        return JSONResponse(link.model_dump(mode="json"))

    @fastapi_app.post("/titles/{external_id}/refetch")
    async def refetch_title(
        external_id: str, services: Services = Depends(get_services)
    ) -> JSONResponse:
        try:
            link = await services.link_service.refetch_title(external_id)
        except LookupError as exc:
            raise HTTPException(status_code=404, detail=str(exc)) from exc
        if link is None:
            raise HTTPException(status_code=502, detail="Catalog B returned no details")
        return JSONResponse(link.model_dump(mode="json"))

    @fastapi_app.put("/titles/{external_id}/seasons/{season}/link")
    async def link_season(
        external_id: str,
        season: int,
        body: LinkRequest,
        services: Services = Depends(get_services),
    ) -> JSONResponse:
        try:
            link = await services.link_service.link_season(
                external_id, season, body.slug
            )
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        return JSONResponse(link.model_dump(mode="json"))

    @fastapi_app.get("/api/cron/sync")
    async def cron_sync(
        request: Request, services: Services = Depends(get_services)
    ) -> dict[str, Any]:
        _check_cron_auth(request, services)
        results = await services.sync.run_scheduled_sync()
        record = await services.sync_log.save(results)
        return {
            "success": all(result.success for result in results),
            **record.to_payload(),
        }

    @fastapi_app.get("/api/sync/last")
    async def last_sync(services: Services = Depends(get_services)) -> dict[str, Any]:
        record = await services.sync_log.latest()
        if record is None:
            raise HTTPException(status_code=404, detail="No sync has run yet")
        return record.to_payload()


app = create_app()


if __name__ == "__main__":  # pragma: no cover - manual execution
    import uvicorn

    uvicorn.run(
        "app.main:app",
        host=settings.server_host,
        port=settings.server_port,
        reload=settings.environment == "development",
    )
