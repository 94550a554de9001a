"""Wiring shared by the web app and the command line."""

from __future__ import annotations

import logging
from contextlib import AsyncExitStack, asynccontextmanager
from dataclasses import dataclass
from typing import AsyncIterator

import httpx

from .config import Settings
from .database import Database
from .services.cache_store import CacheStore
from .services.enrichment import EnrichmentFetcher
from .services.kuryana import KuryanaClient
from .services.link_service import LinkService
from .services.resolver import Resolver
from .services.sync import SyncOrchestrator
from .services.sync_log import SyncLogStore
from .services.tmdb import TMDBClient
from .services.watchlist import WatchListReader

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class Services:
    settings: Settings
    database: Database
    store: CacheStore
    kuryana: KuryanaClient
    tmdb: TMDBClient | None
    link_service: LinkService
    sync: SyncOrchestrator
    sync_log: SyncLogStore


@asynccontextmanager
async def open_services(
    app_settings: Settings,
    *,
    transport: httpx.AsyncBaseTransport | None = None,
) -> AsyncIterator[Services]:
    """Open HTTP clients and the database, and build every service on top."""

    async with AsyncExitStack() as exit_stack:
        kuryana_http = await exit_stack.enter_async_context(
            httpx.AsyncClient(
                base_url=str(app_settings.kuryana_url),
                timeout=httpx.Timeout(app_settings.kuryana_timeout_seconds, connect=5.0),
                transport=transport,
            )
        )
        tmdb: TMDBClient | None = None
        if app_settings.tmdb_api_key:
            tmdb_http = await exit_stack.enter_async_context(
                httpx.AsyncClient(
                    base_url=str(app_settings.tmdb_api_url),
                    timeout=httpx.Timeout(15.0, connect=5.0),
                    transport=transport,
                )
            )
            tmdb = TMDBClient(app_settings, tmdb_http)
        else:
            logger.info("TMDB_API_KEY not set; native titles will not be looked up")

        database = Database(app_settings.database_url)
        await database.create_all()
        exit_stack.push_async_callback(database.dispose)

        store = CacheStore(database.session_factory)
        kuryana = KuryanaClient(app_settings, kuryana_http)
        resolver = Resolver(kuryana)
        fetcher = EnrichmentFetcher(kuryana)
        yield Services(
            settings=app_settings,
            database=database,
            store=store,
            kuryana=kuryana,
            tmdb=tmdb,
            link_service=LinkService(app_settings, store, resolver, fetcher, kuryana),
            sync=SyncOrchestrator(
                app_settings,
                store,
                resolver,
                fetcher,
                WatchListReader(database.session_factory),
                tmdb,
            ),
            sync_log=SyncLogStore(database.session_factory),
        )
