from __future__ import annotations

import asyncio

from sqlalchemy import create_engine, inspect, text

from app.database import Database


async def _create_tables(database_path: str) -> None:
    database = Database(f"sqlite+aiosqlite:///{database_path}")
    try:
        await database.create_all()
    finally:
        await database.dispose()


def test_create_all_builds_every_table_and_keeps_existing_rows(tmp_path) -> None:
    database_path = str(tmp_path / "cache.db")
    asyncio.run(_create_tables(database_path))

    engine = create_engine(f"sqlite:///{database_path}")
    try:
        with engine.begin() as connection:
            connection.execute(
                text(
                    "INSERT INTO cached_links (external_id, slug, tags, cached_at) "
                    "VALUES ('tmdb-1', 'kept-slug', '[]', '2025-01-01 00:00:00')"
                )
            )

        asyncio.run(_create_tables(database_path))

        tables = set(inspect(engine).get_table_names())
        with engine.connect() as connection:
            slug = connection.execute(
                text("SELECT slug FROM cached_links WHERE external_id = 'tmdb-1'")
            ).scalar_one()
    finally:
        engine.dispose()

    assert {
        "watch_entries",
        "cached_links",
        "season_links",
        "cached_people",
        "sync_logs",
    } <= tables
    assert slug == "kept-slug"
