from __future__ import annotations

import asyncio
from datetime import datetime

import pytest
from sqlalchemy import create_engine, inspect

from app.database import Database
from app.errors import StorageUnavailable
from app.models import FavoriteItem, RemoteMovieRecord
from app.services.catalog_store import CatalogStore
from app.services.watch_state import WatchStateStore


def test_create_all_builds_every_table(tmp_path) -> None:
    """Creating the schema twice should be harmless and leave every table."""

    database_path = tmp_path / "cache.db"

    async def scenario() -> bool:
        database = Database(f"sqlite+aiosqlite:///{database_path}")
        try:
            await database.create_all()
            await database.create_all()
            return database.available
        finally:
            await database.dispose()

    assert asyncio.run(scenario()) is True

    inspector_engine = create_engine(f"sqlite:///{database_path}")
    try:
        tables = set(inspect(inspector_engine).get_table_names())
    finally:
        inspector_engine.dispose()

    assert tables == {
        "channels",
        "movies",
        "series",
        "categories",
        "catalog_item_categories",
        "catalog_item_details",
        "favorites",
        "watch_history",
        "continue_watching",
        "episode_progress",
        "key_values",
    }


def _unreachable_url(tmp_path) -> str:
    return f"sqlite+aiosqlite:///{tmp_path / 'missing' / 'nested' / 'cache.db'}"


def test_initialise_degrades_when_store_cannot_open(tmp_path) -> None:
    """An unusable database should leave the stores readable but empty."""

    async def scenario() -> None:
        database = Database(_unreachable_url(tmp_path))
        assert await database.initialise() is False
        assert database.available is False

        catalog = CatalogStore(database)
        watch_state = WatchStateStore(database)

        await catalog.apply_delta(
            "movies",
            [RemoteMovieRecord.model_validate({"stream_id": 1, "name": "A"})],
            set(),
            cached_at=datetime(2024, 1, 1),
        )
        assert catalog.write_count == 0
        assert await catalog.get_items("movies") == []
        assert await catalog.get_sync_cursor("movies") is None

        item = FavoriteItem(item_id="1", item_type="movie", title="A")
        assert await watch_state.toggle_favorite(item) is False
        assert await watch_state.get_favorites() == []
        assert await watch_state.get_history() == []
        await database.dispose()

    asyncio.run(scenario())


def test_initialise_strict_raises_storage_unavailable(tmp_path) -> None:
    async def scenario() -> None:
        database = Database(_unreachable_url(tmp_path))
        try:
            await database.initialise(strict=True)
        finally:
            await database.dispose()

    with pytest.raises(StorageUnavailable):
        asyncio.run(scenario())
