"""Watch-state store tests."""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta

import pytest

from app.database import Database
from app.models import (
    ContinueWatchingItem,
    EpisodeProgressItem,
    FavoriteItem,
    WatchHistoryItem,
)
from app.services.watch_state import WatchStateStore, record_playback


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


class TickingClock:
    """Clock advancing one minute per call so ordering is deterministic."""

    def __init__(self) -> None:
        self.current = datetime(2024, 1, 1)

    def __call__(self) -> datetime:
        self.current += timedelta(minutes=1)
        return self.current


async def open_store(tmp_path, **kwargs) -> tuple[Database, WatchStateStore]:
    database = Database(f"sqlite+aiosqlite:///{tmp_path / 'state.db'}")
    await database.initialise(strict=True)
    return database, WatchStateStore(database, clock=TickingClock(), **kwargs)


@pytest.mark.anyio("asyncio")
async def test_toggle_favorite_flips_membership(tmp_path) -> None:
    database, store = await open_store(tmp_path)
    try:
        item = FavoriteItem(item_id="42", item_type="movie", title="Heist")

        assert await store.toggle_favorite(item) is True
        assert await store.is_favorite("movie", "42") is True
        assert len(await store.get_favorites()) == 1

        assert await store.toggle_favorite(item) is False
        assert await store.get_favorites() == []
    finally:
        await database.dispose()


@pytest.mark.anyio("asyncio")
async def test_favorites_are_keyed_by_type_and_id(tmp_path) -> None:
    """A channel and a movie sharing a numeric ID stay separate favorites."""

    database, store = await open_store(tmp_path)
    try:
        await store.toggle_favorite(FavoriteItem(item_id="7", item_type="movie"))
        await store.toggle_favorite(FavoriteItem(item_id="7", item_type="channel"))

        assert await store.favorite_ids("movie") == {"7"}
        assert await store.favorite_ids("channel") == {"7"}
        movies = await store.get_favorites("movie")
        assert [(item.item_type, item.item_id) for item in movies] == [("movie", "7")]

        assert await store.remove_favorite("channel", "7") is True
        assert await store.remove_favorite("channel", "7") is False
        assert await store.favorite_ids("channel") == set()
    finally:
        await database.dispose()


@pytest.mark.anyio("asyncio")
async def test_add_favorite_is_idempotent(tmp_path) -> None:
    database, store = await open_store(tmp_path)
    try:
        await store.add_favorite(FavoriteItem(item_id="1", item_type="series", title="Old"))
        await store.add_favorite(FavoriteItem(item_id="1", item_type="series", title="New"))

        favorites = await store.get_favorites()
        assert [item.title for item in favorites] == ["New"]

        await store.clear_favorites()
        assert await store.get_favorites() == []
    finally:
        await database.dispose()


@pytest.mark.anyio("asyncio")
async def test_history_reads_are_capped_newest_first(tmp_path) -> None:
    database, store = await open_store(tmp_path, history_limit=3)
    try:
        for index in range(5):
            await store.add_history(
                WatchHistoryItem(item_id=str(index), item_type="movie", title=f"M{index}")
            )

        history = await store.get_history()
        assert [entry.item_id for entry in history] == ["4", "3", "2"]
        assert len(await store.get_history(limit=10)) == 5

        await store.clear_history()
        assert await store.get_history() == []
    finally:
        await database.dispose()


@pytest.mark.anyio("asyncio")
async def test_continue_watching_upserts_single_row(tmp_path) -> None:
    database, store = await open_store(tmp_path)
    try:
        await store.save_continue_watching(
            ContinueWatchingItem(
                item_id="9", item_type="movie", progress_percent=10, current_time_seconds=60
            )
        )
        await store.save_continue_watching(
            ContinueWatchingItem(
                item_id="9",
                item_type="movie",
                progress_percent=55,
                current_time_seconds=330,
                duration_seconds=600,
            )
        )

        entries = await store.get_continue_watching()
        assert len(entries) == 1
        assert entries[0].progress_percent == 55
        assert entries[0].current_time_seconds == 330

        # The store itself never evicts finished entries.
        await store.save_continue_watching(
            ContinueWatchingItem(item_id="9", item_type="movie", progress_percent=99)
        )
        entry = await store.get_continue_watching_item("9")
        assert entry is not None and entry.progress_percent == 99

        await store.remove_continue_watching("9")
        assert await store.get_continue_watching_item("9") is None
    finally:
        await database.dispose()


@pytest.mark.anyio("asyncio")
async def test_record_playback_evicts_completed_items(tmp_path) -> None:
    database, store = await open_store(tmp_path)
    try:
        listed = await record_playback(
            store, ContinueWatchingItem(item_id="3", item_type="movie", progress_percent=40)
        )
        assert listed is True
        assert len(await store.get_continue_watching()) == 1

        listed = await record_playback(
            store, ContinueWatchingItem(item_id="3", item_type="movie", progress_percent=95)
        )
        assert listed is False
        assert await store.get_continue_watching() == []
    finally:
        await database.dispose()


@pytest.mark.anyio("asyncio")
async def test_episode_progress_updates_existing_row(tmp_path) -> None:
    database, store = await open_store(tmp_path)
    try:
        await store.save_episode_progress(
            EpisodeProgressItem(
                episode_id="e2", series_id="s1", season_number=1, episode_number=2
            )
        )
        await store.save_episode_progress(
            EpisodeProgressItem(
                episode_id="e1",
                series_id="s1",
                season_number=1,
                episode_number=1,
                progress_percent=20,
            )
        )
        await store.save_episode_progress(
            EpisodeProgressItem(
                episode_id="e1",
                series_id="s1",
                season_number=1,
                episode_number=1,
                progress_percent=100,
                watched=True,
            )
        )

        progress = await store.get_episode_progress("s1")
        assert [entry.episode_id for entry in progress] == ["e1", "e2"]
        assert progress[0].watched is True
        assert progress[0].progress_percent == 100
        assert await store.get_episode_progress("other") == []

        single = await store.get_episode_progress_item("e2")
        assert single is not None and single.episode_number == 2
    finally:
        await database.dispose()


@pytest.mark.anyio("asyncio")
async def test_reset_clears_every_collection(tmp_path) -> None:
    database, store = await open_store(tmp_path)
    try:
        await store.toggle_favorite(FavoriteItem(item_id="1", item_type="movie"))
        await store.add_history(WatchHistoryItem(item_id="1", item_type="movie"))
        await store.save_continue_watching(ContinueWatchingItem(item_id="1", item_type="movie"))
        await store.save_episode_progress(EpisodeProgressItem(episode_id="e", series_id="s"))

        await store.reset()

        assert await store.get_favorites() == []
        assert await store.get_history() == []
        assert await store.get_continue_watching() == []
        assert await store.get_episode_progress("s") == []
    finally:
        await database.dispose()


@pytest.mark.anyio("asyncio")
async def test_concurrent_progress_saves_keep_one_row(tmp_path) -> None:
    database, store = await open_store(tmp_path)
    try:
        await asyncio.gather(
            store.save_continue_watching(
                ContinueWatchingItem(item_id="3", item_type="movie", progress_percent=10)
            ),
            store.save_continue_watching(
                ContinueWatchingItem(item_id="3", item_type="movie", progress_percent=20)
            ),
        )
        await asyncio.gather(
            *(
                store.save_episode_progress(
                    EpisodeProgressItem(
                        episode_id="e1",
                        series_id="s1",
                        season_number=1,
                        episode_number=1,
                        progress_percent=percent,
                    )
                )
                for percent in (30, 60)
            )
        )

        entries = await store.get_continue_watching()
        assert [entry.item_id for entry in entries] == ["3"]
        assert entries[0].progress_percent in {10, 20}

        progress = await store.get_episode_progress("s1")
        assert [entry.episode_id for entry in progress] == ["e1"]
        assert progress[0].progress_percent in {30, 60}
    finally:
        await database.dispose()
