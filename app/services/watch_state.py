"""Per-user watch state: favorites, history, continue-watching and episode progress."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Callable

from sqlalchemy import delete, select
from sqlalchemy.dialects.sqlite import insert as sqlite_insert

from ..database import Database
from ..db_models import (
    ContinueWatchingEntry,
    EpisodeProgressEntry,
    Favorite,
    WatchHistoryEntry,
)
from ..models import (
    ContinueWatchingItem,
    EpisodeProgressItem,
    FavoriteItem,
    ItemType,
    WatchHistoryItem,
)

logger = logging.getLogger(__name__)


class WatchStateStore:
    """Watch-state collections, independent of the catalog cache.

    Every operation checks that the database initialised; when it did not,
    reads return empty results and writes are silently skipped.
    """

    def __init__(
        self,
        database: Database,
        *,
        history_limit: int = 100,
        clock: Callable[[], datetime] = datetime.utcnow,
    ):
        self._database = database
        self._history_limit = history_limit
        self._clock = clock

    @property
    def available(self) -> bool:
        return self._database.available

    # ------------------------------------------------------------------
    # Favorites
    # ------------------------------------------------------------------

    async def toggle_favorite(self, item: FavoriteItem) -> bool:
        """Delete the favorite if it exists, otherwise insert it.

        The membership check and the write share one transaction, so two
        callers toggling the same item cannot both insert. Returns the new
        membership state.
        """

        if not self.available:
            return False
        now = self._clock()
        async with self._database.session() as session:
            result = await session.execute(
                delete(Favorite)
                .where(
                    Favorite.item_type == item.item_type,
                    Favorite.item_id == item.item_id,
                )
            )
            if result.rowcount:
                return False
            session.add(
                Favorite(
                    item_id=item.item_id,
                    item_type=item.item_type,
                    title=item.title,
                    poster_ref=item.poster_ref,
                    created_at=now,
                    updated_at=now,
                )
            )
        return True

    async def add_favorite(self, item: FavoriteItem) -> None:
        """Insert or refresh a favorite without toggling it off."""

        if not self.available:
            return
        now = self._clock()
        async with self._database.session() as session:
            result = await session.execute(
                select(Favorite).where(
                    Favorite.item_type == item.item_type,
                    Favorite.item_id == item.item_id,
                )
            )
            existing = result.scalar_one_or_none()
            if existing is None:
                session.add(
                    Favorite(
                        item_id=item.item_id,
                        item_type=item.item_type,
                        title=item.title,
                        poster_ref=item.poster_ref,
                        created_at=now,
                        updated_at=now,
                    )
                )
            else:
                existing.title = item.title
                existing.poster_ref = item.poster_ref
                existing.updated_at = now

    async def remove_favorite(self, item_type: ItemType, item_id: str) -> bool:
        if not self.available:
            return False
        async with self._database.session() as session:
            result = await session.execute(
                delete(Favorite).where(
                    Favorite.item_type == item_type, Favorite.item_id == item_id
                )
            )
            return bool(result.rowcount)

    async def is_favorite(self, item_type: ItemType, item_id: str) -> bool:
        if not self.available:
            return False
        async with self._database.session_factory() as session:
            result = await session.execute(
                select(Favorite.id)
                .where(Favorite.item_type == item_type, Favorite.item_id == item_id)
                .limit(1)
            )
            return result.scalar_one_or_none() is not None

    async def get_favorites(self, item_type: ItemType | None = None) -> list[FavoriteItem]:
        if not self.available:
            return []
        stmt = select(Favorite).order_by(Favorite.created_at.desc(), Favorite.id.desc())
        if item_type is not None:
            stmt = stmt.where(Favorite.item_type == item_type)
        async with self._database.session_factory() as session:
            result = await session.execute(stmt)
            return [FavoriteItem.model_validate(row) for row in result.scalars().all()]

    async def favorite_ids(self, item_type: ItemType) -> set[str]:
        if not self.available:
            return set()
        async with self._database.session_factory() as session:
            result = await session.execute(
                select(Favorite.item_id).where(Favorite.item_type == item_type)
            )
            return {row[0] for row in result.all()}

    async def clear_favorites(self) -> None:
        if not self.available:
            return
        async with self._database.session() as session:
            await session.execute(delete(Favorite))

    # ------------------------------------------------------------------
    # Watch history
    # ------------------------------------------------------------------

    async def add_history(self, item: WatchHistoryItem) -> None:
        """Append a playback entry; the log has no write-time cap."""

        if not self.available:
            return
        async with self._database.session() as session:
            session.add(
                WatchHistoryEntry(
                    item_id=item.item_id,
                    item_type=item.item_type,
                    title=item.title,
                    poster_ref=item.poster_ref,
                    duration=item.duration,
                    progress_percent=item.progress_percent,
                    watched_at=item.watched_at or self._clock(),
                )
            )

    async def get_history(self, limit: int | None = None) -> list[WatchHistoryItem]:
        """Return the most recent entries, newest first."""

        if not self.available:
            return []
        resolved_limit = self._history_limit if limit is None else max(limit, 0)
        async with self._database.session_factory() as session:
            result = await session.execute(
                select(WatchHistoryEntry)
                .order_by(WatchHistoryEntry.watched_at.desc(), WatchHistoryEntry.id.desc())
                .limit(resolved_limit)
            )
            return [WatchHistoryItem.model_validate(row) for row in result.scalars().all()]

    async def clear_history(self) -> None:
        if not self.available:
            return
        async with self._database.session() as session:
            await session.execute(delete(WatchHistoryEntry))

    # ------------------------------------------------------------------
    # Continue watching
    # ------------------------------------------------------------------

    async def save_continue_watching(self, item: ContinueWatchingItem) -> None:
        """Upsert by ``item_id`` regardless of the progress value."""

        if not self.available:
            return
        stmt = sqlite_insert(ContinueWatchingEntry).values(
            item_id=item.item_id,
            item_type=item.item_type,
            title=item.title,
            poster_ref=item.poster_ref,
            progress_percent=item.progress_percent,
            current_time_seconds=item.current_time_seconds,
            duration_seconds=item.duration_seconds,
            updated_at=self._clock(),
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=["item_id"],
            set_={
                column: stmt.excluded[column]
                for column in (
                    "item_type",
                    "title",
                    "poster_ref",
                    "progress_percent",
                    "current_time_seconds",
                    "duration_seconds",
                    "updated_at",
                )
            },
        )
        async with self._database.session() as session:
            await session.execute(stmt)

    async def get_continue_watching(self) -> list[ContinueWatchingItem]:
        if not self.available:
            return []
        async with self._database.session_factory() as session:
            result = await session.execute(
                select(ContinueWatchingEntry).order_by(
                    ContinueWatchingEntry.updated_at.desc(), ContinueWatchingEntry.id.desc()
                )
            )
            return [
                ContinueWatchingItem.model_validate(row) for row in result.scalars().all()
            ]

    async def get_continue_watching_item(self, item_id: str) -> ContinueWatchingItem | None:
        if not self.available:
            return None
        async with self._database.session_factory() as session:
            result = await session.execute(
                select(ContinueWatchingEntry).where(ContinueWatchingEntry.item_id == item_id)
            )
            entry = result.scalar_one_or_none()
            return ContinueWatchingItem.model_validate(entry) if entry else None

    async def remove_continue_watching(self, item_id: str) -> None:
        if not self.available:
            return
        async with self._database.session() as session:
            await session.execute(
                delete(ContinueWatchingEntry).where(ContinueWatchingEntry.item_id == item_id)
            )

    async def clear_continue_watching(self) -> None:
        if not self.available:
            return
        async with self._database.session() as session:
            await session.execute(delete(ContinueWatchingEntry))

    # ------------------------------------------------------------------
    # Episode progress
    # ------------------------------------------------------------------

    async def save_episode_progress(self, item: EpisodeProgressItem) -> None:
        """Update the row for ``episode_id`` if present, else insert one.

        An existing row keeps its series, numbering and title; only the
        playback position and watched flag move.
        """

        if not self.available:
            return
        stmt = sqlite_insert(EpisodeProgressEntry).values(
            episode_id=item.episode_id,
            series_id=item.series_id,
            season_number=item.season_number,
            episode_number=item.episode_number,
            title=item.title,
            progress_percent=item.progress_percent,
            current_time_seconds=item.current_time_seconds,
            duration_seconds=item.duration_seconds,
            watched=item.watched,
            updated_at=self._clock(),
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=["episode_id"],
            set_={
                column: stmt.excluded[column]
                for column in (
                    "progress_percent",
                    "current_time_seconds",
                    "duration_seconds",
                    "watched",
                    "updated_at",
                )
            },
        )
        async with self._database.session() as session:
            await session.execute(stmt)

    async def get_episode_progress(self, series_id: str) -> list[EpisodeProgressItem]:
        if not self.available:
            return []
        async with self._database.session_factory() as session:
            result = await session.execute(
                select(EpisodeProgressEntry)
                .where(EpisodeProgressEntry.series_id == series_id)
                .order_by(
                    EpisodeProgressEntry.season_number, EpisodeProgressEntry.episode_number
                )
            )
            return [
                EpisodeProgressItem.model_validate(row) for row in result.scalars().all()
            ]

    async def get_episode_progress_item(self, episode_id: str) -> EpisodeProgressItem | None:
        if not self.available:
            return None
        async with self._database.session_factory() as session:
            result = await session.execute(
                select(EpisodeProgressEntry).where(
                    EpisodeProgressEntry.episode_id == episode_id
                )
            )
            entry = result.scalar_one_or_none()
            return EpisodeProgressItem.model_validate(entry) if entry else None

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    async def reset(self) -> None:
        if not self.available:
            return
        async with self._database.session() as session:
            for model in (
                Favorite,
                WatchHistoryEntry,
                ContinueWatchingEntry,
                EpisodeProgressEntry,
            ):
                await session.execute(delete(model))
        logger.info("Watch state reset")


async def record_playback(
    store: WatchStateStore,
    item: ContinueWatchingItem,
    *,
    complete_percent: float = 95,
) -> bool:
    """Apply one playback tick to the continue-watching list.

    The entry is upserted while playback is below ``complete_percent`` and
    removed once it reaches it. Returns whether the entry is still listed.
    """

    if item.progress_percent >= complete_percent:
        await store.remove_continue_watching(item.item_id)
        return False
    await store.save_continue_watching(item)
    return True
