"""Stale-while-revalidate read path over the local catalog cache."""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta
from typing import Callable

from ..errors import GatewayError
from ..models import (
    ITEM_TYPE_FOR_CONTENT,
    CatalogItem,
    Category,
    ContentType,
    ItemDetail,
    ensure_content_type,
)
from ..utils import coerce_int
from .catalog_store import SORT_ORDERS, CatalogStore, SortOrder
from .sync import SyncCoordinator
from .watch_state import WatchStateStore
from .xtream import CatalogGateway

logger = logging.getLogger(__name__)

FILTER_ALL = "all"
FILTER_FAVORITES = "favorites"


class CatalogReader:
    """Serves cached catalog rows immediately and refreshes them in the background.

    A query never waits for the network. The sync it triggers may finish
    after the result was returned; callers see the new rows on their next
    query.
    """

    def __init__(
        self,
        store: CatalogStore,
        coordinator: SyncCoordinator,
        watch_state: WatchStateStore,
        gateway: CatalogGateway,
        *,
        detail_ttl_hours: float = 168,
        clock: Callable[[], datetime] = datetime.utcnow,
    ):
        self._store = store
        self._coordinator = coordinator
        self._watch_state = watch_state
        self._gateway = gateway
        self._detail_ttl = timedelta(hours=detail_ttl_hours)
        self._clock = clock
        self._detail_jobs: dict[tuple[str, int], asyncio.Task[ItemDetail | None]] = {}

    async def query(
        self,
        content_type: str,
        filter: str = FILTER_ALL,
        *,
        search: str | None = None,
        sort: SortOrder = "name",
        limit: int | None = None,
        offset: int = 0,
        revalidate: bool = True,
    ) -> list[CatalogItem]:
        """Return cached items for ``filter`` and kick off a background sync.

        ``filter`` is ``"all"``, ``"favorites"`` or a category id; an item
        belongs to a category when it is its primary or one of its
        secondary categories.
        """

        resolved_type = ensure_content_type(content_type)
        if sort not in SORT_ORDERS:
            raise ValueError(f"Unsupported sort order: {sort!r}")

        item_ids: set[int] | None = None
        category_id: str | None = None
        if filter == FILTER_FAVORITES:
            favorite_ids = await self._watch_state.favorite_ids(
                ITEM_TYPE_FOR_CONTENT[resolved_type]
            )
            item_ids = {
                parsed
                for parsed in (coerce_int(value) for value in favorite_ids)
                if parsed is not None
            }
        elif filter and filter != FILTER_ALL:
            category_id = filter

        items = await self._store.get_items(
            resolved_type,
            category_id=category_id,
            item_ids=item_ids,
            search=search,
            sort=sort,
            limit=limit,
            offset=offset,
        )
        if revalidate:
            self._coordinator.schedule(resolved_type)
        return items

    async def categories(
        self, content_type: str, *, revalidate: bool = True
    ) -> list[Category]:
        resolved_type = ensure_content_type(content_type)
        categories = await self._store.get_categories(resolved_type)
        if revalidate:
            self._coordinator.schedule(resolved_type)
        return categories

    async def get_item(self, content_type: str, item_id: int) -> CatalogItem | None:
        return await self._store.get_item(ensure_content_type(content_type), item_id)

    async def get_detail(
        self, content_type: str, item_id: int, *, force: bool = False
    ) -> ItemDetail | None:
        """Return the detail extension, hydrating it lazily on first view.

        A cached extension is served as-is; once older than the detail TTL it
        is refreshed in the background. Without a cached copy the provider is
        queried inline, and a provider failure yields ``None``. Concurrent
        first views share one provider request.
        """

        resolved_type = ensure_content_type(content_type)
        if resolved_type == "channels":
            return None

        cached = None if force else await self._store.get_detail(resolved_type, item_id)
        if cached is not None:
            if self._detail_is_stale(cached):
                self._schedule_detail_refresh(resolved_type, item_id)
            return cached
        return await asyncio.shield(self._detail_task(resolved_type, item_id))

    def _detail_is_stale(self, detail: ItemDetail) -> bool:
        if detail.fetched_at is None:
            return True
        return self._clock() - detail.fetched_at >= self._detail_ttl

    async def _hydrate_detail(
        self, content_type: ContentType, item_id: int
    ) -> ItemDetail | None:
        try:
            detail = await self._gateway.fetch_item_detail(content_type, item_id)
        except GatewayError as exc:
            logger.warning(
                "Could not load %s detail for %s: %s", content_type, item_id, exc
            )
            return None
        fetched_at = self._clock()
        await self._store.save_detail(detail, fetched_at=fetched_at)
        detail.fetched_at = fetched_at
        return detail

    def _detail_task(
        self, content_type: ContentType, item_id: int
    ) -> asyncio.Task[ItemDetail | None]:
        """Return the in-flight hydration for ``(type, id)``, starting one if idle."""

        key = (content_type, item_id)
        existing = self._detail_jobs.get(key)
        if existing is not None and not existing.done():
            return existing
        task = asyncio.create_task(self._hydrate_detail(content_type, item_id))
        self._detail_jobs[key] = task
        task.add_done_callback(lambda finished: self._finish_detail_job(key, finished))
        return task

    def _finish_detail_job(
        self, key: tuple[str, int], task: asyncio.Task[ItemDetail | None]
    ) -> None:
        if self._detail_jobs.get(key) is task:
            del self._detail_jobs[key]
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Detail refresh for %s %s failed: %s", key[0], key[1], exc)

    def _schedule_detail_refresh(self, content_type: ContentType, item_id: int) -> None:
        self._detail_task(content_type, item_id)

    async def wait_for_background(self) -> None:
        """Wait for background detail refreshes and catalog syncs to finish."""

        while pending := [task for task in self._detail_jobs.values() if not task.done()]:
            await asyncio.gather(*pending, return_exceptions=True)
        await self._coordinator.wait_for_background()
