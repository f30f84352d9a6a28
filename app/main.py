"""Entry point for the FastAPI-powered catalog cache service."""

from __future__ import annotations

import logging
from contextlib import AsyncExitStack, asynccontextmanager
from typing import Any, Literal

import httpx
from fastapi import FastAPI, HTTPException, Query
from fastapi.middleware.cors import CORSMiddleware

from .config import settings
from .database import Database
from .errors import GatewayError, SyncInProgress, UnsupportedSyncType
from .models import (
    CatalogItem,
    ContinueWatchingItem,
    EpisodeProgressItem,
    FavoriteItem,
    ItemType,
    WatchHistoryItem,
    ensure_content_type,
)
from .services.catalog_reader import CatalogReader
from .services.catalog_store import CatalogStore
from .services.sync import SyncCoordinator, SyncEvent
from .services.watch_state import WatchStateStore, record_playback
from .services.xtream import XtreamClient

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

app: FastAPI


@asynccontextmanager
async def lifespan(fastapi_app: FastAPI):
    exit_stack = AsyncExitStack()
    http_client = await exit_stack.enter_async_context(
        httpx.AsyncClient(
            timeout=httpx.Timeout(settings.gateway_timeout_seconds, connect=10.0),
            follow_redirects=True,
        )
    )
    database = Database(settings.database_url)
    await database.initialise()

    gateway = XtreamClient(settings, http_client)
    catalog_store = CatalogStore(database)
    watch_state = WatchStateStore(database, history_limit=settings.history_limit)
    coordinator = SyncCoordinator(
        catalog_store,
        gateway,
        thresholds=settings.sync_thresholds,
        chunk_size=settings.sync_chunk_size,
    )
    reader = CatalogReader(
        catalog_store,
        coordinator,
        watch_state,
        gateway,
        detail_ttl_hours=settings.detail_ttl_hours,
    )
    coordinator.progress.subscribe(_log_sync_event)

    fastapi_app.state.database = database
    fastapi_app.state.gateway = gateway
    fastapi_app.state.catalog_store = catalog_store
    fastapi_app.state.watch_state = watch_state
    fastapi_app.state.sync_coordinator = coordinator
    fastapi_app.state.catalog_reader = reader

    try:
        yield
    finally:  # pragma: no cover - teardown path exercised at runtime
        await coordinator.stop()
        await database.dispose()
        await exit_stack.aclose()


def _log_sync_event(event: SyncEvent) -> None:
    if event.is_error:
        logger.warning("[%s] %s", event.sync_type, event.message)
    else:
        logger.info("[%s] %s", event.sync_type, event.message)


def create_app() -> FastAPI:
    fastapi_app = FastAPI(
        title=settings.app_name,
        description="Offline-first catalog cache for Xtream Codes providers",
        version="1.0.0",
        lifespan=lifespan,
    )

    fastapi_app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET", "POST", "PUT", "DELETE"],
        allow_headers=["*"],
    )

    register_routes(fastapi_app)
    return fastapi_app


def _require(fastapi_app: FastAPI, name: str, expected: type) -> Any:
    service = getattr(fastapi_app.state, name, None)
    if not isinstance(service, expected):
        raise RuntimeError(f"{expected.__name__} not initialised")
    return service


def get_catalog_reader(fastapi_app: FastAPI) -> CatalogReader:
    return _require(fastapi_app, "catalog_reader", CatalogReader)


def get_sync_coordinator(fastapi_app: FastAPI) -> SyncCoordinator:
    return _require(fastapi_app, "sync_coordinator", SyncCoordinator)


def get_watch_state(fastapi_app: FastAPI) -> WatchStateStore:
    return _require(fastapi_app, "watch_state", WatchStateStore)


def get_catalog_store(fastapi_app: FastAPI) -> CatalogStore:
    return _require(fastapi_app, "catalog_store", CatalogStore)


def _stream_url(fastapi_app: FastAPI, item: CatalogItem) -> str | None:
    """Playback URL for channels and movies; series play per episode."""

    gateway = getattr(fastapi_app.state, "gateway", None)
    if not isinstance(gateway, XtreamClient) or not gateway.has_credentials:
        return None
    if item.content_type == "series":
        return None
    return gateway.stream_url(
        item.content_type, item.remote_id, getattr(item, "container_extension", None)
    )


def _content_type_or_400(content_type: str):
    try:
        return ensure_content_type(content_type)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


def register_routes(fastapi_app: FastAPI) -> None:
    @fastapi_app.get("/healthz")
    async def healthcheck() -> dict[str, Any]:
        store = getattr(fastapi_app.state, "catalog_store", None)
        return {
            "status": "ok",
            "storage": bool(store is not None and store.available),
        }

    # -- catalog ---------------------------------------------------------

    @fastapi_app.get("/catalog/{content_type}")
    async def catalog(
        content_type: str,
        filter: str = Query(default="all"),
        sort: Literal["name", "rating", "recent"] = Query(default="name"),
        q: str | None = Query(default=None),
        limit: int | None = Query(default=None, ge=1, le=10_000),
        offset: int = Query(default=0, ge=0),
    ) -> dict[str, Any]:
        resolved = _content_type_or_400(content_type)
        reader = get_catalog_reader(fastapi_app)
        items = await reader.query(
            resolved, filter, search=q, sort=sort, limit=limit, offset=offset
        )
        return {
            "type": resolved,
            "filter": filter,
            "count": len(items),
            "items": [item.to_payload() for item in items],
        }

    @fastapi_app.get("/catalog/{content_type}/{item_id}")
    async def catalog_item(
        content_type: str, item_id: int, refresh: bool = Query(default=False)
    ) -> dict[str, Any]:
        resolved = _content_type_or_400(content_type)
        reader = get_catalog_reader(fastapi_app)
        item = await reader.get_item(resolved, item_id)
        if item is None:
            raise HTTPException(
                status_code=404, detail=f"{resolved} item {item_id} is not cached"
            )
        detail = await reader.get_detail(resolved, item_id, force=refresh)
        return {
            "item": item.to_payload(),
            "streamUrl": _stream_url(fastapi_app, item),
            "detail": detail.to_payload() if detail is not None else None,
        }

    @fastapi_app.get("/categories/{content_type}")
    async def categories(content_type: str) -> list[dict[str, Any]]:
        resolved = _content_type_or_400(content_type)
        reader = get_catalog_reader(fastapi_app)
        return [category.to_payload() for category in await reader.categories(resolved)]

    # -- sync ------------------------------------------------------------

    @fastapi_app.get("/sync/status")
    async def sync_status() -> list[dict[str, Any]]:
        coordinator = get_sync_coordinator(fastapi_app)
        return [status.to_payload() for status in await coordinator.status()]

    @fastapi_app.post("/sync")
    async def sync_everything() -> list[dict[str, Any]]:
        coordinator = get_sync_coordinator(fastapi_app)
        try:
            results = await coordinator.sync_all()
        except SyncInProgress as exc:
            raise HTTPException(status_code=409, detail=str(exc)) from exc
        except GatewayError as exc:
            raise HTTPException(status_code=502, detail=str(exc)) from exc
        return [result.to_payload() for result in results]

    @fastapi_app.post("/sync/{sync_type}")
    async def sync_type(
        sync_type: str, force: bool = Query(default=True)
    ) -> dict[str, Any]:
        coordinator = get_sync_coordinator(fastapi_app)
        try:
            result = await coordinator.sync_now(sync_type, force=force)
        except UnsupportedSyncType as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        except SyncInProgress as exc:
            raise HTTPException(status_code=409, detail=str(exc)) from exc
        except GatewayError as exc:
            raise HTTPException(status_code=502, detail=str(exc)) from exc
        return result.to_payload()

    @fastapi_app.post("/cache/reset")
    async def reset_cache(
        scope: Literal["catalog", "all"] = Query(default="catalog"),
    ) -> dict[str, str]:
        await get_catalog_store(fastapi_app).reset()
        if scope == "all":
            await get_watch_state(fastapi_app).reset()
        return {"status": "reset", "scope": scope}

    # -- favorites -------------------------------------------------------

    @fastapi_app.get("/favorites")
    async def favorites(type: ItemType | None = Query(default=None)) -> list[dict[str, Any]]:
        store = get_watch_state(fastapi_app)
        return [item.to_payload() for item in await store.get_favorites(type)]

    @fastapi_app.post("/favorites/toggle")
    async def toggle_favorite(item: FavoriteItem) -> dict[str, Any]:
        store = get_watch_state(fastapi_app)
        state = await store.toggle_favorite(item)
        return {"itemId": item.item_id, "itemType": item.item_type, "favorite": state}

    @fastapi_app.delete("/favorites")
    async def clear_favorites() -> dict[str, str]:
        await get_watch_state(fastapi_app).clear_favorites()
        return {"status": "cleared"}

    # -- history ---------------------------------------------------------

    @fastapi_app.get("/history")
    async def history(
        limit: int | None = Query(default=None, ge=1, le=10_000),
    ) -> list[dict[str, Any]]:
        store = get_watch_state(fastapi_app)
        return [item.to_payload() for item in await store.get_history(limit)]

    @fastapi_app.post("/history", status_code=201)
    async def add_history(item: WatchHistoryItem) -> dict[str, str]:
        await get_watch_state(fastapi_app).add_history(item)
        return {"status": "recorded"}

    @fastapi_app.delete("/history")
    async def clear_history() -> dict[str, str]:
        await get_watch_state(fastapi_app).clear_history()
        return {"status": "cleared"}

    # -- continue watching -----------------------------------------------

    @fastapi_app.get("/continue-watching")
    async def continue_watching() -> list[dict[str, Any]]:
        store = get_watch_state(fastapi_app)
        return [item.to_payload() for item in await store.get_continue_watching()]

    @fastapi_app.put("/continue-watching")
    async def save_continue_watching(item: ContinueWatchingItem) -> dict[str, str]:
        await get_watch_state(fastapi_app).save_continue_watching(item)
        return {"status": "saved"}

    @fastapi_app.delete("/continue-watching/{item_id}")
    async def remove_continue_watching(item_id: str) -> dict[str, str]:
        await get_watch_state(fastapi_app).remove_continue_watching(item_id)
        return {"status": "removed"}

    @fastapi_app.delete("/continue-watching")
    async def clear_continue_watching() -> dict[str, str]:
        await get_watch_state(fastapi_app).clear_continue_watching()
        return {"status": "cleared"}

    @fastapi_app.post("/playback")
    async def playback_tick(item: ContinueWatchingItem) -> dict[str, Any]:
        listed = await record_playback(
            get_watch_state(fastapi_app),
            item,
            complete_percent=settings.continue_watching_complete_percent,
        )
        return {"itemId": item.item_id, "continueWatching": listed}

    # -- episode progress ------------------------------------------------

    @fastapi_app.get("/series/{series_id}/progress")
    async def series_progress(series_id: str) -> list[dict[str, Any]]:
        store = get_watch_state(fastapi_app)
        return [item.to_payload() for item in await store.get_episode_progress(series_id)]

    @fastapi_app.get("/episodes/{episode_id}/progress")
    async def episode_progress(episode_id: str) -> dict[str, Any]:
        entry = await get_watch_state(fastapi_app).get_episode_progress_item(episode_id)
        if entry is None:
            raise HTTPException(status_code=404, detail="No progress recorded")
        return entry.to_payload()

    @fastapi_app.put("/episodes/progress")
    async def save_episode_progress(item: EpisodeProgressItem) -> dict[str, str]:
        await get_watch_state(fastapi_app).save_episode_progress(item)
        return {"status": "saved"}


app = create_app()
