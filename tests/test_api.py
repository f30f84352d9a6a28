"""HTTP surface tests driven through FastAPI's TestClient."""

from __future__ import annotations

from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI
from fastapi.testclient import TestClient

from app.database import Database
from app.errors import GatewayUnavailable
from app.main import register_routes
from app.models import RECORD_MODELS, ItemDetail, RemoteCategory, RemoteItemRecord
from app.services.catalog_reader import CatalogReader
from app.services.catalog_store import CatalogStore
from app.services.sync import SyncCoordinator
from app.services.watch_state import WatchStateStore


class StubGateway:
    def __init__(self) -> None:
        self.listings: dict[str, list[dict]] = {
            "movies": [
                {"stream_id": 1, "name": "Alpha", "category_id": "3", "container_extension": "mkv"},
                {"stream_id": 2, "name": "Beta", "category_id": "4", "category_ids": [4, 3]},
            ],
            "channels": [{"stream_id": 10, "name": "News"}],
            "series": [{"series_id": 20, "name": "Drama"}],
        }
        self.offline = False

    async def fetch_categories(self, content_type: str) -> list[RemoteCategory]:
        if content_type == "movies":
            return [RemoteCategory(id="3", name="Action"), RemoteCategory(id="4", name="Drama")]
        return []

    async def fetch_items(self, content_type: str) -> list[RemoteItemRecord]:
        if self.offline:
            raise GatewayUnavailable("provider offline")
        model = RECORD_MODELS[content_type]
        return [model.model_validate(raw) for raw in self.listings[content_type]]

    async def fetch_item_detail(self, content_type: str, item_id: int) -> ItemDetail:
        return ItemDetail.from_provider(content_type, item_id, {"info": {"plot": "Plot"}})


def build_app(database_path: Path, gateway: StubGateway) -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        database = Database(f"sqlite+aiosqlite:///{database_path}")
        await database.initialise(strict=True)
        store = CatalogStore(database)
        watch_state = WatchStateStore(database)
        coordinator = SyncCoordinator(store, gateway)
        app.state.catalog_store = store
        app.state.watch_state = watch_state
        app.state.sync_coordinator = coordinator
        app.state.catalog_reader = CatalogReader(store, coordinator, watch_state, gateway)
        try:
            yield
        finally:
            await coordinator.stop()
            await database.dispose()

    app = FastAPI(lifespan=lifespan)
    register_routes(app)
    return app


def test_healthcheck_reports_storage(tmp_path) -> None:
    with TestClient(build_app(tmp_path / "api.db", StubGateway())) as client:
        response = client.get("/healthz")

    assert response.status_code == 200
    assert response.json() == {"status": "ok", "storage": True}


def test_manual_sync_then_browse_catalog(tmp_path) -> None:
    with TestClient(build_app(tmp_path / "api.db", StubGateway())) as client:
        synced = client.post("/sync/movies")
        assert synced.status_code == 200
        assert synced.json()["outcome"] == "applied"
        assert synced.json()["created"] == 2

        listing = client.get("/catalog/movies")
        assert listing.status_code == 200
        assert [item["name"] for item in listing.json()["items"]] == ["Alpha", "Beta"]

        by_category = client.get("/catalog/movies", params={"filter": "3"})
        assert by_category.json()["count"] == 2

        searched = client.get("/catalog/movies", params={"q": "bet"})
        assert [item["remoteId"] for item in searched.json()["items"]] == [2]

        categories = client.get("/categories/movies")
        assert [category["name"] for category in categories.json()] == ["Action", "Drama"]

        status = client.get("/sync/status").json()
        movies_status = next(entry for entry in status if entry["type"] == "movies")
        assert movies_status["lastSyncedAt"] is not None


def test_catalog_item_includes_detail(tmp_path) -> None:
    with TestClient(build_app(tmp_path / "api.db", StubGateway())) as client:
        client.post("/sync/movies")

        response = client.get("/catalog/movies/1")
        missing = client.get("/catalog/movies/999")

    assert response.status_code == 200
    body = response.json()
    assert body["item"]["name"] == "Alpha"
    assert body["detail"]["info"]["plot"] == "Plot"
    assert body["streamUrl"] is None
    assert missing.status_code == 404


def test_invalid_requests_are_rejected(tmp_path) -> None:
    with TestClient(build_app(tmp_path / "api.db", StubGateway())) as client:
        assert client.get("/catalog/podcasts").status_code == 400
        assert client.get("/catalog/movies", params={"sort": "popularity"}).status_code == 422
        assert client.post("/sync/epg").status_code == 400


def test_manual_sync_failure_maps_to_bad_gateway(tmp_path) -> None:
    gateway = StubGateway()
    gateway.offline = True
    with TestClient(build_app(tmp_path / "api.db", gateway)) as client:
        response = client.post("/sync/channels")
        listing = client.get("/catalog/channels")

    assert response.status_code == 502
    assert listing.status_code == 200
    assert listing.json()["items"] == []


def test_sync_everything(tmp_path) -> None:
    with TestClient(build_app(tmp_path / "api.db", StubGateway())) as client:
        response = client.post("/sync")

    assert response.status_code == 200
    assert [entry["type"] for entry in response.json()] == ["channels", "movies", "series"]


def test_favorites_round_trip(tmp_path) -> None:
    with TestClient(build_app(tmp_path / "api.db", StubGateway())) as client:
        client.post("/sync/movies")
        payload = {"itemId": 2, "itemType": "movie", "title": "Beta"}

        first = client.post("/favorites/toggle", json=payload)
        favorites = client.get("/favorites", params={"type": "movie"})
        filtered = client.get("/catalog/movies", params={"filter": "favorites"})
        second = client.post("/favorites/toggle", json=payload)

    assert first.json()["favorite"] is True
    assert [item["itemId"] for item in favorites.json()] == ["2"]
    assert [item["remoteId"] for item in filtered.json()["items"]] == [2]
    assert second.json()["favorite"] is False


def test_history_and_continue_watching(tmp_path) -> None:
    with TestClient(build_app(tmp_path / "api.db", StubGateway())) as client:
        added = client.post("/history", json={"itemId": "1", "itemType": "movie", "title": "Alpha"})
        assert added.status_code == 201
        assert len(client.get("/history").json()) == 1

        tick = {"itemId": "1", "itemType": "movie", "progressPercent": 30, "currentTimeSeconds": 120}
        assert client.post("/playback", json=tick).json()["continueWatching"] is True
        tick["progressPercent"] = 60
        client.put("/continue-watching", json=tick)
        entries = client.get("/continue-watching").json()
        assert len(entries) == 1
        assert entries[0]["progressPercent"] == 60

        tick["progressPercent"] = 97
        assert client.post("/playback", json=tick).json()["continueWatching"] is False
        assert client.get("/continue-watching").json() == []

        client.delete("/history")
        assert client.get("/history").json() == []


def test_episode_progress_endpoints(tmp_path) -> None:
    with TestClient(build_app(tmp_path / "api.db", StubGateway())) as client:
        saved = client.put(
            "/episodes/progress",
            json={"episodeId": "e1", "seriesId": "20", "seasonNumber": 1, "episodeNumber": 1},
        )
        assert saved.status_code == 200

        progress = client.get("/series/20/progress").json()
        single = client.get("/episodes/e1/progress")
        missing = client.get("/episodes/nope/progress")

    assert [entry["episodeId"] for entry in progress] == ["e1"]
    assert single.json()["seriesId"] == "20"
    assert missing.status_code == 404


def test_cache_reset(tmp_path) -> None:
    with TestClient(build_app(tmp_path / "api.db", StubGateway())) as client:
        client.post("/sync/movies")
        client.post("/favorites/toggle", json={"itemId": "1", "itemType": "movie"})

        client.post("/cache/reset")
        assert client.get("/favorites").json() != []

        client.post("/cache/reset", params={"scope": "all"})
        assert client.get("/favorites").json() == []
