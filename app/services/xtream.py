"""Remote catalog gateway backed by the Xtream Codes player API."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Protocol

import httpx
from pydantic import ValidationError

from ..config import Settings
from ..errors import GatewayUnavailable, MalformedResponse
from ..models import (
    RECORD_MODELS,
    ContentType,
    ItemDetail,
    RemoteCategory,
    RemoteItemRecord,
)

logger = logging.getLogger(__name__)


class CatalogGateway(Protocol):
    """Operations the sync coordinator and reader need from the provider."""

    async def fetch_categories(self, content_type: ContentType) -> list[RemoteCategory]:
        ...

    async def fetch_items(self, content_type: ContentType) -> list[RemoteItemRecord]:
        ...

    async def fetch_item_detail(
        self, content_type: ContentType, item_id: int
    ) -> ItemDetail:
        ...


class XtreamClient:
    """Thin wrapper around the Xtream Codes ``player_api.php`` endpoint."""

    _API_PATH = "/player_api.php"
    _CATEGORY_ACTIONS = {
        "channels": "get_live_categories",
        "movies": "get_vod_categories",
        "series": "get_series_categories",
    }
    _LISTING_ACTIONS = {
        "channels": "get_live_streams",
        "movies": "get_vod_streams",
        "series": "get_series",
    }
    _DETAIL_ACTIONS = {
        "movies": ("get_vod_info", "vod_id"),
        "series": ("get_series_info", "series_id"),
    }
    _STREAM_PATHS = {"channels": "live", "movies": "movie", "series": "series"}

    def __init__(self, settings: Settings, http_client: httpx.AsyncClient):
        self._settings = settings
        self._client = http_client
        self._max_retries = settings.gateway_retries

    def _params(self, action: str, **extra: Any) -> dict[str, str]:
        params = {
            "username": self._settings.xtream_username or "",
            "password": self._settings.xtream_password or "",
            "action": action,
        }
        params.update({key: str(value) for key, value in extra.items()})
        return params

    async def _request(self, action: str, **extra: Any) -> Any:
        if not self._settings.has_credentials:
            raise GatewayUnavailable("Provider credentials are not configured")

        url = f"{self._settings.xtream_url}{self._API_PATH}"
        attempt = 0
        while True:
            try:
                response = await self._client.get(url, params=self._params(action, **extra))
            except httpx.HTTPError as exc:
                attempt += 1
                if attempt <= self._max_retries:
                    backoff = min(2 ** (attempt - 1), 5) + (0.1 * attempt)
                    logger.info(
                        "Transient error talking to provider (%s). Retrying %s in %.1fs",
                        exc.__class__.__name__,
                        action,
                        backoff,
                    )
                    await asyncio.sleep(backoff)
                    continue
                logger.warning("Provider request %s failed: %s", action, exc)
                raise GatewayUnavailable(f"{action} failed: {exc}") from exc

            if 500 <= response.status_code < 600:
                attempt += 1
                if attempt <= self._max_retries:
                    backoff = min(2 ** (attempt - 1), 5) + (0.1 * attempt)
                    logger.info(
                        "Provider 5xx during %s. Retrying in %.1fs", action, backoff
                    )
                    await asyncio.sleep(backoff)
                    continue
                raise GatewayUnavailable(
                    f"{action} failed with HTTP {response.status_code}"
                )
            if response.status_code in {401, 403}:
                raise GatewayUnavailable(f"{action} was rejected by the provider")
            if response.status_code >= 400:
                raise GatewayUnavailable(
                    f"{action} failed with HTTP {response.status_code}"
                )
            break

        try:
            return response.json()
        except ValueError as exc:
            logger.warning("Unexpected non-JSON provider response for %s", action)
            raise MalformedResponse(f"{action} returned a non-JSON body") from exc

    async def fetch_categories(self, content_type: ContentType) -> list[RemoteCategory]:
        """Fetch the category list for a content type."""

        action = self._CATEGORY_ACTIONS[content_type]
        data = await self._request(action)
        if not isinstance(data, list):
            raise MalformedResponse(f"{action} did not return a list")

        categories: list[RemoteCategory] = []
        for entry in data:
            try:
                categories.append(RemoteCategory.model_validate(entry))
            except ValidationError:
                logger.debug("Skipping malformed %s category entry: %r", content_type, entry)
        return categories

    async def fetch_items(self, content_type: ContentType) -> list[RemoteItemRecord]:
        """Fetch the full listing for a content type in one request."""

        action = self._LISTING_ACTIONS[content_type]
        data = await self._request(action)
        if isinstance(data, dict) and not data:
            # Empty panels answer {} instead of [].
            data = []
        if not isinstance(data, list):
            raise MalformedResponse(f"{action} did not return a list")

        record_model = RECORD_MODELS[content_type]
        records: list[RemoteItemRecord] = []
        skipped = 0
        for entry in data:
            if not isinstance(entry, dict):
                skipped += 1
                continue
            try:
                records.append(record_model.model_validate(entry))
            except ValidationError:
                skipped += 1
        if skipped:
            logger.warning(
                "Skipped %s malformed %s records out of %s", skipped, content_type, len(data)
            )
        if data and not records:
            raise MalformedResponse(f"{action} returned no usable records")
        return records

    async def fetch_item_detail(
        self, content_type: ContentType, item_id: int
    ) -> ItemDetail:
        """Fetch extended fields (plot, cast, seasons and episodes) for one item."""

        if content_type not in self._DETAIL_ACTIONS:
            raise ValueError(f"{content_type} have no detail endpoint")
        action, id_param = self._DETAIL_ACTIONS[content_type]
        data = await self._request(action, **{id_param: item_id})
        try:
            return ItemDetail.from_provider(content_type, item_id, data)
        except (ValueError, ValidationError) as exc:
            raise MalformedResponse(f"{action} returned an unexpected payload") from exc

    @property
    def has_credentials(self) -> bool:
        return self._settings.has_credentials

    def stream_url(
        self, content_type: ContentType, stream_id: int | str, extension: str | None = None
    ) -> str:
        """Build the playback URL handed to the external player."""

        default_extension = "ts" if content_type == "channels" else "mp4"
        return (
            f"{self._settings.xtream_url}/{self._STREAM_PATHS[content_type]}/"
            f"{self._settings.xtream_username}/{self._settings.xtream_password}/"
            f"{stream_id}.{extension or default_extension}"
        )
