"""Pydantic models describing provider records and catalog payloads."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Literal

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    field_validator,
    model_validator,
)
from pydantic.alias_generators import to_camel

from .utils import (
    coerce_float,
    coerce_int,
    coerce_str,
    parse_id_list,
    parse_unix_timestamp,
)

ContentType = Literal["channels", "movies", "series"]
SyncType = Literal["movies", "series", "channels", "epg"]
ItemType = Literal["channel", "movie", "series"]

CONTENT_TYPES: tuple[ContentType, ...] = ("channels", "movies", "series")
ITEM_TYPE_FOR_CONTENT: dict[str, ItemType] = {
    "channels": "channel",
    "movies": "movie",
    "series": "series",
}


def ensure_content_type(value: str) -> ContentType:
    """Validate a content type coming from a caller."""

    normalised = (value or "").strip().lower()
    if normalised not in CONTENT_TYPES:
        raise ValueError(f"Unsupported content type: {value!r}")
    return normalised  # type: ignore[return-value]


# ---------------------------------------------------------------------------
# Provider listing records
# ---------------------------------------------------------------------------


class RemoteItemRecord(BaseModel):
    """Flat catalog record as returned by a full provider listing."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    remote_id: int = Field(
        validation_alias=AliasChoices("stream_id", "series_id", "remote_id", "id")
    )
    name: str = ""
    icon_url: str | None = Field(
        default=None, validation_alias=AliasChoices("stream_icon", "cover", "icon_url")
    )
    primary_category_id: str | None = Field(
        default=None,
        validation_alias=AliasChoices("category_id", "primary_category_id"),
    )
    secondary_category_ids: list[str] = Field(
        default_factory=list,
        validation_alias=AliasChoices("category_ids", "secondary_category_ids"),
    )
    added_at: datetime | None = Field(
        default=None, validation_alias=AliasChoices("added", "added_at")
    )

    @field_validator("remote_id", mode="before")
    @classmethod
    def _parse_remote_id(cls, value: object) -> int:
        parsed = coerce_int(value)
        if parsed is None:
            raise ValueError("record is missing a numeric identifier")
        return parsed

    @field_validator("name", mode="before")
    @classmethod
    def _parse_name(cls, value: object) -> str:
        return coerce_str(value) or ""

    @field_validator("icon_url", "primary_category_id", mode="before")
    @classmethod
    def _blank_to_none(cls, value: object) -> str | None:
        return coerce_str(value)

    @field_validator("secondary_category_ids", mode="before")
    @classmethod
    def _parse_category_ids(cls, value: object) -> list[str]:
        return parse_id_list(value)

    @field_validator("added_at", mode="before")
    @classmethod
    def _parse_added(cls, value: object) -> object:
        if isinstance(value, datetime):
            return value
        return parse_unix_timestamp(value)

    @model_validator(mode="after")
    def _drop_primary_from_secondary(self) -> "RemoteItemRecord":
        if self.primary_category_id is not None:
            self.secondary_category_ids = [
                category
                for category in self.secondary_category_ids
                if category != self.primary_category_id
            ]
        return self

    def category_ids(self) -> list[str]:
        """Return the primary category followed by the secondary ones."""

        ordered: list[str] = []
        if self.primary_category_id:
            ordered.append(self.primary_category_id)
        ordered.extend(self.secondary_category_ids)
        return ordered

    def to_row(self) -> dict[str, Any]:
        """Return the column values persisted for this record."""

        return self.model_dump(exclude={"secondary_category_ids"})


class RemoteChannelRecord(RemoteItemRecord):
    stream_kind: str | None = Field(
        default=None, validation_alias=AliasChoices("stream_type", "stream_kind")
    )
    epg_channel_id: str | None = None
    has_archive: bool = Field(
        default=False, validation_alias=AliasChoices("tv_archive", "has_archive")
    )
    archive_duration_hours: int | None = Field(
        default=None,
        validation_alias=AliasChoices("tv_archive_duration", "archive_duration_hours"),
    )
    direct_source: str | None = None

    @field_validator("stream_kind", "epg_channel_id", "direct_source", mode="before")
    @classmethod
    def _blank_strings(cls, value: object) -> str | None:
        return coerce_str(value)

    @field_validator("has_archive", mode="before")
    @classmethod
    def _parse_archive_flag(cls, value: object) -> bool:
        if isinstance(value, bool):
            return value
        return bool(coerce_int(value))

    @field_validator("archive_duration_hours", mode="before")
    @classmethod
    def _parse_archive_duration(cls, value: object) -> int | None:
        return coerce_int(value)


class RemoteMovieRecord(RemoteItemRecord):
    rating: str | None = None
    rating_5based: float | None = None
    container_extension: str | None = None
    direct_source: str | None = None

    @field_validator("rating", "container_extension", "direct_source", mode="before")
    @classmethod
    def _blank_strings(cls, value: object) -> str | None:
        return coerce_str(value)

    @field_validator("rating_5based", mode="before")
    @classmethod
    def _parse_rating(cls, value: object) -> float | None:
        return coerce_float(value)


class RemoteSeriesRecord(RemoteItemRecord):
    plot: str | None = None
    cast: str | None = None
    director: str | None = None
    genre: str | None = None
    release_date: str | None = Field(
        default=None,
        validation_alias=AliasChoices("releaseDate", "release_date", "releasedate"),
    )
    rating: str | None = None
    rating_5based: float | None = None
    backdrop_paths: list[str] = Field(
        default_factory=list,
        validation_alias=AliasChoices("backdrop_path", "backdrop_paths"),
    )
    trailer_ref: str | None = Field(
        default=None, validation_alias=AliasChoices("youtube_trailer", "trailer_ref")
    )
    episode_run_time: str | None = None
    last_modified: datetime | None = None

    @field_validator(
        "plot",
        "cast",
        "director",
        "genre",
        "release_date",
        "rating",
        "trailer_ref",
        "episode_run_time",
        mode="before",
    )
    @classmethod
    def _blank_strings(cls, value: object) -> str | None:
        return coerce_str(value)

    @field_validator("rating_5based", mode="before")
    @classmethod
    def _parse_rating(cls, value: object) -> float | None:
        return coerce_float(value)

    @field_validator("backdrop_paths", mode="before")
    @classmethod
    def _parse_backdrops(cls, value: object) -> list[str]:
        if isinstance(value, str):
            value = [value]
        if not isinstance(value, list):
            return []
        return [entry for entry in (coerce_str(item) for item in value) if entry]

    @field_validator("last_modified", mode="before")
    @classmethod
    def _parse_last_modified(cls, value: object) -> object:
        if isinstance(value, datetime):
            return value
        return parse_unix_timestamp(value)


RECORD_MODELS: dict[str, type[RemoteItemRecord]] = {
    "channels": RemoteChannelRecord,
    "movies": RemoteMovieRecord,
    "series": RemoteSeriesRecord,
}


class RemoteCategory(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: str = Field(validation_alias=AliasChoices("category_id", "id"))
    name: str = Field(
        default="", validation_alias=AliasChoices("category_name", "name")
    )
    parent_id: int | None = None

    @field_validator("id", mode="before")
    @classmethod
    def _parse_id(cls, value: object) -> str:
        parsed = coerce_str(value)
        if parsed is None:
            raise ValueError("category is missing an identifier")
        return parsed

    @field_validator("name", mode="before")
    @classmethod
    def _parse_name(cls, value: object) -> str:
        return coerce_str(value) or ""

    @field_validator("parent_id", mode="before")
    @classmethod
    def _parse_parent(cls, value: object) -> int | None:
        return coerce_int(value)


# ---------------------------------------------------------------------------
# Payloads served to callers
# ---------------------------------------------------------------------------


class ApiModel(BaseModel):
    """Base for payloads rendered as camelCase JSON."""

    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, from_attributes=True
    )

    def to_payload(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


class CatalogItem(ApiModel):
    content_type: ContentType
    remote_id: int
    name: str
    icon_url: str | None = None
    primary_category_id: str | None = None
    secondary_category_ids: list[str] = Field(default_factory=list)
    added_at: datetime | None = None
    cached_at: datetime

    def in_category(self, category_id: str) -> bool:
        return (
            self.primary_category_id == category_id
            or category_id in self.secondary_category_ids
        )


class Channel(CatalogItem):
    content_type: Literal["channels"] = "channels"
    stream_kind: str | None = None
    epg_channel_id: str | None = None
    has_archive: bool = False
    archive_duration_hours: int | None = None
    direct_source: str | None = None


class Movie(CatalogItem):
    content_type: Literal["movies"] = "movies"
    rating: str | None = None
    rating_5based: float | None = None
    container_extension: str | None = None
    direct_source: str | None = None


class Series(CatalogItem):
    content_type: Literal["series"] = "series"
    plot: str | None = None
    cast: str | None = None
    director: str | None = None
    genre: str | None = None
    release_date: str | None = None
    rating: str | None = None
    rating_5based: float | None = None
    backdrop_paths: list[str] = Field(default_factory=list)
    trailer_ref: str | None = None
    episode_run_time: str | None = None
    last_modified: datetime | None = None

    @field_validator("backdrop_paths", mode="before")
    @classmethod
    def _none_to_empty(cls, value: object) -> object:
        return value or []


ITEM_PAYLOADS: dict[str, type[CatalogItem]] = {
    "channels": Channel,
    "movies": Movie,
    "series": Series,
}


class Category(ApiModel):
    id: str
    name: str
    content_type: ContentType
    parent_id: int | None = None


class Episode(ApiModel):
    id: str
    episode_num: int | None = None
    season: int | None = None
    title: str | None = None
    container_extension: str | None = None
    duration_secs: int | None = None
    plot: str | None = None
    image: str | None = None

    @classmethod
    def from_provider(cls, data: dict[str, Any], *, season: int | None) -> "Episode":
        info = data.get("info") if isinstance(data.get("info"), dict) else {}
        return cls(
            id=coerce_str(data.get("id")) or "",
            episode_num=coerce_int(data.get("episode_num")),
            season=coerce_int(data.get("season")) if data.get("season") else season,
            title=coerce_str(data.get("title")),
            container_extension=coerce_str(data.get("container_extension")),
            duration_secs=coerce_int(info.get("duration_secs")),
            plot=coerce_str(info.get("plot")),
            image=coerce_str(info.get("movie_image")),
        )


class Season(ApiModel):
    season_number: int
    name: str | None = None
    episode_count: int | None = None
    cover: str | None = None
    air_date: str | None = None


class ItemDetail(ApiModel):
    """Extended fields fetched on demand for a single catalog item."""

    content_type: ContentType
    item_id: int
    info: dict[str, Any] = Field(default_factory=dict)
    seasons: list[Season] = Field(default_factory=list)
    episodes: dict[str, list[Episode]] = Field(default_factory=dict)
    fetched_at: datetime | None = None

    @classmethod
    def from_provider(
        cls, content_type: ContentType, item_id: int, payload: Any
    ) -> "ItemDetail":
        """Build a detail record from ``get_vod_info``/``get_series_info`` output."""

        if not isinstance(payload, dict):
            raise ValueError("detail payload must be an object")
        info = payload.get("info")
        if isinstance(info, list):  # some panels answer [] when info is missing
            info = {}
        if not isinstance(info, dict):
            raise ValueError("detail payload is missing the info section")
        if content_type == "movies" and isinstance(payload.get("movie_data"), dict):
            info = {**info, "movie_data": payload["movie_data"]}

        seasons: list[Season] = []
        for raw in payload.get("seasons") or []:
            if not isinstance(raw, dict):
                continue
            number = coerce_int(raw.get("season_number"))
            if number is None:
                continue
            seasons.append(
                Season(
                    season_number=number,
                    name=coerce_str(raw.get("name")),
                    episode_count=coerce_int(raw.get("episode_count")),
                    cover=coerce_str(raw.get("cover")),
                    air_date=coerce_str(raw.get("air_date")),
                )
            )

        episodes: dict[str, list[Episode]] = {}
        raw_episodes = payload.get("episodes") or {}
        if isinstance(raw_episodes, list):
            # Single-season panels sometimes return a bare list.
            raw_episodes = {"1": raw_episodes}
        if isinstance(raw_episodes, dict):
            for season_key, entries in raw_episodes.items():
                if not isinstance(entries, list):
                    continue
                season_number = coerce_int(season_key)
                episodes[str(season_key)] = [
                    Episode.from_provider(entry, season=season_number)
                    for entry in entries
                    if isinstance(entry, dict)
                ]
        return cls(
            content_type=content_type,
            item_id=item_id,
            info=info,
            seasons=seasons,
            episodes=episodes,
        )


class FavoriteItem(ApiModel):
    item_id: str
    item_type: ItemType
    title: str = ""
    poster_ref: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @field_validator("item_id", mode="before")
    @classmethod
    def _stringify_id(cls, value: object) -> object:
        return str(value) if isinstance(value, int) else value


class WatchHistoryItem(ApiModel):
    item_id: str
    item_type: ItemType
    title: str = ""
    poster_ref: str | None = None
    duration: float | None = None
    progress_percent: float | None = Field(default=None, ge=0, le=100)
    watched_at: datetime | None = None

    @field_validator("item_id", mode="before")
    @classmethod
    def _stringify_id(cls, value: object) -> object:
        return str(value) if isinstance(value, int) else value


class ContinueWatchingItem(ApiModel):
    item_id: str
    item_type: ItemType
    title: str = ""
    poster_ref: str | None = None
    progress_percent: float = Field(default=0, ge=0, le=100)
    current_time_seconds: float = Field(default=0, ge=0)
    duration_seconds: float = Field(default=0, ge=0)
    updated_at: datetime | None = None

    @field_validator("item_id", mode="before")
    @classmethod
    def _stringify_id(cls, value: object) -> object:
        return str(value) if isinstance(value, int) else value


class EpisodeProgressItem(ApiModel):
    episode_id: str
    series_id: str
    season_number: int = 0
    episode_number: int = 0
    title: str | None = None
    progress_percent: float = Field(default=0, ge=0, le=100)
    current_time_seconds: float = Field(default=0, ge=0)
    duration_seconds: float = Field(default=0, ge=0)
    watched: bool = False
    updated_at: datetime | None = None

    @field_validator("episode_id", "series_id", mode="before")
    @classmethod
    def _stringify_id(cls, value: object) -> object:
        return str(value) if isinstance(value, int) else value
