"""SQLAlchemy ORM models backing the persistent state."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import (
    Boolean,
    DateTime,
    Float,
    Index,
    Integer,
    JSON,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from .database import Base


class CatalogItemColumns:
    """Columns shared by every catalog item table."""

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    remote_id: Mapped[int] = mapped_column(Integer, unique=True, index=True)
    name: Mapped[str] = mapped_column(String(512))
    icon_url: Mapped[str | None] = mapped_column(String(1024), nullable=True)
    primary_category_id: Mapped[str | None] = mapped_column(
        String(64), nullable=True, index=True
    )
    added_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    cached_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)


class ChannelRecord(CatalogItemColumns, Base):
    """Live channel as listed by the provider."""

    __tablename__ = "channels"

    stream_kind: Mapped[str | None] = mapped_column(String(32), nullable=True)
    epg_channel_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    has_archive: Mapped[bool] = mapped_column(Boolean, default=False)
    archive_duration_hours: Mapped[int | None] = mapped_column(Integer, nullable=True)
    direct_source: Mapped[str | None] = mapped_column(String(1024), nullable=True)


class MovieRecord(CatalogItemColumns, Base):
    """Video-on-demand entry as listed by the provider."""

    __tablename__ = "movies"

    rating: Mapped[str | None] = mapped_column(String(32), nullable=True)
    rating_5based: Mapped[float | None] = mapped_column(Float, nullable=True)
    container_extension: Mapped[str | None] = mapped_column(String(16), nullable=True)
    direct_source: Mapped[str | None] = mapped_column(String(1024), nullable=True)


class SeriesRecord(CatalogItemColumns, Base):
    """Series summary row; seasons and episodes live in the detail extension."""

    __tablename__ = "series"

    plot: Mapped[str | None] = mapped_column(Text, nullable=True)
    cast: Mapped[str | None] = mapped_column(Text, nullable=True)
    director: Mapped[str | None] = mapped_column(String(512), nullable=True)
    genre: Mapped[str | None] = mapped_column(String(255), nullable=True)
    release_date: Mapped[str | None] = mapped_column(String(32), nullable=True)
    rating: Mapped[str | None] = mapped_column(String(32), nullable=True)
    rating_5based: Mapped[float | None] = mapped_column(Float, nullable=True)
    backdrop_paths: Mapped[list[str] | None] = mapped_column(JSON, nullable=True)
    trailer_ref: Mapped[str | None] = mapped_column(String(255), nullable=True)
    episode_run_time: Mapped[str | None] = mapped_column(String(32), nullable=True)
    last_modified: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)


ITEM_MODELS: dict[str, type[CatalogItemColumns]] = {
    "channels": ChannelRecord,
    "movies": MovieRecord,
    "series": SeriesRecord,
}


class CategoryRecord(Base):
    """Provider category, cached once per content type."""

    __tablename__ = "categories"
    __table_args__ = (
        UniqueConstraint("content_type", "category_id", name="uq_category_type"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    content_type: Mapped[str] = mapped_column(String(16))
    category_id: Mapped[str] = mapped_column(String(64))
    name: Mapped[str] = mapped_column(String(255))
    parent_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    cached_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)


class CatalogItemCategory(Base):
    """Membership of a catalog item in a category (primary or secondary)."""

    __tablename__ = "catalog_item_categories"
    __table_args__ = (
        UniqueConstraint(
            "content_type", "item_id", "category_id", name="uq_item_category"
        ),
        Index("ix_item_category_lookup", "content_type", "category_id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    content_type: Mapped[str] = mapped_column(String(16))
    item_id: Mapped[int] = mapped_column(Integer)
    category_id: Mapped[str] = mapped_column(String(64))
    is_primary: Mapped[bool] = mapped_column(Boolean, default=False)


class CatalogItemDetail(Base):
    """Lazily fetched extended fields for a catalog item."""

    __tablename__ = "catalog_item_details"
    __table_args__ = (
        UniqueConstraint("content_type", "item_id", name="uq_item_detail"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    content_type: Mapped[str] = mapped_column(String(16))
    item_id: Mapped[int] = mapped_column(Integer)
    payload: Mapped[dict[str, Any]] = mapped_column(JSON)
    fetched_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)


class Favorite(Base):
    __tablename__ = "favorites"
    __table_args__ = (
        UniqueConstraint("item_type", "item_id", name="uq_favorite_item"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    item_id: Mapped[str] = mapped_column(String(64), index=True)
    item_type: Mapped[str] = mapped_column(String(16))
    title: Mapped[str] = mapped_column(String(512), default="")
    poster_ref: Mapped[str | None] = mapped_column(String(1024), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow
    )


class WatchHistoryEntry(Base):
    """Append-only playback log."""

    __tablename__ = "watch_history"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    item_id: Mapped[str] = mapped_column(String(64), index=True)
    item_type: Mapped[str] = mapped_column(String(16))
    title: Mapped[str] = mapped_column(String(512), default="")
    poster_ref: Mapped[str | None] = mapped_column(String(1024), nullable=True)
    duration: Mapped[float | None] = mapped_column(Float, nullable=True)
    progress_percent: Mapped[float | None] = mapped_column(Float, nullable=True)
    watched_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, index=True
    )


class ContinueWatchingEntry(Base):
    __tablename__ = "continue_watching"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    item_id: Mapped[str] = mapped_column(String(64), unique=True, index=True)
    item_type: Mapped[str] = mapped_column(String(16))
    title: Mapped[str] = mapped_column(String(512), default="")
    poster_ref: Mapped[str | None] = mapped_column(String(1024), nullable=True)
    progress_percent: Mapped[float] = mapped_column(Float, default=0)
    current_time_seconds: Mapped[float] = mapped_column(Float, default=0)
    duration_seconds: Mapped[float] = mapped_column(Float, default=0)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow
    )


class EpisodeProgressEntry(Base):
    __tablename__ = "episode_progress"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    episode_id: Mapped[str] = mapped_column(String(64), unique=True, index=True)
    series_id: Mapped[str] = mapped_column(String(64), index=True)
    season_number: Mapped[int] = mapped_column(Integer, default=0)
    episode_number: Mapped[int] = mapped_column(Integer, default=0)
    title: Mapped[str | None] = mapped_column(String(512), nullable=True)
    progress_percent: Mapped[float] = mapped_column(Float, default=0)
    current_time_seconds: Mapped[float] = mapped_column(Float, default=0)
    duration_seconds: Mapped[float] = mapped_column(Float, default=0)
    watched: Mapped[bool] = mapped_column(Boolean, default=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow
    )


class KeyValue(Base):
    """Key-value area holding sync cursors."""

    __tablename__ = "key_values"

    key: Mapped[str] = mapped_column(String(128), primary_key=True)
    value: Mapped[Any] = mapped_column(JSON, nullable=True)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow
    )
