"""Durable storage for catalog items, categories, detail extensions and cursors."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Collection, Iterable, Iterator, Literal, Sequence, TypeVar

from sqlalchemy import delete, func, insert, select
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession

from ..database import Database
from ..db_models import (
    ITEM_MODELS,
    CatalogItemCategory,
    CatalogItemDetail,
    CategoryRecord,
    KeyValue,
)
from ..models import (
    ITEM_PAYLOADS,
    CatalogItem,
    Category,
    ContentType,
    ItemDetail,
    RemoteCategory,
    RemoteItemRecord,
)

logger = logging.getLogger(__name__)

SortOrder = Literal["name", "rating", "recent"]
SORT_ORDERS: tuple[str, ...] = ("name", "rating", "recent")

# Stay well below SQLite's bound-parameter limit for IN (...) clauses.
_IN_CLAUSE_CHUNK = 900
_CURSOR_PREFIX = "sync_cursor:"

T = TypeVar("T")


def _chunked(values: Sequence[T], size: int) -> Iterator[Sequence[T]]:
    for start in range(0, len(values), size):
        yield values[start : start + size]


class CatalogStore:
    """Catalog collections keyed by the provider's stable numeric ID."""

    def __init__(self, database: Database):
        self._database = database
        self.write_count = 0

    @property
    def available(self) -> bool:
        return self._database.available

    # ------------------------------------------------------------------
    # Items
    # ------------------------------------------------------------------

    async def list_ids(self, content_type: ContentType) -> set[int]:
        """Return every locally cached remote ID for ``content_type``."""

        if not self.available:
            return set()
        model = ITEM_MODELS[content_type]
        async with self._database.session_factory() as session:
            result = await session.execute(select(model.remote_id))
            return {row[0] for row in result.all()}

    async def apply_delta(
        self,
        content_type: ContentType,
        to_create: Sequence[RemoteItemRecord],
        to_delete: Collection[int],
        *,
        cached_at: datetime,
        chunk_size: int = 500,
        categories: Sequence[RemoteCategory] = (),
    ) -> None:
        """Insert and hard-delete items inside one all-or-nothing transaction.

        Rows whose IDs appear in neither set are left untouched, so their
        ``cached_at`` survives the sync. Missing ``categories`` are inserted
        in the same transaction.
        """

        if not self.available:
            logger.warning("Skipping %s delta write, local store unavailable", content_type)
            return
        model = ITEM_MODELS[content_type]
        delete_ids = sorted(to_delete)

        async with self._database.session() as session:
            if categories:
                await self._insert_missing_categories(
                    session, content_type, categories, cached_at
                )
            for chunk in _chunked(delete_ids, _IN_CLAUSE_CHUNK):
                await session.execute(delete(model).where(model.remote_id.in_(chunk)))
                await session.execute(
                    delete(CatalogItemCategory).where(
                        CatalogItemCategory.content_type == content_type,
                        CatalogItemCategory.item_id.in_(chunk),
                    )
                )
                await session.execute(
                    delete(CatalogItemDetail).where(
                        CatalogItemDetail.content_type == content_type,
                        CatalogItemDetail.item_id.in_(chunk),
                    )
                )

            for chunk in _chunked(list(to_create), chunk_size):
                rows = [{**record.to_row(), "cached_at": cached_at} for record in chunk]
                await session.execute(insert(model), rows)
                memberships = [
                    {
                        "content_type": content_type,
                        "item_id": record.remote_id,
                        "category_id": category_id,
                        "is_primary": category_id == record.primary_category_id,
                    }
                    for record in chunk
                    for category_id in record.category_ids()
                ]
                if memberships:
                    await session.execute(insert(CatalogItemCategory), memberships)
        self.write_count += 1
        logger.info(
            "Applied %s delta: %s created, %s deleted",
            content_type,
            len(to_create),
            len(delete_ids),
        )

    async def get_items(
        self,
        content_type: ContentType,
        *,
        category_id: str | None = None,
        item_ids: Collection[int] | None = None,
        search: str | None = None,
        sort: SortOrder = "name",
        limit: int | None = None,
        offset: int = 0,
    ) -> list[CatalogItem]:
        """Return cached items matching the given filters."""

        if not self.available:
            return []
        if item_ids is not None and not item_ids:
            return []

        model = ITEM_MODELS[content_type]
        stmt = select(model)
        if category_id is not None:
            members = select(CatalogItemCategory.item_id).where(
                CatalogItemCategory.content_type == content_type,
                CatalogItemCategory.category_id == category_id,
            )
            stmt = stmt.where(model.remote_id.in_(members))
        if item_ids is not None:
            stmt = stmt.where(model.remote_id.in_(list(item_ids)))
        if search:
            needle = search.strip().lower()
            if needle:
                stmt = stmt.where(model.name.icontains(needle, autoescape=True))
        stmt = stmt.order_by(*self._ordering(model, sort))
        if offset:
            stmt = stmt.offset(offset)
        if limit is not None:
            stmt = stmt.limit(limit)

        async with self._database.session_factory() as session:
            records = list((await session.execute(stmt)).scalars().all())
            secondary = await self._load_secondary_categories(
                session, content_type, [record.remote_id for record in records]
            )
        return [
            self._to_payload(content_type, record, secondary.get(record.remote_id, []))
            for record in records
        ]

    async def get_item(
        self, content_type: ContentType, remote_id: int
    ) -> CatalogItem | None:
        if not self.available:
            return None
        model = ITEM_MODELS[content_type]
        async with self._database.session_factory() as session:
            result = await session.execute(
                select(model).where(model.remote_id == remote_id)
            )
            record = result.scalar_one_or_none()
            if record is None:
                return None
            secondary = await self._load_secondary_categories(
                session, content_type, [remote_id]
            )
        return self._to_payload(content_type, record, secondary.get(remote_id, []))

    async def count(self, content_type: ContentType) -> int:
        if not self.available:
            return 0
        model = ITEM_MODELS[content_type]
        async with self._database.session_factory() as session:
            result = await session.execute(select(func.count()).select_from(model))
            return int(result.scalar_one())

    @staticmethod
    def _ordering(model: Any, sort: SortOrder) -> list[Any]:
        if sort == "rating" and hasattr(model, "rating_5based"):
            return [model.rating_5based.is_(None), model.rating_5based.desc(), model.name]
        if sort == "recent":
            return [model.added_at.is_(None), model.added_at.desc(), model.name]
        return [model.name, model.remote_id]

    @staticmethod
    async def _load_secondary_categories(
        session: AsyncSession, content_type: ContentType, item_ids: list[int]
    ) -> dict[int, list[str]]:
        secondary: dict[int, list[str]] = {}
        for chunk in _chunked(item_ids, _IN_CLAUSE_CHUNK):
            result = await session.execute(
                select(CatalogItemCategory.item_id, CatalogItemCategory.category_id)
                .where(
                    CatalogItemCategory.content_type == content_type,
                    CatalogItemCategory.is_primary.is_(False),
                    CatalogItemCategory.item_id.in_(chunk),
                )
                .order_by(CatalogItemCategory.id)
            )
            for item_id, category_id in result.all():
                secondary.setdefault(item_id, []).append(category_id)
        return secondary

    @staticmethod
    def _to_payload(
        content_type: ContentType, record: Any, secondary: list[str]
    ) -> CatalogItem:
        columns = {
            column.key: getattr(record, column.key) for column in record.__table__.columns
        }
        columns.pop("id", None)
        columns["secondary_category_ids"] = secondary
        return ITEM_PAYLOADS[content_type].model_validate(columns)

    # ------------------------------------------------------------------
    # Categories
    # ------------------------------------------------------------------

    async def get_categories(self, content_type: ContentType) -> list[Category]:
        if not self.available:
            return []
        async with self._database.session_factory() as session:
            result = await session.execute(
                select(CategoryRecord)
                .where(CategoryRecord.content_type == content_type)
                .order_by(CategoryRecord.id)
            )
            return [
                Category(
                    id=record.category_id,
                    name=record.name,
                    content_type=content_type,
                    parent_id=record.parent_id,
                )
                for record in result.scalars().all()
            ]

    async def has_categories(self, content_type: ContentType) -> bool:
        if not self.available:
            return False
        async with self._database.session_factory() as session:
            result = await session.execute(
                select(CategoryRecord.id)
                .where(CategoryRecord.content_type == content_type)
                .limit(1)
            )
            return result.scalar_one_or_none() is not None

    async def add_categories(
        self,
        content_type: ContentType,
        categories: Iterable[RemoteCategory],
        *,
        cached_at: datetime,
    ) -> int:
        """Insert categories not cached yet; existing rows are never touched."""

        if not self.available:
            return 0
        async with self._database.session() as session:
            return await self._insert_missing_categories(
                session, content_type, categories, cached_at
            )

    @staticmethod
    async def _insert_missing_categories(
        session: AsyncSession,
        content_type: ContentType,
        categories: Iterable[RemoteCategory],
        cached_at: datetime,
    ) -> int:
        unique: dict[str, RemoteCategory] = {}
        for category in categories:
            unique.setdefault(category.id, category)
        if not unique:
            return 0

        result = await session.execute(
            select(CategoryRecord.category_id).where(
                CategoryRecord.content_type == content_type
            )
        )
        existing = {row[0] for row in result.all()}
        rows = [
            {
                "content_type": content_type,
                "category_id": category.id,
                "name": category.name,
                "parent_id": category.parent_id,
                "cached_at": cached_at,
            }
            for category_id, category in unique.items()
            if category_id not in existing
        ]
        if rows:
            await session.execute(insert(CategoryRecord), rows)
        return len(rows)

    # ------------------------------------------------------------------
    # Detail extensions
    # ------------------------------------------------------------------

    async def get_detail(
        self, content_type: ContentType, item_id: int
    ) -> ItemDetail | None:
        if not self.available:
            return None
        async with self._database.session_factory() as session:
            result = await session.execute(
                select(CatalogItemDetail).where(
                    CatalogItemDetail.content_type == content_type,
                    CatalogItemDetail.item_id == item_id,
                )
            )
            record = result.scalar_one_or_none()
        if record is None:
            return None
        detail = ItemDetail.model_validate(record.payload)
        detail.fetched_at = record.fetched_at
        return detail

    async def save_detail(self, detail: ItemDetail, *, fetched_at: datetime) -> None:
        """Persist a detail extension, replacing any earlier copy."""

        if not self.available:
            return
        payload = detail.model_dump(mode="json", exclude={"fetched_at"})
        stmt = sqlite_insert(CatalogItemDetail).values(
            content_type=detail.content_type,
            item_id=detail.item_id,
            payload=payload,
            fetched_at=fetched_at,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=["content_type", "item_id"],
            set_={"payload": stmt.excluded.payload, "fetched_at": stmt.excluded.fetched_at},
        )
        async with self._database.session() as session:
            await session.execute(stmt)

    # ------------------------------------------------------------------
    # Sync cursors
    # ------------------------------------------------------------------

    async def get_sync_cursor(self, sync_type: str) -> datetime | None:
        if not self.available:
            return None
        async with self._database.session_factory() as session:
            record = await session.get(KeyValue, f"{_CURSOR_PREFIX}{sync_type}")
        if record is None or not record.value:
            return None
        try:
            return datetime.fromisoformat(str(record.value))
        except ValueError:
            logger.warning("Ignoring unreadable %s sync cursor: %r", sync_type, record.value)
            return None

    async def set_sync_cursor(self, sync_type: str, value: datetime) -> None:
        if not self.available:
            return
        key = f"{_CURSOR_PREFIX}{sync_type}"
        async with self._database.session() as session:
            record = await session.get(KeyValue, key)
            if record is None:
                session.add(KeyValue(key=key, value=value.isoformat()))
            else:
                record.value = value.isoformat()

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    async def reset(self) -> None:
        """Drop all cached catalog content and cursors (provider change)."""

        if not self.available:
            return
        async with self._database.session() as session:
            for model in ITEM_MODELS.values():
                await session.execute(delete(model))
            await session.execute(delete(CatalogItemCategory))
            await session.execute(delete(CatalogItemDetail))
            await session.execute(delete(CategoryRecord))
            await session.execute(
                delete(KeyValue).where(KeyValue.key.startswith(_CURSOR_PREFIX))
            )
        logger.info("Catalog cache reset")
