"""Time-gated delta synchronisation of the catalog cache."""

from __future__ import annotations

import asyncio
import logging
from contextlib import suppress
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Callable, Mapping

from ..errors import SyncInProgress, UnsupportedSyncType
from ..models import CONTENT_TYPES, RemoteCategory, RemoteItemRecord
from ..utils import hours_between
from .catalog_store import CatalogStore
from .xtream import CatalogGateway

logger = logging.getLogger(__name__)

DEFAULT_THRESHOLDS: dict[str, float] = {
    "movies": 24,
    "series": 24,
    "channels": 12,
    "epg": 1,
}

# Order used by the "sync everything" entry point.
SYNC_ALL_ORDER: tuple[str, ...] = ("channels", "movies", "series")


class SyncState(str, Enum):
    IDLE = "idle"
    RUNNING = "running"


class SyncOutcome(str, Enum):
    """How a single sync invocation ended."""

    APPLIED = "applied"
    UNCHANGED = "unchanged"
    SKIPPED_RUNNING = "skipped_running"
    SKIPPED_FRESH = "skipped_fresh"
    STORAGE_UNAVAILABLE = "storage_unavailable"
    UNSUPPORTED = "unsupported"
    FAILED = "failed"


@dataclass(slots=True)
class SyncEvent:
    """Progress notification published while a sync runs."""

    sync_type: str
    stage: str
    message: str
    error: BaseException | None = None
    created: int = 0
    deleted: int = 0

    @property
    def is_error(self) -> bool:
        return self.error is not None


@dataclass(slots=True)
class SyncResult:
    sync_type: str
    outcome: SyncOutcome
    created: int = 0
    deleted: int = 0
    error: str | None = None

    def to_payload(self) -> dict[str, Any]:
        return {
            "type": self.sync_type,
            "outcome": self.outcome.value,
            "created": self.created,
            "deleted": self.deleted,
            "error": self.error,
        }


@dataclass
class SyncStatus:
    """Expose runtime information about a sync type."""

    sync_type: str
    state: SyncState
    last_synced_at: datetime | None
    threshold_hours: float
    next_due_at: datetime | None = field(default=None)

    def to_payload(self) -> dict[str, Any]:
        return {
            "type": self.sync_type,
            "state": self.state.value,
            "lastSyncedAt": (
                self.last_synced_at.isoformat() if self.last_synced_at else None
            ),
            "thresholdHours": self.threshold_hours,
            "nextDueAt": self.next_due_at.isoformat() if self.next_due_at else None,
        }


class SyncStateRegistry:
    """In-memory ``idle``/``running`` flag per sync type.

    Transitions go through :meth:`compare_and_set`, which contains no await
    point, so on a single event loop the check and the write cannot
    interleave with another task.
    """

    def __init__(self) -> None:
        self._states: dict[str, SyncState] = {}

    def get(self, sync_type: str) -> SyncState:
        return self._states.get(sync_type, SyncState.IDLE)

    def compare_and_set(
        self, sync_type: str, expected: SyncState, new: SyncState
    ) -> bool:
        if self.get(sync_type) is not expected:
            return False
        self._states[sync_type] = new
        return True

    def any_running(self) -> bool:
        return any(state is SyncState.RUNNING for state in self._states.values())


ProgressCallback = Callable[[SyncEvent], Any]


class ProgressChannel:
    """Fan-out of sync events to any number of subscribers."""

    def __init__(self) -> None:
        self._subscribers: list[ProgressCallback] = []

    def subscribe(self, callback: ProgressCallback) -> Callable[[], None]:
        """Register ``callback`` and return a function that removes it."""

        self._subscribers.append(callback)

        def _unsubscribe() -> None:
            with suppress(ValueError):
                self._subscribers.remove(callback)

        return _unsubscribe

    def publish(self, event: SyncEvent) -> None:
        for callback in list(self._subscribers):
            try:
                callback(event)
            except Exception:  # pragma: no cover - subscriber bug
                logger.exception("Sync progress subscriber failed for %s", event.sync_type)

    def __len__(self) -> int:
        return len(self._subscribers)


class SyncCoordinator:
    """Keeps the catalog cache aligned with full provider listings.

    Each type runs at most once at a time, and only when its cursor is older
    than the configured threshold. Deltas are computed on IDs alone: an item
    edited remotely under an unchanged ID keeps its cached fields.
    """

    def __init__(
        self,
        store: CatalogStore,
        gateway: CatalogGateway,
        *,
        thresholds: Mapping[str, float] | None = None,
        chunk_size: int = 500,
        clock: Callable[[], datetime] = datetime.utcnow,
        states: SyncStateRegistry | None = None,
        progress: ProgressChannel | None = None,
    ):
        self._store = store
        self._gateway = gateway
        self._thresholds = dict(DEFAULT_THRESHOLDS)
        if thresholds:
            self._thresholds.update(thresholds)
        self._chunk_size = chunk_size
        self._clock = clock
        self._states = states or SyncStateRegistry()
        self.progress = progress or ProgressChannel()
        self._jobs: set[asyncio.Task[SyncResult]] = set()

    # ------------------------------------------------------------------
    # Public entry points
    # ------------------------------------------------------------------

    def state(self, sync_type: str) -> SyncState:
        return self._states.get(sync_type)

    def is_running(self, sync_type: str) -> bool:
        return self._states.get(sync_type) is SyncState.RUNNING

    def threshold(self, sync_type: str) -> float:
        return self._thresholds[sync_type]

    async def check_and_run(
        self, sync_type: str, *, on_progress: ProgressCallback | None = None
    ) -> SyncResult:
        """Sync ``sync_type`` if it is idle and due; never raises gateway errors."""

        if sync_type not in CONTENT_TYPES:
            logger.debug("No synchronisation implemented for %s", sync_type)
            return SyncResult(sync_type, SyncOutcome.UNSUPPORTED)
        if not self._states.compare_and_set(sync_type, SyncState.IDLE, SyncState.RUNNING):
            logger.debug("%s sync already running, skipping", sync_type)
            return SyncResult(sync_type, SyncOutcome.SKIPPED_RUNNING)

        try:
            if not self._store.available:
                return SyncResult(sync_type, SyncOutcome.STORAGE_UNAVAILABLE)
            cursor = await self._store.get_sync_cursor(sync_type)
            if not self._is_due(sync_type, cursor):
                return SyncResult(sync_type, SyncOutcome.SKIPPED_FRESH)
            return await self._execute(sync_type, on_progress)
        except Exception as exc:
            logger.warning("Background %s sync failed: %s", sync_type, exc)
            return SyncResult(sync_type, SyncOutcome.FAILED, error=str(exc))
        finally:
            self._states.compare_and_set(sync_type, SyncState.RUNNING, SyncState.IDLE)

    async def sync_now(
        self,
        sync_type: str,
        *,
        force: bool = True,
        on_progress: ProgressCallback | None = None,
    ) -> SyncResult:
        """Manually triggered sync; failures propagate to the caller."""

        if sync_type not in CONTENT_TYPES:
            raise UnsupportedSyncType(sync_type)
        if not self._states.compare_and_set(sync_type, SyncState.IDLE, SyncState.RUNNING):
            raise SyncInProgress(sync_type)

        try:
            if not self._store.available:
                return SyncResult(sync_type, SyncOutcome.STORAGE_UNAVAILABLE)
            if not force:
                cursor = await self._store.get_sync_cursor(sync_type)
                if not self._is_due(sync_type, cursor):
                    return SyncResult(sync_type, SyncOutcome.SKIPPED_FRESH)
            return await self._execute(sync_type, on_progress)
        finally:
            self._states.compare_and_set(sync_type, SyncState.RUNNING, SyncState.IDLE)

    async def sync_all(
        self, *, on_progress: ProgressCallback | None = None
    ) -> list[SyncResult]:
        """Sync channels, movies and series one after another."""

        if self._states.any_running():
            raise SyncInProgress("catalog")
        results: list[SyncResult] = []
        for sync_type in SYNC_ALL_ORDER:
            results.append(await self.sync_now(sync_type, on_progress=on_progress))
        logger.info("Full catalog sync finished")
        return results

    def schedule(self, sync_type: str) -> asyncio.Task[SyncResult] | None:
        """Start :meth:`check_and_run` in the background without awaiting it."""

        if self.is_running(sync_type):
            return None
        task = asyncio.create_task(self.check_and_run(sync_type))
        self._jobs.add(task)
        task.add_done_callback(self._jobs.discard)
        return task

    async def wait_for_background(self) -> None:
        """Wait until every scheduled background sync has finished."""

        while self._jobs:
            await asyncio.gather(*list(self._jobs), return_exceptions=True)

    async def stop(self) -> None:
        """Cancel background syncs that are still running."""

        jobs = list(self._jobs)
        for job in jobs:
            job.cancel()
        for job in jobs:
            with suppress(asyncio.CancelledError):
                await job
        self._jobs.clear()

    async def status(self) -> list[SyncStatus]:
        statuses: list[SyncStatus] = []
        for sync_type, threshold in self._thresholds.items():
            cursor = await self._store.get_sync_cursor(sync_type)
            statuses.append(
                SyncStatus(
                    sync_type=sync_type,
                    state=self._states.get(sync_type),
                    last_synced_at=cursor,
                    threshold_hours=threshold,
                    next_due_at=cursor + timedelta(hours=threshold) if cursor else None,
                )
            )
        return statuses

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _is_due(self, sync_type: str, cursor: datetime | None) -> bool:
        if cursor is None:
            return True
        elapsed = hours_between(cursor, self._clock())
        return elapsed >= self._thresholds[sync_type]

    def _publish(
        self, event: SyncEvent, on_progress: ProgressCallback | None
    ) -> None:
        self.progress.publish(event)
        if on_progress is not None:
            try:
                on_progress(event)
            except Exception:  # pragma: no cover - observer bug
                logger.exception("Sync progress observer failed for %s", event.sync_type)

    async def _execute(
        self, sync_type: str, on_progress: ProgressCallback | None
    ) -> SyncResult:
        """Fetch, diff and apply one type. The caller owns the running flag."""

        try:
            return await self._fetch_and_apply(sync_type, on_progress)
        except Exception as exc:
            self._publish(
                SyncEvent(sync_type, "failed", f"{sync_type} sync failed: {exc}", error=exc),
                on_progress,
            )
            raise

    async def _fetch_and_apply(
        self, sync_type: str, on_progress: ProgressCallback | None
    ) -> SyncResult:
        logger.info("Synchronising %s from provider", sync_type)

        categories: list[RemoteCategory] = []
        if not await self._store.has_categories(sync_type):
            self._publish(
                SyncEvent(sync_type, "categories", f"Fetching {sync_type} categories"),
                on_progress,
            )
            categories = await self._gateway.fetch_categories(sync_type)

        self._publish(
            SyncEvent(sync_type, "fetching", f"Fetching {sync_type} listing"), on_progress
        )
        remote: dict[int, RemoteItemRecord] = {}
        for record in await self._gateway.fetch_items(sync_type):
            remote.setdefault(record.remote_id, record)

        local_ids = await self._store.list_ids(sync_type)
        create_ids = sorted(remote.keys() - local_ids)
        delete_ids = local_ids - remote.keys()
        now = self._clock()

        if create_ids or delete_ids:
            await self._store.apply_delta(
                sync_type,
                [remote[remote_id] for remote_id in create_ids],
                delete_ids,
                cached_at=now,
                chunk_size=self._chunk_size,
                categories=categories,
            )
            outcome = SyncOutcome.APPLIED
        else:
            if categories:
                await self._store.add_categories(sync_type, categories, cached_at=now)
            outcome = SyncOutcome.UNCHANGED
            logger.info("%s already up to date", sync_type)

        await self._store.set_sync_cursor(sync_type, now)
        self._publish(
            SyncEvent(
                sync_type,
                "completed",
                f"{sync_type} sync completed",
                created=len(create_ids),
                deleted=len(delete_ids),
            ),
            on_progress,
        )
        return SyncResult(
            sync_type, outcome, created=len(create_ids), deleted=len(delete_ids)
        )
