"""
Query coordinator: owns the active backend reference and the DataView read-model.

User-driven changes refresh immediately. Ingestion-driven refreshes are throttled:
at most one refresh runs at a time and at most one trailing refresh is pending.
"""

import asyncio
import logging
import time
from collections.abc import Callable
from typing import Any

from vulnstream.core.config import get_settings
from vulnstream.repositories.base import RepositoryError, VulnerabilityRepository
from vulnstream.schemas.view import DataView
from vulnstream.schemas.vulns import Filters, SortSpec

logger = logging.getLogger(__name__)

# Floor for the trailing-refresh delay so a burst right after a slow refresh still coalesces.
TRAILING_MIN_DELAY_SEC = 0.05

ViewListener = Callable[[DataView], None]


class QueryCoordinator:
    def __init__(
        self,
        backend: VulnerabilityRepository,
        *,
        throttle_sec: float | None = None,
        page_size: int | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        settings = get_settings()
        self._backend = backend
        self._throttle_sec = settings.REFRESH_THROTTLE_SEC if throttle_sec is None else throttle_sec
        self._clock = clock
        self._view = DataView(page_size=page_size or settings.DEFAULT_PAGE_SIZE)
        self._lock = asyncio.Lock()
        self._last_refresh_at: float | None = None
        self._trailing: asyncio.Task[None] | None = None
        self._trailing_running: asyncio.Task[Any] | None = None
        self._tasks: set[asyncio.Task[Any]] = set()
        self._listeners: list[ViewListener] = []
        self.refresh_count = 0

    @property
    def view(self) -> DataView:
        return self._view

    @property
    def backend(self) -> VulnerabilityRepository:
        return self._backend

    @property
    def refresh_pending(self) -> bool:
        return self._trailing is not None

    def subscribe(self, listener: ViewListener) -> Callable[[], None]:
        """Call listener with every new DataView; returns an unsubscribe function."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _publish(self, **changes: Any) -> None:
        self._view = self._view.model_copy(update=changes)
        for listener in list(self._listeners):
            listener(self._view)

    def swap_backend(self, backend: VulnerabilityRepository) -> None:
        """Route all subsequent reads through backend."""
        self._backend = backend

    async def refresh(self) -> DataView:
        """
        Recompute total, page results, and summary from the current backend.

        A RepositoryError sets error and keeps the previous data visible.
        """
        async with self._lock:
            self._last_refresh_at = self._clock()
            self.refresh_count += 1
            view = self._view
            backend = self._backend
            try:
                total = await backend.count(view.filters)
                results = await backend.query(
                    view.filters,
                    view.page * view.page_size,
                    view.page_size,
                    view.sort,
                )
                summary = await backend.summarize()
            except RepositoryError as e:
                logger.warning("Refresh failed: %s", e.message)
                self._publish(error=e.message)
            else:
                self._publish(total=total, results=results, summary=summary, error=None)
            return self._view

    async def request_refresh(self) -> None:
        """
        Throttled refresh for ingestion progress.

        Runs now when no refresh is in flight and the throttle interval has elapsed;
        otherwise makes sure exactly one trailing refresh is scheduled.
        """
        now = self._clock()
        since = None if self._last_refresh_at is None else now - self._last_refresh_at
        if (since is None or since >= self._throttle_sec) and not self._lock.locked():
            await self.refresh()
            return
        if self._trailing is not None:
            return
        wait = TRAILING_MIN_DELAY_SEC if since is None else self._throttle_sec - since
        self._trailing = self._spawn(self._run_trailing(max(TRAILING_MIN_DELAY_SEC, wait)))

    async def _run_trailing(self, delay: float) -> None:
        await asyncio.sleep(delay)
        self._trailing = None
        current = asyncio.current_task()
        self._trailing_running = current
        try:
            await self.refresh()
        finally:
            if self._trailing_running is current:
                self._trailing_running = None

    def _spawn(self, coro: Any) -> "asyncio.Task[Any]":
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._task_done)
        return task

    def _task_done(self, task: "asyncio.Task[Any]") -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Background refresh failed", exc_info=exc)

    def _cancel_trailing(self) -> None:
        if self._trailing is not None:
            self._trailing.cancel()
            self._trailing = None

    def _cancel_stale_refresh(self) -> None:
        """Drop a trailing refresh whose query is already running against the previous run's data."""
        if self._trailing_running is not None:
            self._trailing_running.cancel()
            self._trailing_running = None

    def begin_ingestion(self) -> None:
        """Reset ingestion progress and data for a new run."""
        self._cancel_trailing()
        self._cancel_stale_refresh()
        self._publish(
            loading=True,
            error=None,
            progress_bytes=0,
            total_bytes=None,
            ingested_count=0,
            total=0,
            results=[],
            summary=None,
        )

    def update_progress(self, bytes_read: int, total_bytes: int | None = None) -> None:
        self._publish(progress_bytes=bytes_read, total_bytes=total_bytes)

    def note_ingested(self, count: int) -> None:
        self._publish(ingested_count=self._view.ingested_count + count)

    async def finish_ingestion(self) -> DataView:
        """Drop any pending trailing refresh and run one final refresh."""
        self._cancel_trailing()
        self._publish(loading=False)
        return await self.refresh()

    async def fail_ingestion(self, message: str) -> DataView:
        """Show whatever arrived before the failure, then surface the error."""
        self._cancel_trailing()
        await self.refresh()
        self._publish(loading=False, error=message)
        return self._view

    async def set_filters(self, filters: Filters) -> DataView:
        self._publish(filters=filters, page=0)
        return await self.refresh()

    async def set_sort(self, sort: SortSpec | None) -> DataView:
        self._publish(sort=sort)
        return await self.refresh()

    async def set_page(self, page: int) -> DataView:
        self._publish(page=max(0, page))
        return await self.refresh()

    async def set_page_size(self, page_size: int) -> DataView:
        if page_size < 1:
            raise ValueError("page_size must be at least 1")
        self._publish(page_size=page_size, page=0)
        return await self.refresh()

    async def aclose(self) -> None:
        """Cancel the pending trailing refresh and any background refresh still running."""
        self._cancel_trailing()
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._listeners.clear()
