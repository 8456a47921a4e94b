"""
Ingestion pipeline: runs the parser actor, consumes its channel, and keeps the
coordinator's backend and read-model in step with the incoming batches.
"""

import asyncio
import logging
from collections.abc import Callable
from typing import TYPE_CHECKING

import httpx

from vulnstream.core.config import get_settings
from vulnstream.repositories.base import RepositoryError, VulnerabilityRepository
from vulnstream.repositories.embedded import EmbeddedRepository
from vulnstream.repositories.memory import MemoryRepository
from vulnstream.repositories.remote import RemoteRepository
from vulnstream.schemas.ingest import (
    DoneEvent,
    ErrorEvent,
    IngestEvent,
    ItemsEvent,
    LogEvent,
    ProgressEvent,
)
from vulnstream.schemas.view import DataView
from vulnstream.services.coordinator import QueryCoordinator
from vulnstream.services.ingestion import run_ingestion
from vulnstream.services.sources import IngestSource

if TYPE_CHECKING:
    from vulnstream.core.config import Settings

logger = logging.getLogger(__name__)

# Channel capacity; the parser suspends on put once the consumer falls this far behind.
CHANNEL_MAX_EVENTS = 64


class IngestionPipeline:
    """
    One ingestion run at a time. Starting a run cancels the previous parser and
    consumer and abandons their channel, so stale events are never applied.

    Batches go to the coordinator's current backend. Once cumulative bytes reach
    EMBEDDED_SWITCH_BYTES while the memory backend is active, its records are
    copied to an embedded store and the coordinator is switched over. The single
    consumer applies batches in order, so none is lost or applied twice.
    """

    def __init__(
        self,
        coordinator: QueryCoordinator,
        settings: "Settings | None" = None,
        *,
        client: httpx.AsyncClient | None = None,
        embedded_factory: Callable[[], EmbeddedRepository] | None = None,
    ) -> None:
        self._coordinator = coordinator
        self._settings = settings or get_settings()
        self._client = client
        self._embedded_factory = embedded_factory or (
            lambda: EmbeddedRepository(self._settings.EMBEDDED_DATABASE_URL)
        )
        self._actor: asyncio.Task[None] | None = None
        self._consumer: asyncio.Task[DataView] | None = None
        self._owned: list[VulnerabilityRepository] = []
        self._migrated = False

    @property
    def running(self) -> bool:
        return self._consumer is not None and not self._consumer.done()

    async def load_source(self, source: IngestSource) -> None:
        """Start ingesting source into a fresh memory backend. Returns once the run is started."""
        await self.cancel()
        await self._replace_backend(MemoryRepository())
        self._migrated = False
        queue: asyncio.Queue[IngestEvent] = asyncio.Queue(maxsize=CHANNEL_MAX_EVENTS)
        self._coordinator.begin_ingestion()
        self._actor = asyncio.create_task(
            run_ingestion(source, queue, self._settings, client=self._client)
        )
        self._consumer = asyncio.create_task(self._consume(queue))

    async def connect_remote(self, base_url: str | None = None) -> DataView:
        """Serve queries from a remote paged API instead of a local dataset."""
        await self.cancel()
        if self._client is not None:
            remote = RemoteRepository(
                base_url or self._settings.REMOTE_API_BASE,
                client=self._client,
                timeout_sec=self._settings.REMOTE_REQUEST_TIMEOUT_SEC,
                page_limit=self._settings.REMOTE_PAGE_LIMIT,
            )
        else:
            remote = RemoteRepository.from_settings(self._settings, base_url)
        await self._replace_backend(remote)
        self._coordinator.begin_ingestion()
        return await self._coordinator.finish_ingestion()

    async def wait(self) -> DataView:
        """Wait for the current run to finish and return the final read-model."""
        if self._consumer is None:
            return self._coordinator.view
        return await self._consumer

    async def cancel(self) -> None:
        """Stop the current run (parser and consumer)."""
        tasks = [t for t in (self._actor, self._consumer) if t is not None and not t.done()]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._actor = None
        self._consumer = None

    async def aclose(self) -> None:
        await self.cancel()
        for backend in self._owned:
            await _close_backend(backend)
        self._owned.clear()

    async def _replace_backend(self, backend: VulnerabilityRepository) -> None:
        previous = self._coordinator.backend
        self._coordinator.swap_backend(backend)
        if previous in self._owned:
            self._owned.remove(previous)
            await _close_backend(previous)
        self._owned.append(backend)

    async def _consume(self, queue: "asyncio.Queue[IngestEvent]") -> DataView:
        coordinator = self._coordinator
        while True:
            event = await queue.get()
            if isinstance(event, ProgressEvent):
                coordinator.update_progress(event.bytes_read, event.total_bytes)
                await self._maybe_migrate(event.bytes_read)
            elif isinstance(event, ItemsEvent):
                try:
                    await coordinator.backend.add_many(event.items)
                except RepositoryError as e:
                    logger.error("Failed to store batch: %s", e.message)
                    if self._actor is not None:
                        self._actor.cancel()
                    return await coordinator.fail_ingestion(e.message)
                coordinator.note_ingested(len(event.items))
                await coordinator.request_refresh()
            elif isinstance(event, LogEvent):
                logger.info("%s", event.message)
            elif isinstance(event, DoneEvent):
                logger.info("Ingestion complete", extra={"emitted": event.emitted})
                return await coordinator.finish_ingestion()
            elif isinstance(event, ErrorEvent):
                return await coordinator.fail_ingestion(event.error)

    async def _maybe_migrate(self, bytes_read: int) -> None:
        if self._migrated or bytes_read < self._settings.EMBEDDED_SWITCH_BYTES:
            return
        current = self._coordinator.backend
        if not isinstance(current, MemoryRepository):
            return
        self._migrated = True
        records = list(current)
        batch_size = self._settings.INGEST_BATCH_SIZE
        embedded: EmbeddedRepository | None = None
        try:
            embedded = self._embedded_factory()
            await embedded.clear()
            for start in range(0, len(records), batch_size):
                await embedded.add_many(records[start : start + batch_size])
        except RepositoryError as e:
            logger.warning("Staying on memory backend; embedded store unavailable: %s", e.message)
            if embedded is not None:
                await embedded.aclose()
            return
        await self._replace_backend(embedded)
        logger.info(
            "Switched to embedded store",
            extra={"bytes_read": bytes_read, "records": len(records)},
        )


async def _close_backend(backend: VulnerabilityRepository) -> None:
    close = getattr(backend, "aclose", None)
    if close is not None:
        await close()
