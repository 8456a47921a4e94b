"""
Ingestion parser actor: turns a source into a stream of ingest events.

The primary pass scans array items incrementally. If it yields no records the
spooled bytes are re-parsed as a wrapped document, then as NDJSON. Every run ends
with exactly one DoneEvent or ErrorEvent.
"""

import asyncio
import logging
import tempfile
from collections.abc import AsyncIterator
from contextlib import aclosing
from typing import IO, TYPE_CHECKING

import httpx

from vulnstream.core.config import get_settings
from vulnstream.schemas.ingest import DoneEvent, ErrorEvent, IngestEvent, LogEvent
from vulnstream.services.json_stream import RecordBatcher, stream_records
from vulnstream.services.payload_fallback import (
    find_record_prefix,
    iter_array_items,
    iter_ndjson_events,
    iter_record_events,
)
from vulnstream.services.sources import IngestionError, IngestSource, open_source

if TYPE_CHECKING:
    from vulnstream.core.config import Settings

logger = logging.getLogger(__name__)


async def _fallback_events(
    spool: IO[bytes],
    batcher: RecordBatcher,
    log_every: int,
) -> AsyncIterator[IngestEvent]:
    try:
        prefix = await asyncio.to_thread(find_record_prefix, spool)
    except ValueError as e:
        yield LogEvent(message=f"Parsing as object/array failed; will try NDJSON. {e}")
    else:
        if prefix is not None:
            for event in iter_record_events(iter_array_items(spool, prefix), batcher, log_every):
                yield event
            return
        yield LogEvent(message="No record array found in JSON payload; will try NDJSON.")
    for event in iter_ndjson_events(spool, batcher, log_every):
        yield event


async def iter_ingest_events(
    source: IngestSource,
    settings: "Settings | None" = None,
    *,
    client: httpx.AsyncClient | None = None,
) -> AsyncIterator[IngestEvent]:
    """
    Yield progress, items, and log events for source, then a DoneEvent.

    Raises IngestionError on transport failures; per-item failures are skipped.
    """
    settings = settings or get_settings()
    batcher = RecordBatcher(settings.INGEST_BATCH_SIZE)
    with tempfile.SpooledTemporaryFile(max_size=settings.INGEST_SPOOL_MAX_BYTES) as spool:
        async with open_source(
            source,
            client=client,
            chunk_size=settings.INGEST_READ_CHUNK_BYTES,
            timeout_sec=settings.INGEST_REQUEST_TIMEOUT_SEC,
        ) as opened:
            yield LogEvent(
                message=(
                    f"Fetch started. source={opened.description} status={opened.status_code} "
                    f"length={opened.content_length}"
                )
            )
            async for event in stream_records(
                opened.chunks,
                batcher,
                trim_chars=settings.INGEST_BUFFER_TRIM_CHARS,
                total_bytes=opened.content_length,
                spool=spool,
            ):
                yield event
        yield LogEvent(message=f"Streaming read complete. bytes={spool.tell()} records={batcher.emitted}")
        if batcher.emitted == 0:
            async for event in _fallback_events(spool, batcher, settings.FALLBACK_LOG_EVERY):
                yield event
    yield DoneEvent(emitted=batcher.emitted)


async def run_ingestion(
    source: IngestSource,
    queue: "asyncio.Queue[IngestEvent]",
    settings: "Settings | None" = None,
    *,
    client: httpx.AsyncClient | None = None,
) -> None:
    """
    Parser actor: put every event for source on queue, ending with done or error.

    Cancellation propagates; any other failure becomes an ErrorEvent.
    """
    try:
        async with aclosing(iter_ingest_events(source, settings, client=client)) as events:
            async for event in events:
                await queue.put(event)
    except IngestionError as e:
        logger.warning("Ingestion failed: %s", e.message)
        await queue.put(ErrorEvent(error=e.message))
    except Exception as e:
        logger.exception("Ingestion failed unexpectedly: %s", e)
        await queue.put(ErrorEvent(error=str(e) or type(e).__name__))
