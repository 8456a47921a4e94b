"""
Fallback resolvers for documents the array scanner cannot split: wrapped arrays,
single bare objects, and newline-delimited JSON. Both re-read the spooled raw bytes
as a stream, so a disk-backed spool is never loaded whole.
"""

import codecs
import io
import json
import logging
from collections.abc import Iterable, Iterator
from typing import IO, Any

import ijson

from vulnstream.schemas.ingest import IngestEvent, ItemsEvent, LogEvent
from vulnstream.services.json_stream import RecordBatcher
from vulnstream.services.normalize import normalize_vulnerability

logger = logging.getLogger(__name__)

# Keys (case-insensitive) whose array value holds the records in a wrapper document.
CONTAINER_KEYS = ("vulnerabilities", "items", "data", "results")

# ijson prefix that yields the top-level value itself.
WHOLE_DOCUMENT = ""


class SkipSampler:
    """Counts skipped entries and decides which ones are worth a log line (first, then every Nth)."""

    def __init__(self, every: int) -> None:
        self.every = max(1, every)
        self.count = 0

    def skip(self) -> bool:
        self.count += 1
        return self.count == 1 or self.count % self.every == 0


def _rewind(spool: IO[bytes]) -> None:
    spool.seek(0)
    if spool.read(len(codecs.BOM_UTF8)) != codecs.BOM_UTF8:
        spool.seek(0)


def find_record_prefix(spool: IO[bytes]) -> str | None:
    """
    Locate the records in the spooled payload and return the ijson prefix that yields them.

    A top-level array gives "item". Otherwise the first array under a container key,
    in document order, gives "<path>.item". The first array found decides: an empty
    one means there is nothing to read. A top-level object with no container array
    that normalizes on its own gives WHOLE_DOCUMENT.

    The payload is streamed to the end to confirm it is a single JSON value.
    Raises ValueError when it is not (for example NDJSON).
    """
    _rewind(spool)
    found: str | None = None
    decided = False
    pending: str | None = None
    top_level: str | None = None
    last_key: str | None = None
    try:
        for prefix, event, value in ijson.parse(spool, use_float=True):
            if top_level is None:
                top_level = event
            if pending is not None:
                found = None if event == "end_array" else pending
                pending = None
                decided = True
            elif not decided and event == "start_array":
                if prefix == "":
                    pending = "item"
                elif last_key is not None and last_key.lower() in CONTAINER_KEYS:
                    pending = f"{prefix}.item"
            last_key = value if event == "map_key" else None
    except (ijson.JSONError, UnicodeDecodeError) as e:
        raise ValueError(f"Invalid JSON: {e}") from e
    if decided or top_level != "start_map":
        return found
    _rewind(spool)
    document = next(iter(ijson.items(spool, WHOLE_DOCUMENT, use_float=True)), None)
    return WHOLE_DOCUMENT if normalize_vulnerability(document) is not None else None


def iter_array_items(spool: IO[bytes], prefix: str) -> Iterator[Any]:
    """Stream the values at prefix (from find_record_prefix) one at a time."""
    _rewind(spool)
    try:
        yield from ijson.items(spool, prefix, use_float=True)
    except (ijson.JSONError, UnicodeDecodeError) as e:
        raise ValueError(f"Invalid JSON: {e}") from e


def iter_record_events(
    candidates: Iterable[Any],
    batcher: RecordBatcher,
    log_every: int,
) -> Iterator[IngestEvent]:
    """Normalize already-parsed raw records into items events, logging a sample of skips."""
    sampler = SkipSampler(log_every)
    for raw in candidates:
        record = normalize_vulnerability(raw)
        if record is None:
            if sampler.skip():
                yield LogEvent(
                    message=f"Skipping malformed entry in object payload (skipped so far: {sampler.count})"
                )
            continue
        batch = batcher.add(record)
        if batch:
            yield ItemsEvent(items=batch)
    tail = batcher.flush()
    if tail:
        yield ItemsEvent(items=tail)
    yield LogEvent(message="Parsed non-array JSON payload successfully")


def iter_ndjson_events(
    spool: IO[bytes],
    batcher: RecordBatcher,
    log_every: int,
) -> Iterator[IngestEvent]:
    """
    Treat the spooled payload as one JSON value per line.

    Universal newlines apply (\\n, \\r\\n, \\r); blank lines are ignored and lines that
    fail to parse or normalize are skipped.
    """
    spool.seek(0)
    sampler = SkipSampler(log_every)
    parsed = 0
    reader = io.TextIOWrapper(spool, encoding="utf-8-sig", errors="replace", newline=None)
    try:
        for line in reader:
            line = line.strip()
            if not line:
                continue
            try:
                raw = json.loads(line)
            except ValueError as e:
                if sampler.skip():
                    yield LogEvent(message=f"NDJSON line parse error: {e}")
                continue
            parsed += 1
            record = normalize_vulnerability(raw)
            if record is None:
                continue
            batch = batcher.add(record)
            if batch:
                yield ItemsEvent(items=batch)
    finally:
        # Leave the spool open for its owner.
        reader.detach()
    tail = batcher.flush()
    if tail:
        yield ItemsEvent(items=tail)
    yield LogEvent(message=f"Parsed NDJSON payload (objects: {parsed}, skipped lines: {sampler.count})")
