"""
Incremental scanner for JSON arrays of objects.

Splits a document arriving in arbitrary chunks into the text of each object that
sits directly inside an array (at any nesting depth), without building the full
text or the parsed structure. The scanner state is a plain dataclass so the same
functions drive the async stream and unit tests alike.
"""

import codecs
import json
import logging
import re
from collections.abc import AsyncIterator
from dataclasses import dataclass
from typing import IO

from vulnstream.schemas.ingest import IngestEvent, ItemsEvent, ProgressEvent
from vulnstream.schemas.vulns import Vulnerability
from vulnstream.services.normalize import normalize_vulnerability

logger = logging.getLogger(__name__)

# Characters that can change scanner state outside and inside string literals.
_STRUCTURAL_CHARS = re.compile(r'["\[\]{}]')
_STRING_CHARS = re.compile(r'[\\"]')


@dataclass
class ScanState:
    """
    Scanner state carried across chunks.

    offset is the index in the current buffer where scanning resumes; item_start is
    the buffer index of the open item's "{" or -1 when no item is being captured.
    """

    in_string: bool = False
    escape: bool = False
    array_depth: int = 0
    object_depth: int = 0
    item_start: int = -1
    offset: int = 0


def scan_items(state: ScanState, buf: str) -> list[str]:
    """Advance state over buf from state.offset and return the text of every item closed on the way."""
    items: list[str] = []
    pos = state.offset
    end = len(buf)
    while pos < end:
        if state.in_string:
            if state.escape:
                state.escape = False
                pos += 1
                continue
            match = _STRING_CHARS.search(buf, pos)
            if match is None:
                pos = end
                break
            pos = match.start()
            if buf[pos] == "\\":
                state.escape = True
            else:
                state.in_string = False
            pos += 1
            continue

        match = _STRUCTURAL_CHARS.search(buf, pos)
        if match is None:
            pos = end
            break
        pos = match.start()
        ch = buf[pos]
        if ch == '"':
            state.in_string = True
        elif ch == "[":
            state.array_depth += 1
        elif ch == "]":
            state.array_depth = max(0, state.array_depth - 1)
        elif state.array_depth > 0:
            if ch == "{":
                if state.object_depth == 0:
                    state.item_start = pos
                state.object_depth += 1
            elif state.object_depth > 0:
                state.object_depth -= 1
                if state.object_depth == 0 and state.item_start >= 0:
                    items.append(buf[state.item_start : pos + 1])
                    state.item_start = -1
        pos += 1
    state.offset = pos
    return items


def compact_buffer(state: ScanState, buf: str, trim_chars: int) -> str:
    """
    Drop scanned text once buf grows past trim_chars.

    With no open item everything up to state.offset goes; otherwise the buffer is
    cut to start at the open item. Offsets in state are rebased accordingly.
    """
    if len(buf) <= trim_chars:
        return buf
    cut = state.item_start if state.item_start >= 0 else state.offset
    if cut <= 0:
        return buf
    if state.item_start >= 0:
        state.item_start -= cut
    state.offset -= cut
    return buf[cut:]


def parse_item(text: str) -> Vulnerability | None:
    """Parse one captured object and normalize it; None when either step fails."""
    try:
        raw = json.loads(text)
    except ValueError:
        return None
    return normalize_vulnerability(raw)


class RecordBatcher:
    """Collects records into fixed-size batches and counts what it has emitted."""

    def __init__(self, batch_size: int) -> None:
        if batch_size < 1:
            raise ValueError("batch_size must be at least 1")
        self.batch_size = batch_size
        self.emitted = 0
        self._pending: list[Vulnerability] = []

    def __len__(self) -> int:
        return len(self._pending)

    def add(self, record: Vulnerability) -> list[Vulnerability] | None:
        """Queue a record; returns a full batch when batch_size is reached."""
        self._pending.append(record)
        if len(self._pending) >= self.batch_size:
            return self.flush()
        return None

    def flush(self) -> list[Vulnerability] | None:
        if not self._pending:
            return None
        batch, self._pending = self._pending, []
        self.emitted += len(batch)
        return batch


async def stream_records(
    chunks: AsyncIterator[bytes],
    batcher: RecordBatcher,
    *,
    trim_chars: int,
    total_bytes: int | None = None,
    spool: IO[bytes] | None = None,
) -> AsyncIterator[IngestEvent]:
    """
    Primary pass: decode chunks incrementally, scan for array items, and yield
    progress and items events. The final partial batch is flushed at stream end.

    Raw bytes are copied to spool (when given) so a fallback pass can re-read them.
    Items that fail to parse or normalize are skipped.
    """
    decoder = codecs.getincrementaldecoder("utf-8-sig")(errors="replace")
    state = ScanState()
    buf = ""
    bytes_read = 0
    skipped = 0

    def absorb(text: str) -> list[Vulnerability]:
        nonlocal buf, skipped
        buf += text
        full: list[Vulnerability] = []
        for item_text in scan_items(state, buf):
            record = parse_item(item_text)
            if record is None:
                skipped += 1
                continue
            batch = batcher.add(record)
            if batch:
                full.extend(batch)
        buf = compact_buffer(state, buf, trim_chars)
        return full

    async for chunk in chunks:
        if not chunk:
            continue
        bytes_read += len(chunk)
        if spool is not None:
            spool.write(chunk)
        ready = absorb(decoder.decode(chunk))
        for start in range(0, len(ready), batcher.batch_size):
            yield ItemsEvent(items=ready[start : start + batcher.batch_size])
        yield ProgressEvent(bytes_read=bytes_read, total_bytes=total_bytes)

    ready = absorb(decoder.decode(b"", final=True))
    for start in range(0, len(ready), batcher.batch_size):
        yield ItemsEvent(items=ready[start : start + batcher.batch_size])
    tail = batcher.flush()
    if tail:
        yield ItemsEvent(items=tail)
    if skipped:
        logger.debug("Primary scan skipped %s unparseable items", skipped)
