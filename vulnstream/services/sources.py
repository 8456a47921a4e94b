"""Byte sources for ingestion: HTTP(S) URLs, local paths, and open binary handles."""

import asyncio
import logging
import os
from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import IO, Union
from urllib.parse import urlsplit

import httpx

logger = logging.getLogger(__name__)

IngestSource = Union[str, os.PathLike, IO[bytes]]

_GITHUB_HOST = "github.com"
_RAW_GITHUB_BASE = "https://raw.githubusercontent.com"


class IngestionError(Exception):
    """Raised when the source cannot be opened or read (network error, non-2xx status, I/O error)."""

    def __init__(self, message: str, cause: Exception | None = None) -> None:
        self.message = message
        self.cause = cause
        super().__init__(message)


@dataclass
class ByteSource:
    """An opened source: chunk iterator plus the advertised length, if any."""

    chunks: AsyncIterator[bytes]
    content_length: int | None
    description: str
    status_code: int | None = None


def is_url(source: object) -> bool:
    return isinstance(source, str) and source.strip().lower().startswith(("http://", "https://"))


def to_fetchable_url(url: str) -> str:
    """
    Rewrite a GitHub file page URL to its raw content URL:

      https://github.com/<owner>/<repo>/blob/<ref>/<path> -> https://raw.githubusercontent.com/<owner>/<repo>/<ref>/<path>

    Any other URL is returned unchanged.
    """
    try:
        parts = urlsplit(url.strip())
    except ValueError:
        return url
    if parts.hostname != _GITHUB_HOST:
        return url
    segments = [s for s in parts.path.split("/") if s]
    if len(segments) < 5 or segments[2] != "blob":
        return url
    owner, repo, _, ref, *rest = segments
    return f"{_RAW_GITHUB_BASE}/{owner}/{repo}/{ref}/{'/'.join(rest)}"


def _content_length(response: httpx.Response) -> int | None:
    value = response.headers.get("content-length")
    if value is None:
        return None
    try:
        length = int(value)
    except ValueError:
        return None
    return length if length >= 0 else None


async def _iter_response(response: httpx.Response, chunk_size: int) -> AsyncIterator[bytes]:
    try:
        async for chunk in response.aiter_bytes(chunk_size):
            yield chunk
    except httpx.HTTPError as e:
        raise IngestionError(f"Failed to read response body: {e!s}", cause=e) from e


async def _iter_handle(read: Callable[[int], bytes], chunk_size: int, what: str) -> AsyncIterator[bytes]:
    while True:
        try:
            chunk = await asyncio.to_thread(read, chunk_size)
        except OSError as e:
            raise IngestionError(f"Failed to read {what}: {e.strerror or e}", cause=e) from e
        if not chunk:
            return
        yield chunk


@asynccontextmanager
async def _open_url(
    url: str,
    client: httpx.AsyncClient | None,
    chunk_size: int,
    timeout_sec: float,
) -> AsyncIterator[ByteSource]:
    target = to_fetchable_url(url)
    owned = client is None
    if client is None:
        client = httpx.AsyncClient(timeout=httpx.Timeout(timeout_sec), follow_redirects=True)
    try:
        try:
            request = client.build_request("GET", target)
            response = await client.send(request, stream=True)
        except httpx.TimeoutException as e:
            raise IngestionError("Failed to fetch: request timed out.", cause=e) from e
        except httpx.HTTPError as e:
            raise IngestionError(f"Failed to fetch: {e!s}", cause=e) from e
        try:
            if not response.is_success:
                raise IngestionError(f"Failed to fetch: {response.status_code}")
            yield ByteSource(
                chunks=_iter_response(response, chunk_size),
                content_length=_content_length(response),
                description=target,
                status_code=response.status_code,
            )
        finally:
            await response.aclose()
    finally:
        if owned:
            await client.aclose()


@asynccontextmanager
async def _open_path(path: Path, chunk_size: int) -> AsyncIterator[ByteSource]:
    try:
        handle = await asyncio.to_thread(path.open, "rb")
    except OSError as e:
        raise IngestionError(f"Failed to open {path}: {e.strerror or e}", cause=e) from e
    try:
        size = os.fstat(handle.fileno()).st_size
        yield ByteSource(
            chunks=_iter_handle(handle.read, chunk_size, str(path)),
            content_length=size,
            description=str(path),
        )
    finally:
        handle.close()


@asynccontextmanager
async def open_source(
    source: IngestSource,
    *,
    client: httpx.AsyncClient | None = None,
    chunk_size: int = 64 * 1024,
    timeout_sec: float = 60.0,
) -> AsyncIterator[ByteSource]:
    """
    Open source for chunked reading.

    Strings starting with http:// or https:// are fetched (GitHub blob links are
    rewritten to raw content); other strings and path-likes are opened as local
    files; objects with a read() method are read as given and left open.
    Raises IngestionError when the source cannot be opened.
    """
    if is_url(source):
        async with _open_url(str(source).strip(), client, chunk_size, timeout_sec) as opened:
            yield opened
    elif isinstance(source, (str, os.PathLike)):
        async with _open_path(Path(source), chunk_size) as opened:
            yield opened
    elif callable(getattr(source, "read", None)):
        name = getattr(source, "name", None)
        yield ByteSource(
            chunks=_iter_handle(source.read, chunk_size, "file handle"),
            content_length=None,
            description=str(name) if isinstance(name, str) else "file handle",
        )
    else:
        raise IngestionError(f"Unsupported ingestion source: {type(source).__name__}")
