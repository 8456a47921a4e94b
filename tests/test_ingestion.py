"""Tests for vulnstream.services.ingestion and sources: files, URLs, fallbacks, and failure events."""

import asyncio
import io
import json
import os
import tempfile
import unittest

import httpx

from vulnstream.core.config import Settings
from vulnstream.schemas.ingest import DoneEvent, ErrorEvent, ItemsEvent, LogEvent, ProgressEvent
from vulnstream.services.ingestion import iter_ingest_events, run_ingestion
from vulnstream.services.sources import IngestionError, to_fetchable_url


def _settings(**overrides: object) -> Settings:
    values = {"INGEST_READ_CHUNK_BYTES": 16, "INGEST_BATCH_SIZE": 500}
    values.update(overrides)
    return Settings(**values)


def _collect(source: object, settings: Settings, client: httpx.AsyncClient | None = None) -> list:
    async def run() -> list:
        return [event async for event in iter_ingest_events(source, settings, client=client)]

    return asyncio.run(run())


def _run_actor(source: object, settings: Settings, client: httpx.AsyncClient | None = None) -> list:
    async def run() -> list:
        queue: asyncio.Queue = asyncio.Queue()
        await run_ingestion(source, queue, settings, client=client)
        events = []
        while not queue.empty():
            events.append(queue.get_nowait())
        return events

    return asyncio.run(run())


def _records(events: list) -> list:
    return [r for e in events if isinstance(e, ItemsEvent) for r in e.items]


class _TempFileMixin:
    def _write(self, data: bytes) -> str:
        handle = tempfile.NamedTemporaryFile(suffix=".json", delete=False)
        handle.write(data)
        handle.close()
        self.addCleanup(os.unlink, handle.name)
        return handle.name


class TestIngestFromFile(_TempFileMixin, unittest.TestCase):
    """Local files go through the primary scan, falling back when it finds nothing."""

    def test_array_scenario(self) -> None:
        path = self._write(b'[{"cveId":"CVE-1","severity":"HIGH"},{"cveId":"CVE-2","severity":"bogus"}]')
        events = _collect(path, _settings())
        records = _records(events)
        self.assertEqual([(r.id, r.severity) for r in records], [("CVE-1", "high"), ("CVE-2", "unknown")])
        self.assertIsInstance(events[-1], DoneEvent)
        self.assertEqual(events[-1].emitted, 2)

    def test_wrapper_scenario(self) -> None:
        path = self._write(b'{"wrapper":{"vulnerabilities":[{"id":"A"}]}}')
        records = _records(_collect(path, _settings()))
        self.assertEqual([r.id for r in records], ["A"])

    def test_progress_reports_file_size(self) -> None:
        data = json.dumps([{"id": f"V-{i}"} for i in range(30)]).encode()
        path = self._write(data)
        progress = [e for e in _collect(path, _settings()) if isinstance(e, ProgressEvent)]
        self.assertEqual(progress[-1].bytes_read, len(data))
        self.assertEqual(progress[-1].total_bytes, len(data))

    def test_ndjson_fallback(self) -> None:
        path = self._write(b'{"id":"A"}\r\n{"id":"B"}\n\nbroken\n{"id":"C"}\n')
        events = _collect(path, _settings())
        self.assertEqual([r.id for r in _records(events)], ["A", "B", "C"])
        self.assertEqual(events[-1].emitted, 3)
        self.assertTrue(any(isinstance(e, LogEvent) and "NDJSON" in e.message for e in events))

    def test_ndjson_with_container_key_on_first_line(self) -> None:
        path = self._write(b'{"id":"A","data":[1]}\n{"id":"B"}\n')
        events = _collect(path, _settings(INGEST_SPOOL_MAX_BYTES=8))
        self.assertEqual([r.id for r in _records(events)], ["A", "B"])

    def test_bare_object_fallback(self) -> None:
        path = self._write(b'{"cveId":"CVE-9","severity":"crit"}')
        records = _records(_collect(path, _settings()))
        self.assertEqual([(r.id, r.severity) for r in records], [("CVE-9", "critical")])

    def test_wrapped_array_of_non_objects_yields_nothing(self) -> None:
        path = self._write(b'{"data": [1, 2, 3]}')
        events = _collect(path, _settings())
        self.assertEqual(_records(events), [])
        self.assertEqual(events[-1].emitted, 0)

    def test_spool_overflow_to_disk(self) -> None:
        path = self._write(b'{"a":1}\n' * 50 + b'{"id":"last"}\n')
        records = _records(_collect(path, _settings(INGEST_SPOOL_MAX_BYTES=64)))
        self.assertEqual([r.id for r in records], ["last"])

    def test_missing_file_is_an_error_event(self) -> None:
        events = _run_actor("/nonexistent/dir/vulns.json", _settings())
        self.assertEqual(len(events), 1)
        self.assertIsInstance(events[0], ErrorEvent)
        self.assertIn("Failed to open", events[0].error)

    def test_binary_handle(self) -> None:
        handle = io.BytesIO(b'[{"id":"A"},{"id":"B"}]')
        records = _records(_collect(handle, _settings()))
        self.assertEqual([r.id for r in records], ["A", "B"])
        self.assertFalse(handle.closed)


class TestIngestFromUrl(unittest.TestCase):
    """URL sources are streamed with httpx; failures end the run with an error event."""

    def _client(self, handler) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(handler))

    def test_streams_records(self) -> None:
        body = json.dumps({"items": [{"id": "A"}, {"id": "B"}]}).encode()
        seen: list[str] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(str(request.url))
            return httpx.Response(200, content=body)

        events = _run_actor("https://example.test/vulns.json", _settings(), self._client(handler))
        self.assertEqual([r.id for r in _records(events)], ["A", "B"])
        self.assertIsInstance(events[-1], DoneEvent)
        self.assertEqual(seen, ["https://example.test/vulns.json"])

    def test_github_blob_url_is_rewritten(self) -> None:
        seen: list[str] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(str(request.url))
            return httpx.Response(200, content=b"[]")

        _run_actor("https://github.com/acme/data/blob/main/feeds/vulns.json", _settings(), self._client(handler))
        self.assertEqual(seen, ["https://raw.githubusercontent.com/acme/data/main/feeds/vulns.json"])

    def test_non_success_status_is_error(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(404, content=b"missing")

        events = _run_actor("https://example.test/vulns.json", _settings(), self._client(handler))
        self.assertEqual(len(events), 1)
        self.assertIsInstance(events[0], ErrorEvent)
        self.assertEqual(events[0].error, "Failed to fetch: 404")

    def test_transport_error_is_error(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        events = _run_actor("https://example.test/vulns.json", _settings(), self._client(handler))
        self.assertIsInstance(events[-1], ErrorEvent)
        self.assertIn("Failed to fetch", events[-1].error)

    def test_iter_raises_ingestion_error(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(500)

        with self.assertRaises(IngestionError):
            _collect("http://example.test/x.json", _settings(), self._client(handler))


class TestToFetchableUrl(unittest.TestCase):
    def test_rewrites_blob(self) -> None:
        self.assertEqual(
            to_fetchable_url("https://github.com/o/r/blob/v1.2/a/b.json"),
            "https://raw.githubusercontent.com/o/r/v1.2/a/b.json",
        )

    def test_leaves_other_urls(self) -> None:
        for url in (
            "https://example.com/o/r/blob/main/a.json",
            "https://github.com/o/r/tree/main/a.json",
            "https://raw.githubusercontent.com/o/r/main/a.json",
        ):
            with self.subTest(url=url):
                self.assertEqual(to_fetchable_url(url), url)


if __name__ == "__main__":
    unittest.main()
