"""
Backend equivalence and behavior tests for the memory, embedded, and remote repositories.

The remote backend is exercised against the mirror app over httpx.ASGITransport,
with the app's repository dependency overridden to an in-memory dataset.
"""

import asyncio
import unittest
from unittest.mock import patch

import httpx
from sqlalchemy.exc import OperationalError

from vulnstream.api.deps import get_repository
from vulnstream.main import app
from vulnstream.repositories import (
    EmbeddedRepository,
    MemoryRepository,
    RemoteRepository,
    RepositoryError,
    VulnerabilityRepository,
)
from vulnstream.schemas.vulns import Filters, SortSpec, Vulnerability
from vulnstream.services.normalize import normalize_vulnerability

BASE_URL = "http://testserver/api/v1"

RAW_RECORDS = [
    {"cveId": "CVE-2024-0001", "title": "Heap overflow", "severity": "critical", "published": "2024-02-01",
     "riskFactors": ["Exploit", "Remote execution"], "kaiStatus": "open", "cvss": 9.8},
    {"cveId": "CVE-2023-1000", "title": "Old bug", "severity": "critical", "published": "2023-12-31",
     "riskFactors": "Exploit", "cvss": 7.5},
    {"id": "GHSA-aaaa", "summary": "Prototype pollution", "severity": "moderate", "date": "2024-03-15T12:00:00Z",
     "risk": {"Has fix": True}, "status": "invalid - norisk", "score": "5.3"},
    {"id": "GHSA-bbbb", "name": "Path traversal in upload", "severity": "High", "published": "bad-date",
     "tags": ["network"], "cvss": 8.1},
    {"VulnerabilityID": "OSV-1", "packageName": "left-pad", "description": "login bypass"},
    {"cveId": "CVE-2024-0002", "title": "Race", "severity": "low", "published": "2024-03-02T23:30:00-02:00",
     "kaiStatus": "fixed", "cvss": 3.1},
    {"cveId": "CVE-2024-0001", "title": "Heap overflow (updated)", "severity": "critical",
     "published": "2024-02-01", "riskFactors": ["Exploit"], "kaiStatus": "open", "cvss": 9.9},
]

QUERIES = [
    (Filters(), None),
    (Filters(), SortSpec(key="score", dir="desc")),
    (Filters(), SortSpec(key="published")),
    (Filters(), SortSpec(key="riskFactors", dir="desc")),
    (Filters(severity=frozenset({"critical"}), date_from="2024-01-01"), None),
    (Filters(query="LOGIN"), None),
    (Filters(risk_factors=frozenset({"Exploit", "Has fix"})), SortSpec(key="id")),
    (Filters(status_exclude=frozenset({"open", "fixed"})), SortSpec(key="title")),
    (Filters(date_from="2024-03-01", date_to="2024-03-31"), SortSpec(key="published", dir="desc")),
    (Filters(date_from="not-a-date"), None),
]


def _records() -> list[Vulnerability]:
    return [r for r in (normalize_vulnerability(raw) for raw in RAW_RECORDS) if r is not None]


def _wire(records: list[Vulnerability]) -> list[dict]:
    return [r.to_wire() for r in records]


class _AsgiBackendMixin:
    """Runs the mirror app in-process, serving the given memory repository."""

    def _serve(self, repository: MemoryRepository) -> None:
        app.dependency_overrides[get_repository] = lambda: repository
        self.addCleanup(app.dependency_overrides.clear)

    def _remote(self, page_limit: int = 1000) -> RemoteRepository:
        client = httpx.AsyncClient(transport=httpx.ASGITransport(app=app))
        return RemoteRepository(BASE_URL, client=client, page_limit=page_limit)


class TestBackendEquivalence(_AsgiBackendMixin, unittest.TestCase):
    """count, query, summarize, and get agree across all three backends."""

    def test_same_results_for_every_query(self) -> None:
        async def run() -> None:
            memory = MemoryRepository()
            embedded = EmbeddedRepository("sqlite://")
            records = _records()
            # Two batches, the second containing an overwrite of the first record.
            for backend in (memory, embedded):
                await backend.add_many(records[:4])
                await backend.add_many(records[4:])
            served = MemoryRepository()
            await served.add_many(records)
            self._serve(served)
            remote = self._remote(page_limit=2)
            backends: list[VulnerabilityRepository] = [memory, embedded, remote]
            try:
                for filters, sort in QUERIES:
                    with self.subTest(filters=filters, sort=sort):
                        counts = [await b.count(filters) for b in backends]
                        self.assertEqual(len(set(counts)), 1, counts)
                        for offset, limit in ((0, 50), (1, 3), (4, 10), (10, 5)):
                            pages = [_wire(await b.query(filters, offset, limit, sort)) for b in backends]
                            self.assertEqual(pages[0], pages[1])
                            self.assertEqual(pages[0], pages[2])
                summaries = [(await b.summarize()).model_dump() for b in backends]
                self.assertEqual(summaries[0], summaries[1])
                self.assertEqual(summaries[0], summaries[2])
                totals = [await b.count() for b in backends]
                self.assertEqual(totals, [6, 6, 6])
                for b in backends:
                    record = await b.get("CVE-2024-0001")
                    self.assertEqual(record.title, "Heap overflow (updated)")
                    self.assertIsNone(await b.get("missing"))
            finally:
                await embedded.aclose()
                await remote.aclose()

        asyncio.run(run())

    def test_protocol_conformance(self) -> None:
        async def run() -> None:
            embedded = EmbeddedRepository("sqlite://")
            remote = RemoteRepository(BASE_URL)
            try:
                for backend in (MemoryRepository(), embedded, remote):
                    self.assertIsInstance(backend, VulnerabilityRepository)
            finally:
                await embedded.aclose()
                await remote.aclose()

        asyncio.run(run())


class TestDuplicateIds(unittest.TestCase):
    """A duplicate id replaces the earlier record in place."""

    def test_last_write_wins_at_first_position(self) -> None:
        async def run() -> None:
            first = normalize_vulnerability({"id": "A", "title": "v1"})
            other = normalize_vulnerability({"id": "B"})
            second = normalize_vulnerability({"id": "A", "title": "v2"})
            embedded = EmbeddedRepository("sqlite://")
            try:
                for backend in (MemoryRepository(), embedded):
                    await backend.add_many([first, other, second])
                    results = await backend.query(Filters(), 0, 10)
                    self.assertEqual([(r.id, r.title) for r in results], [("A", "v2"), ("B", "B")])
                    self.assertEqual(await backend.count(), 2)
            finally:
                await embedded.aclose()

        asyncio.run(run())


class TestMemoryRepository(unittest.TestCase):
    def test_clear_and_iteration(self) -> None:
        async def run() -> None:
            repo = MemoryRepository()
            await repo.add_many(_records())
            self.assertEqual([r.id for r in repo][:2], ["CVE-2024-0001", "CVE-2023-1000"])
            await repo.clear()
            self.assertEqual(len(repo), 0)
            self.assertEqual((await repo.summarize()).total, 0)

        asyncio.run(run())


class TestEmbeddedRepository(unittest.TestCase):
    def test_clear(self) -> None:
        async def run() -> None:
            repo = EmbeddedRepository("sqlite://")
            try:
                await repo.add_many(_records())
                await repo.clear()
                self.assertEqual(await repo.count(), 0)
                self.assertEqual(await repo.query(Filters(), 0, 10), [])
            finally:
                await repo.aclose()

        asyncio.run(run())

    def test_database_errors_become_repository_errors(self) -> None:
        async def run() -> None:
            repo = EmbeddedRepository("sqlite://")
            try:
                failure = OperationalError("SELECT 1", {}, Exception("disk I/O error"))
                with patch.object(repo, "_count", side_effect=failure):
                    with self.assertRaises(RepositoryError) as ctx:
                        await repo.count()
                self.assertIs(ctx.exception.cause, failure)
            finally:
                await repo.aclose()

        asyncio.run(run())


class TestRemoteRepository(_AsgiBackendMixin, unittest.TestCase):
    def _mock_remote(self, handler) -> RemoteRepository:
        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        return RemoteRepository(BASE_URL + "/vulns/", client=client, page_limit=1000)

    def test_base_url_accepts_vulns_suffix(self) -> None:
        self.assertEqual(RemoteRepository(BASE_URL + "/vulns/").base_url, BASE_URL)
        self.assertEqual(RemoteRepository(BASE_URL + "/").base_url, BASE_URL)

    def test_count_uses_limit_zero_and_filter_params(self) -> None:
        seen: list[httpx.URL] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request.url)
            return httpx.Response(200, json={"total": 12, "results": []})

        async def run() -> int:
            remote = self._mock_remote(handler)
            filters = Filters(severity=frozenset({"high", "critical"}), status_exclude=frozenset({"fixed"}))
            return await remote.count(filters)

        self.assertEqual(asyncio.run(run()), 12)
        params = seen[0].params
        self.assertEqual(seen[0].path, "/api/v1/vulns")
        self.assertEqual(params["limit"], "0")
        self.assertEqual(params["severity"], "critical,high")
        self.assertEqual(params["kaiStatusExclude"], "fixed")

    def test_http_error_carries_server_message(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(500, json={"error": "index unavailable"})

        async def run() -> None:
            await self._mock_remote(handler).summarize()

        with self.assertRaises(RepositoryError) as ctx:
            asyncio.run(run())
        self.assertIn("index unavailable", ctx.exception.message)

    def test_transport_error(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        async def run() -> None:
            await self._mock_remote(handler).query(Filters(), 0, 10)

        with self.assertRaises(RepositoryError):
            asyncio.run(run())

    def test_write_operations_are_noops(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise AssertionError("no request expected")

        async def run() -> None:
            remote = self._mock_remote(handler)
            await remote.add_many(_records())
            await remote.clear()

        asyncio.run(run())

    def test_get_with_reserved_characters_in_id(self) -> None:
        ids = ["A", "A#1", "B?x=1", "pkg/name", "50%off"]

        async def run() -> dict[str, tuple[str | None, str | None]]:
            served = MemoryRepository()
            await served.add_many([normalize_vulnerability({"id": record_id}) for record_id in ids])
            self._serve(served)
            remote = self._remote()
            found = {}
            for record_id in ids + ["missing/id"]:
                local = await served.get(record_id)
                fetched = await remote.get(record_id)
                found[record_id] = (
                    local.id if local is not None else None,
                    fetched.id if fetched is not None else None,
                )
            await remote._client.aclose()
            return found

        found = asyncio.run(run())
        for record_id in ids:
            self.assertEqual(found[record_id], (record_id, record_id))
        self.assertEqual(found["missing/id"], (None, None))

    def test_large_limit_is_split_into_server_pages(self) -> None:
        async def run() -> list[tuple[str, str]]:
            served = MemoryRepository()
            await served.add_many(_records())
            self._serve(served)
            seen: list[tuple[str, str]] = []

            async def record_request(request: httpx.Request) -> None:
                seen.append((request.url.params["offset"], request.url.params["limit"]))

            client = httpx.AsyncClient(
                transport=httpx.ASGITransport(app=app),
                event_hooks={"request": [record_request]},
            )
            remote = RemoteRepository(BASE_URL, client=client, page_limit=4)
            results = await remote.query(Filters(), 0, 100)
            self.assertEqual(len(results), 6)
            await client.aclose()
            return seen

        self.assertEqual(asyncio.run(run()), [("0", "4"), ("4", "4")])


if __name__ == "__main__":
    unittest.main()
