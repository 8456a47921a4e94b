"""Storage backend contract shared by the memory, embedded, and remote repositories."""

from collections.abc import Sequence
from typing import Protocol, runtime_checkable

from vulnstream.schemas.vulns import Filters, SortSpec, SummaryMetrics, Vulnerability


class RepositoryError(Exception):
    """Raised when a backend cannot complete an operation (remote fetch or store transaction failure)."""

    def __init__(self, message: str, cause: Exception | None = None) -> None:
        self.message = message
        self.cause = cause
        super().__init__(message)


@runtime_checkable
class VulnerabilityRepository(Protocol):
    """
    Interchangeable storage backend. Callers depend only on this contract.

    Every implementation must return identical results for the same dataset:
    filtering and sorting follow vulnstream.services.filtering, offset/limit apply
    after filtering and sorting, and a duplicate id replaces the earlier record in
    place (last write wins, first-insertion position kept).
    """

    async def add_many(self, records: Sequence[Vulnerability]) -> None:
        """Append records in order; a single producer is assumed."""
        ...

    async def count(self, filters: Filters | None = None) -> int:
        """Number of records matching filters, or the total when filters is None."""
        ...

    async def query(
        self,
        filters: Filters,
        offset: int,
        limit: int,
        sort: SortSpec | None = None,
    ) -> list[Vulnerability]:
        """At most limit matching records from offset, sorted if sort is given else in insertion order."""
        ...

    async def get(self, record_id: str) -> Vulnerability | None:
        """Single record by id, or None."""
        ...

    async def summarize(self) -> SummaryMetrics:
        """Aggregate metrics over the entire unfiltered dataset."""
        ...

    async def clear(self) -> None:
        """Drop all records."""
        ...
