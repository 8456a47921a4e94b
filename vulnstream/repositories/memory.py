"""In-memory backend: linear scan, filter, and stable sort over a list."""

from collections.abc import Iterator, Sequence

from vulnstream.schemas.vulns import Filters, SortSpec, SummaryMetrics, Vulnerability
from vulnstream.services.filtering import (
    filter_records,
    paginate,
    sort_records,
    summarize_records,
)


class MemoryRepository:
    """Default backend while ingesting; fine for moderate datasets (O(n log n) per sorted query)."""

    def __init__(self) -> None:
        self._data: list[Vulnerability] = []
        self._positions: dict[str, int] = {}

    def __len__(self) -> int:
        return len(self._data)

    def __iter__(self) -> Iterator[Vulnerability]:
        """Records in insertion order (used to migrate to another backend)."""
        return iter(list(self._data))

    async def add_many(self, records: Sequence[Vulnerability]) -> None:
        for record in records:
            position = self._positions.get(record.id)
            if position is None:
                self._positions[record.id] = len(self._data)
                self._data.append(record)
            else:
                self._data[position] = record

    async def count(self, filters: Filters | None = None) -> int:
        if filters is None:
            return len(self._data)
        return len(filter_records(self._data, filters))

    async def query(
        self,
        filters: Filters,
        offset: int,
        limit: int,
        sort: SortSpec | None = None,
    ) -> list[Vulnerability]:
        matched = sort_records(filter_records(self._data, filters), sort)
        return paginate(matched, offset, limit)

    async def get(self, record_id: str) -> Vulnerability | None:
        position = self._positions.get(record_id)
        return self._data[position] if position is not None else None

    async def summarize(self) -> SummaryMetrics:
        return summarize_records(self._data)

    async def clear(self) -> None:
        self._data = []
        self._positions = {}
