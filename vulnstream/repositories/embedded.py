"""Embedded persistent backend: SQLite via SQLAlchemy, keyed by vulnerability id."""

import asyncio
import logging
import threading
from collections.abc import Callable, Iterator, Sequence
from typing import Any, TypeVar

from sqlalchemy import ColumnElement, Select, delete, func, or_, select
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from vulnstream.core.database import create_embedded_engine, create_session_factory
from vulnstream.models import Base, VulnerabilityRow
from vulnstream.repositories.base import RepositoryError
from vulnstream.schemas.vulns import Filters, SortSpec, SummaryMetrics, Vulnerability
from vulnstream.services.filtering import (
    SummaryBuilder,
    build_predicate,
    paginate,
    parse_timestamp,
    sort_records,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Rows fetched per round trip when streaming the table.
DEFAULT_READ_BATCH_SIZE = 1000


def _row_values(record: Vulnerability, seq: int) -> dict[str, Any]:
    return {
        "id": record.id,
        "seq": seq,
        "severity": record.severity,
        "published": record.published,
        "status": record.status,
        "document": record.to_wire(),
    }


def _sql_conditions(filters: Filters | None) -> list[ColumnElement[bool]]:
    """Filter clauses the indexed columns can answer exactly (severity, status exclusion)."""
    if filters is None:
        return []
    conditions: list[ColumnElement[bool]] = []
    if filters.severity:
        conditions.append(VulnerabilityRow.severity.in_(sorted(filters.severity)))
    if filters.status_exclude:
        conditions.append(
            or_(
                VulnerabilityRow.status.is_(None),
                VulnerabilityRow.status == "",
                VulnerabilityRow.status.not_in(sorted(filters.status_exclude)),
            )
        )
    return conditions


def _fully_in_sql(filters: Filters | None) -> bool:
    """True when every active filter is covered by _sql_conditions."""
    if filters is None:
        return True
    return (
        not filters.query.strip()
        and not filters.risk_factors
        and parse_timestamp(filters.date_from) is None
        and parse_timestamp(filters.date_to) is None
    )


class EmbeddedRepository:
    """
    Persistent keyed store for large datasets.

    Blocking SQLAlchemy work runs in a worker thread; a lock serializes access so
    ingestion writes and coordinator reads never interleave on the SQLite file.
    """

    def __init__(
        self,
        url: str | None = None,
        *,
        engine: Engine | None = None,
        read_batch_size: int = DEFAULT_READ_BATCH_SIZE,
    ) -> None:
        self._engine = engine or create_embedded_engine(url)
        try:
            Base.metadata.create_all(self._engine)
        except SQLAlchemyError as e:
            raise RepositoryError("Embedded store could not be initialized.", cause=e) from e
        self._session_factory = create_session_factory(self._engine)
        self._read_batch_size = read_batch_size
        self._lock = threading.Lock()

    async def _run(self, action: str, fn: Callable[..., T], *args: Any) -> T:
        def locked() -> T:
            with self._lock:
                return fn(*args)

        try:
            return await asyncio.to_thread(locked)
        except SQLAlchemyError as e:
            logger.warning(
                "Embedded store operation failed",
                extra={"action": action, "error": str(e)},
            )
            raise RepositoryError(f"Embedded store {action} failed.", cause=e) from e

    def _select(self, filters: Filters | None) -> Select[tuple[VulnerabilityRow]]:
        stmt = select(VulnerabilityRow)
        conditions = _sql_conditions(filters)
        if conditions:
            stmt = stmt.where(*conditions)
        return stmt.order_by(VulnerabilityRow.seq).execution_options(yield_per=self._read_batch_size)

    def _iter_matching(self, session: Session, filters: Filters | None) -> Iterator[Vulnerability]:
        """Records in insertion order that pass filters (SQL prefilter, then the shared predicate)."""
        predicate = build_predicate(filters) if filters is not None else None
        for row in session.scalars(self._select(filters)):
            record = Vulnerability.model_validate(row.document)
            if predicate is None or predicate(record):
                yield record

    def _add_many(self, records: Sequence[Vulnerability]) -> None:
        with self._session_factory() as session, session.begin():
            next_seq = (session.scalar(select(func.max(VulnerabilityRow.seq))) or 0) + 1
            rows = [_row_values(record, next_seq + i) for i, record in enumerate(records)]
            stmt = sqlite_insert(VulnerabilityRow.__table__)
            # Keep seq so an overwritten id stays at its first-insertion position.
            stmt = stmt.on_conflict_do_update(
                index_elements=["id"],
                set_={
                    "severity": stmt.excluded.severity,
                    "published": stmt.excluded.published,
                    "status": stmt.excluded.status,
                    "document": stmt.excluded.document,
                },
            )
            session.execute(stmt, rows)

    def _count(self, filters: Filters | None) -> int:
        with self._session_factory() as session:
            if _fully_in_sql(filters):
                stmt = select(func.count()).select_from(VulnerabilityRow)
                conditions = _sql_conditions(filters)
                if conditions:
                    stmt = stmt.where(*conditions)
                return int(session.scalar(stmt) or 0)
            return sum(1 for _ in self._iter_matching(session, filters))

    def _query(
        self,
        filters: Filters,
        offset: int,
        limit: int,
        sort: SortSpec | None,
    ) -> list[Vulnerability]:
        with self._session_factory() as session:
            if sort is not None:
                return paginate(sort_records(self._iter_matching(session, filters), sort), offset, limit)
            start, stop = max(0, offset), max(0, offset) + max(0, limit)
            out: list[Vulnerability] = []
            if start >= stop:
                return out
            for index, record in enumerate(self._iter_matching(session, filters)):
                if index >= stop:
                    break
                if index >= start:
                    out.append(record)
            return out

    def _get(self, record_id: str) -> Vulnerability | None:
        with self._session_factory() as session:
            row = session.get(VulnerabilityRow, record_id)
            return Vulnerability.model_validate(row.document) if row is not None else None

    def _summarize(self) -> SummaryMetrics:
        builder = SummaryBuilder()
        with self._session_factory() as session:
            for record in self._iter_matching(session, None):
                builder.add(record)
        return builder.build()

    def _clear(self) -> None:
        with self._session_factory() as session, session.begin():
            session.execute(delete(VulnerabilityRow))

    async def add_many(self, records: Sequence[Vulnerability]) -> None:
        if not records:
            return
        await self._run("write", self._add_many, list(records))

    async def count(self, filters: Filters | None = None) -> int:
        return await self._run("count", self._count, filters)

    async def query(
        self,
        filters: Filters,
        offset: int,
        limit: int,
        sort: SortSpec | None = None,
    ) -> list[Vulnerability]:
        return await self._run("query", self._query, filters, offset, limit, sort)

    async def get(self, record_id: str) -> Vulnerability | None:
        return await self._run("lookup", self._get, record_id)

    async def summarize(self) -> SummaryMetrics:
        return await self._run("summary", self._summarize)

    async def clear(self) -> None:
        await self._run("clear", self._clear)

    async def aclose(self) -> None:
        """Release pooled connections."""
        await asyncio.to_thread(self._engine.dispose)
