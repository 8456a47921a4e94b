"""
Filter, sort, and summary semantics shared by every storage backend and the mirror server.

All backends route through these functions so that count/query/summarize agree
bit-for-bit for the same dataset, filters, sort, and pagination.
"""

import re
from collections.abc import Callable, Iterable
from datetime import UTC, datetime
from functools import cmp_to_key
from typing import Any

from vulnstream.schemas.vulns import (
    SEVERITY_VALUES,
    SORT_KEYS,
    Filters,
    SortSpec,
    SummaryMetrics,
    Vulnerability,
)

# Wire sort key -> model attribute where they differ.
_SORT_ATTRIBUTES: dict[str, str] = {"riskFactors": "risk_factors"}

# Status bucket for records without a status in SummaryMetrics.status_counts.
UNKNOWN_STATUS = "unknown"

# Year or year-month only; fromisoformat rejects these.
_REDUCED_DATE = re.compile(r"(\d{4})(?:-(\d{2}))?")


def parse_datetime(value: Any) -> datetime | None:
    """
    Parse an ISO-8601 date or date-time string into an aware UTC datetime.
    Values without a zone are taken as UTC; unparseable values give None.
    Reduced precision ("2024", "2024-01") means the start of that year or month.
    """
    if not isinstance(value, str) or not value.strip():
        return None
    text = value.strip()
    reduced = _REDUCED_DATE.fullmatch(text)
    try:
        if reduced is not None:
            year, month = reduced.groups()
            return datetime(int(year), int(month or 1), 1, tzinfo=UTC)
        parsed = datetime.fromisoformat(text)
        if parsed.tzinfo is None:
            return parsed.replace(tzinfo=UTC)
        return parsed.astimezone(UTC)
    except (ValueError, OverflowError):
        return None


def parse_timestamp(value: Any) -> float | None:
    """POSIX timestamp for an ISO-8601 string, or None when unparseable."""
    parsed = parse_datetime(value)
    return parsed.timestamp() if parsed is not None else None


def month_key(value: Any) -> str | None:
    """YYYY-MM bucket (UTC) for a published value; None when absent or invalid."""
    moment = parse_datetime(value)
    if moment is None:
        return None
    return f"{moment.year:04d}-{moment.month:02d}"


def build_predicate(filters: Filters) -> Callable[[Vulnerability], bool]:
    """
    Compile filters into a record predicate.

    Unparseable date bounds impose no constraint; a set bound drops records whose
    published date is absent or unparseable.
    """
    needle = filters.query.strip().lower()
    severities = filters.severity
    risk_factors = filters.risk_factors
    excluded = filters.status_exclude
    date_from = parse_timestamp(filters.date_from)
    date_to = parse_timestamp(filters.date_to)
    has_date_range = date_from is not None or date_to is not None

    def predicate(record: Vulnerability) -> bool:
        if severities and record.severity not in severities:
            return False
        if risk_factors and not any(r in risk_factors for r in record.risk_factors or ()):
            return False
        if record.status and record.status in excluded:
            return False
        if has_date_range:
            published = parse_timestamp(record.published)
            if published is None:
                return False
            if date_from is not None and published < date_from:
                return False
            if date_to is not None and published > date_to:
                return False
        if needle:
            haystack = f"{record.id} {record.title} {record.description or ''}".lower()
            if needle not in haystack:
                return False
        return True

    return predicate


def filter_records(records: Iterable[Vulnerability], filters: Filters | None) -> list[Vulnerability]:
    """Records matching filters, in input order. None means no filtering."""
    if filters is None:
        return list(records)
    predicate = build_predicate(filters)
    return [r for r in records if predicate(r)]


def sort_value(record: Vulnerability, key: str) -> Any:
    """Value of the canonical field named by a wire sort key."""
    if key not in SORT_KEYS:
        raise ValueError(f"sort key must be one of {sorted(SORT_KEYS)}, got {key!r}")
    return getattr(record, _SORT_ATTRIBUTES.get(key, key))


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _sort_text(value: Any) -> str:
    """String representation used for non-numeric comparison (None -> '', lists comma-joined)."""
    if value is None:
        return ""
    if isinstance(value, list):
        return ",".join(str(v) for v in value)
    return str(value)


def compare_values(a: Any, b: Any) -> int:
    """Numeric comparison when both are numbers, else case-sensitive string comparison."""
    if _is_number(a) and _is_number(b):
        return (a > b) - (a < b)
    sa, sb = _sort_text(a), _sort_text(b)
    return (sa > sb) - (sa < sb)


def sort_records(records: Iterable[Vulnerability], sort: SortSpec | None) -> list[Vulnerability]:
    """Stable sort by SortSpec; None keeps input order. Descending flips the comparator sign."""
    items = list(records)
    if sort is None:
        return items
    sign = -1 if sort.dir == "desc" else 1
    key = sort.key

    def compare(a: Vulnerability, b: Vulnerability) -> int:
        return sign * compare_values(sort_value(a, key), sort_value(b, key))

    return sorted(items, key=cmp_to_key(compare))


def paginate(records: list[Vulnerability], offset: int, limit: int) -> list[Vulnerability]:
    """Slice one page; negative offset/limit are treated as 0."""
    start = max(0, offset)
    return records[start : start + max(0, limit)]


class SummaryBuilder:
    """Accumulates SummaryMetrics one record at a time (lets backends stream rows)."""

    def __init__(self) -> None:
        self.total = 0
        self.severity_counts: dict[str, int] = {s: 0 for s in SEVERITY_VALUES}
        self.risk_factor_counts: dict[str, int] = {}
        self.published_by_month: dict[str, int] = {}
        self.status_counts: dict[str, int] = {}

    def add(self, record: Vulnerability) -> None:
        self.total += 1
        self.severity_counts[record.severity] = self.severity_counts.get(record.severity, 0) + 1
        for factor in record.risk_factors or ():
            self.risk_factor_counts[factor] = self.risk_factor_counts.get(factor, 0) + 1
        month = month_key(record.published)
        if month:
            self.published_by_month[month] = self.published_by_month.get(month, 0) + 1
        status = record.status if record.status is not None else UNKNOWN_STATUS
        self.status_counts[status] = self.status_counts.get(status, 0) + 1

    def build(self) -> SummaryMetrics:
        return SummaryMetrics(
            total=self.total,
            severity_counts=dict(self.severity_counts),
            risk_factor_counts=dict(self.risk_factor_counts),
            published_by_month=dict(self.published_by_month),
            status_counts=dict(self.status_counts),
        )


def summarize_records(records: Iterable[Vulnerability]) -> SummaryMetrics:
    """Summary over every record given."""
    builder = SummaryBuilder()
    for record in records:
        builder.add(record)
    return builder.build()
