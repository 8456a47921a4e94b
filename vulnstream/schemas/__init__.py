"""Pydantic request/response schemas."""

from vulnstream.schemas.health import HealthResponse
from vulnstream.schemas.ingest import (
    DoneEvent,
    ErrorEvent,
    IngestEvent,
    ItemsEvent,
    LogEvent,
    ProgressEvent,
)
from vulnstream.schemas.view import DataView
from vulnstream.schemas.vulns import (
    SEVERITY_VALUES,
    SORT_KEYS,
    Filters,
    RawVulnerability,
    Severity,
    SortSpec,
    SummaryMetrics,
    Vulnerability,
    VulnsPageResponse,
)

__all__ = [
    "DataView",
    "DoneEvent",
    "ErrorEvent",
    "Filters",
    "HealthResponse",
    "IngestEvent",
    "ItemsEvent",
    "LogEvent",
    "ProgressEvent",
    "RawVulnerability",
    "SEVERITY_VALUES",
    "SORT_KEYS",
    "Severity",
    "SortSpec",
    "SummaryMetrics",
    "Vulnerability",
    "VulnsPageResponse",
]
