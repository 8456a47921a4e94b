"""Pydantic schemas for vulnerabilities: canonical record, query filters, sort, and summary metrics."""

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

# Reusable severity levels for validation and type safety across schemas.
Severity = Literal["critical", "high", "medium", "low", "unknown"]

SEVERITY_VALUES: tuple[Severity, ...] = ("critical", "high", "medium", "low", "unknown")

SortDirection = Literal["asc", "desc"]

# Wire names accepted as sort keys (GET /vulns?sortKey=...).
SORT_KEYS: frozenset[str] = frozenset({
    "id",
    "title",
    "description",
    "severity",
    "published",
    "riskFactors",
    "status",
    "score",
    "tags",
    "cwe",
    "vendor",
    "product",
    "source",
})

RawVulnerability = dict[str, Any]


class Vulnerability(BaseModel):
    """Canonical, schema-stable representation of one ingested vulnerability. Created only by the normalizer."""

    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")

    id: str = Field(
        ...,
        min_length=1,
        description="Identifier for the vulnerability (e.g. CVE), unique within a dataset.",
    )
    title: str = Field(
        ...,
        description="Display title; falls back to the id when the source has none.",
    )
    description: str | None = Field(default=None, description="Human-readable description.")
    severity: Severity = Field(
        default="unknown",
        description="Severity level: critical, high, medium, low, or unknown.",
    )
    published: str | None = Field(
        default=None,
        description="Publication date as given by the source (ISO-8601 expected).",
    )
    risk_factors: list[str] | None = Field(
        default=None,
        alias="riskFactors",
        description="Ordered risk factor labels.",
    )
    status: str | None = Field(
        default=None,
        description="Free-text classification label used for exclusion filtering.",
    )
    score: float | None = Field(default=None, description="Numeric score (e.g. CVSS).")
    tags: list[str] | None = Field(default=None, description="Display-only tags.")
    cwe: list[str] | None = Field(default=None, description="Display-only CWE identifiers.")
    vendor: str | None = Field(default=None, description="Affected vendor.")
    product: str | None = Field(default=None, description="Affected product or package.")
    source: str | None = Field(default=None, description="Feed or provider the record came from.")
    raw: RawVulnerability | None = Field(
        default=None,
        description="Original source payload for detail views.",
    )

    def to_wire(self) -> dict[str, Any]:
        """Serialize with wire (camelCase) field names."""
        return self.model_dump(by_alias=True, mode="json")


class Filters(BaseModel):
    """Query filters. Empty sets impose no constraint."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    query: str = Field(default="", description="Case-insensitive substring over id, title, description.")
    severity: frozenset[str] = Field(default_factory=frozenset, description="Accepted severities.")
    risk_factors: frozenset[str] = Field(
        default_factory=frozenset,
        alias="riskFactors",
        description="Accepted risk factors; a record needs at least one.",
    )
    status_exclude: frozenset[str] = Field(
        default_factory=frozenset,
        alias="kaiStatusExclude",
        description="Statuses whose records are dropped.",
    )
    date_from: str | None = Field(default=None, alias="dateFrom", description="Inclusive lower publication bound.")
    date_to: str | None = Field(default=None, alias="dateTo", description="Inclusive upper publication bound.")

    def to_query_params(self) -> dict[str, str]:
        """Encode as GET /vulns query parameters (comma-separated lists, sorted for stable URLs)."""
        params: dict[str, str] = {}
        if self.query:
            params["query"] = self.query
        if self.severity:
            params["severity"] = ",".join(sorted(self.severity))
        if self.risk_factors:
            params["riskFactors"] = ",".join(sorted(self.risk_factors))
        if self.status_exclude:
            params["kaiStatusExclude"] = ",".join(sorted(self.status_exclude))
        if self.date_from:
            params["dateFrom"] = self.date_from
        if self.date_to:
            params["dateTo"] = self.date_to
        return params


class SortSpec(BaseModel):
    """Single-field sort. Absence of a SortSpec means backend-native order."""

    model_config = ConfigDict(frozen=True)

    key: str = Field(..., description="Wire name of a canonical field (see SORT_KEYS).")
    dir: SortDirection = Field(default="asc", description="Sort direction.")


class SummaryMetrics(BaseModel):
    """Aggregate counts over the complete dataset, independent of active filters."""

    model_config = ConfigDict(populate_by_name=True)

    total: int = Field(default=0, ge=0)
    severity_counts: dict[str, int] = Field(
        default_factory=lambda: {s: 0 for s in SEVERITY_VALUES},
        alias="severityCounts",
    )
    risk_factor_counts: dict[str, int] = Field(default_factory=dict, alias="riskFactorCounts")
    published_by_month: dict[str, int] = Field(
        default_factory=dict,
        alias="publishedByMonth",
        description="YYYY-MM (UTC) -> count.",
    )
    status_counts: dict[str, int] = Field(
        default_factory=dict,
        alias="statusCounts",
        description="Status -> count; records without a status count under 'unknown'.",
    )


class VulnsPageResponse(BaseModel):
    """Response body for GET /vulns."""

    total: int = Field(..., ge=0, description="Number of records matching the filters.")
    results: list[Vulnerability] = Field(default_factory=list)
