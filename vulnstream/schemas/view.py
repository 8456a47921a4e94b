"""Read-model exposed by the query coordinator to the presentation layer."""

from pydantic import BaseModel, ConfigDict, Field

from vulnstream.schemas.vulns import Filters, SortSpec, SummaryMetrics, Vulnerability


class DataView(BaseModel):
    """
    Page-scoped snapshot of the active dataset.

    Replaced wholesale on every change; total/results/summary reflect the most
    recently completed refresh and stay visible when a later refresh fails.
    """

    model_config = ConfigDict(frozen=True)

    filters: Filters = Field(default_factory=Filters)
    sort: SortSpec | None = None
    page: int = Field(default=0, ge=0)
    page_size: int = Field(default=50, ge=1)
    total: int = Field(default=0, ge=0)
    results: list[Vulnerability] = Field(default_factory=list)
    summary: SummaryMetrics | None = None
    loading: bool = False
    error: str | None = None
    progress_bytes: int = Field(default=0, ge=0)
    total_bytes: int | None = None
    ingested_count: int = Field(default=0, ge=0)

    @property
    def page_count(self) -> int:
        """Number of pages for the current total (at least 1)."""
        return max(1, -(-self.total // self.page_size))
