"""Vulnerability list and detail endpoints (filter, sort, paginate over the loaded dataset)."""

from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import JSONResponse

from vulnstream.api.deps import get_repository
from vulnstream.core.config import settings
from vulnstream.repositories.base import VulnerabilityRepository
from vulnstream.schemas.vulns import SORT_KEYS, Filters, SortSpec, Vulnerability, VulnsPageResponse

router = APIRouter()

DEFAULT_PAGE_LIMIT = 50
SORT_DIRECTIONS = frozenset({"asc", "desc"})


def _split_list(value: str | None) -> frozenset[str]:
    """Comma-separated query value -> set of non-empty entries."""
    if not value:
        return frozenset()
    return frozenset(part for part in value.split(",") if part)


def _sort_from_params(sort_key: str | None, sort_dir: str | None) -> SortSpec | None:
    if sort_dir is not None and sort_dir not in SORT_DIRECTIONS:
        raise HTTPException(
            status_code=422,
            detail=f"sortDir must be one of {sorted(SORT_DIRECTIONS)}.",
        )
    if not sort_key:
        return None
    if sort_key not in SORT_KEYS:
        raise HTTPException(
            status_code=422,
            detail=f"sortKey must be one of {sorted(SORT_KEYS)}.",
        )
    return SortSpec(key=sort_key, dir=sort_dir or "asc")


@router.get("", response_model=VulnsPageResponse)
async def list_vulns(
    offset: Annotated[int, Query(ge=0)] = 0,
    limit: Annotated[int, Query(ge=0, le=settings.REMOTE_PAGE_LIMIT)] = DEFAULT_PAGE_LIMIT,
    query: str = "",
    severity: str | None = None,
    risk_factors: Annotated[str | None, Query(alias="riskFactors")] = None,
    kai_status_exclude: Annotated[str | None, Query(alias="kaiStatusExclude")] = None,
    date_from: Annotated[str | None, Query(alias="dateFrom")] = None,
    date_to: Annotated[str | None, Query(alias="dateTo")] = None,
    sort_key: Annotated[str | None, Query(alias="sortKey")] = None,
    sort_dir: Annotated[str | None, Query(alias="sortDir")] = None,
    repository: VulnerabilityRepository = Depends(get_repository),
) -> VulnsPageResponse:
    """
    Return the total number of matching records and one page of them.

    List filters are comma-separated. limit=0 returns only the total.
    Unknown sortKey or sortDir -> 422.
    """
    sort = _sort_from_params(sort_key, sort_dir)
    filters = Filters(
        query=query,
        severity=_split_list(severity),
        risk_factors=_split_list(risk_factors),
        status_exclude=_split_list(kai_status_exclude),
        date_from=date_from or None,
        date_to=date_to or None,
    )
    total = await repository.count(filters)
    results = await repository.query(filters, offset, limit, sort) if limit > 0 else []
    return VulnsPageResponse(total=total, results=results)


@router.get("/{record_id:path}", response_model=Vulnerability)
async def get_vuln(
    record_id: str,
    repository: VulnerabilityRepository = Depends(get_repository),
) -> Vulnerability | JSONResponse:
    """Return one record by id, or 404 with {"error": "not found"}."""
    record = await repository.get(record_id)
    if record is None:
        return JSONResponse(status_code=404, content={"error": "not found"})
    return record
