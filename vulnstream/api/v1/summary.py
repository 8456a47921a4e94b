"""Summary endpoint: aggregate metrics over the full dataset."""

from fastapi import APIRouter, Depends

from vulnstream.api.deps import get_repository
from vulnstream.repositories.base import VulnerabilityRepository
from vulnstream.schemas.vulns import SummaryMetrics

router = APIRouter()


@router.get("", response_model=SummaryMetrics)
async def get_summary(
    repository: VulnerabilityRepository = Depends(get_repository),
) -> SummaryMetrics:
    return await repository.summarize()
