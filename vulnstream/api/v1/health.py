"""Health check endpoint reporting how many records the mirror serves."""

from fastapi import APIRouter, Depends

from vulnstream.api.deps import get_repository
from vulnstream.core.config import settings
from vulnstream.repositories.base import VulnerabilityRepository
from vulnstream.schemas.health import HealthResponse

router = APIRouter()


@router.get("", response_model=HealthResponse)
async def get_health(
    repository: VulnerabilityRepository = Depends(get_repository),
) -> HealthResponse:
    """
    Return service status and the number of loaded records.
    Used by load balancers and local tooling.
    """
    return HealthResponse(
        status="ok",
        environment=settings.APP_ENV,
        records=await repository.count(),
    )
