"""API v1 routes."""

from fastapi import APIRouter

from vulnstream.api.v1 import summary, vulns

router = APIRouter()
router.include_router(vulns.router, prefix="/vulns", tags=["vulns"])
router.include_router(summary.router, prefix="/summary", tags=["summary"])
