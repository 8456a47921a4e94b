"""FastAPI dependencies shared by the v1 routers."""

from fastapi import HTTPException, Request

from vulnstream.repositories.base import VulnerabilityRepository


def get_repository(request: Request) -> VulnerabilityRepository:
    """Dataset loaded at startup; 503 until the lifespan hook has stored it."""
    repository = getattr(request.app.state, "repository", None)
    if repository is None:
        raise HTTPException(status_code=503, detail="Dataset is not loaded yet.")
    return repository
