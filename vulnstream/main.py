"""Mirror API entrypoint. No business logic; only wiring, middleware, and dataset loading."""

from dotenv import load_dotenv

load_dotenv()

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from vulnstream.api.v1 import health
from vulnstream.api.v1 import router as v1_router
from vulnstream.core.config import get_settings, settings
from vulnstream.core.logging import configure_logging
from vulnstream.repositories.memory import MemoryRepository
from vulnstream.schemas.ingest import ItemsEvent, LogEvent
from vulnstream.services.ingestion import iter_ingest_events
from vulnstream.services.sources import IngestionError

logger = logging.getLogger(__name__)


async def load_dataset(source: str | None) -> MemoryRepository:
    """
    Stream source into a fresh memory repository.

    A missing or unreadable source leaves the repository empty; the server still starts.
    """
    repository = MemoryRepository()
    if not source:
        logger.info("DATA_FILE not set; serving an empty dataset")
        return repository
    try:
        async for event in iter_ingest_events(source, get_settings()):
            if isinstance(event, ItemsEvent):
                await repository.add_many(event.items)
            elif isinstance(event, LogEvent):
                logger.debug("%s", event.message)
    except IngestionError as e:
        logger.warning("Failed to load data file %s: %s", source, e.message)
        await repository.clear()
        return repository
    logger.info("Loaded %s vulnerabilities from %s", len(repository), source)
    return repository


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    configure_logging()
    app.state.repository = await load_dataset(settings.DATA_FILE)
    yield


app = FastAPI(
    title="vulnstream API",
    version="0.1.0",
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"] if settings.APP_ENV == "dev" else [],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(health.router, prefix="/health", tags=["health"])
app.include_router(v1_router, prefix=settings.API_V1_PREFIX)


@app.get("/")
def root() -> dict[str, str]:
    """Root route; minimal payload for discovery."""
    return {"message": "vulnstream API"}
