"""FastAPI application for the email import service."""

from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI

from email_import.clients.postgres_client import PostgresClient
from rate_retry.queue_manager import RateLimitQueueManager

from .config import get_settings
from .routes.health import router as health_router
from .routes.imports import router as imports_router
from .routes.rate_retry import router as rate_retry_router

logger = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Initialize persistent clients at startup, clean up at shutdown."""
    settings = get_settings()

    logger.info("lifespan.startup")

    # Postgres: staging and email store
    postgres = PostgresClient(settings.DATABASE_URL)
    await postgres.connect()
    if await postgres.verify_connectivity():
        logger.info("lifespan.postgres_ready")
    else:
        logger.warning("lifespan.postgres_connectivity_failed")

    # Redis: rate-retry queue
    rate_retry_queue = RateLimitQueueManager(redis_url=settings.REDIS_URL)

    # Store on app.state for request handlers
    app.state.postgres = postgres
    app.state.rate_retry_queue = rate_retry_queue

    logger.info("lifespan.ready")
    yield

    # Shutdown
    logger.info("lifespan.shutdown")
    await rate_retry_queue.close()
    await postgres.close()


app = FastAPI(
    title="email-import",
    description="Transactional email import pipeline and AI rate-retry queue",
    lifespan=lifespan,
)

app.include_router(health_router)
app.include_router(imports_router)
app.include_router(rate_retry_router)
