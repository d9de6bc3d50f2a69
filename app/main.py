from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from app.core.config import get_settings
from app.core.logging import configure_logging, request_id_middleware
from app.db import base as db_base
from app.db.init import sanitize_db_url
from app.reconciliation.router import router as reconciliation_router

logger = logging.getLogger(__name__)

settings = get_settings()
configure_logging(settings.ENV, settings.DEBUG)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage application lifespan events."""
    # Startup
    logger.info(f"Starting {settings.APP_NAME} (env: {settings.ENV})")
    logger.info(
        f"Database: {sanitize_db_url(settings.DATABASE_URL or db_base.DEFAULT_DATABASE_URL)}"
    )
    logger.info(
        f"Reconciliation: chunk_size={settings.RECONCILIATION_CHUNK_SIZE}, "
        f"partial_match_variance={settings.PARTIAL_MATCH_VARIANCE}"
    )

    yield

    # Shutdown
    logger.info(f"Shutting down {settings.APP_NAME}...")
    await db_base.engine.dispose()


app = FastAPI(title=settings.APP_NAME, version="0.1.0", lifespan=lifespan)
app.middleware("http")(request_id_middleware)
app.include_router(reconciliation_router)


@app.get("/")
def health_check():
    logger.debug("Health check endpoint called")
    return {"status": "ok"}


@app.get("/healthz")
def healthz():
    logger.debug(f"Healthz endpoint called (env: {settings.ENV})")
    return {"status": "healthy", "env": settings.ENV}
