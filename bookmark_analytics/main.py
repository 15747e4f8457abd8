"""
FastAPI Application — entry point.
"""

import asyncio
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from bookmark_analytics import __version__
from bookmark_analytics.config import settings
from bookmark_analytics.errors import StorageError
from bookmark_analytics.routes import router
from bookmark_analytics.services.analytics import prune_expired
from bookmark_analytics.storage import Backend, select_backend

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s  %(levelname)-8s  %(name)s  %(message)s",
)

logger = logging.getLogger(__name__)


async def periodic_prune(backend: Backend, interval: int = 3600) -> None:
    """Drop expired daily/weekly/monthly buckets every ``interval`` seconds."""
    while True:
        try:
            await asyncio.sleep(interval)
            await prune_expired(
                backend,
                daily_days=settings.daily_retention_days,
                weekly_buckets=settings.weekly_retention_buckets,
                monthly_buckets=settings.monthly_retention_buckets,
            )
        except asyncio.CancelledError:
            break
        except Exception as e:
            logger.error("Analytics prune error: %s", e)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup / shutdown hook."""
    logger.info("🚀 Starting Bookmark Analytics API v%s", __version__)

    backend = select_backend(settings)
    try:
        await backend.prepare()
        logger.info("✅ Storage ready (%s)", backend.name)
    except StorageError as e:
        # keep the selected backend; requests will surface the failure
        logger.error("❌ Storage setup failed for %s backend: %s", backend.name, e)
    app.state.backend = backend

    prune_task = None
    if settings.prune_interval > 0:
        prune_task = asyncio.create_task(periodic_prune(backend, interval=settings.prune_interval))

    yield

    # Shutdown
    if prune_task:
        prune_task.cancel()
        try:
            await prune_task
        except asyncio.CancelledError:
            pass
    await backend.close()
    logger.info("👋 Shutdown complete")


app = FastAPI(
    title="Bookmark Analytics API",
    description="Visit and time-spent counters for bookmarks, bucketed by day, week and month.",
    version=__version__,
    lifespan=lifespan,
)

# CORS: the dashboard and browser extension call from other origins
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(router, prefix="/api/v1")


@app.get("/", include_in_schema=False)
async def root():
    return {
        "service": "Bookmark Analytics API",
        "version": __version__,
        "docs": "/docs",
    }
