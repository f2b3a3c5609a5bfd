"""
PipeTrak Milestones - Main Application Entry Point

FastAPI application exposing the milestone engine.
"""

import logging
import sys
from contextlib import asynccontextmanager

from fastapi import FastAPI

from config import settings
from .cache.redis_client import close_redis
from .database import init_database, close_database, get_database
from .web.routes import router as milestone_router

# Configure logging
logging.basicConfig(
    level=logging.DEBUG if settings.debug else logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    handlers=[
        logging.StreamHandler(sys.stdout)
    ]
)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler for startup and shutdown."""
    logger.info("Starting PipeTrak milestone engine...")

    try:
        if await init_database():
            logger.info("PostgreSQL database initialized")
        else:
            logger.warning("PostgreSQL not configured or failed to initialize")
    except Exception as e:
        logger.warning(f"PostgreSQL init failed: {e}")

    yield

    logger.info("Shutting down...")
    await close_redis()
    await close_database()


app = FastAPI(
    title=settings.app_name,
    version="0.1.0",
    lifespan=lifespan
)

app.include_router(milestone_router)


@app.get("/")
async def root():
    """Root endpoint - health check."""
    return {
        "status": "healthy",
        "service": settings.app_name,
        "version": "0.1.0"
    }


@app.get("/health/db")
async def database_health():
    """Database connectivity and pool status."""
    return await get_database().health_check()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("pipetrak.main:app", host=settings.host, port=settings.port)
