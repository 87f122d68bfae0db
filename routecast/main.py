"""FastAPI application setup for RouteCast."""

from contextlib import asynccontextmanager

from fastapi import FastAPI

from .api import DATA_MANAGER, router as api_router
from .config import settings


@asynccontextmanager
async def lifespan(_app: FastAPI):
    """Run the cache sweeper for the lifetime of the app."""
    DATA_MANAGER.start_sweeper(settings.cache_sweep_interval_seconds)
    yield
    DATA_MANAGER.stop_sweeper()


app = FastAPI(title="RouteCast", lifespan=lifespan)

# API routes
app.include_router(api_router, prefix="/v1")
