"""
WallpaperVerse - FastAPI Backend
Main application entry point with health check and API routing.
"""

import asyncio
import logging
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from contextlib import asynccontextmanager

from config import settings, validate_security_settings
from database import engine, Base
import models  # noqa: F401
from routers import (
    health,
    billing,
    generations,
    wallpapers,
    ownership,
)
from services.dispatcher import run_dispatch_loop
from services.runtime import build_runtime

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler for startup/shutdown."""
    # Startup
    print("🚀 Starting WallpaperVerse API...")
    for warning in validate_security_settings():
        logger.warning("Security configuration: %s", warning)
    if settings.AUTO_CREATE_DB_SCHEMA:
        try:
            async with engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)
            print("🗄️ Database schema verified.")
        except Exception as e:
            print(f"⚠️ Database bootstrap skipped: {e}")

    runtime = build_runtime()
    app.state.runtime = runtime
    try:
        recovered = await runtime.dispatcher.recover_stalled(settings.GENERATION_STALL_MINUTES)
        if recovered:
            print(f"♻️ Recovered {recovered} stalled generations after startup.")
    except Exception as exc:
        print(f"⚠️ Stalled generation recovery skipped: {exc}")

    worker_task = None
    if settings.GENERATION_WORKER_ENABLED and int(settings.GENERATION_WORKER_INTERVAL_SECONDS) > 0:
        worker_task = asyncio.create_task(
            run_dispatch_loop(runtime.dispatcher, settings.GENERATION_WORKER_INTERVAL_SECONDS)
        )
        print(
            "📅 Generation worker loop enabled "
            f"(every {int(settings.GENERATION_WORKER_INTERVAL_SECONDS)}s, "
            f"batch {int(settings.GENERATION_BATCH_SIZE)})."
        )
    yield
    # Shutdown
    if worker_task is not None:
        worker_task.cancel()
        try:
            await worker_task
        except asyncio.CancelledError:
            pass
    await runtime.aclose()
    app.state.runtime = None
    print("👋 Shutting down API...")


app = FastAPI(
    title="WallpaperVerse API",
    description="Spend credits on AI-generated and catalog wallpapers",
    version="0.1.0",
    lifespan=lifespan,
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(health.router, tags=["Health"])
app.include_router(billing.router, prefix="/billing", tags=["Billing"])
app.include_router(generations.router, prefix="/generations", tags=["Generations"])
app.include_router(wallpapers.router, prefix="/wallpapers", tags=["Wallpapers"])
app.include_router(ownership.router, prefix="/ownership", tags=["Ownership"])


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "name": "WallpaperVerse API",
        "version": "0.1.0",
        "status": "running"
    }
