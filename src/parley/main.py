# src/parley/main.py
"""Main entry point for the Parley application."""

from __future__ import annotations

import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from parley.api import ws
from parley.api.v1 import messages_router, system_router
from parley.core.settings import settings
from parley.db.session import create_tables
from parley.services.delivery import DeliveryRouter
from parley.services.presence import PresenceRegistry
from parley.services.projector import ConversationProjector
from parley.services.scheduler import LifecycleScheduler

logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger(__name__)

# Initialize FastAPI app
app = FastAPI(
    title="Parley API",
    description="Chat delivery backend with scheduled and self-destructing messages",
    version=settings.app_version,
)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=settings.cors_allow_credentials,
    allow_methods=settings.cors_allow_methods,
    allow_headers=settings.cors_allow_headers,
)

# Include API routers
app.include_router(messages_router, prefix="/api/v1")
app.include_router(system_router, prefix="/api/v1")
app.include_router(ws.router)

# Engine components live on the app so tests can inspect or replace them.
app.state.presence = PresenceRegistry()
app.state.router = DeliveryRouter(app.state.presence, ConversationProjector())
app.state.scheduler = LifecycleScheduler(app.state.router)


@app.on_event("startup")
async def on_startup() -> None:
    if settings.auto_create_tables:
        create_tables()
    if settings.scheduler_enabled:
        app.state.router.timers = app.state.scheduler
        await app.state.scheduler.start()
    else:
        logger.info("Lifecycle scheduler disabled")


@app.on_event("shutdown")
async def on_shutdown() -> None:
    app.state.router.timers = None
    await app.state.scheduler.stop()


@app.get("/health")
async def health_check() -> dict[str, str]:
    """Health check endpoint to verify the service is running."""
    return {"status": "ok"}


@app.get("/")
async def root() -> dict[str, str]:
    """Root endpoint with basic information about the API."""
    return {
        "name": settings.app_name,
        "version": settings.app_version,
        "docs": "/docs",
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("parley.main:app", host="0.0.0.0", port=8000, reload=settings.debug)
