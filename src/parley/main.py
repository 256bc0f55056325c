# src/parley/main.py
"""Main entry point for the Parley application."""

from __future__ import annotations

import logging
from typing import Any

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware

from parley.api.v1 import conversations_router, messages_router, realtime_router
from parley.core.logging import configure_logging
from parley.core.settings import settings
from parley.services.events import get_event_publisher

logger = logging.getLogger(__name__)

# Initialize FastAPI app
app = FastAPI(
    title=f"{settings.app_name} API",
    description="Conversations and direct messages with real-time delivery",
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

# Add GZip middleware for compression
app.add_middleware(GZipMiddleware)

# Include API routers
app.include_router(conversations_router, prefix="/api/v1")
app.include_router(messages_router, prefix="/api/v1")
app.include_router(realtime_router, prefix="/api/v1")


@app.on_event("startup")
async def on_startup() -> None:
    configure_logging(settings.log_level)
    publisher = get_event_publisher()
    if publisher.enabled:
        logger.info("Publishing events to topic %s", settings.event_bus_topic)
    else:
        logger.info("Event bus not configured; domain events will not be published")


@app.on_event("shutdown")
async def on_shutdown() -> None:
    await get_event_publisher().close()


@app.get("/health")
async def health_check() -> dict[str, Any]:
    """Health check endpoint to verify the service is running."""
    return {
        "status": "ok",
        "event_bus": get_event_publisher().get_circuit_breaker_status(),
    }


@app.get("/")
async def root() -> dict[str, str]:
    """Root endpoint with basic information about the API."""
    return {
        "name": f"{settings.app_name} API",
        "version": settings.app_version,
        "description": "Conversations and direct messages with real-time delivery",
        "docs": "/docs",
        "redoc": "/redoc",
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("parley.main:app", host="0.0.0.0", port=8000, reload=settings.debug)
