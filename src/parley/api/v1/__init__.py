# src/parley/api/v1/__init__.py
"""Version 1 API endpoints."""

from .endpoints import conversations_router, messages_router, realtime_router

__all__ = [
    "conversations_router",
    "messages_router",
    "realtime_router",
]
