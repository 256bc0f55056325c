# src/parley/services/__init__.py
"""Business logic services for the Parley application."""

from .conversations import ConversationService
from .directory import UserDirectory
from .errors import ConversationError, NotFoundError, UnauthorizedError, ValidationFailure
from .events import EventPublisher
from .messages import MessageService
from .realtime import RealtimeDispatcher

__all__ = [
    "ConversationService",
    "MessageService",
    "RealtimeDispatcher",
    "EventPublisher",
    "UserDirectory",
    "ConversationError",
    "NotFoundError",
    "UnauthorizedError",
    "ValidationFailure",
]
