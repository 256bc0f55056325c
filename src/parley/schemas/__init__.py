# src/parley/schemas/__init__.py
"""
Pydantic schemas for API request/response models.

These schemas define the structure of API data for serialization and validation.
"""

from .conversation import (
    ConversationCreate,
    ConversationDetail,
    ConversationListResponse,
    ConversationSummary,
    MarkReadRequest,
    ParticipantAdd,
    ParticipantResponse,
    SuccessResponse,
    UnreadCountResponse,
)
from .message import MessageCreate, MessageResponse
from .realtime import ClientFrame, ServerEvent
from .user import UserIdentity, UserSnapshot

__all__ = [
    "ConversationCreate", "ConversationDetail", "ConversationListResponse",
    "ConversationSummary", "MarkReadRequest", "ParticipantAdd",
    "ParticipantResponse", "SuccessResponse", "UnreadCountResponse",
    "MessageCreate", "MessageResponse",
    "ClientFrame", "ServerEvent",
    "UserIdentity", "UserSnapshot",
]
