# src/parley/models/__init__.py
"""SQLAlchemy models for the Parley service."""

from .conversation import Conversation, ConversationParticipant
from .message import Message

__all__ = [
    "Conversation", "ConversationParticipant",
    "Message",
]
