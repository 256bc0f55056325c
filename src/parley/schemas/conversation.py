# src/parley/schemas/conversation.py
"""Conversation-related Pydantic schemas."""

import uuid
from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from .message import MessageResponse


class ConversationCreate(BaseModel):
    """Schema for starting a new conversation."""

    title: str | None = Field(
        None,
        description="Optional title; derived from participants when omitted",
    )
    participant_ids: list[uuid.UUID] = Field(
        default_factory=list,
        description="Users to include; the caller is always added",
    )
    initial_message: str | None = Field(None, description="Optional first message from the caller")


class ParticipantAdd(BaseModel):
    """Schema for adding a user to a conversation."""

    user_id: uuid.UUID


class MarkReadRequest(BaseModel):
    """Optional body for marking a conversation read up to a point in time."""

    read_timestamp: datetime | None = Field(
        None,
        description="Mark read up to this instant; defaults to now",
    )


class ParticipantResponse(BaseModel):
    """Public view of a conversation participant."""

    user_id: uuid.UUID
    username: str | None
    display_name: str | None
    avatar_url: str | None
    joined_at: datetime
    last_read_at: datetime | None
    is_online: bool = False

    model_config = ConfigDict(from_attributes=True)


class ConversationSummary(BaseModel):
    """Conversation as shown in a user's conversation list."""

    id: uuid.UUID
    title: str | None
    display_title: str
    participants: list[ParticipantResponse]
    last_message: MessageResponse | None
    unread_count: int
    created_at: datetime
    updated_at: datetime
    last_message_at: datetime | None


class ConversationDetail(BaseModel):
    """Conversation with its participants and most recent messages."""

    id: uuid.UUID
    title: str | None
    display_title: str
    participants: list[ParticipantResponse]
    messages: list[MessageResponse]
    created_at: datetime
    updated_at: datetime
    last_message_at: datetime | None


class ConversationListResponse(BaseModel):
    """Page of conversations plus the number of conversations with unread messages."""

    conversations: list[ConversationSummary]
    unread_count: int


class UnreadCountResponse(BaseModel):
    """Number of conversations with at least one unread message."""

    count: int


class SuccessResponse(BaseModel):
    """Boolean outcome of an idempotent mutation."""

    success: bool
