# src/parley/schemas/message.py
"""Message-related Pydantic schemas."""

import uuid
from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field


class MessageCreate(BaseModel):
    """Schema for posting a message to a conversation."""

    content: str = Field(..., description="Message text")
    attachment_urls: list[str] = Field(
        default_factory=list,
        description="Ordered URLs of attachments stored elsewhere",
    )


class MessageResponse(BaseModel):
    """Schema for message information returned by the API and push events."""

    id: uuid.UUID
    conversation_id: uuid.UUID
    sender_id: uuid.UUID
    sender_username: str | None
    sender_display_name: str | None
    sender_avatar_url: str | None
    content: str
    attachment_urls: list[str]
    is_read: bool
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)
