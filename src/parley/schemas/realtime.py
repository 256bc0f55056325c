"""Frames exchanged over the real-time WebSocket channel."""

import uuid
from typing import Annotated, Any, Literal

from pydantic import BaseModel, Field


class JoinConversationFrame(BaseModel):
    """Client opened a conversation view."""

    type: Literal["join_conversation"]
    conversation_id: uuid.UUID


class LeaveConversationFrame(BaseModel):
    """Client navigated away from a conversation view."""

    type: Literal["leave_conversation"]
    conversation_id: uuid.UUID


class TypingFrame(BaseModel):
    """Client is typing in a conversation."""

    type: Literal["typing"]
    conversation_id: uuid.UUID


class SendMessageFrame(BaseModel):
    """Client posts a message over the live channel instead of REST."""

    type: Literal["send_message"]
    conversation_id: uuid.UUID
    content: str
    attachment_urls: list[str] = Field(default_factory=list)


ClientFrame = Annotated[
    JoinConversationFrame | LeaveConversationFrame | TypingFrame | SendMessageFrame,
    Field(discriminator="type"),
]


class ServerEvent(BaseModel):
    """Event pushed to a client: a named event plus positional arguments."""

    event: str
    args: list[Any] = Field(default_factory=list)
