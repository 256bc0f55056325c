# src/parley/models/message.py
"""Models describing messages posted to conversations."""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import JSON, Boolean, ForeignKey, Index, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from parley.db.session import Base
from parley.db.time import UTCDateTime, utcnow

if TYPE_CHECKING:
    from .conversation import Conversation


class Message(Base):
    """A message appended to a conversation.

    Content is never edited; a message is only ever hard-deleted by its sender.
    """

    __tablename__ = "message"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    conversation_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("conversation.id", ondelete="CASCADE"),
        nullable=False,
    )

    sender_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    # Sender display snapshot copied from the participant row at send time.
    sender_username: Mapped[str | None] = mapped_column(Text, nullable=True)
    sender_display_name: Mapped[str | None] = mapped_column(Text, nullable=True)
    sender_avatar_url: Mapped[str | None] = mapped_column(Text, nullable=True)

    content: Mapped[str] = mapped_column(Text, nullable=False)
    attachment_urls: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)

    # Legacy per-message flag; unread counts use participant read cursors.
    is_read: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow)

    conversation: Mapped[Conversation] = relationship("Conversation", back_populates="messages")

    __table_args__ = (
        Index("ix_message_conversation_created", "conversation_id", "created_at"),
    )
