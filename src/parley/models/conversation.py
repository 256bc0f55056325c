# src/parley/models/conversation.py
"""SQLAlchemy models for conversations and their participants."""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import ForeignKey, Index, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from parley.db.session import Base
from parley.db.time import UTCDateTime, utcnow

if TYPE_CHECKING:
    from .message import Message


class Conversation(Base):
    """A thread shared by one or more participants.

    A null ``title`` means clients derive the display name from the
    participant list.
    """

    __tablename__ = "conversation"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    title: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow)
    last_message_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)

    participants: Mapped[list[ConversationParticipant]] = relationship(
        "ConversationParticipant",
        back_populates="conversation",
        cascade="all, delete-orphan",
        order_by="ConversationParticipant.joined_at",
    )
    messages: Mapped[list[Message]] = relationship(
        "Message",
        back_populates="conversation",
        cascade="all, delete-orphan",
    )

    def participant_for(self, user_id: uuid.UUID) -> ConversationParticipant | None:
        """Return the participant row for ``user_id`` if the user is a member."""
        for participant in self.participants:
            if participant.user_id == user_id:
                return participant
        return None


class ConversationParticipant(Base):
    """Membership of a user in a conversation.

    The username, display name and avatar are a snapshot taken when the user
    joined; they are not refreshed when the user's profile changes later.
    """

    __tablename__ = "conversation_participant"

    conversation_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("conversation.id", ondelete="CASCADE"),
        primary_key=True,
    )
    user_id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True)
    username: Mapped[str | None] = mapped_column(Text, nullable=True)
    display_name: Mapped[str | None] = mapped_column(Text, nullable=True)
    avatar_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    joined_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow)
    # Read cursor: messages created after this instant count as unread.
    last_read_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)

    conversation: Mapped[Conversation] = relationship(
        "Conversation",
        back_populates="participants",
    )

    __table_args__ = (
        Index("ix_conversation_participant_user_id", "user_id"),
    )

    def advance_read_cursor(self, timestamp: datetime) -> bool:
        """Move the read cursor to ``timestamp`` if that moves it forward.

        Returns:
            True if the cursor changed.
        """
        if self.last_read_at is not None and timestamp <= self.last_read_at:
            return False
        self.last_read_at = timestamp
        return True
