"""Participant membership checks shared by every conversation operation."""

from __future__ import annotations

import uuid

from sqlalchemy import exists, select
from sqlalchemy.orm import Session

from parley.models import ConversationParticipant

from .errors import UnauthorizedError


def is_participant(db: Session, conversation_id: uuid.UUID, user_id: uuid.UUID) -> bool:
    """Return True if ``user_id`` is a participant of ``conversation_id``."""
    stmt = select(
        exists().where(
            ConversationParticipant.conversation_id == conversation_id,
            ConversationParticipant.user_id == user_id,
        )
    )
    return bool(db.scalar(stmt))


def get_participant(
    db: Session,
    conversation_id: uuid.UUID,
    user_id: uuid.UUID,
) -> ConversationParticipant | None:
    """Return the participant row for the pair, if any."""
    return db.get(ConversationParticipant, (conversation_id, user_id))


def require_participant(
    db: Session,
    conversation_id: uuid.UUID,
    user_id: uuid.UUID,
) -> ConversationParticipant:
    """Return the caller's participant row or raise.

    Raises:
        UnauthorizedError: If the user is not a participant.
    """
    participant = get_participant(db, conversation_id, user_id)
    if participant is None:
        raise UnauthorizedError("You are not a participant in this conversation")
    return participant
