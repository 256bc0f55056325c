"""Mapping from ORM entities to API response schemas."""
from __future__ import annotations

import uuid
from collections.abc import Callable, Sequence

from parley.models import Conversation, ConversationParticipant, Message
from parley.schemas.conversation import (
    ConversationDetail,
    ConversationSummary,
    ParticipantResponse,
)
from parley.schemas.message import MessageResponse

DEFAULT_CONVERSATION_TITLE = "Conversation"


def to_message_out(message: Message) -> MessageResponse:
    """Convert a Message ORM instance to an API schema."""
    return MessageResponse(
        id=message.id,
        conversation_id=message.conversation_id,
        sender_id=message.sender_id,
        sender_username=message.sender_username,
        sender_display_name=message.sender_display_name,
        sender_avatar_url=message.sender_avatar_url,
        content=message.content,
        attachment_urls=list(message.attachment_urls or []),
        is_read=message.is_read,
        created_at=message.created_at,
    )


def to_participant_out(
    participant: ConversationParticipant,
    *,
    online: bool = False,
) -> ParticipantResponse:
    """Convert a participant row to its public view."""
    return ParticipantResponse(
        user_id=participant.user_id,
        username=participant.username,
        display_name=participant.display_name,
        avatar_url=participant.avatar_url,
        joined_at=participant.joined_at,
        last_read_at=participant.last_read_at,
        is_online=online,
    )


def _participant_label(participant: ConversationParticipant) -> str:
    return participant.display_name or participant.username or str(participant.user_id)


def display_title(conversation: Conversation, viewer_id: uuid.UUID) -> str:
    """Return the conversation title, deriving one from the other participants if unset."""
    if conversation.title:
        return conversation.title
    others = [p for p in conversation.participants if p.user_id != viewer_id]
    if others:
        return ", ".join(_participant_label(p) for p in others)
    return DEFAULT_CONVERSATION_TITLE


def _participants_out(
    conversation: Conversation,
    is_online: Callable[[uuid.UUID], bool],
) -> list[ParticipantResponse]:
    return [
        to_participant_out(participant, online=is_online(participant.user_id))
        for participant in conversation.participants
    ]


def to_summary_out(
    conversation: Conversation,
    *,
    viewer_id: uuid.UUID,
    last_message: Message | None,
    unread_count: int,
    is_online: Callable[[uuid.UUID], bool],
) -> ConversationSummary:
    """Shape a conversation for the viewer's conversation list."""
    return ConversationSummary(
        id=conversation.id,
        title=conversation.title,
        display_title=display_title(conversation, viewer_id),
        participants=_participants_out(conversation, is_online),
        last_message=to_message_out(last_message) if last_message is not None else None,
        unread_count=unread_count,
        created_at=conversation.created_at,
        updated_at=conversation.updated_at,
        last_message_at=conversation.last_message_at,
    )


def to_detail_out(
    conversation: Conversation,
    *,
    viewer_id: uuid.UUID,
    messages: Sequence[Message],
    is_online: Callable[[uuid.UUID], bool],
) -> ConversationDetail:
    """Shape a conversation with its recent messages (oldest first)."""
    return ConversationDetail(
        id=conversation.id,
        title=conversation.title,
        display_title=display_title(conversation, viewer_id),
        participants=_participants_out(conversation, is_online),
        messages=[to_message_out(message) for message in messages],
        created_at=conversation.created_at,
        updated_at=conversation.updated_at,
        last_message_at=conversation.last_message_at,
    )
