"""Message lifecycle: sending, paging, read cursors and deletion."""

from __future__ import annotations

import logging
import uuid
from collections.abc import Sequence

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from parley.core.settings import settings
from parley.db.time import TIMESTAMP_RESOLUTION, utcnow
from parley.models import Conversation, ConversationParticipant, Message
from parley.schemas.message import MessageResponse
from parley.services import events
from parley.services.events import EventPublisher
from parley.services.membership import require_participant
from parley.services.presenters import to_message_out
from parley.services.realtime import (
    EVENT_MESSAGE_DELETED,
    EVENT_NEW_MESSAGE,
    EVENT_RECEIVE_MESSAGE,
    RealtimeDispatcher,
)

from .errors import NotFoundError, UnauthorizedError, ValidationFailure

# Configure logger for this module
logger = logging.getLogger(__name__)


def validate_page(page: int, page_size: int) -> tuple[int, int]:
    """Check 1-based paging arguments and cap the page size.

    Raises:
        ValidationFailure: If ``page`` or ``page_size`` is below 1.
    """
    if page < 1:
        raise ValidationFailure("page must be at least 1")
    if page_size < 1:
        raise ValidationFailure("page_size must be at least 1")
    return page, min(page_size, settings.max_page_size)


class MessageService:
    """Appends messages and maintains the read cursors they imply."""

    def __init__(
        self,
        db: Session,
        dispatcher: RealtimeDispatcher,
        publisher: EventPublisher,
    ) -> None:
        self.db = db
        self.dispatcher = dispatcher
        self.publisher = publisher

    def _get_message(self, message_id: uuid.UUID) -> Message:
        message = self.db.get(Message, message_id)
        if message is None:
            raise NotFoundError("Message not found")
        return message

    def append_message(
        self,
        *,
        sender_id: uuid.UUID,
        conversation_id: uuid.UUID,
        content: str,
        attachment_urls: Sequence[str] = (),
    ) -> Message:
        """Stage a new message and its side effects without committing.

        The message, the conversation's activity timestamps and the sender's
        read cursor are flushed together so the caller can commit them as one
        unit.

        Raises:
            ValidationFailure: If the content is blank.
            NotFoundError: If the conversation does not exist.
            UnauthorizedError: If the sender is not a participant.
        """
        if not content or not content.strip():
            raise ValidationFailure("Message content must not be empty")

        # Row lock serializes concurrent senders on last_message_at.
        conversation = self.db.get(
            Conversation,
            conversation_id,
            with_for_update=True,
            populate_existing=True,
        )
        if conversation is None:
            raise NotFoundError("Conversation not found")
        sender = require_participant(self.db, conversation_id, sender_id)

        created_at = utcnow()
        # Keep created_at strictly increasing within the conversation.
        if conversation.last_message_at is not None and created_at <= conversation.last_message_at:
            created_at = conversation.last_message_at + TIMESTAMP_RESOLUTION

        message = Message(
            id=uuid.uuid4(),
            conversation_id=conversation_id,
            sender_id=sender_id,
            sender_username=sender.username,
            sender_display_name=sender.display_name,
            sender_avatar_url=sender.avatar_url,
            content=content,
            attachment_urls=list(attachment_urls),
            is_read=False,
            created_at=created_at,
        )
        self.db.add(message)

        conversation.last_message_at = created_at
        conversation.updated_at = created_at
        # Sending implies having read everything up to this message.
        sender.advance_read_cursor(created_at)

        self.db.flush()
        return message

    async def deliver_new_message(self, message: MessageResponse) -> None:
        """Push a committed message to live viewers and to the other participants."""
        await self.dispatcher.send_to_conversation(
            message.conversation_id, EVENT_RECEIVE_MESSAGE, message
        )
        recipients = self.db.scalars(
            select(ConversationParticipant.user_id).where(
                ConversationParticipant.conversation_id == message.conversation_id,
                ConversationParticipant.user_id != message.sender_id,
            )
        ).all()
        await self.dispatcher.send_to_users(
            recipients, EVENT_NEW_MESSAGE, message.conversation_id, message
        )

    async def send_message(
        self,
        sender_id: uuid.UUID,
        conversation_id: uuid.UUID,
        content: str,
        attachment_urls: Sequence[str] = (),
    ) -> MessageResponse:
        """Persist a message, then push it to connected clients.

        Push and event publication happen after the commit; their failures are
        logged and never undo the stored message.
        """
        message = self.append_message(
            sender_id=sender_id,
            conversation_id=conversation_id,
            content=content,
            attachment_urls=attachment_urls,
        )
        self.db.commit()
        message_out = to_message_out(message)
        logger.info(
            "User %s sent message %s to conversation %s",
            sender_id,
            message_out.id,
            conversation_id,
        )

        await self.deliver_new_message(message_out)
        await self.publisher.publish_quietly(
            events.MESSAGE_SENT,
            {
                "message_id": str(message_out.id),
                "conversation_id": str(conversation_id),
                "sender_id": str(sender_id),
                "created_at": message_out.created_at.isoformat(),
            },
            partition_key=str(conversation_id),
        )
        return message_out

    def get_message(self, message_id: uuid.UUID, user_id: uuid.UUID) -> MessageResponse:
        """Return one message visible to ``user_id``."""
        message = self._get_message(message_id)
        require_participant(self.db, message.conversation_id, user_id)
        return to_message_out(message)

    def get_conversation_messages(
        self,
        conversation_id: uuid.UUID,
        user_id: uuid.UUID,
        page: int = 1,
        page_size: int | None = None,
    ) -> list[MessageResponse]:
        """Return one page of messages in chronological order.

        Page 1 holds the most recent messages; within a page messages are
        returned oldest first for direct rendering.
        """
        page, page_size = validate_page(page, page_size or settings.message_page_size)
        if self.db.get(Conversation, conversation_id) is None:
            raise NotFoundError("Conversation not found")
        require_participant(self.db, conversation_id, user_id)

        newest_first = self.db.scalars(
            select(Message)
            .where(Message.conversation_id == conversation_id)
            .order_by(Message.created_at.desc())
            .offset((page - 1) * page_size)
            .limit(page_size)
        ).all()
        return [to_message_out(message) for message in reversed(newest_first)]

    def recent_messages(self, conversation_id: uuid.UUID, limit: int) -> list[Message]:
        """Return the latest ``limit`` messages, oldest first."""
        newest_first = self.db.scalars(
            select(Message)
            .where(Message.conversation_id == conversation_id)
            .order_by(Message.created_at.desc())
            .limit(limit)
        ).all()
        return list(reversed(newest_first))

    def mark_message_read(self, message_id: uuid.UUID, user_id: uuid.UUID) -> bool:
        """Advance the reader's cursor up to ``message_id``.

        Reading one's own message is a no-op. The cursor never moves backward.
        """
        message = self._get_message(message_id)
        participant = require_participant(self.db, message.conversation_id, user_id)
        if message.sender_id == user_id:
            return True

        participant.advance_read_cursor(message.created_at)
        message.is_read = True
        self.db.commit()
        return True

    async def delete_message(self, message_id: uuid.UUID, user_id: uuid.UUID) -> bool:
        """Hard-delete a message; only its sender may do so.

        Raises:
            NotFoundError: If the message does not exist.
            UnauthorizedError: If ``user_id`` did not send the message.
        """
        message = self._get_message(message_id)
        if message.sender_id != user_id:
            raise UnauthorizedError("You can only delete your own messages")

        conversation_id = message.conversation_id
        deleted_at = message.created_at
        self.db.delete(message)
        self.db.flush()

        conversation = self.db.get(Conversation, conversation_id)
        if conversation is not None and conversation.last_message_at == deleted_at:
            conversation.last_message_at = self.db.scalar(
                select(func.max(Message.created_at)).where(
                    Message.conversation_id == conversation_id
                )
            )
        self.db.commit()
        logger.info("User %s deleted message %s", user_id, message_id)

        await self.dispatcher.send_to_conversation(
            conversation_id, EVENT_MESSAGE_DELETED, message_id
        )
        await self.publisher.publish_quietly(
            events.MESSAGE_DELETED,
            {
                "message_id": str(message_id),
                "conversation_id": str(conversation_id),
                "sender_id": str(user_id),
            },
            partition_key=str(conversation_id),
        )
        return True
