"""Conversation lifecycle: creation, listing, membership and read state."""

from __future__ import annotations

import logging
import uuid
from collections.abc import Sequence
from datetime import datetime

from sqlalchemy import exists, func, or_, select
from sqlalchemy.orm import Session, selectinload

from parley.core.settings import settings
from parley.db.time import as_utc, utcnow
from parley.models import Conversation, ConversationParticipant, Message
from parley.schemas.conversation import (
    ConversationDetail,
    ConversationSummary,
    ParticipantResponse,
)
from parley.schemas.user import UserIdentity, UserSnapshot
from parley.services import events
from parley.services.directory import UserDirectory
from parley.services.events import EventPublisher
from parley.services.membership import require_participant
from parley.services.messages import MessageService, validate_page
from parley.services.presenters import (
    to_detail_out,
    to_message_out,
    to_participant_out,
    to_summary_out,
)
from parley.services.realtime import (
    EVENT_NEW_CONVERSATION,
    EVENT_PARTICIPANT_ADDED,
    EVENT_PARTICIPANT_REMOVED,
    EVENT_REMOVED_FROM_CONVERSATION,
    RealtimeDispatcher,
)

from .errors import NotFoundError, ValidationFailure

# Configure logger for this module
logger = logging.getLogger(__name__)


class ConversationService:
    """Creates conversations and manages who is in them."""

    def __init__(
        self,
        db: Session,
        dispatcher: RealtimeDispatcher,
        publisher: EventPublisher,
        directory: UserDirectory,
        messages: MessageService | None = None,
    ) -> None:
        self.db = db
        self.dispatcher = dispatcher
        self.publisher = publisher
        self.directory = directory
        self.messages = messages or MessageService(db, dispatcher, publisher)

    def _get_conversation(self, conversation_id: uuid.UUID) -> Conversation:
        conversation = self.db.get(Conversation, conversation_id)
        if conversation is None:
            raise NotFoundError("Conversation not found")
        return conversation

    def _latest_message(self, conversation_id: uuid.UUID) -> Message | None:
        return self.db.scalars(
            select(Message)
            .where(Message.conversation_id == conversation_id)
            .order_by(Message.created_at.desc())
            .limit(1)
        ).first()

    def unread_count(self, participant: ConversationParticipant) -> int:
        """Count messages from others created after the participant's read cursor.

        A participant who has never read anything has every message from
        others unread.
        """
        stmt = (
            select(func.count())
            .select_from(Message)
            .where(
                Message.conversation_id == participant.conversation_id,
                Message.sender_id != participant.user_id,
            )
        )
        if participant.last_read_at is not None:
            stmt = stmt.where(Message.created_at > participant.last_read_at)
        return int(self.db.scalar(stmt) or 0)

    def _summarize(self, conversation: Conversation, viewer_id: uuid.UUID) -> ConversationSummary:
        participant = conversation.participant_for(viewer_id)
        unread = self.unread_count(participant) if participant is not None else 0
        return to_summary_out(
            conversation,
            viewer_id=viewer_id,
            last_message=self._latest_message(conversation.id),
            unread_count=unread,
            is_online=self.dispatcher.is_online,
        )

    async def create_conversation(
        self,
        creator: UserIdentity,
        participant_ids: Sequence[uuid.UUID],
        title: str | None = None,
        initial_message: str | None = None,
    ) -> ConversationSummary:
        """Create a conversation with the creator plus ``participant_ids``.

        Duplicate ids are collapsed and the creator is always included. A
        non-blank ``initial_message`` is stored in the same transaction.

        Raises:
            ValidationFailure: If no participants were given.
        """
        if not participant_ids:
            raise ValidationFailure("At least one participant is required")

        member_ids = list(dict.fromkeys([creator.user_id, *participant_ids]))
        snapshots = await self.directory.lookup(
            user_id for user_id in member_ids if user_id != creator.user_id
        )
        snapshots[creator.user_id] = UserSnapshot.from_identity(creator)

        now = utcnow()
        conversation = Conversation(
            id=uuid.uuid4(),
            title=title.strip() if title and title.strip() else None,
            created_at=now,
            updated_at=now,
        )
        for user_id in member_ids:
            snapshot = snapshots.get(user_id) or UserSnapshot()
            conversation.participants.append(
                ConversationParticipant(
                    user_id=user_id,
                    username=snapshot.username,
                    display_name=snapshot.display_name,
                    avatar_url=snapshot.avatar_url,
                    joined_at=now,
                )
            )
        self.db.add(conversation)
        self.db.flush()

        first_message = None
        if initial_message and initial_message.strip():
            first_message = self.messages.append_message(
                sender_id=creator.user_id,
                conversation_id=conversation.id,
                content=initial_message,
            )
        self.db.commit()
        logger.info(
            "User %s created conversation %s with %d participants",
            creator.user_id,
            conversation.id,
            len(member_ids),
        )

        if first_message is not None:
            await self.messages.deliver_new_message(to_message_out(first_message))
        await self.dispatcher.send_to_users(member_ids, EVENT_NEW_CONVERSATION, conversation.id)
        await self.publisher.publish_quietly(
            events.CONVERSATION_CREATED,
            {
                "conversation_id": str(conversation.id),
                "created_by": str(creator.user_id),
                "participant_ids": [str(user_id) for user_id in member_ids],
            },
            partition_key=str(conversation.id),
        )
        return self._summarize(conversation, creator.user_id)

    def get_conversation_detail(
        self,
        conversation_id: uuid.UUID,
        user_id: uuid.UUID,
        message_limit: int | None = None,
    ) -> ConversationDetail:
        """Return a conversation with its most recent messages, oldest first."""
        conversation = self._get_conversation(conversation_id)
        require_participant(self.db, conversation_id, user_id)
        recent = self.messages.recent_messages(
            conversation_id, message_limit or settings.detail_message_limit
        )
        return to_detail_out(
            conversation,
            viewer_id=user_id,
            messages=recent,
            is_online=self.dispatcher.is_online,
        )

    def list_user_conversations(
        self,
        user_id: uuid.UUID,
        page: int = 1,
        page_size: int | None = None,
    ) -> list[ConversationSummary]:
        """Return the user's conversations, most recently active first."""
        page, page_size = validate_page(page, page_size or settings.default_page_size)
        conversations = self.db.scalars(
            select(Conversation)
            .join(ConversationParticipant)
            .where(ConversationParticipant.user_id == user_id)
            .order_by(Conversation.updated_at.desc(), Conversation.id)
            .offset((page - 1) * page_size)
            .limit(page_size)
            .options(selectinload(Conversation.participants))
        ).all()
        return [self._summarize(conversation, user_id) for conversation in conversations]

    async def add_participant(
        self,
        requester_id: uuid.UUID,
        conversation_id: uuid.UUID,
        user_id: uuid.UUID,
    ) -> ParticipantResponse:
        """Add ``user_id`` to a conversation; adding an existing member is a no-op."""
        conversation = self._get_conversation(conversation_id)
        require_participant(self.db, conversation_id, requester_id)

        existing = conversation.participant_for(user_id)
        if existing is not None:
            return to_participant_out(existing, online=self.dispatcher.is_online(user_id))

        snapshot = (await self.directory.lookup([user_id])).get(user_id) or UserSnapshot()
        participant = ConversationParticipant(
            user_id=user_id,
            username=snapshot.username,
            display_name=snapshot.display_name,
            avatar_url=snapshot.avatar_url,
            joined_at=utcnow(),
        )
        conversation.participants.append(participant)
        self.db.commit()
        logger.info(
            "User %s added %s to conversation %s", requester_id, user_id, conversation_id
        )

        participant_out = to_participant_out(
            participant, online=self.dispatcher.is_online(user_id)
        )
        member_ids = [member.user_id for member in conversation.participants]
        await self.dispatcher.send_to_users(
            member_ids, EVENT_PARTICIPANT_ADDED, conversation_id, participant_out
        )
        await self.dispatcher.send_to_user(user_id, EVENT_NEW_CONVERSATION, conversation_id)
        await self.publisher.publish_quietly(
            events.PARTICIPANT_ADDED,
            {
                "conversation_id": str(conversation_id),
                "user_id": str(user_id),
                "added_by": str(requester_id),
            },
            partition_key=str(conversation_id),
        )
        return participant_out

    async def remove_participant(
        self,
        requester_id: uuid.UUID,
        conversation_id: uuid.UUID,
        user_id: uuid.UUID,
    ) -> bool:
        """Remove ``user_id`` from a conversation.

        Any participant may remove any other; anyone may remove themselves.

        Returns:
            False if ``user_id`` was not a participant.

        Raises:
            UnauthorizedError: If removing someone else without being a participant.
        """
        if requester_id != user_id:
            require_participant(self.db, conversation_id, requester_id)

        conversation = self.db.get(Conversation, conversation_id)
        participant = conversation.participant_for(user_id) if conversation is not None else None
        if conversation is None or participant is None:
            return False

        conversation.participants.remove(participant)
        self.db.commit()
        logger.info(
            "User %s removed %s from conversation %s", requester_id, user_id, conversation_id
        )

        self.dispatcher.evict_user_from_conversation(user_id, conversation_id)
        remaining = [member.user_id for member in conversation.participants]
        await self.dispatcher.send_to_users(
            remaining, EVENT_PARTICIPANT_REMOVED, conversation_id, user_id
        )
        await self.dispatcher.send_to_user(
            user_id, EVENT_REMOVED_FROM_CONVERSATION, conversation_id
        )
        await self.publisher.publish_quietly(
            events.PARTICIPANT_REMOVED,
            {
                "conversation_id": str(conversation_id),
                "user_id": str(user_id),
                "removed_by": str(requester_id),
            },
            partition_key=str(conversation_id),
        )
        return True

    def mark_conversation_read(
        self,
        conversation_id: uuid.UUID,
        user_id: uuid.UUID,
        read_timestamp: datetime | None = None,
    ) -> bool:
        """Advance the user's read cursor to ``read_timestamp`` (default now).

        Timestamps in the future are clamped to now and the cursor never moves
        backward.
        """
        participant = require_participant(self.db, conversation_id, user_id)
        now = utcnow()
        timestamp = now if read_timestamp is None else min(as_utc(read_timestamp), now)
        if participant.advance_read_cursor(timestamp):
            self.db.commit()
        return True

    def get_unread_conversations_count(self, user_id: uuid.UUID) -> int:
        """Count the user's conversations holding at least one unread message."""
        has_unread = exists().where(
            Message.conversation_id == ConversationParticipant.conversation_id,
            Message.sender_id != user_id,
            or_(
                ConversationParticipant.last_read_at.is_(None),
                Message.created_at > ConversationParticipant.last_read_at,
            ),
        )
        stmt = (
            select(func.count())
            .select_from(ConversationParticipant)
            .where(ConversationParticipant.user_id == user_id, has_unread)
        )
        return int(self.db.scalar(stmt) or 0)
