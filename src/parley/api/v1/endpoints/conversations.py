# src/parley/api/v1/endpoints/conversations.py
"""Conversation endpoints for the Parley API."""

from __future__ import annotations

import uuid

from fastapi import APIRouter, Query, status

from parley.api.v1.dependencies import (
    ConversationServiceDep,
    CurrentUserDep,
    MessageServiceDep,
    to_http_exception,
)
from parley.core.settings import settings
from parley.schemas.conversation import (
    ConversationCreate,
    ConversationDetail,
    ConversationListResponse,
    ConversationSummary,
    MarkReadRequest,
    ParticipantAdd,
    ParticipantResponse,
    SuccessResponse,
    UnreadCountResponse,
)
from parley.schemas.message import MessageCreate, MessageResponse
from parley.services.errors import ConversationError

router = APIRouter(prefix="/conversations", tags=["conversations"])


@router.get("/", response_model=ConversationListResponse)
async def list_conversations(
    current_user: CurrentUserDep,
    service: ConversationServiceDep,
    page: int = Query(1, ge=1),
    page_size: int | None = Query(None, ge=1, le=settings.max_page_size),
) -> ConversationListResponse:
    """List the caller's conversations, most recently active first."""
    try:
        conversations = service.list_user_conversations(current_user.user_id, page, page_size)
    except ConversationError as err:
        raise to_http_exception(err) from err
    return ConversationListResponse(
        conversations=conversations,
        unread_count=service.get_unread_conversations_count(current_user.user_id),
    )


@router.get("/unread/count", response_model=UnreadCountResponse)
async def get_unread_count(
    current_user: CurrentUserDep,
    service: ConversationServiceDep,
) -> UnreadCountResponse:
    """Return how many of the caller's conversations have unread messages."""
    return UnreadCountResponse(count=service.get_unread_conversations_count(current_user.user_id))


@router.get("/{conversation_id}", response_model=ConversationDetail)
async def get_conversation(
    conversation_id: uuid.UUID,
    current_user: CurrentUserDep,
    service: ConversationServiceDep,
) -> ConversationDetail:
    """Return a conversation with its most recent messages."""
    try:
        return service.get_conversation_detail(conversation_id, current_user.user_id)
    except ConversationError as err:
        # Non-participants cannot tell a hidden conversation from a missing one.
        raise to_http_exception(err, unauthorized_status=status.HTTP_404_NOT_FOUND) from err


@router.get("/{conversation_id}/messages", response_model=list[MessageResponse])
async def get_conversation_messages(
    conversation_id: uuid.UUID,
    current_user: CurrentUserDep,
    service: MessageServiceDep,
    page: int = Query(1, ge=1),
    page_size: int | None = Query(None, ge=1, le=settings.max_page_size),
) -> list[MessageResponse]:
    """Return a page of messages in chronological order; page 1 is the newest."""
    try:
        return service.get_conversation_messages(
            conversation_id, current_user.user_id, page, page_size
        )
    except ConversationError as err:
        raise to_http_exception(err) from err


@router.post("/", response_model=ConversationSummary, status_code=status.HTTP_201_CREATED)
async def create_conversation(
    payload: ConversationCreate,
    current_user: CurrentUserDep,
    service: ConversationServiceDep,
) -> ConversationSummary:
    """Start a conversation between the caller and the listed users."""
    try:
        return await service.create_conversation(
            current_user,
            payload.participant_ids,
            title=payload.title,
            initial_message=payload.initial_message,
        )
    except ConversationError as err:
        raise to_http_exception(err) from err


@router.post(
    "/{conversation_id}/messages",
    response_model=MessageResponse,
    status_code=status.HTTP_201_CREATED,
)
async def send_message(
    conversation_id: uuid.UUID,
    payload: MessageCreate,
    current_user: CurrentUserDep,
    service: MessageServiceDep,
) -> MessageResponse:
    """Post a message to a conversation the caller belongs to."""
    try:
        return await service.send_message(
            current_user.user_id,
            conversation_id,
            payload.content,
            payload.attachment_urls,
        )
    except ConversationError as err:
        raise to_http_exception(err) from err


@router.post("/{conversation_id}/participants", response_model=ParticipantResponse)
async def add_participant(
    conversation_id: uuid.UUID,
    payload: ParticipantAdd,
    current_user: CurrentUserDep,
    service: ConversationServiceDep,
) -> ParticipantResponse:
    """Add a user to the conversation."""
    try:
        return await service.add_participant(
            current_user.user_id, conversation_id, payload.user_id
        )
    except ConversationError as err:
        raise to_http_exception(err) from err


@router.delete("/{conversation_id}/participants/{user_id}", response_model=SuccessResponse)
async def remove_participant(
    conversation_id: uuid.UUID,
    user_id: uuid.UUID,
    current_user: CurrentUserDep,
    service: ConversationServiceDep,
) -> SuccessResponse:
    """Remove a participant, or leave when ``user_id`` is the caller."""
    try:
        removed = await service.remove_participant(
            current_user.user_id, conversation_id, user_id
        )
    except ConversationError as err:
        raise to_http_exception(err) from err
    return SuccessResponse(success=removed)


@router.post("/{conversation_id}/read", response_model=SuccessResponse)
async def mark_conversation_read(
    conversation_id: uuid.UUID,
    current_user: CurrentUserDep,
    service: ConversationServiceDep,
    payload: MarkReadRequest | None = None,
) -> SuccessResponse:
    """Mark the conversation read up to ``read_timestamp`` (default now)."""
    read_timestamp = payload.read_timestamp if payload is not None else None
    try:
        success = service.mark_conversation_read(
            conversation_id, current_user.user_id, read_timestamp
        )
    except ConversationError as err:
        raise to_http_exception(err) from err
    return SuccessResponse(success=success)
