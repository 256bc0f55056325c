# src/parley/api/v1/endpoints/messages.py
"""Single-message endpoints for the Parley API."""

from __future__ import annotations

import uuid

from fastapi import APIRouter

from parley.api.v1.dependencies import CurrentUserDep, MessageServiceDep, to_http_exception
from parley.schemas.conversation import SuccessResponse
from parley.schemas.message import MessageResponse
from parley.services.errors import ConversationError

router = APIRouter(prefix="/messages", tags=["messages"])


@router.get("/{message_id}", response_model=MessageResponse)
async def get_message(
    message_id: uuid.UUID,
    current_user: CurrentUserDep,
    service: MessageServiceDep,
) -> MessageResponse:
    """Fetch one message from a conversation the caller belongs to."""
    try:
        return service.get_message(message_id, current_user.user_id)
    except ConversationError as err:
        raise to_http_exception(err) from err


@router.put("/{message_id}/read", response_model=SuccessResponse)
async def mark_message_read(
    message_id: uuid.UUID,
    current_user: CurrentUserDep,
    service: MessageServiceDep,
) -> SuccessResponse:
    """Advance the caller's read cursor up to this message."""
    try:
        success = service.mark_message_read(message_id, current_user.user_id)
    except ConversationError as err:
        raise to_http_exception(err) from err
    return SuccessResponse(success=success)


@router.delete("/{message_id}", response_model=SuccessResponse)
async def delete_message(
    message_id: uuid.UUID,
    current_user: CurrentUserDep,
    service: MessageServiceDep,
) -> SuccessResponse:
    """Delete a message the caller sent."""
    try:
        success = await service.delete_message(message_id, current_user.user_id)
    except ConversationError as err:
        raise to_http_exception(err) from err
    return SuccessResponse(success=success)
