# src/parley/api/v1/endpoints/realtime.py
"""WebSocket channel for live conversation updates."""

from __future__ import annotations

import logging
import uuid

from fastapi import APIRouter, Query, WebSocket, WebSocketDisconnect, status
from pydantic import TypeAdapter, ValidationError

from parley.api.v1.dependencies import DispatcherDep, PublisherDep, SessionFactoryDep
from parley.core.security import InvalidTokenError, decode_access_token
from parley.db.session import SessionFactory
from parley.schemas.realtime import (
    ClientFrame,
    JoinConversationFrame,
    LeaveConversationFrame,
    SendMessageFrame,
    TypingFrame,
)
from parley.services.errors import ConversationError
from parley.services.events import EventPublisher
from parley.services.membership import is_participant
from parley.services.messages import MessageService
from parley.services.realtime import (
    EVENT_ERROR,
    EVENT_JOINED_CONVERSATION,
    EVENT_LEFT_CONVERSATION,
    EVENT_USER_TYPING,
    RealtimeDispatcher,
    WebSocketConnection,
)

# Configure logger for this module
logger = logging.getLogger(__name__)

router = APIRouter(tags=["realtime"])

_client_frame = TypeAdapter(ClientFrame)

NOT_A_PARTICIPANT = "You are not a participant in this conversation"


def _is_member(
    sessions: SessionFactory,
    connection: WebSocketConnection,
    conversation_id: uuid.UUID,
) -> bool:
    with sessions() as db:
        return is_participant(db, conversation_id, connection.user_id)


async def _handle_frame(
    frame: ClientFrame,
    connection: WebSocketConnection,
    dispatcher: RealtimeDispatcher,
    publisher: EventPublisher,
    sessions: SessionFactory,
) -> None:
    # Each frame opens its own session; none is held between frames.
    if isinstance(frame, JoinConversationFrame):
        if not _is_member(sessions, connection, frame.conversation_id):
            await dispatcher.send_to_connection(connection, EVENT_ERROR, NOT_A_PARTICIPANT)
            return
        dispatcher.join_conversation(connection, frame.conversation_id)
        await dispatcher.send_to_connection(
            connection, EVENT_JOINED_CONVERSATION, frame.conversation_id
        )

    elif isinstance(frame, LeaveConversationFrame):
        dispatcher.leave_conversation(connection, frame.conversation_id)
        await dispatcher.send_to_connection(
            connection, EVENT_LEFT_CONVERSATION, frame.conversation_id
        )

    elif isinstance(frame, TypingFrame):
        if not _is_member(sessions, connection, frame.conversation_id):
            await dispatcher.send_to_connection(connection, EVENT_ERROR, NOT_A_PARTICIPANT)
            return
        await dispatcher.send_to_conversation(
            frame.conversation_id,
            EVENT_USER_TYPING,
            connection.user_id,
            connection.identity.username,
            exclude=connection,
        )

    elif isinstance(frame, SendMessageFrame):
        error: str | None = None
        with sessions() as db:
            try:
                await MessageService(db, dispatcher, publisher).send_message(
                    connection.user_id,
                    frame.conversation_id,
                    frame.content,
                    frame.attachment_urls,
                )
            except ConversationError as err:
                error = str(err)
        if error is not None:
            await dispatcher.send_to_connection(connection, EVENT_ERROR, error)


@router.websocket("/ws")
async def realtime_channel(
    websocket: WebSocket,
    sessions: SessionFactoryDep,
    dispatcher: DispatcherDep,
    publisher: PublisherDep,
    token: str | None = Query(None),
) -> None:
    """Authenticate with ``?token=<jwt>`` and exchange JSON frames.

    Server frames have the shape ``{"event": name, "args": [...]}``. Malformed
    client frames are answered with an ``Error`` event; the connection stays
    open. No database connection is held between frames.
    """
    try:
        identity = decode_access_token(token or "")
    except InvalidTokenError:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    await websocket.accept()
    connection = WebSocketConnection(websocket, identity)
    dispatcher.connect(connection)
    try:
        while True:
            raw = await websocket.receive_text()
            try:
                frame = _client_frame.validate_json(raw)
            except ValidationError as err:
                logger.debug("Rejected frame from %s: %s", connection.connection_id, err)
                await dispatcher.send_to_connection(connection, EVENT_ERROR, "Invalid frame")
                continue
            await _handle_frame(frame, connection, dispatcher, publisher, sessions)
    except WebSocketDisconnect as exc:
        logger.debug("Connection %s closed with code %s", connection.connection_id, exc.code)
    finally:
        dispatcher.disconnect(connection)
