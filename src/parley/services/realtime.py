"""Live-connection registry and best-effort push delivery.

Connections are organised in two kinds of groups:

- ``User_{user_id}``: every live connection of a user joins on connect and
  leaves on disconnect. Used for cross-conversation notices (new
  conversation, participant changes, unread badges, removal).
- ``Conversation_{conversation_id}``: a connection joins while its client
  has that conversation open. Used for in-view updates (new message inline,
  typing indicator, deleted message).

Delivery is fire-and-forget: nothing is acknowledged, retried or stored. A
client that reconnects re-reads state through the REST API.
"""

from __future__ import annotations

import asyncio
import itertools
import logging
import threading
import uuid
from collections.abc import Iterable
from typing import Any, Protocol

from fastapi import WebSocket

from parley.schemas.realtime import ServerEvent
from parley.schemas.user import UserIdentity

# Configure logger for this module
logger = logging.getLogger(__name__)

# Push event names understood by clients.
EVENT_NEW_CONVERSATION = "NewConversation"
EVENT_RECEIVE_MESSAGE = "ReceiveMessage"
EVENT_NEW_MESSAGE = "NewMessage"
EVENT_PARTICIPANT_ADDED = "ParticipantAdded"
EVENT_PARTICIPANT_REMOVED = "ParticipantRemoved"
EVENT_REMOVED_FROM_CONVERSATION = "RemovedFromConversation"
EVENT_MESSAGE_DELETED = "MessageDeleted"
EVENT_USER_TYPING = "UserTyping"

# Replies sent only to the connection that issued a frame.
EVENT_JOINED_CONVERSATION = "JoinedConversation"
EVENT_LEFT_CONVERSATION = "LeftConversation"
EVENT_ERROR = "Error"

_connection_ids = itertools.count(1)


def user_group(user_id: uuid.UUID) -> str:
    """Return the group name holding every connection of ``user_id``."""
    return f"User_{user_id}"


def conversation_group(conversation_id: uuid.UUID) -> str:
    """Return the group name holding the live viewers of a conversation."""
    return f"Conversation_{conversation_id}"


class Connection(Protocol):
    """A live client connection the dispatcher can push frames to."""

    connection_id: str
    user_id: uuid.UUID

    async def send_json(self, data: dict[str, Any]) -> None:
        """Deliver one JSON frame to the client."""


class WebSocketConnection:
    """Adapter exposing a FastAPI WebSocket as a dispatcher connection."""

    def __init__(self, websocket: WebSocket, identity: UserIdentity) -> None:
        self.websocket = websocket
        self.identity = identity
        self.user_id = identity.user_id
        self.connection_id = f"ws-{next(_connection_ids)}"

    async def send_json(self, data: dict[str, Any]) -> None:
        await self.websocket.send_json(data)

    def __repr__(self) -> str:
        return f"WebSocketConnection({self.connection_id}, user={self.user_id})"


class RealtimeDispatcher:
    """Thread-safe registry of connection groups with isolated fan-out.

    Group membership is guarded by a lock; sends run outside the lock over a
    snapshot of the recipients so a slow client never blocks join/leave.
    """

    def __init__(self) -> None:
        # group name -> {connection_id -> connection}
        self._groups: dict[str, dict[str, Connection]] = {}
        # connection_id -> group names, for disconnect cleanup
        self._memberships: dict[str, set[str]] = {}
        self._lock = threading.Lock()

    # ------------------------------------------------------------------
    # Membership
    # ------------------------------------------------------------------

    def _add(self, group: str, connection: Connection) -> None:
        self._groups.setdefault(group, {})[connection.connection_id] = connection
        self._memberships.setdefault(connection.connection_id, set()).add(group)

    def _discard(self, group: str, connection_id: str) -> None:
        members = self._groups.get(group)
        if members is not None:
            members.pop(connection_id, None)
            if not members:
                del self._groups[group]
        groups = self._memberships.get(connection_id)
        if groups is not None:
            groups.discard(group)

    def connect(self, connection: Connection) -> None:
        """Register a newly authenticated connection in its user group."""
        with self._lock:
            self._add(user_group(connection.user_id), connection)
        logger.info(
            "User %s connected (%s)", connection.user_id, connection.connection_id
        )

    def disconnect(self, connection: Connection) -> None:
        """Remove a connection from every group it belongs to."""
        with self._lock:
            groups = self._memberships.pop(connection.connection_id, set())
            for group in groups:
                members = self._groups.get(group)
                if members is None:
                    continue
                members.pop(connection.connection_id, None)
                if not members:
                    del self._groups[group]
        logger.info(
            "User %s disconnected (%s)", connection.user_id, connection.connection_id
        )

    def join_conversation(self, connection: Connection, conversation_id: uuid.UUID) -> None:
        """Subscribe a connection to in-view updates for a conversation."""
        with self._lock:
            if connection.connection_id not in self._memberships:
                raise ValueError("Connection is not registered")
            self._add(conversation_group(conversation_id), connection)
        logger.debug(
            "Connection %s joined conversation %s", connection.connection_id, conversation_id
        )

    def leave_conversation(self, connection: Connection, conversation_id: uuid.UUID) -> None:
        """Unsubscribe a connection from a conversation's in-view updates."""
        with self._lock:
            self._discard(conversation_group(conversation_id), connection.connection_id)
        logger.debug(
            "Connection %s left conversation %s", connection.connection_id, conversation_id
        )

    def evict_user_from_conversation(
        self, user_id: uuid.UUID, conversation_id: uuid.UUID
    ) -> int:
        """Drop every connection of ``user_id`` from a conversation group.

        Returns:
            Number of connections removed.
        """
        group = conversation_group(conversation_id)
        with self._lock:
            victims = [
                connection_id
                for connection_id, connection in self._groups.get(group, {}).items()
                if connection.user_id == user_id
            ]
            for connection_id in victims:
                self._discard(group, connection_id)
        return len(victims)

    def group_members(self, group: str) -> list[Connection]:
        """Return a snapshot of the connections in ``group``."""
        with self._lock:
            return list(self._groups.get(group, {}).values())

    def viewing(self, connection: Connection, conversation_id: uuid.UUID) -> bool:
        """Return True if the connection currently has the conversation open."""
        with self._lock:
            groups = self._memberships.get(connection.connection_id, set())
            return conversation_group(conversation_id) in groups

    def is_online(self, user_id: uuid.UUID) -> bool:
        """Return True if the user has at least one live connection."""
        with self._lock:
            return bool(self._groups.get(user_group(user_id)))

    # ------------------------------------------------------------------
    # Delivery
    # ------------------------------------------------------------------

    async def send_to_group(
        self,
        group: str,
        event: str,
        *args: Any,
        exclude: Connection | None = None,
    ) -> int:
        """Push an event to every connection in a group.

        Returns:
            Number of connections the frame was delivered to.
        """
        recipients = [
            connection
            for connection in self.group_members(group)
            if exclude is None or connection.connection_id != exclude.connection_id
        ]
        return await self._deliver(recipients, event, args)

    async def send_to_user(self, user_id: uuid.UUID, event: str, *args: Any) -> int:
        """Push an event to every live connection of one user."""
        return await self.send_to_group(user_group(user_id), event, *args)

    async def send_to_users(
        self, user_ids: Iterable[uuid.UUID], event: str, *args: Any
    ) -> int:
        """Push the same event to several users' groups."""
        recipients: list[Connection] = []
        for user_id in dict.fromkeys(user_ids):
            recipients.extend(self.group_members(user_group(user_id)))
        return await self._deliver(recipients, event, args)

    async def send_to_conversation(
        self,
        conversation_id: uuid.UUID,
        event: str,
        *args: Any,
        exclude: Connection | None = None,
    ) -> int:
        """Push an event to the live viewers of a conversation."""
        return await self.send_to_group(
            conversation_group(conversation_id), event, *args, exclude=exclude
        )

    async def send_to_connection(self, connection: Connection, event: str, *args: Any) -> bool:
        """Reply to a single connection, e.g. to acknowledge a client frame."""
        return await self._deliver([connection], event, args) == 1

    async def _deliver(
        self, recipients: list[Connection], event: str, args: tuple[Any, ...]
    ) -> int:
        if not recipients:
            return 0
        frame = ServerEvent(event=event, args=list(args)).model_dump(mode="json")
        results = await asyncio.gather(
            *[self._safe_send(connection, frame) for connection in recipients],
        )
        return sum(1 for delivered in results if delivered)

    async def _safe_send(self, connection: Connection, frame: dict[str, Any]) -> bool:
        """Send one frame, logging instead of raising on transport failure."""
        try:
            await connection.send_json(frame)
            return True
        except Exception as exc:
            logger.warning(
                "Failed to push %s to connection %s of user %s: %s",
                frame.get("event"),
                connection.connection_id,
                connection.user_id,
                exc,
            )
            return False


class _DispatcherSingleton:
    """Process-wide dispatcher shared by HTTP handlers and WebSocket sessions."""

    _instance: RealtimeDispatcher | None = None

    @classmethod
    def get_instance(cls) -> RealtimeDispatcher:
        """Get or create the singleton dispatcher."""
        if cls._instance is None:
            cls._instance = RealtimeDispatcher()
        return cls._instance


def get_dispatcher() -> RealtimeDispatcher:
    """Return the process-wide real-time dispatcher."""
    return _DispatcherSingleton.get_instance()
