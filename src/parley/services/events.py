"""Publication of domain events to the platform event bus.

Other services (notifications, activity feeds) subscribe to a topic on the
event bus; this module posts conversation and message events to it over HTTP.
Publication is a side channel: callers log and swallow ``EventPublishError``
so a bus outage never fails a write that has already been committed.
"""

from __future__ import annotations

import asyncio
import logging
import secrets
import time
import uuid
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import UTC, datetime
from enum import Enum
from typing import Any

import httpx
from jose import jwt

from parley.core.settings import settings

# Configure logger for this module
logger = logging.getLogger(__name__)

HTTP_INTERNAL_SERVER_ERROR = 500
HTTP_BAD_REQUEST = 400

# Event types published by this service.
CONVERSATION_CREATED = "conversation.created"
MESSAGE_SENT = "message.sent"
MESSAGE_DELETED = "message.deleted"
PARTICIPANT_ADDED = "participant.added"
PARTICIPANT_REMOVED = "participant.removed"


class EventPublishError(RuntimeError):
    """Raised when an event could not be handed to the event bus."""


class EventBusDisabledError(EventPublishError):
    """Raised when publishing is attempted without a configured event bus."""


class CircuitState(Enum):
    """Circuit breaker states guarding the event bus."""

    CLOSED = "closed"      # Normal operation - requests allowed
    OPEN = "open"          # Circuit is open - requests blocked
    HALF_OPEN = "half_open"  # Probing whether the bus recovered


@dataclass
class CircuitBreaker:
    """Stops hammering the bus after repeated failures."""

    failure_threshold: int = 5
    recovery_timeout: float = 30.0

    _state: CircuitState = CircuitState.CLOSED
    _failure_count: int = 0
    _last_failure_time: float = 0.0

    def is_open(self) -> bool:
        """Check if requests are currently blocked."""
        if self._state == CircuitState.OPEN:
            if time.time() - self._last_failure_time >= self.recovery_timeout:
                self._state = CircuitState.HALF_OPEN
                return False
            return True
        return False

    def record_success(self) -> None:
        """Close the circuit after a successful call."""
        self._failure_count = 0
        self._state = CircuitState.CLOSED

    def record_failure(self) -> None:
        """Count a failure and open the circuit past the threshold."""
        self._failure_count += 1
        self._last_failure_time = time.time()
        if self._state == CircuitState.HALF_OPEN or self._failure_count >= self.failure_threshold:
            self._state = CircuitState.OPEN

    def get_state(self) -> CircuitState:
        """Return the current breaker state."""
        return self._state


@dataclass(frozen=True)
class EventBusConfig:
    """Immutable configuration for event publication."""

    base_url: str | None
    topic: str
    shared_secret: str | None
    timeout_seconds: float
    source: str

    @property
    def enabled(self) -> bool:
        return bool(self.base_url)


def load_event_bus_config() -> EventBusConfig:
    """Build configuration object from global settings."""
    return EventBusConfig(
        base_url=settings.event_bus_url,
        topic=settings.event_bus_topic,
        shared_secret=settings.event_bus_shared_secret,
        timeout_seconds=float(settings.event_bus_timeout_seconds),
        source=settings.app_name,
    )


class EventPublisher:
    """HTTP publisher posting JSON envelopes to ``/topics/{topic}/messages``."""

    def __init__(
        self,
        config: EventBusConfig | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.config = config or load_event_bus_config()
        self._transport = transport
        self._client: httpx.AsyncClient | None = None
        self._client_lock = asyncio.Lock()
        self._circuit_breaker = CircuitBreaker()

    @property
    def enabled(self) -> bool:
        return self.config.enabled

    async def _ensure_client(self) -> httpx.AsyncClient:
        if not self.enabled:
            raise EventBusDisabledError("Event bus is not configured")

        async with self._client_lock:
            if self._client is None:
                self._client = httpx.AsyncClient(
                    base_url=self.config.base_url or "",
                    timeout=httpx.Timeout(self.config.timeout_seconds),
                    transport=self._transport,
                )
        return self._client

    def _build_headers(self, *, message_id: str, partition_key: str) -> dict[str, str]:
        headers = {
            "Content-Type": "application/json",
            "X-Message-Id": message_id,
            "X-Partition-Key": partition_key,
        }
        if self.config.shared_secret:
            now = int(time.time())
            payload = {
                "iss": self.config.source,
                "iat": now,
                "exp": now + 60,
                "jti": secrets.token_hex(8),
            }
            token = jwt.encode(payload, self.config.shared_secret, algorithm="HS256")
            headers["Authorization"] = f"Bearer {token}"
        return headers

    async def publish(
        self,
        event_type: str,
        payload: Mapping[str, Any],
        *,
        partition_key: str | None = None,
    ) -> str:
        """Publish one event and return its message id.

        Args:
            event_type: Dotted event name, e.g. ``message.sent``.
            payload: JSON-serialisable event body.
            partition_key: Ordering key on the bus; defaults to a random id.

        Raises:
            EventBusDisabledError: If no event bus is configured.
            EventPublishError: If the bus rejected the event or was unreachable.
        """
        if self._circuit_breaker.is_open():
            raise EventPublishError("Event bus circuit breaker is open")

        client = await self._ensure_client()
        message_id = str(uuid.uuid4())
        envelope = {
            "id": message_id,
            "type": event_type,
            "source": self.config.source,
            "occurred_at": datetime.now(UTC).isoformat(),
            "data": dict(payload),
        }
        headers = self._build_headers(
            message_id=message_id,
            partition_key=partition_key or message_id,
        )

        try:
            response = await client.post(
                f"/topics/{self.config.topic}/messages",
                json=envelope,
                headers=headers,
            )
        except httpx.HTTPError as exc:
            self._circuit_breaker.record_failure()
            raise EventPublishError(f"Event bus request failed: {exc}") from exc

        if response.status_code >= HTTP_INTERNAL_SERVER_ERROR:
            self._circuit_breaker.record_failure()
            raise EventPublishError(f"Event bus responded with {response.status_code}")
        self._circuit_breaker.record_success()
        if response.status_code >= HTTP_BAD_REQUEST:
            raise EventPublishError(f"Event bus rejected {event_type} ({response.status_code})")

        logger.info(
            "Published %s to topic %s with partition key %s",
            event_type,
            self.config.topic,
            headers["X-Partition-Key"],
        )
        return message_id

    async def publish_quietly(
        self,
        event_type: str,
        payload: Mapping[str, Any],
        *,
        partition_key: str | None = None,
    ) -> bool:
        """Publish an event, logging failures instead of raising.

        Returns:
            True if the event was accepted by the bus.
        """
        if not self.enabled:
            return False
        try:
            await self.publish(event_type, payload, partition_key=partition_key)
        except EventPublishError as exc:
            logger.error("Error publishing %s: %s", event_type, exc)
            return False
        return True

    def get_circuit_breaker_status(self) -> dict[str, Any]:
        """Expose breaker state for health reporting."""
        return {
            "state": self._circuit_breaker.get_state().value,
            "enabled": self.enabled,
        }

    async def close(self) -> None:
        """Clean up underlying HTTP client resources."""
        async with self._client_lock:
            if self._client is not None:
                await self._client.aclose()
                self._client = None


class _EventPublisherSingleton:
    """Singleton wrapper for EventPublisher."""

    _instance: EventPublisher | None = None

    @classmethod
    def get_instance(cls) -> EventPublisher:
        """Get or create the singleton EventPublisher instance."""
        if cls._instance is None:
            cls._instance = EventPublisher()
        return cls._instance


def get_event_publisher() -> EventPublisher:
    """Return a singleton event publisher instance."""
    return _EventPublisherSingleton.get_instance()
