"""Lookup of user display attributes from the identity service.

Participants carry a snapshot of the user's username, display name and avatar
taken when they join. The caller's snapshot comes from their token claims;
everyone else is resolved here. Lookups are best-effort: an unreachable
identity service yields an empty snapshot, never a failed request.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from collections.abc import Iterable
from typing import Any

import httpx

from parley.core.settings import settings
from parley.schemas.user import UserSnapshot

# Configure logger for this module
logger = logging.getLogger(__name__)

HTTP_OK = 200


class UserDirectory:
    """Async client for ``GET /api/users/id/{id}`` on the identity service."""

    def __init__(
        self,
        base_url: str | None = None,
        timeout_seconds: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = base_url if base_url is not None else settings.identity_service_url
        self.timeout_seconds = (
            timeout_seconds if timeout_seconds is not None else settings.identity_timeout_seconds
        )
        self._transport = transport

    @property
    def enabled(self) -> bool:
        return bool(self.base_url)

    @staticmethod
    def _parse_user(body: Any) -> UserSnapshot:
        # The identity service wraps payloads as {"success": ..., "data": {...}}.
        if isinstance(body, dict) and isinstance(body.get("data"), dict):
            body = body["data"]
        if not isinstance(body, dict):
            return UserSnapshot()
        return UserSnapshot(
            username=body.get("username"),
            display_name=body.get("displayName") or body.get("display_name"),
            avatar_url=body.get("profileImageUrl") or body.get("avatar_url"),
        )

    async def _fetch(self, client: httpx.AsyncClient, user_id: uuid.UUID) -> UserSnapshot:
        try:
            response = await client.get(f"/api/users/id/{user_id}")
        except httpx.HTTPError as exc:
            logger.warning("Identity lookup for %s failed: %s", user_id, exc)
            return UserSnapshot()
        if response.status_code != HTTP_OK:
            logger.warning(
                "Identity lookup for %s returned %s", user_id, response.status_code
            )
            return UserSnapshot()
        try:
            return self._parse_user(response.json())
        except ValueError as exc:
            logger.warning("Identity lookup for %s returned invalid JSON: %s", user_id, exc)
            return UserSnapshot()

    async def lookup(self, user_ids: Iterable[uuid.UUID]) -> dict[uuid.UUID, UserSnapshot]:
        """Resolve snapshots for ``user_ids``; unknown users map to empty snapshots."""
        ids = list(dict.fromkeys(user_ids))
        if not ids:
            return {}
        if not self.enabled:
            return {user_id: UserSnapshot() for user_id in ids}

        async with httpx.AsyncClient(
            base_url=self.base_url or "",
            timeout=httpx.Timeout(self.timeout_seconds),
            transport=self._transport,
        ) as client:
            snapshots = await asyncio.gather(*[self._fetch(client, user_id) for user_id in ids])
        return dict(zip(ids, snapshots, strict=True))


def get_user_directory() -> UserDirectory:
    """Return a user directory configured from settings."""
    return UserDirectory()
