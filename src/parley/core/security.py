"""Bearer token helpers.

Tokens are issued by the identity service; this service only verifies them and
reads the caller's identity claims. ``create_access_token`` exists for local
tooling and tests.
"""
from __future__ import annotations

import uuid
from datetime import UTC, datetime, timedelta
from typing import Any

from jose import JWTError, jwt

from parley.core.settings import settings
from parley.schemas.user import UserIdentity


class InvalidTokenError(ValueError):
    """Raised when a bearer token cannot be decoded into a user identity."""


def create_access_token(
    user_id: uuid.UUID | str,
    *,
    username: str | None = None,
    display_name: str | None = None,
    avatar_url: str | None = None,
    expires_minutes: int | None = None,
) -> str:
    """Create a signed JWT carrying the identity claims this service reads."""
    to_encode: dict[str, Any] = {"sub": str(user_id)}
    if username is not None:
        to_encode["username"] = username
    if display_name is not None:
        to_encode["name"] = display_name
    if avatar_url is not None:
        to_encode["avatar_url"] = avatar_url
    minutes = settings.access_token_expire_minutes if expires_minutes is None else expires_minutes
    to_encode["exp"] = datetime.now(UTC) + timedelta(minutes=minutes)
    encoded_jwt: str = jwt.encode(
        to_encode,
        settings.secret_key,
        algorithm=settings.jwt_algorithm,
    )
    return encoded_jwt


def decode_access_token(token: str) -> UserIdentity:
    """Verify ``token`` and return the identity it carries.

    Raises:
        InvalidTokenError: If the signature, expiry or subject claim is invalid.
    """
    try:
        payload = jwt.decode(
            token,
            settings.secret_key,
            algorithms=[settings.jwt_algorithm],
        )
    except JWTError as err:
        raise InvalidTokenError("Could not validate credentials") from err

    subject = payload.get("sub")
    if subject is None:
        raise InvalidTokenError("Could not validate credentials")
    try:
        user_id = uuid.UUID(str(subject))
    except ValueError as err:
        raise InvalidTokenError("Token subject is not a user id") from err

    return UserIdentity(
        user_id=user_id,
        username=payload.get("username"),
        display_name=payload.get("name"),
        avatar_url=payload.get("avatar_url"),
    )
