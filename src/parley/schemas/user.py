"""User identity schemas."""

import uuid

from pydantic import BaseModel, ConfigDict, Field


class UserIdentity(BaseModel):
    """Identity of the calling user as asserted by the bearer token."""

    user_id: uuid.UUID
    username: str | None = Field(None, description="Login handle")
    display_name: str | None = Field(None, description="Human-friendly name")
    avatar_url: str | None = Field(None, description="Profile image URL")

    model_config = ConfigDict(frozen=True)


class UserSnapshot(BaseModel):
    """Point-in-time copy of a user's public display attributes."""

    username: str | None = None
    display_name: str | None = None
    avatar_url: str | None = None

    @classmethod
    def from_identity(cls, identity: UserIdentity) -> "UserSnapshot":
        """Build a snapshot from token claims."""
        return cls(
            username=identity.username,
            display_name=identity.display_name,
            avatar_url=identity.avatar_url,
        )
