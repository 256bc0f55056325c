"""Domain errors raised by the conversation and message services.

Endpoints translate these into HTTP responses; services never raise
``HTTPException`` directly.
"""


class ConversationError(RuntimeError):
    """Base exception for conversation and message failures."""


class NotFoundError(ConversationError):
    """Raised when a conversation or message does not exist."""


class UnauthorizedError(ConversationError):
    """Raised when the caller may not act on a conversation or message.

    Covers non-participants acting on a conversation and users deleting
    messages they did not send.
    """


class ValidationFailure(ConversationError):
    """Raised when a request is well-formed but semantically invalid."""
