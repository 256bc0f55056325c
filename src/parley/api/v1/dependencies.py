"""Shared API dependencies for authentication and service wiring."""

from typing import Annotated

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session

from parley.core.security import InvalidTokenError, decode_access_token
from parley.db.session import SessionFactory, get_db, get_session_factory
from parley.schemas.user import UserIdentity
from parley.services.conversations import ConversationService
from parley.services.directory import UserDirectory, get_user_directory
from parley.services.errors import (
    ConversationError,
    NotFoundError,
    UnauthorizedError,
    ValidationFailure,
)
from parley.services.events import EventPublisher, get_event_publisher
from parley.services.messages import MessageService
from parley.services.realtime import RealtimeDispatcher, get_dispatcher

# HTTP Bearer scheme for JWT authentication
bearer_scheme = HTTPBearer()

# Type alias for database session dependency
SessionDep = Annotated[Session, Depends(get_db)]
SessionFactoryDep = Annotated[SessionFactory, Depends(get_session_factory)]


def get_current_user(
    credentials: Annotated[HTTPAuthorizationCredentials, Depends(bearer_scheme)],
) -> UserIdentity:
    """Resolve the calling user from the bearer token.

    Raises:
        HTTPException: 401 if the token is invalid or expired.
    """
    try:
        return decode_access_token(credentials.credentials)
    except InvalidTokenError as err:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not validate credentials",
            headers={"WWW-Authenticate": "Bearer"},
        ) from err


# Type alias for current user dependency
CurrentUserDep = Annotated[UserIdentity, Depends(get_current_user)]
DispatcherDep = Annotated[RealtimeDispatcher, Depends(get_dispatcher)]
PublisherDep = Annotated[EventPublisher, Depends(get_event_publisher)]
DirectoryDep = Annotated[UserDirectory, Depends(get_user_directory)]


def get_message_service(
    db: SessionDep,
    dispatcher: DispatcherDep,
    publisher: PublisherDep,
) -> MessageService:
    """Build a message service bound to the request's session."""
    return MessageService(db, dispatcher, publisher)


MessageServiceDep = Annotated[MessageService, Depends(get_message_service)]


def get_conversation_service(
    db: SessionDep,
    dispatcher: DispatcherDep,
    publisher: PublisherDep,
    directory: DirectoryDep,
    messages: MessageServiceDep,
) -> ConversationService:
    """Build a conversation service bound to the request's session."""
    return ConversationService(db, dispatcher, publisher, directory, messages)


ConversationServiceDep = Annotated[ConversationService, Depends(get_conversation_service)]


def to_http_exception(
    err: ConversationError,
    *,
    unauthorized_status: int = status.HTTP_403_FORBIDDEN,
) -> HTTPException:
    """Translate a domain error into the matching HTTP error."""
    if isinstance(err, NotFoundError):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(err))
    if isinstance(err, UnauthorizedError):
        return HTTPException(status_code=unauthorized_status, detail=str(err))
    if isinstance(err, ValidationFailure):
        return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(err))
    return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(err))
