# tests/conftest.py
from __future__ import annotations

import os
import uuid
from collections.abc import Callable, Generator, Iterator
from contextlib import AbstractContextManager, nullcontext
from typing import Any

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient
from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

os.environ.setdefault("SECRET_KEY", "test-secret-key")

from parley.core.security import create_access_token
from parley.db.session import Base
from parley.db.session import get_db as app_get_session
from parley.db.session import get_session_factory
from parley.main import app as fastapi_app
from parley.schemas.user import UserIdentity
from parley.services.conversations import ConversationService
from parley.services.directory import UserDirectory, get_user_directory
from parley.services.events import EventBusConfig, EventPublisher, get_event_publisher
from parley.services.messages import MessageService
from parley.services.realtime import RealtimeDispatcher, get_dispatcher

TEST_DB_URL = "sqlite://"


class FakeConnection:
    """In-memory dispatcher connection recording every frame pushed to it."""

    _ids = iter(range(1, 1_000_000))

    def __init__(self, user_id: uuid.UUID) -> None:
        self.user_id = user_id
        self.connection_id = f"fake-{next(self._ids)}"
        self.frames: list[dict[str, Any]] = []

    async def send_json(self, data: dict[str, Any]) -> None:
        self.frames.append(data)

    def events(self, name: str | None = None) -> list[dict[str, Any]]:
        return [frame for frame in self.frames if name is None or frame["event"] == name]


class FailingConnection(FakeConnection):
    """Connection whose transport is broken."""

    async def send_json(self, data: dict[str, Any]) -> None:
        raise ConnectionResetError("connection reset by peer")


@pytest.fixture(scope="session")
def engine() -> Generator[Engine, None, None]:
    engine = create_engine(
        TEST_DB_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    try:
        yield engine
    finally:
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


@pytest.fixture()
def db_session(engine: Engine) -> Iterator[Session]:
    connection = engine.connect()
    transaction = connection.begin()
    SessionLocal = sessionmaker(
        bind=connection,
        autocommit=False,
        autoflush=False,
        expire_on_commit=False,
    )
    session = SessionLocal()
    session.begin_nested()

    @event.listens_for(session, "after_transaction_end")
    def restart_savepoint(sess: Session, trans) -> None:  # pragma: no cover - SQLAlchemy internals
        if trans.nested and not getattr(trans._parent, "nested", False):
            session.begin_nested()

    try:
        yield session
    finally:
        event.remove(session, "after_transaction_end", restart_savepoint)
        session.close()

        if transaction.is_active:
            transaction.rollback()
        connection.close()

        # Ensure each test sees a clean database even if commits occurred.
        with engine.begin() as cleanup_conn:
            for table in reversed(Base.metadata.sorted_tables):
                cleanup_conn.execute(table.delete())


@pytest.fixture()
def dispatcher() -> RealtimeDispatcher:
    """Fresh connection registry so pushes never leak between tests."""
    return RealtimeDispatcher()


@pytest.fixture()
def publisher() -> EventPublisher:
    """Publisher with no event bus configured."""
    return EventPublisher(
        config=EventBusConfig(
            base_url=None,
            topic="social-events",
            shared_secret=None,
            timeout_seconds=1.0,
            source="parley-tests",
        )
    )


@pytest.fixture()
def directory() -> UserDirectory:
    """Directory with no identity service configured."""
    return UserDirectory(base_url="")


@pytest.fixture()
def message_service(
    db_session: Session,
    dispatcher: RealtimeDispatcher,
    publisher: EventPublisher,
) -> MessageService:
    return MessageService(db_session, dispatcher, publisher)


@pytest.fixture()
def conversation_service(
    db_session: Session,
    dispatcher: RealtimeDispatcher,
    publisher: EventPublisher,
    directory: UserDirectory,
    message_service: MessageService,
) -> ConversationService:
    return ConversationService(db_session, dispatcher, publisher, directory, message_service)


@pytest.fixture(scope="session")
def app() -> FastAPI:
    return fastapi_app


@pytest.fixture(autouse=True)
def override_session_dependency(app: FastAPI, db_session: Session) -> Iterator[None]:
    def _get_session_override() -> Generator[Session, None, None]:
        yield db_session

    def _session_factory_override() -> Callable[[], AbstractContextManager[Session]]:
        return lambda: nullcontext(db_session)

    app.dependency_overrides[app_get_session] = _get_session_override
    app.dependency_overrides[get_session_factory] = _session_factory_override
    try:
        yield
    finally:
        app.dependency_overrides.pop(app_get_session, None)
        app.dependency_overrides.pop(get_session_factory, None)


@pytest.fixture(autouse=True)
def override_service_dependencies(
    app: FastAPI,
    dispatcher: RealtimeDispatcher,
    publisher: EventPublisher,
    directory: UserDirectory,
) -> Iterator[None]:
    overrides: dict[Callable[..., Any], Callable[[], Any]] = {
        get_dispatcher: lambda: dispatcher,
        get_event_publisher: lambda: publisher,
        get_user_directory: lambda: directory,
    }
    app.dependency_overrides.update(overrides)
    try:
        yield
    finally:
        for dependency in overrides:
            app.dependency_overrides.pop(dependency, None)


@pytest.fixture()
def client(app: FastAPI) -> Iterator[TestClient]:
    with TestClient(app, base_url="http://test") as test_client:
        yield test_client


def _identity(username: str, display_name: str) -> UserIdentity:
    return UserIdentity(
        user_id=uuid.uuid4(),
        username=username,
        display_name=display_name,
        avatar_url=f"https://cdn.example.com/avatars/{username}.png",
    )


def auth_headers(identity: UserIdentity) -> dict[str, str]:
    """Return bearer headers carrying the identity's claims."""
    token = create_access_token(
        identity.user_id,
        username=identity.username,
        display_name=identity.display_name,
        avatar_url=identity.avatar_url,
    )
    return {"Authorization": f"Bearer {token}"}


def ws_token(identity: UserIdentity) -> str:
    """Return a token suitable for the WebSocket ``token`` query parameter."""
    return create_access_token(identity.user_id, username=identity.username)


@pytest.fixture()
def alice() -> UserIdentity:
    return _identity("alice", "Alice Liddell")


@pytest.fixture()
def bob() -> UserIdentity:
    return _identity("bob", "Bob Builder")


@pytest.fixture()
def carol() -> UserIdentity:
    return _identity("carol", "Carol Danvers")


@pytest.fixture()
def alice_headers(alice: UserIdentity) -> dict[str, str]:
    return auth_headers(alice)


@pytest.fixture()
def bob_headers(bob: UserIdentity) -> dict[str, str]:
    return auth_headers(bob)


@pytest.fixture()
def carol_headers(carol: UserIdentity) -> dict[str, str]:
    return auth_headers(carol)


@pytest.fixture()
def headers_for() -> Callable[[UserIdentity], dict[str, str]]:
    return auth_headers


@pytest.fixture()
def token_for() -> Callable[[UserIdentity], str]:
    return ws_token


@pytest.fixture()
def connect(dispatcher: RealtimeDispatcher) -> Callable[..., FakeConnection]:
    """Register a fake live connection for a user, optionally viewing conversations."""

    def _connect(
        identity: UserIdentity,
        *viewing: uuid.UUID,
        failing: bool = False,
    ) -> FakeConnection:
        connection_cls = FailingConnection if failing else FakeConnection
        connection = connection_cls(identity.user_id)
        dispatcher.connect(connection)
        for conversation_id in viewing:
            dispatcher.join_conversation(connection, conversation_id)
        return connection

    return _connect
