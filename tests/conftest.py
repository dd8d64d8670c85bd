# tests/conftest.py
from __future__ import annotations

import os
from collections.abc import Generator, Iterator
from datetime import UTC, datetime
from itertools import count
from typing import Any

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

os.environ.setdefault("SECRET_KEY", "parley-test-secret")
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["SCHEDULER_ENABLED"] = "false"
os.environ["AUTO_CREATE_TABLES"] = "false"

from parley.core.security import create_access_token
from parley.db.session import Base
from parley.db.session import get_db as app_get_session
from parley.main import app as fastapi_app
from parley.models import Group, GroupMember, User
from parley.services.delivery import DeliveryRouter
from parley.services.presence import PresenceRegistry
from parley.services.projector import ConversationProjector
from parley.services.scheduler import LifecycleScheduler

TEST_DB_URL = "sqlite://"

_USER_COUNTER = count(1)


class FakeConnection:
    """Connection handle that records every event pushed to it."""

    def __init__(self, *, fail: bool = False) -> None:
        self.events: list[tuple[str, dict[str, Any]]] = []
        self.fail = fail

    async def send_event(self, event: str, payload: dict[str, Any]) -> None:
        if self.fail:
            raise ConnectionError("socket closed")
        self.events.append((event, payload))

    def named(self, event: str) -> list[dict[str, Any]]:
        """Return the payloads received under ``event``."""
        return [payload for name, payload in self.events if name == event]


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
    # Code under test commits and rolls back on its own, so every test
    # starts from emptied tables instead of an outer transaction.
    TestingSession = sessionmaker(bind=engine, autocommit=False, autoflush=False)
    session = TestingSession()
    try:
        yield session
    finally:
        session.rollback()
        session.close()
        with engine.begin() as cleanup_conn:
            for table in reversed(Base.metadata.sorted_tables):
                cleanup_conn.execute(table.delete())


@pytest.fixture(scope="session")
def app() -> FastAPI:
    return fastapi_app


@pytest.fixture(autouse=True)
def override_session_dependency(app: FastAPI, db_session: Session) -> Iterator[None]:
    def _get_session_override() -> Generator[Session, None, None]:
        yield db_session

    app.dependency_overrides[app_get_session] = _get_session_override
    try:
        yield
    finally:
        app.dependency_overrides.pop(app_get_session, None)


@pytest.fixture()
def presence() -> PresenceRegistry:
    return PresenceRegistry()


@pytest.fixture()
def projector() -> ConversationProjector:
    return ConversationProjector()


@pytest.fixture()
def router(presence: PresenceRegistry, projector: ConversationProjector) -> DeliveryRouter:
    return DeliveryRouter(presence, projector)


@pytest.fixture()
def scheduler(router: DeliveryRouter, db_session: Session) -> Iterator[LifecycleScheduler]:
    worker = LifecycleScheduler(router, db_session=db_session, interval=60)
    yield worker


@pytest.fixture()
def engine_state(
    app: FastAPI,
    presence: PresenceRegistry,
    router: DeliveryRouter,
    scheduler: LifecycleScheduler,
) -> Iterator[None]:
    """Swap fresh engine components onto the application for one test."""
    saved = (app.state.presence, app.state.router, app.state.scheduler)
    app.state.presence = presence
    app.state.router = router
    app.state.scheduler = scheduler
    try:
        yield
    finally:
        app.state.presence, app.state.router, app.state.scheduler = saved


@pytest.fixture()
def client(app: FastAPI, engine_state: None) -> Iterator[TestClient]:
    with TestClient(app, base_url="http://test") as test_client:
        yield test_client


@pytest.fixture()
def now() -> datetime:
    """Fixed reference instant for deterministic lifecycle tests."""
    return datetime(2030, 1, 1, 12, 0, tzinfo=UTC)


def make_user(db: Session, fullname: str) -> User:
    number = next(_USER_COUNTER)
    handle = fullname.lower().replace(" ", "")
    user = User(
        fullname=fullname,
        username=f"{handle}{number}",
        email=f"{handle}{number}@example.com",
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


@pytest.fixture()
def alice(db_session: Session) -> User:
    return make_user(db_session, "Alice Doe")


@pytest.fixture()
def bob(db_session: Session) -> User:
    return make_user(db_session, "Bob Roe")


@pytest.fixture()
def carol(db_session: Session) -> User:
    return make_user(db_session, "Carol Poe")


@pytest.fixture()
def group(db_session: Session, alice: User, bob: User, carol: User) -> Group:
    """Group created by alice with bob and carol as plain members."""
    group = Group(
        name="Weekend Plans",
        creator_id=alice.id,
        members=[
            GroupMember(user_id=alice.id, is_admin=True),
            GroupMember(user_id=bob.id),
            GroupMember(user_id=carol.id),
        ],
    )
    db_session.add(group)
    db_session.commit()
    db_session.refresh(group)
    return group


@pytest.fixture()
def auth_token(alice: User) -> dict[str, str]:
    """Return authorization headers for alice."""
    token = create_access_token(alice.id)
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture()
def other_auth_token(bob: User) -> dict[str, str]:
    """Return authorization headers for bob."""
    token = create_access_token(bob.id)
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture()
def user_factory(db_session: Session):
    """Create extra users on demand."""

    def _make(fullname: str = "Extra User") -> User:
        return make_user(db_session, fullname)

    return _make


@pytest.fixture()
def connect(presence: PresenceRegistry):
    """Bring users online with recording connections."""

    def _connect(user: User, *, fail: bool = False) -> FakeConnection:
        connection = FakeConnection(fail=fail)
        presence.register(user.id, connection)
        return connection

    return _connect
