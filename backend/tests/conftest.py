# backend/tests/conftest.py
"""
Pytest configuration for the messaging core.

Every test gets its own SQLite in-memory engine (StaticPool, so the app's
worker threads and the test share one connection) and the in-process
``memory://`` fan-out backend.
"""

import os

# Set testing mode BEFORE any qachat imports
os.environ["IS_TESTING"] = "true"
os.environ["DATABASE_URL"] = "sqlite+pysqlite:///:memory:"
os.environ["BROADCAST_URL"] = "memory://"
os.environ["BACKGROUND_TASKS_ENABLED"] = "false"
os.environ["SECRET_KEY"] = "qachat-test-secret-key-0123456789abcdef"

from datetime import timedelta
from typing import Any, Callable, Dict, Iterable, Iterator, List, Tuple

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool
import ulid

from qachat.auth import create_access_token
from qachat.core.config import settings
from qachat.core.enums import RoleName
from qachat.database import Base
import qachat.models  # noqa: F401
from qachat.models.user import User

settings.is_testing = True
settings.background_tasks_enabled = False


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        future=True,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    Base.metadata.create_all(engine)
    yield engine
    Base.metadata.drop_all(engine)
    engine.dispose()


@pytest.fixture
def session_factory(engine) -> Callable[[], Session]:
    return sessionmaker(bind=engine, autocommit=False, autoflush=False, expire_on_commit=False)


@pytest.fixture
def db(session_factory) -> Iterator[Session]:
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def make_user(db: Session) -> Callable[..., User]:
    def _make(name: str, role: RoleName = RoleName.TESTER, **fields: Any) -> User:
        user = User(
            id=str(ulid.ULID()),
            email=f"{name.lower().replace(' ', '.')}@qa.example.com",
            name=name,
            role=role.value,
            **fields,
        )
        db.add(user)
        db.commit()
        return user

    return _make


@pytest.fixture
def alice(make_user) -> User:
    return make_user("Alice")


@pytest.fixture
def bob(make_user) -> User:
    return make_user("Bob", RoleName.DEVELOPER)


@pytest.fixture
def carol(make_user) -> User:
    return make_user("Carol")


@pytest.fixture
def admin(make_user) -> User:
    return make_user("Ada Admin", RoleName.ADMIN)


def token_for(user: User, expires: timedelta = timedelta(minutes=30)) -> str:
    return create_access_token({"sub": str(user.id)}, expires_delta=expires)


def auth_headers(user: User) -> Dict[str, str]:
    return {"Authorization": f"Bearer {token_for(user)}"}


class PublishRecorder:
    """Stand-in for the fan-out publishers; records what would be sent."""

    def __init__(self) -> None:
        self.to_users: List[Tuple[List[str], Dict[str, Any]]] = []
        self.global_events: List[Dict[str, Any]] = []

    async def publish(self, user_ids: Iterable[str], event: Dict[str, Any]) -> None:
        self.to_users.append((list(user_ids), event))

    async def publish_all(self, event: Dict[str, Any]) -> None:
        self.global_events.append(event)

    def types(self) -> List[str]:
        return [event["type"] for _, event in self.to_users]

    def global_types(self) -> List[str]:
        return [event["type"] for event in self.global_events]


@pytest.fixture
def recorder() -> PublishRecorder:
    return PublishRecorder()


@pytest.fixture
def client(session_factory) -> Iterator[TestClient]:
    from qachat.main import app

    app.state.session_factory = session_factory
    try:
        with TestClient(app) as test_client:
            yield test_client
    finally:
        app.state.session_factory = None
        app.state.hub = None


@pytest.fixture
def headers_for() -> Callable[[User], Dict[str, str]]:
    return auth_headers


@pytest.fixture
def ws_url() -> Callable[[User], str]:
    def _url(user: User) -> str:
        return f"/api/v1/realtime/ws?token={token_for(user)}"

    return _url
