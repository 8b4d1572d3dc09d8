"""
Pytest fixtures shared across all test modules.
Uses an in-memory SQLite database with StaticPool so all connections
share a single in-memory DB — no real Postgres or Redis required for tests.
"""

import json
import os

# Set env vars BEFORE any app module is imported
os.environ["DATABASE_URL"] = "sqlite:///:memory:"
os.environ["SECRET_KEY"] = "test-secret-key-min-32-chars-long!!"
os.environ["ALGORITHM"] = "HS256"
os.environ["REDIS_URL"] = ""

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

# Import app modules AFTER env vars are set
from app.database import Base, get_db  # noqa: E402
from app.main import app  # noqa: E402
from app.models.message import Message, MessageStatus  # noqa: E402
from app.models.user import User  # noqa: E402
from app.services.auth_service import create_access_token  # noqa: E402
from app.websocket.connection import Connection  # noqa: E402
from app.websocket.presence import PresenceRegistry  # noqa: E402

# Single shared in-memory SQLite engine — StaticPool ensures all
# connections share the same DB instance.
engine = create_engine(
    "sqlite:///:memory:",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture(autouse=True)
def setup_db():
    """Create tables before each test, drop after."""
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture()
def db():
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture()
def client(db):
    def override_get_db():
        yield db

    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def make_user(db, username: str, display_name: str | None = None) -> User:
    user = User(username=username, display_name=display_name)
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


def token_for(user: User) -> str:
    return create_access_token(user.id)


def auth_headers(user: User) -> dict:
    return {"Authorization": f"Bearer {token_for(user)}"}


def make_message(db, sender: User, receiver: User, content: str = "hi", status: MessageStatus = MessageStatus.SENT) -> Message:
    msg = Message(sender_id=sender.id, receiver_id=receiver.id, content=content, status=status.value)
    db.add(msg)
    db.commit()
    db.refresh(msg)
    return msg


class FakeSocket:
    """Stands in for a starlette WebSocket; records every frame sent to it."""

    def __init__(self):
        self.sent: list[dict] = []
        self.closed = False

    async def send_text(self, data: str):
        if self.closed:
            raise RuntimeError("socket closed")
        self.sent.append(json.loads(data))

    def types(self) -> list[str]:
        return [frame["type"] for frame in self.sent]

    def of_type(self, event_type: str) -> list[dict]:
        return [frame for frame in self.sent if frame["type"] == event_type]


def connect(presence: PresenceRegistry, user_id: int, name: str | None = None) -> Connection:
    """Register a new fake-socket connection for ``user_id``."""
    conn = Connection(FakeSocket())
    presence.register(user_id, conn, name or f"user{user_id}")
    return conn
