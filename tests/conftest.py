import pytest
from cryptography.fernet import Fernet
from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool
from sqlmodel import SQLModel, Session

import auth
import db
from models import Notification, Task, TaskParticipant, User  # noqa: F401 (registers tables)
from notification_service import NotificationService
from schemas import Principal
from task_service import TaskService


class FakeBroadcaster:
    """Records every emit_to_user call as (user_id, event, payload)."""

    def __init__(self):
        self.events = []

    async def emit_to_user(self, user_id, event, payload):
        self.events.append((user_id, event, payload))

    def for_user(self, user_id):
        return [(event, payload) for uid, event, payload in self.events if uid == user_id]


@pytest.fixture
def in_memory_engine(monkeypatch):
    # StaticPool: one shared connection, so threads (TestClient) see the same database.
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SQLModel.metadata.create_all(engine)
    monkeypatch.setattr(db, "get_engine", lambda: engine)
    monkeypatch.setattr(db, "init_db", lambda: None)
    return engine


@pytest.fixture
def db_session(in_memory_engine):
    with Session(in_memory_engine) as session:
        yield session


@pytest.fixture(autouse=True)
def token_key(monkeypatch):
    """Fresh signing key per test; cheap password hashing."""
    monkeypatch.setenv("TASKS_TOKEN_KEY", Fernet.generate_key().decode())
    monkeypatch.setattr(auth, "_fernet", None)
    monkeypatch.setattr(auth, "PASSWORD_ITERATIONS", 1000)


@pytest.fixture
def seed_users(db_session):
    """Insert owner, bob and carol; return their Principals keyed by name."""
    principals = {}
    for name in ("owner", "bob", "carol"):
        user = User(username=name, email=f"{name}@example.com", password_hash="")
        db_session.add(user)
        db_session.commit()
        db_session.refresh(user)
        principals[name] = Principal(id=user.id, username=user.username, email=user.email)
    return principals


@pytest.fixture
def broadcaster():
    return FakeBroadcaster()


@pytest.fixture
def notifications(in_memory_engine, broadcaster):
    return NotificationService(broadcaster)


@pytest.fixture
def tasks(notifications):
    return TaskService(notifications)
