"""Pytest fixtures: test client, test DB (in-memory SQLite), fake push sender, offline store."""
import os
import uuid

import pytest
from fastapi.testclient import TestClient

# In-memory SQLite for tests (must be set before fitlife.main is imported)
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")
os.environ.setdefault("SECRET_KEY", "test-secret-key")
os.environ.setdefault("ADMIN_SECRET", "test-admin-secret")
os.environ.setdefault("VAPID_PUBLIC_KEY", "BTestPublicKey")
os.environ.setdefault("VAPID_PRIVATE_KEY", "test-private-key")

from sqlmodel import Session

from fitlife.api.deps import get_push_sender
from fitlife.core.database import engine, init_db
from fitlife.core.security import create_access_token
from fitlife.main import app
from fitlife.models import Member
from fitlife.offline.store import LocalStore
from fitlife.services.push_delivery import PushDeliveryError


class FakeSender:
    """Stands in for PushSender: records every delivery, fails the endpoints it is told to."""

    def __init__(self):
        self.sent: list[tuple[str, dict]] = []
        self.gone: set[str] = set()
        self.broken: set[str] = set()

    def send(self, subscription_info: dict, payload: dict) -> int:
        endpoint = subscription_info["endpoint"]
        if endpoint in self.gone:
            raise PushDeliveryError("410 Gone", status_code=410, gone=True)
        if endpoint in self.broken:
            raise PushDeliveryError("500 push service error", status_code=500)
        self.sent.append((endpoint, payload))
        return 201


class Clock:
    """Manual clock for the offline runtime (seconds)."""

    def __init__(self, now: float = 1_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def sender():
    fake = FakeSender()
    app.dependency_overrides[get_push_sender] = lambda: fake
    yield fake
    app.dependency_overrides.pop(get_push_sender, None)


@pytest.fixture(scope="function")
def client(sender):
    """TestClient; lifespan creates the tables of the in-memory DB."""
    with TestClient(app) as c:
        yield c


@pytest.fixture
def db():
    init_db()
    with Session(engine) as session:
        yield session


def make_member(session: Session, is_active: bool = True) -> Member:
    member = Member(email=f"{uuid.uuid4().hex[:12]}@fitlife.test", full_name="Test Member", is_active=is_active)
    session.add(member)
    session.commit()
    session.refresh(member)
    return member


@pytest.fixture
def member(db):
    return make_member(db)


@pytest.fixture
def member_factory(db):
    return lambda **kw: make_member(db, **kw)


@pytest.fixture
def auth_headers(member):
    """Authorization header for the ``member`` fixture."""
    return {"Authorization": f"Bearer {create_access_token({'sub': str(member.id)})}"}


@pytest.fixture
def clock():
    return Clock()


@pytest.fixture
def store(clock):
    s = LocalStore("sqlite:///:memory:", clock=clock)
    yield s
    s.close()
