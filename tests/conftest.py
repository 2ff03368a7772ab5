import pytest
from fastapi.testclient import TestClient
from sqlmodel import Session

from config import Settings
from db import create_db_and_tables, make_engine
from factories import new_user
from main import create_app
from models import Role
from permissions import Actor
from routers.auth import create_session_token


@pytest.fixture
def engine():
    engine = make_engine("sqlite://")
    create_db_and_tables(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session(engine):
    with Session(engine) as session:
        yield session


@pytest.fixture
def actor(session):
    """Factory: persist a user with ``role`` and return its Actor."""

    def _make(role: Role) -> Actor:
        return Actor.from_user(new_user(session, role))

    return _make


@pytest.fixture
def app():
    settings = Settings(
        database_url="sqlite://",
        secret_key="test-secret",
        log_level="WARNING",
    )
    return create_app(settings)


@pytest.fixture
def client(app):
    with TestClient(app) as client:
        yield client


@pytest.fixture
def login_as(app, client):
    """Factory: create a user with ``role`` and return (user_id, auth headers)."""

    def _make(role: Role):
        with Session(app.state.engine) as session:
            user_id = new_user(session, role).id
        token = create_session_token(app.state.serializer, user_id)
        return user_id, {"Authorization": f"Bearer {token}"}

    return _make
