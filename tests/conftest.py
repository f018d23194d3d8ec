import pytest
from fastapi.testclient import TestClient

from planner.app import create_app
from planner.auth import create_session_token, ensure_user_account
from planner.config import Settings


@pytest.fixture
def settings(tmp_path):
    return Settings(
        database_url=f"sqlite:///{tmp_path / 'planner.db'}",
        session_secret="test-secret",
        origin="http://testserver",
    )


@pytest.fixture
def app(settings):
    return create_app(settings)


@pytest.fixture
def client(app):
    with TestClient(app) as c:
        yield c


@pytest.fixture
def store(app, client):
    # `client` runs the lifespan, which creates the tables
    return app.state.store


@pytest.fixture
def make_user(store):
    def _make(email):
        with store.begin() as conn:
            return dict(ensure_user_account(conn, email))
    return _make


@pytest.fixture
def user(make_user):
    return make_user("me@example.com")


@pytest.fixture
def auth_client(client, settings, user):
    client.headers["Authorization"] = f"Bearer {create_session_token(settings, user['id'])}"
    return client
