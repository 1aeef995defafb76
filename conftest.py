"""
pytest configuration – point the service at a throw-away database and a
cheap bcrypt cost before the app is imported, then reset users, audit
rows, rate-limit windows and sessions around every test.
"""
import os

os.environ.setdefault("SENTINEL_DATABASE_URL", "sqlite:///./test_sentinel.db")
os.environ.setdefault("SENTINEL_BCRYPT_ROUNDS", "4")
os.environ.setdefault("SENTINEL_LOG_FORMAT", "text")
os.environ.setdefault("SENTINEL_ADMIN_USERNAME", "admin")
os.environ.setdefault("SENTINEL_ADMIN_PASSWORD", "admin-pass-123")

import pytest
from fastapi.testclient import TestClient

from sentinel.database import Base, db_session, engine
from sentinel.models import LoginHistory, User
from sentinel.auth.seed import seed_admin
from sentinel.main import app, credential_store, hasher, login_limiter, session_registry

ADMIN_USERNAME = "admin"
ADMIN_PASSWORD = "admin-pass-123"


@pytest.fixture(autouse=True, scope="session")
def create_tables():
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture(autouse=True)
def reset_state():
    """Every test starts with only the bootstrap admin and no throttling or sessions."""
    with db_session() as session:
        session.query(LoginHistory).delete()
        session.query(User).delete()
    seed_admin(credential_store, hasher)
    login_limiter.reset()
    session_registry.clear()
    yield
    login_limiter.reset()
    session_registry.clear()


def _new_client() -> TestClient:
    return TestClient(app, base_url="https://testserver", follow_redirects=False)


@pytest.fixture
def client() -> TestClient:
    return _new_client()


@pytest.fixture
def make_client():
    """Factory for additional, independent browser-like clients."""
    return _new_client


@pytest.fixture
def csrf_token():
    """Fetch (or reuse) the CSRF cookie for a client and return its value."""
    def _token(c: TestClient) -> str:
        token = c.cookies.get("XSRF-TOKEN")
        if token is None:
            c.get("/login")
            token = c.cookies.get("XSRF-TOKEN")
        assert token, "CSRF cookie was not issued"
        return token
    return _token


@pytest.fixture
def login(csrf_token):
    """POST the login form the way a browser would and return the raw response."""
    def _login(c: TestClient, username: str, password: str):
        return c.post(
            "/api/login",
            data={"username": username, "password": password, "_csrf": csrf_token(c)},
        )
    return _login


@pytest.fixture
def register(client):
    def _register(username: str, password: str):
        return client.post("/api/register", json={"username": username, "password": password})
    return _register
