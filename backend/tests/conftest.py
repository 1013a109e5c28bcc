"""
Shared fixtures: an in-memory SQLite database recreated for every test and
TestClients authenticated as freshly registered users.
"""
import os
import sys

os.environ["DATABASE_URL"] = "sqlite://"
os.environ["EVENT_BACKEND"] = "local"

# Add parent directory to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402

from app.database import Base, SessionLocal, engine  # noqa: E402
from app.main import app  # noqa: E402


@pytest.fixture(autouse=True)
def database():
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def db():
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


def register(username: str, password: str = "secret123") -> TestClient:
    """Register a user and return a client that sends their bearer token."""
    client = TestClient(app)
    response = client.post(
        "/api/auth/register",
        json={
            "username": username,
            "email": f"{username}@example.com",
            "password": password,
            "firstName": username.title(),
        },
    )
    assert response.status_code == 201, response.text
    body = response.json()
    client.cookies.clear()
    client.headers["Authorization"] = f"Bearer {body['token']}"
    client.user = body["user"]
    client.token = body["token"]
    return client


@pytest.fixture
def alice() -> TestClient:
    return register("alice")


@pytest.fixture
def bob() -> TestClient:
    return register("bob")


@pytest.fixture
def anonymous() -> TestClient:
    return TestClient(app)
