"""
Shared fixtures.

The application reads its settings at import time, so the environment is
pointed at an in-memory SQLite database before anything else is imported.
"""
import os

os.environ["DATABASE_URL"] = "sqlite://"
os.environ["ADMIN_TOKEN"] = "test-admin"

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402

from database import Base, SessionLocal, engine  # noqa: E402

ADMIN = {"X-Admin-Token": "test-admin"}


@pytest.fixture
def db_session():
    """Fresh schema for every test."""
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def client(db_session):
    from main import app
    return TestClient(app)


@pytest.fixture
def admin_headers():
    return dict(ADMIN)
