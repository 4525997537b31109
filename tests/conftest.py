"""Pytest configuration and fixtures.

Every test gets its own SQLite file with a freshly created schema:
- ``db``: a session bound to that database
- ``client``: FastAPI TestClient whose ``get_db`` uses the same database
- ``make_user``: creates a profile directly in a role table
- ``login``: signs in through the API and returns the token
"""

import os
import tempfile
from datetime import date

# Must be set before the application modules read their settings
os.environ["DATABASE_URL"] = f"sqlite:///{tempfile.mkdtemp()}/bootstrap.db"
os.environ.setdefault("SECRET_KEY", "test-secret")

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine, select
from sqlalchemy.orm import sessionmaker

from database import Base, get_db, init_db
from main import app
from models.settings import UserSettings
from models.users import ROLE_MODELS, STUDENT
from utils.hashing import get_password_hash
from utils.identity import allocate_id

DEFAULT_PASSWORD = "Secret123"


@pytest.fixture
def engine(tmp_path):
    engine = create_engine(f"sqlite:///{tmp_path / 'test.db'}", connect_args={"check_same_thread": False})
    init_db(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def client(session_factory):
    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture
def make_user(db):
    """Create a profile in the table that holds ``role_id``."""
    counter = {"n": 0}

    def _make(role_id: int = STUDENT, login: str = None, email: str = None,
              password: str = DEFAULT_PASSWORD, language: str = "ru", **extra):
        counter["n"] += 1
        login = login or f"user{counter['n']}"
        email = email or f"{login}@example.com"
        model = ROLE_MODELS[role_id]
        profile = model(
            id=allocate_id(db),
            email=email,
            login=login,
            password_hash=get_password_hash(password),
            role_id=role_id,
            first_name="Test",
            last_name="User",
            birth_date=date(2008, 5, 17),
            profileCompleted=False,
            **extra,
        )
        db.add(profile)
        db.add(UserSettings(user_id=profile.id, language=language))
        db.commit()
        return profile

    return _make


@pytest.fixture
def login(client):
    def _login(identifier: str, password: str = DEFAULT_PASSWORD) -> str:
        response = client.post("/auth/login", json={"identifier": identifier, "password": password})
        assert response.status_code == 200, response.text
        # Tests authenticate with explicit headers, never with the cookie jar
        client.cookies.clear()
        return response.json()["token"]

    return _login


def auth(token: str) -> dict:
    return {"Authorization": f"Bearer {token}"}


def snapshot(session) -> dict:
    """Every row of every table, for before/after comparisons."""
    session.expire_all()
    return {
        table.name: sorted(tuple(row) for row in session.execute(select(table)).all())
        for table in Base.metadata.sorted_tables
    }
