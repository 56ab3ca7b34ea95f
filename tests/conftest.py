"""
Pytest configuration and fixtures for A Bordo tests.
"""

import os
import sys
from datetime import date
from pathlib import Path

# Make the repo root importable
root_path = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(root_path))

# Set environment variables for testing BEFORE any imports
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("AUTO_CREATE_DB", "false")
os.environ.setdefault("ENABLE_EMAIL", "false")
os.environ.setdefault("EMAIL_PROVIDER", "console")
os.environ.setdefault("RATE_LIMIT", "10000/minute")
os.environ.setdefault("JWT_SECRET", "test_jwt_secret_for_testing_only")
os.environ.setdefault("FRONTEND_URL", "https://app.abordo.test")

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from abordo.db import Base, enable_sqlite_foreign_keys, get_db
from abordo.errors import TransportError
from abordo.models import models  # noqa: F401
from abordo.models.models import User, Vehicle
from abordo.auth.security import create_access_token, get_password_hash


TODAY = date(2026, 3, 2)


class FakeTransport:
    """Records every message; raises TransportError while ``fail`` is set."""

    name = "fake"

    def __init__(self):
        self.sent = []
        self.fail = False

    def send(self, to, subject, html):
        if self.fail:
            raise TransportError("SMTP send failed: connection refused")
        self.sent.append({"to": to, "subject": subject, "html": html})
        return f"fake-{len(self.sent)}"


@pytest.fixture
def engine():
    eng = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    enable_sqlite_foreign_keys(eng)
    Base.metadata.create_all(bind=eng)
    yield eng
    Base.metadata.drop_all(bind=eng)
    eng.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False, autocommit=False)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def today():
    return TODAY


@pytest.fixture
def transport():
    return FakeTransport()


@pytest.fixture
def make_user(db):
    counter = {"n": 0}

    def _make(**overrides):
        counter["n"] += 1
        data = {
            "email": f"driver{counter['n']}@example.com",
            "password_hash": get_password_hash("password123"),
            "first_name": "Giulia",
            "last_name": "Rossi",
            "email_notifications": True,
        }
        data.update(overrides)
        user = User(**data)
        db.add(user)
        db.commit()
        return user

    return _make


@pytest.fixture
def make_vehicle(db):
    counter = {"n": 0}

    def _make(user, **overrides):
        counter["n"] += 1
        data = {
            "user_id": user.id,
            "plate_number": f"AB{counter['n']:03d}CD",
            "brand": "Fiat",
            "model": "Panda",
            "year": 2019,
            "current_mileage": 42000,
            "fuel_type": "gasoline",
        }
        data.update(overrides)
        vehicle = Vehicle(**data)
        db.add(vehicle)
        db.commit()
        return vehicle

    return _make


@pytest.fixture
def user(make_user):
    return make_user()


@pytest.fixture
def vehicle(make_vehicle, user):
    return make_vehicle(user)


@pytest.fixture
def client(session_factory, user, transport, today):
    from fastapi.testclient import TestClient
    from abordo.main import app
    from abordo.routes.notifications import get_mail_transport
    from abordo.services.status import current_day

    def _get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = _get_db
    app.dependency_overrides[get_mail_transport] = lambda: transport
    app.dependency_overrides[current_day] = lambda: today

    with TestClient(app) as c:
        c.headers.update({"Authorization": f"Bearer {create_access_token(str(user.id))}"})
        yield c
    app.dependency_overrides.clear()
