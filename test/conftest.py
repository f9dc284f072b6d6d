import os
import sys
from datetime import datetime, timedelta

import pytest

# Configure before any app module reads the environment
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["REAPER_ENABLED"] = "false"
os.environ["GEOIP_DB_PATH"] = ""
os.environ["JWT_SECRET_KEY"] = "test-secret-key"

# Add the project root to Python path
sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

import models
import utils
from auth import create_access_token
from database import Base, build_engine, get_db

NOW = datetime(2026, 6, 30, 12, 0, 0)

CHROME_WINDOWS = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)
SAFARI_IPHONE = (
    "Mozilla/5.0 (iPhone; CPU iPhone OS 17_0 like Mac OS X) AppleWebKit/605.1.15 "
    "(KHTML, like Gecko) Version/17.0 Mobile/15E148 Safari/604.1"
)
SAFARI_IPAD = (
    "Mozilla/5.0 (iPad; CPU OS 16_6 like Mac OS X) AppleWebKit/605.1.15 "
    "(KHTML, like Gecko) Version/16.6 Mobile/15E148 Safari/604.1"
)
GOOGLEBOT = "Mozilla/5.0 (compatible; Googlebot/2.1; +http://www.google.com/bot.html)"


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
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
def make_visit(db):
    """Insert a committed visit with sensible defaults"""

    def _make_visit(**overrides):
        created_at = overrides.pop("created_at", NOW)
        user_agent = overrides.pop("user_agent", CHROME_WINDOWS)
        fields = {
            "session_id": "session_test",
            "ip_address": "203.0.113.5",
            "user_agent": user_agent,
            "ua_hash": utils.hash_user_agent(user_agent),
            "device_type": "desktop",
            "traffic_source": "direct",
            "current_path": "/",
            "created_at": created_at,
            "updated_at": created_at,
            "last_activity": created_at,
        }
        fields.update(overrides)
        visit = models.Visit(**fields)
        db.add(visit)
        db.commit()
        db.refresh(visit)
        return visit

    return _make_visit


@pytest.fixture
def client(session_factory):
    from main import app

    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def broken_client():
    """Client whose database cannot be opened"""
    from main import app

    broken_engine = build_engine("sqlite:////nonexistent-dir/visits.db")
    BrokenSession = sessionmaker(autocommit=False, autoflush=False, bind=broken_engine)

    def override_get_db():
        session = BrokenSession()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    yield TestClient(app)
    app.dependency_overrides.clear()
    broken_engine.dispose()


@pytest.fixture
def admin_headers():
    token = create_access_token({"sub": "1", "role": "admin"})
    return {"Authorization": f"Bearer {token}"}


def days_ago(days, now=NOW):
    return now - timedelta(days=days)
