"""
Test configuration and fixtures.

Provides:
- A fresh in-memory SQLite database per test (service code may commit freely)
- Clinic / staff / patient identifiers
- An appointment factory that books through the placement engine
- HTTPX AsyncClient over the ASGI app with get_db overridden
"""
import os
import uuid
from datetime import datetime, timezone
from typing import Generator

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("CLINIC_TIMEZONE", "UTC")

from clinic_scheduler.core.deps import get_db
from clinic_scheduler.db.base import Base
from clinic_scheduler.main import app
from clinic_scheduler.services import placement_service

# Fixed clock for service tests; scenario day is 2024-06-10 (a Monday)
BEFORE_SCENARIO = datetime(2024, 6, 1, 8, 0, tzinfo=timezone.utc)


def at(hour: int, minute: int = 0, day: int = 10) -> datetime:
    """UTC instant on June 2024."""
    return datetime(2024, 6, day, hour, minute, tzinfo=timezone.utc)


# =============================================================================
# Database Fixtures
# =============================================================================

@pytest.fixture(scope="function")
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield engine
    Base.metadata.drop_all(engine)
    engine.dispose()


@pytest.fixture(scope="function")
def db(engine) -> Generator[Session, None, None]:
    """Session on the per-test database."""
    session = sessionmaker(autoflush=False, bind=engine)()
    yield session
    session.close()


# =============================================================================
# Identity Fixtures
# =============================================================================

@pytest.fixture
def clinic_id() -> uuid.UUID:
    return uuid.uuid4()


@pytest.fixture
def staff_id() -> uuid.UUID:
    return uuid.uuid4()


@pytest.fixture
def patient_id() -> uuid.UUID:
    return uuid.uuid4()


@pytest.fixture
def make_appointment(db, clinic_id, staff_id, patient_id):
    """Book an appointment with the clock set before the scenario day."""

    def _make(start, end, *, staff=None, clinic=None, label="Alice Smith", room=None):
        return placement_service.book_appointment(
            db,
            clinic_id=clinic or clinic_id,
            patient_id=patient_id,
            staff_id=staff or staff_id,
            start=start,
            end=end,
            treatment="Cleaning",
            room=room,
            patient_label=label,
            now=BEFORE_SCENARIO,
        )

    return _make


# =============================================================================
# HTTP Client Fixtures
# =============================================================================

@pytest.fixture
async def client(db):
    """Async client with the app's get_db bound to the test session."""

    def override_get_db():
        yield db

    app.dependency_overrides[get_db] = override_get_db
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as c:
        yield c
    app.dependency_overrides.clear()
