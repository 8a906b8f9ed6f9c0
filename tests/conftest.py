"""
Test configuration and fixtures.

Provides:
- In-memory SQLite schema created and dropped around each test
- A pinned, movable clock behind the get_now dependency
- Associations, users and bearer headers for each role
- HTTPX AsyncClient over the ASGI app
"""
import os
import uuid
from datetime import date, datetime, time
from typing import AsyncGenerator, Generator

os.environ["DATABASE_URL"] = "sqlite://"
os.environ["BCRYPT_ROUNDS"] = "4"
os.environ["CREATE_TABLES_ON_START"] = "false"
os.environ["SECRET_KEY"] = "test-secret-key"
os.environ["EMAIL_API_KEY"] = ""
os.environ["TIMEZONE"] = ""

import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from sqlalchemy.orm import Session

from maraude_tracker.main import app
from maraude_tracker.database import Base, SessionLocal, engine, get_db
from maraude_tracker.auth.utils import hash_password, token_for_user
from maraude_tracker.models.db_models import (
    Association, DistributionCategory, DistributionType, MaraudeAction, User, UserRole
)
from maraude_tracker.services.schedule import get_now

PASSWORD = "secret123"

# Wednesday
WEDNESDAY = date(2025, 9, 17)


class Clock:
    """Mutable "now" shared by the app and the test."""

    def __init__(self, now: datetime):
        self.now = now

    def set(self, when: datetime) -> None:
        self.now = when


# =============================================================================
# Database Fixtures
# =============================================================================

@pytest.fixture(scope="function")
def db() -> Generator[Session, None, None]:
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    yield session
    session.close()
    Base.metadata.drop_all(bind=engine)


@pytest.fixture(scope="function")
def clock() -> Clock:
    return Clock(datetime.combine(WEDNESDAY, time(17, 0)))


@pytest_asyncio.fixture(scope="function")
async def client(db: Session, clock: Clock) -> AsyncGenerator[AsyncClient, None]:
    def override_get_db():
        yield db

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_now] = lambda: clock.now

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()

# =============================================================================
# Entity Fixtures
# =============================================================================

def make_user(db: Session, association: Association, role: UserRole, email: str, **fields) -> User:
    user = User(
        first_name=fields.pop("first_name", role.value.capitalize()),
        last_name=fields.pop("last_name", "Test"),
        email=email,
        hashed_password=hash_password(fields.pop("password", PASSWORD)),
        role=role,
        association_id=association.id,
        is_active=fields.pop("is_active", True),
        **fields,
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


def auth_headers(user: User) -> dict:
    return {"Authorization": f"Bearer {token_for_user(user)}"}


@pytest.fixture
def association(db: Session) -> Association:
    association = Association(name="Solidarité Paris", email="contact@solidarite-paris.org", is_active=True)
    db.add(association)
    db.commit()
    db.refresh(association)
    return association


@pytest.fixture
def other_association(db: Session) -> Association:
    association = Association(name="Entraide Lyon", email="contact@entraide-lyon.org", is_active=True)
    db.add(association)
    db.commit()
    db.refresh(association)
    return association


@pytest.fixture
def admin(db: Session, association: Association) -> User:
    return make_user(db, association, UserRole.ADMIN, "admin@solidarite-paris.org")


@pytest.fixture
def coordinator(db: Session, association: Association) -> User:
    return make_user(db, association, UserRole.COORDINATOR, "coord@solidarite-paris.org")


@pytest.fixture
def volunteer(db: Session, association: Association) -> User:
    return make_user(db, association, UserRole.VOLUNTEER, "benevole@solidarite-paris.org")


@pytest.fixture
def other_volunteer(db: Session, association: Association) -> User:
    return make_user(db, association, UserRole.VOLUNTEER, "benevole2@solidarite-paris.org", first_name="Second")


@pytest.fixture
def outsider(db: Session, other_association: Association) -> User:
    return make_user(db, other_association, UserRole.COORDINATOR, "coord@entraide-lyon.org")


@pytest.fixture
def distribution_types(db: Session) -> list:
    types = [
        DistributionType(name="Repas chaud", category=DistributionCategory.MEAL, color="#F97316"),
        DistributionType(name="Kit d'hygiène", category=DistributionCategory.HYGIENE),
        DistributionType(name="Couverture", category=DistributionCategory.CLOTHING),
    ]
    db.add_all(types)
    db.commit()
    for t in types:
        db.refresh(t)
    return types


@pytest.fixture
def action_factory(db: Session, association: Association, coordinator: User):
    def factory(**fields) -> MaraudeAction:
        values = dict(
            title="Maraude du soir",
            start_latitude=48.8566,
            start_longitude=2.3522,
            start_time=time(18, 0),
            is_recurring=True,
            day_of_week=3,
            is_active=True,
            association_id=association.id,
            created_by=coordinator.id,
            waypoints=[],
        )
        values.update(fields)
        if not values["is_recurring"]:
            values["day_of_week"] = None
            values.setdefault("scheduled_date", WEDNESDAY)
        action = MaraudeAction(**values)
        db.add(action)
        db.commit()
        db.refresh(action)
        return action
    return factory


def report_payload(action_id, report_date: date = WEDNESDAY, **fields) -> dict:
    payload = {
        "maraudeActionId": str(action_id),
        "reportDate": report_date.isoformat(),
        "startTime": "18:00",
        "endTime": "21:30",
        "beneficiariesCount": 12,
        "volunteersCount": 4,
    }
    payload.update(fields)
    return payload


def unique_email() -> str:
    return f"user-{uuid.uuid4().hex[:8]}@maraude-tests.org"
