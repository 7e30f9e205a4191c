"""
Test configuration and shared fixtures for the booking core test suite.

Uses TEST_DATABASE_URL when set (PostgreSQL for the row-locking tests),
otherwise a temporary SQLite file. The schema is created once per session
and every table is emptied after each test. Services commit their own
transactions, so tests see exactly what a production caller would.
"""

import os
import tempfile
from datetime import timedelta
from decimal import Decimal
from typing import Any, Dict, Generator, List, Tuple

import pytest

_SQLITE_DIR = tempfile.mkdtemp(prefix="booking_core_tests_")
TEST_DATABASE_URL = os.getenv(
    "TEST_DATABASE_URL",
    f"sqlite:///{os.path.join(_SQLITE_DIR, 'test.db')}"
)
# core.database builds its engine at import time
os.environ["DATABASE_URL"] = TEST_DATABASE_URL

from sqlalchemy import create_engine  # noqa: E402
from sqlalchemy.orm import Session, sessionmaker  # noqa: E402
from sqlalchemy.pool import NullPool  # noqa: E402

from core.database import Base  # noqa: E402
import models  # noqa: E402,F401
from models import Booking, ResourcePool  # noqa: E402
from services.notification_service import set_notifier  # noqa: E402
from services.resource_pool_service import ResourcePoolService  # noqa: E402
from services.booking_service import BookingService  # noqa: E402
from shared_types.enums import NotificationEvent  # noqa: E402
from utils.datetime_utils import utc_now  # noqa: E402

IS_SQLITE = TEST_DATABASE_URL.startswith("sqlite")

# Actors used across tests
STAFF_ID = 900
AUTHORITY_ID = 901
PATIENT_USER_ID = 42
HOSPITAL_ID = 7


def pytest_collection_modifyitems(config, items):
    if not IS_SQLITE:
        return
    skip_sqlite = pytest.mark.skip(reason="needs PostgreSQL row-level locking (set TEST_DATABASE_URL)")
    for item in items:
        if "postgres" in item.keywords:
            item.add_marker(skip_sqlite)


@pytest.fixture(scope="session")
def db_engine():
    """
    Create a database engine for the test session.

    Uses NullPool so sessions opened from different threads never share a
    connection.
    """
    connect_args = {"check_same_thread": False} if IS_SQLITE else {}
    engine = create_engine(
        TEST_DATABASE_URL,
        poolclass=NullPool,
        connect_args=connect_args,
        echo=False,
    )
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)

    yield engine

    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture(scope="function")
def session_factory(db_engine) -> Generator[sessionmaker, None, None]:
    """
    Session factory bound to the test engine.

    Empties every table after the test so each test starts from a clean
    database.
    """
    factory = sessionmaker(
        bind=db_engine,
        autocommit=False,
        autoflush=False,
        expire_on_commit=False,
    )
    yield factory

    with db_engine.begin() as conn:
        for table in reversed(Base.metadata.sorted_tables):
            conn.execute(table.delete())


@pytest.fixture(scope="function")
def db_session(session_factory) -> Generator[Session, None, None]:
    """Provide a database session for a test."""
    session = session_factory()
    try:
        yield session
    finally:
        session.rollback()
        session.close()


class RecordingNotifier:
    """Notifier that records every event it receives."""

    def __init__(self) -> None:
        self.events: List[Tuple[NotificationEvent, int, int, Dict[str, Any]]] = []
        self.fail = False

    def notify(self, event, booking_id, recipient_user_id, details) -> None:
        if self.fail:
            raise RuntimeError("delivery channel unavailable")
        self.events.append((event, booking_id, recipient_user_id, details))

    def events_for(self, booking_id: int) -> List[NotificationEvent]:
        return [event for event, recorded_id, _, _ in self.events if recorded_id == booking_id]


@pytest.fixture(autouse=True)
def notifier() -> Generator[RecordingNotifier, None, None]:
    """Install a recording notifier for every test."""
    recorder = RecordingNotifier()
    set_notifier(recorder)
    yield recorder
    set_notifier(None)


@pytest.fixture
def pool_factory(db_session):
    """Register a resource pool, optionally with occupied/maintenance set."""
    def _create(
        resource_type: str = "icu",
        total: int = 5,
        hospital_id: int = HOSPITAL_ID,
        occupied: int = 0,
        maintenance: int = 0,
    ) -> ResourcePool:
        pool = ResourcePoolService.register_resource_pool(
            db_session, hospital_id, resource_type, total, actor=STAFF_ID
        )
        if occupied or maintenance:
            ResourcePoolService.manual_update(
                db_session,
                hospital_id,
                resource_type,
                {
                    "available": total - occupied - maintenance,
                    "occupied": occupied,
                    "maintenance": maintenance,
                },
                actor=STAFF_ID,
                reason="Test setup",
            )
            db_session.refresh(pool)
        return pool
    return _create


def booking_payload(**overrides: Any) -> Dict[str, Any]:
    payload: Dict[str, Any] = {
        "hospital_id": HOSPITAL_ID,
        "resource_type": "icu",
        "patient_name": "Rahim Uddin",
        "patient_age": 54,
        "patient_gender": "male",
        "emergency_contact_name": "Karim Uddin",
        "emergency_contact_phone": "+8801700000000",
        "emergency_contact_relationship": "brother",
        "medical_condition": "Post-operative monitoring",
        "urgency": "high",
        "scheduled_date": utc_now() + timedelta(hours=2),
        "estimated_duration": 48,
        "resources_allocated": 1,
        "payment_amount": Decimal("1500.00"),
    }
    payload.update(overrides)
    return payload


@pytest.fixture
def booking_factory(db_session):
    """Create a pending booking through BookingService."""
    def _create(user_id: int = PATIENT_USER_ID, **overrides: Any) -> Booking:
        return BookingService.create_booking(db_session, user_id, booking_payload(**overrides))
    return _create
