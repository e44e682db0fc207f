import os

# Settings are read at import time; keep the app quiet and self-contained under test
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("SECRET_KEY", "test-secret-key")
os.environ["WATCHDOG_ENABLED"] = "false"
os.environ["RATE_LIMIT_ENABLED"] = "false"
os.environ["DB_LOG_SLOW_QUERIES"] = "false"

from datetime import datetime, timedelta  # noqa: E402
from decimal import Decimal  # noqa: E402
from types import SimpleNamespace  # noqa: E402

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402

from bookingflow.database import Base, build_engine, get_db  # noqa: E402
from bookingflow.domain.bookings.router import get_deadline_watchdog  # noqa: E402
from bookingflow.domain.bookings.service import BookingWorkflowService  # noqa: E402
from bookingflow.main import app  # noqa: E402
from bookingflow.models import Booking, ProviderOffering, ProviderProfile, User  # noqa: E402
from bookingflow.security_utils import create_access_token  # noqa: E402
from bookingflow.services.deadline_watchdog import DeadlineWatchdog  # noqa: E402
from bookingflow.shared.clock import get_clock  # noqa: E402


class FakeClock:
    """Manually advanced clock"""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


@pytest.fixture
def clock():
    return FakeClock(datetime(2026, 3, 2, 9, 0, 0))


@pytest.fixture
def engine(tmp_path):
    # A file database so separate sessions really use separate connections
    engine = build_engine(f"sqlite:///{tmp_path / 'bookings.db'}")
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def users(session_factory):
    """Seed a requester, two providers with offerings, an operator and an unrelated user"""
    db = session_factory()
    requester = User(email="ana@example.com", full_name="Ana Lopez", role="requester")
    provider = User(email="nadia@example.com", full_name="Nadia Nails", role="provider")
    other_provider = User(email="bea@example.com", full_name="Bea Brows", role="provider")
    operator = User(email="ops@example.com", full_name="Ops Desk", role="admin")
    stranger = User(email="sam@example.com", role="requester")
    db.add_all([requester, provider, other_provider, operator, stranger])
    db.flush()

    db.add_all(
        [
            ProviderProfile(user_id=provider.id, rating=50.0, response_timeout_count=0),
            ProviderProfile(user_id=other_provider.id, rating=50.0, response_timeout_count=0),
            ProviderOffering(
                provider_id=provider.id,
                service_ref="gel-manicure",
                price=Decimal("25.00"),
                duration_minutes=90,
            ),
            ProviderOffering(
                provider_id=other_provider.id,
                service_ref="brow-lamination",
                price=Decimal("40.00"),
                duration_minutes=45,
            ),
        ]
    )
    db.commit()

    seeded = SimpleNamespace(
        requester=requester.id,
        provider=provider.id,
        other_provider=other_provider.id,
        operator=operator.id,
        stranger=stranger.id,
    )
    db.close()
    return seeded


@pytest.fixture
def service(db, clock):
    return BookingWorkflowService(db, clock=clock)


@pytest.fixture
def watchdog(session_factory, clock):
    return DeadlineWatchdog(session_factory, clock=clock)


@pytest.fixture
def make_booking(service, users, clock):
    """Create a pending gel-manicure booking one hour ahead"""

    def _make(**overrides):
        params = {
            "requester_id": users.requester,
            "provider_id": users.provider,
            "service_ref": "gel-manicure",
            "scheduled_at": clock() + timedelta(hours=1),
        }
        params.update(overrides)
        return service.create_booking(**params)

    return _make


@pytest.fixture
def fetch(session_factory):
    """Read a booking through a brand new session"""

    def _fetch(booking_id: str) -> Booking:
        session = session_factory()
        try:
            booking = session.query(Booking).filter(Booking.id == booking_id).one()
            session.expunge(booking)
            return booking
        finally:
            session.close()

    return _fetch


@pytest.fixture
def client(session_factory, clock):
    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_clock] = lambda: clock
    app.dependency_overrides[get_deadline_watchdog] = lambda: DeadlineWatchdog(
        session_factory, clock=clock
    )
    yield TestClient(app)
    app.dependency_overrides.clear()


def auth_headers(user_id: int) -> dict:
    return {"Authorization": f"Bearer {create_access_token(user_id)}"}


@pytest.fixture
def auth():
    return auth_headers
