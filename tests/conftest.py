"""Shared test fixtures and helpers."""

import os
from datetime import date, datetime, timezone
from typing import Optional

from cryptography.fernet import Fernet

os.environ.setdefault("JWT_SECRET_KEY", "test-secret-key")
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("CALENDAR_TOKEN_KEY", Fernet.generate_key().decode())
os.environ.setdefault("BREVO_API_KEY", "")

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from slotwise.core import rate_limit
from slotwise.core.security import hash_password
from slotwise.db.base import Base
from slotwise.db.models import (
    Booking,
    DateOverride,
    Provider,
    ProviderScheduleConfig,
    WeeklyRule,
)
from slotwise.services.calendar import BusyInterval, CalendarEvent, CalendarEventResult
from slotwise.services.email import DeliveryResult, EmailMessage

#Monday 10 March 2025, 08:00 UTC
NOW = datetime(2025, 3, 10, 8, 0, tzinfo=timezone.utc)
TODAY = date(2025, 3, 10)
#Tuesday; day_of_week 2
TUESDAY = date(2025, 3, 11)

PASSWORD = "correct-horse-battery"


# =========================================================
# Gateway fakes
# =========================================================


class RecordingNotifier:
    """Keeps every message; optionally reports delivery failure."""

    def __init__(self, succeed: bool = True):
        self.succeed = succeed
        self.sent: list[EmailMessage] = []

    def send(self, message: EmailMessage) -> DeliveryResult:
        self.sent.append(message)
        if not self.succeed:
            return DeliveryResult(success=False)
        return DeliveryResult(success=True, delivery_id=f"msg-{len(self.sent)}")

    def to(self, address: str) -> list[EmailMessage]:
        return [m for m in self.sent if m.to == address]


class FakeCalendar:
    """In-memory calendar backend with scripted busy time and failures."""

    name = "fake"

    def __init__(
        self,
        busy: Optional[list[BusyInterval]] = None,
        fail_free_busy: bool = False,
        event_succeeds: bool = True,
    ):
        self.busy = busy or []
        self.fail_free_busy = fail_free_busy
        self.event_succeeds = event_succeeds
        self.free_busy_calls: list[tuple[int, datetime, datetime]] = []
        self.events: list[CalendarEvent] = []

    def get_free_busy(self, provider_id, range_start_utc, range_end_utc):
        self.free_busy_calls.append((provider_id, range_start_utc, range_end_utc))
        if self.fail_free_busy:
            raise RuntimeError("calendar unreachable")
        return list(self.busy)

    def create_event(self, provider_id, event):
        self.events.append(event)
        if not self.event_succeeds:
            return CalendarEventResult(success=False, error="Failed to create calendar event")
        return CalendarEventResult(success=True, event_id=f"evt-{len(self.events)}")


def busy_utc(day: date, start: str, end: str) -> BusyInterval:
    """Busy interval given as UTC HH:MM on one day."""
    sh, sm = (int(p) for p in start.split(":"))
    eh, em = (int(p) for p in end.split(":"))
    return BusyInterval(
        start=datetime(day.year, day.month, day.day, sh, sm, tzinfo=timezone.utc),
        end=datetime(day.year, day.month, day.day, eh, em, tzinfo=timezone.utc),
    )


# =========================================================
# Database
# =========================================================


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def db(engine):
    session = sessionmaker(bind=engine, autocommit=False, autoflush=False)()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def calendar():
    return FakeCalendar()


@pytest.fixture
def selector(calendar):
    return lambda config, db: calendar


def make_provider(
    db,
    slug: str = "dr-jones",
    email: str = "jones@example.com",
    name: str = "Dr Jones",
    timezone_name: str = "UTC",
    duration: int = 30,
    buffer: int = 0,
    notice: int = 0,
    max_days: int = 30,
    rules: Optional[list[tuple[int, str, str]]] = None,
    accepts_online_booking: bool = True,
    password: Optional[str] = None,
) -> Provider:
    """Provider with a schedule config and weekly rules (default: Tuesday 09:00-12:00)."""
    provider = Provider(
        name=name,
        email=email,
        slug=slug,
        hashed_password=hash_password(password) if password else "not-a-real-hash",
        is_active=True,
    )
    db.add(provider)
    db.flush()

    db.add(
        ProviderScheduleConfig(
            provider_id=provider.id,
            slot_duration_minutes=duration,
            buffer_minutes=buffer,
            min_notice_hours=notice,
            max_days_ahead=max_days,
            timezone=timezone_name,
            accepts_online_booking=accepts_online_booking,
        )
    )

    for day, start, end in rules if rules is not None else [(2, "09:00", "12:00")]:
        db.add(WeeklyRule(provider_id=provider.id, day_of_week=day, start_time=start, end_time=end))

    db.commit()
    db.refresh(provider)
    return provider


def make_override(
    db,
    provider: Provider,
    day: date,
    is_available: bool = False,
    start: Optional[str] = None,
    end: Optional[str] = None,
) -> DateOverride:
    override = DateOverride(
        provider_id=provider.id,
        override_date=day,
        is_available=is_available,
        start_time=start,
        end_time=end,
    )
    db.add(override)
    db.commit()
    return override


def make_booking(
    db,
    provider: Provider,
    day: date = TUESDAY,
    start: str = "10:00",
    end: str = "10:30",
    status: str = "pending",
    is_verified: bool = True,
    email: str = "visitor@example.com",
    verification_token: Optional[str] = None,
    verification_expires_at: Optional[datetime] = None,
    visitor_token: Optional[str] = None,
) -> Booking:
    booking = Booking(
        provider_id=provider.id,
        booking_date=day,
        start_time=start,
        end_time=end,
        duration_minutes=30,
        visitor_name="Sam Visitor",
        visitor_email=email,
        status=status,
        is_verified=is_verified,
        verification_token=verification_token,
        verification_expires_at=verification_expires_at,
        visitor_token=visitor_token or f"visitor-{day.isoformat()}-{start}",
    )
    db.add(booking)
    db.commit()
    db.refresh(booking)
    return booking


@pytest.fixture(autouse=True)
def _clear_rate_limits():
    rate_limit.reset()
    yield
    rate_limit.reset()


# =========================================================
# HTTP
# =========================================================


@pytest.fixture
def app(db, notifier, calendar):
    from slotwise.api.deps import get_calendar_selector, get_notifier, get_now
    from slotwise.db.session import get_db
    from slotwise.main import app

    app.dependency_overrides[get_db] = lambda: db
    app.dependency_overrides[get_notifier] = lambda: notifier
    app.dependency_overrides[get_calendar_selector] = lambda: (lambda config, session: calendar)
    app.dependency_overrides[get_now] = lambda: NOW
    yield app
    app.dependency_overrides.clear()


@pytest.fixture
def client(app):
    from fastapi.testclient import TestClient

    with TestClient(app) as client:
        yield client


def auth_headers(provider: Provider) -> dict[str, str]:
    from slotwise.core.security import create_access_token

    return {"Authorization": f"Bearer {create_access_token({'sub': str(provider.id)})}"}
