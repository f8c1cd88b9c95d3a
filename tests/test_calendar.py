"""Tests for the Google and Microsoft calendar gateways with requests patched."""

from datetime import datetime, timezone

import pytest
import requests

from slotwise.core.security import encrypt_secret
from slotwise.db.models import CalendarCredential, ProviderScheduleConfig
from slotwise.services import calendar as calendar_module
from slotwise.services.calendar import (
    BusyInterval,
    CalendarEvent,
    GoogleCalendarProvider,
    MicrosoftCalendarProvider,
    NoCalendarProvider,
    select_calendar_provider,
)
from tests.conftest import make_provider

START = datetime(2025, 3, 11, 0, 0, tzinfo=timezone.utc)
END = datetime(2025, 3, 12, 0, 0, tzinfo=timezone.utc)


class FakeResponse:
    def __init__(self, status_code=200, payload=None):
        self.status_code = status_code
        self._payload = payload if payload is not None else {}
        self.text = str(self._payload)

    @property
    def ok(self):
        return self.status_code < 400

    def json(self):
        return self._payload


class FakeHttp:
    """Records calls and answers them from a queue of responses."""

    def __init__(self, *responses):
        self.responses = list(responses)
        self.calls = []

    def __call__(self, url, **kwargs):
        self.calls.append((url, kwargs))
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


def _connect(db, provider, backend="google", token="access-token"):
    db.add(
        CalendarCredential(
            provider_id=provider.id,
            calendar_provider=backend,
            access_token_encrypted=encrypt_secret(token),
        )
    )
    db.commit()


def _event():
    return CalendarEvent(
        title="Appointment with Sam Visitor",
        description="Appointment booked online.",
        start_utc=datetime(2025, 3, 11, 10, 0, tzinfo=timezone.utc),
        end_utc=datetime(2025, 3, 11, 10, 30, tzinfo=timezone.utc),
        timezone="UTC",
        attendee_email="visitor@example.com",
        attendee_name="Sam Visitor",
    )


class TestSelection:
    def test_google_preferred_over_microsoft(self, db):
        config = ProviderScheduleConfig(google_calendar_connected=True, microsoft_calendar_connected=True)
        assert isinstance(select_calendar_provider(config, db), GoogleCalendarProvider)

    def test_microsoft_when_only_microsoft(self, db):
        config = ProviderScheduleConfig(google_calendar_connected=False, microsoft_calendar_connected=True)
        assert isinstance(select_calendar_provider(config, db), MicrosoftCalendarProvider)

    def test_none_when_nothing_connected(self, db):
        config = ProviderScheduleConfig(google_calendar_connected=False, microsoft_calendar_connected=False)
        backend = select_calendar_provider(config, db)

        assert isinstance(backend, NoCalendarProvider)
        assert backend.get_free_busy(1, START, END) == []
        assert backend.create_event(1, _event()).success is False


class TestGoogle:
    def test_free_busy_parses_primary_calendar(self, db, monkeypatch):
        provider = make_provider(db)
        _connect(db, provider)
        http = FakeHttp(
            FakeResponse(
                payload={
                    "calendars": {
                        "primary": {
                            "busy": [
                                {"start": "2025-03-11T09:00:00Z", "end": "2025-03-11T10:00:00Z"},
                                {"start": "2025-03-11T14:00:00+01:00", "end": "2025-03-11T15:00:00+01:00"},
                            ]
                        }
                    }
                }
            )
        )
        monkeypatch.setattr(calendar_module.requests, "post", http)

        busy = GoogleCalendarProvider(db, timeout=2).get_free_busy(provider.id, START, END)

        assert busy == [
            BusyInterval(
                start=datetime(2025, 3, 11, 9, 0, tzinfo=timezone.utc),
                end=datetime(2025, 3, 11, 10, 0, tzinfo=timezone.utc),
            ),
            BusyInterval(
                start=datetime(2025, 3, 11, 13, 0, tzinfo=timezone.utc),
                end=datetime(2025, 3, 11, 14, 0, tzinfo=timezone.utc),
            ),
        ]
        url, kwargs = http.calls[0]
        assert url.endswith("/freeBusy")
        assert kwargs["timeout"] == 2
        assert kwargs["headers"]["Authorization"] == "Bearer access-token"
        assert kwargs["json"]["timeMin"] == "2025-03-11T00:00:00Z"

    def test_timeout_fails_open(self, db, monkeypatch):
        provider = make_provider(db)
        _connect(db, provider)
        monkeypatch.setattr(calendar_module.requests, "post", FakeHttp(requests.Timeout("slow")))

        assert GoogleCalendarProvider(db).get_free_busy(provider.id, START, END) == []

    def test_error_status_fails_open(self, db, monkeypatch):
        provider = make_provider(db)
        _connect(db, provider)
        monkeypatch.setattr(calendar_module.requests, "post", FakeHttp(FakeResponse(401, {"error": "expired"})))

        assert GoogleCalendarProvider(db).get_free_busy(provider.id, START, END) == []

    def test_no_credential_skips_the_call(self, db, monkeypatch):
        provider = make_provider(db)
        http = FakeHttp()
        monkeypatch.setattr(calendar_module.requests, "post", http)

        assert GoogleCalendarProvider(db).get_free_busy(provider.id, START, END) == []
        assert http.calls == []

    def test_create_event(self, db, monkeypatch):
        provider = make_provider(db)
        _connect(db, provider)
        http = FakeHttp(FakeResponse(payload={"id": "google-evt-1"}))
        monkeypatch.setattr(calendar_module.requests, "post", http)

        result = GoogleCalendarProvider(db).create_event(provider.id, _event())

        assert result.success is True
        assert result.event_id == "google-evt-1"
        url, kwargs = http.calls[0]
        assert url.endswith("/calendars/primary/events")
        assert kwargs["params"] == {"sendUpdates": "all"}
        assert kwargs["json"]["start"]["dateTime"] == "2025-03-11T10:00:00Z"
        assert kwargs["json"]["attendees"][0]["email"] == "visitor@example.com"

    def test_create_event_failure_is_reported(self, db, monkeypatch):
        provider = make_provider(db)
        _connect(db, provider)
        monkeypatch.setattr(calendar_module.requests, "post", FakeHttp(requests.ConnectionError("down")))

        result = GoogleCalendarProvider(db).create_event(provider.id, _event())

        assert result.success is False
        assert result.error


class TestMicrosoft:
    def test_free_busy_keeps_blocking_statuses(self, db, monkeypatch):
        provider = make_provider(db)
        _connect(db, provider, backend="microsoft")
        monkeypatch.setattr(
            calendar_module.requests,
            "get",
            FakeHttp(FakeResponse(payload={"mail": "jones@example.com"})),
        )
        post = FakeHttp(
            FakeResponse(
                payload={
                    "value": [
                        {
                            "scheduleItems": [
                                {
                                    "status": "busy",
                                    "start": {"dateTime": "2025-03-11T09:00:00.0000000"},
                                    "end": {"dateTime": "2025-03-11T10:00:00.0000000"},
                                },
                                {
                                    "status": "free",
                                    "start": {"dateTime": "2025-03-11T11:00:00.0000000"},
                                    "end": {"dateTime": "2025-03-11T12:00:00.0000000"},
                                },
                                {
                                    "status": "oof",
                                    "start": {"dateTime": "2025-03-11T15:00:00.0000000"},
                                    "end": {"dateTime": "2025-03-11T16:00:00.0000000"},
                                },
                            ]
                        }
                    ]
                }
            )
        )
        monkeypatch.setattr(calendar_module.requests, "post", post)

        busy = MicrosoftCalendarProvider(db).get_free_busy(provider.id, START, END)

        assert [(b.start.hour, b.end.hour) for b in busy] == [(9, 10), (15, 16)]
        assert all(b.start.tzinfo is not None for b in busy)
        url, kwargs = post.calls[0]
        assert url.endswith("/me/calendar/getSchedule")
        assert kwargs["json"]["schedules"] == ["jones@example.com"]

    def test_profile_lookup_failure_fails_open(self, db, monkeypatch):
        provider = make_provider(db)
        _connect(db, provider, backend="microsoft")
        monkeypatch.setattr(calendar_module.requests, "get", FakeHttp(FakeResponse(500)))

        assert MicrosoftCalendarProvider(db).get_free_busy(provider.id, START, END) == []

    def test_create_event(self, db, monkeypatch):
        provider = make_provider(db)
        _connect(db, provider, backend="microsoft")
        http = FakeHttp(FakeResponse(201, {"id": "ms-evt-1"}))
        monkeypatch.setattr(calendar_module.requests, "post", http)

        result = MicrosoftCalendarProvider(db).create_event(provider.id, _event())

        assert result.event_id == "ms-evt-1"
        _, kwargs = http.calls[0]
        assert kwargs["json"]["subject"] == "Appointment with Sam Visitor"
        assert kwargs["json"]["start"] == {"dateTime": "2025-03-11T10:00:00", "timeZone": "UTC"}

    def test_unreadable_credential(self, db, monkeypatch):
        provider = make_provider(db)
        db.add(
            CalendarCredential(
                provider_id=provider.id,
                calendar_provider="microsoft",
                access_token_encrypted="not-a-fernet-token",
            )
        )
        db.commit()
        http = FakeHttp()
        monkeypatch.setattr(calendar_module.requests, "get", http)

        assert MicrosoftCalendarProvider(db).get_free_busy(provider.id, START, END) == []
        assert http.calls == []


class TestSyncBookkeeping:
    def _credential(self, db):
        return db.query(CalendarCredential).one()

    def test_successful_lookup_clears_the_error(self, db, monkeypatch):
        provider = make_provider(db)
        _connect(db, provider)
        credential = self._credential(db)
        credential.sync_error = "Google freeBusy returned 401: expired"
        db.commit()
        monkeypatch.setattr(calendar_module.requests, "post", FakeHttp(FakeResponse(payload={"calendars": {}})))

        GoogleCalendarProvider(db).get_free_busy(provider.id, START, END)

        credential = self._credential(db)
        assert credential.last_sync_at is not None
        assert credential.sync_error is None

    def test_failed_lookup_records_the_error(self, db, monkeypatch):
        provider = make_provider(db)
        _connect(db, provider)
        monkeypatch.setattr(calendar_module.requests, "post", FakeHttp(FakeResponse(401, {"error": "expired"})))

        GoogleCalendarProvider(db).get_free_busy(provider.id, START, END)

        credential = self._credential(db)
        assert credential.last_sync_at is not None
        assert credential.sync_error.startswith("Google freeBusy returned 401")

    def test_unreadable_payload_records_the_error(self, db, monkeypatch):
        provider = make_provider(db)
        _connect(db, provider)
        payload = {"calendars": {"primary": {"busy": [{"start": "2025-03-11T09:00:00Z"}]}}}
        monkeypatch.setattr(calendar_module.requests, "post", FakeHttp(FakeResponse(payload=payload)))

        assert GoogleCalendarProvider(db).get_free_busy(provider.id, START, END) == []
        assert "payload unreadable" in self._credential(db).sync_error

    def test_failed_event_records_the_error(self, db, monkeypatch):
        provider = make_provider(db)
        _connect(db, provider, backend="microsoft")
        monkeypatch.setattr(calendar_module.requests, "post", FakeHttp(requests.ConnectionError("down")))

        result = MicrosoftCalendarProvider(db).create_event(provider.id, _event())

        assert result.success is False
        assert "Microsoft event creation failed" in self._credential(db).sync_error


@pytest.mark.parametrize(
    "raw,expected",
    [
        ("2025-03-11T09:00:00Z", datetime(2025, 3, 11, 9, 0, tzinfo=timezone.utc)),
        ("2025-03-11T09:00:00.0000000", datetime(2025, 3, 11, 9, 0, tzinfo=timezone.utc)),
        ("2025-03-11T10:00:00+01:00", datetime(2025, 3, 11, 9, 0, tzinfo=timezone.utc)),
    ],
)
def test_parse_instant(raw, expected):
    assert calendar_module._parse_instant(raw) == expected
