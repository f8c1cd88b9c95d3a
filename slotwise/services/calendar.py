"""
External calendar sync.

One CalendarProvider interface covers free/busy lookups and event
creation. The concrete backend is picked once per request from the
provider's schedule config (Google first, then Microsoft, then none), so
call sites never branch on which calendar is connected.

Both operations are best-effort. Network, auth and payload failures are
logged, stamped on the stored credential (last_sync_at / sync_error) and
reported through the return value, never raised to the caller.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional, Protocol

import requests
from sqlalchemy.orm import Session

from slotwise.core.config import settings
from slotwise.core.errors import ExternalServiceDegraded
from slotwise.core.security import decrypt_secret
from slotwise.db.models import CalendarCredential, ProviderScheduleConfig

logger = logging.getLogger(__name__)

#Microsoft schedule item statuses that block time
MICROSOFT_BUSY_STATUSES = {"busy", "oof", "tentative"}

#Reminders attached to events created in Google Calendar
GOOGLE_EVENT_REMINDERS = [
    {"method": "email", "minutes": 24 * 60},
    {"method": "popup", "minutes": 30},
]


@dataclass(frozen=True)
class BusyInterval:
    """A busy period reported by an external calendar, in UTC."""

    start: datetime
    end: datetime


@dataclass(frozen=True)
class CalendarEvent:
    title: str
    description: str
    start_utc: datetime
    end_utc: datetime
    timezone: str
    attendee_email: Optional[str] = None
    attendee_name: Optional[str] = None


@dataclass(frozen=True)
class CalendarEventResult:
    success: bool
    event_id: Optional[str] = None
    error: Optional[str] = None


class CalendarProvider(Protocol):
    """Capability shared by every external calendar backend."""

    name: str

    def get_free_busy(
        self, provider_id: int, range_start_utc: datetime, range_end_utc: datetime
    ) -> list[BusyInterval]: ...

    def create_event(self, provider_id: int, event: CalendarEvent) -> CalendarEventResult: ...


def _parse_instant(value: str) -> datetime:
    """Parse an ISO-8601 timestamp; naive values are taken as UTC."""
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def _utc_iso(value: datetime) -> str:
    return value.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


class NoCalendarProvider:
    """Used when the provider has no calendar connected."""

    name = "none"

    def get_free_busy(self, provider_id, range_start_utc, range_end_utc) -> list[BusyInterval]:
        return []

    def create_event(self, provider_id, event) -> CalendarEventResult:
        return CalendarEventResult(success=False, error="No calendar connected")


class _HttpCalendarProvider:
    """Shared credential lookup, HTTP plumbing and sync bookkeeping for the REST backends.

    Subclasses implement _fetch_busy and _insert_event and raise
    ExternalServiceDegraded on any failure. The public methods turn that into
    an empty result, and every call stamps the credential with its outcome.
    """

    name = ""

    def __init__(self, db: Session, api_base: str, timeout: float | None = None):
        self.db = db
        self.api_base = api_base.rstrip("/")
        self.timeout = timeout if timeout is not None else settings.CALENDAR_TIMEOUT_SECONDS

    def _credential(self, provider_id: int) -> CalendarCredential | None:
        return (
            self.db.query(CalendarCredential)
            .filter(
                CalendarCredential.provider_id == provider_id,
                CalendarCredential.calendar_provider == self.name,
                CalendarCredential.is_active == True,  # noqa: E712
            )
            .first()
        )

    def _open(self, provider_id: int) -> tuple[CalendarCredential | None, str | None]:
        credential = self._credential(provider_id)
        if not credential:
            logger.info("No active %s credential for provider %s", self.name, provider_id)
            return None, None

        try:
            token = decrypt_secret(credential.access_token_encrypted)
        except RuntimeError:
            logger.error("Cannot decrypt %s credential: CALENDAR_TOKEN_KEY is not set", self.name)
            return credential, None

        if token is None:
            logger.warning("Stored %s credential for provider %s is unreadable", self.name, provider_id)
            self._record(credential, "Stored credential is unreadable")
        return credential, token

    def _record(self, credential: CalendarCredential, error: str | None) -> None:
        credential.last_sync_at = datetime.now(timezone.utc)
        credential.sync_error = error[:500] if error else None
        self.db.commit()

    def _headers(self, token: str) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {token}",
            "Content-Type": "application/json",
        }

    def _call(self, send, path: str, token: str, what: str, **kwargs) -> dict:
        try:
            res = send(
                f"{self.api_base}{path}",
                headers=self._headers(token),
                timeout=self.timeout,
                **kwargs,
            )
        except requests.RequestException as e:
            raise ExternalServiceDegraded(f"{what} failed: {e}") from e

        if not res.ok:
            raise ExternalServiceDegraded(f"{what} returned {res.status_code}: {res.text[:200]}")

        try:
            return res.json()
        except ValueError as e:
            raise ExternalServiceDegraded(f"{what} returned a non-JSON body") from e

    def _fetch_busy(self, token: str, range_start_utc: datetime, range_end_utc: datetime) -> list[BusyInterval]:
        raise NotImplementedError

    def _insert_event(self, token: str, event: CalendarEvent) -> Optional[str]:
        raise NotImplementedError

    def get_free_busy(self, provider_id, range_start_utc, range_end_utc) -> list[BusyInterval]:
        credential, token = self._open(provider_id)
        if not token:
            return []

        try:
            busy = self._fetch_busy(token, range_start_utc, range_end_utc)
        except ExternalServiceDegraded as e:
            logger.warning("%s free/busy lookup failed for provider %s: %s", self.name, provider_id, e)
            self._record(credential, e.message)
            return []

        self._record(credential, None)
        return busy

    def create_event(self, provider_id, event) -> CalendarEventResult:
        credential, token = self._open(provider_id)
        if not token:
            return CalendarEventResult(success=False, error="No valid access token")

        try:
            event_id = self._insert_event(token, event)
        except ExternalServiceDegraded as e:
            logger.warning("%s event creation failed for provider %s: %s", self.name, provider_id, e)
            self._record(credential, e.message)
            return CalendarEventResult(success=False, error="Failed to create calendar event")

        self._record(credential, None)
        return CalendarEventResult(success=True, event_id=event_id)


#Payload shape errors from a calendar API
_PAYLOAD_ERRORS = (KeyError, TypeError, AttributeError, ValueError)


class GoogleCalendarProvider(_HttpCalendarProvider):
    name = "google"

    def __init__(self, db: Session, timeout: float | None = None):
        super().__init__(db, settings.GOOGLE_CALENDAR_API, timeout)

    def _fetch_busy(self, token, range_start_utc, range_end_utc) -> list[BusyInterval]:
        data = self._call(
            requests.post,
            "/freeBusy",
            token,
            "Google freeBusy",
            json={
                "timeMin": _utc_iso(range_start_utc),
                "timeMax": _utc_iso(range_end_utc),
                "items": [{"id": "primary"}],
            },
        )

        try:
            busy = data.get("calendars", {}).get("primary", {}).get("busy") or []
            return [
                BusyInterval(start=_parse_instant(slot["start"]), end=_parse_instant(slot["end"]))
                for slot in busy
            ]
        except _PAYLOAD_ERRORS as e:
            raise ExternalServiceDegraded(f"Google freeBusy payload unreadable: {e}") from e

    def _insert_event(self, token, event) -> Optional[str]:
        body = {
            "summary": event.title,
            "description": event.description,
            "start": {"dateTime": _utc_iso(event.start_utc), "timeZone": event.timezone},
            "end": {"dateTime": _utc_iso(event.end_utc), "timeZone": event.timezone},
            "reminders": {"useDefault": False, "overrides": GOOGLE_EVENT_REMINDERS},
        }
        if event.attendee_email:
            body["attendees"] = [
                {"email": event.attendee_email, "displayName": event.attendee_name}
            ]

        data = self._call(
            requests.post,
            "/calendars/primary/events",
            token,
            "Google event creation",
            params={"sendUpdates": "all"},
            json=body,
        )
        return data.get("id")


#Graph wants naive UTC wall time plus an explicit timeZone
def _graph_time(value: datetime) -> dict[str, str]:
    return {
        "dateTime": value.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S"),
        "timeZone": "UTC",
    }


class MicrosoftCalendarProvider(_HttpCalendarProvider):
    name = "microsoft"

    def __init__(self, db: Session, timeout: float | None = None):
        super().__init__(db, settings.MICROSOFT_GRAPH_API, timeout)

    def _fetch_busy(self, token, range_start_utc, range_end_utc) -> list[BusyInterval]:
        me = self._call(requests.get, "/me", token, "Microsoft /me")
        user_email = me.get("mail") or me.get("userPrincipalName")

        data = self._call(
            requests.post,
            "/me/calendar/getSchedule",
            token,
            "Microsoft getSchedule",
            json={
                "schedules": [user_email],
                "startTime": _graph_time(range_start_utc),
                "endTime": _graph_time(range_end_utc),
                "availabilityViewInterval": 30,
            },
        )

        try:
            intervals = []
            for schedule in data.get("value") or []:
                for item in schedule.get("scheduleItems") or []:
                    if item.get("status", "").lower() not in MICROSOFT_BUSY_STATUSES:
                        continue
                    intervals.append(
                        BusyInterval(
                            start=_parse_instant(item["start"]["dateTime"]),
                            end=_parse_instant(item["end"]["dateTime"]),
                        )
                    )
            return intervals
        except _PAYLOAD_ERRORS as e:
            raise ExternalServiceDegraded(f"Microsoft getSchedule payload unreadable: {e}") from e

    def _insert_event(self, token, event) -> Optional[str]:
        body = {
            "subject": event.title,
            "body": {"contentType": "text", "content": event.description},
            "start": _graph_time(event.start_utc),
            "end": _graph_time(event.end_utc),
        }
        if event.attendee_email:
            body["attendees"] = [
                {
                    "emailAddress": {"address": event.attendee_email, "name": event.attendee_name},
                    "type": "required",
                }
            ]

        data = self._call(requests.post, "/me/events", token, "Microsoft event creation", json=body)
        return data.get("id")


#Pick the provider's calendar backend once, from its connected flags
def select_calendar_provider(
    config: ProviderScheduleConfig | None, db: Session
) -> CalendarProvider:
    if config is not None and config.google_calendar_connected:
        return GoogleCalendarProvider(db)
    if config is not None and config.microsoft_calendar_connected:
        return MicrosoftCalendarProvider(db)
    return NoCalendarProvider()
