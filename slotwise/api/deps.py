from fastapi import Depends, HTTPException
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.orm import Session
from datetime import datetime, timezone

from slotwise.db.session import get_db
from slotwise.db.models import Provider
from slotwise.core.security import decode_access_token
from slotwise.services.calendar import select_calendar_provider
from slotwise.services.email import BrevoNotificationGateway, NotificationGateway
from slotwise.services.lifecycle import BookingLifecycle
from slotwise.services.slots import CalendarSelector

bearer_scheme = HTTPBearer()


def decode_token(token: str) -> dict:
    payload = decode_access_token(token)
    if payload is None:
        raise HTTPException(status_code=401, detail="Invalid token")
    return payload


# =========================
# Provider auth
# =========================
def get_current_provider(
    creds: HTTPAuthorizationCredentials = Depends(bearer_scheme),
    db: Session = Depends(get_db),
) -> Provider:
    payload = decode_token(creds.credentials)

    provider_id = payload.get("sub")
    if not provider_id:
        raise HTTPException(status_code=401, detail="Invalid token")

    provider = db.get(Provider, int(provider_id))
    if not provider:
        raise HTTPException(status_code=401, detail="Provider not found")

    if not provider.is_active:
        raise HTTPException(status_code=403, detail="Provider account is disabled")

    return provider


# =========================
# Engine collaborators (overridden in tests)
# =========================
def get_notifier() -> NotificationGateway:
    return BrevoNotificationGateway()


def get_calendar_selector() -> CalendarSelector:
    return select_calendar_provider


def get_now() -> datetime:
    return datetime.now(timezone.utc)


def get_lifecycle(
    db: Session = Depends(get_db),
    notifier: NotificationGateway = Depends(get_notifier),
    calendar_selector: CalendarSelector = Depends(get_calendar_selector),
) -> BookingLifecycle:
    return BookingLifecycle(db, notifier, calendar_selector)
