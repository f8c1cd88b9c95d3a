from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
from typing import List
from enum import Enum

from slotwise.db.session import get_db
from slotwise.db.models import Provider, ProviderScheduleConfig, WeeklyRule, DateOverride, CalendarCredential
from slotwise.schemas.availability import (
    ScheduleSettingsOut,
    ScheduleSettingsUpdate,
    WeeklySchedule,
    WeeklyRuleOut,
    DateOverrideIn,
    DateOverrideOut,
    CalendarStatusOut,
)
from slotwise.api.deps import get_current_provider
from slotwise.core.config import SCHEDULE_DEFAULTS
from slotwise.core.errors import NotFoundError
from slotwise.core.utils import hhmm
from slotwise.services.audit import log_action

router = APIRouter(
    prefix="/availability",
    tags=["Availability"],
)


"""
AVAILABILITY ROUTES => PROVIDER OPENING HOURS

Settings, the recurring weekly rules and per-date overrides that feed
slot generation, plus the status of connected external calendars.
Bounds come from SCHEDULE_BOUNDS via the schemas.
"""


#Load the provider's schedule config, creating it with defaults on first use
def get_or_create_config(db: Session, provider: Provider) -> ProviderScheduleConfig:
    config = (
        db.query(ProviderScheduleConfig)
        .filter(ProviderScheduleConfig.provider_id == provider.id)
        .first()
    )

    if not config:
        config = ProviderScheduleConfig(provider_id=provider.id, **SCHEDULE_DEFAULTS)
        db.add(config)
        db.commit()
        db.refresh(config)

    return config


# =========================
# Settings
# =========================
@router.get("/settings", response_model=ScheduleSettingsOut)
def get_settings(
    db: Session = Depends(get_db),
    provider: Provider = Depends(get_current_provider),
):
    return get_or_create_config(db, provider)


@router.put("/settings", response_model=ScheduleSettingsOut)
def update_settings(
    payload: ScheduleSettingsUpdate,
    db: Session = Depends(get_db),
    provider: Provider = Depends(get_current_provider),
):
    config = get_or_create_config(db, provider)

    changes = payload.model_dump(exclude_unset=True, exclude_none=True)
    for field, value in changes.items():
        setattr(config, field, value)

    log_action(
        db=db,
        actor_type="provider",
        actor_id=provider.id,
        action="availability.settings_updated",
        details=",".join(sorted(changes)),
    )

    db.commit()
    db.refresh(config)

    return config


# =========================
# Weekly rules
# =========================
@router.get("/weekly", response_model=List[WeeklyRuleOut])
def get_weekly_rules(
    db: Session = Depends(get_db),
    provider: Provider = Depends(get_current_provider),
):
    return (
        db.query(WeeklyRule)
        .filter(WeeklyRule.provider_id == provider.id)
        .order_by(WeeklyRule.day_of_week.asc(), WeeklyRule.start_time.asc())
        .all()
    )


#Replace the whole weekly schedule in one transaction
@router.put("/weekly", response_model=List[WeeklyRuleOut])
def replace_weekly_rules(
    payload: WeeklySchedule,
    db: Session = Depends(get_db),
    provider: Provider = Depends(get_current_provider),
):
    db.query(WeeklyRule).filter(WeeklyRule.provider_id == provider.id).delete(
        synchronize_session=False
    )

    rules = [
        WeeklyRule(
            provider_id=provider.id,
            day_of_week=rule.day_of_week,
            start_time=hhmm(rule.start_time),
            end_time=hhmm(rule.end_time),
            is_active=rule.is_active,
        )
        for rule in payload.rules
    ]
    db.add_all(rules)

    log_action(
        db=db,
        actor_type="provider",
        actor_id=provider.id,
        action="availability.weekly_replaced",
        details=f"rules={len(rules)}",
    )

    db.commit()

    return get_weekly_rules(db=db, provider=provider)


# =========================
# Date overrides
# =========================
@router.get("/overrides", response_model=List[DateOverrideOut])
def get_overrides(
    db: Session = Depends(get_db),
    provider: Provider = Depends(get_current_provider),
):
    return (
        db.query(DateOverride)
        .filter(DateOverride.provider_id == provider.id)
        .order_by(DateOverride.override_date.asc())
        .all()
    )


#Create or replace the override for one date
@router.put("/overrides", response_model=DateOverrideOut)
def upsert_override(
    payload: DateOverrideIn,
    db: Session = Depends(get_db),
    provider: Provider = Depends(get_current_provider),
):
    override = (
        db.query(DateOverride)
        .filter(
            DateOverride.provider_id == provider.id,
            DateOverride.override_date == payload.override_date,
        )
        .first()
    )

    if not override:
        override = DateOverride(provider_id=provider.id, override_date=payload.override_date)
        db.add(override)

    override.is_available = payload.is_available
    override.start_time = hhmm(payload.start_time) if payload.is_available else None
    override.end_time = hhmm(payload.end_time) if payload.is_available else None
    override.reason = payload.reason

    log_action(
        db=db,
        actor_type="provider",
        actor_id=provider.id,
        action="availability.override_saved",
        details=f"date={payload.override_date.isoformat()}",
    )

    db.commit()
    db.refresh(override)

    return override


@router.delete("/overrides/{override_id}")
def delete_override(
    override_id: int,
    db: Session = Depends(get_db),
    provider: Provider = Depends(get_current_provider),
):
    override = (
        db.query(DateOverride)
        .filter(
            DateOverride.id == override_id,
            DateOverride.provider_id == provider.id,
        )
        .first()
    )

    if not override:
        raise NotFoundError("Override not found")

    db.delete(override)

    log_action(
        db=db,
        actor_type="provider",
        actor_id=provider.id,
        action="availability.override_deleted",
        details=f"override_id={override_id}",
    )

    db.commit()

    return {"success": True}


# =========================
# External calendars
# =========================
class CalendarBackend(str, Enum):
    google = "google"
    microsoft = "microsoft"


#Config flag that routes free/busy and events to each backend
CONNECTED_FLAGS = {
    CalendarBackend.google: "google_calendar_connected",
    CalendarBackend.microsoft: "microsoft_calendar_connected",
}


@router.get("/calendars", response_model=List[CalendarStatusOut])
def get_calendar_status(
    db: Session = Depends(get_db),
    provider: Provider = Depends(get_current_provider),
):
    config = get_or_create_config(db, provider)
    credentials = {
        c.calendar_provider: c
        for c in db.query(CalendarCredential).filter(CalendarCredential.provider_id == provider.id)
    }

    statuses = []
    for backend, flag in CONNECTED_FLAGS.items():
        credential = credentials.get(backend.value)
        statuses.append(
            CalendarStatusOut(
                calendar_provider=backend.value,
                connected=bool(getattr(config, flag)) and credential is not None and credential.is_active,
                last_sync_at=credential.last_sync_at if credential else None,
                sync_error=credential.sync_error if credential else None,
            )
        )

    return statuses


#Forget the stored credential and stop using the calendar
@router.delete("/calendars/{backend}")
def disconnect_calendar(
    backend: CalendarBackend,
    db: Session = Depends(get_db),
    provider: Provider = Depends(get_current_provider),
):
    config = get_or_create_config(db, provider)
    flag = CONNECTED_FLAGS[backend]

    deleted = (
        db.query(CalendarCredential)
        .filter(
            CalendarCredential.provider_id == provider.id,
            CalendarCredential.calendar_provider == backend.value,
        )
        .delete(synchronize_session=False)
    )

    if not deleted and not getattr(config, flag):
        raise NotFoundError("Calendar not connected")

    setattr(config, flag, False)

    log_action(
        db=db,
        actor_type="provider",
        actor_id=provider.id,
        action="availability.calendar_disconnected",
        details=f"calendar={backend.value}",
    )

    db.commit()

    return {"success": True}
