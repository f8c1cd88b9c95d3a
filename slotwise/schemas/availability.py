from pydantic import BaseModel, Field, field_validator, model_validator
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError
from datetime import date, datetime
from typing import Optional, List

from slotwise.core.config import SCHEDULE_BOUNDS
from slotwise.core.utils import hhmm, is_valid_time

"""
AVAILABILITY ROUTE SCHEMA
"""


def _check_time(v: Optional[str]) -> Optional[str]:
    if v is not None and not is_valid_time(v):
        raise ValueError("Time must be HH:MM")
    return v


def _bounded(field: str, **kwargs):
    low, high = SCHEDULE_BOUNDS[field]
    return Field(ge=low, le=high, **kwargs)


#Provider schedule settings as shown in the dashboard
class ScheduleSettingsOut(BaseModel):
    slot_duration_minutes: int
    buffer_minutes: int
    min_notice_hours: int
    max_days_ahead: int
    timezone: str
    requires_approval: bool
    accepts_online_booking: bool
    google_calendar_connected: bool
    microsoft_calendar_connected: bool

    class Config:
        from_attributes = True


#Partial update; omitted fields are left unchanged
class ScheduleSettingsUpdate(BaseModel):
    slot_duration_minutes: Optional[int] = _bounded("slot_duration_minutes", default=None)
    buffer_minutes: Optional[int] = _bounded("buffer_minutes", default=None)
    min_notice_hours: Optional[int] = _bounded("min_notice_hours", default=None)
    max_days_ahead: Optional[int] = _bounded("max_days_ahead", default=None)
    timezone: Optional[str] = None
    requires_approval: Optional[bool] = None
    accepts_online_booking: Optional[bool] = None

    @field_validator("timezone")
    @classmethod
    def validate_timezone(cls, v: Optional[str]):
        if v is None:
            return v
        try:
            ZoneInfo(v)
        except (ZoneInfoNotFoundError, ValueError):
            raise ValueError("Unknown timezone")
        return v


class WeeklyRuleIn(BaseModel):
    day_of_week: int = Field(ge=0, le=6)
    start_time: str
    end_time: str
    is_active: bool = True

    @field_validator("start_time", "end_time")
    @classmethod
    def validate_time(cls, v):
        return _check_time(v)

    @model_validator(mode="after")
    def start_before_end(self):
        if hhmm(self.start_time) >= hhmm(self.end_time):
            raise ValueError("Start time must be before end time")
        return self


class WeeklyRuleOut(BaseModel):
    id: int
    day_of_week: int
    start_time: str
    end_time: str
    is_active: bool

    class Config:
        from_attributes = True


#Full weekly schedule; PUT replaces every existing rule
class WeeklySchedule(BaseModel):
    rules: List[WeeklyRuleIn] = Field(default_factory=list)


class DateOverrideIn(BaseModel):
    override_date: date
    is_available: bool = False
    start_time: Optional[str] = None
    end_time: Optional[str] = None
    reason: Optional[str] = Field(default=None, max_length=255)

    @field_validator("start_time", "end_time")
    @classmethod
    def validate_time(cls, v):
        return _check_time(v)

    @model_validator(mode="after")
    def times_for_open_days(self):
        if not self.is_available:
            return self

        if not self.start_time or not self.end_time:
            raise ValueError("Start and end time are required when available")

        if hhmm(self.start_time) >= hhmm(self.end_time):
            raise ValueError("Start time must be before end time")

        return self


class DateOverrideOut(BaseModel):
    id: int
    override_date: date
    is_available: bool
    start_time: Optional[str]
    end_time: Optional[str]
    reason: Optional[str]

    class Config:
        from_attributes = True


#Connection state of one external calendar, with the last sync outcome
class CalendarStatusOut(BaseModel):
    calendar_provider: str
    connected: bool
    last_sync_at: Optional[datetime] = None
    sync_error: Optional[str] = None
