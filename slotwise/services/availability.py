"""
Open time ranges for a provider on a given date.

A date override, when one exists, replaces the weekly rules for that
date. Ranges come back in stored order and are never merged or sorted,
so overlapping or adjacent rules stay separate ranges.
"""

import calendar
import logging
from dataclasses import dataclass
from datetime import date, timedelta

from sqlalchemy.orm import Session

from slotwise.core.errors import ValidationError
from slotwise.db.models import DateOverride, WeeklyRule

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TimeRange:
    """A provider-local [start, end) time-of-day window as HH:MM strings."""

    start: str
    end: str


#Python counts Monday as 0; stored rules count Sunday as 0
def day_of_week(day: date) -> int:
    return (day.weekday() + 1) % 7


class AvailabilityResolver:
    def __init__(self, db: Session):
        self.db = db

    def _override(self, provider_id: int, target_date: date) -> DateOverride | None:
        return (
            self.db.query(DateOverride)
            .filter(
                DateOverride.provider_id == provider_id,
                DateOverride.override_date == target_date,
            )
            .first()
        )

    def _weekly_ranges(self, provider_id: int, target_date: date) -> list[TimeRange]:
        rules = (
            self.db.query(WeeklyRule)
            .filter(
                WeeklyRule.provider_id == provider_id,
                WeeklyRule.day_of_week == day_of_week(target_date),
                WeeklyRule.is_active == True,  # noqa: E712
            )
            .order_by(WeeklyRule.id)
            .all()
        )
        return [TimeRange(start=r.start_time, end=r.end_time) for r in rules]

    def resolve(self, provider_id: int, target_date: date) -> list[TimeRange]:
        override = self._override(provider_id, target_date)

        if override is not None:
            if not override.is_available:
                return []
            if override.start_time and override.end_time:
                return [TimeRange(start=override.start_time, end=override.end_time)]
            #Available without explicit hours: keep the usual weekly hours
            logger.debug(
                "Override on %s for provider %s has no times; using weekly rules",
                target_date,
                provider_id,
            )

        return self._weekly_ranges(provider_id, target_date)

    def available_dates(
        self,
        provider_id: int,
        year: int,
        month: int,
        today: date,
        max_days_ahead: int,
    ) -> list[date]:
        """Dates in a month that fall in the booking window and can have open hours."""
        if not 1 <= month <= 12:
            raise ValidationError("Month must be between 1 and 12")

        first = date(year, month, 1)
        last = date(year, month, calendar.monthrange(year, month)[1])

        overrides = {
            o.override_date: o.is_available
            for o in self.db.query(DateOverride).filter(
                DateOverride.provider_id == provider_id,
                DateOverride.override_date >= first,
                DateOverride.override_date <= last,
            )
        }

        open_weekdays = {
            row.day_of_week
            for row in self.db.query(WeeklyRule.day_of_week).filter(
                WeeklyRule.provider_id == provider_id,
                WeeklyRule.is_active == True,  # noqa: E712
            )
        }

        horizon = today + timedelta(days=max_days_ahead)
        dates = []
        day = first
        while day <= last:
            if today <= day <= horizon:
                if day in overrides:
                    if overrides[day]:
                        dates.append(day)
                elif day_of_week(day) in open_weekdays:
                    dates.append(day)
            day += timedelta(days=1)

        return dates
