"""
Busy time for one provider-date, from two sources:

  a) the provider's own pending/confirmed bookings
  b) busy intervals reported by the connected external calendar

Both come back as provider-local HH:MM pairs and are simply concatenated.
The slot filter rejects a candidate on any overlap, so duplicates and
overlapping entries need no union step.
"""

import logging
from datetime import date

from sqlalchemy.orm import Session

from slotwise.core.utils import clamp_to_day, day_window_utc, hhmm
from slotwise.db.models import Booking
from slotwise.services.availability import TimeRange
from slotwise.services.calendar import CalendarProvider

logger = logging.getLogger(__name__)

#Statuses that still hold their slot
BLOCKING_STATUSES = ("pending", "confirmed")


class BusyTimeAggregator:
    def __init__(self, db: Session, calendar: CalendarProvider):
        self.db = db
        self.calendar = calendar

    def booked(self, provider_id: int, target_date: date) -> list[TimeRange]:
        rows = (
            self.db.query(Booking.start_time, Booking.end_time)
            .filter(
                Booking.provider_id == provider_id,
                Booking.booking_date == target_date,
                Booking.status.in_(BLOCKING_STATUSES),
            )
            .all()
        )
        return [TimeRange(start=hhmm(start), end=hhmm(end)) for start, end in rows]

    def external(self, provider_id: int, target_date: date, tz_name: str) -> list[TimeRange]:
        start_utc, end_utc = day_window_utc(target_date, tz_name)

        try:
            intervals = self.calendar.get_free_busy(provider_id, start_utc, end_utc)
        except Exception:
            #Fail open: the listing goes ahead without external busy data
            logger.warning(
                "%s free/busy failed for provider %s on %s; ignoring external busy time",
                self.calendar.name,
                provider_id,
                target_date,
                exc_info=True,
            )
            return []

        busy = []
        for interval in intervals:
            start = clamp_to_day(interval.start, target_date, tz_name)
            end = clamp_to_day(interval.end, target_date, tz_name, round_up=True)
            if start < end:
                busy.append(TimeRange(start=start, end=end))
        return busy

    def collect(self, provider_id: int, target_date: date, tz_name: str) -> list[TimeRange]:
        return self.booked(provider_id, target_date) + self.external(provider_id, target_date, tz_name)
