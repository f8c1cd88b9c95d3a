"""
Slot generation and the slot listing pipeline.

SlotGenerator is a pure function of (ranges, busy, policy, now, date):
it steps each open range into fixed-length candidates separated by the
buffer and drops any candidate that overlaps busy time or starts inside
the minimum-notice period on the current day.

SlotService wires the pipeline together for one provider-date:
window check -> AvailabilityResolver -> BusyTimeAggregator -> SlotGenerator.
"""

import logging
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Callable

from sqlalchemy.orm import Session

from slotwise.core.errors import DateOutOfWindowError, NotFoundError
from slotwise.core.utils import from_minutes, hhmm, local_datetime, local_today, to_minutes
from slotwise.db.models import Provider, ProviderScheduleConfig
from slotwise.services.availability import AvailabilityResolver, TimeRange
from slotwise.services.busy_time import BusyTimeAggregator
from slotwise.services.calendar import CalendarProvider, select_calendar_provider

logger = logging.getLogger(__name__)

CalendarSelector = Callable[[ProviderScheduleConfig, Session], CalendarProvider]


@dataclass(frozen=True)
class SlotPolicy:
    duration_minutes: int
    buffer_minutes: int
    min_notice_hours: int
    max_days_ahead: int
    timezone: str

    @classmethod
    def from_config(cls, config: ProviderScheduleConfig) -> "SlotPolicy":
        return cls(
            duration_minutes=config.slot_duration_minutes,
            buffer_minutes=config.buffer_minutes,
            min_notice_hours=config.min_notice_hours,
            max_days_ahead=config.max_days_ahead,
            timezone=config.timezone,
        )


#Reject dates before today or past the booking horizon (provider-local)
def check_booking_window(target_date: date, policy: SlotPolicy, now: datetime) -> None:
    today = local_today(now, policy.timezone)

    if target_date < today:
        raise DateOutOfWindowError("Cannot book past dates")

    if target_date > today + timedelta(days=policy.max_days_ahead):
        raise DateOutOfWindowError("Date is too far in the future")


def overlaps(slot: TimeRange, busy: TimeRange) -> bool:
    return slot.start < busy.end and slot.end > hhmm(busy.start)


class SlotGenerator:
    def __init__(self, policy: SlotPolicy):
        self.policy = policy

    def _candidates(self, time_range: TimeRange):
        step = self.policy.duration_minutes + self.policy.buffer_minutes
        cursor = to_minutes(time_range.start)
        range_end = to_minutes(time_range.end)

        while cursor + self.policy.duration_minutes <= range_end:
            yield TimeRange(
                start=from_minutes(cursor),
                end=from_minutes(cursor + self.policy.duration_minutes),
            )
            cursor += step

    def generate(
        self,
        ranges: list[TimeRange],
        busy: list[TimeRange],
        now: datetime,
        target_date: date,
    ) -> list[TimeRange]:
        is_today = target_date == local_today(now, self.policy.timezone)
        earliest_start = now + timedelta(hours=self.policy.min_notice_hours)

        slots = []
        for time_range in ranges:
            for candidate in self._candidates(time_range):
                if any(overlaps(candidate, b) for b in busy):
                    continue

                if is_today and (
                    local_datetime(target_date, candidate.start, self.policy.timezone) < earliest_start
                ):
                    continue

                slots.append(candidate)

        return slots


#Typed provider + schedule config, resolved once per request
def load_schedule(db: Session, provider_id: int) -> tuple[Provider, ProviderScheduleConfig]:
    provider = db.get(Provider, provider_id)
    if not provider or not provider.is_active:
        raise NotFoundError("Provider not found")

    config = (
        db.query(ProviderScheduleConfig)
        .filter(ProviderScheduleConfig.provider_id == provider_id)
        .first()
    )
    if not config:
        raise NotFoundError("Booking settings not found")

    return provider, config


class SlotService:
    def __init__(self, db: Session, calendar_selector: CalendarSelector = select_calendar_provider):
        self.db = db
        self.calendar_selector = calendar_selector

    def list_slots(self, provider_id: int, target_date: date, now: datetime) -> list[TimeRange]:
        _, config = load_schedule(self.db, provider_id)
        return self.slots_for(config, target_date, now)

    def slots_for(
        self, config: ProviderScheduleConfig, target_date: date, now: datetime
    ) -> list[TimeRange]:
        policy = SlotPolicy.from_config(config)
        check_booking_window(target_date, policy, now)

        ranges = AvailabilityResolver(self.db).resolve(config.provider_id, target_date)
        if not ranges:
            return []

        calendar = self.calendar_selector(config, self.db)
        busy = BusyTimeAggregator(self.db, calendar).collect(
            config.provider_id, target_date, policy.timezone
        )

        slots = SlotGenerator(policy).generate(ranges, busy, now, target_date)
        logger.info(
            "Provider %s on %s: %d ranges, %d busy, %d slots",
            config.provider_id,
            target_date,
            len(ranges),
            len(busy),
            len(slots),
        )
        return slots

    def available_dates(self, provider_id: int, year: int, month: int, now: datetime) -> list[date]:
        _, config = load_schedule(self.db, provider_id)
        today = local_today(now, config.timezone)
        return AvailabilityResolver(self.db).available_dates(
            provider_id, year, month, today, config.max_days_ahead
        )
