"""Tests for slot generation and the slot listing pipeline."""

from datetime import datetime, timedelta, timezone

import pytest

from slotwise.core.errors import DateOutOfWindowError, NotFoundError
from slotwise.core.utils import to_minutes
from slotwise.services.availability import TimeRange
from slotwise.services.slots import (
    SlotGenerator,
    SlotPolicy,
    SlotService,
    check_booking_window,
    overlaps,
)
from tests.conftest import (
    NOW,
    TODAY,
    TUESDAY,
    FakeCalendar,
    busy_utc,
    make_booking,
    make_override,
    make_provider,
)


def _policy(duration=30, buffer=15, notice=2, max_days=30, tz="UTC") -> SlotPolicy:
    return SlotPolicy(
        duration_minutes=duration,
        buffer_minutes=buffer,
        min_notice_hours=notice,
        max_days_ahead=max_days,
        timezone=tz,
    )


def _pairs(slots):
    return [(s.start, s.end) for s in slots]


class TestSlotGenerator:
    def test_steps_by_duration_plus_buffer(self):
        slots = SlotGenerator(_policy()).generate(
            [TimeRange("09:00", "12:00")], [], NOW, TUESDAY
        )
        assert _pairs(slots) == [
            ("09:00", "09:30"),
            ("09:45", "10:15"),
            ("10:30", "11:00"),
            ("11:15", "11:45"),
        ]

    def test_busy_booking_removes_overlapping_slots(self):
        slots = SlotGenerator(_policy()).generate(
            [TimeRange("09:00", "12:00")], [TimeRange("10:00", "10:30")], NOW, TUESDAY
        )
        assert _pairs(slots) == [
            ("09:00", "09:30"),
            ("10:30", "11:00"),
            ("11:15", "11:45"),
        ]

    def test_touching_busy_interval_does_not_block(self):
        slots = SlotGenerator(_policy(buffer=0)).generate(
            [TimeRange("09:00", "10:00")], [TimeRange("09:30", "10:00")], NOW, TUESDAY
        )
        assert _pairs(slots) == [("09:00", "09:30")]

    def test_minimum_notice_applies_on_current_day(self):
        now = datetime(2025, 3, 11, 9, 10, tzinfo=timezone.utc)
        slots = SlotGenerator(_policy()).generate(
            [TimeRange("09:00", "12:00")], [], now, TUESDAY
        )
        assert _pairs(slots) == [("11:15", "11:45")]

    def test_minimum_notice_ignored_on_later_days(self):
        late_evening = datetime(2025, 3, 10, 23, 30, tzinfo=timezone.utc)
        slots = SlotGenerator(_policy(notice=24)).generate(
            [TimeRange("09:00", "10:00")], [], late_evening, TUESDAY
        )
        assert _pairs(slots) == [("09:00", "09:30")]

    def test_partial_final_slot_is_dropped(self):
        slots = SlotGenerator(_policy(duration=45, buffer=0)).generate(
            [TimeRange("09:00", "10:00")], [], NOW, TUESDAY
        )
        assert _pairs(slots) == [("09:00", "09:45")]

    def test_ranges_are_processed_independently(self):
        slots = SlotGenerator(_policy(buffer=0)).generate(
            [TimeRange("09:00", "10:00"), TimeRange("14:00", "15:00")], [], NOW, TUESDAY
        )
        assert _pairs(slots) == [
            ("09:00", "09:30"),
            ("09:30", "10:00"),
            ("14:00", "14:30"),
            ("14:30", "15:00"),
        ]

    def test_range_to_end_of_day(self):
        slots = SlotGenerator(_policy(duration=60, buffer=0)).generate(
            [TimeRange("22:00", "24:00")], [TimeRange("23:30", "24:00")], NOW, TUESDAY
        )
        assert _pairs(slots) == [("22:00", "23:00")]

    def test_generation_is_deterministic(self):
        generator = SlotGenerator(_policy(buffer=10))
        ranges = [TimeRange("08:00", "13:00"), TimeRange("15:00", "18:00")]
        busy = [TimeRange("10:00", "10:45"), TimeRange("16:20", "16:40")]

        first = generator.generate(ranges, busy, NOW, TUESDAY)
        second = generator.generate(ranges, busy, NOW, TUESDAY)
        assert first == second

    @pytest.mark.parametrize("duration,buffer", [(15, 0), (30, 15), (45, 5), (60, 30), (240, 60)])
    def test_slots_never_overlap_and_stay_in_range(self, duration, buffer):
        ranges = [TimeRange("07:00", "12:30"), TimeRange("13:00", "19:00")]
        busy = [TimeRange("09:10", "09:50"), TimeRange("15:00", "16:00")]
        slots = SlotGenerator(_policy(duration=duration, buffer=buffer, notice=0)).generate(
            ranges, busy, NOW, TUESDAY
        )

        for a, b in zip(slots, slots[1:]):
            assert to_minutes(a.end) <= to_minutes(b.start)

        for slot in slots:
            assert any(r.start <= slot.start and slot.end <= r.end for r in ranges)
            assert not any(overlaps(slot, b) for b in busy)


class TestBookingWindow:
    def test_today_is_inside(self):
        check_booking_window(TODAY, _policy(), NOW)

    def test_last_day_is_inside(self):
        check_booking_window(TODAY + timedelta(days=30), _policy(max_days=30), NOW)

    def test_past_date_rejected(self):
        with pytest.raises(DateOutOfWindowError, match="past"):
            check_booking_window(TODAY - timedelta(days=1), _policy(), NOW)

    def test_beyond_horizon_rejected(self):
        with pytest.raises(DateOutOfWindowError, match="too far"):
            check_booking_window(TODAY + timedelta(days=31), _policy(max_days=30), NOW)

    def test_today_is_provider_local(self):
        # 23:30 UTC on the 10th is already the 11th in Auckland
        late = datetime(2025, 3, 10, 23, 30, tzinfo=timezone.utc)
        with pytest.raises(DateOutOfWindowError):
            check_booking_window(TODAY, _policy(tz="Pacific/Auckland"), late)


class TestSlotService:
    def test_lists_slots_from_weekly_rules(self, db, selector):
        provider = make_provider(db, buffer=15, notice=2)

        slots = SlotService(db, selector).list_slots(provider.id, TUESDAY, NOW)

        assert _pairs(slots) == [
            ("09:00", "09:30"),
            ("09:45", "10:15"),
            ("10:30", "11:00"),
            ("11:15", "11:45"),
        ]

    def test_pending_and_confirmed_bookings_block(self, db, selector):
        provider = make_provider(db)
        make_booking(db, provider, start="09:00", end="09:30", status="pending", is_verified=False)
        make_booking(db, provider, start="10:00", end="10:30", status="confirmed")

        slots = SlotService(db, selector).list_slots(provider.id, TUESDAY, NOW)

        assert ("09:00", "09:30") not in _pairs(slots)
        assert ("10:00", "10:30") not in _pairs(slots)
        assert ("09:30", "10:00") in _pairs(slots)

    def test_cancelled_booking_frees_the_slot(self, db, selector):
        provider = make_provider(db)
        make_booking(db, provider, start="10:00", end="10:30", status="cancelled")

        slots = SlotService(db, selector).list_slots(provider.id, TUESDAY, NOW)

        assert ("10:00", "10:30") in _pairs(slots)

    def test_external_busy_time_blocks(self, db):
        provider = make_provider(db)
        calendar = FakeCalendar(busy=[busy_utc(TUESDAY, "11:00", "12:00")])

        slots = SlotService(db, lambda c, s: calendar).list_slots(provider.id, TUESDAY, NOW)

        assert _pairs(slots)[-1] == ("10:30", "11:00")
        assert len(calendar.free_busy_calls) == 1

    def test_calendar_failure_fails_open(self, db):
        provider = make_provider(db)
        calendar = FakeCalendar(fail_free_busy=True)

        slots = SlotService(db, lambda c, s: calendar).list_slots(provider.id, TUESDAY, NOW)

        assert len(slots) == 6

    def test_closed_override_yields_no_slots(self, db, selector, calendar):
        provider = make_provider(db)
        make_override(db, provider, TUESDAY, is_available=False)

        assert SlotService(db, selector).list_slots(provider.id, TUESDAY, NOW) == []
        assert calendar.free_busy_calls == []

    def test_out_of_window_is_an_error_not_empty(self, db, selector):
        provider = make_provider(db, max_days=7)

        with pytest.raises(DateOutOfWindowError):
            SlotService(db, selector).list_slots(provider.id, TODAY + timedelta(days=8), NOW)

    def test_unknown_provider(self, db, selector):
        with pytest.raises(NotFoundError):
            SlotService(db, selector).list_slots(999, TUESDAY, NOW)

    def test_provider_timezone_drives_notice(self, db, selector):
        # 08:00 UTC is 09:00 in Berlin; notice of 1h
        provider = make_provider(db, timezone_name="Europe/Berlin", notice=1, rules=[(1, "09:00", "12:00")])

        slots = SlotService(db, selector).list_slots(provider.id, TODAY, NOW)

        assert _pairs(slots)[0] == ("10:00", "10:30")
