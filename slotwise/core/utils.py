from datetime import date, datetime, time, timedelta, timezone
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError
import re

#Zero-padded HH:MM or HH:MM:SS, the stored time-of-day format
TIME_PATTERN = re.compile(r"^\d{2}:\d{2}(:\d{2})?$")

#Sorts after every real HH:MM value; marks "until the end of the day"
END_OF_DAY = "24:00"


#Trim a stored HH:MM[:SS] value to the HH:MM form used in comparisons
def hhmm(value: str) -> str:
    return value[:5]


def to_minutes(value: str) -> int:
    hours, minutes = value.split(":")[:2]
    return int(hours) * 60 + int(minutes)


def from_minutes(total: int) -> str:
    return f"{total // 60:02d}:{total % 60:02d}"


def is_valid_time(value: str) -> bool:
    if not TIME_PATTERN.match(value):
        return False
    hours, minutes = value.split(":")[:2]
    return int(hours) < 24 and int(minutes) < 60


def get_zone(name: str) -> ZoneInfo:
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        return ZoneInfo("UTC")


#Today's calendar date as seen in the provider's timezone
def local_today(now: datetime, tz_name: str) -> date:
    return now.astimezone(get_zone(tz_name)).date()


#Aware local datetime for a date + HH:MM in the provider's timezone
def local_datetime(day: date, hh_mm: str, tz_name: str) -> datetime:
    hours, minutes = hh_mm.split(":")[:2]
    return datetime.combine(day, time(int(hours), int(minutes)), tzinfo=get_zone(tz_name))


#UTC [start, end) covering one whole local day
def day_window_utc(day: date, tz_name: str) -> tuple[datetime, datetime]:
    zone = get_zone(tz_name)
    start = datetime.combine(day, time(0, 0), tzinfo=zone)
    end = datetime.combine(day + timedelta(days=1), time(0, 0), tzinfo=zone)
    return start.astimezone(timezone.utc), end.astimezone(timezone.utc)


#Express an instant as provider-local HH:MM on `day`, clamped to that day.
#round_up takes a part-minute instant to the following minute.
def clamp_to_day(instant: datetime, day: date, tz_name: str, round_up: bool = False) -> str:
    local = instant.astimezone(get_zone(tz_name))
    if round_up and (local.second or local.microsecond):
        local = local.replace(second=0, microsecond=0) + timedelta(minutes=1)
    if local.date() < day:
        return "00:00"
    if local.date() > day:
        return END_OF_DAY
    return local.strftime("%H:%M")
