from pydantic import BaseModel
from typing import List
from datetime import date

"""
PUBLIC ROUTE SCHEMA
"""


#Public representation of a provider used to render the booking page
class PublicProviderOut(BaseModel):
    name: str
    slug: str
    slot_duration_minutes: int
    buffer_minutes: int
    min_notice_hours: int
    max_days_ahead: int
    timezone: str
    requires_approval: bool


class SlotOut(BaseModel):
    start_time: str
    end_time: str


#Bookable slots for one date, times in the provider's timezone
class SlotsOut(BaseModel):
    date: date
    timezone: str
    slots: List[SlotOut]


#Dates in a month with at least one open range
class AvailableDatesOut(BaseModel):
    year: int
    month: int
    dates: List[date]
