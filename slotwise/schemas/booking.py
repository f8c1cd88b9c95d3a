from pydantic import BaseModel, EmailStr, Field, field_validator
from datetime import date, datetime
from typing import Optional, Literal

from slotwise.core.utils import is_valid_time

"""
BOOKING ROUTE SCHEMA
"""


# ----------------------------
# Used by PUBLIC booking form
# ----------------------------
class PublicBookingCreate(BaseModel):
    booking_date: date
    start_time: str
    end_time: str

    visitor_name: str = Field(min_length=1, max_length=100)
    visitor_email: EmailStr
    visitor_phone: Optional[str] = Field(default=None, max_length=20)
    visitor_notes: Optional[str] = Field(default=None, max_length=2000)
    session_format: Optional[Literal["online", "in-person", "phone"]] = None
    service_id: Optional[int] = None

    #Honeypot: hidden on the form, only bots fill it in
    website: Optional[str] = None

    @field_validator("website")
    @classmethod
    def reject_bots(cls, v: Optional[str]):
        if v:
            raise ValueError("Bot detected")
        return v

    @field_validator("start_time", "end_time")
    @classmethod
    def validate_time(cls, v: str):
        if not is_valid_time(v):
            raise ValueError("Time must be HH:MM")
        return v

    @field_validator("end_time")
    @classmethod
    def end_after_start(cls, v, info):
        if "start_time" in info.data and v[:5] <= info.data["start_time"][:5]:
            raise ValueError("End time must be after start time")
        return v


#Returned to the visitor straight after submitting the form
class CreateBookingResult(BaseModel):
    status: Literal["pending_unverified", "pending_verified"]
    requires_verification: bool
    #Only present when the email was already trusted
    visitor_token: Optional[str] = None


#Returned from the emailed verification link
class VerifyResult(BaseModel):
    status: Literal["verified", "already_verified"]
    visitor_token: str
    already_verified: bool


#Read-only view of a booking reached by its visitor-access token
class VisitorBookingOut(BaseModel):
    provider_name: str
    booking_date: date
    start_time: str
    end_time: str
    duration_minutes: int
    session_format: Optional[str]
    status: str
    is_verified: bool
    visitor_name: str


# ----------------------------
# Used by PROVIDER dashboard
# ----------------------------
class BookingOut(BaseModel):
    id: int
    booking_date: date
    start_time: str
    end_time: str
    duration_minutes: int
    session_format: Optional[str]

    visitor_name: str
    visitor_email: str
    visitor_phone: Optional[str]
    visitor_notes: Optional[str]

    status: str
    is_verified: bool

    confirmed_at: Optional[datetime]
    cancelled_at: Optional[datetime]
    cancelled_by: Optional[str]
    cancellation_reason: Optional[str]
    completed_at: Optional[datetime]
    created_at: Optional[datetime]

    class Config:
        from_attributes = True


#Payload used by a provider to cancel a booking
class CancelRequest(BaseModel):
    reason: Optional[str] = Field(default=None, max_length=500)
