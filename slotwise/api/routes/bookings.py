from fastapi import APIRouter, Depends, Query
from typing import List, Literal, Optional
from datetime import datetime

from slotwise.db.models import Provider
from slotwise.schemas.booking import BookingOut, CancelRequest
from slotwise.api.deps import get_current_provider, get_lifecycle, get_now
from slotwise.core.utils import local_today
from slotwise.services.lifecycle import BookingLifecycle

router = APIRouter(
    prefix="/bookings",
    tags=["Bookings"],
)


"""
BOOKING ROUTES => PROVIDER DASHBOARD

Lists the provider's bookings and drives the manual transitions:
confirm, cancel, complete and no-show. Invalid transitions come back
as 409 from the lifecycle, never as a silent success.
"""


#Retrieve bookings for one of the dashboard tabs
@router.get("/", response_model=List[BookingOut])
def get_bookings(
    filter: Literal["pending", "upcoming", "past", "all"] = Query("upcoming"),
    provider: Provider = Depends(get_current_provider),
    lifecycle: BookingLifecycle = Depends(get_lifecycle),
    now: datetime = Depends(get_now),
):
    tz_name = provider.schedule_config.timezone if provider.schedule_config else "UTC"
    return lifecycle.list_for_provider(provider.id, filter, local_today(now, tz_name))


#Confirm a verified booking, add it to the calendar and notify the visitor
@router.post("/{booking_id}/confirm", response_model=BookingOut)
def confirm_booking(
    booking_id: int,
    provider: Provider = Depends(get_current_provider),
    lifecycle: BookingLifecycle = Depends(get_lifecycle),
    now: datetime = Depends(get_now),
):
    return lifecycle.confirm(booking_id, provider.id, now)


#Cancel a pending or confirmed booking and notify the visitor
@router.post("/{booking_id}/cancel", response_model=BookingOut)
def cancel_booking(
    booking_id: int,
    payload: Optional[CancelRequest] = None,
    provider: Provider = Depends(get_current_provider),
    lifecycle: BookingLifecycle = Depends(get_lifecycle),
    now: datetime = Depends(get_now),
):
    reason = payload.reason if payload else None
    return lifecycle.cancel(booking_id, provider.id, now, actor="provider", reason=reason)


@router.post("/{booking_id}/complete", response_model=BookingOut)
def complete_booking(
    booking_id: int,
    provider: Provider = Depends(get_current_provider),
    lifecycle: BookingLifecycle = Depends(get_lifecycle),
    now: datetime = Depends(get_now),
):
    return lifecycle.complete(booking_id, provider.id, now)


@router.post("/{booking_id}/no-show", response_model=BookingOut)
def mark_no_show(
    booking_id: int,
    provider: Provider = Depends(get_current_provider),
    lifecycle: BookingLifecycle = Depends(get_lifecycle),
    now: datetime = Depends(get_now),
):
    return lifecycle.no_show(booking_id, provider.id, now)
