from datetime import date, datetime

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from sqlalchemy.orm import Session

from slotwise.api.deps import get_calendar_selector, get_lifecycle, get_now
from slotwise.core.errors import NotFoundError
from slotwise.core.rate_limit import allow
from slotwise.db.models import Provider, ProviderScheduleConfig
from slotwise.db.session import get_db
from slotwise.schemas.booking import (
    CreateBookingResult,
    PublicBookingCreate,
    VerifyResult,
    VisitorBookingOut,
)
from slotwise.schemas.public import AvailableDatesOut, PublicProviderOut, SlotOut, SlotsOut
from slotwise.services.lifecycle import BookingLifecycle, BookingState, SlotRequest
from slotwise.services.slots import CalendarSelector, SlotService

router = APIRouter(
    prefix="/public",
    tags=["Public"],
)
"""
PUBLIC ROUTES => NO PROVIDER AUTH

INSTEAD:

1) PUBLIC/SLOTS => RATE LIMIT OF 60 REQUESTS / IP / PROVIDER / 1 MINUTE
2) PUBLIC/BOOKINGS => RATE LIMIT OF 5 REQUESTS / IP / PROVIDER / 10 MINUTES + HONEYPOT
3) PUBLIC/VERIFY => RATE LIMIT OF 10 REQUESTS / IP / 1 MINUTE
4) PUBLIC/ACCESS => VISITOR TOKEN IS THE ONLY KEY, READ ONLY

"""


#Resolve an active provider that takes online bookings
def get_bookable_provider(slug: str, db: Session) -> tuple[Provider, ProviderScheduleConfig]:
    provider = (
        db.query(Provider)
        .filter(Provider.slug == slug, Provider.is_active == True)  # noqa: E712
        .first()
    )
    if not provider:
        raise NotFoundError("Provider not found")

    config = provider.schedule_config
    if not config or not config.accepts_online_booking:
        raise NotFoundError("Online booking not available")

    return provider, config


#get public provider card
@router.get("/providers/{slug}", response_model=PublicProviderOut)
def get_public_provider(
    slug: str,
    db: Session = Depends(get_db),
):
    provider, config = get_bookable_provider(slug, db)

    return PublicProviderOut(
        name=provider.name,
        slug=provider.slug,
        slot_duration_minutes=config.slot_duration_minutes,
        buffer_minutes=config.buffer_minutes,
        min_notice_hours=config.min_notice_hours,
        max_days_ahead=config.max_days_ahead,
        timezone=config.timezone,
        requires_approval=config.requires_approval,
    )


#bookable slots for one date
@router.get("/providers/{slug}/slots", response_model=SlotsOut)
def get_public_slots(
    slug: str,
    request: Request,
    date: date = Query(...),
    db: Session = Depends(get_db),
    calendar_selector: CalendarSelector = Depends(get_calendar_selector),
    now: datetime = Depends(get_now),
):
    if not allow(slug, request, "slots"):
        raise HTTPException(status_code=429, detail="Too many requests")

    _, config = get_bookable_provider(slug, db)
    slots = SlotService(db, calendar_selector).slots_for(config, date, now)

    return SlotsOut(
        date=date,
        timezone=config.timezone,
        slots=[SlotOut(start_time=s.start, end_time=s.end) for s in slots],
    )


#dates in a month that have opening hours
@router.get("/providers/{slug}/dates", response_model=AvailableDatesOut)
def get_public_dates(
    slug: str,
    year: int = Query(..., ge=2000, le=2100),
    month: int = Query(..., ge=1, le=12),
    db: Session = Depends(get_db),
    now: datetime = Depends(get_now),
):
    provider, _ = get_bookable_provider(slug, db)
    dates = SlotService(db).available_dates(provider.id, year, month, now)

    return AvailableDatesOut(year=year, month=month, dates=dates)


#public visitor booking request
@router.post("/providers/{slug}/bookings", response_model=CreateBookingResult, status_code=201)
def create_public_booking(
    slug: str,
    payload: PublicBookingCreate,
    request: Request,
    db: Session = Depends(get_db),
    lifecycle: BookingLifecycle = Depends(get_lifecycle),
    now: datetime = Depends(get_now),
):
    if not allow(slug, request, "booking"):
        raise HTTPException(status_code=429, detail="Too many booking attempts")

    provider, _ = get_bookable_provider(slug, db)

    result = lifecycle.create(
        provider.id,
        SlotRequest(
            booking_date=payload.booking_date,
            start_time=payload.start_time,
            end_time=payload.end_time,
            visitor_name=payload.visitor_name,
            visitor_email=payload.visitor_email,
            visitor_phone=payload.visitor_phone,
            visitor_notes=payload.visitor_notes,
            session_format=payload.session_format,
            service_id=payload.service_id,
        ),
        now,
    )

    return CreateBookingResult(
        status=BookingState.of(result.booking).value,
        requires_verification=not result.pre_verified,
        visitor_token=result.visitor_token,
    )


#emailed verification link
@router.get("/bookings/verify", response_model=VerifyResult)
def verify_public_booking(
    request: Request,
    token: str = Query(..., min_length=1, max_length=128),
    lifecycle: BookingLifecycle = Depends(get_lifecycle),
    now: datetime = Depends(get_now),
):
    if not allow("verify", request, "verify"):
        raise HTTPException(status_code=429, detail="Too many requests")

    result = lifecycle.verify(token, now)

    return VerifyResult(
        status="already_verified" if result.already_verified else "verified",
        visitor_token=result.visitor_token,
        already_verified=result.already_verified,
    )


#read-only visitor view
@router.get("/bookings/access/{visitor_token}", response_model=VisitorBookingOut)
def get_visitor_booking(
    visitor_token: str,
    lifecycle: BookingLifecycle = Depends(get_lifecycle),
):
    booking = lifecycle.get_for_visitor(visitor_token)

    return VisitorBookingOut(
        provider_name=booking.provider.name,
        booking_date=booking.booking_date,
        start_time=booking.start_time,
        end_time=booking.end_time,
        duration_minutes=booking.duration_minutes,
        session_format=booking.session_format,
        status=booking.status,
        is_verified=booking.is_verified,
        visitor_name=booking.visitor_name,
    )
