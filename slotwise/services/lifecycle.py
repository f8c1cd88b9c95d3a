"""
Booking lifecycle state machine.

States and the only legal moves between them:

    pending_unverified --verify--> pending_verified --confirm--> confirmed
    pending_unverified / pending_verified / confirmed --cancel--> cancelled
    confirmed --complete--> completed
    confirmed --no_show--> no_show

Both pending states are stored as status "pending" and told apart by
is_verified. Every transition is written as a conditional UPDATE on the
stored state it starts from, so a duplicate or concurrent transition is
rejected instead of repeating its side effects.

Notifications and calendar events run after the transition is committed.
Their failures are logged and never undo the transition.
"""

import logging
from dataclasses import dataclass
from datetime import date, datetime, timezone
from enum import Enum
from typing import Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from slotwise.core.errors import NotFoundError, SlotUnavailableError, StateError, ValidationError
from slotwise.core.security import generate_token
from slotwise.core.utils import hhmm, is_valid_time, local_datetime
from slotwise.db.models import Booking, Provider, ProviderScheduleConfig
from slotwise.services import email as messages
from slotwise.services.audit import log_action
from slotwise.services.availability import TimeRange
from slotwise.services.calendar import CalendarEvent, select_calendar_provider
from slotwise.services.email import EmailMessage, NotificationGateway
from slotwise.services.slots import CalendarSelector, SlotService, load_schedule
from slotwise.services.verification import VerificationTokenService, normalise_email

logger = logging.getLogger(__name__)


class BookingState(str, Enum):
    PENDING_UNVERIFIED = "pending_unverified"
    PENDING_VERIFIED = "pending_verified"
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"
    COMPLETED = "completed"
    NO_SHOW = "no_show"

    @classmethod
    def of(cls, booking: Booking) -> "BookingState":
        if booking.status == "pending":
            return cls.PENDING_VERIFIED if booking.is_verified else cls.PENDING_UNVERIFIED
        return cls(booking.status)


class BookingAction(str, Enum):
    VERIFY = "verify"
    CONFIRM = "confirm"
    CANCEL = "cancel"
    COMPLETE = "complete"
    NO_SHOW = "no_show"


TRANSITIONS: dict[tuple[BookingState, BookingAction], BookingState] = {
    (BookingState.PENDING_UNVERIFIED, BookingAction.VERIFY): BookingState.PENDING_VERIFIED,
    (BookingState.PENDING_VERIFIED, BookingAction.CONFIRM): BookingState.CONFIRMED,
    (BookingState.PENDING_UNVERIFIED, BookingAction.CANCEL): BookingState.CANCELLED,
    (BookingState.PENDING_VERIFIED, BookingAction.CANCEL): BookingState.CANCELLED,
    (BookingState.CONFIRMED, BookingAction.CANCEL): BookingState.CANCELLED,
    (BookingState.CONFIRMED, BookingAction.COMPLETE): BookingState.COMPLETED,
    (BookingState.CONFIRMED, BookingAction.NO_SHOW): BookingState.NO_SHOW,
}

#Stored (status, is_verified) for each state
STORED: dict[BookingState, tuple[str, bool | None]] = {
    BookingState.PENDING_UNVERIFIED: ("pending", False),
    BookingState.PENDING_VERIFIED: ("pending", True),
    BookingState.CONFIRMED: ("confirmed", None),
    BookingState.CANCELLED: ("cancelled", None),
    BookingState.COMPLETED: ("completed", None),
    BookingState.NO_SHOW: ("no_show", None),
}

def next_state(state: BookingState, action: BookingAction) -> BookingState:
    try:
        return TRANSITIONS[(state, action)]
    except KeyError:
        if action is BookingAction.CONFIRM and state is BookingState.PENDING_UNVERIFIED:
            raise StateError("Booking has not been verified by visitor") from None
        raise StateError(f"Booking cannot be {_PAST_TENSE[action]} while {state.value}") from None


_PAST_TENSE = {
    BookingAction.VERIFY: "verified",
    BookingAction.CONFIRM: "confirmed",
    BookingAction.CANCEL: "cancelled",
    BookingAction.COMPLETE: "completed",
    BookingAction.NO_SHOW: "marked as no-show",
}


@dataclass(frozen=True)
class SlotRequest:
    booking_date: date
    start_time: str
    end_time: str
    visitor_name: str
    visitor_email: str
    visitor_phone: Optional[str] = None
    visitor_notes: Optional[str] = None
    session_format: Optional[str] = None
    service_id: Optional[int] = None


@dataclass(frozen=True)
class CreateResult:
    booking: Booking
    pre_verified: bool
    #Only handed out once the visitor has proven control of the email
    visitor_token: Optional[str]


@dataclass(frozen=True)
class VerifyResult:
    booking: Booking
    already_verified: bool
    visitor_token: str


#Filters for the provider's booking list
BOOKING_FILTERS = ("pending", "upcoming", "past", "all")


class BookingLifecycle:
    def __init__(
        self,
        db: Session,
        notifier: NotificationGateway,
        calendar_selector: CalendarSelector = select_calendar_provider,
    ):
        self.db = db
        self.notifier = notifier
        self.calendar_selector = calendar_selector
        self.verifier = VerificationTokenService(db)

    # -----------------------------------------------------------
    # Side effects (best-effort)
    # -----------------------------------------------------------
    def _notify(self, message: EmailMessage, purpose: str) -> bool:
        try:
            result = self.notifier.send(message)
        except Exception:
            logger.warning("Notification '%s' to %s raised", purpose, message.to, exc_info=True)
            return False

        if not result.success:
            logger.warning("Failed to send %s to %s", purpose, message.to)
        return result.success

    def _sync_calendar(self, booking: Booking, config: ProviderScheduleConfig) -> None:
        calendar = self.calendar_selector(config, self.db)
        if calendar.name == "none":
            return

        event = CalendarEvent(
            title=f"Appointment with {booking.visitor_name}",
            description=(
                "Appointment booked online.\n\n"
                f"Client: {booking.visitor_name}\nEmail: {booking.visitor_email}"
            ),
            start_utc=local_datetime(booking.booking_date, booking.start_time, config.timezone).astimezone(timezone.utc),
            end_utc=local_datetime(booking.booking_date, booking.end_time, config.timezone).astimezone(timezone.utc),
            timezone=config.timezone,
            attendee_email=booking.visitor_email,
            attendee_name=booking.visitor_name,
        )

        try:
            result = calendar.create_event(booking.provider_id, event)
        except Exception:
            logger.warning("%s event creation raised for booking %s", calendar.name, booking.id, exc_info=True)
            return

        if result.success:
            logger.info("Created %s event %s for booking %s", calendar.name, result.event_id, booking.id)
        else:
            logger.warning(
                "Failed to create %s event for booking %s: %s", calendar.name, booking.id, result.error
            )

    # -----------------------------------------------------------
    # Lookups
    # -----------------------------------------------------------
    def _provider_booking(self, booking_id: int, provider_id: int) -> Booking:
        booking = (
            self.db.query(Booking)
            .filter(Booking.id == booking_id, Booking.provider_id == provider_id)
            .first()
        )
        if not booking:
            raise NotFoundError("Booking not found")
        return booking

    def get_for_visitor(self, visitor_token: str) -> Booking:
        booking = self.db.query(Booking).filter(Booking.visitor_token == visitor_token).first()
        if not booking:
            raise NotFoundError("Booking not found")
        return booking

    def list_for_provider(self, provider_id: int, filter: str, today: date) -> list[Booking]:
        if filter not in BOOKING_FILTERS:
            raise ValidationError(f"Unknown filter '{filter}'")

        query = self.db.query(Booking).filter(Booking.provider_id == provider_id)

        if filter == "pending":
            query = query.filter(
                Booking.status == "pending",
                Booking.is_verified == True,  # noqa: E712
                Booking.booking_date >= today,
            )
        elif filter == "upcoming":
            query = query.filter(
                Booking.status.in_(("pending", "confirmed")),
                Booking.booking_date >= today,
            )
        elif filter == "past":
            query = query.filter(Booking.booking_date < today)

        return query.order_by(Booking.booking_date.asc(), Booking.start_time.asc()).all()

    # -----------------------------------------------------------
    # Transitions
    # -----------------------------------------------------------
    def _transition(self, booking: Booking, action: BookingAction, **values) -> BookingState:
        current = BookingState.of(booking)
        target = next_state(current, action)

        from_status, from_verified = STORED[current]
        to_status, _ = STORED[target]

        criteria = [Booking.id == booking.id, Booking.status == from_status]
        if from_verified is not None:
            criteria.append(Booking.is_verified == from_verified)

        updated = (
            self.db.query(Booking)
            .filter(*criteria)
            .update({"status": to_status, **values}, synchronize_session=False)
        )
        if updated == 0:
            #Someone else moved the booking first
            self.db.rollback()
            raise StateError(f"Booking cannot be {_PAST_TENSE[action]}; it was changed by another request")

        return target

    def create(self, provider_id: int, request: SlotRequest, now: datetime) -> CreateResult:
        provider, config = load_schedule(self.db, provider_id)
        if not config.accepts_online_booking:
            raise NotFoundError("Online booking not available")

        if not (is_valid_time(request.start_time) and is_valid_time(request.end_time)):
            raise ValidationError("Invalid time format")

        requested = TimeRange(start=hhmm(request.start_time), end=hhmm(request.end_time))

        #Fast-path check only; the partial unique index is authoritative
        slots = SlotService(self.db, self.calendar_selector).slots_for(config, request.booking_date, now)
        if requested not in slots:
            raise SlotUnavailableError()

        email = normalise_email(request.visitor_email)
        pre_verified = self.verifier.is_pre_verified(email)
        issued = None if pre_verified else self.verifier.issue(now)

        booking = Booking(
            provider_id=provider.id,
            service_id=request.service_id,
            booking_date=request.booking_date,
            start_time=requested.start,
            end_time=requested.end,
            duration_minutes=config.slot_duration_minutes,
            session_format=request.session_format,
            visitor_name=request.visitor_name.strip(),
            visitor_email=email,
            visitor_phone=request.visitor_phone,
            visitor_notes=request.visitor_notes,
            status="pending",
            is_verified=pre_verified,
            verification_token=issued.token if issued else None,
            verification_expires_at=issued.expires_at if issued else None,
            visitor_token=generate_token(),
        )

        self.db.add(booking)
        try:
            self.db.flush()
        except IntegrityError:
            self.db.rollback()
            logger.info(
                "Concurrent booking won slot %s %s for provider %s",
                request.booking_date,
                requested.start,
                provider.id,
            )
            raise SlotUnavailableError() from None

        log_action(
            db=self.db,
            actor_type="visitor",
            actor_id=None,
            action="booking.requested",
            details=f"booking_id={booking.id},pre_verified={pre_verified}",
        )
        self.db.commit()
        self.db.refresh(booking)

        if pre_verified:
            self._notify(
                messages.new_booking_notification_email(
                    provider_email=provider.email,
                    provider_name=provider.name,
                    visitor_name=booking.visitor_name,
                    visitor_email=booking.visitor_email,
                    booking_date=booking.booking_date,
                    start_time=booking.start_time,
                ),
                "new booking notification",
            )
        else:
            self._notify(
                messages.booking_verification_email(
                    visitor_email=booking.visitor_email,
                    visitor_name=booking.visitor_name,
                    provider_name=provider.name,
                    booking_date=booking.booking_date,
                    start_time=booking.start_time,
                    verification_token=issued.token,
                ),
                "verification email",
            )

        return CreateResult(
            booking=booking,
            pre_verified=pre_verified,
            visitor_token=booking.visitor_token if pre_verified else None,
        )

    def _mark_verified(self, booking: Booking, token: str) -> None:
        self._transition(
            booking,
            BookingAction.VERIFY,
            is_verified=True,
            verification_token=None,
            verification_expires_at=None,
            consumed_verification_token=token,
        )

    def verify(self, token: str, now: datetime) -> VerifyResult:
        try:
            outcome = self.verifier.verify(token, now, self._mark_verified)
        except StateError:
            #A concurrent click that got there first makes this one a no-op
            outcome = self.verifier.resolve(token, now)
            if not outcome.already_verified:
                raise

        booking = outcome.booking
        if outcome.already_verified:
            return VerifyResult(booking=booking, already_verified=True, visitor_token=booking.visitor_token)

        log_action(
            db=self.db,
            actor_type="visitor",
            actor_id=None,
            action="booking.verified",
            details=f"booking_id={booking.id}",
        )
        self.db.commit()
        self.db.refresh(booking)

        provider = self.db.get(Provider, booking.provider_id)
        if provider:
            self._notify(
                messages.new_booking_notification_email(
                    provider_email=provider.email,
                    provider_name=provider.name,
                    visitor_name=booking.visitor_name,
                    visitor_email=booking.visitor_email,
                    booking_date=booking.booking_date,
                    start_time=booking.start_time,
                ),
                "new booking notification",
            )

        return VerifyResult(booking=booking, already_verified=False, visitor_token=booking.visitor_token)

    def confirm(self, booking_id: int, provider_id: int, now: datetime) -> Booking:
        booking = self._provider_booking(booking_id, provider_id)
        self._transition(booking, BookingAction.CONFIRM, confirmed_at=now)

        log_action(
            db=self.db,
            actor_type="provider",
            actor_id=provider_id,
            action="booking.confirmed",
            details=f"booking_id={booking.id}",
        )
        self.db.commit()
        self.db.refresh(booking)

        provider, config = load_schedule(self.db, provider_id)
        self._sync_calendar(booking, config)
        self._notify(
            messages.booking_confirmed_email(
                visitor_email=booking.visitor_email,
                visitor_name=booking.visitor_name,
                provider_name=provider.name,
                booking_date=booking.booking_date,
                start_time=booking.start_time,
            ),
            "confirmation email",
        )
        return booking

    def cancel(
        self,
        booking_id: int,
        provider_id: int,
        now: datetime,
        actor: str = "provider",
        reason: str | None = None,
    ) -> Booking:
        booking = self._provider_booking(booking_id, provider_id)
        self._transition(
            booking,
            BookingAction.CANCEL,
            cancelled_at=now,
            cancelled_by=actor,
            cancellation_reason=reason or None,
        )

        log_action(
            db=self.db,
            actor_type=actor,
            actor_id=provider_id if actor == "provider" else None,
            action="booking.cancelled",
            details=f"booking_id={booking.id}",
        )
        self.db.commit()
        self.db.refresh(booking)

        provider = self.db.get(Provider, provider_id)
        self._notify(
            messages.booking_cancelled_email(
                visitor_email=booking.visitor_email,
                visitor_name=booking.visitor_name,
                provider_name=provider.name if provider else "your provider",
                booking_date=booking.booking_date,
                start_time=booking.start_time,
                reason=reason,
            ),
            "cancellation email",
        )
        return booking

    def complete(self, booking_id: int, provider_id: int, now: datetime) -> Booking:
        booking = self._provider_booking(booking_id, provider_id)
        self._transition(booking, BookingAction.COMPLETE, completed_at=now)

        log_action(
            db=self.db,
            actor_type="provider",
            actor_id=provider_id,
            action="booking.completed",
            details=f"booking_id={booking.id}",
        )
        self.db.commit()
        self.db.refresh(booking)
        return booking

    def no_show(self, booking_id: int, provider_id: int, now: datetime) -> Booking:
        booking = self._provider_booking(booking_id, provider_id)
        self._transition(booking, BookingAction.NO_SHOW)

        log_action(
            db=self.db,
            actor_type="provider",
            actor_id=provider_id,
            action="booking.no_show",
            details=f"booking_id={booking.id},recorded_at={now.isoformat()}",
        )
        self.db.commit()
        self.db.refresh(booking)
        return booking
