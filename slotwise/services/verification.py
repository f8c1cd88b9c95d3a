"""
Visitor email verification.

A verification token is 32 random bytes, hex-encoded, valid for 24 hours
and consumed on first successful use. Verified addresses are remembered
in the trusted email set so returning visitors skip the email round trip.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable

from sqlalchemy.dialects.postgresql import insert as postgresql_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.orm import Session

from slotwise.core.config import settings
from slotwise.core.errors import ExpiredTokenError, NotFoundError
from slotwise.core.security import generate_token
from slotwise.db.models import Booking, TrustedEmail

logger = logging.getLogger(__name__)

#Dialects with a native INSERT ... ON CONFLICT DO NOTHING
_UPSERT_DIALECTS = {
    "postgresql": postgresql_insert,
    "sqlite": sqlite_insert,
}


@dataclass(frozen=True)
class IssuedToken:
    token: str
    expires_at: datetime


@dataclass(frozen=True)
class VerificationOutcome:
    booking: Booking
    already_verified: bool


def normalise_email(email: str) -> str:
    return email.strip().lower()


#SQLite hands back naive datetimes; stored values are always UTC
def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class VerificationTokenService:
    def __init__(self, db: Session, ttl_hours: int | None = None):
        self.db = db
        self.ttl = timedelta(
            hours=ttl_hours if ttl_hours is not None else settings.VERIFICATION_TOKEN_TTL_HOURS
        )

    def issue(self, now: datetime) -> IssuedToken:
        return IssuedToken(token=generate_token(), expires_at=now + self.ttl)

    def is_pre_verified(self, email: str) -> bool:
        return (
            self.db.query(TrustedEmail.id)
            .filter(TrustedEmail.email == normalise_email(email))
            .first()
            is not None
        )

    def trust(self, email: str, source: str = "booking") -> None:
        """Insert-if-absent; an existing entry is left untouched."""
        address = normalise_email(email)
        dialect = self.db.get_bind().dialect.name

        if dialect in _UPSERT_DIALECTS:
            stmt = (
                _UPSERT_DIALECTS[dialect](TrustedEmail)
                .values(email=address, verified_via=source)
                .on_conflict_do_nothing(index_elements=["email"])
            )
            self.db.execute(stmt)
            return

        if not self.is_pre_verified(address):
            self.db.add(TrustedEmail(email=address, verified_via=source))

    def resolve(self, token: str, now: datetime) -> VerificationOutcome:
        """Find the booking a verification link points at, without changing it.

        The state change itself belongs to the caller; see verify().
        """
        booking = self.db.query(Booking).filter(Booking.verification_token == token).first()

        if booking is None:
            #A link that was already used still resolves, but only as a no-op
            consumed = (
                self.db.query(Booking)
                .filter(Booking.consumed_verification_token == token)
                .first()
            )
            if consumed is not None and consumed.is_verified:
                return VerificationOutcome(booking=consumed, already_verified=True)
            raise NotFoundError("Invalid verification token")

        if booking.is_verified:
            return VerificationOutcome(booking=booking, already_verified=True)

        if booking.verification_expires_at and now > _as_utc(booking.verification_expires_at):
            raise ExpiredTokenError()

        return VerificationOutcome(booking=booking, already_verified=False)

    def verify(
        self,
        token: str,
        now: datetime,
        mark_verified: Callable[[Booking, str], None],
    ) -> VerificationOutcome:
        """Redeem a live token.

        mark_verified(booking, token) performs the state change; if it raises,
        the address is not added to the trusted set.
        """
        outcome = self.resolve(token, now)
        if outcome.already_verified:
            return outcome

        mark_verified(outcome.booking, token)
        self.trust(outcome.booking.visitor_email)
        return outcome
