import logging
from dataclasses import dataclass
from datetime import date
from typing import Optional, Protocol

import sib_api_v3_sdk
from sib_api_v3_sdk.rest import ApiException

from slotwise.core.config import settings

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class EmailMessage:
    to: str
    subject: str
    body: str


@dataclass(frozen=True)
class DeliveryResult:
    success: bool
    delivery_id: Optional[str] = None


class NotificationGateway(Protocol):
    """Sends one message; reports failure through the result, never raises."""

    def send(self, message: EmailMessage) -> DeliveryResult: ...


# -------------------------------------------------------------------
# Brevo transactional email
# -------------------------------------------------------------------
class BrevoNotificationGateway:
    def __init__(
        self,
        api_key: str | None = None,
        sender_email: str | None = None,
        sender_name: str | None = None,
    ):
        self.api_key = api_key if api_key is not None else settings.BREVO_API_KEY
        self.sender = {
            "email": sender_email or settings.EMAIL_SENDER_ADDRESS,
            "name": sender_name or settings.EMAIL_SENDER_NAME,
        }
        self._api = None

    def _client(self) -> sib_api_v3_sdk.TransactionalEmailsApi:
        if self._api is None:
            config = sib_api_v3_sdk.Configuration()
            config.api_key["api-key"] = self.api_key
            self._api = sib_api_v3_sdk.TransactionalEmailsApi(sib_api_v3_sdk.ApiClient(config))
        return self._api

    #ONLY place that talks to Brevo
    def send(self, message: EmailMessage) -> DeliveryResult:
        if not self.api_key:
            logger.warning("BREVO_API_KEY is not set; email to %s not sent", message.to)
            return DeliveryResult(success=False)

        try:
            email = sib_api_v3_sdk.SendSmtpEmail(
                to=[{"email": message.to}],
                sender=self.sender,
                subject=message.subject,
                text_content=message.body,
            )
            response = self._client().send_transac_email(email)
            return DeliveryResult(success=True, delivery_id=getattr(response, "message_id", None))

        except ApiException as e:
            logger.error("Brevo rejected email to %s: %s", message.to, e)
            return DeliveryResult(success=False)
        except Exception:
            logger.exception("Unexpected failure sending email to %s", message.to)
            return DeliveryResult(success=False)


# -------------------------------------------------------------------
# Message builders (plain text)
# -------------------------------------------------------------------
#Format booking date and time consistently for emails
def _format_booking_time(booking_date: date, start_time: str) -> tuple[str, str]:
    return (
        booking_date.strftime("%A, %d %B %Y"),
        start_time[:5],
    )


def booking_verification_email(
    *,
    visitor_email: str,
    visitor_name: str,
    provider_name: str,
    booking_date: date,
    start_time: str,
    verification_token: str,
) -> EmailMessage:
    formatted_date, formatted_time = _format_booking_time(booking_date, start_time)
    verify_url = f"{settings.PUBLIC_API_URL}/public/bookings/verify?token={verification_token}"

    return EmailMessage(
        to=visitor_email,
        subject=f"Confirm your booking with {provider_name}",
        body=(
            f"Hi {visitor_name},\n\n"
            f"Please verify your email address to confirm your booking with {provider_name}.\n\n"
            f"Date: {formatted_date}\nTime: {formatted_time}\n\n"
            f"Verify your booking: {verify_url}\n\n"
            f"This link expires in {settings.VERIFICATION_TOKEN_TTL_HOURS} hours."
        ),
    )


def new_booking_notification_email(
    *,
    provider_email: str,
    provider_name: str,
    visitor_name: str,
    visitor_email: str,
    booking_date: date,
    start_time: str,
) -> EmailMessage:
    formatted_date, formatted_time = _format_booking_time(booking_date, start_time)

    return EmailMessage(
        to=provider_email,
        subject=f"New booking from {visitor_name}",
        body=(
            f"Hi {provider_name},\n\n"
            f"{visitor_name} ({visitor_email}) has requested a booking:\n\n"
            f"Date: {formatted_date}\nTime: {formatted_time}\n\n"
            f"Review it in your dashboard: {settings.FRONTEND_URL}/dashboard/bookings"
        ),
    )


def booking_confirmed_email(
    *,
    visitor_email: str,
    visitor_name: str,
    provider_name: str,
    booking_date: date,
    start_time: str,
) -> EmailMessage:
    formatted_date, formatted_time = _format_booking_time(booking_date, start_time)

    return EmailMessage(
        to=visitor_email,
        subject=f"Booking confirmed with {provider_name}",
        body=(
            f"Hi {visitor_name},\n\n"
            f"{provider_name} has confirmed your booking.\n\n"
            f"Date: {formatted_date}\nTime: {formatted_time}"
        ),
    )


def booking_cancelled_email(
    *,
    visitor_email: str,
    visitor_name: str,
    provider_name: str,
    booking_date: date,
    start_time: str,
    reason: str | None = None,
) -> EmailMessage:
    formatted_date, formatted_time = _format_booking_time(booking_date, start_time)
    body = (
        f"Hi {visitor_name},\n\n"
        f"Your booking with {provider_name} has been cancelled.\n\n"
        f"Date: {formatted_date}\nTime: {formatted_time}"
    )
    if reason:
        body += f"\n\nReason: {reason}"

    return EmailMessage(
        to=visitor_email,
        subject=f"Booking cancelled - {formatted_date}",
        body=body,
    )
