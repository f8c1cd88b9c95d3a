"""
DOMAIN ERRORS

Every error the booking engine raises on purpose. Routes never build
error responses themselves: main.py registers one handler that turns a
SlotwiseError into a JSON body of {"detail": ..., "code": ...}.
"""


class SlotwiseError(Exception):
    """Base class for typed, user-facing engine errors."""

    status_code = 400
    code = "error"
    default_message = "Request could not be completed"

    def __init__(self, message: str | None = None):
        self.message = message or self.default_message
        super().__init__(self.message)


#Malformed or missing input
class ValidationError(SlotwiseError):
    status_code = 400
    code = "validation_error"
    default_message = "Validation failed"


#Unknown provider, booking or token
class NotFoundError(SlotwiseError):
    status_code = 404
    code = "not_found"
    default_message = "Not found"


#Operation not valid for the booking's current state
class StateError(SlotwiseError):
    status_code = 409
    code = "invalid_state"
    default_message = "Booking cannot be changed from its current state"


class ExpiredTokenError(SlotwiseError):
    status_code = 410
    code = "token_expired"
    default_message = "Verification token has expired"


#Requested slot is not in the freshly computed slot set
class SlotUnavailableError(SlotwiseError):
    status_code = 409
    code = "slot_unavailable"
    default_message = "This time slot is no longer available. Please select another."


#Date is before today or beyond the provider's booking horizon
class DateOutOfWindowError(SlotwiseError):
    status_code = 400
    code = "date_out_of_window"
    default_message = "Date is outside the bookable window"


#An external calendar call failed; the gateways catch it, record it on the
#credential and answer with an empty result
class ExternalServiceDegraded(SlotwiseError):
    status_code = 503
    code = "external_service_degraded"
    default_message = "An external service is unavailable"
