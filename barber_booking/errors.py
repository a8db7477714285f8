# barber_booking/errors.py

"""
Domain errors raised by the booking engine.

Each error carries the HTTP status it maps to at the API boundary and a
stable machine-readable code. None of them are fatal to the process.
"""

from typing import Optional


class BookingError(Exception):
    status_code = 400
    code = "BOOKING_ERROR"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict:
        return {"detail": self.message, "code": self.code}


class ValidationError(BookingError):
    """A precondition was not met. `rule` names the failed rule."""

    status_code = 422
    code = "VALIDATION_ERROR"

    def __init__(self, message: str, rule: Optional[str] = None):
        super().__init__(message)
        self.rule = rule

    def to_dict(self) -> dict:
        body = super().to_dict()
        if self.rule:
            body["rule"] = self.rule
        return body


class NotFoundError(BookingError):
    status_code = 404
    code = "NOT_FOUND"


class ConflictError(BookingError):
    """The slot or resource was taken between read and commit."""

    status_code = 409
    code = "CONFLICT"


class InvalidStateTransition(BookingError):
    status_code = 409
    code = "INVALID_STATE_TRANSITION"

    def __init__(self, action: str, status: str):
        super().__init__(f"Cannot {action} a booking that is {status}")
        self.action = action
        self.status = status


class AuthorizationError(BookingError):
    status_code = 403
    code = "FORBIDDEN"
