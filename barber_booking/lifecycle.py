# barber_booking/lifecycle.py

"""
Booking status machine.

Every function here checks the booking's status and timing first and only
then mutates the booking, so a rejected action leaves it untouched.
Persistence, authorization and slot conflicts are the engine's job.
"""

from datetime import datetime, timedelta
from decimal import Decimal
from typing import Dict, Set

from .config import Settings, get_settings
from .errors import InvalidStateTransition, ValidationError
from .pricing import to_cents
from .schemas import BookingStatus, PaymentStatus

S = BookingStatus

TERMINAL_STATUSES = {S.COMPLETED, S.CANCELLED, S.NO_SHOW}

TRANSITIONS: Dict[BookingStatus, Set[BookingStatus]] = {
    S.PENDING_PAYMENT: {S.PENDING_CONFIRMATION, S.CANCELLED},
    S.PENDING_CONFIRMATION: {S.CONFIRMED, S.CANCELLED},
    S.CONFIRMED: {S.IN_PROGRESS, S.COMPLETED, S.CANCELLED, S.NO_SHOW},
    S.IN_PROGRESS: {S.COMPLETED},
    S.COMPLETED: set(),
    S.CANCELLED: set(),
    S.NO_SHOW: set(),
}

CANCELLABLE = {S.PENDING_PAYMENT, S.PENDING_CONFIRMATION, S.CONFIRMED}
RESCHEDULABLE = {S.PENDING_CONFIRMATION, S.CONFIRMED}
COMPLETABLE = {S.CONFIRMED, S.IN_PROGRESS}


def can_transition(current, target) -> bool:
    return BookingStatus(target) in TRANSITIONS[BookingStatus(current)]


def initial_status(settings: Settings = None) -> BookingStatus:
    settings = settings or get_settings()
    if settings.require_payment_before_confirmation:
        return S.PENDING_PAYMENT
    return S.PENDING_CONFIRMATION


def _require_status(booking, action: str, allowed):
    status = BookingStatus(booking.status)
    if status not in allowed:
        raise InvalidStateTransition(action, status.value)
    return status


def _set_status(booking, target: BookingStatus, now: datetime):
    if not can_transition(booking.status, target):
        raise InvalidStateTransition(f"move to {target.value}", booking.status)
    booking.status = target.value
    booking.updated_at = now


def cancellation_fee(total_price: Decimal, scheduled_time: datetime, now: datetime, settings: Settings = None) -> Decimal:
    """
    Amount retained on a customer cancellation.

    Full refund with at least `free_cancellation_hours` notice, the late
    rate inside that window, and the whole price inside
    `late_cancellation_hours`.
    """
    settings = settings or get_settings()
    notice = scheduled_time - now

    if notice >= timedelta(hours=settings.free_cancellation_hours):
        rate = Decimal("0")
    elif notice >= timedelta(hours=settings.late_cancellation_hours):
        rate = settings.late_cancellation_fee_rate
    else:
        rate = Decimal("1")
    return to_cents(Decimal(total_price) * rate)


def settle_refund(booking, fee: Decimal):
    """Refund owed after keeping `fee`, and the payment status that results."""
    total = to_cents(booking.total_price)
    if booking.payment_status != PaymentStatus.PAID.value:
        return to_cents(Decimal("0")), booking.payment_status

    refund = total - fee
    if refund <= 0:
        return to_cents(Decimal("0")), PaymentStatus.PAID.value
    if refund == total:
        return refund, PaymentStatus.REFUNDED.value
    return refund, PaymentStatus.PARTIALLY_REFUNDED.value


def pay(booking, now: datetime):
    _require_status(booking, "pay for", {S.PENDING_PAYMENT})
    booking.payment_status = PaymentStatus.PAID.value
    _set_status(booking, S.PENDING_CONFIRMATION, now)
    return booking


def confirm(booking, now: datetime):
    _require_status(booking, "confirm", {S.PENDING_CONFIRMATION})
    _set_status(booking, S.CONFIRMED, now)
    return booking


def start(booking, now: datetime):
    _require_status(booking, "start", {S.CONFIRMED})
    if now < booking.scheduled_time:
        raise ValidationError("Appointment has not started yet", rule="not_started")
    _set_status(booking, S.IN_PROGRESS, now)
    return booking


def cancel(booking, now: datetime, reason: str = None, charge_fee: bool = True, settings: Settings = None):
    settings = settings or get_settings()
    _require_status(booking, "cancel", CANCELLABLE)
    if booking.scheduled_time <= now:
        raise ValidationError("Cannot cancel a past appointment", rule="cancel_window")

    if charge_fee:
        fee = cancellation_fee(booking.total_price, booking.scheduled_time, now, settings)
    else:
        fee = to_cents(Decimal("0"))
    refund, payment_status = settle_refund(booking, fee)

    booking.cancellation_reason = reason
    booking.cancellation_fee = fee
    booking.refund_amount = refund
    booking.payment_status = payment_status
    booking.cancelled_at = now
    _set_status(booking, S.CANCELLED, now)
    return booking


def check_reschedule(booking, now: datetime, settings: Settings = None):
    settings = settings or get_settings()
    _require_status(booking, "reschedule", RESCHEDULABLE)
    if booking.scheduled_time - now < timedelta(hours=settings.reschedule_notice_hours):
        raise ValidationError(
            f"Bookings can only be rescheduled at least {settings.reschedule_notice_hours} hours in advance",
            rule="reschedule_notice",
        )


def reschedule(booking, new_time: datetime, now: datetime, settings: Settings = None):
    check_reschedule(booking, now, settings)
    booking.scheduled_time = new_time
    booking.updated_at = now
    return booking


def complete(booking, now: datetime):
    _require_status(booking, "complete", COMPLETABLE)
    if now < booking.scheduled_time:
        raise ValidationError("Cannot complete an appointment before it starts", rule="not_started")
    booking.completed_at = now
    _set_status(booking, S.COMPLETED, now)
    return booking


def mark_no_show(booking, now: datetime, settings: Settings = None):
    settings = settings or get_settings()
    _require_status(booking, "mark as no-show", {S.CONFIRMED})
    grace_end = booking.scheduled_time + timedelta(minutes=settings.no_show_grace_minutes)
    if now < grace_end:
        raise ValidationError(
            f"No-show can only be recorded {settings.no_show_grace_minutes} minutes after the start time",
            rule="no_show_grace",
        )
    _set_status(booking, S.NO_SHOW, now)
    return booking


def check_reviewable(booking):
    _require_status(booking, "review", {S.COMPLETED})
