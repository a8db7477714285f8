# barber_booking/engine.py

"""
Availability and booking lifecycle operations backed by the database.

The two entry points are `compute_availability` (read-only) and
`transition_booking` (create a booking or move it through its lifecycle).
Both take an explicit session, clock and settings; routers inject them.
"""

import logging
from datetime import datetime, timedelta, date
from typing import Optional

from pydantic import BaseModel, ValidationError as PydanticValidationError
from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, select

from . import lifecycle
from .config import Settings, get_settings
from .core import (
    DayHours,
    blocks_for_date,
    filter_availability,
    generate_time_slots,
    resolve_day_hours,
)
from .deps import get_now, require_role
from .errors import AuthorizationError, ConflictError, NotFoundError, ValidationError
from .models import AvailabilityOverride, Booking, Review, ScheduleBlock, Service, User, WorkingHours
from .pricing import quote_price
from .schemas import (
    AvailabilityResponse,
    BookingAction,
    BookingCreate,
    BookingStatus,
    BusinessHours,
    CancelRequest,
    PaymentStatus,
    RescheduleRequest,
    ReviewCreate,
    TimeSlotPublic,
    UserRole,
)
from .validation import validate_booking_request, validate_service_for_barber

logger = logging.getLogger(__name__)


def get_barber(session: Session, barber_id: int) -> User:
    barber = session.get(User, barber_id)
    if barber is None or barber.role != UserRole.barber.value:
        raise NotFoundError("Barber not found")
    return barber


def get_booking(session: Session, booking_id: int) -> Booking:
    booking = session.get(Booking, booking_id)
    if booking is None:
        raise NotFoundError("Booking not found")
    return booking


def load_day(session: Session, barber_id: int, on_date: date):
    """Standing hours, override, blocks and live bookings for one barber-day."""
    row = session.get(WorkingHours, (barber_id, on_date.weekday()))
    standing = None
    if row is not None:
        standing = DayHours(is_open=row.is_open, start=row.start_time, end=row.end_time)

    override = session.exec(
        select(AvailabilityOverride)
        .where(AvailabilityOverride.barber_id == barber_id)
        .where(AvailabilityOverride.date == on_date)
    ).first()

    candidate_blocks = session.exec(
        select(ScheduleBlock)
        .where(ScheduleBlock.barber_id == barber_id)
        .where(ScheduleBlock.date <= on_date)
    ).all()
    blocks = blocks_for_date(candidate_blocks, on_date)

    day_start_dt = datetime.combine(on_date, datetime.min.time())
    day_end_dt = day_start_dt + timedelta(days=1)
    bookings = session.exec(
        select(Booking)
        .where(Booking.barber_id == barber_id)
        .where(Booking.scheduled_time >= day_start_dt)
        .where(Booking.scheduled_time < day_end_dt)
        .where(Booking.status != BookingStatus.CANCELLED.value)
    ).all()

    return standing, override, blocks, bookings


def compute_availability(
    session: Session,
    barber_id: int,
    service_id: int,
    on_date: date,
    duration: Optional[int] = None,
    now: Optional[datetime] = None,
    settings: Optional[Settings] = None,
) -> AvailabilityResponse:
    settings = settings or get_settings()
    now = now or get_now()

    if on_date < now.date():
        raise ValidationError("Cannot check availability for past dates", rule="past_date")

    get_barber(session, barber_id)
    service = validate_service_for_barber(session.get(Service, service_id), barber_id)
    duration = service.duration if duration is None else duration

    standing, override, blocks, bookings = load_day(session, barber_id, on_date)
    hours = resolve_day_hours(standing, override)
    slots = generate_time_slots(on_date, hours, duration, settings.slot_minutes)
    slots = filter_availability(slots, bookings, blocks, override)

    return AvailabilityResponse(
        barber_id=barber_id,
        service_id=service_id,
        date=on_date,
        duration=duration,
        slots=[
            TimeSlotPublic(
                start=s.start,
                end=s.end,
                available=s.available,
                price=quote_price(service.price, s.start, settings),
            )
            for s in slots
        ],
        business_hours=BusinessHours(is_open=hours.is_open, start=hours.start, end=hours.end),
    )


def _lock_barber(session: Session, barber_id: int):
    """
    Take the write lock for a barber's schedule before re-checking a slot.

    Bumping the barber row is a row lock on PostgreSQL and opens the write
    transaction on SQLite, so a second writer waits here until the first
    commits and then sees its booking.
    """
    session.exec(
        update(User)
        .where(User.id == barber_id)
        .values(schedule_version=User.schedule_version + 1)
        .execution_options(synchronize_session=False)
    )


def ensure_slot_open(
    session: Session,
    barber_id: int,
    start: datetime,
    duration: int,
    settings: Settings,
    exclude_booking_id: Optional[int] = None,
):
    """Re-run the availability check for one start time at write time."""
    standing, override, blocks, bookings = load_day(session, barber_id, start.date())
    bookings = [b for b in bookings if b.id != exclude_booking_id]

    hours = resolve_day_hours(standing, override)
    slots = generate_time_slots(start.date(), hours, duration, settings.slot_minutes)
    slots = filter_availability(slots, bookings, blocks, override)

    match = next((s for s in slots if s.start == start), None)
    if match is None:
        raise ValidationError(
            "Requested time is not a bookable slot in the barber's hours", rule="barber_hours"
        )
    if not match.available:
        raise ConflictError("Requested time slot is no longer available")


def _commit(session: Session, booking: Booking, conflict_message: str) -> Booking:
    try:
        session.commit()
    except IntegrityError:
        session.rollback()
        logger.warning("Lost write race for booking of barber %s at %s", booking.barber_id, booking.scheduled_time)
        raise ConflictError(conflict_message)
    session.refresh(booking)
    return booking


def _parse(model, params) -> BaseModel:
    if isinstance(params, model):
        return params
    try:
        return model.model_validate(params or {})
    except PydanticValidationError as exc:
        raise ValidationError(str(exc), rule="params")


def _is_customer(actor: dict, booking: Booking) -> bool:
    return actor["id"] == booking.customer_id


def _is_barber(actor: dict, booking: Booking) -> bool:
    return actor["role"] == UserRole.barber.value and actor["id"] == booking.barber_id


def _is_admin(actor: dict) -> bool:
    return actor["role"] == UserRole.admin.value


def can_view(actor: dict, booking: Booking) -> bool:
    return _is_customer(actor, booking) or _is_barber(actor, booking) or _is_admin(actor)


def _require_customer(actor: dict, booking: Booking):
    if not _is_customer(actor, booking):
        raise AuthorizationError("Only the customer who booked can do this")


def _require_barber(actor: dict, booking: Booking):
    if not _is_barber(actor, booking):
        raise AuthorizationError("Only the booked barber can do this")


def _create(session, params, actor, now, settings) -> Booking:
    require_role(actor, UserRole.customer.value)
    req = _parse(BookingCreate, params)

    get_barber(session, req.barber_id)
    validate_booking_request(req.scheduled_time, now, settings)
    service = validate_service_for_barber(session.get(Service, req.service_id), req.barber_id)

    _lock_barber(session, req.barber_id)
    ensure_slot_open(session, req.barber_id, req.scheduled_time, service.duration, settings)

    booking = Booking(
        customer_id=actor["id"],
        barber_id=req.barber_id,
        service_id=service.id,
        scheduled_time=req.scheduled_time,
        duration=service.duration,
        status=lifecycle.initial_status(settings).value,
        payment_status=PaymentStatus.PENDING.value,
        total_price=quote_price(service.price, req.scheduled_time, settings),
        notes=req.notes,
        created_at=now,
        updated_at=now,
    )
    session.add(booking)
    booking = _commit(session, booking, "Requested time slot is no longer available")
    logger.info(
        "Booking %s created for barber %s at %s (%s)",
        booking.id, booking.barber_id, booking.scheduled_time, booking.status,
    )
    return booking


def _pay(session, booking, params, actor, now, settings):
    _require_customer(actor, booking)
    lifecycle.pay(booking, now)


def _confirm(session, booking, params, actor, now, settings):
    _require_barber(actor, booking)
    lifecycle.confirm(booking, now)


def _start(session, booking, params, actor, now, settings):
    _require_barber(actor, booking)
    lifecycle.start(booking, now)


def _cancel(session, booking, params, actor, now, settings):
    req = _parse(CancelRequest, params)
    if not can_view(actor, booking):
        raise AuthorizationError("Not authorized to cancel this booking")
    # the fee schedule only applies when the customer cancels
    lifecycle.cancel(booking, now, reason=req.reason, charge_fee=_is_customer(actor, booking), settings=settings)


def _reschedule(session, booking, params, actor, now, settings):
    req = _parse(RescheduleRequest, params)
    if not (_is_customer(actor, booking) or _is_barber(actor, booking)):
        raise AuthorizationError("Not authorized to reschedule this booking")

    lifecycle.check_reschedule(booking, now, settings)
    validate_booking_request(req.scheduled_time, now, settings)
    _lock_barber(session, booking.barber_id)
    ensure_slot_open(
        session, booking.barber_id, req.scheduled_time, booking.duration, settings,
        exclude_booking_id=booking.id,
    )
    lifecycle.reschedule(booking, req.scheduled_time, now, settings)


def _complete(session, booking, params, actor, now, settings):
    _require_barber(actor, booking)
    lifecycle.complete(booking, now)


def _mark_no_show(session, booking, params, actor, now, settings):
    _require_barber(actor, booking)
    lifecycle.mark_no_show(booking, now, settings)


def _attach_review(session, booking, params, actor, now, settings):
    req = _parse(ReviewCreate, params)
    _require_customer(actor, booking)
    lifecycle.check_reviewable(booking)

    existing = session.exec(select(Review).where(Review.booking_id == booking.id)).first()
    if existing is not None:
        raise ConflictError("Booking has already been reviewed")

    session.add(Review(
        booking_id=booking.id,
        customer_id=booking.customer_id,
        barber_id=booking.barber_id,
        rating=req.rating,
        comment=req.comment,
        created_at=now,
    ))


HANDLERS = {
    BookingAction.pay: _pay,
    BookingAction.confirm: _confirm,
    BookingAction.start: _start,
    BookingAction.cancel: _cancel,
    BookingAction.reschedule: _reschedule,
    BookingAction.complete: _complete,
    BookingAction.mark_no_show: _mark_no_show,
    BookingAction.attach_review: _attach_review,
}

CONFLICT_MESSAGES = {
    BookingAction.reschedule: "Requested time slot is no longer available",
    BookingAction.attach_review: "Booking has already been reviewed",
}


def transition_booking(
    session: Session,
    booking_id: Optional[int],
    action,
    params=None,
    actor: dict = None,
    now: Optional[datetime] = None,
    settings: Optional[Settings] = None,
) -> Booking:
    """
    Apply `action` to a booking and persist the result.

    `create` ignores `booking_id` and builds a new booking from `params`.
    Any rejected action raises a BookingError and leaves the stored booking
    unchanged.
    """
    settings = settings or get_settings()
    now = now or get_now()
    if actor is None:
        raise AuthorizationError("Authentication required")
    try:
        action = BookingAction(action)
    except ValueError:
        raise ValidationError(f"Unknown booking action: {action}", rule="action")

    if action is BookingAction.create:
        try:
            return _create(session, params, actor, now, settings)
        except Exception:
            # release the schedule lock taken for the slot check
            session.rollback()
            raise

    booking = get_booking(session, booking_id)
    previous = booking.status
    try:
        HANDLERS[action](session, booking, params, actor, now, settings)
    except Exception:
        # drop any in-memory changes so the caller's session matches the database
        session.rollback()
        raise

    booking = _commit(session, booking, CONFLICT_MESSAGES.get(action, "Booking was modified concurrently"))
    logger.info("Booking %s: %s (%s -> %s)", booking.id, action.value, previous, booking.status)
    return booking
