# barber_booking/routers/bookings_routes.py

from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Body, Depends
from sqlmodel import Session, select

from barber_booking import engine
from barber_booking.auth import get_current_user
from barber_booking.db import get_session
from barber_booking.deps import get_now, require_role
from barber_booking.errors import AuthorizationError
from barber_booking.models import Booking, Review
from barber_booking.schemas import (
    BookingAction,
    BookingCreate,
    BookingPublic,
    BookingStatus,
    CancelRequest,
    RescheduleRequest,
    ReviewCreate,
    ReviewPublic,
)

router = APIRouter(
    tags=["bookings"],
)


@router.post("/bookings", response_model=BookingPublic, status_code=201)
def create_booking(
    booking: BookingCreate,
    session: Session = Depends(get_session),
    current_user: dict = Depends(get_current_user),
    now: datetime = Depends(get_now),
):
    return engine.transition_booking(session, None, BookingAction.create, booking, current_user, now=now)


@router.get("/bookings/{booking_id}", response_model=BookingPublic)
def get_booking(
    booking_id: int,
    session: Session = Depends(get_session),
    current_user: dict = Depends(get_current_user),
):
    booking = engine.get_booking(session, booking_id)
    if not engine.can_view(current_user, booking):
        raise AuthorizationError("Not authorized to view this booking")
    return booking


def _transition(action: BookingAction):
    def endpoint(
        booking_id: int,
        session: Session = Depends(get_session),
        current_user: dict = Depends(get_current_user),
        now: datetime = Depends(get_now),
    ):
        return engine.transition_booking(session, booking_id, action, None, current_user, now=now)

    endpoint.__name__ = f"{action.value}_booking"
    return endpoint


# Actions without a request body
for _path, _action in (
    ("pay", BookingAction.pay),
    ("confirm", BookingAction.confirm),
    ("start", BookingAction.start),
    ("complete", BookingAction.complete),
    ("no-show", BookingAction.mark_no_show),
):
    router.add_api_route(
        f"/bookings/{{booking_id}}/{_path}",
        _transition(_action),
        methods=["POST"],
        response_model=BookingPublic,
    )


@router.post("/bookings/{booking_id}/cancel", response_model=BookingPublic)
def cancel_booking(
    booking_id: int,
    cancel: Optional[CancelRequest] = Body(default=None),
    session: Session = Depends(get_session),
    current_user: dict = Depends(get_current_user),
    now: datetime = Depends(get_now),
):
    return engine.transition_booking(
        session, booking_id, BookingAction.cancel, cancel or CancelRequest(), current_user, now=now
    )


@router.post("/bookings/{booking_id}/reschedule", response_model=BookingPublic)
def reschedule_booking(
    booking_id: int,
    reschedule: RescheduleRequest,
    session: Session = Depends(get_session),
    current_user: dict = Depends(get_current_user),
    now: datetime = Depends(get_now),
):
    return engine.transition_booking(
        session, booking_id, BookingAction.reschedule, reschedule, current_user, now=now
    )


@router.post("/bookings/{booking_id}/review", response_model=ReviewPublic, status_code=201)
def review_booking(
    booking_id: int,
    review: ReviewCreate,
    session: Session = Depends(get_session),
    current_user: dict = Depends(get_current_user),
    now: datetime = Depends(get_now),
):
    engine.transition_booking(
        session, booking_id, BookingAction.attach_review, review, current_user, now=now
    )
    return session.exec(select(Review).where(Review.booking_id == booking_id)).one()


@router.get("/customers/me/bookings", response_model=List[BookingPublic])
def list_my_bookings(
    status: Optional[BookingStatus] = None,
    session: Session = Depends(get_session),
    current_user: dict = Depends(get_current_user),
):
    require_role(current_user, "customer")

    stmt = select(Booking).where(Booking.customer_id == current_user["id"])
    if status is not None:
        stmt = stmt.where(Booking.status == status.value)

    return session.exec(stmt.order_by(Booking.scheduled_time)).all()
