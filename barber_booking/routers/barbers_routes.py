# barber_booking/routers/barbers_routes.py

from datetime import datetime, timedelta, date
from decimal import Decimal, ROUND_HALF_UP
from typing import List, Optional

from fastapi import APIRouter, Depends, Query, Response
from sqlmodel import Session, select

from barber_booking import engine
from barber_booking.auth import get_current_user
from barber_booking.core import blocks_for_date, overlaps
from barber_booking.db import get_session
from barber_booking.deps import get_now, require_role
from barber_booking.errors import ConflictError, NotFoundError, ValidationError
from barber_booking.models import (
    AvailabilityOverride,
    Booking,
    Review,
    ScheduleBlock,
    Service,
    WorkingHours,
)
from barber_booking.schemas import (
    AvailabilityResponse,
    BarberProfile,
    BlockCreate,
    BlockPublic,
    BookingPublic,
    BookingStatus,
    DayHours,
    OverridePublic,
    OverrideUpsert,
    RatingSummary,
    ReviewPage,
    ServiceCreate,
    ServicePublic,
    ServiceUpdate,
    Weekday,
    WorkingHoursPublic,
    WorkingHoursUpdate,
)

router = APIRouter(
    prefix="/barbers",
    tags=["barbers"],
)


def _working_hours_public(session: Session, barber_id: int) -> dict:
    rows = session.exec(
        select(WorkingHours).where(WorkingHours.barber_id == barber_id)
    ).all()
    days = {day: DayHours() for day in Weekday}
    for row in rows:
        days[Weekday.from_index(row.weekday)] = DayHours(
            is_open=row.is_open, start=row.start_time, end=row.end_time
        )
    return {"barber_id": barber_id, "days": days}


@router.put("/me/working-hours", response_model=WorkingHoursPublic)
def set_working_hours(
    hours: WorkingHoursUpdate,
    session: Session = Depends(get_session),
    current_user: dict = Depends(get_current_user),
):
    require_role(current_user, "barber")
    barber_id = current_user["id"]

    # Upsert every weekday; days left out of the payload are closed
    for day in Weekday:
        day_hours = hours.days.get(day, DayHours())
        row = session.get(WorkingHours, (barber_id, day.number))
        if row is None:
            row = WorkingHours(barber_id=barber_id, weekday=day.number)
        row.is_open = day_hours.is_open
        row.start_time = day_hours.start if day_hours.is_open else None
        row.end_time = day_hours.end if day_hours.is_open else None
        session.add(row)

    session.commit()
    return _working_hours_public(session, barber_id)


@router.get("/me/working-hours", response_model=WorkingHoursPublic)
def get_working_hours(
    session: Session = Depends(get_session),
    current_user: dict = Depends(get_current_user),
):
    require_role(current_user, "barber")
    return _working_hours_public(session, current_user["id"])


@router.post("/me/blocks", response_model=BlockPublic, status_code=201)
def create_block(
    block: BlockCreate,
    session: Session = Depends(get_session),
    current_user: dict = Depends(get_current_user),
):
    require_role(current_user, "barber")
    barber_id = current_user["id"]

    block_start = datetime.combine(block.date, block.start_time)
    block_end = datetime.combine(block.date, block.end_time)

    # Includes recurring blocks from earlier weeks that land on this date
    candidates = session.exec(
        select(ScheduleBlock)
        .where(ScheduleBlock.barber_id == barber_id)
        .where(ScheduleBlock.date <= block.date)
    ).all()
    for existing in blocks_for_date(candidates, block.date):
        existing_start = datetime.combine(block.date, existing.start_time)
        existing_end = datetime.combine(block.date, existing.end_time)
        if overlaps(block_start, block_end, existing_start, existing_end):
            raise ConflictError("Block overlaps an existing block")

    db_block = ScheduleBlock(
        barber_id=barber_id,
        date=block.date,
        start_time=block.start_time,
        end_time=block.end_time,
        kind=block.kind.value,
        is_recurring=block.is_recurring,
    )
    session.add(db_block)
    session.commit()
    session.refresh(db_block)
    return db_block


@router.get("/me/blocks", response_model=List[BlockPublic])
def list_blocks(
    on_date: Optional[date] = None,
    session: Session = Depends(get_session),
    current_user: dict = Depends(get_current_user),
):
    require_role(current_user, "barber")
    stmt = select(ScheduleBlock).where(ScheduleBlock.barber_id == current_user["id"])
    if on_date is not None:
        stmt = stmt.where(ScheduleBlock.date == on_date)
    return session.exec(stmt.order_by(ScheduleBlock.date, ScheduleBlock.start_time)).all()


@router.delete("/me/blocks/{block_id}", status_code=204)
def delete_block(
    block_id: int,
    session: Session = Depends(get_session),
    current_user: dict = Depends(get_current_user),
):
    require_role(current_user, "barber")
    block = session.get(ScheduleBlock, block_id)
    if block is None or block.barber_id != current_user["id"]:
        raise NotFoundError("Block not found")
    session.delete(block)
    session.commit()
    return Response(status_code=204)


@router.put("/me/overrides", response_model=OverridePublic)
def set_override(
    override: OverrideUpsert,
    session: Session = Depends(get_session),
    current_user: dict = Depends(get_current_user),
):
    require_role(current_user, "barber")
    barber_id = current_user["id"]

    # At most one override per barber per date
    db_override = session.exec(
        select(AvailabilityOverride)
        .where(AvailabilityOverride.barber_id == barber_id)
        .where(AvailabilityOverride.date == override.date)
    ).first()
    if db_override is None:
        db_override = AvailabilityOverride(barber_id=barber_id, date=override.date, is_available=override.is_available)
    db_override.is_available = override.is_available
    db_override.start_time = override.start_time
    db_override.end_time = override.end_time

    session.add(db_override)
    session.commit()
    session.refresh(db_override)
    return db_override


@router.delete("/me/overrides/{on_date}", status_code=204)
def delete_override(
    on_date: date,
    session: Session = Depends(get_session),
    current_user: dict = Depends(get_current_user),
):
    require_role(current_user, "barber")
    db_override = session.exec(
        select(AvailabilityOverride)
        .where(AvailabilityOverride.barber_id == current_user["id"])
        .where(AvailabilityOverride.date == on_date)
    ).first()
    if db_override is None:
        raise NotFoundError("Override not found")
    session.delete(db_override)
    session.commit()
    return Response(status_code=204)


@router.post("/me/services", response_model=ServicePublic, status_code=201)
def create_service(
    service: ServiceCreate,
    session: Session = Depends(get_session),
    current_user: dict = Depends(get_current_user),
):
    require_role(current_user, "barber")
    db_service = Service(
        barber_id=current_user["id"],
        name=service.name,
        duration=service.duration,
        price=service.price,
    )
    session.add(db_service)
    session.commit()
    session.refresh(db_service)
    return db_service


@router.patch("/me/services/{service_id}", response_model=ServicePublic)
def update_service(
    service_id: int,
    changes: ServiceUpdate,
    session: Session = Depends(get_session),
    current_user: dict = Depends(get_current_user),
):
    require_role(current_user, "barber")
    db_service = session.get(Service, service_id)
    if db_service is None or db_service.barber_id != current_user["id"]:
        raise NotFoundError("Service not found")

    # Existing bookings keep the duration and price they were made with
    for field, value in changes.model_dump(exclude_unset=True).items():
        if value is None:
            raise ValidationError(f"{field} cannot be null", rule="service_update")
        setattr(db_service, field, value)

    session.add(db_service)
    session.commit()
    session.refresh(db_service)
    return db_service


@router.get("/me/bookings", response_model=List[BookingPublic])
def list_barber_bookings(
    status: Optional[BookingStatus] = None,
    on_date: Optional[date] = None,
    session: Session = Depends(get_session),
    current_user: dict = Depends(get_current_user),
):
    require_role(current_user, "barber")

    stmt = select(Booking).where(Booking.barber_id == current_user["id"])
    if on_date is not None:
        day_start_dt = datetime.combine(on_date, datetime.min.time())
        day_end_dt = day_start_dt + timedelta(days=1)
        stmt = stmt.where(Booking.scheduled_time >= day_start_dt).where(Booking.scheduled_time < day_end_dt)
    if status is not None:
        stmt = stmt.where(Booking.status == status.value)

    return session.exec(stmt.order_by(Booking.scheduled_time)).all()


@router.get("/{barber_id}/services", response_model=List[ServicePublic])
def list_services(
    barber_id: int,
    include_inactive: bool = False,
    session: Session = Depends(get_session),
):
    engine.get_barber(session, barber_id)
    stmt = select(Service).where(Service.barber_id == barber_id)
    if not include_inactive:
        stmt = stmt.where(Service.is_active == True)  # noqa: E712
    return session.exec(stmt.order_by(Service.id)).all()


@router.get("/{barber_id}/availability", response_model=AvailabilityResponse)
def barber_availability(
    barber_id: int,
    service_id: int,
    date: date,
    duration: Optional[int] = None,
    session: Session = Depends(get_session),
    now: datetime = Depends(get_now),
):
    return engine.compute_availability(
        session, barber_id, service_id, date, duration=duration, now=now
    )


RECENT_REVIEWS = 10


def _rating_summary(session: Session, barber_id: int) -> RatingSummary:
    ratings = session.exec(select(Review.rating).where(Review.barber_id == barber_id)).all()
    distribution = {score: 0 for score in range(1, 6)}
    for rating in ratings:
        distribution[rating] += 1

    average = None
    if ratings:
        average = (Decimal(sum(ratings)) / len(ratings)).quantize(Decimal("0.1"), rounding=ROUND_HALF_UP)
    return RatingSummary(
        average_rating=average,
        total_reviews=len(ratings),
        rating_distribution=distribution,
    )


def _newest_reviews(barber_id: int):
    return (
        select(Review)
        .where(Review.barber_id == barber_id)
        .order_by(Review.created_at.desc(), Review.id.desc())
    )


@router.get("/{barber_id}", response_model=BarberProfile)
def barber_profile(
    barber_id: int,
    session: Session = Depends(get_session),
):
    barber = engine.get_barber(session, barber_id)
    services = session.exec(
        select(Service)
        .where(Service.barber_id == barber_id)
        .where(Service.is_active == True)  # noqa: E712
        .order_by(Service.id)
    ).all()
    recent = session.exec(_newest_reviews(barber_id).limit(RECENT_REVIEWS)).all()

    return {
        "id": barber.id,
        "email": barber.email,
        "services": services,
        "rating": _rating_summary(session, barber_id),
        "recent_reviews": recent,
    }


@router.get("/{barber_id}/reviews", response_model=ReviewPage)
def list_reviews(
    barber_id: int,
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
    session: Session = Depends(get_session),
):
    engine.get_barber(session, barber_id)
    reviews = session.exec(_newest_reviews(barber_id).offset(offset).limit(limit)).all()
    statistics = _rating_summary(session, barber_id)

    return {
        "reviews": reviews,
        "statistics": statistics,
        "limit": limit,
        "offset": offset,
        "has_more": offset + len(reviews) < statistics.total_reviews,
    }
