"""
Tests for availability and booking transitions against a database session.

Run with: pytest tests/test_engine.py -v
"""

import threading
from datetime import datetime, date, time, timedelta
from decimal import Decimal
from time import sleep

import pytest
from sqlmodel import SQLModel, Session, create_engine, select

from barber_booking import engine
from barber_booking.config import Settings
from barber_booking.errors import (
    AuthorizationError,
    ConflictError,
    InvalidStateTransition,
    NotFoundError,
    ValidationError,
)
from barber_booking.models import (
    AvailabilityOverride,
    Booking,
    Review,
    ScheduleBlock,
    Service,
    User,
    WorkingHours,
)
from barber_booking.schemas import BookingStatus, PaymentStatus

from conftest import NOW, actor_for

TUESDAY = date(2030, 1, 8)
WEDNESDAY = date(2030, 1, 9)
SUNDAY = date(2030, 1, 13)


def at(day, hour, minute=0):
    return datetime.combine(day, time(hour, minute))


def create(session, customer, barber, service, when, now=NOW, settings=None):
    return engine.transition_booking(
        session,
        None,
        "create",
        {"barber_id": barber.id, "service_id": service.id, "scheduled_time": when},
        actor_for(customer),
        now=now,
        settings=settings,
    )


def transition(session, booking, action, actor, now, params=None):
    return engine.transition_booking(session, booking.id, action, params, actor_for(actor), now=now)


def available_starts(response):
    return [s.start.strftime("%H:%M") for s in response.slots if s.available]


# ============================================================================
# COMPUTE AVAILABILITY
# ============================================================================

class TestComputeAvailability:

    def test_open_day_lists_slots(self, session, barber, service):
        result = engine.compute_availability(session, barber.id, service.id, TUESDAY, now=NOW)
        assert result.business_hours.is_open
        assert available_starts(result)[0] == "09:00"
        assert available_starts(result)[-1] == "16:30"
        assert all(s.end - s.start == timedelta(minutes=30) for s in result.slots)
        assert all(s.price == Decimal("40.00") for s in result.slots)

    def test_closed_day_has_no_slots(self, session, barber, service):
        result = engine.compute_availability(session, barber.id, service.id, SUNDAY, now=NOW)
        assert result.business_hours.is_open is False
        assert result.slots == []

    def test_existing_booking_blocks_overlapping_slots(self, session, barber, service, customer):
        create(session, customer, barber, service, at(TUESDAY, 10))
        result = engine.compute_availability(session, barber.id, service.id, TUESDAY, now=NOW)
        unavailable = [s.start.strftime("%H:%M") for s in result.slots if not s.available]
        assert unavailable == ["09:45", "10:00", "10:15"]

    def test_cancelled_booking_frees_slot(self, session, barber, service, customer):
        booking = create(session, customer, barber, service, at(TUESDAY, 10))
        transition(session, booking, "cancel", customer, NOW)
        result = engine.compute_availability(session, barber.id, service.id, TUESDAY, now=NOW)
        assert all(s.available for s in result.slots)

    def test_unavailable_override_forces_zero_availability(self, session, barber, service):
        session.add(AvailabilityOverride(barber_id=barber.id, date=TUESDAY, is_available=False))
        session.commit()
        result = engine.compute_availability(session, barber.id, service.id, TUESDAY, now=NOW)
        assert available_starts(result) == []

    def test_override_can_open_a_closed_day(self, session, barber, service):
        session.add(AvailabilityOverride(
            barber_id=barber.id, date=SUNDAY, is_available=True, start_time=time(10), end_time=time(11),
        ))
        session.commit()
        result = engine.compute_availability(session, barber.id, service.id, SUNDAY, now=NOW)
        assert available_starts(result) == ["10:00", "10:15", "10:30"]

    def test_recurring_break_applies_next_week(self, session, barber, service):
        session.add(ScheduleBlock(
            barber_id=barber.id, date=date(2030, 1, 1), start_time=time(12), end_time=time(13),
            kind="break", is_recurring=True,
        ))
        session.commit()
        result = engine.compute_availability(session, barber.id, service.id, TUESDAY, now=NOW)
        assert "12:00" not in available_starts(result)
        assert "13:00" in available_starts(result)

    def test_duration_override(self, session, barber, service):
        result = engine.compute_availability(session, barber.id, service.id, TUESDAY, duration=60, now=NOW)
        assert result.duration == 60
        assert available_starts(result)[-1] == "16:00"

    def test_zero_duration_rejected(self, session, barber, service):
        with pytest.raises(ValidationError) as exc_info:
            engine.compute_availability(session, barber.id, service.id, TUESDAY, duration=0, now=NOW)
        assert exc_info.value.rule == "slot_duration"

    def test_past_date_rejected(self, session, barber, service):
        with pytest.raises(ValidationError):
            engine.compute_availability(session, barber.id, service.id, date(2030, 1, 6), now=NOW)

    def test_unknown_barber(self, session, service):
        with pytest.raises(NotFoundError):
            engine.compute_availability(session, 999, service.id, TUESDAY, now=NOW)

    def test_service_of_other_barber(self, session, service, other_barber):
        with pytest.raises(ValidationError):
            engine.compute_availability(session, other_barber.id, service.id, TUESDAY, now=NOW)


# ============================================================================
# CREATE
# ============================================================================

class TestCreate:

    def test_creates_pending_confirmation_with_snapshot(self, session, barber, service, customer):
        booking = create(session, customer, barber, service, at(TUESDAY, 10))
        assert booking.id is not None
        assert booking.status == BookingStatus.PENDING_CONFIRMATION.value
        assert booking.payment_status == PaymentStatus.PENDING.value
        assert booking.duration == 30
        assert booking.total_price == Decimal("40.00")

    def test_payment_first_setting(self, session, barber, service, customer):
        settings = Settings(require_payment_before_confirmation=True)
        booking = create(session, customer, barber, service, at(TUESDAY, 10), settings=settings)
        assert booking.status == BookingStatus.PENDING_PAYMENT.value

    def test_price_change_does_not_touch_existing_booking(self, session, barber, service, customer):
        booking = create(session, customer, barber, service, at(TUESDAY, 10))
        service.price = Decimal("55.00")
        session.add(service)
        session.commit()
        session.refresh(booking)
        assert booking.total_price == Decimal("40.00")

    def test_sunday_rejected_even_if_barber_open(self, session, barber, service, customer):
        session.add(AvailabilityOverride(
            barber_id=barber.id, date=SUNDAY, is_available=True, start_time=time(9), end_time=time(17),
        ))
        session.commit()
        with pytest.raises(ValidationError) as exc_info:
            create(session, customer, barber, service, at(SUNDAY, 10))
        assert exc_info.value.rule == "booking_day"
        assert session.exec(select(Booking)).all() == []

    def test_off_grid_time_rejected(self, session, barber, service, customer):
        with pytest.raises(ValidationError) as exc_info:
            create(session, customer, barber, service, at(TUESDAY, 10, 5))
        assert exc_info.value.rule == "barber_hours"

    def test_overlapping_booking_conflicts(self, session, barber, service, customer, other_customer):
        create(session, customer, barber, service, at(TUESDAY, 10))
        with pytest.raises(ConflictError):
            create(session, other_customer, barber, service, at(TUESDAY, 10, 15))

    def test_same_slot_twice_conflicts(self, session, barber, service, customer, other_customer):
        create(session, customer, barber, service, at(TUESDAY, 10))
        with pytest.raises(ConflictError):
            create(session, other_customer, barber, service, at(TUESDAY, 10))
        assert len(session.exec(select(Booking)).all()) == 1

    def test_lost_race_becomes_conflict(self, session, barber, service, customer, other_customer, monkeypatch):
        """Both requests pass the read-side check; the unique index decides."""
        create(session, customer, barber, service, at(TUESDAY, 10))
        monkeypatch.setattr(engine, "ensure_slot_open", lambda *args, **kwargs: None)

        with pytest.raises(ConflictError):
            create(session, other_customer, barber, service, at(TUESDAY, 10))
        assert len(session.exec(select(Booking)).all()) == 1

    def test_barber_cannot_book(self, session, barber, service):
        with pytest.raises(AuthorizationError):
            create(session, barber, barber, service, at(TUESDAY, 10))

    def test_inactive_service_rejected(self, session, barber, service, customer):
        service.is_active = False
        session.add(service)
        session.commit()
        with pytest.raises(ValidationError) as exc_info:
            create(session, customer, barber, service, at(TUESDAY, 10))
        assert exc_info.value.rule == "service_active"

    def test_unknown_action(self, session, customer):
        with pytest.raises(ValidationError):
            engine.transition_booking(session, 1, "teleport", None, actor_for(customer), now=NOW)


# ============================================================================
# CONCURRENT CREATE
# ============================================================================

class TestConcurrentCreate:
    """Two sessions on one database file racing for the same barber."""

    @pytest.fixture
    def shared_db(self, tmp_path):
        db_engine = create_engine(
            f"sqlite:///{tmp_path / 'race.db'}",
            connect_args={"check_same_thread": False},
        )
        SQLModel.metadata.create_all(db_engine)

        with Session(db_engine) as setup:
            barber = User(email="barber@example.com", password_hash="not-a-real-hash", role="barber")
            first = User(email="first@example.com", password_hash="not-a-real-hash", role="customer")
            second = User(email="second@example.com", password_hash="not-a-real-hash", role="customer")
            setup.add_all([barber, first, second])
            setup.commit()

            for weekday in range(6):
                setup.add(WorkingHours(
                    barber_id=barber.id, weekday=weekday, is_open=True,
                    start_time=time(9, 0), end_time=time(17, 0),
                ))
            service = Service(barber_id=barber.id, name="Haircut", duration=30, price=Decimal("40.00"))
            setup.add(service)
            setup.commit()

            ids = {"barber": barber.id, "first": first.id, "second": second.id, "service": service.id}

        yield db_engine, ids
        db_engine.dispose()

    @pytest.mark.parametrize("second_minute", [0, 15], ids=["same-start", "overlapping"])
    def test_exactly_one_succeeds(self, shared_db, monkeypatch, second_minute):
        db_engine, ids = shared_db
        real_check = engine.ensure_slot_open
        first_checked = threading.Event()

        def held_check(*args, **kwargs):
            real_check(*args, **kwargs)
            if threading.current_thread().name == "first":
                first_checked.set()
                # keep the first request between its check and its insert
                sleep(0.5)

        monkeypatch.setattr(engine, "ensure_slot_open", held_check)
        results = {}

        def book(name, start):
            with Session(db_engine) as session:
                try:
                    engine.transition_booking(
                        session,
                        None,
                        "create",
                        {"barber_id": ids["barber"], "service_id": ids["service"], "scheduled_time": start},
                        {"id": ids[name], "email": f"{name}@example.com", "role": "customer"},
                        now=NOW,
                    )
                    results[name] = "created"
                except ConflictError:
                    results[name] = "conflict"

        first = threading.Thread(target=book, name="first", args=("first", at(TUESDAY, 10)))
        second = threading.Thread(target=book, name="second", args=("second", at(TUESDAY, 10, second_minute)))
        first.start()
        assert first_checked.wait(timeout=5)
        second.start()
        first.join(timeout=15)
        second.join(timeout=15)

        assert results == {"first": "created", "second": "conflict"}
        with Session(db_engine) as session:
            bookings = session.exec(select(Booking)).all()
        assert [(b.customer_id, b.scheduled_time) for b in bookings] == [(ids["first"], at(TUESDAY, 10))]


# ============================================================================
# LIFECYCLE THROUGH THE ENGINE
# ============================================================================

class TestTransitions:

    @pytest.fixture
    def booking(self, session, barber, service, customer):
        # Wednesday 10:00, 50 hours after NOW
        return create(session, customer, barber, service, at(WEDNESDAY, 10))

    def test_customer_cancel_fee_schedule(self, session, booking, customer):
        appointment = booking.scheduled_time
        cancelled = transition(session, booking, "cancel", customer, appointment - timedelta(hours=10))
        assert cancelled.status == BookingStatus.CANCELLED.value
        assert cancelled.cancellation_fee == Decimal("20.00")
        assert cancelled.cancelled_at == appointment - timedelta(hours=10)

    def test_barber_cancel_waives_fee(self, session, booking, barber):
        cancelled = transition(session, booking, "cancel", barber, booking.scheduled_time - timedelta(hours=1))
        assert cancelled.cancellation_fee == Decimal("0")

    def test_stranger_cannot_cancel(self, session, booking, other_customer):
        with pytest.raises(AuthorizationError):
            transition(session, booking, "cancel", other_customer, NOW)

    def test_full_flow_to_review(self, session, booking, barber, customer):
        start = booking.scheduled_time
        transition(session, booking, "confirm", barber, NOW)
        transition(session, booking, "start", barber, start)
        done = transition(session, booking, "complete", barber, start + timedelta(minutes=30))
        assert done.status == BookingStatus.COMPLETED.value

        transition(session, booking, "attach_review", customer, start + timedelta(hours=2),
                   params={"rating": 5, "comment": "Sharp"})
        review = session.exec(select(Review).where(Review.booking_id == booking.id)).one()
        assert review.rating == 5
        assert review.barber_id == barber.id

    def test_cancel_completed_is_invalid_and_unchanged(self, session, booking, barber, customer):
        transition(session, booking, "confirm", barber, NOW)
        transition(session, booking, "complete", barber, booking.scheduled_time + timedelta(minutes=30))

        with pytest.raises(InvalidStateTransition):
            transition(session, booking, "cancel", customer, NOW)
        session.expire_all()
        stored = session.get(Booking, booking.id)
        assert stored.status == BookingStatus.COMPLETED.value
        assert stored.cancelled_at is None

    def test_complete_only_by_barber(self, session, booking, barber, customer):
        transition(session, booking, "confirm", barber, NOW)
        with pytest.raises(AuthorizationError):
            transition(session, booking, "complete", customer, booking.scheduled_time + timedelta(hours=1))

    def test_complete_requires_confirmation(self, session, booking, barber):
        with pytest.raises(InvalidStateTransition):
            transition(session, booking, "complete", barber, booking.scheduled_time + timedelta(hours=1))

    def test_review_twice_conflicts(self, session, booking, barber, customer):
        transition(session, booking, "confirm", barber, NOW)
        later = booking.scheduled_time + timedelta(hours=1)
        transition(session, booking, "complete", barber, later)
        transition(session, booking, "attach_review", customer, later, params={"rating": 4})
        with pytest.raises(ConflictError):
            transition(session, booking, "attach_review", customer, later, params={"rating": 1})

    def test_review_by_barber_forbidden(self, session, booking, barber):
        transition(session, booking, "confirm", barber, NOW)
        later = booking.scheduled_time + timedelta(hours=1)
        transition(session, booking, "complete", barber, later)
        with pytest.raises(AuthorizationError):
            transition(session, booking, "attach_review", barber, later, params={"rating": 4})

    def test_no_show(self, session, booking, barber):
        transition(session, booking, "confirm", barber, NOW)
        result = transition(session, booking, "mark_no_show", barber, booking.scheduled_time + timedelta(minutes=20))
        assert result.status == BookingStatus.NO_SHOW.value

    def test_pay_then_confirm(self, session, barber, service, customer):
        settings = Settings(require_payment_before_confirmation=True)
        booking = create(session, customer, barber, service, at(TUESDAY, 11), settings=settings)
        transition(session, booking, "pay", customer, NOW)
        assert booking.payment_status == PaymentStatus.PAID.value
        confirmed = transition(session, booking, "confirm", barber, NOW)
        assert confirmed.status == BookingStatus.CONFIRMED.value

    def test_missing_booking(self, session, customer):
        with pytest.raises(NotFoundError):
            engine.transition_booking(session, 404, "cancel", None, actor_for(customer), now=NOW)


# ============================================================================
# RESCHEDULE
# ============================================================================

class TestReschedule:

    @pytest.fixture
    def booking(self, session, barber, service, customer):
        return create(session, customer, barber, service, at(WEDNESDAY, 10))

    def test_reschedule_to_free_slot(self, session, booking, customer):
        moved = transition(session, booking, "reschedule", customer, NOW,
                           params={"scheduled_time": at(WEDNESDAY, 14)})
        assert moved.scheduled_time == at(WEDNESDAY, 14)

    def test_reschedule_within_own_slot_window(self, session, booking, customer):
        # overlapping only with itself is fine
        moved = transition(session, booking, "reschedule", customer, NOW,
                           params={"scheduled_time": at(WEDNESDAY, 10, 15)})
        assert moved.scheduled_time == at(WEDNESDAY, 10, 15)

    def test_reschedule_short_notice_rejected(self, session, booking, customer):
        with pytest.raises(ValidationError) as exc_info:
            transition(session, booking, "reschedule", customer, booking.scheduled_time - timedelta(hours=3),
                       params={"scheduled_time": at(WEDNESDAY, 14)})
        assert exc_info.value.rule == "reschedule_notice"
        session.expire_all()
        assert session.get(Booking, booking.id).scheduled_time == at(WEDNESDAY, 10)

    def test_reschedule_into_taken_slot(self, session, booking, barber, service, customer, other_customer):
        create(session, other_customer, barber, service, at(WEDNESDAY, 14))
        with pytest.raises(ConflictError):
            transition(session, booking, "reschedule", customer, NOW,
                       params={"scheduled_time": at(WEDNESDAY, 14)})
        session.expire_all()
        assert session.get(Booking, booking.id).scheduled_time == at(WEDNESDAY, 10)

    def test_reschedule_to_sunday_rejected(self, session, booking, customer):
        with pytest.raises(ValidationError):
            transition(session, booking, "reschedule", customer, NOW,
                       params={"scheduled_time": at(SUNDAY, 10)})
