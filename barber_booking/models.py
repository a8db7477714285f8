# barber_booking/models.py

from typing import Optional
from datetime import datetime, date as Date, time
from decimal import Decimal

from sqlalchemy import Index, UniqueConstraint, text
from sqlmodel import SQLModel, Field


class User(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    email: str = Field(index=True, unique=True)
    password_hash: str
    role: str  # customer, barber or admin
    schedule_version: int = 0  # bumped whenever a booking claims one of this barber's slots


class Service(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)

    barber_id: int = Field(foreign_key="user.id", index=True)
    name: str
    duration: int  # minutes
    price: Decimal = Field(max_digits=8, decimal_places=2)
    is_active: bool = True


class WorkingHours(SQLModel, table=True):
    barber_id: int = Field(foreign_key="user.id", primary_key=True)
    weekday: int = Field(primary_key=True)  # 0=Mon ... 6=Sun
    is_open: bool = False
    start_time: Optional[time] = None
    end_time: Optional[time] = None


class ScheduleBlock(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)

    barber_id: int = Field(foreign_key="user.id", index=True)
    date: Date = Field(index=True)
    start_time: time
    end_time: time
    kind: str  # unavailable, break, vacation or appointment
    is_recurring: bool = False


class AvailabilityOverride(SQLModel, table=True):
    __table_args__ = (
        UniqueConstraint("barber_id", "date", name="uq_override_barber_date"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)

    barber_id: int = Field(foreign_key="user.id", index=True)
    date: Date
    is_available: bool
    start_time: Optional[time] = None
    end_time: Optional[time] = None


ACTIVE_SLOT_PREDICATE = "status != 'CANCELLED'"


class Booking(SQLModel, table=True):
    # one live booking per barber start time; cancelled rows free the slot
    __table_args__ = (
        Index(
            "uq_booking_active_slot",
            "barber_id",
            "scheduled_time",
            unique=True,
            sqlite_where=text(ACTIVE_SLOT_PREDICATE),
            postgresql_where=text(ACTIVE_SLOT_PREDICATE),
        ),
    )

    id: Optional[int] = Field(default=None, primary_key=True)

    customer_id: int = Field(foreign_key="user.id", index=True)
    barber_id: int = Field(foreign_key="user.id", index=True)
    service_id: int = Field(foreign_key="service.id")
    scheduled_time: datetime = Field(index=True)
    duration: int  # minutes, captured from the service at booking time
    status: str
    payment_status: str = "PENDING"
    total_price: Decimal = Field(max_digits=8, decimal_places=2)
    notes: Optional[str] = None

    cancellation_reason: Optional[str] = None
    cancellation_fee: Optional[Decimal] = Field(default=None, max_digits=8, decimal_places=2)
    refund_amount: Optional[Decimal] = Field(default=None, max_digits=8, decimal_places=2)
    cancelled_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    created_at: datetime = Field(default_factory=datetime.now)
    updated_at: datetime = Field(default_factory=datetime.now)


class Review(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)

    booking_id: int = Field(foreign_key="booking.id", unique=True)
    customer_id: int = Field(foreign_key="user.id")
    barber_id: int = Field(foreign_key="user.id", index=True)
    rating: int
    comment: Optional[str] = None
    created_at: datetime = Field(default_factory=datetime.now)
