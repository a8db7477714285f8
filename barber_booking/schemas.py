# barber_booking/schemas.py

from datetime import datetime, date, time
from decimal import Decimal
from enum import Enum
from typing import Dict, List, Optional
from zoneinfo import ZoneInfo

from pydantic import BaseModel, Field, field_validator, model_validator

from .config import get_settings


class UserRole(str, Enum):
    customer = "customer"
    barber = "barber"
    admin = "admin"


class Weekday(str, Enum):
    monday = "monday"
    tuesday = "tuesday"
    wednesday = "wednesday"
    thursday = "thursday"
    friday = "friday"
    saturday = "saturday"
    sunday = "sunday"

    @property
    def number(self) -> int:
        return list(Weekday).index(self)  # 0=Mon, same as date.weekday()

    @classmethod
    def from_index(cls, index: int) -> "Weekday":
        return list(cls)[index]


class BlockKind(str, Enum):
    unavailable = "unavailable"
    break_ = "break"
    vacation = "vacation"
    appointment = "appointment"


class BookingStatus(str, Enum):
    PENDING_PAYMENT = "PENDING_PAYMENT"
    PENDING_CONFIRMATION = "PENDING_CONFIRMATION"
    CONFIRMED = "CONFIRMED"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"
    NO_SHOW = "NO_SHOW"


class PaymentStatus(str, Enum):
    PENDING = "PENDING"
    PAID = "PAID"
    REFUNDED = "REFUNDED"
    PARTIALLY_REFUNDED = "PARTIALLY_REFUNDED"


class BookingAction(str, Enum):
    create = "create"
    pay = "pay"
    confirm = "confirm"
    start = "start"
    cancel = "cancel"
    reschedule = "reschedule"
    complete = "complete"
    mark_no_show = "mark_no_show"
    attach_review = "attach_review"


def to_shop_time(value: datetime) -> datetime:
    """Aware datetimes become naive shop-local time; naive ones pass through."""
    if value.tzinfo is None:
        return value
    local = value.astimezone(ZoneInfo(get_settings().shop_timezone))
    return local.replace(tzinfo=None)


class Token(BaseModel):
    access_token: str
    token_type: str = "bearer"


class UserPublic(BaseModel):
    id: int
    email: str
    role: UserRole


class UserCreate(BaseModel):
    email: str
    password: str = Field(min_length=8, max_length=72)
    role: UserRole = UserRole.customer


class DayHours(BaseModel):
    is_open: bool = False
    start: Optional[time] = None
    end: Optional[time] = None

    @model_validator(mode="after")
    def check_open_window(self):
        if self.is_open:
            if self.start is None or self.end is None:
                raise ValueError("start and end are required when the day is open")
            if self.start >= self.end:
                raise ValueError("start must be before end")
        return self


class WorkingHoursUpdate(BaseModel):
    days: Dict[Weekday, DayHours]


class WorkingHoursPublic(BaseModel):
    barber_id: int
    days: Dict[Weekday, DayHours]


class ServiceCreate(BaseModel):
    name: str = Field(min_length=1, max_length=100)
    duration: int = Field(gt=0, le=480)
    price: Decimal = Field(gt=0, max_digits=8, decimal_places=2)

    @field_validator("duration")
    @classmethod
    def check_grid(cls, value: int) -> int:
        slot_minutes = get_settings().slot_minutes
        if value % slot_minutes != 0:
            raise ValueError(f"duration must be a multiple of {slot_minutes} minutes")
        return value


class ServiceUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    price: Optional[Decimal] = Field(default=None, gt=0, max_digits=8, decimal_places=2)
    is_active: Optional[bool] = None


class ServicePublic(BaseModel):
    id: int
    barber_id: int
    name: str
    duration: int
    price: Decimal
    is_active: bool


class BlockCreate(BaseModel):
    date: date
    start_time: time
    end_time: time
    kind: BlockKind = BlockKind.unavailable
    is_recurring: bool = False

    @model_validator(mode="after")
    def check_order(self):
        if self.start_time >= self.end_time:
            raise ValueError("start_time must be before end_time")
        return self


class BlockPublic(BaseModel):
    id: int
    barber_id: int
    date: date
    start_time: time
    end_time: time
    kind: BlockKind
    is_recurring: bool


class OverrideUpsert(BaseModel):
    date: date
    is_available: bool
    start_time: Optional[time] = None
    end_time: Optional[time] = None

    @model_validator(mode="after")
    def check_hours(self):
        if (self.start_time is None) != (self.end_time is None):
            raise ValueError("start_time and end_time must be given together")
        if self.start_time is not None and self.start_time >= self.end_time:
            raise ValueError("start_time must be before end_time")
        return self


class OverridePublic(BaseModel):
    id: int
    barber_id: int
    date: date
    is_available: bool
    start_time: Optional[time] = None
    end_time: Optional[time] = None


class TimeSlotPublic(BaseModel):
    start: datetime
    end: datetime
    available: bool
    price: Optional[Decimal] = None


class BusinessHours(BaseModel):
    is_open: bool
    start: Optional[time] = None
    end: Optional[time] = None


class AvailabilityResponse(BaseModel):
    barber_id: int
    service_id: int
    date: date
    duration: int
    slots: List[TimeSlotPublic]
    business_hours: BusinessHours


class BookingCreate(BaseModel):
    barber_id: int
    service_id: int
    scheduled_time: datetime
    notes: Optional[str] = Field(default=None, max_length=500)

    @field_validator("scheduled_time")
    @classmethod
    def normalize_time(cls, value: datetime) -> datetime:
        return to_shop_time(value)


class CancelRequest(BaseModel):
    reason: Optional[str] = Field(default=None, max_length=500)


class RescheduleRequest(BaseModel):
    scheduled_time: datetime

    @field_validator("scheduled_time")
    @classmethod
    def normalize_time(cls, value: datetime) -> datetime:
        return to_shop_time(value)


class ReviewCreate(BaseModel):
    rating: int = Field(ge=1, le=5)
    comment: Optional[str] = Field(default=None, max_length=1000)


class ReviewPublic(BaseModel):
    id: int
    booking_id: int
    customer_id: int
    barber_id: int
    rating: int
    comment: Optional[str] = None
    created_at: datetime


class RatingSummary(BaseModel):
    average_rating: Optional[Decimal] = None  # one decimal place; None until the first review
    total_reviews: int = 0
    rating_distribution: Dict[int, int]


class ReviewPage(BaseModel):
    reviews: List[ReviewPublic]
    statistics: RatingSummary
    limit: int
    offset: int
    has_more: bool


class BarberProfile(BaseModel):
    id: int
    email: str
    services: List[ServicePublic]
    rating: RatingSummary
    recent_reviews: List[ReviewPublic]


class BookingPublic(BaseModel):
    id: int
    customer_id: int
    barber_id: int
    service_id: int
    scheduled_time: datetime
    duration: int
    status: BookingStatus
    payment_status: PaymentStatus
    total_price: Decimal
    notes: Optional[str] = None
    cancellation_reason: Optional[str] = None
    cancellation_fee: Optional[Decimal] = None
    refund_amount: Optional[Decimal] = None
    cancelled_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime
