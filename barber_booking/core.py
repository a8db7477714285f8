# barber_booking/core.py

"""
Slot generation and availability filtering.

Everything here is pure: callers pass in the barber's hours, blocks,
override and bookings for a date and get back annotated slots. Times are
naive barber-local datetimes; no timezone conversion happens here.
"""

from dataclasses import dataclass, replace
from datetime import datetime, timedelta, date, time
from decimal import Decimal
from typing import Iterable, List, Optional

from .errors import ValidationError
from .schemas import BlockKind, BookingStatus

# kinds of schedule block that take time away from bookable slots
BLOCKING_KINDS = {BlockKind.unavailable.value, BlockKind.break_.value, BlockKind.vacation.value}


@dataclass(frozen=True)
class DayHours:
    is_open: bool
    start: Optional[time] = None
    end: Optional[time] = None

    @classmethod
    def closed(cls) -> "DayHours":
        return cls(is_open=False)


@dataclass(frozen=True)
class TimeSlot:
    start: datetime
    end: datetime
    available: bool = True
    price: Optional[Decimal] = None


def overlaps(a_start: datetime, a_end: datetime, b_start: datetime, b_end: datetime) -> bool:
    """Half-open interval overlap: [a_start, a_end) and [b_start, b_end)."""
    return a_start < b_end and a_end > b_start


def resolve_day_hours(standing: Optional[DayHours], override=None) -> DayHours:
    """
    Hours that apply to one date.

    An override for the date replaces the standing hours entirely. An
    available override without its own hours keeps the standing ones.
    """
    if override is not None:
        if not override.is_available:
            return DayHours.closed()
        if override.start_time is not None and override.end_time is not None:
            return DayHours(is_open=True, start=override.start_time, end=override.end_time)
    if standing is None:
        return DayHours.closed()
    return standing


def generate_time_slots(
    on_date: date,
    hours: DayHours,
    duration: int,
    interval: int = 15,
) -> List[TimeSlot]:
    if interval <= 0:
        raise ValidationError("Slot interval must be positive", rule="slot_interval")
    if duration < interval:
        raise ValidationError(
            f"Duration must be at least {interval} minutes", rule="slot_duration"
        )

    if not hours.is_open or hours.start is None or hours.end is None:
        return []

    open_at = datetime.combine(on_date, hours.start)
    close_at = datetime.combine(on_date, hours.end)
    length = timedelta(minutes=duration)
    step = timedelta(minutes=interval)

    slots = []
    current = open_at
    while current + length <= close_at:
        slots.append(TimeSlot(start=current, end=current + length))
        current += step
    return slots


def blocks_for_date(blocks: Iterable, on_date: date) -> list:
    """Blocks that apply on `on_date`; recurring blocks repeat weekly from their start date."""
    matched = []
    for b in blocks:
        if b.date == on_date:
            matched.append(b)
        elif b.is_recurring and b.date < on_date and b.date.weekday() == on_date.weekday():
            matched.append(b)
    return matched


def _booking_interval(booking):
    start = booking.scheduled_time
    return start, start + timedelta(minutes=booking.duration)


def filter_availability(
    slots: List[TimeSlot],
    bookings: Iterable = (),
    blocks: Iterable = (),
    override=None,
) -> List[TimeSlot]:
    """
    Mark each candidate slot available or not.

    Conflicting slots are kept (marked unavailable) so callers can render a
    "booked" state. `blocks` must already be narrowed to the slot date (see
    `blocks_for_date`); block times are combined with each slot's own date.
    """
    live = [
        _booking_interval(b)
        for b in bookings
        if b.status != BookingStatus.CANCELLED.value
    ]
    blocking = [b for b in blocks if b.kind in BLOCKING_KINDS]

    result = []
    for slot in slots:
        available = True

        if override is not None:
            if not override.is_available:
                available = False
            elif override.start_time is not None and override.end_time is not None:
                window_start = datetime.combine(slot.start.date(), override.start_time)
                window_end = datetime.combine(slot.start.date(), override.end_time)
                if slot.start < window_start or slot.end > window_end:
                    available = False

        if available:
            for b in blocking:
                block_start = datetime.combine(slot.start.date(), b.start_time)
                block_end = datetime.combine(slot.start.date(), b.end_time)
                if overlaps(slot.start, slot.end, block_start, block_end):
                    available = False
                    break

        if available:
            for booked_start, booked_end in live:
                if overlaps(slot.start, slot.end, booked_start, booked_end):
                    available = False
                    break

        result.append(replace(slot, available=available))
    return result
