# barber_booking/validation.py

from datetime import datetime, timedelta

from .config import Settings, get_settings
from .errors import NotFoundError, ValidationError

DAY_NAMES = ["Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday", "Sunday"]


def validate_booking_request(scheduled_time: datetime, now: datetime, settings: Settings = None):
    """
    Gate a requested start time before it reaches the booking lifecycle.

    These checks are platform-wide and come on top of the barber's own
    hours. Raises ValidationError naming the first rule that fails.
    """
    settings = settings or get_settings()

    # 1) Strictly in the future
    if scheduled_time <= now:
        raise ValidationError("Booking time must be in the future", rule="future_time")

    # 2) Bookable weekday (Sunday excluded by default)
    if scheduled_time.weekday() not in settings.booking_days_list:
        allowed = ", ".join(DAY_NAMES[d] for d in settings.booking_days_list)
        raise ValidationError(f"Bookings are only allowed on {allowed}", rule="booking_day")

    # 3) Platform booking window, both ends inclusive: 18:00 is the last bookable start
    clock = scheduled_time.time()
    if clock < settings.booking_window_start or clock > settings.booking_window_end:
        raise ValidationError(
            "Bookings are only allowed between "
            f"{settings.booking_window_start:%H:%M} and {settings.booking_window_end:%H:%M}",
            rule="booking_window",
        )

    # 4) Advance notice
    if scheduled_time - now < timedelta(hours=settings.min_advance_hours):
        raise ValidationError(
            f"Bookings must be made at least {settings.min_advance_hours} hours in advance",
            rule="advance_notice",
        )

    # 5) Booking horizon
    if scheduled_time - now > timedelta(days=settings.max_advance_days):
        raise ValidationError(
            f"Bookings cannot be made more than {settings.max_advance_days} days in advance",
            rule="advance_limit",
        )


def validate_service_for_barber(service, barber_id: int):
    """The service must exist, belong to the barber and be active."""
    if service is None:
        raise NotFoundError("Service not found")
    if service.barber_id != barber_id:
        raise ValidationError("Service is not offered by this barber", rule="service_barber")
    if not service.is_active:
        raise ValidationError("Service is not currently offered", rule="service_active")
    return service
