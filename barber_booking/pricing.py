# barber_booking/pricing.py

from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP

from .config import Settings, get_settings

CENT = Decimal("0.01")


def to_cents(amount: Decimal) -> Decimal:
    return Decimal(amount).quantize(CENT, rounding=ROUND_HALF_UP)


def quote_price(base_price: Decimal, scheduled_time: datetime, settings: Settings = None) -> Decimal:
    """Service price at a given start time, with evening/early and weekend surcharges."""
    settings = settings or get_settings()
    price = Decimal(base_price)

    hour = scheduled_time.hour
    if hour >= 18 or hour <= 8:
        price *= 1 + settings.after_hours_surcharge

    if scheduled_time.weekday() >= 5:  # Sat, Sun
        price *= 1 + settings.weekend_surcharge

    return to_cents(price)
