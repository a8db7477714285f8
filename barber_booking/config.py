# barber_booking/config.py

from datetime import time
from decimal import Decimal
from functools import lru_cache
from typing import List

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    database_url: str = Field(default="sqlite:///./barber.db", alias="DATABASE_URL")
    secret_key: str = Field(default="change-me-later", alias="SECRET_KEY")
    jwt_algorithm: str = Field(default="HS256", alias="JWT_ALGORITHM")
    access_token_expire_minutes: int = Field(default=30, alias="ACCESS_TOKEN_EXPIRE_MINUTES")

    shop_timezone: str = Field(default="America/New_York", alias="SHOP_TIMEZONE")
    slot_minutes: int = Field(default=15, alias="SLOT_MINUTES")

    # platform-wide booking window, on top of each barber's own hours
    booking_window_start: time = Field(default=time(9, 0), alias="BOOKING_WINDOW_START")
    booking_window_end: time = Field(default=time(18, 0), alias="BOOKING_WINDOW_END")
    booking_days: str = Field(default="0,1,2,3,4,5", alias="BOOKING_DAYS")  # 0=Mon
    min_advance_hours: int = Field(default=2, alias="MIN_ADVANCE_HOURS")
    max_advance_days: int = Field(default=90, alias="MAX_ADVANCE_DAYS")

    free_cancellation_hours: int = Field(default=24, alias="FREE_CANCELLATION_HOURS")
    late_cancellation_hours: int = Field(default=2, alias="LATE_CANCELLATION_HOURS")
    late_cancellation_fee_rate: Decimal = Field(default=Decimal("0.5"), alias="LATE_CANCELLATION_FEE_RATE")
    reschedule_notice_hours: int = Field(default=4, alias="RESCHEDULE_NOTICE_HOURS")
    no_show_grace_minutes: int = Field(default=15, alias="NO_SHOW_GRACE_MINUTES")
    require_payment_before_confirmation: bool = Field(
        default=False, alias="REQUIRE_PAYMENT_BEFORE_CONFIRMATION"
    )

    after_hours_surcharge: Decimal = Field(default=Decimal("0.20"), alias="AFTER_HOURS_SURCHARGE")
    weekend_surcharge: Decimal = Field(default=Decimal("0.15"), alias="WEEKEND_SURCHARGE")

    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    model_config = SettingsConfigDict(env_file=".env", extra="ignore", populate_by_name=True)

    @property
    def booking_days_list(self) -> List[int]:
        return [int(day) for day in self.booking_days.split(",") if day.strip()]


@lru_cache
def get_settings() -> Settings:
    return Settings()
