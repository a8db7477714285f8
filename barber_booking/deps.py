# barber_booking/deps.py

from datetime import datetime, timezone

from .errors import AuthorizationError
from .schemas import to_shop_time


def require_role(user: dict, role: str):
    if user["role"] != role:
        raise AuthorizationError("Forbidden")


# Dependency: the request's notion of "now", as naive shop-local time
def get_now() -> datetime:
    return to_shop_time(datetime.now(timezone.utc))
