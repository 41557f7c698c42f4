"""
Business rules shared by the trip and maintenance machines.

Everything here is pure: no session, no clock.  The services feed in the
current values and act on the verdicts.
"""

from __future__ import annotations

from datetime import date, datetime, timedelta
from decimal import Decimal
from typing import Mapping, Optional, TypeVar

from .entities import TimeWindow
from .enums import ClientPaymentState
from .errors import ImplausibleDistance, InvalidTransition

S = TypeVar("S")


def ensure_transition(
    kind: str, table: Mapping[S, set[S]], current: S, requested: S
) -> None:
    """Raise ``InvalidTransition`` unless *current* -> *requested* is in *table*."""
    if requested not in table.get(current, set()):
        raise InvalidTransition(kind, _name(current), _name(requested))


def _name(state) -> str:
    return getattr(state, "value", str(state))


def trip_window(
    departure: datetime, arrival: Optional[datetime], default_hours: int = 24
) -> TimeWindow:
    """Occupation window of a trip; open-ended trips block *default_hours*."""
    end = arrival if arrival is not None else departure + timedelta(hours=default_hours)
    return TimeWindow(departure, end)


def check_distance(
    actual_km: float,
    estimated_km: Optional[float],
    min_ratio: float = 0.3,
    max_ratio: float = 3.0,
) -> None:
    """Reject completion readings far outside the estimate (typos, lost digits)."""
    if not estimated_km or estimated_km <= 0:
        return
    if actual_km < estimated_km * min_ratio:
        raise ImplausibleDistance(
            actual_km,
            estimated_km,
            f"Actual distance ({actual_km} km) is suspiciously low for a trip "
            f"estimated at {estimated_km} km. Check the reading.",
        )
    if actual_km > estimated_km * max_ratio:
        raise ImplausibleDistance(
            actual_km,
            estimated_km,
            f"Actual distance ({actual_km} km) far exceeds the estimate "
            f"({estimated_km} km). Check the reading.",
        )


def client_payment_state(paid: Decimal, tariff: Decimal) -> ClientPaymentState:
    if paid >= tariff:
        return ClientPaymentState.PAID
    if paid > 0:
        return ClientPaymentState.PARTIAL
    return ClientPaymentState.PENDING


def payment_due_date(departure: datetime, credit_days: int) -> date:
    return departure.date() + timedelta(days=credit_days)


def expired_documents(today: date, **expiries: Optional[date]) -> list[str]:
    """Names of the documents whose expiry date is before *today*."""
    return [name for name, expires in expiries.items() if expires and expires < today]


def km_until_service(
    current_odometer: int, last_service_odometer: int, interval_km: int
) -> int:
    return last_service_odometer + interval_km - current_odometer
