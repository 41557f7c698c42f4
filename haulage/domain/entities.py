"""
Value objects shared by the services and the scheduler.

The persistent aggregates (vehicle, trip, maintenance ticket, driver
payment) live in ``haulage.infrastructure.models``; the objects here are
the immutable results and inputs that travel between layers.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from typing import Optional

from .enums import PayoutMode


# ── Value Objects ─────────────────────────────────────────────────────


@dataclass(frozen=True)
class Period:
    """Inclusive date range; either end may be open."""

    start: Optional[date] = None
    end: Optional[date] = None


@dataclass(frozen=True)
class TimeWindow:
    start: datetime
    end: datetime

    def overlaps(self, other: TimeWindow) -> bool:
        return self.start <= other.end and self.end >= other.start


@dataclass(frozen=True)
class StoredReceipt:
    url: str
    ref: str


@dataclass(frozen=True)
class SalaryPayout:
    """A payout the scheduler owes a salaried driver for one pay date."""

    driver_id: int
    slot: str  # "monthly" | "first-half" | "second-half"
    pay_date: date
    amount: Decimal
    tag: str
    description: str

    @property
    def ledger_key(self) -> str:
        return f"salary:{self.driver_id}:{self.pay_date:%Y-%m}:{self.slot}"


@dataclass(frozen=True)
class DriverBalance:
    driver_id: int
    payout_mode: PayoutMode
    generated: Decimal
    paid: Decimal
    pending: Decimal
    monthly_salary: Optional[Decimal] = None
    pay_day: Optional[int] = None
    biweekly: Optional[bool] = None
