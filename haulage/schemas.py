"""
Pydantic input structs, one per operation.

Each struct lists exactly the fields its operation may change; unknown
fields are rejected so nothing slips past validation into persistence.
Business rules (positive tariff, expired documents, ...) are checked by the
services and raise typed domain errors instead.
"""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import Literal, Optional

from pydantic import BaseModel, Field

from haulage.domain.enums import MaintenanceKind

_STRICT = {"extra": "forbid"}


# ── Trips ─────────────────────────────────────────────────────────────


class TripDraft(BaseModel):
    vehicle_id: int
    driver_id: int
    client_id: int
    material_id: int
    origin: str = Field(..., min_length=3, max_length=200)
    destination: str = Field(..., min_length=3, max_length=200)
    departure_at: datetime
    estimated_arrival_at: Optional[datetime] = None
    estimated_distance_km: Optional[float] = Field(None, ge=0)
    tariff: Decimal
    driver_agreed_amount: Optional[Decimal] = None
    credit_days: Literal[0, 15, 30, 60, 90] = 0
    notes: Optional[str] = None

    model_config = _STRICT


class TripCompletion(BaseModel):
    actual_arrival_at: Optional[datetime] = None
    actual_distance_km: Optional[float] = Field(None, gt=0)

    model_config = _STRICT


# ── Maintenance ───────────────────────────────────────────────────────


class MaintenanceDraft(BaseModel):
    vehicle_id: int
    kind: MaintenanceKind
    description: Optional[str] = None
    shop: Optional[str] = None
    scheduled_on: Optional[date] = None
    odometer_at_service: Optional[int] = Field(None, ge=0)
    next_due_on: Optional[date] = None
    next_due_odometer: Optional[int] = Field(None, ge=0)

    model_config = _STRICT


class MaintenanceCompletion(BaseModel):
    shop: str = Field(..., min_length=1)
    labor_cost: Decimal = Field(Decimal("0"), ge=0)
    parts_cost: Decimal = Field(Decimal("0"), ge=0)
    description: Optional[str] = None
    odometer_reading: Optional[int] = Field(None, ge=0)
    next_due_odometer: Optional[int] = Field(None, ge=0)

    model_config = _STRICT


# ── Driver payments ───────────────────────────────────────────────────


class DriverPaymentDraft(BaseModel):
    driver_id: int
    amount: Decimal
    scheduled_on: date
    trip_id: Optional[int] = None
    payment_method: Optional[str] = None
    description: Optional[str] = None
    already_paid: bool = False

    model_config = _STRICT


class Settlement(BaseModel):
    amount: Optional[Decimal] = None  # defaults to the whole pending amount
    paid_at: Optional[datetime] = None
    payment_method: Optional[str] = None
    description: Optional[str] = None

    model_config = _STRICT


# ── Receipts ──────────────────────────────────────────────────────────


class ReceiptUpload(BaseModel):
    content: bytes
    filename: str = Field(..., min_length=1)

    model_config = _STRICT
