"""
Repository Pattern -- abstracts DB access so domain logic stays DB-agnostic.

Each repository receives an ``AsyncSession`` (unit-of-work) and exposes
domain-relevant queries only.  ``get_for_update`` issues
``SELECT ... FOR UPDATE`` so concurrent transitions of the same row queue
up behind each other on backends that support row locks.
"""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import Optional, Sequence

from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from .models import (
    ClientModel,
    DriverModel,
    DriverPaymentModel,
    MaintenanceModel,
    MaterialModel,
    ReceiptModel,
    TripModel,
    VehicleModel,
)
from haulage.domain.entities import Period, TimeWindow
from haulage.domain.enums import (
    OPEN_MAINTENANCE_STATES,
    OPEN_TRIP_STATES,
    MaintenanceState,
    PartyStatus,
    PaymentState,
    PayoutMode,
    TripState,
    VehicleState,
)
from haulage.domain.ledger import end_of_day, money, start_of_day
from haulage.domain.rules import trip_window


class _Repository:
    model: type

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_by_id(self, entity_id: int):
        return await self.session.get(self.model, entity_id)

    async def get_for_update(self, entity_id: int):
        return await self.session.get(self.model, entity_id, with_for_update=True)

    async def create(self, entity):
        self.session.add(entity)
        await self.session.flush()
        return entity


class VehicleRepository(_Repository):
    model = VehicleModel

    async def list_in_service(self) -> list[VehicleModel]:
        result = await self.session.execute(
            select(VehicleModel)
            .where(VehicleModel.state.in_([VehicleState.ACTIVE, VehicleState.ON_ROUTE]))
            .order_by(VehicleModel.id)
        )
        return list(result.scalars().all())


class DriverRepository(_Repository):
    model = DriverModel

    async def list_salaried_active(self) -> list[DriverModel]:
        result = await self.session.execute(
            select(DriverModel)
            .where(
                DriverModel.payout_mode == PayoutMode.SALARIED,
                DriverModel.status == PartyStatus.ACTIVE,
                DriverModel.monthly_salary.is_not(None),
                DriverModel.hired_on.is_not(None),
            )
            .order_by(DriverModel.id)
        )
        return list(result.scalars().all())


class ClientRepository(_Repository):
    model = ClientModel


class MaterialRepository(_Repository):
    model = MaterialModel


class ReceiptRepository(_Repository):
    model = ReceiptModel


class TripRepository(_Repository):
    model = TripModel

    async def find_overlapping(
        self,
        window: TimeWindow,
        vehicle_id: int,
        driver_id: int,
        default_hours: int = 24,
        exclude_trip_id: Optional[int] = None,
    ) -> Optional[TripModel]:
        """First open trip of the vehicle or driver whose window meets *window*.

        Trips without an estimated arrival occupy ``default_hours``; the SQL
        narrows candidates by departure and the window test runs here.
        """
        query = (
            select(TripModel)
            .where(
                TripModel.state.in_(OPEN_TRIP_STATES),
                TripModel.departure_at <= window.end,
                or_(TripModel.vehicle_id == vehicle_id, TripModel.driver_id == driver_id),
            )
            .order_by(TripModel.departure_at)
        )
        if exclude_trip_id is not None:
            query = query.where(TripModel.id != exclude_trip_id)
        result = await self.session.execute(query)
        for trip in result.scalars():
            existing = trip_window(trip.departure_at, trip.estimated_arrival_at, default_hours)
            if existing.overlaps(window):
                return trip
        return None

    async def count_open_for_vehicle(self, vehicle_id: int) -> int:
        result = await self.session.execute(
            select(func.count())
            .select_from(TripModel)
            .where(
                TripModel.vehicle_id == vehicle_id,
                TripModel.state.in_(OPEN_TRIP_STATES),
            )
        )
        return result.scalar() or 0

    async def has_in_progress_for_vehicle(self, vehicle_id: int) -> bool:
        result = await self.session.execute(
            select(TripModel.id)
            .where(
                TripModel.vehicle_id == vehicle_id,
                TripModel.state == TripState.IN_PROGRESS,
            )
            .limit(1)
        )
        return result.scalar_one_or_none() is not None

    async def ids_due_for_start(self, now: datetime) -> list[int]:
        result = await self.session.execute(
            select(TripModel.id)
            .where(
                TripModel.state == TripState.PLANNED,
                TripModel.departure_at <= now,
            )
            .order_by(TripModel.departure_at)
        )
        return list(result.scalars().all())

    async def sum_completed_agreed(self, driver_id: int, period: Period) -> Decimal:
        query = select(func.coalesce(func.sum(TripModel.driver_agreed_amount), 0)).where(
            TripModel.driver_id == driver_id,
            TripModel.state == TripState.COMPLETED,
        )
        if period.start:
            query = query.where(TripModel.actual_arrival_at >= start_of_day(period.start))
        if period.end:
            query = query.where(TripModel.actual_arrival_at <= end_of_day(period.end))
        result = await self.session.execute(query)
        return money(result.scalar())


class MaintenanceRepository(_Repository):
    model = MaintenanceModel

    async def find_open_for_vehicle(
        self,
        vehicle_id: int,
        states: Sequence[MaintenanceState] = OPEN_MAINTENANCE_STATES,
    ) -> Optional[MaintenanceModel]:
        result = await self.session.execute(
            select(MaintenanceModel)
            .where(
                MaintenanceModel.vehicle_id == vehicle_id,
                MaintenanceModel.state.in_(states),
            )
            .order_by(MaintenanceModel.id)
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def last_completed_odometer(self, vehicle_id: int) -> int:
        result = await self.session.execute(
            select(MaintenanceModel.odometer_at_service)
            .where(
                MaintenanceModel.vehicle_id == vehicle_id,
                MaintenanceModel.state == MaintenanceState.COMPLETED,
                MaintenanceModel.odometer_at_service.is_not(None),
            )
            .order_by(MaintenanceModel.finished_at.desc(), MaintenanceModel.id.desc())
            .limit(1)
        )
        return result.scalar_one_or_none() or 0


class DriverPaymentRepository(_Repository):
    model = DriverPaymentModel

    async def find_by_trip(self, trip_id: int) -> Optional[DriverPaymentModel]:
        result = await self.session.execute(
            select(DriverPaymentModel)
            .where(DriverPaymentModel.trip_id == trip_id)
            .order_by(DriverPaymentModel.id)
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def sum_for_trip(self, trip_id: int) -> Decimal:
        result = await self.session.execute(
            select(func.coalesce(func.sum(DriverPaymentModel.amount), 0)).where(
                DriverPaymentModel.trip_id == trip_id
            )
        )
        return money(result.scalar())

    async def find_salary_payout(
        self, driver_id: int, month_start: date, month_end: date, tag: str, ledger_key: str
    ) -> Optional[DriverPaymentModel]:
        """Payout already generated for this driver, month and slot."""
        result = await self.session.execute(
            select(DriverPaymentModel)
            .where(
                or_(
                    DriverPaymentModel.ledger_key == ledger_key,
                    (DriverPaymentModel.driver_id == driver_id)
                    & DriverPaymentModel.trip_id.is_(None)
                    & DriverPaymentModel.scheduled_on.between(month_start, month_end)
                    & DriverPaymentModel.description.contains(tag, autoescape=True),
                )
            )
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def sum_for_driver(
        self,
        driver_id: int,
        period: Period,
        state: Optional[PaymentState] = None,
        trip_less: bool = False,
    ) -> Decimal:
        query = select(func.coalesce(func.sum(DriverPaymentModel.amount), 0)).where(
            DriverPaymentModel.driver_id == driver_id
        )
        if state is not None:
            query = query.where(DriverPaymentModel.state == state)
        if trip_less:
            query = query.where(DriverPaymentModel.trip_id.is_(None))
        if period.start:
            query = query.where(DriverPaymentModel.scheduled_on >= period.start)
        if period.end:
            query = query.where(DriverPaymentModel.scheduled_on <= period.end)
        result = await self.session.execute(query)
        return money(result.scalar())
